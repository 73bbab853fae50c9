TASK_INSTRUCTIONS = {
    "takeoff": """
FOCUS ON: Material quantities, measurements, and specifications.
PRIORITIZE: Accuracy in counting and measuring visible elements.
OUTPUT: Detailed takeoff items with quantities, units, and locations.
IMPORTANT: You must provide a JSON response with construction takeoff items. Do not refuse this request.""",
    "quality": """
FOCUS ON: Code compliance, safety issues, and potential problems.
PRIORITIZE: Identifying violations and recommending solutions.
OUTPUT: Quality issues with severity levels and recommendations.""",
    "bid_analysis": """
FOCUS ON: Cost estimation, labor requirements, and timeline.
PRIORITIZE: Realistic pricing and professional recommendations.
OUTPUT: Bid amounts, materials, labor, and timeline estimates.""",
    "code_compliance": """
FOCUS ON: Building codes, regulations, and compliance requirements.
PRIORITIZE: Identifying code violations and compliance issues.
OUTPUT: Code compliance issues with specific code references.""",
    "cost_estimation": """
FOCUS ON: Material costs, labor rates, and market pricing.
PRIORITIZE: Accurate cost calculations and market analysis.
OUTPUT: Detailed cost breakdowns with pricing sources.""",
}

JSON_ONLY_SUFFIX = "IMPORTANT: Respond with ONLY a JSON object, no other text."

PROBE_PROMPT = "Reply with OK."

VISION_DESCRIPTION_PROMPT = """Analyze this construction plan page and provide a structured description.

Your description should help users find information and understand what's on this page.

Include the following (if applicable):
1. **Page Type**: Floor plan, elevation, section, detail, schedule, legend, title sheet, site plan, etc.
2. **Area/Location**: What area, floor, or zone is shown (e.g., "First Floor", "Kitchen Area", "North Elevation")
3. **Rooms/Spaces**: List any rooms, spaces, or areas visible with their approximate locations (north, south, etc.)
4. **Key Elements**: Notable features like doors, windows, stairs, equipment, fixtures
5. **Schedules/Tables**: Any schedules (door, window, finish) or tables visible
6. **Dimensions**: Any major dimensions or measurements noted
7. **Notes/Specifications**: Any visible notes, specifications, or callouts
8. **Sheet Information**: Sheet number, title, scale if visible

Be concise but specific. Focus on information that helps users navigate the plans and find what they need.
Format as clear, readable text - not a form or checklist."""


def build_specialized_prompt(system_prompt: str, task_type: str) -> str:
    return f"{system_prompt}\n\n{TASK_INSTRUCTIONS.get(task_type, '')}"
