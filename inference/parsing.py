import json
import logging
import re
from typing import Any, Callable, Dict, List, Optional

logger = logging.getLogger(__name__)

FENCED_BLOCK_PATTERN = re.compile(r"```(?:json)?\s*([\s\S]*?)\s*```")
BRACE_OBJECT_PATTERN = re.compile(r"\{[\s\S]*\}")
TRAILING_COMMA_PATTERN = re.compile(r",(\s*[}\]])")
CONTROL_CHAR_PATTERN = re.compile(r"[\x00-\x1f\x7f]")

FALLBACK_NOTES = "Analysis completed with minimal data"
UNPARSEABLE_CONFIDENCE = 0.3


def empty_result() -> Dict[str, Any]:
    return {
        "items": [],
        "issues": [],
        "summary": {"total_items": 0, "notes": FALLBACK_NOTES},
    }


# Extractors return candidate JSON text, or None to pass to the next one.
def _extract_fenced(content: str) -> Optional[str]:
    match = FENCED_BLOCK_PATTERN.search(content)
    return match.group(1) if match else None


def _extract_braces(content: str) -> Optional[str]:
    match = BRACE_OBJECT_PATTERN.search(content)
    return match.group(0) if match else None


def _extract_raw(content: str) -> Optional[str]:
    return content.strip() or None


EXTRACTORS: List[Callable[[str], Optional[str]]] = [
    _extract_fenced,
    _extract_braces,
    _extract_raw,
]


def extract_json_text(content: str) -> Optional[str]:
    for extractor in EXTRACTORS:
        text = extractor(content)
        if text:
            return text
    return None


def repair_json(text: str) -> str:
    """Best-effort fix for output cut off mid-object."""
    repaired = TRAILING_COMMA_PATTERN.sub(r"\1", text)
    repaired = CONTROL_CHAR_PATTERN.sub("", repaired)
    stack: List[str] = []
    in_string = False
    escaped = False
    for char in repaired:
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
        elif char == '"':
            in_string = True
        elif char in "{[":
            stack.append("}" if char == "{" else "]")
        elif char in "}]" and stack and stack[-1] == char:
            stack.pop()
    if in_string:
        repaired += '"'
    repaired = repaired.rstrip().rstrip(",").rstrip(":")
    repaired += "".join(reversed(stack))
    return TRAILING_COMMA_PATTERN.sub(r"\1", repaired)


def parse_model_content(content: str) -> Optional[Dict[str, Any]]:
    """Parse a model response into a dict.

    Blank content yields the empty fallback object. Returns None when the
    text cannot be parsed even after one repair attempt.
    """
    if not content or not content.strip():
        return empty_result()
    text = extract_json_text(content)
    if text is None:
        return None
    try:
        parsed = json.loads(text)
    except json.JSONDecodeError:
        parsed = _parse_repaired(content, text)
        if parsed is None:
            return None
    if isinstance(parsed, list):
        return {"items": parsed}
    if not isinstance(parsed, dict):
        return None
    return parsed


def _parse_repaired(content: str, text: str) -> Any:
    # A truncated response has no closing brace, so the brace match cuts it
    # short. Try everything from the first brace before the extracted text.
    candidates = []
    start = content.find("{")
    if start >= 0 and content[start:].strip() != text:
        candidates.append(content[start:])
    candidates.append(text)
    for candidate in candidates:
        try:
            parsed = json.loads(repair_json(candidate))
        except json.JSONDecodeError:
            continue
        logger.info("Repaired truncated JSON (%d chars)", len(candidate))
        return parsed
    return None


def estimate_confidence(content: str) -> float:
    """Heuristic score from the shape of the parsed response."""
    if not content or not content.strip():
        return UNPARSEABLE_CONFIDENCE
    parsed = parse_model_content(content)
    if parsed is None:
        return UNPARSEABLE_CONFIDENCE
    confidence = 0.5
    items = parsed.get("items")
    if isinstance(items, list):
        confidence += 0.2
        if len(items) > 10:
            confidence += 0.1
        if len(items) > 20:
            confidence += 0.1
    if parsed.get("summary"):
        confidence += 0.1
    if parsed.get("confidence"):
        confidence += 0.1
    return min(round(confidence, 2), 1.0)


def _first_present(raw: Dict[str, Any], keys: List[str]) -> Any:
    for key in keys:
        value = raw.get(key)
        if value is None:
            continue
        if isinstance(value, str) and not value.strip():
            continue
        return value
    return None


def _as_float(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    match = re.search(r"-?\d+(?:\.\d+)?", str(value).replace(",", ""))
    return float(match.group(0)) if match else None


def _as_text(value: Any) -> Optional[str]:
    if value is None:
        return None
    return str(value).strip()


# Field name -> legacy keys tried in order. Add a new alias by extending a list.
ITEM_FIELDS: Dict[str, List[str]] = {
    "name": ["name", "item_name", "item", "title"],
    "description": ["description", "details", "item_description", "notes"],
    "quantity": ["quantity", "qty", "count", "amount"],
    "unit": ["unit", "units", "measure_unit"],
    "category": ["category", "trade", "discipline"],
    "location": ["location", "location_reference", "area", "room", "zone"],
    "unit_cost": ["unit_cost", "unitCost", "unit_price"],
    "confidence": ["confidence", "confidence_score"],
}

ISSUE_FIELDS: Dict[str, List[str]] = {
    "description": ["description", "issue", "title", "details"],
    "severity": ["severity", "level", "priority"],
    "category": ["category", "type", "discipline"],
    "recommendation": ["recommendation", "suggestion", "fix"],
    "location": ["location", "location_reference", "area"],
    "confidence": ["confidence", "confidence_score"],
}


def normalize_item(raw: Any, provider: Optional[str] = None) -> Dict[str, Any]:
    if not isinstance(raw, dict):
        raw = {"name": str(raw)}
    item = dict(raw)
    for field_name, keys in ITEM_FIELDS.items():
        item[field_name] = _first_present(raw, keys)

    item["name"] = _as_text(item["name"]) or _as_text(item["description"]) or ""
    item["description"] = _as_text(item["description"])
    item["quantity"] = _as_float(item["quantity"])
    item["unit_cost"] = _as_float(item["unit_cost"])
    item["unit"] = _as_text(item["unit"]) or "EA"
    item["category"] = (_as_text(item["category"]) or "other").lower()
    confidence = _as_float(item["confidence"])
    item["confidence"] = 0.5 if confidence is None else confidence
    if provider and not item.get("ai_provider"):
        item["ai_provider"] = provider
    return item


def normalize_issue(raw: Any, provider: Optional[str] = None) -> Dict[str, Any]:
    if not isinstance(raw, dict):
        raw = {"description": str(raw)}
    issue = dict(raw)
    for field_name, keys in ISSUE_FIELDS.items():
        issue[field_name] = _first_present(raw, keys)

    issue["description"] = _as_text(issue["description"]) or ""
    issue["severity"] = (_as_text(issue["severity"]) or "info").lower()
    issue["category"] = (_as_text(issue["category"]) or "general").lower()
    confidence = _as_float(issue["confidence"])
    issue["confidence"] = 0.5 if confidence is None else confidence
    if provider and not issue.get("ai_provider"):
        issue["ai_provider"] = provider
    return issue
