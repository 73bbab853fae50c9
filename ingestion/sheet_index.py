import re
from typing import Dict, List, Optional, Sequence, Tuple

from core.contracts import PageText, SheetMeta

SHEET_ID_PATTERN = re.compile(r"([A-Z]+)\s*[-.]?\s*(\d+)")
# Most specific first; a bare "SCALE: ..." label is the last resort.
SCALE_PATTERNS = [
    re.compile(r"\d+/\d+\"?\s*=\s*\d+'?\s*-?\s*\d+\"", re.IGNORECASE),
    re.compile(r"1:\d+"),
    re.compile(r"SCALE[\s:]+[\d/\"]+", re.IGNORECASE),
]
IMPERIAL_SCALE_PATTERN = re.compile(r"(\d+)/(\d+)\"?\s*=\s*(\d+)'")
METRIC_SCALE_PATTERN = re.compile(r"1:(\d+)")
TITLE_PATTERN = re.compile(
    r"(FLOOR PLAN|ELEVATION|SECTION|DETAIL|SCHEDULE|TITLE|FOUNDATION|SITE PLAN)[ \t\w]*",
    re.IGNORECASE,
)

# First match wins.
SHEET_TYPE_RULES: List[Tuple[str, Sequence[str]]] = [
    ("title", ("TITLE", "COVER", "INDEX")),
    ("floor_plan", ("FLOOR PLAN", "FLOORPLAN")),
    ("elevation", ("ELEVATION", "ELEV")),
    ("section", ("SECTION",)),
    ("detail", ("DETAIL", "DET", "DTL")),
    ("schedule", ("SCHEDULE", "SCH")),
    ("legend", ("LEGEND",)),
    ("site_plan", ("SITE PLAN", "SITE")),
    ("roof_plan", ("ROOF PLAN", "ROOF")),
]

# (discipline, sheet id prefix, text keywords)
DISCIPLINE_RULES: List[Tuple[str, Optional[str], Sequence[str]]] = [
    ("architectural", "A-", ("ARCHITECTURAL", "ARCH")),
    ("structural", "S-", ("STRUCTURAL", "STRUCT")),
    ("electrical", "E-", ("ELECTRICAL", "ELECT")),
    ("plumbing", "P-", ("PLUMBING", "PLUMB")),
    ("hvac", "M-", ("MECHANICAL", "HVAC", "HEATING")),
    ("civil", "C-", ("CIVIL",)),
    ("landscape", "L-", ("LANDSCAPE",)),
    ("mep", None, ("MEP",)),
]

KEYWORDS = [
    "FOUNDATION", "WALLS", "ROOF", "FLOOR", "CEILING",
    "DOOR", "WINDOW", "DOORS", "WINDOWS",
    "ELECTRICAL", "PLUMBING", "HVAC", "MEP",
    "SCHEDULE", "LEGEND", "NOTES", "SPECIFICATIONS",
    "BEAM", "COLUMN", "FOOTING", "SLAB",
]


def build_sheet_index(pages: List[PageText]) -> Dict[int, SheetMeta]:
    """Derive sheet metadata for every page, keyed by page number."""
    return {page.page_number: analyze_sheet(page) for page in pages}


def analyze_sheet(page: PageText) -> SheetMeta:
    text = page.text.upper()

    id_match = SHEET_ID_PATTERN.search(text)
    sheet_id = (
        f"{id_match.group(1)}-{id_match.group(2)}"
        if id_match
        else f"PAGE-{page.page_number}"
    )

    scale = detect_scale(text)

    title_match = TITLE_PATTERN.search(text)
    title = title_match.group(0).strip() if title_match else f"Sheet {page.page_number}"

    return SheetMeta(
        page_number=page.page_number,
        sheet_id=sheet_id,
        title=title,
        discipline=detect_discipline(text, sheet_id),
        sheet_type=detect_sheet_type(text, page.page_number),
        scale=scale,
        scale_ratio=parse_scale_ratio(scale) if scale else None,
        units=detect_units(text, scale),
        keywords=[keyword for keyword in KEYWORDS if keyword in text],
    )


def detect_sheet_type(text: str, page_number: int) -> str:
    upper = text.upper()
    if page_number == 1:
        return "title"
    for sheet_type, needles in SHEET_TYPE_RULES:
        if any(needle in upper for needle in needles):
            return sheet_type
    return "other"


def detect_discipline(text: str, sheet_id: str) -> str:
    upper = text.upper()
    id_upper = sheet_id.upper()
    for discipline, prefix, needles in DISCIPLINE_RULES:
        if prefix and id_upper.startswith(prefix):
            return discipline
        if any(needle in upper for needle in needles):
            return discipline
    return "unknown"


def detect_scale(text: str) -> Optional[str]:
    for pattern in SCALE_PATTERNS:
        match = pattern.search(text)
        if match:
            return match.group(0)
    return None


def parse_scale_ratio(scale: str) -> Optional[float]:
    """Drawing units per real unit: 1/8" = 1' gives 96, 1:100 gives 100."""
    imperial = IMPERIAL_SCALE_PATTERN.search(scale)
    if imperial:
        numerator = int(imperial.group(1))
        denominator = int(imperial.group(2))
        feet = int(imperial.group(3))
        if numerator == 0 or denominator == 0:
            return None
        return (feet * 12) / (numerator / denominator)
    metric = METRIC_SCALE_PATTERN.search(scale)
    if metric:
        return float(metric.group(1))
    return None


def detect_units(text: str, scale: Optional[str]) -> Optional[str]:
    upper = text.upper()
    scale = scale or ""
    if any(mark in upper for mark in ("'", '"', "FEET", "INCHES")) or "=" in scale:
        return "imperial"
    if any(mark in upper for mark in ("MM", "CM", " METER")) or ":" in scale:
        return "metric"
    return None
