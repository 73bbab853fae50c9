from core.contracts import PageText
from ingestion.sheet_index import (
    analyze_sheet,
    build_sheet_index,
    detect_discipline,
    parse_scale_ratio,
)


def test_floor_plan_sheet_metadata():
    page = PageText(
        page_number=2,
        text="A-101 FIRST FLOOR PLAN\nSCALE: 1/4\" = 1'-0\"\nDOOR AND WINDOW TAGS",
    )
    meta = analyze_sheet(page)
    assert meta.sheet_id == "A-101"
    assert meta.discipline == "architectural"
    assert meta.sheet_type == "floor_plan"
    assert meta.scale == "1/4\" = 1'-0\""
    assert meta.scale_ratio == 48.0
    assert meta.units == "imperial"
    assert "DOOR" in meta.keywords
    assert "WINDOW" in meta.keywords


def test_first_page_is_title_sheet():
    index = build_sheet_index(
        [
            PageText(page_number=1, text="T-001 COVER SHEET"),
            PageText(page_number=2, text="GENERAL NOTES ONLY"),
        ]
    )
    assert index[1].sheet_type == "title"
    assert index[2].sheet_id == "PAGE-2"
    assert index[2].sheet_type == "other"
    assert index[2].discipline == "unknown"


def test_discipline_from_text_when_prefix_missing():
    assert detect_discipline("PLUMBING RISER DIAGRAM", "PAGE-4") == "plumbing"
    assert detect_discipline("ANYTHING", "S-201") == "structural"


def test_parse_scale_ratio():
    assert parse_scale_ratio("1/8\" = 1'") == 96.0
    assert parse_scale_ratio("1:100") == 100.0
    assert parse_scale_ratio("0/4\" = 1'") is None
    assert parse_scale_ratio("NTS") is None
