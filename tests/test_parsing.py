from inference.parsing import (
    FALLBACK_NOTES,
    estimate_confidence,
    normalize_issue,
    normalize_item,
    parse_model_content,
    repair_json,
)


def test_fenced_block_is_preferred():
    content = 'Here you go:\n```json\n{"items": [{"name": "Outlet"}]}\n```\nThanks!'
    assert parse_model_content(content) == {"items": [{"name": "Outlet"}]}


def test_object_is_found_inside_prose():
    content = 'Sure. {"items": [], "summary": {"total_items": 0}} Let me know.'
    assert parse_model_content(content)["summary"] == {"total_items": 0}


def test_empty_content_yields_fallback_object():
    parsed = parse_model_content("   ")
    assert parsed["items"] == []
    assert parsed["issues"] == []
    assert parsed["summary"]["total_items"] == 0
    assert parsed["summary"]["notes"] == FALLBACK_NOTES


def test_unparseable_content_returns_none():
    assert parse_model_content("I cannot analyze this image.") is None


def test_top_level_list_becomes_items():
    content = '```json\n[{"name": "Door"}]\n```'
    assert parse_model_content(content) == {"items": [{"name": "Door"}]}


def test_truncated_json_is_repaired():
    content = '{"items": [{"name": "Outlet", "quantity": 4}, {"name": "Swi'
    parsed = parse_model_content(content)
    assert parsed["items"][0] == {"name": "Outlet", "quantity": 4}
    assert parsed["items"][1] == {"name": "Swi"}


def test_repair_strips_trailing_commas():
    assert repair_json('{"items": [1, 2,], }') == '{"items": [1, 2] }'


def test_confidence_heuristic():
    many = '{"items": [%s], "summary": {"total_items": 11}}' % ", ".join(["{}"] * 11)
    assert estimate_confidence(many) == 0.9
    assert estimate_confidence('{"items": []}') == 0.7
    assert estimate_confidence('{"items": [], "summary": {"a": 1}, "confidence": 0.8}') == 0.9
    assert estimate_confidence("not json") == 0.3
    assert estimate_confidence("") == 0.3


def test_item_fields_are_coalesced():
    item = normalize_item({"item_name": "EMT Conduit", "qty": "120 LF", "trade": "Electrical"}, "openai")
    assert item["name"] == "EMT Conduit"
    assert item["quantity"] == 120.0
    assert item["category"] == "electrical"
    assert item["unit"] == "EA"
    assert item["confidence"] == 0.5
    assert item["ai_provider"] == "openai"

    assert normalize_item({"item": "Outlet", "count": 3})["quantity"] == 3.0
    assert normalize_item({"title": "Panel", "amount": "n/a"})["quantity"] is None
    assert normalize_item({"name": "", "description": "Fire alarm"})["name"] == "Fire alarm"
    assert normalize_item({})["category"] == "other"


def test_issue_defaults():
    issue = normalize_issue({"issue": "Missing GFCI near sink"}, "anthropic")
    assert issue["description"] == "Missing GFCI near sink"
    assert issue["severity"] == "info"
    assert issue["category"] == "general"
    assert issue["ai_provider"] == "anthropic"
