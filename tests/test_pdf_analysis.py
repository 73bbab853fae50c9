import fitz

from ingestion.pdf_analysis import (
    DECISION_DESCRIBE,
    DECISION_TEXT_ONLY,
    select_vision_pages,
    triage_document,
)


def _plan_pdf():
    doc = fitz.open()
    blank = doc.new_page()
    blank.draw_rect(fitz.Rect(20, 20, 580, 800), color=(0, 0, 0), fill=(0, 0, 0))

    notes = doc.new_page()
    y = 72
    for line in range(12):
        notes.insert_text(
            (72, y),
            f"General note {line}: all work shall comply with the governing building code.",
        )
        y += 16
    data = doc.tobytes()
    doc.close()
    return data


def test_drawing_pages_are_selected_for_description():
    triage = triage_document(_plan_pdf())
    assert triage[1].decision == DECISION_DESCRIBE
    assert "low_text" in triage[1].reason_codes
    assert "high_image_coverage" in triage[1].reason_codes
    assert triage[2].decision == DECISION_TEXT_ONLY


def test_selection_is_capped():
    assert select_vision_pages(_plan_pdf(), max_pages=5) == [1]
    assert select_vision_pages(_plan_pdf(), max_pages=0) == []
