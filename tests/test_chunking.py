from core import config
from core.contracts import CONTENT_VISION_DESCRIPTION, SheetMeta
from ingestion.chunking import chunk_page_text, normalize_whitespace, split_into_sentences


def _sentence(word: str, count: int) -> str:
    return " ".join([word] * count) + "."


def test_chunks_never_exceed_max_length(monkeypatch):
    monkeypatch.setattr(config.settings, "max_chunk_char_length", 120)
    monkeypatch.setattr(config.settings, "min_chunk_char_length", 40)
    text = " ".join(
        [
            _sentence("conduit", 3),
            _sentence("receptacle", 30),
            "Short note.",
            _sentence("panel", 18),
            "x" * 400,
            _sentence("slab", 12),
        ]
    )
    chunks = chunk_page_text(text, "doc", 1, 0, 1)
    assert chunks
    assert all(len(chunk.snippet_text) <= 120 for chunk in chunks)


def test_small_buffer_is_appended_to_previous_chunk(monkeypatch):
    monkeypatch.setattr(config.settings, "max_chunk_char_length", 100)
    monkeypatch.setattr(config.settings, "min_chunk_char_length", 50)
    first = _sentence("alpha", 14)
    short = "Note twenty chars ok."
    last = _sentence("gamma", 14)

    chunks = chunk_page_text(f"{first} {short} {last}", "doc", 2, 1, 3)

    assert len(chunks) == 1
    assert chunks[0].snippet_text.startswith(f"{first} Note")
    assert len(chunks[0].snippet_text) <= 100


def test_sentences_pack_until_max(monkeypatch):
    monkeypatch.setattr(config.settings, "max_chunk_char_length", 100)
    monkeypatch.setattr(config.settings, "min_chunk_char_length", 10)
    text = " ".join(_sentence("beam", 8) for _ in range(6))
    chunks = chunk_page_text(text, "doc", 1, 0, 1)
    assert len(chunks) == 3
    assert [chunk.metadata["chunk_index"] for chunk in chunks] == [0, 1, 2]


def test_long_sentence_is_split_on_words():
    sentences = split_into_sentences("word " * 50, max_length=30)
    assert len(sentences) > 1
    assert all(len(sentence) <= 30 for sentence in sentences)
    assert all(not sentence.startswith(" ") for sentence in sentences)


def test_normalize_whitespace_strips_nulls():
    assert normalize_whitespace("  FLOOR\n\tPLAN\x00  ") == "FLOOR PLAN"


def test_empty_text_yields_no_chunks():
    assert chunk_page_text("   \n ", "doc", 1, 0, 1) == []


def test_sheet_metadata_is_attached():
    sheet = SheetMeta(
        page_number=3,
        sheet_id="E-201",
        title="ELECTRICAL PLAN",
        discipline="electrical",
        sheet_type="floor_plan",
    )
    chunks = chunk_page_text(
        "Panel LP-1 feeds circuits 1 through 12.",
        "doc-1",
        3,
        2,
        5,
        sheet_meta=sheet,
    )
    metadata = chunks[0].metadata
    assert chunks[0].document_id == "doc-1"
    assert chunks[0].page_number == 3
    assert metadata["sheet_id"] == "E-201"
    assert metadata["sheet_discipline"] == "electrical"
    assert metadata["content_type"] == "extracted_text"
    assert metadata["chunk_page_index"] == 2
    assert metadata["total_pages"] == 5


def test_vision_chunks_carry_content_type():
    chunks = chunk_page_text(
        "Floor Plan of the first floor.",
        "doc",
        4,
        0,
        6,
        content_type=CONTENT_VISION_DESCRIPTION,
        extra_metadata={"page_type": "Floor Plan"},
    )
    assert chunks[0].metadata["content_type"] == "vision_description"
    assert chunks[0].metadata["page_type"] == "Floor Plan"
