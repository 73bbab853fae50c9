import fitz

from core import config
from core.contracts import ExtractionResult, IndexingResult, PageText, VisionDescription
from core.errors import ExtractionError
from embedding import indexer
from ingestion import ingest_pipeline


class FakeExtractor:
    def __init__(self, result=None, error=None):
        self.result = result
        self.error = error

    def extract(self, pdf_bytes):
        if self.error is not None:
            raise self.error
        return self.result


class FakeDescriber:
    def __init__(self):
        self.pages = None

    def describe_pages(self, pdf_bytes, page_numbers):
        self.pages = list(page_numbers)
        return (
            [VisionDescription(page_number=1, description="Floor Plan of level one.", page_type="Floor Plan")],
            ["Page 2: rate limited"],
        )


def _capture_reindex(monkeypatch):
    calls = []

    def fake_reindex(document_id, candidates, embedder=None, warnings=None):
        calls.append((document_id, list(candidates)))
        return IndexingResult(
            chunk_count=len(candidates),
            page_count=len({c.page_number for c in candidates}),
            warnings=list(warnings or []),
        )

    monkeypatch.setattr(indexer, "reindex", fake_reindex)
    return calls


def _blank_pdf(pages=2):
    doc = fitz.open()
    for _ in range(pages):
        doc.new_page()
    data = doc.tobytes()
    doc.close()
    return data


def test_failed_extraction_clears_chunks_and_reports(monkeypatch):
    calls = _capture_reindex(monkeypatch)
    extractor = FakeExtractor(
        error=ExtractionError("Extraction produced no text.", warnings=["Tier 1 extraction failed: boom"])
    )

    result = ingest_pipeline.ingest_pdf_bytes("doc-9", b"%PDF", extractor=extractor)

    assert calls == [("doc-9", [])]
    assert result.method == "none"
    assert result.chunk_count == 0
    assert result.warnings == ["Tier 1 extraction failed: boom"]


def test_text_pages_are_chunked_with_sheet_metadata(monkeypatch):
    monkeypatch.setattr(config.settings, "enable_vision_descriptions", False)
    calls = _capture_reindex(monkeypatch)
    extraction = ExtractionResult(
        method="tier1",
        pages=[
            PageText(page_number=1, text="T-001 COVER SHEET. Clinic renovation."),
            PageText(page_number=2, text="E-201 ELECTRICAL PLAN. Provide 42 receptacles."),
        ],
        warnings=[],
    )

    result = ingest_pipeline.ingest_pdf_bytes("doc-1", b"%PDF", extractor=FakeExtractor(extraction))

    candidates = calls[0][1]
    assert result.method == "tier1"
    assert result.page_count == 2
    assert result.chunk_count == len(candidates) == 2
    assert candidates[1].metadata["sheet_id"] == "E-201"
    assert candidates[1].metadata["sheet_discipline"] == "electrical"
    assert candidates[0].metadata["sheet_type"] == "title"


def test_vision_descriptions_become_chunks(monkeypatch):
    calls = _capture_reindex(monkeypatch)
    extraction = ExtractionResult(
        method="tier1",
        pages=[PageText(page_number=1, text=""), PageText(page_number=2, text="")],
        warnings=["Low text content"],
    )
    describer = FakeDescriber()

    result = ingest_pipeline.ingest_pdf_bytes(
        "doc-2", _blank_pdf(), extractor=FakeExtractor(extraction), describer=describer
    )

    assert describer.pages == [1, 2]
    candidates = calls[0][1]
    assert [c.metadata["content_type"] for c in candidates] == ["vision_description"]
    assert candidates[0].metadata["page_type"] == "Floor Plan"
    assert result.vision_description_count == 1
    assert result.warnings == ["Low text content", "Page 2: rate limited"]


def test_vision_chunks_share_page_index_with_text_chunks():
    pages = [
        PageText(page_number=1, text="T-001 TITLE SHEET. Riverside Clinic."),
        PageText(page_number=2, text="A-101 FIRST FLOOR PLAN. Provide 42 receptacles."),
        PageText(page_number=3, text="E-201 ELECTRICAL PLAN. Panel LP-1."),
    ]
    descriptions = [VisionDescription(page_number=3, description="Electrical plan with panel LP-1.")]

    text = ingest_pipeline.build_text_candidates("doc-3", pages)
    vision = ingest_pipeline.build_vision_candidates("doc-3", descriptions, total_pages=3)

    text_index = {c.page_number: c.metadata["chunk_page_index"] for c in text}
    assert vision[0].metadata["chunk_page_index"] == 2
    assert vision[0].metadata["chunk_page_index"] == text_index[3]
