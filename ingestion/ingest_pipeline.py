import hashlib
import logging
import os
import uuid
from typing import List, Optional

from core.config import settings
from core.contracts import (
    CONTENT_VISION_DESCRIPTION,
    ChunkCandidate,
    IngestionResult,
    PageText,
    VisionDescription,
)
from core.errors import ExtractionError
from core.logging import configure_logging
from embedding import indexer
from ingestion.chunking import chunk_page_text
from ingestion.download import BlobStore, download_pdf
from ingestion.extraction import METHOD_NONE, ExtractionTierManager
from ingestion.pdf_analysis import select_vision_pages
from ingestion.sheet_index import build_sheet_index
from ingestion.vision import VisionDescriber, vision_enabled
from storage.schema_contract import check_schema_contract

logger = logging.getLogger(__name__)


def ingest_pdf(pdf_path: str, document_id: Optional[str] = None) -> IngestionResult:
    """Ingest a local PDF. The document id defaults to a hash of the file contents."""
    configure_logging()
    check_schema_contract()
    if not os.path.exists(pdf_path):
        raise FileNotFoundError(pdf_path)
    with open(pdf_path, "rb") as handle:
        pdf_bytes = handle.read()
    if document_id is None:
        sha256 = hashlib.sha256(pdf_bytes).hexdigest()
        document_id = str(uuid.uuid5(uuid.NAMESPACE_URL, sha256))
    return ingest_pdf_bytes(document_id, pdf_bytes)


def ingest_from_store(document_id: str, store: BlobStore, path: str) -> IngestionResult:
    configure_logging()
    pdf_bytes = download_pdf(store, path)
    logger.info("Downloaded %s (%d bytes) for %s", path, len(pdf_bytes), document_id)
    return ingest_pdf_bytes(document_id, pdf_bytes)


def ingest_pdf_bytes(
    document_id: str,
    pdf_bytes: bytes,
    extractor: Optional[ExtractionTierManager] = None,
    embedder=None,
    describer: Optional[VisionDescriber] = None,
) -> IngestionResult:
    """Extract, chunk, embed and store one plan. Re-running replaces prior chunks.

    An extraction that yields no text is not an error here: the document's
    chunks are cleared and the result carries the warnings instead.
    """
    extractor = extractor or ExtractionTierManager()
    try:
        extraction = extractor.extract(pdf_bytes)
    except ExtractionError as exc:
        logger.warning("Extraction failed for %s: %s", document_id, exc)
        indexed = indexer.reindex(document_id, [], embedder=embedder, warnings=exc.warnings)
        return IngestionResult(
            document_id=document_id,
            method=METHOD_NONE,
            chunk_count=0,
            page_count=0,
            warnings=indexed.warnings,
        )

    warnings = list(extraction.warnings)
    candidates = build_text_candidates(document_id, extraction.pages)

    descriptions: List[VisionDescription] = []
    if describer is not None or vision_enabled():
        try:
            describer = describer or VisionDescriber()
            page_numbers = select_vision_pages(pdf_bytes, settings.vision_max_pages)
            descriptions, vision_warnings = describer.describe_pages(pdf_bytes, page_numbers)
            warnings.extend(vision_warnings)
        except Exception as exc:
            logger.warning("Vision descriptions failed for %s: %s", document_id, exc)
            warnings.append(f"Vision descriptions failed: {exc}")
        candidates.extend(
            build_vision_candidates(document_id, descriptions, len(extraction.pages))
        )

    indexed = indexer.reindex(document_id, candidates, embedder=embedder, warnings=warnings)
    logger.info(
        "Ingested %s via %s: %d pages, %d chunks, %d vision descriptions",
        document_id,
        extraction.method,
        extraction.page_count,
        indexed.chunk_count,
        len(descriptions),
    )
    return IngestionResult(
        document_id=document_id,
        method=extraction.method,
        chunk_count=indexed.chunk_count,
        page_count=extraction.page_count,
        warnings=indexed.warnings,
        vision_description_count=len(descriptions),
    )


def build_text_candidates(document_id: str, pages: List[PageText]) -> List[ChunkCandidate]:
    sheets = build_sheet_index(pages)
    candidates: List[ChunkCandidate] = []
    for page in pages:
        candidates.extend(
            chunk_page_text(
                page.text,
                document_id=document_id,
                page_number=page.page_number,
                page_index=page.page_number - 1,
                total_pages=len(pages),
                sheet_meta=sheets.get(page.page_number),
            )
        )
    return candidates


def build_vision_candidates(
    document_id: str, descriptions: List[VisionDescription], total_pages: int
) -> List[ChunkCandidate]:
    candidates: List[ChunkCandidate] = []
    for description in descriptions:
        extra = {"page_type": description.page_type} if description.page_type else None
        candidates.extend(
            chunk_page_text(
                description.description,
                document_id=document_id,
                page_number=description.page_number,
                page_index=description.page_number - 1,
                total_pages=total_pages,
                content_type=CONTENT_VISION_DESCRIPTION,
                extra_metadata=extra,
            )
        )
    return candidates
