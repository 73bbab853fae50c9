import logging
from typing import List, Optional

from core.config import settings
from core.contracts import ChunkCandidate, IndexingResult
from core.errors import IndexingError
from embedding.model_registry import get_embedder
from storage import repo
from storage.db import get_connection

logger = logging.getLogger(__name__)


def reindex(
    document_id: str,
    candidates: List[ChunkCandidate],
    embedder=None,
    warnings: Optional[List[str]] = None,
) -> IndexingResult:
    """Replace every stored chunk of a document with freshly embedded candidates.

    Embeddings are computed before anything is deleted, and the old rows are
    removed before the new ones are written, so an interrupted run leaves the
    document with no chunks rather than a mix of two generations. Callers must
    not reindex the same document concurrently.
    """
    warnings = list(warnings or [])
    page_count = len({c.page_number for c in candidates if c.page_number is not None})

    if not candidates:
        with get_connection() as conn:
            deleted = repo.delete_chunks(conn, document_id)
            conn.commit()
        logger.info("No chunk candidates for %s; cleared %d stale chunks", document_id, deleted)
        return IndexingResult(chunk_count=0, page_count=page_count, warnings=warnings)

    embedder = embedder or get_embedder()
    embeddings = embedder.embed_texts([c.snippet_text for c in candidates])
    if len(embeddings) != len(candidates):
        raise IndexingError(
            f"Embedder returned {len(embeddings)} vectors for {len(candidates)} chunks."
        )

    batch_size = max(1, settings.insert_batch_size)
    rows = list(zip(candidates, embeddings))
    inserted_ids: List[str] = []
    with get_connection() as conn:
        deleted = repo.delete_chunks(conn, document_id)
        conn.commit()
        logger.info("Deleted %d existing chunks for %s", deleted, document_id)
        for start in range(0, len(rows), batch_size):
            inserted_ids.extend(repo.insert_chunks(conn, rows[start : start + batch_size]))
            conn.commit()
        missing = repo.count_missing_embeddings(conn, inserted_ids)

    embedded = len(inserted_ids) - missing
    logger.info(
        "Inserted %d chunks for %s (%d embedded, %d missing embeddings)",
        len(inserted_ids),
        document_id,
        embedded,
        missing,
    )
    if embedded <= 0:
        raise IndexingError(
            f"No chunks were embedded for document {document_id}; "
            f"{len(candidates)} candidates, {missing} rows without embeddings."
        )
    if embedded < len(candidates):
        message = (
            f"Only {embedded} of {len(candidates)} chunks were stored with embeddings."
        )
        logger.warning(message)
        warnings.append(message)

    return IndexingResult(chunk_count=embedded, page_count=page_count, warnings=warnings)
