import logging
from typing import Iterable, List, Optional

from core.contracts import RetrievedChunk
from embedding.model_registry import get_embedder
from storage import repo
from storage.db import get_connection

logger = logging.getLogger(__name__)

DEFAULT_LIMIT = 6
SAMPLE_LIMIT = 12
ROWS_PER_PAGE = 12


def retrieve(
    document_id: str,
    query: str,
    limit: int = DEFAULT_LIMIT,
    embedder=None,
) -> List[RetrievedChunk]:
    query = (query or "").strip()
    if not query:
        return []
    with get_connection() as conn:
        embedded = repo.count_embedded_chunks(conn, document_id)
    if embedded == 0:
        logger.info("Document %s has no embedded chunks; skipping query embedding", document_id)
        return []

    embedder = embedder or get_embedder()
    query_embedding = embedder.embed_texts([query])[0]
    with get_connection() as conn:
        results = repo.match_chunks(conn, document_id, query_embedding, limit)
    return sorted(results, key=lambda chunk: chunk.similarity, reverse=True)[:limit]


def fetch_by_pages(
    document_id: str,
    page_numbers: Iterable[int],
    limit: Optional[int] = None,
) -> List[RetrievedChunk]:
    pages = sorted({int(page) for page in page_numbers if page is not None})
    if not pages:
        return []
    row_limit = limit or max(len(pages) * ROWS_PER_PAGE, ROWS_PER_PAGE)
    with get_connection() as conn:
        return repo.fetch_chunks_by_pages(conn, document_id, pages, row_limit)


def fetch_sample(document_id: str, limit: int = SAMPLE_LIMIT) -> List[RetrievedChunk]:
    with get_connection() as conn:
        return repo.fetch_first_chunks(conn, document_id, limit)
