from typing import Iterable, List, Sequence, Tuple

import numpy as np
from psycopg2.extras import Json, execute_values
from pgvector.psycopg2 import register_vector

from core.contracts import ChunkCandidate, RetrievedChunk

_CHUNK_COLUMNS = "id, document_id, page_number, snippet_text, metadata"


def delete_chunks(conn, document_id: str) -> int:
    with conn.cursor() as cursor:
        cursor.execute(
            "DELETE FROM plan_text_chunks WHERE document_id = %s",
            (document_id,),
        )
        return cursor.rowcount


def insert_chunks(
    conn, rows: Iterable[Tuple[ChunkCandidate, Sequence[float]]]
) -> List[str]:
    """Insert (candidate, embedding) pairs and return the new row ids."""
    register_vector(conn)
    values = [
        (
            candidate.document_id,
            candidate.page_number,
            candidate.snippet_text,
            Json(candidate.metadata),
            np.asarray(embedding, dtype=np.float32),
        )
        for candidate, embedding in rows
    ]
    if not values:
        return []
    with conn.cursor() as cursor:
        inserted = execute_values(
            cursor,
            """
            INSERT INTO plan_text_chunks (
                document_id,
                page_number,
                snippet_text,
                metadata,
                embedding
            )
            VALUES %s
            RETURNING id
            """,
            values,
            fetch=True,
        )
    return [str(row[0]) for row in inserted]


def count_chunks(conn, document_id: str) -> int:
    with conn.cursor() as cursor:
        cursor.execute(
            "SELECT COUNT(*) FROM plan_text_chunks WHERE document_id = %s",
            (document_id,),
        )
        row = cursor.fetchone()
    return int(row[0] if row else 0)


def count_embedded_chunks(conn, document_id: str) -> int:
    with conn.cursor() as cursor:
        cursor.execute(
            """
            SELECT COUNT(*) FROM plan_text_chunks
            WHERE document_id = %s AND embedding IS NOT NULL
            """,
            (document_id,),
        )
        row = cursor.fetchone()
    return int(row[0] if row else 0)


def count_missing_embeddings(conn, chunk_ids: Sequence[str]) -> int:
    if not chunk_ids:
        return 0
    with conn.cursor() as cursor:
        cursor.execute(
            """
            SELECT COUNT(*) FROM plan_text_chunks
            WHERE id = ANY(%s::uuid[]) AND embedding IS NULL
            """,
            (list(chunk_ids),),
        )
        row = cursor.fetchone()
    return int(row[0] if row else 0)


def match_chunks(
    conn, document_id: str, query_embedding: Sequence[float], limit: int
) -> List[RetrievedChunk]:
    register_vector(conn)
    with conn.cursor() as cursor:
        cursor.execute(
            f"""
            SELECT {_CHUNK_COLUMNS}, similarity
            FROM match_plan_text_chunks(%s, %s::vector, %s)
            """,
            (document_id, np.asarray(query_embedding, dtype=np.float32), limit),
        )
        rows = cursor.fetchall()
    return _rows_to_chunks(rows)


def fetch_chunks_by_pages(
    conn, document_id: str, page_numbers: Sequence[int], limit: int
) -> List[RetrievedChunk]:
    with conn.cursor() as cursor:
        cursor.execute(
            f"""
            SELECT {_CHUNK_COLUMNS}, 0.0 AS similarity
            FROM plan_text_chunks
            WHERE document_id = %s
              AND page_number = ANY(%s)
            ORDER BY page_number, id
            LIMIT %s
            """,
            (document_id, list(page_numbers), limit),
        )
        rows = cursor.fetchall()
    return _rows_to_chunks(rows)


def fetch_first_chunks(conn, document_id: str, limit: int) -> List[RetrievedChunk]:
    with conn.cursor() as cursor:
        cursor.execute(
            f"""
            SELECT {_CHUNK_COLUMNS}, 0.0 AS similarity
            FROM plan_text_chunks
            WHERE document_id = %s
            ORDER BY page_number NULLS LAST, created_at
            LIMIT %s
            """,
            (document_id, limit),
        )
        rows = cursor.fetchall()
    return _rows_to_chunks(rows)


def _rows_to_chunks(rows) -> List[RetrievedChunk]:
    results: List[RetrievedChunk] = []
    for row in rows:
        results.append(
            RetrievedChunk(
                chunk_id=str(row[0]),
                document_id=str(row[1]),
                page_number=int(row[2]) if row[2] is not None else None,
                snippet_text=row[3],
                metadata=dict(row[4] or {}),
                similarity=float(row[5]),
            )
        )
    return results
