"""Pooled database access. Application code goes through get_connection()."""

from contextlib import contextmanager
from typing import Iterator, Optional

import psycopg2
from psycopg2 import pool

from core.config import settings

_POOL: Optional[pool.ThreadedConnectionPool] = None


def _get_pool() -> pool.ThreadedConnectionPool:
    global _POOL
    if _POOL is None:
        if not settings.database_url:
            raise RuntimeError("DATABASE_URL is required for database access.")
        _POOL = pool.ThreadedConnectionPool(
            minconn=1,
            maxconn=settings.db_pool_size,
            dsn=settings.database_url,
        )
    return _POOL


@contextmanager
def get_connection() -> Iterator[psycopg2.extensions.connection]:
    """Borrow a pooled connection; uncommitted work is rolled back on error."""
    conn = _get_pool().getconn()
    try:
        yield conn
    except Exception:
        conn.rollback()
        raise
    finally:
        _get_pool().putconn(conn)


def connect_direct() -> psycopg2.extensions.connection:
    """Open an unpooled connection. Only schema setup uses this."""
    if not settings.database_url:
        raise RuntimeError("DATABASE_URL is required for database access.")
    return psycopg2.connect(settings.database_url)


def _reset_for_testing() -> None:
    global _POOL
    if _POOL is not None:
        _POOL.closeall()
        _POOL = None
