import logging
import os

from psycopg2 import errors

from core.config import settings
from core.logging import configure_logging
from storage.db import connect_direct

logger = logging.getLogger(__name__)


def load_schema_sql() -> str:
    schema_path = os.path.join(os.path.dirname(__file__), "schema.sql")
    with open(schema_path, "r", encoding="utf-8") as handle:
        sql = handle.read()
    return sql.replace("__EMBEDDING_DIM__", str(settings.embedding_dim))


def run_setup() -> None:
    conn = connect_direct()
    conn.autocommit = True
    try:
        with conn.cursor() as cursor:
            cursor.execute(load_schema_sql())
        logger.info("Applied plan chunk schema")
    except errors.UndefinedFile as exc:
        raise RuntimeError(
            "pgvector is not installed on this PostgreSQL instance. "
            "Install it and re-run setup."
        ) from exc
    finally:
        conn.close()


if __name__ == "__main__":
    configure_logging()
    run_setup()
