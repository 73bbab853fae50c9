from typing import Dict, List

from storage.db import get_connection

REQUIRED_SCHEMA: Dict[str, List[str]] = {
    "plan_text_chunks": [
        "id",
        "document_id",
        "page_number",
        "snippet_text",
        "metadata",
        "embedding",
    ],
}

REQUIRED_FUNCTIONS = ["match_plan_text_chunks"]


def check_schema_contract() -> None:
    missing: Dict[str, List[str]] = {}
    with get_connection() as conn:
        with conn.cursor() as cursor:
            for table, columns in REQUIRED_SCHEMA.items():
                cursor.execute(
                    """
                    SELECT column_name
                    FROM information_schema.columns
                    WHERE table_schema = 'public'
                      AND table_name = %s
                    """,
                    (table,),
                )
                existing = {row[0] for row in cursor.fetchall()}
                missing_cols = [col for col in columns if col not in existing]
                if missing_cols:
                    missing[table] = missing_cols
            cursor.execute(
                """
                SELECT routine_name
                FROM information_schema.routines
                WHERE routine_schema = 'public'
                """
            )
            routines = {row[0] for row in cursor.fetchall()}
    missing_functions = [name for name in REQUIRED_FUNCTIONS if name not in routines]
    if missing or missing_functions:
        details = "; ".join(
            f"{table}: {', '.join(cols)}" for table, cols in missing.items()
        )
        if missing_functions:
            details = "; ".join(
                part for part in [details, f"functions: {', '.join(missing_functions)}"] if part
            )
        raise RuntimeError(
            "Schema contract check failed. Missing "
            f"{details}. Remediation: run `python -m storage.setup_db` "
            "to apply the schema."
        )
