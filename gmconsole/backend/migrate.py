"""Create the JSONB records table and seed the players-locked setting."""

from __future__ import annotations

import argparse
import json
import logging
from pathlib import Path

from gmconsole.backend.config import configure_logging, load_settings
from gmconsole.backend.errors import RepositoryError
from gmconsole.backend.lock import PLAYERS_LOCKED_KEY
from gmconsole.backend.models import APP_SETTINGS

logger = logging.getLogger(__name__)

SCHEMA_PATH = Path(__file__).with_name("db_schema.sql")

SEED_LOCK_SQL = """
INSERT INTO records (collection, id, data)
VALUES (%s, %s, %s::jsonb)
ON CONFLICT (collection, id) DO NOTHING
"""


def seed_lock_row() -> tuple[str, str, str]:
    data = {"id": PLAYERS_LOCKED_KEY, "key": PLAYERS_LOCKED_KEY, "value": {"locked": False, "reason": None}}
    return APP_SETTINGS, PLAYERS_LOCKED_KEY, json.dumps(data)


def apply_schema(database_url: str, schema_sql: str) -> None:
    import psycopg

    try:
        with psycopg.connect(database_url) as conn:
            with conn.cursor() as cur:
                cur.execute(schema_sql)
                cur.execute(SEED_LOCK_SQL, seed_lock_row())
            conn.commit()
    except psycopg.Error as exc:
        raise RepositoryError(f"Migration failed: {exc}") from exc


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Apply the GM console PostgreSQL schema")
    parser.add_argument("--print-sql", action="store_true", help="print the schema instead of applying it")
    args = parser.parse_args(argv)

    settings = load_settings()
    configure_logging(settings.log_level)
    schema_sql = SCHEMA_PATH.read_text(encoding="utf-8")
    if args.print_sql:
        print(schema_sql)
        return 0
    if not settings.database_url:
        logger.error("GMCONSOLE_DATABASE_URL is required for migration")
        return 1

    apply_schema(settings.database_url, schema_sql)
    logger.info("Schema applied from %s", SCHEMA_PATH.name)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
