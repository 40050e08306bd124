"""SQLite schema management (code-first approach)."""

import logging

from flockcare.core import db_client


logger = logging.getLogger(__name__)


# Central list of all collections in the schema
COLLECTIONS = [
    "batches",
    "completions",
]


_TABLES: dict[str, str] = {
    "batches": """
        CREATE TABLE IF NOT EXISTS batches (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            batch_number TEXT NOT NULL,
            entry_date TEXT NOT NULL,
            status TEXT NOT NULL DEFAULT 'active',
            created TEXT NOT NULL,
            updated TEXT NOT NULL
        )
    """,
    "completions": """
        CREATE TABLE IF NOT EXISTS completions (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            batch_id TEXT NOT NULL,
            instance_id TEXT NOT NULL,
            definition_id TEXT NOT NULL,
            day_of_age INTEGER NOT NULL,
            completed INTEGER NOT NULL DEFAULT 1,
            completed_at TEXT,
            completed_by TEXT,
            notes TEXT NOT NULL DEFAULT '',
            cleared_at TEXT,
            created TEXT NOT NULL,
            updated TEXT NOT NULL
        )
    """,
}

_INDEXES: list[str] = [
    "CREATE UNIQUE INDEX IF NOT EXISTS idx_completion_key ON completions (batch_id, instance_id)",
    "CREATE INDEX IF NOT EXISTS idx_completion_batch_day ON completions (batch_id, day_of_age)",
    "CREATE INDEX IF NOT EXISTS idx_batch_status ON batches (status)",
]


async def init_db(*, db_path: str | None = None) -> None:
    """Create all tables and indexes if they do not exist."""
    conn = await db_client.get_connection(db_path=db_path)

    for collection in COLLECTIONS:
        await conn.execute(_TABLES[collection])
        logger.info("Ensured table", extra={"collection": collection})

    for statement in _INDEXES:
        await conn.execute(statement)

    await conn.commit()
    logger.info("Schema initialized", extra={"db_path": str(db_client.get_db_path(db_path))})
