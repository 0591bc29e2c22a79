"""Database schema creation and versioning.

Uses IF NOT EXISTS for idempotent runs. Records are append-only: the schema
has no columns that are ever rewritten after insert.
"""
from __future__ import annotations

import logging

import aiosqlite

logger = logging.getLogger("recorder.db")

SCHEMA_VERSION = 1

_TABLES = """
-- ── Schema version tracking ────────────────────────────────────────
CREATE TABLE IF NOT EXISTS schema_version (
    version   INTEGER NOT NULL,
    applied   TEXT NOT NULL DEFAULT (datetime('now'))
);

-- ── Dialogue records ───────────────────────────────────────────────
CREATE TABLE IF NOT EXISTS dialogue_records (
    seq          INTEGER PRIMARY KEY AUTOINCREMENT,
    id           TEXT NOT NULL UNIQUE,
    session_id   TEXT NOT NULL,
    timestamp    TEXT NOT NULL,
    role         TEXT NOT NULL CHECK (role IN ('USER', 'AGENT_BUILDER', 'AGENT_CHAT')),
    kind         TEXT NOT NULL CHECK (kind IN ('DIALOGUE', 'FILE_CHANGE', 'UNDO', 'REDO')),
    text         TEXT NOT NULL,
    file_path    TEXT,
    change_kind  TEXT,
    before_text  TEXT,
    after_text   TEXT,
    detail       TEXT
);

CREATE INDEX IF NOT EXISTS idx_records_session   ON dialogue_records(session_id, timestamp);
CREATE INDEX IF NOT EXISTS idx_records_timestamp ON dialogue_records(timestamp);
"""


async def run_migrations(db: aiosqlite.Connection) -> None:
    """Create all tables. Idempotent."""
    try:
        async with db.execute("SELECT MAX(version) FROM schema_version") as cur:
            row = await cur.fetchone()
            current_version = row[0] if row and row[0] else 0
    except aiosqlite.OperationalError:
        current_version = 0

    if current_version >= SCHEMA_VERSION:
        logger.info(f"Schema is up to date (version {current_version})")
        return

    logger.info(f"Running migrations: {current_version} → {SCHEMA_VERSION}")
    await db.executescript(_TABLES)
    await db.execute("INSERT INTO schema_version (version) VALUES (?)", (SCHEMA_VERSION,))
    await db.commit()
