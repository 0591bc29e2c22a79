"""Repository factory bound to the process-wide connection."""
from __future__ import annotations

from recorder.db import connection
from recorder.db.repositories.records import SqliteRecordRepository


async def get_record_repository() -> SqliteRecordRepository:
    """Wait for the shared connection to be ready and wrap it in a repository."""
    db = await connection.get_connection()
    return SqliteRecordRepository(db)
