"""SQLite implementation of the append-only record store."""
from __future__ import annotations

import sqlite3
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Iterator

import aiosqlite

from recorder.date_utils import format_storage_timestamp
from recorder.errors import StoreUnavailable
from recorder.models import Record, record_adapter

_COLUMNS = (
    "id, session_id, timestamp, role, kind, text, "
    "file_path, change_kind, before_text, after_text, detail"
)

# Optional columns and the record field each one feeds.
_OPTIONAL_FIELDS = {
    "file_path": "filePath",
    "change_kind": "changeKind",
    "before_text": "beforeText",
    "after_text": "afterText",
    "detail": "detail",
}


@contextmanager
def _store_errors(operation: str) -> Iterator[None]:
    try:
        yield
    except (sqlite3.Error, ValueError) as e:
        # aiosqlite raises ValueError once its connection is closed
        raise StoreUnavailable(operation, str(e)) from e


def _record_to_params(record: Record) -> tuple[Any, ...]:
    return (
        record.id,
        record.sessionId,
        format_storage_timestamp(record.timestamp),
        record.role,
        record.kind,
        record.text,
        getattr(record, "filePath", None),
        getattr(record, "changeKind", None),
        getattr(record, "beforeText", None),
        getattr(record, "afterText", None),
        getattr(record, "detail", None),
    )


def record_from_row(row: Any) -> Record:
    data = dict(row)
    payload: dict[str, Any] = {
        "id": data["id"],
        "sessionId": data["session_id"],
        "timestamp": data["timestamp"],
        "role": data["role"],
        "kind": data["kind"],
        "text": data["text"],
    }
    for column, field_name in _OPTIONAL_FIELDS.items():
        if data.get(column) is not None:
            payload[field_name] = data[column]
    return record_adapter.validate_python(payload)


class SqliteRecordRepository:
    """Append-only record storage. There is intentionally no update or delete."""

    def __init__(self, db: aiosqlite.Connection):
        self.db = db

    async def append(self, record: Record) -> None:
        with _store_errors("append"):
            await self.db.execute(
                f"INSERT INTO dialogue_records ({_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                _record_to_params(record),
            )
            await self.db.commit()

    async def get_by_session(self, session_id: str) -> list[Record]:
        with _store_errors("get_by_session"):
            async with self.db.execute(
                "SELECT * FROM dialogue_records WHERE session_id = ? ORDER BY timestamp ASC, seq ASC",
                (session_id,),
            ) as cur:
                rows = await cur.fetchall()
        return [record_from_row(r) for r in rows]

    async def search(
        self,
        keyword: str = "",
        start_time: datetime | None = None,
        end_time: datetime | None = None,
    ) -> list[Record]:
        """Keyword + inclusive time-range narrowing, newest first."""
        clauses: list[str] = []
        params: list[Any] = []
        if keyword:
            clauses.append("instr(casefold(text), casefold(?)) > 0")
            params.append(keyword)
        if start_time is not None:
            clauses.append("timestamp >= ?")
            params.append(format_storage_timestamp(start_time))
        if end_time is not None:
            clauses.append("timestamp <= ?")
            params.append(format_storage_timestamp(end_time))

        query = "SELECT * FROM dialogue_records"
        if clauses:
            query += " WHERE " + " AND ".join(clauses)
        query += " ORDER BY timestamp DESC, seq DESC"

        with _store_errors("search"):
            async with self.db.execute(query, tuple(params)) as cur:
                rows = await cur.fetchall()
        return [record_from_row(r) for r in rows]

    async def all_records(self) -> list[Record]:
        return await self.search()

    async def list_session_ids(self) -> list[str]:
        """Distinct sessions, most recently active first."""
        with _store_errors("list_session_ids"):
            async with self.db.execute(
                """SELECT session_id, MAX(timestamp) AS last_ts, MAX(seq) AS last_seq
                   FROM dialogue_records
                   GROUP BY session_id
                   ORDER BY last_ts DESC, last_seq DESC"""
            ) as cur:
                rows = await cur.fetchall()
        return [r["session_id"] for r in rows]

    async def session_stats(self, session_id: str | None = None) -> list[dict]:
        """Per-session count, first/last timestamp and distinct roles."""
        query = """
            SELECT
                session_id,
                COUNT(*) AS record_count,
                MIN(timestamp) AS first_ts,
                MAX(timestamp) AS last_ts,
                MAX(seq) AS last_seq,
                GROUP_CONCAT(DISTINCT role) AS roles
            FROM dialogue_records
        """
        params: tuple[Any, ...] = ()
        if session_id is not None:
            query += " WHERE session_id = ?"
            params = (session_id,)
        query += " GROUP BY session_id ORDER BY last_ts DESC, last_seq DESC"

        with _store_errors("session_stats"):
            async with self.db.execute(query, params) as cur:
                rows = await cur.fetchall()
        return [
            {
                "session_id": r["session_id"],
                "record_count": r["record_count"] or 0,
                "first_ts": r["first_ts"],
                "last_ts": r["last_ts"],
                "roles": sorted(set((r["roles"] or "").split(",")) - {""}),
            }
            for r in rows
        ]

    async def count(self, session_id: str | None = None) -> int:
        with _store_errors("count"):
            if session_id:
                async with self.db.execute(
                    "SELECT COUNT(*) FROM dialogue_records WHERE session_id = ?", (session_id,)
                ) as cur:
                    row = await cur.fetchone()
            else:
                async with self.db.execute("SELECT COUNT(*) FROM dialogue_records") as cur:
                    row = await cur.fetchone()
        return row[0] if row else 0
