"""Per-session summaries and detail views derived from stored records."""
from __future__ import annotations

from datetime import datetime
from typing import Optional

from recorder.date_utils import format_duration, format_session_name, parse_timestamp
from recorder.db.factory import get_record_repository
from recorder.db.repositories.records import SqliteRecordRepository
from recorder.errors import SessionNotFound
from recorder.models import SessionDetail, SessionSummary


def _elapsed_seconds(first: datetime, last: datetime) -> float:
    return max(0.0, (last - first).total_seconds())


def _summary_from_stats(stats: dict) -> SessionSummary:
    first = parse_timestamp(stats["first_ts"])
    last = parse_timestamp(stats["last_ts"])
    seconds = _elapsed_seconds(first, last)
    return SessionSummary(
        sessionId=stats["session_id"],
        sessionName=format_session_name(first),
        recordCount=stats["record_count"],
        firstTimestamp=first,
        lastTimestamp=last,
        duration=format_duration(seconds),
        durationSeconds=seconds,
        distinctRoles=stats["roles"],
    )


class SessionAggregator:
    """Read-only view over the record store, grouped by session."""

    def __init__(self, repo: Optional[SqliteRecordRepository] = None):
        self._repo = repo

    async def _repository(self) -> SqliteRecordRepository:
        if self._repo is None:
            self._repo = await get_record_repository()
        return self._repo

    async def list_sessions(self) -> list[str]:
        repo = await self._repository()
        return await repo.list_session_ids()

    async def session_summaries(self) -> list[SessionSummary]:
        repo = await self._repository()
        return [_summary_from_stats(stats) for stats in await repo.session_stats()]

    async def session_detail(self, session_id: str) -> SessionDetail:
        repo = await self._repository()
        records = await repo.get_by_session(session_id)
        if not records:
            raise SessionNotFound(session_id)

        start = records[0].timestamp
        end = records[-1].timestamp
        seconds = _elapsed_seconds(start, end)
        return SessionDetail(
            sessionId=session_id,
            sessionName=format_session_name(start),
            records=records,
            totalRecords=len(records),
            duration=format_duration(seconds),
            durationSeconds=seconds,
            distinctRoles=sorted({r.role for r in records}),
            startTime=start,
            endTime=end,
        )
