"""Dialogue listener: classifies observed output and appends records.

A listener owns one :class:`ListenerContext` (one session id per listener run);
every call may also take an explicit context so several observers can share a
listener without mixing sessions.
"""
from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Iterable, Optional

from recorder.classifier import (
    OUTCOME_ACCEPTED,
    OUTCOME_INVALID,
    Candidate,
    LineClassifier,
    lifecycle_candidate,
)
from recorder.date_utils import utc_now
from recorder.db.factory import get_record_repository
from recorder.db.repositories.records import SqliteRecordRepository
from recorder.errors import StoreUnavailable
from recorder.models import (
    ChangeKind,
    DialogueRecord,
    FileChangeRecord,
    LifecycleEvent,
    Record,
    RedoRecord,
    Role,
    UndoRecord,
)
from recorder.observability import record_classification, record_store_failure

logger = logging.getLogger("recorder.listener")


def new_session_id() -> str:
    return f"session_{uuid.uuid4().hex}"


def new_record_id() -> str:
    return f"record_{uuid.uuid4().hex}"


@dataclass(frozen=True)
class ListenerContext:
    session_id: str

    @classmethod
    def new(cls) -> "ListenerContext":
        return cls(session_id=new_session_id())


def build_dialogue_record(candidate: Candidate, context: ListenerContext, timestamp: datetime) -> DialogueRecord:
    return DialogueRecord(
        id=new_record_id(),
        sessionId=context.session_id,
        timestamp=timestamp,
        role=candidate.role,
        text=candidate.text,
    )


class DialogueListener:
    """Feeds lines and lifecycle events through the classifier into the store."""

    def __init__(
        self,
        repo: Optional[SqliteRecordRepository] = None,
        classifier: Optional[LineClassifier] = None,
        context: Optional[ListenerContext] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self._repo = repo
        self.classifier = classifier or LineClassifier()
        self.context = context or ListenerContext.new()
        self._clock = clock

    @property
    def session_id(self) -> str:
        return self.context.session_id

    async def _repository(self) -> SqliteRecordRepository:
        if self._repo is None:
            self._repo = await get_record_repository()
        return self._repo

    async def _persist(self, record: Record) -> Record | None:
        """Append a record; store failures are logged and the record dropped."""
        try:
            repo = await self._repository()
            await repo.append(record)
        except StoreUnavailable as e:
            record_store_failure(e.operation)
            logger.error(f"Failed to record {record.kind} for session {record.sessionId}: {e}")
            return None
        logger.debug(f"Recorded {record.role} {record.kind}: {record.text[:50]}")
        return record

    # ── Classified input ────────────────────────────────────────────

    def classify_line(self, line: str, context: Optional[ListenerContext] = None) -> DialogueRecord | None:
        """Classify without persisting; malformed input yields None, never raises."""
        ctx = context or self.context
        candidate, outcome = self.classifier.explain(line)
        record_classification(outcome, candidate.role if candidate else None)
        if candidate is None:
            logger.debug(f"Dropped line ({outcome}): {(line or '')[:50]}")
            return None
        return build_dialogue_record(candidate, ctx, self._clock())

    async def handle_line(self, line: str, context: Optional[ListenerContext] = None) -> Record | None:
        record = self.classify_line(line, context)
        if record is None:
            return None
        return await self._persist(record)

    async def handle_lines(self, lines: Iterable[str], context: Optional[ListenerContext] = None) -> list[Record]:
        """Classify a batch in order, then append the accepted records concurrently."""
        records = [r for r in (self.classify_line(line, context) for line in lines) if r is not None]
        if not records:
            return []
        persisted = await asyncio.gather(*(self._persist(r) for r in records))
        return [r for r in persisted if r is not None]

    async def handle_text(self, text: str, context: Optional[ListenerContext] = None) -> list[Record]:
        """Split a block of output into trimmed lines and handle each."""
        lines = [line.strip() for line in (text or "").splitlines()]
        return await self.handle_lines([line for line in lines if line], context)

    # ── Direct records (bypass the line pipeline) ───────────────────

    async def handle_event(self, event: LifecycleEvent, context: Optional[ListenerContext] = None) -> Record | None:
        candidate = lifecycle_candidate(event)
        if candidate is None:
            logger.debug(f"Lifecycle event {event.type} lacks template fields; ignored")
            return None
        record_classification(OUTCOME_ACCEPTED, candidate.role)
        ctx = context or self.context
        return await self._persist(build_dialogue_record(candidate, ctx, self._clock()))

    async def record_dialogue(self, role: Role, text: str, context: Optional[ListenerContext] = None) -> Record | None:
        """Record pre-attributed dialogue; the content still has to pass the validity gate."""
        content = (text or "").strip()
        if not self.classifier.is_valid_content(content):
            record_classification(OUTCOME_INVALID, role)
            logger.debug(f"Dropped {role} dialogue (invalid): {content[:50]}")
            return None
        record_classification(OUTCOME_ACCEPTED, role)
        ctx = context or self.context
        return await self._persist(build_dialogue_record(Candidate(role=role, text=content), ctx, self._clock()))

    async def record_file_change(
        self,
        file_path: str,
        change_kind: ChangeKind,
        after_text: str | None = None,
        before_text: str | None = None,
        context: Optional[ListenerContext] = None,
    ) -> Record | None:
        ctx = context or self.context
        record = FileChangeRecord(
            id=new_record_id(),
            sessionId=ctx.session_id,
            timestamp=self._clock(),
            role="USER",
            text=f"file {change_kind}: {file_path}",
            filePath=file_path,
            changeKind=change_kind,
            beforeText=before_text,
            afterText=after_text,
        )
        return await self._persist(record)

    async def record_undo(self, file_path: str, detail: str = "", context: Optional[ListenerContext] = None) -> Record | None:
        ctx = context or self.context
        record = UndoRecord(
            id=new_record_id(),
            sessionId=ctx.session_id,
            timestamp=self._clock(),
            role="USER",
            text=f"undo: {file_path}",
            filePath=file_path,
            detail=detail,
        )
        return await self._persist(record)

    async def record_redo(self, file_path: str, detail: str = "", context: Optional[ListenerContext] = None) -> Record | None:
        ctx = context or self.context
        record = RedoRecord(
            id=new_record_id(),
            sessionId=ctx.session_id,
            timestamp=self._clock(),
            role="USER",
            text=f"redo: {file_path}",
            filePath=file_path,
            detail=detail,
        )
        return await self._persist(record)
