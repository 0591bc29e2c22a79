"""API routers for ingestion, search, sessions and export."""
from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, HTTPException, Query, Request
from pydantic import BaseModel, Field

from recorder.date_utils import parse_time_bound
from recorder.db.factory import get_record_repository
from recorder.db.repositories.records import SqliteRecordRepository
from recorder.errors import InvalidQuery, SessionNotFound, StoreUnavailable
from recorder.listener import DialogueListener
from recorder.models import (
    ChangeKind,
    LifecycleEvent,
    Record,
    RecordKind,
    Role,
    SearchQuery,
    SearchResult,
    SessionDetail,
    SessionSummary,
)
from recorder.services.export import export_payload
from recorder.services.search import SearchService
from recorder.services.sessions import SessionAggregator

logger = logging.getLogger("recorder.api")


class LinesRequest(BaseModel):
    lines: list[str] = Field(default_factory=list)


class FileChangeRequest(BaseModel):
    filePath: str = Field(..., min_length=1)
    changeKind: ChangeKind = "MODIFY"
    beforeText: Optional[str] = None
    afterText: Optional[str] = None


class EditOperationRequest(BaseModel):
    filePath: str = Field(..., min_length=1)
    detail: str = ""


class IngestResponse(BaseModel):
    received: int = 0
    recorded: int = 0
    records: list[Record] = Field(default_factory=list)


def _get_listener(request: Request) -> DialogueListener:
    listener = getattr(request.app.state, "listener", None)
    if not listener:
        raise HTTPException(status_code=503, detail="Listener not initialized")
    return listener


async def _repository() -> SqliteRecordRepository:
    try:
        return await get_record_repository()
    except StoreUnavailable as e:
        raise HTTPException(status_code=503, detail=str(e)) from e


def _ingested(received: int, records: list[Record | None]) -> IngestResponse:
    kept = [r for r in records if r is not None]
    return IngestResponse(received=received, recorded=len(kept), records=kept)


# ── Records router ──────────────────────────────────────────────────

records_router = APIRouter(prefix="/api/records", tags=["records"])


@records_router.post("/lines", response_model=IngestResponse)
async def ingest_lines(payload: LinesRequest, request: Request):
    """Classify raw output lines; rejected lines are silently dropped."""
    listener = _get_listener(request)
    lines = [line.strip() for line in payload.lines if line and line.strip()]
    records = await listener.handle_lines(lines)
    return _ingested(len(payload.lines), records)


@records_router.post("/events", response_model=IngestResponse)
async def ingest_event(event: LifecycleEvent, request: Request):
    listener = _get_listener(request)
    return _ingested(1, [await listener.handle_event(event)])


@records_router.post("/file-changes", response_model=IngestResponse)
async def ingest_file_change(payload: FileChangeRequest, request: Request):
    listener = _get_listener(request)
    record = await listener.record_file_change(
        payload.filePath, payload.changeKind,
        after_text=payload.afterText, before_text=payload.beforeText,
    )
    return _ingested(1, [record])


@records_router.post("/undo", response_model=IngestResponse)
async def ingest_undo(payload: EditOperationRequest, request: Request):
    listener = _get_listener(request)
    return _ingested(1, [await listener.record_undo(payload.filePath, payload.detail)])


@records_router.post("/redo", response_model=IngestResponse)
async def ingest_redo(payload: EditOperationRequest, request: Request):
    listener = _get_listener(request)
    return _ingested(1, [await listener.record_redo(payload.filePath, payload.detail)])


# ── Search router ───────────────────────────────────────────────────

search_router = APIRouter(prefix="/api/search", tags=["search"])


@search_router.get("", response_model=list[SearchResult])
async def search_records(
    keyword: str = Query("", description="Case-insensitive substring; empty matches everything"),
    startTime: str | None = Query(None, description="Inclusive ISO timestamp lower bound"),
    endTime: str | None = Query(None, description="Inclusive ISO timestamp upper bound; a bare date covers that whole day"),
    role: Role | None = Query(None, description="USER, AGENT_BUILDER or AGENT_CHAT"),
    kind: RecordKind | None = Query(None, description="Record kind"),
    fileExtension: str | None = Query(None, description="e.g. .py"),
):
    """Return records ordered by descending relevance."""
    try:
        query = SearchQuery(
            keyword=keyword,
            startTime=parse_time_bound(startTime, "startTime"),
            endTime=parse_time_bound(endTime, "endTime", end_of_day=True),
            role=role,
            kind=kind,
            fileExtension=fileExtension,
        )
        service = SearchService(await _repository())
        return await service.search(query)
    except InvalidQuery as e:
        raise HTTPException(status_code=400, detail=str(e)) from e
    except StoreUnavailable as e:
        logger.error(f"Search failed: {e}")
        raise HTTPException(status_code=503, detail=str(e)) from e


# ── Sessions router ─────────────────────────────────────────────────

sessions_router = APIRouter(prefix="/api/sessions", tags=["sessions"])


@sessions_router.get("", response_model=list[SessionSummary])
async def list_session_summaries():
    """Session summaries, most recently active first."""
    try:
        return await SessionAggregator(await _repository()).session_summaries()
    except StoreUnavailable as e:
        raise HTTPException(status_code=503, detail=str(e)) from e


@sessions_router.get("/ids", response_model=list[str])
async def list_session_ids():
    try:
        return await SessionAggregator(await _repository()).list_sessions()
    except StoreUnavailable as e:
        raise HTTPException(status_code=503, detail=str(e)) from e


@sessions_router.get("/{session_id}", response_model=SessionDetail)
async def get_session(session_id: str):
    """Return a single session with all of its records in time order."""
    try:
        return await SessionAggregator(await _repository()).session_detail(session_id)
    except SessionNotFound as e:
        raise HTTPException(status_code=404, detail=str(e)) from e
    except StoreUnavailable as e:
        raise HTTPException(status_code=503, detail=str(e)) from e


# ── Export router ───────────────────────────────────────────────────

export_router = APIRouter(prefix="/api/export", tags=["export"])


@export_router.get("")
async def export_records():
    try:
        records = await SearchService(await _repository()).fetch_all()
    except StoreUnavailable as e:
        raise HTTPException(status_code=503, detail=str(e)) from e
    return export_payload(records)
