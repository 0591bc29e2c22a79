"""Pydantic models for recorded dialogue, search and session views."""
from __future__ import annotations

from datetime import datetime
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

Role = Literal["USER", "AGENT_BUILDER", "AGENT_CHAT"]
RecordKind = Literal["DIALOGUE", "FILE_CHANGE", "UNDO", "REDO"]
ChangeKind = Literal["CREATE", "MODIFY", "DELETE", "RENAME"]

ROLES: tuple[str, ...] = ("USER", "AGENT_BUILDER", "AGENT_CHAT")
RECORD_KINDS: tuple[str, ...] = ("DIALOGUE", "FILE_CHANGE", "UNDO", "REDO")


# ── Record models ──────────────────────────────────────────────────

class _RecordBase(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    sessionId: str
    timestamp: datetime
    role: Role
    text: str


class DialogueRecord(_RecordBase):
    kind: Literal["DIALOGUE"] = "DIALOGUE"


class FileChangeRecord(_RecordBase):
    kind: Literal["FILE_CHANGE"] = "FILE_CHANGE"
    filePath: str
    changeKind: ChangeKind
    beforeText: Optional[str] = None
    afterText: Optional[str] = None


class UndoRecord(_RecordBase):
    kind: Literal["UNDO"] = "UNDO"
    filePath: str
    detail: str = ""


class RedoRecord(_RecordBase):
    kind: Literal["REDO"] = "REDO"
    filePath: str
    detail: str = ""


Record = Annotated[
    Union[DialogueRecord, FileChangeRecord, UndoRecord, RedoRecord],
    Field(discriminator="kind"),
]

record_adapter: TypeAdapter = TypeAdapter(Record)


def record_file_path(record: Record) -> str | None:
    """Return the file path carried by non-dialogue records, else None."""
    return getattr(record, "filePath", None)


# ── Lifecycle events ───────────────────────────────────────────────

LifecycleEventType = Literal[
    "terminal_opened",
    "terminal_closed",
    "terminal_interaction",
    "debug_session_started",
    "debug_session_stopped",
    "debug_output",
    "breakpoint_added",
    "breakpoint_removed",
]


class LifecycleEvent(BaseModel):
    type: LifecycleEventType
    name: str = ""
    filePath: Optional[str] = None
    line: Optional[int] = None  # 1-based
    functionName: Optional[str] = None
    output: Optional[str] = None


# ── Search models ──────────────────────────────────────────────────

class SearchQuery(BaseModel):
    keyword: str = ""
    startTime: Optional[datetime] = None
    endTime: Optional[datetime] = None
    role: Optional[Role] = None
    kind: Optional[RecordKind] = None
    fileExtension: Optional[str] = None


class SearchResult(BaseModel):
    record: Record
    relevance: float = Field(ge=0.0, le=1.0)
    highlights: list[str] = Field(default_factory=list)


# ── Session models ─────────────────────────────────────────────────

class SessionSummary(BaseModel):
    sessionId: str
    sessionName: str = ""
    recordCount: int = 0
    firstTimestamp: datetime
    lastTimestamp: datetime
    duration: str = ""
    durationSeconds: float = 0.0
    distinctRoles: list[Role] = Field(default_factory=list)


class SessionDetail(BaseModel):
    sessionId: str
    sessionName: str = ""
    records: list[Record] = Field(default_factory=list)
    totalRecords: int = 0
    duration: str = ""
    durationSeconds: float = 0.0
    distinctRoles: list[Role] = Field(default_factory=list)
    startTime: datetime
    endTime: datetime
