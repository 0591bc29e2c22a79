"""Error types raised by the store, ranker and session aggregator."""
from __future__ import annotations


class RecorderError(Exception):
    """Base class for recorder failures."""


class StoreUnavailable(RecorderError):
    """Persistence or retrieval could not complete."""

    def __init__(self, operation: str, reason: str = ""):
        self.operation = operation
        self.reason = reason
        message = f"Record store unavailable during {operation}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


class SessionNotFound(RecorderError):
    def __init__(self, session_id: str):
        self.session_id = session_id
        super().__init__(f"Session {session_id} not found")


class InvalidQuery(RecorderError):
    """A search query could not be constructed (e.g. malformed time bounds)."""
