"""Observability helpers."""

from recorder.observability.otel import (
    initialize,
    shutdown,
    start_span,
    record_classification,
    record_store_failure,
    record_search,
)

__all__ = [
    "initialize",
    "shutdown",
    "start_span",
    "record_classification",
    "record_store_failure",
    "record_search",
]
