"""Repository package for database access."""

from .records import SqliteRecordRepository, record_from_row

__all__ = [
    "SqliteRecordRepository",
    "record_from_row",
]
