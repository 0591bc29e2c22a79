"""Flatten records into a portable JSON export."""
from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Iterable

from recorder.date_utils import utc_now
from recorder.models import Record

logger = logging.getLogger("recorder.export")

_EXPORT_FIELDS = (
    "id", "sessionId", "timestamp", "kind", "role", "text",
    "filePath", "changeKind", "beforeText", "afterText", "detail",
)


def flatten_record(record: Record) -> dict[str, Any]:
    """Every export field present on every row; absent ones are null."""
    data = record.model_dump(mode="json")
    return {key: data.get(key) for key in _EXPORT_FIELDS}


def export_payload(records: Iterable[Record]) -> dict[str, Any]:
    rows = [flatten_record(r) for r in records]
    return {
        "exportTime": utc_now().isoformat(),
        "totalRecords": len(rows),
        "records": rows,
    }


def write_export(path: str | Path, records: Iterable[Record]) -> dict[str, Any]:
    payload = export_payload(records)
    target = Path(path).expanduser()
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_text(json.dumps(payload, ensure_ascii=False, indent=2), encoding="utf-8")
    logger.info(f"Exported {payload['totalRecords']} records to {target}")
    return payload
