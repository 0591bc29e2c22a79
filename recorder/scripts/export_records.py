#!/usr/bin/env python3
"""Export recorded dialogue to a JSON file.

Usage:
  python -m recorder.scripts.export_records records.json
  python -m recorder.scripts.export_records records.json --session session_abc123
  python -m recorder.scripts.export_records records.json --db /path/to/dialogue_records.db
"""
from __future__ import annotations

import argparse
import asyncio
from pathlib import Path

from recorder import config
from recorder.db.connection import open_connection
from recorder.db.repositories.records import SqliteRecordRepository
from recorder.errors import SessionNotFound
from recorder.services.export import write_export
from recorder.services.sessions import SessionAggregator


async def _export(db_path: Path, output: Path, session_id: str | None) -> int:
    db = await open_connection(db_path)
    try:
        repo = SqliteRecordRepository(db)
        if session_id:
            detail = await SessionAggregator(repo).session_detail(session_id)
            records = detail.records
        else:
            records = await repo.all_records()
        payload = write_export(output, records)
    finally:
        await db.close()
    return payload["totalRecords"]


def main() -> int:
    parser = argparse.ArgumentParser(description="Export recorded dialogue as JSON.")
    parser.add_argument("output", help="Destination JSON file")
    parser.add_argument("--session", default="", help="Only export this session id")
    parser.add_argument("--db", default=str(config.DB_PATH), help="SQLite database path")
    args = parser.parse_args()

    db_path = Path(args.db).expanduser()
    if not db_path.exists():
        print(f"DB not found: {db_path}")
        return 1

    try:
        total = asyncio.run(_export(db_path, Path(args.output), args.session or None))
    except SessionNotFound as e:
        print(str(e))
        return 1

    print(f"Exported {total} records to {args.output}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
