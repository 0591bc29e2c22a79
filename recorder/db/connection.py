"""Database connection factory.

Provides a lazily created, process-wide async SQLite connection in WAL mode.
Callers arriving while the first connect is still in progress wait on the
same initialization instead of opening a second connection.
"""
from __future__ import annotations

import asyncio
import logging
import sqlite3
from pathlib import Path

import aiosqlite

from recorder import config
from recorder.db.sqlite_migrations import run_migrations
from recorder.errors import StoreUnavailable

logger = logging.getLogger("recorder.db")

_connection: aiosqlite.Connection | None = None
_init_lock: asyncio.Lock | None = None


def _casefold(value):
    return value.casefold() if isinstance(value, str) else value


def _get_lock() -> asyncio.Lock:
    global _init_lock
    if _init_lock is None:
        _init_lock = asyncio.Lock()
    return _init_lock


async def open_connection(db_path: str | Path, timeout: float | None = None) -> aiosqlite.Connection:
    """Open, configure and migrate a connection to ``db_path``."""
    timeout = config.DB_TIMEOUT_SECONDS if timeout is None else timeout
    target = str(db_path)
    if target != ":memory:":
        Path(target).parent.mkdir(parents=True, exist_ok=True)

    conn = await aiosqlite.connect(target, timeout=timeout)
    try:
        conn.row_factory = aiosqlite.Row
        # WAL lets readers proceed while an append is being committed
        await conn.execute("PRAGMA journal_mode=WAL")
        await conn.execute(f"PRAGMA busy_timeout={int(timeout * 1000)}")
        # SQLite lower() only folds ASCII
        await conn.create_function("casefold", 1, _casefold, deterministic=True)
        await run_migrations(conn)
    except BaseException:
        await conn.close()
        raise
    return conn


async def get_connection() -> aiosqlite.Connection:
    """Return the singleton database connection, creating it if needed."""
    global _connection
    if _connection is not None:
        return _connection

    async with _get_lock():
        if _connection is not None:
            return _connection
        try:
            _connection = await asyncio.wait_for(
                open_connection(config.DB_PATH),
                timeout=config.DB_TIMEOUT_SECONDS,
            )
        except (OSError, sqlite3.Error, asyncio.TimeoutError) as e:
            logger.error(f"Database initialization failed for {config.DB_PATH}: {e}")
            raise StoreUnavailable("initialize", str(e)) from e
        logger.info(f"Database connection established: {config.DB_PATH}")
        return _connection


async def close_connection() -> None:
    """Close the database connection."""
    global _connection, _init_lock
    if _connection is not None:
        await _connection.close()
        _connection = None
        logger.info("Database connection closed")
    _init_lock = None


def is_connected() -> bool:
    return _connection is not None
