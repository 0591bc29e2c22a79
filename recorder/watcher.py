"""Output log watcher using watchfiles.

Tails the configured output files and hands every newly appended line to a
:class:`~recorder.listener.DialogueListener`.
"""
from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Optional

from watchfiles import Change, awatch

from recorder.listener import DialogueListener

logger = logging.getLogger("recorder.watcher")


class OutputWatcher:
    """Background tailer that feeds appended output lines to the listener.

    Only complete lines are consumed; a trailing partial line stays in the file
    until its newline arrives. A file that shrinks is treated as truncated and
    re-read from the start.
    """

    def __init__(self, listener: DialogueListener, paths: list[Path]):
        self.listener = listener
        self.paths = [Path(p).expanduser().resolve(strict=False) for p in paths]
        self._offsets: dict[Path, int] = {}
        self._task: Optional[asyncio.Task] = None
        self._stop_event: Optional[asyncio.Event] = None
        self._running = False

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self) -> None:
        if self._running:
            logger.warning("Output watcher already running")
            return
        if not self.paths:
            logger.info("No output paths configured, watcher not started")
            return

        for path in self.paths:
            # Start at the current end: only output produced from now on is recorded.
            self._offsets[path] = path.stat().st_size if path.exists() else 0

        self._running = True
        self._stop_event = asyncio.Event()
        self._task = asyncio.create_task(self._watch_loop())
        logger.info(f"Output watcher started for {len(self.paths)} file(s)")

    async def stop(self) -> None:
        self._running = False
        if self._stop_event:
            self._stop_event.set()
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("Output watcher stopped")

    def read_new_lines(self, path: Path) -> list[str]:
        """Return complete lines appended to ``path`` since the last read."""
        try:
            size = path.stat().st_size
        except FileNotFoundError:
            self._offsets[path] = 0
            return []

        offset = self._offsets.get(path, 0)
        if size < offset:
            logger.info(f"{path} was truncated, re-reading from start")
            offset = 0
        if size == offset:
            return []

        with path.open("rb") as fh:
            fh.seek(offset)
            chunk = fh.read(size - offset)

        newline = chunk.rfind(b"\n")
        if newline == -1:
            self._offsets[path] = offset
            return []
        self._offsets[path] = offset + newline + 1

        text = chunk[: newline + 1].decode("utf-8", errors="replace")
        return [line.strip() for line in text.splitlines() if line.strip()]

    def _relevant_paths(self, changes: set[tuple[Change, str]]) -> list[Path]:
        tracked = set(self.paths)
        result = []
        for change_type, path_str in changes:
            path = Path(path_str).resolve(strict=False)
            if path not in tracked or path in result:
                continue
            if change_type == Change.deleted:
                self._offsets[path] = 0
                continue
            result.append(path)
        return result

    async def process_changes(self, changes: set[tuple[Change, str]]) -> int:
        """Feed new lines from every changed file; a failed read skips only that file."""
        total = 0
        for path in self._relevant_paths(changes):
            try:
                lines = self.read_new_lines(path)
            except OSError as e:
                logger.warning(f"Could not read {path}: {e}")
                continue
            if not lines:
                continue
            recorded = await self.listener.handle_lines(lines)
            total += len(recorded)
            logger.debug(f"{path.name}: {len(lines)} new lines, {len(recorded)} recorded")
        return total

    async def _watch_loop(self) -> None:
        watch_dirs = sorted({p.parent for p in self.paths if p.parent.exists()})
        if not watch_dirs:
            logger.warning("No watch directories exist, watcher has nothing to monitor")
            self._running = False
            return

        try:
            async for changes in awatch(*watch_dirs, stop_event=self._stop_event):
                if not self._running:
                    break
                await self.process_changes(changes)
        except asyncio.CancelledError:
            logger.info("Output watcher task cancelled")
        except OSError as e:
            logger.error(f"Output watcher error: {e}")
        finally:
            self._running = False
