"""Relevance-ranked search over recorded dialogue."""
from __future__ import annotations

import logging
import re
import time
from datetime import datetime
from typing import Optional

from recorder.date_utils import to_utc
from recorder.db.factory import get_record_repository
from recorder.db.repositories.records import SqliteRecordRepository
from recorder.errors import InvalidQuery
from recorder.models import Record, Role, SearchQuery, SearchResult, record_file_path
from recorder.observability import record_search, start_span

logger = logging.getLogger("recorder.search")

NEUTRAL_RELEVANCE = 0.5
BASE_RELEVANCE = 0.3
OCCURRENCE_WEIGHT = 0.2
POSITION_WEIGHT = 0.5
HIGHLIGHT_CONTEXT = 20


def _matches(text: str, keyword: str) -> list[re.Match]:
    """Non-overlapping, case-insensitive occurrences of ``keyword``."""
    if not keyword or not text:
        return []
    return list(re.finditer(re.escape(keyword), text, re.IGNORECASE))


def score_relevance(text: str, keyword: str) -> float:
    if not keyword:
        return NEUTRAL_RELEVANCE
    matches = _matches(text, keyword)
    if not matches:
        return 0.0
    position_score = max(0.0, 1.0 - matches[0].start() / len(text))
    return min(1.0, BASE_RELEVANCE + len(matches) * OCCURRENCE_WEIGHT + position_score * POSITION_WEIGHT)


def extract_highlights(text: str, keyword: str, context: int = HIGHLIGHT_CONTEXT) -> list[str]:
    """One excerpt per occurrence, ``context`` characters either side, clipped to the text."""
    highlights = []
    for match in _matches(text, keyword):
        start = max(0, match.start() - context)
        end = min(len(text), match.end() + context)
        highlights.append(text[start:end])
    return highlights


def normalize_extension(extension: str | None) -> str:
    token = (extension or "").strip().lower()
    if not token:
        return ""
    return token if token.startswith(".") else f".{token}"


def _passes_filters(record: Record, query: SearchQuery, extension: str) -> bool:
    if query.role and record.role != query.role:
        return False
    if query.kind and record.kind != query.kind:
        return False
    if extension:
        file_path = record_file_path(record)
        if not file_path or not file_path.lower().endswith(extension):
            return False
    return True


def validate_query(query: SearchQuery) -> None:
    if query.startTime and query.endTime and to_utc(query.startTime) > to_utc(query.endTime):
        raise InvalidQuery(
            f"startTime {query.startTime.isoformat()} is after endTime {query.endTime.isoformat()}"
        )


class SearchService:
    """Keyword/time narrowing in the store, then in-memory filters and ranking.

    Results are ordered by descending relevance; equal scores keep the store
    order, which is newest first.
    """

    def __init__(self, repo: Optional[SqliteRecordRepository] = None):
        self._repo = repo

    async def _repository(self) -> SqliteRecordRepository:
        if self._repo is None:
            self._repo = await get_record_repository()
        return self._repo

    async def search(self, query: SearchQuery) -> list[SearchResult]:
        validate_query(query)
        keyword = query.keyword or ""
        extension = normalize_extension(query.fileExtension)
        started = time.perf_counter()

        with start_span("recorder.search", {"keyword_driven": bool(keyword)}):
            repo = await self._repository()
            records = await repo.search(keyword, query.startTime, query.endTime)

            results: list[SearchResult] = []
            for record in records:
                if not _passes_filters(record, query, extension):
                    continue
                relevance = score_relevance(record.text, keyword)
                if keyword and relevance <= 0.0:
                    continue
                results.append(SearchResult(
                    record=record,
                    relevance=relevance,
                    highlights=extract_highlights(record.text, keyword),
                ))

            # sorted() is stable, so ties keep the newest-first store order
            results = sorted(results, key=lambda r: r.relevance, reverse=True)

        elapsed_ms = (time.perf_counter() - started) * 1000
        record_search(elapsed_ms, keyword_driven=bool(keyword))
        logger.debug(f"Search {keyword!r} returned {len(results)} of {len(records)} candidates in {elapsed_ms:.1f}ms")
        return results

    async def search_by_keyword(self, keyword: str) -> list[SearchResult]:
        return await self.search(SearchQuery(keyword=keyword))

    async def search_by_time_range(self, start_time: datetime, end_time: datetime) -> list[SearchResult]:
        return await self.search(SearchQuery(startTime=start_time, endTime=end_time))

    async def search_by_role(self, role: Role) -> list[SearchResult]:
        return await self.search(SearchQuery(role=role))

    async def search_by_file_extension(self, extension: str) -> list[SearchResult]:
        return await self.search(SearchQuery(fileExtension=extension))

    async def fetch_all(self) -> list[Record]:
        """Every stored record, newest first (the unfiltered export query)."""
        repo = await self._repository()
        return await repo.all_records()
