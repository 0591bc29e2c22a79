import unittest
from datetime import datetime, timedelta, timezone

from recorder.db.connection import open_connection
from recorder.db.repositories.records import SqliteRecordRepository
from recorder.errors import InvalidQuery, StoreUnavailable
from recorder.models import DialogueRecord, FileChangeRecord, SearchQuery
from recorder.services.search import (
    SearchService,
    extract_highlights,
    normalize_extension,
    score_relevance,
)

BASE = datetime(2026, 3, 1, 9, 0, 0, tzinfo=timezone.utc)

EARLY_SINGLE = "项目的目录结构已经调整好了"
LATE_DOUBLE = "前" * 40 + "项目" + "abc" + "项目" + "尾" * 3


class _UnavailableRepo:
    async def search(self, keyword="", start_time=None, end_time=None):
        raise StoreUnavailable("search", "database is locked")


class RelevanceFormulaTests(unittest.TestCase):
    def test_empty_keyword_is_neutral(self) -> None:
        self.assertEqual(score_relevance("anything at all", ""), 0.5)

    def test_no_occurrence_scores_zero(self) -> None:
        self.assertEqual(score_relevance("nothing to see", "项目"), 0.0)

    def test_early_single_occurrence_is_capped(self) -> None:
        self.assertEqual(score_relevance(EARLY_SINGLE, "项目"), 1.0)

    def test_late_double_occurrence(self) -> None:
        self.assertEqual(len(LATE_DOUBLE), 50)
        self.assertAlmostEqual(score_relevance(LATE_DOUBLE, "项目"), 0.8)

    def test_matching_is_case_insensitive(self) -> None:
        self.assertAlmostEqual(score_relevance("Cache the CACHE", "cache"), 1.0)
        self.assertAlmostEqual(
            score_relevance("we should cache it", "CACHE"),
            0.3 + 0.2 + 0.5 * (1 - 10 / 18),
        )

    def test_highlights_take_twenty_characters_each_side(self) -> None:
        highlights = extract_highlights(LATE_DOUBLE, "项目")
        self.assertEqual(highlights, [LATE_DOUBLE[20:50], LATE_DOUBLE[25:50]])
        self.assertEqual(extract_highlights(EARLY_SINGLE, "项目"), [EARLY_SINGLE])

    def test_highlights_empty_without_keyword(self) -> None:
        self.assertEqual(extract_highlights(EARLY_SINGLE, ""), [])

    def test_normalize_extension(self) -> None:
        self.assertEqual(normalize_extension("py"), ".py")
        self.assertEqual(normalize_extension(" .TS "), ".ts")
        self.assertEqual(normalize_extension(None), "")


class SearchServiceTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self.db = await open_connection(":memory:")
        self.repo = SqliteRecordRepository(self.db)
        self.service = SearchService(self.repo)

        await self.repo.append(DialogueRecord(
            id="b", sessionId="s1", timestamp=BASE, role="AGENT_CHAT", text=LATE_DOUBLE,
        ))
        await self.repo.append(DialogueRecord(
            id="a", sessionId="s1", timestamp=BASE + timedelta(minutes=1), role="USER", text=EARLY_SINGLE,
        ))
        await self.repo.append(FileChangeRecord(
            id="f", sessionId="s2", timestamp=BASE + timedelta(minutes=2), role="USER",
            text="file CREATE: /src/Models.PY", filePath="/src/Models.PY", changeKind="CREATE",
        ))
        await self.repo.append(FileChangeRecord(
            id="g", sessionId="s2", timestamp=BASE + timedelta(minutes=3), role="USER",
            text="file MODIFY: /web/app.tsx", filePath="/web/app.tsx", changeKind="MODIFY",
        ))

    async def asyncTearDown(self) -> None:
        await self.db.close()

    async def test_earlier_single_occurrence_ranks_first(self) -> None:
        results = await self.service.search_by_keyword("项目")
        self.assertEqual([r.record.id for r in results], ["a", "b"])
        self.assertEqual(results[0].relevance, 1.0)
        self.assertAlmostEqual(results[1].relevance, 0.8)
        self.assertEqual(len(results[1].highlights), 2)

    async def test_results_are_sorted_and_within_unit_range(self) -> None:
        results = await self.service.search(SearchQuery(keyword="file"))
        scores = [r.relevance for r in results]
        self.assertEqual(scores, sorted(scores, reverse=True))
        self.assertTrue(all(0.0 <= s <= 1.0 for s in scores))

    async def test_empty_keyword_returns_everything_newest_first(self) -> None:
        results = await self.service.search(SearchQuery())
        self.assertEqual([r.record.id for r in results], ["g", "f", "a", "b"])
        self.assertTrue(all(r.relevance == 0.5 for r in results))
        self.assertTrue(all(r.highlights == [] for r in results))

    async def test_keyword_matches_non_ascii_case_variants(self) -> None:
        await self.repo.append(DialogueRecord(
            id="cy", sessionId="s3", timestamp=BASE + timedelta(minutes=4), role="USER",
            text="Привет, как работает этот модуль",
        ))
        results = await self.service.search(SearchQuery(keyword="ПРИВЕТ"))
        self.assertEqual([r.record.id for r in results], ["cy"])
        self.assertEqual(results[0].relevance, 1.0)
        self.assertEqual(results[0].highlights, ["Привет, как работает этот "])

    async def test_unmatched_keyword_returns_nothing(self) -> None:
        self.assertEqual(await self.service.search_by_keyword("kubernetes"), [])

    async def test_time_range_is_inclusive(self) -> None:
        results = await self.service.search_by_time_range(BASE + timedelta(minutes=1), BASE + timedelta(minutes=2))
        self.assertEqual({r.record.id for r in results}, {"a", "f"})

    async def test_start_after_end_is_invalid(self) -> None:
        with self.assertRaises(InvalidQuery):
            await self.service.search_by_time_range(BASE + timedelta(minutes=5), BASE)

    async def test_role_filter(self) -> None:
        results = await self.service.search_by_role("AGENT_CHAT")
        self.assertEqual([r.record.id for r in results], ["b"])

    async def test_kind_filter_combines_with_keyword(self) -> None:
        results = await self.service.search(SearchQuery(keyword="src", kind="FILE_CHANGE"))
        self.assertEqual([r.record.id for r in results], ["f"])

    async def test_file_extension_filter_normalizes_input(self) -> None:
        for extension in ("py", ".py", ".PY"):
            with self.subTest(extension=extension):
                results = await self.service.search_by_file_extension(extension)
                self.assertEqual([r.record.id for r in results], ["f"])

    async def test_file_extension_excludes_records_without_path(self) -> None:
        results = await self.service.search(SearchQuery(keyword="项目", fileExtension=".py"))
        self.assertEqual(results, [])

    async def test_fetch_all(self) -> None:
        records = await self.service.fetch_all()
        self.assertEqual(len(records), 4)

    async def test_store_failure_propagates(self) -> None:
        service = SearchService(_UnavailableRepo())
        with self.assertRaises(StoreUnavailable):
            await service.search_by_keyword("项目")


if __name__ == "__main__":
    unittest.main()
