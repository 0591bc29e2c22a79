import unittest
from datetime import datetime, timedelta, timezone

from recorder.db.connection import open_connection
from recorder.db.repositories.records import SqliteRecordRepository
from recorder.errors import StoreUnavailable
from recorder.models import DialogueRecord, FileChangeRecord, UndoRecord

BASE = datetime(2026, 3, 1, 9, 0, 0, tzinfo=timezone.utc)


def _dialogue(record_id: str, session_id: str, minutes: int, text: str, role: str = "USER") -> DialogueRecord:
    return DialogueRecord(
        id=record_id,
        sessionId=session_id,
        timestamp=BASE + timedelta(minutes=minutes),
        role=role,
        text=text,
    )


class RecordRepositoryTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self.db = await open_connection(":memory:")
        self.repo = SqliteRecordRepository(self.db)

        await self.repo.append(_dialogue("r1", "session_a", 0, "Please add a login page"))
        await self.repo.append(_dialogue("r2", "session_a", 5, "Login page scaffolded", role="AGENT_BUILDER"))
        await self.repo.append(_dialogue("r3", "session_b", 10, "What does the cache layer do?"))
        await self.repo.append(
            FileChangeRecord(
                id="r4",
                sessionId="session_b",
                timestamp=BASE + timedelta(minutes=12),
                role="USER",
                text="file MODIFY: /src/cache.py",
                filePath="/src/cache.py",
                changeKind="MODIFY",
                afterText="CACHE = {}",
            )
        )

    async def asyncTearDown(self) -> None:
        await self.db.close()

    async def test_get_by_session_returns_records_in_time_order(self) -> None:
        records = await self.repo.get_by_session("session_a")
        self.assertEqual([r.id for r in records], ["r1", "r2"])
        self.assertEqual(records[1].role, "AGENT_BUILDER")
        self.assertEqual(records[0].timestamp, BASE)

    async def test_unknown_session_is_empty_not_an_error(self) -> None:
        self.assertEqual(await self.repo.get_by_session("session_missing"), [])

    async def test_same_timestamp_keeps_insertion_order(self) -> None:
        await self.repo.append(_dialogue("c1", "session_c", 30, "first of a pair"))
        await self.repo.append(_dialogue("c2", "session_c", 30, "second of a pair"))
        records = await self.repo.get_by_session("session_c")
        self.assertEqual([r.id for r in records], ["c1", "c2"])

    async def test_non_dialogue_records_round_trip_their_fields(self) -> None:
        records = await self.repo.get_by_session("session_b")
        change = records[-1]
        self.assertIsInstance(change, FileChangeRecord)
        self.assertEqual(change.filePath, "/src/cache.py")
        self.assertEqual(change.changeKind, "MODIFY")
        self.assertEqual(change.afterText, "CACHE = {}")
        self.assertIsNone(change.beforeText)

    async def test_search_keyword_is_case_insensitive_substring(self) -> None:
        records = await self.repo.search("LOGIN")
        self.assertEqual({r.id for r in records}, {"r1", "r2"})

    async def test_search_keyword_folds_non_ascii_case(self) -> None:
        await self.repo.append(_dialogue("cy", "session_c", 30, "Привет, как работает этот модуль"))
        await self.repo.append(_dialogue("fr", "session_c", 31, "Rendez-vous devant l'école demain"))
        self.assertEqual([r.id for r in await self.repo.search("ПРИВЕТ")], ["cy"])
        self.assertEqual([r.id for r in await self.repo.search("ÉCOLE")], ["fr"])

    async def test_search_without_criteria_returns_everything_newest_first(self) -> None:
        records = await self.repo.search()
        self.assertEqual([r.id for r in records], ["r4", "r3", "r2", "r1"])

    async def test_search_time_bounds_are_inclusive(self) -> None:
        records = await self.repo.search(
            start_time=BASE + timedelta(minutes=5),
            end_time=BASE + timedelta(minutes=10),
        )
        self.assertEqual([r.id for r in records], ["r3", "r2"])

    async def test_search_accepts_non_utc_bounds(self) -> None:
        plus_eight = timezone(timedelta(hours=8))
        start = (BASE + timedelta(minutes=10)).astimezone(plus_eight)
        records = await self.repo.search(start_time=start)
        self.assertEqual([r.id for r in records], ["r4", "r3"])

    async def test_list_session_ids_orders_by_latest_activity(self) -> None:
        self.assertEqual(await self.repo.list_session_ids(), ["session_b", "session_a"])
        await self.repo.append(_dialogue("r5", "session_a", 20, "Coming back to the login page"))
        self.assertEqual(await self.repo.list_session_ids(), ["session_a", "session_b"])

    async def test_session_stats_counts_sum_to_total(self) -> None:
        stats = await self.repo.session_stats()
        self.assertEqual(sum(s["record_count"] for s in stats), await self.repo.count())
        by_id = {s["session_id"]: s for s in stats}
        self.assertEqual(by_id["session_a"]["roles"], ["AGENT_BUILDER", "USER"])
        self.assertEqual(by_id["session_b"]["record_count"], 2)

    async def test_session_stats_for_single_session(self) -> None:
        stats = await self.repo.session_stats("session_a")
        self.assertEqual(len(stats), 1)
        self.assertEqual(stats[0]["record_count"], 2)
        self.assertEqual(await self.repo.count("session_a"), 2)

    async def test_duplicate_id_is_reported_as_store_failure(self) -> None:
        with self.assertRaises(StoreUnavailable) as ctx:
            await self.repo.append(_dialogue("r1", "session_a", 40, "same id again"))
        self.assertEqual(ctx.exception.operation, "append")
        self.assertEqual(await self.repo.count(), 4)

    async def test_undo_record_round_trip(self) -> None:
        await self.repo.append(
            UndoRecord(
                id="u1",
                sessionId="session_c",
                timestamp=BASE,
                role="USER",
                text="undo: /src/app.py",
                filePath="/src/app.py",
            )
        )
        records = await self.repo.get_by_session("session_c")
        self.assertIsInstance(records[0], UndoRecord)
        self.assertEqual(records[0].kind, "UNDO")
        self.assertEqual(records[0].detail, "")


class ClosedStoreTests(unittest.IsolatedAsyncioTestCase):
    async def test_closed_connection_raises_store_unavailable(self) -> None:
        db = await open_connection(":memory:")
        repo = SqliteRecordRepository(db)
        await db.close()

        with self.assertRaises(StoreUnavailable):
            await repo.search("anything")
        with self.assertRaises(StoreUnavailable):
            await repo.append(_dialogue("x1", "session_x", 0, "never stored"))


if __name__ == "__main__":
    unittest.main()
