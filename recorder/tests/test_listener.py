import unittest
from datetime import datetime, timedelta, timezone

from recorder.db.connection import open_connection
from recorder.db.repositories.records import SqliteRecordRepository
from recorder.errors import StoreUnavailable
from recorder.listener import DialogueListener, ListenerContext
from recorder.models import LifecycleEvent


class _Clock:
    def __init__(self) -> None:
        self.now = datetime(2026, 3, 1, 9, 0, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        self.now = self.now + timedelta(seconds=1)
        return self.now


class _FailingRepo:
    def __init__(self) -> None:
        self.calls = 0

    async def append(self, record):
        self.calls += 1
        raise StoreUnavailable("append", "disk I/O error")


class DialogueListenerTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self.db = await open_connection(":memory:")
        self.repo = SqliteRecordRepository(self.db)
        self.listener = DialogueListener(
            repo=self.repo,
            context=ListenerContext(session_id="session_test"),
            clock=_Clock(),
        )

    async def asyncTearDown(self) -> None:
        await self.db.close()

    async def test_marked_line_is_recorded_under_listener_session(self) -> None:
        record = await self.listener.handle_line("Builder: 我来帮您创建项目的基础目录结构")
        assert record is not None
        self.assertEqual(record.sessionId, "session_test")
        self.assertEqual(record.role, "AGENT_BUILDER")
        self.assertEqual(record.text, "我来帮您创建项目的基础目录结构")
        self.assertEqual(record.kind, "DIALOGUE")

        stored = await self.repo.get_by_session("session_test")
        self.assertEqual([r.id for r in stored], [record.id])

    async def test_rejected_lines_produce_nothing(self) -> None:
        for line in ("", "npm install 执行完成", "Builder: 我来帮您创建项目", "lorem ipsum dolor sit amet"):
            with self.subTest(line=line):
                self.assertIsNone(await self.listener.handle_line(line))
        self.assertEqual(await self.repo.count(), 0)

    async def test_same_line_twice_yields_two_distinct_records(self) -> None:
        line = "User: 帮我看一下这个页面的布局"
        first = await self.listener.handle_line(line)
        second = await self.listener.handle_line(line)
        assert first is not None and second is not None
        self.assertNotEqual(first.id, second.id)
        self.assertEqual((first.role, first.text), (second.role, second.text))
        self.assertEqual(await self.repo.count("session_test"), 2)

    async def test_store_failure_is_swallowed(self) -> None:
        failing = _FailingRepo()
        listener = DialogueListener(repo=failing)
        result = await listener.handle_line("User: 帮我看一下这个页面的布局")
        self.assertIsNone(result)
        self.assertEqual(failing.calls, 1)

    async def test_handle_lines_keeps_accepted_records_in_input_order(self) -> None:
        records = await self.listener.handle_lines([
            "User: 我想把侧边栏改成可以折叠的样式",
            "npm run dev",
            "Builder: 已经完成了页面组件的拆分工作",
            "Chat: 这是一个关于状态管理的好问题呢",
        ])
        self.assertEqual([r.role for r in records], ["USER", "AGENT_BUILDER", "AGENT_CHAT"])
        stored = await self.repo.get_by_session("session_test")
        self.assertEqual([r.role for r in stored], ["USER", "AGENT_BUILDER", "AGENT_CHAT"])

    async def test_handle_text_splits_and_trims_lines(self) -> None:
        text = "  User: 我想把侧边栏改成可以折叠的样式  \n\n   \nBuilder: 已经完成了页面组件的拆分工作\n"
        records = await self.listener.handle_text(text)
        self.assertEqual(len(records), 2)
        self.assertEqual(records[0].text, "我想把侧边栏改成可以折叠的样式")

    async def test_explicit_context_overrides_listener_session(self) -> None:
        other = ListenerContext(session_id="session_other")
        record = await self.listener.handle_line("User: 帮我看一下这个页面的布局", context=other)
        assert record is not None
        self.assertEqual(record.sessionId, "session_other")
        self.assertEqual(await self.repo.list_session_ids(), ["session_other"])

    async def test_lifecycle_event_is_recorded_without_noise_filter(self) -> None:
        record = await self.listener.handle_event(LifecycleEvent(type="terminal_opened", name="bash"))
        assert record is not None
        self.assertEqual(record.role, "AGENT_BUILDER")
        self.assertEqual(record.text, "terminal created: bash")

    async def test_incomplete_lifecycle_event_is_ignored(self) -> None:
        self.assertIsNone(await self.listener.handle_event(LifecycleEvent(type="debug_session_started")))
        self.assertEqual(await self.repo.count(), 0)

    async def test_record_dialogue_skips_markers_but_enforces_content_gate(self) -> None:
        self.assertIsNone(await self.listener.record_dialogue("AGENT_CHAT", "ok"))
        self.assertIsNone(await self.listener.record_dialogue("AGENT_CHAT", "长" * 5001))
        self.assertEqual(await self.repo.count(), 0)

        # No marker or dialogue vocabulary needed once the role is known.
        record = await self.listener.record_dialogue("AGENT_CHAT", "  整体结构已经按照模块拆分完毕  ")
        assert record is not None
        self.assertEqual(record.role, "AGENT_CHAT")
        self.assertEqual(record.text, "整体结构已经按照模块拆分完毕")
        self.assertEqual(await self.repo.count(), 1)

    async def test_file_change_undo_and_redo(self) -> None:
        change = await self.listener.record_file_change(
            "/src/app.py", "MODIFY", after_text="print('hi')", before_text="print('hello')"
        )
        undo = await self.listener.record_undo("/src/app.py", "reverted rename")
        redo = await self.listener.record_redo("/src/app.py")
        assert change is not None and undo is not None and redo is not None

        self.assertEqual(change.kind, "FILE_CHANGE")
        self.assertEqual(change.text, "file MODIFY: /src/app.py")
        self.assertEqual(undo.text, "undo: /src/app.py")
        self.assertEqual(undo.detail, "reverted rename")
        self.assertEqual(redo.kind, "REDO")

        stored = await self.repo.get_by_session("session_test")
        self.assertEqual([r.kind for r in stored], ["FILE_CHANGE", "UNDO", "REDO"])
        self.assertEqual(stored[0].beforeText, "print('hello')")

    async def test_new_listeners_get_distinct_sessions(self) -> None:
        first = DialogueListener(repo=self.repo)
        second = DialogueListener(repo=self.repo)
        self.assertNotEqual(first.session_id, second.session_id)
        self.assertTrue(first.session_id.startswith("session_"))


if __name__ == "__main__":
    unittest.main()
