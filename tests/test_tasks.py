"""Tests for the task list completion toggle."""

import asyncio
from datetime import date
from unittest.mock import AsyncMock

import pytest

from weekplan_sync.errors import ConcurrentMutationError, NotFound, StoreError
from weekplan_sync.models import TaskItem
from weekplan_sync.stores.memory import MemoryStore
from weekplan_sync.tasks import TaskBoard
from weekplan_sync.view import RecordingView


def _make_task(id: str = "t1", due: date = date(2026, 2, 10), completed: bool = False) -> TaskItem:
    return TaskItem(id=id, owner_id="user-1", title=f"Task {id}", due_date=due, completed=completed)


async def _board(store) -> TaskBoard:
    board = TaskBoard(store, RecordingView(), owner_id="user-1")
    await board.load()
    return board


class TestTaskBoard:
    async def test_load_sorted_by_due_date(self):
        store = MemoryStore(tasks=[
            _make_task("later", date(2026, 3, 1)),
            _make_task("sooner", date(2026, 2, 1)),
        ])
        board = await _board(store)
        assert list(board.tasks) == ["sooner", "later"]

    async def test_overdue(self):
        store = MemoryStore(tasks=[
            _make_task("past", date(2026, 2, 1)),
            _make_task("done", date(2026, 2, 1), completed=True),
            _make_task("future", date(2026, 3, 1)),
        ])
        board = await _board(store)
        assert [t.id for t in board.overdue(date(2026, 2, 15))] == ["past"]

    async def test_toggle_persists(self):
        store = MemoryStore(tasks=[_make_task()])
        board = await _board(store)
        task = await board.toggle_completion("t1", True)
        assert task.completed is True
        assert (await store.list_tasks("user-1"))[0].completed is True

    async def test_toggle_failure_reverts_flag(self):
        store = AsyncMock()
        store.list_tasks = AsyncMock(return_value=[_make_task()])
        store.update_task = AsyncMock(side_effect=StoreError("Connection failed"))
        board = await _board(store)

        with pytest.raises(StoreError):
            await board.toggle_completion("t1", True)

        assert board.tasks["t1"].completed is False
        assert board.view.last_message == ("error", "Failed to update task completion")

    async def test_flag_flipped_before_store_responds(self):
        store = AsyncMock()
        store.list_tasks = AsyncMock(return_value=[_make_task()])
        release = asyncio.Event()

        async def slow_update(task_id, fields):
            await release.wait()

        store.update_task = AsyncMock(side_effect=slow_update)
        board = await _board(store)

        task = asyncio.create_task(board.toggle_completion("t1", True))
        for _ in range(3):
            await asyncio.sleep(0)
        assert board.tasks["t1"].completed is True
        with pytest.raises(ConcurrentMutationError):
            await board.toggle_completion("t1", False)

        release.set()
        await task
        store.update_task.assert_awaited_once_with("t1", {"completed": True})

    async def test_unknown_task(self):
        board = await _board(MemoryStore())
        with pytest.raises(NotFound):
            await board.toggle_completion("missing", True)
