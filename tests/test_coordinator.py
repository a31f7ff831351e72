"""Tests for optimistic schedule mutations and their rollback."""

import asyncio
from datetime import date, datetime
from unittest.mock import AsyncMock

import pytest

from weekplan_sync.coordinator import ActiveMutationContext, MutationState, ScheduleCoordinator
from weekplan_sync.errors import ConcurrentMutationError, NotFound, StoreError, ValidationError
from weekplan_sync.models import EntryDraft, ScheduleEntry
from weekplan_sync.stores.memory import MemoryStore
from weekplan_sync.view import (
    EmptySlotSelected,
    OccurrenceActivated,
    OccurrenceMoved,
    OccurrenceResized,
    RecordingView,
)

WEDNESDAY = date(2026, 2, 11)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

def _make_entry(
    id: str | None = "e1",
    day_of_week: int = 1,
    start_time: str = "09:00",
    end_time: str = "10:30",
    title: str = "Algorithms",
    room: str = "A-101",
) -> ScheduleEntry:
    return ScheduleEntry(
        id=id,
        owner_id="user-1",
        day_of_week=day_of_week,
        start_time=start_time,
        end_time=end_time,
        title=title,
        room=room,
    )


def _setup_mock_store(entries: list[ScheduleEntry] | None = None) -> AsyncMock:
    store = AsyncMock()
    store.list_entries = AsyncMock(return_value=entries if entries is not None else [_make_entry()])
    store.create_entry = AsyncMock(side_effect=lambda e: e.with_changes(id="new-1"))
    store.update_entry = AsyncMock(return_value=None)
    store.delete_entry = AsyncMock(return_value=None)
    return store


async def _loaded(store: AsyncMock | None = None) -> ScheduleCoordinator:
    coordinator = ScheduleCoordinator(
        store or _setup_mock_store(), RecordingView(), owner_id="user-1", reference_date=WEDNESDAY
    )
    await coordinator.load()
    return coordinator


def _gate(store_method: AsyncMock, error: Exception | None = None) -> asyncio.Event:
    """Make a store call block until the returned event is set."""
    release = asyncio.Event()

    async def slow_call(*args, **kwargs):
        await release.wait()
        if error is not None:
            raise error

    store_method.side_effect = slow_call
    return release


async def _settle():
    for _ in range(3):
        await asyncio.sleep(0)


# ---------------------------------------------------------------------------
# Loading and navigation
# ---------------------------------------------------------------------------

class TestLoad:
    async def test_load_renders_week(self):
        coordinator = await _loaded()
        occ = coordinator.registry.snapshot("e1")
        assert occ.start == datetime(2026, 2, 9, 9, 0)
        assert coordinator.view.displayed["e1"] == occ
        assert coordinator.view.effects[-1] == ("render", None)
        coordinator.store.list_entries.assert_awaited_once_with("user-1")

    async def test_load_skips_invalid_entries(self):
        store = _setup_mock_store([_make_entry("good"), _make_entry("bad", day_of_week=8)])
        coordinator = await _loaded(store)
        assert coordinator.registry.keys() == ["good"]
        assert "bad" in coordinator.entries

    async def test_load_failure_surfaces_message(self):
        store = _setup_mock_store()
        store.list_entries = AsyncMock(side_effect=StoreError("Connection failed"))
        coordinator = ScheduleCoordinator(store, RecordingView(), owner_id="user-1")
        with pytest.raises(StoreError):
            await coordinator.load()
        assert coordinator.view.last_message == ("error", "Failed to load schedule")
        assert len(coordinator.registry) == 0

    async def test_week_navigation_reprojects(self):
        coordinator = await _loaded()
        coordinator.next_week()
        assert coordinator.registry.snapshot("e1").start == datetime(2026, 2, 16, 9, 0)
        coordinator.previous_week()
        coordinator.previous_week()
        assert coordinator.registry.snapshot("e1").start == datetime(2026, 2, 2, 9, 0)
        coordinator.show_week(datetime(2026, 2, 12, 8, 0))
        assert coordinator.registry.snapshot("e1").start == datetime(2026, 2, 9, 9, 0)


# ---------------------------------------------------------------------------
# Create
# ---------------------------------------------------------------------------

class TestCreate:
    async def test_create_success(self):
        coordinator = await _loaded()
        draft = EntryDraft("Databases", "3", "14:00", "15:30", room="B-2")
        created = await coordinator.create(draft)

        assert created.id == "new-1"
        sent = coordinator.store.create_entry.await_args.args[0]
        assert sent.id is None
        assert sent.owner_id == "user-1"
        assert sent.day_of_week == 3
        assert sorted(coordinator.registry.keys()) == ["e1", "new-1"]
        assert coordinator.registry.snapshot("new-1").start == datetime(2026, 2, 11, 14, 0)
        assert coordinator.history[-1].state == MutationState.COMMITTED
        assert coordinator.view.last_message[0] == "success"

    async def test_provisional_occurrence_shown_while_persisting(self):
        store = _setup_mock_store()
        coordinator = await _loaded(store)
        release = asyncio.Event()

        async def slow_create(entry):
            await release.wait()
            return entry.with_changes(id="new-1")

        store.create_entry.side_effect = slow_create
        task = asyncio.create_task(coordinator.create(EntryDraft("Databases", 3, "14:00", "15:30")))
        await _settle()

        pending = [k for k in coordinator.registry.keys() if k.startswith("pending-")]
        assert len(pending) == 1
        assert coordinator.registry.snapshot(pending[0]).entry_id is None
        assert coordinator.history[-1].state == MutationState.PERSISTING

        release.set()
        await task
        assert sorted(coordinator.registry.keys()) == ["e1", "new-1"]

    async def test_empty_title_rejected(self):
        coordinator = await _loaded()
        before = coordinator.registry.occurrences()
        with pytest.raises(ValidationError) as exc:
            await coordinator.create(EntryDraft("", 1, "09:00", "10:00"))
        assert exc.value.fields == ["title"]
        assert coordinator.registry.occurrences() == before
        coordinator.store.create_entry.assert_not_called()
        assert coordinator.history[-1].state == MutationState.REJECTED

    @pytest.mark.parametrize("start,end", [("10:00", "09:00"), ("10:00", "10:00")])
    async def test_start_must_precede_end(self, start, end):
        coordinator = await _loaded()
        with pytest.raises(ValidationError, match="before"):
            await coordinator.create(EntryDraft("Databases", 1, start, end))
        coordinator.store.create_entry.assert_not_called()

    async def test_create_failure_removes_provisional(self):
        store = _setup_mock_store()
        store.create_entry = AsyncMock(side_effect=StoreError("Connection failed"))
        coordinator = await _loaded(store)
        before = coordinator.registry.occurrences()

        with pytest.raises(StoreError):
            await coordinator.create(EntryDraft("Databases", 3, "14:00", "15:30"))

        assert coordinator.registry.occurrences() == before
        assert coordinator.history[-1].state == MutationState.ROLLED_BACK
        assert coordinator.view.last_message == ("error", "Failed to save schedule. Please try again.")


# ---------------------------------------------------------------------------
# Update, move, resize
# ---------------------------------------------------------------------------

class TestUpdate:
    async def test_only_changed_fields_sent(self):
        coordinator = await _loaded()
        updated = await coordinator.update("e1", {"title": "Data Structures"})
        assert updated.title == "Data Structures"
        coordinator.store.update_entry.assert_awaited_once_with("e1", {"title": "Data Structures"})
        assert coordinator.registry.snapshot("e1").title == "Data Structures"

    async def test_unchanged_edit_skips_store(self):
        coordinator = await _loaded()
        await coordinator.update("e1", {"title": "Algorithms"})
        coordinator.store.update_entry.assert_not_called()

    async def test_unknown_entry(self):
        coordinator = await _loaded()
        with pytest.raises(NotFound):
            await coordinator.update("nope", {"title": "X"})

    async def test_failure_restores_snapshot(self):
        store = _setup_mock_store()
        store.update_entry = AsyncMock(side_effect=StoreError("Connection failed"))
        coordinator = await _loaded(store)
        snapshot = coordinator.registry.snapshot("e1")

        with pytest.raises(StoreError):
            await coordinator.update("e1", {"title": "Data Structures", "end_time": "11:00"})

        assert coordinator.registry.snapshot("e1") == snapshot
        assert coordinator.entries["e1"] == snapshot.entry
        assert coordinator.history[-1].state == MutationState.ROLLED_BACK

    async def test_not_found_has_specific_message(self):
        store = _setup_mock_store()
        store.update_entry = AsyncMock(side_effect=NotFound("gone"))
        coordinator = await _loaded(store)
        snapshot = coordinator.registry.snapshot("e1")

        with pytest.raises(NotFound):
            await coordinator.update("e1", {"title": "Data Structures"})

        assert coordinator.registry.snapshot("e1") == snapshot
        assert "no longer exists" in coordinator.view.last_message[1]

    async def test_second_update_while_persisting_rejected(self):
        store = _setup_mock_store()
        coordinator = await _loaded(store)
        release = _gate(store.update_entry)

        first = asyncio.create_task(coordinator.update("e1", {"title": "First"}))
        await _settle()
        assert coordinator.history[-1].state == MutationState.PERSISTING
        during = coordinator.registry.snapshot("e1")

        with pytest.raises(ConcurrentMutationError):
            await coordinator.update("e1", {"title": "Second"})
        assert coordinator.registry.snapshot("e1") == during
        assert store.update_entry.await_count == 1

        release.set()
        await first
        await coordinator.update("e1", {"title": "Second"})
        assert coordinator.registry.snapshot("e1").title == "Second"

    async def test_different_entries_may_persist_concurrently(self):
        store = _setup_mock_store([_make_entry("e1"), _make_entry("e2", day_of_week=2)])
        coordinator = await _loaded(store)
        release = _gate(store.update_entry)

        first = asyncio.create_task(coordinator.update("e1", {"title": "One"}))
        second = asyncio.create_task(coordinator.update("e2", {"title": "Two"}))
        await _settle()
        release.set()
        await asyncio.gather(first, second)
        assert coordinator.registry.snapshot("e1").title == "One"
        assert coordinator.registry.snapshot("e2").title == "Two"

    async def test_reload_while_persisting_keeps_optimistic_entry(self):
        store = MemoryStore([_make_entry()])
        coordinator = ScheduleCoordinator(
            store, RecordingView(), owner_id="user-1", reference_date=WEDNESDAY
        )
        await coordinator.load()
        release = asyncio.Event()
        persist = store.update_entry

        async def slow_update(entry_id, fields):
            await release.wait()
            await persist(entry_id, fields)

        store.update_entry = slow_update

        task = asyncio.create_task(coordinator.update("e1", {"title": "Data Structures"}))
        await _settle()
        await coordinator.load()
        assert coordinator.registry.snapshot("e1").title == "Data Structures"

        release.set()
        await task
        remote = await store.list_entries("user-1")
        assert remote[0].title == "Data Structures"
        assert coordinator.registry.snapshot("e1").title == "Data Structures"
        assert coordinator.entries["e1"].title == "Data Structures"

    async def test_rollback_after_week_change_reprojects(self):
        store = _setup_mock_store()
        coordinator = await _loaded(store)
        release = _gate(store.update_entry, StoreError("Connection failed"))

        task = asyncio.create_task(coordinator.update("e1", {"title": "Changed"}))
        await _settle()
        coordinator.next_week()
        release.set()
        with pytest.raises(StoreError):
            await task

        occ = coordinator.registry.snapshot("e1")
        assert occ.title == "Algorithms"
        assert occ.start == datetime(2026, 2, 16, 9, 0)


class TestMoveResize:
    async def test_move_applies_optimistically_then_reverts(self):
        store = _setup_mock_store()
        coordinator = await _loaded(store)
        release = _gate(store.update_entry, StoreError("Connection failed"))

        task = asyncio.create_task(coordinator.handle(OccurrenceMoved("e1", 3, "14:00", "15:30")))
        await _settle()
        moved = coordinator.registry.snapshot("e1")
        assert moved.day_of_week == 3
        assert moved.start == datetime(2026, 2, 11, 14, 0)
        assert coordinator.context.entry_id == "e1"

        release.set()
        with pytest.raises(StoreError):
            await task

        reverted = coordinator.registry.snapshot("e1")
        assert reverted.day_of_week == 1
        assert (reverted.entry.start_time, reverted.entry.end_time) == ("09:00", "10:30")
        assert reverted.start == datetime(2026, 2, 9, 9, 0)
        assert ("revert", "e1") in coordinator.view.effects
        assert coordinator.view.last_message == ("error", "Failed to update schedule")
        assert not coordinator.context.is_open

    async def test_move_success(self):
        coordinator = await _loaded()
        await coordinator.move("e1", 3, "14:00", "15:30")
        coordinator.store.update_entry.assert_awaited_once_with(
            "e1", {"day_of_week": 3, "start_time": "14:00", "end_time": "15:30"}
        )
        assert ("revert", "e1") not in coordinator.view.effects
        assert coordinator.view.last_message == ("success", "Schedule updated successfully")

    async def test_invalid_move_reverts_view_without_store_call(self):
        coordinator = await _loaded()
        before = coordinator.registry.snapshot("e1")
        with pytest.raises(ValidationError):
            await coordinator.move("e1", 3, "15:00", "14:00")
        coordinator.store.update_entry.assert_not_called()
        assert ("revert", "e1") in coordinator.view.effects
        assert coordinator.registry.snapshot("e1") == before

    async def test_move_while_persisting_reverts_view(self):
        store = _setup_mock_store()
        coordinator = await _loaded(store)
        release = _gate(store.update_entry)

        first = asyncio.create_task(coordinator.update("e1", {"title": "Changed"}))
        await _settle()
        with pytest.raises(ConcurrentMutationError):
            await coordinator.handle(OccurrenceMoved("e1", 3, "14:00", "15:30"))
        assert ("revert", "e1") in coordinator.view.effects
        assert coordinator.registry.snapshot("e1").day_of_week == 1

        release.set()
        await first
        assert store.update_entry.await_count == 1

    async def test_move_of_unknown_entry_reverts_view(self):
        coordinator = await _loaded()
        with pytest.raises(NotFound):
            await coordinator.handle(OccurrenceMoved("gone", 3, "14:00", "15:30"))
        assert ("revert", "gone") in coordinator.view.effects

    async def test_resize_sends_end_time_only(self):
        coordinator = await _loaded()
        await coordinator.handle(OccurrenceResized("e1", "11:00"))
        coordinator.store.update_entry.assert_awaited_once_with("e1", {"end_time": "11:00"})
        assert coordinator.registry.snapshot("e1").end == datetime(2026, 2, 9, 11, 0)

    async def test_resize_failure_reverts(self):
        store = _setup_mock_store()
        store.update_entry = AsyncMock(side_effect=StoreError("Connection failed"))
        coordinator = await _loaded(store)
        before = coordinator.registry.snapshot("e1")
        with pytest.raises(StoreError):
            await coordinator.resize("e1", "12:00")
        assert coordinator.registry.snapshot("e1") == before
        assert ("revert", "e1") in coordinator.view.effects


# ---------------------------------------------------------------------------
# Delete
# ---------------------------------------------------------------------------

class TestDelete:
    async def test_requires_active_entry(self):
        coordinator = await _loaded()
        with pytest.raises(ValidationError):
            await coordinator.delete()
        coordinator.store.delete_entry.assert_not_called()

    async def test_delete_active_entry(self):
        coordinator = await _loaded()
        coordinator.open_editor("e1")
        assert await coordinator.delete() is True
        coordinator.store.delete_entry.assert_awaited_once_with("e1")
        assert "e1" not in coordinator.registry
        assert "e1" not in coordinator.entries
        assert not coordinator.context.is_open

    async def test_unconfirmed_is_noop(self):
        coordinator = await _loaded()
        assert await coordinator.delete("e1", confirmed=False) is False
        coordinator.store.delete_entry.assert_not_called()
        assert "e1" in coordinator.registry

    async def test_failure_leaves_registry_untouched(self):
        store = _setup_mock_store()
        store.delete_entry = AsyncMock(side_effect=StoreError("Connection failed"))
        coordinator = await _loaded(store)
        before = coordinator.registry.snapshot("e1")

        with pytest.raises(StoreError):
            await coordinator.delete("e1")

        assert coordinator.registry.snapshot("e1") == before
        assert ("remove", "e1") not in coordinator.view.effects
        assert coordinator.view.last_message == ("error", "Failed to delete schedule. Please try again.")

    async def test_not_removed_before_confirmation(self):
        store = _setup_mock_store()
        coordinator = await _loaded(store)
        release = _gate(store.delete_entry)

        task = asyncio.create_task(coordinator.delete("e1"))
        await _settle()
        assert "e1" in coordinator.registry
        with pytest.raises(ConcurrentMutationError):
            await coordinator.update("e1", {"title": "X"})

        release.set()
        await task
        assert "e1" not in coordinator.registry


# ---------------------------------------------------------------------------
# Editor lifecycle and view events
# ---------------------------------------------------------------------------

class TestEditor:
    async def test_activation_opens_editor(self):
        coordinator = await _loaded()
        draft = await coordinator.handle(OccurrenceActivated("e1"))
        assert draft.title == "Algorithms"
        assert draft.room == "A-101"
        assert coordinator.context == ActiveMutationContext(entry_id="e1", is_open=True)

    async def test_activation_of_unknown_entry(self):
        coordinator = await _loaded()
        with pytest.raises(NotFound):
            await coordinator.handle(OccurrenceActivated("missing"))
        assert not coordinator.context.is_open

    async def test_empty_slot_prefills_create_form(self):
        coordinator = await _loaded()
        draft = await coordinator.handle(EmptySlotSelected(4, "13:00", "14:00"))
        assert (draft.day_of_week, draft.start_time, draft.end_time) == (4, "13:00", "14:00")
        assert coordinator.context.is_open
        assert coordinator.context.entry_id is None

    async def test_cancel_discards_form_without_remote_call(self):
        coordinator = await _loaded()
        coordinator.open_editor("e1")
        coordinator.cancel()
        assert not coordinator.context.is_open
        assert coordinator.pending_draft is None
        coordinator.store.update_entry.assert_not_called()

    async def test_submit_edits_active_entry(self):
        coordinator = await _loaded()
        draft = coordinator.open_editor("e1")
        draft.professor = "Dr. Knuth"
        entry = await coordinator.submit(draft)
        assert entry.professor == "Dr. Knuth"
        coordinator.store.update_entry.assert_awaited_once_with("e1", {"professor": "Dr. Knuth"})
        assert not coordinator.context.is_open

    async def test_submit_creates_when_no_entry_active(self):
        coordinator = await _loaded()
        draft = await coordinator.handle(EmptySlotSelected(4, "13:00", "14:00"))
        draft.title = "Seminar"
        entry = await coordinator.submit(draft)
        assert entry.id == "new-1"
        assert not coordinator.context.is_open

    async def test_drag_does_not_replace_open_form(self):
        store = _setup_mock_store([_make_entry("e1"), _make_entry("e2", day_of_week=2)])
        coordinator = await _loaded(store)
        coordinator.open_editor("e2")
        await coordinator.move("e1", 3, "14:00", "15:30")
        assert coordinator.context.entry_id == "e2"

    async def test_unknown_event(self):
        coordinator = await _loaded()
        with pytest.raises(TypeError):
            await coordinator.handle(object())
