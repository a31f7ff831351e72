"""Optimistic mutation of the displayed schedule with rollback on store failure.

``ScheduleCoordinator`` is the only writer of the occurrence registry and of
the active mutation context. Every create/update/delete runs through a single
state machine::

    IDLE -> VALIDATING -> OPTIMISTICALLY_APPLIED -> PERSISTING -> COMMITTED
                                                              \\-> ROLLED_BACK

Everything runs on one asyncio loop; the store calls are the only
suspension points. A per-key in-flight guard rejects a second mutation of an
entry whose first mutation has not resolved yet.
"""

from __future__ import annotations

import logging
import uuid
from contextlib import contextmanager
from dataclasses import asdict, dataclass
from datetime import date, datetime, timedelta
from enum import Enum
from typing import Any, Awaitable, Callable, Iterator

from .errors import ConcurrentMutationError, NotFound, ValidationError
from .models import EntryDraft, Occurrence, ScheduleEntry, validate_draft
from .projector import project, project_all, week_start
from .registry import OccurrenceRegistry
from .stores.base import ScheduleStore
from .view import (
    EmptySlotSelected,
    OccurrenceActivated,
    OccurrenceMoved,
    OccurrenceResized,
    ViewBinding,
    ViewEvent,
)

logger = logging.getLogger("weekplan-sync")

PROVISIONAL_PREFIX = "pending-"


class MutationState(Enum):
    IDLE = "idle"
    VALIDATING = "validating"
    OPTIMISTICALLY_APPLIED = "optimistically_applied"
    PERSISTING = "persisting"
    COMMITTED = "committed"
    ROLLED_BACK = "rolled_back"
    REJECTED = "rejected"  # failed validation, nothing was applied


@dataclass
class Mutation:
    """One mutation attempt and the state it reached."""

    kind: str  # create, edit, move, resize, delete
    key: str
    entry_id: str | None
    state: MutationState = MutationState.IDLE
    error: Exception | None = None

    def advance(self, state: MutationState) -> None:
        logger.debug("%s %s: %s -> %s", self.kind, self.key, self.state.value, state.value)
        self.state = state


class InFlightGuard:
    """Tracks keys with a remote call in flight."""

    def __init__(self) -> None:
        self._keys: set[str] = set()

    def check(self, key: str) -> None:
        if key in self._keys:
            raise ConcurrentMutationError(key)

    @contextmanager
    def hold(self, key: str) -> Iterator[None]:
        self.check(key)
        self._keys.add(key)
        try:
            yield
        finally:
            self._keys.discard(key)

    def __contains__(self, key: object) -> bool:
        return key in self._keys


@dataclass
class ActiveMutationContext:
    """The entry currently being edited, scoped to one calendar session.

    ``is_open`` with ``entry_id`` None means a create form is open.
    """

    entry_id: str | None = None
    is_open: bool = False

    def open(self, entry_id: str | None = None) -> None:
        self.entry_id = entry_id
        self.is_open = True

    def clear(self) -> None:
        self.entry_id = None
        self.is_open = False

    def clear_if(self, entry_id: str | None) -> None:
        if self.is_open and self.entry_id == entry_id:
            self.clear()


class ScheduleCoordinator:
    """Keeps the rendered week consistent with the remote schedule store."""

    def __init__(
        self,
        store: ScheduleStore,
        view: ViewBinding,
        owner_id: str = "",
        reference_date: date | None = None,
    ):
        self.store = store
        self.view = view
        self.registry = OccurrenceRegistry(view)
        self.context = ActiveMutationContext()
        self.owner_id = owner_id
        self.reference_date = reference_date or date.today()
        self.entries: dict[str, ScheduleEntry] = {}
        self.pending_draft: EntryDraft | None = None
        self.history: list[Mutation] = []
        self._guard = InFlightGuard()

    # -- loading and navigation ---------------------------------------------

    async def load(self, owner_id: str | None = None) -> list[Occurrence]:
        """Fetch the owner's entries and render them for the displayed week."""
        owner = owner_id or self.owner_id
        try:
            entries = await self.store.list_entries(owner)
        except Exception as e:
            logger.error("Failed to load schedule for '%s': %s", owner, e)
            self.view.notify("error", "Failed to load schedule")
            raise
        self.owner_id = owner
        loaded = {e.id: e for e in entries if e.id is not None}
        # Entries with a write in flight keep their optimistic state.
        for key, entry in self.entries.items():
            if key in self._guard and key in loaded:
                loaded[key] = entry
        self.entries = loaded
        logger.info("Loaded %d schedule entries for '%s'", len(self.entries), owner)
        return self._rerender()

    def show_week(self, reference_date: date) -> list[Occurrence]:
        if isinstance(reference_date, datetime):
            reference_date = reference_date.date()
        self.reference_date = reference_date
        return self._rerender()

    def next_week(self) -> list[Occurrence]:
        return self.show_week(self.reference_date + timedelta(days=7))

    def previous_week(self) -> list[Occurrence]:
        return self.show_week(self.reference_date - timedelta(days=7))

    def today(self) -> list[Occurrence]:
        return self.show_week(date.today())

    def _rerender(self) -> list[Occurrence]:
        occurrences = project_all(self.entries.values(), self.reference_date)
        self.registry.reset(occurrences)
        return occurrences

    # -- editor lifecycle ---------------------------------------------------

    def open_editor(self, entry_id: str | None = None) -> EntryDraft:
        """Open the edit form for ``entry_id``, or a blank create form."""
        if entry_id is None:
            draft = EntryDraft()
        else:
            if entry_id not in self.entries:
                raise NotFound(f"Unknown schedule entry: {entry_id}")
            draft = EntryDraft.from_entry(self.entries[entry_id])
        self.context.open(entry_id)
        self.pending_draft = draft
        return draft

    def cancel(self) -> None:
        """Discard the open form. No remote call has been started."""
        self.context.clear()
        self.pending_draft = None

    async def submit(self, draft: EntryDraft) -> ScheduleEntry:
        """Save the open form: create when no entry is active, else edit it."""
        entry_id = self.context.entry_id
        if entry_id is None:
            return await self.create(draft)
        self._guard.check(entry_id)
        clean = validate_draft(draft)
        return await self.update(entry_id, asdict(clean), kind="edit")

    async def handle(self, event: ViewEvent) -> Any:
        """Dispatch an interaction event raised by the view."""
        if isinstance(event, OccurrenceActivated):
            return self.open_editor(event.entry_id)
        if isinstance(event, EmptySlotSelected):
            draft = self.open_editor(None)
            draft.day_of_week = event.day_of_week
            draft.start_time = event.start_time
            draft.end_time = event.end_time
            return draft
        if isinstance(event, OccurrenceMoved):
            return await self.move(event.entry_id, event.day_of_week, event.start_time, event.end_time)
        if isinstance(event, OccurrenceResized):
            return await self.resize(event.entry_id, event.end_time)
        raise TypeError(f"Unsupported view event: {event!r}")

    # -- mutations ----------------------------------------------------------

    async def create(self, draft: EntryDraft) -> ScheduleEntry:
        key = f"{PROVISIONAL_PREFIX}{uuid.uuid4().hex}"
        mutation = self._begin("create", key, None)
        clean = self._validate(mutation, draft)

        entry = ScheduleEntry(id=None, owner_id=self.owner_id, **asdict(clean))

        def apply() -> None:
            self.registry.put(key, project(entry, self.reference_date))

        def commit(created: ScheduleEntry) -> None:
            self.registry.remove(key)
            self.entries[created.id] = created
            self.registry.put(created.id, project(created, self.reference_date))

        def rollback() -> None:
            self.registry.remove(key)

        created = await self._run(
            mutation,
            apply=apply,
            persist=lambda: self.store.create_entry(entry),
            commit=commit,
            rollback=rollback,
            success="Schedule saved successfully",
            failure="Failed to save schedule. Please try again.",
        )
        self.pending_draft = None
        return created

    async def update(
        self,
        entry_id: str,
        changes: dict[str, Any],
        *,
        kind: str = "edit",
        revert_view: bool = False,
    ) -> ScheduleEntry:
        """Apply ``changes`` locally, then persist only the fields that differ.

        With ``revert_view`` (drag and resize) the view is told to snap the
        occurrence back whenever the change is rejected or rolled back.
        """
        try:
            self._guard.check(entry_id)
            current = self.entries.get(entry_id)
            if current is None:
                raise NotFound(f"Unknown schedule entry: {entry_id}")
        except (ConcurrentMutationError, NotFound):
            if revert_view:
                self.view.revert(entry_id)
            raise

        mutation = self._begin(kind, entry_id, entry_id)
        try:
            clean = self._validate(mutation, EntryDraft.from_entry(current.with_changes(**changes)))
        except ValidationError:
            if revert_view:
                self.view.revert(entry_id)
            raise
        updated = current.with_changes(**asdict(clean))
        changed = current.changed_fields(updated)
        if not changed:
            mutation.advance(MutationState.COMMITTED)
            self.context.clear_if(entry_id)
            return current

        snapshot = self.registry.snapshot(entry_id)

        def apply() -> None:
            self.entries[entry_id] = updated
            self.registry.put(entry_id, project(updated, self.reference_date))

        def rollback() -> None:
            self.entries[entry_id] = current
            if snapshot is None:
                self.registry.remove(entry_id)
            elif week_start(snapshot.start) == week_start(self.reference_date):
                self.registry.put(entry_id, snapshot)
            else:
                # The displayed week changed while persisting.
                self.registry.put(entry_id, project(current, self.reference_date))
            if revert_view:
                self.view.revert(entry_id)

        await self._run(
            mutation,
            apply=apply,
            persist=lambda: self.store.update_entry(entry_id, changed),
            commit=lambda _: None,
            rollback=rollback,
            success="Schedule updated successfully",
            failure="Failed to update schedule",
        )
        return updated

    async def move(self, entry_id: str, day_of_week: int, start_time: str, end_time: str) -> ScheduleEntry:
        """Drag-and-drop of an occurrence to another day and/or time."""
        return await self.update(
            entry_id,
            {"day_of_week": day_of_week, "start_time": start_time, "end_time": end_time},
            kind="move",
            revert_view=True,
        )

    async def resize(self, entry_id: str, end_time: str) -> ScheduleEntry:
        return await self.update(entry_id, {"end_time": end_time}, kind="resize", revert_view=True)

    async def delete(self, entry_id: str | None = None, *, confirmed: bool = True) -> bool:
        """Delete the given or active entry once confirmed.

        Nothing is removed locally before the store confirms the delete.
        """
        target = entry_id or self.context.entry_id
        if target is None:
            raise ValidationError("No schedule entry selected", ["id"])
        if not confirmed:
            return False
        self._guard.check(target)
        mutation = self._begin("delete", target, target)

        def commit(_: Any) -> None:
            self.entries.pop(target, None)
            self.registry.remove(target)

        await self._run(
            mutation,
            apply=None,
            persist=lambda: self.store.delete_entry(target),
            commit=commit,
            rollback=None,
            success="Schedule deleted successfully",
            failure="Failed to delete schedule. Please try again.",
        )
        return True

    # -- state machine ------------------------------------------------------

    def _begin(self, kind: str, key: str, entry_id: str | None) -> Mutation:
        mutation = Mutation(kind=kind, key=key, entry_id=entry_id)
        self.history.append(mutation)
        if kind in ("move", "resize") and not self.context.is_open:
            self.context.open(entry_id)
        return mutation

    def _validate(self, mutation: Mutation, draft: EntryDraft) -> EntryDraft:
        mutation.advance(MutationState.VALIDATING)
        try:
            return validate_draft(draft)
        except ValidationError as e:
            mutation.error = e
            mutation.advance(MutationState.REJECTED)
            if mutation.kind in ("move", "resize"):
                self.context.clear_if(mutation.entry_id)
            self.view.notify("error", str(e))
            raise

    async def _run(
        self,
        mutation: Mutation,
        *,
        apply: Callable[[], None] | None,
        persist: Callable[[], Awaitable[Any]],
        commit: Callable[[Any], None],
        rollback: Callable[[], None] | None,
        success: str,
        failure: str,
    ) -> Any:
        with self._guard.hold(mutation.key):
            if apply is not None:
                apply()
                mutation.advance(MutationState.OPTIMISTICALLY_APPLIED)
            mutation.advance(MutationState.PERSISTING)
            try:
                result = await persist()
            except Exception as e:
                if rollback is not None:
                    rollback()
                mutation.error = e
                mutation.advance(MutationState.ROLLED_BACK)
                self.context.clear_if(mutation.entry_id)
                logger.warning("%s of '%s' failed, rolled back: %s", mutation.kind, mutation.key, e)
                if isinstance(e, NotFound):
                    failure = "This class no longer exists. Please reload the schedule."
                self.view.notify("error", failure)
                raise
            commit(result)
            mutation.advance(MutationState.COMMITTED)
            self.context.clear_if(mutation.entry_id)
            logger.info("%s of '%s' committed", mutation.kind, mutation.key)
            self.view.notify("success", success)
            return result
