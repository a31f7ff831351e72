"""Protocols that all remote schedule stores must satisfy."""

from __future__ import annotations

from typing import Any, Protocol, runtime_checkable

from ..models import ScheduleEntry, TaskItem


@runtime_checkable
class ScheduleStore(Protocol):
    """Persistence for schedule entries, keyed by owner.

    Implementations raise ``StoreError`` on transport or auth failure and
    ``NotFound`` when an update or delete target no longer exists.
    ``update_entry`` receives only the changed fields, by entry attribute name.
    """

    async def list_entries(self, owner_id: str) -> list[ScheduleEntry]: ...

    async def create_entry(self, entry: ScheduleEntry) -> ScheduleEntry: ...

    async def update_entry(self, entry_id: str, fields: dict[str, Any]) -> None: ...

    async def delete_entry(self, entry_id: str) -> None: ...


@runtime_checkable
class TaskStore(Protocol):
    """Persistence for the task list."""

    async def list_tasks(self, owner_id: str) -> list[TaskItem]: ...

    async def update_task(self, task_id: str, fields: dict[str, Any]) -> None: ...
