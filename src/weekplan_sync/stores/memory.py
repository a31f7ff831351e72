"""In-process store, used for local runs without a remote backend and in tests."""

from __future__ import annotations

import logging
import uuid
from dataclasses import replace
from typing import Any

from ..errors import NotFound
from ..models import ScheduleEntry, TaskItem

logger = logging.getLogger("weekplan-sync")


class MemoryStore:
    """Schedule and task store backed by plain dicts."""

    def __init__(
        self,
        entries: list[ScheduleEntry] | None = None,
        tasks: list[TaskItem] | None = None,
    ):
        self._entries: dict[str, ScheduleEntry] = {}
        self._tasks: dict[str, TaskItem] = {t.id: t for t in tasks or []}
        for entry in entries or []:
            if entry.id is None:
                entry = replace(entry, id=uuid.uuid4().hex)
            self._entries[entry.id] = entry

    async def list_entries(self, owner_id: str) -> list[ScheduleEntry]:
        return [e for e in self._entries.values() if e.owner_id == owner_id]

    async def create_entry(self, entry: ScheduleEntry) -> ScheduleEntry:
        created = replace(entry, id=uuid.uuid4().hex)
        self._entries[created.id] = created
        logger.info("Memory entry created: %s (%s)", created.title, created.id)
        return created

    async def update_entry(self, entry_id: str, fields: dict[str, Any]) -> None:
        if entry_id not in self._entries:
            raise NotFound(f"Schedule entry not found: {entry_id}")
        self._entries[entry_id] = replace(self._entries[entry_id], **fields)

    async def delete_entry(self, entry_id: str) -> None:
        if self._entries.pop(entry_id, None) is None:
            raise NotFound(f"Schedule entry not found: {entry_id}")

    async def list_tasks(self, owner_id: str) -> list[TaskItem]:
        return [t for t in self._tasks.values() if t.owner_id == owner_id]

    async def update_task(self, task_id: str, fields: dict[str, Any]) -> None:
        if task_id not in self._tasks:
            raise NotFound(f"Task not found: {task_id}")
        self._tasks[task_id] = replace(self._tasks[task_id], **fields)
