"""Task list with an optimistic completion toggle."""

from __future__ import annotations

import logging
from dataclasses import replace
from datetime import date

from .coordinator import InFlightGuard
from .errors import NotFound
from .models import TaskItem
from .stores.base import TaskStore
from .view import ViewBinding

logger = logging.getLogger("weekplan-sync")


class TaskBoard:
    """Local copy of an owner's tasks, ordered by due date."""

    def __init__(self, store: TaskStore, view: ViewBinding, owner_id: str = ""):
        self.store = store
        self.view = view
        self.owner_id = owner_id
        self.tasks: dict[str, TaskItem] = {}
        self._guard = InFlightGuard()

    async def load(self, owner_id: str | None = None) -> list[TaskItem]:
        owner = owner_id or self.owner_id
        try:
            tasks = await self.store.list_tasks(owner)
        except Exception as e:
            logger.error("Failed to load tasks for '%s': %s", owner, e)
            self.view.notify("error", "Failed to load tasks. Please refresh the page.")
            raise
        self.owner_id = owner
        self.tasks = {t.id: t for t in sorted(tasks, key=lambda t: t.due_date)}
        return list(self.tasks.values())

    def overdue(self, today: date | None = None) -> list[TaskItem]:
        today = today or date.today()
        return [t for t in self.tasks.values() if t.is_overdue(today)]

    async def toggle_completion(self, task_id: str, completed: bool) -> TaskItem:
        """Flip the completed flag locally first; restore it if the store fails."""
        task = self.tasks.get(task_id)
        if task is None:
            raise NotFound(f"Unknown task: {task_id}")

        with self._guard.hold(task_id):
            self.tasks[task_id] = replace(task, completed=completed)
            try:
                await self.store.update_task(task_id, {"completed": completed})
            except Exception as e:
                self.tasks[task_id] = replace(self.tasks[task_id], completed=task.completed)
                logger.warning("Failed to update task completion for '%s': %s", task_id, e)
                self.view.notify("error", "Failed to update task completion")
                raise
        return self.tasks[task_id]
