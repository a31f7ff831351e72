"""PostgREST (Supabase) store: the `schedules` and `tasks` tables over HTTP."""

from __future__ import annotations

import logging
import os
from typing import Any

import httpx

from ..errors import NotFound, StoreError
from ..models import ScheduleEntry, TaskItem, record_changes

logger = logging.getLogger("weekplan-sync")


class RestStore:
    """Schedule store for a PostgREST endpoint such as Supabase `/rest/v1`."""

    def __init__(self, config: dict[str, Any], client: httpx.AsyncClient | None = None):
        self._config = config
        self._url = config["url"].rstrip("/")
        self._schedules_table = config.get("schedules_table", "schedules")
        self._tasks_table = config.get("tasks_table", "tasks")
        self._client = client  # Lazy init

    def _headers(self) -> dict[str, str]:
        api_key = os.environ.get(self._config["api_key_env"], "")
        if not api_key:
            raise StoreError(f"REST store: API key not set ({self._config['api_key_env']})")
        token = api_key
        token_env = self._config.get("access_token_env")
        if token_env and os.environ.get(token_env):
            token = os.environ[token_env]
        return {
            "apikey": api_key,
            "Authorization": f"Bearer {token}",
            "Content-Type": "application/json",
        }

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._config.get("timeout", 30.0))
        return self._client

    async def _request(
        self,
        method: str,
        table: str,
        *,
        params: dict[str, str] | None = None,
        json: Any = None,
        representation: bool = False,
    ) -> Any:
        headers = self._headers()
        if representation:
            headers["Prefer"] = "return=representation"
        try:
            response = await self._get_client().request(
                method, f"{self._url}/{table}", params=params, json=json, headers=headers
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            if e.response.status_code == 404:
                raise NotFound(f"{table}: {e.response.text}") from e
            raise StoreError(
                f"{method} {table} failed: {e.response.status_code} {e.response.text}"
            ) from e
        except httpx.HTTPError as e:
            raise StoreError(f"{method} {table} failed: {e}") from e
        if not response.content:
            return None
        return response.json()

    async def list_entries(self, owner_id: str) -> list[ScheduleEntry]:
        rows = await self._request(
            "GET", self._schedules_table, params={"select": "*", "user_id": f"eq.{owner_id}"}
        )
        return [ScheduleEntry.from_record(row) for row in rows or []]

    async def create_entry(self, entry: ScheduleEntry) -> ScheduleEntry:
        rows = await self._request(
            "POST", self._schedules_table, json=[entry.to_record()], representation=True
        )
        if not rows:
            raise StoreError("Insert returned no row")
        logger.info("REST entry created: %s", entry.title)
        return ScheduleEntry.from_record(rows[0])

    async def update_entry(self, entry_id: str, fields: dict[str, Any]) -> None:
        rows = await self._request(
            "PATCH",
            self._schedules_table,
            params={"id": f"eq.{entry_id}"},
            json=record_changes(fields),
            representation=True,
        )
        if not rows:
            raise NotFound(f"Schedule entry not found: {entry_id}")

    async def delete_entry(self, entry_id: str) -> None:
        rows = await self._request(
            "DELETE", self._schedules_table, params={"id": f"eq.{entry_id}"}, representation=True
        )
        if not rows:
            raise NotFound(f"Schedule entry not found: {entry_id}")

    async def list_tasks(self, owner_id: str) -> list[TaskItem]:
        rows = await self._request(
            "GET",
            self._tasks_table,
            params={"select": "*", "user_id": f"eq.{owner_id}", "order": "due_date.asc"},
        )
        return [TaskItem.from_record(row) for row in rows or []]

    async def update_task(self, task_id: str, fields: dict[str, Any]) -> None:
        rows = await self._request(
            "PATCH", self._tasks_table, params={"id": f"eq.{task_id}"}, json=fields, representation=True
        )
        if not rows:
            raise NotFound(f"Task not found: {task_id}")

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
