"""Google Calendar store: entries as weekly recurring events."""

from __future__ import annotations

import asyncio
import json
import logging
import os
from typing import Any, Callable

from dateutil.parser import parse as parse_dt

from ..errors import NotFound, StoreError
from ..models import ScheduleEntry, format_hhmm
from ..projector import project, weekday_of
from .caldav_store import ANCHOR_WEEK, BYDAY

logger = logging.getLogger("weekplan-sync")

SCOPES = ["https://www.googleapis.com/auth/calendar"]


class GoogleCalendarStore:
    """Schedule store for Google Calendar via Google API."""

    def __init__(self, config: dict[str, Any]):
        self._config = config
        self._service = None  # Lazy init
        self._calendar_id = config.get("calendar_id", "primary")
        self._time_zone = config.get("time_zone", "UTC")

    def _get_service(self):
        """Lazy-initialize Google Calendar API service with auto-refresh."""
        if self._service is not None:
            return self._service

        from google.auth.transport.requests import Request
        from google.oauth2.credentials import Credentials
        from googleapiclient.discovery import build

        creds = None
        token_file = self._config.get("token_file", "/data/google_calendar_token.json")
        credentials_file = self._config["credentials_file"]

        if os.path.isfile(token_file):
            with open(token_file, "r") as f:
                token_data = json.load(f)
            creds = Credentials.from_authorized_user_info(token_data, SCOPES)

        if not creds or not creds.valid:
            if creds and creds.expired and creds.refresh_token:
                creds.refresh(Request())
                with open(token_file, "w") as f:
                    json.dump(json.loads(creds.to_json()), f)
                logger.info("Google token refreshed")
            elif os.path.isfile(credentials_file):
                raise StoreError(
                    "Google token not found or expired. Run: python -m weekplan_sync --auth google"
                )
            else:
                raise StoreError(f"Google credentials file not found: {credentials_file}")

        self._service = build("calendar", "v3", credentials=creds)
        logger.info("Google Calendar connected (calendar_id=%s)", self._calendar_id)
        return self._service

    def _entry_body(self, entry: ScheduleEntry) -> dict[str, Any]:
        occurrence = project(entry, ANCHOR_WEEK)
        private = {"weekplan_owner": entry.owner_id}
        if entry.professor:
            private["weekplan_professor"] = entry.professor
        body: dict[str, Any] = {
            "summary": entry.title,
            "start": {"dateTime": occurrence.start.isoformat(), "timeZone": self._time_zone},
            "end": {"dateTime": occurrence.end.isoformat(), "timeZone": self._time_zone},
            "recurrence": [f"RRULE:FREQ=WEEKLY;BYDAY={BYDAY[entry.day_of_week]}"],
            "extendedProperties": {"private": private},
        }
        if entry.room:
            body["location"] = entry.room
        return body

    def _item_to_entry(self, item: dict[str, Any]) -> ScheduleEntry:
        ev_start = parse_dt(item["start"]["dateTime"])
        ev_end = parse_dt(item["end"]["dateTime"])
        private = item.get("extendedProperties", {}).get("private", {})
        return ScheduleEntry(
            id=item["id"],
            owner_id=private.get("weekplan_owner", ""),
            day_of_week=weekday_of(ev_start),
            start_time=format_hhmm(ev_start),
            end_time=format_hhmm(ev_end),
            title=item.get("summary", ""),
            room=item.get("location", ""),
            professor=private.get("weekplan_professor", ""),
        )

    def _list_entries_sync(self, owner_id: str) -> list[ScheduleEntry]:
        service = self._get_service()
        result = (
            service.events()
            .list(
                calendarId=self._calendar_id,
                privateExtendedProperty=f"weekplan_owner={owner_id}",
                singleEvents=False,
                maxResults=250,
            )
            .execute()
        )
        return [
            self._item_to_entry(item)
            for item in result.get("items", [])
            if item.get("recurrence") and "dateTime" in item.get("start", {})
        ]

    def _create_entry_sync(self, entry: ScheduleEntry) -> ScheduleEntry:
        service = self._get_service()
        result = service.events().insert(calendarId=self._calendar_id, body=self._entry_body(entry)).execute()
        logger.info("Google entry created: %s", entry.title)
        return entry.with_changes(id=result["id"])

    def _update_entry_sync(self, entry_id: str, fields: dict[str, Any]) -> None:
        service = self._get_service()
        item = service.events().get(calendarId=self._calendar_id, eventId=entry_id).execute()
        updated = self._item_to_entry(item).with_changes(**fields)
        service.events().patch(
            calendarId=self._calendar_id, eventId=entry_id, body=self._entry_body(updated)
        ).execute()

    def _delete_entry_sync(self, entry_id: str) -> None:
        service = self._get_service()
        service.events().delete(calendarId=self._calendar_id, eventId=entry_id).execute()

    async def _call(self, func: Callable[..., Any], *args: Any) -> Any:
        from googleapiclient.errors import HttpError

        loop = asyncio.get_event_loop()
        try:
            return await loop.run_in_executor(None, func, *args)
        except StoreError:
            raise
        except HttpError as e:
            if e.resp.status in (404, 410):
                raise NotFound(f"Google event not found: {e}") from e
            raise StoreError(f"Google Calendar request failed: {e}") from e
        except Exception as e:
            raise StoreError(f"Google Calendar request failed: {e}") from e

    async def list_entries(self, owner_id: str) -> list[ScheduleEntry]:
        return await self._call(self._list_entries_sync, owner_id)

    async def create_entry(self, entry: ScheduleEntry) -> ScheduleEntry:
        return await self._call(self._create_entry_sync, entry)

    async def update_entry(self, entry_id: str, fields: dict[str, Any]) -> None:
        await self._call(self._update_entry_sync, entry_id, fields)

    async def delete_entry(self, entry_id: str) -> None:
        await self._call(self._delete_entry_sync, entry_id)
