"""CalDAV store (Nextcloud, ownCloud, Radicale, etc.).

Each schedule entry is one weekly-recurring VEVENT. Its first instance lies
in a fixed anchor week, so the weekday of DTSTART is the entry's day.
"""

from __future__ import annotations

import asyncio
import logging
import os
import uuid
from datetime import date, datetime
from typing import Any, Callable

from icalendar import Calendar, Event

from ..errors import NotFound, StoreError
from ..models import ScheduleEntry, format_hhmm
from ..projector import project, weekday_of

logger = logging.getLogger("weekplan-sync")

# A Sunday; entries are stored as recurring from this week on.
ANCHOR_WEEK = date(2024, 1, 7)

BYDAY = ("SU", "MO", "TU", "WE", "TH", "FR", "SA")

OWNER_PROP = "X-WEEKPLAN-OWNER"
PROFESSOR_PROP = "X-WEEKPLAN-PROFESSOR"


def entry_to_ical(entry: ScheduleEntry) -> str:
    """Serialize an entry with an id as a VCALENDAR holding one recurring VEVENT."""
    occurrence = project(entry, ANCHOR_WEEK)
    cal = Calendar()
    cal.add("prodid", "-//weekplan-sync//EN")
    cal.add("version", "2.0")

    event = Event()
    event.add("uid", entry.id)
    event.add("summary", entry.title)
    event.add("dtstart", occurrence.start)
    event.add("dtend", occurrence.end)
    event.add("rrule", {"freq": "WEEKLY", "byday": BYDAY[entry.day_of_week]})
    if entry.room:
        event.add("location", entry.room)
    event.add(OWNER_PROP, entry.owner_id)
    if entry.professor:
        event.add(PROFESSOR_PROP, entry.professor)
    cal.add_component(event)
    return cal.to_ical().decode("utf-8")


def vevent_to_entry(vevent: Any) -> ScheduleEntry:
    dtstart = vevent.get("dtstart").dt
    dtend = vevent.get("dtend").dt if vevent.get("dtend") else dtstart
    # Strip timezone info, the schedule uses a single local time reference
    if isinstance(dtstart, datetime) and dtstart.tzinfo:
        dtstart = dtstart.replace(tzinfo=None)
    if isinstance(dtend, datetime) and dtend.tzinfo:
        dtend = dtend.replace(tzinfo=None)

    return ScheduleEntry(
        id=str(vevent.get("uid")),
        owner_id=str(vevent.get(OWNER_PROP, "")),
        day_of_week=weekday_of(dtstart),
        start_time=format_hhmm(dtstart),
        end_time=format_hhmm(dtend),
        title=str(vevent.get("summary", "")),
        room=str(vevent.get("location", "")) if vevent.get("location") else "",
        professor=str(vevent.get(PROFESSOR_PROP, "")) if vevent.get(PROFESSOR_PROP) else "",
    )


class CalDAVStore:
    """Schedule store on a CalDAV calendar collection."""

    def __init__(self, config: dict[str, Any]):
        self._config = config
        self._calendar = None  # Lazy init

    def _get_calendar(self):
        """Lazy-initialize CalDAV client and calendar."""
        if self._calendar is not None:
            return self._calendar

        import caldav

        username = os.environ.get(self._config["username_env"], "")
        password = os.environ.get(self._config["password_env"], "")
        if not username or not password:
            raise StoreError(
                f"CalDAV credentials not set "
                f"({self._config['username_env']}, {self._config['password_env']})"
            )

        url = self._config["url"]
        client = caldav.DAVClient(url=url, username=username, password=password)

        calendar_name_filter = self._config.get("calendar_name")
        if calendar_name_filter:
            calendars = client.principal().calendars()
            for cal in calendars:
                if cal.name == calendar_name_filter:
                    self._calendar = cal
                    break
            if self._calendar is None:
                available = [c.name for c in calendars]
                raise StoreError(
                    f"CalDAV calendar '{calendar_name_filter}' not found. Available: {available}"
                )
        else:
            # URL points directly to a calendar
            self._calendar = caldav.Calendar(client=client, url=url)

        logger.info("CalDAV connected: %s", url)
        return self._calendar

    def _find(self, entry_id: str):
        cal = self._get_calendar()
        event_obj = cal.event_by_uid(entry_id)
        vevents = event_obj.icalendar_instance.walk("VEVENT")
        if not vevents:
            raise NotFound(f"Schedule entry not found: {entry_id}")
        return event_obj, vevents[0]

    def _list_entries_sync(self, owner_id: str) -> list[ScheduleEntry]:
        cal = self._get_calendar()
        entries = []
        for event_obj in cal.events():
            for vevent in event_obj.icalendar_instance.walk("VEVENT"):
                if str(vevent.get(OWNER_PROP, "")) != owner_id:
                    continue
                entries.append(vevent_to_entry(vevent))
        return entries

    def _create_entry_sync(self, entry: ScheduleEntry) -> ScheduleEntry:
        cal = self._get_calendar()
        created = entry.with_changes(id=str(uuid.uuid4()))
        cal.save_event(entry_to_ical(created))
        logger.info("CalDAV entry created: %s", created.title)
        return created

    def _update_entry_sync(self, entry_id: str, fields: dict[str, Any]) -> None:
        event_obj, vevent = self._find(entry_id)
        updated = vevent_to_entry(vevent).with_changes(**fields)
        event_obj.data = entry_to_ical(updated)
        event_obj.save()

    def _delete_entry_sync(self, entry_id: str) -> None:
        event_obj, _ = self._find(entry_id)
        event_obj.delete()

    async def _call(self, func: Callable[..., Any], *args: Any) -> Any:
        from caldav.lib.error import NotFoundError

        loop = asyncio.get_event_loop()
        try:
            return await loop.run_in_executor(None, func, *args)
        except StoreError:
            raise
        except NotFoundError as e:
            raise NotFound(f"CalDAV object not found: {e}") from e
        except Exception as e:
            raise StoreError(f"CalDAV request failed: {e}") from e

    async def list_entries(self, owner_id: str) -> list[ScheduleEntry]:
        return await self._call(self._list_entries_sync, owner_id)

    async def create_entry(self, entry: ScheduleEntry) -> ScheduleEntry:
        return await self._call(self._create_entry_sync, entry)

    async def update_entry(self, entry_id: str, fields: dict[str, Any]) -> None:
        await self._call(self._update_entry_sync, entry_id, fields)

    async def delete_entry(self, entry_id: str) -> None:
        await self._call(self._delete_entry_sync, entry_id)
