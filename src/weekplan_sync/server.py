#!/usr/bin/env python3
"""
weekplan-sync: Weekly class schedule MCP server.

Keeps one calendar week session in sync with a remote schedule store, applying
edits optimistically and rolling them back when the store rejects them.
Stores: in-memory, PostgREST/Supabase, CalDAV, Google Calendar.

Environment variables:
    WEEKPLAN_CONFIG - Path to weekplan.yaml (default: /config/weekplan.yaml)
    WEEKPLAN_LOG_LEVEL - Logging level (default: INFO)
"""

import logging
import os
import sys
from datetime import date, timedelta
from typing import Any

from mcp.server.fastmcp import FastMCP

from .config import AppConfig, StoreConfig, load_config
from .coordinator import ScheduleCoordinator
from .errors import WeekplanError
from .models import EntryDraft, Occurrence, ScheduleEntry, TaskItem, format_hhmm
from .projector import week_window
from .stores.base import ScheduleStore, TaskStore
from .tasks import TaskBoard
from .view import OccurrenceMoved, OccurrenceResized, RecordingView

logger = logging.getLogger("weekplan-sync")


# ---------------------------------------------------------------------------
# Module-level state
# ---------------------------------------------------------------------------

_config: AppConfig = AppConfig()
_session: ScheduleCoordinator | None = None
_tasks: TaskBoard | None = None


def _init_store(store_config: StoreConfig) -> ScheduleStore:
    """Create the store instance for the configured type."""
    if store_config.type == "memory":
        from .stores.memory import MemoryStore
        return MemoryStore()
    elif store_config.type == "rest":
        from .stores.rest import RestStore
        return RestStore(store_config.config)
    elif store_config.type == "caldav":
        from .stores.caldav_store import CalDAVStore
        return CalDAVStore(store_config.config)
    elif store_config.type == "google":
        from .stores.google import GoogleCalendarStore
        return GoogleCalendarStore(store_config.config)
    else:
        raise ValueError(f"Unknown store type: {store_config.type}")


def _get_session() -> ScheduleCoordinator:
    """Get the calendar session. Lazy-initializes on first access."""
    global _session
    if _session is None:
        _session = ScheduleCoordinator(
            _init_store(_config.store), RecordingView(), owner_id=_config.owner_id
        )
    return _session


def _get_tasks() -> TaskBoard | None:
    global _tasks
    if _tasks is None:
        session = _get_session()
        if not isinstance(session.store, TaskStore):
            return None
        _tasks = TaskBoard(session.store, session.view, owner_id=session.owner_id)
    return _tasks


def _entry_to_dict(entry: ScheduleEntry) -> dict[str, Any]:
    return {
        "id": entry.id,
        "title": entry.title,
        "day_of_week": entry.day_of_week,
        "start_time": entry.start_time,
        "end_time": entry.end_time,
        "room": entry.room,
        "professor": entry.professor,
    }


def _occurrence_to_dict(occurrence: Occurrence) -> dict[str, Any]:
    """Convert Occurrence to JSON-friendly dict."""
    settings = _config.calendar
    start_time, end_time = format_hhmm(occurrence.start), format_hhmm(occurrence.end)
    return {
        **_entry_to_dict(occurrence.entry),
        "start": occurrence.start.isoformat(),
        "end": occurrence.end.isoformat(),
        "visible": settings.slot_min_time <= start_time and end_time <= settings.slot_max_time,
    }


def _task_to_dict(task: TaskItem, today: date) -> dict[str, Any]:
    return {
        "id": task.id,
        "title": task.title,
        "description": task.description,
        "due_date": task.due_date.isoformat(),
        "priority": task.priority,
        "completed": task.completed,
        "overdue": task.is_overdue(today),
    }


def _week_result(session: ScheduleCoordinator) -> dict[str, Any]:
    start, end = week_window(session.reference_date)
    occurrences = session.registry.occurrences()
    return {
        "owner_id": session.owner_id,
        "week_start": start.date().isoformat(),
        "week_end": (end - timedelta(days=1)).date().isoformat(),
        "slot_min_time": _config.calendar.slot_min_time,
        "slot_max_time": _config.calendar.slot_max_time,
        "count": len(occurrences),
        "occurrences": [_occurrence_to_dict(o) for o in occurrences],
    }


def _parse_date(value: str) -> date:
    """Parse ISO 8601 date string. Datetimes are truncated to their date."""
    from dateutil.parser import parse as parse_dt
    return parse_dt(value).date()


def _error(e: Exception) -> dict[str, Any]:
    result: dict[str, Any] = {"error": str(e), "type": type(e).__name__}
    fields = getattr(e, "fields", None)
    if fields:
        result["fields"] = fields
    return result


# ---------------------------------------------------------------------------
# MCP Server + Tools
# ---------------------------------------------------------------------------

mcp = FastMCP("weekplan")


@mcp.tool()
async def load_schedule(owner_id: str = "", week_of: str = "") -> dict:
    """Load an owner's weekly schedule and show the week containing a date.

    Args:
        owner_id: Owner whose schedule to load. Empty = configured owner.
        week_of: Any date in the week to display (ISO 8601). Default: today.
    """
    session = _get_session()
    if week_of:
        try:
            session.reference_date = _parse_date(week_of)
        except (ValueError, OverflowError):
            return {"error": f"Invalid date: {week_of}"}
    if not (owner_id or session.owner_id):
        return {"error": "No owner_id given and none configured"}
    try:
        await session.load(owner_id or None)
    except WeekplanError as e:
        return _error(e)
    return _week_result(session)


@mcp.tool()
async def show_week(week_of: str = "", step: int = 0) -> dict:
    """Change the displayed week.

    Args:
        week_of: Any date in the week to display (ISO 8601). Empty = keep current week.
        step: Weeks to move forward (positive) or back (negative) from that week.
    """
    session = _get_session()
    reference = session.reference_date
    if week_of:
        try:
            reference = _parse_date(week_of)
        except (ValueError, OverflowError):
            return {"error": f"Invalid date: {week_of}"}
    try:
        reference = reference + timedelta(weeks=step)
    except OverflowError:
        return {"error": f"Week step out of range: {step}"}
    session.show_week(reference)
    return _week_result(session)


@mcp.tool()
async def list_occurrences() -> dict:
    """List the occurrences currently displayed for the week."""
    return _week_result(_get_session())


@mcp.tool()
async def create_entry(
    title: str,
    day_of_week: int,
    start_time: str,
    end_time: str,
    room: str = "",
    professor: str = "",
) -> dict:
    """Add a recurring weekly class.

    Args:
        title: Class name
        day_of_week: 0 = Sunday, 1 = Monday ... 6 = Saturday
        start_time: Start time of day (HH:MM)
        end_time: End time of day (HH:MM)
        room: Room (optional)
        professor: Professor (optional)
    """
    session = _get_session()
    session.open_editor(None)
    draft = EntryDraft(title, day_of_week, start_time, end_time, room, professor)
    try:
        entry = await session.submit(draft)
    except WeekplanError as e:
        session.cancel()
        return _error(e)
    return {"success": True, "entry": _entry_to_dict(entry)}


@mcp.tool()
async def update_entry(
    entry_id: str,
    title: str = "",
    day_of_week: int = -1,
    start_time: str = "",
    end_time: str = "",
    room: str | None = None,
    professor: str | None = None,
) -> dict:
    """Edit a class. Only provided fields are changed.

    Args:
        entry_id: Entry ID (from load_schedule or list_occurrences)
        title: New class name (optional)
        day_of_week: New day, 0 = Sunday ... 6 = Saturday (optional, -1 = unchanged)
        start_time: New start time HH:MM (optional)
        end_time: New end time HH:MM (optional)
        room: New room (optional, "" clears it)
        professor: New professor (optional, "" clears it)
    """
    session = _get_session()
    try:
        draft = session.open_editor(entry_id)
    except WeekplanError as e:
        return _error(e)

    changes: dict[str, Any] = {
        name: value
        for name, value in (("title", title), ("start_time", start_time), ("end_time", end_time))
        if value != ""
    }
    if day_of_week >= 0:
        changes["day_of_week"] = day_of_week
    if room is not None:
        changes["room"] = room
    if professor is not None:
        changes["professor"] = professor
    if not changes:
        session.cancel()
        return {"error": "No fields to update"}

    for name, value in changes.items():
        setattr(draft, name, value)
    try:
        entry = await session.submit(draft)
    except WeekplanError as e:
        session.cancel()
        return _error(e)
    return {"success": True, "entry": _entry_to_dict(entry)}


@mcp.tool()
async def move_entry(entry_id: str, day_of_week: int, start_time: str, end_time: str) -> dict:
    """Move a class to another day and/or time slot (drag and drop).

    Args:
        entry_id: Entry ID
        day_of_week: Target day, 0 = Sunday ... 6 = Saturday
        start_time: New start time HH:MM
        end_time: New end time HH:MM
    """
    session = _get_session()
    try:
        entry = await session.handle(OccurrenceMoved(entry_id, day_of_week, start_time, end_time))
    except WeekplanError as e:
        return _error(e)
    return {"success": True, "entry": _entry_to_dict(entry)}


@mcp.tool()
async def resize_entry(entry_id: str, end_time: str) -> dict:
    """Change when a class ends.

    Args:
        entry_id: Entry ID
        end_time: New end time HH:MM
    """
    session = _get_session()
    try:
        entry = await session.handle(OccurrenceResized(entry_id, end_time))
    except WeekplanError as e:
        return _error(e)
    return {"success": True, "entry": _entry_to_dict(entry)}


@mcp.tool()
async def delete_entry(entry_id: str) -> dict:
    """Delete a class from the schedule.

    Args:
        entry_id: Entry ID
    """
    session = _get_session()
    try:
        await session.delete(entry_id)
    except WeekplanError as e:
        return _error(e)
    return {"success": True, "message": f"Entry {entry_id} deleted"}


@mcp.tool()
async def list_tasks(owner_id: str = "") -> dict:
    """List the owner's tasks, ordered by due date.

    Args:
        owner_id: Owner whose tasks to list. Empty = session owner.
    """
    board = _get_tasks()
    if board is None:
        return {"error": f"Store type '{_config.store.type}' has no task list"}
    try:
        tasks = await board.load(owner_id or None)
    except WeekplanError as e:
        return _error(e)
    today = date.today()
    return {"count": len(tasks), "tasks": [_task_to_dict(t, today) for t in tasks]}


@mcp.tool()
async def toggle_task(task_id: str, completed: bool) -> dict:
    """Mark a task as completed or not completed.

    Args:
        task_id: Task ID (from list_tasks)
        completed: New completion state
    """
    board = _get_tasks()
    if board is None:
        return {"error": f"Store type '{_config.store.type}' has no task list"}
    try:
        task = await board.toggle_completion(task_id, completed)
    except WeekplanError as e:
        return _error(e)
    return {"success": True, "task": _task_to_dict(task, date.today())}


# ---------------------------------------------------------------------------
# Google OAuth2 CLI helper
# ---------------------------------------------------------------------------

def _run_google_auth() -> None:
    """Interactive OAuth2 flow for the Google store. Run once to obtain token."""
    if _config.store.type != "google":
        print(f"Configured store is type '{_config.store.type}', not 'google'", file=sys.stderr)
        sys.exit(1)

    from google_auth_oauthlib.flow import InstalledAppFlow

    from .stores.google import SCOPES

    credentials_file = _config.store.config["credentials_file"]
    token_file = _config.store.config.get("token_file", "/data/google_calendar_token.json")

    import json

    if not os.path.isfile(credentials_file):
        print(f"Credentials file not found: {credentials_file}", file=sys.stderr)
        sys.exit(1)

    flow = InstalledAppFlow.from_client_secrets_file(credentials_file, SCOPES)
    creds = flow.run_local_server(port=0)

    os.makedirs(os.path.dirname(token_file) or ".", exist_ok=True)
    with open(token_file, "w") as f:
        json.dump(json.loads(creds.to_json()), f)

    print(f"Token saved to {token_file}", file=sys.stderr)
    print("Google Calendar authentication complete.", file=sys.stderr)


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

def main():
    """Entry point for console script and python -m."""
    global _config

    # MCP stdio servers must NEVER write to stdout; log to stderr only.
    logging.basicConfig(
        level=os.environ.get("WEEKPLAN_LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        stream=sys.stderr,
    )

    _config = load_config()

    if "--auth" in sys.argv:
        idx = sys.argv.index("--auth")
        provider = sys.argv[idx + 1] if idx + 1 < len(sys.argv) else ""
        if provider != "google":
            print(f"Only --auth google is supported, got: {provider}", file=sys.stderr)
            sys.exit(1)
        _run_google_auth()
        return

    logger.info("Store: %s, owner: %s", _config.store.type, _config.owner_id or "(none)")
    mcp.run(transport="stdio")


if __name__ == "__main__":
    main()
