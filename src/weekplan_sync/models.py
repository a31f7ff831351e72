"""Data types for recurring schedule entries, their occurrences and tasks."""

from __future__ import annotations

import re
from dataclasses import dataclass, fields, replace
from datetime import date, datetime, time
from typing import Any

from .errors import ValidationError

_HHMM = re.compile(r"^([01]\d|2[0-3]):([0-5]\d)(:[0-5]\d)?$")

# Fields sent to the store; id is assigned remotely.
PERSISTED_FIELDS = ("owner_id", "day_of_week", "start_time", "end_time", "title", "room", "professor")

# ScheduleEntry attribute -> column in the `schedules` table
RECORD_COLUMNS = {
    "owner_id": "user_id",
    "day_of_week": "day",
    "start_time": "start_time",
    "end_time": "end_time",
    "title": "class_name",
    "room": "room",
    "professor": "professor",
}

PRIORITIES = ("low", "medium", "high")


def parse_hhmm(value: str) -> time:
    """Parse a wall-clock time of day given as ``HH:MM`` (or ``HH:MM:SS``)."""
    match = _HHMM.match(value.strip()) if isinstance(value, str) else None
    if not match:
        raise ValueError(f"Invalid time of day: {value!r}")
    return time(int(match.group(1)), int(match.group(2)))


def format_hhmm(value: time | datetime) -> str:
    return f"{value.hour:02d}:{value.minute:02d}"


def normalize_hhmm(value: str) -> str:
    """Truncate ``HH:MM:SS`` as returned by relational time columns to ``HH:MM``."""
    return format_hhmm(parse_hhmm(value))


@dataclass(frozen=True)
class ScheduleEntry:
    """A persisted recurring weekly schedule record.

    ``day_of_week`` is Sunday-anchored: 0 = Sunday, 1 = Monday ... 6 = Saturday.
    """

    id: str | None
    owner_id: str
    day_of_week: int
    start_time: str  # HH:MM
    end_time: str  # HH:MM
    title: str
    room: str = ""
    professor: str = ""

    def with_changes(self, **changes: Any) -> ScheduleEntry:
        return replace(self, **changes)

    def changed_fields(self, other: ScheduleEntry) -> dict[str, Any]:
        """Persisted fields whose value in ``other`` differs from this entry."""
        return {
            name: getattr(other, name)
            for name in PERSISTED_FIELDS
            if getattr(other, name) != getattr(self, name)
        }

    def to_record(self) -> dict[str, Any]:
        """Row shape of the ``schedules`` table, without the id."""
        return {column: getattr(self, attr) for attr, column in RECORD_COLUMNS.items()}

    @classmethod
    def from_record(cls, row: dict[str, Any]) -> ScheduleEntry:
        return cls(
            id=str(row["id"]) if row.get("id") is not None else None,
            owner_id=str(row.get("user_id", "")),
            day_of_week=int(row["day"]),
            start_time=normalize_hhmm(row["start_time"]),
            end_time=normalize_hhmm(row["end_time"]),
            title=row.get("class_name") or "",
            room=row.get("room") or "",
            professor=row.get("professor") or "",
        )


def record_changes(changes: dict[str, Any]) -> dict[str, Any]:
    """Translate entry attribute names in a partial update to table columns."""
    return {RECORD_COLUMNS[name]: value for name, value in changes.items()}


@dataclass(frozen=True)
class Occurrence:
    """One concrete calendar instantiation of an entry for the displayed week."""

    entry: ScheduleEntry
    start: datetime
    end: datetime

    @property
    def entry_id(self) -> str | None:
        return self.entry.id

    @property
    def title(self) -> str:
        return self.entry.title

    @property
    def day_of_week(self) -> int:
        return self.entry.day_of_week


@dataclass
class EntryDraft:
    """Raw edit-form input. Values may be empty until validated."""

    title: str = ""
    day_of_week: int | str | None = None
    start_time: str = ""
    end_time: str = ""
    room: str = ""
    professor: str = ""

    @classmethod
    def from_entry(cls, entry: ScheduleEntry) -> EntryDraft:
        return cls(**{f.name: getattr(entry, f.name) for f in fields(cls)})


def validate_slot(day_of_week: Any, start_time: str, end_time: str) -> tuple[int, str, str]:
    """Validate a day/time slot and return it normalized."""
    invalid: list[str] = []
    try:
        day = int(day_of_week)
    except (TypeError, ValueError):
        day = -1
    if not 0 <= day <= 6:
        invalid.append("day_of_week")

    times: dict[str, str] = {}
    for name, value in (("start_time", start_time), ("end_time", end_time)):
        try:
            times[name] = normalize_hhmm(value)
        except ValueError:
            invalid.append(name)

    if invalid:
        raise ValidationError(f"Invalid value for: {', '.join(invalid)}", invalid)
    # Zero-padded HH:MM compares correctly as strings.
    if times["start_time"] >= times["end_time"]:
        raise ValidationError("Start time must be before end time", ["start_time", "end_time"])
    return day, times["start_time"], times["end_time"]


def validate_draft(draft: EntryDraft) -> EntryDraft:
    """Check required fields and the time range, returning a normalized draft."""
    missing = [
        name
        for name in ("title", "day_of_week", "start_time", "end_time")
        if getattr(draft, name) is None or str(getattr(draft, name)).strip() == ""
    ]
    if missing:
        raise ValidationError("Please fill in all required fields.", missing)

    day, start, end = validate_slot(draft.day_of_week, draft.start_time, draft.end_time)
    return EntryDraft(
        title=draft.title.strip(),
        day_of_week=day,
        start_time=start,
        end_time=end,
        room=(draft.room or "").strip(),
        professor=(draft.professor or "").strip(),
    )


@dataclass(frozen=True)
class TaskItem:
    """A to-do item from the task list, completed via a single flag."""

    id: str
    owner_id: str
    title: str
    due_date: date
    description: str = ""
    priority: str = "medium"
    completed: bool = False

    def is_overdue(self, today: date) -> bool:
        return self.due_date < today and not self.completed

    @classmethod
    def from_record(cls, row: dict[str, Any]) -> TaskItem:
        due = row["due_date"]
        if isinstance(due, str):
            due = date.fromisoformat(due[:10])
        priority = row.get("priority") or "medium"
        if priority not in PRIORITIES:
            priority = "medium"
        return cls(
            id=str(row["id"]),
            owner_id=str(row.get("user_id", "")),
            title=row.get("title") or "",
            due_date=due,
            description=row.get("description") or "",
            priority=priority,
            completed=bool(row.get("completed", False)),
        )
