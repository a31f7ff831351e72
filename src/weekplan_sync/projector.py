"""Project recurring weekly entries onto concrete dates of the displayed week.

Weeks are Sunday-anchored throughout (storage and display): day 0 is Sunday,
and the week containing a date starts on the Sunday on or before it.
"""

from __future__ import annotations

import logging
from datetime import date, datetime, timedelta
from typing import Iterable

from .errors import InvalidEntry
from .models import Occurrence, ScheduleEntry, parse_hhmm

logger = logging.getLogger("weekplan-sync")


def weekday_of(value: date) -> int:
    """Sunday-anchored weekday number (0 = Sunday ... 6 = Saturday)."""
    return (value.weekday() + 1) % 7


def _as_date(value: date) -> date:
    return value.date() if isinstance(value, datetime) else value


def week_start(value: date) -> date:
    """Sunday on or before ``value``."""
    day = _as_date(value)
    return day - timedelta(days=weekday_of(day))


def week_window(value: date) -> tuple[datetime, datetime]:
    """Half-open [start, end) datetime range of the week containing ``value``."""
    start = datetime.combine(week_start(value), datetime.min.time())
    return start, start + timedelta(days=7)


def project(entry: ScheduleEntry, reference_date: date) -> Occurrence:
    """Concrete occurrence of ``entry`` in the week containing ``reference_date``.

    The target weekday may lie before the reference weekday; the result is
    then earlier than ``reference_date`` but still inside the same week.
    """
    if not isinstance(entry.day_of_week, int) or not 0 <= entry.day_of_week <= 6:
        raise InvalidEntry(f"Entry {entry.id!r}: day_of_week out of range: {entry.day_of_week!r}")
    try:
        start_time = parse_hhmm(entry.start_time)
        end_time = parse_hhmm(entry.end_time)
    except ValueError as e:
        raise InvalidEntry(f"Entry {entry.id!r}: {e}") from e
    if start_time >= end_time:
        raise InvalidEntry(f"Entry {entry.id!r}: start {entry.start_time} is not before end {entry.end_time}")

    reference = _as_date(reference_date)
    target = reference + timedelta(days=entry.day_of_week - weekday_of(reference))
    return Occurrence(
        entry=entry,
        start=datetime.combine(target, start_time),
        end=datetime.combine(target, end_time),
    )


def project_all(entries: Iterable[ScheduleEntry], reference_date: date) -> list[Occurrence]:
    """Project every entry, skipping (and logging) the invalid ones."""
    occurrences = []
    for entry in entries:
        try:
            occurrences.append(project(entry, reference_date))
        except InvalidEntry as e:
            logger.warning("Skipping invalid schedule entry: %s", e)
    occurrences.sort(key=lambda o: o.start)
    return occurrences
