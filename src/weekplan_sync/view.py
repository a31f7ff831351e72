"""Boundary between the schedule engine and a calendar rendering surface."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Protocol, Sequence, Union, runtime_checkable

from .models import Occurrence


@runtime_checkable
class ViewBinding(Protocol):
    """Protocol a calendar renderer must satisfy."""

    def render(self, occurrences: Sequence[Occurrence]) -> None: ...

    def upsert(self, key: str, occurrence: Occurrence) -> None: ...

    def remove(self, key: str) -> None: ...

    def revert(self, key: str) -> None: ...

    def notify(self, level: str, message: str) -> None: ...


# ---------------------------------------------------------------------------
# Interaction events emitted by the view
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class OccurrenceActivated:
    entry_id: str


@dataclass(frozen=True)
class EmptySlotSelected:
    day_of_week: int
    start_time: str
    end_time: str


@dataclass(frozen=True)
class OccurrenceMoved:
    entry_id: str
    day_of_week: int
    start_time: str
    end_time: str


@dataclass(frozen=True)
class OccurrenceResized:
    entry_id: str
    end_time: str


ViewEvent = Union[OccurrenceActivated, EmptySlotSelected, OccurrenceMoved, OccurrenceResized]


@dataclass
class RecordingView:
    """Headless view that keeps the displayed set and records every effect."""

    displayed: dict[str, Occurrence] = field(default_factory=dict)
    effects: list[tuple[str, str | None]] = field(default_factory=list)
    messages: list[tuple[str, str]] = field(default_factory=list)

    def render(self, occurrences: Sequence[Occurrence]) -> None:
        self.displayed = {o.entry_id: o for o in occurrences if o.entry_id is not None}
        self.effects.append(("render", None))

    def upsert(self, key: str, occurrence: Occurrence) -> None:
        self.displayed[key] = occurrence
        self.effects.append(("upsert", key))

    def remove(self, key: str) -> None:
        self.displayed.pop(key, None)
        self.effects.append(("remove", key))

    def revert(self, key: str) -> None:
        self.effects.append(("revert", key))

    def notify(self, level: str, message: str) -> None:
        self.messages.append((level, message))

    @property
    def last_message(self) -> tuple[str, str] | None:
        return self.messages[-1] if self.messages else None
