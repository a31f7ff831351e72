"""In-memory registry of the occurrences currently rendered in the view."""

from __future__ import annotations

from typing import Iterable, Iterator

from .models import Occurrence
from .view import ViewBinding


class OccurrenceRegistry:
    """Maps an entry key to its single occurrence in the displayed week.

    Every change is mirrored onto the bound view. Keys are persisted entry
    ids, or a provisional key for a create that is not confirmed yet.
    """

    def __init__(self, view: ViewBinding):
        self._view = view
        self._occurrences: dict[str, Occurrence] = {}

    def put(self, key: str, occurrence: Occurrence) -> None:
        self._occurrences[key] = occurrence
        self._view.upsert(key, occurrence)

    def remove(self, key: str) -> None:
        if self._occurrences.pop(key, None) is not None:
            self._view.remove(key)

    def snapshot(self, key: str) -> Occurrence | None:
        return self._occurrences.get(key)

    get = snapshot

    def reset(self, occurrences: Iterable[Occurrence]) -> None:
        """Replace the whole displayed set, e.g. after a week change."""
        self._occurrences = {o.entry_id: o for o in occurrences if o.entry_id is not None}
        self._view.render(self.occurrences())

    def occurrences(self) -> list[Occurrence]:
        return sorted(self._occurrences.values(), key=lambda o: o.start)

    def keys(self) -> list[str]:
        return list(self._occurrences)

    def __contains__(self, key: object) -> bool:
        return key in self._occurrences

    def __len__(self) -> int:
        return len(self._occurrences)

    def __iter__(self) -> Iterator[str]:
        return iter(self._occurrences)
