"""Exception types raised by the schedule engine and its stores."""

from __future__ import annotations


class WeekplanError(Exception):
    """Base class for all weekplan-sync errors."""


class ValidationError(WeekplanError):
    """Required form fields are missing or malformed.

    Raised before any optimistic or remote effect takes place.
    """

    def __init__(self, message: str, fields: list[str] | None = None):
        super().__init__(message)
        self.fields = fields or []


class InvalidEntry(WeekplanError):
    """The projector received a structurally invalid entry."""


class StoreError(WeekplanError):
    """A remote list/create/update/delete call failed."""


class NotFound(StoreError):
    """The mutation target no longer exists in the remote store."""


class ConcurrentMutationError(WeekplanError):
    """A mutation was attempted on an entry that is already persisting."""

    def __init__(self, key: str):
        super().__init__(f"A change to '{key}' is still being saved")
        self.key = key
