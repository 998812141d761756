"""Custom exception hierarchy for parkgate."""

from __future__ import annotations


class ParkGateError(Exception):
    """Base exception for all parkgate errors."""


class ParkGateConfigError(ParkGateError):
    """Invalid or missing configuration."""


class ParkGateStorageError(ParkGateError):
    """Persistence store could not be read or written.

    The tracker catches this on save and keeps its in-memory state
    authoritative; the next successful write reconciles storage.
    """

    def __init__(self, message: str, *, path: str = "") -> None:
        self.path = path
        super().__init__(message)


class ParkGateFeedError(ParkGateError):
    """Sensor feed could not be configured or started.

    Individual malformed readings never raise this; they are dropped at
    the feed boundary.
    """
