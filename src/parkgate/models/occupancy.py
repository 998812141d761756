"""Occupancy records, snapshots and notifications."""

from __future__ import annotations

from enum import StrEnum

from pydantic import Field

from parkgate.models._base import OptionalUtcDatetime, ParkGateBaseModel, UtcDatetime, utcnow


class OccupancyRecord(ParkGateBaseModel):
    """Durable form of the lot's occupancy state.

    ``entry_gate_open``/``exit_gate_open`` carry the tracker's edge
    memory so a restart while a gate is held open does not recount the
    same vehicle.  ``sequence`` is the logical write number; stores
    refuse to overwrite a record with an older one.
    """

    count: int = Field(default=0, ge=0)
    last_entry_at: OptionalUtcDatetime = None
    entry_gate_open: bool = False
    exit_gate_open: bool = False
    sequence: int = Field(default=0, ge=0)


class OccupancySnapshot(ParkGateBaseModel):
    """Read-only view handed to the presentation layer."""

    count: int
    capacity: int
    is_full: bool
    available_slots: int
    last_entry_at: OptionalUtcDatetime = None
    entry_gate_open: bool = False
    exit_gate_open: bool = False
    feed_connected: bool = False


class OccupancyEventKind(StrEnum):
    VEHICLE_ENTERED = "vehicle_entered"
    VEHICLE_EXITED = "vehicle_exited"
    RESET = "reset"


class OccupancyEvent(ParkGateBaseModel):
    """Notification emitted after a completed occupancy mutation."""

    kind: OccupancyEventKind
    count: int
    at: UtcDatetime = Field(default_factory=utcnow)
    last_entry_at: OptionalUtcDatetime = None
