"""Pydantic models for parkgate."""

from parkgate.models._base import ParkGateBaseModel, parse_timestamp, utcnow
from parkgate.models.lane import GateState, Lane, SensorReading
from parkgate.models.occupancy import (
    OccupancyEvent,
    OccupancyEventKind,
    OccupancyRecord,
    OccupancySnapshot,
)

__all__ = [
    "GateState",
    "Lane",
    "OccupancyEvent",
    "OccupancyEventKind",
    "OccupancyRecord",
    "OccupancySnapshot",
    "ParkGateBaseModel",
    "SensorReading",
    "parse_timestamp",
    "utcnow",
]
