"""Traffic lanes and per-lane gate state."""

from __future__ import annotations

import math
from enum import StrEnum

from pydantic import Field, field_validator

from parkgate.models._base import ParkGateBaseModel, UtcDatetime, utcnow


class Lane(StrEnum):
    ENTRY = "entry"
    EXIT = "exit"


class SensorReading(ParkGateBaseModel):
    """A single decoded distance reading for one lane."""

    lane: Lane
    distance_cm: float = Field(..., ge=0, description="Distance to the nearest object in centimetres")
    received_at: UtcDatetime = Field(default_factory=utcnow)

    @field_validator("distance_cm")
    @classmethod
    def _finite(cls, value: float) -> float:
        if not math.isfinite(value):
            raise ValueError("distance_cm must be finite")
        return value


class GateState(ParkGateBaseModel):
    """Open/closed state of one lane's gate."""

    lane: Lane
    is_open: bool
