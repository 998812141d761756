"""Distance to gate-state derivation."""

from __future__ import annotations

from parkgate.config import DEFAULT_THRESHOLD_CM
from parkgate.models.lane import GateState, SensorReading


def derive_gate_open(distance_cm: float, threshold_cm: float = DEFAULT_THRESHOLD_CM) -> bool:
    """Return ``True`` when a vehicle is close enough to open the gate.

    No hysteresis: the comparison is strict, so a reading equal to the
    threshold keeps the gate closed.
    """
    return distance_cm < threshold_cm


def derive_gate_state(reading: SensorReading, threshold_cm: float = DEFAULT_THRESHOLD_CM) -> GateState:
    return GateState(lane=reading.lane, is_open=derive_gate_open(reading.distance_cm, threshold_cm))
