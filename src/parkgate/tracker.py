"""Occupancy state machine.

This is the only component allowed to mutate the lot's occupancy.  It
turns per-lane gate states into +1/-1 deltas on rising edges, forces the
entry gate closed while the lot is full, and writes every mutation
through to the configured store before returning.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from datetime import datetime

from parkgate.config import ParkGateConfig
from parkgate.gate import derive_gate_open
from parkgate.models._base import utcnow
from parkgate.models.lane import GateState, Lane, SensorReading
from parkgate.models.occupancy import (
    OccupancyEvent,
    OccupancyEventKind,
    OccupancyRecord,
    OccupancySnapshot,
)
from parkgate.storage import OccupancyStore

_logger = logging.getLogger(__name__)

OccupancyListener = Callable[[OccupancyEvent], None]


class OccupancyTracker:
    """Edge-triggered vehicle counter for a single capacity-bounded lot.

    All public methods are serialized by one re-entrant lock, so entry and
    exit edges arriving from different threads never lose updates and a
    reset is never interleaved with an edge.

    Parameters
    ----------
    config : ParkGateConfig
        Supplies ``capacity`` and ``threshold_cm``.
    store : OccupancyStore
        Loaded once here; saved on every mutation.
    clock : callable
        Returns the current aware datetime; injectable for tests.
    """

    def __init__(
        self,
        config: ParkGateConfig,
        store: OccupancyStore,
        *,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._config = config
        self._store = store
        self._clock = clock
        self._lock = threading.RLock()
        self._listeners: list[OccupancyListener] = []

        self._count = 0
        self._last_entry_at: datetime | None = None
        self._prev_entry_gate_open = False
        self._prev_exit_gate_open = False
        self._entry_raw_open = False
        self._sequence = 0
        self._feed_connected = False

        self._bootstrap()

    # ------------------------------------------------------------------
    # Bootstrap
    # ------------------------------------------------------------------

    def _bootstrap(self) -> None:
        try:
            record = self._store.load()
        except Exception:
            _logger.warning("Occupancy load failed; starting empty", exc_info=True)
            record = None

        if record is None:
            _logger.debug("No persisted occupancy; starting empty")
            return

        count = min(max(record.count, 0), self._config.capacity)
        if count != record.count:
            _logger.warning(
                "Persisted count %s outside 0..%s; clamped to %s",
                record.count,
                self._config.capacity,
                count,
            )
        self._count = count
        self._last_entry_at = record.last_entry_at
        self._prev_entry_gate_open = record.entry_gate_open
        self._prev_exit_gate_open = record.exit_gate_open
        self._sequence = record.sequence
        _logger.info(
            "Restored occupancy count=%s last_entry_at=%s",
            self._count,
            self._last_entry_at,
        )

    # ------------------------------------------------------------------
    # Read side
    # ------------------------------------------------------------------

    @property
    def capacity(self) -> int:
        return self._config.capacity

    @property
    def count(self) -> int:
        return self._count

    @property
    def last_entry_at(self) -> datetime | None:
        return self._last_entry_at

    @property
    def is_full(self) -> bool:
        return self._count >= self._config.capacity

    def snapshot(self) -> OccupancySnapshot:
        with self._lock:
            return OccupancySnapshot(
                count=self._count,
                capacity=self._config.capacity,
                is_full=self.is_full,
                available_slots=max(0, self._config.capacity - self._count),
                last_entry_at=self._last_entry_at,
                entry_gate_open=self._prev_entry_gate_open and not self.is_full,
                exit_gate_open=self._prev_exit_gate_open,
                feed_connected=self._feed_connected,
            )

    def set_feed_connected(self, connected: bool) -> None:
        """Record feed connectivity; occupancy is held as-is while offline."""
        with self._lock:
            if connected != self._feed_connected:
                _logger.info("Sensor feed %s", "connected" if connected else "disconnected")
            self._feed_connected = connected

    # ------------------------------------------------------------------
    # Notifications
    # ------------------------------------------------------------------

    def subscribe(self, listener: OccupancyListener) -> Callable[[], None]:
        """Register *listener* for occupancy events; returns an unsubscribe callable."""
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def _emit(self, kind: OccupancyEventKind, at: datetime) -> None:
        event = OccupancyEvent(kind=kind, count=self._count, at=at, last_entry_at=self._last_entry_at)
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                _logger.exception("Occupancy listener failed for %s", kind)

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def _persist(self) -> None:
        self._sequence += 1
        record = OccupancyRecord(
            count=self._count,
            last_entry_at=self._last_entry_at,
            entry_gate_open=self._prev_entry_gate_open,
            exit_gate_open=self._prev_exit_gate_open,
            sequence=self._sequence,
        )
        try:
            self._store.save(record)
        except Exception:
            _logger.warning(
                "Occupancy save failed sequence=%s; keeping in-memory state",
                record.sequence,
                exc_info=True,
            )

    def on_entry_gate_state(self, is_open: bool) -> bool:
        """Apply the entry lane's raw gate state.

        Capacity gating runs before edge detection: while the lot is full
        the effective state is closed whatever the sensor says.  Returns
        the effective state.
        """
        with self._lock:
            self._entry_raw_open = bool(is_open)
            effective = self._entry_raw_open and not self.is_full
            rising = effective and not self._prev_entry_gate_open
            self._prev_entry_gate_open = effective

            if not rising:
                if is_open and not effective:
                    _logger.debug("Entry held closed: lot full (%s/%s)", self._count, self._config.capacity)
                return effective

            now = self._clock()
            self._count += 1
            if self._last_entry_at is None or now > self._last_entry_at:
                self._last_entry_at = now
            self._persist()
            _logger.info("Vehicle entered count=%s/%s", self._count, self._config.capacity)
            self._emit(OccupancyEventKind.VEHICLE_ENTERED, now)
            return effective

    def on_exit_gate_state(self, is_open: bool) -> bool:
        """Apply the exit lane's gate state; exit is never capacity-gated."""
        with self._lock:
            effective = bool(is_open)
            rising = effective and not self._prev_exit_gate_open
            self._prev_exit_gate_open = effective

            if not rising:
                return effective

            was_full = self.is_full
            now = self._clock()
            self._count = max(0, self._count - 1)
            self._persist()
            _logger.info("Vehicle exited count=%s/%s", self._count, self._config.capacity)
            self._emit(OccupancyEventKind.VEHICLE_EXITED, now)
            # A vehicle held at a full entry is admitted once a slot frees.
            if was_full and self._entry_raw_open and not self._prev_entry_gate_open:
                self.on_entry_gate_state(True)
            return effective

    def on_gate_state(self, lane: Lane, is_open: bool) -> GateState:
        if lane is Lane.ENTRY:
            effective = self.on_entry_gate_state(is_open)
        else:
            effective = self.on_exit_gate_state(is_open)
        return GateState(lane=lane, is_open=effective)

    def on_reading(self, reading: SensorReading) -> GateState:
        """Run one reading through derivation and edge detection."""
        is_open = derive_gate_open(reading.distance_cm, self._config.threshold_cm)
        _logger.debug("Reading lane=%s distance=%s open=%s", reading.lane, reading.distance_cm, is_open)
        return self.on_gate_state(reading.lane, is_open)

    def reset(self) -> OccupancySnapshot:
        """Clear occupancy and edge memory, persist, and notify."""
        with self._lock:
            self._count = 0
            self._last_entry_at = None
            self._prev_entry_gate_open = False
            self._prev_exit_gate_open = False
            self._persist()
            _logger.info("Occupancy reset")
            self._emit(OccupancyEventKind.RESET, self._clock())
            return self.snapshot()
