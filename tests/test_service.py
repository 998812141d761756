from __future__ import annotations

import asyncio
import logging
import threading
from collections.abc import Callable
from pathlib import Path

import pytest

from parkgate.config import ParkGateConfig
from parkgate.exceptions import ParkGateError, ParkGateFeedError
from parkgate.models.lane import Lane, SensorReading
from parkgate.models.occupancy import OccupancyEvent, OccupancyEventKind, OccupancyRecord
from parkgate.service import ParkingGateService
from parkgate.storage import JsonFileStore, MemoryStore


class _FakeFeed:
    """Stands in for the paho runtime; pushes readings from a foreign thread."""

    instances: list[_FakeFeed] = []

    def __init__(
        self,
        config: ParkGateConfig,
        *,
        on_reading: Callable[[SensorReading], None],
        on_connection: Callable[[bool], None],
        logger: logging.Logger | None = None,
    ) -> None:
        self.config = config
        self.on_reading = on_reading
        self.on_connection = on_connection
        self.started = False
        self.stopped = False
        _FakeFeed.instances.append(self)

    def start(self) -> None:
        self.started = True

    def stop(self) -> None:
        self.stopped = True

    def push_from_thread(self, readings: list[SensorReading], connected: bool = True) -> None:
        def _run() -> None:
            self.on_connection(connected)
            for reading in readings:
                self.on_reading(reading)

        thread = threading.Thread(target=_run)
        thread.start()
        thread.join()


class _BrokenFeed(_FakeFeed):
    def start(self) -> None:
        raise ParkGateFeedError("broker unreachable")


async def _drain() -> None:
    for _ in range(5):
        await asyncio.sleep(0)


@pytest.mark.asyncio
async def test_readings_from_feed_thread_update_occupancy(tmp_path: Path) -> None:
    config = ParkGateConfig(state_path=tmp_path / "occupancy.json")
    events: list[OccupancyEvent] = []

    async with ParkingGateService(config, feed_factory=_FakeFeed, on_event=events.append) as service:
        feed = _FakeFeed.instances[-1]
        assert feed.started

        entry = [SensorReading(lane=Lane.ENTRY, distance_cm=d) for d in (50, 15, 15, 50, 12)]
        exit_ = [SensorReading(lane=Lane.EXIT, distance_cm=d) for d in (50, 18, 50)]
        feed.push_from_thread(entry + exit_)
        await _drain()

        snapshot = service.snapshot()
        assert snapshot.count == 1
        assert snapshot.feed_connected is True
        assert [e.kind for e in events] == [
            OccupancyEventKind.VEHICLE_ENTERED,
            OccupancyEventKind.VEHICLE_ENTERED,
            OccupancyEventKind.VEHICLE_EXITED,
        ]
        await service.flush()

    assert feed.stopped
    persisted = JsonFileStore(config.state_path).load()
    assert persisted is not None
    assert persisted.count == 1
    assert persisted.last_entry_at is not None


@pytest.mark.asyncio
async def test_disconnect_keeps_state() -> None:
    store = MemoryStore()
    async with ParkingGateService(ParkGateConfig(), store=store, feed_factory=_FakeFeed) as service:
        feed = _FakeFeed.instances[-1]
        feed.push_from_thread([SensorReading(lane=Lane.ENTRY, distance_cm=5)])
        feed.push_from_thread([], connected=False)
        await _drain()

        snapshot = service.snapshot()
        assert snapshot.count == 1
        assert snapshot.feed_connected is False


@pytest.mark.asyncio
async def test_reset_persists_zero_state() -> None:
    store = MemoryStore(OccupancyRecord(count=7, sequence=3))
    async with ParkingGateService(ParkGateConfig(), store=store, feed_factory=_FakeFeed) as service:
        assert service.snapshot().count == 7
        snapshot = service.reset()
        assert snapshot.count == 0
        assert snapshot.last_entry_at is None
        await service.flush()

    loaded = store.load()
    assert loaded is not None
    assert loaded.count == 0
    assert loaded.last_entry_at is None


@pytest.mark.asyncio
async def test_failed_start_propagates_and_cleans_up() -> None:
    service = ParkingGateService(ParkGateConfig(), store=MemoryStore(), feed_factory=_BrokenFeed)
    with pytest.raises(ParkGateFeedError):
        await service.start()
    assert service.snapshot().feed_connected is False


@pytest.mark.asyncio
async def test_wait_closed_requires_start() -> None:
    service = ParkingGateService(ParkGateConfig(), store=MemoryStore(), feed_factory=_FakeFeed)
    with pytest.raises(ParkGateError):
        await service.wait_closed()


@pytest.mark.asyncio
async def test_wait_closed_returns_after_stop() -> None:
    service = ParkingGateService(ParkGateConfig(), store=MemoryStore(), feed_factory=_FakeFeed)
    await service.start()
    waiter = asyncio.create_task(service.wait_closed())
    await asyncio.sleep(0)
    assert not waiter.done()
    await service.stop()
    await asyncio.wait_for(waiter, timeout=1.0)


@pytest.mark.asyncio
async def test_stop_applies_queued_readings_then_ignores_late_ones(caplog: pytest.LogCaptureFixture) -> None:
    store = MemoryStore()
    service = ParkingGateService(ParkGateConfig(), store=store, feed_factory=_FakeFeed)
    await service.start()
    feed = _FakeFeed.instances[-1]

    # Queued on the loop but not yet run when stop begins.
    feed.push_from_thread([SensorReading(lane=Lane.ENTRY, distance_cm=5)])
    await service.stop()

    loaded = store.load()
    assert loaded is not None
    assert loaded.count == 1

    feed.on_reading(SensorReading(lane=Lane.EXIT, distance_cm=5))
    service._apply_reading(SensorReading(lane=Lane.EXIT, distance_cm=5))  # noqa: SLF001
    await _drain()

    assert service.snapshot().count == 1
    assert "save failed" not in caplog.text
