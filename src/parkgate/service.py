"""Async service wiring the sensor feed to the occupancy tracker."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from typing import Any

from parkgate.config import ParkGateConfig
from parkgate.exceptions import ParkGateError
from parkgate.feed import FeedRuntime
from parkgate.models.lane import GateState, SensorReading
from parkgate.models.occupancy import OccupancyEvent, OccupancySnapshot
from parkgate.storage import BackgroundWriter, JsonFileStore, OccupancyStore
from parkgate.tracker import OccupancyTracker

_logger = logging.getLogger(__name__)

FeedFactory = Callable[..., FeedRuntime]


class ParkingGateService:
    """Own one lot's tracker, store and feed for the lifetime of a loop.

    Usage::

        async with ParkingGateService(config) as service:
            service.subscribe(print)
            await service.wait_closed()

    Every feed callback is marshalled onto the service's event loop, so
    readings from both lanes are processed one at a time in arrival order.
    Store writes go through a :class:`BackgroundWriter` and never block the
    loop.
    """

    def __init__(
        self,
        config: ParkGateConfig,
        *,
        store: OccupancyStore | None = None,
        feed_factory: FeedFactory = FeedRuntime,
        on_event: Callable[[OccupancyEvent], None] | None = None,
    ) -> None:
        self._config = config
        self._writer = BackgroundWriter(store if store is not None else JsonFileStore(config.state_path))
        self._tracker = OccupancyTracker(config, self._writer)
        self._feed_factory = feed_factory
        self._feed: FeedRuntime | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._closed: asyncio.Event | None = None
        if on_event is not None:
            self._tracker.subscribe(on_event)

    # ------------------------------------------------------------------
    # Context manager lifecycle
    # ------------------------------------------------------------------

    async def __aenter__(self) -> ParkingGateService:
        await self.start()
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.stop()

    async def start(self) -> None:
        """Start the feed; readings begin flowing once the broker connects."""
        self._loop = asyncio.get_running_loop()
        self._closed = asyncio.Event()
        feed = self._feed_factory(
            self._config,
            on_reading=self._on_feed_reading,
            on_connection=self._on_feed_connection,
            logger=_logger,
        )
        try:
            await self._loop.run_in_executor(None, feed.start)
        except Exception:
            await self.stop()
            raise
        self._feed = feed

    async def stop(self) -> None:
        feed = self._feed
        self._feed = None
        loop = self._loop or asyncio.get_running_loop()
        if feed is not None:
            try:
                await loop.run_in_executor(None, feed.stop)
            except Exception:
                _logger.debug("Feed stop failed", exc_info=True)
        # Callbacks still queued on the loop are dropped from here on.
        self._loop = None
        self._tracker.set_feed_connected(False)
        await loop.run_in_executor(None, self._writer.close)
        if self._closed is not None:
            self._closed.set()

    async def wait_closed(self) -> None:
        if self._closed is None:
            raise ParkGateError("Service not started. Use 'async with ParkingGateService(...) as service:'")
        await self._closed.wait()

    # ------------------------------------------------------------------
    # Feed callbacks (paho network thread)
    # ------------------------------------------------------------------

    def _on_feed_reading(self, reading: SensorReading) -> None:
        loop = self._loop
        if loop is None or loop.is_closed():
            return
        loop.call_soon_threadsafe(self._apply_reading, reading)

    def _on_feed_connection(self, connected: bool) -> None:
        loop = self._loop
        if loop is None or loop.is_closed():
            return
        loop.call_soon_threadsafe(self._apply_connection, connected)

    def _apply_reading(self, reading: SensorReading) -> None:
        if self._loop is None:
            _logger.debug("Service stopped; ignoring reading lane=%s", reading.lane)
            return
        self.handle_reading(reading)

    def _apply_connection(self, connected: bool) -> None:
        if self._loop is not None:
            self._tracker.set_feed_connected(connected)

    # ------------------------------------------------------------------
    # Presentation-facing API
    # ------------------------------------------------------------------

    @property
    def tracker(self) -> OccupancyTracker:
        return self._tracker

    def handle_reading(self, reading: SensorReading) -> GateState:
        """Process one reading: derive, edge-detect, mutate, persist, notify."""
        return self._tracker.on_reading(reading)

    def snapshot(self) -> OccupancySnapshot:
        return self._tracker.snapshot()

    def reset(self) -> OccupancySnapshot:
        return self._tracker.reset()

    def subscribe(self, listener: Callable[[OccupancyEvent], None]) -> Callable[[], None]:
        return self._tracker.subscribe(listener)

    async def flush(self) -> None:
        """Wait until every write issued so far has reached the store."""
        loop = self._loop or asyncio.get_running_loop()
        await loop.run_in_executor(None, self._writer.flush)
