"""Durable storage for the occupancy record.

Stores expose ``load()``/``save()`` and apply last-writer-wins by the
record's logical ``sequence``: a save carrying a lower sequence than the
last one written is discarded, so a delayed earlier write can never
clobber a later one.
"""

from __future__ import annotations

import contextlib
import json
import logging
import os
import tempfile
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from pathlib import Path
from typing import Protocol, runtime_checkable

from parkgate.exceptions import ParkGateStorageError
from parkgate.models.occupancy import OccupancyRecord

_logger = logging.getLogger(__name__)


@runtime_checkable
class OccupancyStore(Protocol):
    """Load/save contract for the occupancy record.

    Implementations report I/O failures as :class:`ParkGateStorageError`.
    """

    def load(self) -> OccupancyRecord | None: ...

    def save(self, record: OccupancyRecord) -> None: ...


class MemoryStore:
    """Process-local store, mostly for tests and offline replay."""

    def __init__(self, record: OccupancyRecord | None = None) -> None:
        self._lock = threading.Lock()
        self._record = record
        self.saves = 0

    def load(self) -> OccupancyRecord | None:
        with self._lock:
            return self._record

    def save(self, record: OccupancyRecord) -> None:
        with self._lock:
            if self._record is not None and record.sequence < self._record.sequence:
                _logger.debug(
                    "Discarding stale save sequence=%s current=%s",
                    record.sequence,
                    self._record.sequence,
                )
                return
            self._record = record
            self.saves += 1


class JsonFileStore:
    """Single JSON document on disk, replaced atomically on every save."""

    def __init__(self, path: str | os.PathLike[str]) -> None:
        self._path = Path(path)
        self._lock = threading.Lock()
        self._last_sequence: int | None = None

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> OccupancyRecord | None:
        """Read the stored record.

        Returns ``None`` when the file is missing, unreadable or does not
        hold a valid record; bootstrap never fails because of storage.
        """
        try:
            text = self._path.read_text(encoding="utf-8")
        except FileNotFoundError:
            _logger.debug("No occupancy record at %s", self._path)
            return None
        except (OSError, UnicodeDecodeError):
            _logger.warning("Could not read occupancy record at %s", self._path, exc_info=True)
            return None

        try:
            record = OccupancyRecord.model_validate(json.loads(text))
        except (ValueError, TypeError, OverflowError):
            _logger.warning("Ignoring corrupt occupancy record at %s", self._path, exc_info=True)
            return None

        with self._lock:
            if self._last_sequence is None or record.sequence > self._last_sequence:
                self._last_sequence = record.sequence
        return record

    def save(self, record: OccupancyRecord) -> None:
        with self._lock:
            if self._last_sequence is not None and record.sequence < self._last_sequence:
                _logger.debug(
                    "Discarding stale save sequence=%s current=%s path=%s",
                    record.sequence,
                    self._last_sequence,
                    self._path,
                )
                return
            payload = record.model_dump_json(indent=2)
            try:
                self._path.parent.mkdir(parents=True, exist_ok=True)
                fd, tmp_name = tempfile.mkstemp(prefix=".occupancy-", suffix=".tmp", dir=self._path.parent)
                try:
                    with os.fdopen(fd, "w", encoding="utf-8") as handle:
                        handle.write(payload)
                        handle.flush()
                        os.fsync(handle.fileno())
                    os.replace(tmp_name, self._path)
                except BaseException:
                    with contextlib.suppress(FileNotFoundError):
                        os.unlink(tmp_name)
                    raise
            except OSError as exc:
                raise ParkGateStorageError(f"Failed to write occupancy record: {exc}", path=str(self._path)) from exc
            self._last_sequence = record.sequence
            _logger.debug("Saved occupancy record sequence=%s count=%s", record.sequence, record.count)


class BackgroundWriter:
    """Wrap a store so saves run on one worker thread, in submission order.

    ``load()`` is delegated synchronously.  Write failures are logged; the
    caller's in-memory state stays authoritative.
    """

    def __init__(self, store: OccupancyStore) -> None:
        self._store = store
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="parkgate-store")
        self._pending: list[Future[None]] = []
        self._lock = threading.Lock()
        self._closed = False

    @property
    def store(self) -> OccupancyStore:
        return self._store

    def load(self) -> OccupancyRecord | None:
        return self._store.load()

    def save(self, record: OccupancyRecord) -> None:
        with self._lock:
            if self._closed:
                raise ParkGateStorageError("Background writer is closed")
            future = self._executor.submit(self._write, record)
            self._pending = [f for f in self._pending if not f.done()]
            self._pending.append(future)

    def _write(self, record: OccupancyRecord) -> None:
        try:
            self._store.save(record)
        except ParkGateStorageError:
            _logger.warning("Background save failed sequence=%s", record.sequence, exc_info=True)

    def flush(self, timeout: float | None = None) -> None:
        """Block until every save submitted so far has been applied."""
        with self._lock:
            pending = list(self._pending)
        for future in pending:
            future.result(timeout=timeout)

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
        self._executor.shutdown(wait=True)
