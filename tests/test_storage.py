from __future__ import annotations

import json
from datetime import UTC, datetime
from pathlib import Path

import pytest

from parkgate.exceptions import ParkGateStorageError
from parkgate.models.occupancy import OccupancyRecord
from parkgate.storage import BackgroundWriter, JsonFileStore, MemoryStore, OccupancyStore


def _record(count: int, sequence: int, **kwargs: object) -> OccupancyRecord:
    return OccupancyRecord(count=count, sequence=sequence, **kwargs)  # type: ignore[arg-type]


def test_json_store_round_trip(tmp_path: Path) -> None:
    store = JsonFileStore(tmp_path / "state" / "occupancy.json")
    stamp = datetime(2026, 3, 4, 5, 6, 7, 123000, tzinfo=UTC)
    store.save(_record(12, 3, last_entry_at=stamp, entry_gate_open=True))

    loaded = JsonFileStore(store.path).load()

    assert loaded is not None
    assert loaded.count == 12
    assert loaded.last_entry_at == stamp
    assert loaded.entry_gate_open is True
    assert loaded.exit_gate_open is False
    assert loaded.sequence == 3


def test_json_store_missing_file_loads_none(tmp_path: Path) -> None:
    assert JsonFileStore(tmp_path / "nope.json").load() is None


@pytest.mark.parametrize(
    "content",
    [
        b"{not json",
        b"[]",
        json.dumps({"count": -4}).encode(),
        json.dumps({"count": "many"}).encode(),
        b'{"count": 3, "note": "\xff\xfe"}',
        json.dumps({"count": 3, "last_entry_at": 1e300}).encode(),
        b'{"count": 3, "last_entry_at": ' + b"9" * 400 + b"}",
    ],
)
def test_json_store_corrupt_file_loads_none(tmp_path: Path, content: bytes) -> None:
    path = tmp_path / "occupancy.json"
    path.write_bytes(content)
    assert JsonFileStore(path).load() is None


def test_json_store_discards_stale_sequence(tmp_path: Path) -> None:
    store = JsonFileStore(tmp_path / "occupancy.json")
    store.save(_record(5, 10))
    store.save(_record(2, 9))

    loaded = store.load()
    assert loaded is not None
    assert loaded.count == 5


def test_json_store_respects_sequence_on_disk(tmp_path: Path) -> None:
    path = tmp_path / "occupancy.json"
    JsonFileStore(path).save(_record(5, 10))

    reopened = JsonFileStore(path)
    reopened.load()
    reopened.save(_record(1, 4))

    loaded = JsonFileStore(path).load()
    assert loaded is not None
    assert loaded.count == 5


def test_json_store_leaves_no_temp_files(tmp_path: Path) -> None:
    store = JsonFileStore(tmp_path / "occupancy.json")
    for seq in range(1, 4):
        store.save(_record(seq, seq))
    assert sorted(p.name for p in tmp_path.iterdir()) == ["occupancy.json"]


def test_json_store_write_failure_raises_storage_error(tmp_path: Path) -> None:
    blocker = tmp_path / "blocker"
    blocker.write_text("file, not a directory", encoding="utf-8")
    store = JsonFileStore(blocker / "occupancy.json")

    with pytest.raises(ParkGateStorageError):
        store.save(_record(1, 1))


def test_memory_store_last_writer_wins() -> None:
    store = MemoryStore()
    store.save(_record(3, 2))
    store.save(_record(9, 1))
    loaded = store.load()
    assert loaded is not None
    assert loaded.count == 3
    assert store.saves == 1


def test_stores_satisfy_protocol(tmp_path: Path) -> None:
    assert isinstance(MemoryStore(), OccupancyStore)
    assert isinstance(JsonFileStore(tmp_path / "x.json"), OccupancyStore)
    assert isinstance(BackgroundWriter(MemoryStore()), OccupancyStore)


class TestBackgroundWriter:
    def test_writes_apply_in_submission_order(self) -> None:
        inner = MemoryStore()
        writer = BackgroundWriter(inner)
        for seq in range(1, 51):
            writer.save(_record(seq, seq))
        writer.flush(timeout=5)

        loaded = inner.load()
        assert loaded is not None
        assert loaded.count == 50
        assert inner.saves == 50
        writer.close()

    def test_load_delegates(self) -> None:
        writer = BackgroundWriter(MemoryStore(_record(7, 1)))
        loaded = writer.load()
        assert loaded is not None
        assert loaded.count == 7
        writer.close()

    def test_failed_write_is_logged_not_raised(self, caplog: pytest.LogCaptureFixture) -> None:
        class _FailingStore(MemoryStore):
            def save(self, record: OccupancyRecord) -> None:
                raise ParkGateStorageError("disk full")

        writer = BackgroundWriter(_FailingStore())
        writer.save(_record(1, 1))
        writer.flush(timeout=5)
        writer.close()
        assert "Background save failed" in caplog.text

    def test_save_after_close_raises(self) -> None:
        writer = BackgroundWriter(MemoryStore())
        writer.close()
        with pytest.raises(ParkGateStorageError):
            writer.save(_record(1, 1))
