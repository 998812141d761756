from __future__ import annotations

import json
from pathlib import Path

import pytest

from parkgate.cli import main
from parkgate.models.occupancy import OccupancyRecord
from parkgate.storage import JsonFileStore


def _snapshot_from(output: str) -> dict[str, object]:
    start = output.index("{")
    return json.loads(output[start:])


def test_replay_entry_sequence(capsys: pytest.CaptureFixture[str]) -> None:
    assert main(["replay", "entry", "50", "50", "15", "15", "50"]) == 0

    out = capsys.readouterr().out
    assert "[2] entry distance=15 open=True count=1" in out
    snapshot = _snapshot_from(out)
    assert snapshot["count"] == 1
    assert snapshot["last_entry_at"] is not None


def test_replay_full_lot(capsys: pytest.CaptureFixture[str]) -> None:
    assert main(["replay", "entry", "10", "--count", "20"]) == 0
    snapshot = _snapshot_from(capsys.readouterr().out)
    assert snapshot["count"] == 20
    assert snapshot["is_full"] is True
    assert snapshot["entry_gate_open"] is False


def test_status_and_reset(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    path = tmp_path / "occupancy.json"
    JsonFileStore(path).save(OccupancyRecord(count=7, sequence=1))

    assert main(["--state-path", str(path), "status"]) == 0
    assert _snapshot_from(capsys.readouterr().out)["count"] == 7

    assert main(["--state-path", str(path), "reset"]) == 0
    assert _snapshot_from(capsys.readouterr().out)["count"] == 0

    loaded = JsonFileStore(path).load()
    assert loaded is not None
    assert loaded.count == 0
    assert loaded.last_entry_at is None


def test_invalid_capacity_reports_error(capsys: pytest.CaptureFixture[str]) -> None:
    assert main(["--capacity", "0", "replay", "exit", "10"]) == 2
    assert "capacity" in capsys.readouterr().err
