"""parkgate - Edge-triggered parking lot occupancy from MQTT distance sensors."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("parkgate")
except PackageNotFoundError:
    __version__ = "0+local"
from parkgate.config import ParkGateConfig
from parkgate.exceptions import (
    ParkGateConfigError,
    ParkGateError,
    ParkGateFeedError,
    ParkGateStorageError,
)
from parkgate.gate import derive_gate_open, derive_gate_state
from parkgate.models import (
    GateState,
    Lane,
    OccupancyEvent,
    OccupancyEventKind,
    OccupancyRecord,
    OccupancySnapshot,
    SensorReading,
)
from parkgate.service import ParkingGateService
from parkgate.storage import BackgroundWriter, JsonFileStore, MemoryStore, OccupancyStore
from parkgate.tracker import OccupancyTracker

__all__ = [
    "__version__",
    "BackgroundWriter",
    "GateState",
    "JsonFileStore",
    "Lane",
    "MemoryStore",
    "OccupancyEvent",
    "OccupancyEventKind",
    "OccupancyRecord",
    "OccupancySnapshot",
    "OccupancyStore",
    "OccupancyTracker",
    "ParkGateConfig",
    "ParkGateConfigError",
    "ParkGateError",
    "ParkGateFeedError",
    "ParkGateStorageError",
    "ParkingGateService",
    "SensorReading",
    "derive_gate_open",
    "derive_gate_state",
]
