"""Runtime configuration for parkgate."""

from __future__ import annotations

import dataclasses
import os
from collections.abc import Mapping
from pathlib import Path
from typing import Any

from parkgate.exceptions import ParkGateConfigError

DEFAULT_BROKER_URL = "ws://broker.hivemq.com:8000/mqtt"
DEFAULT_ENTRY_TOPIC = "parking/distance"
DEFAULT_EXIT_TOPIC = "parking/exitDistance"

#: Readings strictly below this distance mean a vehicle is at the gate.
DEFAULT_THRESHOLD_CM: float = 20.0
DEFAULT_CAPACITY: int = 20


def _default_state_path() -> Path:
    return Path.home() / ".parkgate" / "occupancy.json"


def _env_number(env: Mapping[str, str], key: str, cast: type) -> Any:
    raw = env.get(key)
    if raw is None:
        return None
    try:
        return cast(raw.strip())
    except ValueError as exc:
        raise ParkGateConfigError(f"{key} must be a {cast.__name__}, got {raw!r}") from exc


@dataclasses.dataclass(frozen=True)
class ParkGateConfig:
    """Lot and feed configuration.

    Parameters
    ----------
    broker_url : str
        MQTT broker URL. ``ws://``/``wss://`` select the websocket
        transport, ``mqtt://``/``mqtts://`` (or a bare host) plain TCP.
    entry_topic : str
        Topic carrying the entry lane distance in centimetres.
    exit_topic : str
        Topic carrying the exit lane distance in centimetres.
    threshold_cm : float
        Proximity threshold; a lane gate is open while its distance is
        strictly below this value.
    capacity : int
        Maximum number of vehicles in the lot.
    state_path : Path
        JSON file holding the persisted occupancy record.
    mqtt_keepalive : int
        MQTT keepalive in seconds.
    mqtt_client_id : str
        Client id sent to the broker. Empty lets paho generate one.
    mqtt_username : str or None
        Optional broker username.
    mqtt_password : str or None
        Optional broker password.
    """

    broker_url: str = DEFAULT_BROKER_URL
    entry_topic: str = DEFAULT_ENTRY_TOPIC
    exit_topic: str = DEFAULT_EXIT_TOPIC
    threshold_cm: float = DEFAULT_THRESHOLD_CM
    capacity: int = DEFAULT_CAPACITY
    state_path: Path = dataclasses.field(default_factory=_default_state_path)
    mqtt_keepalive: int = 60
    mqtt_client_id: str = ""
    mqtt_username: str | None = None
    mqtt_password: str | None = None

    def __post_init__(self) -> None:
        if self.capacity < 1:
            raise ParkGateConfigError(f"capacity must be at least 1, got {self.capacity}")
        if self.threshold_cm <= 0:
            raise ParkGateConfigError(f"threshold_cm must be positive, got {self.threshold_cm}")
        if not self.entry_topic or not self.exit_topic:
            raise ParkGateConfigError("entry_topic and exit_topic must be non-empty")
        if self.entry_topic == self.exit_topic:
            raise ParkGateConfigError("entry_topic and exit_topic must differ")
        if self.mqtt_keepalive <= 0:
            raise ParkGateConfigError(f"mqtt_keepalive must be positive, got {self.mqtt_keepalive}")
        # Accept plain strings for the path.
        if not isinstance(self.state_path, Path):
            object.__setattr__(self, "state_path", Path(self.state_path))

    @classmethod
    def from_env(cls, **overrides: Any) -> ParkGateConfig:
        """Create configuration from ``PARKGATE_*`` environment variables.

        Explicit keyword arguments override environment values.
        """
        env = os.environ

        _ENV_CONFIG_MAP = {
            "PARKGATE_BROKER_URL": "broker_url",
            "PARKGATE_ENTRY_TOPIC": "entry_topic",
            "PARKGATE_EXIT_TOPIC": "exit_topic",
            "PARKGATE_STATE_PATH": "state_path",
            "PARKGATE_MQTT_CLIENT_ID": "mqtt_client_id",
            "PARKGATE_MQTT_USERNAME": "mqtt_username",
            "PARKGATE_MQTT_PASSWORD": "mqtt_password",
        }
        config_kwargs: dict[str, Any] = {}
        for env_key, field_name in _ENV_CONFIG_MAP.items():
            val = env.get(env_key)
            if val is not None:
                config_kwargs[field_name] = val

        # Numeric fields
        threshold = _env_number(env, "PARKGATE_THRESHOLD_CM", float)
        if threshold is not None:
            config_kwargs["threshold_cm"] = threshold
        capacity = _env_number(env, "PARKGATE_CAPACITY", int)
        if capacity is not None:
            config_kwargs["capacity"] = capacity
        keepalive = _env_number(env, "PARKGATE_MQTT_KEEPALIVE", int)
        if keepalive is not None:
            config_kwargs["mqtt_keepalive"] = keepalive

        config_kwargs.update(overrides)

        return cls(**config_kwargs)
