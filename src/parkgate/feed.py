"""MQTT sensor feed: broker parsing, payload decoding and the paho runtime."""

from __future__ import annotations

import json
import logging
import math
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, cast

import paho.mqtt.client as mqtt

from parkgate.config import ParkGateConfig
from parkgate.exceptions import ParkGateFeedError
from parkgate.models.lane import Lane, SensorReading

_DEFAULT_PORTS: dict[str, int] = {
    "mqtt": 1883,
    "tcp": 1883,
    "mqtts": 8883,
    "ssl": 8883,
    "ws": 80,
    "wss": 443,
}

# Keys accepted when a reading arrives as a JSON object.
_DISTANCE_KEYS = ("distance", "value", "distanceCm", "distance_cm")


@dataclass(frozen=True)
class BrokerEndpoint:
    """Connection details parsed from a broker URL."""

    host: str
    port: int
    transport: str
    path: str
    tls: bool


def parse_broker_url(raw_url: str) -> BrokerEndpoint:
    """Split ``scheme://host:port/path`` into connection details.

    A bare ``host`` or ``host:port`` is treated as plain MQTT over TCP.
    """
    value = raw_url.strip()
    if not value:
        raise ParkGateFeedError("Broker URL is empty")

    scheme = "mqtt"
    if "://" in value:
        scheme, value = value.split("://", 1)
        scheme = scheme.lower()
    if scheme not in _DEFAULT_PORTS:
        raise ParkGateFeedError(f"Unsupported broker scheme: {scheme!r}")

    path = "/"
    if "/" in value:
        value, rest = value.split("/", 1)
        path = f"/{rest}"

    host, sep, maybe_port = value.rpartition(":")
    if sep and maybe_port.isdigit():
        port = int(maybe_port)
    else:
        host, port = value, _DEFAULT_PORTS[scheme]
    if not host:
        raise ParkGateFeedError(f"Broker URL has no host: {raw_url!r}")

    websockets = scheme in {"ws", "wss"}
    return BrokerEndpoint(
        host=host,
        port=port,
        transport="websockets" if websockets else "tcp",
        path=path,
        tls=scheme in {"wss", "mqtts", "ssl"},
    )


def decode_distance(payload: bytes | str) -> float | None:
    """Decode a distance payload, or ``None`` when it is not a usable number.

    Accepts a bare number (``"15"``, ``"15.5"``), a JSON number, or a JSON
    object carrying one of the known distance keys.  Negative and
    non-finite values are rejected.
    """
    text = payload.decode("utf-8", errors="replace") if isinstance(payload, bytes) else payload
    text = text.strip()
    if not text:
        return None

    value: Any
    try:
        value = json.loads(text)
    except json.JSONDecodeError:
        value = text

    if isinstance(value, dict):
        value = next((value[key] for key in _DISTANCE_KEYS if key in value), None)

    if isinstance(value, bool) or value is None:
        return None
    try:
        distance = float(value)
    except (TypeError, ValueError, OverflowError):
        return None
    if not math.isfinite(distance) or distance < 0:
        return None
    return distance


class TopicRouter:
    """Map feed topics to lanes."""

    def __init__(self, entry_topic: str, exit_topic: str) -> None:
        self._lanes = {entry_topic: Lane.ENTRY, exit_topic: Lane.EXIT}

    @classmethod
    def from_config(cls, config: ParkGateConfig) -> TopicRouter:
        return cls(config.entry_topic, config.exit_topic)

    @property
    def topics(self) -> list[str]:
        return list(self._lanes)

    def lane_for(self, topic: str) -> Lane | None:
        return self._lanes.get(topic)

    def build_reading(self, topic: str, payload: bytes | str) -> SensorReading | None:
        """Turn one feed message into a reading, or ``None`` if it is unusable."""
        lane = self.lane_for(topic)
        if lane is None:
            return None
        distance = decode_distance(payload)
        if distance is None:
            return None
        return SensorReading(lane=lane, distance_cm=distance)


class FeedRuntime:
    """Threaded paho-mqtt runtime that hands decoded readings to callbacks.

    Callbacks run on paho's network thread; the service marshals them onto
    its event loop.  Malformed payloads are logged and dropped here.
    """

    def __init__(
        self,
        config: ParkGateConfig,
        *,
        on_reading: Callable[[SensorReading], None],
        on_connection: Callable[[bool], None],
        logger: logging.Logger | None = None,
    ) -> None:
        self._config = config
        self._router = TopicRouter.from_config(config)
        self._on_reading = on_reading
        self._on_connection = on_connection
        self._logger = logger or logging.getLogger(__name__)
        self._client: mqtt.Client | None = None
        self._running = False

    @property
    def is_running(self) -> bool:
        """Whether the MQTT runtime is actively running."""
        return self._running

    def _handle_message(self, topic: str, payload: bytes) -> None:
        reading = self._router.build_reading(topic, payload)
        if reading is None:
            self._logger.debug("Dropping unusable feed message topic=%s payload=%r", topic, payload[:64])
            return
        self._on_reading(reading)

    def start(self) -> None:
        """Connect to the broker and subscribe to both lane topics."""
        self.stop()
        endpoint = parse_broker_url(self._config.broker_url)
        self._logger.debug(
            "MQTT runtime start requested host=%s port=%s transport=%s topics=%s",
            endpoint.host,
            endpoint.port,
            endpoint.transport,
            self._router.topics,
        )

        client = mqtt.Client(
            callback_api_version=cast(Any, mqtt).CallbackAPIVersion.VERSION2,
            client_id=self._config.mqtt_client_id,
            transport=endpoint.transport,
            protocol=mqtt.MQTTv311,
        )
        client.enable_logger(self._logger)
        if endpoint.transport == "websockets":
            client.ws_set_options(path=endpoint.path)
        if endpoint.tls:
            client.tls_set()
        if self._config.mqtt_username:
            client.username_pw_set(self._config.mqtt_username, self._config.mqtt_password)

        topics = self._router.topics

        def on_connect(
            c: mqtt.Client,
            _userdata: Any,
            _flags: Any,
            reason_code: Any,
            _properties: Any,
        ) -> None:
            if reason_code.value != 0:
                self._logger.warning("MQTT connect failed: %s", reason_code)
                return
            self._logger.info("MQTT connected to %s:%s", endpoint.host, endpoint.port)
            c.subscribe([(topic, 0) for topic in topics])
            self._notify_connection(True)

        def on_message(_c: mqtt.Client, _userdata: Any, msg: mqtt.MQTTMessage) -> None:
            try:
                self._handle_message(msg.topic, msg.payload)
            except Exception:
                self._logger.debug("Feed message handling failed topic=%s", msg.topic, exc_info=True)

        def on_disconnect(
            _client: mqtt.Client,
            _userdata: Any,
            _disconnect_flags: Any,
            reason_code: Any,
            _properties: Any,
        ) -> None:
            if self._running:
                self._logger.info("MQTT disconnected: %s", reason_code)
            self._notify_connection(False)

        client.on_connect = on_connect
        client.on_message = on_message
        client.on_disconnect = on_disconnect

        try:
            client.connect(endpoint.host, endpoint.port, keepalive=self._config.mqtt_keepalive)
        except OSError as exc:
            raise ParkGateFeedError(f"Could not connect to {endpoint.host}:{endpoint.port}: {exc}") from exc
        client.loop_start()

        self._client = client
        self._running = True
        self._logger.debug("MQTT network loop started")

    def _notify_connection(self, connected: bool) -> None:
        try:
            self._on_connection(connected)
        except Exception:
            self._logger.debug("Connection callback failed", exc_info=True)

    def stop(self) -> None:
        """Stop and disconnect current MQTT client if running."""
        client = self._client
        self._client = None
        was_running = self._running
        self._running = False

        if client is None:
            return
        try:
            if was_running:
                self._logger.debug("MQTT disconnect requested")
                client.disconnect()
        finally:
            client.loop_stop()
            self._logger.debug("MQTT network loop stopped")
