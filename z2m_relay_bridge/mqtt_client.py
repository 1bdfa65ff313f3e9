from __future__ import annotations

import json
import logging
import threading
from dataclasses import dataclass
from typing import Any, Callable

import paho.mqtt.client as mqtt

_LOGGER = logging.getLogger("z2m_bridge.mqtt")

MessageHandler = Callable[[str, str], None]


@dataclass(frozen=True)
class MqttStatus:
    connected: bool
    last_error: str | None


class MqttClient:
    def __init__(self, *, host: str, port: int, username: str, password: str, client_id: str):
        self._host = host
        self._port = port
        self._client = mqtt.Client(mqtt.CallbackAPIVersion.VERSION2, client_id=client_id)
        if username:
            self._client.username_pw_set(username, password)

        self._lock = threading.Lock()
        self._connected = False
        self._last_error: str | None = None
        self._subscriptions: dict[str, int] = {}
        self._handlers: list[tuple[str, MessageHandler]] = []

        self._on_connect_user: Callable[[], None] | None = None

        self._client.on_connect = self._on_connect
        self._client.on_disconnect = self._on_disconnect
        self._client.on_message = self._on_message

    def _on_connect(self, client, userdata, flags, reason_code, properties=None):
        subs: list[tuple[str, int]]
        on_connect_user: Callable[[], None] | None
        with self._lock:
            self._connected = True
            self._last_error = None
            subs = list(self._subscriptions.items())
            on_connect_user = self._on_connect_user
        _LOGGER.info("MQTT connected to %s:%s", self._host, self._port)
        for topic, qos in subs:
            try:
                client.subscribe(topic, qos=qos)
            except Exception:
                # Keep MQTT thread alive; status will surface disconnects.
                _LOGGER.exception("Subscribe to %s failed", topic)
        if on_connect_user is not None:
            try:
                on_connect_user()
            except Exception:
                _LOGGER.exception("MQTT connect handler failed")

    def _on_disconnect(self, client, userdata, disconnect_flags, reason_code, properties=None):
        with self._lock:
            self._connected = False
            if getattr(reason_code, "value", reason_code) != 0:
                self._last_error = f"disconnect reason_code={reason_code}"
                _LOGGER.warning("MQTT disconnected: %s", self._last_error)

    def _on_message(self, client, userdata, msg):
        topic = str(msg.topic)
        payload = msg.payload.decode("utf-8", errors="replace") if msg.payload else ""
        with self._lock:
            handlers = [h for pattern, h in self._handlers if mqtt.topic_matches_sub(pattern, topic)]
        for handler in handlers:
            try:
                handler(topic, payload)
            except Exception:
                # Keep MQTT thread alive
                _LOGGER.exception("Handler for %s failed", topic)

    def set_connect_handler(self, handler: Callable[[], None] | None) -> None:
        self._on_connect_user = handler

    def connect(self) -> None:
        try:
            # Auto-reconnect and re-subscribe is handled via on_connect.
            self._client.reconnect_delay_set(min_delay=1, max_delay=30)
            self._client.connect_async(self._host, self._port, keepalive=30)
            self._client.loop_start()
        except Exception as e:
            with self._lock:
                self._connected = False
                self._last_error = str(e)
            _LOGGER.error("MQTT connect to %s:%s failed: %s", self._host, self._port, e)

    def disconnect(self) -> None:
        try:
            self._client.disconnect()
            self._client.loop_stop()
        finally:
            with self._lock:
                self._connected = False

    def status(self) -> MqttStatus:
        with self._lock:
            return MqttStatus(connected=self._connected, last_error=self._last_error)

    def publish(self, topic: str, payload: Any, *, retain: bool = False, qos: int = 0) -> None:
        if isinstance(payload, (dict, list)):
            data = json.dumps(payload, ensure_ascii=False)
        elif payload is None:
            data = ""
        else:
            data = str(payload)
        self._client.publish(topic, data, qos=qos, retain=retain)
        _LOGGER.debug("Published %s = %s", topic, data if len(data) <= 120 else data[:120] + "...")

    def subscribe(self, topic: str, handler: MessageHandler | None = None, *, qos: int = 0) -> None:
        with self._lock:
            self._subscriptions[topic] = qos
            if handler is not None:
                self._handlers.append((topic, handler))
            connected = self._connected
        if connected:
            self._client.subscribe(topic, qos=qos)


def z2m_publisher(client: MqttClient, base_topic: str) -> Callable[[str, Any, bool], None]:
    base = base_topic.rstrip("/")

    def _publish(suffix: str, payload: Any, retain: bool) -> None:
        client.publish(f"{base}/{suffix}", payload, retain=retain)

    return _publish
