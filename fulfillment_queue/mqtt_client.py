"""JSON-over-MQTT connection used by the service and the CLI client.

Messages are routed to handlers by topic filter. Replies to our own
`request()` calls are matched on `corr_id` and never reach the handlers.
Subscriptions are remembered and replayed on every (re)connect, so a broker
restart doesn't silently drop the service's request topic.

QoS is 0 throughout; a lost request surfaces as a TimeoutError.
"""

from __future__ import annotations

import json
import threading
import uuid
from typing import Any, Callable

import paho.mqtt.client as mqtt
from loguru import logger

MessageHandler = Callable[[str, dict[str, Any]], None]


class _Reply:
    """Slot a waiting request() fills from the network thread."""

    def __init__(self) -> None:
        self.done = threading.Event()
        self.message: dict[str, Any] | None = None

    def fill(self, message: dict[str, Any]) -> None:
        if not self.done.is_set():
            self.message = message
            self.done.set()


class MqttClient:
    def __init__(self, *, client_id: str, host: str, port: int, keepalive: int = 30) -> None:
        self.client_id = client_id
        self.host = host
        self.port = port
        self.keepalive = keepalive

        self._client = mqtt.Client(
            mqtt.CallbackAPIVersion.VERSION2,
            client_id=client_id,
            clean_session=True,
        )
        self._client.on_connect = self._on_connect
        self._client.on_disconnect = self._on_disconnect
        self._client.on_message = self._on_message

        self._lock = threading.Lock()
        self._subscriptions: set[str] = set()
        self._routes: list[tuple[str, MessageHandler]] = []
        self._replies: dict[str, _Reply] = {}
        self._connected = False

    @property
    def connected(self) -> bool:
        return self._connected

    def start(self) -> None:
        """Connect and run the network loop on paho's background thread."""
        if self._connected:
            return
        self._client.connect(self.host, self.port, keepalive=self.keepalive)
        self._client.loop_start()
        self._connected = True

    def stop(self) -> None:
        if not self._connected:
            return
        self._connected = False
        self._client.disconnect()
        self._client.loop_stop()

    def add_handler(self, handler: MessageHandler, topic_filter: str = "#") -> None:
        with self._lock:
            self._routes.append((topic_filter, handler))

    def subscribe(self, topic: str) -> None:
        with self._lock:
            self._subscriptions.add(topic)
        self._client.subscribe(topic, qos=0)

    def publish(self, topic: str, message: dict[str, Any]) -> None:
        self._client.publish(topic, payload=self._encode(message), qos=0)

    def request(
        self,
        *,
        request_topic: str,
        response_topic: str,
        message: dict[str, Any],
        timeout: float = 5.0,
    ) -> dict[str, Any]:
        """Publish `message` and block until the reply with the same corr_id arrives.

        The caller must already be subscribed to `response_topic`.
        """
        corr_id = uuid.uuid4().hex
        reply = _Reply()
        with self._lock:
            self._replies[corr_id] = reply
        try:
            self.publish(request_topic, {**message, "corr_id": corr_id, "reply_to": response_topic})
            if not reply.done.wait(timeout) or reply.message is None:
                raise TimeoutError(f"no reply on {response_topic} within {timeout}s (corr_id={corr_id})")
            return reply.message
        finally:
            with self._lock:
                self._replies.pop(corr_id, None)

    # -------------------- payloads --------------------

    @staticmethod
    def _encode(message: dict[str, Any]) -> bytes:
        return json.dumps(message, separators=(",", ":")).encode("utf-8")

    @staticmethod
    def _decode(payload: bytes | str) -> dict[str, Any] | None:
        """JSON object from a payload, or None for anything else."""
        try:
            text = payload.decode("utf-8") if isinstance(payload, bytes) else str(payload)
            data = json.loads(text)
        except (UnicodeDecodeError, json.JSONDecodeError):
            return None
        return data if isinstance(data, dict) else None

    # -------------------- paho callbacks --------------------

    def _on_connect(self, client: mqtt.Client, userdata: Any, flags: Any, reason_code: Any, properties: Any) -> None:
        if getattr(reason_code, "is_failure", False):
            logger.error("MQTT connect to {}:{} refused: {}", self.host, self.port, reason_code)
            return
        with self._lock:
            topics = sorted(self._subscriptions)
        for topic in topics:
            client.subscribe(topic, qos=0)
        logger.info("MQTT connected to {}:{} as {} ({} subscriptions)", self.host, self.port, self.client_id, len(topics))

    def _on_disconnect(
        self, client: mqtt.Client, userdata: Any, disconnect_flags: Any, reason_code: Any, properties: Any
    ) -> None:
        if self._connected:
            logger.warning("MQTT connection lost ({}); paho will reconnect", reason_code)

    def _on_message(self, client: mqtt.Client, userdata: Any, msg: mqtt.MQTTMessage) -> None:
        data = self._decode(msg.payload)
        if data is None:
            logger.warning("Ignoring non-JSON-object payload on {}", msg.topic)
            return

        # Requests we serve also carry corr_id; only ids we issued count as replies.
        corr_id = data.get("corr_id")
        if isinstance(corr_id, str):
            with self._lock:
                reply = self._replies.get(corr_id)
            if reply is not None:
                reply.fill(data)
                return

        with self._lock:
            handlers = [h for f, h in self._routes if mqtt.topic_matches_sub(f, msg.topic)]
        for handler in handlers:
            try:
                handler(msg.topic, data)
            except Exception:
                # A broken handler only loses this message, not the network loop.
                logger.exception("MQTT handler failed for topic {}", msg.topic)
