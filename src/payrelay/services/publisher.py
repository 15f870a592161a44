"""Topic publisher — pushes a payment cue to a terminal's MQTT topic.

Learn: The voice speaker subscribes to `<prefix>/<serial>` and reads the
amount out loud. We publish with QoS 1 (broker acknowledges with PUBACK),
so delivery is at-least-once from the broker onwards. There is no local
retry queue: a missed cue is a UX hiccup, the ledger row is the record.

paho-mqtt runs its network loop in a background thread (loop_start), so
the blocking wait for PUBACK is pushed off the event loop with
asyncio.to_thread. Instead of a fire-and-forget callback that can only log,
publish() returns a PublishOutcome the orchestrator can branch on.
"""

import asyncio
import secrets
from dataclasses import dataclass
from typing import Any, Callable, Optional

import paho.mqtt.client as mqtt
import structlog

from payrelay.config import settings
from payrelay.schemas.transaction import DeviceMessage

logger = structlog.get_logger()


class PublishError(Exception):
    """A message could not be handed to (or acknowledged by) the broker."""


@dataclass
class PublishOutcome:
    ok: bool
    topic: str
    mid: Optional[int] = None
    error: Optional[str] = None


def _default_client_factory() -> mqtt.Client:
    client = mqtt.Client(
        mqtt.CallbackAPIVersion.VERSION2,
        client_id=f"payrelay_{secrets.token_hex(4)}",
    )
    if settings.mqtt_username:
        client.username_pw_set(settings.mqtt_username, settings.mqtt_password)
    if settings.mqtt_tls:
        client.tls_set()
    return client


class TopicPublisher:
    """Owns the MQTT client for the lifetime of the app.

    Usage:
        publisher = TopicPublisher()
        publisher.connect()          # startup
        outcome = await publisher.publish("DEV-001", message)
        publisher.disconnect()       # shutdown
    """

    def __init__(
        self,
        *,
        host: Optional[str] = None,
        port: Optional[int] = None,
        topic_prefix: Optional[str] = None,
        qos: Optional[int] = None,
        publish_timeout: Optional[float] = None,
        client_factory: Callable[[], Any] = _default_client_factory,
    ):
        self.host = settings.mqtt_host if host is None else host
        self.port = port or settings.mqtt_port
        self.topic_prefix = (
            settings.mqtt_topic_prefix if topic_prefix is None else topic_prefix
        ).rstrip("/")
        self.qos = settings.mqtt_qos if qos is None else qos
        self.publish_timeout = publish_timeout or settings.mqtt_publish_timeout
        self._client_factory = client_factory
        self._client: Optional[Any] = None

    # ─── Lifecycle ─────────────────────────────────────────

    def connect(self) -> None:
        """Start connecting in the background. No-op when no host is configured."""
        if not self.host:
            logger.warning("publisher.disabled", reason="PAYRELAY_MQTT_HOST not set")
            return
        client = self._client_factory()
        client.on_connect = self._on_connect
        client.on_disconnect = self._on_disconnect
        client.connect_async(self.host, self.port)
        client.loop_start()
        self._client = client
        logger.info("publisher.connecting", host=self.host, port=self.port)

    def attach(self, client: Any) -> None:
        """Use an already-connected client (tests, embedding)."""
        self._client = client

    def disconnect(self) -> None:
        if self._client is None:
            return
        try:
            self._client.disconnect()
            self._client.loop_stop()
        finally:
            self._client = None
        logger.info("publisher.disconnected")

    @property
    def connected(self) -> bool:
        return self._client is not None and self._client.is_connected()

    def _on_connect(self, client, userdata, flags, reason_code, properties):
        if reason_code.is_failure:
            logger.error("publisher.connect_failed", reason=str(reason_code))
        else:
            logger.info("publisher.connected", host=self.host)

    def _on_disconnect(self, client, userdata, flags, reason_code, properties):
        logger.warning("publisher.connection_lost", reason=str(reason_code))

    # ─── Publishing ────────────────────────────────────────

    def topic_for(self, device_id: str) -> str:
        return f"{self.topic_prefix}/{device_id}"

    async def publish(self, device_id: str, message: DeviceMessage) -> PublishOutcome:
        """Publish `message` to the device's topic. Never raises."""
        topic = self.topic_for(device_id)
        body = message.model_dump_json()
        try:
            mid = await asyncio.to_thread(self._publish_blocking, topic, body)
        except PublishError as e:
            logger.warning(
                "publisher.failed", topic=topic, request_id=message.request_id, error=str(e)
            )
            return PublishOutcome(ok=False, topic=topic, error=str(e))

        logger.info("publisher.sent", topic=topic, request_id=message.request_id, mid=mid)
        return PublishOutcome(ok=True, topic=topic, mid=mid)

    def _publish_blocking(self, topic: str, body: str) -> int:
        client = self._client
        if client is None or not client.is_connected():
            raise PublishError("MQTT client not connected")

        try:
            info = client.publish(topic, body, qos=self.qos)
        except ValueError as e:
            # paho refuses wildcard topics and oversized payloads up front.
            raise PublishError(f"Invalid publish: {e}") from e
        if info.rc != mqtt.MQTT_ERR_SUCCESS:
            raise PublishError(f"Broker rejected publish: {mqtt.error_string(info.rc)}")
        try:
            info.wait_for_publish(timeout=self.publish_timeout)
        except (ValueError, RuntimeError) as e:
            raise PublishError(str(e)) from e
        if not info.is_published():
            raise PublishError(
                f"No acknowledgement within {self.publish_timeout:g}s"
            )
        return info.mid
