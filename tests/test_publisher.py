"""TopicPublisher tests against the fake MQTT client.

Learn: publish() must never raise — every failure mode comes back as a
PublishOutcome with ok=False, and nothing is queued for retry.
"""

import paho.mqtt.client as mqtt
import pytest

from payrelay.schemas.transaction import DeviceMessage
from payrelay.services.publisher import TopicPublisher

from conftest import FakeMqttClient

MESSAGE = DeviceMessage(request_id="tx-1", money="15000")


def test_topic_is_prefix_plus_device():
    assert TopicPublisher(topic_prefix="/HMZN").topic_for("DEV-001") == "/HMZN/DEV-001"
    assert TopicPublisher(topic_prefix="prefix/").topic_for("DEV-001") == "prefix/DEV-001"


@pytest.mark.asyncio
async def test_publish_sends_compact_json_with_qos_1(publisher, mqtt_client):
    outcome = await publisher.publish("DEV-001", MESSAGE)

    assert outcome.ok
    assert outcome.topic == "prefix/DEV-001"
    assert outcome.mid == 1
    assert mqtt_client.published == [
        ("prefix/DEV-001", '{"request_id":"tx-1","money":"15000"}', 1)
    ]


@pytest.mark.asyncio
async def test_publish_when_disconnected(publisher, mqtt_client):
    mqtt_client.connected = False
    outcome = await publisher.publish("DEV-001", MESSAGE)
    assert not outcome.ok
    assert "not connected" in outcome.error
    assert mqtt_client.published == []


@pytest.mark.asyncio
async def test_publish_without_client():
    outcome = await TopicPublisher(host="", topic_prefix="p").publish("DEV-001", MESSAGE)
    assert not outcome.ok


@pytest.mark.asyncio
async def test_publish_rejected_by_client(publisher, mqtt_client):
    mqtt_client.rc = 4  # MQTT_ERR_NO_CONN
    outcome = await publisher.publish("DEV-001", MESSAGE)
    assert not outcome.ok
    assert "rejected" in outcome.error


@pytest.mark.asyncio
async def test_publish_without_puback(publisher, mqtt_client):
    mqtt_client.acked = False
    outcome = await publisher.publish("DEV-001", MESSAGE)
    assert not outcome.ok
    assert "acknowledgement" in outcome.error


def test_connect_without_host_stays_offline():
    created = []

    def factory():
        created.append(FakeMqttClient())
        return created[-1]

    pub = TopicPublisher(host="", client_factory=factory)
    pub.connect()
    assert created == []
    assert not pub.connected


def test_disconnect_releases_client(publisher, mqtt_client):
    assert publisher.connected
    publisher.disconnect()
    assert not publisher.connected
    assert not mqtt_client.connected


class OnlinePahoClient(mqtt.Client):
    """A real paho client that claims to be connected, without a broker."""

    def is_connected(self) -> bool:
        return True


@pytest.mark.asyncio
@pytest.mark.parametrize("device_id", ["DEV+1", "DEV#9"])
async def test_wildcard_topic_is_a_failed_outcome(device_id):
    pub = TopicPublisher(topic_prefix="prefix", publish_timeout=0.1)
    pub.attach(OnlinePahoClient(mqtt.CallbackAPIVersion.VERSION2))

    outcome = await pub.publish(device_id, MESSAGE)

    assert not outcome.ok
    assert "wildcards" in outcome.error
