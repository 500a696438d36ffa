import json

import pytest

from fulfillment_queue.mqtt_client import MqttClient


class FakeMessage:
    def __init__(self, topic, payload):
        self.topic = topic
        self.payload = payload if isinstance(payload, bytes) else json.dumps(payload).encode("utf-8")


class RecordingPaho:
    def __init__(self):
        self.subscribed = []

    def subscribe(self, topic, qos=0):
        self.subscribed.append(topic)


def _client():
    # Never connected; callbacks are driven by hand.
    return MqttClient(client_id="test", host="localhost", port=1883)


def test_handlers_only_see_matching_topics():
    client = _client()
    requests, everything = [], []
    client.add_handler(lambda topic, msg: requests.append(msg["n"]), "ns/orders/requests")
    client.add_handler(lambda topic, msg: everything.append(topic))

    client._on_message(None, None, FakeMessage("ns/orders/requests", {"n": 1}))
    client._on_message(None, None, FakeMessage("ns/queue/updates", {"n": 2}))

    assert requests == [1]
    assert everything == ["ns/orders/requests", "ns/queue/updates"]


def test_wildcard_filters_match():
    client = _client()
    seen = []
    client.add_handler(lambda topic, msg: seen.append(topic), "ns/+/events")
    client._on_message(None, None, FakeMessage("ns/orders/events", {}))
    client._on_message(None, None, FakeMessage("ns/orders/requests", {}))
    assert seen == ["ns/orders/events"]


def test_malformed_payloads_are_dropped():
    client = _client()
    seen = []
    client.add_handler(lambda topic, msg: seen.append(msg))

    for payload in (b"not json", b"[1, 2]", b"\xff\xfe", b""):
        client._on_message(None, None, FakeMessage("t", payload))

    assert seen == []


def test_failing_handler_does_not_stop_the_others():
    client = _client()
    seen = []
    client.add_handler(lambda topic, msg: 1 / 0)
    client.add_handler(lambda topic, msg: seen.append(msg["n"]))
    client._on_message(None, None, FakeMessage("t", {"n": 3}))
    assert seen == [3]


def test_request_returns_the_correlated_reply(monkeypatch):
    client = _client()
    handled = []
    client.add_handler(lambda topic, msg: handled.append(msg))
    sent = []

    def answer(topic, message):
        sent.append((topic, message))
        # A stranger's reply first, then ours.
        client._on_message(None, None, FakeMessage(message["reply_to"], {"corr_id": "other", "n": 0}))
        client._on_message(None, None, FakeMessage(message["reply_to"], {"corr_id": message["corr_id"], "n": 1}))

    monkeypatch.setattr(client, "publish", answer)

    reply = client.request(request_topic="ns/req", response_topic="reply/me", message={"type": "ping"}, timeout=1.0)

    assert reply["n"] == 1
    ((topic, message),) = sent
    assert topic == "ns/req"
    assert message["type"] == "ping"
    assert message["reply_to"] == "reply/me"
    # Only the uncorrelated message reaches the handlers.
    assert handled == [{"corr_id": "other", "n": 0}]
    assert client._replies == {}


def test_request_times_out_without_reply(monkeypatch):
    client = _client()
    monkeypatch.setattr(client, "publish", lambda topic, message: None)

    with pytest.raises(TimeoutError):
        client.request(request_topic="ns/req", response_topic="reply/me", message={}, timeout=0.05)
    assert client._replies == {}


def test_reconnect_replays_subscriptions(monkeypatch):
    client = _client()
    monkeypatch.setattr(client._client, "subscribe", lambda topic, qos=0: None)
    client.subscribe("ns/orders/requests")
    client.subscribe("reply/me")

    paho = RecordingPaho()
    client._on_connect(paho, None, None, 0, None)

    assert paho.subscribed == ["ns/orders/requests", "reply/me"]
