"""API tests for the polling binding (/signal)."""
import pytest
from backend import redis_backend
from signaling.errors import SignalStoreError


def post_signal(client, **fields):
    body = {"roomId": "abcd1234", "fromPeer": "aaaaaa", "type": "join", "data": None}
    body.update(fields)
    return client.post("/signal", json={k: v for k, v in body.items() if v is not ...})


def test_post_then_get_drains_queue(client):
    assert post_signal(client).json() == {"ok": True}

    first = client.get("/signal", params={"roomId": "abcd1234"})
    second = client.get("/signal", params={"roomId": "abcd1234"})

    assert first.status_code == 200
    signals = first.json()["signals"]
    assert len(signals) == 1
    assert signals[0]["fromPeer"] == "aaaaaa"
    assert signals[0]["type"] == "join"
    assert signals[0]["data"] is None
    assert isinstance(signals[0]["timestamp"], int)
    assert second.json() == {"signals": []}


def test_get_empty_room(client):
    response = client.get("/signal", params={"roomId": "empty123"})

    assert response.status_code == 200
    assert response.json() == {"signals": []}


def test_post_missing_room_id_is_rejected_without_mutation(client, fake_redis):
    response = post_signal(client, roomId=...)

    assert response.status_code == 400
    assert response.json() == {"error": "Missing roomId"}
    assert fake_redis.keys("*") == []


@pytest.mark.parametrize("field", ["fromPeer", "type", "data"])
def test_post_missing_field_is_rejected(client, fake_redis, field):
    response = post_signal(client, **{field: ...})

    assert response.status_code == 400
    assert response.json() == {"error": f"Missing {field}"}
    assert fake_redis.keys("*") == []


def test_post_unsupported_type(client):
    response = post_signal(client, type="hello")

    assert response.status_code == 400
    assert response.json() == {"error": "Unsupported signal type: hello"}


def test_post_invalid_json(client):
    response = client.post("/signal", content="{nope", headers={"Content-Type": "application/json"})

    assert response.status_code == 400
    assert response.json() == {"error": "Invalid JSON body"}


def test_get_missing_room_id(client):
    response = client.get("/signal")

    assert response.status_code == 400
    assert response.json() == {"error": "Missing roomId", "signals": []}


@pytest.mark.parametrize("method", ["put", "patch", "delete"])
def test_wrong_method(client, method, fake_redis):
    response = client.request(method.upper(), "/signal", json={"roomId": "abcd1234"})

    assert response.status_code == 405
    assert response.json() == {"error": "Only GET and POST are allowed"}
    assert response.headers["allow"] == "GET, POST"
    assert fake_redis.keys("signals:*") == []


def test_poller_does_not_swallow_its_own_signals(client):
    post_signal(client, fromPeer="aaaaaa")
    post_signal(client, fromPeer="bbbbbb")

    for_a = client.get("/signal", params={"roomId": "abcd1234", "peerId": "aaaaaa"}).json()["signals"]
    for_b = client.get("/signal", params={"roomId": "abcd1234", "peerId": "bbbbbb"}).json()["signals"]

    assert [s["fromPeer"] for s in for_a] == ["bbbbbb"]
    assert [s["fromPeer"] for s in for_b] == ["aaaaaa"]


def test_targeted_signal_keeps_target_id(client):
    offer = {"type": "offer", "sdp": "v=0"}
    post_signal(client, type="offer", data=offer, targetId="bbbbbb")

    signals = client.get("/signal", params={"roomId": "abcd1234", "peerId": "bbbbbb"}).json()["signals"]

    assert signals[0]["targetId"] == "bbbbbb"
    assert signals[0]["data"] == offer


def test_storage_failure_is_503(client, monkeypatch):
    def broken(*args, **kwargs):
        raise SignalStoreError("Failed to queue signal for room abcd1234")

    monkeypatch.setattr(redis_backend, "push_signal", broken)
    monkeypatch.setattr(redis_backend, "drain_signals", broken)

    assert post_signal(client).status_code == 503
    response = client.get("/signal", params={"roomId": "abcd1234"})
    assert response.status_code == 503
    assert response.json()["signals"] == []
