"""Pytest configuration and shared fixtures."""
import pytest
import fakeredis
from types import SimpleNamespace
from unittest.mock import MagicMock

from signaling.peer_client import PeerClient, PeerSession
from signaling.rtc import candidate_from_dict


class FakeGatherer:
    def __init__(self):
        self.candidates = []

    def getLocalCandidates(self):
        return [candidate_from_dict(candidate) for candidate in self.candidates]


class FakeSender:
    def __init__(self, track, transport):
        self.track = track
        self.transport = transport

    def replaceTrack(self, track):
        self.track = track


class FakeConnection:
    """Stands in for aiortc's RTCPeerConnection; records what the client does to it."""

    def __init__(self):
        self.connectionState = "new"
        self.localDescription = None
        self.remoteDescription = None
        self.tracks = []
        self.candidates = []
        self.handlers = {}
        self.offers_created = 0
        self.answers_created = 0
        self.closed = False
        self.fail_remote_description = False
        self.transceivers = []
        self.gatherer = FakeGatherer()
        # One bundled transport shared by every media line
        self.dtls = SimpleNamespace(transport=SimpleNamespace(iceGatherer=self.gatherer))

    def on(self, event, handler):
        self.handlers[event] = handler

    def addTrack(self, track):
        self.tracks.append(track)
        sender = FakeSender(track, self.dtls)
        self.transceivers.append(SimpleNamespace(kind=track.kind, mid=str(len(self.transceivers)), sender=sender))
        return sender

    def getTransceivers(self):
        return list(self.transceivers)

    async def createOffer(self):
        self.offers_created += 1
        return SimpleNamespace(type="offer", sdp=f"v=0 offer {self.offers_created}")

    async def createAnswer(self):
        self.answers_created += 1
        return SimpleNamespace(type="answer", sdp=f"v=0 answer {self.answers_created}")

    async def setLocalDescription(self, description):
        self.localDescription = description

    async def setRemoteDescription(self, description):
        if self.fail_remote_description:
            raise RuntimeError("Cannot set remote description in current signaling state")
        self.remoteDescription = description

    async def addIceCandidate(self, candidate):
        self.candidates.append(candidate)

    async def close(self):
        self.closed = True
        self.connectionState = "closed"

    def report(self, state):
        self.connectionState = state
        self.handlers["connectionstatechange"]()


@pytest.fixture
def fake_redis():
    return fakeredis.FakeRedis(decode_responses=True)


@pytest.fixture
def backend(fake_redis):
    from backend import RedisBackend
    return RedisBackend(redis_client=fake_redis, signal_ttl=600)


@pytest.fixture
def client(fake_redis, monkeypatch):
    """TestClient wired to fakeredis and a clean room registry."""
    from fastapi.testclient import TestClient
    from app import app, connections
    from backend import redis_backend
    from signaling.registry import room_registry

    monkeypatch.setattr(redis_backend, "redis_client", fake_redis)
    room_registry.reset()
    connections.clear()
    with TestClient(app) as test_client:
        yield test_client
    room_registry.reset()
    connections.clear()


@pytest.fixture
def make_peer():
    """Build a PeerClient over a FakeConnection. Returns (client, connection)."""
    def _make(peer_id, room_id="abcd1234", media=None, **session_fields):
        connection = FakeConnection()
        peer = PeerClient(
            PeerSession(room_id=room_id, peer_id=peer_id, **session_fields),
            connection_factory=lambda: connection,
            media_factory=(lambda: media) if media is not None else None,
        )
        return peer, connection
    return _make


@pytest.fixture
def fake_media():
    return SimpleNamespace(audio=MagicMock(kind="audio"), video=MagicMock(kind="video"))
