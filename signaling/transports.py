"""Client-side transport bindings.

Both bindings expose the same three coroutines so ``PeerClient.run`` does not
care which one it is driving:

    send(envelope)   deliver one envelope to the relay
    receive()        async iterator of incoming envelopes, runs until closed
    close()          stop receiving and release the HTTP/WebSocket session
"""
import asyncio
import json
from typing import Any, AsyncIterator, Optional, Protocol

import aiohttp
from pydantic import ValidationError

from constants import POLL_INTERVAL
from logging_config import get_logger
from signaling.dispatch import (
    CONNECTED,
    ERROR,
    JOIN_ROOM,
    LEAVE_ROOM,
    NEW_PARTICIPANT,
    PEER_DISCONNECTED,
    RELAYED_EVENTS,
    ROOM_JOINED,
)
from signaling.envelope import JOIN, LEAVE, Envelope
from signaling.errors import SignalingError

logger = get_logger(__name__)


class Transport(Protocol):
    async def send(self, envelope: Envelope) -> None: ...

    def receive(self) -> AsyncIterator[Envelope]: ...

    async def close(self) -> None: ...


def envelope_to_frame(envelope: Envelope, room_id: str) -> dict:
    """Map an outgoing envelope onto a live-channel event frame."""
    if envelope.type == JOIN:
        return {"event": JOIN_ROOM, "data": room_id}
    if envelope.type == LEAVE:
        return {"event": LEAVE_ROOM, "data": None}
    payload_key, _ = RELAYED_EVENTS[envelope.type]
    return {"event": envelope.type, "data": {"targetId": envelope.target_id, payload_key: envelope.data}}


def frame_to_envelopes(event: str, data: Any, room_id: str, peer_id: str) -> list[Envelope]:
    """Map an incoming live-channel event onto the envelopes it stands for."""
    if event == NEW_PARTICIPANT:
        return [Envelope(from_peer=data, type=JOIN, room_id=room_id, target_id=peer_id)]
    if event == ROOM_JOINED:
        return [Envelope(from_peer=other, type=JOIN, room_id=room_id, target_id=peer_id) for other in data.get("peers", [])]
    if event == PEER_DISCONNECTED:
        return [Envelope(from_peer=data, type=LEAVE, room_id=room_id, target_id=peer_id)]
    if event in RELAYED_EVENTS:
        payload_key, sender_key = RELAYED_EVENTS[event]
        return [Envelope(from_peer=data[sender_key], type=event, data=data.get(payload_key), room_id=room_id, target_id=peer_id)]
    if event == ERROR:
        logger.warning(f"Relay rejected a frame: {data.get('message') if isinstance(data, dict) else data}")
    else:
        logger.debug(f"Ignoring live-channel event {event}")
    return []


def websocket_url(base_url: str) -> str:
    base = base_url.rstrip('/')
    return base.replace("http://", "ws://").replace("https://", "wss://") + "/ws"


class LiveChannelTransport:
    """Persistent WebSocket to the relay. The relay assigns the peer id."""

    def __init__(self, base_url: str, room_id: str):
        self.url = websocket_url(base_url)
        self.room_id = room_id
        self.peer_id: Optional[str] = None
        self.session: Optional[aiohttp.ClientSession] = None
        self.ws: Optional[aiohttp.ClientWebSocketResponse] = None

    async def connect(self) -> str:
        """Open the socket and wait for the ``connected`` event. Returns our peer id."""
        self.session = aiohttp.ClientSession()
        try:
            self.ws = await self.session.ws_connect(self.url)
            frame = await self.ws.receive_json()
        except (aiohttp.ClientError, ValueError, TypeError) as e:
            await self.close()
            raise SignalingError(f"Could not connect to {self.url}: {e}") from e

        if frame.get("event") != CONNECTED:
            await self.close()
            raise SignalingError(f"Unexpected first frame from relay: {frame}")
        self.peer_id = frame["data"]["peerId"]
        logger.info(f"Connected to signaling relay at {self.url} as {self.peer_id}")
        return self.peer_id

    async def send(self, envelope: Envelope) -> None:
        if self.ws is None or self.ws.closed:
            logger.warning(f"Dropping {envelope.type}: live channel is closed")
            return
        try:
            await self.ws.send_json(envelope_to_frame(envelope, self.room_id))
        except (aiohttp.ClientError, ConnectionError) as e:
            logger.error(f"Failed to send {envelope.type}: {e}")

    async def receive(self) -> AsyncIterator[Envelope]:
        if self.ws is None:
            return
        async for msg in self.ws:
            if msg.type == aiohttp.WSMsgType.TEXT:
                try:
                    frame = json.loads(msg.data)
                    envelopes = frame_to_envelopes(frame.get("event"), frame.get("data"), self.room_id, self.peer_id)
                except (ValueError, KeyError, TypeError, AttributeError, ValidationError) as e:
                    logger.warning(f"Discarding malformed frame from relay: {e}")
                    continue
                for envelope in envelopes:
                    yield envelope
            elif msg.type == aiohttp.WSMsgType.ERROR:
                logger.error(f"WebSocket error: {self.ws.exception()}")
                break
        logger.info("Live channel closed by relay")

    async def close(self) -> None:
        if self.ws is not None and not self.ws.closed:
            await self.ws.close()
        if self.session is not None and not self.session.closed:
            await self.session.close()


class PollingTransport:
    """Stateless HTTP binding: POST envelopes, poll-and-drain the room queue."""

    def __init__(self, base_url: str, room_id: str, peer_id: str, poll_interval: float = POLL_INTERVAL):
        self.url = base_url.rstrip('/') + "/signal"
        self.room_id = room_id
        self.peer_id = peer_id
        self.poll_interval = poll_interval
        self.session: Optional[aiohttp.ClientSession] = None
        self._closed = False

    def _session(self) -> aiohttp.ClientSession:
        if self.session is None or self.session.closed:
            self.session = aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=10))
        return self.session

    async def send(self, envelope: Envelope) -> None:
        body = {"roomId": self.room_id, **envelope.to_wire()}
        try:
            async with self._session().post(self.url, json=body) as resp:
                if resp.status != 200:
                    logger.warning(f"Relay rejected {envelope.type} ({resp.status}): {await resp.text()}")
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.error(f"sendSignal error: {e}")

    async def poll(self) -> list[Envelope]:
        """One poll cycle. Errors are logged and yield nothing; the next cycle retries."""
        params = {"roomId": self.room_id, "peerId": self.peer_id}
        try:
            async with self._session().get(self.url, params=params) as resp:
                payload = await resp.json()
                if resp.status != 200:
                    logger.warning(f"Polling rejected ({resp.status}): {payload.get('error')}")
                    return []
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            logger.error(f"Polling error: {e}")
            return []

        envelopes = []
        for raw in payload.get("signals") or []:
            try:
                envelopes.append(Envelope.model_validate(raw))
            except ValidationError as e:
                logger.warning(f"Discarding malformed signal: {e}")
        return envelopes

    async def receive(self) -> AsyncIterator[Envelope]:
        while not self._closed:
            for envelope in await self.poll():
                yield envelope
            # Fixed interval; a slow batch just delays the next poll
            await asyncio.sleep(self.poll_interval)

    async def close(self) -> None:
        self._closed = True
        if self.session is not None and not self.session.closed:
            await self.session.close()
