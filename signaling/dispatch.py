"""Live-channel signal routing.

All of the relay's decisions for the WebSocket binding live here, apart from
the sockets themselves: ``LiveChannelDispatcher.handle`` takes one incoming
event from a peer and returns the deliveries the transport must push out.

Events (client -> server):
    join-room(roomId)
    leave-room()
    offer({targetId, offer})
    answer({targetId, answer})
    ice-candidate({targetId, candidate})

Events (server -> client):
    connected({peerId})
    room-joined({roomId, peers})
    new-participant(peerId)
    offer({callerId, offer})
    answer({responderId, answer})
    ice-candidate({fromId, candidate})
    peer-disconnected(peerId)
    error({message})
"""
import json
from dataclasses import dataclass
from typing import Any, List, Optional, Tuple

from logging_config import get_logger
from signaling.errors import InvalidSignalError
from signaling.registry import RoomRegistry

logger = get_logger(__name__)

JOIN_ROOM = "join-room"
LEAVE_ROOM = "leave-room"
CONNECTED = "connected"
ROOM_JOINED = "room-joined"
NEW_PARTICIPANT = "new-participant"
PEER_DISCONNECTED = "peer-disconnected"
ERROR = "error"

# event -> (payload key, key naming the sender on the relayed copy)
RELAYED_EVENTS = {
    "offer": ("offer", "callerId"),
    "answer": ("answer", "responderId"),
    "ice-candidate": ("candidate", "fromId"),
}


@dataclass
class ChannelSession:
    """Per-connection state, passed explicitly to the dispatcher."""
    peer_id: str
    room_id: Optional[str] = None


@dataclass(frozen=True)
class Delivery:
    target_id: str
    event: str
    data: Any = None

    def to_frame(self) -> dict:
        return {"event": self.event, "data": self.data}


def parse_frame(raw: str) -> Tuple[str, Any]:
    """Decode a ``{"event": ..., "data": ...}`` text frame."""
    try:
        frame = json.loads(raw)
    except json.JSONDecodeError:
        raise InvalidSignalError("Frame is not valid JSON")
    if not isinstance(frame, dict):
        raise InvalidSignalError("Frame must be a JSON object")
    event = frame.get("event")
    if not isinstance(event, str) or not event:
        raise InvalidSignalError("Missing event")
    return event, frame.get("data")


class LiveChannelDispatcher:
    def __init__(self, registry: RoomRegistry):
        self.registry = registry

    async def handle(self, session: ChannelSession, event: str, data: Any) -> List[Delivery]:
        if event == JOIN_ROOM:
            return await self._join_room(session, data)
        if event == LEAVE_ROOM:
            return await self._leave_room(session)
        if event in RELAYED_EVENTS:
            return await self._relay(session, event, data)
        raise InvalidSignalError(f"Unknown event: {event}")

    async def disconnect(self, session: ChannelSession) -> List[Delivery]:
        """Connection lost: announce the departure to whoever is left."""
        logger.info(f"Peer {session.peer_id} disconnected")
        return await self._leave_room(session)

    async def _join_room(self, session: ChannelSession, data: Any) -> List[Delivery]:
        room_id = data.strip() if isinstance(data, str) else ""
        if not room_id:
            raise InvalidSignalError("Missing roomId")

        deliveries: List[Delivery] = []
        if session.room_id == room_id:
            # Re-join is idempotent: tell the peer who is there, announce nothing
            existing = await self.registry.members(room_id) - {session.peer_id}
            return [Delivery(session.peer_id, ROOM_JOINED, {"roomId": room_id, "peers": sorted(existing)})]

        if session.room_id is not None:
            deliveries.extend(await self._leave_room(session))

        existing = await self.registry.join(room_id, session.peer_id)
        session.room_id = room_id

        deliveries.append(Delivery(session.peer_id, ROOM_JOINED, {"roomId": room_id, "peers": sorted(existing)}))
        for other in sorted(existing):
            deliveries.append(Delivery(other, NEW_PARTICIPANT, session.peer_id))
        return deliveries

    async def _leave_room(self, session: ChannelSession) -> List[Delivery]:
        if session.room_id is None:
            return []
        room_id = session.room_id
        remaining = await self.registry.leave(room_id, session.peer_id)
        session.room_id = None
        return [Delivery(other, PEER_DISCONNECTED, session.peer_id) for other in sorted(remaining)]

    async def _relay(self, session: ChannelSession, event: str, data: Any) -> List[Delivery]:
        payload_key, sender_key = RELAYED_EVENTS[event]
        if not isinstance(data, dict):
            raise InvalidSignalError(f"Invalid {event} payload")
        target_id = data.get("targetId")
        if not target_id:
            raise InvalidSignalError("Missing targetId")
        if payload_key not in data:
            raise InvalidSignalError(f"Missing {payload_key}")

        if target_id == session.peer_id:
            logger.debug(f"Dropping {event} from {session.peer_id} addressed to itself")
            return []
        if session.room_id is None:
            logger.debug(f"Dropping {event} from {session.peer_id}: not in a room")
            return []
        if target_id not in await self.registry.members(session.room_id):
            logger.debug(f"Dropping {event} from {session.peer_id}: {target_id} not in room {session.room_id}")
            return []

        logger.debug(f"Relaying {event} from {session.peer_id} to {target_id}")
        return [Delivery(target_id, event, {sender_key: session.peer_id, payload_key: data[payload_key]})]
