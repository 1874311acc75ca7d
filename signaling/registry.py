import asyncio
from typing import Dict, Optional, Set

from logging_config import get_logger

logger = get_logger(__name__)


class RoomRegistry:
    """In-memory room -> peer set mapping for the live-channel relay.

    Every read and write goes through one asyncio lock, so two peers joining
    the same room at the same moment are serialised and can't both be told
    they are alone. Rooms exist only while they have members.
    """

    def __init__(self):
        self._rooms: Dict[str, Set[str]] = {}
        self._peer_rooms: Dict[str, str] = {}
        self._lock = asyncio.Lock()

    async def join(self, room_id: str, peer_id: str) -> Set[str]:
        """Add peer to room. Returns the peers that were already there."""
        async with self._lock:
            current = self._peer_rooms.get(peer_id)
            if current == room_id:
                logger.debug(f"Peer {peer_id} already in room {room_id}")
                return self._rooms[room_id] - {peer_id}

            if current is not None:
                logger.warning(f"Peer {peer_id} moved from room {current} to {room_id} without leaving")
                self._remove(current, peer_id)

            members = self._rooms.setdefault(room_id, set())
            existing = set(members)
            members.add(peer_id)
            self._peer_rooms[peer_id] = room_id
            logger.info(f"Peer {peer_id} joined room {room_id}. Room has {len(members)} peers")
            return existing

    async def leave(self, room_id: str, peer_id: str) -> Set[str]:
        """Remove peer from room. Returns the peers still in it."""
        async with self._lock:
            if self._peer_rooms.get(peer_id) != room_id:
                logger.debug(f"Peer {peer_id} is not in room {room_id}, nothing to leave")
                return set(self._rooms.get(room_id, set()))
            remaining = self._remove(room_id, peer_id)
            logger.info(f"Peer {peer_id} left room {room_id}. Room has {len(remaining)} peers")
            return remaining

    async def members(self, room_id: str) -> Set[str]:
        async with self._lock:
            return set(self._rooms.get(room_id, set()))

    async def room_of(self, peer_id: str) -> Optional[str]:
        async with self._lock:
            return self._peer_rooms.get(peer_id)

    async def snapshot(self) -> Dict[str, Set[str]]:
        async with self._lock:
            return {room_id: set(members) for room_id, members in self._rooms.items()}

    def reset(self):
        """Drop all state. Only meant for process restarts and tests."""
        self._rooms = {}
        self._peer_rooms = {}
        self._lock = asyncio.Lock()

    def _remove(self, room_id: str, peer_id: str) -> Set[str]:
        self._peer_rooms.pop(peer_id, None)
        members = self._rooms.get(room_id)
        if members is None:
            return set()
        members.discard(peer_id)
        if not members:
            del self._rooms[room_id]
            logger.info(f"Room {room_id} deleted (empty)")
            return set()
        return set(members)


room_registry = RoomRegistry()
