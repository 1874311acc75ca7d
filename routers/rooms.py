from fastapi import APIRouter, HTTPException, Request
from schemas.rooms import CreateRoomRequest, CreateRoomResponse, RoomDetailsResponse
from backend import redis_backend
from constants import ROOM_ID_LENGTH
from signaling.envelope import generate_id
from signaling.errors import SignalStoreError
from signaling.registry import room_registry
from logging_config import get_logger

logger = get_logger(__name__)

rooms_router = APIRouter(prefix="/rooms", tags=["rooms"])


@rooms_router.post("/", response_model=CreateRoomResponse)
async def create_room(room: CreateRoomRequest, request: Request):
    # { "room_id": "optional, client supplied" }
    # Response 200: { "room_id": "abcd1234", "ws_url": "ws://host/ws", "signal_url": "http://host/signal" }
    # Rooms are implicit: nothing is stored until the first peer joins.
    room_id = room.room_id.strip() if room.room_id and room.room_id.strip() else generate_id(ROOM_ID_LENGTH)
    logger.info(f"Room id {room_id} handed out to {request.client.host if request.client else 'unknown'}")

    # Construct WebSocket URL using request's base URL
    base_url = str(request.base_url).rstrip('/')
    ws_base = base_url.replace("http://", "ws://").replace("https://", "wss://")

    return CreateRoomResponse(
        room_id=room_id,
        ws_url=f"{ws_base}/ws",
        signal_url=f"{base_url}/signal",
    )


@rooms_router.get("/{room_id}", response_model=RoomDetailsResponse)
async def get_room_details(room_id: str):
    """
    Current state of a room.

    Returns:
    - room_id: Room identifier
    - peers: Peers connected over the live channel
    - peer_count: Number of live-channel peers
    - pending_signals: Envelopes waiting in the polling queue
    """
    peers = sorted(await room_registry.members(room_id))
    try:
        pending = redis_backend.pending_count(room_id)
    except SignalStoreError as e:
        raise HTTPException(status_code=503, detail=str(e))

    logger.info(f"Room details retrieved for {room_id}: {len(peers)} peers, {pending} pending signals")
    return RoomDetailsResponse(
        room_id=room_id,
        peers=peers,
        peer_count=len(peers),
        pending_signals=pending,
    )
