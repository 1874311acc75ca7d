from pydantic import BaseModel
from typing import Optional


class CreateRoomRequest(BaseModel):
    room_id: Optional[str] = None

class CreateRoomResponse(BaseModel):
    room_id: str
    ws_url: str
    signal_url: str

class RoomDetailsResponse(BaseModel):
    room_id: str
    peers: list[str]
    peer_count: int
    pending_signals: int
