from pydantic import BaseModel, Field
from typing import Any, Optional


class SendSignalRequest(BaseModel):
    # Every field is optional here so the router can name the missing one in a 400
    room_id: Optional[str] = Field(default=None, alias="roomId")
    from_peer: Optional[str] = Field(default=None, alias="fromPeer")
    type: Optional[str] = None
    data: Any = None
    target_id: Optional[str] = Field(default=None, alias="targetId")

class SendSignalResponse(BaseModel):
    ok: bool = True

class SignalsResponse(BaseModel):
    signals: list[dict]

class SignalErrorResponse(BaseModel):
    # Polls also carry an empty "signals" list
    error: str
    signals: Optional[list[dict]] = None
