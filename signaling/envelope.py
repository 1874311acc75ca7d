import random
import string
import time
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

JOIN = "join"
OFFER = "offer"
ANSWER = "answer"
ICE_CANDIDATE = "ice-candidate"
LEAVE = "leave"

SIGNAL_TYPES = (JOIN, OFFER, ANSWER, ICE_CANDIDATE, LEAVE)

SignalType = Literal["join", "offer", "answer", "ice-candidate", "leave"]


def now_ms() -> int:
    return int(time.time() * 1000)


def generate_id(length: int = 8) -> str:
    """Random lowercase alphanumeric id, used for room and peer ids."""
    return ''.join(random.choices(string.ascii_lowercase + string.digits, k=length))


class Envelope(BaseModel):
    """A single signaling message exchanged between two peers.

    ``data`` is opaque to the relay: an SDP description for offer/answer,
    an ICE candidate for ice-candidate, and null for join/leave.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    from_peer: str = Field(alias="fromPeer", min_length=1)
    type: SignalType
    data: Any = None
    target_id: Optional[str] = Field(default=None, alias="targetId")
    room_id: Optional[str] = Field(default=None, alias="roomId")
    timestamp: int = Field(default_factory=now_ms)

    def is_for(self, peer_id: str) -> bool:
        """Whether ``peer_id`` should act on this envelope."""
        if self.from_peer == peer_id:
            return False
        return self.target_id is None or self.target_id == peer_id

    def to_wire(self) -> dict:
        wire = self.model_dump(by_alias=True)
        # data stays even when null, routing fields only when set
        for key in ("targetId", "roomId"):
            if wire.get(key) is None:
                wire.pop(key, None)
        return wire
