"""Per-peer handshake state machine.

    idle -> connecting -> joined -> negotiating -> connected
                                                     |
    (any) -----------------------------------> disconnected / closed

``failed`` is terminal and only reached when local media can't be opened.
Local ICE candidates are read off the connection once a local description is
set and sent right after the offer or answer. Received candidates are added
regardless of the negotiation state.
"""
import asyncio
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, List, Optional, Set

from logging_config import get_logger
from signaling.election import should_offer
from signaling.envelope import ANSWER, ICE_CANDIDATE, JOIN, LEAVE, OFFER, Envelope
from signaling.errors import MediaUnavailableError
from signaling.rtc import (
    candidate_from_dict,
    description_from_dict,
    description_to_dict,
    gathered_candidates,
    local_tracks,
    sender_for,
)

logger = get_logger(__name__)


class PeerState(str, Enum):
    IDLE = "idle"
    CONNECTING = "connecting"
    JOINED = "joined"
    NEGOTIATING = "negotiating"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    CLOSED = "closed"
    FAILED = "failed"


ACTIVE_STATES = (PeerState.JOINED, PeerState.NEGOTIATING, PeerState.CONNECTED)
FINISHED_STATES = (PeerState.DISCONNECTED, PeerState.CLOSED, PeerState.FAILED)
CONNECTION_LOST = ("disconnected", "failed", "closed")


@dataclass
class PeerSession:
    room_id: str
    peer_id: str
    state: PeerState = PeerState.IDLE
    offer_sent: bool = False
    remote_peer: Optional[str] = None
    known_peers: Set[str] = field(default_factory=set)
    audio_enabled: bool = True
    video_enabled: bool = True


class PeerClient:
    def __init__(self, session: PeerSession, connection_factory: Callable, media_factory: Optional[Callable] = None):
        self.session = session
        self.connection_factory = connection_factory
        self.media_factory = media_factory
        self.connection = None
        self.media = None
        self._finished = asyncio.Event()

    @property
    def state(self) -> PeerState:
        return self.session.state

    def _envelope(self, signal_type: str, data=None, target_id: Optional[str] = None) -> Envelope:
        return Envelope(
            from_peer=self.session.peer_id,
            type=signal_type,
            data=data,
            target_id=target_id,
            room_id=self.session.room_id,
        )

    def _set_state(self, state: PeerState):
        if state == self.session.state:
            return
        logger.info(f"Peer {self.session.peer_id}: {self.session.state.value} -> {state.value}")
        self.session.state = state
        if state in FINISHED_STATES:
            self._finished.set()

    async def start(self) -> List[Envelope]:
        """Open media and the connection object, then announce ourselves."""
        if self.session.state != PeerState.IDLE:
            logger.warning(f"Peer {self.session.peer_id} already started ({self.session.state.value})")
            return []
        self._set_state(PeerState.CONNECTING)

        try:
            self.media = self.media_factory() if self.media_factory else None
        except MediaUnavailableError as e:
            logger.error(f"Cannot access media devices: {e}")
            self._set_state(PeerState.FAILED)
            raise

        self.connection = self.connection_factory()
        for track in local_tracks(self.media):
            self.connection.addTrack(track)
        self.connection.on("connectionstatechange", self.on_connection_state_change)

        # Start muted or camera-off if asked to
        if self.media is not None and not self.session.audio_enabled:
            self.set_audio_enabled(False)
        if self.media is not None and not self.session.video_enabled:
            self.set_video_enabled(False)

        self._set_state(PeerState.JOINED)
        return [self._envelope(JOIN)]

    async def handle(self, envelope: Envelope) -> List[Envelope]:
        """Consume one incoming envelope, return the envelopes to send back."""
        if not envelope.is_for(self.session.peer_id):
            return []
        if self.session.state not in ACTIVE_STATES:
            logger.debug(f"Ignoring {envelope.type} from {envelope.from_peer} in state {self.session.state.value}")
            return []

        if envelope.type == JOIN:
            return await self._on_join(envelope)
        if envelope.type == OFFER:
            return await self._on_offer(envelope)
        if envelope.type == ANSWER:
            await self._on_answer(envelope)
        elif envelope.type == ICE_CANDIDATE:
            await self._on_ice_candidate(envelope)
        elif envelope.type == LEAVE:
            await self._on_leave(envelope)
        return []

    async def _on_join(self, envelope: Envelope) -> List[Envelope]:
        self.session.known_peers.add(envelope.from_peer)
        if self.session.remote_peer is None and len(self.session.known_peers) == 1:
            self.session.remote_peer = envelope.from_peer

        target = should_offer(self.session.peer_id, self.session.known_peers, self.session.offer_sent)
        if target is None:
            return []

        # Latch before awaiting so a duplicate join can't start a second offer
        self.session.offer_sent = True
        self.session.remote_peer = target
        try:
            offer = await self.connection.createOffer()
            await self.connection.setLocalDescription(offer)
        except Exception as e:
            logger.error(f"Error creating offer for {target}: {e}", exc_info=True)
            return []
        self._set_state(PeerState.NEGOTIATING)
        logger.info(f"Peer {self.session.peer_id} sending offer to {target}")
        return [self._envelope(OFFER, description_to_dict(self.connection.localDescription), target)] + self._candidate_envelopes(target)

    async def _on_offer(self, envelope: Envelope) -> List[Envelope]:
        caller = envelope.from_peer
        if self.session.remote_peer not in (None, caller):
            logger.warning(f"Ignoring offer from {caller}, already paired with {self.session.remote_peer}")
            return []
        self.session.known_peers.add(caller)
        self.session.remote_peer = caller

        try:
            await self.connection.setRemoteDescription(description_from_dict(envelope.data))
            answer = await self.connection.createAnswer()
            await self.connection.setLocalDescription(answer)
        except Exception as e:
            logger.error(f"Error handling offer from {caller}: {e}", exc_info=True)
            return []

        self.session.offer_sent = True
        if self.session.state != PeerState.CONNECTED:
            self._set_state(PeerState.NEGOTIATING)
        logger.info(f"Peer {self.session.peer_id} answering {caller}")
        return [self._envelope(ANSWER, description_to_dict(self.connection.localDescription), caller)] + self._candidate_envelopes(caller)

    async def _on_answer(self, envelope: Envelope):
        if envelope.from_peer != self.session.remote_peer:
            logger.warning(f"Ignoring answer from {envelope.from_peer}, expected {self.session.remote_peer}")
            return
        try:
            await self.connection.setRemoteDescription(description_from_dict(envelope.data))
        except Exception as e:
            logger.error(f"Error setting remote description with answer: {e}", exc_info=True)

    async def _on_ice_candidate(self, envelope: Envelope):
        if envelope.data is None:
            # end-of-candidates marker
            return
        try:
            await self.connection.addIceCandidate(candidate_from_dict(envelope.data))
        except Exception as e:
            logger.warning(f"Error adding received ICE candidate from {envelope.from_peer}: {e}")

    async def _on_leave(self, envelope: Envelope):
        self.session.known_peers.discard(envelope.from_peer)
        if envelope.from_peer != self.session.remote_peer:
            return
        logger.info(f"Peer left: {envelope.from_peer}")
        self.session.remote_peer = None
        await self._close_connection()
        self._set_state(PeerState.DISCONNECTED)

    def _candidate_envelopes(self, target: str) -> List[Envelope]:
        """ICE candidates gathered for the local description just set."""
        try:
            candidates = gathered_candidates(self.connection)
        except Exception as e:
            logger.warning(f"Could not read local ICE candidates: {e}")
            return []
        return [self._envelope(ICE_CANDIDATE, candidate, target) for candidate in candidates]

    def set_audio_enabled(self, enabled: bool) -> bool:
        """Mute or unmute the microphone. Returns False when there is no local audio."""
        return self._set_track_enabled("audio", enabled)

    def set_video_enabled(self, enabled: bool) -> bool:
        """Stop or restart sending video. Returns False when there is no local video."""
        return self._set_track_enabled("video", enabled)

    def _set_track_enabled(self, kind: str, enabled: bool) -> bool:
        track = getattr(self.media, kind, None)
        sender = sender_for(self.connection, kind) if self.connection is not None else None
        if track is None or sender is None:
            logger.warning(f"Peer {self.session.peer_id} has no local {kind} track to toggle")
            return False
        # The track keeps running; the sender just stops pulling frames from it
        sender.replaceTrack(track if enabled else None)
        setattr(self.session, f"{kind}_enabled", enabled)
        logger.info(f"Peer {self.session.peer_id} {kind} {'on' if enabled else 'off'}")
        return True

    def on_connection_state_change(self):
        if self.connection is None:
            return
        state = self.connection.connectionState
        logger.info(f"Peer {self.session.peer_id} connection state: {state}")
        if state == "connected" and self.session.state in ACTIVE_STATES:
            self._set_state(PeerState.CONNECTED)
        elif state in CONNECTION_LOST and self.session.state not in FINISHED_STATES:
            self._set_state(PeerState.DISCONNECTED)

    async def leave(self) -> List[Envelope]:
        """Tear down locally. Returns the leave notice to send, if any."""
        if self.session.state in (PeerState.IDLE, PeerState.CLOSED, PeerState.FAILED):
            return []
        notice = [self._envelope(LEAVE)]
        await self._close_connection()
        self._set_state(PeerState.CLOSED)
        return notice

    async def _close_connection(self):
        connection, self.connection = self.connection, None
        if connection is not None:
            try:
                await connection.close()
            except Exception as e:
                logger.warning(f"Error closing peer connection: {e}")
        media, self.media = self.media, None
        for track in local_tracks(media):
            track.stop()

    async def run(self, transport):
        """Join, then process incoming envelopes until the session ends.

        Ends when the remote peer leaves, the connection is lost, the
        transport stops delivering, or the task is cancelled.
        """
        try:
            for envelope in await self.start():
                await transport.send(envelope)

            pump = asyncio.create_task(self._pump(transport))
            finished = asyncio.create_task(self._finished.wait())
            try:
                await asyncio.wait({pump, finished}, return_when=asyncio.FIRST_COMPLETED)
            finally:
                for task in (pump, finished):
                    task.cancel()
                await asyncio.gather(pump, finished, return_exceptions=True)
            if not pump.cancelled() and pump.exception() is not None:
                raise pump.exception()
        finally:
            try:
                for envelope in await self.leave():
                    await transport.send(envelope)
            finally:
                await transport.close()

    async def _pump(self, transport):
        async for envelope in transport.receive():
            for outgoing in await self.handle(envelope):
                await transport.send(outgoing)
