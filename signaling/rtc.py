"""aiortc glue: connection and media factories plus JSON <-> object conversion.

Descriptions and candidates travel as the same JSON shapes browsers use:
``{"type": "offer", "sdp": "..."}`` and
``{"candidate": "candidate:...", "sdpMid": "0", "sdpMLineIndex": 0}``.
"""
from typing import Iterable, List, Optional

from aiortc import RTCConfiguration, RTCIceCandidate, RTCIceServer, RTCPeerConnection, RTCSessionDescription
from aiortc.contrib.media import MediaPlayer
from aiortc.sdp import candidate_from_sdp, candidate_to_sdp

from logging_config import get_logger
from signaling.errors import MediaUnavailableError

logger = get_logger(__name__)

CANDIDATE_PREFIX = "candidate:"


def create_peer_connection(stun_urls: Iterable[str], receive_only: bool = False) -> RTCPeerConnection:
    servers = [RTCIceServer(urls=url) for url in stun_urls]
    pc = RTCPeerConnection(RTCConfiguration(iceServers=servers))

    if receive_only:
        # Without local media the offer still has to negotiate something
        pc.addTransceiver("audio", direction="recvonly")
        pc.addTransceiver("video", direction="recvonly")

    @pc.on("track")
    def on_track(track):
        logger.info(f"Receiving remote {track.kind} track")

    return pc


def open_local_media(source: str, media_format: Optional[str] = None, options: Optional[dict] = None) -> MediaPlayer:
    """Open a capture device or file, e.g. ``/dev/video0`` with format ``v4l2``."""
    try:
        return MediaPlayer(source, format=media_format, options=options or {})
    except Exception as e:
        raise MediaUnavailableError(f"Cannot open media source {source!r}: {e}") from e


def local_tracks(media) -> List:
    if media is None:
        return []
    return [track for track in (getattr(media, "audio", None), getattr(media, "video", None)) if track is not None]


def description_to_dict(description) -> dict:
    return {"type": description.type, "sdp": description.sdp}


def description_from_dict(data: dict) -> RTCSessionDescription:
    if not isinstance(data, dict):
        raise ValueError("Session description must be an object")
    return RTCSessionDescription(sdp=data["sdp"], type=data["type"])


def candidate_to_dict(candidate: RTCIceCandidate) -> dict:
    return {
        "candidate": CANDIDATE_PREFIX + candidate_to_sdp(candidate),
        "sdpMid": candidate.sdpMid,
        "sdpMLineIndex": candidate.sdpMLineIndex,
    }


def candidate_from_dict(data: dict) -> RTCIceCandidate:
    if not isinstance(data, dict):
        raise ValueError("ICE candidate must be an object")
    line = data.get("candidate") or ""
    if line.startswith(CANDIDATE_PREFIX):
        line = line[len(CANDIDATE_PREFIX):]
    if not line:
        raise ValueError("ICE candidate line is empty")
    candidate = candidate_from_sdp(line)
    candidate.sdpMid = data.get("sdpMid")
    candidate.sdpMLineIndex = data.get("sdpMLineIndex")
    return candidate


def gathered_candidates(connection) -> List[dict]:
    """Local candidates from every ICE transport, tagged with the first media line that uses it.

    aiortc gathers during ``setLocalDescription`` and never fires ``icecandidate``,
    so this is read once the local description is set.
    """
    candidates = []
    seen = set()
    for index, transceiver in enumerate(connection.getTransceivers()):
        dtls = transceiver.sender.transport
        if dtls is None or id(dtls) in seen:
            continue
        seen.add(id(dtls))
        for candidate in dtls.transport.iceGatherer.getLocalCandidates():
            candidate.sdpMid = transceiver.mid
            candidate.sdpMLineIndex = index
            candidates.append(candidate_to_dict(candidate))
    return candidates


def sender_for(connection, kind: str):
    for transceiver in connection.getTransceivers():
        if transceiver.kind == kind:
            return transceiver.sender
    return None
