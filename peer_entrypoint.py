import argparse
import asyncio
import os
import sys
from logging_config import setup_logging

# Setup logging before importing the client modules
setup_logging(log_level=os.getenv("LOG_LEVEL", "INFO"), log_file=os.getenv("LOG_FILE", None))

from constants import PEER_ID_LENGTH, POLL_INTERVAL, ROOM_ID_LENGTH, SIGNALING_URL, STUN_URLS
from logging_config import get_logger
from signaling.envelope import generate_id
from signaling.errors import MediaUnavailableError, SignalingError
from signaling.peer_client import PeerClient, PeerSession
from signaling.rtc import create_peer_connection, open_local_media
from signaling.transports import LiveChannelTransport, PollingTransport

logger = get_logger(__name__)


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Join a signaling room as a WebRTC peer")
    parser.add_argument("--room", default=None, help="Room id to join (a new one is generated if omitted)")
    parser.add_argument("--url", default=SIGNALING_URL, help="Signaling relay base URL")
    parser.add_argument("--transport", choices=("ws", "poll"), default="ws", help="Live channel or HTTP polling")
    parser.add_argument("--poll-interval", type=float, default=POLL_INTERVAL, help="Seconds between polls")
    parser.add_argument("--media", default=None, help="Capture device or file, e.g. /dev/video0")
    parser.add_argument("--media-format", default=None, help="Media format, e.g. v4l2, avfoundation, dshow")
    parser.add_argument("--muted", action="store_true", help="Join with the microphone muted")
    parser.add_argument("--no-video", action="store_true", help="Join without sending video")
    return parser.parse_args(argv)


async def main(argv=None) -> int:
    args = parse_args(argv)
    room_id = args.room.strip() if args.room and args.room.strip() else generate_id(ROOM_ID_LENGTH)

    if args.transport == "ws":
        transport = LiveChannelTransport(args.url, room_id)
        try:
            peer_id = await transport.connect()
        except SignalingError as e:
            logger.error(str(e))
            return 1
    else:
        peer_id = generate_id(PEER_ID_LENGTH)
        transport = PollingTransport(args.url, room_id, peer_id, poll_interval=args.poll_interval)

    logger.info(f"Joining room {room_id} as {peer_id} over {args.transport}")

    client = PeerClient(
        PeerSession(room_id=room_id, peer_id=peer_id, audio_enabled=not args.muted, video_enabled=not args.no_video),
        connection_factory=lambda: create_peer_connection(STUN_URLS, receive_only=args.media is None),
        media_factory=(lambda: open_local_media(args.media, args.media_format)) if args.media else None,
    )

    try:
        await client.run(transport)
    except MediaUnavailableError as e:
        logger.error(f"Cannot access camera/microphone ({e}). Check the device and run again.")
        return 1

    logger.info(f"Session ended in state {client.state.value}")
    return 0


if __name__ == "__main__":
    try:
        sys.exit(asyncio.run(main()))
    except KeyboardInterrupt:
        pass
