from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from routers.rooms import rooms_router
from routers.signals import signals_router
from backend import redis_backend
from signaling.dispatch import CONNECTED, ERROR, ChannelSession, Delivery, LiveChannelDispatcher, parse_frame
from signaling.errors import InvalidSignalError
from signaling.registry import room_registry
from constants import PEER_ID_LENGTH
from signaling.envelope import generate_id
from typing import Dict, List
from logging_config import get_logger, setup_logging
import os

# Setup logging
log_level = os.getenv("LOG_LEVEL", "INFO")
log_file = os.getenv("LOG_FILE", None)
setup_logging(log_level=log_level, log_file=log_file)
logger = get_logger(__name__)

app = FastAPI()

# Configure CORS to allow all origins
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Allow all origins
    allow_credentials=True,
    allow_methods=["*"],  # Allow all HTTP methods
    allow_headers=["*"],  # Allow all headers
)

app.include_router(rooms_router)
app.include_router(signals_router)

dispatcher = LiveChannelDispatcher(room_registry)

logger.info("FastAPI application initialized")

# Live-channel sockets on this instance
# Format: {peer_id: websocket}
connections: Dict[str, WebSocket] = {}


@app.on_event("startup")
async def check_redis():
    # Polling clients get 503s until Redis is reachable; the live channel works regardless
    redis_backend.ping()


async def deliver(deliveries: List[Delivery]):
    """Push deliveries to their sockets in order. Missing or broken sockets are skipped."""
    for delivery in deliveries:
        websocket = connections.get(delivery.target_id)
        if websocket is None:
            logger.debug(f"Dropping {delivery.event} for {delivery.target_id}: not connected")
            continue
        try:
            await websocket.send_json(delivery.to_frame())
        except Exception as e:
            # Fire and forget: the receiver's own loop cleans up its connection
            logger.warning(f"Error sending {delivery.event} to {delivery.target_id}: {e}")


@app.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket):
    """Live-channel signaling endpoint.

    Every frame is JSON ``{"event": ..., "data": ...}``. The server assigns
    the peer id and sends it in a ``connected`` event right after accepting.
    """
    await websocket.accept()

    peer_id = generate_id(PEER_ID_LENGTH)
    while peer_id in connections:
        peer_id = generate_id(PEER_ID_LENGTH)
    session = ChannelSession(peer_id=peer_id)
    connections[peer_id] = websocket
    logger.info(f"WebSocket connection accepted for peer {peer_id} (local connections: {len(connections)})")

    try:
        await websocket.send_json({"event": CONNECTED, "data": {"peerId": peer_id}})

        message_count = 0
        while True:
            try:
                message = await websocket.receive()
                if message["type"] == "websocket.disconnect":
                    raise WebSocketDisconnect(message.get("code", 1000))
            except WebSocketDisconnect:
                logger.info(f"WebSocket disconnected normally for peer {peer_id}")
                break
            message_count += 1
            logger.debug(f"Received message #{message_count} from peer {peer_id}")

            try:
                if message.get("text") is None:
                    raise InvalidSignalError("Frames must be text")
                event, data = parse_frame(message["text"])
                deliveries = await dispatcher.handle(session, event, data)
            except InvalidSignalError as e:
                logger.info(f"Rejected frame from peer {peer_id}: {e}")
                await websocket.send_json({"event": ERROR, "data": {"message": str(e)}})
                continue

            await deliver(deliveries)

    except Exception as e:
        logger.error(f"WebSocket error for peer {peer_id}: {e}", exc_info=True)
    finally:
        # Cleanup on disconnect
        connections.pop(peer_id, None)
        try:
            await deliver(await dispatcher.disconnect(session))
        except Exception as e:
            logger.error(f"Error announcing departure of peer {peer_id}: {e}", exc_info=True)
        try:
            await websocket.close()
        except Exception as e:
            logger.debug(f"Error closing WebSocket: {e}")
