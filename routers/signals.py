from fastapi import APIRouter, Query, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from typing import Optional
from backend import redis_backend
from schemas.signals import SendSignalRequest, SendSignalResponse, SignalErrorResponse, SignalsResponse
from signaling.envelope import Envelope, SIGNAL_TYPES
from signaling.errors import SignalStoreError
from logging_config import get_logger

logger = get_logger(__name__)

signals_router = APIRouter(tags=["signals"])

SIGNAL_ERRORS = {400: {"model": SignalErrorResponse}, 503: {"model": SignalErrorResponse}}


def signal_error(message: str, status_code: int = 400, **extra) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message, **extra})


@signals_router.post("/signal", response_model=SendSignalResponse, responses=SIGNAL_ERRORS)
async def send_signal(request: Request):
    # POST /signal Body: { "roomId": "abcd1234", "fromPeer": "x1y2z3", "type": "join" | "offer" | "answer" | "ice-candidate" | "leave", "data": {...} | null, "targetId": "optional" }
    # Response 200: { "ok": true } / 400: { "error": "Missing roomId" }
    try:
        body = await request.json()
    except ValueError:
        logger.warning(f"Signal rejected from {request.client.host if request.client else 'unknown'}: invalid JSON")
        return signal_error("Invalid JSON body")
    if not isinstance(body, dict):
        return signal_error("Invalid JSON body")

    try:
        signal = SendSignalRequest.model_validate(body)
    except ValidationError as e:
        logger.warning(f"Signal rejected: {e.errors()}")
        return signal_error("Invalid signal fields")

    for field, value in (("roomId", signal.room_id), ("fromPeer", signal.from_peer), ("type", signal.type)):
        if not value:
            logger.info(f"Signal rejected: missing {field}")
            return signal_error(f"Missing {field}")
    # data may be null (join/leave), but it has to be present
    if "data" not in signal.model_fields_set:
        logger.info("Signal rejected: missing data")
        return signal_error("Missing data")
    if signal.type not in SIGNAL_TYPES:
        logger.info(f"Signal rejected: unsupported type {signal.type}")
        return signal_error(f"Unsupported signal type: {signal.type}")

    envelope = Envelope(
        from_peer=signal.from_peer,
        type=signal.type,
        data=signal.data,
        target_id=signal.target_id,
    )

    try:
        redis_backend.push_signal(signal.room_id, envelope.to_wire())
    except SignalStoreError as e:
        return signal_error(str(e), status_code=503)

    logger.info(f"Signal {envelope.type} from {envelope.from_peer} queued in room {signal.room_id}")
    return SendSignalResponse(ok=True)


@signals_router.get("/signal", response_model=SignalsResponse, responses=SIGNAL_ERRORS)
async def get_signals(
    roomId: Optional[str] = Query(None, description="Room whose queue is drained"),
    peerId: Optional[str] = Query(None, description="Caller's peer id; its own envelopes stay queued"),
):
    # GET /signal?roomId=abcd1234&peerId=x1y2z3
    # Response 200: { "signals": [ { fromPeer, type, data, timestamp }, ... ] }, oldest first
    if not roomId:
        logger.info("Signal poll rejected: missing roomId")
        return signal_error("Missing roomId", signals=[])

    try:
        signals = redis_backend.drain_signals(roomId, exclude_peer=peerId or None)
    except SignalStoreError as e:
        return signal_error(str(e), status_code=503, signals=[])

    if signals:
        logger.debug(f"Delivering {len(signals)} signals from room {roomId} to {peerId or 'anonymous poller'}")
    return SignalsResponse(signals=signals)


@signals_router.api_route(
    "/signal",
    methods=["PUT", "PATCH", "DELETE"],
    include_in_schema=False,
    status_code=405,
)
async def signal_method_not_allowed(request: Request):
    logger.info(f"Signal request with unsupported method {request.method}")
    response = signal_error("Only GET and POST are allowed", status_code=405)
    response.headers["Allow"] = "GET, POST"
    return response
