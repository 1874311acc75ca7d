import redis
import json
from typing import List, Optional
from constants import REDIS_HOST, REDIS_PORT, REDIS_PASSWORD, SIGNAL_TTL_SECONDS
from redis_keys import REDIS_SIGNALS_KEY
from signaling.errors import SignalStoreError
from logging_config import get_logger

logger = get_logger(__name__)


class RedisBackend:
    """Durable per-room signal queue for the polling binding."""

    def __init__(self, redis_client: Optional[redis.Redis] = None, signal_ttl: int = SIGNAL_TTL_SECONDS):
        # redis.Redis connects lazily, so the relay starts even if Redis is still coming up
        if redis_client is None:
            redis_client = redis.Redis(host=REDIS_HOST, port=REDIS_PORT, password=REDIS_PASSWORD, decode_responses=True)
        self.redis_client = redis_client
        self.signal_ttl = signal_ttl
        logger.info(f"Initializing RedisBackend with connection to {REDIS_HOST}:{REDIS_PORT}")

    def ping(self) -> bool:
        try:
            self.redis_client.ping()
            logger.info(f"Redis client connected successfully to {REDIS_HOST}:{REDIS_PORT}")
            return True
        except redis.RedisError as e:
            logger.error(f"Failed to connect to Redis at {REDIS_HOST}:{REDIS_PORT}: {e}")
            return False

    def get_signals_key(self, room_id: str) -> str:
        return REDIS_SIGNALS_KEY.format(slug=room_id)

    def push_signal(self, room_id: str, envelope: dict) -> int:
        """Append an envelope to the room's queue. Returns the queue length."""
        key = self.get_signals_key(room_id)
        try:
            pipe = self.redis_client.pipeline()
            pipe.rpush(key, json.dumps(envelope))
            if self.signal_ttl:
                pipe.expire(key, self.signal_ttl)
            length = pipe.execute()[0]
        except redis.RedisError as e:
            logger.error(f"Failed to push signal to room {room_id}: {e}", exc_info=True)
            raise SignalStoreError(f"Failed to queue signal for room {room_id}") from e
        logger.debug(f"Queued {envelope.get('type')} from {envelope.get('fromPeer')} in room {room_id} ({length} pending)")
        return length

    def drain_signals(self, room_id: str, exclude_peer: Optional[str] = None) -> List[dict]:
        """Atomically read and clear the room's queue, oldest first.

        With ``exclude_peer`` the envelopes sent by that peer stay queued for
        the other side; everything else is handed out exactly once. The read
        and the rewrite run in one WATCH/MULTI transaction, so a concurrent
        push either lands before the read or after the clear, never in between.
        """
        key = self.get_signals_key(room_id)
        logger.debug(f"Draining signals for room {room_id} (exclude_peer={exclude_peer})")

        def _drain(pipe) -> List[dict]:
            raw_items = pipe.lrange(key, 0, -1)
            delivered = []
            kept = []
            for raw in raw_items:
                envelope = self._decode(room_id, raw)
                if envelope is None:
                    continue
                if exclude_peer and envelope.get("fromPeer") == exclude_peer:
                    kept.append(raw)
                else:
                    delivered.append(envelope)
            pipe.multi()
            pipe.delete(key)
            if kept:
                pipe.rpush(key, *kept)
                if self.signal_ttl:
                    pipe.expire(key, self.signal_ttl)
            return delivered

        try:
            signals = self.redis_client.transaction(_drain, key, value_from_callable=True)
        except redis.RedisError as e:
            logger.error(f"Failed to drain signals for room {room_id}: {e}", exc_info=True)
            raise SignalStoreError(f"Failed to read signals for room {room_id}") from e
        logger.debug(f"Drained {len(signals)} signals from room {room_id}")
        return signals

    def pending_count(self, room_id: str) -> int:
        try:
            return self.redis_client.llen(self.get_signals_key(room_id))
        except redis.RedisError as e:
            logger.error(f"Failed to count signals for room {room_id}: {e}", exc_info=True)
            raise SignalStoreError(f"Failed to read signals for room {room_id}") from e

    def _decode(self, room_id: str, raw: str) -> Optional[dict]:
        try:
            envelope = json.loads(raw)
        except (json.JSONDecodeError, TypeError):
            logger.warning(f"Discarding malformed signal in room {room_id}: {raw!r}")
            return None
        if not isinstance(envelope, dict):
            logger.warning(f"Discarding non-object signal in room {room_id}: {raw!r}")
            return None
        return envelope


redis_backend = RedisBackend()
