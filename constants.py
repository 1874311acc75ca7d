import os

REDIS_HOST = os.getenv("REDIS_HOST", "localhost")
REDIS_PORT = int(os.getenv("REDIS_PORT", 6379))
REDIS_PASSWORD = os.getenv("REDIS_PASSWORD", None)

# Queued signals expire if nobody drains the room
SIGNAL_TTL_SECONDS = int(os.getenv("SIGNAL_TTL_SECONDS", 600))

HOST = os.getenv("HOST", "0.0.0.0")
PORT = int(os.getenv("PORT", 8000))

# Client side
SIGNALING_URL = os.getenv("SIGNALING_URL", "http://localhost:8000")
POLL_INTERVAL = float(os.getenv("POLL_INTERVAL", 0.5))  # seconds
ROOM_ID_LENGTH = 8
PEER_ID_LENGTH = 6
STUN_URLS = [url for url in os.getenv("STUN_URLS", "stun:stun.l.google.com:19302").split(",") if url]
