import os

REDIS_HOST = os.getenv("REDIS_HOST", "localhost")
REDIS_PORT = int(os.getenv("REDIS_PORT", 6379))
REDIS_PASSWORD = os.getenv("REDIS_PASSWORD", None)
REDIS_DB = int(os.getenv("REDIS_DB", 0))

# "memory" keeps fan-out inside this process, "redis" relays through pub/sub
BROADCAST_BACKEND = os.getenv("BROADCAST_BACKEND", "memory")

# A persisted session counts as an active viewer for this many minutes
SESSION_ACTIVE_MINUTES = int(os.getenv("SESSION_ACTIVE_MINUTES", 5))
SESSION_TTL_SECONDS = int(os.getenv("SESSION_TTL_SECONDS", 24 * 60 * 60))

DEFAULT_LIST_TITLE = os.getenv("DEFAULT_LIST_TITLE", "My List")
DEFAULT_ITEM_COLOR = "primary"

LIST_EXPIRY_SECONDS = {
    "1d": 24 * 60 * 60,
    "1w": 7 * 24 * 60 * 60,
    "1m": 30 * 24 * 60 * 60,
    "inf": None,
}

CLIENT_RECONNECT_DELAY = float(os.getenv("CLIENT_RECONNECT_DELAY", 1.0))
CLIENT_RECONNECT_DELAY_MAX = float(os.getenv("CLIENT_RECONNECT_DELAY_MAX", 5.0))
CLIENT_RECONNECT_ATTEMPTS = int(os.getenv("CLIENT_RECONNECT_ATTEMPTS", 5))
