import redis
import json
from datetime import datetime
from typing import Optional
from constants import (
    REDIS_HOST,
    REDIS_PORT,
    REDIS_PASSWORD,
    REDIS_DB,
    DEFAULT_ITEM_COLOR,
    DEFAULT_LIST_TITLE,
    SESSION_ACTIVE_MINUTES,
    SESSION_TTL_SECONDS,
)
from errors import PersistenceUnavailable
from redis_keys import (
    REDIS_LIST_SEQ_KEY,
    REDIS_ITEM_SEQ_KEY,
    REDIS_LIST_META_KEY,
    REDIS_LIST_SLUG_KEY,
    REDIS_LIST_ITEMS_KEY,
    REDIS_ITEM_LIST_KEY,
    REDIS_LIST_SESSIONS_KEY,
    REDIS_SESSION_KEY,
    REDIS_LIST_CHANNEL,
)
from logging_config import get_logger

logger = get_logger(__name__)

# Connections are opened lazily by redis-py; ping() is called at app startup
redis_client = redis.Redis(host=REDIS_HOST, port=REDIS_PORT, password=REDIS_PASSWORD, db=REDIS_DB, decode_responses=True)


def next_item_order(orders) -> int:
    """New items go above everything else: min(order) - 1, or 0 for an empty list."""
    orders = list(orders)
    if not orders:
        return 0
    return min(orders) - 1


def _now() -> str:
    return datetime.now().isoformat()


def _encode(data: dict) -> dict:
    # Hash values are json so ints/bools/None survive the round trip
    return {k: json.dumps(v) for k, v in data.items()}


def _decode(data: dict) -> dict:
    result = {}
    for k, v in data.items():
        try:
            result[k] = json.loads(v)
        except (json.JSONDecodeError, TypeError):
            result[k] = v
    return result


class RedisBackend:
    def __init__(self, client: Optional[redis.Redis] = None, pubsub_client: Optional[redis.Redis] = None):
        self.redis_client = client if client is not None else redis_client
        # Separate connection for pub/sub (required by Redis)
        if pubsub_client is None:
            pubsub_client = redis.Redis(host=REDIS_HOST, port=REDIS_PORT, password=REDIS_PASSWORD, db=REDIS_DB, decode_responses=True)
        self.pubsub_client = pubsub_client
        logger.info(f"Initializing RedisBackend with connection to {REDIS_HOST}:{REDIS_PORT}")

    def ping(self):
        try:
            self.redis_client.ping()
            self.pubsub_client.ping()
            logger.info(f"Redis client connected successfully to {REDIS_HOST}:{REDIS_PORT}")
        except Exception as e:
            logger.error(f"Failed to connect to Redis at {REDIS_HOST}:{REDIS_PORT}: {e}", exc_info=True)
            raise

    def _list_ttl(self, list_id: int) -> Optional[int]:
        ttl = self.redis_client.ttl(REDIS_LIST_META_KEY.format(list_id=list_id))
        return ttl if ttl and ttl > 0 else None

    # Lists

    def create_list(self, slug: str, title: Optional[str] = None, description: Optional[str] = None,
                    password: Optional[str] = None, ttl: Optional[int] = None, expires_at: Optional[str] = None):
        """Create a list under `slug`. Returns None when the slug is already taken."""
        slug_key = REDIS_LIST_SLUG_KEY.format(slug=slug)
        list_id = self.redis_client.incr(REDIS_LIST_SEQ_KEY)
        if not self.redis_client.set(slug_key, list_id, nx=True, ex=ttl):
            logger.debug(f"Slug {slug} already taken")
            return None
        logger.info(f"Creating list {list_id} with slug {slug} (ttl={ttl})")
        now = _now()
        list_data = {
            "id": list_id,
            "slug": slug,
            "title": title or DEFAULT_LIST_TITLE,
            "description": description,
            "password": password,
            "created_at": now,
            "updated_at": now,
            "expires_at": expires_at,
        }
        key = REDIS_LIST_META_KEY.format(list_id=list_id)
        self.redis_client.hset(key, mapping=_encode(list_data))
        if ttl:
            self.redis_client.expire(key, ttl)
        return list_data

    def get_list(self, list_id: int):
        logger.debug(f"Fetching list {list_id}")
        list_data = self.redis_client.hgetall(REDIS_LIST_META_KEY.format(list_id=list_id))
        if not list_data:
            logger.debug(f"List {list_id} not found in Redis")
            return None
        return _decode(list_data)

    def get_list_by_slug(self, slug: str):
        list_id = self.redis_client.get(REDIS_LIST_SLUG_KEY.format(slug=slug))
        if list_id is None:
            logger.debug(f"Slug {slug} not found in Redis")
            return None
        return self.get_list(int(list_id))

    def resolve_list(self, slug: str):
        """Slug -> list record, or None. Used by the socket join handshake."""
        return self.get_list_by_slug(slug)

    def update_list(self, list_id: int, title: Optional[str] = None, description: Optional[str] = None):
        key = REDIS_LIST_META_KEY.format(list_id=list_id)
        if not self.redis_client.exists(key):
            return None
        changes = {}
        if title is not None:
            changes["title"] = title
        if description is not None:
            changes["description"] = description
        if changes:
            changes["updated_at"] = _now()
            self.redis_client.hset(key, mapping=_encode(changes))
            logger.debug(f"List {list_id} updated: {sorted(changes)}")
        return self.get_list(list_id)

    # Items

    def get_list_items(self, list_id: int) -> list:
        raw_items = self.redis_client.hvals(REDIS_LIST_ITEMS_KEY.format(list_id=list_id))
        items = [json.loads(raw) for raw in raw_items]
        items.sort(key=lambda item: (item["order"], item["id"]))
        return items

    def get_item(self, item_id: int):
        list_id = self.redis_client.get(REDIS_ITEM_LIST_KEY.format(item_id=item_id))
        if list_id is None:
            return None
        raw = self.redis_client.hget(REDIS_LIST_ITEMS_KEY.format(list_id=list_id), str(item_id))
        return json.loads(raw) if raw else None

    def _save_item(self, item: dict, ttl: Optional[int] = None):
        items_key = REDIS_LIST_ITEMS_KEY.format(list_id=item["list_id"])
        index_key = REDIS_ITEM_LIST_KEY.format(item_id=item["id"])
        pipe = self.redis_client.pipeline()
        pipe.hset(items_key, str(item["id"]), json.dumps(item))
        pipe.set(index_key, item["list_id"])
        if ttl:
            pipe.expire(items_key, ttl)
            pipe.expire(index_key, ttl)
        pipe.execute()

    def create_item(self, list_id: int, text: str, color: Optional[str] = None):
        if not self.redis_client.exists(REDIS_LIST_META_KEY.format(list_id=list_id)):
            logger.debug(f"Cannot add item: list {list_id} not found")
            return None
        orders = [item["order"] for item in self.get_list_items(list_id)]
        now = _now()
        item = {
            "id": self.redis_client.incr(REDIS_ITEM_SEQ_KEY),
            "list_id": list_id,
            "text": text,
            "completed": False,
            "color": color or DEFAULT_ITEM_COLOR,
            "order": next_item_order(orders),
            "created_at": now,
            "updated_at": now,
        }
        # Items expire together with their list
        self._save_item(item, ttl=self._list_ttl(list_id))
        logger.debug(f"Item {item['id']} added to list {list_id} at order {item['order']}")
        return item

    def update_item(self, item_id: int, **changes):
        item = self.get_item(item_id)
        if item is None:
            return None
        updates = {k: v for k, v in changes.items() if v is not None and k in ("text", "completed", "color", "order")}
        if updates:
            item.update(updates)
            item["updated_at"] = _now()
            self._save_item(item, ttl=self._list_ttl(item["list_id"]))
        return item

    def delete_item(self, item_id: int) -> bool:
        index_key = REDIS_ITEM_LIST_KEY.format(item_id=item_id)
        list_id = self.redis_client.get(index_key)
        if list_id is None:
            return False
        pipe = self.redis_client.pipeline()
        pipe.hdel(REDIS_LIST_ITEMS_KEY.format(list_id=list_id), str(item_id))
        pipe.delete(index_key)
        pipe.execute()
        logger.debug(f"Item {item_id} deleted from list {list_id}")
        return True

    def reorder_items(self, updates: list) -> bool:
        for update in updates:
            self.update_item(update["id"], order=update["order"])
        return True

    # Sessions

    def touch_session(self, list_id: int, session_id: str, user_agent: Optional[str] = None):
        """Create the session record or refresh its last activity."""
        session_key = REDIS_SESSION_KEY.format(session_id=session_id)
        now = datetime.now()
        try:
            existing = self.redis_client.hgetall(session_key)
            if existing:
                previous_list = _decode(existing).get("list_id")
                if previous_list is not None and previous_list != list_id:
                    self.redis_client.zrem(REDIS_LIST_SESSIONS_KEY.format(list_id=previous_list), session_id)
                session = _decode(existing)
                session.update({"list_id": list_id, "last_activity": now.isoformat()})
            else:
                session = {
                    "list_id": list_id,
                    "session_id": session_id,
                    "user_agent": user_agent,
                    "last_activity": now.isoformat(),
                    "created_at": now.isoformat(),
                }
            sessions_key = REDIS_LIST_SESSIONS_KEY.format(list_id=list_id)
            pipe = self.redis_client.pipeline()
            pipe.hset(session_key, mapping=_encode(session))
            pipe.expire(session_key, SESSION_TTL_SECONDS)
            pipe.zadd(sessions_key, {session_id: now.timestamp()})
            pipe.expire(sessions_key, SESSION_TTL_SECONDS)
            pipe.execute()
        except redis.exceptions.RedisError as e:
            raise PersistenceUnavailable(f"Could not touch session {session_id}: {e}") from e
        logger.debug(f"Session {session_id} touched for list {list_id}")
        return session

    def remove_session(self, session_id: str) -> bool:
        session_key = REDIS_SESSION_KEY.format(session_id=session_id)
        try:
            session = self.redis_client.hgetall(session_key)
            if not session:
                return False
            list_id = _decode(session).get("list_id")
            pipe = self.redis_client.pipeline()
            pipe.zrem(REDIS_LIST_SESSIONS_KEY.format(list_id=list_id), session_id)
            pipe.delete(session_key)
            pipe.execute()
        except redis.exceptions.RedisError as e:
            raise PersistenceUnavailable(f"Could not remove session {session_id}: {e}") from e
        logger.debug(f"Session {session_id} removed from list {list_id}")
        return True

    def get_active_sessions(self, list_id: int, minutes_threshold: int = SESSION_ACTIVE_MINUTES) -> list:
        sessions_key = REDIS_LIST_SESSIONS_KEY.format(list_id=list_id)
        threshold = datetime.now().timestamp() - minutes_threshold * 60
        # Drop the stale tail so the zset does not grow with abandoned tabs
        self.redis_client.zremrangebyscore(sessions_key, "-inf", threshold)
        sessions = []
        for session_id in self.redis_client.zrangebyscore(sessions_key, threshold, "+inf"):
            data = self.redis_client.hgetall(REDIS_SESSION_KEY.format(session_id=session_id))
            if data:
                sessions.append(_decode(data))
        logger.debug(f"List {list_id} has {len(sessions)} active sessions")
        return sessions

    # Pub/sub

    def get_list_channel_name(self, list_id: int) -> str:
        """Get the Redis pub/sub channel name for a list room."""
        return REDIS_LIST_CHANNEL.format(list_id=list_id)

    def publish_event(self, list_id: int, envelope: dict) -> int:
        """Publish an envelope to the list's Redis pub/sub channel."""
        channel = self.get_list_channel_name(list_id)
        subscribers = self.redis_client.publish(channel, json.dumps(envelope))
        logger.debug(f"Published {envelope.get('event')} to list {list_id} channel {channel}, {subscribers} subscribers")
        return subscribers

    def subscribe_to_list(self, list_id: int):
        """Create a pubsub subscriber for a list channel."""
        channel = self.get_list_channel_name(list_id)
        logger.debug(f"Subscribing to Redis channel {channel} for list {list_id}")
        pubsub = self.pubsub_client.pubsub()
        pubsub.subscribe(channel)
        return pubsub


redis_backend = RedisBackend()


def get_store():
    return redis_backend
