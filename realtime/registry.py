import asyncio
import functools
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Optional
from errors import NotJoinedYet, PersistenceUnavailable
from logging_config import get_logger

logger = get_logger(__name__)


@dataclass
class Membership:
    connection_id: str
    session_id: str
    list_slug: str
    room_id: int
    user_agent: Optional[str] = None
    joined_at: str = field(default_factory=lambda: datetime.now().isoformat())


class SessionRegistry:
    """Which connection sits in which room, plus best-effort presence writes.

    The in-memory map routes broadcasts and is rebuilt from live connections
    after a restart. The persisted session records only feed the active
    viewer count, so failures writing them are logged and dropped.
    """

    def __init__(self, store):
        self.store = store
        self._memberships: Dict[str, Membership] = {}

    def attach(self, membership: Membership) -> Optional[Membership]:
        """Record a membership, returning whatever the connection held before."""
        previous = self._memberships.get(membership.connection_id)
        self._memberships[membership.connection_id] = membership
        return previous

    def detach(self, connection_id: str) -> Optional[Membership]:
        return self._memberships.pop(connection_id, None)

    def get(self, connection_id: str) -> Optional[Membership]:
        return self._memberships.get(connection_id)

    def require(self, connection_id: str) -> Membership:
        membership = self._memberships.get(connection_id)
        if membership is None:
            raise NotJoinedYet(connection_id)
        return membership

    def holds_session(self, session_id: str, room_id: Optional[int] = None) -> bool:
        """True if any attached connection carries `session_id` (optionally in `room_id`)."""
        return any(
            m.session_id == session_id and (room_id is None or m.room_id == room_id)
            for m in self._memberships.values()
        )

    def __len__(self):
        return len(self._memberships)

    async def touch(self, room_id: int, session_id: str, user_agent: Optional[str] = None) -> bool:
        return await self._best_effort(self.store.touch_session, room_id, session_id, user_agent)

    async def forget(self, session_id: str) -> bool:
        return await self._best_effort(self.store.remove_session, session_id)

    async def _best_effort(self, func, *args) -> bool:
        loop = asyncio.get_running_loop()
        try:
            await loop.run_in_executor(None, functools.partial(func, *args))
            return True
        except PersistenceUnavailable as e:
            logger.warning(f"{func.__name__} failed: {e.message}")
        except Exception as e:
            logger.error(f"Unexpected error in {func.__name__}: {e}", exc_info=True)
        return False
