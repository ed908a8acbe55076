import asyncio
import logging
import uuid
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, Optional

from engine.kinds import PendingAction

logger = logging.getLogger(__name__)


def new_action_id() -> str:
    return f"act_{uuid.uuid4().hex[:12]}"


class PendingActionStore:
    """One in-flight confirmable action per conversation.

    Callers hold `lock(conversation_id)` for the whole handling of an
    inbound event; the methods below never await, so a slot cannot change
    between a read and the write that follows it under the same lock.
    There is no expiry: a slot lives until it is consumed or overwritten.
    A conversation's lock only exists while some event holds or waits on it.
    """

    def __init__(self):
        self._slots: Dict[str, PendingAction] = {}
        self._locks: Dict[str, asyncio.Lock] = {}
        self._lock_users: Dict[str, int] = {}

    @asynccontextmanager
    async def lock(self, conversation_id: str) -> AsyncIterator[None]:
        lock = self._locks.get(conversation_id)
        if lock is None:
            lock = self._locks[conversation_id] = asyncio.Lock()
        self._lock_users[conversation_id] = self._lock_users.get(conversation_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[conversation_id] -= 1
            if not self._lock_users[conversation_id]:
                del self._lock_users[conversation_id]
                del self._locks[conversation_id]

    @property
    def lock_count(self) -> int:
        return len(self._locks)

    def get(self, conversation_id: str) -> Optional[PendingAction]:
        return self._slots.get(conversation_id)

    def put(self, conversation_id: str, action: PendingAction) -> PendingAction:
        previous = self._slots.get(conversation_id)
        if previous is not None:
            logger.debug(
                "Replacing pending %s (%s) for chat %s",
                previous.kind.value,
                previous.action_id,
                conversation_id,
            )
        self._slots[conversation_id] = action
        return action

    def clear(self, conversation_id: str) -> Optional[PendingAction]:
        return self._slots.pop(conversation_id, None)

    def take_if_current(self, conversation_id: str, action_id: Optional[str]) -> Optional[PendingAction]:
        current = self._slots.get(conversation_id)
        if current is None or not action_id or current.action_id != action_id:
            return None
        return self._slots.pop(conversation_id)

    def __len__(self) -> int:
        return len(self._slots)
