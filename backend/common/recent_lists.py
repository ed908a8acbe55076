import json
import logging
from typing import Any, Dict, List

from engine.kinds import Domain, RecentItem

logger = logging.getLogger(__name__)

RECENT_LIST_MAX_ITEMS = 50


class RecentListStore:
    """The numbered records last shown to a conversation, one redis key per domain."""

    def __init__(self, redis_client, ttl_hours: int):
        self._redis = redis_client
        self._ttl_seconds = max(1, int(ttl_hours * 3600))

    @staticmethod
    def _key(conversation_id: str, domain: Domain) -> str:
        return f"recent:{domain.value}:{conversation_id}"

    async def get(self, conversation_id: str, domain: Domain) -> List[RecentItem]:
        raw = await self._redis.get(self._key(conversation_id, domain))
        if not raw:
            return []
        try:
            items = json.loads(raw)
        except ValueError:
            logger.warning("Discarding unreadable recent %s list for chat %s", domain.value, conversation_id)
            return []
        if not isinstance(items, list):
            return []
        return [RecentItem(**item) for item in items if isinstance(item, dict) and item.get("id")]

    async def remember(self, conversation_id: str, domain: Domain, records: List[Dict[str, Any]]) -> List[RecentItem]:
        shown = [record for record in records if record.get("id")][:RECENT_LIST_MAX_ITEMS]
        items = [
            RecentItem(index=idx, id=str(record["id"]), title=str(record.get("title") or ""))
            for idx, record in enumerate(shown, start=1)
        ]
        await self._redis.set(
            self._key(conversation_id, domain),
            json.dumps([item.model_dump() for item in items], ensure_ascii=False),
            ex=self._ttl_seconds,
        )
        return items
