import logging
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from engine.fuzzer import fuzzy_score, query_variants, split_multi_target
from engine.kinds import MAX_CANDIDATES, Candidate, Domain, RecentListSource, RecordStore, ResolvedTarget
from engine.phrases import infer_index

logger = logging.getLogger(__name__)

FUZZY_MIN_TOP_SCORE = 0.22
FUZZY_MIN_KEEP_SCORE = 0.28
FUZZY_KEEP_WINDOW = 0.12
FUZZY_SCAN_LIMIT = 100

QUERY_KEYS = ("query", "query_text", "queryText", "title")
INDEX_KEYS = ("index", "task_index", "taskIndex")
ID_KEYS = ("page_id", "pageId", "id")


class Resolution(BaseModel):
    status: str = "empty"
    target: Optional[ResolvedTarget] = None
    candidates: List[Candidate] = Field(default_factory=list, max_length=MAX_CANDIDATES)
    follow_up_queue: List[str] = Field(default_factory=list)
    query: Optional[str] = None

    @property
    def is_single(self) -> bool:
        return self.status == "single"

    @property
    def is_ambiguous(self) -> bool:
        return self.status == "candidates"

    @property
    def is_empty(self) -> bool:
        return self.status == "empty"


def _first_str(arguments: Dict[str, Any], keys) -> Optional[str]:
    for key in keys:
        value = arguments.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return None


def _first_index(arguments: Dict[str, Any]) -> Optional[int]:
    for key in INDEX_KEYS:
        value = arguments.get(key)
        if isinstance(value, bool):
            continue
        if isinstance(value, int) and value >= 1:
            return value
        if isinstance(value, str) and value.strip().isdigit() and int(value) >= 1:
            return int(value)
    return None


def _is_active(record: Dict[str, Any]) -> bool:
    return bool(record.get("id")) and record.get("active", True) is not False


class EntityResolver:
    def __init__(self, stores: Dict[Domain, RecordStore], recent_lists: RecentListSource, search_limit: int = MAX_CANDIDATES):
        self._stores = stores
        self._recent_lists = recent_lists
        self._search_limit = max(1, search_limit)

    async def resolve(
        self,
        conversation_id: str,
        domain: Domain,
        arguments: Dict[str, Any],
        raw_text: str = "",
        batch: bool = False,
        query_keys=QUERY_KEYS,
    ) -> Resolution:
        recent = await self._recent_lists.get(conversation_id, domain)

        explicit_id = _first_str(arguments, ID_KEYS)
        if explicit_id:
            title = next((item.title for item in recent if item.id == explicit_id), None)
            if title is None and "title" in query_keys:
                title = _first_str(arguments, ("title",))
            return self._single(domain, explicit_id, title or "")

        query = _first_str(arguments, query_keys)
        index = _first_index(arguments)
        # Ordinals in free text only count when nothing names the record.
        if index is None and recent and not query:
            index = infer_index(raw_text)
        if index is not None:
            hit = next((item for item in recent if item.index == index), None)
            if hit is not None:
                return self._single(domain, hit.id, hit.title)
            logger.info("Index %s not in recent %s list for chat %s", index, domain.value, conversation_id)

        if not query:
            return await self._resolve_unspecified(domain)

        queue: List[str] = []
        if batch:
            segments = split_multi_target(query)
            if len(segments) > 1:
                query, queue = segments[0], segments[1:]
        return await self.resolve_queue(domain, [query] + queue)

    async def resolve_queue(self, domain: Domain, queue: List[str]) -> Resolution:
        """Resolve the first segment that matches anything; later segments stay queued."""
        remaining = [q for q in queue if isinstance(q, str) and q.strip()]
        last_query: Optional[str] = None
        while remaining:
            query = remaining.pop(0)
            last_query = query
            records = await self.search(domain, query)
            if records:
                resolution = self._from_records(domain, records)
                resolution.follow_up_queue = remaining
                resolution.query = query
                return resolution
            if remaining:
                logger.info("No %s matched %r, trying next queued reference", domain.value, query)
        return Resolution(status="empty", query=last_query)

    async def search(self, domain: Domain, query: str) -> List[Dict[str, Any]]:
        store = self._stores[domain]
        merged: Dict[str, Dict[str, Any]] = {}
        exact_single: Optional[Dict[str, Any]] = None
        for variant in query_variants(query):
            found = [r for r in (await store.find(variant, self._search_limit) or []) if _is_active(r)]
            if len(found) == 1 and exact_single is None:
                exact_single = found[0]
            for record in found:
                merged.setdefault(str(record["id"]), record)
            if len(merged) >= 2:
                break
        if len(merged) >= 2 and exact_single is not None:
            return [exact_single]
        if merged:
            return list(merged.values())[:MAX_CANDIDATES]
        return await self._local_fuzzy(domain, query)

    async def _local_fuzzy(self, domain: Domain, query: str) -> List[Dict[str, Any]]:
        store = self._stores[domain]
        records = [r for r in (await store.list({"limit": FUZZY_SCAN_LIMIT}) or []) if _is_active(r)]
        scored = sorted(
            ((fuzzy_score(query, str(r.get("title") or "")), r) for r in records),
            key=lambda item: item[0],
            reverse=True,
        )
        if not scored or scored[0][0] < FUZZY_MIN_TOP_SCORE:
            return []
        threshold = max(FUZZY_MIN_KEEP_SCORE, scored[0][0] - FUZZY_KEEP_WINDOW)
        return [r for score, r in scored if score >= threshold][:MAX_CANDIDATES]

    async def _resolve_unspecified(self, domain: Domain) -> Resolution:
        if domain not in (Domain.journal, Domain.idea):
            return Resolution(status="empty")
        records = [r for r in (await self._stores[domain].list({"limit": MAX_CANDIDATES}) or []) if _is_active(r)]
        if not records:
            return Resolution(status="empty")
        if domain == Domain.journal:
            latest = records[0]
            return self._single(domain, str(latest["id"]), str(latest.get("title") or ""))
        return self._from_records(domain, records, force_pick=True)

    def _from_records(self, domain: Domain, records: List[Dict[str, Any]], force_pick: bool = False) -> Resolution:
        if len(records) == 1 and not force_pick:
            record = records[0]
            return self._single(domain, str(record["id"]), str(record.get("title") or ""))
        candidates = [
            Candidate(index=i, id=str(r["id"]), title=str(r.get("title") or ""))
            for i, r in enumerate(records[:MAX_CANDIDATES], start=1)
        ]
        return Resolution(status="candidates", candidates=candidates)

    @staticmethod
    def _single(domain: Domain, record_id: str, title: str) -> Resolution:
        return Resolution(status="single", target=ResolvedTarget(id=record_id, title=title, domain=domain))
