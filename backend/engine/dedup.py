import logging
from typing import Any, Dict, List, Optional

from engine.fuzzer import normalize_title_key
from engine.kinds import RecordStore

logger = logging.getLogger(__name__)

DEDUP_SEARCH_LIMIT = 10


def _same_day(a: Any, b: Any) -> bool:
    return str(a or "")[:10] == str(b or "")[:10]


def _search_terms(title: str, key: str) -> List[str]:
    """Title searches are substring matches, so punctuation in either title can hide a twin."""
    terms: List[str] = []
    longest = max(key.split(" "), key=len)
    for term in (title.strip(), key, longest):
        if term and term not in terms:
            terms.append(term)
    return terms


async def find_duplicate(
    store: RecordStore,
    title: str,
    match_date: Optional[str] = None,
) -> Optional[Dict[str, Any]]:
    """Return an active record whose normalized title equals `title`, if any."""
    key = normalize_title_key(title)
    if not key:
        return None
    seen = set()
    for term in _search_terms(title, key):
        for record in await store.find(term, DEDUP_SEARCH_LIMIT) or []:
            record_id = record.get("id")
            if record_id in seen:
                continue
            seen.add(record_id)
            if record.get("active", True) is False:
                continue
            if normalize_title_key(str(record.get("title") or "")) != key:
                continue
            if match_date is not None and not _same_day(record.get("date"), match_date):
                continue
            logger.info("Duplicate candidate found: %s", record_id)
            return record
    return None
