import logging
from typing import Any, Dict, List, Optional, Tuple

import httpx

from common.config import settings
from engine.kinds import Domain
from engine.options import match_option, merge_values, normalize_option_key
from engine.phrases import TASK_STATUS_ALIASES

logger = logging.getLogger(__name__)

TITLE = "title"
RICH_TEXT = "rich_text"
SELECT = "select"
MULTI_SELECT = "multi_select"
STATUS = "status"
DATE = "date"
NUMBER = "number"
URL = "url"

OPTION_KINDS = (SELECT, MULTI_SELECT, STATUS)
MAX_PAGE_SIZE = 100


class NotionAPIError(Exception):
    def __init__(self, status: Optional[int], code: Optional[str], message: str, request_id: Optional[str] = None):
        self.status = status
        self.code = code
        self.message = message
        self.request_id = request_id
        super().__init__(f"Notion API error {status} {code}: {message}")


class NotionClient:
    def __init__(
        self,
        token: Optional[str] = None,
        base_url: Optional[str] = None,
        version: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.token = token if token is not None else settings.NOTION_TOKEN
        self.base_url = (base_url or settings.NOTION_API_BASE).rstrip("/") + "/"
        self.version = version or settings.NOTION_VERSION
        self.timeout = timeout or settings.NOTION_TIMEOUT_SECONDS
        self._transport = transport

    def _get_headers(self) -> Dict[str, str]:
        if not self.token:
            raise RuntimeError("NOTION_TOKEN not configured")
        return {
            "Authorization": f"Bearer {self.token}",
            "Notion-Version": self.version,
            "Content-Type": "application/json",
        }

    async def request(self, method: str, path: str, json: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        async with httpx.AsyncClient(
            base_url=self.base_url,
            headers=self._get_headers(),
            timeout=self.timeout,
            transport=self._transport,
        ) as client:
            resp = await client.request(method, path, json=json)
        if resp.status_code >= 400:
            raise self._error_from(resp)
        return resp.json() if resp.content else {}

    @staticmethod
    def _error_from(resp: httpx.Response) -> NotionAPIError:
        try:
            body = resp.json()
        except ValueError:
            body = {}
        if not isinstance(body, dict):
            body = {}
        message = body.get("message") if isinstance(body.get("message"), str) else resp.text[:300]
        return NotionAPIError(
            resp.status_code,
            body.get("code"),
            message or f"HTTP {resp.status_code}",
            body.get("request_id") or resp.headers.get("x-request-id"),
        )


def _plain_text(parts: Any) -> str:
    if not isinstance(parts, list):
        return ""
    return "".join(str(p.get("plain_text") or (p.get("text") or {}).get("content") or "") for p in parts if isinstance(p, dict)).strip()


def _text_block(content: str) -> List[Dict[str, Any]]:
    return [{"type": "text", "text": {"content": content}}]


class NotionDatabaseStore:
    """Record store over one Notion database.

    `FIELDS` maps record field names to (Notion property name, property kind).
    Properties missing from the database schema are skipped on write.
    """

    FIELDS: Dict[str, Tuple[str, str]] = {}

    def __init__(self, client: NotionClient, database_id: Optional[str]):
        self._client = client
        self._db_id = database_id
        self._schema: Optional[Dict[str, Any]] = None

    @property
    def database_id(self) -> str:
        if not self._db_id:
            raise RuntimeError(f"{type(self).__name__} database id is not configured")
        return self._db_id

    # Property mapping

    def _title_property(self) -> str:
        return self.FIELDS["title"][0]

    def _from_property(self, kind: str, prop: Dict[str, Any]) -> Any:
        value = prop.get(kind)
        if kind in (TITLE, RICH_TEXT):
            return _plain_text(value)
        if kind in (SELECT, STATUS):
            return value.get("name") if isinstance(value, dict) else None
        if kind == MULTI_SELECT:
            return [o.get("name") for o in value or [] if isinstance(o, dict) and o.get("name")]
        if kind == DATE:
            return value.get("start") if isinstance(value, dict) else None
        return value

    def _to_property(self, kind: str, value: Any) -> Dict[str, Any]:
        if kind == TITLE:
            return {TITLE: _text_block(str(value or "").strip())}
        if kind == RICH_TEXT:
            text = str(value or "").strip()
            return {RICH_TEXT: _text_block(text) if text else []}
        if kind in (SELECT, STATUS):
            return {kind: {"name": value} if value else None}
        if kind == MULTI_SELECT:
            names = value if isinstance(value, list) else ([value] if value else [])
            return {MULTI_SELECT: [{"name": n} for n in names if n]}
        if kind == DATE:
            return {DATE: {"start": value} if value else None}
        if kind == URL:
            return {URL: value or None}
        return {kind: value}

    def to_record(self, page: Dict[str, Any]) -> Dict[str, Any]:
        props = page.get("properties") or {}
        record: Dict[str, Any] = {"id": page.get("id"), "url": page.get("url")}
        for field, (name, kind) in self.FIELDS.items():
            prop = props.get(name)
            record[field] = self._from_property(kind, prop) if isinstance(prop, dict) else None
        record["title"] = record.get("title") or ""
        record["active"] = not page.get("archived", False) and self._is_active(record)
        return record

    def _is_active(self, record: Dict[str, Any]) -> bool:
        return True

    async def _to_properties(self, values: Dict[str, Any]) -> Dict[str, Any]:
        schema = await self._ensure_schema()
        props: Dict[str, Any] = {}
        for field, value in values.items():
            mapped = self.FIELDS.get(field)
            if mapped is None:
                logger.debug("Ignoring unknown field %s for %s", field, type(self).__name__)
                continue
            name, kind = mapped
            if schema and name not in schema:
                continue
            props[name] = self._to_property(kind, value)
        return props

    # Schema

    async def get_database(self) -> Dict[str, Any]:
        return await self._client.request("GET", f"databases/{self.database_id}")

    async def _ensure_schema(self) -> Dict[str, Any]:
        if self._schema is None:
            db = await self.get_database()
            self._schema = db.get("properties") or {}
        return self._schema

    @staticmethod
    def _option_names(prop: Optional[Dict[str, Any]], kind: str) -> List[str]:
        options = ((prop or {}).get(kind) or {}).get("options") or []
        return [o["name"] for o in options if isinstance(o, dict) and o.get("name")]

    async def get_options(self) -> Dict[str, List[str]]:
        db = await self.get_database()
        self._schema = db.get("properties") or {}
        return {
            field: self._option_names(self._schema.get(name), kind)
            for field, (name, kind) in self.FIELDS.items()
            if kind in OPTION_KINDS
        }

    async def ensure_options(self, field: str, names: List[str]) -> List[str]:
        """Add missing select/multi-select options and return the names as stored."""
        name, kind = self.FIELDS[field]
        wanted = merge_values([], [str(n).strip() for n in names if str(n or "").strip()])
        if not wanted:
            return []
        if kind not in (SELECT, MULTI_SELECT):
            raise ValueError(f"Options of {field} ({kind}) cannot be created")

        db = await self.get_database()
        current = (((db.get("properties") or {}).get(name) or {}).get(kind) or {}).get("options") or []
        known = {normalize_option_key(o.get("name")): o.get("name") for o in current if isinstance(o, dict)}
        missing = [n for n in wanted if normalize_option_key(n) not in known]
        if not missing:
            return [known[normalize_option_key(n)] for n in wanted]

        options = [{"id": o["id"], "name": o["name"], "color": o.get("color") or "default"} for o in current if o.get("id")]
        options.extend({"name": n, "color": "default"} for n in missing)
        await self._client.request(
            "PATCH", f"databases/{self.database_id}", {"properties": {name: {kind: {"options": options}}}}
        )
        logger.info("Added %s options to %s: %s", field, type(self).__name__, missing)
        self._schema = None
        refreshed = await self.get_options()
        stored = {normalize_option_key(n): n for n in refreshed.get(field, [])}
        return [stored.get(normalize_option_key(n), n) for n in wanted]

    # Records

    def _filter_for(self, filters: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        clauses: List[Dict[str, Any]] = []
        query = filters.get("query")
        if isinstance(query, str) and query.strip():
            clauses.append({"property": self._title_property(), "title": {"contains": query.strip()}})
        for field, value in filters.items():
            mapped = self.FIELDS.get(field)
            if mapped is None or value in (None, "", []):
                continue
            name, kind = mapped
            if kind in (SELECT, STATUS):
                clauses.append({"property": name, kind: {"equals": value}})
            elif kind == MULTI_SELECT:
                values = value if isinstance(value, list) else [value]
                ors = [{"property": name, MULTI_SELECT: {"contains": v}} for v in values]
                clauses.append(ors[0] if len(ors) == 1 else {"or": ors})
        if not clauses:
            return None
        return clauses[0] if len(clauses) == 1 else {"and": clauses}

    async def list(self, filters: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        filters = dict(filters or {})
        limit = filters.pop("limit", None)
        payload: Dict[str, Any] = {
            "sorts": [{"timestamp": "last_edited_time", "direction": "descending"}],
            "page_size": min(max(1, int(limit or 20)), MAX_PAGE_SIZE),
        }
        notion_filter = self._filter_for(filters)
        if notion_filter:
            payload["filter"] = notion_filter
        resp = await self._client.request("POST", f"databases/{self.database_id}/query", payload)
        return [self.to_record(p) for p in resp.get("results") or [] if isinstance(p, dict)]

    async def find(self, query: str, limit: int = 10) -> List[Dict[str, Any]]:
        return await self.list({"query": query, "limit": limit})

    async def get(self, record_id: str) -> Dict[str, Any]:
        return self.to_record(await self._client.request("GET", f"pages/{record_id}"))

    async def create(self, fields: Dict[str, Any]) -> Dict[str, Any]:
        payload = {"parent": {"database_id": self.database_id}, "properties": await self._to_properties(fields)}
        return self.to_record(await self._client.request("POST", "pages", payload))

    async def update(self, record_id: str, patch: Dict[str, Any]) -> Dict[str, Any]:
        props = await self._to_properties(patch)
        if not props:
            return await self.get(record_id)
        return self.to_record(await self._client.request("PATCH", f"pages/{record_id}", {"properties": props}))

    async def archive(self, record_id: str) -> None:
        await self._client.request("PATCH", f"pages/{record_id}", {"archived": True})

    async def append_description(self, record_id: str, text: str) -> None:
        content = str(text or "").strip()
        if not content:
            return
        block = {"object": "block", "type": "paragraph", "paragraph": {"rich_text": _text_block(content)}}
        await self._client.request("PATCH", f"blocks/{record_id}/children", {"children": [block]})


class NotionTaskStore(NotionDatabaseStore):
    FIELDS = {
        "title": ("Name", TITLE),
        "tags": ("Tags", MULTI_SELECT),
        "priority": ("Priority", SELECT),
        "status": ("Status", STATUS),
        "due_date": ("Due Date", DATE),
    }
    DONE_STATUS = "Done"
    DEPRECATED_TAG = "Deprecated"

    def _is_active(self, record: Dict[str, Any]) -> bool:
        return self.DEPRECATED_TAG.lower() not in [t.lower() for t in record.get("tags") or []]

    async def mark_done(self, record_id: str) -> Dict[str, Any]:
        options = await self.get_options()
        status = match_option(self.DONE_STATUS, options.get("status", []), TASK_STATUS_ALIASES).value
        return await self.update(record_id, {"status": status or self.DONE_STATUS})

    async def move_to_deprecated(self, record_id: str) -> Dict[str, Any]:
        current = await self.get(record_id)
        tag = (await self.ensure_options("tags", [self.DEPRECATED_TAG]))[0]
        return await self.update(record_id, {"tags": merge_values(current.get("tags") or [], [tag])})


class NotionIdeaStore(NotionDatabaseStore):
    FIELDS = {
        "title": ("Idea", TITLE),
        "category": ("Category", MULTI_SELECT),
        "tags": ("Tags", MULTI_SELECT),
        "priority": ("Priority", SELECT),
        "status": ("Status", STATUS),
        "area": ("Area", SELECT),
        "project": ("Project", SELECT),
        "source": ("Source", RICH_TEXT),
    }


class NotionSocialStore(NotionDatabaseStore):
    FIELDS = {
        "title": ("Post name", TITLE),
        "platform": ("Platform", MULTI_SELECT),
        "post_date": ("Post date", DATE),
        "content_type": ("Content type", MULTI_SELECT),
        "status": ("Status", STATUS),
        "post_url": ("Post URL", URL),
    }


class NotionJournalStore(NotionDatabaseStore):
    FIELDS = {
        "title": ("Entry", TITLE),
        "date": ("Date", DATE),
        "type": ("Type", SELECT),
        "topics": ("Topics", MULTI_SELECT),
        "context": ("Context", MULTI_SELECT),
        "mood": ("Mood", NUMBER),
        "energy": ("Energy", NUMBER),
    }


def build_stores(client: Optional[NotionClient] = None) -> Dict[Domain, NotionDatabaseStore]:
    client = client or NotionClient()
    return {
        Domain.task: NotionTaskStore(client, settings.NOTION_TASKS_DB_ID),
        Domain.idea: NotionIdeaStore(client, settings.NOTION_IDEAS_DB_ID),
        Domain.social: NotionSocialStore(client, settings.NOTION_SOCIAL_DB_ID),
        Domain.journal: NotionJournalStore(client, settings.NOTION_JOURNAL_DB_ID),
    }
