"""Per-domain normalization of planner arguments into store fields."""
import logging
import re
from datetime import date, timedelta
from typing import Any, Dict, List, Optional, Tuple

from engine.autofill import clamp_rating
from engine.errors import OptionUnmatched
from engine.kinds import Domain, RecordStore
from engine.options import UNSET, FieldPolicy, match_many, resolve_field
from engine.phrases import (
    PRIORITY_ALIASES,
    SOCIAL_PLATFORM_ALIASES,
    SOCIAL_STATUS_ALIASES,
    TASK_STATUS_ALIASES,
    mentions_project,
    mentions_tags,
    wants_replace,
)

logger = logging.getLogger(__name__)

DEPRECATED_TAG = "Deprecated"
DEFAULT_TASK_STATUS = "Idle"
DEFAULT_PLATFORM_KEYS = ("tg", "telegram")

_ISO_DATE_RE = re.compile(r"^(\d{4}-\d{2}-\d{2})(T[0-9:.+\-Z]+)?$")
_RELATIVE_DAYS = {
    "today": 0,
    "сегодня": 0,
    "tomorrow": 1,
    "завтра": 1,
    "yesterday": -1,
    "вчера": -1,
    "day after tomorrow": 2,
    "послезавтра": 2,
}


class PlatformChoice(OptionUnmatched):
    """The social platform could not be matched; the user has to pick one."""

    def __init__(self, options: List[str], unknown: Optional[str]):
        self.options = options
        self.unknown = unknown
        super().__init__("platform", unknown)


class OptionRequests:
    """Option names to create in the store once the action is confirmed."""

    def __init__(self):
        self.by_field: Dict[str, List[str]] = {}

    def deferred(self, field: str):
        async def _record(names: List[str]) -> List[str]:
            wanted = self.by_field.setdefault(field, [])
            for name in names:
                if name not in wanted:
                    wanted.append(name)
            return list(names)

        return _record

    def as_payload(self) -> Dict[str, List[str]]:
        return {k: v for k, v in self.by_field.items() if v}


def normalize_date(value: Any, today: date) -> Any:
    if value is None:
        return None
    text = str(value).strip()
    if not text:
        return None
    lowered = text.lower()
    if lowered in _RELATIVE_DAYS:
        return (today + timedelta(days=_RELATIVE_DAYS[lowered])).isoformat()
    match = _ISO_DATE_RE.match(text)
    if match:
        try:
            date.fromisoformat(match.group(1))
        except ValueError:
            logger.info("Dropping invalid date %r", text)
            return UNSET
        return text if match.group(2) else match.group(1)
    logger.info("Dropping unparseable date %r", text)
    return UNSET


def _patch_source(arguments: Dict[str, Any]) -> Dict[str, Any]:
    patch = arguments.get("patch")
    if isinstance(patch, dict):
        return dict(patch)
    reserved = {"page_id", "pageId", "id", "index", "task_index", "taskIndex", "query", "query_text", "queryText",
                "description", "autofill", "title"}
    source = {k: v for k, v in arguments.items() if k not in reserved}
    if "new_title" in arguments:
        source["title"] = arguments["new_title"]
    return source


def _put(target: Dict[str, Any], key: str, value: Any) -> None:
    if value is not UNSET:
        target[key] = value


def _title_value(source: Dict[str, Any]) -> Any:
    if "title" not in source:
        return UNSET
    title = re.sub(r"\s+", " ", str(source.get("title") or "")).strip()
    if not title:
        return UNSET
    return title


def split_long_title(title: str, max_len: int) -> Tuple[str, Optional[str]]:
    """Shorten a title to `max_len` at a word boundary.

    Returns the short title and the full text to keep in the description,
    or None when the title already fits.
    """
    if not max_len or len(title) <= max_len:
        return title, None
    head = title[: max_len - 1]
    if " " in head[max_len // 2:]:
        head = head[: head.rfind(" ")]
    return head.rstrip(" ,.;:-") + "…", title


async def _task_values(source: Dict[str, Any], options: Dict[str, List[str]], today: date) -> Dict[str, Any]:
    values: Dict[str, Any] = {}
    _put(values, "title", _title_value(source))
    if "tag" in source and "tags" not in source:
        source = dict(source, tags=source["tag"])
    tags = await resolve_field(source, "tags", options.get("tags", []), multi=True)
    if isinstance(tags, list):
        tags = [t for t in tags if t.lower() != DEPRECATED_TAG.lower()]
    _put(values, "tags", tags)
    _put(values, "priority", await resolve_field(source, "priority", options.get("priority", []), aliases=PRIORITY_ALIASES))
    _put(values, "status", await resolve_field(source, "status", options.get("status", []), aliases=TASK_STATUS_ALIASES))
    if "due_date" in source:
        _put(values, "due_date", normalize_date(source["due_date"], today))
    return values


async def task_create_fields(arguments: Dict[str, Any], store: RecordStore, today: date) -> Dict[str, Any]:
    options = await store.get_options()
    fields = await _task_values(dict(arguments), options, today)
    if "status" not in fields or fields["status"] is None:
        statuses = options.get("status", [])
        if DEFAULT_TASK_STATUS in statuses or not statuses:
            fields["status"] = DEFAULT_TASK_STATUS
    return fields


async def task_patch(arguments: Dict[str, Any], store: RecordStore, today: date) -> Dict[str, Any]:
    options = await store.get_options()
    return await _task_values(_patch_source(arguments), options, today)


async def _idea_values(source: Dict[str, Any], options: Dict[str, List[str]], raw_text: str, requests: OptionRequests) -> Dict[str, Any]:
    values: Dict[str, Any] = {}
    _put(values, "title", _title_value(source))
    tag_policy = FieldPolicy.create if mentions_tags(raw_text) else FieldPolicy.drop
    project_policy = FieldPolicy.create if mentions_project(raw_text) else FieldPolicy.drop
    _put(values, "category", await resolve_field(source, "category", options.get("category", []), multi=True))
    _put(
        values,
        "tags",
        await resolve_field(
            source, "tags", options.get("tags", []), multi=True, policy=tag_policy,
            create_options=requests.deferred("tags"),
        ),
    )
    _put(values, "priority", await resolve_field(source, "priority", options.get("priority", []), aliases=PRIORITY_ALIASES))
    _put(values, "status", await resolve_field(source, "status", options.get("status", [])))
    _put(values, "area", await resolve_field(source, "area", options.get("area", []), policy=FieldPolicy.free_text))
    _put(
        values,
        "project",
        await resolve_field(
            source, "project", options.get("project", []), policy=project_policy,
            create_options=requests.deferred("project"),
        ),
    )
    if "source" in source:
        _put(values, "source", (str(source["source"]).strip() or None) if source["source"] is not None else None)
    return values


async def idea_create_fields(arguments: Dict[str, Any], raw_text: str, store: RecordStore, requests: OptionRequests) -> Dict[str, Any]:
    options = await store.get_options()
    return await _idea_values(dict(arguments), options, raw_text, requests)


async def idea_patch(arguments: Dict[str, Any], raw_text: str, store: RecordStore, requests: OptionRequests) -> Dict[str, Any]:
    options = await store.get_options()
    return await _idea_values(_patch_source(arguments), options, raw_text, requests)


def idea_merge_flags(patch: Dict[str, Any], raw_text: str) -> Dict[str, bool]:
    if "tags" in patch and patch["tags"] and not wants_replace(raw_text):
        return {"tags": True}
    return {}


def platform_values(source: Dict[str, Any], platforms: List[str]) -> Any:
    if "platform" not in source and "platforms" in source:
        source = dict(source, platform=source["platforms"])
    if "platform" not in source:
        return UNSET
    if source["platform"] is None:
        return None
    result = match_many(source["platform"], platforms, SOCIAL_PLATFORM_ALIASES)
    if result.unknown and platforms:
        raise PlatformChoice(platforms, result.unknown[0])
    if not result.values:
        return UNSET
    return result.values


_LIST_FILTER_ALIASES = {
    Domain.task: {"status": TASK_STATUS_ALIASES, "priority": PRIORITY_ALIASES},
    Domain.idea: {"priority": PRIORITY_ALIASES},
    Domain.social: {"status": SOCIAL_STATUS_ALIASES},
}
_MULTI_LIST_FILTERS = ("tags", "category")


def list_filter_values(domain: Domain, filters: Dict[str, Any], options: Dict[str, List[str]]) -> Dict[str, Any]:
    """Map select-type list filters onto the database's option names.

    Values with no matching option are dropped; fields whose options are
    unknown pass through as given.
    """
    aliases = _LIST_FILTER_ALIASES.get(domain, {})
    normalized = dict(filters)
    for key in ("status", "priority", "type") + _MULTI_LIST_FILTERS:
        if key not in normalized:
            continue
        legal = options.get(key) or []
        if not legal:
            continue
        result = match_many(normalized[key], legal, aliases.get(key))
        if result.unknown:
            logger.info("Dropping unknown %s filter values for %s: %s", key, domain.value, result.unknown)
        if not result.values:
            normalized.pop(key)
        elif key in _MULTI_LIST_FILTERS:
            normalized[key] = result.values
        else:
            normalized[key] = result.values[0]
    return normalized


def default_platform(platforms: List[str]) -> Optional[str]:
    for wanted in DEFAULT_PLATFORM_KEYS:
        result = match_many([wanted], platforms, SOCIAL_PLATFORM_ALIASES)
        if result.values:
            return result.values[0]
    return platforms[0] if platforms else None


async def _social_values(source: Dict[str, Any], options: Dict[str, List[str]], today: date) -> Dict[str, Any]:
    values: Dict[str, Any] = {}
    _put(values, "title", _title_value(source))
    _put(values, "platform", platform_values(source, options.get("platform", [])))
    _put(values, "status", await resolve_field(source, "status", options.get("status", []), aliases=SOCIAL_STATUS_ALIASES))
    _put(values, "content_type", await resolve_field(source, "content_type", options.get("content_type", []), multi=True))
    if "post_date" in source:
        _put(values, "post_date", normalize_date(source["post_date"], today))
    if "post_url" in source:
        url = source["post_url"]
        values["post_url"] = (str(url).strip() or None) if url is not None else None
    return values


async def social_create_fields(arguments: Dict[str, Any], store: RecordStore, today: date) -> Dict[str, Any]:
    options = await store.get_options()
    fields = await _social_values(dict(arguments), options, today)
    if not fields.get("platform"):
        fallback = default_platform(options.get("platform", []))
        if fallback:
            fields["platform"] = [fallback]
    return fields


async def social_patch(arguments: Dict[str, Any], store: RecordStore, today: date) -> Dict[str, Any]:
    options = await store.get_options()
    return await _social_values(_patch_source(arguments), options, today)


async def _journal_values(source: Dict[str, Any], options: Dict[str, List[str]], today: date, requests: OptionRequests) -> Dict[str, Any]:
    values: Dict[str, Any] = {}
    _put(values, "title", _title_value(source))
    if "date" in source:
        _put(values, "date", normalize_date(source["date"], today))
    _put(
        values,
        "type",
        await resolve_field(source, "type", options.get("type", []), policy=FieldPolicy.create,
                            create_options=requests.deferred("type")),
    )
    for key in ("topics", "context"):
        _put(
            values,
            key,
            await resolve_field(source, key, options.get(key, []), multi=True, policy=FieldPolicy.create,
                                create_options=requests.deferred(key)),
        )
    for key in ("mood", "energy"):
        if key in source:
            values[key] = clamp_rating(source[key])
    return values


async def journal_create_fields(arguments: Dict[str, Any], store: RecordStore, today: date, requests: OptionRequests) -> Dict[str, Any]:
    options = await store.get_options()
    fields = await _journal_values(dict(arguments), options, today, requests)
    if not fields.get("date"):
        fields["date"] = today.isoformat()
    return fields


async def journal_patch(arguments: Dict[str, Any], store: RecordStore, today: date, requests: OptionRequests) -> Dict[str, Any]:
    options = await store.get_options()
    return await _journal_values(_patch_source(arguments), options, today, requests)


async def prepare_fields(domain: Domain, arguments: Dict[str, Any], raw_text: str, store: RecordStore,
                         today: date, requests: OptionRequests, patch: bool) -> Dict[str, Any]:
    if domain == Domain.task:
        builder = task_patch if patch else task_create_fields
        return await builder(arguments, store, today)
    if domain == Domain.idea:
        builder = idea_patch if patch else idea_create_fields
        return await builder(arguments, raw_text, store, requests)
    if domain == Domain.social:
        builder = social_patch if patch else social_create_fields
        return await builder(arguments, store, today)
    builder = journal_patch if patch else journal_create_fields
    return await builder(arguments, store, today, requests)
