"""Action engine entry points.

`execute_tool_plan` turns a planned tool call into a list, a picker or a
confirmation prompt. `handle_confirmation_event` consumes callback tokens
and free-text replies for the conversation's pending slot. Both run under
the conversation's lock; everything below them assumes it is held.
"""
import logging
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from engine import messages
from engine.dedup import find_duplicate
from engine.errors import StaleConfirmation
from engine.executor import ActionExecutor
from engine.fields import (
    OptionRequests,
    PlatformChoice,
    idea_merge_flags,
    list_filter_values,
    platform_values,
    prepare_fields,
    split_long_title,
)
from engine.gateway import ConfirmationGateway, ReplyClassifier, parse_event
from engine.kinds import (
    ACTION_DOMAIN,
    BATCH_KINDS,
    MAX_CANDIDATES,
    PLATFORM_PICK_KINDS,
    TOOL_DOMAIN,
    ActionKind,
    Domain,
    Intent,
    PendingAction,
    Presenter,
    RecentListSource,
    RecordStore,
    ToolKind,
)
from engine.pending import PendingActionStore
from engine.phrases import ReplyClass, infer_requested_action, parse_bare_number, wants_overwrite_all
from engine.resolver import QUERY_KEYS, EntityResolver

logger = logging.getLogger(__name__)

DEFAULT_LIST_LIMIT = 20
DEFAULT_TITLE_MAX_LEN = 120

LIST_TOOLS = frozenset(
    {ToolKind.list_tasks, ToolKind.list_ideas, ToolKind.list_social_posts, ToolKind.list_journal_entries}
)
FIND_TOOLS = frozenset(
    {ToolKind.find_tasks, ToolKind.find_ideas, ToolKind.find_social_posts, ToolKind.find_journal_entries}
)
CREATE_TOOLS = frozenset(
    {ToolKind.create_task, ToolKind.create_idea, ToolKind.create_social_post, ToolKind.create_journal_entry}
)
UPDATE_TOOLS = frozenset(
    {ToolKind.update_task, ToolKind.update_idea, ToolKind.update_social_post, ToolKind.update_journal_entry}
)
LIST_FILTER_KEYS = ("status", "tags", "priority", "category", "platform", "type", "include_done", "limit")


class EventOutcome(str, Enum):
    handled = "handled"
    reinterpret = "reinterpret"
    ignored = "ignored"


def _first_query(arguments: Dict[str, Any]) -> Optional[str]:
    for key in QUERY_KEYS:
        value = arguments.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return None


def _update_arguments(arguments: Dict[str, Any]) -> Dict[str, Any]:
    """With an explicit query present, a plain `title` argument is the new title."""
    args = dict(arguments)
    has_query = any(isinstance(args.get(k), str) and args[k].strip() for k in QUERY_KEYS if k != "title")
    if has_query and "title" in args and "new_title" not in args and not isinstance(args.get("patch"), dict):
        args["new_title"] = args.pop("title")
    return args


def _description(arguments: Dict[str, Any], title_overflow: Optional[str] = None) -> Optional[str]:
    value = arguments.get("description")
    parts = [title_overflow, value.strip() if isinstance(value, str) else None]
    return "\n\n".join(p for p in parts if p) or None


class ActionEngine:
    def __init__(
        self,
        stores: Dict[Domain, RecordStore],
        presenter: Presenter,
        recent_lists: RecentListSource,
        classifier: Optional[ReplyClassifier] = None,
        pending: Optional[PendingActionStore] = None,
        debug: bool = False,
        timezone_name: str = "UTC",
        search_limit: int = MAX_CANDIDATES,
        list_limit: int = DEFAULT_LIST_LIMIT,
        title_max_len: int = DEFAULT_TITLE_MAX_LEN,
    ):
        self._stores = stores
        self._presenter = presenter
        self._recent_lists = recent_lists
        self._timezone_name = timezone_name
        self._list_limit = max(1, list_limit)
        self._title_max_len = title_max_len
        self.pending = pending or PendingActionStore()
        self.resolver = EntityResolver(stores, recent_lists, search_limit)
        self.gateway = ConfirmationGateway(self.pending, presenter, classifier)
        self.executor = ActionExecutor(stores, debug)

    def _today(self) -> date:
        try:
            tz = ZoneInfo((self._timezone_name or "").strip() or "UTC")
        except ZoneInfoNotFoundError:
            tz = timezone.utc
        return datetime.now(tz).date()

    def _shorten_task_title(self, domain: Domain, fields: Dict[str, Any]) -> Optional[str]:
        """Cut an over-long task title in place and return the full text for the description."""
        if domain != Domain.task or not fields.get("title"):
            return None
        fields["title"], overflow = split_long_title(fields["title"], self._title_max_len)
        return overflow

    # Entry points

    def has_pending(self, conversation_id: str) -> bool:
        return self.pending.get(conversation_id) is not None

    def pending_snapshot(self, conversation_id: str) -> Optional[Dict[str, Any]]:
        action = self.pending.get(conversation_id)
        if action is None:
            return None
        snapshot = action.model_dump(mode="json")
        snapshot["state"] = self.gateway.state(conversation_id).value
        return snapshot

    async def drop_pending(self, conversation_id: str) -> bool:
        async with self.pending.lock(conversation_id):
            return self.pending.clear(conversation_id) is not None

    async def execute_tool_plan(self, conversation_id: str, intent: Intent) -> None:
        async with self.pending.lock(conversation_id):
            await self._plan(conversation_id, intent)

    async def handle_confirmation_event(self, conversation_id: str, event: str) -> EventOutcome:
        async with self.pending.lock(conversation_id):
            try:
                return await self._on_event(conversation_id, event)
            except StaleConfirmation as exc:
                await self.gateway.report_stale(conversation_id, exc)
                return EventOutcome.handled

    # Tool plans

    async def _plan(self, conversation_id: str, intent: Intent) -> None:
        tool = intent.tool_kind
        domain = TOOL_DOMAIN[tool]
        arguments = dict(intent.arguments or {})
        text = intent.raw_user_text or ""
        logger.info("Tool plan %s for chat %s", tool.value, conversation_id)

        if tool in LIST_TOOLS:
            await self._list(conversation_id, domain, arguments)
        elif tool in FIND_TOOLS:
            await self._find(conversation_id, domain, arguments, text)
        elif tool in CREATE_TOOLS:
            await self._create(conversation_id, ActionKind(tool.value), arguments, text)
        elif tool in UPDATE_TOOLS:
            await self._update(conversation_id, ActionKind(tool.value), _update_arguments(arguments), text)
        else:
            await self._target_action(conversation_id, ActionKind(tool.value), arguments, text)

    async def _show_records(self, conversation_id: str, domain: Domain, records: List[Dict[str, Any]]) -> None:
        shown = [r for r in records if r.get("id")][: self._list_limit]
        await self._recent_lists.remember(conversation_id, domain, shown)
        await self._presenter.send_message(conversation_id, messages.format_record_list(domain, shown))

    async def _list(self, conversation_id: str, domain: Domain, arguments: Dict[str, Any]) -> None:
        filters = {k: arguments[k] for k in LIST_FILTER_KEYS if arguments.get(k) is not None}
        limit = filters.get("limit")
        filters["limit"] = min(limit, self._list_limit) if isinstance(limit, int) and limit > 0 else self._list_limit
        store = self._stores[domain]
        options = await store.get_options()
        filters = list_filter_values(domain, filters, options)
        if domain == Domain.social and filters.get("platform"):
            try:
                platforms = platform_values({"platform": filters["platform"]}, options.get("platform", []))
            except PlatformChoice as choice:
                await self.gateway.request_platform_pick(
                    conversation_id, ActionKind.pick_platform_list, {"filters": filters}, choice.options, choice.unknown
                )
                return
            if platforms:
                filters["platform"] = platforms
            else:
                filters.pop("platform")
        await self._list_with_filters(conversation_id, domain, filters)

    async def _list_with_filters(self, conversation_id: str, domain: Domain, filters: Dict[str, Any]) -> None:
        records = await self._stores[domain].list(filters) or []
        await self._show_records(conversation_id, domain, records)

    async def _find(self, conversation_id: str, domain: Domain, arguments: Dict[str, Any], text: str) -> None:
        if domain == Domain.task:
            requested = infer_requested_action(text)
            if requested is not None:
                logger.info("Routing task search to %s for chat %s", requested.value, conversation_id)
                await self._target_action(conversation_id, requested, arguments, text)
                return
        query = _first_query(arguments)
        if not query:
            await self._list(conversation_id, domain, arguments)
            return
        records = await self.resolver.search(domain, query)
        if not records:
            await self._presenter.send_message(conversation_id, messages.not_found_text(domain, query))
            return
        await self._show_records(conversation_id, domain, records)

    async def _create(self, conversation_id: str, kind: ActionKind, arguments: Dict[str, Any], text: str) -> None:
        domain = ACTION_DOMAIN[kind]
        store = self._stores[domain]
        requests = OptionRequests()
        try:
            fields = await prepare_fields(
                domain, arguments, text, store, self._today(), requests, patch=False
            )
        except PlatformChoice as choice:
            payload = {"target_kind": kind.value, "arguments": arguments, "raw_text": text}
            await self.gateway.request_platform_pick(
                conversation_id, ActionKind.pick_platform_create, payload, choice.options, choice.unknown
            )
            return

        title_overflow = self._shorten_task_title(domain, fields)
        title = fields.get("title")
        if not title:
            await self._presenter.send_message(conversation_id, messages.missing_title_text(domain))
            return

        payload: Dict[str, Any] = {"fields": fields, "title": title}
        description = _description(arguments, title_overflow)
        if description:
            payload["description"] = description
        option_requests = requests.as_payload()
        if option_requests:
            payload["ensure_options"] = option_requests

        match_date = fields.get("date") if domain == Domain.journal else None
        duplicate = await find_duplicate(store, title, match_date)
        prompt = None
        if duplicate is not None:
            logger.info("Create %s blocked by existing record %s", kind.value, duplicate.get("id"))
            prompt = messages.duplicate_prompt(str(duplicate.get("title") or title))
        await self.gateway.request_confirmation(conversation_id, kind, payload, prompt=prompt)

    async def _update(
        self,
        conversation_id: str,
        kind: ActionKind,
        arguments: Dict[str, Any],
        text: str,
    ) -> None:
        domain = ACTION_DOMAIN[kind]
        store = self._stores[domain]
        requests = OptionRequests()
        try:
            patch = await prepare_fields(
                domain, arguments, text, store, self._today(), requests, patch=True
            )
        except PlatformChoice as choice:
            payload = {"target_kind": kind.value, "arguments": arguments, "raw_text": text}
            await self.gateway.request_platform_pick(
                conversation_id, ActionKind.pick_platform_update, payload, choice.options, choice.unknown
            )
            return

        title_overflow = self._shorten_task_title(domain, patch)
        payload: Dict[str, Any] = {"patch": patch}
        description = _description(arguments, title_overflow)
        if description:
            payload["description"] = description
        if domain == Domain.idea:
            merge = idea_merge_flags(patch, text)
            if merge:
                payload["merge"] = merge
        if domain == Domain.journal and (arguments.get("autofill") or (not patch and not description)):
            payload.update(autofill=True, overwrite=wants_overwrite_all(text), source_text=text)
        option_requests = requests.as_payload()
        if option_requests:
            payload["ensure_options"] = option_requests

        if not patch and not description and not payload.get("autofill"):
            await self._presenter.send_message(conversation_id, messages.NOTHING_TO_CHANGE_TEXT)
            return

        resolution = await self.resolver.resolve(conversation_id, domain, arguments, text)
        await self.gateway.present_resolution(conversation_id, kind, payload, resolution)

    async def _target_action(self, conversation_id: str, kind: ActionKind, arguments: Dict[str, Any], text: str) -> None:
        domain = ACTION_DOMAIN[kind]
        payload: Dict[str, Any] = {}
        description = _description(arguments)
        if kind == ActionKind.append_description:
            if not description:
                await self._presenter.send_message(conversation_id, messages.MISSING_DESCRIPTION_TEXT)
                return
            payload["description"] = description
        resolution = await self.resolver.resolve(
            conversation_id, domain, arguments, text, batch=kind in BATCH_KINDS
        )
        await self.gateway.present_resolution(conversation_id, kind, payload, resolution)

    # Confirmation events

    async def _on_event(self, conversation_id: str, event: str) -> EventOutcome:
        parsed = parse_event(event)
        if parsed.verb == "pick":
            await self.gateway.on_pick(conversation_id, parsed.index)
            return EventOutcome.handled
        if parsed.verb == "pick_cancel":
            await self.gateway.on_pick_cancel(conversation_id)
            return EventOutcome.handled
        if parsed.verb == "confirm":
            await self._confirm(conversation_id, parsed.action_id)
            return EventOutcome.handled
        if parsed.verb == "cancel":
            await self.gateway.on_cancel(conversation_id, parsed.action_id)
            return EventOutcome.handled
        if parsed.verb == "plat":
            action, platform = self.gateway.take_platform_choice(conversation_id, parsed.action_id, parsed.index)
            await self._finish_platform_pick(conversation_id, action, platform)
            return EventOutcome.handled
        return await self._on_text(conversation_id, parsed.text)

    async def _on_text(self, conversation_id: str, text: str) -> EventOutcome:
        action = self.pending.get(conversation_id)
        if action is None or not text:
            return EventOutcome.ignored

        if action.awaiting_pick:
            number = parse_bare_number(text)
            if number is not None:
                await self.gateway.on_pick(conversation_id, number)
                return EventOutcome.handled

        verdict = await self.gateway.classify_text(conversation_id, text)
        logger.info("Free-text reply classified as %s for chat %s", verdict.value, conversation_id)
        if verdict == ReplyClass.cancel:
            if action.awaiting_pick:
                await self.gateway.on_pick_cancel(conversation_id)
            else:
                await self.gateway.on_cancel(conversation_id, action.action_id)
            return EventOutcome.handled
        if verdict == ReplyClass.confirm and action.awaiting_confirm and action.kind not in PLATFORM_PICK_KINDS:
            await self._confirm(conversation_id, action.action_id)
            return EventOutcome.handled
        return EventOutcome.reinterpret

    async def _confirm(self, conversation_id: str, action_id: Optional[str]) -> None:
        current = self.pending.get(conversation_id)
        if current is not None and current.kind in PLATFORM_PICK_KINDS:
            raise StaleConfirmation(action_id)
        action = self.gateway.take_confirmed(conversation_id, action_id)
        result = await self.executor.execute(action)
        await self._presenter.send_message(conversation_id, result.message)
        if result.ok and result.follow_up_queue:
            await self._advance_queue(conversation_id, action, result.follow_up_queue)

    async def _advance_queue(self, conversation_id: str, action: PendingAction, queue: List[str]) -> None:
        """Resolve the next queued reference and prompt for it; one step per confirmed action."""
        template = {k: v for k, v in action.payload.items() if k not in ("page_id", "title")}
        resolution = await self.resolver.resolve_queue(action.domain, queue)
        if resolution.is_empty:
            logger.info("Dropping %s queue for chat %s", action.kind.value, conversation_id)
            await self._presenter.send_message(
                conversation_id, messages.queue_exhausted_text(action.domain, resolution.query)
            )
            return
        logger.info(
            "Advancing %s queue for chat %s, %d left", action.kind.value, conversation_id, len(resolution.follow_up_queue)
        )
        await self.gateway.present_resolution(conversation_id, action.kind, template, resolution)

    async def _finish_platform_pick(self, conversation_id: str, action: PendingAction, platform: str) -> None:
        payload = action.payload
        if action.kind == ActionKind.pick_platform_list:
            filters = dict(payload.get("filters") or {}, platform=[platform])
            await self._list_with_filters(conversation_id, Domain.social, filters)
            return
        kind = ActionKind(payload["target_kind"])
        arguments = dict(payload.get("arguments") or {})
        arguments.pop("platforms", None)
        arguments["platform"] = [platform]
        text = payload.get("raw_text") or ""
        if action.kind == ActionKind.pick_platform_create:
            await self._create(conversation_id, kind, arguments, text)
        else:
            await self._update(conversation_id, kind, arguments, text)
