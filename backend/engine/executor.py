import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional

from pydantic import BaseModel, Field

from engine import messages
from engine.autofill import build_autofill_patch, infer_journal_fields
from engine.errors import DomainMutationFailure
from engine.kinds import BATCH_KINDS, PLATFORM_PICK_KINDS, ActionKind, Domain, PendingAction, RecordStore
from engine.options import merge_values, normalize_option_key

logger = logging.getLogger(__name__)

Handler = Callable[[RecordStore, Dict[str, Any]], Awaitable[Optional[str]]]

OPTION_FIELDS_CREATED_ON_AUTOFILL = ("type", "topics", "context")


class ExecutionResult(BaseModel):
    ok: bool
    kind: ActionKind
    message: str
    record_id: Optional[str] = None
    follow_up_queue: List[str] = Field(default_factory=list)


def _record_id(payload: Dict[str, Any]) -> str:
    record_id = payload.get("page_id")
    if not isinstance(record_id, str) or not record_id:
        raise DomainMutationFailure("pending action has no target record", code="missing_target")
    return record_id


async def _append_if_any(store: RecordStore, record_id: str, payload: Dict[str, Any]) -> None:
    description = str(payload.get("description") or "").strip()
    if description:
        await store.append_description(record_id, description)


async def _create(store: RecordStore, payload: Dict[str, Any]) -> Optional[str]:
    fields = dict(payload.get("fields") or {})
    record = await store.create(fields) or {}
    if record.get("id"):
        await _append_if_any(store, str(record["id"]), payload)
    return record.get("title") or fields.get("title")


async def _update(store: RecordStore, payload: Dict[str, Any]) -> Optional[str]:
    record_id = _record_id(payload)
    patch = dict(payload.get("patch") or {})
    if patch:
        await store.update(record_id, patch)
    await _append_if_any(store, record_id, payload)
    return patch.get("title") or payload.get("title")


async def _update_idea(store: RecordStore, payload: Dict[str, Any]) -> Optional[str]:
    patch = dict(payload.get("patch") or {})
    if (payload.get("merge") or {}).get("tags") and patch.get("tags"):
        current = await store.get(_record_id(payload)) or {}
        patch["tags"] = merge_values(current.get("tags") or [], patch["tags"])
    return await _update(store, dict(payload, patch=patch))


async def _update_journal_entry(store: RecordStore, payload: Dict[str, Any]) -> Optional[str]:
    patch = dict(payload.get("patch") or {})
    if payload.get("autofill"):
        entry = await store.get(_record_id(payload)) or {}
        text = " ".join(
            str(part) for part in (payload.get("source_text"), entry.get("title"), payload.get("description")) if part
        )
        inferred = build_autofill_patch(entry, infer_journal_fields(text), bool(payload.get("overwrite")))
        for field in OPTION_FIELDS_CREATED_ON_AUTOFILL:
            if field not in inferred:
                continue
            names = inferred[field] if isinstance(inferred[field], list) else [inferred[field]]
            resolved = await store.ensure_options(field, names)
            inferred[field] = resolved if isinstance(inferred[field], list) else (resolved[0] if resolved else None)
        patch = {**inferred, **patch}
    return await _update(store, dict(payload, patch=patch))


async def _mark_done(store: RecordStore, payload: Dict[str, Any]) -> Optional[str]:
    await store.mark_done(_record_id(payload))
    return payload.get("title")


async def _move_to_deprecated(store: RecordStore, payload: Dict[str, Any]) -> Optional[str]:
    await store.move_to_deprecated(_record_id(payload))
    return payload.get("title")


async def _append_description(store: RecordStore, payload: Dict[str, Any]) -> Optional[str]:
    await store.append_description(_record_id(payload), str(payload.get("description") or ""))
    return payload.get("title")


async def _archive(store: RecordStore, payload: Dict[str, Any]) -> Optional[str]:
    await store.archive(_record_id(payload))
    return payload.get("title")


HANDLERS: Dict[ActionKind, Handler] = {
    ActionKind.create_task: _create,
    ActionKind.update_task: _update,
    ActionKind.mark_done: _mark_done,
    ActionKind.move_to_deprecated: _move_to_deprecated,
    ActionKind.append_description: _append_description,
    ActionKind.create_idea: _create,
    ActionKind.update_idea: _update_idea,
    ActionKind.archive_idea: _archive,
    ActionKind.create_social_post: _create,
    ActionKind.update_social_post: _update,
    ActionKind.archive_social_post: _archive,
    ActionKind.create_journal_entry: _create,
    ActionKind.update_journal_entry: _update_journal_entry,
    ActionKind.archive_journal_entry: _archive,
}

_unhandled = set(ActionKind) - set(HANDLERS) - set(PLATFORM_PICK_KINDS)
if _unhandled:
    raise RuntimeError(f"Action kinds without an executor handler: {sorted(k.value for k in _unhandled)}")


async def _apply_option_requests(store: RecordStore, payload: Dict[str, Any]) -> Dict[str, Any]:
    requests = payload.get("ensure_options") or {}
    if not requests:
        return payload
    target_key = "fields" if "fields" in payload else "patch"
    values = dict(payload.get(target_key) or {})
    for field, names in requests.items():
        resolved = await store.ensure_options(field, list(names))
        by_key = {normalize_option_key(name): name for name in resolved}
        current = values.get(field)
        if isinstance(current, list):
            values[field] = [by_key.get(normalize_option_key(v), v) for v in current]
        elif isinstance(current, str):
            values[field] = by_key.get(normalize_option_key(current), current)
    return dict(payload, **{target_key: values})


class ActionExecutor:
    def __init__(self, stores: Dict[Domain, RecordStore], debug: bool = False):
        self._stores = stores
        self._debug = debug

    async def execute(self, action: PendingAction) -> ExecutionResult:
        handler = HANDLERS.get(action.kind)
        if handler is None:
            raise ValueError(f"{action.kind.value} is not an executable action")
        store = self._stores[action.domain]
        try:
            payload = await _apply_option_requests(store, action.payload)
            title = await handler(store, payload)
        except Exception as exc:
            failure = DomainMutationFailure.from_exception(exc)
            logger.error("Action %s failed: %s", action.kind.value, failure.detail())
            return ExecutionResult(ok=False, kind=action.kind, message=failure.user_message(self._debug))

        logger.info("Executed %s on %s", action.kind.value, action.payload.get("page_id") or "new record")
        queue = list(action.follow_up_queue or []) if action.kind in BATCH_KINDS else []
        return ExecutionResult(
            ok=True,
            kind=action.kind,
            message=messages.executed_text(action.kind, title),
            record_id=action.payload.get("page_id"),
            follow_up_queue=queue,
        )
