import logging
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, NamedTuple, Optional, Tuple

from engine import messages
from engine.errors import ResolutionEmpty, StaleConfirmation
from engine.kinds import ACTION_DOMAIN, ActionKind, PendingAction, Presenter, ResolvedTarget
from engine.pending import PendingActionStore, new_action_id
from engine.phrases import ReplyClass, classify_reply
from engine.resolver import Resolution

logger = logging.getLogger(__name__)

ReplyClassifier = Callable[[str, Dict[str, Any]], Awaitable[str]]


class GatewayState(str, Enum):
    resolving = "resolving"
    awaiting_pick = "awaiting_pick"
    awaiting_confirm = "awaiting_confirm"
    executed = "executed"
    cancelled = "cancelled"


class ParsedEvent(NamedTuple):
    verb: str
    action_id: Optional[str] = None
    index: Optional[int] = None
    text: str = ""


def parse_event(event: str) -> ParsedEvent:
    """Split a callback token (pick:<n>, confirm:<id>, cancel:<id>, plat:<id>:<n>) or mark it as free text."""
    raw = (event or "").strip()
    head, _, rest = raw.partition(":")
    if head == "pick" and rest:
        if rest == "cancel":
            return ParsedEvent("pick_cancel")
        if rest.isdigit():
            return ParsedEvent("pick", index=int(rest))
        return ParsedEvent("pick", index=None)
    if head in ("confirm", "cancel") and rest and " " not in rest:
        return ParsedEvent(head, action_id=rest)
    if head == "plat" and rest:
        action_id, _, idx = rest.rpartition(":")
        if action_id and idx.isdigit():
            return ParsedEvent("plat", action_id=action_id, index=int(idx))
        return ParsedEvent("plat", action_id=action_id or rest)
    return ParsedEvent("text", text=raw)


def bind_target(payload: Dict[str, Any], target: ResolvedTarget) -> Dict[str, Any]:
    bound = dict(payload)
    bound["page_id"] = target.id
    bound["title"] = target.title
    return bound


class ConfirmationGateway:
    def __init__(self, pending: PendingActionStore, presenter: Presenter, classifier: Optional[ReplyClassifier] = None):
        self._pending = pending
        self._presenter = presenter
        self._classifier = classifier

    def state(self, conversation_id: str) -> GatewayState:
        action = self._pending.get(conversation_id)
        if action is None:
            return GatewayState.resolving
        if action.awaiting_confirm:
            return GatewayState.awaiting_confirm
        return GatewayState.awaiting_pick

    async def present_resolution(
        self,
        conversation_id: str,
        kind: ActionKind,
        payload: Dict[str, Any],
        resolution: Resolution,
        empty_text: Optional[str] = None,
    ) -> GatewayState:
        if resolution.is_empty:
            logger.info("Chat %s: %s", conversation_id, ResolutionEmpty(ACTION_DOMAIN[kind].value, resolution.query))
            await self._presenter.send_message(
                conversation_id, empty_text or messages.not_found_text(ACTION_DOMAIN[kind], resolution.query)
            )
            return GatewayState.resolving
        queue = list(resolution.follow_up_queue) or None
        if resolution.is_ambiguous:
            action = PendingAction(
                kind=kind,
                payload=dict(payload),
                candidates=list(resolution.candidates),
                follow_up_queue=queue,
            )
            self._pending.put(conversation_id, action)
            await self._presenter.send_message(
                conversation_id,
                messages.pick_prompt(action.domain, action.candidates),
                messages.pick_keyboard(action.candidates),
            )
            return GatewayState.awaiting_pick
        await self.request_confirmation(conversation_id, kind, bind_target(payload, resolution.target), queue)
        return GatewayState.awaiting_confirm

    async def request_confirmation(
        self,
        conversation_id: str,
        kind: ActionKind,
        payload: Dict[str, Any],
        follow_up_queue: Optional[List[str]] = None,
        prompt: Optional[str] = None,
    ) -> PendingAction:
        action = PendingAction(
            kind=kind,
            payload=dict(payload),
            action_id=new_action_id(),
            follow_up_queue=follow_up_queue or None,
        )
        self._pending.put(conversation_id, action)
        await self._presenter.send_message(
            conversation_id,
            prompt or messages.confirmation_prompt(kind, action.payload),
            messages.confirm_keyboard(action.action_id),
        )
        return action

    async def request_platform_pick(
        self,
        conversation_id: str,
        kind: ActionKind,
        payload: Dict[str, Any],
        platforms: List[str],
        unknown: Optional[str] = None,
    ) -> PendingAction:
        stored = dict(payload)
        stored["platform_options"] = list(platforms)
        action = PendingAction(kind=kind, payload=stored, action_id=new_action_id())
        self._pending.put(conversation_id, action)
        await self._presenter.send_message(
            conversation_id,
            messages.platform_prompt(platforms, unknown),
            messages.platform_keyboard(action.action_id, platforms),
        )
        return action

    async def on_pick(self, conversation_id: str, index: Optional[int]) -> GatewayState:
        action = self._pending.get(conversation_id)
        if action is None or not action.awaiting_pick:
            await self._presenter.send_message(conversation_id, messages.STALE_PICK_TEXT)
            return self.state(conversation_id)
        chosen = next((c for c in action.candidates or [] if c.index == index), None)
        if chosen is None:
            await self._presenter.send_message(conversation_id, messages.STALE_PICK_TEXT)
            return GatewayState.awaiting_pick
        target = ResolvedTarget(id=chosen.id, title=chosen.title, domain=action.domain)
        await self.request_confirmation(
            conversation_id, action.kind, bind_target(action.payload, target), action.follow_up_queue
        )
        return GatewayState.awaiting_confirm

    async def on_pick_cancel(self, conversation_id: str) -> GatewayState:
        action = self._pending.get(conversation_id)
        if action is None or not action.awaiting_pick:
            raise StaleConfirmation(None)
        self._pending.clear(conversation_id)
        await self._presenter.send_message(conversation_id, messages.CANCELLED_TEXT)
        return GatewayState.cancelled

    def take_confirmed(self, conversation_id: str, action_id: Optional[str]) -> PendingAction:
        action = self._pending.take_if_current(conversation_id, action_id)
        if action is None:
            raise StaleConfirmation(action_id)
        return action

    async def on_cancel(self, conversation_id: str, action_id: Optional[str]) -> GatewayState:
        if self._pending.take_if_current(conversation_id, action_id) is None:
            raise StaleConfirmation(action_id)
        await self._presenter.send_message(conversation_id, messages.CANCELLED_TEXT)
        return GatewayState.cancelled

    def take_platform_choice(self, conversation_id: str, action_id: Optional[str], index: Optional[int]) -> Tuple[PendingAction, str]:
        current = self._pending.get(conversation_id)
        if current is None or current.action_id != action_id:
            raise StaleConfirmation(action_id)
        options = current.payload.get("platform_options") or []
        if index is None or not 0 <= index < len(options):
            raise StaleConfirmation(action_id)
        action = self._pending.take_if_current(conversation_id, action_id)
        return action, options[index]

    async def report_stale(self, conversation_id: str, exc: StaleConfirmation) -> None:
        logger.warning("Stale confirmation for chat %s: %s", conversation_id, exc)
        await self._presenter.send_message(conversation_id, messages.STALE_CONFIRMATION_TEXT)

    async def classify_text(self, conversation_id: str, text: str) -> ReplyClass:
        rule = classify_reply(text)
        if rule is not None:
            return rule
        if self._classifier is None:
            return ReplyClass.unknown
        action = self._pending.get(conversation_id)
        context: Dict[str, Any] = {}
        if action is not None:
            context = {"pending_kind": action.kind.value, "title": action.payload.get("title")}
        try:
            verdict = await self._classifier(text, context)
        except Exception as exc:
            logger.warning("Confirm intent classifier failed: %s", type(exc).__name__)
            return ReplyClass.unknown
        try:
            return ReplyClass(verdict)
        except ValueError:
            return ReplyClass.unknown
