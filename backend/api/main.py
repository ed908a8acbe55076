import uuid
import logging
from datetime import datetime, timezone, date
from typing import Optional, Dict, Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from fastapi import FastAPI, Depends, HTTPException, status, Request
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy import text

import redis.asyncio as redis

from common.config import settings
from common.models import EventLog
from common.adapter import adapter
from common.notion import build_stores
from common.recent_lists import RecentListStore
from common.telegram import (
    verify_telegram_secret, is_allowed_sender, parse_update, extract_command, send_message,
    answer_callback_query, build_inline_keyboard,
)
from api.schemas import (
    ToolPlanRequest, ConfirmationEventRequest, PendingActionView, EngineEventResponse,
    TelegramWebhookResponse,
)
from engine.core import ActionEngine, EventOutcome
from engine.kinds import Intent

logger = logging.getLogger(__name__)
app = FastAPI(title="Notion Action Bot API")

START_TEXT = (
    "Hi! Tell me what to do with your tasks, ideas, social posts or journal, "
    "for example \"show my tasks\" or \"mark the second one done\". "
    "I always ask before changing anything."
)
UNPLANNABLE_TEXT = "I could not map that to an action. Try rephrasing."
ROUTING_FAILED_TEXT = "Sorry, I had trouble processing that message. Please try again later."


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _local_today() -> date:
    tz_name = (settings.APP_TIMEZONE or "").strip() or "UTC"
    try:
        tz = ZoneInfo(tz_name)
    except ZoneInfoNotFoundError:
        tz = timezone.utc
    return datetime.now(tz).date()

# DB Setup
engine = create_async_engine(settings.DATABASE_URL, echo=settings.APP_ENV == "dev")
AsyncSessionLocal = sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

# Redis Setup
redis_client = redis.from_url(settings.REDIS_URL, decode_responses=True)


class ChatPresenter:
    """Sends engine prompts to the Telegram chat the conversation id names."""

    async def send_message(self, conversation_id: str, text: str, keyboard=None) -> Dict[str, Any]:
        return await send_message(conversation_id, text, build_inline_keyboard(keyboard))


action_engine = ActionEngine(
    stores=build_stores(),
    presenter=ChatPresenter(),
    recent_lists=RecentListStore(redis_client, settings.RECENT_CONTEXT_TTL_HOURS),
    classifier=adapter.classify_confirm_intent,
    debug=settings.ENGINE_DEBUG,
    timezone_name=settings.APP_TIMEZONE,
    search_limit=settings.ENGINE_SEARCH_LIMIT,
    list_limit=settings.ENGINE_LIST_LIMIT,
    title_max_len=settings.TASK_TITLE_MAX_LEN,
)

async def get_db():
    async with AsyncSessionLocal() as session:
        try:
            yield session
        finally:
            await session.close()

# --- Middleware & Dependencies ---

@app.middleware("http")
async def add_request_id(request: Request, call_next):
    request_id = str(uuid.uuid4())
    request.state.request_id = request_id
    response = await call_next(request)
    response.headers["X-Request-ID"] = request_id
    return response

async def get_authenticated_client(request: Request) -> str:
    auth_header = request.headers.get("Authorization")
    if not auth_header or not auth_header.startswith("Bearer "):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing or invalid authorization header")
    token = auth_header.split(" ")[1]
    if token not in settings.auth_tokens:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")
    return "api"


async def _log_event(
    db: AsyncSession,
    request_id: str,
    conversation_id: str,
    event_type: str,
    payload: Dict[str, Any],
    action: Optional[Dict[str, Any]] = None,
) -> None:
    db.add(
        EventLog(
            id=str(uuid.uuid4()),
            request_id=request_id,
            conversation_id=conversation_id,
            event_type=event_type,
            action_kind=(action or {}).get("kind"),
            action_id=(action or {}).get("action_id"),
            payload_json=payload,
            created_at=utc_now(),
        )
    )
    await db.commit()


async def _run_confirmation_event(conversation_id: str, event: str, request_id: str, db: AsyncSession) -> EventOutcome:
    before = action_engine.pending_snapshot(conversation_id)
    outcome = await action_engine.handle_confirmation_event(conversation_id, event)
    await _log_event(
        db, request_id, conversation_id, "confirmation_event",
        {"event": event[:200], "outcome": outcome.value}, action=before,
    )
    return outcome


async def _run_tool_plan(conversation_id: str, intent: Intent, request_id: str, db: AsyncSession) -> None:
    await _log_event(
        db, request_id, conversation_id, "tool_plan_received",
        {"tool_kind": intent.tool_kind.value, "arguments": intent.arguments},
    )
    await action_engine.execute_tool_plan(conversation_id, intent)

# --- Health ---

@app.get("/health/live")
async def health_live():
    return {"status": "ok"}

@app.get("/health/ready")
async def health_ready(db: AsyncSession = Depends(get_db)):
    try:
        await db.execute(text("SELECT 1"))
        await redis_client.ping()
    except Exception:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Infrastructure unreachable")
    return {"status": "ready"}

# --- Telegram ---

async def _handle_telegram_callback_update(data: Dict[str, Any], db: AsyncSession) -> None:
    chat_id = data["chat_id"]
    callback_query_id = data.get("callback_query_id")
    request_id = f"tg_{uuid.uuid4().hex[:8]}"
    if callback_query_id:
        await answer_callback_query(callback_query_id)
    await _run_confirmation_event(chat_id, data.get("callback_data", ""), request_id, db)


async def _handle_telegram_message_update(data: Dict[str, Any], db: AsyncSession) -> None:
    chat_id = data["chat_id"]
    text_value = (data.get("text") or "").strip()
    request_id = f"tg_{uuid.uuid4().hex[:8]}"

    command, _ = extract_command(text_value)
    if command == "/start":
        await send_message(chat_id, START_TEXT)
        return
    if command == "/cancel":
        dropped = await action_engine.drop_pending(chat_id)
        await send_message(chat_id, "Cancelled." if dropped else "Nothing to cancel.")
        return
    if command:
        await send_message(chat_id, "Unknown command. Just tell me what to do in plain words.")
        return

    if action_engine.has_pending(chat_id):
        outcome = await _run_confirmation_event(chat_id, text_value, request_id, db)
        if outcome == EventOutcome.handled:
            return

    intent = await adapter.plan_tool_call(text_value, {"today": _local_today().isoformat()})
    if intent is None:
        await send_message(chat_id, UNPLANNABLE_TEXT)
        return
    await _run_tool_plan(chat_id, intent, request_id, db)


@app.post("/v1/integrations/telegram/webhook", response_model=TelegramWebhookResponse)
async def telegram_webhook(request: Request, db: AsyncSession = Depends(get_db)):
    # 1. Validate secret
    if not verify_telegram_secret(request.headers):
        raise HTTPException(status_code=403, detail="Unauthorized webhook source")

    # 2. Parse update
    try:
        update_json = await request.json()
    except Exception:
        return {"status": "ignored"}

    data = parse_update(update_json)
    if not data:
        return {"status": "ignored"}

    chat_id = data["chat_id"]
    username = data.get("username")
    if not is_allowed_sender(chat_id, username):
        logger.warning("Ignoring telegram message from disallowed sender chat_id=%s username=%s", chat_id, username)
        return {"status": "ignored"}

    try:
        if data.get("kind") == "callback":
            await _handle_telegram_callback_update(data, db)
        else:
            await _handle_telegram_message_update(data, db)
    except Exception as e:
        logger.error(f"Telegram routing failed: {e}")
        await send_message(chat_id, ROUTING_FAILED_TEXT)

    return {"status": "ok"}

# --- Action Endpoints ---

@app.post("/v1/actions/plan", response_model=PendingActionView)
async def plan_action(
    request: Request,
    payload: ToolPlanRequest,
    client: str = Depends(get_authenticated_client),
    db: AsyncSession = Depends(get_db),
):
    intent = Intent(tool_kind=payload.tool_kind, arguments=payload.arguments, raw_user_text=payload.raw_user_text)
    await _run_tool_plan(payload.conversation_id, intent, request.state.request_id, db)
    return PendingActionView(
        conversation_id=payload.conversation_id,
        pending=action_engine.pending_snapshot(payload.conversation_id),
    )


@app.post("/v1/actions/event", response_model=EngineEventResponse)
async def confirmation_event(
    request: Request,
    payload: ConfirmationEventRequest,
    client: str = Depends(get_authenticated_client),
    db: AsyncSession = Depends(get_db),
):
    outcome = await _run_confirmation_event(payload.conversation_id, payload.event, request.state.request_id, db)
    return EngineEventResponse(
        conversation_id=payload.conversation_id,
        outcome=outcome,
        pending=action_engine.pending_snapshot(payload.conversation_id),
    )


@app.get("/v1/actions/pending/{conversation_id}", response_model=PendingActionView)
async def get_pending_action(conversation_id: str, client: str = Depends(get_authenticated_client)):
    return PendingActionView(conversation_id=conversation_id, pending=action_engine.pending_snapshot(conversation_id))
