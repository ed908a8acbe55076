"""Telegram webhook and action endpoint tests with stable boundaries.

These tests validate:
- webhook auth/ingest behavior
- command handling
- routing of replies to the pending action versus a new tool plan
- the bearer-protected /v1/actions endpoints
"""
import asyncio
from datetime import datetime, timezone
from unittest.mock import AsyncMock, patch

from httpx import ASGITransport, AsyncClient

from api.main import ROUTING_FAILED_TEXT, START_TEXT, UNPLANNABLE_TEXT
from common.config import settings
from engine.kinds import Domain, Intent, ToolKind

WEBHOOK_URL = "/v1/integrations/telegram/webhook"
VALID_SECRET = "test_secret"
AUTH = {"Authorization": "Bearer test_token"}


def _tg_update(text, chat_id="12345"):
    return {
        "update_id": 1,
        "message": {
            "message_id": 1,
            "from": {"id": 42, "username": "testuser"},
            "chat": {"id": int(chat_id), "type": "private", "username": "testuser"},
            "text": text,
            "date": int(datetime.now(timezone.utc).timestamp()),
        },
    }


def _tg_callback_update(data, chat_id="12345"):
    return {
        "update_id": 2,
        "callback_query": {
            "id": "cbq_1",
            "from": {"id": 42, "username": "testuser"},
            "message": {"message_id": 9, "chat": {"id": int(chat_id), "type": "private"}},
            "data": data,
        },
    }


def _headers(secret=VALID_SECRET):
    headers = {"Content-Type": "application/json"}
    if secret is not None:
        headers["X-Telegram-Bot-Api-Secret-Token"] = secret
    return headers


def _request(asgi_app, method, url, **kwargs):
    async def _call():
        transport = ASGITransport(app=asgi_app)
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            return await client.request(method, url, **kwargs)
    return asyncio.run(_call())


def _post(asgi_app, url, **kwargs):
    return _request(asgi_app, "POST", url, **kwargs)


def _seed_pending_create(app_engine, chat_id="12345", title="Buy milk"):
    intent = Intent(tool_kind=ToolKind.create_task, arguments={"title": title})
    asyncio.run(app_engine.execute_tool_plan(chat_id, intent))
    return app_engine.pending_snapshot(chat_id)["action_id"]


def test_webhook_rejects_invalid_secret(app_no_db):
    resp = _post(app_no_db, WEBHOOK_URL, json=_tg_update("hello"), headers={"Content-Type": "application/json"})
    assert resp.status_code == 403

    resp = _post(app_no_db, WEBHOOK_URL, json=_tg_update("hello"), headers=_headers("wrong_secret"))
    assert resp.status_code == 403


def test_webhook_ignores_non_message_update(app_no_db):
    resp = _post(app_no_db, WEBHOOK_URL, json={"update_id": 2, "callback_query": {"id": "abc"}}, headers=_headers())
    assert resp.status_code == 200
    assert resp.json()["status"] == "ignored"


def test_webhook_ignores_disallowed_sender(app_no_db, mock_send, mock_adapter):
    old_chat_ids = settings.TELEGRAM_ALLOWED_CHAT_IDS
    old_usernames = settings.TELEGRAM_ALLOWED_USERNAMES
    settings.TELEGRAM_ALLOWED_CHAT_IDS = "999999"
    settings.TELEGRAM_ALLOWED_USERNAMES = "allowed_user"
    try:
        resp = _post(app_no_db, WEBHOOK_URL, json=_tg_update("hello", chat_id="12345"), headers=_headers())
        assert resp.status_code == 200
        assert resp.json()["status"] == "ignored"
        mock_send.assert_not_awaited()
        mock_adapter.plan_tool_call.assert_not_awaited()
    finally:
        settings.TELEGRAM_ALLOWED_CHAT_IDS = old_chat_ids
        settings.TELEGRAM_ALLOWED_USERNAMES = old_usernames


def test_start_command_sends_greeting(app_no_db, mock_send, mock_adapter):
    resp = _post(app_no_db, WEBHOOK_URL, json=_tg_update("/start@mybot"), headers=_headers())
    assert resp.status_code == 200
    assert resp.json()["status"] == "ok"
    mock_send.assert_awaited_once()
    assert mock_send.await_args.args[:2] == ("12345", START_TEXT)
    mock_adapter.plan_tool_call.assert_not_awaited()


def test_cancel_command_drops_pending(app_no_db, app_engine, mock_send):
    _seed_pending_create(app_engine)

    _post(app_no_db, WEBHOOK_URL, json=_tg_update("/cancel"), headers=_headers())
    assert mock_send.await_args.args[1] == "Cancelled."
    assert app_engine.has_pending("12345") is False

    _post(app_no_db, WEBHOOK_URL, json=_tg_update("/cancel"), headers=_headers())
    assert mock_send.await_args.args[1] == "Nothing to cancel."


def test_unknown_command_is_not_planned(app_no_db, mock_send, mock_adapter):
    _post(app_no_db, WEBHOOK_URL, json=_tg_update("/today"), headers=_headers())
    assert mock_send.await_args.args[1].startswith("Unknown command.")
    mock_adapter.plan_tool_call.assert_not_awaited()


def test_plain_text_is_planned_and_executed(app_no_db, stores, mock_send, mock_adapter, mock_db):
    stores[Domain.task].records["t1"] = {"id": "t1", "title": "Buy milk", "active": True}
    mock_adapter.plan_tool_call.return_value = Intent(
        tool_kind=ToolKind.list_tasks, arguments={}, raw_user_text="show my tasks"
    )

    resp = _post(app_no_db, WEBHOOK_URL, json=_tg_update("show my tasks"), headers=_headers())
    assert resp.status_code == 200
    assert resp.json()["status"] == "ok"

    message, context = mock_adapter.plan_tool_call.await_args.args
    assert message == "show my tasks"
    assert "today" in context
    assert mock_send.await_args.args == ("12345", "<b>Tasks</b>\n1. Buy milk", None)

    event = mock_db.add.call_args.args[0]
    assert event.event_type == "tool_plan_received"
    assert event.conversation_id == "12345"
    assert event.payload_json["tool_kind"] == "list_tasks"
    mock_db.commit.assert_awaited()


def test_unplannable_text_gets_rephrase_hint(app_no_db, mock_send, mock_adapter):
    mock_adapter.plan_tool_call.return_value = None
    _post(app_no_db, WEBHOOK_URL, json=_tg_update("what's the weather"), headers=_headers())
    assert mock_send.await_args.args[1] == UNPLANNABLE_TEXT


def test_confirm_prompt_carries_inline_keyboard(app_no_db, app_engine, mock_send):
    action_id = _seed_pending_create(app_engine)
    text, markup = mock_send.await_args.args[1:]
    assert text.startswith('Create task "Buy milk"?')
    assert markup == {
        "inline_keyboard": [
            [
                {"text": "Yes", "callback_data": f"confirm:{action_id}"},
                {"text": "No", "callback_data": f"cancel:{action_id}"},
            ]
        ]
    }


def test_callback_confirms_pending_action(app_no_db, app_engine, stores, mock_send, mock_db):
    action_id = _seed_pending_create(app_engine)

    with patch("api.main.answer_callback_query", new_callable=AsyncMock) as answer:
        resp = _post(app_no_db, WEBHOOK_URL, json=_tg_callback_update(f"confirm:{action_id}"), headers=_headers())
    assert resp.status_code == 200
    answer.assert_awaited_once_with("cbq_1")
    assert stores[Domain.task].calls[0] == ("create", {"title": "Buy milk", "status": "Idle"})
    assert mock_send.await_args.args[1] == 'Created: "Buy milk".'

    event = mock_db.add.call_args.args[0]
    assert event.event_type == "confirmation_event"
    assert event.action_kind == "create_task"
    assert event.action_id == action_id
    assert event.payload_json["outcome"] == "handled"


def test_stale_callback_reports_expiry(app_no_db, app_engine, stores, mock_send):
    _seed_pending_create(app_engine)
    with patch("api.main.answer_callback_query", new_callable=AsyncMock):
        _post(app_no_db, WEBHOOK_URL, json=_tg_callback_update("confirm:act_bogus"), headers=_headers())
    assert mock_send.await_args.args[1] == "Confirmation expired. Repeat the command."
    assert stores[Domain.task].calls == []
    assert app_engine.has_pending("12345") is True


def test_text_reply_to_pending_action_skips_planner(app_no_db, app_engine, stores, mock_adapter):
    _seed_pending_create(app_engine)
    _post(app_no_db, WEBHOOK_URL, json=_tg_update("да"), headers=_headers())
    assert stores[Domain.task].calls[0][0] == "create"
    mock_adapter.plan_tool_call.assert_not_awaited()


def test_unrelated_text_with_pending_action_is_replanned(app_no_db, app_engine, mock_adapter):
    _seed_pending_create(app_engine)
    mock_adapter.plan_tool_call.return_value = None
    _post(app_no_db, WEBHOOK_URL, json=_tg_update("show my ideas"), headers=_headers())
    mock_adapter.plan_tool_call.assert_awaited_once()
    assert app_engine.has_pending("12345") is True


def test_routing_failure_sends_apology(app_no_db, mock_send, mock_adapter):
    mock_adapter.plan_tool_call.side_effect = RuntimeError("planner down")
    resp = _post(app_no_db, WEBHOOK_URL, json=_tg_update("show my tasks"), headers=_headers())
    assert resp.status_code == 200
    assert mock_send.await_args.args[1] == ROUTING_FAILED_TEXT


def test_actions_endpoints_require_bearer_token(app_no_db):
    resp = _request(app_no_db, "GET", "/v1/actions/pending/c9")
    assert resp.status_code == 401

    resp = _request(app_no_db, "GET", "/v1/actions/pending/c9", headers={"Authorization": "Bearer nope"})
    assert resp.status_code == 401


def test_actions_plan_then_confirm(app_no_db, stores):
    resp = _post(
        app_no_db,
        "/v1/actions/plan",
        json={"conversation_id": "c9", "tool_kind": "create_task", "arguments": {"title": "Buy milk"}},
        headers=AUTH,
    )
    assert resp.status_code == 200
    pending = resp.json()["pending"]
    assert pending["kind"] == "create_task"
    assert pending["state"] == "awaiting_confirm"
    assert resp.headers.get("X-Request-ID")

    resp = _request(app_no_db, "GET", "/v1/actions/pending/c9", headers=AUTH)
    assert resp.json()["pending"]["action_id"] == pending["action_id"]

    resp = _post(
        app_no_db,
        "/v1/actions/event",
        json={"conversation_id": "c9", "event": f"confirm:{pending['action_id']}"},
        headers=AUTH,
    )
    assert resp.status_code == 200
    body = resp.json()
    assert body["outcome"] == "handled"
    assert body["pending"] is None
    assert stores[Domain.task].calls[0][0] == "create"


def test_actions_plan_rejects_unknown_tool(app_no_db):
    resp = _post(
        app_no_db,
        "/v1/actions/plan",
        json={"conversation_id": "c9", "tool_kind": "delete_everything"},
        headers=AUTH,
    )
    assert resp.status_code == 422


def test_health_live(app_no_db):
    resp = _request(app_no_db, "GET", "/health/live")
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok"}


def test_health_ready_checks_db_and_redis(app_no_db, mock_db, mock_redis):
    resp = _request(app_no_db, "GET", "/health/ready")
    assert resp.status_code == 200
    mock_db.execute.assert_awaited_once()
    mock_redis.ping.assert_awaited_once()

    mock_redis.ping.side_effect = ConnectionError("down")
    resp = _request(app_no_db, "GET", "/health/ready")
    assert resp.status_code == 503
