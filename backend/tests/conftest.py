"""Stable shared fixtures for tests.

Design goal: avoid async fixture loop injection and keep test boundaries explicit.
Engine tests run against in-memory fakes of the record stores, the recent-list
store and the chat presenter.
"""
import os
from typing import Any, Dict, List, Optional
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

# Must be set before importing app modules.
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["REDIS_URL"] = "redis://localhost:6379/15"
os.environ["APP_AUTH_BEARER_TOKENS"] = "test_token"
os.environ["LLM_API_KEY"] = "test_key"
os.environ["LLM_MODEL_PLAN"] = "test-model"
os.environ["TELEGRAM_BOT_TOKEN"] = "test_bot_token"
os.environ["TELEGRAM_WEBHOOK_SECRET"] = "test_secret"
os.environ["NOTION_TOKEN"] = "test_notion_token"
os.environ["NOTION_TASKS_DB_ID"] = "db_tasks"
os.environ["NOTION_IDEAS_DB_ID"] = "db_ideas"
os.environ["NOTION_SOCIAL_DB_ID"] = "db_social"
os.environ["NOTION_JOURNAL_DB_ID"] = "db_journal"

from api.main import app, get_db, ChatPresenter
from engine.core import ActionEngine
from engine.kinds import Domain, RecentItem


class FakeStore:
    def __init__(self, records: Optional[List[Dict[str, Any]]] = None, options: Optional[Dict[str, List[str]]] = None):
        self.records: Dict[str, Dict[str, Any]] = {}
        for record in records or []:
            self.records[record["id"]] = {"active": True, **record}
        self.options = {k: list(v) for k, v in (options or {}).items()}
        self.calls: List[tuple] = []
        self._next_id = 1

    @property
    def mutations(self) -> List[tuple]:
        return [c for c in self.calls if c[0] not in ("ensure_options",)]

    async def list(self, filters=None):
        limit = (filters or {}).get("limit") or 100
        return [dict(r) for r in self.records.values()][:limit]

    async def find(self, query, limit=10):
        needle = query.lower()
        return [dict(r) for r in self.records.values() if needle in str(r.get("title") or "").lower()][:limit]

    async def get(self, record_id):
        return dict(self.records[record_id])

    async def create(self, fields):
        self.calls.append(("create", dict(fields)))
        record_id = f"new_{self._next_id}"
        self._next_id += 1
        self.records[record_id] = {"id": record_id, "active": True, **fields}
        return dict(self.records[record_id])

    async def update(self, record_id, patch):
        self.calls.append(("update", record_id, dict(patch)))
        self.records[record_id].update(patch)
        return dict(self.records[record_id])

    async def archive(self, record_id):
        self.calls.append(("archive", record_id))
        self.records[record_id]["active"] = False

    async def append_description(self, record_id, text):
        self.calls.append(("append_description", record_id, text))

    async def get_options(self):
        return {k: list(v) for k, v in self.options.items()}

    async def ensure_options(self, field, names):
        self.calls.append(("ensure_options", field, list(names)))
        current = self.options.setdefault(field, [])
        for name in names:
            if name not in current:
                current.append(name)
        return list(names)

    async def mark_done(self, record_id):
        self.calls.append(("mark_done", record_id))
        self.records[record_id]["status"] = "Done"
        return dict(self.records[record_id])

    async def move_to_deprecated(self, record_id):
        self.calls.append(("move_to_deprecated", record_id))
        self.records[record_id]["active"] = False
        return dict(self.records[record_id])


class FakeRecentLists:
    def __init__(self):
        self.lists: Dict[tuple, List[RecentItem]] = {}

    async def get(self, conversation_id, domain):
        return list(self.lists.get((conversation_id, domain), []))

    async def remember(self, conversation_id, domain, records):
        items = [
            RecentItem(index=i, id=str(r["id"]), title=str(r.get("title") or ""))
            for i, r in enumerate(records, start=1)
        ]
        self.lists[(conversation_id, domain)] = items
        return items


class FakePresenter:
    def __init__(self):
        self.sent: List[Dict[str, Any]] = []

    async def send_message(self, conversation_id, text, keyboard=None):
        self.sent.append({"chat_id": conversation_id, "text": text, "keyboard": keyboard})
        return {"ok": True}

    @property
    def last_text(self) -> str:
        return self.sent[-1]["text"] if self.sent else ""

    def last_tokens(self) -> List[str]:
        keyboard = self.sent[-1]["keyboard"] if self.sent else None
        return [button.callback_token for row in keyboard or [] for button in row]


@pytest.fixture
def stores():
    return {
        Domain.task: FakeStore(
            options={"tags": ["Work", "Home", "Deprecated"], "priority": ["Low", "Med", "High"], "status": ["Idle", "In progress", "Done"]}
        ),
        Domain.idea: FakeStore(
            options={
                "category": ["Product", "Marketing"],
                "tags": ["Dev", "Design"],
                "priority": ["Low", "Med", "High"],
                "status": ["Inbox", "Active"],
                "area": [],
                "project": ["Bot"],
            }
        ),
        Domain.social: FakeStore(
            options={"platform": ["TG", "FB", "Instagram"], "status": ["Post Idea", "Draft", "Published"], "content_type": ["Video", "Text"]}
        ),
        Domain.journal: FakeStore(
            options={"type": ["Thought", "Daily summary"], "topics": ["Work", "Daily summary"], "context": ["home", "office"]}
        ),
    }


@pytest.fixture
def presenter():
    return FakePresenter()


@pytest.fixture
def recent_lists():
    return FakeRecentLists()


@pytest.fixture
def action_engine(stores, presenter, recent_lists):
    return ActionEngine(stores=stores, presenter=presenter, recent_lists=recent_lists)


@pytest.fixture
def mock_redis():
    r = AsyncMock()
    r.get = AsyncMock(return_value=None)
    r.set = AsyncMock(return_value=True)
    r.ping = AsyncMock(return_value=True)
    return r


@pytest.fixture
def mock_send():
    with patch("api.main.send_message", new_callable=AsyncMock) as m:
        m.return_value = {"ok": True}
        yield m


@pytest.fixture
def mock_adapter():
    with patch("api.main.adapter") as m:
        m.plan_tool_call = AsyncMock(return_value=None)
        m.classify_confirm_intent = AsyncMock(return_value="unknown")
        yield m


@pytest.fixture
def mock_db():
    db = AsyncMock()
    result = AsyncMock()
    result.rowcount = 1
    db.execute = AsyncMock(return_value=result)
    db.commit = AsyncMock(return_value=None)
    db.add = MagicMock()
    return db


@pytest.fixture
def app_engine(stores, recent_lists):
    return ActionEngine(stores=stores, presenter=ChatPresenter(), recent_lists=recent_lists)


@pytest.fixture
def app_no_db(mock_redis, mock_send, mock_adapter, mock_db, app_engine):
    async def _stub_get_db():
        yield mock_db

    app.dependency_overrides[get_db] = _stub_get_db
    with patch("api.main.redis_client", mock_redis), patch("api.main.action_engine", app_engine):
        yield app
    app.dependency_overrides.clear()
