from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Protocol

from pydantic import BaseModel, ConfigDict, Field


MAX_CANDIDATES = 10


class Domain(str, Enum):
    task = "task"
    idea = "idea"
    social = "social"
    journal = "journal"


class ToolKind(str, Enum):
    list_tasks = "list_tasks"
    find_tasks = "find_tasks"
    create_task = "create_task"
    update_task = "update_task"
    mark_done = "mark_done"
    move_to_deprecated = "move_to_deprecated"
    append_description = "append_description"
    list_ideas = "list_ideas"
    find_ideas = "find_ideas"
    create_idea = "create_idea"
    update_idea = "update_idea"
    archive_idea = "archive_idea"
    list_social_posts = "list_social_posts"
    find_social_posts = "find_social_posts"
    create_social_post = "create_social_post"
    update_social_post = "update_social_post"
    archive_social_post = "archive_social_post"
    list_journal_entries = "list_journal_entries"
    find_journal_entries = "find_journal_entries"
    create_journal_entry = "create_journal_entry"
    update_journal_entry = "update_journal_entry"
    archive_journal_entry = "archive_journal_entry"


class ActionKind(str, Enum):
    create_task = "create_task"
    update_task = "update_task"
    mark_done = "mark_done"
    move_to_deprecated = "move_to_deprecated"
    append_description = "append_description"
    create_idea = "create_idea"
    update_idea = "update_idea"
    archive_idea = "archive_idea"
    create_social_post = "create_social_post"
    update_social_post = "update_social_post"
    archive_social_post = "archive_social_post"
    create_journal_entry = "create_journal_entry"
    update_journal_entry = "update_journal_entry"
    archive_journal_entry = "archive_journal_entry"
    pick_platform_create = "pick_platform_create"
    pick_platform_update = "pick_platform_update"
    pick_platform_list = "pick_platform_list"


BATCH_KINDS = frozenset({ActionKind.mark_done, ActionKind.move_to_deprecated})
PLATFORM_PICK_KINDS = frozenset(
    {ActionKind.pick_platform_create, ActionKind.pick_platform_update, ActionKind.pick_platform_list}
)
CREATE_KINDS = frozenset(
    {
        ActionKind.create_task,
        ActionKind.create_idea,
        ActionKind.create_social_post,
        ActionKind.create_journal_entry,
    }
)

ACTION_DOMAIN: Dict[ActionKind, Domain] = {
    ActionKind.create_task: Domain.task,
    ActionKind.update_task: Domain.task,
    ActionKind.mark_done: Domain.task,
    ActionKind.move_to_deprecated: Domain.task,
    ActionKind.append_description: Domain.task,
    ActionKind.create_idea: Domain.idea,
    ActionKind.update_idea: Domain.idea,
    ActionKind.archive_idea: Domain.idea,
    ActionKind.create_social_post: Domain.social,
    ActionKind.update_social_post: Domain.social,
    ActionKind.archive_social_post: Domain.social,
    ActionKind.create_journal_entry: Domain.journal,
    ActionKind.update_journal_entry: Domain.journal,
    ActionKind.archive_journal_entry: Domain.journal,
    ActionKind.pick_platform_create: Domain.social,
    ActionKind.pick_platform_update: Domain.social,
    ActionKind.pick_platform_list: Domain.social,
}

TOOL_DOMAIN: Dict[ToolKind, Domain] = {
    ToolKind.list_tasks: Domain.task,
    ToolKind.find_tasks: Domain.task,
    ToolKind.create_task: Domain.task,
    ToolKind.update_task: Domain.task,
    ToolKind.mark_done: Domain.task,
    ToolKind.move_to_deprecated: Domain.task,
    ToolKind.append_description: Domain.task,
    ToolKind.list_ideas: Domain.idea,
    ToolKind.find_ideas: Domain.idea,
    ToolKind.create_idea: Domain.idea,
    ToolKind.update_idea: Domain.idea,
    ToolKind.archive_idea: Domain.idea,
    ToolKind.list_social_posts: Domain.social,
    ToolKind.find_social_posts: Domain.social,
    ToolKind.create_social_post: Domain.social,
    ToolKind.update_social_post: Domain.social,
    ToolKind.archive_social_post: Domain.social,
    ToolKind.list_journal_entries: Domain.journal,
    ToolKind.find_journal_entries: Domain.journal,
    ToolKind.create_journal_entry: Domain.journal,
    ToolKind.update_journal_entry: Domain.journal,
    ToolKind.archive_journal_entry: Domain.journal,
}


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class Intent(BaseModel):
    model_config = ConfigDict(frozen=True)

    tool_kind: ToolKind
    arguments: Dict[str, Any] = Field(default_factory=dict)
    raw_user_text: str = ""


class ResolvedTarget(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    title: str = ""
    domain: Domain


class Candidate(BaseModel):
    model_config = ConfigDict(frozen=True)

    index: int = Field(ge=1, le=MAX_CANDIDATES)
    id: str
    title: str = ""


class RecentItem(BaseModel):
    index: int = Field(ge=1)
    id: str
    title: str = ""


class PendingAction(BaseModel):
    kind: ActionKind
    payload: Dict[str, Any] = Field(default_factory=dict)
    action_id: Optional[str] = None
    candidates: Optional[List[Candidate]] = Field(default=None, max_length=MAX_CANDIDATES)
    follow_up_queue: Optional[List[str]] = None
    created_at: datetime = Field(default_factory=utc_now)

    @property
    def awaiting_pick(self) -> bool:
        return self.action_id is None and bool(self.candidates)

    @property
    def awaiting_confirm(self) -> bool:
        return self.action_id is not None

    @property
    def domain(self) -> Domain:
        return ACTION_DOMAIN[self.kind]


class KeyboardButton(BaseModel):
    model_config = ConfigDict(frozen=True)

    label: str
    callback_token: str


Keyboard = List[List[KeyboardButton]]


class RecordStore(Protocol):
    async def list(self, filters: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]: ...

    async def find(self, query: str, limit: int = 10) -> List[Dict[str, Any]]: ...

    async def get(self, record_id: str) -> Dict[str, Any]: ...

    async def create(self, fields: Dict[str, Any]) -> Dict[str, Any]: ...

    async def update(self, record_id: str, patch: Dict[str, Any]) -> Dict[str, Any]: ...

    async def archive(self, record_id: str) -> None: ...

    async def append_description(self, record_id: str, text: str) -> None: ...

    async def get_options(self) -> Dict[str, List[str]]: ...

    async def ensure_options(self, field: str, names: List[str]) -> List[str]: ...


class TaskRecordStore(RecordStore, Protocol):
    async def mark_done(self, record_id: str) -> Dict[str, Any]: ...

    async def move_to_deprecated(self, record_id: str) -> Dict[str, Any]: ...


class RecentListSource(Protocol):
    async def get(self, conversation_id: str, domain: Domain) -> List[RecentItem]: ...

    async def remember(self, conversation_id: str, domain: Domain, records: List[Dict[str, Any]]) -> List[RecentItem]: ...


class Presenter(Protocol):
    async def send_message(
        self, conversation_id: str, text: str, keyboard: Optional[Keyboard] = None
    ) -> Dict[str, Any]: ...
