from pydantic import BaseModel, Field
from typing import Optional, Dict, Any

from engine.core import EventOutcome
from engine.kinds import ToolKind

class ToolPlanRequest(BaseModel):
    conversation_id: str = Field(min_length=1)
    tool_kind: ToolKind
    arguments: Dict[str, Any] = Field(default_factory=dict)
    raw_user_text: str = ""

class ConfirmationEventRequest(BaseModel):
    conversation_id: str = Field(min_length=1)
    event: str = Field(min_length=1)

class PendingActionView(BaseModel):
    conversation_id: str
    pending: Optional[Dict[str, Any]] = None

class EngineEventResponse(BaseModel):
    conversation_id: str
    outcome: EventOutcome
    pending: Optional[Dict[str, Any]] = None

class TelegramWebhookResponse(BaseModel):
    status: str = "ok"
