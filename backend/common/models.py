from datetime import datetime

from sqlalchemy import Column, String, DateTime, Index
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.ext.declarative import declarative_base

Base = declarative_base()


class EventLog(Base):
    __tablename__ = "event_log"

    id = Column(String, primary_key=True)
    request_id = Column(String, nullable=False)
    conversation_id = Column(String, nullable=False)
    event_type = Column(String, nullable=False)
    action_kind = Column(String, nullable=True)
    action_id = Column(String, nullable=True)
    payload_json = Column(JSONB, nullable=False, server_default='{}')
    created_at = Column(DateTime(timezone=True), nullable=False, default=datetime.utcnow)

    __table_args__ = (
        Index("idx_event_log_request", "request_id"),
        Index("idx_event_log_conversation_created", "conversation_id", created_at.desc()),
    )
