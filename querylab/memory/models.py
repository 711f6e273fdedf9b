"""Data models for conversation memory."""

import uuid
from enum import Enum
from typing import Any, Dict, List, Optional
from datetime import datetime, timezone
from pydantic import BaseModel, Field


class MessageRole(str, Enum):
    """Author of a conversation message."""

    USER = "user"
    ASSISTANT = "assistant"


class QuestionType(str, Enum):
    """Whether a question continues the previous query or starts a new one."""

    FOLLOW_UP = "follow_up"
    NEW_TOPIC = "new_topic"


class ConversationMessage(BaseModel):
    """One message of a session."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    session_id: str
    role: MessageRole
    content: str
    sql: Optional[str] = None
    results: Optional[List[Dict[str, Any]]] = None
    row_count: Optional[int] = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def has_sql(self) -> bool:
        return bool(self.sql and self.sql.strip())


class ConversationContext(BaseModel):
    """Recent messages of a session in chronological order."""

    session_id: str
    messages: List[ConversationMessage] = Field(default_factory=list)
    last_sql_message: Optional[ConversationMessage] = None
    has_context: bool = False

    @classmethod
    def empty(cls, session_id: str) -> "ConversationContext":
        return cls(session_id=session_id)

    @property
    def previous_question(self) -> str:
        """Content of the most recent user message ('' if none)."""
        for message in reversed(self.messages):
            if message.role == MessageRole.USER:
                return message.content
        return ""


class Classification(BaseModel):
    """Result of follow-up detection."""

    type: QuestionType
    confidence: float = Field(ge=0.0, le=1.0)
    reason: str


class RefinementResult(BaseModel):
    """SQL produced by refining the previous query."""

    sql: str
    changes: List[str] = Field(default_factory=list)
    model: str
