"""Data models for feedback and learned corrections."""

import uuid
from enum import Enum
from typing import Optional
from datetime import datetime, timezone
from pydantic import BaseModel, Field


class FeedbackType(str, Enum):
    """Kinds of feedback on a generated query."""

    POSITIVE = "positive"
    NEGATIVE = "negative"
    ERROR = "error"


class RuleType(str, Enum):
    """Kinds of learned rules."""

    COLUMN_FIX = "column_fix"
    PATTERN_FIX = "pattern_fix"
    PROMPT_HINT = "prompt_hint"


class RuleSource(str, Enum):
    """Where a learned rule came from."""

    SEED = "seed"
    MANUAL = "manual"
    PROMOTED = "promoted"


class ExecutionStatus(str, Enum):
    """Final outcome of a query execution."""

    SUCCESS = "success"
    ERROR = "error"
    TIMEOUT = "timeout"


class FeedbackRecord(BaseModel):
    """One piece of feedback (append-only)."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    question: str
    sql: Optional[str] = None
    feedback_type: FeedbackType
    feedback_text: Optional[str] = None
    error_message: Optional[str] = None
    error_signature: Optional[str] = None
    user_id: Optional[str] = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class ErrorPattern(BaseModel):
    """A recurring failure, grouped by normalized signature."""

    signature: str
    error_type: str
    occurrences: int = 1
    example_message: str = ""
    example_question: Optional[str] = None
    example_sql: Optional[str] = None
    resolved: bool = False
    resolution_rule_id: Optional[str] = None
    first_seen: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    last_seen: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class LearnedRule(BaseModel):
    """A string substitution applied to generated SQL."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    rule_type: RuleType
    pattern: str
    correction: str
    description: Optional[str] = None
    occurrences: int = 0
    is_active: bool = True
    source: RuleSource = RuleSource.MANUAL
    promoted_from: Optional[str] = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    last_seen: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def is_substitution(self) -> bool:
        return self.rule_type in (RuleType.COLUMN_FIX, RuleType.PATTERN_FIX)

    def describe(self) -> str:
        return f"{self.pattern} → {self.correction}"


class ExecutionRecord(BaseModel):
    """Audit record of one query execution (append-only)."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    question: str = ""
    sql: str
    status: ExecutionStatus
    error_message: Optional[str] = None
    row_count: Optional[int] = None
    execution_time_ms: Optional[float] = None
    attempts: int = 1
    session_id: Optional[str] = None
    plan: Optional[str] = None
    user_id: Optional[str] = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
