"""Feedback learning: error patterns and learned SQL corrections."""

from .models import (
    FeedbackType,
    RuleType,
    RuleSource,
    ExecutionStatus,
    FeedbackRecord,
    ErrorPattern,
    LearnedRule,
    ExecutionRecord,
)
from .store import (
    LearningStore,
    apply_rules,
    detect_error_type,
    error_signature,
    extract_column,
    qualified_fix,
)

__all__ = [
    # Models
    "FeedbackType",
    "RuleType",
    "RuleSource",
    "ExecutionStatus",
    "FeedbackRecord",
    "ErrorPattern",
    "LearnedRule",
    "ExecutionRecord",
    # Store
    "LearningStore",
    "apply_rules",
    "detect_error_type",
    "error_signature",
    "extract_column",
    "qualified_fix",
]
