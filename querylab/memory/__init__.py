"""Conversation memory for follow-up questions.

This module provides functionality to:
- Store the messages of each session
- Detect whether a question follows up on the previous query
- Refine the previous SQL instead of regenerating it
"""

from .models import (
    MessageRole,
    QuestionType,
    ConversationMessage,
    ConversationContext,
    Classification,
    RefinementResult,
)
from .conversation import ConversationStore
from .classifier import QuestionClassifier, DEFAULT_RULES
from .refiner import SqlRefiner

__all__ = [
    # Models
    "MessageRole",
    "QuestionType",
    "ConversationMessage",
    "ConversationContext",
    "Classification",
    "RefinementResult",
    # Store
    "ConversationStore",
    # Classifier
    "QuestionClassifier",
    "DEFAULT_RULES",
    # Refiner
    "SqlRefiner",
]
