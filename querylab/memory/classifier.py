"""Rule-based follow-up detection.

Each rule is a pure function returning a Classification when it applies and
None otherwise. Rules run in order and the first match wins, so the cheap
lexical signals are consulted before the low-confidence default.
"""

import re
from typing import Callable, Optional, Tuple

from .models import Classification, ConversationContext, QuestionType
from ..config import settings
from ..utils import setup_logger
from ..utils.text import keyword_overlap

logger = setup_logger(__name__)

MODIFY_KEYWORDS_VI = (
    "thay", "đổi", "sửa", "chỉnh", "cập nhật", "update",
    "nhưng", "thêm", "bỏ", "xóa", "giữ", "lọc thêm",
    "chỉ lấy", "chỉ hiển thị", "bớt", "thay bằng",
)

MODIFY_KEYWORDS_EN = (
    "change", "modify", "update", "but", "however",
    "add", "remove", "delete", "keep", "filter",
    "only show", "instead", "replace", "switch",
    "adjust:", "show zone name", "add zone", "add column", "include zone",
)

REFERENCE_WORDS_VI = (
    "cái đó", "nó", "kết quả", "data", "bảng", "query",
    "ở trên", "vừa rồi", "như trên", "cái này",
)

REFERENCE_WORDS_EN = (
    "that", "it", "result", "data", "table", "query",
    "above", "previous", "this", "same",
)

TIME_PATTERNS = (
    re.compile(r"tháng\s*\d+", re.IGNORECASE),
    re.compile(r"\d{4}"),
    re.compile(r"q[1-4]", re.IGNORECASE),
    re.compile(r"quarter", re.IGNORECASE),
    re.compile(
        r"january|february|march|april|may|june|july|august|september|october|november|december",
        re.IGNORECASE,
    ),
    re.compile(r"jan|feb|mar|apr|jun|jul|aug|sep|oct|nov|dec", re.IGNORECASE),
)

SHORT_QUESTION = 100
VERY_SHORT_QUESTION = 50

Rule = Callable[[str, ConversationContext, float], Optional[Classification]]


def _contains_any(text: str, words) -> bool:
    text = text.lower()
    return any(word.lower() in text for word in words)


def no_context(question: str, context: ConversationContext, threshold: float) -> Optional[Classification]:
    if not context.has_context or context.last_sql_message is None:
        return Classification(
            type=QuestionType.NEW_TOPIC,
            confidence=1.0,
            reason="No previous context in session",
        )
    return None


def modification_keyword(question: str, context: ConversationContext, threshold: float) -> Optional[Classification]:
    if _contains_any(question, MODIFY_KEYWORDS_VI + MODIFY_KEYWORDS_EN):
        return Classification(
            type=QuestionType.FOLLOW_UP,
            confidence=0.9,
            reason="Contains modification keywords",
        )
    return None


def reference_word(question: str, context: ConversationContext, threshold: float) -> Optional[Classification]:
    if _contains_any(question, REFERENCE_WORDS_VI + REFERENCE_WORDS_EN):
        return Classification(
            type=QuestionType.FOLLOW_UP,
            confidence=0.85,
            reason="Contains reference to previous context",
        )
    return None


def short_with_time(question: str, context: ConversationContext, threshold: float) -> Optional[Classification]:
    if len(question) < SHORT_QUESTION and any(p.search(question) for p in TIME_PATTERNS):
        return Classification(
            type=QuestionType.FOLLOW_UP,
            confidence=0.8,
            reason="Short question with time modification pattern",
        )
    return None


def very_short(question: str, context: ConversationContext, threshold: float) -> Optional[Classification]:
    if len(question) < VERY_SHORT_QUESTION:
        return Classification(
            type=QuestionType.FOLLOW_UP,
            confidence=0.7,
            reason="Very short question, likely refers to previous context",
        )
    return None


def keyword_overlap_with_previous(
    question: str, context: ConversationContext, threshold: float
) -> Optional[Classification]:
    if keyword_overlap(question, context.previous_question) > threshold:
        return Classification(
            type=QuestionType.FOLLOW_UP,
            confidence=0.75,
            reason="Has keyword overlap with previous question",
        )
    return None


def default_new_topic(question: str, context: ConversationContext, threshold: float) -> Optional[Classification]:
    return Classification(
        type=QuestionType.NEW_TOPIC,
        confidence=0.6,
        reason="No clear follow-up indicators detected",
    )


DEFAULT_RULES: Tuple[Rule, ...] = (
    no_context,
    modification_keyword,
    reference_word,
    short_with_time,
    very_short,
    keyword_overlap_with_previous,
    default_new_topic,
)


class QuestionClassifier:
    """Classifies a question as a follow-up or a new topic."""

    def __init__(
        self,
        rules: Tuple[Rule, ...] = DEFAULT_RULES,
        overlap_threshold: Optional[float] = None,
    ):
        self.rules = rules
        self.overlap_threshold = (
            overlap_threshold if overlap_threshold is not None
            else float(settings.get("conversation.overlap_threshold", 0.0))
        )

    def classify(self, question: str, context: ConversationContext) -> Classification:
        """Run the rules in order and return the first match."""
        for rule in self.rules:
            result = rule(question, context, self.overlap_threshold)
            if result is not None:
                logger.info(
                    f"Question type: {result.type.value} "
                    f"(confidence: {result.confidence}, reason: {result.reason})"
                )
                return result

        return default_new_topic(question, context, self.overlap_threshold)
