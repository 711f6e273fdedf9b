"""Text helpers shared by retrieval and classification."""

import re
from typing import FrozenSet, Set

VIETNAMESE_CHARS = "àáảãạăằắẳẵặâầấẩẫậèéẻẽẹêềếểễệìíỉĩịòóỏõọôồốổỗộơờớởỡợùúủũụưừứửữựỳýỷỹỵđ"

STOP_WORDS: FrozenSet[str] = frozenset({
    "the", "a", "an", "is", "are", "was", "were", "be", "been",
    "có", "là", "của", "và", "trong", "cho", "với", "được", "này", "đó",
    "show", "find", "get", "list", "display",
    "tìm", "hiển", "thị", "lấy",
})

_VIETNAMESE_RE = re.compile(f"[{VIETNAMESE_CHARS}]", re.IGNORECASE)
_JAPANESE_RE = re.compile(r"[\u3040-\u309F\u30A0-\u30FF\u4E00-\u9FAF]")
_INDONESIAN_RE = re.compile(
    r"\b(dan|yang|untuk|dengan|ini|itu|dari|pada|adalah|ke|di)\b", re.IGNORECASE
)
_NON_WORD_RE = re.compile(rf"[^\w\s{VIETNAMESE_CHARS}]")


def word_set(text: str) -> Set[str]:
    """Lowercased whitespace tokens longer than two characters."""
    return {word for word in text.lower().split() if len(word) > 2}


def word_overlap(first: str, second: str) -> float:
    """Jaccard similarity of the two texts' word sets (0.0 when either is empty)."""
    words1 = word_set(first)
    words2 = word_set(second)
    if not words1 or not words2:
        return 0.0
    return len(words1 & words2) / len(words1 | words2)


def keyword_tokens(text: str) -> Set[str]:
    """Punctuation-free tokens with stop words removed."""
    cleaned = _NON_WORD_RE.sub(" ", text.lower())
    return {
        word for word in cleaned.split()
        if len(word) > 2 and word not in STOP_WORDS
    }


def keyword_overlap(first: str, second: str) -> float:
    """Jaccard similarity over stop-word-filtered keyword tokens."""
    words1 = keyword_tokens(first)
    words2 = keyword_tokens(second)
    if not words1 or not words2:
        return 0.0
    return len(words1 & words2) / len(words1 | words2)


def detect_language(text: str) -> str:
    """Best-effort language tag: 'vi', 'jp', 'id' or 'en'."""
    if _VIETNAMESE_RE.search(text):
        return "vi"
    if _JAPANESE_RE.search(text):
        return "jp"
    if _INDONESIAN_RE.search(text):
        return "id"
    return "en"


def truncate(text: str, limit: int) -> str:
    """Cut text to ``limit`` characters, marking the cut with '...'."""
    if len(text) <= limit:
        return text
    return text[:limit] + "..."
