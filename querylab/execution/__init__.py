"""Execution of generated SQL with classification, retry and repair."""

from .errors import (
    ErrorCategory,
    BigQueryErrorPattern,
    ErrorClassification,
    BIGQUERY_ERROR_PATTERNS,
    classify_error,
    is_transient_error,
    match_error_pattern,
    get_fix_suggestion,
    get_ai_error_context,
)
from .fixer import SqlFixer, strip_code_fences
from .engine import AttemptRecord, ExecutionResult, ExecutionRetryEngine

__all__ = [
    "ErrorCategory",
    "BigQueryErrorPattern",
    "ErrorClassification",
    "BIGQUERY_ERROR_PATTERNS",
    "classify_error",
    "is_transient_error",
    "match_error_pattern",
    "get_fix_suggestion",
    "get_ai_error_context",
    "SqlFixer",
    "strip_code_fences",
    "AttemptRecord",
    "ExecutionResult",
    "ExecutionRetryEngine",
]
