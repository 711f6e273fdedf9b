"""Custom exceptions for QueryLab."""

from typing import Dict, Iterable, Optional


class QueryLabError(Exception):
    """Base exception for all QueryLab errors."""
    pass


class ConfigurationError(QueryLabError):
    """Raised when configuration is invalid or missing."""
    pass


class MetadataError(QueryLabError):
    """Raised when the knowledge base cannot be read or written."""
    pass


class ConversationError(QueryLabError):
    """Raised when there's an error with conversation memory."""
    pass


class LLMError(QueryLabError):
    """Base exception for completion service errors."""
    pass


class RecoverableError(LLMError):
    """Raised when an error is recoverable through retry."""
    pass


class FatalError(LLMError):
    """Raised when an error is not recoverable (e.g., authentication failure)."""
    pass


class RetryExhaustedError(LLMError):
    """Raised when all retry attempts have been exhausted."""
    pass


class ResponseSchemaError(LLMError):
    """Raised when a completion is not valid JSON or misses required keys."""

    def __init__(self, message: str, raw: Optional[str] = None):
        """Initialize schema error.

        Args:
            message: Validation error description
            raw: Raw completion content that failed validation
        """
        super().__init__(message)
        self.raw = raw


class RefinementError(LLMError):
    """Raised when the follow-up refinement path fails."""
    pass


class GenerationError(QueryLabError):
    """Raised when SQL generation fails."""
    pass


class ValidationError(QueryLabError):
    """Raised when generated SQL fails local validation."""
    pass


class InvalidColumnsError(ValidationError):
    """Raised when SQL references columns outside the allow-list."""

    def __init__(
        self,
        invalid_columns: Iterable[str],
        suggestions: Optional[Dict[str, str]] = None,
        message: Optional[str] = None,
    ):
        """Initialize invalid columns error.

        Args:
            invalid_columns: Column names that are not allowed
            suggestions: Optional mapping of column name to fix suggestion
            message: Optional full message (built from the columns if None)
        """
        self.invalid_columns = sorted(set(invalid_columns))
        self.suggestions = suggestions or {}
        super().__init__(
            message or f"Invalid columns: {', '.join(self.invalid_columns)}"
        )


class UnsafeQueryError(ValidationError):
    """Raised when a statement is not a read-only query."""

    def __init__(self, message: str, statement: Optional[str] = None):
        """Initialize unsafe query error.

        Args:
            message: Error message
            statement: The rejected statement keyword (e.g., 'DELETE')
        """
        super().__init__(message)
        self.statement = statement


class BigQueryError(QueryLabError):
    """Raised when there's an error with BigQuery operations."""
    pass


class LearningError(QueryLabError):
    """Raised when the learning store cannot be updated."""
    pass
