"""Utility modules for QueryLab."""

from .exceptions import *
from .logger import setup_logger, logger, mask_sensitive_data
from .retry import RetryConfig, RetryContext
from .background import BestEffortExecutor, best_effort
from .cache import CacheEntry, TTLCache

__all__ = [
    # Exceptions
    "QueryLabError",
    "ConfigurationError",
    "MetadataError",
    "ConversationError",
    "LLMError",
    "RecoverableError",
    "FatalError",
    "RetryExhaustedError",
    "ResponseSchemaError",
    "RefinementError",
    "GenerationError",
    "ValidationError",
    "InvalidColumnsError",
    "UnsafeQueryError",
    "BigQueryError",
    "LearningError",
    # Logger
    "setup_logger",
    "logger",
    "mask_sensitive_data",
    # Retry
    "RetryConfig",
    "RetryContext",
    # Background
    "BestEffortExecutor",
    "best_effort",
    # Cache
    "CacheEntry",
    "TTLCache",
]
