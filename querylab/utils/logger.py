"""Logging utilities for QueryLab."""

import logging
import re
import sys
from pathlib import Path
from typing import Iterable, Optional, Pattern, Union

from ..config import settings

DEFAULT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

MASK = "***MASKED***"

# Credentials that can end up in SDK error text: OpenAI/Azure keys, bearer
# headers, and GCP service-account key material
SENSITIVE_PATTERNS = tuple(
    re.compile(pattern, re.IGNORECASE)
    for pattern in (
        r'(api[_-]?key["\s:=]+)([a-zA-Z0-9_\-]+)',
        r'(password["\s:=]+)([^\s"]+)',
        r'(bearer\s+)([a-zA-Z0-9_\-\.]+)',
        r'(authorization["\s:=]+)([^\s"]+)',
        r'(sk-)([a-zA-Z0-9_\-]{8,})',
        r'("private_key(?:_id)?"\s*:\s*")([^"]+)',
    )
)


def setup_logger(
    name: str,
    level: Optional[str] = None,
    log_file: Optional[str] = None,
) -> logging.Logger:
    """Set up a logger with console and optional file handlers.

    Args:
        name: Logger name (usually __name__)
        level: Log level (defaults to logging.level)
        log_file: Optional path to log file (defaults to logging.log_file)

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(name)
    level = level or settings.get("logging.level", "INFO")
    logger.setLevel(getattr(logging, str(level).upper(), logging.INFO))

    # Re-running setup (e.g. after settings.reload()) must not stack handlers
    logger.handlers.clear()

    formatter = logging.Formatter(settings.get("logging.format", DEFAULT_FORMAT))

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    log_file = log_file or settings.get("logging.log_file")
    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_path)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    logger.propagate = False
    return logger


def mask_sensitive_data(
    text: str,
    patterns: Optional[Iterable[Union[str, Pattern]]] = None,
) -> str:
    """Mask credentials in text before it is logged.

    Args:
        text: Text potentially containing sensitive data
        patterns: Regexes whose first group is kept and second group masked
            (defaults to SENSITIVE_PATTERNS)

    Returns:
        Text with sensitive values replaced by ``***MASKED***``
    """
    if not settings.get("logging.sensitive_data_masking", True):
        return text

    for pattern in patterns or SENSITIVE_PATTERNS:
        if isinstance(pattern, str):
            pattern = re.compile(pattern, re.IGNORECASE)
        text = pattern.sub(rf"\1{MASK}", text)
    return text


# Global logger instance for the package
logger = setup_logger("querylab")
