"""Retry logic with exponential backoff for external calls."""

import random
import time
from typing import Callable, Optional, Tuple, Type, Union
from ..config import settings
from .logger import setup_logger
from .exceptions import RecoverableError, FatalError

logger = setup_logger(__name__)

DEFAULT_JITTER = 0.2


class RetryConfig:
    """Configuration for retry behavior."""

    def __init__(
        self,
        max_attempts: int = 3,
        base_delay: float = 1.0,
        max_delay: float = 8.0,
        multiplier: float = 2.0,
        jitter: Union[bool, float] = DEFAULT_JITTER,
        retryable_exceptions: Tuple[Type[Exception], ...] = (RecoverableError,),
        fatal_exceptions: Tuple[Type[Exception], ...] = (FatalError,),
    ):
        """Initialize retry configuration.

        Args:
            max_attempts: Maximum number of attempts
            base_delay: Initial delay in seconds
            max_delay: Maximum delay in seconds
            multiplier: Multiplier for exponential backoff
            jitter: Fraction of the delay used as uniform +/- jitter
                (True means the default 20%, False disables jitter)
            retryable_exceptions: Exceptions that should trigger retry
            fatal_exceptions: Exceptions that should not be retried
        """
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.multiplier = multiplier
        if isinstance(jitter, bool):
            jitter = DEFAULT_JITTER if jitter else 0.0
        self.jitter = max(0.0, float(jitter))
        self.retryable_exceptions = retryable_exceptions
        self.fatal_exceptions = fatal_exceptions

    @classmethod
    def from_settings(cls, section: str = "llm.retry") -> 'RetryConfig':
        """Create retry config from settings.

        Args:
            section: Configuration section path

        Returns:
            RetryConfig instance
        """
        max_attempts = settings.get(f"{section}.max_attempts", 3)
        base_delay = settings.get(f"{section}.base_delay", 1.0)
        max_delay = settings.get(f"{section}.max_delay", 8.0)
        multiplier = settings.get(f"{section}.multiplier", 2.0)
        jitter = settings.get(f"{section}.jitter", DEFAULT_JITTER)

        # Convert to proper types (in case YAML loads them as strings)
        try:
            max_attempts = int(max_attempts)
            base_delay = float(base_delay)
            max_delay = float(max_delay)
            multiplier = float(multiplier)
            if not isinstance(jitter, bool):
                jitter = float(jitter)
        except (ValueError, TypeError) as e:
            logger.warning(f"Failed to convert retry config values: {e}. Using defaults.")
            max_attempts = 3
            base_delay = 1.0
            max_delay = 8.0
            multiplier = 2.0
            jitter = DEFAULT_JITTER

        return cls(
            max_attempts=max_attempts,
            base_delay=base_delay,
            max_delay=max_delay,
            multiplier=multiplier,
            jitter=jitter,
        )

    def envelope(self, attempt: int) -> float:
        """Un-jittered delay for the given attempt number (0-indexed)."""
        return min(
            self.base_delay * (self.multiplier ** attempt),
            self.max_delay,
        )

    def calculate_delay(
        self,
        attempt: int,
        rng: Optional[Callable[[float, float], float]] = None,
    ) -> float:
        """Calculate delay for the given attempt number.

        Args:
            attempt: Current attempt number (0-indexed)
            rng: Uniform random source (defaults to random.uniform)

        Returns:
            Delay in seconds, within +/- jitter of the envelope
        """
        delay = self.envelope(attempt)

        if self.jitter:
            uniform = rng or random.uniform
            jitter_range = delay * self.jitter
            delay += uniform(-jitter_range, jitter_range)
            delay = max(0.0, delay)

        return delay


class RetryContext:
    """Context manager-like helper for manual retry loops."""

    def __init__(
        self,
        config: Optional[RetryConfig] = None,
        operation_name: str = "operation",
        sleep: Callable[[float], None] = time.sleep,
    ):
        """Initialize retry context.

        Args:
            config: Retry configuration
            operation_name: Name of operation for logging
            sleep: Sleep function (injectable for tests)
        """
        if config is None:
            self.config = RetryConfig.from_settings()
        elif isinstance(config, RetryConfig):
            self.config = config
        else:
            logger.warning(
                f"Invalid retry config type: {type(config)}. Using default configuration."
            )
            self.config = RetryConfig.from_settings()

        self.operation_name = operation_name
        self.sleep = sleep
        self.attempt = 0
        self.last_exception: Optional[Exception] = None

    def should_retry(self, exception: Exception) -> bool:
        """Check if operation should be retried.

        Args:
            exception: The exception that occurred

        Returns:
            True if should retry, False otherwise
        """
        self.last_exception = exception

        if isinstance(exception, self.config.fatal_exceptions):
            logger.error(
                f"Fatal error in {self.operation_name}: {str(exception)}"
            )
            return False

        if self.attempt >= self.config.max_attempts:
            logger.error(
                f"Max attempts ({self.config.max_attempts}) reached "
                f"for {self.operation_name}"
            )
            return False

        if isinstance(exception, self.config.retryable_exceptions):
            return True

        logger.error(
            f"Non-retryable error in {self.operation_name}: "
            f"{type(exception).__name__}: {str(exception)}"
        )
        return False

    def wait(self) -> float:
        """Wait before next retry attempt and return the delay used."""
        delay = self.config.calculate_delay(self.attempt - 1 if self.attempt else 0)
        remaining = self.config.max_attempts - self.attempt
        logger.warning(
            f"Attempt {self.attempt}/{self.config.max_attempts} failed "
            f"for {self.operation_name}. "
            f"Retrying in {delay:.2f}s... ({remaining} attempts remaining)"
        )
        self.sleep(delay)
        return delay

    def increment_attempt(self) -> None:
        """Increment attempt counter."""
        self.attempt += 1
