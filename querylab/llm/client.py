"""OpenAI / Azure OpenAI completion client with retry logic and structured output."""

import json
import threading
import time
from typing import Any, Callable, Dict, List, Optional, Type, TypeVar, Union
from openai import (
    APIConnectionError,
    APIError,
    APITimeoutError,
    AzureOpenAI,
    OpenAI,
    RateLimitError,
)
from pydantic import BaseModel, ValidationError as PydanticValidationError

from ..config import settings
from .usage import UsageTracker
from ..utils import (
    setup_logger,
    mask_sensitive_data,
    RetryConfig,
    RetryContext,
    ConfigurationError,
    RecoverableError,
    FatalError,
    RetryExhaustedError,
    ResponseSchemaError,
)

logger = setup_logger(__name__)

T = TypeVar("T", bound=BaseModel)


class StructuredOk(BaseModel):
    """A completion that matched its schema."""

    value: Any


class SchemaMismatch(BaseModel):
    """A completion that was not valid JSON or did not match its schema."""

    error: str
    raw: Optional[str] = None


StructuredResult = Union[StructuredOk, SchemaMismatch]


def parse_structured_output(content: Optional[str], schema: Type[T]) -> StructuredResult:
    """Parse completion content as JSON and validate it against ``schema``.

    Args:
        content: Raw completion content
        schema: Pydantic model the JSON must satisfy

    Returns:
        StructuredOk with the validated model, or SchemaMismatch
    """
    if not content or not content.strip():
        return SchemaMismatch(error="Empty completion", raw=content)

    try:
        data = json.loads(content)
    except json.JSONDecodeError as e:
        return SchemaMismatch(error=f"Invalid JSON: {e}", raw=content)

    if not isinstance(data, dict):
        return SchemaMismatch(error="Expected a JSON object", raw=content)

    try:
        return StructuredOk(value=schema.model_validate(data))
    except PydanticValidationError as e:
        return SchemaMismatch(error=str(e), raw=content)


class CompletionClient:
    """Chat completion client with built-in retry logic."""

    def __init__(
        self,
        retry_config: Optional[RetryConfig] = None,
        client: Optional[Any] = None,
        sleep: Callable[[float], None] = time.sleep,
        usage_tracker: Optional[UsageTracker] = None,
    ):
        """Initialize the completion client.

        Args:
            retry_config: Retry configuration (uses llm.retry settings if None)
            client: Pre-built SDK client (built lazily from settings if None)
            sleep: Sleep function used between retries
            usage_tracker: Token and cost accounting (a new tracker if None)
        """
        llm_config = settings.llm
        self.provider = llm_config.get("provider", "openai")
        self.models: Dict[str, str] = llm_config.get("models", {}) or {}
        self.temperatures: Dict[str, float] = llm_config.get("temperatures", {}) or {}
        self.max_tokens = int(llm_config.get("max_tokens", 4000))
        self.timeout = float(llm_config.get("timeout", 60))

        self.retry_config = retry_config or RetryConfig.from_settings("llm.retry")
        self.sleep = sleep
        self.usage = usage_tracker or UsageTracker()

        self._client = client
        self._client_lock = threading.Lock()

    @property
    def client(self) -> Any:
        """SDK client, built on first use."""
        if self._client is None:
            with self._client_lock:
                if self._client is None:
                    self._client = self._build_client()
        return self._client

    def _build_client(self) -> Any:
        if self.provider == "azure":
            api_key = settings.require("llm.api_key", "AZURE_OPENAI_API_KEY")
            endpoint = settings.require("llm.azure.endpoint", "AZURE_OPENAI_ENDPOINT")
            client = AzureOpenAI(
                api_key=api_key,
                api_version=settings.get("llm.azure.api_version", "2024-06-01"),
                azure_endpoint=endpoint,
                timeout=self.timeout,
                max_retries=0,
            )
        elif self.provider == "openai":
            api_key = settings.require("llm.api_key", "OPENAI_API_KEY")
            client = OpenAI(api_key=api_key, timeout=self.timeout, max_retries=0)
        else:
            raise ConfigurationError(
                f"Unknown LLM provider: {self.provider}. Use 'openai' or 'azure'."
            )

        logger.info(f"Initialized {self.provider} completion client")
        return client

    def model_for(self, tier: str) -> str:
        """Model name configured for a tier ('generation', 'refinement', 'autofix')."""
        defaults = {
            "generation": "gpt-4o",
            "refinement": "gpt-4.1-mini",
            "autofix": "gpt-4o-mini",
        }
        return self.models.get(tier) or defaults.get(tier, "gpt-4o")

    def temperature_for(self, tier: str) -> float:
        return float(self.temperatures.get(tier, 0.1))

    def chat_completion(
        self,
        messages: List[Dict[str, str]],
        model: Optional[str] = None,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        json_mode: bool = False,
        **kwargs,
    ) -> str:
        """Make a chat completion request with retry logic.

        Args:
            messages: List of message dictionaries with 'role' and 'content'
            model: Model or deployment name (generation tier if None)
            temperature: Sampling temperature
            max_tokens: Override default max tokens
            json_mode: Request a JSON object response
            **kwargs: Additional arguments for the API call

        Returns:
            Assistant's response content

        Raises:
            RetryExhaustedError: If all retry attempts fail
            FatalError: If a non-retryable error occurs
            ConfigurationError: If credentials are not configured
        """
        model = model or self.model_for("generation")
        if json_mode:
            kwargs["response_format"] = {"type": "json_object"}

        retry_ctx = RetryContext(
            config=self.retry_config,
            operation_name=f"chat_completion[{model}]",
            sleep=self.sleep,
        )

        last_exception: Optional[Exception] = None

        while retry_ctx.attempt < retry_ctx.config.max_attempts:
            retry_ctx.increment_attempt()

            try:
                logger.info(
                    f"Completion call attempt {retry_ctx.attempt}/"
                    f"{retry_ctx.config.max_attempts} ({model})"
                )

                started = time.monotonic()
                response = self.client.chat.completions.create(
                    model=model,
                    messages=messages,
                    temperature=temperature if temperature is not None else 0.1,
                    max_tokens=max_tokens or self.max_tokens,
                    **kwargs,
                )

                content = response.choices[0].message.content or ""
                self.usage.record(
                    model,
                    getattr(response, "usage", None),
                    (time.monotonic() - started) * 1000,
                )
                logger.info("Completion call successful")
                return content

            except ConfigurationError:
                raise

            except (APITimeoutError, APIConnectionError, RateLimitError) as e:
                last_exception = RecoverableError(str(e))
                logger.warning(f"Recoverable error: {mask_sensitive_data(str(e))}")

                if retry_ctx.should_retry(last_exception):
                    retry_ctx.wait()
                else:
                    break

            except APIError as e:
                status_code = getattr(e, "status_code", None)
                if status_code and status_code >= 500:
                    last_exception = RecoverableError(str(e))
                    logger.warning(f"Server error (retryable): {mask_sensitive_data(str(e))}")

                    if retry_ctx.should_retry(last_exception):
                        retry_ctx.wait()
                    else:
                        break
                else:
                    error_msg = f"Completion API error (non-retryable): {str(e)}"
                    logger.error(mask_sensitive_data(error_msg))
                    raise FatalError(error_msg) from e

            except Exception as e:
                error_msg = f"Unexpected error in completion call: {str(e)}"
                logger.error(mask_sensitive_data(error_msg))
                raise FatalError(error_msg) from e

        error_msg = (
            f"Completion API unavailable after {retry_ctx.attempt} attempts. "
            f"Last error: {str(last_exception)}"
        )
        logger.error(mask_sensitive_data(error_msg))
        raise RetryExhaustedError(error_msg) from last_exception

    def complete_structured(
        self,
        system: str,
        user: str,
        schema: Type[T],
        model: Optional[str] = None,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ) -> T:
        """Request a JSON completion and validate it against ``schema``.

        Raises:
            ResponseSchemaError: If the completion does not match the schema
            RetryExhaustedError, FatalError: As for chat_completion
        """
        content = self.chat_completion(
            messages=[
                {"role": "system", "content": system},
                {"role": "user", "content": user},
            ],
            model=model,
            temperature=temperature,
            max_tokens=max_tokens,
            json_mode=True,
        )

        result = parse_structured_output(content, schema)
        if isinstance(result, SchemaMismatch):
            logger.warning(f"{schema.__name__} mismatch: {result.error[:200]}")
            raise ResponseSchemaError(
                f"Response did not match {schema.__name__}: {result.error}",
                raw=result.raw,
            )
        return result.value
