"""Token and cost accounting for completion calls."""

import threading
from typing import Any, Dict, Optional

from pydantic import BaseModel

from ..config import settings
from ..utils import setup_logger

logger = setup_logger(__name__)

# USD per 1M tokens
MODEL_PRICING: Dict[str, Dict[str, float]] = {
    "gpt-4-turbo": {"input": 10.00, "output": 30.00},
    "gpt-4o": {"input": 5.00, "output": 15.00},
    "gpt-4o-2024-08-06": {"input": 2.50, "output": 10.00},
    "gpt-4o-mini": {"input": 0.15, "output": 0.60},
    "gpt-4": {"input": 30.00, "output": 60.00},
    "gpt-3.5-turbo": {"input": 0.50, "output": 1.50},
}
DEFAULT_PRICING = {"input": 5.00, "output": 15.00}


class UsageRecord(BaseModel):
    """Tokens and cost of one completion call."""

    model: str
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0
    input_cost: float = 0.0
    output_cost: float = 0.0
    total_cost: float = 0.0
    execution_time_ms: Optional[float] = None


class UsageTracker:
    """Per-model running totals of completion usage."""

    def __init__(self, pricing: Optional[Dict[str, Dict[str, float]]] = None):
        self.pricing = dict(MODEL_PRICING)
        self.pricing.update(pricing if pricing is not None else settings.get("llm.pricing", {}) or {})
        self._totals: Dict[str, Dict[str, float]] = {}
        self._lock = threading.Lock()

    def cost(self, model: str, prompt_tokens: int, completion_tokens: int) -> Dict[str, float]:
        pricing = self.pricing.get(model, DEFAULT_PRICING)
        input_cost = prompt_tokens / 1_000_000 * pricing["input"]
        output_cost = completion_tokens / 1_000_000 * pricing["output"]
        return {
            "input_cost": round(input_cost, 6),
            "output_cost": round(output_cost, 6),
            "total_cost": round(input_cost + output_cost, 6),
        }

    def record(
        self,
        model: str,
        usage: Any,
        execution_time_ms: Optional[float] = None,
    ) -> Optional[UsageRecord]:
        """Log and accumulate the ``usage`` block of a completion response.

        Returns None when the response carried no usage.
        """
        if usage is None:
            return None

        prompt_tokens = int(getattr(usage, "prompt_tokens", 0) or 0)
        completion_tokens = int(getattr(usage, "completion_tokens", 0) or 0)
        total_tokens = int(getattr(usage, "total_tokens", 0) or prompt_tokens + completion_tokens)

        record = UsageRecord(
            model=model,
            prompt_tokens=prompt_tokens,
            completion_tokens=completion_tokens,
            total_tokens=total_tokens,
            execution_time_ms=execution_time_ms,
            **self.cost(model, prompt_tokens, completion_tokens),
        )

        with self._lock:
            totals = self._totals.setdefault(
                model, {"calls": 0, "prompt_tokens": 0, "completion_tokens": 0, "total_cost": 0.0}
            )
            totals["calls"] += 1
            totals["prompt_tokens"] += prompt_tokens
            totals["completion_tokens"] += completion_tokens
            totals["total_cost"] = round(totals["total_cost"] + record.total_cost, 6)

        logger.info(
            f"Usage [{model}]: {prompt_tokens} prompt + {completion_tokens} completion tokens, "
            f"${record.total_cost:.6f}"
        )
        return record

    def summary(self) -> Dict[str, Dict[str, float]]:
        """Totals per model since the tracker was created."""
        with self._lock:
            return {model: dict(totals) for model, totals in self._totals.items()}
