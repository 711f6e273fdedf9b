"""LLM interaction modules.

``CompletionClient`` talks to OpenAI or Azure OpenAI depending on the
``llm.provider`` setting. The SDK client is built on first use.
"""

from .client import (
    CompletionClient,
    StructuredOk,
    SchemaMismatch,
    parse_structured_output,
)
from .output_schemas import (
    GenerationOutput,
    RefinementOutput,
    AutoFixOutput,
    PlanOutput,
    ReasoningRefinementOutput,
)
from .prompts import PromptTemplates
from .usage import UsageRecord, UsageTracker

__all__ = [
    "CompletionClient",
    "StructuredOk",
    "SchemaMismatch",
    "parse_structured_output",
    "GenerationOutput",
    "RefinementOutput",
    "AutoFixOutput",
    "PlanOutput",
    "ReasoningRefinementOutput",
    "PromptTemplates",
    "UsageRecord",
    "UsageTracker",
]
