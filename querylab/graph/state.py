"""LangGraph state model for the question-to-answer pipeline."""

from typing import Any, Dict, List, Optional
from pydantic import BaseModel, ConfigDict, Field


class PipelineState(BaseModel):
    """State passed between the pipeline nodes.

    Components are not part of the state; nodes look them up in the
    registry by ``run_id``.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    # ===== Input =====
    question: str
    """The user's natural-language question."""

    run_id: str
    """Registry key for this invocation's components."""

    session_id: Optional[str] = None
    """Conversation session (None for one-off questions)."""

    execute: bool = True
    """Whether to run the generated SQL."""

    # ===== Conversation =====
    conversation: Optional[Dict[str, Any]] = None
    """Session context loaded before the question was recorded."""

    # ===== Generation =====
    generation: Optional[Dict[str, Any]] = None
    """Serialized GenerationResult."""

    # ===== Execution =====
    execution: Optional[Dict[str, Any]] = None
    """ExecutionResult.to_dict() payload."""

    # ===== Error Handling =====
    error: Optional[str] = None
    """Error message when a stage failed."""

    error_type: Optional[str] = None
    """Exception class name of the failure."""

    invalid_columns: List[str] = Field(default_factory=list)
    """Columns rejected by validation, if that is why generation failed."""
