"""Pydantic schemas for structured LLM outputs."""

from typing import Any, Dict, List, Optional
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


def _require_sql(v: Optional[str]) -> str:
    if v is None or not str(v).strip():
        raise ValueError("sql must be a non-empty string")
    return str(v).strip()


class GenerationOutput(BaseModel):
    """Schema for full SQL generation output from LLM."""

    reasoning: Dict[str, Any] = Field(
        default_factory=dict,
        description="Step-by-step reasoning (understanding, breakdown, constraints, plan)"
    )
    understanding: Dict[str, Any] = Field(
        default_factory=dict,
        description="Summary of the question: entities, filters, time range, confidence"
    )
    sql: str = Field(description="The generated BigQuery SQL")
    warnings: List[str] = Field(
        default_factory=list,
        description="Caveats about the generated query"
    )

    @field_validator('sql', mode='before')
    @classmethod
    def validate_sql(cls, v):
        """Ensure SQL is present."""
        return _require_sql(v)

    @field_validator('reasoning', 'understanding', mode='before')
    @classmethod
    def coerce_mapping(cls, v):
        """Models occasionally answer with prose; keep it under a summary key."""
        if v is None:
            return {}
        if isinstance(v, str):
            return {"summary": v}
        return v

    @field_validator('warnings', mode='before')
    @classmethod
    def coerce_warnings(cls, v):
        if v is None:
            return []
        if isinstance(v, str):
            return [v]
        return v


class RefinementOutput(BaseModel):
    """Schema for follow-up SQL refinement output from LLM."""

    sql: str = Field(description="The modified SQL")
    changes: List[str] = Field(
        default_factory=list,
        description="Descriptions of the changes made"
    )

    @field_validator('sql', mode='before')
    @classmethod
    def validate_sql(cls, v):
        """Ensure SQL is present."""
        return _require_sql(v)

    @field_validator('changes', mode='before')
    @classmethod
    def coerce_changes(cls, v):
        if v is None:
            return []
        if isinstance(v, str):
            return [v]
        return v


class AutoFixOutput(BaseModel):
    """Schema for error analysis output: a fix or a clarifying question."""

    model_config = ConfigDict(populate_by_name=True)

    can_fix: bool = Field(alias="canFix", description="Whether the SQL could be fixed")
    fixed_sql: Optional[str] = Field(
        default=None,
        alias="fixedSql",
        description="Fixed SQL (only when can_fix is true)"
    )
    explanation: str = Field(
        default="",
        description="What was wrong and how it was fixed"
    )
    clarifying_question: Optional[str] = Field(
        default=None,
        alias="clarifyingQuestion",
        description="Question for the user (only when can_fix is false)"
    )

    @model_validator(mode='after')
    def check_fixed_sql(self) -> "AutoFixOutput":
        """A fix claim must come with the fixed SQL."""
        if self.can_fix and not (self.fixed_sql and self.fixed_sql.strip()):
            raise ValueError("fixedSql is required when canFix is true")
        return self


class PlanOutput(BaseModel):
    """Schema for a numbered query plan shown to the user before any SQL."""

    plan: str = Field(description="Markdown plan, numbered steps, in the user's language")
    confidence: float = Field(default=0.8, ge=0.0, le=1.0)

    @field_validator('plan', mode='before')
    @classmethod
    def validate_plan(cls, v):
        if v is None or not str(v).strip():
            raise ValueError("plan must be a non-empty string")
        return str(v).strip()

    @field_validator('confidence', mode='before')
    @classmethod
    def default_confidence(cls, v):
        # 0 and null both mean the model gave no estimate
        return v or 0.8


class ReasoningRefinementOutput(BaseModel):
    """Schema for reasoning revised after feedback on one step."""

    model_config = ConfigDict(populate_by_name=True)

    reasoning: Dict[str, Any] = Field(description="All four reasoning steps, revised")
    ai_response: str = Field(alias="aiResponse", description="Acknowledgement shown to the user")
    confidence: float = Field(default=0.7, ge=0.0, le=1.0)

    @field_validator('reasoning', mode='before')
    @classmethod
    def require_reasoning(cls, v):
        if not v or not isinstance(v, dict):
            raise ValueError("reasoning must be a non-empty object")
        return v

    @field_validator('ai_response', mode='before')
    @classmethod
    def require_response(cls, v):
        if v is None or not str(v).strip():
            raise ValueError("aiResponse must be a non-empty string")
        return str(v)

    @field_validator('confidence', mode='before')
    @classmethod
    def default_confidence(cls, v):
        return v or 0.7
