"""Data models for the knowledge base and assembled prompt context."""

import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field, model_validator

# Namespace for deterministic ids of curated records that ship without one
KNOWLEDGE_NAMESPACE = uuid.UUID("6f1f2a9e-3c55-4c1b-9a51-5e2d4b7c8a10")

TARGET_KINDS = ("column", "table", "entity", "expression")
FEEDBACK_TYPES = ("auto_success", "user_positive", "user_negative", "user_corrected")


def stable_id(*parts: Optional[str]) -> str:
    """Deterministic id derived from the identifying fields of a record."""
    return str(uuid.uuid5(KNOWLEDGE_NAMESPACE, "|".join(p or "" for p in parts)))


class Concept(BaseModel):
    """A multilingual business term mapped to a schema target."""

    id: str = ""
    term_vi: Optional[str] = None
    term_en: Optional[str] = None
    term_jp: Optional[str] = None
    term_id: Optional[str] = None
    maps_to_type: str
    maps_to_value: str
    maps_to_table: Optional[str] = None
    context: Optional[str] = None
    priority: int = 0
    usage_count: int = 0
    last_used_at: Optional[datetime] = None
    is_active: bool = True

    @model_validator(mode="after")
    def check_terms(self) -> "Concept":
        """Require at least one language term and derive an id when missing."""
        if not self.terms:
            raise ValueError("Concept needs at least one language term")
        if not self.id:
            self.id = stable_id(
                self.term_vi, self.term_en, self.maps_to_type, self.maps_to_value
            )
        return self

    @property
    def terms(self) -> List[str]:
        """Non-empty terms in language order (vi, en, jp, id)."""
        return [
            term for term in (self.term_vi, self.term_en, self.term_jp, self.term_id)
            if term
        ]


class ColumnInfo(BaseModel):
    """Column of a warehouse table."""

    name: str
    type: str = "STRING"
    description: Optional[str] = None
    is_key: bool = False


class JoinHint(BaseModel):
    """How a table joins to another table."""

    to_table: str
    join_type: str = "LEFT JOIN"
    on_condition: str


class TableMetadata(BaseModel):
    """Warehouse table description used for prompt construction."""

    name: str
    full_path: str
    description: str = ""
    table_type: str = "fact"
    columns: List[ColumnInfo] = Field(default_factory=list)
    join_hints: List[JoinHint] = Field(default_factory=list)
    is_active: bool = True

    def get_column(self, name: str) -> Optional[ColumnInfo]:
        """Find a column by name."""
        for column in self.columns:
            if column.name == name:
                return column
        return None


class QueryPattern(BaseModel):
    """Reusable query shape with a success/failure track record."""

    id: str = ""
    pattern_name: str
    pattern_category: str
    intent_keywords: List[str] = Field(default_factory=list)
    intent_description: str = ""
    sql_template: str = ""
    required_params: List[Dict[str, Any]] = Field(default_factory=list)
    example_questions: List[str] = Field(default_factory=list)
    success_count: int = 0
    failure_count: int = 0
    avg_execution_time_ms: Optional[float] = None
    is_active: bool = True

    @model_validator(mode="after")
    def default_id(self) -> "QueryPattern":
        if not self.id:
            self.id = stable_id("pattern", self.pattern_name)
        return self

    @property
    def total_uses(self) -> int:
        return self.success_count + self.failure_count

    @property
    def success_rate(self) -> float:
        """Calculate success rate."""
        if self.total_uses == 0:
            return 0.0
        return self.success_count / self.total_uses

    def record_usage(self, successful: bool, execution_time_ms: Optional[float] = None) -> None:
        """Record one execution outcome of this pattern."""
        if successful:
            self.success_count += 1
        else:
            self.failure_count += 1

        if execution_time_ms is not None:
            if self.avg_execution_time_ms is None:
                self.avg_execution_time_ms = float(execution_time_ms)
            else:
                n = self.total_uses
                self.avg_execution_time_ms += (execution_time_ms - self.avg_execution_time_ms) / n


class BusinessRule(BaseModel):
    """Domain rule with the entity kinds it applies to."""

    id: str = ""
    rule_name: str
    rule_type: str
    description: str = ""
    condition_sql: Optional[str] = None
    applies_to_entities: List[str] = Field(default_factory=list)
    priority: int = 0
    is_active: bool = True

    @model_validator(mode="after")
    def default_id(self) -> "BusinessRule":
        if not self.id:
            self.id = stable_id("rule", self.rule_name)
        return self


class Example(BaseModel):
    """A previously generated (question, SQL) pair."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    question: str
    sql: str
    question_language: str = "vi"
    tables_used: List[str] = Field(default_factory=list)
    concepts_used: List[str] = Field(default_factory=list)
    patterns_used: List[str] = Field(default_factory=list)
    result_row_count: Optional[int] = None
    execution_time_ms: Optional[float] = None
    feedback_type: str = "auto_success"
    session_id: Optional[str] = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


# ---------------------------------------------------------------------------
# Assembled context
# ---------------------------------------------------------------------------


class ExtractedConcept(BaseModel):
    """A concept found in a question."""

    concept: Concept
    matched_term: str
    original_text: str = ""
    confidence: float = Field(ge=0.0, le=1.0)


class ColumnRef(BaseModel):
    table: str
    column: str
    type: str
    description: Optional[str] = None


class JoinRef(BaseModel):
    from_table: str
    to_table: str
    join_type: str
    condition: str


class ExpressionRef(BaseModel):
    name: str
    expression: str
    description: Optional[str] = None


class SchemaContext(BaseModel):
    """Schema fragments reached from the detected concepts."""

    tables: List[TableMetadata] = Field(default_factory=list)
    columns: List[ColumnRef] = Field(default_factory=list)
    joins: List[JoinRef] = Field(default_factory=list)
    expressions: List[ExpressionRef] = Field(default_factory=list)

    @property
    def table_names(self) -> List[str]:
        return [table.name for table in self.tables]


class ScoredPattern(BaseModel):
    pattern: QueryPattern
    score: float


class ScoredExample(BaseModel):
    example: Example
    similarity: float


class KnowledgeContext(BaseModel):
    """Everything the generator knows about a question."""

    concepts: List[ExtractedConcept] = Field(default_factory=list)
    schema_context: SchemaContext = Field(default_factory=SchemaContext)
    patterns: List[ScoredPattern] = Field(default_factory=list)
    rules: List[BusinessRule] = Field(default_factory=list)
    examples: List[ScoredExample] = Field(default_factory=list)
    rendered_prompt: str = ""

    def summary(self) -> Dict[str, Any]:
        """Compact description for logs and responses."""
        return {
            "concepts": [c.matched_term for c in self.concepts],
            "tables": self.schema_context.table_names,
            "patterns": [p.pattern.pattern_name for p in self.patterns],
            "rules": [r.rule_name for r in self.rules],
            "examples": len(self.examples),
        }
