"""Knowledge base access and prompt context assembly."""

from .models import (
    Concept,
    ColumnInfo,
    JoinHint,
    TableMetadata,
    QueryPattern,
    BusinessRule,
    Example,
    ExtractedConcept,
    SchemaContext,
    KnowledgeContext,
)
from .store import MetadataStore
from .context import ContextBuilder

__all__ = [
    "Concept",
    "ColumnInfo",
    "JoinHint",
    "TableMetadata",
    "QueryPattern",
    "BusinessRule",
    "Example",
    "ExtractedConcept",
    "SchemaContext",
    "KnowledgeContext",
    "MetadataStore",
    "ContextBuilder",
]
