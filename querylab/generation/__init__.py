"""SQL generation: tiered strategy and column post-processing."""

from .columns import ColumnValidator, COLUMN_RENAMES, AGGREGATE_PRE_FIXES
from .orchestrator import SqlGenerator, GenerationResult, PlanResult

__all__ = [
    "ColumnValidator",
    "COLUMN_RENAMES",
    "AGGREGATE_PRE_FIXES",
    "SqlGenerator",
    "GenerationResult",
    "PlanResult",
]
