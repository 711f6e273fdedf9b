"""Database interaction modules."""

from .bigquery_client import BigQueryClient
from .columns import VALID_COLUMNS, TABLE_ALIASES, COLUMN_NAME_FIXES, all_valid_columns
from .safety import check_read_only, enforce_row_limit, infer_column_metadata

__all__ = [
    "BigQueryClient",
    "VALID_COLUMNS",
    "TABLE_ALIASES",
    "COLUMN_NAME_FIXES",
    "all_valid_columns",
    "check_read_only",
    "enforce_row_limit",
    "infer_column_metadata",
]
