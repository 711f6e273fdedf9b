"""Read-only guard and result helpers for ad-hoc SQL."""

import re
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, List

from ..utils import UnsafeQueryError, setup_logger

logger = setup_logger(__name__)

READ_ONLY_PREFIXES = ("SELECT", "WITH")

FORBIDDEN_KEYWORDS = (
    "DROP",
    "DELETE",
    "INSERT",
    "UPDATE",
    "ALTER",
    "CREATE",
    "TRUNCATE",
    "GRANT",
    "REVOKE",
)

DEFAULT_ROW_LIMIT = 10000

METRIC_NAME_HINTS = ("rev", "req", "paid", "ecpm", "cpm", "rate", "total", "avg", "sum", "profit")

_LIMIT_RE = re.compile(r"\bLIMIT\s+\d+", re.IGNORECASE)


def check_read_only(sql: str) -> str:
    """Reject anything that is not a single read-only query.

    Keywords are matched as whole words, so identifiers such as
    ``updated_product_name`` are not mistaken for ``UPDATE``.

    Args:
        sql: SQL text

    Returns:
        The stripped SQL

    Raises:
        UnsafeQueryError: If the statement could modify data
    """
    if not sql or not isinstance(sql, str) or not sql.strip():
        raise UnsafeQueryError("SQL query is required and must be a string")

    stripped = sql.strip()
    upper = stripped.upper()

    if not upper.startswith(READ_ONLY_PREFIXES):
        raise UnsafeQueryError(
            "Only SELECT queries are allowed. No INSERT, UPDATE, DELETE, DROP, "
            "or other modification operations.",
            statement=upper.split(None, 1)[0],
        )

    for keyword in FORBIDDEN_KEYWORDS:
        if re.search(rf"\b{keyword}\b", upper):
            logger.warning(f"Rejected SQL containing {keyword}")
            raise UnsafeQueryError(
                f"Dangerous keyword detected: {keyword}. Only SELECT queries are allowed.",
                statement=keyword,
            )

    return stripped


def enforce_row_limit(sql: str, limit: int = DEFAULT_ROW_LIMIT) -> str:
    """Append ``LIMIT`` when the query has none."""
    if _LIMIT_RE.search(sql):
        return sql

    limited = sql.strip().rstrip(";").rstrip()
    logger.info(f"Added LIMIT {limit} to query")
    return f"{limited}\nLIMIT {limit}"


def _value_type(value: Any) -> str:
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, (int, float, Decimal)):
        return "number"
    if isinstance(value, (date, datetime)):
        return "date"
    return "string"


def infer_column_metadata(rows: List[Dict[str, Any]]) -> List[Dict[str, str]]:
    """Describe result columns from the first row.

    Numeric columns whose names look like measures (revenue, requests,
    rates, totals...) are labelled ``metric``; everything else is a
    ``dimension``.
    """
    if not rows:
        return []

    columns = []
    for name, sample in rows[0].items():
        value_type = _value_type(sample)
        lowered = name.lower()
        is_metric = value_type == "number" and any(hint in lowered for hint in METRIC_NAME_HINTS)
        columns.append({
            "name": name,
            "label": name.replace("_", " ").title(),
            "type": value_type,
            "category": "metric" if is_metric else "dimension",
        })
    return columns
