"""BigQuery error catalogue and classification.

Every known failure message maps to a pattern with a type, whether a retry can
help, whether a model can repair the SQL, plus causes, fixes and a hint that
are passed to the repair prompt.
"""

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Optional, Pattern, Tuple

from ..database.columns import COLUMN_NAME_FIXES, VALID_COLUMNS


class ErrorCategory(str, Enum):
    """How the execution engine treats a failure."""

    TRANSIENT = "transient"
    AUTO_FIXABLE = "auto_fixable"
    FATAL = "fatal"


@dataclass(frozen=True)
class BigQueryErrorPattern:
    """A known error message shape."""

    pattern: Pattern
    type: str
    retryable: bool
    auto_fixable: bool
    common_causes: Tuple[str, ...] = ()
    suggested_fixes: Tuple[str, ...] = ()
    ai_hint: str = ""


@dataclass(frozen=True)
class ErrorClassification:
    """Classification of one error message."""

    category: ErrorCategory
    error_type: str
    retryable: bool
    auto_fixable: bool
    pattern: Optional[BigQueryErrorPattern] = None
    extracted_column: Optional[str] = None
    extracted_info: Dict[str, str] = field(default_factory=dict)

    @property
    def suggested_replacement(self) -> Optional[str]:
        if not self.extracted_column:
            return None
        return COLUMN_NAME_FIXES.get(self.extracted_column.lower())


BIGQUERY_ERROR_PATTERNS: Tuple[BigQueryErrorPattern, ...] = (
    # Column errors
    BigQueryErrorPattern(
        pattern=re.compile(r"Unrecognized name: (\w+)", re.IGNORECASE),
        type="column",
        retryable=True,
        auto_fixable=True,
        common_causes=(
            "Column name typo",
            "Using alias before definition",
            "Column does not exist in table",
        ),
        suggested_fixes=(
            "Check valid columns: " + ", ".join(VALID_COLUMNS["pub_data"]),
            "Common typos: mname→medianame, pname→pubname, zname→zonename, revenue→rev",
        ),
        ai_hint="Extract the invalid column name from error and suggest the closest valid column",
    ),
    BigQueryErrorPattern(
        pattern=re.compile(r"Name (\w+) not found inside", re.IGNORECASE),
        type="column",
        retryable=True,
        auto_fixable=True,
        common_causes=(
            "Table alias used incorrectly",
            "Column referenced before JOIN",
        ),
        suggested_fixes=(
            "Verify table aliases (p for pub_data, u for updated_product_name)",
            "Ensure JOIN is correct before referencing columns",
        ),
        ai_hint="Check table alias usage and JOIN order",
    ),
    BigQueryErrorPattern(
        pattern=re.compile(r"Column (\w+) is ambiguous", re.IGNORECASE),
        type="column",
        retryable=True,
        auto_fixable=True,
        common_causes=(
            "Same column name in multiple tables",
            "Missing table alias prefix",
        ),
        suggested_fixes=(
            "Add table alias prefix (e.g., p.pid instead of pid)",
            "Use fully qualified column names",
        ),
        ai_hint="Add appropriate table alias to disambiguate",
    ),
    # Syntax errors
    BigQueryErrorPattern(
        pattern=re.compile(r"Syntax error: Expected", re.IGNORECASE),
        type="syntax",
        retryable=True,
        auto_fixable=True,
        common_causes=(
            "Missing keyword (FROM, WHERE, GROUP BY)",
            "Unmatched parentheses",
            "Invalid SQL structure",
        ),
        suggested_fixes=(
            "Check SQL structure: SELECT ... FROM ... WHERE ... GROUP BY ...",
            "Verify all parentheses are matched",
            "Check for missing commas between columns",
        ),
        ai_hint="Parse the expected token and fix the syntax",
    ),
    BigQueryErrorPattern(
        pattern=re.compile(r"Syntax error: Unexpected", re.IGNORECASE),
        type="syntax",
        retryable=True,
        auto_fixable=True,
        common_causes=(
            "Extra keyword or symbol",
            "Wrong keyword order",
            "Invalid character",
        ),
        suggested_fixes=(
            "Remove unexpected token",
            "Check keyword order: SELECT, FROM, JOIN, WHERE, GROUP BY, HAVING, ORDER BY, LIMIT",
        ),
        ai_hint="Identify and remove or relocate the unexpected token",
    ),
    BigQueryErrorPattern(
        pattern=re.compile(
            r"SELECT list expression references.*must appear in GROUP BY", re.IGNORECASE
        ),
        type="syntax",
        retryable=True,
        auto_fixable=True,
        common_causes=(
            "Non-aggregated column in SELECT with GROUP BY",
            "Missing column in GROUP BY clause",
        ),
        suggested_fixes=(
            "Add missing columns to GROUP BY",
            "OR wrap column in aggregate function (MAX, MIN, ANY_VALUE)",
        ),
        ai_hint="Either add the column to GROUP BY or use an aggregate function",
    ),
    # Table errors
    BigQueryErrorPattern(
        pattern=re.compile(r"Table.*was not found", re.IGNORECASE),
        type="table",
        retryable=False,
        auto_fixable=False,
        common_causes=(
            "Incorrect dataset or table name",
            "Table does not exist",
        ),
        suggested_fixes=(
            "Valid tables: gcpp-check.GI_publisher.pub_data, "
            "gcpp-check.GI_publisher.updated_product_name",
            "Check dataset name: gcpp-check.GI_publisher",
        ),
        ai_hint="Verify table name against known tables",
    ),
    BigQueryErrorPattern(
        pattern=re.compile(r"Dataset.*was not found", re.IGNORECASE),
        type="table",
        retryable=False,
        auto_fixable=False,
        common_causes=(
            "Incorrect dataset name",
            "Dataset does not exist",
        ),
        suggested_fixes=(
            "Use correct dataset: gcpp-check.GI_publisher",
            "Format: project.dataset.table",
        ),
        ai_hint="Dataset name is fixed, cannot be changed",
    ),
    # Permission errors
    BigQueryErrorPattern(
        pattern=re.compile(r"Access Denied", re.IGNORECASE),
        type="permission",
        retryable=False,
        auto_fixable=False,
        common_causes=(
            "Service account lacks permissions",
            "IAM policy issue",
        ),
        suggested_fixes=(
            "Contact administrator to check BigQuery permissions",
            "Verify service account roles",
        ),
        ai_hint="Cannot fix automatically - permission issue",
    ),
    # Timeout errors
    BigQueryErrorPattern(
        pattern=re.compile(r"Query exceeded resource limits", re.IGNORECASE),
        type="timeout",
        retryable=True,
        auto_fixable=True,
        common_causes=(
            "Query too complex",
            "Processing too much data",
            "Missing date filters",
        ),
        suggested_fixes=(
            "Add date range filter: WHERE date >= DATE_SUB(CURRENT_DATE(), INTERVAL 30 DAY)",
            "Add LIMIT clause",
            "Simplify aggregations",
        ),
        ai_hint="Simplify query or add date/limit constraints",
    ),
    BigQueryErrorPattern(
        pattern=re.compile(r"deadline exceeded", re.IGNORECASE),
        type="timeout",
        retryable=True,
        auto_fixable=True,
        common_causes=(
            "Query taking too long",
            "Network timeout",
        ),
        suggested_fixes=(
            "Add stricter date filters",
            "Reduce data scope",
            "Retry with simpler query",
        ),
        ai_hint="Reduce query scope and retry",
    ),
    BigQueryErrorPattern(
        pattern=re.compile(r"ETIMEDOUT|ECONNRESET|ENOTFOUND", re.IGNORECASE),
        type="timeout",
        retryable=True,
        auto_fixable=False,
        common_causes=(
            "Network connectivity issue",
            "BigQuery service temporarily unavailable",
        ),
        suggested_fixes=(
            "Wait and retry",
            "Check network connectivity",
        ),
        ai_hint="Transient network error - retry automatically",
    ),
    # Quota errors. Daily quota exhaustion does not recover within a request.
    BigQueryErrorPattern(
        pattern=re.compile(r"Quota exceeded", re.IGNORECASE),
        type="quota",
        retryable=False,
        auto_fixable=False,
        common_causes=(
            "Daily quota limit reached",
            "Concurrent query limit",
        ),
        suggested_fixes=(
            "Wait for quota reset",
            "Reduce query frequency",
        ),
        ai_hint="Quota error - wait for the quota to reset",
    ),
    BigQueryErrorPattern(
        pattern=re.compile(r"rateLimitExceeded", re.IGNORECASE),
        type="quota",
        retryable=True,
        auto_fixable=False,
        common_causes=(
            "Too many requests in short time",
        ),
        suggested_fixes=(
            "Wait 1-2 seconds and retry",
        ),
        ai_hint="Rate limit - retry with exponential backoff",
    ),
    # Semantic errors
    BigQueryErrorPattern(
        pattern=re.compile(r"No matching signature for function", re.IGNORECASE),
        type="semantic",
        retryable=True,
        auto_fixable=True,
        common_causes=(
            "Wrong data type for function",
            "Incorrect number of arguments",
        ),
        suggested_fixes=(
            "Check function signature and argument types",
            "Cast values if needed: CAST(x AS STRING)",
        ),
        ai_hint="Check function documentation and fix arguments",
    ),
    BigQueryErrorPattern(
        pattern=re.compile(r"Cannot (coerce|convert|cast)", re.IGNORECASE),
        type="semantic",
        retryable=True,
        auto_fixable=True,
        common_causes=(
            "Type mismatch in comparison or operation",
            "Invalid date format",
        ),
        suggested_fixes=(
            "Use explicit CAST() or SAFE_CAST()",
            'Check date formats: DATE("2024-01-01")',
        ),
        ai_hint="Add appropriate type casting",
    ),
    BigQueryErrorPattern(
        pattern=re.compile(r"Division by zero", re.IGNORECASE),
        type="semantic",
        retryable=True,
        auto_fixable=True,
        common_causes=(
            "Dividing by column that can be 0",
        ),
        suggested_fixes=(
            "Use SAFE_DIVIDE(a, b) instead of a/b",
            "Add NULLIF(b, 0) to prevent division by zero",
        ),
        ai_hint="Replace division with SAFE_DIVIDE",
    ),
)

TRANSIENT_PATTERNS: Tuple[Pattern, ...] = tuple(
    re.compile(p, re.IGNORECASE) for p in (
        r"ETIMEDOUT",
        r"ECONNRESET",
        r"ENOTFOUND",
        r"rateLimitExceeded",
        r"temporarily unavailable",
        r"service unavailable",
        r"internal error",
        r"backendError",
    )
)

# Patterns whose first group is a table name rather than a column
_NON_COLUMN_CAPTURES = ("Cannot (coerce|convert|cast)",)


def is_transient_error(message: str) -> bool:
    """True when the same SQL is worth retrying unchanged."""
    return any(p.search(message) for p in TRANSIENT_PATTERNS)


def match_error_pattern(message: str) -> Tuple[Optional[BigQueryErrorPattern], Dict[str, str]]:
    """First catalogue pattern matching ``message`` and its captured info."""
    for error_pattern in BIGQUERY_ERROR_PATTERNS:
        match = error_pattern.pattern.search(message)
        if match:
            info: Dict[str, str] = {}
            if match.groups() and match.group(1):
                if error_pattern.pattern.pattern in _NON_COLUMN_CAPTURES:
                    info["operation"] = match.group(1)
                else:
                    info["column"] = match.group(1)
            return error_pattern, info
    return None, {}


def classify_error(message: str) -> ErrorClassification:
    """Classify an execution error message.

    The transient list is consulted first. Otherwise unknown or non-retryable
    errors are fatal, repairable ones are auto-fixable, and the remaining
    retryable ones are transient.
    """
    message = message or ""
    error_pattern, info = match_error_pattern(message)

    error_type = error_pattern.type if error_pattern else "unknown"
    retryable = error_pattern.retryable if error_pattern else False
    auto_fixable = error_pattern.auto_fixable if error_pattern else False

    if is_transient_error(message):
        category = ErrorCategory.TRANSIENT
        retryable = True
    elif error_pattern is None or not error_pattern.retryable:
        category = ErrorCategory.FATAL
    elif error_pattern.auto_fixable:
        category = ErrorCategory.AUTO_FIXABLE
    else:
        category = ErrorCategory.TRANSIENT

    return ErrorClassification(
        category=category,
        error_type=error_type,
        retryable=retryable,
        auto_fixable=auto_fixable,
        pattern=error_pattern,
        extracted_column=info.get("column"),
        extracted_info=info,
    )


def get_fix_suggestion(message: str) -> str:
    """Human-readable causes and fixes for an error message."""
    classification = classify_error(message)
    pattern = classification.pattern

    if pattern is None:
        return "Unknown error. Please check the SQL syntax and column names."

    causes = "\n".join(f"- {c}" for c in pattern.common_causes)
    fixes = "\n".join(f"- {f}" for f in pattern.suggested_fixes)
    suggestion = f"Error type: {pattern.type}\n\nCommon causes:\n{causes}\n\nSuggested fixes:\n{fixes}"

    replacement = classification.suggested_replacement
    if replacement:
        suggestion += (
            f'\n\nSpecific fix: Replace "{classification.extracted_column}" with "{replacement}"'
        )

    return suggestion


def get_ai_error_context(message: str) -> str:
    """Error context block embedded in the repair prompt."""
    classification = classify_error(message)
    pattern = classification.pattern

    if pattern is None:
        return (
            "Unknown error occurred. Check:\n"
            "1. Column names are valid\n"
            "2. SQL syntax is correct\n"
            "3. Table names are correct\n"
            "4. Date formats are proper"
        )

    lines = [
        f"ERROR TYPE: {pattern.type}",
        f"RETRYABLE: {str(pattern.retryable).lower()}",
        f"AUTO-FIXABLE: {str(pattern.auto_fixable).lower()}",
        "",
        f"AI HINT: {pattern.ai_hint}",
    ]

    if classification.extracted_column:
        lines.append("")
        lines.append(f'INVALID COLUMN DETECTED: "{classification.extracted_column}"')
        if classification.suggested_replacement:
            lines.append(f'SUGGESTED REPLACEMENT: "{classification.suggested_replacement}"')

    lines.append("")
    lines.append("COMMON CAUSES:")
    lines.extend(f"- {c}" for c in pattern.common_causes)
    lines.append("")
    lines.append("SUGGESTED FIXES:")
    lines.extend(f"- {f}" for f in pattern.suggested_fixes)

    return "\n".join(lines)
