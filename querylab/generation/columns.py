"""Column allow-list validation and static auto-fix for generated SQL."""

import re
from typing import Dict, FrozenSet, List, Optional, Tuple

from ..database.columns import VALID_COLUMNS, all_valid_columns
from ..utils import InvalidColumnsError, setup_logger

logger = setup_logger(__name__)

# Aliased column references: p.rev, u.product
_ALIASED_COLUMN_RE = re.compile(r"\b[pu]\.(\w+)")

SQL_KEYWORDS = frozenset({
    "SELECT", "FROM", "WHERE", "GROUP", "ORDER", "BY", "AS", "ON",
    "JOIN", "LEFT", "RIGHT", "INNER", "OUTER", "AND", "OR", "IN",
    "HAVING", "LIMIT", "OFFSET", "WITH", "CASE", "WHEN", "THEN", "ELSE", "END",
    "SUM", "COUNT", "AVG", "MAX", "MIN", "ROUND", "CAST", "DISTINCT",
})

# Aggregates the model tends to reference as if they were columns
AGGREGATE_PRE_FIXES: Tuple[Tuple[str, str], ...] = (
    (r"\bp\.total_revenue\b", "SUM(p.rev) as total_revenue"),
    (r"\bp\.total_profit\b", "SUM(p.profit) as total_profit"),
    (r"\bp\.total_impressions\b", "SUM(p.req) as total_impressions"),
    (r"\bp\.total_requests\b", "SUM(p.req) as total_requests"),
    (r"\bp\.total_paid\b", "SUM(p.paid) as total_paid"),
    (r"\bp\.revenue\b", "p.rev"),
    (r"\bp\.impressions\b", "p.req"),
    (r"\bp\.requests\b", "p.req"),
)

COLUMN_RENAMES: Dict[str, str] = {
    "revenue": "rev",
    "impressions": "req",
    "requests": "req",
    "mname": "medianame",
    "pname": "pubname",
    "zname": "zonename",
    "mtype": "product",
    "media_name": "medianame",
    "pub_name": "pubname",
    "zone_name": "zonename",
}

SUGGESTIONS: Dict[str, str] = {
    "mname": 'Did you mean "medianame"?',
    "pname": 'Did you mean "pubname"?',
    "zname": 'Did you mean "zonename"?',
    "mtype": 'Did you mean "product" from updated_product_name table?',
    "quarter": 'Column "quarter" does not exist. Calculate it: CEIL(month / 3)',
    "team": 'Column "team" does not exist. Filter by pic IN (...) using the team mapping',
}
DEFAULT_SUGGESTION = "Check the VALID COLUMN NAMES section in the schema"


class ColumnValidator:
    """Checks generated SQL against the two-table column allow-list."""

    def __init__(
        self,
        valid_columns: Optional[FrozenSet[str]] = None,
        renames: Optional[Dict[str, str]] = None,
    ):
        self.valid_columns = valid_columns if valid_columns is not None else all_valid_columns()
        self.renames = renames if renames is not None else COLUMN_RENAMES

    @staticmethod
    def extract_columns(sql: str) -> List[str]:
        """Distinct ``p.``/``u.`` column references in order of appearance."""
        seen: List[str] = []
        for column in _ALIASED_COLUMN_RE.findall(sql):
            if column.upper() in SQL_KEYWORDS or column in seen:
                continue
            seen.append(column)
        return seen

    def validate(self, sql: str) -> List[str]:
        """Return the invalid column references, sorted.

        Output aliases are not exempt: ``p.quarter`` is invalid even when the
        query also selects ``... AS quarter``.
        """
        return sorted(set(self.extract_columns(sql)) - self.valid_columns)

    def auto_fix(self, sql: str) -> Tuple[str, List[str]]:
        """Apply the aggregate pre-fixes, then the known renames.

        Returns:
            Tuple of (fixed SQL, human-readable list of applied fixes)
        """
        fixes: List[str] = []

        for pattern, replacement in AGGREGATE_PRE_FIXES:
            if re.search(pattern, sql, flags=re.IGNORECASE):
                sql = re.sub(pattern, replacement, sql, flags=re.IGNORECASE)
                fixes.append(f"{pattern} → {replacement}")
                logger.info(f"Pre-fix: {pattern} → {replacement}")

        for column in self.validate(sql):
            fix = self.renames.get(column.lower())
            if not fix:
                continue
            sql = re.sub(rf"\b([pu])\.{re.escape(column)}\b", rf"\1.{fix}", sql)
            fixes.append(f"{column} → {fix}")
            logger.info(f"Fixed column: {column} → {fix}")

        return sql, fixes

    def suggestions_for(self, columns: List[str]) -> Dict[str, str]:
        return {column: SUGGESTIONS.get(column.lower(), DEFAULT_SUGGESTION) for column in columns}

    def enforce(self, sql: str) -> Tuple[str, List[str]]:
        """Auto-fix and re-validate.

        Returns:
            Tuple of (fixed SQL, applied fixes)

        Raises:
            InvalidColumnsError: Naming exactly the columns still invalid
        """
        fixed, fixes = self.auto_fix(sql)
        invalid = self.validate(fixed)
        if not invalid:
            return fixed, fixes

        suggestions = self.suggestions_for(invalid)
        message = (
            f"Invalid column names detected: {', '.join(invalid)}. "
            f"{' '.join(suggestions.values())}\n"
            f"Valid columns are: {', '.join(VALID_COLUMNS['pub_data'])} (pub_data) and "
            f"{', '.join(VALID_COLUMNS['updated_product_name'])} (updated_product_name)"
        )
        logger.warning(f"Column validation failed: {', '.join(invalid)}")
        raise InvalidColumnsError(invalid, suggestions=suggestions, message=message)
