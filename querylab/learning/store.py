"""Feedback collection, error-pattern tracking and learned SQL corrections.

Every failure is grouped by a normalized signature. When a signature recurs
often enough, the store looks for a known column correction and files an
inactive rule candidate for review (or activates it directly when
``learning.auto_promote`` is on). Active rules are applied to every generated
query before validation.
"""

import re
import time
from collections import defaultdict
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple, Union

from pydantic import ValidationError as PydanticValidationError

from .models import (
    ErrorPattern,
    ExecutionRecord,
    ExecutionStatus,
    FeedbackRecord,
    FeedbackType,
    LearnedRule,
    RuleSource,
    RuleType,
)
from ..config import settings
from ..core.storage import JsonDocumentStore
from ..database.columns import COLUMN_NAME_FIXES
from ..utils import LearningError, TTLCache, setup_logger

logger = setup_logger(__name__)

RULES_CACHE_KEY = "active_rules"

COLUMN_EXTRACTORS = (
    re.compile(r"column[s]?\s+['\"]?(\w+)['\"]?", re.IGNORECASE),
    re.compile(r"['\"](\w+)['\"].*not found", re.IGNORECASE),
    re.compile(r"Invalid column.*?(\w+)", re.IGNORECASE),
    re.compile(r"Unrecognized name: (\w+)", re.IGNORECASE),
)


def detect_error_type(message: str) -> str:
    """Coarse error category from the message text."""
    lower = message.lower()
    if "column" in lower or "field" in lower:
        return "column"
    if "syntax" in lower:
        return "syntax"
    if "table" in lower or "not found" in lower:
        return "table"
    return "semantic"


def error_signature(message: str, error_type: Optional[str] = None) -> str:
    """Stable grouping key for similar error messages."""
    error_type = error_type or detect_error_type(message)
    normalized = message[:100]
    normalized = re.sub(r"[^a-zA-Z0-9\s]", "_", normalized)
    normalized = re.sub(r"\s+", "_", normalized)
    normalized = re.sub(r"_+", "_", normalized)
    return f"{error_type}_{normalized.lower()}"


def extract_column(message: str) -> Optional[str]:
    """Column name mentioned in an error message, if any."""
    for extractor in COLUMN_EXTRACTORS:
        match = extractor.search(message)
        if match:
            return match.group(1)
    return None


def qualified_fix(column: str, correction: str, sql: Optional[str] = None) -> Tuple[str, str]:
    """Alias-qualified pattern and correction for a column fix.

    The alias is the one ``column`` carries in ``sql`` (``p`` when it is
    unqualified there). Expression corrections are kept as written.
    """
    match = re.search(rf"\b(\w+)\.{re.escape(column)}\b", sql or "")
    alias = match.group(1) if match else "p"
    if re.fullmatch(r"\w+", correction):
        correction = f"{alias}.{correction}"
    return f"{alias}.{column}", correction


def apply_rules(sql: str, rules: Iterable[LearnedRule]) -> Tuple[str, List[str]]:
    """Apply substitution rules to SQL.

    Returns:
        The rewritten SQL and a 'pattern → correction' entry per applied rule
    """
    applied: List[str] = []
    for rule in rules:
        if not rule.is_substitution:
            continue
        regex = re.compile(rf"\b{re.escape(rule.pattern)}\b", re.IGNORECASE)
        if regex.search(sql):
            sql = regex.sub(lambda _: rule.correction, sql)
            applied.append(rule.describe())
    return sql, applied


class LearningStore:
    """File-backed feedback and learned-rule store."""

    def __init__(
        self,
        data_dir: Optional[Union[str, Path]] = None,
        seed_rules: Optional[Iterable[Dict[str, Any]]] = None,
        rule_threshold: Optional[int] = None,
        cache_ttl: Optional[float] = None,
        auto_promote: Optional[bool] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """Initialize the learning store.

        Args:
            data_dir: Base data directory (defaults to storage.data_dir)
            seed_rules: Rule records written when no rules exist yet
            rule_threshold: Occurrences before a pattern is analysed for a rule
            cache_ttl: TTL in seconds of the active-rules cache
            auto_promote: Activate rule candidates without review
            clock: Monotonic clock used by the cache
        """
        learning = settings.learning
        base = Path(data_dir or settings.get("storage.data_dir", "data")) / "learning"

        self._feedback = JsonDocumentStore(base / "feedback.json", LearningError)
        self._patterns = JsonDocumentStore(base / "error_patterns.json", LearningError)
        self._rules = JsonDocumentStore(base / "learned_rules.json", LearningError)
        self._executions = JsonDocumentStore(base / "executions.json", LearningError)

        self.rule_threshold = int(rule_threshold or learning.get("rule_threshold", 3))
        self.auto_promote = (
            auto_promote if auto_promote is not None
            else bool(learning.get("auto_promote", False))
        )
        ttl = cache_ttl if cache_ttl is not None else learning.get("rules_cache_ttl_seconds", 300)
        self.cache = TTLCache(ttl_seconds=float(ttl), clock=clock)

        if seed_rules is not None:
            self._seed(seed_rules)

    def _seed(self, seed_rules: Iterable[Dict[str, Any]]) -> None:
        if self._rules.exists():
            return
        rules = []
        for raw in seed_rules:
            try:
                rules.append(LearnedRule(source=RuleSource.SEED, **raw))
            except (PydanticValidationError, TypeError) as e:
                logger.warning(f"Skipping invalid seed rule {raw!r}: {e}")
        try:
            self._rules.save([r.model_dump(mode="json") for r in rules])
            logger.info(f"Seeded {len(rules)} learned rules")
        except LearningError as e:
            logger.error(f"Failed to seed learned rules: {e}")

    # ------------------------------------------------------------------
    # Feedback
    # ------------------------------------------------------------------

    def record_feedback(
        self,
        question: str,
        sql: Optional[str] = None,
        feedback_type: Union[FeedbackType, str] = FeedbackType.POSITIVE,
        feedback_text: Optional[str] = None,
        error_message: Optional[str] = None,
        user_id: Optional[str] = None,
    ) -> FeedbackRecord:
        """Store feedback; error feedback also updates the error pattern.

        Raises:
            LearningError: If the feedback cannot be persisted
        """
        feedback_type = FeedbackType(feedback_type)
        signature = error_signature(error_message) if error_message else None

        record = FeedbackRecord(
            question=question,
            sql=sql,
            feedback_type=feedback_type,
            feedback_text=feedback_text,
            error_message=error_message,
            error_signature=signature,
            user_id=user_id,
        )
        entry = record.model_dump(mode="json")
        self._feedback.update(lambda data: (data or []) + [entry], default=[])

        if feedback_type == FeedbackType.ERROR and error_message:
            self._update_error_pattern(signature, error_message, question, sql)

        logger.info(f"Stored {feedback_type.value} feedback")
        return record

    def record_success(self, question: str, sql: str) -> FeedbackRecord:
        return self.record_feedback(question, sql, FeedbackType.POSITIVE)

    def record_error(self, question: str, sql: Optional[str], error_message: str) -> FeedbackRecord:
        return self.record_feedback(
            question, sql, FeedbackType.ERROR, error_message=error_message
        )

    def get_feedback(self, limit: Optional[int] = None) -> List[FeedbackRecord]:
        """Stored feedback, newest first."""
        records = [FeedbackRecord(**raw) for raw in self._feedback.load([]) or []]
        records.reverse()
        return records[:limit] if limit else records

    # ------------------------------------------------------------------
    # Error patterns
    # ------------------------------------------------------------------

    def _update_error_pattern(
        self,
        signature: str,
        message: str,
        question: str,
        sql: Optional[str],
    ) -> ErrorPattern:
        now = datetime.now(timezone.utc)
        result: Dict[str, ErrorPattern] = {}

        def upsert(data: Dict[str, Any]) -> Dict[str, Any]:
            data = data or {}
            existing = data.get(signature)
            if existing:
                pattern = ErrorPattern(**existing)
                pattern.occurrences += 1
                pattern.last_seen = now
                pattern.example_message = message
                pattern.example_question = question
                pattern.example_sql = sql
            else:
                pattern = ErrorPattern(
                    signature=signature,
                    error_type=detect_error_type(message),
                    example_message=message,
                    example_question=question,
                    example_sql=sql,
                    first_seen=now,
                    last_seen=now,
                )
            data[signature] = pattern.model_dump(mode="json")
            result["pattern"] = pattern
            return data

        self._patterns.update(upsert, default={})
        pattern = result["pattern"]

        logger.info(f'Error pattern "{signature[:30]}...": {pattern.occurrences} occurrences')

        if pattern.occurrences >= self.rule_threshold and not pattern.resolved:
            self._suggest_rule(pattern)

        return pattern

    def get_error_pattern(self, signature: str) -> Optional[ErrorPattern]:
        raw = (self._patterns.load({}) or {}).get(signature)
        return ErrorPattern(**raw) if raw else None

    def get_unresolved_patterns(self, min_occurrences: int = 3, limit: int = 20) -> List[ErrorPattern]:
        """Unresolved patterns seen at least ``min_occurrences`` times, most frequent first."""
        try:
            data = self._patterns.load({}) or {}
        except LearningError as e:
            logger.warning(f"Failed to fetch patterns: {e}")
            return []
        patterns = [
            p for p in (ErrorPattern(**raw) for raw in data.values())
            if not p.resolved and p.occurrences >= min_occurrences
        ]
        patterns.sort(key=lambda p: p.occurrences, reverse=True)
        return patterns[:limit]

    def _mark_resolved(self, signature: str, rule_id: str) -> None:
        def resolve(data: Dict[str, Any]) -> Dict[str, Any]:
            data = data or {}
            if signature in data:
                data[signature]["resolved"] = True
                data[signature]["resolution_rule_id"] = rule_id
            return data

        self._patterns.update(resolve, default={})

    # ------------------------------------------------------------------
    # Promotion
    # ------------------------------------------------------------------

    def _suggest_rule(self, pattern: ErrorPattern) -> Optional[LearnedRule]:
        """File an inactive rule candidate for a recurring column error."""
        column = extract_column(pattern.example_message)
        if not column:
            logger.info(f"No column found in recurring error {pattern.signature[:30]}...")
            return None

        correction = COLUMN_NAME_FIXES.get(column.lower())
        if not correction:
            logger.info(f"Detected frequent column error: {column} (no known correction, needs review)")
            return None

        rule_pattern, correction = qualified_fix(column, correction, pattern.example_sql)
        existing = self._find_rule(RuleType.COLUMN_FIX, rule_pattern)
        if existing and existing.is_active:
            self._mark_resolved(pattern.signature, existing.id)
            return existing

        candidate = existing or LearnedRule(
            rule_type=RuleType.COLUMN_FIX,
            pattern=rule_pattern,
            correction=correction,
            description=f"Recurring error: {pattern.example_message[:100]}",
            is_active=False,
            source=RuleSource.PROMOTED,
            promoted_from=pattern.signature,
        )
        candidate.occurrences = pattern.occurrences
        candidate.last_seen = datetime.now(timezone.utc)
        self._save_rule(candidate)
        logger.info(f"Rule candidate filed: {candidate.describe()}")

        if self.auto_promote:
            return self.promote(pattern.signature)
        return candidate

    def promote(self, signature: str, correction: Optional[str] = None) -> LearnedRule:
        """Activate the rule candidate of an error pattern.

        Args:
            signature: Error pattern signature
            correction: Replacement to use (creates the candidate if none exists)

        Raises:
            LearningError: If the pattern is unknown or no rule can be derived
        """
        pattern = self.get_error_pattern(signature)
        if pattern is None:
            raise LearningError(f"Unknown error pattern: {signature}")

        column = extract_column(pattern.example_message)
        rule = next((r for r in self._load_rules() if r.promoted_from == signature), None)
        if rule is None and column:
            rule = self._find_rule(
                RuleType.COLUMN_FIX, qualified_fix(column, column, pattern.example_sql)[0],
            )

        if rule is None:
            correction = correction or (COLUMN_NAME_FIXES.get(column.lower()) if column else None)
            if not column or not correction:
                raise LearningError(
                    f"Cannot derive a rule from pattern {signature}; provide a correction"
                )
            rule_pattern, correction = qualified_fix(column, correction, pattern.example_sql)
            rule = LearnedRule(
                rule_type=RuleType.COLUMN_FIX,
                pattern=rule_pattern,
                correction=correction,
                description=f"Recurring error: {pattern.example_message[:100]}",
                occurrences=pattern.occurrences,
                source=RuleSource.PROMOTED,
                promoted_from=signature,
            )
        elif correction:
            if column:
                _, correction = qualified_fix(column, correction, pattern.example_sql)
            rule.correction = correction

        rule.is_active = True
        rule.last_seen = datetime.now(timezone.utc)
        self._save_rule(rule)
        self._mark_resolved(signature, rule.id)
        self.invalidate_cache()

        logger.info(f"Promoted rule: {rule.describe()}")
        return rule

    def get_rule_candidates(self) -> List[LearnedRule]:
        """Inactive rules waiting for review."""
        return [r for r in self._load_rules() if not r.is_active and r.source == RuleSource.PROMOTED]

    # ------------------------------------------------------------------
    # Rules
    # ------------------------------------------------------------------

    def _load_rules(self) -> List[LearnedRule]:
        rules = []
        for raw in self._rules.load([]) or []:
            try:
                rules.append(LearnedRule(**raw))
            except PydanticValidationError as e:
                logger.warning(f"Skipping invalid learned rule: {e}")
        return rules

    def _find_rule(self, rule_type: RuleType, pattern: str) -> Optional[LearnedRule]:
        for rule in self._load_rules():
            if rule.rule_type == rule_type and rule.pattern == pattern:
                return rule
        return None

    def _save_rule(self, rule: LearnedRule) -> None:
        record = rule.model_dump(mode="json")

        def upsert(data: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
            data = list(data or [])
            for i, existing in enumerate(data):
                if existing.get("id") == rule.id:
                    data[i] = record
                    return data
            data.append(record)
            return data

        self._rules.update(upsert, default=[])

    def get_rules(self) -> List[LearnedRule]:
        """All rules, active or not."""
        return self._load_rules()

    def get_active_rules(self) -> List[LearnedRule]:
        """Active rules, most frequent first (cached; stale on read failure)."""
        cached = self.cache.get(RULES_CACHE_KEY)
        if cached is not None:
            return cached

        try:
            rules = [r for r in self._load_rules() if r.is_active]
        except LearningError as e:
            logger.warning(f"Failed to fetch rules: {e}")
            stale = self.cache.get_stale(RULES_CACHE_KEY)
            return stale if stale is not None else []

        rules.sort(key=lambda r: r.occurrences, reverse=True)
        self.cache.set(RULES_CACHE_KEY, rules)
        return rules

    def apply_learned_rules(self, sql: str) -> Tuple[str, List[str]]:
        """Apply the active substitution rules to SQL."""
        fixed_sql, applied = apply_rules(sql, self.get_active_rules())
        for description in applied:
            logger.info(f"Applied rule: {description}")
        return fixed_sql, applied

    def add_rule(
        self,
        rule_type: Union[RuleType, str],
        pattern: str,
        correction: str,
        description: Optional[str] = None,
    ) -> LearnedRule:
        """Add or update an active rule, keyed on (rule_type, pattern)."""
        rule_type = RuleType(rule_type)
        rule = self._find_rule(rule_type, pattern) or LearnedRule(
            rule_type=rule_type,
            pattern=pattern,
            correction=correction,
        )
        rule.correction = correction
        rule.description = description or rule.description
        rule.is_active = True
        rule.last_seen = datetime.now(timezone.utc)

        self._save_rule(rule)
        self.invalidate_cache()

        logger.info(f"Added rule: {rule.describe()}")
        return rule

    def invalidate_cache(self) -> None:
        self.cache.invalidate(RULES_CACHE_KEY)

    # ------------------------------------------------------------------
    # Executions
    # ------------------------------------------------------------------

    def record_execution(self, record: ExecutionRecord) -> ExecutionRecord:
        """Append an execution to the audit trail."""
        entry = record.model_dump(mode="json")
        self._executions.update(lambda data: (data or []) + [entry], default=[])
        logger.info(f"Logged query execution: {record.status.value}")
        return record

    def record_outcome(
        self,
        question: str,
        sql: str,
        status: Union[ExecutionStatus, str],
        error_message: Optional[str] = None,
        row_count: Optional[int] = None,
        execution_time_ms: Optional[float] = None,
        attempts: int = 1,
        session_id: Optional[str] = None,
        plan: Optional[str] = None,
    ) -> ExecutionRecord:
        return self.record_execution(ExecutionRecord(
            question=question,
            sql=sql,
            status=ExecutionStatus(status),
            error_message=error_message,
            row_count=row_count,
            execution_time_ms=execution_time_ms,
            attempts=attempts,
            session_id=session_id,
            plan=plan,
        ))

    def _load_executions(self) -> List[ExecutionRecord]:
        try:
            return [ExecutionRecord(**raw) for raw in self._executions.load([]) or []]
        except LearningError as e:
            logger.warning(f"Failed to fetch executions: {e}")
            return []

    def get_query_stats(self, days: int = 7, now: Optional[datetime] = None) -> List[Dict[str, Any]]:
        """Per-day execution totals for the last ``days`` days, newest first."""
        now = now or datetime.now(timezone.utc)
        since = (now - timedelta(days=days - 1)).date()

        buckets: Dict[str, List[ExecutionRecord]] = defaultdict(list)
        for record in self._load_executions():
            day = record.created_at.date()
            if since <= day <= now.date():
                buckets[day.isoformat()].append(record)

        stats = []
        for day in sorted(buckets, reverse=True):
            records = buckets[day]
            successful = sum(1 for r in records if r.status == ExecutionStatus.SUCCESS)
            timings = [r.execution_time_ms for r in records if r.execution_time_ms is not None]
            stats.append({
                "date": day,
                "total_queries": len(records),
                "successful": successful,
                "failed": sum(1 for r in records if r.status == ExecutionStatus.ERROR),
                "timeouts": sum(1 for r in records if r.status == ExecutionStatus.TIMEOUT),
                "success_rate": round(successful / len(records), 4),
                "avg_execution_time_ms": round(sum(timings) / len(timings), 2) if timings else None,
            })
        return stats

    def get_successful_queries(self, limit: int = 100) -> List[ExecutionRecord]:
        """Successful executions, newest first."""
        records = [r for r in self._load_executions() if r.status == ExecutionStatus.SUCCESS]
        records.reverse()
        return records[:limit]
