"""Unit tests for feedback, error patterns and learned rules."""

from datetime import datetime, timedelta

import pytest

from querylab.learning import (
    ExecutionRecord,
    ExecutionStatus,
    FeedbackType,
    LearningStore,
    RuleSource,
    apply_rules,
    detect_error_type,
    error_signature,
    extract_column,
    qualified_fix,
)
from querylab.learning.models import LearnedRule, RuleType
from querylab.utils import LearningError

MNAME_ERROR = "Unrecognized name: mname at [1:8]"


class TestSignatures:
    """Test cases for error grouping helpers."""

    def test_detect_error_type(self):
        """Test coarse categories from message text."""
        assert detect_error_type("Unrecognized column mname") == "column"
        assert detect_error_type("Syntax error: Expected ')'") == "syntax"
        assert detect_error_type("Table pub was not found") == "table"
        assert detect_error_type("Division by zero") == "semantic"

    def test_signature_is_stable(self):
        """Test the same message always maps to the same signature."""
        first = error_signature(MNAME_ERROR)

        assert first == error_signature(MNAME_ERROR)
        assert first.startswith("semantic_unrecognized_name_mname")

    def test_extract_column(self):
        """Test column names are pulled from known message shapes."""
        assert extract_column(MNAME_ERROR) == "mname"
        assert extract_column("Column quarter is ambiguous") == "quarter"
        assert extract_column("'zname' not found") == "zname"
        assert extract_column("Division by zero") is None

    def test_apply_rules_whole_words_only(self):
        """Test substitutions respect word boundaries and skip hints."""
        rules = [
            LearnedRule(rule_type=RuleType.COLUMN_FIX, pattern="mname", correction="medianame"),
            LearnedRule(rule_type=RuleType.PROMPT_HINT, pattern="rev", correction="ignored"),
        ]

        sql, applied = apply_rules("SELECT mname, mname_count, rev FROM t", rules)

        assert sql == "SELECT medianame, mname_count, rev FROM t"
        assert applied == ["mname → medianame"]

    def test_qualified_fix(self):
        """Test column fixes take the alias the column carries in the query."""
        assert qualified_fix("mname", "medianame", "SELECT p.mname FROM t p") == ("p.mname", "p.medianame")
        assert qualified_fix("prod", "product", "SELECT u.prod FROM t u") == ("u.prod", "u.product")
        assert qualified_fix("mname", "medianame") == ("p.mname", "p.medianame")
        assert qualified_fix("total_rev", "SUM(p.rev)", None) == ("p.total_rev", "SUM(p.rev)")


class TestLearningStore:
    """Test cases for the file-backed learning store."""

    def test_error_feedback_updates_pattern(self, learning_store):
        """Test error feedback increments the pattern for its signature."""
        learning_store.record_error("media revenue", "SELECT p.mname FROM t p", MNAME_ERROR)
        learning_store.record_error("media revenue", "SELECT p.mname FROM t p", MNAME_ERROR)

        pattern = learning_store.get_error_pattern(error_signature(MNAME_ERROR))

        assert pattern.occurrences == 2
        assert pattern.example_sql == "SELECT p.mname FROM t p"

    def test_recurring_error_files_candidate(self, learning_store):
        """Test three occurrences of one signature produce a rule candidate."""
        for _ in range(3):
            learning_store.record_error("media revenue", "SELECT p.mname FROM t p", MNAME_ERROR)

        signature = error_signature(MNAME_ERROR)
        assert learning_store.get_error_pattern(signature).occurrences == 3

        candidates = learning_store.get_rule_candidates()
        assert len(candidates) == 1
        assert candidates[0].pattern == "p.mname"
        assert candidates[0].correction == "p.medianame"
        assert not candidates[0].is_active
        assert learning_store.get_active_rules() == []

    def test_promote_activates_rule(self, learning_store):
        """Test promotion activates the candidate and resolves the pattern."""
        for _ in range(3):
            learning_store.record_error("media revenue", "SELECT p.mname FROM t p", MNAME_ERROR)
        signature = error_signature(MNAME_ERROR)

        rule = learning_store.promote(signature)

        assert rule.is_active
        assert rule.source == RuleSource.PROMOTED
        assert learning_store.get_error_pattern(signature).resolved
        assert learning_store.get_rule_candidates() == []
        assert learning_store.apply_learned_rules("SELECT p.mname FROM t p") == (
            "SELECT p.medianame FROM t p", ["p.mname → p.medianame"],
        )

    def test_promoted_rule_leaves_aliases_and_literals(self, learning_store):
        """Test a promoted rule only rewrites the table-qualified column."""
        message = "Unrecognized name: revenue at [1:8]"
        for _ in range(3):
            learning_store.record_error("q", "SELECT p.revenue FROM t p", message)

        learning_store.promote(error_signature(message))
        sql, _ = learning_store.apply_learned_rules(
            "SELECT p.revenue AS revenue FROM t p WHERE p.label = 'revenue'"
        )

        assert sql == "SELECT p.rev AS revenue FROM t p WHERE p.label = 'revenue'"

    def test_timestamps_are_timezone_aware(self, learning_store):
        """Test stored timestamps carry UTC offsets."""
        for _ in range(3):
            learning_store.record_error("q", "SELECT p.mname FROM t p", MNAME_ERROR)

        pattern = learning_store.get_error_pattern(error_signature(MNAME_ERROR))

        assert pattern.last_seen.tzinfo is not None
        assert learning_store.get_rule_candidates()[0].last_seen.utcoffset() == timedelta(0)
        assert learning_store.get_feedback()[0].created_at.tzinfo is not None

    def test_auto_promote(self, tmp_path):
        """Test auto-promotion activates the rule on the third occurrence."""
        store = LearningStore(data_dir=tmp_path, rule_threshold=3, auto_promote=True)

        for _ in range(3):
            store.record_error("q", "SELECT mname FROM t", MNAME_ERROR)

        assert [r.pattern for r in store.get_active_rules()] == ["p.mname"]

    def test_unknown_column_needs_manual_correction(self, learning_store):
        """Test columns without a known fix need an explicit correction."""
        message = "Unrecognized name: pub_region at [1:8]"
        for _ in range(3):
            learning_store.record_error("q", "SELECT pub_region FROM t", message)
        signature = error_signature(message)

        assert learning_store.get_rule_candidates() == []
        with pytest.raises(LearningError, match="provide a correction"):
            learning_store.promote(signature)

        rule = learning_store.promote(signature, correction="pubname")
        assert rule.describe() == "p.pub_region → p.pubname"

    def test_promote_unknown_signature(self, learning_store):
        """Test promoting an unseen signature fails."""
        with pytest.raises(LearningError, match="Unknown error pattern"):
            learning_store.promote("column_nothing")

    def test_unresolved_patterns(self, learning_store):
        """Test only frequent unresolved patterns are listed."""
        for _ in range(3):
            learning_store.record_error("q", None, MNAME_ERROR)
        learning_store.record_error("q", None, "Division by zero")

        patterns = learning_store.get_unresolved_patterns(min_occurrences=3)

        assert [p.signature for p in patterns] == [error_signature(MNAME_ERROR)]

    def test_seed_rules_written_once(self, tmp_path, metadata_store):
        """Test seed rules are stored only when no rules exist."""
        seeds = metadata_store.get_seed_learned_rules()
        store = LearningStore(data_dir=tmp_path, seed_rules=seeds)
        store.add_rule("column_fix", "p.pub_region", "p.pubname")

        reopened = LearningStore(data_dir=tmp_path, seed_rules=seeds)

        rules = reopened.get_rules()
        assert len(rules) == len(seeds) + 1
        assert sum(1 for r in rules if r.source == RuleSource.SEED) == len(seeds)

    def test_seed_rules_fix_aggregate_aliases(self, tmp_path, metadata_store):
        """Test the shipped seed rules rewrite aggregate pseudo-columns."""
        store = LearningStore(data_dir=tmp_path, seed_rules=metadata_store.get_seed_learned_rules())

        sql, applied = store.apply_learned_rules("SELECT p.total_revenue, p.pname FROM t p")

        assert sql == "SELECT SUM(p.rev) as total_revenue, p.pubname FROM t p"
        assert len(applied) == 2

    def test_active_rules_cached(self, learning_store, fake_clock):
        """Test the rules cache is refreshed by add_rule and by expiry."""
        assert learning_store.get_active_rules() == []

        learning_store.add_rule("column_fix", "zname", "zonename")
        assert [r.pattern for r in learning_store.get_active_rules()] == ["zname"]

        # Written behind the cache's back
        LearningStore(data_dir=learning_store._rules.path.parent.parent).add_rule(
            "column_fix", "pname", "pubname",
        )
        assert len(learning_store.get_active_rules()) == 1

        fake_clock.advance(301)
        assert len(learning_store.get_active_rules()) == 2

    def test_feedback_types(self, learning_store):
        """Test positive and negative feedback are stored without patterns."""
        learning_store.record_feedback("q", "SELECT 1", "positive", feedback_text="great")
        learning_store.record_feedback("q", "SELECT 1", FeedbackType.NEGATIVE, user_id="u1")

        feedback = learning_store.get_feedback()

        assert [f.feedback_type for f in feedback] == [FeedbackType.NEGATIVE, FeedbackType.POSITIVE]
        assert learning_store.get_unresolved_patterns(min_occurrences=1) == []

    def test_query_stats(self, learning_store):
        """Test per-day totals and success rate."""
        now = datetime(2024, 11, 15, 12, 0)
        for status, ms in (("success", 100.0), ("success", 300.0), ("error", None), ("timeout", None)):
            learning_store.record_execution(ExecutionRecord(
                sql="SELECT 1", status=ExecutionStatus(status), execution_time_ms=ms, created_at=now,
            ))
        learning_store.record_execution(ExecutionRecord(
            sql="SELECT 1", status=ExecutionStatus.SUCCESS, created_at=now - timedelta(days=30),
        ))

        stats = learning_store.get_query_stats(days=7, now=now)

        assert stats == [{
            "date": "2024-11-15",
            "total_queries": 4,
            "successful": 2,
            "failed": 1,
            "timeouts": 1,
            "success_rate": 0.5,
            "avg_execution_time_ms": 200.0,
        }]

    def test_successful_queries(self, learning_store):
        """Test the success log is newest first."""
        learning_store.record_outcome("q1", "SELECT 1", "success", row_count=1)
        learning_store.record_outcome("q2", "SELECT 2", "error", error_message="x")
        learning_store.record_outcome("q3", "SELECT 3", "success", row_count=3)

        assert [r.question for r in learning_store.get_successful_queries()] == ["q3", "q1"]
