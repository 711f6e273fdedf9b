"""Unit tests for error classification, SQL repair and the retry engine."""

from unittest.mock import MagicMock

import pytest

from conftest import FakeWarehouse, error_result, ok_result
from querylab.execution import (
    ErrorCategory,
    ExecutionRetryEngine,
    SqlFixer,
    classify_error,
    get_ai_error_context,
    get_fix_suggestion,
    strip_code_fences,
)
from querylab.utils import RetryConfig

SQL = "SELECT p.pubname, SUM(p.rev) AS revenue FROM `gcpp-check.GI_publisher.pub_data` p GROUP BY 1"
FIXED_SQL = SQL.replace("p.pubname", "p.medianame")

TRANSIENT = "Service unavailable: 503 backendError"
UNRECOGNIZED = "Invalid SQL query: 400 Unrecognized name: mname at [1:10]"
ACCESS_DENIED = "403 Access Denied: Table gcpp-check:GI_publisher.pub_data: User does not have permission"


class TestClassifyError:
    """Test cases for the error catalogue."""

    @pytest.mark.parametrize("message", [
        "ETIMEDOUT while reading response",
        "rateLimitExceeded: Exceeded rate limits",
        "Service unavailable: try again",
        "Internal error: backendError",
        "The service is temporarily unavailable",
    ])
    def test_transient(self, message):
        """Test transient messages are retried unchanged."""
        assert classify_error(message).category == ErrorCategory.TRANSIENT

    def test_unrecognized_name_is_auto_fixable(self):
        """Test unknown column errors go to repair and expose the column."""
        classification = classify_error(UNRECOGNIZED)

        assert classification.category == ErrorCategory.AUTO_FIXABLE
        assert classification.error_type == "column"
        assert classification.extracted_column == "mname"
        assert classification.suggested_replacement == "medianame"

    @pytest.mark.parametrize("message,error_type", [
        (ACCESS_DENIED, "permission"),
        ("Not found: Table gcpp-check:GI_publisher.missing was not found in location US", "table"),
        ("Quota exceeded: Your project exceeded quota for free query bytes scanned", "quota"),
        ("something nobody has seen before", "unknown"),
    ])
    def test_fatal(self, message, error_type):
        """Test permission, missing table, quota and unknown errors are fatal."""
        classification = classify_error(message)

        assert classification.category == ErrorCategory.FATAL
        assert classification.error_type == error_type

    def test_syntax_error_is_auto_fixable(self):
        """Test syntax errors are sent to repair."""
        classification = classify_error("Syntax error: Expected end of input but got keyword FROM")

        assert classification.category == ErrorCategory.AUTO_FIXABLE
        assert classification.error_type == "syntax"

    def test_cast_error_captures_operation(self):
        """Test the coercion pattern records the operation, not a column."""
        classification = classify_error("Cannot coerce expression to INT64")

        assert classification.extracted_column is None
        assert classification.extracted_info == {"operation": "coerce"}

    def test_fix_suggestion(self):
        """Test the human-readable suggestion names the replacement."""
        suggestion = get_fix_suggestion(UNRECOGNIZED)

        assert suggestion.startswith("Error type: column")
        assert 'Specific fix: Replace "mname" with "medianame"' in suggestion
        assert get_fix_suggestion("???").startswith("Unknown error")

    def test_ai_error_context(self):
        """Test the repair prompt context flags the invalid column."""
        context = get_ai_error_context(UNRECOGNIZED)

        assert 'INVALID COLUMN DETECTED: "mname"' in context
        assert 'SUGGESTED REPLACEMENT: "medianame"' in context
        assert "AUTO-FIXABLE: true" in context


class TestSqlFixer:
    """Test cases for AI-assisted repair."""

    def test_strip_code_fences(self):
        """Test markdown fences are removed."""
        assert strip_code_fences("```sql\nSELECT 1\n```") == "SELECT 1"
        assert strip_code_fences("SELECT 1") == "SELECT 1"
        assert strip_code_fences(None) == ""

    def test_propose_fix(self, completion_client, completions, metadata_store):
        """Test a usable patch is returned from the autofix tier."""
        completions.queue(f"```sql\n{FIXED_SQL}\n```")
        fixer = SqlFixer(completion_client, metadata_store)

        patched = fixer.propose_fix(SQL, UNRECOGNIZED, "revenue by media")

        assert patched == FIXED_SQL
        call = completions.calls[0]
        assert call["model"] == "gpt-4o-mini"
        assert call["temperature"] == 0.0
        assert call["max_tokens"] == 2000
        assert "INVALID COLUMN DETECTED" in call["messages"][1]["content"]
        assert "WHERE pic IN" in call["messages"][0]["content"]

    @pytest.mark.parametrize("answer", ["", SQL, "DELETE FROM t", "I cannot fix this"])
    def test_rejects_unusable_patch(self, completion_client, completions, answer):
        """Test empty, unchanged and non-SELECT patches are rejected."""
        completions.queue(answer)

        assert SqlFixer(completion_client).propose_fix(SQL, UNRECOGNIZED) is None

    def test_completion_failure_yields_none(self, completion_client, completions):
        """Test a failing completion call produces no patch."""
        completions.queue(ValueError("boom"))

        assert SqlFixer(completion_client).propose_fix(SQL, UNRECOGNIZED) is None

    def test_analyze(self, completion_client, completions, metadata_store):
        """Test error analysis uses the generation model and JSON output."""
        completions.queue({"canFix": True, "fixedSql": FIXED_SQL, "explanation": "mname → medianame"})

        output = SqlFixer(completion_client, metadata_store).analyze(SQL, UNRECOGNIZED, "revenue by media")

        assert output.can_fix
        assert output.fixed_sql == FIXED_SQL
        assert completions.calls[0]["model"] == "gpt-4o"
        assert completions.calls[0]["temperature"] == 0.1


def make_engine(warehouse, sleep, fixer=None, learning_store=None, background=None, max_retries=3):
    return ExecutionRetryEngine(
        warehouse=warehouse,
        fixer=fixer,
        learning_store=learning_store,
        background=background,
        max_retries=max_retries,
        retry_config=RetryConfig(
            max_attempts=max_retries + 1, base_delay=1.0, max_delay=8.0, multiplier=2.0, jitter=0.2,
        ),
        fix_delay=0.5,
        sleep=sleep,
        rng=lambda low, high: 0.0,
    )


class TestExecutionRetryEngine:
    """Test cases for the self-healing execution loop."""

    def test_success_first_try(self, sleep_recorder, background, learning_store):
        """Test a healthy query runs once and is logged as a success."""
        warehouse = FakeWarehouse([ok_result([{"pubname": "A", "revenue": 10.0}])])
        engine = make_engine(warehouse, sleep_recorder, learning_store=learning_store, background=background)

        result = engine.execute(SQL, question="revenue")

        assert result.success
        assert result.rows == ({"pubname": "A", "revenue": 10.0},)
        assert result.total_attempts == 1
        assert not result.was_retried
        assert result.history == ()
        assert sleep_recorder.delays == []
        assert learning_store.get_query_stats(days=1)[0]["successful"] == 1

    def test_transient_failures_then_success(self, sleep_recorder):
        """Test three transient failures back off and then succeed."""
        warehouse = FakeWarehouse([
            error_result(TRANSIENT),
            error_result(TRANSIENT),
            error_result(TRANSIENT),
            ok_result([{"n": 1}]),
        ])
        engine = make_engine(warehouse, sleep_recorder)

        result = engine.execute(SQL)

        assert result.success
        assert len(result.history) == 3
        assert result.total_attempts == 4
        assert result.was_retried
        assert warehouse.statements == [SQL] * 4
        assert sleep_recorder.delays == [1.0, 2.0, 4.0]
        assert all(record.category == ErrorCategory.TRANSIENT for record in result.history)

    def test_fatal_error_stops_immediately(self, sleep_recorder, background, learning_store):
        """Test a fatal error exhausts after one attempt without sleeping."""
        warehouse = FakeWarehouse([error_result(ACCESS_DENIED)])
        fixer = MagicMock()
        engine = make_engine(
            warehouse, sleep_recorder, fixer=fixer, learning_store=learning_store, background=background,
        )

        result = engine.execute(SQL, question="revenue")

        assert not result.success
        assert result.exhausted
        assert len(result.history) == 1
        assert result.error_type == "permission"
        assert sleep_recorder.delays == []
        fixer.propose_fix.assert_not_called()
        assert result.transitions == ("exhausted",)

        stats = learning_store.get_query_stats(days=1)[0]
        assert stats["failed"] == 1
        assert learning_store.get_feedback()[0].error_message == ACCESS_DENIED

    def test_auto_fix_patches_statement(self, sleep_recorder):
        """Test an auto-fixable error runs the patched statement next."""
        warehouse = FakeWarehouse([error_result(UNRECOGNIZED), ok_result([{"n": 1}])])
        fixer = MagicMock()
        fixer.propose_fix.return_value = FIXED_SQL
        engine = make_engine(warehouse, sleep_recorder, fixer=fixer)

        result = engine.execute(SQL, question="revenue by media")

        assert result.success
        assert result.final_sql == FIXED_SQL
        assert warehouse.statements == [SQL, FIXED_SQL]
        assert sleep_recorder.delays == [0.5]
        assert result.history[0].fix_attempted
        assert result.history[0].fixed
        fixer.propose_fix.assert_called_once_with(SQL, UNRECOGNIZED, "revenue by media")

    def test_unfixed_error_retried_once(self, sleep_recorder):
        """Test the same SQL is retried once when no patch comes back."""
        warehouse = FakeWarehouse([error_result(UNRECOGNIZED), error_result(UNRECOGNIZED)])
        fixer = MagicMock()
        fixer.propose_fix.return_value = None
        engine = make_engine(warehouse, sleep_recorder, fixer=fixer)

        result = engine.execute(SQL)

        assert not result.success
        assert warehouse.statements == [SQL, SQL]
        assert len(result.history) == 2
        assert sleep_recorder.delays == [1.0]
        assert result.history[1].fix_attempted and not result.history[1].fixed

    def test_attempts_bounded_by_max_retries(self, sleep_recorder):
        """Test at most max_retries + 1 statements reach the warehouse."""
        warehouse = FakeWarehouse([error_result(TRANSIENT) for _ in range(10)])
        engine = make_engine(warehouse, sleep_recorder, max_retries=2)

        result = engine.execute(SQL)

        assert not result.success
        assert len(warehouse.statements) == 3
        assert result.total_attempts == 3
        assert len(sleep_recorder.delays) == 2

    def test_backoff_within_jitter_band(self, sleep_recorder):
        """Test the engine's backoff stays within 20% of the envelope."""
        engine = ExecutionRetryEngine(FakeWarehouse(), max_retries=3, sleep=sleep_recorder)

        for attempt in range(5):
            envelope = engine.retry_config.envelope(attempt)
            for _ in range(20):
                assert envelope * 0.8 <= engine.backoff(attempt) <= envelope * 1.2

    def test_timeout_recorded_as_timeout(self, sleep_recorder, background, learning_store):
        """Test exhausted timeouts are logged with the timeout status."""
        timeout = "Deadline exceeded: query timeout after 120s: 504"
        warehouse = FakeWarehouse([error_result(timeout), error_result(timeout)])
        engine = make_engine(
            warehouse, sleep_recorder, learning_store=learning_store, background=background, max_retries=1,
        )

        result = engine.execute(SQL)

        assert result.error_type == "timeout"
        assert learning_store.get_query_stats(days=1)[0]["timeouts"] == 1

    def test_learning_failures_do_not_change_outcome(self, sleep_recorder, background):
        """Test a broken learning store never affects the result."""
        store = MagicMock()
        store.record_outcome.side_effect = OSError("disk full")
        engine = make_engine(FakeWarehouse(), sleep_recorder, learning_store=store, background=background)

        result = engine.execute(SQL)

        assert result.success
        store.record_outcome.assert_called_once()

    def test_to_dict(self, sleep_recorder):
        """Test the response payload shape."""
        warehouse = FakeWarehouse([error_result(TRANSIENT), ok_result([{"n": 1}])])
        payload = make_engine(warehouse, sleep_recorder).execute(SQL).to_dict()

        assert payload["success"] is True
        assert payload["results"] == [{"n": 1}]
        assert payload["retry_info"]["total_attempts"] == 2
        assert payload["retry_info"]["was_retried"] is True
        assert payload["retry_info"]["history"][0]["category"] == "transient"

    def test_execute_many(self, sleep_recorder):
        """Test independent statements all complete."""
        warehouse = FakeWarehouse()
        engine = make_engine(warehouse, sleep_recorder)

        results = engine.execute_many({"a": "SELECT 1", "b": "SELECT 2"})

        assert set(results) == {"a", "b"}
        assert all(r.success for r in results.values())
        assert sorted(warehouse.statements) == ["SELECT 1", "SELECT 2"]
        assert engine.execute_many({}) == {}

    def test_warehouse_exception_exhausts(self, sleep_recorder, background, learning_store):
        """Test an exception raised by the warehouse still ends in a logged failure."""
        warehouse = MagicMock()
        warehouse.execute_query.side_effect = RuntimeError("invalid_grant: token expired")
        engine = make_engine(warehouse, sleep_recorder, learning_store=learning_store, background=background)

        result = engine.execute(SQL, question="revenue")

        assert not result.success
        assert result.exhausted
        assert result.error == "invalid_grant: token expired"
        assert result.total_attempts == 1
        assert learning_store.get_query_stats(days=1)[0]["failed"] == 1
        assert learning_store.get_feedback()[0].error_message == "invalid_grant: token expired"

    def test_execute_many_isolates_exceptions(self, sleep_recorder):
        """Test one section raising does not fail the other sections."""
        def execute_query(sql):
            if sql == "SELECT 2":
                raise OSError("connection pool closed")
            return ok_result([{"n": 1}])

        warehouse = MagicMock()
        warehouse.execute_query.side_effect = execute_query

        results = make_engine(warehouse, sleep_recorder).execute_many({"a": "SELECT 1", "b": "SELECT 2"})

        assert results["a"].success
        assert not results["b"].success
        assert results["b"].error == "connection pool closed"
