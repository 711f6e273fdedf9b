"""Unit tests for the completion client, structured outputs and prompts."""

from types import SimpleNamespace
from unittest.mock import MagicMock

import httpx
import pytest
from openai import APITimeoutError, BadRequestError, InternalServerError

from querylab.llm import (
    AutoFixOutput,
    CompletionClient,
    GenerationOutput,
    PromptTemplates,
    RefinementOutput,
    SchemaMismatch,
    StructuredOk,
    UsageTracker,
    parse_structured_output,
)
from querylab.utils import ConfigurationError, FatalError, ResponseSchemaError, RetryExhaustedError

REQUEST = httpx.Request("POST", "https://api.openai.com/v1/chat/completions")


def timeout_error():
    return APITimeoutError(request=REQUEST)


def status_error(cls, status):
    return cls("failure", response=httpx.Response(status, request=REQUEST), body=None)


class TestCompletionClient:
    """Test cases for retry behaviour of chat completions."""

    def test_returns_content(self, completion_client, completions):
        """Test a successful call returns the message content."""
        completions.queue("SELECT 1")

        content = completion_client.chat_completion(
            [{"role": "user", "content": "hi"}],
            model="gpt-4o-mini",
            temperature=0.0,
            max_tokens=2000,
        )

        assert content == "SELECT 1"
        assert completions.calls[0]["model"] == "gpt-4o-mini"
        assert completions.calls[0]["temperature"] == 0.0
        assert completions.calls[0]["max_tokens"] == 2000

    def test_recovers_after_timeout(self, completion_client, completions, sleep_recorder):
        """Test a timeout is retried after a backoff."""
        completions.queue(timeout_error(), "ok")

        assert completion_client.chat_completion([{"role": "user", "content": "hi"}]) == "ok"
        assert sleep_recorder.delays == [1.0]

    def test_server_errors_exhaust(self, completion_client, completions, sleep_recorder):
        """Test repeated 5xx errors exhaust the attempt budget."""
        completions.queue(*(status_error(InternalServerError, 500) for _ in range(3)))

        with pytest.raises(RetryExhaustedError, match="after 3 attempts"):
            completion_client.chat_completion([{"role": "user", "content": "hi"}])

        assert len(completions.calls) == 3
        assert sleep_recorder.delays == [1.0, 2.0]

    def test_client_error_is_fatal(self, completion_client, completions, sleep_recorder):
        """Test a 4xx error is not retried."""
        completions.queue(status_error(BadRequestError, 400))

        with pytest.raises(FatalError):
            completion_client.chat_completion([{"role": "user", "content": "hi"}])

        assert len(completions.calls) == 1
        assert sleep_recorder.delays == []

    def test_unknown_provider(self):
        """Test an unknown provider fails when the SDK client is built."""
        client = CompletionClient()
        client.provider = "bedrock"

        with pytest.raises(ConfigurationError, match="Unknown LLM provider"):
            client.client

    def test_model_tiers(self, completion_client):
        """Test each tier resolves to its configured model."""
        assert completion_client.model_for("generation") == "gpt-4o"
        assert completion_client.model_for("refinement") == "gpt-4.1-mini"
        assert completion_client.model_for("autofix") == "gpt-4o-mini"
        assert completion_client.temperature_for("autofix") == 0.0

    def test_complete_structured(self, completion_client, completions):
        """Test JSON answers are validated against the schema."""
        completions.queue({"sql": "SELECT 1", "warnings": "check dates"})

        output = completion_client.complete_structured("sys", "user", GenerationOutput)

        assert output.sql == "SELECT 1"
        assert output.warnings == ["check dates"]
        assert completions.calls[0]["response_format"] == {"type": "json_object"}

    def test_complete_structured_mismatch(self, completion_client, completions):
        """Test schema mismatches keep the raw answer."""
        completions.queue('{"changes": []}')

        with pytest.raises(ResponseSchemaError) as exc_info:
            completion_client.complete_structured("sys", "user", RefinementOutput)

        assert exc_info.value.raw == '{"changes": []}'


class TestStructuredOutputs:
    """Test cases for parsing and schema validation."""

    def test_parse_ok(self):
        """Test a valid object parses."""
        result = parse_structured_output('{"sql": " SELECT 1 "}', RefinementOutput)

        assert isinstance(result, StructuredOk)
        assert result.value.sql == "SELECT 1"

    @pytest.mark.parametrize("content", ["", "not json", "[1, 2]", '{"sql": ""}'])
    def test_parse_mismatch(self, content):
        """Test empty, invalid, non-object and incomplete answers are mismatches."""
        assert isinstance(parse_structured_output(content, RefinementOutput), SchemaMismatch)

    def test_generation_output_coerces_prose(self):
        """Test prose reasoning is kept under a summary key."""
        output = GenerationOutput(sql="SELECT 1", reasoning="Sum revenue by month")

        assert output.reasoning == {"summary": "Sum revenue by month"}

    def test_autofix_aliases(self):
        """Test the camelCase answer keys are accepted."""
        output = AutoFixOutput.model_validate({
            "canFix": True,
            "fixedSql": "SELECT p.medianame FROM t p",
            "explanation": "mname is medianame",
        })

        assert output.can_fix
        assert output.fixed_sql.startswith("SELECT")

    def test_autofix_requires_sql_when_fixed(self):
        """Test a fix claim without SQL is rejected."""
        with pytest.raises(ValueError):
            AutoFixOutput.model_validate({"canFix": True})

    def test_autofix_clarifying_question(self):
        """Test a clarifying answer needs no SQL."""
        output = AutoFixOutput.model_validate({
            "canFix": False,
            "clarifyingQuestion": "Which team do you mean?",
        })

        assert output.clarifying_question == "Which team do you mean?"


class TestPromptTemplates:
    """Test cases for prompt rendering."""

    def test_team_context(self):
        """Test teams without PICs are skipped."""
        text = PromptTemplates.team_context({
            "APP": {"name": "App", "pics": ["VN_minhlh", "VN_anhtn"]},
            "WEB_GTI": {"name": "Web GTI", "pics": []},
        })

        assert "Team APP (App) → WHERE pic IN ('VN_minhlh', 'VN_anhtn')" in text
        assert "WEB_GTI" not in text
        assert PromptTemplates.team_context({}) == ""

    def test_generation_system_sections(self):
        """Test optional sections are appended only when given."""
        bare = PromptTemplates.generation_system("q", "DETECTED CONCEPTS:")
        full = PromptTemplates.generation_system(
            "q", "ctx",
            conversation_summary="**PREVIOUS CONVERSATION:**\nUser: hi",
            team_context="Team APP",
        )

        assert "TEAM CONTEXT" not in bare
        assert "**TEAM CONTEXT:**\nTeam APP" in full
        assert full.count("PREVIOUS CONVERSATION") == 1

    def test_schema_reference(self, metadata_store):
        """Test tables, columns and rules are listed."""
        text = PromptTemplates.schema_reference(metadata_store.get_tables(), metadata_store.get_rules())

        assert text.startswith("TABLES:")
        assert "`gcpp-check.GI_publisher.pub_data`" in text
        assert "BUSINESS RULES:" in text


class TestUsageTracker:
    """Test cases for token and cost accounting."""

    def test_record_costs_per_model(self):
        """Test costs use the per-million pricing of the model."""
        tracker = UsageTracker(pricing={})
        usage = SimpleNamespace(prompt_tokens=1000, completion_tokens=500, total_tokens=1500)

        record = tracker.record("gpt-4o", usage, 12.5)

        assert record.input_cost == pytest.approx(0.005)
        assert record.output_cost == pytest.approx(0.0075)
        assert record.total_cost == pytest.approx(0.0125)
        assert record.execution_time_ms == 12.5

    def test_unknown_model_uses_default_pricing(self):
        """Test models without a price fall back to the default."""
        tracker = UsageTracker(pricing={})
        usage = SimpleNamespace(prompt_tokens=1_000_000, completion_tokens=0, total_tokens=1_000_000)

        assert tracker.record("gpt-4.1-mini", usage).total_cost == pytest.approx(5.0)

    def test_pricing_override(self):
        """Test configured prices replace the built-in ones."""
        tracker = UsageTracker(pricing={"gpt-4.1-mini": {"input": 0.4, "output": 1.6}})

        assert tracker.cost("gpt-4.1-mini", 1_000_000, 1_000_000)["total_cost"] == pytest.approx(2.0)

    def test_missing_usage_ignored(self):
        """Test responses without a usage block are not counted."""
        tracker = UsageTracker(pricing={})

        assert tracker.record("gpt-4o", None) is None
        assert tracker.summary() == {}

    def test_client_records_usage(self):
        """Test each completion adds its tokens to the model totals."""
        sdk = MagicMock()
        sdk.chat.completions.create.return_value = SimpleNamespace(
            choices=[SimpleNamespace(message=SimpleNamespace(content="SELECT 1"))],
            usage=SimpleNamespace(prompt_tokens=200, completion_tokens=50, total_tokens=250),
        )
        client = CompletionClient(client=sdk, usage_tracker=UsageTracker(pricing={}))

        client.chat_completion([{"role": "user", "content": "hi"}], model="gpt-4o-mini")
        client.chat_completion([{"role": "user", "content": "hi"}], model="gpt-4o-mini")

        totals = client.usage.summary()["gpt-4o-mini"]
        assert totals["calls"] == 2
        assert totals["prompt_tokens"] == 400
        assert totals["completion_tokens"] == 100
