"""Unit tests for the BigQuery client and the read-only guard."""

from datetime import date
from unittest.mock import MagicMock

import pytest
from google.api_core import exceptions as gcp_exceptions
from google.auth.exceptions import RefreshError

from querylab.database import (
    BigQueryClient,
    check_read_only,
    enforce_row_limit,
    infer_column_metadata,
)
from querylab.utils import BigQueryError, UnsafeQueryError


class RowIterator(list):
    """Stand-in for google.cloud.bigquery RowIterator."""

    def __init__(self, rows, schema=()):
        super().__init__(rows)
        self.total_rows = len(rows)
        self.schema = list(schema)


def make_field(name, field_type):
    field = MagicMock()
    field.name = name
    field.field_type = field_type
    return field


def client_returning(rows=None, error=None):
    job = MagicMock()
    job.total_bytes_processed = 2048
    if error is not None:
        job.result.side_effect = error
    else:
        job.result.return_value = RowIterator(
            rows or [],
            schema=[make_field("pubname", "STRING"), make_field("revenue", "FLOAT")],
        )
    client = MagicMock()
    client.query.return_value = job
    return client


class TestCheckReadOnly:
    """Test cases for the read-only guard."""

    @pytest.mark.parametrize("sql", [
        "SELECT 1",
        "  with t AS (SELECT 1) SELECT * FROM t",
        "SELECT u.product FROM `gcpp-check.GI_publisher.updated_product_name` u",
        "SELECT created_date FROM t",
    ])
    def test_accepts_queries(self, sql):
        """Test read-only queries pass, including look-alike identifiers."""
        assert check_read_only(sql) == sql.strip()

    def test_rejects_non_select_statement(self):
        """Test statements that do not start with SELECT or WITH are rejected."""
        with pytest.raises(UnsafeQueryError, match="Only SELECT queries are allowed") as exc_info:
            check_read_only("DELETE FROM t WHERE 1 = 1")

        assert exc_info.value.statement == "DELETE"

    def test_rejects_embedded_keyword(self):
        """Test a modification keyword anywhere in the text is rejected."""
        with pytest.raises(UnsafeQueryError, match="Dangerous keyword detected: DROP") as exc_info:
            check_read_only("SELECT 1; DROP TABLE t")

        assert exc_info.value.statement == "DROP"

    @pytest.mark.parametrize("sql", ["", "   ", None])
    def test_rejects_empty(self, sql):
        """Test empty input is rejected."""
        with pytest.raises(UnsafeQueryError, match="required"):
            check_read_only(sql)


class TestResultHelpers:
    """Test cases for row limits and column metadata."""

    def test_row_limit_appended(self):
        """Test a LIMIT is added and trailing semicolons dropped."""
        assert enforce_row_limit("SELECT * FROM t;") == "SELECT * FROM t\nLIMIT 10000"

    def test_existing_limit_kept(self):
        """Test queries with their own LIMIT are unchanged."""
        sql = "SELECT * FROM t LIMIT 5"

        assert enforce_row_limit(sql, limit=100) == sql

    def test_infer_column_metadata(self):
        """Test measures are metrics and everything else is a dimension."""
        columns = infer_column_metadata([{
            "pubname": "Acme",
            "total_rev": 10.5,
            "month": 3,
            "date": date(2024, 11, 1),
            "is_active": True,
        }])

        by_name = {c["name"]: c for c in columns}
        assert by_name["pubname"] == {
            "name": "pubname", "label": "Pubname", "type": "string", "category": "dimension",
        }
        assert by_name["total_rev"]["category"] == "metric"
        assert by_name["total_rev"]["label"] == "Total Rev"
        assert by_name["month"]["category"] == "dimension"
        assert by_name["date"]["type"] == "date"
        assert by_name["is_active"]["type"] == "boolean"
        assert infer_column_metadata([]) == []


class TestBigQueryClient:
    """Test cases for query execution and error mapping."""

    def test_successful_query(self):
        """Test rows, schema and timing are returned."""
        rows = [{"pubname": "Acme", "revenue": 10.0}, {"pubname": "Beta", "revenue": 5.0}]
        client = client_returning(rows)
        bq = BigQueryClient(client=client)

        result = bq.execute_query("SELECT 1")

        assert result["success"] is True
        assert result["rows"] == rows
        assert result["row_count"] == 2
        assert result["bytes_processed"] == 2048
        assert result["schema"] == [
            {"name": "pubname", "type": "STRING"},
            {"name": "revenue", "type": "FLOAT"},
        ]
        assert result["execution_time_ms"] >= 0
        client.query.return_value.result.assert_called_once_with(timeout=120, max_results=10000)

    def test_dry_run(self):
        """Test dry runs report bytes without fetching rows."""
        client = client_returning()

        result = BigQueryClient(client=client).validate_query("SELECT 1")

        assert result == {"success": True, "dry_run": True, "bytes_processed": 2048, "is_valid": True}
        client.query.return_value.result.assert_not_called()

    @pytest.mark.parametrize("error, prefix, error_type", [
        (gcp_exceptions.BadRequest("Unrecognized name: mname"), "Invalid SQL query: ", "SyntaxError"),
        (gcp_exceptions.TooManyRequests("Exceeded rate limits"), "rateLimitExceeded: ", "RateLimitError"),
        (gcp_exceptions.ServiceUnavailable("backendError"), "Service unavailable: ", "TransientError"),
        (gcp_exceptions.InternalServerError("backendError"), "Internal error: ", "TransientError"),
        (gcp_exceptions.DeadlineExceeded("slow"), "Deadline exceeded: query timeout after 120s", "TimeoutError"),
        (ConnectionError("reset"), "Service unavailable (connection error): ", "TransientError"),
        (RefreshError("invalid_grant: token expired"), "Query execution failed: ", "RefreshError"),
        (ValueError("bad job config"), "Query execution failed: ", "ValueError"),
    ])
    def test_error_mapping(self, error, prefix, error_type):
        """Test failures come back as results whose text keeps a retry cue."""
        result = BigQueryClient(client=client_returning(error=error)).execute_query("SELECT 1")

        assert result["success"] is False
        assert result["error"].startswith(prefix)
        assert result["error_type"] == error_type

    def test_quota_keeps_message(self):
        """Test quota exhaustion is reported as-is, not as a rate limit."""
        error = gcp_exceptions.TooManyRequests("Quota exceeded: Your project exceeded quota")

        result = BigQueryClient(client=client_returning(error=error)).execute_query("SELECT 1")

        assert result["error_type"] == "QuotaError"
        assert "rateLimitExceeded" not in result["error"]
        assert "Quota exceeded" in result["error"]

    @pytest.mark.parametrize("error, error_type", [
        (gcp_exceptions.Forbidden("Access Denied: Table pub_data"), "PermissionError"),
        (gcp_exceptions.NotFound("Table missing was not found"), "NotFoundError"),
    ])
    def test_errors_without_prefix(self, error, error_type):
        """Test permission and not-found errors keep the BigQuery text."""
        result = BigQueryClient(client=client_returning(error=error)).execute_query("SELECT 1")

        assert result["error"] == str(error)
        assert result["error_type"] == error_type

    def test_list_tables_not_found(self):
        """Test metadata calls raise instead of returning error results."""
        client = MagicMock()
        client.list_tables.side_effect = gcp_exceptions.NotFound("nope")

        with pytest.raises(BigQueryError, match="Dataset not found"):
            BigQueryClient(project_id="p", dataset="d", client=client).list_tables()

    def test_estimate_query_cost(self):
        """Test cost estimates use on-demand pricing."""
        result = BigQueryClient(client=client_returning()).estimate_query_cost("SELECT 1")

        assert result["success"] is True
        assert result["readable_size"] == "2.00 KB"
        assert result["estimated_cost_usd"] == pytest.approx(2048 / 1024 ** 4 * 5)

    def test_close(self):
        """Test closing releases the underlying client."""
        client = MagicMock()
        bq = BigQueryClient(client=client)

        bq.close()

        client.close.assert_called_once_with()
        assert bq._client is None
