"""BigQuery client for executing SQL queries."""

import concurrent.futures
import threading
import time
from typing import Optional, List, Dict, Any
from google.cloud import bigquery
from google.api_core import exceptions as gcp_exceptions
from ..config import settings
from ..utils import BigQueryError, setup_logger

logger = setup_logger(__name__)


class BigQueryClient:
    """Client for interacting with Google BigQuery.

    ``execute_query`` never raises for query failures: it returns
    ``{"success": False, "error": ...}`` where the error text keeps the
    BigQuery message so that it can be classified for retry.
    """

    def __init__(
        self,
        project_id: Optional[str] = None,
        dataset: Optional[str] = None,
        location: Optional[str] = None,
        client: Optional[Any] = None,
    ):
        """Initialize BigQuery client.

        Args:
            project_id: GCP project ID (defaults to config)
            dataset: Default dataset name (defaults to config)
            location: BigQuery location (defaults to config)
            client: Pre-built google.cloud.bigquery.Client (built lazily if None)
        """
        bq_config = settings.bigquery

        self.project_id = project_id or bq_config.get("project_id")
        self.dataset = dataset or bq_config.get("dataset")
        self.location = location or bq_config.get("location", "US")
        self.query_timeout = bq_config.get("query_timeout", 120)
        self.max_results = bq_config.get("max_results", 10000)

        self._client = client
        self._client_lock = threading.Lock()

    @property
    def client(self) -> Any:
        """google.cloud.bigquery.Client, built on first use.

        Raises:
            ConfigurationError: If the project or dataset is not configured
            BigQueryError: If the client cannot be created
        """
        if self._client is None:
            with self._client_lock:
                if self._client is None:
                    self._client = self._build_client()
        return self._client

    def _build_client(self) -> Any:
        self.project_id = self.project_id or settings.require("bigquery.project_id", "GCP_PROJECT_ID")
        self.dataset = self.dataset or settings.require("bigquery.dataset", "BIGQUERY_DATASET")

        try:
            # Credentials come from GOOGLE_APPLICATION_CREDENTIALS or the environment
            client = bigquery.Client(project=self.project_id, location=self.location)
        except Exception as e:
            raise BigQueryError(f"Failed to initialize BigQuery client: {str(e)}") from e

        logger.info(
            f"Initialized BigQuery client for project: {self.project_id}, "
            f"dataset: {self.dataset}"
        )
        return client

    def execute_query(
        self,
        sql: str,
        timeout: Optional[int] = None,
        max_results: Optional[int] = None,
        dry_run: bool = False,
    ) -> Dict[str, Any]:
        """Execute a SQL query and return results.

        Args:
            sql: SQL query to execute
            timeout: Query timeout in seconds (uses default if None)
            max_results: Maximum number of results to return
            dry_run: If True, validate query without executing

        Returns:
            Dictionary containing:
                - success: bool
                - rows: List of result rows (if successful)
                - row_count: Number of rows returned
                - bytes_processed: Bytes processed by query
                - execution_time_ms: Wall time of the call
                - error: Error message (if failed)
        """
        timeout = timeout or self.query_timeout
        max_results = max_results or self.max_results
        started = time.monotonic()

        logger.info(f"Executing BigQuery SQL (dry_run={dry_run}):\n{sql[:500]}...")

        def failure(error_msg: str, error_type: str) -> Dict[str, Any]:
            logger.error(error_msg)
            return {
                "success": False,
                "error": error_msg,
                "error_type": error_type,
                "execution_time_ms": (time.monotonic() - started) * 1000,
            }

        try:
            job_config = bigquery.QueryJobConfig(
                use_query_cache=True,
                use_legacy_sql=False,
                dry_run=dry_run,
            )

            query_job = self.client.query(
                sql,
                job_config=job_config,
                location=self.location,
            )

            if dry_run:
                return {
                    "success": True,
                    "dry_run": True,
                    "bytes_processed": query_job.total_bytes_processed,
                    "is_valid": True,
                }

            results = query_job.result(timeout=timeout, max_results=max_results)
            rows = [dict(row) for row in results]

            result = {
                "success": True,
                "rows": rows,
                "row_count": len(rows),
                "total_rows": results.total_rows,
                "bytes_processed": query_job.total_bytes_processed,
                "schema": [{"name": field.name, "type": field.field_type} for field in results.schema],
                "execution_time_ms": (time.monotonic() - started) * 1000,
            }

            logger.info(
                f"Query successful: {result['row_count']} rows returned, "
                f"{result['bytes_processed']} bytes processed"
            )

            return result

        except (gcp_exceptions.TooManyRequests, gcp_exceptions.ResourceExhausted) as e:
            # Daily quota messages keep their own text
            if "quota exceeded" in str(e).lower():
                return failure(str(e), "QuotaError")
            return failure(f"rateLimitExceeded: {str(e)}", "RateLimitError")

        except gcp_exceptions.ServiceUnavailable as e:
            return failure(f"Service unavailable: {str(e)}", "TransientError")

        except gcp_exceptions.InternalServerError as e:
            return failure(f"Internal error: {str(e)}", "TransientError")

        except gcp_exceptions.Forbidden as e:
            return failure(str(e), "PermissionError")

        except gcp_exceptions.NotFound as e:
            return failure(str(e), "NotFoundError")

        except gcp_exceptions.BadRequest as e:
            return failure(f"Invalid SQL query: {str(e)}", "SyntaxError")

        except (gcp_exceptions.DeadlineExceeded, concurrent.futures.TimeoutError) as e:
            return failure(f"Deadline exceeded: query timeout after {timeout}s: {str(e)}", "TimeoutError")

        except ConnectionError as e:
            return failure(f"Service unavailable (connection error): {str(e)}", "TransientError")

        except Exception as e:
            # Credential refresh and transport failures
            return failure(f"Query execution failed: {str(e)}", type(e).__name__)

    def validate_query(self, sql: str) -> Dict[str, Any]:
        """Validate SQL query without executing it."""
        logger.info("Validating SQL query")
        return self.execute_query(sql, dry_run=True)

    def get_table_info(self, table_name: str, dataset: Optional[str] = None) -> Dict[str, Any]:
        """Get information about a table.

        Args:
            table_name: Name of the table
            dataset: Dataset name (uses default if None)

        Returns:
            Dictionary with table information

        Raises:
            BigQueryError: If table info retrieval fails
        """
        client = self.client
        dataset = dataset or self.dataset
        table_ref = f"{self.project_id}.{dataset}.{table_name}"

        try:
            table = client.get_table(table_ref)

            info = {
                "project": table.project,
                "dataset": table.dataset_id,
                "table": table.table_id,
                "num_rows": table.num_rows,
                "num_bytes": table.num_bytes,
                "modified": table.modified.isoformat() if table.modified else None,
                "schema": [
                    {
                        "name": field.name,
                        "type": field.field_type,
                        "mode": field.mode,
                        "description": field.description,
                    }
                    for field in table.schema
                ],
            }

            logger.info(f"Retrieved info for table: {table_ref}")
            return info

        except gcp_exceptions.NotFound as e:
            raise BigQueryError(f"Table not found: {table_ref}") from e
        except gcp_exceptions.GoogleAPICallError as e:
            raise BigQueryError(f"Failed to get table info: {str(e)}") from e

    def list_tables(self, dataset: Optional[str] = None) -> List[str]:
        """List all tables in a dataset.

        Raises:
            BigQueryError: If listing fails
        """
        client = self.client
        dataset = dataset or self.dataset
        dataset_ref = f"{self.project_id}.{dataset}"

        try:
            table_names = [table.table_id for table in client.list_tables(dataset_ref)]
            logger.info(f"Listed {len(table_names)} tables in dataset: {dataset}")
            return table_names

        except gcp_exceptions.NotFound as e:
            raise BigQueryError(f"Dataset not found: {dataset_ref}") from e
        except gcp_exceptions.GoogleAPICallError as e:
            raise BigQueryError(f"Failed to list tables: {str(e)}") from e

    def estimate_query_cost(self, sql: str) -> Dict[str, Any]:
        """Estimate the cost of running a query (bytes to be processed)."""
        result = self.validate_query(sql)

        if result.get("success"):
            bytes_processed = result.get("bytes_processed") or 0
            # On-demand pricing: $5 per TB
            estimated_cost_usd = (bytes_processed / (1024**4)) * 5

            return {
                "success": True,
                "bytes_processed": bytes_processed,
                "estimated_cost_usd": estimated_cost_usd,
                "readable_size": self._format_bytes(bytes_processed),
            }
        return result

    def _format_bytes(self, num_bytes: float) -> str:
        """Format bytes in human-readable format (e.g., "1.50 GB")."""
        for unit in ['B', 'KB', 'MB', 'GB', 'TB']:
            if num_bytes < 1024.0:
                return f"{num_bytes:.2f} {unit}"
            num_bytes /= 1024.0
        return f"{num_bytes:.2f} PB"

    def close(self):
        """Close the BigQuery client connection."""
        if self._client is not None:
            self._client.close()
            self._client = None
            logger.info("Closed BigQuery client connection")
