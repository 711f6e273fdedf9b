"""Self-healing execution: retry transient failures, repair fixable ones."""

import random
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional, Protocol, Tuple

from .errors import ErrorCategory, classify_error
from .fixer import SqlFixer
from ..config import settings
from ..core.state_machine import ExecutionState, ExecutionStateMachine
from ..learning import ExecutionStatus, LearningStore
from ..utils import BestEffortExecutor, QueryLabError, RetryConfig, best_effort, setup_logger

logger = setup_logger(__name__)


class Warehouse(Protocol):
    def execute_query(self, sql: str) -> Dict[str, Any]:
        ...


@dataclass(frozen=True)
class AttemptRecord:
    """One failed attempt."""

    attempt: int
    sql: str
    error: str
    error_type: str
    category: ErrorCategory
    fix_attempted: bool = False
    fixed: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "attempt": self.attempt,
            "sql": self.sql,
            "error": self.error,
            "error_type": self.error_type,
            "category": self.category.value,
            "fix_attempted": self.fix_attempted,
            "fixed": self.fixed,
        }


@dataclass(frozen=True)
class ExecutionResult:
    """Outcome of an execution request."""

    success: bool
    final_sql: str
    rows: Tuple[Dict[str, Any], ...] = ()
    row_count: int = 0
    execution_time_ms: float = 0.0
    error: Optional[str] = None
    error_type: Optional[str] = None
    history: Tuple[AttemptRecord, ...] = ()
    total_attempts: int = 0
    transitions: Tuple[str, ...] = field(default=(), compare=False)

    @property
    def was_retried(self) -> bool:
        return self.total_attempts > 1

    @property
    def exhausted(self) -> bool:
        return not self.success

    def to_dict(self) -> Dict[str, Any]:
        """Response payload: results, latency and a compact retry trace."""
        payload: Dict[str, Any] = {
            "success": self.success,
            "execution_time_ms": round(self.execution_time_ms, 2),
            "retry_info": {
                "total_attempts": self.total_attempts,
                "history": [record.to_dict() for record in self.history],
                "final_sql": self.final_sql,
                "was_retried": self.was_retried,
                "exhausted": self.exhausted,
            },
        }
        if self.success:
            payload["results"] = list(self.rows)
            payload["row_count"] = self.row_count
        else:
            payload["error"] = self.error
            payload["error_type"] = self.error_type
        return payload


class ExecutionRetryEngine:
    """Runs SQL with bounded retries and AI-assisted repair.

    Per request the state machine goes ATTEMPTING -> (RETRYING -> ATTEMPTING)*
    -> SUCCEEDED | EXHAUSTED. At most ``max_retries + 1`` statements are sent to
    the warehouse. Fatal errors exhaust at once without sleeping. Outcomes are
    written to the learning store through the best-effort executor.
    """

    def __init__(
        self,
        warehouse: Warehouse,
        fixer: Optional[SqlFixer] = None,
        learning_store: Optional[LearningStore] = None,
        background: Optional[BestEffortExecutor] = None,
        max_retries: Optional[int] = None,
        retry_config: Optional[RetryConfig] = None,
        fix_delay: Optional[float] = None,
        sleep: Callable[[float], None] = time.sleep,
        rng: Callable[[float, float], float] = random.uniform,
        clock: Callable[[], float] = time.monotonic,
    ):
        """Initialize the engine.

        Args:
            warehouse: Object with ``execute_query(sql) -> dict``
            fixer: Repair helper (auto-fixable errors are retried unchanged if None)
            learning_store: Outcome and error-pattern sink
            background: Executor for fire-and-forget writes
            max_retries: Retries after the first attempt (defaults to execution.max_retries)
            retry_config: Backoff settings (defaults to the execution section)
            fix_delay: Pause before running a patched statement
            sleep: Sleep function
            rng: Uniform random source for jitter
            clock: Monotonic clock used for latency
        """
        exec_config = settings.execution

        self.warehouse = warehouse
        self.fixer = fixer
        self.learning_store = learning_store
        self.background = background or best_effort
        self.max_retries = int(
            max_retries if max_retries is not None else exec_config.get("max_retries", 3)
        )
        self.retry_config = retry_config or RetryConfig(
            max_attempts=self.max_retries + 1,
            base_delay=float(exec_config.get("base_delay", 1.0)),
            max_delay=float(exec_config.get("max_delay", 8.0)),
            multiplier=float(exec_config.get("multiplier", 2.0)),
            jitter=exec_config.get("jitter", 0.2),
        )
        self.fix_delay = float(
            fix_delay if fix_delay is not None else exec_config.get("fix_delay", 0.5)
        )
        self.max_workers = int(exec_config.get("max_workers", 4))
        self.sleep = sleep
        self.rng = rng
        self.clock = clock

    def backoff(self, attempt: int) -> float:
        """Jittered backoff delay after the given 0-indexed attempt."""
        return self.retry_config.calculate_delay(attempt, rng=self.rng)

    def _run(self, sql: str) -> Dict[str, Any]:
        try:
            return self.warehouse.execute_query(sql)
        except QueryLabError as e:
            return {"success": False, "error": str(e)}
        except Exception as e:
            logger.error(f"Warehouse raised {type(e).__name__}: {e}")
            return {"success": False, "error": str(e), "error_type": type(e).__name__}

    def execute(
        self,
        sql: str,
        question: str = "",
        session_id: Optional[str] = None,
        plan: Optional[str] = None,
    ) -> ExecutionResult:
        """Execute SQL, retrying and repairing as the failures allow."""
        machine = ExecutionStateMachine()
        started = self.clock()
        current_sql = sql
        history: List[AttemptRecord] = []
        unfixed_retry_used = False
        last_error = ""
        last_error_type = "unknown"

        while True:
            attempt_index = machine.attempt
            logger.info(f"Execution attempt {attempt_index + 1}/{self.max_retries + 1}")

            response = self._run(current_sql)
            if response.get("success"):
                machine.transition_to(ExecutionState.SUCCEEDED, reason="query succeeded")
                rows = tuple(response.get("rows") or ())
                result = ExecutionResult(
                    success=True,
                    final_sql=current_sql,
                    rows=rows,
                    row_count=response.get("row_count", len(rows)),
                    execution_time_ms=(self.clock() - started) * 1000,
                    history=tuple(history),
                    total_attempts=attempt_index + 1,
                    transitions=tuple(t.to_state.value for t in machine.transitions),
                )
                logger.info(f"Success on attempt {attempt_index + 1}, rows: {result.row_count}")
                self._record(question, result, session_id, plan)
                return result

            last_error = response.get("error") or "Unknown error"
            classification = classify_error(last_error)
            last_error_type = classification.error_type
            logger.warning(
                f"Attempt {attempt_index + 1} failed ({classification.category.value}): "
                f"{last_error[:100]}"
            )

            attempts_left = attempt_index < self.max_retries
            fix_attempted = False
            next_sql = current_sql
            delay = 0.0
            give_up_reason = None

            if classification.category == ErrorCategory.FATAL:
                give_up_reason = f"non-retryable error type: {classification.error_type}"
            elif not attempts_left:
                give_up_reason = "max retries reached"
            elif classification.category == ErrorCategory.TRANSIENT:
                delay = self.backoff(attempt_index)
            else:
                patched = None
                if self.fixer is not None:
                    fix_attempted = True
                    patched = self.fixer.propose_fix(current_sql, last_error, question)
                if patched:
                    next_sql = patched
                    delay = self.fix_delay
                    unfixed_retry_used = False
                elif not unfixed_retry_used:
                    unfixed_retry_used = True
                    delay = self.backoff(attempt_index)
                else:
                    give_up_reason = "auto-fix produced no usable SQL twice"

            history.append(AttemptRecord(
                attempt=attempt_index + 1,
                sql=current_sql,
                error=last_error,
                error_type=classification.error_type,
                category=classification.category,
                fix_attempted=fix_attempted,
                fixed=next_sql != current_sql,
            ))

            if give_up_reason:
                machine.transition_to(ExecutionState.EXHAUSTED, reason=give_up_reason)
                logger.warning(f"Giving up: {give_up_reason}")
                break

            machine.transition_to(ExecutionState.RETRYING, reason=classification.category.value)
            logger.info(f"Retrying in {delay:.2f}s")
            self.sleep(delay)
            current_sql = next_sql
            machine.transition_to(ExecutionState.ATTEMPTING)

        result = ExecutionResult(
            success=False,
            final_sql=current_sql,
            execution_time_ms=(self.clock() - started) * 1000,
            error=last_error,
            error_type=last_error_type,
            history=tuple(history),
            total_attempts=len(history),
            transitions=tuple(t.to_state.value for t in machine.transitions),
        )
        self._record(question, result, session_id, plan)
        return result

    def execute_many(
        self,
        statements: Mapping[str, str],
        question: str = "",
        session_id: Optional[str] = None,
    ) -> Dict[str, ExecutionResult]:
        """Execute independent statements concurrently and wait for all of them."""
        if not statements:
            return {}

        workers = min(self.max_workers, len(statements))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="report") as pool:
            futures = {
                name: pool.submit(self.execute, sql, question or name, session_id)
                for name, sql in statements.items()
            }
            return {name: future.result() for name, future in futures.items()}

    def _record(
        self,
        question: str,
        result: ExecutionResult,
        session_id: Optional[str],
        plan: Optional[str] = None,
    ) -> None:
        if self.learning_store is None:
            return

        if result.success:
            status = ExecutionStatus.SUCCESS
        elif result.error_type == "timeout":
            status = ExecutionStatus.TIMEOUT
        else:
            status = ExecutionStatus.ERROR

        self.background.submit(
            self.learning_store.record_outcome,
            question=question,
            sql=result.final_sql,
            status=status,
            error_message=result.error,
            row_count=result.row_count if result.success else None,
            execution_time_ms=result.execution_time_ms,
            attempts=result.total_attempts,
            session_id=session_id,
            plan=plan,
            label="record execution",
        )
        if not result.success:
            self.background.submit(
                self.learning_store.record_error,
                question,
                result.final_sql,
                result.error,
                label="record error pattern",
            )
