"""Main agent: question in, SQL and results out."""

import re
import time
import uuid
from typing import Any, Callable, Dict, Mapping, Optional

from ..config import settings
from ..database import BigQueryClient, check_read_only, enforce_row_limit, infer_column_metadata
from ..execution import ExecutionRetryEngine, SqlFixer
from ..generation import GenerationResult, SqlGenerator
from ..graph import PipelineState, compile_app, register_components, unregister_components
from ..knowledge import ContextBuilder, Example, MetadataStore
from ..learning import FeedbackType, LearningStore
from ..llm import CompletionClient, PromptTemplates
from ..memory import ConversationStore
from ..utils import (
    BestEffortExecutor,
    InvalidColumnsError,
    QueryLabError,
    UnsafeQueryError,
    ValidationError,
    best_effort,
    setup_logger,
)

logger = setup_logger(__name__)

_TITLE_PREFIX_RE = re.compile(
    r"^(show|find|get|list|display|what|how|can you|please|tìm|hiển thị|liệt kê|cho tôi|xem)\s+",
    re.IGNORECASE,
)
_TITLE_SUFFIX_RE = re.compile(r"[?!.,]+$")


def result_title(question: str) -> str:
    """Short display title for a result set, derived from the question."""
    title = _TITLE_PREFIX_RE.sub("", (question or "").strip())
    title = _TITLE_SUFFIX_RE.sub("", title).strip()
    if not title:
        return "Query Results"
    title = title[0].upper() + title[1:]
    if len(title) > 60:
        title = title[:57] + "..."
    return title


ERROR_CODES = {
    "InvalidColumnsError": "invalid_columns",
    "GenerationError": "generation_failed",
    "UnsafeQueryError": "unsafe_query",
}


class QueryLabAgent:
    """Natural-language analytics agent.

    This agent:
    1. Classifies each question as a follow-up or a new topic
    2. Refines the previous SQL or generates new SQL from the knowledge base
    3. Validates columns and applies learned corrections
    4. Executes on BigQuery with retry and AI-assisted repair
    5. Records outcomes for the learning loop
    """

    def __init__(
        self,
        client: Optional[CompletionClient] = None,
        warehouse: Optional[Any] = None,
        metadata_store: Optional[MetadataStore] = None,
        conversation_store: Optional[ConversationStore] = None,
        learning_store: Optional[LearningStore] = None,
        background: Optional[BestEffortExecutor] = None,
        data_dir: Optional[str] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """Initialize the agent.

        Nothing here touches the network; the completion and BigQuery
        clients are built on first use.

        Args:
            client: Completion client
            warehouse: Object with ``execute_query(sql) -> dict`` (BigQuery by default)
            metadata_store: Knowledge base
            conversation_store: Session history
            learning_store: Feedback and learned rules
            background: Executor for fire-and-forget writes
            data_dir: Directory for operational data (defaults to storage.data_dir)
            sleep: Sleep function used between execution retries
        """
        self.background = background or best_effort
        self.client = client or CompletionClient()
        self.warehouse = warehouse or BigQueryClient()

        self.metadata_store = metadata_store or MetadataStore(data_dir=data_dir)
        self.conversation_store = conversation_store or ConversationStore(data_dir=data_dir)
        self.learning_store = learning_store or LearningStore(
            data_dir=data_dir,
            seed_rules=self.metadata_store.get_seed_learned_rules(),
        )

        self.context_builder = ContextBuilder(self.metadata_store, background=self.background)
        self.generator = SqlGenerator(
            client=self.client,
            context_builder=self.context_builder,
            conversation_store=self.conversation_store,
            learning_store=self.learning_store,
            background=self.background,
        )
        self.fixer = SqlFixer(self.client, self.metadata_store)
        self.engine = ExecutionRetryEngine(
            warehouse=self.warehouse,
            fixer=self.fixer,
            learning_store=self.learning_store,
            background=self.background,
            sleep=sleep,
        )

        self.row_limit = int(settings.get("execution.row_limit", 10000))
        self.app = compile_app()

        logger.info("✓ QueryLab agent initialized")

    def team_context(self) -> str:
        return PromptTemplates.team_context(self.metadata_store.get_teams())

    def ask(
        self,
        question: str,
        session_id: Optional[str] = None,
        execute: bool = True,
    ) -> Dict[str, Any]:
        """Answer a natural-language question.

        Args:
            question: Natural-language question
            session_id: Conversation session for follow-up questions
            execute: Whether to execute the SQL (if False, only generates SQL)

        Returns:
            Dictionary containing:
                - success: Boolean indicating success
                - sql, source, question_type, confidence, warnings, changes
                - results, row_count, retry_info (if execute=True)
                - error, message (if failed)
        """
        logger.info(f"\n{'='*60}")
        logger.info(f"Processing question: {question}")
        logger.info(f"{'='*60}")

        run_id = str(uuid.uuid4())
        register_components(run_id, {
            "generator": self.generator,
            "engine": self.engine,
            "conversation_store": self.conversation_store,
            "team_context": self.team_context(),
        })

        try:
            final = self.app.invoke(PipelineState(
                question=question,
                run_id=run_id,
                session_id=session_id,
                execute=execute,
            ))
            state = final if isinstance(final, PipelineState) else PipelineState(**final)

        except Exception as e:
            logger.error(f"Question processing failed: {str(e)}")
            return {
                "success": False,
                "error": "processing_failed",
                "message": str(e),
                "session_id": session_id,
            }
        finally:
            unregister_components(run_id)

        return self._build_response(state)

    def _build_response(self, state: PipelineState) -> Dict[str, Any]:
        if not state.generation:
            response = {
                "success": False,
                "error": ERROR_CODES.get(state.error_type, "generation_failed"),
                "message": state.error,
                "session_id": state.session_id,
            }
            if state.invalid_columns:
                response["invalid_columns"] = state.invalid_columns
            return response

        generation = state.generation
        response = {
            "success": state.error is None,
            "sql": generation["sql"],
            "source": generation["source"],
            "question_type": generation["question_type"],
            "confidence": generation["confidence"],
            "warnings": generation["warnings"],
            "changes": generation["changes"],
            "fixes": generation["fixes"],
            "reasoning": generation["reasoning"],
            "understanding": generation["understanding"],
            "title": result_title(state.question),
            "session_id": state.session_id,
        }

        if state.execution is not None:
            execution = state.execution
            response["retry_info"] = execution["retry_info"]
            response["execution_time_ms"] = execution["execution_time_ms"]
            if execution["success"]:
                response["sql"] = execution["retry_info"]["final_sql"]
                response["results"] = execution["results"]
                response["row_count"] = execution["row_count"]
                response["columns"] = infer_column_metadata(execution["results"])
            else:
                response["error"] = "execution_failed"
                response["message"] = execution["error"]

        return response

    def execute_sql(
        self,
        sql: str,
        question: str = "",
        session_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Run user-supplied SQL: read-only guard, row limit, then the retry engine."""
        try:
            safe_sql = enforce_row_limit(check_read_only(sql), self.row_limit)
        except UnsafeQueryError as e:
            return {"success": False, "error": "unsafe_query", "message": str(e)}

        result = self.engine.execute(safe_sql, question=question, session_id=session_id).to_dict()
        if result["success"]:
            result["columns"] = infer_column_metadata(result["results"])
        else:
            result["message"] = result["error"]
            result["error"] = "execution_failed"
        return result

    def run_report(self, sections: Mapping[str, str], question: str = "") -> Dict[str, Any]:
        """Execute independent report sections concurrently.

        Args:
            sections: Mapping of section name to SQL
            question: Report description recorded with each execution

        Returns:
            Dictionary with overall ``success`` and per-section results
        """
        results: Dict[str, Dict[str, Any]] = {}
        runnable: Dict[str, str] = {}

        for name, sql in sections.items():
            try:
                runnable[name] = enforce_row_limit(check_read_only(sql), self.row_limit)
            except UnsafeQueryError as e:
                results[name] = {"success": False, "error": "unsafe_query", "message": str(e)}

        for name, result in self.engine.execute_many(runnable, question=question).items():
            results[name] = result.to_dict()

        return {
            "success": all(r["success"] for r in results.values()),
            "sections": {name: results[name] for name in sections},
        }

    def submit_feedback(
        self,
        question: str,
        sql: Optional[str] = None,
        feedback_type: str = "positive",
        feedback_text: Optional[str] = None,
        user_id: Optional[str] = None,
        session_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Record user feedback on a generated query (fire-and-forget)."""
        if not question:
            return {"success": False, "error": "invalid_request", "message": "Question is required"}
        try:
            feedback = FeedbackType(feedback_type)
        except ValueError:
            return {
                "success": False,
                "error": "invalid_request",
                "message": f"Unknown feedback type: {feedback_type}",
            }

        self.background.submit(
            self.learning_store.record_feedback,
            question,
            sql,
            feedback,
            feedback_text=feedback_text,
            user_id=user_id,
            label="store feedback",
        )

        if sql and feedback in (FeedbackType.POSITIVE, FeedbackType.NEGATIVE):
            example = Example(
                question=question,
                sql=sql,
                feedback_type="user_positive" if feedback == FeedbackType.POSITIVE else "user_negative",
                session_id=session_id,
            )
            self.background.submit(self.metadata_store.add_example, example, label="store feedback example")

        return {"success": True, "message": "Feedback stored successfully"}

    def analyze_error(self, question: str, sql: str, error_message: str) -> Dict[str, Any]:
        """Single-shot repair: a fixed SQL, or a clarifying question for the user."""
        if not question or not sql or not error_message:
            return {
                "success": False,
                "error": "invalid_request",
                "message": "Question, SQL, and error message are required",
            }

        try:
            output = self.fixer.analyze(sql, error_message, question)
        except QueryLabError as e:
            logger.error(f"Error analysis failed: {e}")
            return {"success": False, "error": "analysis_failed", "message": str(e)}

        self.background.submit(
            self.learning_store.record_error, question, sql, error_message,
            label="store error case",
        )

        if output.can_fix and output.fixed_sql:
            return {
                "success": True,
                "fixed": True,
                "sql": output.fixed_sql,
                "explanation": output.explanation or "SQL has been fixed",
            }

        return {
            "success": True,
            "fixed": False,
            "clarifying_question": output.clarifying_question
            or "Could you please provide more details about what you want to query?",
            "explanation": output.explanation or "Need more information to fix the query",
        }

    # ------------------------------------------------------------------
    # Plan workflow: plan, confirm or revise, then SQL
    # ------------------------------------------------------------------

    def generate_plan(self, question: str, session_id: Optional[str] = None) -> Dict[str, Any]:
        """Draft a numbered plan for the question without writing SQL."""
        if not question or not question.strip():
            return {"success": False, "error": "invalid_request", "message": "Question is required"}

        try:
            result = self.generator.generate_plan(
                question, session_id=session_id, team_context=self.team_context(),
            )
        except QueryLabError as e:
            logger.error(f"Plan generation failed: {e}")
            return {"success": False, "error": "plan_failed", "message": str(e)}

        return {
            "success": True,
            "plan": result.plan,
            "confidence": result.confidence,
            "session_id": session_id,
        }

    def update_plan(
        self,
        question: str,
        plan: str,
        feedback: str,
        session_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Revise a plan with the user's feedback."""
        if not question or not plan or not feedback:
            return {
                "success": False,
                "error": "invalid_request",
                "message": "Question, plan, and feedback are required",
            }

        try:
            result = self.generator.update_plan(question, plan, feedback, session_id=session_id)
        except QueryLabError as e:
            logger.error(f"Plan update failed: {e}")
            return {"success": False, "error": "plan_failed", "message": str(e)}

        return {
            "success": True,
            "plan": result.plan,
            "confidence": result.confidence,
            "session_id": session_id,
        }

    def generate_sql_from_plan(
        self,
        question: str,
        plan: str,
        session_id: Optional[str] = None,
        execute: bool = True,
    ) -> Dict[str, Any]:
        """Write SQL for a confirmed plan and, optionally, execute it."""
        if not question or not plan:
            return {"success": False, "error": "invalid_request", "message": "Question and plan are required"}

        try:
            generation = self.generator.generate_from_plan(
                question, plan, team_context=self.team_context(),
            )
        except QueryLabError as e:
            return self._plan_failure(e, session_id)

        return self._plan_response(question, plan, generation, session_id, execute)

    def adjust_sql(
        self,
        question: str,
        plan: str,
        sql: str,
        feedback: str,
        session_id: Optional[str] = None,
        execute: bool = True,
    ) -> Dict[str, Any]:
        """Regenerate SQL for a plan after the user's feedback on a previous SQL."""
        if not question or not plan or not sql or not feedback:
            return {
                "success": False,
                "error": "invalid_request",
                "message": "Question, plan, SQL, and feedback are required",
            }

        try:
            generation = self.generator.adjust_sql(
                question, plan, sql, feedback, team_context=self.team_context(),
            )
        except QueryLabError as e:
            return self._plan_failure(e, session_id)

        return self._plan_response(question, plan, generation, session_id, execute)

    def refine_reasoning(
        self,
        question: str,
        reasoning: Dict[str, Any],
        step: int,
        feedback: str,
        session_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Revise the four reasoning steps after feedback on one of them."""
        if not question or not reasoning or not feedback:
            return {
                "success": False,
                "error": "invalid_request",
                "message": "Question, reasoning, and feedback are required",
            }

        try:
            output = self.generator.refine_reasoning(
                question, reasoning, step, feedback, session_id=session_id,
            )
        except ValidationError as e:
            return {"success": False, "error": "invalid_request", "message": str(e)}
        except QueryLabError as e:
            logger.error(f"Reasoning refinement failed: {e}")
            return {"success": False, "error": "refinement_failed", "message": str(e)}

        return {
            "success": True,
            "reasoning": output.reasoning,
            "ai_response": output.ai_response,
            "confidence": output.confidence,
        }

    def _plan_failure(self, error: QueryLabError, session_id: Optional[str]) -> Dict[str, Any]:
        logger.error(f"SQL from plan failed: {error}")
        response = {
            "success": False,
            "error": ERROR_CODES.get(type(error).__name__, "generation_failed"),
            "message": str(error),
            "session_id": session_id,
        }
        if isinstance(error, InvalidColumnsError):
            response["invalid_columns"] = error.invalid_columns
        return response

    def _plan_response(
        self,
        question: str,
        plan: str,
        generation: GenerationResult,
        session_id: Optional[str],
        execute: bool,
    ) -> Dict[str, Any]:
        response = {
            "success": True,
            "sql": generation.sql,
            "source": generation.source,
            "warnings": generation.warnings,
            "fixes": generation.fixes,
            "title": result_title(question),
            "session_id": session_id,
        }
        if not execute:
            return response

        try:
            safe_sql = enforce_row_limit(check_read_only(generation.sql), self.row_limit)
        except UnsafeQueryError as e:
            response.update(success=False, error="unsafe_query", message=str(e))
            return response

        result = self.engine.execute(
            safe_sql, question=question, session_id=session_id, plan=plan,
        ).to_dict()
        response["retry_info"] = result["retry_info"]
        response["execution_time_ms"] = result["execution_time_ms"]
        if result["success"]:
            response["sql"] = result["retry_info"]["final_sql"]
            response["results"] = result["results"]
            response["row_count"] = result["row_count"]
            response["columns"] = infer_column_metadata(result["results"])
        else:
            response.update(success=False, error="execution_failed", message=result["error"])
        return response

    def shutdown(self) -> None:
        """Drain background writes and close the warehouse client."""
        self.background.wait()
        close = getattr(self.warehouse, "close", None)
        if callable(close):
            close()
