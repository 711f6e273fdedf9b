"""Tiered SQL generation: cheap refinement for follow-ups, full generation otherwise."""

from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, Field

from .columns import ColumnValidator
from ..config import settings
from ..database.columns import VALID_COLUMNS
from ..knowledge import ContextBuilder, Example, KnowledgeContext, MetadataStore
from ..learning import FeedbackType, LearningStore
from ..llm import (
    CompletionClient,
    GenerationOutput,
    PlanOutput,
    PromptTemplates,
    ReasoningRefinementOutput,
)
from ..memory import (
    Classification,
    ConversationContext,
    ConversationStore,
    QuestionClassifier,
    QuestionType,
    SqlRefiner,
)
from ..utils import (
    BestEffortExecutor,
    GenerationError,
    InvalidColumnsError,
    QueryLabError,
    ValidationError,
    best_effort,
    setup_logger,
)
from ..utils.text import detect_language

logger = setup_logger(__name__)


class GenerationResult(BaseModel):
    """Final SQL for a question, with how it was produced."""

    sql: str
    warnings: List[str] = Field(default_factory=list)
    source: str = "generated"  # refined | generated | plan | adjusted
    question_type: QuestionType = QuestionType.NEW_TOPIC
    confidence: float = Field(default=1.0, ge=0.0, le=1.0)
    model: str = ""
    changes: List[str] = Field(default_factory=list)
    fixes: List[str] = Field(default_factory=list)
    reasoning: Dict[str, Any] = Field(default_factory=dict)
    understanding: Dict[str, Any] = Field(default_factory=dict)
    context: Dict[str, Any] = Field(default_factory=dict)
    patterns_used: List[str] = Field(default_factory=list)


class PlanResult(BaseModel):
    """A numbered plan awaiting the user's confirmation."""

    plan: str
    confidence: float = Field(default=0.8, ge=0.0, le=1.0)
    model: str = ""


class SqlGenerator:
    """Chooses between refinement and full generation, then post-processes."""

    def __init__(
        self,
        client: CompletionClient,
        context_builder: ContextBuilder,
        conversation_store: ConversationStore,
        learning_store: LearningStore,
        classifier: Optional[QuestionClassifier] = None,
        refiner: Optional[SqlRefiner] = None,
        validator: Optional[ColumnValidator] = None,
        background: Optional[BestEffortExecutor] = None,
    ):
        """Initialize the generator.

        Args:
            client: Completion client
            context_builder: Knowledge context builder
            conversation_store: Session history
            learning_store: Learned rules and feedback
            classifier: Follow-up classifier
            refiner: Follow-up refiner
            validator: Column allow-list validator
            background: Executor for fire-and-forget writes
        """
        self.client = client
        self.context_builder = context_builder
        self.conversation_store = conversation_store
        self.learning_store = learning_store
        self.classifier = classifier or QuestionClassifier()
        self.refiner = refiner or SqlRefiner(client, context_builder.store)
        self.validator = validator or ColumnValidator()
        self.background = background or best_effort
        self.context_limit = int(settings.get("conversation.context_limit", 5))

    @property
    def metadata_store(self) -> MetadataStore:
        return self.context_builder.store

    def generate(
        self,
        question: str,
        session_id: Optional[str] = None,
        team_context: Optional[str] = None,
        conversation: Optional[ConversationContext] = None,
    ) -> GenerationResult:
        """Generate SQL for a question.

        Args:
            question: Natural-language question
            session_id: Conversation session (enables follow-up refinement)
            team_context: Team to PIC mapping text for the prompt
            conversation: Pre-loaded session context (loaded from the store if None)

        Returns:
            GenerationResult

        Raises:
            GenerationError: If full generation fails
            InvalidColumnsError: If the SQL still references unknown columns
        """
        if not question or not question.strip():
            raise GenerationError("Question is required")

        if conversation is None:
            conversation = (
                self.conversation_store.get_context(session_id, limit=self.context_limit)
                if session_id else ConversationContext.empty("")
            )
        classification = self.classifier.classify(question, conversation)

        if session_id and classification.type == QuestionType.FOLLOW_UP:
            refined = self._try_refinement(question, conversation, classification)
            if refined is not None:
                return refined
            # Fall back to a full generation of the question
            classification = Classification(
                type=QuestionType.NEW_TOPIC,
                confidence=classification.confidence,
                reason=f"Refinement failed, regenerated ({classification.reason})",
            )

        return self._generate_full(question, session_id, conversation, classification, team_context)

    # ------------------------------------------------------------------
    # Tiers
    # ------------------------------------------------------------------

    def _try_refinement(
        self,
        question: str,
        conversation: ConversationContext,
        classification: Classification,
    ) -> Optional[GenerationResult]:
        previous = conversation.last_sql_message
        if previous is None:
            return None

        logger.info("Follow-up detected, refining previous SQL")
        try:
            refinement = self.refiner.refine(
                new_question=question,
                previous_question=conversation.previous_question,
                previous_sql=previous.sql,
            )
            sql, fixes = self.post_process(refinement.sql)
        except QueryLabError as e:
            logger.warning(f"Refinement failed, falling back to full generation: {e}")
            return None

        result = GenerationResult(
            sql=sql,
            source="refined",
            question_type=classification.type,
            confidence=classification.confidence,
            model=refinement.model,
            changes=refinement.changes,
            fixes=fixes,
        )
        self.background.submit(
            self.learning_store.record_success, question, sql, label="record refined success"
        )
        return result

    def _generate_full(
        self,
        question: str,
        session_id: Optional[str],
        conversation: ConversationContext,
        classification: Classification,
        team_context: Optional[str],
    ) -> GenerationResult:
        model = self.client.model_for("generation")

        try:
            knowledge = self.context_builder.build_context(question)
            summary = (
                self.conversation_store.build_summary(conversation)
                if conversation.has_context else None
            )
            system = PromptTemplates.generation_system(
                question=question,
                knowledge_context=knowledge.rendered_prompt,
                conversation_summary=summary,
                team_context=team_context,
            )

            logger.info(f"Generating SQL with {model} ({len(knowledge.concepts)} concepts)")
            output = self.client.complete_structured(
                system=system,
                user=PromptTemplates.generation_user(question),
                schema=GenerationOutput,
                model=model,
                temperature=self.client.temperature_for("generation"),
            )
            sql, fixes = self.post_process(output.sql)

        except InvalidColumnsError as e:
            self._record_failure(question, str(e))
            raise
        except QueryLabError as e:
            self._record_failure(question, str(e))
            raise GenerationError(f"Failed to generate SQL with KG: {e}") from e

        result = GenerationResult(
            sql=sql,
            warnings=output.warnings,
            source="generated",
            question_type=classification.type,
            confidence=classification.confidence,
            model=model,
            fixes=fixes,
            reasoning=output.reasoning,
            understanding=output.understanding,
            context=knowledge.summary(),
            patterns_used=[p.pattern.id for p in knowledge.patterns],
        )
        self._record_success(question, sql, knowledge, session_id)
        return result

    # ------------------------------------------------------------------
    # Plan workflow
    # ------------------------------------------------------------------

    def _history(self, session_id: Optional[str]) -> Optional[str]:
        if not session_id:
            return None
        conversation = self.conversation_store.get_context(session_id, limit=self.context_limit)
        return self.conversation_store.build_summary(conversation) if conversation.has_context else None

    def generate_plan(
        self,
        question: str,
        session_id: Optional[str] = None,
        team_context: Optional[str] = None,
    ) -> PlanResult:
        """Draft a numbered plan for the user to confirm before any SQL is written.

        Raises:
            GenerationError: If no plan could be produced
        """
        if not question or not question.strip():
            raise GenerationError("Question is required")

        model = self.client.model_for("generation")
        try:
            output = self.client.complete_structured(
                system=PromptTemplates.PLAN_SYSTEM,
                user=PromptTemplates.plan(question, team_context, self._history(session_id)),
                schema=PlanOutput,
                model=model,
                temperature=self.client.temperature_for("generation"),
            )
        except QueryLabError as e:
            raise GenerationError(f"Failed to generate plan: {e}") from e

        logger.info(f"Plan drafted ({output.confidence:.2f} confidence)")
        return PlanResult(plan=output.plan, confidence=output.confidence, model=model)

    def update_plan(
        self,
        question: str,
        plan: str,
        feedback: str,
        session_id: Optional[str] = None,
    ) -> PlanResult:
        """Revise a plan after user feedback, keeping its numbered format."""
        model = self.client.model_for("generation")
        try:
            output = self.client.complete_structured(
                system=PromptTemplates.PLAN_UPDATE_SYSTEM,
                user=PromptTemplates.plan_update(question, plan, feedback, self._history(session_id)),
                schema=PlanOutput,
                model=model,
                temperature=self.client.temperature_for("plan_update"),
            )
        except QueryLabError as e:
            raise GenerationError(f"Failed to update plan: {e}") from e

        return PlanResult(plan=output.plan, confidence=output.confidence, model=model)

    def generate_from_plan(
        self,
        question: str,
        plan: str,
        team_context: Optional[str] = None,
        source: str = "plan",
    ) -> GenerationResult:
        """Write SQL that carries out an agreed plan, then post-process it.

        Raises:
            GenerationError: If generation fails
            InvalidColumnsError: If the SQL still references unknown columns
        """
        model = self.client.model_for("generation")
        try:
            system = PromptTemplates.sql_from_plan_system(
                schema_reference=PromptTemplates.schema_reference(
                    self.metadata_store.get_tables(), self.metadata_store.get_rules()
                ),
                valid_columns=VALID_COLUMNS,
                team_context=team_context,
            )
            output = self.client.complete_structured(
                system=system,
                user=PromptTemplates.sql_from_plan_user(question, plan),
                schema=GenerationOutput,
                model=model,
                temperature=self.client.temperature_for("generation"),
            )
            sql, fixes = self.post_process(output.sql)

        except InvalidColumnsError as e:
            self._record_failure(question, str(e))
            raise
        except QueryLabError as e:
            self._record_failure(question, str(e))
            raise GenerationError(f"Failed to generate SQL from plan: {e}") from e

        self.background.submit(
            self.learning_store.record_success, question, sql, label="record plan success"
        )
        return GenerationResult(
            sql=sql,
            warnings=output.warnings,
            source=source,
            model=model,
            fixes=fixes,
            reasoning=output.reasoning,
            understanding=output.understanding,
        )

    def adjust_sql(
        self,
        question: str,
        plan: str,
        sql: str,
        feedback: str,
        team_context: Optional[str] = None,
    ) -> GenerationResult:
        """Regenerate SQL from the plan with the user's feedback on ``sql`` folded in."""
        logger.info(f"Adjusting SQL ({len(sql)} chars) from feedback: {feedback[:80]}")
        return self.generate_from_plan(
            question,
            f"{plan}\n\nUser feedback on SQL: {feedback}",
            team_context=team_context,
            source="adjusted",
        )

    def refine_reasoning(
        self,
        question: str,
        reasoning: Dict[str, Any],
        step: int,
        feedback: str,
        session_id: Optional[str] = None,
    ) -> ReasoningRefinementOutput:
        """Revise the four reasoning steps after feedback on one of them.

        Raises:
            ValidationError: If ``step`` is not 1 to 4
            GenerationError: If the model gives no usable revision
        """
        if step not in PromptTemplates.REASONING_STEPS:
            raise ValidationError(f"Reasoning step must be 1-4, got {step}")

        try:
            return self.client.complete_structured(
                system=PromptTemplates.REASONING_SYSTEM,
                user=PromptTemplates.reasoning_refinement(
                    question, reasoning, step, feedback, self._history(session_id)
                ),
                schema=ReasoningRefinementOutput,
                model=self.client.model_for("generation"),
                temperature=self.client.temperature_for("plan_update"),
            )
        except QueryLabError as e:
            raise GenerationError(f"Failed to refine reasoning: {e}") from e

    # ------------------------------------------------------------------
    # Post-processing
    # ------------------------------------------------------------------

    def post_process(self, sql: str) -> Tuple[str, List[str]]:
        """Static auto-fix, then learned rules, then column validation.

        Raises:
            InvalidColumnsError: If unknown columns remain
        """
        sql, fixes = self.validator.auto_fix(sql)

        sql, applied = self.learning_store.apply_learned_rules(sql)
        fixes.extend(applied)

        sql, more_fixes = self.validator.enforce(sql)
        fixes.extend(more_fixes)

        return sql.strip(), fixes

    # ------------------------------------------------------------------
    # Fire-and-forget learning
    # ------------------------------------------------------------------

    def _record_success(
        self,
        question: str,
        sql: str,
        knowledge: KnowledgeContext,
        session_id: Optional[str],
    ) -> None:
        example = Example(
            question=question,
            sql=sql,
            question_language=detect_language(question),
            tables_used=knowledge.schema_context.table_names,
            concepts_used=[c.concept.id for c in knowledge.concepts],
            patterns_used=[p.pattern.id for p in knowledge.patterns],
            feedback_type="auto_success",
            session_id=session_id,
        )
        self.background.submit(self.metadata_store.add_example, example, label="store example")
        self.background.submit(
            self.learning_store.record_feedback,
            question,
            sql,
            FeedbackType.POSITIVE,
            label="record positive feedback",
        )

    def record_pattern_outcome(
        self,
        pattern_ids: List[str],
        success: bool,
        execution_time_ms: Optional[float] = None,
    ) -> None:
        """Update the metrics of the patterns a query was built from."""
        for pattern_id in pattern_ids:
            self.background.submit(
                self.metadata_store.update_pattern_metrics,
                pattern_id,
                success,
                execution_time_ms,
                label="update pattern metrics",
            )

    def _record_failure(self, question: str, error_message: str) -> None:
        self.background.submit(
            self.learning_store.record_error, question, "", error_message,
            label="record generation error",
        )
