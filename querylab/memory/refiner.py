"""Follow-up refinement: edit the previous SQL instead of regenerating it."""

from typing import Optional

from .models import RefinementResult
from ..knowledge.store import MetadataStore
from ..llm import CompletionClient, PromptTemplates, RefinementOutput
from ..utils import QueryLabError, RefinementError, setup_logger

logger = setup_logger(__name__)


class SqlRefiner:
    """Refines a working SQL query with the cheap model tier."""

    def __init__(self, client: CompletionClient, store: Optional[MetadataStore] = None):
        """Initialize the refiner.

        Args:
            client: Completion client
            store: Knowledge base used for the schema reference
        """
        self.client = client
        self.store = store

    def schema_reference(self) -> str:
        if self.store is None:
            return ""
        return PromptTemplates.schema_reference(self.store.get_tables(), self.store.get_rules())

    def refine(self, new_question: str, previous_question: str, previous_sql: str) -> RefinementResult:
        """Modify ``previous_sql`` so that it answers ``new_question``.

        Raises:
            RefinementError: On any completion, parsing or schema failure
        """
        if not previous_sql or not previous_sql.strip():
            raise RefinementError("No previous SQL to refine")

        model = self.client.model_for("refinement")
        prompt = PromptTemplates.refinement(
            new_question=new_question,
            previous_question=previous_question,
            previous_sql=previous_sql,
            schema_reference=self.schema_reference(),
        )

        try:
            output = self.client.complete_structured(
                system=PromptTemplates.REFINEMENT_SYSTEM,
                user=prompt,
                schema=RefinementOutput,
                model=model,
                temperature=self.client.temperature_for("refinement"),
            )
        except QueryLabError as e:
            logger.error(f"Refinement error: {e}")
            raise RefinementError(f"Refinement failed: {e}") from e

        logger.info(f"Refined SQL with {len(output.changes)} changes using {model}")
        return RefinementResult(sql=output.sql, changes=output.changes, model=model)
