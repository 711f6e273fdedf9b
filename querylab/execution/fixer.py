"""AI-assisted repair of SQL that failed in the warehouse."""

import re
from typing import Optional

from .errors import get_ai_error_context
from ..config import settings
from ..database.columns import COLUMN_NAME_FIXES, VALID_COLUMNS
from ..knowledge.store import MetadataStore
from ..llm import AutoFixOutput, CompletionClient, PromptTemplates
from ..utils import QueryLabError, setup_logger

logger = setup_logger(__name__)

_CODE_FENCE_RE = re.compile(r"^```(?:sql)?\s*|\s*```$", re.IGNORECASE)


def strip_code_fences(text: Optional[str]) -> str:
    """Remove a surrounding markdown code block, if any."""
    return _CODE_FENCE_RE.sub("", (text or "").strip()).strip()


class SqlFixer:
    """Asks the fix model tier to repair a failing statement."""

    def __init__(self, client: CompletionClient, store: Optional[MetadataStore] = None):
        """Initialize the fixer.

        Args:
            client: Completion client
            store: Knowledge base used for the schema reference and team mapping
        """
        self.client = client
        self.store = store
        self.max_tokens = int(settings.get("execution.fix_max_tokens", 2000))

    def _schema_reference(self) -> str:
        if self.store is None:
            return ""
        return PromptTemplates.schema_reference(self.store.get_tables(), self.store.get_rules())

    def _team_context(self) -> str:
        if self.store is None:
            return ""
        return PromptTemplates.team_context(self.store.get_teams())

    def propose_fix(self, sql: str, error: str, question: str = "") -> Optional[str]:
        """Return a patched statement, or None when no usable patch comes back.

        A patch is accepted only if it is non-empty, differs from ``sql``
        and starts with SELECT. Completion failures yield None.
        """
        system = PromptTemplates.sql_fix_system(
            schema_reference=self._schema_reference(),
            valid_columns=VALID_COLUMNS,
            column_fixes=COLUMN_NAME_FIXES,
            team_context=self._team_context(),
        )
        user = PromptTemplates.sql_fix_user(sql, error, get_ai_error_context(error))

        try:
            content = self.client.chat_completion(
                messages=[
                    {"role": "system", "content": system},
                    {"role": "user", "content": user},
                ],
                model=self.client.model_for("autofix"),
                temperature=self.client.temperature_for("autofix"),
                max_tokens=self.max_tokens,
            )
        except QueryLabError as e:
            logger.warning(f"Auto-fix failed: {str(e)[:100]}")
            return None

        fixed = strip_code_fences(content)
        if not fixed or fixed == sql.strip() or not fixed.upper().startswith("SELECT"):
            logger.info("Fixed SQL invalid or unchanged")
            return None

        logger.info("Got fixed SQL")
        return fixed

    def analyze(self, sql: str, error: str, question: str = "") -> AutoFixOutput:
        """Fix the statement or produce a clarifying question for the user.

        Raises:
            ResponseSchemaError: If the answer does not match AutoFixOutput
            LLMError: If the completion call fails
        """
        system = PromptTemplates.error_analysis_system(
            schema_reference=self._schema_reference(),
            valid_columns=VALID_COLUMNS,
        )
        team_context = self._team_context()
        if team_context:
            system = f"{system}\n{team_context}"

        output = self.client.complete_structured(
            system=system,
            user=PromptTemplates.error_analysis_user(question, sql, error),
            schema=AutoFixOutput,
            model=self.client.model_for("generation"),
            temperature=0.1,
        )
        logger.info(f"Error analysis: can_fix={output.can_fix}")
        return output
