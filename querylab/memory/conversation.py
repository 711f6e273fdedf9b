"""File-backed conversation memory, one JSON document per session."""

from pathlib import Path
from typing import Any, Dict, List, Optional, Union
from urllib.parse import quote, unquote

from pydantic import ValidationError as PydanticValidationError

from .models import ConversationContext, ConversationMessage, MessageRole
from ..config import settings
from ..core.storage import JsonDocumentStore
from ..utils import ConversationError, setup_logger
from ..utils.text import truncate

logger = setup_logger(__name__)

class ConversationStore:
    """Append-only message history per session."""

    def __init__(self, data_dir: Optional[Union[str, Path]] = None):
        """Initialize the conversation store.

        Args:
            data_dir: Base data directory (defaults to storage.data_dir)
        """
        base = Path(data_dir or settings.get("storage.data_dir", "data"))
        self.sessions_dir = base / "conversations"
        self.sessions_dir.mkdir(parents=True, exist_ok=True)

        conversation = settings.conversation
        self.context_limit = int(conversation.get("context_limit", 5))
        self.summary_messages = int(conversation.get("summary_messages", 6))
        self.snapshot_rows = int(conversation.get("results_snapshot_rows", 10))

    def _document(self, session_id: str) -> JsonDocumentStore:
        if not session_id:
            raise ConversationError("session_id is required")
        # Percent-encoding keeps distinct ids in distinct files
        file_id = quote(session_id, safe="")
        return JsonDocumentStore(self.sessions_dir / f"{file_id}.json", ConversationError)

    def add_message(
        self,
        session_id: str,
        role: Union[MessageRole, str],
        content: str,
        sql: Optional[str] = None,
        results: Optional[List[Dict[str, Any]]] = None,
        row_count: Optional[int] = None,
    ) -> ConversationMessage:
        """Append a message to the session.

        Only the first rows of ``results`` are kept as a snapshot.

        Raises:
            ConversationError: If the session file cannot be written
        """
        message = ConversationMessage(
            session_id=session_id,
            role=MessageRole(role),
            content=content,
            sql=sql,
            results=results[:self.snapshot_rows] if results else None,
            row_count=row_count if row_count is not None else (len(results) if results else None),
        )
        record = message.model_dump(mode="json")
        self._document(session_id).update(lambda data: (data or []) + [record], default=[])

        logger.debug(f"Added {message.role.value} message to session {session_id}")
        return message

    def get_messages(self, session_id: str, limit: Optional[int] = None) -> List[ConversationMessage]:
        """Messages of a session, newest first.

        Raises:
            ConversationError: If the session file cannot be read
        """
        messages = []
        for raw in self._document(session_id).load([]) or []:
            try:
                messages.append(ConversationMessage(**raw))
            except PydanticValidationError as e:
                logger.warning(f"Skipping invalid message in session {session_id}: {e}")

        # Stored in append order
        messages.reverse()
        return messages[:limit] if limit else messages

    def get_context(self, session_id: str, limit: Optional[int] = None) -> ConversationContext:
        """Recent context of a session; read failures yield an empty context."""
        limit = limit or self.context_limit
        try:
            recent = self.get_messages(session_id, limit=limit)
        except ConversationError as e:
            logger.error(f"Error fetching messages for session {session_id}: {e}")
            return ConversationContext.empty(session_id)

        messages = list(reversed(recent))
        last_sql_message = next((m for m in reversed(messages) if m.has_sql), None)

        return ConversationContext(
            session_id=session_id,
            messages=messages,
            last_sql_message=last_sql_message,
            has_context=bool(messages),
        )

    def build_summary(self, context: ConversationContext) -> str:
        """Short transcript of the last few messages for the generation prompt."""
        if not context.has_context or not context.messages:
            return ""

        parts = ["**PREVIOUS CONVERSATION:**"]
        for message in context.messages[-self.summary_messages:]:
            role = "User" if message.role == MessageRole.USER else "Assistant"
            parts.append(f"{role}: {truncate(message.content, 200)}")
            if message.has_sql:
                parts.append("[SQL was generated]")

        return "\n".join(parts)

    def list_sessions(self) -> List[str]:
        """Ids of all stored sessions."""
        return sorted(unquote(path.stem) for path in self.sessions_dir.glob("*.json"))

    def delete_session(self, session_id: str) -> bool:
        """Delete a session's history. Returns False if it did not exist."""
        document = self._document(session_id)
        if not document.exists():
            return False
        document.delete()
        logger.info(f"Deleted session {session_id}")
        return True
