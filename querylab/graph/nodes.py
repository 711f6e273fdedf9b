"""LangGraph node functions for the question-to-answer pipeline.

Each node is a thin wrapper around a component looked up in the registry.
Nodes catch the package's own errors and store them in the state, so the
graph always reaches ``record_answer``.
"""

from .components import get_components
from .state import PipelineState
from ..memory import ConversationContext, MessageRole
from ..utils import ConversationError, InvalidColumnsError, QueryLabError, setup_logger

logger = setup_logger(__name__)


def record_question_node(state: PipelineState) -> PipelineState:
    """Load the session context, then append the user's question to it."""
    if not state.session_id:
        return state

    components = get_components(state.run_id)
    store = components["conversation_store"]

    # Context is read before the new question is appended
    context = store.get_context(state.session_id)
    state.conversation = context.model_dump(mode="json")

    try:
        store.add_message(state.session_id, MessageRole.USER, state.question)
    except ConversationError as e:
        logger.warning(f"Could not record question for session {state.session_id}: {e}")

    return state


def generate_node(state: PipelineState) -> PipelineState:
    """Generate SQL with the tiered strategy."""
    logger.info(f"Generating SQL for: {state.question[:80]}")

    components = get_components(state.run_id)
    generator = components["generator"]

    conversation = (
        ConversationContext(**state.conversation) if state.conversation else None
    )

    try:
        result = generator.generate(
            state.question,
            session_id=state.session_id,
            team_context=components.get("team_context"),
            conversation=conversation,
        )
        state.generation = result.model_dump(mode="json")
        state.error = None

    except InvalidColumnsError as e:
        logger.warning(f"Generation rejected: {e}")
        state.error = str(e)
        state.error_type = type(e).__name__
        state.invalid_columns = e.invalid_columns

    except QueryLabError as e:
        logger.error(f"Generation failed: {e}")
        state.error = str(e)
        state.error_type = type(e).__name__

    return state


def execute_node(state: PipelineState) -> PipelineState:
    """Run the generated SQL through the retry engine."""
    components = get_components(state.run_id)
    engine = components["engine"]

    sql = state.generation["sql"]
    result = engine.execute(sql, question=state.question, session_id=state.session_id)
    state.execution = result.to_dict()

    components["generator"].record_pattern_outcome(
        state.generation.get("patterns_used", []),
        result.success,
        result.execution_time_ms,
    )

    if not result.success:
        state.error = result.error
        state.error_type = result.error_type

    return state


def record_answer_node(state: PipelineState) -> PipelineState:
    """Append the assistant's answer (SQL and a result snapshot) to the session."""
    if not state.session_id:
        return state

    components = get_components(state.run_id)
    store = components["conversation_store"]

    execution = state.execution or {}
    results = execution.get("results")
    sql = None

    # Failed SQL is not kept, so follow-ups never refine a broken query
    if state.generation and not state.error:
        sql = execution.get("retry_info", {}).get("final_sql") or state.generation["sql"]
        content = f"Generated SQL ({state.generation.get('source', 'generated')})"
        if results is not None:
            content += f", {execution.get('row_count', len(results))} rows"
    else:
        content = f"Error: {state.error}"

    try:
        store.add_message(
            state.session_id,
            MessageRole.ASSISTANT,
            content,
            sql=sql,
            results=results,
            row_count=execution.get("row_count"),
        )
    except ConversationError as e:
        logger.warning(f"Could not record answer for session {state.session_id}: {e}")

    return state
