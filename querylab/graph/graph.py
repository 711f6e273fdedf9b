"""LangGraph workflow definition for the question-to-answer pipeline.

record_question → generate → (execute) → record_answer → END
"""

from langgraph.graph import StateGraph, END

from .state import PipelineState
from .nodes import (
    record_question_node,
    generate_node,
    execute_node,
    record_answer_node,
)
from ..utils import setup_logger

logger = setup_logger(__name__)


def route_after_generation(state: PipelineState) -> str:
    """Skip execution when generation failed or was not requested."""
    if state.error or not state.generation:
        logger.info("Generation failed - skipping execution")
        return "record_answer"

    if not state.execute:
        logger.info("Execution not requested - returning SQL only")
        return "record_answer"

    return "execute"


def create_workflow() -> StateGraph:
    """Create the pipeline graph (not yet compiled)."""
    workflow = StateGraph(PipelineState)

    workflow.add_node("record_question", record_question_node)
    workflow.add_node("generate", generate_node)
    workflow.add_node("execute", execute_node)
    workflow.add_node("record_answer", record_answer_node)

    workflow.set_entry_point("record_question")
    workflow.add_edge("record_question", "generate")

    workflow.add_conditional_edges(
        "generate",
        route_after_generation,
        {
            "execute": "execute",
            "record_answer": "record_answer",
        }
    )

    workflow.add_edge("execute", "record_answer")
    workflow.add_edge("record_answer", END)

    return workflow


def compile_app():
    """Compile the pipeline graph.

    Each ``ask`` is a single pass, and conversation state lives in the
    conversation store, so no checkpointer is attached.
    """
    app = create_workflow().compile()
    logger.info("Pipeline graph compiled")
    return app
