"""LangGraph pipeline: record question, generate, execute, record answer."""

from .state import PipelineState
from .graph import compile_app, create_workflow, route_after_generation
from .components import register_components, unregister_components, get_components

__all__ = [
    "PipelineState",
    "compile_app",
    "create_workflow",
    "route_after_generation",
    "register_components",
    "unregister_components",
    "get_components",
]
