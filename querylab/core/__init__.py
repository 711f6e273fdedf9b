"""Core modules for execution state and persistence."""

from .state_machine import ExecutionState, ExecutionStateMachine, StateTransition
from .storage import DateTimeEncoder, JsonDocumentStore

__all__ = [
    "ExecutionState",
    "ExecutionStateMachine",
    "StateTransition",
    "DateTimeEncoder",
    "JsonDocumentStore",
]
