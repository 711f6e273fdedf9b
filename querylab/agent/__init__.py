"""Agent orchestration module."""

from .orchestrator import QueryLabAgent, result_title

__all__ = [
    "QueryLabAgent",
    "result_title",
]
