"""Component registry for LangGraph nodes.

Nodes receive only the pipeline state; the agent registers its
components (generator, engine, stores) under the run id before invoking
the graph and removes them afterwards.
"""

import threading
from typing import Dict, Any

_component_registry: Dict[str, Dict[str, Any]] = {}
_registry_lock = threading.Lock()


def register_components(run_id: str, components: Dict[str, Any]) -> None:
    """Register components for one pipeline invocation."""
    with _registry_lock:
        _component_registry[run_id] = components


def get_components(run_id: str) -> Dict[str, Any]:
    """Components registered for ``run_id``.

    Raises:
        RuntimeError: If nothing was registered for the run
    """
    with _registry_lock:
        components = _component_registry.get(run_id)

    if components is None:
        raise RuntimeError(
            f"Components not registered for run {run_id}. "
            "Agent must register components before invoking graph."
        )
    return components


def unregister_components(run_id: str) -> None:
    with _registry_lock:
        _component_registry.pop(run_id, None)


def clear_all_components() -> None:
    """Clear all registered components (for testing)."""
    with _registry_lock:
        _component_registry.clear()
