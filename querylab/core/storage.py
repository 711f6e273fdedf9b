"""File-based JSON persistence for operational data."""

import json
import os
import threading
from datetime import datetime, date, time, timedelta
from pathlib import Path
from typing import Any, Callable, Dict, Type, Union
from ..utils import QueryLabError, setup_logger

logger = setup_logger(__name__)

# One lock per file so that separate store instances on the same path serialise
_path_locks: Dict[str, threading.RLock] = {}
_path_locks_guard = threading.Lock()


def _lock_for(path: Path) -> threading.RLock:
    key = str(path.resolve())
    with _path_locks_guard:
        if key not in _path_locks:
            _path_locks[key] = threading.RLock()
        return _path_locks[key]


class DateTimeEncoder(json.JSONEncoder):
    """Custom JSON encoder that handles datetime, date, time, and timedelta objects."""

    def default(self, obj):
        """Convert datetime-related objects to ISO format strings."""
        if isinstance(obj, (datetime, date, time)):
            return obj.isoformat()
        elif isinstance(obj, timedelta):
            return obj.total_seconds()
        return super().default(obj)


class JsonDocumentStore:
    """A single JSON document on disk with serialised read-modify-write."""

    def __init__(
        self,
        path: Union[str, Path],
        error_cls: Type[QueryLabError] = QueryLabError,
    ):
        """Initialize the document store.

        Args:
            path: Location of the JSON file (parent directories are created)
            error_cls: Exception raised when the file cannot be read or written
        """
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.error_cls = error_cls
        self._lock = _lock_for(self.path)

    def load(self, default: Any = None) -> Any:
        """Read the document, returning ``default`` when it does not exist.

        Raises:
            error_cls: If the file exists but cannot be parsed
        """
        with self._lock:
            if not self.path.exists():
                return default
            try:
                with open(self.path, 'r', encoding='utf-8') as f:
                    return json.load(f)
            except (OSError, ValueError) as e:
                raise self.error_cls(f"Failed to read {self.path}: {str(e)}") from e

    def save(self, data: Any) -> None:
        """Atomically replace the document.

        Raises:
            error_cls: If the file cannot be written
        """
        with self._lock:
            tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
            try:
                with open(tmp_path, 'w', encoding='utf-8') as f:
                    json.dump(data, f, indent=2, ensure_ascii=False, cls=DateTimeEncoder)
                os.replace(tmp_path, self.path)
            except (OSError, TypeError, ValueError) as e:
                raise self.error_cls(f"Failed to write {self.path}: {str(e)}") from e

    def update(self, fn: Callable[[Any], Any], default: Any = None) -> Any:
        """Apply ``fn`` to the current document and persist its return value."""
        with self._lock:
            data = fn(self.load(default))
            self.save(data)
            return data

    def exists(self) -> bool:
        return self.path.exists()

    def delete(self) -> None:
        with self._lock:
            if self.path.exists():
                self.path.unlink()
