"""Unit tests for the execution state machine and JSON document store."""

import json
from datetime import datetime

import pytest

from querylab.core import DateTimeEncoder, ExecutionState, ExecutionStateMachine, JsonDocumentStore
from querylab.utils import MetadataError


class TestExecutionStateMachine:
    """Test cases for execution state transitions."""

    def test_retry_cycle_advances_attempt(self):
        """Test each return to ATTEMPTING advances the attempt counter."""
        machine = ExecutionStateMachine()

        machine.transition_to(ExecutionState.RETRYING, reason="transient")
        machine.transition_to(ExecutionState.ATTEMPTING)
        machine.transition_to(ExecutionState.SUCCEEDED)

        assert machine.attempt == 1
        assert machine.is_terminal_state()
        assert [t.to_state for t in machine.transitions] == [
            ExecutionState.RETRYING,
            ExecutionState.ATTEMPTING,
            ExecutionState.SUCCEEDED,
        ]

    def test_invalid_transition_raises(self):
        """Test terminal states reject further transitions."""
        machine = ExecutionStateMachine()
        machine.transition_to(ExecutionState.EXHAUSTED)

        with pytest.raises(ValueError, match="Invalid state transition"):
            machine.transition_to(ExecutionState.ATTEMPTING)

    def test_cannot_skip_retrying(self):
        """Test ATTEMPTING cannot transition to itself."""
        machine = ExecutionStateMachine()

        assert not machine.can_transition_to(ExecutionState.ATTEMPTING)

    def test_to_dict(self):
        """Test serialization of the machine."""
        machine = ExecutionStateMachine()
        machine.transition_to(ExecutionState.SUCCEEDED, reason="ok")

        data = machine.to_dict()

        assert data["current_state"] == "succeeded"
        assert data["transitions"][0]["reason"] == "ok"


class TestJsonDocumentStore:
    """Test cases for the file-backed document store."""

    def test_load_missing_returns_default(self, tmp_path):
        """Test a missing document yields the default."""
        store = JsonDocumentStore(tmp_path / "nested" / "doc.json")

        assert store.load([]) == []
        assert not store.exists()

    def test_update_persists(self, tmp_path):
        """Test read-modify-write through update."""
        store = JsonDocumentStore(tmp_path / "doc.json")

        store.update(lambda data: (data or []) + [1], default=[])
        store.update(lambda data: (data or []) + [2], default=[])

        assert store.load() == [1, 2]
        assert json.loads((tmp_path / "doc.json").read_text()) == [1, 2]

    def test_corrupt_file_raises_configured_error(self, tmp_path):
        """Test unreadable JSON raises the store's error class."""
        path = tmp_path / "doc.json"
        path.write_text("{not json")
        store = JsonDocumentStore(path, MetadataError)

        with pytest.raises(MetadataError, match="Failed to read"):
            store.load()

    def test_delete(self, tmp_path):
        """Test deleting a document."""
        store = JsonDocumentStore(tmp_path / "doc.json")
        store.save({"a": 1})

        store.delete()

        assert not store.exists()

    def test_datetime_encoding(self):
        """Test datetimes serialize as ISO strings."""
        encoded = json.dumps({"at": datetime(2024, 11, 1, 8, 30)}, cls=DateTimeEncoder)

        assert encoded == '{"at": "2024-11-01T08:30:00"}'
