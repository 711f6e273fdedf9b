"""Shared fixtures and fakes for the test suite."""

import json
from types import SimpleNamespace
from typing import Any, Dict, List, Optional

import pytest

from querylab.graph.components import clear_all_components
from querylab.knowledge import ContextBuilder, MetadataStore
from querylab.learning import LearningStore
from querylab.llm import CompletionClient
from querylab.memory import ConversationStore
from querylab.utils import BestEffortExecutor, RetryConfig


class FakeCompletions:
    """Stands in for ``client.chat.completions`` of the OpenAI SDK.

    Queued items are returned in order: strings become the message content,
    dicts are serialized to JSON and exceptions are raised.
    """

    def __init__(self):
        self.responses: List[Any] = []
        self.calls: List[Dict[str, Any]] = []

    def queue(self, *items: Any) -> None:
        self.responses.extend(items)

    def create(self, **kwargs):
        self.calls.append(kwargs)
        if not self.responses:
            raise AssertionError("No completion queued")
        item = self.responses.pop(0)
        if isinstance(item, Exception):
            raise item
        content = json.dumps(item) if isinstance(item, dict) else item
        message = SimpleNamespace(content=content)
        return SimpleNamespace(choices=[SimpleNamespace(message=message)])


class FakeSDK:
    def __init__(self):
        self.chat = SimpleNamespace(completions=FakeCompletions())


class FakeWarehouse:
    """Warehouse returning queued result dicts and recording every statement."""

    def __init__(self, results: Optional[List[Dict[str, Any]]] = None):
        self.results: List[Dict[str, Any]] = list(results or [])
        self.statements: List[str] = []

    def queue(self, *results: Dict[str, Any]) -> None:
        self.results.extend(results)

    def execute_query(self, sql: str) -> Dict[str, Any]:
        self.statements.append(sql)
        if self.results:
            return self.results.pop(0)
        return ok_result([{"value": 1}])


class SleepRecorder:
    def __init__(self):
        self.delays: List[float] = []

    def __call__(self, delay: float) -> None:
        self.delays.append(delay)


class FakeClock:
    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def ok_result(rows: List[Dict[str, Any]]) -> Dict[str, Any]:
    return {"success": True, "rows": rows, "row_count": len(rows)}


def error_result(message: str) -> Dict[str, Any]:
    return {"success": False, "error": message}


@pytest.fixture(autouse=True)
def _clean_registry():
    yield
    clear_all_components()


@pytest.fixture
def background():
    return BestEffortExecutor(synchronous=True)


@pytest.fixture
def sleep_recorder():
    return SleepRecorder()


@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture
def sdk():
    return FakeSDK()


@pytest.fixture
def completions(sdk):
    return sdk.chat.completions


@pytest.fixture
def completion_client(sdk, sleep_recorder):
    retry = RetryConfig(max_attempts=3, base_delay=1.0, max_delay=8.0, jitter=False)
    return CompletionClient(retry_config=retry, client=sdk, sleep=sleep_recorder)


@pytest.fixture
def warehouse():
    return FakeWarehouse()


@pytest.fixture
def metadata_store(tmp_path, fake_clock):
    return MetadataStore(data_dir=tmp_path, clock=fake_clock)


@pytest.fixture
def conversation_store(tmp_path):
    return ConversationStore(data_dir=tmp_path)


@pytest.fixture
def learning_store(tmp_path, fake_clock):
    return LearningStore(data_dir=tmp_path, rule_threshold=3, auto_promote=False, clock=fake_clock)


@pytest.fixture
def context_builder(metadata_store, background):
    return ContextBuilder(metadata_store, background=background)
