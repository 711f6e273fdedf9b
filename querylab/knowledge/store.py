"""Typed access to the knowledge base.

Reference collections (concepts, tables, patterns, business rules) are curated
in a YAML file. Operational data that the pipeline writes back (examples,
concept usage counters, pattern metrics) is kept as JSON documents in the
data directory so the curated file is never rewritten.
"""

import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Union
import yaml
from pydantic import ValidationError as PydanticValidationError

from .models import (
    BusinessRule,
    Concept,
    Example,
    QueryPattern,
    TableMetadata,
)
from ..config import settings
from ..core.storage import JsonDocumentStore
from ..utils import MetadataError, TTLCache, setup_logger

logger = setup_logger(__name__)

SUCCESS_FEEDBACK = ("auto_success", "user_positive")


def resolve_seed_path(seed_file: Optional[Union[str, Path]] = None) -> Path:
    """Locate the knowledge base YAML (relative names live next to config.yaml)."""
    seed = Path(seed_file or settings.get("knowledge_base.seed_file", "knowledge_base.yaml"))
    if not seed.is_absolute() and not seed.exists():
        seed = Path(__file__).parent.parent / "config" / seed
    return seed


class MetadataStore:
    """Read access to reference collections plus the operational write-backs."""

    def __init__(
        self,
        seed_path: Optional[Union[str, Path]] = None,
        data_dir: Optional[Union[str, Path]] = None,
        cache_ttl: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """Initialize the metadata store.

        Args:
            seed_path: Curated knowledge base YAML (defaults to config)
            data_dir: Directory for operational JSON data (defaults to config)
            cache_ttl: TTL in seconds for tables, patterns and rules
            clock: Monotonic clock used by the cache
        """
        self.seed_path = resolve_seed_path(seed_path)
        base_dir = Path(data_dir or settings.get("storage.data_dir", "data")) / "knowledge"

        self._examples = JsonDocumentStore(base_dir / "examples.json", MetadataError)
        self._concept_usage = JsonDocumentStore(base_dir / "concept_usage.json", MetadataError)
        self._pattern_metrics = JsonDocumentStore(base_dir / "pattern_metrics.json", MetadataError)

        ttl = cache_ttl if cache_ttl is not None else settings.get(
            "knowledge_base.cache_ttl_seconds", 300
        )
        self.cache = TTLCache(ttl_seconds=float(ttl), clock=clock)

        logger.info(f"Metadata store initialized from {self.seed_path}")

    # ------------------------------------------------------------------
    # Reference data
    # ------------------------------------------------------------------

    def _load_seed(self) -> Dict[str, Any]:
        if not self.seed_path.exists():
            raise MetadataError(f"Knowledge base file not found: {self.seed_path}")
        try:
            with open(self.seed_path, 'r', encoding='utf-8') as f:
                return yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            raise MetadataError(f"Failed to read knowledge base: {str(e)}") from e

    def _parse_section(self, section: str, model: Any) -> List[Any]:
        records = []
        for raw in self._load_seed().get(section, []) or []:
            try:
                records.append(model(**raw))
            except (PydanticValidationError, TypeError) as e:
                logger.warning(f"Skipping invalid {section} record {raw!r}: {e}")
        return records

    def _safe_read(self, name: str, reader: Callable[[], List[Any]]) -> List[Any]:
        try:
            return reader()
        except MetadataError as e:
            logger.error(f"Failed to load {name}: {e}")
            return []

    def get_concepts(self, active_only: bool = True) -> List[Concept]:
        """All concepts with their usage counters, highest priority first.

        Concepts are read fresh on every call so usage counters stay current.
        """
        def read() -> List[Concept]:
            concepts = self._parse_section("concepts", Concept)
            usage = self._concept_usage.load({}) or {}
            for concept in concepts:
                stats = usage.get(concept.id)
                if stats:
                    concept.usage_count = stats.get("usage_count", 0)
                    last_used = stats.get("last_used_at")
                    concept.last_used_at = datetime.fromisoformat(last_used) if last_used else None
            if active_only:
                concepts = [c for c in concepts if c.is_active]
            return sorted(concepts, key=lambda c: c.priority, reverse=True)

        return self._safe_read("concepts", read)

    def get_tables(self) -> List[TableMetadata]:
        """Active table metadata (cached)."""
        def read() -> List[TableMetadata]:
            return [t for t in self._parse_section("tables", TableMetadata) if t.is_active]

        return self._cached("tables", read)

    def get_table(self, name: str) -> Optional[TableMetadata]:
        for table in self.get_tables():
            if table.name == name:
                return table
        return None

    def get_patterns(self) -> List[QueryPattern]:
        """Active query patterns with metrics, most successful first (cached)."""
        def read() -> List[QueryPattern]:
            patterns = [p for p in self._parse_section("patterns", QueryPattern) if p.is_active]
            metrics = self._pattern_metrics.load({}) or {}
            for pattern in patterns:
                stats = metrics.get(pattern.id)
                if stats:
                    pattern.success_count = stats.get("success_count", 0)
                    pattern.failure_count = stats.get("failure_count", 0)
                    pattern.avg_execution_time_ms = stats.get("avg_execution_time_ms")
            return sorted(patterns, key=lambda p: p.success_count, reverse=True)

        return self._cached("patterns", read)

    def get_rules(self) -> List[BusinessRule]:
        """Active business rules, highest priority first (cached)."""
        def read() -> List[BusinessRule]:
            rules = [r for r in self._parse_section("business_rules", BusinessRule) if r.is_active]
            return sorted(rules, key=lambda r: r.priority, reverse=True)

        return self._cached("rules", read)

    def get_seed_learned_rules(self) -> List[Dict[str, Any]]:
        """Learned-rule records shipped with the knowledge base."""
        try:
            return list(self._load_seed().get("learned_rules", []) or [])
        except MetadataError as e:
            logger.error(f"Failed to load seed learned rules: {e}")
            return []

    def get_teams(self) -> Dict[str, Dict[str, Any]]:
        """Team id to {name, description, pics} mapping."""
        try:
            return dict(self._load_seed().get("teams", {}) or {})
        except MetadataError as e:
            logger.error(f"Failed to load teams: {e}")
            return {}

    def _cached(self, key: str, reader: Callable[[], List[Any]]) -> List[Any]:
        cached = self.cache.get(key)
        if cached is not None:
            return cached
        try:
            data = reader()
        except MetadataError as e:
            stale = self.cache.get_stale(key)
            logger.error(f"Failed to load {key}: {e}")
            return stale if stale is not None else []
        self.cache.set(key, data)
        return data

    def invalidate_cache(self) -> None:
        """Drop cached tables, patterns and rules."""
        self.cache.invalidate()

    # ------------------------------------------------------------------
    # Examples
    # ------------------------------------------------------------------

    def get_examples(
        self,
        feedback_types: Sequence[str] = SUCCESS_FEEDBACK,
        limit: int = 30,
    ) -> List[Example]:
        """Most recent examples with one of the given feedback types."""
        def read() -> List[Example]:
            examples = []
            for raw in self._examples.load([]) or []:
                if raw.get("feedback_type") not in feedback_types:
                    continue
                try:
                    examples.append(Example(**raw))
                except PydanticValidationError as e:
                    logger.warning(f"Skipping invalid example: {e}")
            examples.sort(key=lambda e: e.created_at, reverse=True)
            return examples[:limit]

        return self._safe_read("examples", read)

    def add_example(self, example: Example) -> Example:
        """Append an example (examples are never mutated)."""
        record = example.model_dump(mode="json")
        self._examples.update(lambda data: (data or []) + [record], default=[])
        logger.debug(f"Stored example {example.id} ({example.feedback_type})")
        return example

    # ------------------------------------------------------------------
    # Operational counters
    # ------------------------------------------------------------------

    def increment_concept_usage(self, concept_ids: Iterable[str]) -> None:
        """Add one use to each concept and stamp the time of use."""
        ids = list(concept_ids)
        if not ids:
            return
        now = datetime.now(timezone.utc).isoformat()

        def bump(data: Dict[str, Any]) -> Dict[str, Any]:
            data = data or {}
            for concept_id in ids:
                stats = data.setdefault(concept_id, {"usage_count": 0})
                stats["usage_count"] = stats.get("usage_count", 0) + 1
                stats["last_used_at"] = now
            return data

        self._concept_usage.update(bump, default={})

    def update_pattern_metrics(
        self,
        pattern_id: str,
        success: bool,
        execution_time_ms: Optional[float] = None,
    ) -> None:
        """Record an execution outcome for a pattern."""
        def record(data: Dict[str, Any]) -> Dict[str, Any]:
            data = data or {}
            stats = data.get(pattern_id, {})
            pattern = QueryPattern(
                id=pattern_id,
                pattern_name=pattern_id,
                pattern_category="",
                success_count=stats.get("success_count", 0),
                failure_count=stats.get("failure_count", 0),
                avg_execution_time_ms=stats.get("avg_execution_time_ms"),
            )
            pattern.record_usage(success, execution_time_ms)
            data[pattern_id] = {
                "success_count": pattern.success_count,
                "failure_count": pattern.failure_count,
                "avg_execution_time_ms": pattern.avg_execution_time_ms,
                "updated_at": datetime.now(timezone.utc).isoformat(),
            }
            return data

        self._pattern_metrics.update(record, default={})
        self.cache.invalidate("patterns")
