"""Knowledge context assembly for SQL generation.

The builder turns a question into a bounded block of prompt text:

1. Extract business concepts mentioned in the question
2. Resolve them to tables, columns, joins and named expressions
3. Score reusable query patterns
4. Select business rules for the detected entities
5. Retrieve similar successful examples
6. Render everything into sections the generation prompt embeds
"""

import re
from typing import Dict, List, Optional

from .models import (
    ColumnRef,
    ExpressionRef,
    ExtractedConcept,
    JoinRef,
    KnowledgeContext,
    SchemaContext,
    ScoredExample,
    ScoredPattern,
    BusinessRule,
    TableMetadata,
)
from .store import MetadataStore
from ..config import settings
from ..utils import BestEffortExecutor, best_effort, setup_logger
from ..utils.text import word_overlap

logger = setup_logger(__name__)

DEFAULT_TABLE = "pub_data"
PRODUCT_TABLE = "updated_product_name"
PRODUCT_JOIN_CONDITION = "p.pid = u.pid AND p.mid = u.mid AND p.zid = u.zid"
PRODUCT_TERMS = ("product", "format", "sản phẩm")

COMPARISON_TERMS = ("so với", "compare")
BREAKDOWN_TERMS = ("lý do", "nguyên nhân", "breakdown")


def concept_confidence(question: str, term: str) -> float:
    """Confidence that ``term`` (already found in ``question``) is meant as the concept.

    Both arguments are expected lowercased.
    """
    if question == term:
        return 1.0

    length_factor = min(len(term) / 20, 0.3)
    boundary = re.search(rf"\b{re.escape(term)}\b", question, re.IGNORECASE)
    boundary_factor = 0.3 if boundary else 0.0

    return min(0.5 + length_factor + boundary_factor, 1.0)


def is_product_concept(extracted: ExtractedConcept) -> bool:
    if extracted.concept.maps_to_value == "product":
        return True
    return any(term in extracted.matched_term for term in PRODUCT_TERMS)


class ContextBuilder:
    """Builds the knowledge context for a question."""

    def __init__(
        self,
        store: MetadataStore,
        background: Optional[BestEffortExecutor] = None,
    ):
        """Initialize the context builder.

        Args:
            store: Knowledge base access
            background: Executor for usage-counter writes
        """
        self.store = store
        self.background = background or best_effort

        kb = settings.knowledge_base
        self.max_prompt_concepts = int(kb.get("max_prompt_concepts", 10))
        self.example_sample_size = int(kb.get("example_sample_size", 30))
        self.example_limit = int(kb.get("example_limit", 3))
        self.example_min_overlap = float(kb.get("example_min_overlap", 0.2))
        self.pattern_min_score = float(kb.get("pattern_min_score", 0.2))
        self.pattern_limit = int(kb.get("pattern_limit", 3))
        self.pattern_example_overlap = float(kb.get("pattern_example_overlap", 0.3))

    def build_context(self, question: str) -> KnowledgeContext:
        """Assemble the full knowledge context for a question."""
        concepts = self.extract_concepts(question)
        schema = self.resolve_schema(concepts)
        patterns = self.match_patterns(question, concepts)
        rules = self.select_rules(concepts)
        examples = self.find_similar_examples(question)

        context = KnowledgeContext(
            concepts=concepts,
            schema_context=schema,
            patterns=patterns,
            rules=rules,
            examples=examples,
        )
        context.rendered_prompt = self.render_prompt(context)

        logger.info(
            f"Built context: {len(concepts)} concepts, {len(schema.tables)} tables, "
            f"{len(patterns)} patterns, {len(rules)} rules, {len(examples)} examples"
        )
        return context

    # ------------------------------------------------------------------
    # Concepts
    # ------------------------------------------------------------------

    def extract_concepts(self, question: str) -> List[ExtractedConcept]:
        """Find every known term in the question, one match per concept."""
        question_lower = question.lower()
        results: List[ExtractedConcept] = []
        seen = set()

        for concept in self.store.get_concepts():
            if concept.id in seen:
                continue
            for term in concept.terms:
                term_lower = term.lower()
                if term_lower and term_lower in question_lower:
                    results.append(ExtractedConcept(
                        concept=concept,
                        matched_term=term_lower,
                        original_text=term,
                        confidence=concept_confidence(question_lower, term_lower),
                    ))
                    seen.add(concept.id)
                    break

        if results:
            self.background.submit(
                self.store.increment_concept_usage,
                [r.concept.id for r in results],
                label="increment_concept_usage",
            )

        results.sort(key=lambda r: r.confidence, reverse=True)
        return results

    # ------------------------------------------------------------------
    # Schema
    # ------------------------------------------------------------------

    def resolve_schema(self, concepts: List[ExtractedConcept]) -> SchemaContext:
        """Map concepts to the schema fragments they refer to."""
        table_map: Dict[str, TableMetadata] = {t.name: t for t in self.store.get_tables()}
        schema = SchemaContext()

        def include(table: TableMetadata) -> None:
            if table.name not in schema.table_names:
                schema.tables.append(table)

        for extracted in concepts:
            concept = extracted.concept
            kind = concept.maps_to_type

            if kind in ("column", "entity"):
                table_name = concept.maps_to_table or DEFAULT_TABLE
                table = table_map.get(table_name)
                if table is None:
                    continue
                column = table.get_column(concept.maps_to_value)
                fallback_type = "STRING" if kind == "column" else "INT64"
                schema.columns.append(ColumnRef(
                    table=table_name,
                    column=concept.maps_to_value,
                    type=column.type if column else fallback_type,
                    description=(column.description if column else None) or concept.context or "",
                ))
                include(table)

            elif kind == "table":
                table = table_map.get(concept.maps_to_value)
                if table is not None:
                    include(table)

            elif kind == "expression":
                schema.expressions.append(ExpressionRef(
                    name=concept.term_en or concept.term_vi or "",
                    expression=concept.maps_to_value,
                    description=concept.context or "",
                ))

        for table in schema.tables:
            for hint in table.join_hints:
                if hint.to_table in schema.table_names:
                    schema.joins.append(JoinRef(
                        from_table=table.name,
                        to_table=hint.to_table,
                        join_type=hint.join_type,
                        condition=hint.on_condition,
                    ))

        # Product questions always need the product dimension joined in
        if DEFAULT_TABLE in schema.table_names and any(is_product_concept(c) for c in concepts):
            product_table = table_map.get(PRODUCT_TABLE)
            if product_table is not None and PRODUCT_TABLE not in schema.table_names:
                schema.tables.append(product_table)
                schema.joins.append(JoinRef(
                    from_table=DEFAULT_TABLE,
                    to_table=PRODUCT_TABLE,
                    join_type="LEFT JOIN",
                    condition=PRODUCT_JOIN_CONDITION,
                ))

        return schema

    # ------------------------------------------------------------------
    # Patterns, rules, examples
    # ------------------------------------------------------------------

    def score_pattern(self, question_lower: str, concept_types: List[str], pattern) -> float:
        score = 0.0

        for keyword in pattern.intent_keywords:
            if keyword.lower() in question_lower:
                score += 0.3

        category = pattern.pattern_category
        if category == "ranking" and "aggregate_function" in concept_types:
            score += 0.2
        if category == "comparison" and any(t in question_lower for t in COMPARISON_TERMS):
            score += 0.2
        if category == "breakdown" and any(t in question_lower for t in BREAKDOWN_TERMS):
            score += 0.2

        for example in pattern.example_questions:
            overlap = word_overlap(question_lower, example.lower())
            if overlap > self.pattern_example_overlap:
                score += overlap * 0.3

        if pattern.total_uses > 0:
            score += pattern.success_rate * 0.1

        return score

    def match_patterns(
        self,
        question: str,
        concepts: List[ExtractedConcept],
    ) -> List[ScoredPattern]:
        """Top patterns whose score clears the minimum."""
        question_lower = question.lower()
        concept_types = [c.concept.maps_to_type for c in concepts]

        scored = []
        for pattern in self.store.get_patterns():
            score = self.score_pattern(question_lower, concept_types, pattern)
            if score > self.pattern_min_score:
                scored.append(ScoredPattern(pattern=pattern, score=score))

        scored.sort(key=lambda s: s.score, reverse=True)
        return scored[:self.pattern_limit]

    def select_rules(self, concepts: List[ExtractedConcept]) -> List[BusinessRule]:
        """Rules whose entity kinds intersect the concepts' target values."""
        targets = {c.concept.maps_to_value for c in concepts}
        if not targets:
            return []
        return [
            rule for rule in self.store.get_rules()
            if targets.intersection(rule.applies_to_entities)
        ]

    def find_similar_examples(self, question: str) -> List[ScoredExample]:
        """Successful examples with the highest word overlap."""
        question_lower = question.lower()
        examples = self.store.get_examples(limit=self.example_sample_size)

        scored = [
            ScoredExample(example=ex, similarity=word_overlap(question_lower, ex.question.lower()))
            for ex in examples
        ]
        scored = [s for s in scored if s.similarity > self.example_min_overlap]
        scored.sort(key=lambda s: s.similarity, reverse=True)
        return scored[:self.example_limit]

    # ------------------------------------------------------------------
    # Rendering
    # ------------------------------------------------------------------

    def render_prompt(self, context: KnowledgeContext) -> str:
        """Render the context as prompt text."""
        parts: List[str] = []
        schema = context.schema_context

        def section(title: str) -> None:
            parts.append(f"\n{title}" if parts else title)

        if context.concepts:
            section("DETECTED CONCEPTS:")
            for c in context.concepts[:self.max_prompt_concepts]:
                parts.append(
                    f'- "{c.original_text}" → {c.concept.maps_to_type}:{c.concept.maps_to_value}'
                )

        if schema.tables:
            section("RELEVANT TABLES:")
            for t in schema.tables:
                parts.append(f"- {t.full_path} ({t.table_type}): {t.description}")

        if schema.columns:
            section("RELEVANT COLUMNS:")
            for col in schema.columns:
                parts.append(f"- {col.table}.{col.column} ({col.type}): {col.description}")

        if schema.joins:
            section("JOIN HINTS:")
            for j in schema.joins:
                parts.append(f"- {j.join_type} {j.to_table} ON {j.condition}")

        if schema.expressions:
            section("EXPRESSIONS:")
            for e in schema.expressions:
                parts.append(f"- {e.name}: {e.expression}")

        if context.patterns:
            section("SUGGESTED PATTERNS:")
            for p in context.patterns:
                parts.append(f"- {p.pattern.pattern_name}: {p.pattern.intent_description}")

        if context.rules:
            section("BUSINESS RULES:")
            for r in context.rules:
                parts.append(f"- {r.rule_name}: {r.description}")

        if context.examples:
            section("SIMILAR EXAMPLES:")
            for e in context.examples[:self.example_limit]:
                parts.append(f"Q: {e.example.question}")
                parts.append(f"SQL: {e.example.sql[:200]}...")

        return "\n".join(parts)
