"""Unit tests for the knowledge base store and context builder."""

import pytest

from querylab.knowledge import Concept, Example, MetadataStore
from querylab.knowledge.context import concept_confidence


class TestConceptModel:
    """Test cases for concept validation."""

    def test_requires_a_term(self):
        """Test a concept without any language term is rejected."""
        with pytest.raises(ValueError):
            Concept(maps_to_type="column", maps_to_value="rev")

    def test_stable_id(self):
        """Test ids are derived deterministically from identifying fields."""
        first = Concept(term_en="revenue", maps_to_type="column", maps_to_value="rev")
        second = Concept(term_en="revenue", maps_to_type="column", maps_to_value="rev")

        assert first.id == second.id
        assert first.terms == ["revenue"]


class TestMetadataStore:
    """Test cases for reference and operational data."""

    def test_reads_seed_collections(self, metadata_store):
        """Test the shipped knowledge base loads."""
        assert metadata_store.get_table("pub_data") is not None
        assert metadata_store.get_concepts()
        assert metadata_store.get_patterns()
        assert metadata_store.get_rules()
        assert "APP" in metadata_store.get_teams()
        assert len(metadata_store.get_seed_learned_rules()) == 8

    def test_concepts_sorted_by_priority(self, metadata_store):
        """Test concepts come back highest priority first."""
        priorities = [c.priority for c in metadata_store.get_concepts()]

        assert priorities == sorted(priorities, reverse=True)

    def test_missing_seed_file(self, tmp_path):
        """Test a missing knowledge base yields empty collections."""
        store = MetadataStore(seed_path=tmp_path / "missing.yaml", data_dir=tmp_path)

        assert store.get_tables() == []
        assert store.get_concepts() == []

    def test_stale_cache_used_when_seed_breaks(self, tmp_path, fake_clock):
        """Test cached tables survive a later read failure."""
        seed = tmp_path / "kb.yaml"
        seed.write_text(
            "tables:\n"
            "  - {name: pub_data, full_path: p.d.pub_data, columns: [{name: rev}]}\n"
        )
        store = MetadataStore(seed_path=seed, data_dir=tmp_path, cache_ttl=10, clock=fake_clock)
        assert [t.name for t in store.get_tables()] == ["pub_data"]

        seed.write_text("tables: [unclosed")
        fake_clock.advance(11)

        assert [t.name for t in store.get_tables()] == ["pub_data"]

    def test_examples_filtered_by_feedback(self, metadata_store):
        """Test only successful examples are returned by default."""
        metadata_store.add_example(Example(question="q1", sql="SELECT 1", feedback_type="auto_success"))
        metadata_store.add_example(Example(question="q2", sql="SELECT 2", feedback_type="user_negative"))

        questions = [e.question for e in metadata_store.get_examples()]

        assert questions == ["q1"]

    def test_pattern_metrics(self, metadata_store):
        """Test recorded outcomes show up on the pattern."""
        pattern = metadata_store.get_patterns()[0]

        metadata_store.update_pattern_metrics(pattern.id, True, 120.0)
        metadata_store.update_pattern_metrics(pattern.id, False, 80.0)

        updated = next(p for p in metadata_store.get_patterns() if p.id == pattern.id)
        assert updated.success_count == 1
        assert updated.failure_count == 1
        assert updated.avg_execution_time_ms == pytest.approx(100.0)
        assert updated.success_rate == 0.5


class TestContextBuilder:
    """Test cases for knowledge context assembly."""

    def test_concept_confidence(self):
        """Test exact, boundary and substring matches score differently."""
        assert concept_confidence("revenue", "revenue") == 1.0
        assert concept_confidence("total revenue", "rev") == pytest.approx(0.65)
        assert concept_confidence("show revenue by zone", "revenue") == pytest.approx(1.0)

    def test_extract_concepts_counts_usage(self, context_builder, metadata_store):
        """Test detected concepts get their usage counter bumped."""
        concepts = context_builder.extract_concepts("Doanh thu tháng trước")

        values = {c.concept.maps_to_value for c in concepts}
        assert "rev" in values

        revenue = next(c for c in metadata_store.get_concepts() if c.maps_to_value == "rev")
        assert revenue.usage_count == 1
        assert revenue.last_used_at is not None

    def test_one_match_per_concept(self, context_builder):
        """Test a concept matched by several terms appears once."""
        concepts = context_builder.extract_concepts("doanh thu revenue")

        ids = [c.concept.id for c in concepts]
        assert len(ids) == len(set(ids))

    def test_product_question_joins_product_table(self, context_builder):
        """Test product concepts bring in the product dimension and its join."""
        context = context_builder.build_context("revenue by product")
        schema = context.schema_context

        assert "pub_data" in schema.table_names
        assert "updated_product_name" in schema.table_names
        assert any(j.to_table == "updated_product_name" for j in schema.joins)

    def test_ranking_pattern_matched(self, context_builder):
        """Test a top-N question selects the ranking pattern first."""
        patterns = context_builder.match_patterns("top 10 publisher highest revenue", [])

        assert patterns[0].pattern.pattern_name == "ranking_top_n"
        assert len(patterns) <= 3

    def test_rules_follow_concept_targets(self, context_builder):
        """Test rules are selected by the concepts' target values."""
        concepts = context_builder.extract_concepts("zone revenue")

        rule_names = {r.rule_name for r in context_builder.select_rules(concepts)}

        assert "active_zone_definition" in rule_names
        assert context_builder.select_rules([]) == []

    def test_similar_examples(self, context_builder, metadata_store):
        """Test examples above the overlap threshold are retrieved."""
        metadata_store.add_example(Example(
            question="revenue by publisher last month",
            sql="SELECT pubname, SUM(rev) FROM t GROUP BY pubname",
        ))
        metadata_store.add_example(Example(question="fill rate trend", sql="SELECT 1"))

        examples = context_builder.find_similar_examples("revenue by publisher this month")

        assert [e.example.question for e in examples] == ["revenue by publisher last month"]

    def test_rendered_prompt_sections(self, context_builder):
        """Test the rendered context contains the detected sections."""
        context = context_builder.build_context("revenue by zone")

        assert context.rendered_prompt.startswith("DETECTED CONCEPTS:")
        assert "RELEVANT TABLES:" in context.rendered_prompt
        assert "gcpp-check.GI_publisher.pub_data" in context.rendered_prompt
        assert context.summary()["tables"] == context.schema_context.table_names
