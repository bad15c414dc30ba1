"""
Tests for static defect detection, deterministic repair and the LLM
review pass over generated Cypher.
"""
import json

import pytest

from conftest import FakeLLM
from graph_navigator.errors import CollaboratorUnavailableError
from graph_navigator.tasks.cypher_validator import (
    PATH_FUNCTION_ON_ENTITY,
    PROHIBITED_QUOTING,
    UNRETURNED_RELATIONSHIP,
    WRITE_CLAUSE,
    detect_defects,
    is_read_only,
    repair,
    review_with_llm,
    validate_and_fix,
)


def _classes(query):
    return {defect.defect_class for defect in detect_defects(query)}


class TestDetection:

    def test_clean_query(self):
        assert detect_defects("MATCH (i:Industry)-[r:HAS_SECTOR]->(s:Sector) RETURN i, r, s LIMIT 100") == []

    def test_path_function_on_node(self):
        assert PATH_FUNCTION_ON_ENTITY in _classes("MATCH (a)-[:REL]->(p) RETURN relationships(p)")

    def test_path_function_on_path_is_fine(self):
        query = "MATCH p = (a:Industry)-[:HAS_SECTOR]->(b:Sector) RETURN p, relationships(p)"
        assert PATH_FUNCTION_ON_ENTITY not in _classes(query)

    def test_double_quotes(self):
        assert PROHIBITED_QUOTING in _classes('MATCH (i:Industry) WHERE i.name = "Banking" RETURN i')

    def test_write_clause(self):
        assert WRITE_CLAUSE in _classes("MATCH (n) DETACH DELETE n")
        assert not is_read_only("CREATE (n:Industry {name: 'X'})")

    def test_keywords_inside_literals_ignored(self):
        query = "MATCH (p:PainPoint) WHERE p.name CONTAINS 'delete' RETURN p"
        assert WRITE_CLAUSE not in _classes(query)
        assert is_read_only(query)

    def test_unreturned_relationship(self):
        query = "MATCH (i:Industry)-[:HAS_SECTOR]->(s:Sector) RETURN i, s"
        assert UNRETURNED_RELATIONSHIP in _classes(query)


class TestRepair:

    def test_relationships_on_hop_target(self):
        result = repair("MATCH (a)-[:REL]->(p) RETURN relationships(p)")

        assert result.was_changed is True
        assert result.text == "MATCH (a)-[r_p:REL]->(p) RETURN r_p"
        assert result.remaining_defects == []
        assert result.notes[0].before == "relationships(p)"
        assert result.notes[0].after == "r_p"

    def test_repair_is_idempotent(self):
        once = repair("MATCH (a)-[:REL]->(p) RETURN relationships(p)")
        twice = repair(once.text)

        assert twice.text == once.text
        assert twice.was_changed is False
        assert twice.notes == []

    def test_existing_relationship_variable_reused(self):
        result = repair("MATCH (i:Industry)-[r:HAS_SECTOR]->(s:Sector) RETURN i, relationships(s), s")
        assert result.text == "MATCH (i:Industry)-[r:HAS_SECTOR]->(s:Sector) RETURN i, r, s"

    def test_fresh_name_avoids_collision(self):
        result = repair("MATCH (a)-[:REL]->(p) WITH a, p, 1 AS r_p RETURN relationships(p), r_p")
        assert "-[r_p_2:REL]->" in result.text

    def test_nodes_on_node(self):
        result = repair("MATCH (s:Sector)-[r:EXPERIENCES]->(pp:PainPoint) RETURN nodes(s), r, pp")
        assert result.text == "MATCH (s:Sector)-[r:EXPERIENCES]->(pp:PainPoint) RETURN s, r, pp"

    def test_nodes_on_relationship(self):
        result = repair("MATCH (s:Sector)-[r:EXPERIENCES]->(pp:PainPoint) RETURN nodes(r)")
        assert result.text.endswith("RETURN [startNode(r), endNode(r)]")

    def test_length_on_node_binds_path(self):
        result = repair("MATCH (i:Industry)-[:HAS_SECTOR]->(s:Sector) RETURN s, length(i)")

        assert result.text == "MATCH p_i = (i:Industry)-[:HAS_SECTOR]->(s:Sector) RETURN s, length(p_i)"
        assert not any(d.defect_class == PATH_FUNCTION_ON_ENTITY for d in result.remaining_defects)

    def test_quotes_rewritten(self):
        result = repair('MATCH (i:Industry) WHERE i.name = "Banking" RETURN i')
        assert result.text == "MATCH (i:Industry) WHERE i.name = 'Banking' RETURN i"

    def test_embedded_apostrophe_escaped(self):
        result = repair('MATCH (s:Sector) WHERE s.name = "Farmer\'s Market" RETURN s')
        assert "'Farmer\\'s Market'" in result.text
        assert PROHIBITED_QUOTING not in {d.defect_class for d in result.remaining_defects}

    def test_write_clause_never_repaired(self):
        result = repair("MATCH (n) DETACH DELETE n")
        assert result.text == "MATCH (n) DETACH DELETE n"
        assert WRITE_CLAUSE in {d.defect_class for d in result.remaining_defects}


class TestLLMReview:

    @pytest.mark.asyncio
    async def test_unchanged_keeps_original(self):
        llm = FakeLLM([json.dumps({"query": "", "changed": False, "corrections": []})])
        query = "MATCH (i:Industry)-[:HAS_SECTOR]->(s:Sector) RETURN i, s"

        result = await review_with_llm(query, llm)

        assert result.text == query
        assert result.was_changed is False
        assert llm.calls[0]["temperature"] == 0.0

    @pytest.mark.asyncio
    async def test_correction_applied_and_repaired(self):
        corrected = 'MATCH (i:Industry)-[r:HAS_SECTOR]->(s:Sector) WHERE i.name = "Banking" RETURN i, r, s'
        llm = FakeLLM([json.dumps({
            "query": corrected,
            "changed": True,
            "corrections": ["bound and returned the relationship"],
        })])

        result = await review_with_llm("MATCH (i:Industry)-[:HAS_SECTOR]->(s:Sector) RETURN i, s", llm)

        assert result.was_changed is True
        assert "'Banking'" in result.text
        assert "RETURN i, r, s" in result.text
        assert any("bound and returned" in note.reason for note in result.notes)

    @pytest.mark.asyncio
    async def test_write_clause_from_review_rejected(self):
        llm = FakeLLM([json.dumps({"query": "MATCH (n) DETACH DELETE n", "changed": True, "corrections": []})])
        query = "MATCH (i:Industry) RETURN i"
        result = await review_with_llm(query, llm)
        assert result.text == query

    @pytest.mark.asyncio
    async def test_review_failure_keeps_original(self):
        llm = FakeLLM([CollaboratorUnavailableError("llm", "timeout")])
        query = "MATCH (i:Industry) RETURN i"
        result = await review_with_llm(query, llm)
        assert result.text == query
        assert result.was_changed is False


class TestValidateAndFix:

    @pytest.mark.asyncio
    async def test_clean_query_skips_llm(self):
        llm = FakeLLM()
        candidate = {"query": "MATCH (i:Industry)-[r:HAS_SECTOR]->(s:Sector) RETURN i, r, s", "mode": "goal"}

        fixed = await validate_and_fix(candidate, llm=llm)

        assert fixed["was_auto_fixed"] is False
        assert fixed["remaining_defects"] == []
        assert fixed["mode"] == "goal"
        assert llm.calls == []

    @pytest.mark.asyncio
    async def test_deterministic_fix_reported(self):
        fixed = await validate_and_fix({"query": "MATCH (a)-[:REL]->(p) RETURN relationships(p)"})

        assert fixed["query"] == "MATCH (a)-[r_p:REL]->(p) RETURN r_p"
        assert fixed["was_auto_fixed"] is True
        assert len(fixed["fixes"]) == 1

    @pytest.mark.asyncio
    async def test_remaining_defect_triggers_review(self):
        llm = FakeLLM([json.dumps({
            "query": "MATCH (i:Industry)-[r:HAS_SECTOR]->(s:Sector) RETURN i, r, s",
            "changed": True,
            "corrections": ["returned relationship r"],
        })])

        fixed = await validate_and_fix({"query": "MATCH (i:Industry)-[:HAS_SECTOR]->(s:Sector) RETURN i, s"}, llm=llm)

        assert fixed["query"] == "MATCH (i:Industry)-[r:HAS_SECTOR]->(s:Sector) RETURN i, r, s"
        assert fixed["was_auto_fixed"] is True
        assert fixed["remaining_defects"] == []
        assert len(llm.calls) == 1
