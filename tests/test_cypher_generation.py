"""
Tests for generate_cypher: mode selection, parsing with one re-ask, and the
validator pipeline applied to the synthesized query.
"""
import json

import pytest

from graph_navigator.errors import CollaboratorUnavailableError
from graph_navigator.tasks import dispatch_task
from graph_navigator.tasks.cypher_generation import (
    MODE_COMPARISON,
    MODE_EXISTENCE,
    MODE_EXPLORATION,
    MODE_GOAL,
    MODE_MULTI_LEVEL,
    MODE_PROXY,
    generate_cypher,
    select_mode,
)

BANKING_QUERY = (
    "MATCH (i:Industry)-[r:HAS_SECTOR]->(s:Sector) "
    "WHERE toLower(i.name) = toLower('Banking') RETURN i, r, s LIMIT 100"
)


def _synthesis(query=BANKING_QUERY, **extra):
    return json.dumps({
        "query": query,
        "params": {},
        "explanation": "Sectors of the Banking industry",
        "connectionStrategy": "Industry -[HAS_SECTOR]-> Sector",
        **extra,
    })


class TestModeSelection:

    @pytest.mark.parametrize("params, expected", [
        ({"goal": "x"}, MODE_GOAL),
        ({"goal": "x", "exploration_mode": True}, MODE_EXPLORATION),
        ({"goal": "x", "proxy_entity": "Acme Bank"}, MODE_PROXY),
        ({"goal": "x", "external_company": "Acme Bank"}, MODE_PROXY),
        ({"goal": "x", "exclusion": True}, MODE_EXISTENCE),
        ({"goal": "x", "analytics_type": "inclusion"}, MODE_EXISTENCE),
        ({"goal": "x", "comparison": True, "entities": ["A", "B"]}, MODE_COMPARISON),
        ({"goal": "x", "comparison": True, "entities": ["A"]}, MODE_GOAL),
        ({"goal": "x", "multi_level": True}, MODE_MULTI_LEVEL),
        ({"goal": "x", "fallback_labels": ["Industry", "Sector"]}, MODE_MULTI_LEVEL),
    ])
    def test_select_mode(self, params, expected):
        assert select_mode(params) == expected


class TestGenerateCypher:

    @pytest.mark.asyncio
    async def test_goal_mode(self, task_context, fake_llm):
        fake_llm.responses = [_synthesis()]

        result = await generate_cypher({"goal": "list sectors under Banking", "entities": ["Banking"]}, task_context)

        assert result.success is True
        assert result.output["query"] == BANKING_QUERY
        assert result.output["mode"] == MODE_GOAL
        assert result.output["was_auto_fixed"] is False
        assert result.output["connectionStrategy"] == "Industry -[HAS_SECTOR]-> Sector"
        assert fake_llm.calls[0]["temperature"] == 0.1
        assert fake_llm.calls[0]["max_tokens"] == 500
        assert "<GOAL>" in fake_llm.calls[0]["prompt"]

    @pytest.mark.asyncio
    async def test_exploration_needs_no_llm(self, task_context, fake_llm):
        result = await generate_cypher({"exploration_mode": True, "focus": "Industry"}, task_context)

        assert result.success is True
        assert result.output["mode"] == MODE_EXPLORATION
        assert "MATCH (i:Industry)" in result.output["query"]
        assert fake_llm.calls == []

    @pytest.mark.asyncio
    async def test_missing_goal(self, task_context):
        result = await generate_cypher({"entities": ["Banking"]}, task_context)
        assert result.success is False
        assert result.error_type == "invalid_params"

    @pytest.mark.asyncio
    async def test_reask_once_on_bad_output(self, task_context, fake_llm):
        fake_llm.responses = ["I think the query is MATCH ...", f"Here:\n{_synthesis()}"]

        result = await generate_cypher({"goal": "list sectors under Banking"}, task_context)

        assert result.success is True
        assert len(fake_llm.calls) == 2
        assert "could not be parsed" in fake_llm.calls[1]["prompt"]

    @pytest.mark.asyncio
    async def test_missing_query_key_fails(self, task_context, fake_llm):
        fake_llm.responses = [json.dumps({"explanation": "no query"}), json.dumps({"explanation": "still none"})]

        result = await generate_cypher({"goal": "list sectors under Banking"}, task_context)

        assert result.success is False
        assert result.error_type == "synthesis_failed"

    @pytest.mark.asyncio
    async def test_defective_query_repaired(self, task_context, fake_llm):
        fake_llm.responses = [_synthesis(
            query='MATCH (i:Industry)-[r:HAS_SECTOR]->(s:Sector) WHERE i.name = "Banking" RETURN i, r, s'
        )]

        result = await generate_cypher({"goal": "list sectors under Banking"}, task_context)

        assert result.success is True
        assert "'Banking'" in result.output["query"]
        assert result.output["was_auto_fixed"] is True
        assert result.output["fixes"]

    @pytest.mark.asyncio
    async def test_write_query_rejected(self, task_context, fake_llm):
        fake_llm.responses = [
            _synthesis(query="MATCH (n:Industry) DETACH DELETE n"),
            json.dumps({"query": "MATCH (n:Industry) DETACH DELETE n", "changed": False, "corrections": []}),
        ]

        result = await generate_cypher({"goal": "remove industries"}, task_context)

        assert result.success is False
        assert result.error_type == "query_syntax_defect"

    @pytest.mark.asyncio
    async def test_proxy_mode_discloses_approximation(self, task_context, fake_llm):
        fake_llm.responses = [_synthesis(approximation_note="Acme Bank is not in the graph; showing Retail Banking")]

        result = await generate_cypher(
            {"goal": "pain points for Acme Bank", "proxy_entity": "Acme Bank"}, task_context
        )

        assert result.success is True
        assert result.output["mode"] == MODE_PROXY
        assert "Acme Bank" in result.output["approximation_note"]
        assert "<PROXY_SUBJECT>" in fake_llm.calls[0]["prompt"]

    @pytest.mark.asyncio
    async def test_multi_level_filters_unknown_labels(self, task_context, fake_llm):
        fake_llm.responses = [_synthesis()]

        await generate_cypher(
            {"goal": "anything about bank", "levels": ["Industry", "Planet"]}, task_context
        )

        prompt = fake_llm.calls[0]["prompt"]
        assert "<LEVELS>" in prompt
        assert "Planet" not in prompt.split("<LEVELS>")[1]

    @pytest.mark.asyncio
    async def test_llm_unavailable_via_dispatch(self, task_context, fake_llm):
        fake_llm.responses = [CollaboratorUnavailableError("llm", "timeout")]

        result = await dispatch_task("generate_cypher", {"goal": "list industries"}, task_context)

        assert result.success is False
        assert result.error_type == "collaborator_unavailable"
        assert "try again" in result.error
