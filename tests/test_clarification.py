"""
Tests for clarify_with_user in normal and terminal (final answer) modes.
"""
import pytest

from conftest import catalog_records
from graph_navigator.errors import CollaboratorUnavailableError
from graph_navigator.tasks.clarification import (
    DEFAULT_MESSAGE,
    DEFAULT_SUGGESTIONS,
    FALLBACK_FINAL_MESSAGE,
    clarify_with_user,
)


def _assert_terminal(output):
    assert output["needsClarification"] is False
    assert output["isFinalAnswer"] is True
    assert output["terminatesClarificationLoop"] is True


class TestNormalClarification:

    @pytest.mark.asyncio
    async def test_defaults(self, task_context, fake_graph):
        result = await clarify_with_user({}, task_context)

        assert result.success is True
        assert result.output["message"] == DEFAULT_MESSAGE
        assert result.output["suggestions"] == DEFAULT_SUGGESTIONS
        assert result.output["needsClarification"] is True
        assert fake_graph.queries == []

    @pytest.mark.asyncio
    async def test_provided_message_and_suggestions(self, task_context):
        result = await clarify_with_user(
            {"message": "Which sector?", "suggestions": ["Retail Banking", "Commercial Banking"]},
            task_context,
        )
        assert result.output["message"] == "Which sector?"
        assert result.output["suggestions"] == ["Retail Banking", "Commercial Banking"]

    @pytest.mark.asyncio
    async def test_conversation_state_adjusts_phrasing_only(self, task_context):
        result = await clarify_with_user(
            {"message": "Which sector?", "conversation_state": "post_rejection"}, task_context
        )
        assert result.output["message"].startswith("No problem")
        assert result.output["message"].endswith("Which sector?")
        assert result.output["needsClarification"] is True

    @pytest.mark.asyncio
    async def test_passthrough_fields(self, task_context):
        result = await clarify_with_user(
            {"message": "Did you mean Retail Banking?", "entity_issues": ["Retale"], "helpful_guidance": "Try a sector"},
            task_context,
        )
        assert result.output["entity_issues"] == ["Retale"]
        assert result.output["helpful_guidance"] == "Try a sector"


class TestTerminalClarification:

    @pytest.mark.asyncio
    async def test_final_answer_lists_catalog(self, task_context, fake_graph):
        fake_graph.results = [catalog_records()]

        result = await clarify_with_user(
            {"provide_final_answer": True, "entity_issues": ["Quantum Banking"]}, task_context
        )

        output = result.output
        _assert_terminal(output)
        assert output["availableData"]["Banking"] == ["Commercial Banking", "Retail Banking"]
        assert 'I couldn\'t find anything for "Quantum Banking"' in output["message"]
        assert "Here's what IS available" in output["message"]
        assert "What you can ask:" in output["message"]
        assert "Show me all sectors in Banking" in output["suggestions"]
        assert fake_graph.opened == fake_graph.closed == 1

    @pytest.mark.asyncio
    async def test_persistent_state_is_terminal(self, task_context, fake_graph):
        fake_graph.results = [catalog_records()]
        result = await clarify_with_user({"conversation_state": "persistent_non_existent"}, task_context)
        _assert_terminal(result.output)

    @pytest.mark.asyncio
    async def test_orphan_sectors_grouped(self, task_context, fake_graph):
        fake_graph.results = [catalog_records() + [{"parent": None, "children": ["Crop Farming"]}]]

        result = await clarify_with_user({"provide_final_answer": True}, task_context)

        assert result.output["availableData"]["Other sectors"] == ["Crop Farming"]

    @pytest.mark.asyncio
    async def test_catalog_failure_keeps_terminal_flags(self, task_context, fake_graph):
        fake_graph.results = [CollaboratorUnavailableError("graph_database", "connection refused")]

        result = await clarify_with_user({"provide_final_answer": True}, task_context)

        assert result.success is True
        _assert_terminal(result.output)
        assert result.output["message"] == FALLBACK_FINAL_MESSAGE

    @pytest.mark.asyncio
    async def test_empty_catalog_uses_fallback(self, task_context, fake_graph):
        fake_graph.results = [[]]
        result = await clarify_with_user({"provide_final_answer": True}, task_context)
        _assert_terminal(result.output)
        assert result.output["message"] == FALLBACK_FINAL_MESSAGE
