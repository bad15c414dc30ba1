"""
Tests for the LLM client wrapper around ChatOpenAI.
"""
import asyncio
from unittest.mock import AsyncMock, Mock, patch

import pytest

from graph_navigator.deadline import Deadline
from graph_navigator.errors import CollaboratorUnavailableError
from graph_navigator.llm.client import LLMClient


class TestGenerateText:
    """Test prompt dispatch, timeouts and provider failures."""

    @pytest.mark.asyncio
    @patch('graph_navigator.llm.client.ChatOpenAI')
    async def test_system_and_user_messages(self, mock_chat):
        """Test the system prompt precedes the user message."""
        mock_chat.return_value.ainvoke = AsyncMock(return_value=Mock(content='{"plan": []}'))
        client = LLMClient(model="gpt-4o-mini", api_key="test-key")

        text = await client.generate_text("list sectors", system_prompt="You plan.", temperature=0.3, max_tokens=600)

        assert text == '{"plan": []}'
        messages = mock_chat.return_value.ainvoke.await_args.args[0]
        assert [message.content for message in messages] == ["You plan.", "list sectors"]
        mock_chat.assert_called_once_with(model="gpt-4o-mini", temperature=0.3, max_tokens=600, api_key="test-key")

    @pytest.mark.asyncio
    @patch('graph_navigator.llm.client.ChatOpenAI')
    async def test_models_cached_per_settings(self, mock_chat):
        """Test one chat model is built per temperature and token cap."""
        mock_chat.return_value.ainvoke = AsyncMock(return_value=Mock(content="ok"))
        client = LLMClient(api_key="test-key")

        await client.generate_text("a", temperature=0.1, max_tokens=500)
        await client.generate_text("b", temperature=0.1, max_tokens=500)
        await client.generate_text("c", temperature=0.7, max_tokens=500)

        assert mock_chat.call_count == 2

    @pytest.mark.asyncio
    @patch('graph_navigator.llm.client.ChatOpenAI')
    async def test_provider_failure(self, mock_chat):
        """Test provider errors surface as an unavailable collaborator."""
        mock_chat.return_value.ainvoke = AsyncMock(side_effect=RuntimeError("rate limited"))

        with pytest.raises(CollaboratorUnavailableError) as exc_info:
            await LLMClient(api_key="test-key").generate_text("list sectors")

        assert exc_info.value.collaborator == "llm"

    @pytest.mark.asyncio
    @patch('graph_navigator.llm.client.ChatOpenAI')
    async def test_timeout(self, mock_chat):
        """Test a slow completion is cut off at the client timeout."""
        async def slow(messages):
            await asyncio.sleep(0.5)

        mock_chat.return_value.ainvoke = slow

        with pytest.raises(CollaboratorUnavailableError, match="no response"):
            await LLMClient(api_key="test-key", timeout=0.01).generate_text("list sectors")

    @pytest.mark.asyncio
    @patch('graph_navigator.llm.client.ChatOpenAI')
    async def test_expired_deadline(self, mock_chat):
        """Test no call is made once the request deadline has passed."""
        with pytest.raises(CollaboratorUnavailableError, match="deadline exceeded"):
            await LLMClient(api_key="test-key").generate_text("list sectors", deadline=Deadline(0))

        mock_chat.assert_not_called()
