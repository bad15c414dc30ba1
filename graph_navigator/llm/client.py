import asyncio
import logging
import time
from typing import Dict, Optional, Tuple

from langchain_openai import ChatOpenAI
from langchain_core.messages import SystemMessage, HumanMessage

from graph_navigator.config import OPENAI_API_KEY, OPENAI_MODEL, LLM_TIMEOUT_SECONDS
from graph_navigator.deadline import Deadline, effective_timeout
from graph_navigator.errors import CollaboratorUnavailableError

logger = logging.getLogger("llm_client")


class LLMClient:
    """
    Text-completion collaborator backed by an OpenAI chat model.

    Every call is bounded by the client timeout and, when given, the
    request deadline. Provider failures and timeouts surface as
    CollaboratorUnavailableError so callers never see transport details.
    """

    def __init__(
        self,
        model: str = OPENAI_MODEL,
        api_key: str = OPENAI_API_KEY,
        timeout: float = LLM_TIMEOUT_SECONDS
    ):
        self.model = model
        self.api_key = api_key
        self.timeout = timeout
        self._chat_models: Dict[Tuple[float, int], ChatOpenAI] = {}

    def _chat_model(self, temperature: float, max_tokens: int) -> ChatOpenAI:
        key = (temperature, max_tokens)
        if key not in self._chat_models:
            self._chat_models[key] = ChatOpenAI(
                model=self.model,
                temperature=temperature,
                max_tokens=max_tokens,
                api_key=self.api_key
            )
        return self._chat_models[key]

    async def generate_text(
        self,
        prompt: str,
        *,
        system_prompt: Optional[str] = None,
        temperature: float = 0.1,
        max_tokens: int = 800,
        deadline: Optional[Deadline] = None
    ) -> str:
        """
        Generate a completion for a single prompt.

        Args:
            prompt: User message content
            system_prompt: Optional system message placed before the prompt
            temperature: Sampling temperature
            max_tokens: Completion token cap
            deadline: Request deadline bounding this call

        Returns:
            Raw completion text

        Raises:
            CollaboratorUnavailableError: On timeout or provider failure
        """
        timeout = effective_timeout(self.timeout, deadline)
        if timeout <= 0:
            raise CollaboratorUnavailableError("llm", "request deadline exceeded")

        messages = []
        if system_prompt:
            messages.append(SystemMessage(content=system_prompt))
        messages.append(HumanMessage(content=prompt))

        start_time = time.time()
        try:
            response = await asyncio.wait_for(
                self._chat_model(temperature, max_tokens).ainvoke(messages),
                timeout=timeout
            )
        except asyncio.TimeoutError:
            logger.error(f"LLM call timed out after {timeout:.1f}s")
            raise CollaboratorUnavailableError("llm", f"no response within {timeout:.1f}s")
        except Exception as e:
            logger.exception(f"LLM call failed: {e}")
            raise CollaboratorUnavailableError("llm", str(e)) from e

        execution_time_ms = (time.time() - start_time) * 1000
        content = response.content if isinstance(response.content, str) else str(response.content)
        logger.info(f"LLM response received ({len(content)} chars) in {execution_time_ms:.2f}ms")
        logger.debug(f"Raw LLM output:\n{content}")
        return content

