import logging
import time
from typing import Any, Dict, List, Optional

from graph_navigator.config import HISTORY_WINDOW, MAX_PLAN_STEPS
from graph_navigator.deadline import Deadline
from graph_navigator.errors import CollaboratorUnavailableError, LLMResponseParseError, PlanStructureError
from graph_navigator.llm.client import LLMClient
from graph_navigator.llm.parsing import parse_json_response, parse_json_strict
from graph_navigator.plan_models import ExecutionPlan, FailurePolicy, PlanStep, TaskType
from graph_navigator.prompts.base_prompt import PromptSecurityError
from graph_navigator.prompts.planner_prompts import PlannerPrompt
from graph_navigator.schema import DEFAULT_SCHEMA, GraphSchema
from graph_navigator.security.redaction import redact_secrets

logger = logging.getLogger("planner_agent")

FALLBACK_MESSAGE = "I need more details to understand your request. Could you be more specific?"
REPHRASE_MESSAGE = "I couldn't process that request as written. Could you rephrase it?"
FALLBACK_SUGGESTIONS = [
    "Show me all industries",
    "Find pain points in banking",
    "Compare sectors and departments",
]


def build_fallback_plan(message: str = FALLBACK_MESSAGE) -> ExecutionPlan:
    """One clarification step asking the user to restate the request."""
    return ExecutionPlan(
        steps=[
            PlanStep(
                task_type=TaskType.CLARIFY_WITH_USER,
                params={"message": message, "suggestions": list(FALLBACK_SUGGESTIONS)},
                on_failure=FailurePolicy.CONTINUE,
                reasoning="The request could not be planned; ask the user to restate it",
            )
        ],
        is_fallback=True,
    )


class ExecutionPlanner:
    """
    LLM-driven planner.

    generate() never raises: malformed output is retried once with a
    stricter prompt, and anything still unusable becomes the fallback
    clarification plan.
    """

    def __init__(
        self,
        llm: LLMClient,
        schema: GraphSchema = DEFAULT_SCHEMA,
        history_window: int = HISTORY_WINDOW,
        max_steps: int = MAX_PLAN_STEPS
    ):
        self.llm = llm
        self.schema = schema
        self.history_window = history_window
        self.max_steps = max_steps
        self.prompt = PlannerPrompt()

    async def _request_plan(
        self,
        user_query: str,
        history: List[Dict[str, Any]],
        deadline: Optional[Deadline],
        strict: bool
    ) -> str:
        user_message = self.prompt.format_user_message(
            user_query=user_query,
            history=history,
            schema_description=self.schema.describe(),
            strict=strict,
        )
        return await self.llm.generate_text(
            user_message,
            system_prompt=self.prompt.get_system_prompt(),
            temperature=0.1,
            max_tokens=800,
            deadline=deadline,
        )

    async def generate(
        self,
        user_query: str,
        history: Optional[List[Dict[str, Any]]] = None,
        deadline: Optional[Deadline] = None
    ) -> ExecutionPlan:
        """
        Create an execution plan for a user query.

        Args:
            user_query: The user's natural-language request
            history: Previous messages as {type, content}; only the most recent
                history_window entries are used
            deadline: Request deadline bounding the LLM calls

        Returns:
            A validated ExecutionPlan, or the fallback clarification plan
        """
        recent_history = list(history or [])[-self.history_window:]

        logger.info("=" * 60)
        logger.info("PLANNER: Creating execution plan")
        logger.info("=" * 60)
        logger.info(f"User Query: {redact_secrets(user_query)}")
        logger.info(f"History entries: {len(recent_history)}")

        start_time = time.time()
        try:
            response = await self._request_plan(user_query, recent_history, deadline, strict=False)
            try:
                payload = parse_json_strict(response)
            except LLMResponseParseError as e:
                logger.warning(f"Planner output was not valid JSON, retrying once: {e}")
                logger.debug(f"Unparseable planner output:\n{response}")
                response = await self._request_plan(user_query, recent_history, deadline, strict=True)
                payload = parse_json_response(response)

            self.prompt.validate_response_schema(payload)
            plan = ExecutionPlan.from_llm_payload(payload, max_steps=self.max_steps)

        except PromptSecurityError as e:
            logger.warning(f"Planner input rejected: {e}")
            return build_fallback_plan(REPHRASE_MESSAGE)
        except LLMResponseParseError as e:
            logger.error(f"Planner output unparseable after retry, using fallback plan: {e}")
            return build_fallback_plan()
        except PlanStructureError as e:
            logger.error(f"Invalid plan structure, using fallback plan: {e}")
            return build_fallback_plan()
        except CollaboratorUnavailableError as e:
            logger.error(f"Planner could not reach the LLM, using fallback plan: {e}")
            return build_fallback_plan()
        except Exception as e:
            logger.error(f"Planner failed unexpectedly, using fallback plan: {e}", exc_info=True)
            return build_fallback_plan()

        execution_time_ms = (time.time() - start_time) * 1000
        logger.info("=" * 60)
        logger.info(f"PLAN CREATED: {plan.plan_id} in {execution_time_ms:.2f}ms")
        logger.info("=" * 60)
        logger.info(f"Total Steps: {len(plan.steps)}")
        for number, step in enumerate(plan.steps, start=1):
            logger.info(f"  Step {number}: {step.task_type.value} (on_failure={step.on_failure.value})")
            logger.info(f"    Params: {step.params}")
            logger.info(f"    Reasoning: {step.reasoning}")
        logger.info("=" * 60)
        return plan

