"""
Task library.

Every handler is `async def handler(params, ctx) -> StepResult`. Expected
failures come back as failed results; dispatch_task() converts anything a
handler raises into one as well, so the orchestrator only ever sees
StepResults.
"""
import logging
from typing import Any, Dict, Union

from graph_navigator.errors import CollaboratorUnavailableError, GraphNavigatorError
from graph_navigator.plan_models import StepResult, TaskType
from graph_navigator.prompts.base_prompt import PromptSecurityError
from graph_navigator.tasks.analysis import analyze_and_summarize, generate_creative_text
from graph_navigator.tasks.clarification import build_final_answer, clarify_with_user
from graph_navigator.tasks.connection_paths import find_connection_paths
from graph_navigator.tasks.context import TaskContext, TaskHandler
from graph_navigator.tasks.cypher_execution import execute_cypher
from graph_navigator.tasks.cypher_generation import generate_cypher
from graph_navigator.tasks.entity_resolver import validate_entity

logger = logging.getLogger("task_library")

TASK_HANDLERS: Dict[TaskType, TaskHandler] = {
    TaskType.VALIDATE_ENTITY: validate_entity,
    TaskType.FIND_CONNECTION_PATHS: find_connection_paths,
    TaskType.GENERATE_CYPHER: generate_cypher,
    TaskType.EXECUTE_CYPHER: execute_cypher,
    TaskType.ANALYZE_AND_SUMMARIZE: analyze_and_summarize,
    TaskType.GENERATE_CREATIVE_TEXT: generate_creative_text,
    TaskType.CLARIFY_WITH_USER: clarify_with_user,
}


async def dispatch_task(task_type: Union[TaskType, str], params: Dict[str, Any], ctx: TaskContext) -> StepResult:
    try:
        handler = TASK_HANDLERS[TaskType(task_type)]
    except (ValueError, KeyError):
        logger.error(f"Unknown task type: {task_type}")
        return StepResult.fail(f"Unknown task type: {task_type}", error_type="unknown_task")

    try:
        return await handler(params, ctx)
    except CollaboratorUnavailableError as e:
        logger.error(f"Task {task_type} could not reach a collaborator: {e}")
        return StepResult.fail(
            "A required service is temporarily unavailable. Please try again.",
            error_type="collaborator_unavailable",
        )
    except PromptSecurityError as e:
        logger.warning(f"Task {task_type} rejected its input: {e}")
        return StepResult.fail(str(e), error_type="prompt_security")
    except GraphNavigatorError as e:
        logger.error(f"Task {task_type} failed: {e}")
        return StepResult.fail(str(e), error_type=type(e).__name__)


__all__ = [
    "TaskContext",
    "TaskHandler",
    "TASK_HANDLERS",
    "dispatch_task",
    "build_final_answer",
]
