"""
Deterministic interpreter for execution plans.

The step loop is a LangGraph StateGraph with a single execute_step node and
a conditional edge that either loops back or ends. Each iteration runs
exactly one plan step (plus at most one retry), in plan order.

Per-run state (step results, accumulated result, execution log) lives in
the graph state of one ainvoke() call and is never shared between runs.
"""
import json
import logging
import re
import time
from typing import Any, Dict, List, Optional, TypedDict

from langgraph.graph import StateGraph, END

from graph_navigator.config import LARGE_RESULT_NODE_THRESHOLD
from graph_navigator.deadline import Deadline
from graph_navigator.errors import DependencyMissingError
from graph_navigator.graph.database import GraphDatabaseClient
from graph_navigator.graph.formatting import GraphData
from graph_navigator.llm.client import LLMClient
from graph_navigator.orchestration.result_fold import fold_step_output
from graph_navigator.plan_models import (
    ExecutionPlan,
    FailurePolicy,
    FinalResult,
    PlanStep,
    QueryResult,
    StepResult,
    TaskType,
    resolve_params,
)
from graph_navigator.schema import DEFAULT_SCHEMA, GraphSchema
from graph_navigator.tasks import TaskContext, build_final_answer, dispatch_task
from graph_navigator.tasks.clarification import DEFAULT_SUGGESTIONS

logger = logging.getLogger("orchestrator")

TIMEOUT_MESSAGE = "The request took too long to complete. Please try again."
UNAVAILABLE_MESSAGE = "A required service is temporarily unavailable. Please try again."

ENTITY_HINT_PATTERNS = [
    re.compile(r"\b(?:name|title)\)?\s*=\s*(?:toLower\()?\s*'([^']+)'", re.IGNORECASE),
    re.compile(r"\bCONTAINS\s+(?:toLower\()?\s*'([^']+)'", re.IGNORECASE),
    re.compile(r"\{\s*(?:name|title)\s*:\s*'([^']+)'", re.IGNORECASE),
]

PRIOR_ENTITY_FAILURE_MARKERS = ("did you mean", "couldn't find", "could not find")
USER_MESSAGE_TYPES = ("user", "human")


class RunState(TypedDict):
    plan: ExecutionPlan
    history: List[Dict[str, Any]]
    context: TaskContext
    current_step_index: int
    step_results: Dict[int, StepResult]
    accumulated: Optional[QueryResult]
    execution_log: List[Dict[str, Any]]
    entity_failures: int
    final_result: Optional[FinalResult]
    halted: bool
    errors: List[str]


def extract_entity_hints(query: str) -> List[str]:
    """Literal names a query filtered on, in order of appearance."""
    hints: List[str] = []
    for pattern in ENTITY_HINT_PATTERNS:
        for match in pattern.finditer(query or ""):
            value = match.group(1).strip()
            if value and value not in hints:
                hints.append(value)
    return hints


def count_prior_entity_failures(history: List[Dict[str, Any]]) -> int:
    """Assistant turns in the history that already reported an unknown entity."""
    count = 0
    for message in history or []:
        if str(message.get("type", "")).lower() in USER_MESSAGE_TYPES:
            continue
        content = str(message.get("content", "")).lower()
        if any(marker in content for marker in PRIOR_ENTITY_FAILURE_MARKERS):
            count += 1
    return count


def _summarize_value(value: Any, limit: int = 200) -> Any:
    if isinstance(value, GraphData):
        return f"<graph: {value.node_count} nodes, {value.edge_count} edges>"
    if isinstance(value, dict):
        return {key: _summarize_value(item, limit) for key, item in value.items()}
    if isinstance(value, list):
        return [_summarize_value(item, limit) for item in value[:10]]
    if isinstance(value, str) and len(value) > limit:
        return value[:limit] + "..."
    return value


class Orchestrator:
    """
    Runs an ExecutionPlan against the task library.

    Failure policies:
    - clarify_and_halt: stop and return a clarification
    - continue: record the failure and move on
    - retry: re-invoke once with the same params, then continue semantics
    """

    def __init__(
        self,
        llm: LLMClient,
        graph: GraphDatabaseClient,
        schema: GraphSchema = DEFAULT_SCHEMA,
        large_result_threshold: int = LARGE_RESULT_NODE_THRESHOLD
    ):
        self.llm = llm
        self.graph = graph
        self.schema = schema
        self.large_result_threshold = large_result_threshold
        self._workflow = self._build_workflow()

    # ========================================================================
    # LangGraph workflow
    # ========================================================================

    def _build_workflow(self):
        workflow = StateGraph(RunState)
        workflow.add_node("execute_step", self._execute_step_node)
        workflow.set_entry_point("execute_step")
        workflow.add_conditional_edges(
            "execute_step",
            self._should_continue,
            {
                "continue": "execute_step",
                "end": END
            }
        )
        return workflow.compile()

    @staticmethod
    def _should_continue(state: RunState) -> str:
        if state["halted"]:
            return "end"
        if state["current_step_index"] >= len(state["plan"].steps):
            return "end"
        return "continue"

    async def _execute_step_node(self, state: RunState) -> Dict[str, Any]:
        plan = state["plan"]
        index = state["current_step_index"]
        if index >= len(plan.steps):
            return {"halted": True}

        step_number = index + 1
        step = plan.steps[index]
        ctx = state["context"]

        if ctx.deadline is not None and ctx.deadline.expired:
            logger.error(f"Deadline exceeded before step {step_number}/{len(plan.steps)}")
            return {
                "halted": True,
                "final_result": FinalResult(
                    success=False,
                    error="Request timed out",
                    message=TIMEOUT_MESSAGE,
                    failed_at=step_number,
                    plan_id=plan.plan_id,
                    execution_log=state["execution_log"],
                ),
            }

        logger.info(
            f"Executing step {step_number}/{len(plan.steps)}: {step.task_type.value} "
            f"(on_failure={step.on_failure.value})"
        )
        step_results = dict(state["step_results"])
        start_time = time.time()
        params: Optional[Dict[str, Any]] = None

        try:
            params = resolve_params(step.params, step_results, step_number)
        except DependencyMissingError as e:
            logger.warning(f"Step {step_number} skipped: {e}")
            result = StepResult.fail(str(e), error_type="dependency_missing")
        else:
            result = await self._invoke(step, params, ctx)
            if not result.success and step.on_failure == FailurePolicy.RETRY:
                logger.info(f"Retrying step {step_number} once: {result.error}")
                result = (await self._invoke(step, params, ctx)).model_copy(update={"attempts": 2})

        duration_ms = (time.time() - start_time) * 1000
        step_results[step_number] = result
        execution_log = state["execution_log"] + [
            self._log_entry(step_number, step, params, result, duration_ms)
        ]

        status = "succeeded" if result.success else f"failed: {result.error}"
        logger.info(f"Step {step_number} {status} ({duration_ms:.2f}ms)")

        updates: Dict[str, Any] = {
            "step_results": step_results,
            "execution_log": execution_log,
            "current_step_index": index + 1,
        }
        if result.success:
            updates.update(await self._handle_success(state, step, step_number, result, execution_log))
        else:
            updates.update(await self._handle_failure(state, step, step_number, result, execution_log))
        return updates

    async def _invoke(self, step: PlanStep, params: Dict[str, Any], ctx: TaskContext) -> StepResult:
        try:
            return await dispatch_task(step.task_type, params, ctx)
        except Exception as e:
            logger.exception(f"Task {step.task_type.value} raised unexpectedly: {e}")
            return StepResult.fail(f"Unexpected error in {step.task_type.value}: {e}", error_type="unexpected_error")

    @staticmethod
    def _log_entry(
        step_number: int,
        step: PlanStep,
        params: Optional[Dict[str, Any]],
        result: StepResult,
        duration_ms: float
    ) -> Dict[str, Any]:
        return {
            "step": step_number,
            "task_type": step.task_type.value,
            "reasoning": step.reasoning,
            "on_failure": step.on_failure.value,
            "params": _summarize_value(params) if params is not None else None,
            "success": result.success,
            "error": result.error,
            "error_type": result.error_type,
            "attempts": result.attempts,
            "duration_ms": round(duration_ms, 2),
        }

    # ========================================================================
    # Step outcome handling
    # ========================================================================

    async def _handle_success(
        self,
        state: RunState,
        step: PlanStep,
        step_number: int,
        result: StepResult,
        execution_log: List[Dict[str, Any]]
    ) -> Dict[str, Any]:
        plan = state["plan"]
        output = result.output

        if step.task_type == TaskType.CLARIFY_WITH_USER and isinstance(output, dict):
            if output.get("terminatesClarificationLoop"):
                logger.info("Plan produced a final answer; ending clarification loop")
                return {
                    "halted": True,
                    "final_result": self._final_answer_result(output, plan, execution_log),
                }
            if output.get("needsClarification"):
                logger.info("Plan asked the user for clarification")
                return {
                    "halted": True,
                    "final_result": FinalResult(
                        success=True,
                        message=output.get("message"),
                        needs_clarification=True,
                        suggestions=output.get("suggestions"),
                        entity_issues=output.get("entity_issues") or None,
                        plan_id=plan.plan_id,
                        execution_log=execution_log,
                    ),
                }

        accumulated = state["accumulated"]
        if (
            step.task_type == TaskType.EXECUTE_CYPHER
            and isinstance(output, dict)
            and not output.get("nodeCount")
            and not output.get("scalars")
            and (accumulated is None or not accumulated.node_count)
        ):
            hints = extract_entity_hints(output.get("query", ""))
            if hints:
                logger.info(f"Query returned nothing for {hints}; listing what exists instead")
                answer = await build_final_answer(state["context"], hints)
                return {
                    "halted": True,
                    "final_result": self._final_answer_result(answer, plan, execution_log),
                }

        return {"accumulated": fold_step_output(accumulated, step.task_type, output)}

    async def _handle_failure(
        self,
        state: RunState,
        step: PlanStep,
        step_number: int,
        result: StepResult,
        execution_log: List[Dict[str, Any]]
    ) -> Dict[str, Any]:
        errors = state["errors"] + [f"Step {step_number} ({step.task_type.value}): {result.error}"]
        entity_failures = state["entity_failures"]
        if step.task_type == TaskType.VALIDATE_ENTITY and result.error_type == "entity_not_found":
            entity_failures += 1

        updates: Dict[str, Any] = {"errors": errors, "entity_failures": entity_failures}

        if step.on_failure == FailurePolicy.CLARIFY_AND_HALT:
            logger.warning(f"Halting at step {step_number}: {result.error}")
            updates["halted"] = True
            updates["final_result"] = await self._halt(
                state, step, step_number, result, execution_log, entity_failures
            )
        else:
            logger.warning(f"Continuing past failed step {step_number} ({step.on_failure.value})")
        return updates

    async def _halt(
        self,
        state: RunState,
        step: PlanStep,
        step_number: int,
        result: StepResult,
        execution_log: List[Dict[str, Any]],
        entity_failures: int
    ) -> FinalResult:
        plan = state["plan"]

        if result.error_type == "collaborator_unavailable":
            return FinalResult(
                success=False,
                error=result.error,
                message=UNAVAILABLE_MESSAGE,
                failed_at=step_number,
                plan_id=plan.plan_id,
                execution_log=execution_log,
            )

        if step.task_type == TaskType.VALIDATE_ENTITY and result.error_type == "entity_not_found":
            output = result.output if isinstance(result.output, dict) else {}
            entity = output.get("entity") or str(step.params.get("entity_type", ""))
            confidence = float(output.get("confidence") or 0.0)
            suggestions = output.get("suggested_entities") or []
            total_failures = entity_failures + count_prior_entity_failures(state["history"])

            if confidence == 0.0 or total_failures >= 2:
                logger.info(f"Unknown entity '{entity}' (failures: {total_failures}); providing final answer")
                answer = await build_final_answer(state["context"], [entity])
                return self._final_answer_result(answer, plan, execution_log, failed_at=step_number)

            if confidence < 0.5 and suggestions:
                return FinalResult(
                    success=False,
                    error=result.error,
                    message=f"I couldn't find '{entity}'. Did you mean: {', '.join(suggestions)}?",
                    needs_clarification=True,
                    suggestions=suggestions,
                    entity_issues=[entity],
                    failed_at=step_number,
                    plan_id=plan.plan_id,
                    execution_log=execution_log,
                )

        return FinalResult(
            success=False,
            error=result.error,
            message=f"I need clarification: {result.error}",
            needs_clarification=True,
            suggestions=list(DEFAULT_SUGGESTIONS),
            failed_at=step_number,
            plan_id=plan.plan_id,
            execution_log=execution_log,
        )

    @staticmethod
    def _final_answer_result(
        answer: Dict[str, Any],
        plan: ExecutionPlan,
        execution_log: List[Dict[str, Any]],
        failed_at: Optional[int] = None
    ) -> FinalResult:
        return FinalResult(
            success=True,
            message=answer.get("message"),
            needs_clarification=False,
            is_final_answer=True,
            terminates_clarification_loop=True,
            suggestions=answer.get("suggestions"),
            entity_issues=answer.get("entity_issues") or None,
            query_result=QueryResult(
                type="final_answer",
                available_data=answer.get("availableData"),
                suggestions=answer.get("suggestions"),
            ),
            failed_at=failed_at,
            plan_id=plan.plan_id,
            execution_log=execution_log,
        )

    # ========================================================================
    # Finalisation
    # ========================================================================

    def _result_message(self, result: QueryResult, needs_confirmation: bool) -> str:
        if result.type in ("query", "exploration", "connections"):
            if not result.node_count:
                message = "The query ran successfully but returned no matching data."
            else:
                message = f"Found {result.node_count} nodes and {result.edge_count} connections."
            if result.approximation_note:
                message += f" {result.approximation_note}"
            if result.auto_recovered:
                message += " The query was corrected automatically after an error."
            if needs_confirmation:
                message += (
                    f" This is a large result ({result.node_count} nodes); "
                    f"confirm to display the visualization."
                )
            return message
        if result.type == "analysis":
            return result.summary or "Analysis complete."
        if result.type == "creative":
            return "Here are some ideas based on your request."
        return result.summary or "Request completed."

    def _finalize(self, state: RunState) -> FinalResult:
        plan = state["plan"]
        step_results = state["step_results"]
        execution_log = state["execution_log"]
        errors = state["errors"]

        succeeded = [number for number, result in step_results.items() if result.success]
        if not succeeded:
            last_error = errors[-1] if errors else "No steps were executed"
            logger.error(f"No step of plan {plan.plan_id} succeeded: {last_error}")
            return FinalResult(
                success=False,
                error=last_error,
                message="I couldn't complete that request. Please try again or rephrase it.",
                plan_id=plan.plan_id,
                execution_log=execution_log,
            )

        accumulated = state["accumulated"]
        if accumulated is None:
            accumulated = QueryResult(
                type="generic",
                summary=f"Completed {len(succeeded)} of {len(plan.steps)} steps.",
            )

        needs_confirmation = bool(
            accumulated.graph_data is not None
            and accumulated.graph_data.node_count > self.large_result_threshold
        )
        update: Dict[str, Any] = {
            "reasoning_steps": [
                {
                    "step": entry["step"],
                    "task_type": entry["task_type"],
                    "reasoning": entry["reasoning"],
                    "success": entry["success"],
                }
                for entry in execution_log
            ]
        }
        if needs_confirmation:
            update["pending_visualization"] = True
        accumulated = accumulated.model_copy(update=update)

        message = self._result_message(accumulated, needs_confirmation)
        if errors:
            message += f" Note: {len(errors)} step(s) could not be completed, so this result may be partial."

        return FinalResult(
            success=True,
            message=message,
            query_result=accumulated,
            needs_confirmation=True if needs_confirmation else None,
            plan_id=plan.plan_id,
            execution_log=execution_log,
        )

    # ========================================================================
    # Entry point
    # ========================================================================

    async def execute(
        self,
        plan: ExecutionPlan,
        history: Optional[List[Dict[str, Any]]] = None,
        deadline: Optional[Deadline] = None
    ) -> FinalResult:
        logger.info("=" * 60)
        logger.info(f"Starting execution for plan: {plan.plan_id} ({len(plan.steps)} steps)")
        logger.info("=" * 60)

        initial_state: RunState = {
            "plan": plan,
            "history": list(history or []),
            "context": TaskContext(llm=self.llm, graph=self.graph, schema=self.schema, deadline=deadline),
            "current_step_index": 0,
            "step_results": {},
            "accumulated": None,
            "execution_log": [],
            "entity_failures": 0,
            "final_result": None,
            "halted": False,
            "errors": [],
        }

        try:
            final_state = await self._workflow.ainvoke(
                initial_state,
                config={"recursion_limit": 2 * len(plan.steps) + 5},
            )
        except Exception as e:
            logger.exception(f"Execution failed: {e}")
            return FinalResult(
                success=False,
                error="Execution failed",
                message="Something went wrong while processing your request. Please try again.",
                plan_id=plan.plan_id,
            )

        if final_state.get("final_result") is not None:
            result = final_state["final_result"]
        else:
            result = self._finalize(final_state)

        logger.info(f"Plan {plan.plan_id} finished: success={result.success}")
        logger.debug(f"Execution log: {json.dumps(result.execution_log, default=str)}")
        return result
