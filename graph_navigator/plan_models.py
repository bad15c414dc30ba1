import re
import uuid
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic.alias_generators import to_camel

from graph_navigator.errors import DependencyMissingError, PlanStructureError
from graph_navigator.graph.formatting import GraphData


# ============================================================================
# TASK CATALOG
# ============================================================================

class TaskType(str, Enum):
    VALIDATE_ENTITY = "validate_entity"
    FIND_CONNECTION_PATHS = "find_connection_paths"
    GENERATE_CYPHER = "generate_cypher"
    EXECUTE_CYPHER = "execute_cypher"
    ANALYZE_AND_SUMMARIZE = "analyze_and_summarize"
    GENERATE_CREATIVE_TEXT = "generate_creative_text"
    CLARIFY_WITH_USER = "clarify_with_user"


TASK_CATALOG: Dict[TaskType, str] = {
    TaskType.VALIDATE_ENTITY: (
        "Check that an entity or label exists in the schema or the data. "
        "Params: entity_type. Returns valid, confidence, suggested_entities."
    ),
    TaskType.FIND_CONNECTION_PATHS: (
        "Find direct paths and shared intermediate nodes between entities or labels. "
        "Params: entities (list) or start_entity and end_entity."
    ),
    TaskType.GENERATE_CYPHER: (
        "Write a Cypher query for a goal. Params: goal, entities, context; optional mode flags "
        "proxy_entity, exclusion, inclusion, comparison, multi_level, exploration_mode."
    ),
    TaskType.EXECUTE_CYPHER: (
        "Run a query and return graph data. Params: query (usually $stepN.output from generate_cypher)."
    ),
    TaskType.ANALYZE_AND_SUMMARIZE: (
        "Summarise or compare query results. Params: dataset, or dataset1 and dataset2, "
        "comparison_type, analysis_goal."
    ),
    TaskType.GENERATE_CREATIVE_TEXT: (
        "Produce ideas or recommendations. Params: creative_goal, context, style."
    ),
    TaskType.CLARIFY_WITH_USER: (
        "Ask the user a question, or with provide_final_answer=true list what exists and stop asking. "
        "Params: message, suggestions, conversation_state, entity_issues."
    ),
}


class FailurePolicy(str, Enum):
    CLARIFY_AND_HALT = "clarify_and_halt"
    CONTINUE = "continue"
    RETRY = "retry"

    @classmethod
    def parse(cls, value: Any) -> "FailurePolicy":
        """Parse a policy name; a missing value and the legacy 'halt' both mean clarify_and_halt."""
        if value is None or value == "":
            return cls.CLARIFY_AND_HALT
        normalized = str(value).strip().lower()
        if normalized == "halt":
            return cls.CLARIFY_AND_HALT
        return cls(normalized)


# ============================================================================
# STEP REFERENCES
# ============================================================================

DOLLAR_REFERENCE = re.compile(r"^\s*\$step(\d+)(?:\.output)?((?:\.\w+)*)\s*$", re.IGNORECASE)
NATURAL_REFERENCE = re.compile(r"^\s*step\s+(\d+)\s+output((?:\.\w+)*)\s*$", re.IGNORECASE)


class StepReference(BaseModel):
    """A parameter value that points at an earlier step's output."""
    model_config = ConfigDict(frozen=True)

    step_number: int
    field_path: Tuple[str, ...] = ()

    def render(self) -> str:
        suffix = "".join(f".{segment}" for segment in self.field_path)
        return f"$step{self.step_number}.output{suffix}"


def parse_value(raw: Any) -> Any:
    """Turn raw plan parameters into literals and StepReferences, recursively."""
    if isinstance(raw, str):
        match = DOLLAR_REFERENCE.match(raw) or NATURAL_REFERENCE.match(raw)
        if match:
            path = tuple(segment for segment in match.group(2).split(".") if segment)
            return StepReference(step_number=int(match.group(1)), field_path=path)
        return raw
    if isinstance(raw, list):
        return [parse_value(item) for item in raw]
    if isinstance(raw, dict):
        return {key: parse_value(value) for key, value in raw.items()}
    return raw


def collect_references(value: Any) -> List[StepReference]:
    if isinstance(value, StepReference):
        return [value]
    if isinstance(value, list):
        return [ref for item in value for ref in collect_references(item)]
    if isinstance(value, dict):
        return [ref for item in value.values() for ref in collect_references(item)]
    return []


# ============================================================================
# PLAN
# ============================================================================

class PlanStep(BaseModel):
    """
    One task invocation.

    Steps are frozen once the plan is built; results are stored by the
    orchestrator, never on the step.
    """
    model_config = ConfigDict(frozen=True)

    task_type: TaskType
    params: Dict[str, Any] = Field(default_factory=dict)
    on_failure: FailurePolicy = FailurePolicy.CLARIFY_AND_HALT
    reasoning: str

    @field_validator("reasoning")
    @classmethod
    def validate_reasoning(cls, v):
        if not v or not v.strip():
            raise ValueError("reasoning cannot be empty")
        return v.strip()

    def references(self) -> List[StepReference]:
        return collect_references(self.params)


class ExecutionPlan(BaseModel):
    model_config = ConfigDict(frozen=True)

    plan_id: str = Field(default_factory=lambda: f"plan-{uuid.uuid4().hex[:8]}")
    steps: List[PlanStep] = Field(..., min_length=1)
    created_at: str = Field(default_factory=lambda: datetime.now().isoformat())
    is_fallback: bool = False

    @classmethod
    def from_llm_payload(cls, payload: Dict[str, Any], max_steps: int = 12) -> "ExecutionPlan":
        """
        Build a plan from parsed planner output.

        Raises:
            PlanStructureError: Naming the offending step index and field
        """
        raw_steps = payload.get("plan", payload.get("steps"))
        if not isinstance(raw_steps, list) or not raw_steps:
            raise PlanStructureError("Plan must contain a non-empty step list", field="plan")
        if len(raw_steps) > max_steps:
            raise PlanStructureError(f"Plan has {len(raw_steps)} steps (max: {max_steps})", field="plan")

        steps = []
        for index, raw in enumerate(raw_steps, start=1):
            steps.append(_build_step(raw, index))

        return cls(steps=steps)

    def step(self, step_number: int) -> PlanStep:
        return self.steps[step_number - 1]


def _build_step(raw: Any, index: int) -> PlanStep:
    if not isinstance(raw, dict):
        raise PlanStructureError("Step must be an object", step_index=index)

    task_type = raw.get("task_type")
    if not isinstance(task_type, str):
        raise PlanStructureError("task_type must be a string", step_index=index, field="task_type")
    if task_type not in {task.value for task in TaskType}:
        raise PlanStructureError(f"Unknown task type '{task_type}'", step_index=index, field="task_type")

    params = raw.get("params")
    if not isinstance(params, dict):
        raise PlanStructureError("params must be a mapping", step_index=index, field="params")

    reasoning = raw.get("reasoning")
    if not isinstance(reasoning, str) or not reasoning.strip():
        raise PlanStructureError("reasoning must be a non-empty string", step_index=index, field="reasoning")

    try:
        on_failure = FailurePolicy.parse(raw.get("on_failure"))
    except ValueError:
        raise PlanStructureError(
            f"Unknown failure policy '{raw.get('on_failure')}'", step_index=index, field="on_failure"
        )

    try:
        step = PlanStep(
            task_type=TaskType(task_type),
            params=parse_value(params),
            on_failure=on_failure,
            reasoning=reasoning,
        )
    except ValidationError as e:
        raise PlanStructureError(f"Invalid step: {e.errors()[0].get('msg')}", step_index=index)

    for reference in step.references():
        if reference.step_number < 1 or reference.step_number >= index:
            raise PlanStructureError(
                f"References step {reference.step_number}, which does not precede it",
                step_index=index,
                field="params",
            )
    return step


# ============================================================================
# RESULTS
# ============================================================================

class StepResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    success: bool
    output: Any = None
    error: Optional[str] = None
    error_type: Optional[str] = None
    attempts: int = 1

    @classmethod
    def ok(cls, output: Any = None) -> "StepResult":
        return cls(success=True, output=output)

    @classmethod
    def fail(cls, error: str, output: Any = None, error_type: Optional[str] = None) -> "StepResult":
        return cls(success=False, output=output, error=error, error_type=error_type)


# Run-scoped mapping of 1-based step number to its result
ExecutionState = Dict[int, StepResult]


def _descend(value: Any, segment: str) -> Any:
    if isinstance(value, dict) and segment in value:
        return value[segment]
    if isinstance(value, BaseModel) and segment in type(value).model_fields:
        return getattr(value, segment)
    if isinstance(value, list) and segment.isdigit() and int(segment) < len(value):
        return value[int(segment)]
    raise KeyError(segment)


def resolve_reference(reference: StepReference, state: ExecutionState, step_number: int) -> Any:
    """
    Look up a reference in the execution state.

    Raises:
        DependencyMissingError: The referenced step has no successful result
            or its output lacks the requested field
    """
    result = state.get(reference.step_number)
    if result is None:
        raise DependencyMissingError(step_number, reference.step_number, "has not run")
    if not result.success:
        raise DependencyMissingError(step_number, reference.step_number, "did not succeed")

    value = result.output
    for segment in reference.field_path:
        try:
            value = _descend(value, segment)
        except KeyError:
            raise DependencyMissingError(
                step_number,
                reference.step_number,
                f"has no output field '{'.'.join(reference.field_path)}'",
            )
    return value


def resolve_params(params: Any, state: ExecutionState, step_number: int) -> Any:
    """Return a copy of params with every StepReference replaced by its value."""
    if isinstance(params, StepReference):
        return resolve_reference(params, state, step_number)
    if isinstance(params, list):
        return [resolve_params(item, state, step_number) for item in params]
    if isinstance(params, dict):
        return {key: resolve_params(value, state, step_number) for key, value in params.items()}
    return params


class ResultModel(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True, alias_generator=to_camel)


class QueryResult(ResultModel):
    """Accumulated user-facing result. Updated only through model_copy."""
    type: str
    graph_data: Optional[GraphData] = None
    cypher_query: Optional[str] = None
    connection_strategy: Optional[str] = None
    explanation: Optional[str] = None
    analysis: Optional[str] = None
    summary: Optional[str] = None
    creative_content: Optional[str] = None
    approximation_note: Optional[str] = None
    suggestions: Optional[List[str]] = None
    available_data: Optional[Dict[str, Any]] = None
    scalars: Optional[List[Dict[str, Any]]] = None
    node_count: Optional[int] = None
    edge_count: Optional[int] = None
    pending_visualization: Optional[bool] = None
    auto_recovered: Optional[bool] = None
    recovery: Optional[Dict[str, Any]] = None
    reasoning_steps: Optional[List[Dict[str, Any]]] = None


class FinalResult(ResultModel):
    success: bool
    message: Optional[str] = None
    error: Optional[str] = None
    query_result: Optional[QueryResult] = None
    needs_clarification: Optional[bool] = None
    needs_confirmation: Optional[bool] = None
    is_final_answer: Optional[bool] = None
    terminates_clarification_loop: Optional[bool] = None
    suggestions: Optional[List[str]] = None
    entity_issues: Optional[List[str]] = None
    failed_at: Optional[int] = None
    plan_id: Optional[str] = None
    execution_log: List[Dict[str, Any]] = Field(default_factory=list)

    def to_response(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)
