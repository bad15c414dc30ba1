"""
Tests for the plan model: step validation, reference parsing and
reference resolution against the execution state.
"""
import pytest

from graph_navigator.errors import DependencyMissingError, PlanStructureError
from graph_navigator.plan_models import (
    ExecutionPlan,
    FailurePolicy,
    FinalResult,
    QueryResult,
    StepReference,
    StepResult,
    TaskType,
    parse_value,
    resolve_params,
)


def _step(task_type="generate_cypher", params=None, on_failure="continue", reasoning="because"):
    return {
        "task_type": task_type,
        "params": params if params is not None else {"goal": "list industries"},
        "on_failure": on_failure,
        "reasoning": reasoning,
    }


class TestFailurePolicy:

    def test_known_policies(self):
        assert FailurePolicy.parse("continue") == FailurePolicy.CONTINUE
        assert FailurePolicy.parse("RETRY") == FailurePolicy.RETRY
        assert FailurePolicy.parse("clarify_and_halt") == FailurePolicy.CLARIFY_AND_HALT

    def test_halt_and_missing_mean_clarify_and_halt(self):
        assert FailurePolicy.parse("halt") == FailurePolicy.CLARIFY_AND_HALT
        assert FailurePolicy.parse(None) == FailurePolicy.CLARIFY_AND_HALT

    def test_unknown_policy_raises(self):
        with pytest.raises(ValueError):
            FailurePolicy.parse("explode")


class TestReferenceParsing:

    def test_dollar_reference(self):
        assert parse_value("$step1.output") == StepReference(step_number=1)

    def test_dollar_reference_with_field_path(self):
        ref = parse_value("$step2.output.query")
        assert ref.step_number == 2
        assert ref.field_path == ("query",)

    def test_natural_language_reference(self):
        ref = parse_value("step 3 output")
        assert ref == StepReference(step_number=3)

    def test_plain_strings_stay_literal(self):
        assert parse_value("Banking") == "Banking"
        assert parse_value("costs $5 per step") == "costs $5 per step"

    def test_nested_references(self):
        parsed = parse_value({"datasets": ["$step1.output", "$step2.output"], "goal": "compare"})
        assert parsed["datasets"] == [StepReference(step_number=1), StepReference(step_number=2)]
        assert parsed["goal"] == "compare"

    def test_render(self):
        assert StepReference(step_number=2, field_path=("graphData",)).render() == "$step2.output.graphData"


class TestExecutionPlanValidation:

    def test_valid_plan(self):
        plan = ExecutionPlan.from_llm_payload({"plan": [
            _step(),
            _step("execute_cypher", {"query": "$step1.output"}, "retry"),
        ]})
        assert len(plan.steps) == 2
        assert plan.steps[1].task_type == TaskType.EXECUTE_CYPHER
        assert plan.steps[1].params["query"] == StepReference(step_number=1)
        assert plan.plan_id.startswith("plan-")

    def test_empty_plan_rejected(self):
        with pytest.raises(PlanStructureError):
            ExecutionPlan.from_llm_payload({"plan": []})

    def test_unknown_task_type_names_step(self):
        with pytest.raises(PlanStructureError) as exc_info:
            ExecutionPlan.from_llm_payload({"plan": [_step(), _step("delete_everything")]})
        assert exc_info.value.step_index == 2
        assert exc_info.value.field == "task_type"

    @pytest.mark.parametrize("task_type", [["generate_cypher"], {"name": "generate_cypher"}, None])
    def test_non_string_task_type_rejected(self, task_type):
        with pytest.raises(PlanStructureError) as exc_info:
            ExecutionPlan.from_llm_payload({"plan": [_step(task_type)]})
        assert exc_info.value.field == "task_type"

    def test_params_must_be_mapping(self):
        with pytest.raises(PlanStructureError) as exc_info:
            ExecutionPlan.from_llm_payload({"plan": [_step(params=["goal"])]})
        assert exc_info.value.field == "params"

    def test_empty_reasoning_rejected(self):
        with pytest.raises(PlanStructureError) as exc_info:
            ExecutionPlan.from_llm_payload({"plan": [_step(reasoning="  ")]})
        assert exc_info.value.field == "reasoning"

    def test_unknown_policy_rejected(self):
        with pytest.raises(PlanStructureError) as exc_info:
            ExecutionPlan.from_llm_payload({"plan": [_step(on_failure="panic")]})
        assert exc_info.value.field == "on_failure"

    def test_forward_reference_rejected(self):
        with pytest.raises(PlanStructureError):
            ExecutionPlan.from_llm_payload({"plan": [
                _step("execute_cypher", {"query": "$step2.output"}),
                _step(),
            ]})

    def test_self_reference_rejected(self):
        with pytest.raises(PlanStructureError):
            ExecutionPlan.from_llm_payload({"plan": [_step("execute_cypher", {"query": "$step1.output"})]})

    def test_too_many_steps_rejected(self):
        with pytest.raises(PlanStructureError):
            ExecutionPlan.from_llm_payload({"plan": [_step()] * 4}, max_steps=3)

    def test_legacy_halt_policy_accepted(self):
        plan = ExecutionPlan.from_llm_payload({"plan": [_step(on_failure="halt")]})
        assert plan.steps[0].on_failure == FailurePolicy.CLARIFY_AND_HALT


class TestReferenceResolution:

    def test_whole_output(self):
        state = {1: StepResult.ok({"query": "MATCH (n) RETURN n"})}
        resolved = resolve_params({"query": StepReference(step_number=1)}, state, 2)
        assert resolved == {"query": {"query": "MATCH (n) RETURN n"}}

    def test_field_path(self):
        state = {1: StepResult.ok({"query": "MATCH (n) RETURN n"})}
        resolved = resolve_params({"query": StepReference(step_number=1, field_path=("query",))}, state, 2)
        assert resolved == {"query": "MATCH (n) RETURN n"}

    def test_failed_dependency(self):
        state = {1: StepResult.fail("boom")}
        with pytest.raises(DependencyMissingError) as exc_info:
            resolve_params({"query": StepReference(step_number=1)}, state, 2)
        assert exc_info.value.referenced_step == 1
        assert exc_info.value.step_number == 2

    def test_missing_field(self):
        state = {1: StepResult.ok({"query": "x"})}
        with pytest.raises(DependencyMissingError):
            resolve_params({"q": StepReference(step_number=1, field_path=("nope",))}, state, 2)

    def test_literals_untouched(self):
        assert resolve_params({"goal": "x", "n": 3}, {}, 1) == {"goal": "x", "n": 3}


class TestResultSerialisation:

    def test_camel_case_and_nulls_dropped(self):
        result = FinalResult(
            success=True,
            message="done",
            needs_clarification=False,
            query_result=QueryResult(type="query", cypher_query="MATCH (n) RETURN n", node_count=0),
        )
        response = result.to_response()
        assert response["needsClarification"] is False
        assert response["queryResult"]["cypherQuery"] == "MATCH (n) RETURN n"
        assert "error" not in response
        assert "graphData" not in response["queryResult"]
