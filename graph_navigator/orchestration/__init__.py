"""
Orchestration package for graph query planning and execution.

Components:
- planner_agent: LLM-driven plan generation with fallback
- orchestrator: Deterministic LangGraph step loop with failure policies
- result_fold: Merge rule for step outputs
"""
from graph_navigator.orchestration.planner_agent import (
    ExecutionPlanner,
    build_fallback_plan,
)
from graph_navigator.orchestration.orchestrator import Orchestrator
from graph_navigator.orchestration.result_fold import fold_step_output

__all__ = [
    "ExecutionPlanner",
    "build_fallback_plan",
    "Orchestrator",
    "fold_step_output",
]
