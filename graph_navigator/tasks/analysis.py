import json
import re
import logging
from typing import Any, Dict, List, Optional

from graph_navigator.graph.formatting import GraphData
from graph_navigator.plan_models import StepResult
from graph_navigator.prompts.analysis_prompts import AnalysisPrompt, CreativePrompt
from graph_navigator.tasks.context import TaskContext

logger = logging.getLogger("analysis")

MAX_DATASET_CHARS = 6000
DEFAULT_STYLE = "Professional and practical"


def _graph_lines(graph_data: GraphData) -> List[str]:
    names = {node.id: node.label for node in graph_data.nodes}
    lines = [f"Nodes ({graph_data.node_count}):"]
    lines.extend(f"- [{node.group}] {node.label}" for node in graph_data.nodes)
    lines.append(f"Relationships ({graph_data.edge_count}):")
    lines.extend(
        f"- {names.get(edge.from_, edge.from_)} -[{edge.label}]-> {names.get(edge.to, edge.to)}"
        for edge in graph_data.edges
    )
    return lines


def render_dataset(dataset: Any) -> str:
    """
    Reduce a step output to compact text for the prompt.

    Outputs carrying graphData are summarised as node and relationship
    lines; anything else is serialised as JSON. Long renderings are cut.
    """
    graph_data = GraphData.coerce(dataset)
    if graph_data is None and isinstance(dataset, dict):
        graph_data = GraphData.coerce(dataset.get("graphData"))

    if graph_data is not None:
        text = "\n".join(_graph_lines(graph_data))
        if isinstance(dataset, dict) and dataset.get("scalars"):
            text += "\nValues:\n" + json.dumps(dataset["scalars"], default=str)
    elif isinstance(dataset, str):
        text = dataset
    else:
        text = json.dumps(dataset, default=str, indent=1)

    if len(text) > MAX_DATASET_CHARS:
        text = text[:MAX_DATASET_CHARS] + "\n... (truncated)"
    return text


def _first_paragraph(text: str) -> str:
    return text.strip().split("\n\n")[0].strip()


async def analyze_and_summarize(params: Dict[str, Any], ctx: TaskContext) -> StepResult:
    dataset = params.get("dataset")
    if dataset is None:
        dataset = params.get("dataset1")
    dataset2 = params.get("dataset2")
    if dataset is None:
        return StepResult.fail("analyze_and_summarize requires a 'dataset'", error_type="invalid_params")

    comparison_type = params.get("comparison_type") or "general"
    is_comparison = dataset2 is not None

    prompt = AnalysisPrompt()
    message = prompt.format_user_message(
        dataset=render_dataset(dataset),
        dataset2=render_dataset(dataset2) if is_comparison else None,
        comparison_type=comparison_type,
        analysis_goal=params.get("analysis_goal"),
    )
    logger.info(f"Analyzing {'two datasets' if is_comparison else 'one dataset'} ({comparison_type})")

    text = await ctx.llm.generate_text(
        message,
        system_prompt=prompt.get_system_prompt(),
        temperature=0.3,
        max_tokens=600,
        deadline=ctx.deadline,
    )
    prompt.validate_response_schema({"text": text})
    analysis = text.strip()

    return StepResult.ok({
        "analysis": analysis,
        "summary": _first_paragraph(analysis),
        "comparison_type": comparison_type,
        "datasets_analyzed": 2 if is_comparison else 1,
        "is_comparison": is_comparison,
    })


def _suggestion_lines(text: str) -> List[str]:
    lines = []
    for line in text.splitlines():
        cleaned = re.sub(r"^(?:[-*•]|\d+[.)])\s*", "", line.strip())
        if cleaned:
            lines.append(cleaned)
    return lines


async def generate_creative_text(params: Dict[str, Any], ctx: TaskContext) -> StepResult:
    creative_goal = params.get("creative_goal") or params.get("goal")
    if not isinstance(creative_goal, str) or not creative_goal.strip():
        return StepResult.fail("generate_creative_text requires a 'creative_goal'", error_type="invalid_params")

    style = params.get("style") or DEFAULT_STYLE
    context: Optional[Any] = params.get("context")

    prompt = CreativePrompt()
    message = prompt.format_user_message(
        creative_goal=creative_goal,
        style=style,
        context=render_dataset(context) if context is not None else None,
    )
    logger.info(f"Generating creative text for: {creative_goal}")

    text = await ctx.llm.generate_text(
        message,
        system_prompt=prompt.get_system_prompt(),
        temperature=0.7,
        max_tokens=500,
        deadline=ctx.deadline,
    )
    prompt.validate_response_schema({"text": text})
    content = text.strip()

    return StepResult.ok({
        "creative_content": content,
        "suggestions": _suggestion_lines(content),
        "style": style,
    })
