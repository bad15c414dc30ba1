"""
Fold of step outputs into the accumulated QueryResult.

Merge rule:
1. execute_cypher with nodes -> "query" (or "exploration") result; when a
   graph already exists the two graphs are merged; an empty execution keeps
   the existing graph and takes over the step's query and scalar rows
2. analyze_and_summarize -> analysis/summary attached onto the existing
   result, graphData untouched; standalone "analysis" result otherwise
3. generate_creative_text -> creative content attached the same way;
   standalone "creative" result otherwise
4. find_connection_paths -> "connections" result, or its graph merged into
   an existing graph-bearing result

Every fold returns a new QueryResult. Earlier results, and the GraphData of
earlier step outputs, are never modified.
"""
from typing import Any, Dict, Optional

from graph_navigator.graph.formatting import GraphData
from graph_navigator.plan_models import QueryResult, TaskType


def _merged_graph(accumulated: Optional[QueryResult], graph_data: GraphData) -> GraphData:
    if accumulated is not None and accumulated.graph_data is not None:
        return accumulated.graph_data.merge(graph_data)
    return graph_data


def _narrative_fields(accumulated: Optional[QueryResult]) -> Dict[str, Any]:
    if accumulated is None:
        return {}
    return {
        key: value for key, value in {
            "analysis": accumulated.analysis,
            "summary": accumulated.summary,
            "creative_content": accumulated.creative_content,
            "suggestions": accumulated.suggestions,
        }.items()
        if value is not None
    }


def _fold_execution(accumulated: Optional[QueryResult], output: Dict[str, Any]) -> Optional[QueryResult]:
    graph_data = GraphData.coerce(output.get("graphData")) or GraphData()

    if graph_data.node_count == 0:
        if accumulated is not None:
            update = {
                key: value for key, value in {
                    "scalars": output.get("scalars"),
                    "cypher_query": output.get("query"),
                    "explanation": output.get("explanation"),
                    "connection_strategy": output.get("connectionStrategy"),
                }.items()
                if value is not None
            }
            return accumulated.model_copy(update=update)
        return QueryResult(
            type="query",
            graph_data=graph_data,
            cypher_query=output.get("query"),
            connection_strategy=output.get("connectionStrategy"),
            explanation=output.get("explanation"),
            scalars=output.get("scalars"),
            node_count=0,
            edge_count=0,
        )

    merged = _merged_graph(accumulated, graph_data)
    return QueryResult(
        type="exploration" if output.get("mode") == "exploration" else "query",
        graph_data=merged,
        cypher_query=output.get("query"),
        connection_strategy=output.get("connectionStrategy"),
        explanation=output.get("explanation"),
        approximation_note=output.get("approximation_note"),
        scalars=output.get("scalars"),
        node_count=merged.node_count,
        edge_count=merged.edge_count,
        auto_recovered=output.get("auto_recovered"),
        recovery=output.get("recovery"),
        **_narrative_fields(accumulated),
    )


def _fold_connections(accumulated: Optional[QueryResult], output: Dict[str, Any]) -> Optional[QueryResult]:
    graph_data = GraphData.coerce(output.get("graphData")) or GraphData()

    if accumulated is not None and accumulated.graph_data is not None:
        merged = accumulated.graph_data.merge(graph_data)
        return accumulated.model_copy(update={
            "graph_data": merged,
            "node_count": merged.node_count,
            "edge_count": merged.edge_count,
        })

    return QueryResult(
        type="connections",
        graph_data=graph_data,
        connection_strategy="direct paths and shared connections",
        node_count=graph_data.node_count,
        edge_count=graph_data.edge_count,
        **_narrative_fields(accumulated),
    )


def _fold_analysis(accumulated: Optional[QueryResult], output: Dict[str, Any]) -> QueryResult:
    analysis = output.get("analysis")
    summary = output.get("summary") or analysis
    if accumulated is not None:
        return accumulated.model_copy(update={"analysis": analysis, "summary": summary})
    return QueryResult(type="analysis", analysis=analysis, summary=summary)


def _fold_creative(accumulated: Optional[QueryResult], output: Dict[str, Any]) -> QueryResult:
    content = output.get("creative_content")
    suggestions = output.get("suggestions") or None
    if accumulated is not None:
        update = {"creative_content": content, "suggestions": suggestions}
        if accumulated.summary is None:
            update["summary"] = content
        return accumulated.model_copy(update=update)
    return QueryResult(type="creative", creative_content=content, summary=content, suggestions=suggestions)


def fold_step_output(
    accumulated: Optional[QueryResult],
    task_type: TaskType,
    output: Any
) -> Optional[QueryResult]:
    """Return the accumulated result after one successful step."""
    if not isinstance(output, dict):
        return accumulated

    if task_type == TaskType.EXECUTE_CYPHER:
        return _fold_execution(accumulated, output)
    if task_type == TaskType.FIND_CONNECTION_PATHS:
        return _fold_connections(accumulated, output)
    if task_type == TaskType.ANALYZE_AND_SUMMARIZE and output.get("analysis"):
        return _fold_analysis(accumulated, output)
    if task_type == TaskType.GENERATE_CREATIVE_TEXT and output.get("creative_content"):
        return _fold_creative(accumulated, output)
    return accumulated
