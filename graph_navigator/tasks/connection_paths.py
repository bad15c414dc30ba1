"""
find_connection_paths: direct paths and shared neighbours between entities.

Each pair is matched twice: a bounded variable-length path query on names or
labels, and, when both sides are schema labels, a symmetric two-hop query
for nodes that both sides point to.
"""
import logging
from itertools import combinations
from typing import Any, Dict, List

from graph_navigator.config import DIRECT_PATH_LIMIT, SHARED_CONNECTION_LIMIT
from graph_navigator.errors import CollaboratorUnavailableError, QueryExecutionError
from graph_navigator.graph.formatting import GraphDataBuilder, entity_properties
from graph_navigator.plan_models import StepResult
from graph_navigator.tasks.context import TaskContext

logger = logging.getLogger("connection_paths")

DIRECT_PATH_QUERY = f"""
MATCH path = (a)-[*1..2]-(b)
WHERE (toLower(a.name) CONTAINS toLower($start) OR $start IN labels(a))
  AND (toLower(b.name) CONTAINS toLower($end) OR $end IN labels(b))
RETURN path
LIMIT {DIRECT_PATH_LIMIT}
"""

SHARED_CONNECTION_TEMPLATE = """
MATCH (a:{start})-[r1]->(shared)<-[r2]-(b:{end})
RETURN a, r1, shared, r2, b, labels(shared) AS sharedType
LIMIT {limit}
"""


def _entity_list(params: Dict[str, Any]) -> List[str]:
    entities = params.get("entities")
    if isinstance(entities, str):
        entities = [entities]
    if not entities:
        entities = [params.get("start_entity"), params.get("end_entity")]
    return [str(e).strip() for e in entities if isinstance(e, str) and e.strip()]


def _describe_path(path: Any) -> Dict[str, Any]:
    names = []
    for node in path.nodes:
        properties = entity_properties(node)
        names.append(properties.get("name") or properties.get("title") or next(iter(node.labels), "Unnamed"))
    return {
        "nodes": names,
        "relationships": [relationship.type for relationship in path.relationships],
        "length": len(path.relationships),
    }


async def find_connection_paths(params: Dict[str, Any], ctx: TaskContext) -> StepResult:
    entities = _entity_list(params)
    if len(entities) < 2:
        return StepResult.fail(
            "find_connection_paths needs at least two entities",
            error_type="invalid_params",
        )

    builder = GraphDataBuilder()
    direct_paths: List[Dict[str, Any]] = []
    shared_connections: List[Dict[str, Any]] = []

    try:
        async with ctx.graph.session() as session:
            for start, end in combinations(entities, 2):
                records = await session.run(
                    DIRECT_PATH_QUERY, {"start": start, "end": end}, deadline=ctx.deadline
                )
                for record in records:
                    builder.add_record(record)
                    direct_paths.append({"from": start, "to": end, **_describe_path(record["path"])})

                # Labels cannot be parameterised; only catalog labels are interpolated
                if ctx.schema.has_label(start) and ctx.schema.has_label(end):
                    query = SHARED_CONNECTION_TEMPLATE.format(start=start, end=end, limit=SHARED_CONNECTION_LIMIT)
                    records = await session.run(query, deadline=ctx.deadline)
                    for record in records:
                        builder.add_record(record)
                        shared = entity_properties(record["shared"])
                        shared_connections.append({
                            "from": start,
                            "to": end,
                            "shared": shared.get("name") or shared.get("title") or "Unnamed",
                            "shared_type": list(record["sharedType"] or []),
                        })
    except (QueryExecutionError, CollaboratorUnavailableError) as e:
        logger.error(f"Connection path search failed for {entities}: {e}")
        raise

    graph_data = builder.build()
    logger.info(
        f"Connections for {entities}: {len(direct_paths)} direct paths, "
        f"{len(shared_connections)} shared connections, {graph_data.node_count} nodes"
    )
    return StepResult.ok({
        "entities": entities,
        "direct_paths": direct_paths,
        "shared_connections": shared_connections,
        "graphData": graph_data,
    })
