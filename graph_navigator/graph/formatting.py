"""
Canonical node/edge representation of graph query results.

Query results arrive as records whose columns may hold nodes,
relationships, paths, lists of those, or scalars. Every column of every
record is visited; composite values are unpacked into their constituent
nodes and relationships and de-duplicated by id, so the same entity seen
through several columns or path segments is counted once.
"""
import logging
from typing import Any, Dict, Iterable, List, Optional

from pydantic import BaseModel, ConfigDict, Field

logger = logging.getLogger("graph_formatting")


class GraphNode(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    label: str
    group: str
    properties: Dict[str, Any] = Field(default_factory=dict)


class GraphEdge(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str
    from_: str = Field(..., alias="from")
    to: str
    label: str
    properties: Dict[str, Any] = Field(default_factory=dict)


class GraphData(BaseModel):
    """Immutable set of nodes and edges, each unique by id."""
    model_config = ConfigDict(frozen=True)

    nodes: List[GraphNode] = Field(default_factory=list)
    edges: List[GraphEdge] = Field(default_factory=list)

    @property
    def node_count(self) -> int:
        return len(self.nodes)

    @property
    def edge_count(self) -> int:
        return len(self.edges)

    @property
    def is_empty(self) -> bool:
        return not self.nodes and not self.edges

    def merge(self, other: "GraphData") -> "GraphData":
        """Return the union of both graphs. Neither input is modified."""
        builder = GraphDataBuilder()
        builder.extend(self)
        builder.extend(other)
        return builder.build()

    @classmethod
    def coerce(cls, value: Any) -> Optional["GraphData"]:
        """Accept a GraphData instance or its serialised mapping form."""
        if isinstance(value, GraphData):
            return value
        if isinstance(value, dict) and "nodes" in value:
            return cls.model_validate(value)
        return None


# ============================================================================
# Structural recognition of driver graph types
# ============================================================================

def is_path(value: Any) -> bool:
    return hasattr(value, "nodes") and hasattr(value, "relationships") and not isinstance(value, dict)


def is_relationship(value: Any) -> bool:
    return hasattr(value, "type") and hasattr(value, "start_node") and hasattr(value, "end_node")


def is_node(value: Any) -> bool:
    return hasattr(value, "labels") and not is_relationship(value) and not isinstance(value, dict)


def is_graph_entity(value: Any) -> bool:
    if isinstance(value, (list, tuple)):
        return any(is_graph_entity(item) for item in value)
    return is_path(value) or is_relationship(value) or is_node(value)


def entity_id(entity: Any) -> str:
    element_id = getattr(entity, "element_id", None)
    if element_id is None:
        element_id = getattr(entity, "id", None)
    return str(element_id)


def _plain(value: Any) -> Any:
    """Convert property values into JSON-friendly types."""
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    if isinstance(value, (list, tuple)):
        return [_plain(item) for item in value]
    if isinstance(value, dict):
        return {str(k): _plain(v) for k, v in value.items()}
    return str(value)


def entity_properties(entity: Any) -> Dict[str, Any]:
    try:
        items = dict(entity.items())
    except (AttributeError, TypeError):
        items = dict(getattr(entity, "properties", {}) or {})
    return {key: _plain(value) for key, value in items.items()}


def node_from_entity(entity: Any) -> GraphNode:
    properties = entity_properties(entity)
    labels = getattr(entity, "labels", None) or ()
    # Driver labels are an unordered frozenset
    ordered = sorted(labels) if isinstance(labels, (set, frozenset)) else list(labels)
    return GraphNode(
        id=entity_id(entity),
        label=str(properties.get("name") or properties.get("title") or "Unnamed"),
        group=ordered[0] if ordered else "Unknown",
        properties=properties,
    )


def edge_from_relationship(relationship: Any) -> GraphEdge:
    start = entity_id(relationship.start_node)
    end = entity_id(relationship.end_node)
    return GraphEdge(
        id=f"{start}-{end}-{relationship.type}",
        **{"from": start},
        to=end,
        label=relationship.type,
        properties=entity_properties(relationship),
    )


class GraphDataBuilder:
    """Accumulates nodes and edges keyed by id."""

    def __init__(self):
        self._nodes: Dict[str, GraphNode] = {}
        self._edges: Dict[str, GraphEdge] = {}

    def add_node(self, node: GraphNode) -> None:
        existing = self._nodes.get(node.id)
        # A relationship endpoint may arrive without labels before the full node
        if existing is None or (existing.group == "Unknown" and node.group != "Unknown"):
            self._nodes[node.id] = node

    def add_edge(self, edge: GraphEdge) -> None:
        self._edges.setdefault(edge.id, edge)

    def add_value(self, value: Any) -> None:
        """Recursively unpack one result value. Scalars and maps are ignored."""
        if value is None or isinstance(value, (str, bytes, int, float, bool, dict)):
            return
        if isinstance(value, (list, tuple)):
            for item in value:
                self.add_value(item)
            return
        if is_path(value):
            for node in value.nodes:
                self.add_node(node_from_entity(node))
            for relationship in value.relationships:
                self._add_relationship(relationship)
            return
        if is_relationship(value):
            self._add_relationship(value)
            return
        if is_node(value):
            self.add_node(node_from_entity(value))

    def _add_relationship(self, relationship: Any) -> None:
        for endpoint in (relationship.start_node, relationship.end_node):
            if endpoint is not None and getattr(endpoint, "labels", None):
                self.add_node(node_from_entity(endpoint))
        self.add_edge(edge_from_relationship(relationship))

    def add_record(self, record: Any) -> None:
        for value in record_values(record):
            self.add_value(value)

    def extend(self, graph_data: GraphData) -> None:
        for node in graph_data.nodes:
            self.add_node(node)
        for edge in graph_data.edges:
            self.add_edge(edge)

    def build(self) -> GraphData:
        return GraphData(nodes=list(self._nodes.values()), edges=list(self._edges.values()))


def record_values(record: Any) -> List[Any]:
    if hasattr(record, "values") and callable(record.values):
        return list(record.values())
    return list(record)


def record_items(record: Any) -> List[tuple]:
    if hasattr(record, "items") and callable(record.items):
        return list(record.items())
    if hasattr(record, "keys") and callable(record.keys):
        return [(key, record[key]) for key in record.keys()]
    return list(enumerate(record))


def format_graph_data(records: Iterable[Any]) -> GraphData:
    """Assemble GraphData from every column of every record."""
    builder = GraphDataBuilder()
    for record in records:
        builder.add_record(record)
    graph_data = builder.build()
    logger.debug(f"Formatted graph data: {graph_data.node_count} nodes, {graph_data.edge_count} edges")
    return graph_data


def extract_scalar_rows(records: Iterable[Any], limit: int = 50) -> List[Dict[str, Any]]:
    """Collect non-graph columns of each record, for aggregate-style queries."""
    rows = []
    for record in records:
        row = {
            str(key): _plain(value)
            for key, value in record_items(record)
            if not is_graph_entity(value)
        }
        if row:
            rows.append(row)
        if len(rows) >= limit:
            break
    return rows
