from graph_navigator.graph.database import GraphDatabaseClient, GraphSession
from graph_navigator.graph.formatting import (
    GraphData,
    GraphDataBuilder,
    GraphEdge,
    GraphNode,
    extract_scalar_rows,
    format_graph_data,
)

__all__ = [
    "GraphDatabaseClient",
    "GraphSession",
    "GraphData",
    "GraphDataBuilder",
    "GraphEdge",
    "GraphNode",
    "extract_scalar_rows",
    "format_graph_data",
]
