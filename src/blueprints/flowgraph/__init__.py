"""FlowGraph model and the FlowSpec -> FlowGraph expander."""

from blueprints.flowgraph.adjacency import AdjacencyIndex
from blueprints.flowgraph.expander import FlowGraphExpander, expand
from blueprints.flowgraph.model import FlowEdge, FlowGraph, FlowGroupOutput, FlowNode

__all__ = [
    "AdjacencyIndex",
    "FlowEdge",
    "FlowGraph",
    "FlowGraphExpander",
    "FlowGroupOutput",
    "FlowNode",
    "expand",
]
