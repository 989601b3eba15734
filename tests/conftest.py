"""Shared test fixtures for the BluePrints compiler tests."""

import copy
from typing import Any, Callable, Dict, List

import pytest

from blueprints.flowgraph.adjacency import AdjacencyIndex
from blueprints.flowgraph.model import FlowGraph


def records_from(*texts: str, names: List[str] = None) -> List[Dict[str, Any]]:
    """Build extractor records, one per text block."""
    names = names or [""] * len(texts)
    return [
        {"id": f"n{idx + 1}", "name": name, "text": text}
        for idx, (text, name) in enumerate(zip(texts, names))
    ]


def assert_graph_invariants(graph: FlowGraph) -> None:
    """Every structural guarantee the expander makes, checked independently."""
    node_ids = {node.id for node in graph.nodes}
    assert len(node_ids) == len(graph.nodes)

    for edge in graph.edges:
        assert edge.from_id in node_ids
        assert edge.to_id in node_ids
        assert edge.from_id != edge.to_id

    keys = [edge.key for edge in graph.edges]
    assert len(keys) == len(set(keys))

    for node in graph.nodes:
        assert node.lane in graph.lanes
        outgoing = len(graph.outgoing(node.id))
        incoming = len(graph.incoming(node.id))
        if node.type == "decision":
            assert outgoing >= 2, node.id
        if node.type == "start":
            assert outgoing >= 1, node.id
            assert incoming == 0, node.id
        if node.type in ("end", "exit"):
            assert incoming >= 1, node.id
            assert outgoing == 0, node.id

    for flow in graph.flows:
        members = [node.id for node in flow.nodes]
        index = AdjacencyIndex(members)
        for edge in flow.edges:
            index.add_edge(edge.from_id, edge.to_id)
        assert index.topological_order() is not None, flow.id


@pytest.fixture
def make_records() -> Callable[..., List[Dict[str, Any]]]:
    return records_from


@pytest.fixture
def check_invariants() -> Callable[[FlowGraph], None]:
    return assert_graph_invariants


@pytest.fixture
def karaoke_records() -> List[Dict[str, Any]]:
    """Two steps and a decision, no explicit edges."""
    return [
        {"id": "n1", "name": "", "text": "S: (S1) User opens app"},
        {"id": "n2", "name": "", "text": "S: (S2) User taps Karaoke"},
        {"id": "n3", "name": "", "text": "D: Is available? | yes: continue | no: stop"},
    ]


_VALID_GRAPH: Dict[str, Any] = {
    "meta": {"project": "Test", "feature": "Checkout", "generatedAt": "2026-01-01T00:00:00+00:00"},
    "lanes": ["User", "System"],
    "flows": [
        {
            "id": "main",
            "name": "Main Flow",
            "starts": ["START"],
            "ends": ["END", "EXIT"],
            "nodes": [
                {"id": "START", "type": "start", "lane": "User", "label": "Start"},
                {"id": "S1", "type": "step", "lane": "User", "label": "Add item"},
                {"id": "D1", "type": "decision", "lane": "User", "label": "In stock?"},
                {"id": "END", "type": "end", "lane": "System", "label": "Complete"},
                {"id": "EXIT", "type": "exit", "lane": "User", "label": "User Exit"},
            ],
            "edges": [],
        }
    ],
    "starts": ["START"],
    "ends": ["END", "EXIT"],
    "nodes": [
        {"id": "START", "type": "start", "lane": "User", "label": "Start"},
        {"id": "S1", "type": "step", "lane": "User", "label": "Add item"},
        {"id": "D1", "type": "decision", "lane": "User", "label": "In stock?"},
        {"id": "END", "type": "end", "lane": "System", "label": "Complete"},
        {"id": "EXIT", "type": "exit", "lane": "User", "label": "User Exit"},
    ],
    "edges": [
        {"from": "START", "to": "S1"},
        {"from": "S1", "to": "D1"},
        {"from": "D1", "to": "END", "label": "Yes"},
        {"from": "D1", "to": "EXIT", "label": "No"},
    ],
    "acceptanceCriteria": [{"condition": "Item in stock", "expectedResult": "Order placed", "attachedTo": "D1"}],
}


@pytest.fixture
def valid_graph_dict() -> Dict[str, Any]:
    """A hand-built graph that passes strict validation; tests mutate their own copy."""
    return copy.deepcopy(_VALID_GRAPH)
