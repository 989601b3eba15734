from blueprints.flowgraph.model import Branches, FlowEdge, FlowGraph, FlowNode


def test_node_serializes_camel_case_and_skips_empty_fields():
    node = FlowNode(id="D1", type="decision", lane="User", label="Ready?", source_text="Ready?",
                    branches=Branches(condition="ready", if_true="go"))
    data = node.to_dict()
    assert data["flowGroup"] == "main"
    assert data["sourceText"] == "Ready?"
    assert data["branches"] == {"condition": "ready", "ifTrue": "go", "ifFalse": None}
    assert "disconnected" not in data
    assert FlowNode.from_dict(data) == node


def test_node_kind_helpers():
    assert FlowNode(id="E", type="exit", lane="User", label="x").is_terminal
    assert FlowNode(id="S", type="system", lane="System", label="x").is_action
    assert not FlowNode(id="A", type="start", lane="User", label="x").is_action


def test_edge_uses_from_and_to_keys():
    edge = FlowEdge(from_id="A", to_id="B", label="Yes")
    data = edge.to_dict()
    assert data["from"] == "A" and data["to"] == "B"
    assert "condition" not in data
    assert edge.key == ("A", "B")


def test_edge_from_dict_accepts_source_target():
    edge = FlowEdge.from_dict({"source": "A", "target": "B"})
    assert edge.key == ("A", "B")
    assert edge.flow_group == "main"


def test_graph_from_dict_keeps_dangling_edges(valid_graph_dict):
    valid_graph_dict["edges"].append({"from": "S1", "to": "NOPE"})
    graph = FlowGraph.from_dict(valid_graph_dict)
    assert graph.node_by_id("NOPE") is None
    assert [edge.to_id for edge in graph.outgoing("S1")] == ["D1", "NOPE"]
    assert [edge.from_id for edge in graph.incoming("D1")] == ["S1"]
    assert graph.meta.project == "Test"
    assert graph.acceptance_criteria[0]["attachedTo"] == "D1"


def test_graph_from_dict_tolerates_garbage():
    graph = FlowGraph.from_dict({"nodes": ["x", None], "edges": "nope", "meta": 3})
    assert graph.nodes == []
    assert graph.edges == []
    assert graph.meta.source_id == "unknown"
