"""FlowGraph schema: the compiled, swim-laned flow graph."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional

from ..utils.text import MAIN_FLOW_ID

EXPANDER_VERSION = "2.0.0"

NODE_TYPES = ("start", "step", "system", "decision", "end", "exit")
TERMINAL_TYPES = frozenset({"end", "exit"})
ACTION_TYPES = frozenset({"step", "system", "decision"})


def _str_or_none(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value)
    return text or None


@dataclass(frozen=True)
class Branches:
    """Heuristic branch hint parsed from decision-like text."""

    condition: str
    if_true: Optional[str] = None
    if_false: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "condition": self.condition,
            "ifTrue": self.if_true,
            "ifFalse": self.if_false,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Branches":
        return cls(
            condition=str(data.get("condition") or ""),
            if_true=_str_or_none(data.get("ifTrue")),
            if_false=_str_or_none(data.get("ifFalse")),
        )


@dataclass(frozen=True)
class FlowNode:
    id: str
    type: str
    lane: str
    label: str
    source_text: Optional[str] = None
    inferred: bool = False
    flow_group: str = MAIN_FLOW_ID
    branches: Optional[Branches] = None
    disconnected: bool = False

    @property
    def is_terminal(self) -> bool:
        return self.type in TERMINAL_TYPES

    @property
    def is_action(self) -> bool:
        return self.type in ACTION_TYPES

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "id": self.id,
            "type": self.type,
            "lane": self.lane,
            "label": self.label,
            "inferred": self.inferred,
            "flowGroup": self.flow_group,
        }
        if self.source_text is not None:
            data["sourceText"] = self.source_text
        if self.branches is not None:
            data["branches"] = self.branches.to_dict()
        if self.disconnected:
            data["disconnected"] = True
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "FlowNode":
        branches = data.get("branches")
        return cls(
            id=str(data.get("id") or ""),
            type=str(data.get("type") or "step").lower(),
            lane=str(data.get("lane") or ""),
            label=str(data.get("label") or ""),
            source_text=_str_or_none(data.get("sourceText")),
            inferred=bool(data.get("inferred", False)),
            flow_group=str(data.get("flowGroup") or MAIN_FLOW_ID),
            branches=Branches.from_dict(branches) if isinstance(branches, Mapping) else None,
            disconnected=bool(data.get("disconnected", False)),
        )


@dataclass(frozen=True)
class FlowEdge:
    from_id: str
    to_id: str
    label: Optional[str] = None
    condition: Optional[str] = None
    flow_group: str = MAIN_FLOW_ID
    inferred: bool = False

    @property
    def key(self) -> tuple:
        return (self.from_id, self.to_id)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"from": self.from_id, "to": self.to_id}
        if self.label is not None:
            data["label"] = self.label
        if self.condition is not None:
            data["condition"] = self.condition
        data["flowGroup"] = self.flow_group
        data["inferred"] = self.inferred
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "FlowEdge":
        return cls(
            from_id=str(data.get("from") or data.get("source") or ""),
            to_id=str(data.get("to") or data.get("target") or ""),
            label=_str_or_none(data.get("label")),
            condition=_str_or_none(data.get("condition")),
            flow_group=str(data.get("flowGroup") or MAIN_FLOW_ID),
            inferred=bool(data.get("inferred", False)),
        )


@dataclass(frozen=True)
class FlowGroupOutput:
    """A self-contained sub-graph with its own entry and exit points."""

    id: str
    name: str
    starts: List[str] = field(default_factory=list)
    ends: List[str] = field(default_factory=list)
    nodes: List[FlowNode] = field(default_factory=list)
    edges: List[FlowEdge] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "starts": list(self.starts),
            "ends": list(self.ends),
            "nodes": [node.to_dict() for node in self.nodes],
            "edges": [edge.to_dict() for edge in self.edges],
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "FlowGroupOutput":
        return cls(
            id=str(data.get("id") or MAIN_FLOW_ID),
            name=str(data.get("name") or data.get("id") or ""),
            starts=[str(item) for item in data.get("starts") or []],
            ends=[str(item) for item in data.get("ends") or []],
            nodes=[FlowNode.from_dict(n) for n in data.get("nodes") or [] if isinstance(n, Mapping)],
            edges=[FlowEdge.from_dict(e) for e in data.get("edges") or [] if isinstance(e, Mapping)],
        )


@dataclass(frozen=True)
class FlowGraphMeta:
    project: str
    feature: str
    generated_at: str
    source_id: str = "unknown"
    grammar_version: str = ""
    expander_version: str = EXPANDER_VERSION

    def to_dict(self) -> Dict[str, Any]:
        return {
            "project": self.project,
            "feature": self.feature,
            "generatedAt": self.generated_at,
            "sourceId": self.source_id,
            "grammarVersion": self.grammar_version,
            "expanderVersion": self.expander_version,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "FlowGraphMeta":
        return cls(
            project=str(data.get("project") or ""),
            feature=str(data.get("feature") or ""),
            generated_at=str(data.get("generatedAt") or ""),
            source_id=str(data.get("sourceId") or "unknown"),
            grammar_version=str(data.get("grammarVersion") or ""),
            expander_version=str(data.get("expanderVersion") or EXPANDER_VERSION),
        )


@dataclass(frozen=True)
class FlowGraph:
    """Expander output. Built once, never mutated."""

    meta: FlowGraphMeta
    lanes: List[str] = field(default_factory=list)
    flows: List[FlowGroupOutput] = field(default_factory=list)
    starts: List[str] = field(default_factory=list)
    ends: List[str] = field(default_factory=list)
    nodes: List[FlowNode] = field(default_factory=list)
    edges: List[FlowEdge] = field(default_factory=list)
    assumptions: List[str] = field(default_factory=list)
    open_questions: List[str] = field(default_factory=list)
    risks: List[str] = field(default_factory=list)
    acceptance_criteria: List[Dict[str, Any]] = field(default_factory=list)

    def node_by_id(self, node_id: str) -> Optional[FlowNode]:
        for node in self.nodes:
            if node.id == node_id:
                return node
        return None

    def outgoing(self, node_id: str) -> List[FlowEdge]:
        return [edge for edge in self.edges if edge.from_id == node_id]

    def incoming(self, node_id: str) -> List[FlowEdge]:
        return [edge for edge in self.edges if edge.to_id == node_id]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "meta": self.meta.to_dict(),
            "lanes": list(self.lanes),
            "flows": [flow.to_dict() for flow in self.flows],
            "starts": list(self.starts),
            "ends": list(self.ends),
            "nodes": [node.to_dict() for node in self.nodes],
            "edges": [edge.to_dict() for edge in self.edges],
            "assumptions": list(self.assumptions),
            "openQuestions": list(self.open_questions),
            "risks": list(self.risks),
            "acceptanceCriteria": [dict(item) for item in self.acceptance_criteria],
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "FlowGraph":
        """Rebuild a graph from its JSON form.

        Unlike the expander this keeps dangling or duplicate edges as-is, so
        the validator can report on hand-edited graphs.
        """
        meta = data.get("meta")
        return cls(
            meta=FlowGraphMeta.from_dict(meta if isinstance(meta, Mapping) else {}),
            lanes=[str(lane) for lane in data.get("lanes") or []],
            flows=[
                FlowGroupOutput.from_dict(flow)
                for flow in data.get("flows") or []
                if isinstance(flow, Mapping)
            ],
            starts=[str(item) for item in data.get("starts") or []],
            ends=[str(item) for item in data.get("ends") or []],
            nodes=[FlowNode.from_dict(n) for n in data.get("nodes") or [] if isinstance(n, Mapping)],
            edges=[FlowEdge.from_dict(e) for e in data.get("edges") or [] if isinstance(e, Mapping)],
            assumptions=[str(item) for item in data.get("assumptions") or []],
            open_questions=[str(item) for item in data.get("openQuestions") or []],
            risks=[str(item) for item in data.get("risks") or []],
            acceptance_criteria=[
                dict(item) for item in data.get("acceptanceCriteria") or [] if isinstance(item, Mapping)
            ],
        )
