"""Structural and quality checks for compiled FlowGraphs."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Union

from ..core.exceptions import FlowGraphValidationError, InputFormatError
from ..flowgraph.adjacency import AdjacencyIndex
from ..flowgraph.model import FlowEdge, FlowGraph, FlowNode
from ..utils.logging import get_logger
from ..utils.text import SYSTEM_LANE, normalize_key

logger = get_logger(__name__)

VALIDATOR_VERSION = "2.0.0"

ERROR_CODES = frozenset(
    {
        "MISSING_NODE_REF",
        "DECISION_INSUFFICIENT_EDGES",
        "FLOW_NO_START",
        "FLOW_NO_END",
        "SELF_LOOP",
        "CYCLE_DETECTED",
        "DISCONNECTED_NODE",
        "ORPHAN_START",
        "ORPHAN_END",
        "START_HAS_INCOMING",
        "END_HAS_OUTGOING",
        "EMPTY_SYSTEM_LANE",
    }
)

WARNING_CODES = frozenset(
    {
        "PARTIALLY_CONNECTED",
        "DUPLICATE_EDGE",
        "NO_EXIT_PATH",
        "LONG_LABEL",
        "EMPTY_FLOW_GROUP",
        "INFERRED_HEAVY",
        "DECISION_MISSING_AC",
        "NO_EXPLICIT_STARTS",
        "NO_EXPLICIT_ENDS",
    }
)


@dataclass(frozen=True)
class ValidationIssue:
    """A single validation finding with a stable code."""

    severity: str
    code: str
    message: str
    node_id: Optional[str] = None
    edge_id: Optional[str] = None
    flow_id: Optional[str] = None
    suggestion: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "severity": self.severity,
            "code": self.code,
            "message": self.message,
        }
        for key, value in (
            ("nodeId", self.node_id),
            ("edgeId", self.edge_id),
            ("flowId", self.flow_id),
            ("suggestion", self.suggestion),
        ):
            if value is not None:
                data[key] = value
        return data


@dataclass(frozen=True)
class ValidationStats:
    total_nodes: int = 0
    total_edges: int = 0
    total_flows: int = 0
    nodes_by_type: Dict[str, int] = field(default_factory=dict)
    nodes_by_lane: Dict[str, int] = field(default_factory=dict)
    inferred_nodes: int = 0
    error_count: int = 0
    warning_count: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "totalNodes": self.total_nodes,
            "totalEdges": self.total_edges,
            "totalFlows": self.total_flows,
            "nodesByType": dict(self.nodes_by_type),
            "nodesByLane": dict(self.nodes_by_lane),
            "inferredNodes": self.inferred_nodes,
            "errorCount": self.error_count,
            "warningCount": self.warning_count,
        }


@dataclass(frozen=True)
class ValidationResult:
    valid: bool
    errors: List[ValidationIssue] = field(default_factory=list)
    warnings: List[ValidationIssue] = field(default_factory=list)
    stats: ValidationStats = field(default_factory=ValidationStats)

    @property
    def error_codes(self) -> List[str]:
        return [issue.code for issue in self.errors]

    @property
    def warning_codes(self) -> List[str]:
        return [issue.code for issue in self.warnings]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "valid": self.valid,
            "errors": [issue.to_dict() for issue in self.errors],
            "warnings": [issue.to_dict() for issue in self.warnings],
            "stats": self.stats.to_dict(),
        }


def _edge_id(edge: FlowEdge) -> str:
    return f"{edge.from_id}->{edge.to_id}"


def coerce_flow_graph(graph: Any) -> FlowGraph:
    if isinstance(graph, FlowGraph):
        return graph
    if isinstance(graph, Mapping):
        return FlowGraph.from_dict(graph)
    raise InputFormatError(
        "Validator input must be a FlowGraph or its dict form",
        context={"received": type(graph).__name__},
    )


class FlowGraphValidator:
    """Validates FlowGraph structure.

    Errors mean the graph breaks an invariant consumers rely on (dangling
    references, under-branched decisions, missing entry/exit points, cycles,
    unreachable nodes). Warnings are quality signals and never block.
    """

    TERMINAL_TYPES = {"end", "exit"}

    def __init__(
        self,
        max_label_length: int = 100,
        inferred_ratio_threshold: float = 0.5,
        required_lanes: Sequence[str] = (SYSTEM_LANE,),
    ):
        self.max_label_length = max_label_length
        self.inferred_ratio_threshold = inferred_ratio_threshold
        self.required_lanes = tuple(required_lanes)

    def validate(
        self,
        graph: Union[FlowGraph, Mapping[str, Any]],
        *,
        strict: bool = True,
        allow_disconnected: bool = False,
        allow_empty_system_lane: bool = False,
    ) -> ValidationResult:
        """
        Validate a FlowGraph and return a ValidationResult.

        Args:
            graph: FlowGraph or its `to_dict()` form
            strict: If True, `valid` is False whenever there are errors.
                    If False, `valid` is always True and errors are advisory.
            allow_disconnected: Suppress DISCONNECTED_NODE and PARTIALLY_CONNECTED.
                    Orphan starts and ends are still errors.
            allow_empty_system_lane: Suppress EMPTY_SYSTEM_LANE.
        """
        graph = coerce_flow_graph(graph)
        errors: List[ValidationIssue] = []
        warnings: List[ValidationIssue] = []

        node_ids = {node.id for node in graph.nodes}
        index = AdjacencyIndex(node_ids)
        for edge in graph.edges:
            index.add_edge(edge.from_id, edge.to_id)

        errors.extend(self._check_edge_references(graph, node_ids))
        errors.extend(self._check_decision_edges(graph, index))
        errors.extend(self._check_start_end(graph))
        errors.extend(self._check_self_loops(graph))
        errors.extend(self._check_cycles(graph))

        for issue in self._check_connectivity(graph, index, allow_disconnected=allow_disconnected):
            (errors if issue.severity == "error" else warnings).append(issue)

        if not allow_empty_system_lane:
            errors.extend(self._check_required_lanes(graph))

        warnings.extend(self._check_duplicate_edges(graph))
        warnings.extend(self._check_exit_path(graph))
        warnings.extend(self._check_quality(graph))
        warnings.extend(self._check_explicit_terminals(graph))

        nodes_by_type: Dict[str, int] = {}
        nodes_by_lane: Dict[str, int] = {}
        for node in graph.nodes:
            nodes_by_type[node.type] = nodes_by_type.get(node.type, 0) + 1
            nodes_by_lane[node.lane] = nodes_by_lane.get(node.lane, 0) + 1

        stats = ValidationStats(
            total_nodes=len(graph.nodes),
            total_edges=len(graph.edges),
            total_flows=len(graph.flows),
            nodes_by_type=nodes_by_type,
            nodes_by_lane=nodes_by_lane,
            inferred_nodes=sum(1 for node in graph.nodes if node.inferred),
            error_count=len(errors),
            warning_count=len(warnings),
        )
        result = ValidationResult(
            valid=not errors if strict else True,
            errors=errors,
            warnings=warnings,
            stats=stats,
        )
        logger.debug(
            "Validated FlowGraph",
            extra={"valid": result.valid, "errors": len(errors), "warnings": len(warnings)},
        )
        return result

    # ------------------------------------------------------------------
    # Errors
    # ------------------------------------------------------------------

    def _check_edge_references(self, graph: FlowGraph, node_ids: Iterable[str]) -> List[ValidationIssue]:
        issues: List[ValidationIssue] = []
        for edge in graph.edges:
            for role, ref in (("source", edge.from_id), ("target", edge.to_id)):
                if ref in node_ids:
                    continue
                issues.append(
                    ValidationIssue(
                        severity="error",
                        code="MISSING_NODE_REF",
                        message=f"Edge references missing {role} node: '{ref}'",
                        edge_id=_edge_id(edge),
                        flow_id=edge.flow_group,
                        suggestion=f"Add a node with id '{ref}' or correct the edge {role}",
                    )
                )
        return issues

    def _check_decision_edges(self, graph: FlowGraph, index: AdjacencyIndex) -> List[ValidationIssue]:
        issues: List[ValidationIssue] = []
        for node in graph.nodes:
            if node.type != "decision":
                continue
            count = index.out_degree(node.id)
            if count < 2:
                issues.append(
                    ValidationIssue(
                        severity="error",
                        code="DECISION_INSUFFICIENT_EDGES",
                        message=f"Decision '{node.id}' has {count} outgoing edge(s), requires at least 2",
                        node_id=node.id,
                        flow_id=node.flow_group,
                        suggestion=f"Add Yes/No branches: E: {node.id} -> target or D: ... | yes: X | no: Y",
                    )
                )
        return issues

    def _check_start_end(self, graph: FlowGraph) -> List[ValidationIssue]:
        issues: List[ValidationIssue] = []
        scopes = [(flow.id, flow.name, flow.nodes) for flow in graph.flows]
        if not scopes:
            scopes = [(None, "FlowGraph", graph.nodes)]

        for flow_id, name, nodes in scopes:
            where = f"Flow '{name}' ({flow_id})" if flow_id else name
            if not any(node.type == "start" for node in nodes):
                issues.append(
                    ValidationIssue(
                        severity="error",
                        code="FLOW_NO_START",
                        message=f"{where} has no start node",
                        flow_id=flow_id,
                        suggestion="Add a START: line or at least one step to infer an entry point",
                    )
                )
            if not any(node.type in self.TERMINAL_TYPES for node in nodes):
                issues.append(
                    ValidationIssue(
                        severity="error",
                        code="FLOW_NO_END",
                        message=f"{where} has no end node",
                        flow_id=flow_id,
                        suggestion="Add an END: or EXIT: line",
                    )
                )
        return issues

    def _check_self_loops(self, graph: FlowGraph) -> List[ValidationIssue]:
        return [
            ValidationIssue(
                severity="error",
                code="SELF_LOOP",
                message=f"Self-loop detected: '{edge.from_id}' -> '{edge.to_id}'",
                edge_id=_edge_id(edge),
                flow_id=edge.flow_group,
                suggestion="Remove the self-referencing edge or correct the target",
            )
            for edge in graph.edges
            if edge.from_id == edge.to_id
        ]

    def _check_cycles(self, graph: FlowGraph) -> List[ValidationIssue]:
        """One CYCLE_DETECTED per flow whose edges (restricted to its nodes) loop."""
        issues: List[ValidationIssue] = []
        scopes = [(flow.id, [node.id for node in flow.nodes]) for flow in graph.flows]
        if not scopes:
            scopes = [(None, [node.id for node in graph.nodes])]

        for flow_id, member_ids in scopes:
            members = set(member_ids)
            index = AdjacencyIndex(member_ids)
            for edge in graph.edges:
                if edge.from_id != edge.to_id and edge.from_id in members and edge.to_id in members:
                    index.add_edge(edge.from_id, edge.to_id)
            cycle = index.find_cycle()
            if cycle is None:
                continue
            path = " -> ".join(cycle)
            issues.append(
                ValidationIssue(
                    severity="error",
                    code="CYCLE_DETECTED",
                    message=f"Cycle detected: {path}",
                    node_id=cycle[0],
                    flow_id=flow_id,
                    suggestion="Remove one of the edges in the loop; flows must be acyclic",
                )
            )
        return issues

    def _check_connectivity(
        self,
        graph: FlowGraph,
        index: AdjacencyIndex,
        *,
        allow_disconnected: bool,
    ) -> List[ValidationIssue]:
        issues: List[ValidationIssue] = []
        for node in graph.nodes:
            incoming = index.in_degree(node.id)
            outgoing = index.out_degree(node.id)

            if node.type == "start":
                if outgoing == 0:
                    issues.append(
                        ValidationIssue(
                            severity="error",
                            code="ORPHAN_START",
                            message=f"Start node '{node.id}' has no outgoing edges",
                            node_id=node.id,
                            flow_id=node.flow_group,
                            suggestion=f"Connect it to the first step: E: {node.id} -> first_step",
                        )
                    )
                if incoming > 0:
                    issues.append(
                        ValidationIssue(
                            severity="error",
                            code="START_HAS_INCOMING",
                            message=f"Start node '{node.id}' has {incoming} incoming edge(s)",
                            node_id=node.id,
                            flow_id=node.flow_group,
                            suggestion="Remove edges that point back to the entry point",
                        )
                    )
                continue

            if node.type in self.TERMINAL_TYPES:
                if incoming == 0:
                    issues.append(
                        ValidationIssue(
                            severity="error",
                            code="ORPHAN_END",
                            message=f"End node '{node.id}' has no incoming edges",
                            node_id=node.id,
                            flow_id=node.flow_group,
                            suggestion=f"Connect a step to it: E: last_step -> {node.id}",
                        )
                    )
                if outgoing > 0:
                    issues.append(
                        ValidationIssue(
                            severity="error",
                            code="END_HAS_OUTGOING",
                            message=f"End node '{node.id}' has {outgoing} outgoing edge(s)",
                            node_id=node.id,
                            flow_id=node.flow_group,
                            suggestion="Terminal nodes must not lead anywhere; remove the edge",
                        )
                    )
                continue

            if allow_disconnected or node.disconnected:
                continue

            if incoming == 0 and outgoing == 0:
                issues.append(
                    ValidationIssue(
                        severity="error",
                        code="DISCONNECTED_NODE",
                        message=f"Node '{node.id}' is completely disconnected (no edges)",
                        node_id=node.id,
                        flow_id=node.flow_group,
                        suggestion="Connect the node with E: lines or mark it disconnected if intentional",
                    )
                )
            elif (incoming == 0 or outgoing == 0) and node.type != "system":
                direction = "incoming" if incoming == 0 else "outgoing"
                issues.append(
                    ValidationIssue(
                        severity="warning",
                        code="PARTIALLY_CONNECTED",
                        message=f"Node '{node.id}' has no {direction} edges",
                        node_id=node.id,
                        flow_id=node.flow_group,
                        suggestion=f"Consider adding {direction} edges",
                    )
                )
        return issues

    def _check_required_lanes(self, graph: FlowGraph) -> List[ValidationIssue]:
        issues: List[ValidationIssue] = []
        for lane in self.required_lanes:
            if lane not in graph.lanes:
                continue
            members = [
                node
                for node in graph.nodes
                if node.lane == lane or (lane == SYSTEM_LANE and node.type == "system")
            ]
            if not members:
                issues.append(
                    ValidationIssue(
                        severity="error",
                        code="EMPTY_SYSTEM_LANE",
                        message=f"{lane} lane is declared but has no nodes",
                        suggestion=f"Add SYS: steps or remove {lane} from the lanes",
                    )
                )
        return issues

    # ------------------------------------------------------------------
    # Warnings
    # ------------------------------------------------------------------

    def _check_duplicate_edges(self, graph: FlowGraph) -> List[ValidationIssue]:
        issues: List[ValidationIssue] = []
        seen = set()
        for edge in graph.edges:
            if edge.key in seen:
                issues.append(
                    ValidationIssue(
                        severity="warning",
                        code="DUPLICATE_EDGE",
                        message=f"Duplicate edge: '{edge.from_id}' -> '{edge.to_id}'",
                        edge_id=_edge_id(edge),
                        flow_id=edge.flow_group,
                        suggestion="Remove the duplicate edge definition",
                    )
                )
            else:
                seen.add(edge.key)
        return issues

    def _check_exit_path(self, graph: FlowGraph) -> List[ValidationIssue]:
        for node in graph.nodes:
            if node.type == "exit":
                return []
            if node.type == "end":
                key = normalize_key(f"{node.id} {node.label}")
                if "error" in key or "exit" in key:
                    return []
        return [
            ValidationIssue(
                severity="warning",
                code="NO_EXIT_PATH",
                message="No exit or error-handling end node found",
                suggestion="Add EXIT: or END: lines for early exits and error states",
            )
        ]

    def _check_quality(self, graph: FlowGraph) -> List[ValidationIssue]:
        issues: List[ValidationIssue] = []

        for node in graph.nodes:
            if len(node.label) > self.max_label_length:
                issues.append(
                    ValidationIssue(
                        severity="warning",
                        code="LONG_LABEL",
                        message=f"Node '{node.id}' has a long label ({len(node.label)} chars)",
                        node_id=node.id,
                        flow_id=node.flow_group,
                        suggestion=f"Shorten to {self.max_label_length} characters or fewer",
                    )
                )

        for flow in graph.flows:
            if not flow.nodes:
                issues.append(
                    ValidationIssue(
                        severity="warning",
                        code="EMPTY_FLOW_GROUP",
                        message=f"Flow group '{flow.name}' ({flow.id}) has no nodes",
                        flow_id=flow.id,
                        suggestion="Add steps to the flow group or remove it",
                    )
                )

        total = len(graph.nodes)
        inferred = sum(1 for node in graph.nodes if node.inferred)
        if total and inferred / total > self.inferred_ratio_threshold:
            issues.append(
                ValidationIssue(
                    severity="warning",
                    code="INFERRED_HEAVY",
                    message=f"{inferred}/{total} nodes are inferred",
                    suggestion="Add explicit steps, starts and ends to the cards",
                )
            )

        criteria = graph.acceptance_criteria
        for node in graph.nodes:
            if node.type == "decision" and not self._has_criterion(node, criteria):
                issues.append(
                    ValidationIssue(
                        severity="warning",
                        code="DECISION_MISSING_AC",
                        message=f"Decision '{node.id}' has no acceptance criteria",
                        node_id=node.id,
                        flow_id=node.flow_group,
                        suggestion=f"Add AC: ({node.id}) condition -> expected result",
                    )
                )
        return issues

    @staticmethod
    def _has_criterion(node: FlowNode, criteria: Sequence[Mapping[str, Any]]) -> bool:
        label = node.label.lower().strip()
        for criterion in criteria:
            if criterion.get("attachedTo") == node.id:
                return True
            condition = str(criterion.get("condition") or "").lower()
            if label and label in condition:
                return True
        return False

    def _check_explicit_terminals(self, graph: FlowGraph) -> List[ValidationIssue]:
        issues: List[ValidationIssue] = []
        starts = [node for node in graph.nodes if node.type == "start"]
        if starts and all(node.inferred for node in starts):
            issues.append(
                ValidationIssue(
                    severity="warning",
                    code="NO_EXPLICIT_STARTS",
                    message="All start nodes are inferred (no START: lines)",
                    suggestion="Add explicit START: lines to the cards",
                )
            )
        ends = [node for node in graph.nodes if node.type in self.TERMINAL_TYPES]
        if ends and all(node.inferred for node in ends):
            issues.append(
                ValidationIssue(
                    severity="warning",
                    code="NO_EXPLICIT_ENDS",
                    message="All end nodes are inferred (no END:/EXIT: lines)",
                    suggestion="Add explicit END: and EXIT: lines to the cards",
                )
            )
        return issues


def validate_flowgraph(
    graph: Union[FlowGraph, Mapping[str, Any]],
    *,
    strict: bool = True,
    allow_disconnected: bool = False,
    allow_empty_system_lane: bool = False,
    max_label_length: int = 100,
    inferred_ratio_threshold: float = 0.5,
) -> ValidationResult:
    validator = FlowGraphValidator(
        max_label_length=max_label_length,
        inferred_ratio_threshold=inferred_ratio_threshold,
    )
    return validator.validate(
        graph,
        strict=strict,
        allow_disconnected=allow_disconnected,
        allow_empty_system_lane=allow_empty_system_lane,
    )


def validate_or_raise(graph: Union[FlowGraph, Mapping[str, Any]], **options: Any) -> ValidationResult:
    """Validate and raise FlowGraphValidationError when the result is not valid."""
    result = validate_flowgraph(graph, **options)
    if not result.valid:
        details = "\n".join(
            f"[{issue.code}] {issue.message}" + (f" -> {issue.suggestion}" if issue.suggestion else "")
            for issue in result.errors
        )
        raise FlowGraphValidationError(
            f"FlowGraph validation failed with {len(result.errors)} error(s):\n{details}",
            result=result,
            context={"codes": result.error_codes},
        )
    return result


def format_report(result: ValidationResult) -> str:
    """Format a validation result as a readable text report."""
    stats = result.stats
    lines = [
        f"FlowGraph validation report (v{VALIDATOR_VERSION})",
        "",
        f"Nodes: {stats.total_nodes}  Edges: {stats.total_edges}  Flows: {stats.total_flows}",
        "By type: " + ", ".join(f"{key}({value})" for key, value in stats.nodes_by_type.items()),
        "By lane: " + ", ".join(f"{key}({value})" for key, value in stats.nodes_by_lane.items()),
        "",
        "VALIDATION PASSED" if result.valid else "VALIDATION FAILED",
    ]

    for title, issues in (("Errors", result.errors), ("Warnings", result.warnings)):
        if not issues:
            continue
        lines.append("")
        lines.append(f"{title} ({len(issues)}):")
        for issue in issues:
            location = ""
            if issue.node_id:
                location = f" (node: {issue.node_id})"
            elif issue.edge_id:
                location = f" (edge: {issue.edge_id})"
            elif issue.flow_id:
                location = f" (flow: {issue.flow_id})"
            lines.append(f"  • [{issue.code}] {issue.message}{location}")
            if issue.suggestion:
                lines.append(f"      {issue.suggestion}")

    return "\n".join(lines)
