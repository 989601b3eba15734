"""FlowSpec -> FlowGraph expansion.

The expander never fails on missing or contradictory card content: every
gap is filled by inference and recorded in the assumptions trail. Edges are
only ever added through `EdgeSynthesizer`, so the output is acyclic, has no
dangling references and every decision has at least two branches.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Set, Union

from pydantic import ValidationError

from ..core.exceptions import InvalidFlowSpecError
from ..flowspec.model import (
    Choice,
    Decision,
    Edge,
    FlowSpec,
    Step,
    SystemStep,
    Terminal,
    utc_timestamp,
)
from ..flowspec.parser import UNPARSED_EDGE_PREFIX
from ..utils.logging import get_logger
from ..utils.text import MAIN_FLOW_ID, SYSTEM_LANE, canonical_lane, scoped_id, truncate, unique_id
from .edges import DeclaredBranches, EdgeSynthesizer
from .heuristics import detect_mode_entries as find_mode_entries
from .heuristics import parse_branches
from .lanes import LaneResolver
from .model import EXPANDER_VERSION, FlowEdge, FlowGraph, FlowGraphMeta, FlowGroupOutput, FlowNode
from .system_steps import infer_system_steps as find_system_steps

logger = get_logger(__name__)

AUDIT_SEPARATOR = "---"
PROJECT_CONTEXT_PATTERN = re.compile(r"^project\s*:\s*(.+)$", re.IGNORECASE)
ERROR_WORDS = ("error", "denied", "fail")
MAX_EDGE_CASES = 5
EDGE_CASE_LABEL_LENGTH = 40

SpecItem = Union[Step, Decision, Choice, SystemStep]


@dataclass
class _GroupPlan:
    """Everything the FlowSpec declares for one flow group."""

    id: str
    name: str
    items: List[SpecItem] = field(default_factory=list)
    edges: List[Edge] = field(default_factory=list)
    starts: List[Terminal] = field(default_factory=list)
    ends: List[Terminal] = field(default_factory=list)
    exits: List[Terminal] = field(default_factory=list)


def coerce_flow_spec(spec: Any) -> FlowSpec:
    if isinstance(spec, FlowSpec):
        return spec
    if isinstance(spec, dict):
        try:
            return FlowSpec.model_validate(spec)
        except ValidationError as exc:
            raise InvalidFlowSpecError(
                "FlowSpec payload failed validation",
                context={"errors": exc.errors(include_url=False)},
            ) from exc
    raise InvalidFlowSpecError(
        "Expander input must be a FlowSpec or its dict form",
        context={"received": type(spec).__name__},
    )


def _sort_key(indexed: tuple) -> tuple:
    order, item = indexed
    if item.position is None:
        return (1, 0, order)
    return (0, item.position, order)


class FlowGraphExpander:
    """Compiles a FlowSpec into a FlowGraph."""

    def __init__(
        self,
        *,
        detect_mode_entries: bool = True,
        use_branch_hints: bool = True,
        infer_system_steps: bool = True,
        add_edge_cases: bool = True,
        default_project: str = "BluePrints",
        default_feature: str = "Feature",
    ):
        self.detect_mode_entries = detect_mode_entries
        self.use_branch_hints = use_branch_hints
        self.infer_system_steps = infer_system_steps
        self.add_edge_cases = add_edge_cases
        self.default_project = default_project
        self.default_feature = default_feature

    def expand(
        self,
        spec: Any,
        *,
        feature_name: Optional[str] = None,
        project_name: Optional[str] = None,
    ) -> FlowGraph:
        spec = coerce_flow_spec(spec)
        self._spec = spec
        self._lanes = LaneResolver(spec)
        self._used_ids: Set[str] = self._explicit_ids(spec)
        # flow group that claimed each node id
        self._owners: Dict[str, str] = {}
        self._audit: List[str] = []

        plans = self._plan_groups(spec)
        primary = plans[0].id if plans else MAIN_FLOW_ID
        flows = [self._expand_group(plan, is_primary=plan.id == primary) for plan in plans]

        inferred_nodes = sum(1 for flow in flows for node in flow.nodes if node.inferred)
        self._audit.insert(0, f"Inferred nodes: {inferred_nodes}")

        graph = self._aggregate(spec, flows, feature_name=feature_name, project_name=project_name)
        logger.debug(
            "Expanded FlowSpec",
            extra={
                "flows": len(graph.flows),
                "nodes": len(graph.nodes),
                "edges": len(graph.edges),
                "lanes": graph.lanes,
                "inferred_nodes": inferred_nodes,
            },
        )
        return graph

    # ------------------------------------------------------------------
    # Planning
    # ------------------------------------------------------------------

    def _explicit_ids(self, spec: FlowSpec) -> Set[str]:
        ids: Set[str] = set()
        for item in [*spec.steps, *spec.system_steps]:
            if item.id:
                ids.add(item.id)
        for item in [*spec.decisions, *spec.choices, *spec.starts, *spec.ends, *spec.exits]:
            ids.add(item.id)
        return ids

    def _plan_groups(self, spec: FlowSpec) -> List[_GroupPlan]:
        """Declared groups in order; `main` first when it has items or nothing is declared."""
        plans: Dict[str, _GroupPlan] = {}
        if spec.has_ungrouped_items() or not spec.flow_groups:
            plans[MAIN_FLOW_ID] = _GroupPlan(id=MAIN_FLOW_ID, name="Main Flow")
        for group in spec.flow_groups:
            if group.id not in plans:
                plans[group.id] = _GroupPlan(id=group.id, name=group.name)

        def plan_for(tag: Optional[str]) -> _GroupPlan:
            group_id = spec.flow_group_of(tag)
            if group_id not in plans:
                plans[group_id] = _GroupPlan(id=group_id, name=group_id)
            return plans[group_id]

        indexed = list(enumerate([*spec.steps, *spec.decisions, *spec.choices, *spec.system_steps]))
        for _, item in sorted(indexed, key=_sort_key):
            plan_for(item.flow_group).items.append(item)
        for edge in spec.edges:
            plan_for(edge.flow_group).edges.append(edge)
        for start in spec.starts:
            plan_for(start.flow_group).starts.append(start)
        for end in spec.ends:
            plan_for(end.flow_group).ends.append(end)
        for exit_ in spec.exits:
            plan_for(exit_.flow_group).exits.append(exit_)
        return list(plans.values())

    # ------------------------------------------------------------------
    # Per-group expansion
    # ------------------------------------------------------------------

    def _expand_group(self, plan: _GroupPlan, *, is_primary: bool) -> FlowGroupOutput:
        # author id -> emitted node id; differs when another group already owns the id
        aliases: Dict[str, str] = {}
        actions, declared = self._build_actions(plan, aliases)

        explicit_system = any(isinstance(item, SystemStep) for item in plan.items)
        inferred_system = 0
        if self.infer_system_steps and not explicit_system and not plan.edges:
            actions, inferred_system = self._insert_system_steps(plan, actions, is_primary=is_primary)

        starts = self._build_starts(plan, actions, aliases)
        ends = self._build_ends(plan, aliases)

        synthesizer = EdgeSynthesizer(
            plan.id,
            [*starts, *actions, *ends],
            default_lane=self._lanes.default_lane,
            used_ids=self._used_ids,
            aliases=aliases,
        )
        if plan.edges:
            synthesizer.connect_explicit(plan.edges, declared)
        else:
            hints = {
                node.id: (node.branches.if_true, node.branches.if_false)
                for node in actions
                if node.type == "decision" and node.branches is not None
            }
            synthesizer.connect_inferred(declared, hints)

        self._record_group_audit(
            plan,
            synthesizer,
            explicit_system=explicit_system,
            inferred_system=inferred_system,
        )

        nodes = synthesizer.nodes
        if is_primary and self.add_edge_cases:
            nodes = [*nodes, *self._build_edge_cases(plan)]
        return FlowGroupOutput(
            id=plan.id,
            name=plan.name,
            starts=[node.id for node in nodes if node.type == "start"],
            ends=[node.id for node in nodes if node.is_terminal],
            nodes=nodes,
            edges=synthesizer.edges,
        )

    def _claim(
        self,
        group_id: str,
        explicit: Optional[str],
        prefix: str,
        counter: List[int],
        aliases: Dict[str, str],
    ) -> str:
        """Pick a graph-unique node id, keeping the author's id where no other group owns it."""
        if explicit and explicit not in aliases:
            if explicit in self._owners:
                node_id = unique_id(scoped_id(group_id, explicit), self._used_ids)
            else:
                node_id = explicit
            aliases[explicit] = node_id
        elif explicit:
            node_id = unique_id(explicit, self._used_ids)
        else:
            while True:
                counter[0] += 1
                node_id = scoped_id(group_id, f"{prefix}{counter[0]}")
                if node_id not in self._used_ids:
                    self._used_ids.add(node_id)
                    break
        self._owners[node_id] = group_id
        return node_id

    def _build_actions(self, plan: _GroupPlan, aliases: Dict[str, str]) -> tuple:
        step_counter = [0]
        system_counter = [0]
        nodes: List[FlowNode] = []
        declared: List[DeclaredBranches] = []

        for item in plan.items:
            if isinstance(item, Step):
                nodes.append(
                    FlowNode(
                        id=self._claim(plan.id, item.id, "S", step_counter, aliases),
                        type="step",
                        lane=self._lanes.resolve(item.lane, item.text),
                        label=item.text,
                        source_text=item.text,
                        flow_group=plan.id,
                        branches=self._hint(item.text),
                    )
                )
            elif isinstance(item, SystemStep):
                lane = canonical_lane(item.lane) or SYSTEM_LANE
                nodes.append(
                    FlowNode(
                        id=self._claim(plan.id, item.id, "SYS", system_counter, aliases),
                        type="system",
                        lane=self._lanes.register(lane),
                        label=item.text,
                        source_text=item.text,
                        flow_group=plan.id,
                    )
                )
            else:
                node_id = self._claim(plan.id, item.id, "D", [0], aliases)
                nodes.append(
                    FlowNode(
                        id=node_id,
                        type="decision",
                        lane=self._lanes.resolve(item.lane, item.question),
                        label=item.question,
                        source_text=item.question,
                        flow_group=plan.id,
                        branches=self._hint(item.question),
                    )
                )
                if isinstance(item, Decision):
                    declared.append(DeclaredBranches(node_id=node_id, yes=item.yes, no=item.no))
                else:
                    declared.append(
                        DeclaredBranches(
                            node_id=node_id,
                            options=[(option.label, option.target) for option in item.options],
                        )
                    )
        return nodes, declared

    def _hint(self, text: str):
        if not self.use_branch_hints:
            return None
        return parse_branches(text)

    def _insert_system_steps(self, plan: _GroupPlan, actions: List[FlowNode], *, is_primary: bool) -> tuple:
        steps = [node for node in actions if node.type == "step"]
        requirements = self._spec.requirements.functional if is_primary else []
        inferred = find_system_steps([node.label for node in steps], requirements)
        if not inferred:
            return actions, 0

        counter = [0]

        def make(label: str) -> FlowNode:
            while True:
                counter[0] += 1
                candidate = scoped_id(plan.id, f"SYS{counter[0]}")
                if candidate not in self._used_ids:
                    self._used_ids.add(candidate)
                    break
            return FlowNode(
                id=candidate,
                type="system",
                lane=self._lanes.register(SYSTEM_LANE),
                label=label,
                inferred=True,
                flow_group=plan.id,
            )

        by_anchor: Dict[Optional[str], List[str]] = {}
        for item in inferred:
            anchor = steps[item.anchor_index].id if item.anchor_index is not None else None
            by_anchor.setdefault(anchor, []).append(item.label)

        result: List[FlowNode] = []
        for node in actions:
            result.append(node)
            for label in by_anchor.get(node.id, []) if node.type == "step" else []:
                result.append(make(label))
        for label in by_anchor.get(None, []):
            result.append(make(label))
        return result, len(inferred)

    def _build_starts(
        self, plan: _GroupPlan, actions: Sequence[FlowNode], aliases: Dict[str, str]
    ) -> List[FlowNode]:
        if plan.starts:
            return [
                FlowNode(
                    id=self._claim(plan.id, start.id, "START", [0], aliases),
                    type="start",
                    lane=self._lanes.resolve(start.lane, start.label),
                    label=start.label,
                    source_text=start.label,
                    flow_group=plan.id,
                )
                for start in plan.starts
            ]

        if self.detect_mode_entries:
            questions = [item.question for item in plan.items if isinstance(item, (Decision, Choice))]
            entries = find_mode_entries(questions)
            if entries:
                return [
                    FlowNode(
                        id=unique_id(scoped_id(plan.id, entry.id), self._used_ids),
                        type="start",
                        lane=self._lanes.register(entry.lane),
                        label=entry.label,
                        inferred=True,
                        flow_group=plan.id,
                    )
                    for entry in entries
                ]

        lane = actions[0].lane if actions else self._lanes.default_lane
        return [
            FlowNode(
                id=unique_id(scoped_id(plan.id, "START"), self._used_ids),
                type="start",
                lane=lane,
                label="Start",
                inferred=True,
                flow_group=plan.id,
            )
        ]

    def _build_ends(self, plan: _GroupPlan, aliases: Dict[str, str]) -> List[FlowNode]:
        if plan.ends or plan.exits:
            nodes = [
                FlowNode(
                    id=self._claim(plan.id, end.id, "END", [0], aliases),
                    type="end",
                    lane=self._lanes.register(canonical_lane(end.lane) or SYSTEM_LANE),
                    label=end.label,
                    source_text=end.label,
                    flow_group=plan.id,
                )
                for end in plan.ends
            ]
            nodes.extend(
                FlowNode(
                    id=self._claim(plan.id, exit_.id, "EXIT", [0], aliases),
                    type="exit",
                    lane=self._lanes.register(canonical_lane(exit_.lane) or self._lanes.default_lane),
                    label=exit_.label,
                    source_text=exit_.label,
                    flow_group=plan.id,
                )
                for exit_ in plan.exits
            )
            return nodes

        def inferred(base: str, node_type: str, label: str, lane: str) -> FlowNode:
            return FlowNode(
                id=unique_id(scoped_id(plan.id, base), self._used_ids),
                type=node_type,
                lane=self._lanes.register(lane),
                label=label,
                inferred=True,
                flow_group=plan.id,
            )

        nodes = [
            inferred("END_SUCCESS", "end", "Complete", SYSTEM_LANE),
            inferred("END_EXIT", "exit", "User Exit", self._lanes.default_lane),
        ]
        if self._needs_error_end():
            nodes.append(inferred("END_ERROR", "end", "Error", SYSTEM_LANE))
        return nodes

    def _needs_error_end(self) -> bool:
        if self._spec.risks:
            return True
        return any(
            word in requirement.lower()
            for requirement in self._spec.requirements.functional
            for word in ERROR_WORDS
        )

    def _build_edge_cases(self, plan: _GroupPlan) -> List[FlowNode]:
        """One disconnected System node per unparsed E: line, capped at MAX_EDGE_CASES."""
        cases = [
            note[len(UNPARSED_EDGE_PREFIX):].strip()
            for note in self._spec.notes
            if note.startswith(UNPARSED_EDGE_PREFIX)
        ]
        nodes: List[FlowNode] = []
        for text in [case for case in cases if case][:MAX_EDGE_CASES]:
            nodes.append(
                FlowNode(
                    id=unique_id(scoped_id(plan.id, f"EC{len(nodes) + 1}"), self._used_ids),
                    type="system",
                    lane=self._lanes.register(SYSTEM_LANE),
                    label=f"Handle: {truncate(text, EDGE_CASE_LABEL_LENGTH)}",
                    source_text=text,
                    inferred=True,
                    flow_group=plan.id,
                    disconnected=True,
                )
            )
            self._audit.append(f"[{plan.id}] Edge case handling: {text}")
        return nodes

    def _record_group_audit(
        self,
        plan: _GroupPlan,
        synthesizer: EdgeSynthesizer,
        *,
        explicit_system: bool,
        inferred_system: int,
    ) -> None:
        prefix = f"[{plan.id}]"
        explicit_edges = len(synthesizer.edges) - synthesizer.inferred_edge_count
        if plan.edges:
            self._audit.append(
                f"{prefix} Edges: explicit ({explicit_edges} kept, {synthesizer.inferred_edge_count} gap-filled)"
            )
        else:
            self._audit.append(f"{prefix} Edges: inferred ({synthesizer.inferred_edge_count} synthesized)")
        self._audit.append(f"{prefix} Starts: {'explicit' if plan.starts else 'inferred'}")
        self._audit.append(f"{prefix} Ends: {'explicit' if plan.ends or plan.exits else 'inferred'}")
        if explicit_system:
            self._audit.append(f"{prefix} System steps: explicit")
        elif inferred_system:
            self._audit.append(f"{prefix} System steps: inferred ({inferred_system})")
        else:
            self._audit.append(f"{prefix} System steps: none")
        self._audit.extend(f"{prefix} {message}" for message in synthesizer.rejected)
        self._audit.extend(f"{prefix} Unresolved branch target: {ref}" for ref in synthesizer.unresolved)

    # ------------------------------------------------------------------
    # Aggregation
    # ------------------------------------------------------------------

    def _aggregate(
        self,
        spec: FlowSpec,
        flows: List[FlowGroupOutput],
        *,
        feature_name: Optional[str],
        project_name: Optional[str],
    ) -> FlowGraph:
        nodes: Dict[str, FlowNode] = {}
        edges: Dict[tuple, FlowEdge] = {}
        starts: List[str] = []
        ends: List[str] = []
        for flow in flows:
            for node in flow.nodes:
                nodes.setdefault(node.id, node)
            for edge in flow.edges:
                edges.setdefault(edge.key, edge)
            starts.extend(node_id for node_id in flow.starts if node_id not in starts)
            ends.extend(node_id for node_id in flow.ends if node_id not in ends)

        meta = FlowGraphMeta(
            project=project_name or self._project_from_context(spec) or self.default_project,
            feature=feature_name or (spec.goals[0] if spec.goals else self.default_feature),
            generated_at=utc_timestamp(),
            source_id=spec.meta.source_id,
            grammar_version=spec.meta.grammar_version,
            expander_version=EXPANDER_VERSION,
        )
        return FlowGraph(
            meta=meta,
            lanes=list(self._lanes.lanes),
            flows=flows,
            starts=starts,
            ends=ends,
            nodes=list(nodes.values()),
            edges=list(edges.values()),
            assumptions=[*spec.assumptions, AUDIT_SEPARATOR, *self._audit],
            open_questions=list(spec.questions),
            risks=list(spec.risks),
            acceptance_criteria=[
                criterion.model_dump(by_alias=True, mode="json") for criterion in spec.acceptance_criteria
            ],
        )

    @staticmethod
    def _project_from_context(spec: FlowSpec) -> Optional[str]:
        """`Project: X` from a CTX: entry, else from a bare note line."""
        notes = [note for note in spec.notes if not note.startswith(UNPARSED_EDGE_PREFIX)]
        for entry in [*spec.context, *notes]:
            match = PROJECT_CONTEXT_PATTERN.match(entry.strip())
            if match and match.group(1).strip():
                return match.group(1).strip()
        return None


def expand(
    spec: Any,
    *,
    feature_name: Optional[str] = None,
    project_name: Optional[str] = None,
    detect_mode_entries: bool = True,
    use_branch_hints: bool = True,
    infer_system_steps: bool = True,
    add_edge_cases: bool = True,
) -> FlowGraph:
    """Expand a FlowSpec (or its dict form) into a FlowGraph."""
    expander = FlowGraphExpander(
        detect_mode_entries=detect_mode_entries,
        use_branch_hints=use_branch_hints,
        infer_system_steps=infer_system_steps,
        add_edge_cases=add_edge_cases,
    )
    return expander.expand(spec, feature_name=feature_name, project_name=project_name)
