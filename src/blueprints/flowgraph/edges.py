"""Edge synthesis for a single flow group.

`EdgeSynthesizer` owns the group's edge list and an `AdjacencyIndex`; every
edge goes through `add()`, which refuses anything that would break a graph
invariant (unknown endpoint, self-loop, duplicate, edge out of an end, edge
into a start, or a cycle). That makes acyclicity and referential integrity
properties of the synthesizer rather than of each pass.

Two entry points:
- `connect_explicit()` when the author declared edges for the group: keep them,
  then fill gaps.
- `connect_inferred()` when there are none: lay a backbone in declaration
  order and branch every decision.
Both finish with the same cleanup and final guarantees.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Sequence, Set

from ..flowspec.model import Edge
from ..utils.logging import get_logger
from ..utils.text import normalize_key, scoped_id, unique_id
from .adjacency import AdjacencyIndex
from .model import FlowEdge, FlowNode

logger = get_logger(__name__)

YES = "Yes"
NO = "No"


@dataclass
class DeclaredBranches:
    """Author-declared targets for a decision or choice node."""

    node_id: str
    yes: Optional[str] = None
    no: Optional[str] = None
    options: List[tuple] = field(default_factory=list)  # (label, target)


class EdgeSynthesizer:
    def __init__(
        self,
        flow_group: str,
        nodes: Sequence[FlowNode],
        *,
        default_lane: str,
        used_ids: Set[str],
        aliases: Optional[Dict[str, str]] = None,
    ):
        self.flow_group = flow_group
        self.nodes: List[FlowNode] = list(nodes)
        self.edges: List[FlowEdge] = []
        self.rejected: List[str] = []
        self.unresolved: List[str] = []
        self.default_lane = default_lane
        self._used_ids = used_ids
        self._aliases = dict(aliases or {})
        self._by_id: Dict[str, FlowNode] = {node.id: node for node in self.nodes}
        self._index = AdjacencyIndex(node.id for node in self.nodes)

    # ------------------------------------------------------------------
    # Node views
    # ------------------------------------------------------------------

    @property
    def actions(self) -> List[FlowNode]:
        return [node for node in self.nodes if node.is_action]

    @property
    def starts(self) -> List[FlowNode]:
        return [node for node in self.nodes if node.type == "start"]

    @property
    def ends(self) -> List[FlowNode]:
        return [node for node in self.nodes if node.is_terminal]

    @property
    def inferred_edge_count(self) -> int:
        return sum(1 for edge in self.edges if edge.inferred)

    def out_degree(self, node_id: str) -> int:
        return self._index.out_degree(node_id)

    def in_degree(self, node_id: str) -> int:
        return self._index.in_degree(node_id)

    def success_end(self) -> Optional[FlowNode]:
        ends = [node for node in self.ends if node.type == "end"]
        for node in ends:
            key = normalize_key(f"{node.id} {node.label}")
            if "success" in key or "complete" in key:
                return node
        return ends[0] if ends else (self.ends[0] if self.ends else None)

    def exit_end(self) -> Optional[FlowNode]:
        """An exit node, else an end that reads like an error or exit."""
        for node in self.ends:
            if node.type == "exit":
                return node
        for node in self.ends:
            key = normalize_key(f"{node.id} {node.label}")
            if any(word in key for word in ("error", "exit", "fail", "cancel")):
                return node
        return None

    def resolve(self, ref: Optional[str]) -> Optional[str]:
        """Resolve an author reference by id, case-insensitive id, then normalized label.

        Author ids that were renamed to stay unique across flow groups go
        through the alias map first.
        """
        if not ref:
            return None
        ref = ref.strip()
        aliased = self._aliases.get(ref)
        if aliased in self._by_id:
            return aliased
        if ref in self._by_id:
            return ref
        lower = ref.lower()
        for node in self.nodes:
            if node.id.lower() == lower:
                return node.id
        for alias, node_id in self._aliases.items():
            if alias.lower() == lower and node_id in self._by_id:
                return node_id
        key = normalize_key(ref)
        if key:
            for node in self.nodes:
                if normalize_key(node.label) == key:
                    return node.id
        return None

    # ------------------------------------------------------------------
    # Checked mutation
    # ------------------------------------------------------------------

    def rejection_reason(self, source: str, target: str) -> Optional[str]:
        if source not in self._by_id or target not in self._by_id:
            return "unknown endpoint"
        if source == target:
            return "self-loop"
        if self._index.has_edge(source, target):
            return "duplicate edge"
        if self._by_id[source].is_terminal:
            return "edge out of an end node"
        if self._by_id[target].type == "start":
            return "edge into a start node"
        if self._index.would_create_cycle(source, target):
            return "would create a cycle"
        return None

    def can_add(self, source: str, target: str) -> bool:
        return self.rejection_reason(source, target) is None

    def add(
        self,
        source: str,
        target: str,
        *,
        label: Optional[str] = None,
        condition: Optional[str] = None,
        inferred: bool = True,
    ) -> bool:
        if not self.can_add(source, target):
            return False
        self.edges.append(
            FlowEdge(
                from_id=source,
                to_id=target,
                label=label,
                condition=condition,
                flow_group=self.flow_group,
                inferred=inferred,
            )
        )
        self._index.add_edge(source, target)
        return True

    def add_first(
        self,
        source: str,
        candidates: Iterable[Optional[str]],
        *,
        label: Optional[str] = None,
        exclude: Iterable[str] = (),
    ) -> Optional[str]:
        """Add an inferred edge to the first acceptable candidate; returns its id."""
        excluded = set(exclude)
        for candidate in candidates:
            if candidate is None or candidate in excluded:
                continue
            if self.add(source, candidate, label=label):
                return candidate
        return None

    def add_inferred_exit(self) -> FlowNode:
        """Create an exit node for a decision with no distinct second target."""
        node = FlowNode(
            id=unique_id(scoped_id(self.flow_group, "END_EXIT"), self._used_ids),
            type="exit",
            lane=self.default_lane,
            label="User Exit",
            inferred=True,
            flow_group=self.flow_group,
        )
        self.nodes.append(node)
        self._by_id[node.id] = node
        self._index.add_node(node.id)
        return node

    # ------------------------------------------------------------------
    # Explicit-edge mode
    # ------------------------------------------------------------------

    def add_explicit(self, edges: Sequence[Edge]) -> None:
        for edge in edges:
            source = self.resolve(edge.from_id)
            target = self.resolve(edge.to_id)
            if source is None or target is None:
                reason = "unknown endpoint"
            else:
                reason = self.rejection_reason(source, target)
            if reason is None:
                self.add(source, target, label=edge.label, condition=edge.condition, inferred=False)
                continue
            message = f"Rejected edge {edge.from_id} -> {edge.to_id} in '{self.flow_group}': {reason}"
            self.rejected.append(message)
            logger.warning(
                "Rejected explicit edge",
                extra={
                    "flow_group": self.flow_group,
                    "from_id": edge.from_id,
                    "to_id": edge.to_id,
                    "reason": reason,
                },
            )

    def add_declared_branches(self, declared: Sequence[DeclaredBranches]) -> None:
        for branches in declared:
            if branches.node_id not in self._by_id:
                continue
            pairs = [(YES, branches.yes), (NO, branches.no), *branches.options]
            for label, ref in pairs:
                if not ref:
                    continue
                target = self.resolve(ref)
                if target is None:
                    self.unresolved.append(f"{branches.node_id} {label} -> {ref}")
                    continue
                self.add(branches.node_id, target, label=label, inferred=False)

    def connect_explicit(self, edges: Sequence[Edge], declared: Sequence[DeclaredBranches]) -> None:
        self.add_explicit(edges)
        self.add_declared_branches(declared)
        self._fill_gaps()
        self._cleanup()
        self._final_guarantees()

    def _fill_gaps(self) -> None:
        actions = self.actions

        # (a) starts reach the first action nobody enters yet
        for start in self.starts:
            if self.out_degree(start.id) > 0:
                continue
            unentered = [a.id for a in actions if self.in_degree(a.id) == 0]
            self.add_first(start.id, [*unentered, *(a.id for a in actions)])

        # (b) ends are entered from the last action
        for end in self.ends:
            if self.in_degree(end.id) == 0:
                self._enter_from_last_action(end)

        # (c) plain actions join their nearest unconnected neighbour
        for position, node in enumerate(actions):
            if node.type == "decision":
                continue
            if self.out_degree(node.id) == 0:
                following = actions[position + 1:]
                preferred = [a.id for a in following if self.in_degree(a.id) == 0]
                self.add_first(node.id, [*preferred, *(a.id for a in following)])
            if self.in_degree(node.id) == 0:
                preceding = [a for a in reversed(actions[:position]) if a.type != "decision"]
                preferred = [a.id for a in preceding if self.out_degree(a.id) == 0]
                self.add_first_from([*preferred, *(a.id for a in preceding)], node.id)

        # (d) decisions get their missing Yes/No
        for position, node in enumerate(actions):
            if node.type == "decision":
                self._branch_decision(node, actions[position + 1:], prefer_unentered=True)

    # ------------------------------------------------------------------
    # Full-inference mode
    # ------------------------------------------------------------------

    def connect_inferred(
        self,
        declared: Sequence[DeclaredBranches],
        hints: Optional[Dict[str, tuple]] = None,
    ) -> None:
        """Backbone in declaration order, then decision branches.

        `hints` maps decision ids to (if_true, if_false) text from the
        branch heuristics.
        """
        hints = hints or {}
        actions = self.actions

        for start in self.starts:
            in_lane = [a.id for a in actions if a.lane == start.lane]
            self.add_first(start.id, [*in_lane, *(a.id for a in actions)])

        plain = [a for a in actions if a.type != "decision"]
        for current, nxt in zip(plain, plain[1:]):
            self.add(current.id, nxt.id)

        declared_by_id = {item.node_id: item for item in declared}
        for position, node in enumerate(actions):
            if node.type != "decision":
                continue
            item = declared_by_id.get(node.id)
            if item is not None:
                for label, ref in ((YES, item.yes), (NO, item.no)):
                    if ref and self.resolve(ref) is None:
                        self.unresolved.append(f"{node.id} {label} -> {ref}")
                for label, ref in item.options:
                    target = self.resolve(ref)
                    if target is None:
                        self.unresolved.append(f"{node.id} {label} -> {ref}")
                    else:
                        self.add(node.id, target, label=label, inferred=False)
            hint_true, hint_false = hints.get(node.id, (None, None))
            self._branch_decision(
                node,
                actions[position + 1:],
                declared_yes=item.yes if item else None,
                declared_no=item.no if item else None,
                hint_yes=hint_true,
                hint_no=hint_false,
            )

        self._cleanup()
        self._final_guarantees()

    # ------------------------------------------------------------------
    # Shared passes
    # ------------------------------------------------------------------

    def _branch_decision(
        self,
        node: FlowNode,
        following: Sequence[FlowNode],
        *,
        declared_yes: Optional[str] = None,
        declared_no: Optional[str] = None,
        hint_yes: Optional[str] = None,
        hint_no: Optional[str] = None,
        prefer_unentered: bool = False,
    ) -> None:
        """Give a decision a Yes and a No branch unless it already has two."""
        labels = {(edge.label or "").lower() for edge in self.edges if edge.from_id == node.id}
        taken = set(self._index.successors(node.id))
        success = self.success_end()
        exit_end = self.exit_end()

        if self.out_degree(node.id) < 2 and YES.lower() not in labels:
            following_ids = [a.id for a in following]
            if prefer_unentered:
                following_ids = [a.id for a in following if self.in_degree(a.id) == 0] + following_ids
            declared = self.resolve(declared_yes)
            if declared is not None:
                if self.add(node.id, declared, label=YES, inferred=False):
                    taken.add(declared)
                    labels.add(YES.lower())
            if YES.lower() not in labels:
                chosen = self.add_first(
                    node.id,
                    [
                        self.resolve(hint_yes),
                        *following_ids,
                        success.id if success else None,
                    ],
                    label=YES,
                    exclude=taken,
                )
                if chosen:
                    taken.add(chosen)

        if self.out_degree(node.id) >= 2:
            return

        yes_target = next(
            (edge.to_id for edge in self.edges if edge.from_id == node.id and (edge.label or "").lower() == "yes"),
            None,
        )
        after_yes = self._actions_after(yes_target, following)
        declared = self.resolve(declared_no)
        if declared is not None and declared not in taken:
            if self.add(node.id, declared, label=NO, inferred=False):
                return
        chosen = self.add_first(
            node.id,
            [
                self.resolve(hint_no),
                exit_end.id if exit_end else None,
                *after_yes,
                *(end.id for end in self.ends),
            ],
            label=NO,
            exclude=taken,
        )
        while chosen is None and self.out_degree(node.id) < 2:
            label = NO if self._has_branch(node.id, YES) else YES
            self.add(node.id, self.add_inferred_exit().id, label=label)

    def _has_branch(self, node_id: str, label: str) -> bool:
        return any(
            edge.from_id == node_id and (edge.label or "").lower() == label.lower()
            for edge in self.edges
        )

    def _actions_after(self, target: Optional[str], following: Sequence[FlowNode]) -> List[str]:
        ids = [a.id for a in following]
        if target in ids:
            return ids[ids.index(target) + 1:]
        return ids

    def _enter_from_last_action(self, end: FlowNode) -> bool:
        for node in reversed(self.actions):
            if node.type == "decision" and self.out_degree(node.id) >= 2:
                continue
            if self.add(node.id, end.id):
                return True
        return False

    def _cleanup(self) -> None:
        actions = self.actions
        success = self.success_end()

        # dead-end steps finish at an end node
        for node in actions:
            if node.type == "decision" or self.out_degree(node.id) > 0:
                continue
            same_lane = [end.id for end in self.ends if end.lane == node.lane and end.type == "end"]
            self.add_first(
                node.id,
                [success.id if success else None, *same_lane, *(end.id for end in self.ends)],
            )

        # ends nobody reaches are entered from the last step
        for end in self.ends:
            if self.in_degree(end.id) > 0:
                continue
            for node in reversed(actions):
                if node.type != "decision" and self.add(node.id, end.id):
                    break

        # remaining orphans patched to/from their nearest neighbours
        for position, node in enumerate(actions):
            if self.in_degree(node.id) == 0:
                preceding = list(reversed(actions[:position]))
                self.add_first_from(
                    [
                        *(a.id for a in preceding if a.type != "decision"),
                        *(s.id for s in self.starts),
                        *(a.id for a in preceding if a.type == "decision"),
                    ],
                    node.id,
                )
            if node.type != "decision" and self.out_degree(node.id) == 0:
                following = [a.id for a in actions[position + 1:]]
                self.add_first(node.id, [*following, *(end.id for end in self.ends)])

    def _final_guarantees(self) -> None:
        actions = self.actions
        for position, node in enumerate(actions):
            if node.type == "decision" and self.out_degree(node.id) < 2:
                self._branch_decision(node, actions[position + 1:])

        for start in self.starts:
            if self.out_degree(start.id) == 0:
                self.add_first(start.id, [*(a.id for a in actions), *(end.id for end in self.ends)])

        for end in self.ends:
            if self.in_degree(end.id) == 0:
                if not self._enter_from_last_action(end):
                    self.add_first_from([s.id for s in self.starts], end.id)

    def add_first_from(self, sources: Iterable[str], target: str) -> Optional[str]:
        for source in sources:
            if self.add(source, target):
                return source
        return None
