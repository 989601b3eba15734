"""Index-keyed adjacency for flow graphs.

Every node id gets a stable integer index on registration; incoming and
outgoing adjacency are kept as index-keyed sets. The expander uses it to
reject cycle-introducing edges while synthesizing, the validator uses it to
count degrees and find cycles.
"""

from __future__ import annotations

from typing import Dict, Iterable, List, Optional, Set, Tuple

WHITE, GRAY, BLACK = 0, 1, 2


class AdjacencyIndex:
    """Directed graph over string node ids."""

    def __init__(
        self,
        node_ids: Iterable[str] = (),
        edges: Iterable[Tuple[str, str]] = (),
    ) -> None:
        self._index: Dict[str, int] = {}
        self._ids: List[str] = []
        self._out: List[List[int]] = []
        self._in: List[List[int]] = []
        self._out_degree: Dict[str, int] = {}
        self._in_degree: Dict[str, int] = {}
        for node_id in node_ids:
            self.add_node(node_id)
        for source, target in edges:
            self.add_edge(source, target)

    def __contains__(self, node_id: object) -> bool:
        return node_id in self._index

    def __len__(self) -> int:
        return len(self._ids)

    @property
    def node_ids(self) -> List[str]:
        return list(self._ids)

    def add_node(self, node_id: str) -> int:
        idx = self._index.get(node_id)
        if idx is None:
            idx = len(self._ids)
            self._index[node_id] = idx
            self._ids.append(node_id)
            self._out.append([])
            self._in.append([])
        return idx

    def add_edge(self, source: str, target: str) -> None:
        """Record an edge. Degrees count it even when an endpoint is unknown."""
        self._out_degree[source] = self._out_degree.get(source, 0) + 1
        self._in_degree[target] = self._in_degree.get(target, 0) + 1
        if source not in self._index or target not in self._index:
            return
        src, dst = self._index[source], self._index[target]
        if dst not in self._out[src]:
            self._out[src].append(dst)
            self._in[dst].append(src)

    def has_edge(self, source: str, target: str) -> bool:
        if source not in self._index or target not in self._index:
            return False
        return self._index[target] in self._out[self._index[source]]

    def out_degree(self, node_id: str) -> int:
        return self._out_degree.get(node_id, 0)

    def in_degree(self, node_id: str) -> int:
        return self._in_degree.get(node_id, 0)

    def successors(self, node_id: str) -> List[str]:
        idx = self._index.get(node_id)
        if idx is None:
            return []
        return [self._ids[i] for i in self._out[idx]]

    def predecessors(self, node_id: str) -> List[str]:
        idx = self._index.get(node_id)
        if idx is None:
            return []
        return [self._ids[i] for i in self._in[idx]]

    def has_path(self, source: str, target: str) -> bool:
        """True when `target` is reachable from `source` (a node reaches itself)."""
        if source not in self._index or target not in self._index:
            return False
        goal = self._index[target]
        start = self._index[source]
        if start == goal:
            return True
        seen: Set[int] = {start}
        stack = [start]
        while stack:
            current = stack.pop()
            for nxt in self._out[current]:
                if nxt == goal:
                    return True
                if nxt not in seen:
                    seen.add(nxt)
                    stack.append(nxt)
        return False

    def would_create_cycle(self, source: str, target: str) -> bool:
        """Adding source -> target closes a cycle iff target already reaches source."""
        return self.has_path(target, source)

    def find_cycle(self) -> Optional[List[str]]:
        """Return one cycle as a node-id path (first id repeated at the end), or None.

        Three-color DFS: a GRAY neighbour means we found a back edge.
        """
        color = [WHITE] * len(self._ids)
        parent: List[Optional[int]] = [None] * len(self._ids)

        for root in range(len(self._ids)):
            if color[root] != WHITE:
                continue
            color[root] = GRAY
            stack = [(root, iter(self._out[root]))]
            while stack:
                current, neighbours = stack[-1]
                advanced = False
                for nxt in neighbours:
                    if color[nxt] == WHITE:
                        color[nxt] = GRAY
                        parent[nxt] = current
                        stack.append((nxt, iter(self._out[nxt])))
                        advanced = True
                        break
                    if color[nxt] == GRAY:
                        cycle = [nxt]
                        walk: Optional[int] = current
                        while walk is not None and walk != nxt:
                            cycle.append(walk)
                            walk = parent[walk]
                        cycle.append(nxt)
                        cycle.reverse()
                        return [self._ids[i] for i in cycle]
                if not advanced:
                    color[current] = BLACK
                    stack.pop()
        return None

    def topological_order(self) -> Optional[List[str]]:
        """Kahn's algorithm; None when the graph has a cycle."""
        in_counts = [len(preds) for preds in self._in]
        ready = [i for i, count in enumerate(in_counts) if count == 0]
        order: List[str] = []
        while ready:
            current = ready.pop(0)
            order.append(self._ids[current])
            for nxt in self._out[current]:
                in_counts[nxt] -= 1
                if in_counts[nxt] == 0:
                    ready.append(nxt)
        if len(order) != len(self._ids):
            return None
        return order
