"""Interfaces (Protocols) for BluePrints collaborators.

The compiler itself does no I/O. Whatever supplies extracted records and
whatever persists compiled graphs plug in through these protocols, so tests
can use the in-memory implementations below.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Dict, List, Mapping, Optional, Protocol, runtime_checkable

if TYPE_CHECKING:
    from blueprints.flowgraph.model import FlowGraph
    from blueprints.flowspec.model import ExtractedRecord


# -----------------------------------------------------------------------------
# Source Protocol
# -----------------------------------------------------------------------------


@runtime_checkable
class RecordSource(Protocol):
    """Interface for whatever extracts sticky-note records from a board."""

    def fetch(self, source_id: str) -> List["ExtractedRecord"]:
        """Return the records for a board, in reading order."""
        ...


# -----------------------------------------------------------------------------
# Sink Protocol
# -----------------------------------------------------------------------------


@runtime_checkable
class FlowGraphSink(Protocol):
    """Interface for persisting compiled graphs.

    Implementations:
    - InMemoryFlowGraphSink: For testing and embedding
    """

    def save(self, graph: "FlowGraph", options: Mapping[str, Any]) -> Mapping[str, Any]:
        """Persist a graph; return a save confirmation (at least an `id`)."""
        ...


class InMemoryFlowGraphSink:
    """Keeps saved graphs in a dict keyed by a generated id."""

    def __init__(self):
        self._graphs: Dict[str, "FlowGraph"] = {}
        self._options: Dict[str, Dict[str, Any]] = {}

    def save(self, graph: "FlowGraph", options: Mapping[str, Any]) -> Mapping[str, Any]:
        graph_id = f"{graph.meta.source_id}-{len(self._graphs) + 1}"
        self._graphs[graph_id] = graph
        self._options[graph_id] = dict(options)
        return {"id": graph_id, "saved": True, "nodes": len(graph.nodes), "edges": len(graph.edges)}

    def get(self, graph_id: str) -> Optional["FlowGraph"]:
        return self._graphs.get(graph_id)

    def options_for(self, graph_id: str) -> Dict[str, Any]:
        return dict(self._options.get(graph_id, {}))

    def __len__(self) -> int:
        return len(self._graphs)


class InMemoryRecordSource:
    """Serves pre-loaded records per source id. Useful for unit tests."""

    def __init__(self, records: Optional[Mapping[str, List["ExtractedRecord"]]] = None):
        self._records: Dict[str, List["ExtractedRecord"]] = dict(records or {})

    def add(self, source_id: str, records: List["ExtractedRecord"]) -> None:
        self._records[source_id] = list(records)

    def fetch(self, source_id: str) -> List["ExtractedRecord"]:
        return list(self._records.get(source_id, []))
