"""Pipeline orchestration for BluePrints."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping, Optional

from ..config.settings import Settings
from ..flowgraph.expander import FlowGraphExpander
from ..flowgraph.model import FlowGraph
from ..flowspec.model import FlowSpec
from ..flowspec.parser import CardParser
from ..utils.logging import get_logger
from ..validation.flowgraph_validator import FlowGraphValidator, ValidationResult
from .exceptions import BluePrintsException
from .interfaces import FlowGraphSink, RecordSource


@dataclass(frozen=True)
class PipelineResult:
    """High-level pipeline result."""

    flow_spec: FlowSpec
    flow_graph: FlowGraph
    validation: ValidationResult
    persisted: bool = False
    saved: Optional[Mapping[str, Any]] = None

    @property
    def valid(self) -> bool:
        return self.validation.valid


class BlueprintPipeline:
    """Sequences parse -> expand -> validate -> persist.

    A thin shell: all compiler logic lives in the parser, expander and
    validator. A strict-mode validation failure skips the sink.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        *,
        sink: Optional[FlowGraphSink] = None,
        source: Optional[RecordSource] = None,
    ):
        self.settings = settings or Settings()
        self.sink = sink
        self.source = source
        self.logger = get_logger(__name__)
        self.parser = CardParser()
        self.expander = FlowGraphExpander(
            detect_mode_entries=self.settings.detect_mode_entries,
            use_branch_hints=self.settings.use_branch_hints,
            infer_system_steps=self.settings.infer_system_steps,
            add_edge_cases=self.settings.add_edge_cases,
            default_project=self.settings.project_name,
            default_feature=self.settings.feature_name,
        )
        self.validator = FlowGraphValidator(
            max_label_length=self.settings.max_label_length,
            inferred_ratio_threshold=self.settings.inferred_ratio_threshold,
        )

    def run(
        self,
        records: Any,
        *,
        source_id: str = "unknown",
        feature_name: Optional[str] = None,
        project_name: Optional[str] = None,
    ) -> PipelineResult:
        flow_spec = self.parser.parse(records, source_id=source_id)
        flow_graph = self.expander.expand(
            flow_spec,
            feature_name=feature_name,
            project_name=project_name,
        )
        validation = self.validator.validate(
            flow_graph,
            strict=self.settings.strict_validation,
            allow_disconnected=self.settings.allow_disconnected,
            allow_empty_system_lane=self.settings.allow_empty_system_lane,
        )
        self.logger.info(
            "Compiled flow graph",
            extra={
                "source_id": source_id,
                "nodes": len(flow_graph.nodes),
                "edges": len(flow_graph.edges),
                "valid": validation.valid,
                "errors": len(validation.errors),
                "warnings": len(validation.warnings),
            },
        )

        if not validation.valid:
            self.logger.warning(
                "Validation failed; skipping persistence",
                extra={"source_id": source_id, "codes": validation.error_codes},
            )
            return PipelineResult(flow_spec, flow_graph, validation)

        if self.sink is None:
            return PipelineResult(flow_spec, flow_graph, validation)

        saved = self.sink.save(
            flow_graph,
            {
                "source_id": source_id,
                "feature_name": flow_graph.meta.feature,
                "project_name": flow_graph.meta.project,
                "warnings": len(validation.warnings),
            },
        )
        return PipelineResult(flow_spec, flow_graph, validation, persisted=True, saved=saved)

    def run_source(self, source_id: str, **options: Any) -> PipelineResult:
        """Fetch records from the configured RecordSource and run the pipeline."""
        if self.source is None:
            raise BluePrintsException("No record source configured", context={"source_id": source_id})
        return self.run(self.source.fetch(source_id), source_id=source_id, **options)
