"""CLI entrypoint: compile sticky-note exports into flow graphs.

    blueprints parse extracted.json -o flowspec.json
    blueprints expand flowspec.json -o flowgraph.json
    blueprints validate flowgraph.json
    blueprints pipeline extracted.json -o flowgraph.json

Exit codes: 0 ok, 1 validation failed, 2 bad input.
"""

from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path
from typing import Any, List, Optional, Sequence, Tuple

from .config.settings import Settings
from .core.exceptions import BluePrintsException, InputFormatError
from .core.pipeline import BlueprintPipeline
from .flowgraph.expander import FlowGraphExpander
from .flowspec.parser import CardParser
from .utils.logging import configure_from_settings, get_logger
from .validation.flowgraph_validator import FlowGraphValidator, format_report

EXIT_OK = 0
EXIT_INVALID = 1
EXIT_BAD_INPUT = 2

logger = get_logger(__name__)


def load_json(path: Path) -> Any:
    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError as exc:
        raise InputFormatError("Input file not found", context={"path": str(path)}) from exc
    except json.JSONDecodeError as exc:
        raise InputFormatError(
            "Input file is not valid JSON",
            context={"path": str(path), "line": exc.lineno, "error": exc.msg},
        ) from exc


def unpack_records(payload: Any, default_source: str) -> Tuple[List[Any], str]:
    """Accept a bare record list or an extractor payload `{"fileKey", "extracted"}`."""
    if isinstance(payload, list):
        return payload, default_source
    if isinstance(payload, dict) and isinstance(payload.get("extracted"), list):
        return payload["extracted"], str(payload.get("fileKey") or default_source)
    raise InputFormatError(
        "Expected a list of records or an object with an 'extracted' list",
        context={"received": type(payload).__name__},
    )


def emit(data: Any, output: Optional[Path]) -> None:
    text = data if isinstance(data, str) else json.dumps(data, indent=2, ensure_ascii=False)
    if output is None:
        print(text)
        return
    output.parent.mkdir(parents=True, exist_ok=True)
    output.write_text(text + "\n", encoding="utf-8")
    logger.info("Wrote output", extra={"path": str(output)})


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="blueprints",
        description="Compile sticky-note card text into a swim-laned flow graph",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    commands = {
        "parse": "Parse extracted records into a FlowSpec",
        "expand": "Expand a FlowSpec into a FlowGraph",
        "validate": "Validate a FlowGraph and print a report",
        "pipeline": "Parse, expand and validate in one go",
    }
    for name, help_text in commands.items():
        sub = subparsers.add_parser(name, help=help_text)
        sub.add_argument("input", type=Path, help="Input JSON file")
        sub.add_argument("-o", "--output", type=Path, default=None, help="Write output here instead of stdout")
        if name in ("parse", "pipeline"):
            sub.add_argument("--source-id", default=None, help="Source identifier recorded in metadata")
        if name in ("expand", "pipeline"):
            sub.add_argument("--feature", default=None, help="Feature name for graph metadata")
            sub.add_argument("--project", default=None, help="Project name for graph metadata")
        if name in ("validate", "pipeline"):
            sub.add_argument("--non-strict", action="store_true", help="Report errors without failing")
            sub.add_argument("--allow-disconnected", action="store_true", help="Allow disconnected nodes")
            sub.add_argument("--allow-empty-system", action="store_true", help="Allow an empty System lane")
        if name == "validate":
            sub.add_argument("--json", action="store_true", help="Print the result as JSON instead of a report")
    return parser


def _settings_with_overrides(settings: Settings, args: argparse.Namespace) -> Settings:
    overrides = {}
    if getattr(args, "non_strict", False):
        overrides["strict_validation"] = False
    if getattr(args, "allow_disconnected", False):
        overrides["allow_disconnected"] = True
    if getattr(args, "allow_empty_system", False):
        overrides["allow_empty_system_lane"] = True
    return settings.model_copy(update=overrides) if overrides else settings


def run_command(args: argparse.Namespace, settings: Settings) -> int:
    payload = load_json(args.input)
    settings = _settings_with_overrides(settings, args)

    if args.command == "parse":
        records, source_id = unpack_records(payload, args.source_id or args.input.stem)
        spec = CardParser().parse(records, source_id=args.source_id or source_id)
        emit(spec.to_dict(), args.output)
        return EXIT_OK

    if args.command == "expand":
        expander = FlowGraphExpander(
            detect_mode_entries=settings.detect_mode_entries,
            use_branch_hints=settings.use_branch_hints,
            infer_system_steps=settings.infer_system_steps,
            add_edge_cases=settings.add_edge_cases,
            default_project=settings.project_name,
            default_feature=settings.feature_name,
        )
        graph = expander.expand(payload, feature_name=args.feature, project_name=args.project)
        emit(graph.to_dict(), args.output)
        return EXIT_OK

    if args.command == "validate":
        validator = FlowGraphValidator(
            max_label_length=settings.max_label_length,
            inferred_ratio_threshold=settings.inferred_ratio_threshold,
        )
        result = validator.validate(
            payload,
            strict=settings.strict_validation,
            allow_disconnected=settings.allow_disconnected,
            allow_empty_system_lane=settings.allow_empty_system_lane,
        )
        emit(result.to_dict() if args.json else format_report(result), args.output)
        return EXIT_OK if result.valid else EXIT_INVALID

    records, source_id = unpack_records(payload, args.source_id or args.input.stem)
    result = BlueprintPipeline(settings).run(
        records,
        source_id=args.source_id or source_id,
        feature_name=args.feature,
        project_name=args.project,
    )
    emit(result.flow_graph.to_dict(), args.output)
    if not result.valid:
        print(format_report(result.validation), file=sys.stderr)
        return EXIT_INVALID
    return EXIT_OK


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    settings = Settings()
    configure_from_settings(settings)

    try:
        return run_command(args, settings)
    except BluePrintsException as exc:
        print(f"error: {exc}", file=sys.stderr)
        return EXIT_BAD_INPUT


if __name__ == "__main__":
    sys.exit(main())
