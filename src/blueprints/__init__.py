"""BluePrints - sticky-note card text to swim-laned flow graph compiler."""

from typing import TYPE_CHECKING

__all__ = ["Settings", "BlueprintPipeline", "parse", "expand", "validate_flowgraph"]

if TYPE_CHECKING:
    from .config.settings import Settings
    from .core.pipeline import BlueprintPipeline
    from .flowgraph.expander import expand
    from .flowspec.parser import parse
    from .validation.flowgraph_validator import validate_flowgraph


def __getattr__(name: str):
    if name == "Settings":
        from .config.settings import Settings

        return Settings
    if name == "BlueprintPipeline":
        from .core.pipeline import BlueprintPipeline

        return BlueprintPipeline
    if name == "parse":
        from .flowspec.parser import parse

        return parse
    if name == "expand":
        from .flowgraph.expander import expand

        return expand
    if name == "validate_flowgraph":
        from .validation.flowgraph_validator import validate_flowgraph

        return validate_flowgraph
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
