"""Structural validation for compiled flow graphs."""

from blueprints.validation.flowgraph_validator import (
    FlowGraphValidator,
    ValidationIssue,
    ValidationResult,
    format_report,
    validate_flowgraph,
    validate_or_raise,
)

__all__ = [
    "FlowGraphValidator",
    "ValidationIssue",
    "ValidationResult",
    "format_report",
    "validate_flowgraph",
    "validate_or_raise",
]
