"""Custom exception hierarchy for BluePrints.

Only programming-contract violations raise. Malformed card text and graph
defects are reported as notes and validation issues instead.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Dict, Optional

if TYPE_CHECKING:
    from ..validation.flowgraph_validator import ValidationResult


@dataclass
class BluePrintsException(Exception):
    """Base exception type for all BluePrints errors."""

    message: str
    context: Optional[Dict[str, Any]] = None

    def __str__(self) -> str:
        if not self.context:
            return self.message
        return f"{self.message} | context={self.context}"


class InvalidRecordError(BluePrintsException):
    """Raised when the parser receives something other than extracted records."""


class InvalidFlowSpecError(BluePrintsException):
    """Raised when the expander receives something that is not a FlowSpec."""


class InputFormatError(BluePrintsException):
    """Raised when a JSON input file cannot be interpreted."""


class FlowGraphValidationError(BluePrintsException):
    """Raised by `validate_or_raise` when a graph fails strict validation."""

    def __init__(
        self,
        message: str,
        result: "ValidationResult",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)
        self.result = result
