"""Card grammar: extracted records to FlowSpec."""

from blueprints.flowspec.model import CardLabel, ExtractedRecord, FlowSpec, ParsedLine
from blueprints.flowspec.parser import CardParser, parse, parse_card_line, parse_lines

__all__ = [
    "CardLabel",
    "CardParser",
    "ExtractedRecord",
    "FlowSpec",
    "ParsedLine",
    "parse",
    "parse_card_line",
    "parse_lines",
]
