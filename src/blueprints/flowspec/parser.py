"""Card grammar parser.

Turns sticky-note text into a structured FlowSpec. Every line of every record
is classified independently by its leading label:

    G: Grow revenue
    P: Host - wants to organize karaoke nights
    S: (S1) User opens app
    D: Is available? | yes: S2 | no: Leave
    E: S1 -> S2 [label=Next, condition=ready]

Conventions:
- Unknown prefixes and unlabeled lines become notes, never errors.
- `F:` (flow group) and `A:` (actor) lines set context that later lines
  inherit, across record boundaries, until the next declaration of that kind.
- Lanes fall back to the record name (`Lane: Host`, `HOST / ...`, `HOST: ...`).
"""

from __future__ import annotations

import re
from types import MappingProxyType
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Set, Tuple

from pydantic import ValidationError

from ..core.exceptions import InvalidRecordError
from ..utils.logging import get_logger
from ..utils.text import MAIN_FLOW_ID, canonical_lane, scoped_id, slugify, unique_id
from .model import (
    AcceptanceCriterion,
    CardLabel,
    Choice,
    ChoiceOption,
    Decision,
    Edge,
    ExtractedRecord,
    FlowGroupDecl,
    FlowSpec,
    FlowSpecMeta,
    ParsedLine,
    Persona,
    Requirements,
    Step,
    SystemStep,
    Terminal,
)

logger = get_logger(__name__)

# Lowercase prefix -> label
LABEL_MAP: Mapping[str, CardLabel] = MappingProxyType(
    {
        "ctx": CardLabel.CONTEXT,
        "context": CardLabel.CONTEXT,
        "g": CardLabel.GOAL,
        "goal": CardLabel.GOAL,
        "p": CardLabel.PERSONA,
        "persona": CardLabel.PERSONA,
        "pr": CardLabel.PROBLEM,
        "problem": CardLabel.PROBLEM,
        "r": CardLabel.REQUIREMENT,
        "req": CardLabel.REQUIREMENT,
        "nfr": CardLabel.NON_FUNCTIONAL,
        "s": CardLabel.STEP,
        "step": CardLabel.STEP,
        "d": CardLabel.DECISION,
        "decision": CardLabel.DECISION,
        "e": CardLabel.EDGE,
        "edge": CardLabel.EDGE,
        "f": CardLabel.FLOW_GROUP,
        "flow": CardLabel.FLOW_GROUP,
        "a": CardLabel.ACTOR,
        "actor": CardLabel.ACTOR,
        "lane": CardLabel.ACTOR,
        "start": CardLabel.START,
        "end": CardLabel.END,
        "exit": CardLabel.EXIT,
        "sys": CardLabel.SYSTEM,
        "system": CardLabel.SYSTEM,
        "choice": CardLabel.CHOICE,
        "assume": CardLabel.ASSUMPTION,
        "assumption": CardLabel.ASSUMPTION,
        "q": CardLabel.QUESTION,
        "risk": CardLabel.RISK,
        "ac": CardLabel.ACCEPTANCE,
        "ui": CardLabel.UI,
        "data": CardLabel.DATA,
        "rule": CardLabel.RULE,
        "out": CardLabel.OUTPUT,
        "note": CardLabel.NOTE,
    }
)

# Labels whose value is stored as-is in a list field of the FlowSpec
_PLAIN_FIELDS: Mapping[CardLabel, str] = MappingProxyType(
    {
        CardLabel.CONTEXT: "context",
        CardLabel.GOAL: "goals",
        CardLabel.PROBLEM: "problems",
        CardLabel.ASSUMPTION: "assumptions",
        CardLabel.QUESTION: "questions",
        CardLabel.RISK: "risks",
        CardLabel.UI: "ui_elements",
        CardLabel.DATA: "data_objects",
        CardLabel.RULE: "rules",
        CardLabel.OUTPUT: "outputs",
        CardLabel.NOTE: "notes",
    }
)

LABEL_PATTERN = re.compile(r"^([A-Za-z]+):\s*(.*)", re.DOTALL)
ID_PREFIX_PATTERN = re.compile(r"^\(([^)]+)\)\s*(.*)$", re.DOTALL)
EDGE_PATTERN = re.compile(r"^(.+?)\s*->\s*(.+?)(?:\s*\[(.+)\])?$")
PERSONA_SEPARATOR = re.compile(r"\s+[-—–]\s+")
AC_SEPARATOR = re.compile(r"\s*(?:->|=>|→)\s*")
BRANCH_PATTERN = re.compile(r"^(yes|no):\s*(.*)$", re.IGNORECASE | re.DOTALL)

UNPARSED_EDGE_PREFIX = "[Unparsed E:]"


# -----------------------------------------------------------------------------
# Line-level parsing
# -----------------------------------------------------------------------------


def parse_card_line(
    line: str,
    *,
    node_id: Optional[str] = None,
    node_name: Optional[str] = None,
    line_index: Optional[int] = None,
) -> ParsedLine:
    """Classify a single line by its label prefix.

    Example:
        parse_card_line("G: Increase engagement").label == CardLabel.GOAL
        parse_card_line("Just a note").label == CardLabel.NOTE
    """
    trimmed = line.strip()
    label = CardLabel.NOTE
    value = trimmed

    match = LABEL_PATTERN.match(trimmed)
    if match:
        prefix, rest = match.groups()
        known = LABEL_MAP.get(prefix.lower())
        if known is not None:
            label = known
            value = rest.strip()

    return ParsedLine(
        raw=line,
        label=label,
        value=value,
        source_node_id=node_id or None,
        source_node_name=node_name or None,
        line_index=line_index,
    )


def lane_from_record_name(name: Optional[str]) -> Optional[str]:
    """Extract a swimlane from a record name like 'Lane: Host' or 'HOST / Step 3'."""
    if not name:
        return None

    match = re.match(r"^lane:\s*(.+)", name, re.IGNORECASE)
    if match:
        return canonical_lane(match.group(1))

    match = re.match(r"^([A-Z][A-Z0-9_]*)\s*/", name)
    if match:
        return canonical_lane(match.group(1))

    match = re.match(r"^([A-Z][A-Z0-9_]*):", name)
    if match:
        return canonical_lane(match.group(1))

    return None


def split_leading_id(value: str) -> Tuple[Optional[str], str]:
    """Strip a leading '(ID)' marker: '(S1) Open app' -> ('S1', 'Open app')."""
    match = ID_PREFIX_PATTERN.match(value)
    if not match:
        return None, value.strip()
    item_id = match.group(1).strip() or None
    text = match.group(2).strip()
    return item_id, text or value.strip()


def parse_persona(value: str) -> Persona:
    parts = PERSONA_SEPARATOR.split(value, maxsplit=1)
    if len(parts) == 2:
        return Persona(name=parts[0].strip(), details=parts[1].strip() or None)
    return Persona(name=value.strip())


def parse_edge(value: str) -> Optional[Dict[str, Optional[str]]]:
    """Parse 'from -> to [label=..., condition=...]'. Returns None without an arrow."""
    match = EDGE_PATTERN.match(value.strip())
    if not match:
        return None

    source, target, attrs = match.groups()
    edge: Dict[str, Optional[str]] = {
        "from": source.strip(),
        "to": target.strip(),
        "label": None,
        "condition": None,
    }
    if attrs:
        for part in attrs.split(","):
            key, sep, attr_value = part.partition("=")
            key = key.strip().lower()
            if sep and key in ("label", "condition") and attr_value.strip():
                edge[key] = attr_value.strip()
    return edge


def parse_decision_value(value: str) -> Tuple[Optional[str], str, Optional[str], Optional[str]]:
    """Return (id, question, yes, no) from 'Question? | yes: X | no: Y'."""
    item_id, remainder = split_leading_id(value)
    parts = [part.strip() for part in remainder.split("|")]
    question = parts[0]
    yes: Optional[str] = None
    no: Optional[str] = None
    for part in parts[1:]:
        match = BRANCH_PATTERN.match(part)
        if not match:
            continue
        target = match.group(2).strip() or None
        if match.group(1).lower() == "yes":
            yes = target
        else:
            no = target
    return item_id, question, yes, no


def parse_choice_options(segments: Sequence[str]) -> List[ChoiceOption]:
    options: List[ChoiceOption] = []
    for segment in segments:
        segment = segment.strip()
        if not segment:
            continue
        label, arrow, target = segment.partition("->")
        if arrow and label.strip() and target.strip():
            options.append(ChoiceOption(label=label.strip(), target=target.strip()))
        else:
            options.append(ChoiceOption(label=segment, target=segment))
    return options


def parse_acceptance(value: str) -> AcceptanceCriterion:
    attached_to, remainder = split_leading_id(value)
    parts = AC_SEPARATOR.split(remainder, maxsplit=1)
    expected = parts[1].strip() if len(parts) == 2 and parts[1].strip() else None
    return AcceptanceCriterion(
        condition=parts[0].strip(),
        expected_result=expected,
        attached_to=attached_to,
    )


# -----------------------------------------------------------------------------
# Record-level parsing
# -----------------------------------------------------------------------------


def coerce_records(records: Any) -> List[ExtractedRecord]:
    """Validate parser input; raises InvalidRecordError on contract violations."""
    if isinstance(records, (str, bytes)) or not isinstance(records, Iterable):
        raise InvalidRecordError(
            "Parser input must be a list of {id, name, text} records",
            context={"received": type(records).__name__},
        )

    coerced: List[ExtractedRecord] = []
    for idx, record in enumerate(records):
        if isinstance(record, ExtractedRecord):
            coerced.append(record)
            continue
        if not isinstance(record, Mapping):
            raise InvalidRecordError(
                "Record is not an object",
                context={"index": idx, "received": type(record).__name__},
            )
        try:
            coerced.append(
                ExtractedRecord.model_validate(
                    {
                        "id": record.get("id", f"record_{idx + 1}"),
                        "name": record.get("name") or "",
                        "text": record.get("text") or "",
                    }
                )
            )
        except ValidationError as exc:
            raise InvalidRecordError(
                "Record has invalid fields",
                context={"index": idx, "errors": exc.errors(include_url=False)},
            ) from exc
    return coerced


def parse_lines(records: Any) -> List[ParsedLine]:
    """Classify every line of every record; exactly one ParsedLine per input line."""
    lines: List[ParsedLine] = []
    for record in coerce_records(records):
        for line_index, line in enumerate(re.split(r"\r?\n", record.text)):
            lines.append(
                parse_card_line(
                    line,
                    node_id=record.id,
                    node_name=record.name,
                    line_index=line_index,
                )
            )
    return lines


class CardParser:
    """Builds a FlowSpec from extracted records."""

    def __init__(self) -> None:
        self._reset()

    def _reset(self) -> None:
        self._fields: Dict[str, List[Any]] = {}
        self._actors: List[str] = []
        self._flow_groups: Dict[str, FlowGroupDecl] = {}
        self._used_ids: Dict[str, Set[str]] = {}
        self._counters: Dict[Tuple[str, str], int] = {}
        self._current_group: Optional[str] = None
        self._current_actor: Optional[str] = None
        self._position = 0

    def parse(self, records: Any, *, source_id: str = "unknown") -> FlowSpec:
        """Parse records into a FlowSpec. Never raises on malformed card text."""
        self._reset()
        record_list = coerce_records(records)

        for record in record_list:
            record_lane = lane_from_record_name(record.name)
            for line_index, line in enumerate(re.split(r"\r?\n", record.text)):
                parsed = parse_card_line(
                    line,
                    node_id=record.id,
                    node_name=record.name,
                    line_index=line_index,
                )
                position = self._position
                self._position += 1
                if not parsed.value and parsed.label not in (CardLabel.FLOW_GROUP, CardLabel.ACTOR):
                    if line.strip():
                        self._append("notes", line.strip())
                    continue
                self._route(parsed, record_lane, position)

        spec = FlowSpec(
            meta=FlowSpecMeta(source_id=source_id),
            personas=self._fields.get("personas", []),
            requirements=Requirements(
                functional=self._fields.get("functional", []),
                non_functional=self._fields.get("non_functional", []),
            ),
            actors=self._actors,
            flow_groups=list(self._flow_groups.values()),
            steps=self._fields.get("steps", []),
            decisions=self._fields.get("decisions", []),
            choices=self._fields.get("choices", []),
            system_steps=self._fields.get("system_steps", []),
            edges=self._fields.get("edges", []),
            starts=self._fields.get("starts", []),
            ends=self._fields.get("ends", []),
            exits=self._fields.get("exits", []),
            acceptance_criteria=self._fields.get("acceptance_criteria", []),
            **{name: self._fields.get(name, []) for name in _PLAIN_FIELDS.values()},
        )
        logger.debug(
            "Parsed card records",
            extra={
                "records": len(record_list),
                "lines": self._position,
                "steps": len(spec.steps),
                "decisions": len(spec.decisions),
                "edges": len(spec.edges),
                "notes": len(spec.notes),
            },
        )
        return spec

    def _route(self, parsed: ParsedLine, record_lane: Optional[str], position: int) -> None:
        label = parsed.label
        value = parsed.value
        group = self._current_group
        lane = self._current_actor or record_lane

        if label in _PLAIN_FIELDS:
            self._append(_PLAIN_FIELDS[label], value)
        elif label == CardLabel.PERSONA:
            self._append("personas", parse_persona(value))
        elif label == CardLabel.REQUIREMENT:
            self._append("functional", value)
        elif label == CardLabel.NON_FUNCTIONAL:
            self._append("non_functional", value)
        elif label == CardLabel.FLOW_GROUP:
            self._declare_flow_group(value)
        elif label == CardLabel.ACTOR:
            self._declare_actor(value)
        elif label == CardLabel.STEP:
            item_id, text = split_leading_id(value)
            self._append(
                "steps",
                Step(
                    id=self._claim_id(group, item_id) if item_id else None,
                    text=text,
                    lane=lane,
                    flow_group=group,
                    position=position,
                ),
            )
        elif label == CardLabel.SYSTEM:
            item_id, text = split_leading_id(value)
            self._append(
                "system_steps",
                SystemStep(
                    id=self._claim_id(group, item_id) if item_id else None,
                    text=text,
                    lane=self._current_actor,
                    flow_group=group,
                    position=position,
                ),
            )
        elif label == CardLabel.DECISION:
            item_id, question, yes, no = parse_decision_value(value)
            self._append(
                "decisions",
                Decision(
                    id=self._claim_id(group, item_id, auto_prefix="D"),
                    question=question,
                    yes=yes,
                    no=no,
                    lane=lane,
                    flow_group=group,
                    position=position,
                ),
            )
        elif label == CardLabel.CHOICE:
            item_id, remainder = split_leading_id(value)
            segments = remainder.split("|")
            self._append(
                "choices",
                Choice(
                    id=self._claim_id(group, item_id, auto_prefix="C"),
                    question=segments[0].strip(),
                    options=parse_choice_options(segments[1:]),
                    lane=lane,
                    flow_group=group,
                    position=position,
                ),
            )
        elif label == CardLabel.EDGE:
            edge = parse_edge(value)
            if edge is None:
                self._append("notes", f"{UNPARSED_EDGE_PREFIX} {value}")
                return
            self._append(
                "edges",
                Edge.model_validate({**edge, "flowGroup": group}),
            )
        elif label in (CardLabel.START, CardLabel.END, CardLabel.EXIT):
            item_id, text = split_leading_id(value)
            field_name = {CardLabel.START: "starts", CardLabel.END: "ends", CardLabel.EXIT: "exits"}[label]
            self._append(
                field_name,
                Terminal(
                    id=self._claim_id(group, item_id, auto_prefix=label.value, numbered=False),
                    label=text,
                    lane=lane,
                    flow_group=group,
                ),
            )
        elif label == CardLabel.ACCEPTANCE:
            self._append("acceptance_criteria", parse_acceptance(value))
        else:
            self._append("notes", value)

    def _append(self, field_name: str, item: Any) -> None:
        self._fields.setdefault(field_name, []).append(item)

    def _declare_flow_group(self, value: str) -> None:
        if not value:
            self._current_group = None
            return
        group_id, name = split_leading_id(value)
        group_id = slugify(group_id or name)
        if group_id == MAIN_FLOW_ID:
            self._current_group = None
            return
        if group_id not in self._flow_groups:
            self._flow_groups[group_id] = FlowGroupDecl(id=group_id, name=name)
        self._current_group = group_id

    def _declare_actor(self, value: str) -> None:
        actor = canonical_lane(value)
        if actor is None:
            self._current_actor = None
            return
        if actor not in self._actors:
            self._actors.append(actor)
        self._current_actor = actor

    def _claim_id(
        self,
        group: Optional[str],
        item_id: Optional[str],
        *,
        auto_prefix: str = "",
        numbered: bool = True,
    ) -> str:
        """Reserve an id within the flow-group scope, generating one when absent."""
        scope = group or MAIN_FLOW_ID
        used = self._used_ids.setdefault(scope, set())
        if item_id:
            return unique_id(item_id, used)

        if not numbered:
            return unique_id(scoped_id(group, auto_prefix), used)

        key = (scope, auto_prefix)
        while True:
            self._counters[key] = self._counters.get(key, 0) + 1
            candidate = scoped_id(group, f"{auto_prefix}{self._counters[key]}")
            if candidate not in used:
                used.add(candidate)
                return candidate


def parse(records: Any, *, source_id: str = "unknown") -> FlowSpec:
    """Parse extracted `{id, name, text}` records into a FlowSpec."""
    return CardParser().parse(records, source_id=source_id)


def is_valid_label(prefix: str) -> bool:
    return prefix.lower() in LABEL_MAP


def supported_labels() -> List[CardLabel]:
    return list(dict.fromkeys(LABEL_MAP.values()))
