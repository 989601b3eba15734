"""FlowSpec: the structured intermediate representation of card text.

These models are produced by the grammar parser and consumed by the graph
expander. They serialize with camelCase keys (`model_dump(by_alias=True)`)
so persisted FlowSpec JSON stays compatible with the web tooling.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from ..utils.text import MAIN_FLOW_ID

GRAMMAR_VERSION = "2.0.0"


def utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


class CardLabel(str, Enum):
    """Closed set of card labels."""

    CONTEXT = "CTX"
    GOAL = "G"
    PERSONA = "P"
    PROBLEM = "PR"
    REQUIREMENT = "R"
    NON_FUNCTIONAL = "NFR"
    STEP = "S"
    DECISION = "D"
    EDGE = "E"
    FLOW_GROUP = "F"
    ACTOR = "A"
    START = "START"
    END = "END"
    EXIT = "EXIT"
    SYSTEM = "SYS"
    CHOICE = "CHOICE"
    ASSUMPTION = "ASSUME"
    QUESTION = "Q"
    RISK = "RISK"
    ACCEPTANCE = "AC"
    UI = "UI"
    DATA = "DATA"
    RULE = "RULE"
    OUTPUT = "OUT"
    NOTE = "NOTE"


class SpecModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
        extra="ignore",
    )


# -----------------------------------------------------------------------------
# Parser input / transient output
# -----------------------------------------------------------------------------


class ExtractedRecord(SpecModel):
    """One sticky note (or text node) handed over by the extractor."""

    model_config = ConfigDict(coerce_numbers_to_str=True)

    id: str
    name: str = ""
    text: str = ""


class ParsedLine(SpecModel):
    raw: str
    label: CardLabel
    value: str
    source_node_id: Optional[str] = None
    source_node_name: Optional[str] = None
    line_index: Optional[int] = None


# -----------------------------------------------------------------------------
# FlowSpec parts
# -----------------------------------------------------------------------------


class Persona(SpecModel):
    name: str
    details: Optional[str] = None


class Requirements(SpecModel):
    functional: List[str] = Field(default_factory=list)
    non_functional: List[str] = Field(default_factory=list)


class FlowGroupDecl(SpecModel):
    id: str
    name: str


class Step(SpecModel):
    id: Optional[str] = None
    text: str
    lane: Optional[str] = None
    flow_group: Optional[str] = None
    position: Optional[int] = None


class SystemStep(SpecModel):
    id: Optional[str] = None
    text: str
    lane: Optional[str] = None
    flow_group: Optional[str] = None
    position: Optional[int] = None


class Decision(SpecModel):
    id: str
    question: str
    yes: Optional[str] = None
    no: Optional[str] = None
    lane: Optional[str] = None
    flow_group: Optional[str] = None
    position: Optional[int] = None


class ChoiceOption(SpecModel):
    label: str
    target: str


class Choice(SpecModel):
    id: str
    question: str
    options: List[ChoiceOption] = Field(default_factory=list)
    lane: Optional[str] = None
    flow_group: Optional[str] = None
    position: Optional[int] = None


class Edge(SpecModel):
    from_id: str = Field(alias="from")
    to_id: str = Field(alias="to")
    label: Optional[str] = None
    condition: Optional[str] = None
    flow_group: Optional[str] = None


class Terminal(SpecModel):
    """An explicit START:, END: or EXIT: declaration."""

    id: str
    label: str
    lane: Optional[str] = None
    flow_group: Optional[str] = None


class AcceptanceCriterion(SpecModel):
    condition: str
    expected_result: Optional[str] = None
    attached_to: Optional[str] = None
    suggested: bool = False


class FlowSpecMeta(SpecModel):
    source_id: str = "unknown"
    generated_at: str = Field(default_factory=utc_timestamp)
    grammar_version: str = GRAMMAR_VERSION


class FlowSpec(SpecModel):
    """Parser output. Read-only once constructed."""

    meta: FlowSpecMeta = Field(default_factory=FlowSpecMeta)
    context: List[str] = Field(default_factory=list)
    goals: List[str] = Field(default_factory=list)
    personas: List[Persona] = Field(default_factory=list)
    problems: List[str] = Field(default_factory=list)
    requirements: Requirements = Field(default_factory=Requirements)
    actors: List[str] = Field(default_factory=list)
    flow_groups: List[FlowGroupDecl] = Field(default_factory=list)
    steps: List[Step] = Field(default_factory=list)
    decisions: List[Decision] = Field(default_factory=list)
    choices: List[Choice] = Field(default_factory=list)
    system_steps: List[SystemStep] = Field(default_factory=list)
    edges: List[Edge] = Field(default_factory=list)
    starts: List[Terminal] = Field(default_factory=list)
    ends: List[Terminal] = Field(default_factory=list)
    exits: List[Terminal] = Field(default_factory=list)
    acceptance_criteria: List[AcceptanceCriterion] = Field(default_factory=list)
    assumptions: List[str] = Field(default_factory=list)
    questions: List[str] = Field(default_factory=list)
    risks: List[str] = Field(default_factory=list)
    ui_elements: List[str] = Field(default_factory=list)
    data_objects: List[str] = Field(default_factory=list)
    rules: List[str] = Field(default_factory=list)
    outputs: List[str] = Field(default_factory=list)
    notes: List[str] = Field(default_factory=list)

    def flow_group_of(self, tag: Optional[str]) -> str:
        return tag or MAIN_FLOW_ID

    def has_ungrouped_items(self) -> bool:
        tagged = [
            *self.steps,
            *self.decisions,
            *self.choices,
            *self.system_steps,
            *self.edges,
            *self.starts,
            *self.ends,
            *self.exits,
        ]
        return any(item.flow_group in (None, MAIN_FLOW_ID) for item in tagged)

    def to_dict(self) -> dict:
        return self.model_dump(by_alias=True, mode="json")
