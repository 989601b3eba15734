import pytest

from blueprints.core.exceptions import InvalidRecordError
from blueprints.flowspec.model import CardLabel, ExtractedRecord
from blueprints.flowspec.parser import (
    LABEL_MAP,
    is_valid_label,
    lane_from_record_name,
    parse,
    parse_card_line,
    parse_lines,
    supported_labels,
)


def _one(text: str, name: str = ""):
    return parse([{"id": "1", "name": name, "text": text}])


def test_goal_line_is_classified():
    assert _one("G: Grow revenue").goals == ["Grow revenue"]


def test_unlabeled_line_becomes_note():
    spec = _one("Random text")
    assert spec.notes == ["Random text"]
    assert spec.goals == []


def test_unknown_prefix_is_kept_as_note():
    line = parse_card_line("Foo: bar baz")
    assert line.label == CardLabel.NOTE
    assert line.value == "Foo: bar baz"


def test_prefix_lookup_is_case_insensitive():
    assert parse_card_line("goal: x").label == CardLabel.GOAL
    assert parse_card_line("Req: y").label == CardLabel.REQUIREMENT
    assert parse_card_line("lane: Host").label == CardLabel.ACTOR
    assert parse_card_line("assumption: z").label == CardLabel.ASSUMPTION


def test_label_table_is_immutable():
    with pytest.raises(TypeError):
        LABEL_MAP["zz"] = CardLabel.NOTE


def test_every_line_yields_one_parsed_line():
    records = [
        {"id": "a", "name": "Card A", "text": "G: one\n\nS: two"},
        {"id": "b", "name": "", "text": "three\r\nE: x -> y"},
    ]
    lines = parse_lines(records)
    assert len(lines) == 5
    assert lines[1].label == CardLabel.NOTE
    assert lines[1].value == ""
    assert lines[3].source_node_id == "b"
    assert lines[3].line_index == 0
    assert lines[0].source_node_name == "Card A"


def test_no_non_empty_line_is_dropped():
    text = "\n".join(
        [
            "CTX: Friday nights",
            "G: Sing together",
            "G:",
            "P: Host - runs the party",
            "R: Must work offline",
            "NFR: Loads in 2s",
            "S: Open app",
            "E: garbage",
            "Q: Which songs?",
            "RISK: Licensing",
            "UI: Big buttons",
            "DATA: Song",
            "RULE: Max 8 singers",
            "OUT: Recording",
            "whatever else",
        ]
    )
    spec = _one(text)
    dumped = str(spec.to_dict())
    for line in text.splitlines():
        _, _, value = line.partition(":")
        last_word = (value.strip() or line.strip()).split()[-1]
        assert last_word in dumped
    assert "G:" in spec.notes


def test_edge_with_attributes():
    spec = _one("E: S1 -> S2 [label=Yes, condition=ok]")
    edge = spec.edges[0]
    assert (edge.from_id, edge.to_id, edge.label, edge.condition) == ("S1", "S2", "Yes", "ok")
    assert spec.to_dict()["edges"][0]["from"] == "S1"
    assert spec.to_dict()["edges"][0]["to"] == "S2"


def test_unparsed_edge_goes_to_notes():
    spec = _one("E: not an edge")
    assert spec.edges == []
    assert spec.notes == ["[Unparsed E:] not an edge"]


def test_persona_split_on_dash_variants():
    spec = _one("P: Host - runs the party\nP: Guest — joins late\nP: Solo singer")
    assert [(p.name, p.details) for p in spec.personas] == [
        ("Host", "runs the party"),
        ("Guest", "joins late"),
        ("Solo singer", None),
    ]


def test_step_with_leading_id():
    spec = _one("S: (S1) User opens app\nS: User taps Karaoke")
    assert spec.steps[0].id == "S1"
    assert spec.steps[0].text == "User opens app"
    assert spec.steps[1].id is None


def test_duplicate_explicit_ids_are_made_unique():
    spec = _one("S: (S1) first\nS: (S1) second")
    assert [s.id for s in spec.steps] == ["S1", "S1_2"]


def test_decision_branches_and_generated_id():
    spec = _one("D: Is available? | yes: continue | NO: stop\nD: Again?")
    first, second = spec.decisions
    assert (first.id, first.question, first.yes, first.no) == ("D1", "Is available?", "continue", "stop")
    assert second.id == "D2"
    assert second.yes is None and second.no is None


def test_choice_options():
    spec = _one("CHOICE: Pick style | Solo -> S1 | Party")
    choice = spec.choices[0]
    assert choice.id == "C1"
    assert choice.question == "Pick style"
    assert [(o.label, o.target) for o in choice.options] == [("Solo", "S1"), ("Party", "Party")]


def test_acceptance_criterion_split():
    spec = _one("AC: (D1) Song available -> Playback starts\nAC: Works offline")
    first, second = spec.acceptance_criteria
    assert (first.attached_to, first.condition, first.expected_result) == (
        "D1",
        "Song available",
        "Playback starts",
    )
    assert second.expected_result is None


def test_terminals_with_and_without_ids():
    spec = _one("START: (BEGIN) Open app\nEND: Finished\nEXIT: Quit")
    assert spec.starts[0].id == "BEGIN"
    assert spec.starts[0].label == "Open app"
    assert spec.ends[0].id == "END"
    assert spec.exits[0].id == "EXIT"


def test_flow_group_context_spans_records():
    records = [
        {"id": "1", "name": "", "text": "F: (checkout) Checkout\nS: Pay"},
        {"id": "2", "name": "", "text": "S: Confirm\nD: Paid?"},
    ]
    spec = parse(records)
    assert [(g.id, g.name) for g in spec.flow_groups] == [("checkout", "Checkout")]
    assert [s.flow_group for s in spec.steps] == ["checkout", "checkout"]
    assert spec.decisions[0].id == "checkout_D1"
    assert not spec.has_ungrouped_items()


def test_flow_group_id_slugged_from_name():
    spec = _one("F: Guest Checkout\nS: Pay")
    assert spec.flow_groups[0].id == "guest_checkout"
    assert spec.steps[0].flow_group == "guest_checkout"


def test_empty_flow_group_clears_context():
    spec = _one("F: (a) A\nS: one\nF:\nS: two")
    assert [s.flow_group for s in spec.steps] == ["a", None]
    assert spec.notes == []


def test_actor_context_sets_lane():
    spec = _one("A: host\nS: Opens lobby\nA:\nS: Leaves")
    assert spec.actors == ["Host"]
    assert spec.steps[0].lane == "Host"
    assert spec.steps[1].lane is None


def test_actor_declarations_are_deduplicated():
    spec = _one("A: DJ\nA: host\nA: Host\nA: DJ")
    assert spec.actors == ["DJ", "Host"]


@pytest.mark.parametrize(
    "name,lane",
    [
        ("Lane: Guest", "Guest"),
        ("HOST / Step 3", "Host"),
        ("SYSTEM: sync", "System"),
        ("DJ_BOOTH / cue", "DJ_BOOTH"),
        ("plain name", None),
        ("", None),
    ],
)
def test_lane_from_record_name(name, lane):
    assert lane_from_record_name(name) == lane


def test_record_name_lane_applies_without_actor():
    spec = _one("S: Opens invite", name="GUEST / 1")
    assert spec.steps[0].lane == "Guest"


def test_positions_follow_line_order():
    spec = _one("S: a\nD: b?\nSYS: c\nS: d")
    positions = [spec.steps[0].position, spec.decisions[0].position, spec.system_steps[0].position, spec.steps[1].position]
    assert positions == sorted(positions)
    assert len(set(positions)) == 4


def test_records_accept_models_and_loose_dicts():
    spec = parse(
        [
            ExtractedRecord(id="a", text="G: one"),
            {"id": 7, "name": None, "text": "G: two"},
            {"id": "c"},
        ],
        source_id="board-1",
    )
    assert spec.goals == ["one", "two"]
    assert spec.meta.source_id == "board-1"


@pytest.mark.parametrize("bad", ["G: not a list", None, 42, [1, 2], [{"id": None, "text": "x"}]])
def test_contract_violations_raise(bad):
    with pytest.raises(InvalidRecordError):
        parse(bad)


def test_malformed_text_never_raises():
    spec = _one("D: | yes:\nCHOICE:\nAC: ->\nE: -> \nS: ()\nP: -")
    assert spec is not None


@pytest.mark.parametrize("prefix", ["S", "step", "CTX", "nfr", "Lane"])
def test_known_prefixes_are_valid_labels(prefix):
    assert is_valid_label(prefix)


@pytest.mark.parametrize("prefix", ["Foo", "Project", ""])
def test_unknown_prefixes_are_not_labels(prefix):
    assert not is_valid_label(prefix)


def test_supported_labels_are_unique_and_complete():
    labels = supported_labels()
    assert len(labels) == len(set(labels))
    assert set(labels) == set(LABEL_MAP.values())
    assert labels[0] == CardLabel.CONTEXT
