import pytest

from blueprints.flowgraph.heuristics import (
    MODE_ENTRY_POINTS,
    detect_mode_entries,
    is_decision_text,
    parse_branches,
    suggests_mode_choice,
)
from blueprints.flowgraph.model import Branches


@pytest.mark.parametrize(
    "text,expected",
    [
        ("If logged in, show dashboard", True),
        ("Is the song available?", True),
        ("Sing solo or with friends", True),
        ("Choose a playlist", True),
        ("Open the app", False),
        ("", False),
    ],
)
def test_is_decision_text(text, expected):
    assert is_decision_text(text) is expected


def test_if_then_branch():
    assert parse_branches("If paid, then ship order") == Branches(condition="paid", if_true="ship order")


def test_or_branch():
    assert parse_branches("Sing solo or with friends?") == Branches(
        condition="choice", if_true="Sing solo", if_false="with friends"
    )


def test_plain_question_has_no_branch_hint():
    assert parse_branches("Is it raining?") is None
    assert parse_branches("Open the app") is None


def test_mode_detection():
    assert suggests_mode_choice("Sing solo or with friends?")
    assert not suggests_mode_choice("Is the song available?")
    assert detect_mode_entries(["Pick a mode"]) == MODE_ENTRY_POINTS
    assert detect_mode_entries(["Is it late?"]) == ()
    assert [entry.lane for entry in MODE_ENTRY_POINTS] == ["User", "Host", "Guest"]
