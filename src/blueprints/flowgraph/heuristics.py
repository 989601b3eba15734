"""Natural-language heuristics used as hints by the expander.

Nothing here is a grammar: these are best-effort regex matches over free
text. Graph invariants never depend on them, so any of these can be
disabled (see the expander flags) without breaking a compiled graph.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Iterable, Optional, Tuple

from ..utils.text import GUEST_LANE, HOST_LANE, USER_LANE, contains_word
from .model import Branches

IF_PATTERN = re.compile(r"^if\s+(.+?),\s*(?:then\s+)?(.+)$", re.IGNORECASE | re.DOTALL)
OR_PATTERN = re.compile(r"^(.+?)\s+or\s+(.+)$", re.IGNORECASE | re.DOTALL)

DECISION_WORDS = ("choose", "select", "whether")
MODE_WORDS = ("solo", "with friends", "mode")


@dataclass(frozen=True)
class EntryPoint:
    id: str
    lane: str
    label: str


# Multi-entry journeys: one start per way into the experience.
MODE_ENTRY_POINTS: Tuple[EntryPoint, ...] = (
    EntryPoint(id="START_SOLO", lane=USER_LANE, label="Start Solo"),
    EntryPoint(id="START_HOST", lane=HOST_LANE, label="Host With Friends"),
    EntryPoint(id="START_JOIN", lane=GUEST_LANE, label="Join via Invite Link"),
)


def is_decision_text(text: str) -> bool:
    """Text that reads like a branch point: 'If ...', '...?', 'x or y', 'choose ...'."""
    lower = text.strip().lower()
    if not lower:
        return False
    return (
        lower.startswith("if ")
        or lower.endswith("?")
        or " or " in lower
        or any(contains_word(lower, word) for word in DECISION_WORDS)
    )


def _clean(fragment: str) -> Optional[str]:
    cleaned = fragment.strip().rstrip("?.!").strip()
    return cleaned or None


def parse_branches(text: str) -> Optional[Branches]:
    """Derive a branch hint from 'If X, Y' or 'X or Y'.

    >>> parse_branches("If logged in, show dashboard")
    Branches(condition='logged in', if_true='show dashboard', if_false=None)
    """
    if not is_decision_text(text):
        return None

    stripped = text.strip()
    match = IF_PATTERN.match(stripped)
    if match:
        condition = _clean(match.group(1))
        if condition:
            return Branches(condition=condition, if_true=_clean(match.group(2)))

    match = OR_PATTERN.match(stripped)
    if match:
        return Branches(
            condition="choice",
            if_true=_clean(match.group(1)),
            if_false=_clean(match.group(2)),
        )
    return None


def suggests_mode_choice(question: str) -> bool:
    lower = question.lower()
    return any(word in lower for word in MODE_WORDS)


def detect_mode_entries(questions: Iterable[str]) -> Tuple[EntryPoint, ...]:
    """Entry points implied by a mode-choice question, or () when none is found."""
    if any(suggests_mode_choice(question) for question in questions):
        return MODE_ENTRY_POINTS
    return ()
