"""Keyword table for inferring System-lane steps from requirement and step text."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple

from ..utils.text import contains_word


@dataclass(frozen=True)
class SystemAction:
    label: str
    priority: int
    keywords: Tuple[str, ...]

    def matches(self, text: str) -> bool:
        return any(contains_word(text, keyword) for keyword in self.keywords)


# Lower priority runs earlier when several actions share an anchor.
SYSTEM_ACTIONS: Tuple[SystemAction, ...] = (
    SystemAction("Authenticate User", 10, ("auth", "authenticate", "login", "log in", "sign in", "signin", "password")),
    SystemAction("Request Permission", 20, ("permission", "microphone", "camera access", "allow access")),
    SystemAction("Validate Input", 30, ("validate", "validation", "verify", "check input")),
    SystemAction("Load Data", 40, ("fetch", "load", "retrieve", "download")),
    SystemAction("Create Session", 50, ("session", "lobby", "room", "invite")),
    SystemAction("Sync State", 60, ("sync", "synchronize", "real-time", "realtime")),
    SystemAction("Save Data", 70, ("save", "persist", "store", "record")),
    SystemAction("Send Notification", 80, ("notify", "notification", "alert", "email")),
    SystemAction("Cleanup Session", 90, ("cleanup", "clean up", "teardown", "end session", "disconnect")),
)


@dataclass(frozen=True)
class InferredSystemStep:
    action: SystemAction
    anchor_index: Optional[int]  # index into the step list; None means "append at the end"

    @property
    def label(self) -> str:
        return self.action.label


def infer_system_steps(
    step_texts: Sequence[str],
    requirement_texts: Sequence[str] = (),
) -> List[InferredSystemStep]:
    """One inferred step per matched action.

    Each is anchored after the first step that mentions it, or left unanchored
    when only requirement text mentioned it. Result is sorted by anchor
    (unanchored last) then priority.
    """
    found: Dict[str, InferredSystemStep] = {}
    for action in SYSTEM_ACTIONS:
        anchor: Optional[int] = None
        for idx, text in enumerate(step_texts):
            if action.matches(text):
                anchor = idx
                break
        if anchor is None and not any(action.matches(text) for text in requirement_texts):
            continue
        found[action.label] = InferredSystemStep(action=action, anchor_index=anchor)

    def sort_key(item: InferredSystemStep) -> tuple:
        anchor = item.anchor_index if item.anchor_index is not None else len(step_texts)
        return (anchor, item.action.priority)

    return sorted(found.values(), key=sort_key)
