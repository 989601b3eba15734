"""Swimlane determination and per-item lane inference."""

from __future__ import annotations

from types import MappingProxyType
from typing import Iterable, List, Mapping, Optional, Sequence

from ..flowspec.model import FlowSpec
from ..utils.text import (
    CANONICAL_LANES,
    GUEST_LANE,
    HOST_LANE,
    SYSTEM_LANE,
    USER_LANE,
    canonical_lane,
    contains_word,
)

# Checked in insertion order; first whole-word hit wins.
LANE_KEYWORDS: Mapping[str, str] = MappingProxyType(
    {
        "host": HOST_LANE,
        "participant": GUEST_LANE,
        "guest": GUEST_LANE,
        "friend": GUEST_LANE,
        "user": USER_LANE,
        "app": SYSTEM_LANE,
        "system": SYSTEM_LANE,
        "server": SYSTEM_LANE,
        "lobby": SYSTEM_LANE,
        "session": SYSTEM_LANE,
    }
)

# Sentence-leading words, for text that mentions no keyword as a whole word.
LEADING_WORDS: Sequence[tuple] = (
    (("user", "users", "listener", "listeners"), USER_LANE),
    (("app", "system", "server", "backend"), SYSTEM_LANE),
    (("host", "hosts", "organizer"), HOST_LANE),
    (("friend", "friends", "participant", "participants", "guest", "guests"), GUEST_LANE),
)


def persona_lane(persona_name: str) -> Optional[str]:
    """Map a persona name onto a canonical lane: host, guest-like or user-like."""
    lower = persona_name.lower()
    if "host" in lower:
        return HOST_LANE
    if any(word in lower for word in ("participant", "friend", "guest")):
        return GUEST_LANE
    if any(word in lower for word in ("user", "listener")):
        return USER_LANE
    return None


def order_lanes(lanes: Iterable[str], declared: Sequence[str] = ()) -> List[str]:
    """User, Host, Guest, then custom lanes (declared first, then first-seen), then System."""
    seen: List[str] = []
    for lane in lanes:
        if lane and lane not in seen:
            seen.append(lane)

    ordered = [lane for lane in CANONICAL_LANES[:-1] if lane in seen]
    custom = [lane for lane in seen if lane not in CANONICAL_LANES]
    custom.sort(key=lambda lane: (0, declared.index(lane)) if lane in declared else (1, seen.index(lane)))
    ordered.extend(custom)
    if SYSTEM_LANE in seen:
        ordered.append(SYSTEM_LANE)
    return ordered


class LaneResolver:
    """Decides lanes for a FlowSpec and infers lanes for items without one."""

    def __init__(self, spec: FlowSpec):
        self.actors: List[str] = [lane for lane in (canonical_lane(a) for a in spec.actors) if lane]
        self.persona_names: List[str] = [p.name for p in spec.personas if p.name]
        self.lanes: List[str] = self._initial_lanes(spec)

    def _initial_lanes(self, spec: FlowSpec) -> List[str]:
        candidates: List[str] = list(self.actors)
        for name in self.persona_names:
            lane = persona_lane(name)
            if lane:
                candidates.append(lane)
        for item in [*spec.steps, *spec.decisions, *spec.choices, *spec.system_steps,
                     *spec.starts, *spec.ends, *spec.exits]:
            lane = canonical_lane(item.lane)
            if lane:
                candidates.append(lane)
        candidates.append(SYSTEM_LANE)

        lanes = order_lanes(candidates, self.actors)
        if len(lanes) == 1:
            lanes = order_lanes([USER_LANE, *lanes], self.actors)
        return lanes

    @property
    def default_lane(self) -> str:
        """First non-System lane; exits and fallback starts live here."""
        for lane in self.lanes:
            if lane != SYSTEM_LANE:
                return lane
        return USER_LANE

    def register(self, lane: str) -> str:
        """Merge a lane discovered while building nodes into the ordered set."""
        if lane not in self.lanes:
            self.lanes = order_lanes([*self.lanes, lane], self.actors)
        return lane

    def resolve(self, explicit: Optional[str], text: str) -> str:
        lane = canonical_lane(explicit) or self.infer(text)
        return self.register(lane)

    def infer(self, text: str) -> str:
        """Infer a lane from free text.

        Priority: declared actor mention, persona mention, keyword table,
        sentence-leading word, then the User lane.
        """
        for actor in self.actors:
            if contains_word(text, actor):
                return actor

        lower = text.lower()
        for name in self.persona_names:
            if name.lower() in lower:
                lane = persona_lane(name)
                if lane:
                    return lane

        for keyword, lane in LANE_KEYWORDS.items():
            if contains_word(text, keyword):
                return lane

        words = lower.split()
        if words:
            first = words[0].strip(".,:;!?")
            for leading, lane in LEADING_WORDS:
                if first in leading:
                    return lane

        return USER_LANE
