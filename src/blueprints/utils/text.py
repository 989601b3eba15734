"""Small text helpers shared by the parser, expander and validator."""

from __future__ import annotations

import re
from typing import Optional, Set

MAIN_FLOW_ID = "main"

USER_LANE = "User"
HOST_LANE = "Host"
GUEST_LANE = "Guest"
SYSTEM_LANE = "System"

# Canonical swimlane order; custom lanes slot in before System.
CANONICAL_LANES = (USER_LANE, HOST_LANE, GUEST_LANE, SYSTEM_LANE)


def normalize_key(value: Optional[str]) -> str:
    """Lowercase alphanumeric key used for fuzzy id/label matching."""
    return re.sub(r"[^a-z0-9]+", "", (value or "").lower())


def slugify(value: str) -> str:
    slug = re.sub(r"[^a-z0-9]+", "_", value.lower()).strip("_")
    return slug or "flow"


def unique_id(base: str, used: Set[str]) -> str:
    """Return `base` if unused, else `base_2`, `base_3`, ...; records the result."""
    if base not in used:
        used.add(base)
        return base
    idx = 2
    candidate = f"{base}_{idx}"
    while candidate in used:
        idx += 1
        candidate = f"{base}_{idx}"
    used.add(candidate)
    return candidate


def scoped_id(flow_group: Optional[str], base: str) -> str:
    """Namespace a generated id by its flow group (main flow ids stay bare)."""
    if not flow_group or flow_group == MAIN_FLOW_ID:
        return base
    return f"{flow_group}_{base}"


def contains_word(text: str, word: str) -> bool:
    """Case-insensitive whole-word (optionally plural) containment."""
    if not word.strip():
        return False
    pattern = r"(?<![a-z0-9])" + re.escape(word.lower().strip()) + r"s?(?![a-z0-9])"
    return re.search(pattern, text.lower()) is not None


def truncate(text: str, max_length: int) -> str:
    return text if len(text) <= max_length else text[: max_length - 3] + "..."


def canonical_lane(name: Optional[str]) -> Optional[str]:
    """Map known lane names onto their canonical spelling; keep custom lanes as given."""
    if name is None:
        return None
    cleaned = " ".join(name.split())
    if not cleaned:
        return None
    for lane in CANONICAL_LANES:
        if cleaned.lower() == lane.lower():
            return lane
    return cleaned
