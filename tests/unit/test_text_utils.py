import pytest

from blueprints.utils.text import (
    canonical_lane,
    contains_word,
    normalize_key,
    scoped_id,
    slugify,
    truncate,
    unique_id,
)


def test_unique_id_suffixes():
    used = set()
    assert [unique_id("S1", used) for _ in range(3)] == ["S1", "S1_2", "S1_3"]
    assert used == {"S1", "S1_2", "S1_3"}


def test_scoped_id():
    assert scoped_id(None, "D1") == "D1"
    assert scoped_id("main", "D1") == "D1"
    assert scoped_id("checkout", "D1") == "checkout_D1"


def test_slugify_and_normalize():
    assert slugify("Guest Checkout!") == "guest_checkout"
    assert slugify("!!!") == "flow"
    assert normalize_key("User Opens-App") == "useropensapp"
    assert normalize_key(None) == ""


@pytest.mark.parametrize(
    "text,word,expected",
    [
        ("Friends join", "friend", True),
        ("User logs in", "log in", False),
        ("Please log in", "log in", True),
        ("Author writes", "auth", False),
        ("anything", "  ", False),
    ],
)
def test_contains_word(text, word, expected):
    assert contains_word(text, word) is expected


def test_truncate():
    assert truncate("short", 10) == "short"
    assert truncate("a" * 20, 10) == "aaaaaaa..."


def test_canonical_lane():
    assert canonical_lane("  system ") == "System"
    assert canonical_lane("DJ  Booth") == "DJ Booth"
    assert canonical_lane("") is None
    assert canonical_lane(None) is None
