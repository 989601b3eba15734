from blueprints.flowgraph.system_steps import SYSTEM_ACTIONS, infer_system_steps


def test_anchored_steps_come_first_then_requirement_only():
    inferred = infer_system_steps(
        ["User enters password", "User records a song"],
        ["App needs microphone permission"],
    )
    assert [item.label for item in inferred] == ["Authenticate User", "Save Data", "Request Permission"]
    assert [item.anchor_index for item in inferred] == [0, 1, None]


def test_shared_anchor_sorted_by_priority():
    inferred = infer_system_steps(["User saves and syncs the playlist"])
    assert [item.label for item in inferred] == ["Sync State", "Save Data"]


def test_one_step_per_action():
    inferred = infer_system_steps(["Save draft", "Save final"], ["Store everything"])
    assert [item.label for item in inferred] == ["Save Data"]
    assert inferred[0].anchor_index == 0


def test_no_keywords_no_steps():
    assert infer_system_steps(["User waves"], ["Be fun"]) == []


def test_keywords_match_whole_words():
    assert infer_system_steps(["Author writes lyrics"]) == []


def test_action_priorities_are_unique():
    priorities = [action.priority for action in SYSTEM_ACTIONS]
    assert len(priorities) == len(set(priorities))
