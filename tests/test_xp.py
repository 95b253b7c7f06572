"""XP roll-over and partial-update rules."""

from __future__ import annotations

import pytest

from journal import (
    UNSET,
    GoalUpdate,
    SubtaskUpdate,
    ValidationError,
    goal_update_xp,
    make_stats,
    roll_over,
    subtask_update_xp,
    validate_xp_amount,
)


def test_roll_over_carries_into_next_level() -> None:
    assert roll_over(make_stats(90, 1), 45) == {"xp": 35, "level": 2}


def test_roll_over_handles_several_levels_at_once() -> None:
    assert roll_over(make_stats(50, 3), 275) == {"xp": 25, "level": 6}


def test_roll_over_exact_hundred() -> None:
    assert roll_over(make_stats(0, 1), 100) == {"xp": 0, "level": 2}


def test_roll_over_does_not_mutate_input() -> None:
    stats = make_stats(10, 1)
    roll_over(stats, 95)
    assert stats == {"xp": 10, "level": 1}


@pytest.mark.parametrize("amounts", [[5, 10, 50], [99, 1, 99, 1], [250], [0, 0, 7] * 20])
def test_sequence_of_additions_keeps_invariants(amounts: list[int]) -> None:
    stats = make_stats()
    for amount in amounts:
        stats = roll_over(stats, amount)
        assert 0 <= stats["xp"] < 100
        assert stats["level"] >= 1
    total = sum(amounts)
    assert stats == {"xp": total % 100, "level": 1 + total // 100}


@pytest.mark.parametrize("amount", [-1, 1.5, "10", None, True])
def test_xp_amount_must_be_non_negative_int(amount: object) -> None:
    with pytest.raises(ValidationError):
        validate_xp_amount(amount)


def test_completing_goal_always_pays() -> None:
    already_done = {"status": "completed"}
    assert goal_update_xp(already_done, {"status": "completed"}) == 50
    assert goal_update_xp({"status": "completed"}, {"status": "pending"}) == 0
    assert goal_update_xp({"status": "pending"}, {"color": "#fff"}) == 0


def test_subtask_pays_only_on_false_to_true() -> None:
    assert subtask_update_xp({"completed": False}, {"completed": True}) == 10
    assert subtask_update_xp({"completed": True}, {"completed": True}) == 0
    assert subtask_update_xp({"completed": True}, {"completed": False}) == 0
    assert subtask_update_xp({"completed": False}, {"title": "x"}) == 0


def test_goal_update_distinguishes_absent_from_empty() -> None:
    update = GoalUpdate.from_json({"description": ""})
    assert update.title is UNSET
    assert update.validated() == {"description": ""}


def test_goal_update_rejects_bad_status_and_blank_title() -> None:
    with pytest.raises(ValidationError):
        GoalUpdate(status="abandoned").validated()
    with pytest.raises(ValidationError):
        GoalUpdate(title="   ").validated()


def test_goal_update_accepts_any_color_string() -> None:
    assert GoalUpdate(color="not-a-preset").validated() == {"color": "not-a-preset"}
    with pytest.raises(ValidationError):
        GoalUpdate(color=None).validated()


def test_subtask_update_coerces_legacy_integers() -> None:
    assert SubtaskUpdate.from_json({"completed": 1}).validated() == {"completed": True}
    assert SubtaskUpdate.from_json({"completed": 0}).validated() == {"completed": False}
    with pytest.raises(ValidationError):
        SubtaskUpdate.from_json({"completed": "yes"}).validated()


def test_unknown_keys_are_ignored() -> None:
    assert SubtaskUpdate.from_json({"goal_id": 9, "id": 3}).validated() == {}
