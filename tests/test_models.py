"""Tests for covenant/models.py invariants."""

from __future__ import annotations

from dataclasses import replace
from decimal import Decimal

import pytest
from conftest import ALICE, BOB, CAROL, NOW

from codestake.covenant.models import (
    Challenge,
    ChallengeDelta,
    InvariantViolation,
    Milestone,
    QuizSubmission,
    Source,
)
from codestake.pneuma.errors import ErrorKind

DAY = 86400


def _challenge(**overrides) -> Challenge:
    values = dict(
        id=1,
        name="Sorting",
        creator=ALICE,
        participants=(ALICE, BOB),
        total_stake=Decimal("1"),
        staked_amount=Decimal("0.5"),
        track="Python",
        milestones=tuple(Milestone(index=i, unlock_date=NOW + i * DAY, reward=Decimal("0.25")) for i in range(4)),
        is_active=True,
        start_date=NOW - DAY,
        end_date=NOW + 3 * DAY,
    )
    values.update(overrides)
    return Challenge(**values)


def test_valid_challenge():
    challenge = _challenge()
    assert not challenge.is_fallback
    assert not challenge.is_full
    assert not challenge.milestones[0].is_completed
    assert challenge.involves(BOB.lower())
    assert not challenge.involves(CAROL)
    assert not challenge.involves(None)


@pytest.mark.parametrize(
    "overrides",
    [
        {"participants": (ALICE, ALICE.lower())},
        {"participants": tuple("0x" + f"{i:040x}" for i in range(1, 7))},
        {"staked_amount": Decimal("1.5")},
        {"staked_amount": Decimal("-0.1")},
        {"start_date": NOW + 10 * DAY},
        {"milestones": (Milestone(index=0, unlock_date=NOW, reward=Decimal("2")),)},
        {"milestones": (Milestone(index=1, unlock_date=NOW),)},
        {"source": Source.FALLBACK},
        {"fallback_reason": ErrorKind.TIMEOUT},
    ],
)
def test_invariants(overrides):
    with pytest.raises(InvariantViolation):
        _challenge(**overrides)


def test_completion_must_follow_order():
    milestones = (
        Milestone(index=0, unlock_date=NOW),
        Milestone(index=1, unlock_date=NOW + DAY, is_completed=True, winner=BOB),
    )
    with pytest.raises(InvariantViolation):
        _challenge(milestones=milestones)


def test_winner_requires_completion():
    with pytest.raises(InvariantViolation):
        Milestone(index=0, unlock_date=NOW, winner=ALICE)


def test_unlocking_is_sequential():
    challenge = _challenge()
    later = NOW + 10 * DAY

    assert challenge.unlocked(NOW - 1) == ()
    assert challenge.unlocked(NOW) == (0,)
    # Dates have passed, but each milestone waits for its predecessor
    assert challenge.unlocked(later) == (0,)

    done = ChallengeDelta(completed_milestone=0, winner=ALICE).apply_to(challenge)
    assert done.unlocked(later) == (0, 1)
    assert not done.is_unlocked(1, NOW)
    assert not done.is_unlocked(2, later)


def test_delta_adds_stake_and_participant():
    updated = ChallengeDelta(staked_increase=Decimal("0.25"), new_participant=CAROL).apply_to(_challenge())
    assert updated.participants == (ALICE, BOB, CAROL)
    assert updated.staked_amount == Decimal("0.75")


@pytest.mark.parametrize(
    "delta",
    [
        ChallengeDelta(staked_increase=Decimal("-1")),
        ChallengeDelta(staked_increase=Decimal("0.6")),
        ChallengeDelta(new_participant=BOB),
        ChallengeDelta(completed_milestone=1, winner=ALICE),
        ChallengeDelta(completed_milestone=9, winner=ALICE),
    ],
)
def test_delta_rejects_stale_views(delta):
    with pytest.raises(InvariantViolation):
        delta.apply_to(_challenge())


def test_completing_twice_is_rejected():
    once = ChallengeDelta(completed_milestone=0, winner=ALICE).apply_to(_challenge())
    with pytest.raises(InvariantViolation):
        ChallengeDelta(completed_milestone=0, winner=BOB).apply_to(once)


def test_full_challenge():
    members = (ALICE, BOB, CAROL, "0x" + "44" * 20, "0x" + "55" * 20)
    assert _challenge(participants=members).is_full


def test_to_dict():
    payload = replace(_challenge(), name="Graphs").to_dict()
    assert payload["name"] == "Graphs"
    assert payload["staked_amount"] == "0.5"
    assert payload["source"] == "ledger"
    assert payload["fallback_reason"] is None
    assert len(payload["milestones"]) == 4


def test_submission_from_dict():
    submission = QuizSubmission.from_dict({"answers": {"0": 1, "3": 0}})
    assert submission.answers == {0: 1, 3: 0}
    assert submission.code == ""
