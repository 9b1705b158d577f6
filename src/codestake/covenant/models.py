"""
Challenge data model.

Challenges and milestones are frozen dataclasses; every change produces a
new value through ``ChallengeDelta.apply_to`` or ``dataclasses.replace``.
Construction checks the invariants, so an instance that exists is
consistent:

- participants are unique and at most five
- 0 <= staked_amount <= total_stake and the milestone rewards fit the stake
- milestones are indexed 0..n-1 and completed strictly in order
- only completed milestones carry a winner
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field, replace
from decimal import Decimal
from enum import Enum
from typing import Any, Mapping, Optional

from ..pneuma.errors import ErrorKind
from ..utils import same_address

MIN_PARTICIPANTS = 2
MAX_PARTICIPANTS = 5

TRACKS: tuple[str, ...] = ("JavaScript", "Python", "Solidity", "React", "Web3")


class InvariantViolation(ValueError):
    """A challenge value that breaks one of the model invariants."""


class Source(str, Enum):
    LEDGER = "ledger"
    LOCAL = "local"
    FALLBACK = "fallback"


@dataclass(frozen=True)
class Milestone:
    index: int
    unlock_date: int
    reward: Decimal = Decimal(0)
    is_completed: bool = False
    winner: Optional[str] = None

    def __post_init__(self) -> None:
        if self.index < 0:
            raise InvariantViolation(f"Milestone index must be >= 0, got {self.index}")
        if self.reward < 0:
            raise InvariantViolation(f"Milestone {self.index} has a negative reward")
        if self.winner is not None and not self.is_completed:
            raise InvariantViolation(f"Milestone {self.index} has a winner but is not completed")

    def complete(self, winner: Optional[str]) -> "Milestone":
        return replace(self, is_completed=True, winner=winner)


@dataclass(frozen=True)
class Challenge:
    id: int
    name: str
    creator: str
    participants: tuple[str, ...]
    total_stake: Decimal
    staked_amount: Decimal
    track: str
    milestones: tuple[Milestone, ...]
    is_active: bool
    start_date: int
    end_date: int
    source: Source = Source.LEDGER
    fallback_reason: Optional[ErrorKind] = None

    def __post_init__(self) -> None:
        lowered = [p.lower() for p in self.participants]
        if len(set(lowered)) != len(lowered):
            raise InvariantViolation(f"Challenge {self.id} has duplicate participants")
        if len(self.participants) > MAX_PARTICIPANTS:
            raise InvariantViolation(
                f"Challenge {self.id} has {len(self.participants)} participants (max {MAX_PARTICIPANTS})"
            )
        if self.total_stake < 0:
            raise InvariantViolation(f"Challenge {self.id} has a negative total stake")
        if not (0 <= self.staked_amount <= self.total_stake):
            raise InvariantViolation(
                f"Challenge {self.id}: staked {self.staked_amount} outside 0..{self.total_stake}"
            )
        if self.start_date >= self.end_date:
            raise InvariantViolation(f"Challenge {self.id}: start date must precede end date")

        if sum((m.reward for m in self.milestones), Decimal(0)) > self.total_stake:
            raise InvariantViolation(f"Challenge {self.id}: milestone rewards exceed total stake")
        seen_open = False
        for position, milestone in enumerate(self.milestones):
            if milestone.index != position:
                raise InvariantViolation(f"Challenge {self.id}: milestone {position} has index {milestone.index}")
            if milestone.is_completed and seen_open:
                raise InvariantViolation(f"Challenge {self.id}: milestone {position} completed out of order")
            seen_open = seen_open or not milestone.is_completed

        if (self.source is Source.FALLBACK) != (self.fallback_reason is not None):
            raise InvariantViolation("fallback_reason is set exactly for fallback challenges")

    @property
    def is_fallback(self) -> bool:
        return self.source is Source.FALLBACK

    @property
    def is_full(self) -> bool:
        return len(self.participants) >= MAX_PARTICIPANTS

    def milestone(self, index: int) -> Milestone:
        if not 0 <= index < len(self.milestones):
            raise InvariantViolation(f"Challenge {self.id} has no milestone {index}")
        return self.milestones[index]

    def is_unlocked(self, index: int, now: Optional[int] = None) -> bool:
        """A milestone is open once its date has passed and its predecessor is done."""
        milestone = self.milestone(index)
        now = int(time.time()) if now is None else now
        if now < milestone.unlock_date:
            return False
        return index == 0 or self.milestones[index - 1].is_completed

    def unlocked(self, now: Optional[int] = None) -> tuple[int, ...]:
        return tuple(m.index for m in self.milestones if self.is_unlocked(m.index, now))

    def involves(self, identity: Optional[str]) -> bool:
        if identity is None:
            return False
        return same_address(self.creator, identity) or any(
            same_address(p, identity) for p in self.participants
        )

    def has_participant(self, address: str) -> bool:
        return any(same_address(p, address) for p in self.participants)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "creator": self.creator,
            "participants": list(self.participants),
            "total_stake": str(self.total_stake),
            "staked_amount": str(self.staked_amount),
            "track": self.track,
            "is_active": self.is_active,
            "start_date": self.start_date,
            "end_date": self.end_date,
            "source": self.source.value,
            "fallback_reason": self.fallback_reason.value if self.fallback_reason else None,
            "milestones": [
                {
                    "index": m.index,
                    "unlock_date": m.unlock_date,
                    "reward": str(m.reward),
                    "is_completed": m.is_completed,
                    "winner": m.winner,
                }
                for m in self.milestones
            ],
        }


@dataclass(frozen=True)
class ChallengeDelta:
    """The effect of one confirmed write on a cached challenge."""

    staked_increase: Decimal = Decimal(0)
    new_participant: Optional[str] = None
    completed_milestone: Optional[int] = None
    winner: Optional[str] = None

    def apply_to(self, challenge: Challenge) -> Challenge:
        """
        Return ``challenge`` with this delta applied.

        Raises:
            InvariantViolation: The result would be inconsistent, which
                means the cached value was stale
        """
        if self.staked_increase < 0:
            raise InvariantViolation("Stake can only grow")
        participants = challenge.participants
        if self.new_participant is not None:
            if challenge.has_participant(self.new_participant):
                raise InvariantViolation(f"{self.new_participant} already joined challenge {challenge.id}")
            participants = participants + (self.new_participant,)

        milestones = challenge.milestones
        if self.completed_milestone is not None:
            target = challenge.milestone(self.completed_milestone)
            if target.is_completed:
                raise InvariantViolation(
                    f"Milestone {target.index} of challenge {challenge.id} is already completed"
                )
            milestones = tuple(
                m.complete(self.winner) if m.index == target.index else m for m in milestones
            )

        return replace(
            challenge,
            participants=participants,
            staked_amount=challenge.staked_amount + self.staked_increase,
            milestones=milestones,
        )


@dataclass(frozen=True)
class WalletSummary:
    total_staked: Decimal = Decimal(0)
    ongoing_challenges: int = 0
    total_winnings: Decimal = Decimal(0)
    milestones_completed: int = 0


@dataclass(frozen=True)
class LedgerSummary:
    """Balances as reported by the contract's getWalletSummary view."""

    balance: Decimal
    total_earned: Decimal
    total_staked: Decimal


@dataclass(frozen=True)
class QuizSubmission:
    answers: Mapping[int, int] = field(default_factory=dict)
    code: str = ""

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "QuizSubmission":
        return cls(
            answers={int(k): int(v) for k, v in (payload.get("answers") or {}).items()},
            code=payload.get("code") or "",
        )


@dataclass(frozen=True)
class QuizResult:
    passed: bool
    score: float


@dataclass(frozen=True)
class Rubric:
    correct_options: Mapping[int, int]
    pass_percentage: float
    min_code_length: int
    title: str = ""

    def __post_init__(self) -> None:
        if not self.correct_options:
            raise ValueError("A rubric needs at least one question")
        if not 0 <= self.pass_percentage <= 100:
            raise ValueError("pass_percentage must be within 0..100")
        if self.min_code_length < 0:
            raise ValueError("min_code_length must be >= 0")

    @property
    def question_count(self) -> int:
        return len(self.correct_options)

    @classmethod
    def default(cls, question_count: int = 5) -> "Rubric":
        """The demo quiz policy: first option correct, 60%, more than 50 characters of code."""
        if question_count <= 0:
            raise ValueError("question_count must be positive")
        return cls(
            correct_options={i: 0 for i in range(question_count)},
            pass_percentage=60,
            min_code_length=51,
        )

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "Rubric":
        return cls(
            correct_options={int(k): int(v) for k, v in payload["correct_options"].items()},
            pass_percentage=payload["pass_percentage"],
            min_code_length=payload["min_code_length"],
            title=payload.get("title", ""),
        )
