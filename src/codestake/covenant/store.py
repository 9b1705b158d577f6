"""
Challenge Store - in-memory cache of Challenge aggregates.

The ledger is the source of truth; the store is a read cache with
last-write-wins refresh per id and no eviction.  Entries only appear
through ``fetch`` (authoritative read) or ``record`` (a confirmed create),
so the store never exposes an id this session has not asked for.

When an authoritative read fails, ``fetch`` returns a synthetic challenge
derived from the id alone and tagged ``Source.FALLBACK`` with the failure
kind.  It never replaces a real cached entry.

Concurrency: all mutation is synchronous (no suspension point between
reading and writing an entry), and concurrent fetches of one id share a
single in-flight read.  Concurrent *writes* to one id are the caller's
responsibility; ``apply_delta`` rejects a delta that would break an
invariant so the caller can re-fetch instead.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, replace
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING, Any, Callable, Optional, Sequence

from eth_hash.auto import keccak

from ..pneuma.errors import ErrorKind, LedgerError
from ..utils import ZERO_ADDRESS, from_wei, same_address, to_checksum_address
from .models import (
    TRACKS,
    Challenge,
    ChallengeDelta,
    InvariantViolation,
    Milestone,
    Source,
    WalletSummary,
)

if TYPE_CHECKING:
    from ..pneuma.ledger import LedgerClient

logger = logging.getLogger(__name__)

DAY = 86400
# 2025-01-01T00:00:00Z, anchor for synthetic dates
FALLBACK_EPOCH = 1735689600
FALLBACK_MILESTONES = 4


class FetchError(LedgerError):
    """A read that has no fallback failed."""

    def __init__(self, kind: ErrorKind, message: str, *, challenge_id: Optional[int] = None) -> None:
        super().__init__(kind, message)
        self.challenge_id = challenge_id


class ChallengeNotFound(FetchError):
    def __init__(self, challenge_id: int) -> None:
        super().__init__(
            ErrorKind.INVALID_ARGUMENT, f"Challenge {challenge_id} does not exist", challenge_id=challenge_id
        )


class StoreInvariantError(LedgerError):
    """A write would leave a cached challenge inconsistent (the cache was stale)."""

    def __init__(self, challenge_id: int, message: str) -> None:
        super().__init__(ErrorKind.MALFORMED_RESPONSE, message)
        self.challenge_id = challenge_id


class StoreReason(str, Enum):
    FETCHED = "fetched"
    FALLBACK = "fallback"
    RECORDED = "recorded"
    DELTA = "delta"


@dataclass(frozen=True)
class StoreEvent:
    challenge_id: int
    challenge: Challenge
    reason: StoreReason


Subscriber = Callable[[StoreEvent], None]


def _derived_address(seed: bytes) -> str:
    return to_checksum_address("0x" + seed[-20:].hex())


def synthetic_challenge(challenge_id: int, reason: ErrorKind) -> Challenge:
    """
    Placeholder challenge for an id whose authoritative read failed.

    Depends only on ``challenge_id`` (never on the clock or the session),
    so repeated failures yield the same value.
    """
    seed = keccak(f"codestake:fallback:{challenge_id}".encode("utf-8"))
    creator = _derived_address(seed)
    opponent = _derived_address(keccak(seed))
    start = FALLBACK_EPOCH + (challenge_id % 365) * DAY
    reward = Decimal("0.25")
    milestones = tuple(
        Milestone(index=i, unlock_date=start + (i + 1) * 7 * DAY, reward=reward)
        for i in range(FALLBACK_MILESTONES)
    )
    return Challenge(
        id=challenge_id,
        name=f"Challenge {challenge_id}",
        creator=creator,
        participants=(creator, opponent),
        total_stake=Decimal("1.0"),
        staked_amount=Decimal("0.5"),
        track=TRACKS[challenge_id % len(TRACKS)],
        milestones=milestones,
        is_active=True,
        start_date=start,
        end_date=milestones[-1].unlock_date,
        source=Source.FALLBACK,
        fallback_reason=reason,
    )


def _optional_address(value: Any) -> Optional[str]:
    if not value or same_address(value, ZERO_ADDRESS):
        return None
    return to_checksum_address(value)


def compose_challenge(challenge_id: int, fields: Sequence[Any], details: Sequence[Any]) -> Challenge:
    """
    Build a Challenge from the ``challenges`` and ``getChallengeDetails`` views.

    Raises:
        ChallengeNotFound: The contract has no such challenge (zero creator)
        LedgerError: MalformedResponse for short or inconsistent data
    """
    if len(fields) < 8 or len(details) < 5:
        raise LedgerError(
            ErrorKind.MALFORMED_RESPONSE,
            f"Challenge {challenge_id}: expected 8 fields and 5 detail arrays, "
            f"got {len(fields)} and {len(details)}",
        )
    name, track, creator, start_date, end_date, staked, total, active = fields[:8]
    participants, timestamps, rewards, completed, winners = details[:5]

    if same_address(creator, ZERO_ADDRESS):
        raise ChallengeNotFound(challenge_id)
    if not (len(timestamps) == len(rewards) == len(completed) == len(winners)):
        raise LedgerError(
            ErrorKind.MALFORMED_RESPONSE, f"Challenge {challenge_id}: milestone arrays differ in length"
        )

    try:
        milestones = tuple(
            Milestone(
                index=i,
                unlock_date=int(timestamps[i]),
                reward=from_wei(rewards[i]),
                is_completed=bool(completed[i]),
                winner=_optional_address(winners[i]) if completed[i] else None,
            )
            for i in range(len(timestamps))
        )
        return Challenge(
            id=challenge_id,
            name=name or f"Challenge {challenge_id}",
            creator=to_checksum_address(creator),
            participants=tuple(to_checksum_address(p) for p in participants),
            total_stake=from_wei(total),
            staked_amount=from_wei(staked),
            track=track,
            milestones=milestones,
            is_active=bool(active),
            start_date=int(start_date),
            end_date=int(end_date),
        )
    except (InvariantViolation, ValueError, TypeError) as exc:
        raise LedgerError(ErrorKind.MALFORMED_RESPONSE, f"Challenge {challenge_id}: {exc}") from exc


def _keep_completed(cached: Challenge, fresh: Challenge) -> Challenge:
    # A lagging node may not show a completion we already confirmed
    if len(cached.milestones) != len(fresh.milestones):
        return fresh
    merged = tuple(
        old if (old.is_completed and not new.is_completed) else new
        for old, new in zip(cached.milestones, fresh.milestones)
    )
    if merged == fresh.milestones:
        return fresh
    logger.debug("Challenge %s: stale read, keeping confirmed completions", fresh.id)
    return replace(fresh, milestones=merged)


class ChallengeStore:
    def __init__(self, ledger: "LedgerClient") -> None:
        self.ledger = ledger
        self._entries: dict[int, Challenge] = {}
        self._inflight: dict[int, asyncio.Task] = {}
        self._subscribers: list[Subscriber] = []
        self._summaries: dict[str, WalletSummary] = {}

    # ---- Reads ----

    def get(self, challenge_id: int) -> Optional[Challenge]:
        return self._entries.get(challenge_id)

    def ids(self) -> list[int]:
        return sorted(self._entries)

    async def fetch(self, challenge_id: int) -> Challenge:
        """
        Authoritative read of one challenge, falling back to a tagged
        synthetic value when the ledger cannot answer.

        Concurrent calls for the same id share one read.

        Raises:
            ChallengeNotFound: The ledger reports no such challenge
            FetchError: ``challenge_id`` is not a valid id
        """
        if challenge_id < 0:
            raise FetchError(ErrorKind.INVALID_ARGUMENT, f"Invalid challenge id {challenge_id}")
        task = self._inflight.get(challenge_id)
        if task is None:
            task = asyncio.ensure_future(self._read(challenge_id))
            self._inflight[challenge_id] = task
            task.add_done_callback(lambda t, cid=challenge_id: self._settle(cid, t))
        # One caller giving up must not cancel the read for the others
        return await asyncio.shield(task)

    def _settle(self, challenge_id: int, task: asyncio.Task) -> None:
        if self._inflight.get(challenge_id) is task:
            del self._inflight[challenge_id]
        if not task.cancelled():
            task.exception()

    async def _read(self, challenge_id: int) -> Challenge:
        try:
            fields = await self.ledger.call("challenges", [challenge_id])
            details = await self.ledger.call("getChallengeDetails", [challenge_id])
            fresh = compose_challenge(challenge_id, fields, details)
        except ChallengeNotFound:
            raise
        except LedgerError as exc:
            logger.warning(
                "Challenge %s: authoritative read failed (%s: %s), using fallback",
                challenge_id, exc.kind.value, exc,
            )
            return self._fallback(challenge_id, exc.kind)

        cached = self._entries.get(challenge_id)
        if cached is not None and not cached.is_fallback:
            fresh = _keep_completed(cached, fresh)
        self._put(fresh, StoreReason.FETCHED)
        return fresh

    def _fallback(self, challenge_id: int, kind: ErrorKind) -> Challenge:
        synthetic = synthetic_challenge(challenge_id, kind)
        cached = self._entries.get(challenge_id)
        if cached is None or cached.is_fallback:
            self._put(synthetic, StoreReason.FALLBACK)
        return synthetic

    async def fetch_active_ids(self) -> list[int]:
        """
        Ids of active challenges according to the ledger.

        Raises:
            FetchError: The ledger could not answer; no ids are invented
        """
        try:
            return await self.ledger.active_challenge_ids()
        except LedgerError as exc:
            raise FetchError(exc.kind, f"Could not list active challenges: {exc}") from exc

    # ---- Writes ----

    def apply_delta(self, challenge_id: int, delta: ChallengeDelta) -> Challenge:
        """
        Apply the effect of a confirmed write to the cached entry.

        Raises:
            StoreInvariantError: Nothing real is cached for the id, or the
                delta contradicts the cached value
        """
        current = self._entries.get(challenge_id)
        if current is None or current.is_fallback:
            raise StoreInvariantError(challenge_id, f"Challenge {challenge_id} has no authoritative entry")
        try:
            updated = delta.apply_to(current)
        except InvariantViolation as exc:
            raise StoreInvariantError(challenge_id, str(exc)) from exc
        self._put(updated, StoreReason.DELTA)
        return updated

    def record(self, challenge: Challenge) -> Challenge:
        """Insert a challenge created by a confirmed transaction in this session."""
        if challenge.source is not Source.LOCAL:
            challenge = replace(challenge, source=Source.LOCAL)
        self._put(challenge, StoreReason.RECORDED)
        return challenge

    def _put(self, challenge: Challenge, reason: StoreReason) -> None:
        self._entries[challenge.id] = challenge
        self._summaries.clear()
        event = StoreEvent(challenge_id=challenge.id, challenge=challenge, reason=reason)
        for subscriber in list(self._subscribers):
            subscriber(event)

    # ---- Notifications ----

    def subscribe(self, subscriber: Subscriber) -> Callable[[], None]:
        self._subscribers.append(subscriber)

        def unsubscribe() -> None:
            if subscriber in self._subscribers:
                self._subscribers.remove(subscriber)

        return unsubscribe

    # ---- Derived views ----

    def wallet_summary(self, identity: str) -> WalletSummary:
        """Totals over cached, non-fallback challenges the identity takes part in."""
        key = identity.lower()
        summary = self._summaries.get(key)
        if summary is not None:
            return summary

        total_staked = Decimal(0)
        winnings = Decimal(0)
        ongoing = 0
        completed = 0
        for challenge in self._entries.values():
            if challenge.is_fallback or not challenge.involves(identity):
                continue
            total_staked += challenge.staked_amount
            if challenge.is_active:
                ongoing += 1
            for milestone in challenge.milestones:
                if milestone.is_completed and same_address(milestone.winner, identity):
                    winnings += milestone.reward
                    completed += 1

        summary = WalletSummary(
            total_staked=total_staked,
            ongoing_challenges=ongoing,
            total_winnings=winnings,
            milestones_completed=completed,
        )
        self._summaries[key] = summary
        return summary

    def clear_derived(self, *_: object) -> None:
        """Drop per-identity views (the session identity changed)."""
        self._summaries.clear()
