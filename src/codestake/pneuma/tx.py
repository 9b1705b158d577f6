"""
Transaction Pipeline - network check, validation, estimation, submission,
confirmation and store update for every state-changing call.

Stages run in order and the first failure ends the invocation:

    NetworkCheck -> PreValidate -> Estimate -> Submit -> Confirm

Ledger failures never escape ``execute``; they come back as a ``TxOutcome``
carrying the stage, the ``ErrorKind`` and a display cause.  Only the first
three stages are retried, and only for transient kinds.  Nothing has been
sent before Submit, so cancelling the caller up to that point has no side
effect; from Submit on, the rest of the invocation is shielded from
cancellation and runs to a receipt or a timeout.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Optional, Sequence

from ..config import PipelineConfig
from ..covenant.models import (
    MAX_PARTICIPANTS,
    MIN_PARTICIPANTS,
    Challenge,
    ChallengeDelta,
    InvariantViolation,
    Milestone,
    QuizResult,
    Source,
)
from ..covenant.store import StoreInvariantError
from ..utils import Amount, from_wei, is_address, now, to_checksum_address, to_wei
from .errors import ErrorKind, LedgerError
from .ledger import Receipt

if TYPE_CHECKING:
    from ..covenant.store import ChallengeStore
    from ..sigil.session import WalletSession
    from .ledger import LedgerClient
    from .network import NetworkGuard, NetworkProfile

logger = logging.getLogger(__name__)


class Stage(str, Enum):
    NETWORK_CHECK = "NetworkCheck"
    PRE_VALIDATE = "PreValidate"
    ESTIMATE = "Estimate"
    SUBMIT = "Submit"
    CONFIRM = "Confirm"


class OutcomeStatus(str, Enum):
    CONFIRMED = "confirmed"
    # Stopped before anything reached the wallet
    ABORTED = "aborted"
    FAILED = "failed"
    # Sent, but the result is not known (yet)
    UNKNOWN = "unknown"


@dataclass
class PendingCall:
    """An invocation in flight.  Owned and mutated by the pipeline only."""

    method: str
    args: tuple[Any, ...]
    value: int
    stage: Stage = Stage.NETWORK_CHECK
    attempt: int = 1
    tx_hash: Optional[str] = None


Effect = Callable[[Receipt], Optional[Challenge]]
FollowUp = Callable[[Receipt, Optional[Challenge]], Awaitable[Optional[Challenge]]]


@dataclass(frozen=True)
class TxRequest:
    """
    One state-changing call.

    ``validate`` runs in PreValidate and must not touch the network.
    ``effect`` runs synchronously as soon as a successful receipt is
    accepted; ``follow_up`` runs afterwards and may await.
    """

    method: str
    args: tuple[Any, ...] = ()
    value: int = 0
    challenge_id: Optional[int] = None
    validate: Optional[Callable[[], None]] = None
    effect: Optional[Effect] = None
    follow_up: Optional[FollowUp] = None


@dataclass(frozen=True)
class TxOutcome:
    method: str
    status: OutcomeStatus
    stage: Stage
    kind: Optional[ErrorKind] = None
    cause: str = ""
    attempts: int = 1
    tx_hash: Optional[str] = None
    receipt: Optional[Receipt] = None
    challenge: Optional[Challenge] = None

    @property
    def ok(self) -> bool:
        return self.status is OutcomeStatus.CONFIRMED


def _invalid(message: str) -> LedgerError:
    return LedgerError(ErrorKind.INVALID_ARGUMENT, message)


def _parse_amount(amount: Amount) -> tuple[int, Optional[str]]:
    """Wei value of an ether amount, or 0 and the reason it is unusable."""
    try:
        return to_wei(amount), None
    except (TypeError, ValueError) as exc:
        return 0, str(exc)


def _parse_times(values: Sequence[Any]) -> tuple[list[int], Optional[str]]:
    """Unix timestamps, or an empty list and the reason they are unusable."""
    try:
        return [int(t) for t in values], None
    except (TypeError, ValueError) as exc:
        return [], f"Invalid unlock time: {exc}"


class TransactionPipeline:
    def __init__(
        self,
        ledger: "LedgerClient",
        guard: "NetworkGuard",
        store: "ChallengeStore",
        session: "WalletSession",
        network: "NetworkProfile",
        config: Optional[PipelineConfig] = None,
        *,
        clock: Callable[[], int] = now,
    ) -> None:
        self.ledger = ledger
        self.guard = guard
        self.store = store
        self.session = session
        self.network = network
        self.config = config or PipelineConfig()
        self._clock = clock
        self._pending: list[PendingCall] = []
        self._tasks: set[asyncio.Task] = set()

    def pending_calls(self) -> tuple[PendingCall, ...]:
        return tuple(self._pending)

    # ---- Driver ----

    async def execute(self, request: TxRequest) -> TxOutcome:
        pending = PendingCall(method=request.method, args=request.args, value=request.value)
        self._pending.append(pending)
        try:
            await self._retrying(pending, Stage.NETWORK_CHECK, lambda: self.guard.ensure_network(self.network))
            pending.stage, pending.attempt = Stage.PRE_VALIDATE, 1
            self._pre_validate(request)
            gas_limit = await self._retrying(pending, Stage.ESTIMATE, lambda: self._estimate(request))
        except LedgerError as exc:
            self._discard(pending)
            return self._outcome(pending, OutcomeStatus.ABORTED, exc)
        except BaseException:
            self._discard(pending)
            raise

        task = asyncio.ensure_future(self._submit_and_confirm(pending, request, gas_limit))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        task.add_done_callback(lambda _: self._discard(pending))
        return await asyncio.shield(task)

    def _discard(self, pending: PendingCall) -> None:
        if pending in self._pending:
            self._pending.remove(pending)

    async def _retrying(self, pending: PendingCall, stage: Stage, attempt_once: Callable[[], Awaitable[Any]]) -> Any:
        pending.stage = stage
        pending.attempt = 1
        while True:
            try:
                return await attempt_once()
            except LedgerError as exc:
                if not exc.retryable or pending.attempt > self.config.transient_retries:
                    raise
                logger.info(
                    "%s: %s failed with %s, retrying (attempt %d)",
                    pending.method, stage.value, exc.kind.value, pending.attempt + 1,
                )
                pending.attempt += 1

    def _pre_validate(self, request: TxRequest) -> None:
        self.ledger.capabilities.require(request.method)
        self.session.require_identity()
        if request.value < 0:
            raise _invalid("Value must not be negative")
        if request.validate is not None:
            request.validate()

    async def _estimate(self, request: TxRequest) -> int:
        gas = await self.ledger.estimate_gas(request.method, request.args, request.value)
        price = await self.ledger.gas_price()
        balance = await self.session.refresh_balance()
        needed = request.value + gas * price
        if balance < needed:
            raise LedgerError(
                ErrorKind.INSUFFICIENT_FUNDS,
                f"Balance {from_wei(balance)} is below the {from_wei(needed)} needed for {request.method}",
                method=request.method,
            )
        return gas

    async def _submit_and_confirm(self, pending: PendingCall, request: TxRequest, gas_limit: int) -> TxOutcome:
        pending.stage, pending.attempt = Stage.SUBMIT, 1
        try:
            handle = await self.ledger.send(request.method, request.args, request.value, gas_limit)
        except LedgerError as exc:
            # A transient failure here may still have reached the node
            status = OutcomeStatus.UNKNOWN if exc.retryable else OutcomeStatus.FAILED
            return self._outcome(pending, status, exc)

        pending.tx_hash = handle.tx_hash
        pending.stage = Stage.CONFIRM
        try:
            receipt = await self.ledger.await_receipt(handle)
        except LedgerError as exc:
            return self._outcome(pending, OutcomeStatus.UNKNOWN, exc)

        if not receipt.succeeded:
            return self._outcome(
                pending,
                OutcomeStatus.FAILED,
                LedgerError(ErrorKind.REVERTED, f"{request.method} reverted in block {receipt.block_number}"),
                receipt=receipt,
            )

        challenge: Optional[Challenge] = None
        refetch: Optional[int] = None
        try:
            if request.effect is not None:
                challenge = request.effect(receipt)
        except LedgerError as exc:
            refetch = getattr(exc, "challenge_id", None)
            if refetch is None:
                refetch = request.challenge_id
            logger.warning("%s confirmed but the cached view is stale (%s), re-reading", request.method, exc)

        if refetch is not None:
            challenge = await self._refetch(refetch)
        if request.follow_up is not None:
            try:
                challenge = await request.follow_up(receipt, challenge) or challenge
            except LedgerError as exc:
                logger.warning("%s confirmed, follow-up read failed: %s", request.method, exc)

        logger.info("%s confirmed in block %s (%s)", request.method, receipt.block_number, receipt.tx_hash)
        return TxOutcome(
            method=request.method,
            status=OutcomeStatus.CONFIRMED,
            stage=Stage.CONFIRM,
            attempts=pending.attempt,
            tx_hash=receipt.tx_hash,
            receipt=receipt,
            challenge=challenge,
        )

    async def _refetch(self, challenge_id: int) -> Optional[Challenge]:
        try:
            return await self.store.fetch(challenge_id)
        except LedgerError as exc:
            logger.warning("Re-reading challenge %s failed: %s", challenge_id, exc)
            return None

    def _outcome(
        self,
        pending: PendingCall,
        status: OutcomeStatus,
        exc: LedgerError,
        receipt: Optional[Receipt] = None,
    ) -> TxOutcome:
        logger.warning(
            "%s %s at %s: %s (%s)", pending.method, status.value, pending.stage.value, exc.kind.value, exc
        )
        return TxOutcome(
            method=pending.method,
            status=status,
            stage=pending.stage,
            kind=exc.kind,
            cause=str(exc),
            attempts=pending.attempt,
            tx_hash=pending.tx_hash,
            receipt=receipt,
        )

    # ---- Operations ----

    def _cached(self, challenge_id: int) -> Challenge:
        challenge = self.store.get(challenge_id)
        if challenge is None:
            raise _invalid(f"Challenge {challenge_id} is not loaded; fetch it first")
        if challenge.is_fallback:
            raise _invalid(f"Challenge {challenge_id} is a fallback value and cannot be written to")
        return challenge

    def _apply(self, challenge_id: int, delta: ChallengeDelta) -> Challenge:
        return self.store.apply_delta(challenge_id, delta)

    async def create_challenge(
        self,
        total_stake: Amount,
        participants: Sequence[str],
        unlock_times: Sequence[int],
        *,
        stake: Amount = 0,
        track: str = "",
    ) -> TxOutcome:
        """
        Create a challenge with one milestone per unlock time.

        The total stake is split evenly across milestones; ``stake`` is the
        value sent with the call and counts towards the staked amount.
        """
        total_wei, total_error = _parse_amount(total_stake)
        value, value_error = _parse_amount(stake)
        times, times_error = _parse_times(unlock_times)
        created_at = self._clock()

        def validate() -> None:
            for error in (total_error, value_error, times_error):
                if error:
                    raise _invalid(error)
            if total_wei <= 0:
                raise _invalid("Total stake must be positive")
            if value > total_wei:
                raise _invalid("Initial stake exceeds the total stake")
            if not MIN_PARTICIPANTS <= len(participants) <= MAX_PARTICIPANTS:
                raise _invalid(f"A challenge takes {MIN_PARTICIPANTS} to {MAX_PARTICIPANTS} participants")
            bad = [p for p in participants if not is_address(p)]
            if bad:
                raise _invalid(f"Invalid participant address: {bad[0]}")
            if len({p.lower() for p in participants}) != len(participants):
                raise _invalid("Participants must be distinct")
            if not times:
                raise _invalid("At least one milestone is required")
            if any(b <= a for a, b in zip(times, times[1:])):
                raise _invalid("Milestone unlock times must be strictly increasing")
            if times[-1] <= self._clock():
                raise _invalid("The last milestone must unlock in the future")

        roster = tuple(to_checksum_address(p) for p in participants) if all(map(is_address, participants)) else ()
        reward = from_wei(total_wei // len(times)) if times else Decimal(0)

        def effect(receipt: Receipt) -> Optional[Challenge]:
            challenge_id = self.ledger.challenge_created_id(receipt)
            if challenge_id is None:
                return None
            try:
                challenge = Challenge(
                    id=challenge_id,
                    name=f"Challenge {challenge_id}",
                    creator=self.session.require_identity(),
                    participants=roster,
                    total_stake=from_wei(total_wei),
                    staked_amount=from_wei(value),
                    track=track,
                    milestones=tuple(
                        Milestone(index=i, unlock_date=t, reward=reward) for i, t in enumerate(times)
                    ),
                    is_active=True,
                    start_date=min(created_at, times[0]),
                    end_date=times[-1],
                    source=Source.LOCAL,
                )
            except InvariantViolation as exc:
                raise StoreInvariantError(challenge_id, str(exc)) from exc
            return self.store.record(challenge)

        async def follow_up(receipt: Receipt, challenge: Optional[Challenge]) -> Optional[Challenge]:
            if challenge is not None:
                return challenge
            # No ChallengeCreated log: the counter holds the newest id
            latest = await self.ledger.challenge_counter()
            return await self.store.fetch(latest)

        return await self.execute(TxRequest(
            method="createChallenge",
            args=(total_wei, list(roster), times),
            value=value,
            validate=validate,
            effect=effect,
            follow_up=follow_up,
        ))

    async def join_challenge(self, challenge_id: int, stake: Amount = 0) -> TxOutcome:
        value, value_error = _parse_amount(stake)

        def validate() -> None:
            if value_error:
                raise _invalid(value_error)
            challenge = self._cached(challenge_id)
            identity = self.session.require_identity()
            if not challenge.is_active:
                raise _invalid(f"Challenge {challenge_id} is not active")
            if not challenge.has_participant(identity) and challenge.is_full:
                raise _invalid(f"Challenge {challenge_id} is full")
            if challenge.staked_amount + from_wei(value) > challenge.total_stake:
                raise _invalid(f"Stake would exceed the total stake of challenge {challenge_id}")

        def effect(receipt: Receipt) -> Challenge:
            identity = self.session.require_identity()
            challenge = self.store.get(challenge_id)
            joining = None if (challenge and challenge.has_participant(identity)) else identity
            return self._apply(challenge_id, ChallengeDelta(staked_increase=from_wei(value), new_participant=joining))

        return await self.execute(TxRequest(
            method="joinChallenge",
            args=(challenge_id,),
            value=value,
            challenge_id=challenge_id,
            validate=validate,
            effect=effect,
        ))

    async def complete_milestone(
        self,
        challenge_id: int,
        milestone_index: int,
        quiz: Optional[QuizResult] = None,
    ) -> TxOutcome:
        """Complete a milestone; a supplied quiz result must be a pass."""

        def validate() -> None:
            if quiz is not None and not quiz.passed:
                raise _invalid(f"Quiz not passed (score {quiz.score:g}%)")
            challenge = self._cached(challenge_id)
            if not 0 <= milestone_index < len(challenge.milestones):
                raise _invalid(f"Challenge {challenge_id} has no milestone {milestone_index}")
            if challenge.milestones[milestone_index].is_completed:
                raise _invalid(f"Milestone {milestone_index} is already completed")
            if not challenge.is_unlocked(milestone_index, self._clock()):
                raise _invalid(f"Milestone {milestone_index} is still locked")
            if not challenge.involves(self.session.require_identity()):
                raise _invalid(f"You are not part of challenge {challenge_id}")

        def effect(receipt: Receipt) -> Challenge:
            winner = self.ledger.milestone_winner(receipt) or self.session.require_identity()
            return self._apply(
                challenge_id, ChallengeDelta(completed_milestone=milestone_index, winner=winner)
            )

        return await self.execute(TxRequest(
            method="completeMilestone",
            args=(challenge_id, milestone_index),
            challenge_id=challenge_id,
            validate=validate,
            effect=effect,
        ))

    async def _refresh_balance(self, receipt: Receipt, challenge: Optional[Challenge]) -> None:
        await self.session.refresh_balance()

    async def deposit(self, amount: Amount) -> TxOutcome:
        value, value_error = _parse_amount(amount)

        def validate() -> None:
            if value_error:
                raise _invalid(value_error)
            if value <= 0:
                raise _invalid("Deposit amount must be positive")

        return await self.execute(TxRequest(
            method="deposit", value=value, validate=validate, follow_up=self._refresh_balance,
        ))

    async def withdraw(self, amount: Amount) -> TxOutcome:
        wei, value_error = _parse_amount(amount)

        def validate() -> None:
            if value_error:
                raise _invalid(value_error)
            if wei <= 0:
                raise _invalid("Withdrawal amount must be positive")

        return await self.execute(TxRequest(
            method="withdraw", args=(wei,), validate=validate, follow_up=self._refresh_balance,
        ))
