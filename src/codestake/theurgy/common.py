"""
Shared plumbing for commands that talk to the ledger.

Commands are synchronous click callbacks; each one opens a StakeContext
around the local wallet, runs its coroutine with ``asyncio.run`` and turns
a ``LedgerError`` into a red message and the kind's exit code.
"""

from __future__ import annotations

import asyncio
import sys
from typing import Any, Awaitable, Callable, Optional, TypeVar

import click

from ..context import StakeContext
from ..covenant.models import Challenge
from ..pneuma.errors import LedgerError
from ..pneuma.network import NetworkProfile
from ..pneuma.tx import OutcomeStatus, TxOutcome
from ..utils import format_timestamp, from_wei, now, shorten_address

T = TypeVar("T")

yes_option = click.option("--yes", "-y", is_flag=True, help="Sign without asking for confirmation")


def click_approver(tx: dict[str, Any]) -> bool:
    """Signature prompt shown before the local wallet signs."""
    click.echo()
    click.secho("  Signature request", fg="cyan")
    if tx.get("to"):
        click.echo(click.style("    To:    ", dim=True) + tx["to"])
    click.echo(click.style("    Value: ", dim=True) + f"{from_wei(tx.get('value', 0))}")
    click.echo(click.style("    Gas:   ", dim=True) + f"{tx.get('gas', '?')}")
    return click.confirm("  Sign and send?", default=False)


def open_context(yes: bool = False) -> StakeContext:
    try:
        return StakeContext.local(approve=None if yes else click_approver)
    except (ValueError, FileNotFoundError) as exc:
        click.secho(f"ERROR: {exc}", fg="red")
        click.echo("Run 'codestake genesis' first.")
        sys.exit(1)


def run(action: Callable[[StakeContext], Awaitable[T]], *, yes: bool = False) -> T:
    """Connect, run ``action`` and disconnect, exiting on ledger errors."""
    ctx = open_context(yes)

    async def _main() -> T:
        async with ctx:
            return await action(ctx)

    try:
        return asyncio.run(_main())
    except LedgerError as exc:
        click.secho(f"ERROR: {exc}", fg="red")
        sys.exit(exc.exit_code)


def report_outcome(outcome: TxOutcome, network: Optional[NetworkProfile] = None) -> None:
    """Print a pipeline outcome; exit non-zero unless it was confirmed."""
    tx_url = network.tx_url(outcome.tx_hash) if (network and outcome.tx_hash) else None

    if outcome.ok:
        click.secho(f"  {outcome.method} confirmed", fg="green", bold=True)
        if outcome.receipt is not None:
            click.echo(click.style("    Block: ", dim=True) + str(outcome.receipt.block_number))
        click.echo(click.style("    TX:    ", dim=True) + (tx_url or str(outcome.tx_hash)))
        return

    colour = "yellow" if outcome.status is OutcomeStatus.UNKNOWN else "red"
    click.secho(f"  {outcome.method} {outcome.status.value} at {outcome.stage.value}", fg=colour, bold=True)
    if outcome.kind is not None:
        click.echo(click.style("    Kind:  ", dim=True) + outcome.kind.value)
    click.echo(click.style("    Cause: ", dim=True) + outcome.cause)
    if outcome.tx_hash:
        click.echo(click.style("    TX:    ", dim=True) + (tx_url or outcome.tx_hash))
    if outcome.status is OutcomeStatus.UNKNOWN:
        click.echo("    The transaction may still confirm; check it again later.")
    sys.exit(LedgerError(outcome.kind).exit_code if outcome.kind else 1)


def print_challenge(challenge: Challenge, symbol: str = "EDU", at: Optional[int] = None) -> None:
    at = now() if at is None else at
    header = f"  Challenge #{challenge.id}  {challenge.name}"
    click.secho(header, fg="bright_white", bold=True)
    if challenge.is_fallback:
        reason = challenge.fallback_reason.value if challenge.fallback_reason else "unknown"
        click.secho(f"  (placeholder data: ledger read failed with {reason})", fg="yellow")
    click.echo("  " + "─" * 40)
    click.echo(f"  Source:        {challenge.source.value}")
    click.echo(f"  Track:         {challenge.track or '-'}")
    click.echo(f"  Creator:       {challenge.creator}")
    click.echo(f"  Participants:  {', '.join(shorten_address(p) for p in challenge.participants) or '-'}")
    click.echo(f"  Stake:         {challenge.staked_amount} / {challenge.total_stake} {symbol}")
    click.echo(f"  Active:        {'yes' if challenge.is_active else 'no'}")
    click.echo(f"  Starts:        {format_timestamp(challenge.start_date)}")
    click.echo(f"  Ends:          {format_timestamp(challenge.end_date)}")
    click.echo()
    for milestone in challenge.milestones:
        if milestone.is_completed:
            state = click.style("completed", fg="green")
            if milestone.winner:
                state += f" by {shorten_address(milestone.winner)}"
        elif challenge.is_unlocked(milestone.index, at):
            state = click.style("unlocked", fg="cyan")
        else:
            state = click.style("locked", dim=True)
        click.echo(
            f"  [{milestone.index}] {format_timestamp(milestone.unlock_date)}  "
            f"{milestone.reward} {symbol}  {state}"
        )
