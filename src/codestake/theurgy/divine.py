"""
Theurgy Divine - Read challenge state from the ledger.

- divine:  one challenge with its milestones and where the data came from
- active:  ids of the challenges the contract reports as active
- summary: wallet totals derived from the cached challenges, next to the
           contract's own getWalletSummary figures
"""

from __future__ import annotations

import click

from ..context import StakeContext
from ..covenant.store import FetchError
from ..pneuma.errors import LedgerError
from .common import print_challenge, run


@click.command()
@click.argument("challenge_id", type=int)
def divine(challenge_id: int) -> None:
    """
    Show one challenge.

    Data that could not be read from the ledger is shown as a placeholder
    and marked as such.
    """

    async def action(ctx: StakeContext):
        return await ctx.store.fetch(challenge_id), ctx.network.currency.symbol

    challenge, symbol = run(action)
    click.echo()
    print_challenge(challenge, symbol)
    click.echo()


@click.command()
@click.option("--details", is_flag=True, help="Load and show every active challenge")
def active(details: bool) -> None:
    """List active challenges."""

    async def action(ctx: StakeContext):
        ids = await ctx.store.fetch_active_ids()
        challenges = [await ctx.store.fetch(i) for i in ids] if details else []
        return ids, challenges, ctx.network.currency.symbol

    ids, challenges, symbol = run(action)
    if not ids:
        click.echo("No active challenges.")
        return

    click.echo(f"Active challenges: {len(ids)}")
    if not details:
        for challenge_id in ids:
            click.echo(f"  #{challenge_id}")
        return
    for challenge in challenges:
        click.echo()
        print_challenge(challenge, symbol)
    click.echo()


@click.command()
def summary() -> None:
    """Show staking totals for the current wallet."""

    async def action(ctx: StakeContext):
        identity = ctx.session.require_identity()
        try:
            for challenge_id in await ctx.store.fetch_active_ids():
                await ctx.store.fetch(challenge_id)
        except FetchError as exc:
            click.secho(f"  Could not load active challenges: {exc}", fg="yellow")
        try:
            ledger = await ctx.ledger.ledger_summary(identity)
        except LedgerError as exc:
            click.secho(f"  Contract summary unavailable: {exc.kind.value}", fg="yellow")
            ledger = None
        return identity, ctx.store.wallet_summary(identity), ledger, ctx.network.currency.symbol

    identity, derived, ledger, symbol = run(action)

    click.echo()
    click.secho(f"  Wallet {identity}", fg="bright_white", bold=True)
    click.echo("  " + "─" * 40)
    click.echo(f"  Total staked:          {derived.total_staked} {symbol}")
    click.echo(f"  Ongoing challenges:    {derived.ongoing_challenges}")
    click.echo(f"  Total winnings:        {derived.total_winnings} {symbol}")
    click.echo(f"  Milestones completed:  {derived.milestones_completed}")
    if ledger is not None:
        click.echo()
        click.secho("  Contract view", fg="cyan")
        click.echo(f"  Balance:               {ledger.balance} {symbol}")
        click.echo(f"  Total earned:          {ledger.total_earned} {symbol}")
        click.echo(f"  Total staked:          {ledger.total_staked} {symbol}")
    click.echo()
