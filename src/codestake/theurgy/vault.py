"""
Theurgy Vault - Native balance held by the CodeStake contract.

Commands:
- balance:  Show the wallet balance and the balance credited in the contract
- deposit:  Send EDU into the contract
- withdraw: Take EDU out of the contract
"""

from __future__ import annotations

import click

from ..context import StakeContext
from ..pneuma.errors import LedgerError
from .common import report_outcome, run, yes_option


@click.group()
def vault() -> None:
    """Deposit into and withdraw from the CodeStake contract.

    \b
    Examples:
      codestake vault balance
      codestake vault deposit 0.5
      codestake vault withdraw 0.25 --yes
    """


@vault.command()
def balance() -> None:
    """Show wallet and contract balances."""

    async def action(ctx: StakeContext):
        identity = ctx.session.require_identity()
        wallet_balance = await ctx.session.balance()
        try:
            summary = await ctx.ledger.ledger_summary(identity)
        except LedgerError as exc:
            click.secho(f"  Contract balance unavailable: {exc.kind.value}", fg="yellow")
            summary = None
        return identity, wallet_balance, summary, ctx.network

    identity, wallet_balance, summary, network = run(action)
    symbol = network.currency.symbol

    click.echo(f"=== {symbol} Balance ({network.name}) ===")
    click.echo()
    click.echo(click.style("  Address:  ", dim=True) + identity)
    click.echo(click.style("  Wallet:   ", dim=True) + f"{wallet_balance} {symbol}")
    if summary is not None:
        click.echo(click.style("  Contract: ", dim=True) + f"{summary.balance} {symbol}")
    click.echo()


@vault.command()
@click.argument("amount")
@yes_option
def deposit(amount: str, yes: bool) -> None:
    """Deposit AMOUNT (EDU) into the contract."""

    async def action(ctx: StakeContext):
        outcome = await ctx.pipeline.deposit(amount)
        return outcome, ctx.network, await ctx.session.balance()

    outcome, network, remaining = run(action, yes=yes)
    click.echo()
    report_outcome(outcome, network)
    click.echo(click.style("    Wallet balance: ", dim=True) + f"{remaining} {network.currency.symbol}")
    click.echo()


@vault.command()
@click.argument("amount")
@yes_option
def withdraw(amount: str, yes: bool) -> None:
    """Withdraw AMOUNT (EDU) from the contract."""

    async def action(ctx: StakeContext):
        outcome = await ctx.pipeline.withdraw(amount)
        return outcome, ctx.network, await ctx.session.balance()

    outcome, network, remaining = run(action, yes=yes)
    click.echo()
    report_outcome(outcome, network)
    click.echo(click.style("    Wallet balance: ", dim=True) + f"{remaining} {network.currency.symbol}")
    click.echo()
