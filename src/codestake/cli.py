"""
CodeStake CLI

Command-line interface for CodeStake: stake on coding challenges and
unlock rewards milestone by milestone on EDU Chain.

Identity = ECDSA/secp256k1 wallet stored in ~/.codestake/.env.

Commands:
  genesis   - Create a wallet identity and default configuration
  whoami    - Show current wallet address
  info      - Show system information
  network   - Show / switch the wallet network
  create    - Create a challenge
  join      - Join a challenge
  complete  - Pass a milestone quiz and complete the milestone
  divine    - Show one challenge
  active    - List active challenges
  summary   - Staking totals for the current wallet
  vault     - Deposit / withdraw / balance
"""

from __future__ import annotations

import logging
import sys

import click

from .config import get_contract_address, load_env
from .context import StakeContext
from .pneuma.network import NetworkProfile, network_name
from .sigil.eth import get_address, load_private_key


# ============ Constants ============

VERSION = "0.1.0"


# ============ Banner ============


def _print_banner() -> None:
    """Print the CodeStake CLI banner."""
    border = click.style("  ◆ ═══════════════════════════════════════ ◆", fg="cyan")
    click.echo()
    click.echo(border)
    click.echo()
    click.echo(
        click.style("        C O D E S T A K E", fg="bright_white", bold=True)
        + click.style(f"      v{VERSION}", dim=True)
    )
    click.secho("        ─── Stake. Code. Earn. ───", fg="cyan")
    click.echo()
    click.echo(border)
    click.echo()


# ============ Main CLI Group ============


@click.group(invoke_without_command=True)
@click.version_option(version=VERSION, prog_name="codestake")
@click.option("--verbose", "-v", is_flag=True, help="Log ledger traffic, retries and fallbacks")
@click.pass_context
def cli(ctx: click.Context, verbose: bool) -> None:
    """CodeStake — stake on coding challenges."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )
    if not verbose:
        logging.getLogger("httpx").setLevel(logging.WARNING)
    load_env()
    if ctx.invoked_subcommand is None:
        _print_banner()
        click.echo(ctx.get_help())


# ============ Top-level Commands ============

from .theurgy.common import run
from .theurgy.divine import active, divine, summary
from .theurgy.genesis import genesis
from .theurgy.stake import complete, create, join
from .theurgy.vault import vault

cli.add_command(genesis)
cli.add_command(create)
cli.add_command(join)
cli.add_command(complete)
cli.add_command(divine)
cli.add_command(active)
cli.add_command(summary)
cli.add_command(vault)


# ============ Identity ============


@cli.command()
def whoami() -> None:
    """Show current wallet identity."""
    try:
        pk = load_private_key()
        address = get_address(pk)
        click.echo(f"Address: {address}")
    except (ValueError, FileNotFoundError):
        click.echo("No wallet found.")
        click.echo("Run 'codestake genesis' to create one.")
        sys.exit(1)


# ============ Network ============


@cli.command()
@click.option("--switch", "switch", is_flag=True, help="Ask the wallet to switch to the required network")
def network(switch: bool) -> None:
    """Show the required network and the wallet's current one."""

    async def action(ctx: StakeContext):
        if switch:
            ready = await ctx.guard.ensure_network(ctx.network)
            return ctx.network, ready.chain_id, ready.switched
        return ctx.network, await ctx.guard.current_network(), False

    required, current, switched = run(action)
    matches = current == required.chain_id

    click.echo(click.style("  Required: ", dim=True) + f"{required.name} ({required.chain_id})")
    click.echo(click.style("  RPC:      ", dim=True) + required.rpc_url)
    click.echo(
        click.style("  Wallet:   ", dim=True)
        + f"{network_name(current)} ({current}) "
        + (click.style("✓", fg="green") if matches else click.style("wrong network", fg="red"))
    )
    if switched:
        click.secho("  Switched.", fg="green")
    if not matches:
        click.echo("  Run 'codestake network --switch' to switch.")
        sys.exit(3)


# ============ Info ============


@cli.command()
def info() -> None:
    """Show system information."""
    _print_banner()

    # ── Status ──
    click.secho("  Status ─────────────────────────────────", fg="cyan")
    click.echo()

    try:
        pk = load_private_key()
        address = get_address(pk)
        click.echo(
            click.style("  Address:     ", dim=True)
            + click.style(address, fg="bright_white")
        )
    except (ValueError, FileNotFoundError):
        click.echo(
            click.style("  Address:     ", dim=True)
            + click.style("not initialized", fg="yellow")
            + click.style("  (run: codestake genesis)", dim=True)
        )

    try:
        profile = NetworkProfile.from_env()
        click.echo(
            click.style("  Network:     ", dim=True)
            + click.style(f"{profile.name} ({profile.chain_id})", fg="bright_white")
        )
        click.echo(click.style("  RPC:         ", dim=True) + profile.rpc_url)
    except (ValueError, FileNotFoundError) as exc:
        click.echo(
            click.style("  Network:     ", dim=True)
            + click.style(f"invalid profile ({exc})", fg="red")
        )
    click.echo(click.style("  Contract:    ", dim=True) + get_contract_address())

    click.echo()

    # ── Commands ──
    click.secho("  Commands ───────────────────────────────", fg="cyan")
    click.echo()

    commands = [
        ("genesis ", "Create a wallet identity"),
        ("create  ", "Create a challenge"),
        ("join    ", "Join a challenge"),
        ("complete", "Pass a quiz and complete a milestone"),
        ("divine  ", "Show one challenge"),
        ("active  ", "List active challenges"),
        ("summary ", "Staking totals for this wallet"),
        ("vault   ", "Deposit / withdraw / balance"),
        ("network ", "Show / switch the wallet network"),
        ("whoami  ", "Show current wallet address"),
    ]
    for cmd, desc in commands:
        click.echo(
            click.style("  ", dim=True)
            + click.style(cmd, fg="bright_white", bold=True)
            + click.style("  ◇  ", fg="cyan")
            + click.style(desc, dim=True)
        )

    click.echo()


# ============ Entry Points ============


def main() -> None:
    """CodeStake CLI entry point."""
    # Ensure UTF-8 output on Windows (for Unicode box-drawing / symbols)
    if sys.platform == "win32":
        try:
            sys.stdout.reconfigure(encoding="utf-8")  # type: ignore[union-attr]
            sys.stderr.reconfigure(encoding="utf-8")  # type: ignore[union-attr]
        except (AttributeError, OSError):
            pass  # Fallback: old Python or non-tty
    cli()


if __name__ == "__main__":
    main()
