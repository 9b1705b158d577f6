"""
Genesis - Create a CodeStake wallet identity.

Single entry point for identity initialisation.  Identity is a single
ECDSA/secp256k1 wallet key; the same key signs every challenge
transaction and receives milestone rewards.

Flow:
1. Generate ECDSA wallet if not exists
2. Write default network / contract settings to ~/.codestake/.env
3. Optionally show the on-chain balance (--check-balance)
"""

from __future__ import annotations

import asyncio
import os
import sys

import click
import httpx

from ..config import CODESTAKE_DIR, CODESTAKE_ENV, DEFAULT_CONTRACT_ADDRESS
from ..pneuma.errors import RpcError
from ..pneuma.network import EDU_CHAIN_TESTNET
from ..pneuma.rpc import RpcClient
from ..sigil.eth import (
    generate_eoa,
    get_address,
    load_private_key,
    save_env_values,
    save_private_key,
)
from ..utils import from_wei

# ---- Defaults (EDU Chain testnet) ----
# Baked into genesis so that `codestake genesis` produces a working
# ~/.codestake/.env without any manual editing.
_DEFAULTS: dict[str, str] = {
    "CODESTAKE_RPC": EDU_CHAIN_TESTNET.rpc_url,
    "CHAIN_ID": str(EDU_CHAIN_TESTNET.chain_id),
    "CODESTAKE_CONTRACT_ADDRESS": DEFAULT_CONTRACT_ADDRESS,
}


def _ensure_identity() -> tuple[str, bool]:
    """Ensure ECDSA wallet exists.  Returns (eth_address, created)."""
    CODESTAKE_DIR.mkdir(parents=True, exist_ok=True)

    created = False
    try:
        pk = load_private_key()
        address = get_address(pk)
    except (ValueError, FileNotFoundError):
        pk, address = generate_eoa()
        save_private_key(pk)
        created = True

    # Only adds keys that are missing, so user overrides survive
    save_env_values(_DEFAULTS, overwrite=False)
    for key, value in _DEFAULTS.items():
        os.environ.setdefault(key, value)

    return address, created


async def _read_balance(rpc_url: str, address: str) -> int:
    async with RpcClient(rpc_url) as client:
        return await client.get_balance(address)


@click.command()
@click.option(
    "--check-balance",
    is_flag=True,
    help="Query the RPC endpoint for the address balance",
)
def genesis(check_balance: bool) -> None:
    """Create a wallet identity and default configuration.

    Generates a wallet key (unless one exists) and writes the EDU Chain
    testnet defaults to ~/.codestake/.env.  Existing values are kept.
    """
    click.echo()
    click.echo(
        click.style("  ◆ ", fg="cyan")
        + click.style("Genesis", fg="bright_white", bold=True)
        + click.style(" ─── Create a CodeStake identity", fg="cyan")
    )
    click.echo()

    click.secho("  Preparing identity...", fg="bright_white")
    address, created = _ensure_identity()

    click.echo(click.style("    Address: ", dim=True) + click.style(address, fg="bright_white"))
    click.echo(click.style("    Config:  ", dim=True) + click.style(str(CODESTAKE_ENV), fg="bright_white"))
    click.echo(click.style("    Wallet:  ", dim=True) + ("created" if created else "existing"))
    click.echo()
    if created:
        click.secho("    IMPORTANT: Back up ~/.codestake/.env — loss is irreversible.", fg="yellow", bold=True)
        click.echo()

    if check_balance:
        rpc_url = os.environ.get("CODESTAKE_RPC", EDU_CHAIN_TESTNET.rpc_url)
        try:
            balance = asyncio.run(_read_balance(rpc_url, address))
        except (httpx.HTTPError, RpcError) as exc:
            click.secho(f"    Balance check failed: {exc}", fg="red")
            sys.exit(1)
        click.echo(click.style("    Balance: ", dim=True) + f"{from_wei(balance)} {EDU_CHAIN_TESTNET.currency.symbol}")
        click.echo()

    click.echo(
        click.style("  ◆ ", fg="green")
        + click.style("Genesis Complete", fg="green", bold=True)
    )
    click.echo()
    click.secho("  Next steps:", fg="cyan")
    click.echo(f"    1. Fund your address with testnet EDU: {address}")
    click.echo("    2. Run 'codestake active' to list open challenges")
    click.echo("    3. Run 'codestake create --help' to start your own")
    click.echo()
