"""
Theurgy Stake - Create, join and complete challenges.

Every command goes through the transaction pipeline: the wallet is moved
to the required network, the call is checked locally, gas is estimated,
the signature is requested and the receipt is awaited.
"""

from __future__ import annotations

import sys
from pathlib import Path
from typing import Optional

import click

from ..canon.schemas import SchemaValidationError
from ..context import StakeContext
from ..covenant.evaluator import evaluate, load_rubric, load_submission
from ..covenant.models import Rubric
from ..utils import now
from .common import print_challenge, report_outcome, run, yes_option

DAY = 86400


def _unlock_schedule(unlocks: tuple[int, ...], milestones: int, interval_days: int) -> list[int]:
    """Explicit --unlock values, or ``milestones`` dates ``interval_days`` apart starting now."""
    if unlocks:
        return list(unlocks)
    start = now()
    return [start + i * interval_days * DAY for i in range(milestones)]


@click.command()
@click.option("--total", "total_stake", required=True, help="Total stake of the challenge (EDU)")
@click.option(
    "--participant", "-p", "participants", multiple=True, required=True,
    help="Participant address (2 to 5, repeat the option)",
)
@click.option("--unlock", "unlocks", multiple=True, type=int, help="Milestone unlock time (unix seconds, repeatable)")
@click.option("--milestones", default=4, show_default=True, help="Number of milestones when --unlock is not given")
@click.option("--interval-days", default=7, show_default=True, help="Days between milestones when --unlock is not given")
@click.option("--stake", default="0", show_default=True, help="Value sent with the call (EDU)")
@click.option("--track", default="", help="Track label (JavaScript, Python, Solidity, React, Web3)")
@yes_option
def create(
    total_stake: str,
    participants: tuple[str, ...],
    unlocks: tuple[int, ...],
    milestones: int,
    interval_days: int,
    stake: str,
    track: str,
    yes: bool,
) -> None:
    """Create a new challenge.

    \b
    Examples:
      codestake create --total 1.0 -p 0xAbC... -p 0xDef...
      codestake create --total 2 -p 0xAbC... -p 0xDef... --unlock 1767225600 --unlock 1767830400
    """
    schedule = _unlock_schedule(unlocks, milestones, interval_days)

    async def action(ctx: StakeContext):
        outcome = await ctx.pipeline.create_challenge(
            total_stake, list(participants), schedule, stake=stake, track=track
        )
        return outcome, ctx.network

    outcome, network = run(action, yes=yes)
    click.echo()
    report_outcome(outcome, network)
    if outcome.challenge is not None:
        click.echo()
        print_challenge(outcome.challenge, network.currency.symbol)
    click.echo()


@click.command()
@click.argument("challenge_id", type=int)
@click.option("--stake", default="0", show_default=True, help="Value to stake (EDU)")
@yes_option
def join(challenge_id: int, stake: str, yes: bool) -> None:
    """Join a challenge."""

    async def action(ctx: StakeContext):
        await ctx.store.fetch(challenge_id)
        return await ctx.pipeline.join_challenge(challenge_id, stake), ctx.network

    outcome, network = run(action, yes=yes)
    click.echo()
    report_outcome(outcome, network)
    click.echo()


@click.command()
@click.argument("challenge_id", type=int)
@click.argument("milestone_index", type=int)
@click.option(
    "--answers", "answers_path", required=True, type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="Quiz submission JSON ({\"answers\": {...}, \"code\": \"...\"})",
)
@click.option(
    "--rubric", "rubric_path", type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="Quiz rubric JSON (default: 5 questions, first option correct, 60%, 51+ characters of code)",
)
@yes_option
def complete(challenge_id: int, milestone_index: int, answers_path: Path, rubric_path: Optional[Path], yes: bool) -> None:
    """Complete a milestone after passing its quiz."""
    try:
        submission = load_submission(answers_path)
        if rubric_path:
            rubric = load_rubric(rubric_path)
        else:
            rubric = Rubric.default()
    except SchemaValidationError as exc:
        click.secho(f"ERROR: {exc}", fg="red")
        sys.exit(2)

    result = evaluate(submission, rubric)
    colour = "green" if result.passed else "red"
    click.secho(f"  Quiz score: {result.score:g}% ({'passed' if result.passed else 'not passed'})", fg=colour)
    if not result.passed:
        click.echo(
            f"  Needs {rubric.pass_percentage:g}% and at least {rubric.min_code_length} characters of code."
        )
        sys.exit(2)

    async def action(ctx: StakeContext):
        await ctx.store.fetch(challenge_id)
        return await ctx.pipeline.complete_milestone(challenge_id, milestone_index, result), ctx.network

    outcome, network = run(action, yes=yes)
    click.echo()
    report_outcome(outcome, network)
    click.echo()
