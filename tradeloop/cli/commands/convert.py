"""Conversion estimate CLI command."""

from __future__ import annotations

from decimal import Decimal, InvalidOperation

import typer

from tradeloop.config import settings
from tradeloop.errors import VenueError

from ..core import app, log
from ..utils import build_adapters

DIRECTIONS = ("base_to_quote", "quote_to_base")


@app.command("convert")
def convert(
    venue: str = typer.Argument(..., help="Configured venue id."),
    amount: str = typer.Argument(..., help="Input amount in the source asset."),
    direction: str = typer.Option(
        "base_to_quote", "--direction", help="base_to_quote or quote_to_base."
    ),
    help_verbose: bool = False,
) -> None:
    """Estimate the output of converting AMOUNT on VENUE against the live book."""

    if help_verbose:
        app.print_verbose_help_for("convert")
        raise SystemExit(0)

    if direction not in DIRECTIONS:
        log.error("direction must be one of %s", ", ".join(DIRECTIONS))
        raise typer.Exit(code=2)
    try:
        qty = Decimal(amount)
    except InvalidOperation:
        log.error("amount %r is not a number", amount)
        raise typer.Exit(code=2)
    if qty <= 0:
        log.error("amount must be positive")
        raise typer.Exit(code=2)
    try:
        settings.venue(venue)
    except KeyError:
        log.error("unknown venue %r", venue)
        raise typer.Exit(code=2)

    adapter = build_adapters(settings)[venue]
    try:
        conv = adapter.estimate_conversion(venue, qty, direction)
    except VenueError as exc:
        typer.echo(f"[{venue}] ERROR: {exc}")
        raise typer.Exit(code=1)

    note = "" if conv.filled else " (partial: book too thin)"
    typer.echo(
        f"[{venue}] {direction} in={conv.input_amount} out={conv.output_amount} "
        f"rate={conv.rate:.8f}{note}"
    )


__all__ = ["convert"]
