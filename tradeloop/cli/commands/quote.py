"""Market-making quote preview CLI command."""

from __future__ import annotations

import asyncio

import typer

from tradeloop.config import settings
from tradeloop.engine.market_maker import QuoteGenerator
from tradeloop.engine.snapshot import SnapshotAggregator

from ..core import app, log
from ..utils import build_adapters


@app.command("quote")
def quote(help_verbose: bool = False) -> None:
    """Print the quotes the market maker would place right now."""

    if help_verbose:
        app.print_verbose_help_for("quote")
        raise SystemExit(0)

    mm = settings.market_maker
    if mm is None:
        log.error("MARKET_MAKER section is not configured")
        raise typer.Exit(code=2)

    adapters = build_adapters(settings)
    aggregator = SnapshotAggregator(
        adapters,
        depth=settings.orderbook_depth,
        timeout=settings.venue_timeout_secs,
        max_concurrency=settings.max_concurrency,
    )
    result = asyncio.run(aggregator.collect(mm.venues))
    generator = QuoteGenerator(mm)
    for venue_id in mm.venues:
        snap = result.snapshots.get(venue_id)
        if snap is None:
            typer.echo(f"[{venue_id}] ERROR: {result.failures.get(venue_id, 'unknown')}")
            continue
        bid, ask, spread = generator.quote_prices(snap)
        typer.echo(
            f"[{venue_id}] bid={bid:.8f} ask={ask:.8f} "
            f"spread={spread * 100:.4f}% size={mm.order_size}"
        )


__all__ = ["quote"]
