"""Read-only market snapshot CLI command."""

from __future__ import annotations

import asyncio

import typer

from tradeloop.config import settings
from tradeloop.engine.analytics import cumulative_depth
from tradeloop.engine.snapshot import SnapshotAggregator
from tradeloop.models import MarketSnapshot

from ..core import app, log
from ..utils import build_adapters


def format_snapshot(snap: MarketSnapshot, levels: int = 10) -> str:
    """Return a one-line summary of *snap*."""

    spread = snap.spread_percent
    spread_str = f"{spread * 100:.4f}%" if spread is not None else "n/a"
    bid_depth = cumulative_depth(snap.bids, levels)
    ask_depth = cumulative_depth(snap.asks, levels)
    line = (
        f"[{snap.venue_id}] {snap.symbol} bid={snap.best_bid.price} "
        f"ask={snap.best_ask.price} spread={spread_str} depth={bid_depth}/{ask_depth}"
    )
    for dq in snap.depth_quotes:
        line += f" | {dq.size}: bid~{dq.bid_price} ask~{dq.ask_price}"
    return line


@app.command("snapshot")
def snapshot(
    depth: int | None = typer.Option(
        None, "--depth", help="Levels per side to request (default: ORDERBOOK_DEPTH)."
    ),
    help_verbose: bool = False,
) -> None:
    """Fetch one snapshot per configured venue and print the top of book."""

    if help_verbose:
        app.print_verbose_help_for("snapshot")
        raise SystemExit(0)

    if not settings.venues:
        log.error("no venues configured (VENUES)")
        raise typer.Exit(code=2)

    adapters = build_adapters(settings)
    aggregator = SnapshotAggregator(
        adapters,
        depth=depth or settings.orderbook_depth,
        timeout=settings.venue_timeout_secs,
        max_concurrency=settings.max_concurrency,
        probe_sizes=settings.probe_sizes,
    )
    result = asyncio.run(aggregator.collect())
    for venue in settings.venues:
        snap = result.snapshots.get(venue.id)
        if snap is None:
            typer.echo(f"[{venue.id}] ERROR: {result.failures.get(venue.id, 'unknown')}")
            continue
        typer.echo(format_snapshot(snap, depth or settings.orderbook_depth))


__all__ = ["format_snapshot", "snapshot"]
