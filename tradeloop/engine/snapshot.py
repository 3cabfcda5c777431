"""Concurrent market snapshot collection with per-venue isolation."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field, replace
from datetime import datetime
from decimal import Decimal
from typing import Iterable, Mapping, Sequence

from tradeloop.adapters.base import VenueAdapter
from tradeloop.engine.analytics import depth_weighted_price
from tradeloop.errors import DataIntegrityError
from tradeloop.metrics.exporter import SNAPSHOT_AGE, VENUE_ERRORS
from tradeloop.models import DepthQuote, MarketSnapshot, PriceLevel, utcnow

log = logging.getLogger(__name__)


def _check_side(venue_id: str, levels: Sequence[PriceLevel], side: str) -> None:
    prev: Decimal | None = None
    for lvl in levels:
        if lvl.price <= 0:
            raise DataIntegrityError(venue_id, f"non-positive {side} price {lvl.price}")
        if lvl.quantity < 0:
            raise DataIntegrityError(venue_id, f"negative {side} quantity {lvl.quantity}")
        if prev is not None:
            ordered = lvl.price < prev if side == "bid" else lvl.price > prev
            if not ordered:
                raise DataIntegrityError(
                    venue_id, f"{side} levels not monotonic at {lvl.price}"
                )
        prev = lvl.price


def validate_snapshot(snapshot: MarketSnapshot) -> MarketSnapshot:
    """Return *snapshot* unchanged or raise :class:`DataIntegrityError`.

    A snapshot is rejected when either side is empty, any price is not positive,
    any quantity is negative, levels are not strictly best-first, or the book
    is crossed.
    """

    venue_id = snapshot.venue_id
    if not snapshot.bids or not snapshot.asks:
        raise DataIntegrityError(venue_id, "one-sided or empty book")
    _check_side(venue_id, snapshot.bids, "bid")
    _check_side(venue_id, snapshot.asks, "ask")
    if snapshot.bids[0].price >= snapshot.asks[0].price:
        raise DataIntegrityError(
            venue_id,
            f"crossed book bid={snapshot.bids[0].price} ask={snapshot.asks[0].price}",
        )
    return snapshot


def depth_quotes(snapshot: MarketSnapshot, sizes: Iterable[Decimal]) -> tuple[DepthQuote, ...]:
    """Return depth-weighted prices for each probe size on both sides."""

    out = []
    for size in sizes:
        bid_filled, bid_price = depth_weighted_price(snapshot.bids, size)
        ask_filled, ask_price = depth_weighted_price(snapshot.asks, size)
        out.append(DepthQuote(size, bid_filled, bid_price, ask_filled, ask_price))
    return tuple(out)


@dataclass
class SnapshotResult:
    """Outcome of one aggregation pass.

    ``failures`` maps venue id to a short failure kind: ``timeout``,
    ``venue_error`` or ``data_integrity``.
    """

    snapshots: dict[str, MarketSnapshot] = field(default_factory=dict)
    failures: dict[str, str] = field(default_factory=dict)
    collected_at: datetime = field(default_factory=utcnow)


class SnapshotAggregator:
    """Fetch every venue concurrently and assemble a partial snapshot set."""

    def __init__(
        self,
        adapters: Mapping[str, VenueAdapter],
        *,
        depth: int = 10,
        timeout: float = 3.0,
        max_concurrency: int = 8,
        probe_sizes: Sequence[Decimal] = (),
    ) -> None:
        self.adapters = dict(adapters)
        self.depth = depth
        self.timeout = timeout
        self.max_concurrency = max_concurrency
        self.probe_sizes = tuple(probe_sizes)

    async def _fetch_one(
        self, venue_id: str, sem: asyncio.Semaphore
    ) -> tuple[str, MarketSnapshot | None, str | None]:
        adapter = self.adapters[venue_id]
        async with sem:
            try:
                snap = await asyncio.wait_for(
                    asyncio.to_thread(adapter.fetch_orderbook, venue_id, self.depth),
                    self.timeout,
                )
            except asyncio.TimeoutError:
                log.warning("snapshot timeout venue=%s after %.2fs", venue_id, self.timeout)
                return venue_id, None, "timeout"
            except Exception as exc:
                log.warning("snapshot failed venue=%s: %s", venue_id, exc)
                return venue_id, None, "venue_error"
        try:
            validate_snapshot(snap)
        except DataIntegrityError as exc:
            log.warning("data integrity: discarding snapshot %s", exc)
            return venue_id, None, "data_integrity"
        if self.probe_sizes:
            snap = replace(snap, depth_quotes=depth_quotes(snap, self.probe_sizes))
        return venue_id, snap, None

    async def collect(self, venue_ids: Iterable[str] | None = None) -> SnapshotResult:
        """Fetch *venue_ids* (all configured venues by default) concurrently.

        A venue that errors, times out or returns malformed data is absent from
        ``snapshots`` and listed in ``failures``; it never affects other venues.
        """

        ids = list(venue_ids) if venue_ids is not None else list(self.adapters)
        sem = asyncio.Semaphore(self.max_concurrency)
        results = await asyncio.gather(*(self._fetch_one(v, sem) for v in ids))
        out = SnapshotResult()
        for venue_id, snap, failure in results:
            if failure is not None:
                out.failures[venue_id] = failure
                VENUE_ERRORS.labels(venue_id, failure).inc()
                continue
            out.snapshots[venue_id] = snap
            age = (out.collected_at - snap.timestamp).total_seconds()
            SNAPSHOT_AGE.labels(venue_id).observe(max(age, 0.0))
        return out
