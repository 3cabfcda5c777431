"""Two-sided quote generation with pluggable spread adjustments.

Each market-making venue runs a small state machine::

    idle -> quoting -> risk_paused -> quoting

A venue enters ``risk_paused`` when the risk gate rejects one of its quotes on
the position-size or stop-loss check, and returns to ``quoting`` once a later
tick's quotes pass again. While paused, every resting quote on the venue is
cancelled on the next tick.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Callable, Iterable, Mapping, Sequence

from tradeloop.config import MarketMakerConfig, SpreadAdjustmentConfig
from tradeloop.engine.analytics import cumulative_depth, return_volatility
from tradeloop.models import (
    Action,
    GateOutcome,
    MarketSnapshot,
    Opportunity,
    QuoteRefresh,
    Rejected,
    StaleQuotes,
    utcnow,
)
from tradeloop.state import StateStore

log = logging.getLogger(__name__)

ZERO = Decimal(0)

IDLE = "idle"
QUOTING = "quoting"
RISK_PAUSED = "risk_paused"

# Checks whose failure pauses quoting on a venue.
PAUSING_CHECKS = frozenset({"position_limit", "stop_loss"})

SpreadAdjustment = Callable[[Sequence[MarketSnapshot]], Decimal]


def volatility_adjustment(
    multiplier: Any = "1", window: int = 20, cap: Any = "0.02"
) -> SpreadAdjustment:
    """Widen the spread by ``multiplier`` times recent mid-price volatility."""

    mult, limit = Decimal(str(multiplier)), Decimal(str(cap))

    def adjust(history: Sequence[MarketSnapshot]) -> Decimal:
        mids = [s.mid_price for s in list(history)[-window:] if s.mid_price is not None]
        return min(return_volatility(mids) * mult, limit)

    return adjust


def depth_adjustment(
    reference_depth: Any, max_widen: Any = "0.002", levels: int = 5
) -> SpreadAdjustment:
    """Widen the spread as visible depth falls below *reference_depth*.

    Returns ``max_widen`` for an empty book, zero at or above the reference
    depth, and scales linearly in between.
    """

    reference, widen = Decimal(str(reference_depth)), Decimal(str(max_widen))

    def adjust(history: Sequence[MarketSnapshot]) -> Decimal:
        if not history or reference <= 0:
            return ZERO
        snap = history[-1]
        depth = cumulative_depth(snap.bids, levels) + cumulative_depth(snap.asks, levels)
        if depth >= reference:
            return ZERO
        return widen * (reference - depth) / reference

    return adjust


def time_of_day_adjustment(hours: Mapping[Any, Any]) -> SpreadAdjustment:
    """Add a fixed amount during configured UTC hours (``{hour: extra}``)."""

    table = {int(h): Decimal(str(v)) for h, v in hours.items()}

    def adjust(history: Sequence[MarketSnapshot]) -> Decimal:
        if not history:
            return ZERO
        return table.get(history[-1].timestamp.hour, ZERO)

    return adjust


ADJUSTMENTS: dict[str, Callable[..., SpreadAdjustment]] = {
    "volatility": volatility_adjustment,
    "depth": depth_adjustment,
    "time_of_day": time_of_day_adjustment,
}


def build_adjustments(configs: Iterable[SpreadAdjustmentConfig]) -> list[SpreadAdjustment]:
    """Instantiate adjustments from configuration entries."""

    return [ADJUSTMENTS[cfg.name](**cfg.params) for cfg in configs]


class QuoteGenerator:
    """Plan quote cancellations and placements for market-making venues."""

    def __init__(
        self,
        config: MarketMakerConfig,
        adjustments: Sequence[SpreadAdjustment] | None = None,
    ) -> None:
        self.config = config
        self.adjustments = (
            list(adjustments) if adjustments is not None else build_adjustments(config.adjustments)
        )

    @property
    def venues(self) -> list[str]:
        return list(self.config.venues)

    def total_spread(self, history: Sequence[MarketSnapshot]) -> Decimal:
        """Base spread plus every adjustment, as a fraction of mid-price."""

        total = self.config.base_spread
        for adjust in self.adjustments:
            total += adjust(history)
        return max(total, ZERO)

    def quote_prices(
        self, snapshot: MarketSnapshot, history: Sequence[MarketSnapshot] = ()
    ) -> tuple[Decimal, Decimal, Decimal]:
        """Return ``(bid, ask, spread_fraction)`` centred on mid-price."""

        mid = snapshot.mid_price
        if mid is None:
            raise ValueError(f"{snapshot.venue_id}: no mid price")
        spread = self.total_spread(history or (snapshot,))
        half = mid * spread / 2
        return mid - half, mid + half, spread

    def plan(
        self, venue_id: str, state: StateStore, now: datetime | None = None
    ) -> list[Opportunity]:
        """Return this tick's quote opportunities for *venue_id*.

        A :class:`StaleQuotes` batch, when present, always comes first, so its
        cancellations are dispatched before any new quote is placed.
        """

        now = now or utcnow()
        snap = state.snapshots.get(venue_id)
        status = state.quote_states.setdefault(venue_id, IDLE)
        resting = state.orders_for(venue_id)
        if status == RISK_PAUSED:
            stale = resting
        else:
            max_age = timedelta(seconds=2 * self.config.refresh_interval_secs)
            stale = [q for q in resting if now - q.placed_at > max_age]

        planned: list[Opportunity] = []
        if stale:
            planned.append(
                StaleQuotes(venue_id=venue_id, order_ids=tuple(q.order_id for q in stale))
            )
        if snap is None or snap.stale or snap.mid_price is None:
            return planned

        cancelled = {q.order_id for q in stale}
        sides = []
        for side in ("buy", "sell"):
            live = [q for q in resting if q.side == side and q.order_id not in cancelled]
            if len(live) < self.config.max_orders_per_side:
                sides.append(side)
        if not sides:
            return planned

        history = list(state.history.get(venue_id, ())) or [snap]
        bid, ask, spread = self.quote_prices(snap, history)
        planned.append(
            QuoteRefresh(
                venue_id=venue_id,
                bid_price=bid,
                ask_price=ask,
                size=self.config.order_size,
                spread=spread,
                sides=tuple(sides),
            )
        )
        return planned

    def propose(self, opportunity: StaleQuotes | QuoteRefresh) -> list[Action]:
        """Translate a quote opportunity into ordered actions."""

        if isinstance(opportunity, StaleQuotes):
            return [
                Action(
                    kind="cancel",
                    venue_id=opportunity.venue_id,
                    side=None,
                    size=ZERO,
                    rationale=opportunity,
                    order_id=order_id,
                )
                for order_id in opportunity.order_ids
            ]
        prices = {"buy": opportunity.bid_price, "sell": opportunity.ask_price}
        return [
            Action(
                kind="limit",
                venue_id=opportunity.venue_id,
                side=side,
                size=opportunity.size,
                rationale=opportunity,
                limit_price=prices[side],
            )
            for side in opportunity.sides
        ]

    def generate(
        self, venue_id: str, state: StateStore, now: datetime | None = None
    ) -> list[Action]:
        """Plan and propose in one step; cancellations precede placements."""

        actions: list[Action] = []
        for opp in self.plan(venue_id, state, now):
            actions.extend(self.propose(opp))
        return actions

    def on_gate_results(
        self, venue_id: str, state: StateStore, outcomes: Iterable[GateOutcome]
    ) -> str:
        """Advance the venue state machine from this tick's quote gate results."""

        outcomes = [
            o for o in outcomes if isinstance(o.action.rationale, QuoteRefresh)
        ]
        if not outcomes:
            return state.quote_states.setdefault(venue_id, IDLE)
        current = state.quote_states.get(venue_id, IDLE)
        paused = any(
            isinstance(o, Rejected) and o.check in PAUSING_CHECKS for o in outcomes
        )
        if paused:
            new = RISK_PAUSED
        elif any(not isinstance(o, Rejected) for o in outcomes):
            new = QUOTING
        else:
            new = current
        if new != current:
            log.info("market maker %s: %s -> %s", venue_id, current, new)
        state.quote_states[venue_id] = new
        return new
