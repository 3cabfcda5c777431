"""Risk gate applied to every proposed action before dispatch."""

from __future__ import annotations

import asyncio
import logging
from decimal import Decimal

from tradeloop.config import RiskConfig
from tradeloop.engine.analytics import depth_weighted_price, slippage
from tradeloop.models import (
    Action,
    Approved,
    ArbitrageOpportunity,
    GateOutcome,
    LiquidationCandidate,
    QuoteRefresh,
    RebalanceOpportunity,
    Rejected,
)
from tradeloop.state import StateStore

log = logging.getLogger(__name__)

ZERO = Decimal(0)

CHECK_ORDER = ("position_limit", "min_profit", "stop_loss", "liquidity")


def expected_benefit(action: Action, config: RiskConfig) -> tuple[Decimal, Decimal] | None:
    """Return ``(benefit, minimum)`` for *action*, or ``None`` when not applicable.

    Stop-loss and take-profit exits are exempt: they reduce exposure rather
    than chase profit.
    """

    opp = action.rationale
    if isinstance(opp, ArbitrageOpportunity):
        return opp.net_profit, config.min_profit
    if isinstance(opp, LiquidationCandidate):
        return opp.estimated_bonus, config.min_profit
    if isinstance(opp, RebalanceOpportunity):
        if opp.reason != "rebalance":
            return None
        return opp.amount, config.min_rebalance_value
    if isinstance(opp, QuoteRefresh):
        edge = (opp.ask_price - opp.bid_price) / 2 * opp.size
        return edge, config.min_quote_edge
    return None


class RiskGate:
    """Evaluate actions against configured limits.

    Checks run in a fixed order and stop at the first failure:

    1. ``position_limit``: resulting position stays within ``max_position_size``.
       Limit orders also count same-side orders already resting on the venue.
    2. ``min_profit``: expected net benefit exceeds the minimum for its kind.
    3. ``stop_loss``: realized plus unrealized loss on the bucket is below the
       stop threshold.
    4. ``liquidity``: the book can fill at least ``min_fill_ratio`` of the size,
       within ``max_slippage`` when configured.

    Cancellations always pass. Actions that shrink the absolute position pass
    the position and stop-loss checks so exposure can always be reduced.
    """

    def evaluate(self, action: Action, state: StateStore, config: RiskConfig) -> GateOutcome:
        if action.kind == "cancel":
            return Approved(action)
        for check in CHECK_ORDER:
            reason = getattr(self, f"_check_{check}")(action, state, config)
            if reason is not None:
                log.info(
                    "risk rejected action=%s venue=%s kind=%s check=%s: %s",
                    action.id,
                    action.venue_id,
                    action.rationale.kind,
                    check,
                    reason,
                )
                return Rejected(action, check, reason)
        return Approved(action)

    @staticmethod
    def _resulting_size(action: Action, state: StateStore) -> tuple[Decimal, Decimal]:
        current = state.position_size(action.venue_id)
        signed = action.size if action.side == "buy" else -action.size
        return current, current + signed

    def _reduces(self, action: Action, state: StateStore) -> bool:
        current, resulting = self._resulting_size(action, state)
        return abs(resulting) < abs(current)

    def _check_position_limit(self, action: Action, state: StateStore, config: RiskConfig) -> str | None:
        current, resulting = self._resulting_size(action, state)
        if action.kind == "limit":
            # resting orders on the same side can still fill
            resting = sum(
                (q.size for q in state.orders_for(action.venue_id) if q.side == action.side),
                ZERO,
            )
            resulting += resting if action.side == "buy" else -resting
        if abs(resulting) <= config.max_position_size or abs(resulting) < abs(current):
            return None
        return (
            f"resulting position {resulting} exceeds max {config.max_position_size}"
        )

    def _check_min_profit(self, action: Action, state: StateStore, config: RiskConfig) -> str | None:
        result = expected_benefit(action, config)
        if result is None:
            return None
        benefit, minimum = result
        if benefit > minimum:
            return None
        return f"expected benefit {benefit:.6f} does not exceed minimum {minimum}"

    def _check_stop_loss(self, action: Action, state: StateStore, config: RiskConfig) -> str | None:
        pos = state.positions.get(action.venue_id)
        if pos is None or self._reduces(action, state):
            return None
        loss = -pos.total_pnl
        if loss > config.stop_loss:
            return f"bucket loss {loss:.2f} breached stop {config.stop_loss}"
        return None

    def _check_liquidity(self, action: Action, state: StateStore, config: RiskConfig) -> str | None:
        if action.kind == "limit":
            return None
        snap = state.snapshots.get(action.venue_id)
        if snap is None or snap.stale:
            return "no fresh snapshot for venue"
        levels = snap.asks if action.side == "buy" else snap.bids
        if action.size <= 0:
            return "non-positive size"
        achieved, avg = depth_weighted_price(levels, action.size)
        ratio = achieved / action.size
        if ratio < config.min_fill_ratio:
            return f"achievable fill {ratio:.4f} below minimum {config.min_fill_ratio}"
        if config.max_slippage is not None and avg is not None and levels:
            slip = slippage(levels[0].price, avg, action.side or "buy")
            if slip > config.max_slippage:
                return f"slippage {slip:.6f} exceeds max {config.max_slippage}"
        if action.kind == "swap" and action.limit_price is not None and avg is not None:
            worse = avg > action.limit_price if action.side == "buy" else avg < action.limit_price
            if worse:
                return f"expected price {avg} worse than limit {action.limit_price}"
        return None


class SharedExposure:
    """Aggregate exposure ceiling shared by independent bot instances.

    Each bot reports its own exposure; a reservation succeeds only while the
    sum across bots stays within *limit*. Access is serialised with an
    :class:`asyncio.Lock`.
    """

    def __init__(self, limit: Decimal) -> None:
        self.limit = limit
        self._lock = asyncio.Lock()
        self._exposure: dict[str, Decimal] = {}

    async def try_reserve(self, owner: str, amount: Decimal) -> bool:
        async with self._lock:
            others = sum(
                (v for k, v in self._exposure.items() if k != owner), ZERO
            )
            mine = self._exposure.get(owner, ZERO)
            if others + mine + amount > self.limit:
                return False
            self._exposure[owner] = mine + amount
            return True

    async def set_exposure(self, owner: str, amount: Decimal) -> None:
        async with self._lock:
            self._exposure[owner] = amount

    async def total(self) -> Decimal:
        async with self._lock:
            return sum(self._exposure.values(), ZERO)
