"""Allocation rebalancing with optional stop-loss and take-profit exits."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Mapping

from tradeloop.config import BucketConfig, RebalanceConfig
from tradeloop.engine.analytics import allocation_deviation
from tradeloop.models import Action, MarketSnapshot, RebalanceOpportunity, utcnow
from tradeloop.state import StateStore

log = logging.getLogger(__name__)

ZERO = Decimal(0)
ONE = Decimal(1)


class RebalancePlanner:
    """Plan exact-size trades that return each bucket to its target allocation.

    Every bucket in a tick is sized against one total portfolio value computed
    before any trade, so sequential execution cannot let two buckets claim the
    same freed capital. Planning never mutates state; calling :meth:`plan`
    twice on unchanged inputs yields the same result.

    Regular rebalances are spaced at least ``interval_secs`` apart, measured
    from ``state.last_rebalance``. Stop-loss and take-profit exits ignore the
    spacing.
    """

    def __init__(self, config: RebalanceConfig) -> None:
        self.config = config

    def total_value(
        self, snapshots: Mapping[str, MarketSnapshot], state: StateStore
    ) -> Decimal:
        """Cash plus every bucket's inventory valued at its current mid-price."""

        total = state.cash
        for bucket in self.config.buckets:
            snap = snapshots.get(bucket.venue_id)
            size = state.position_size(bucket.venue_id)
            if snap is not None and snap.mid_price is not None:
                total += size * snap.mid_price
            else:
                pos = state.positions.get(bucket.venue_id)
                if pos is not None:
                    total += pos.value
        return total

    def _exit(
        self, bucket: BucketConfig, price: Decimal, state: StateStore, current: Decimal, target: Decimal
    ) -> RebalanceOpportunity | None:
        pos = state.positions.get(bucket.venue_id)
        if pos is None or pos.size <= 0 or pos.average_entry_price <= 0:
            return None
        change = (price - pos.average_entry_price) / pos.average_entry_price
        if bucket.stop_loss is not None and change <= -bucket.stop_loss:
            size, reason = pos.size, "stop_loss"
        elif bucket.take_profit is not None and change >= bucket.take_profit:
            size, reason = pos.size / 2, "take_profit"
        else:
            return None
        log.info(
            "%s triggered on %s: change %.4f from entry %s",
            reason,
            bucket.venue_id,
            change,
            pos.average_entry_price,
        )
        return RebalanceOpportunity(
            venue_id=bucket.venue_id,
            target_value=target,
            current_value=current,
            direction="sell",
            amount=size * price,
            size=size,
            price=price,
            reason=reason,
        )

    def cooling_down(self, state: StateStore, now: datetime | None = None) -> bool:
        """Return ``True`` while the last regular rebalance is too recent."""

        last = state.last_rebalance
        if not self.config.interval_secs or last is None:
            return False
        return (now or utcnow()) - last < timedelta(seconds=self.config.interval_secs)

    def plan(
        self,
        snapshots: Mapping[str, MarketSnapshot],
        state: StateStore,
        now: datetime | None = None,
    ) -> list[RebalanceOpportunity]:
        """Return one opportunity per bucket that needs trading this tick."""

        cooling = self.cooling_down(state, now)
        total = self.total_value(snapshots, state)
        if total <= 0:
            return []
        out: list[RebalanceOpportunity] = []
        for bucket in self.config.buckets:
            snap = snapshots.get(bucket.venue_id)
            if snap is None or snap.stale or snap.mid_price is None:
                continue
            price = snap.mid_price
            current = state.position_size(bucket.venue_id) * price
            target = bucket.target_allocation * total

            exit_opp = self._exit(bucket, price, state, current, target)
            if exit_opp is not None:
                out.append(exit_opp)
                continue
            if cooling:
                continue

            deviation = allocation_deviation(current, bucket.target_allocation, total)
            if deviation == 0:
                continue
            ratio = abs(deviation) / target if target > 0 else ONE
            if ratio <= bucket.threshold:
                continue
            amount = abs(deviation)
            out.append(
                RebalanceOpportunity(
                    venue_id=bucket.venue_id,
                    target_value=target,
                    current_value=current,
                    direction="buy" if deviation < 0 else "sell",
                    amount=amount,
                    size=amount / price,
                    price=price,
                )
            )
        return out

    def propose(self, opportunity: RebalanceOpportunity) -> list[Action]:
        """One market order closing the whole deviation."""

        return [
            Action(
                kind="market",
                venue_id=opportunity.venue_id,
                side=opportunity.direction,
                size=opportunity.size,
                rationale=opportunity,
            )
        ]
