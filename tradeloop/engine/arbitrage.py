"""Cross-venue arbitrage detection over a snapshot set."""

from __future__ import annotations

import logging
from collections import defaultdict
from decimal import Decimal
from itertools import combinations
from typing import Mapping

from tradeloop.config import ArbitrageConfig
from tradeloop.engine.analytics import cross_venue_edge, cumulative_depth
from tradeloop.models import Action, ArbitrageOpportunity, MarketSnapshot
from tradeloop.state import StateStore

log = logging.getLogger(__name__)

ZERO = Decimal(0)


class ArbitrageDetector:
    """Find price gaps between venues trading the same symbol.

    Parameters
    ----------
    config:
        Edge, profit and sizing limits.
    """

    def __init__(self, config: ArbitrageConfig) -> None:
        self.config = config

    def _evaluate(
        self, a: MarketSnapshot, b: MarketSnapshot
    ) -> ArbitrageOpportunity | None:
        cfg = self.config
        mid_a, mid_b = a.mid_price, b.mid_price
        if mid_a is None or mid_b is None or mid_a <= 0 or mid_b <= 0:
            return None
        edge = cross_venue_edge(mid_a, mid_b)
        if edge <= cfg.min_edge:
            return None
        buy, sell = (a, b) if mid_a < mid_b else (b, a)
        buy_liquidity = cumulative_depth(buy.asks, cfg.depth_levels)
        sell_liquidity = cumulative_depth(sell.bids, cfg.depth_levels)
        if buy_liquidity <= 0 or sell_liquidity <= 0:
            log.debug(
                "arbitrage skip %s/%s: zero liquidity on a leg", buy.venue_id, sell.venue_id
            )
            return None

        buy_price = buy.mid_price
        sell_price = sell.mid_price
        size = min(buy_liquidity, sell_liquidity, cfg.max_position_size)
        if cfg.max_notional is not None:
            size = min(size, cfg.max_notional / buy_price)
        if size <= 0:
            return None

        notional = size * buy_price
        gross = notional * edge
        cost = notional * cfg.cost_rate + cfg.gas_cost
        if cfg.include_venue_fees:
            for snap, price in ((buy, buy_price), (sell, sell_price)):
                if snap.trade_params is not None:
                    cost += size * price * snap.trade_params.taker_fee
        net = gross - cost
        if net <= cfg.min_profit:
            log.debug(
                "arbitrage skip %s->%s: net %.4f below min %.4f",
                buy.venue_id,
                sell.venue_id,
                net,
                cfg.min_profit,
            )
            return None
        return ArbitrageOpportunity(
            symbol=buy.symbol,
            buy_venue=buy.venue_id,
            sell_venue=sell.venue_id,
            buy_price=buy_price,
            sell_price=sell_price,
            size_estimate=size,
            gross_edge=edge,
            gross_profit=gross,
            cost=cost,
            net_profit=net,
        )

    def detect(
        self, snapshots: Mapping[str, MarketSnapshot], state: StateStore | None = None
    ) -> list[ArbitrageOpportunity]:
        """Return the top-K opportunities ranked by net profit, best first.

        Only unordered pairs of fresh snapshots with the same symbol are
        compared. Ties keep venue-id order so output is deterministic.
        """

        by_symbol: dict[str, list[MarketSnapshot]] = defaultdict(list)
        for venue_id in sorted(snapshots):
            snap = snapshots[venue_id]
            if not snap.stale:
                by_symbol[snap.symbol].append(snap)

        found: list[ArbitrageOpportunity] = []
        for snaps in by_symbol.values():
            for a, b in combinations(snaps, 2):
                opp = self._evaluate(a, b)
                if opp is not None:
                    found.append(opp)
        found.sort(key=lambda o: o.net_profit, reverse=True)
        return found[: self.config.top_k]

    def propose(self, opportunity: ArbitrageOpportunity) -> list[Action]:
        """Return the buy and sell legs; both must pass the gate or neither runs."""

        return [
            Action(
                kind="market",
                venue_id=opportunity.buy_venue,
                side="buy",
                size=opportunity.size_estimate,
                rationale=opportunity,
            ),
            Action(
                kind="market",
                venue_id=opportunity.sell_venue,
                side="sell",
                size=opportunity.size_estimate,
                rationale=opportunity,
            ),
        ]
