"""Tick-over-tick threshold alerting and liquidation candidate scanning.

Both scanners compare the current reading with the immediately preceding one
for the same venue or account; there is no smoothing across ticks.
"""

from __future__ import annotations

import logging
from decimal import Decimal
from typing import Iterable, Mapping

from tradeloop.config import AlertConfig, Breakpoints, LiquidationConfig
from tradeloop.engine.analytics import cumulative_depth, percent_change
from tradeloop.models import (
    AccountHealth,
    LiquidationCandidate,
    MarketSnapshot,
    Severity,
    ThresholdBreach,
)
from tradeloop.state import StateStore

log = logging.getLogger(__name__)

ZERO = Decimal(0)
HUNDRED = Decimal(100)


def severity_for(value: Decimal, breakpoints: Breakpoints) -> Severity | None:
    """Map *value* onto ``(medium, high, critical)`` breakpoints.

    Returns ``None`` below the first breakpoint.
    """

    medium, high, critical = breakpoints
    if value >= critical:
        return "critical"
    if value >= high:
        return "high"
    if value >= medium:
        return "medium"
    return None


class ThresholdAlerter:
    """Detect price, spread and liquidity moves between consecutive snapshots.

    Units match the breakpoints in :class:`~tradeloop.config.AlertConfig`:
    price change and liquidity drop in percent, spread change in percentage
    points.
    """

    def __init__(self, config: AlertConfig) -> None:
        self.config = config

    def _liquidity(self, snap: MarketSnapshot) -> Decimal:
        n = self.config.depth_levels
        return cumulative_depth(snap.bids, n) + cumulative_depth(snap.asks, n)

    def compare(self, previous: MarketSnapshot, current: MarketSnapshot) -> list[ThresholdBreach]:
        """Return breaches between two snapshots of the same venue."""

        cfg = self.config
        venue_id = current.venue_id
        breaches: list[ThresholdBreach] = []

        prev_mid, cur_mid = previous.mid_price, current.mid_price
        if prev_mid and cur_mid:
            change = abs(percent_change(prev_mid, cur_mid)) * HUNDRED
            sev = severity_for(change, cfg.price_breakpoints)
            if sev:
                breaches.append(
                    ThresholdBreach(venue_id, "price", prev_mid, cur_mid, change, sev)
                )

        prev_spread, cur_spread = previous.spread_percent, current.spread_percent
        if prev_spread is not None and cur_spread is not None:
            change = abs(cur_spread - prev_spread) * HUNDRED
            sev = severity_for(change, cfg.spread_breakpoints)
            if sev:
                breaches.append(
                    ThresholdBreach(venue_id, "spread", prev_spread, cur_spread, change, sev)
                )

        prev_liq, cur_liq = self._liquidity(previous), self._liquidity(current)
        if prev_liq > 0 and cur_liq < prev_liq:
            drop = -percent_change(prev_liq, cur_liq) * HUNDRED
            sev = severity_for(drop, cfg.liquidity_breakpoints)
            if sev:
                breaches.append(
                    ThresholdBreach(venue_id, "liquidity", prev_liq, cur_liq, drop, sev)
                )
        return breaches

    def scan(
        self, snapshots: Mapping[str, MarketSnapshot], state: StateStore
    ) -> list[ThresholdBreach]:
        """Compare each fresh snapshot with the venue's previous snapshot."""

        out: list[ThresholdBreach] = []
        for venue_id in sorted(snapshots):
            current = snapshots[venue_id]
            previous = state.previous.get(venue_id)
            if current.stale or previous is None or previous is current:
                continue
            out.extend(self.compare(previous, current))
        return out


class LiquidationScanner:
    """Flag under-collateralised accounts and sharp health-ratio drops.

    Account health comes from the venue adapter's feed; candidates are
    reported as alerts, never executed.
    """

    def __init__(self, config: LiquidationConfig) -> None:
        self.config = config

    def deficit_points(self, health_ratio: Decimal) -> Decimal:
        return (self.config.liquidation_threshold - health_ratio) * HUNDRED

    def estimated_bonus(self, account: AccountHealth) -> Decimal:
        """Bonus as a clamped share of position value (5-15% by default)."""

        cfg = self.config
        value = account.position_size * account.price
        rate = self.deficit_points(account.health_ratio) / 10
        rate = min(cfg.max_bonus_rate, max(cfg.min_bonus_rate, rate))
        return value * rate

    def risk_level(self, health_ratio: Decimal) -> str:
        deficit = self.deficit_points(health_ratio)
        if deficit > 20:
            return "low"
        if deficit > 10:
            return "medium"
        return "high"

    def is_profitable(self, candidate: LiquidationCandidate) -> bool:
        """Bonus must beat gas, fit the size cap, and beat 3x gas when high risk."""

        cfg = self.config
        if candidate.estimated_bonus - cfg.gas_per_liquidation <= 0:
            return False
        if candidate.position_size > cfg.max_position_size:
            return False
        if candidate.risk_level == "high":
            return candidate.estimated_bonus > cfg.gas_per_liquidation * 3
        return True

    def scan(self, accounts: Iterable[AccountHealth]) -> list[LiquidationCandidate]:
        """Return profitable candidates among *accounts*."""

        cfg = self.config
        out: list[LiquidationCandidate] = []
        for acct in accounts:
            if acct.health_ratio >= cfg.liquidation_threshold:
                continue
            if acct.position_size < cfg.min_position_size:
                continue
            candidate = LiquidationCandidate(
                venue_id=acct.venue_id,
                account=acct.account,
                health_ratio=acct.health_ratio,
                position_size=acct.position_size,
                estimated_bonus=self.estimated_bonus(acct),
                risk_level=self.risk_level(acct.health_ratio),
            )
            if self.is_profitable(candidate):
                out.append(candidate)
            else:
                log.debug("liquidation candidate %s not profitable", acct.account)
        return out

    def health_breaches(
        self,
        accounts: Iterable[AccountHealth],
        previous: Mapping[str, AccountHealth],
    ) -> list[ThresholdBreach]:
        """Return breaches for health ratios that dropped since the last reading."""

        out: list[ThresholdBreach] = []
        for acct in accounts:
            prior = previous.get(acct.account)
            if prior is None or prior.health_ratio <= 0:
                continue
            if acct.health_ratio >= prior.health_ratio:
                continue
            drop = -percent_change(prior.health_ratio, acct.health_ratio) * HUNDRED
            sev = severity_for(drop, self.config.health_breakpoints)
            if sev:
                out.append(
                    ThresholdBreach(
                        venue_id=acct.venue_id,
                        metric=f"health:{acct.account}",
                        previous_value=prior.health_ratio,
                        current_value=acct.health_ratio,
                        change=drop,
                        severity=sev,
                    )
                )
        return out

    def candidate_severity(self, candidate: LiquidationCandidate) -> Severity:
        return {"low": "critical", "medium": "high", "high": "medium"}[candidate.risk_level]
