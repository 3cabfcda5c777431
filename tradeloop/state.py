"""In-memory state owned by one running bot instance.

The tick loop is the only writer. Detectors, the risk gate and the dispatcher
receive the store explicitly; anything outside the loop (reporting, CLI) works
from :meth:`StateStore.view`, a detached read-only copy.
"""

from __future__ import annotations

import copy
import logging
from collections import deque
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from types import MappingProxyType
from typing import Iterable, Mapping

from tradeloop.models import (
    SEVERITY_RANK,
    AccountHealth,
    Action,
    Alert,
    AuditEntry,
    MarketSnapshot,
    Position,
    Rejected,
    RestingQuote,
    Severity,
    TradeRecord,
    utcnow,
)

log = logging.getLogger(__name__)

ZERO = Decimal(0)


@dataclass(frozen=True)
class StateView:
    """Detached, read-only copy of :class:`StateStore` contents."""

    positions: Mapping[str, Position]
    open_orders: Mapping[str, RestingQuote]
    alerts: tuple[Alert, ...]
    trades: tuple[TradeRecord, ...]
    audit: tuple[AuditEntry, ...]
    snapshots: Mapping[str, MarketSnapshot]
    cash: Decimal


class StateStore:
    """Positions, open orders, alerts and trade history for one bot."""

    def __init__(
        self,
        *,
        cash: Decimal = ZERO,
        trade_retention: int = 1000,
        audit_retention: int = 1000,
        history_size: int = 100,
    ) -> None:
        self.cash = cash
        self.positions: dict[str, Position] = {}
        self.open_orders: dict[str, RestingQuote] = {}
        self.alerts: list[Alert] = []
        self.trades: deque[TradeRecord] = deque(maxlen=trade_retention)
        self.audit: deque[AuditEntry] = deque(maxlen=audit_retention)
        self.snapshots: dict[str, MarketSnapshot] = {}
        self.previous: dict[str, MarketSnapshot] = {}
        self.history: dict[str, deque[MarketSnapshot]] = {}
        self.history_size = history_size
        self.failures: dict[str, int] = {}
        self.account_health: dict[str, AccountHealth] = {}
        self.quote_states: dict[str, str] = {}
        self.last_rebalance: datetime | None = None

    # ------------------------------------------------------------------
    # Market data

    def apply_snapshots(
        self,
        snapshots: Mapping[str, MarketSnapshot],
        failed: Iterable[str] = (),
    ) -> None:
        """Install this tick's snapshots and mark failed venues stale.

        The prior snapshot for each refreshed venue moves to :attr:`previous`
        so alerting compares against exactly one earlier view. Positions on
        refreshed venues are re-marked to the new mid-price.
        """

        for venue_id, snap in snapshots.items():
            prior = self.snapshots.get(venue_id)
            if prior is not None:
                self.previous[venue_id] = prior
            self.snapshots[venue_id] = snap
            self.failures[venue_id] = 0
            hist = self.history.get(venue_id)
            if hist is None:
                hist = self.history[venue_id] = deque(maxlen=self.history_size)
            hist.append(snap)
            mid = snap.mid_price
            pos = self.positions.get(venue_id)
            if pos is not None and mid is not None:
                pos.remark(mid)
        for venue_id in failed:
            self.failures[venue_id] = self.failures.get(venue_id, 0) + 1
            current = self.snapshots.get(venue_id)
            if current is not None and not current.stale:
                self.snapshots[venue_id] = current.mark_stale()

    def fresh_snapshots(self) -> dict[str, MarketSnapshot]:
        """Return snapshots that were refreshed on the latest tick."""

        return {k: v for k, v in self.snapshots.items() if not v.stale}

    def update_account_health(self, accounts: Iterable[AccountHealth]) -> dict[str, AccountHealth]:
        """Store the latest health readings; return the readings they replace."""

        prior = dict(self.account_health)
        for acct in accounts:
            self.account_health[acct.account] = acct
        return prior

    # ------------------------------------------------------------------
    # Positions and trades

    def position(self, bucket: str) -> Position:
        """Return the position for *bucket*, creating an empty one if needed."""

        pos = self.positions.get(bucket)
        if pos is None:
            pos = self.positions[bucket] = Position(bucket=bucket)
            snap = self.snapshots.get(bucket)
            if snap is not None and snap.mid_price is not None:
                pos.remark(snap.mid_price)
        return pos

    def position_size(self, bucket: str) -> Decimal:
        pos = self.positions.get(bucket)
        return pos.size if pos is not None else ZERO

    def record_trade(self, trade: TradeRecord) -> None:
        """Append *trade*; confirmed trades also move position and cash."""

        self.trades.append(trade)
        if not trade.confirmed:
            return
        self.position(trade.venue_id).apply_fill(
            trade.side, trade.size, trade.price, trade.fees
        )
        notional = trade.size * trade.price
        if trade.side == "buy":
            self.cash -= notional + trade.fees
        else:
            self.cash += notional - trade.fees

    def reset_position(self, bucket: str) -> None:
        """Explicitly zero *bucket*; realized PnL history is discarded."""

        self.positions.pop(bucket, None)

    def portfolio_value(self, buckets: Iterable[str] | None = None) -> Decimal:
        """Cash plus marked value of *buckets* (all positions when omitted)."""

        keys = self.positions.keys() if buckets is None else buckets
        total = self.cash
        for key in keys:
            pos = self.positions.get(key)
            if pos is not None:
                total += pos.value
        return total

    def gross_exposure(self) -> Decimal:
        return sum((abs(p.value) for p in self.positions.values()), ZERO)

    # ------------------------------------------------------------------
    # Resting orders

    def track_order(self, quote: RestingQuote) -> None:
        self.open_orders[quote.order_id] = quote

    def forget_order(self, order_id: str | None) -> RestingQuote | None:
        if order_id is None:
            return None
        return self.open_orders.pop(order_id, None)

    def orders_for(self, venue_id: str) -> list[RestingQuote]:
        return [q for q in self.open_orders.values() if q.venue_id == venue_id]

    # ------------------------------------------------------------------
    # Alerts and audit

    def active_alert(self, category: str, venue_id: str) -> Alert | None:
        """Return the unacknowledged alert for ``(category, venue_id)`` if any."""

        for alert in self.alerts:
            if alert.key == (category, venue_id) and not alert.acknowledged:
                return alert
        return None

    def upsert_alert(
        self,
        category: str,
        venue_id: str,
        severity: Severity,
        message: str,
        *,
        value: Decimal | None = None,
        now: datetime | None = None,
    ) -> tuple[Alert, bool]:
        """Create an alert or update the active one for the same key in place.

        Returns
        -------
        tuple[Alert, bool]
            The alert and ``True`` when it was newly created.
        """

        now = now or utcnow()
        existing = self.active_alert(category, venue_id)
        if existing is not None:
            existing.severity = severity
            existing.message = message
            existing.value = value
            existing.updated_at = now
            return existing, False
        alert = Alert(
            category=category,
            venue_id=venue_id,
            severity=severity,
            message=message,
            timestamp=now,
            updated_at=now,
            value=value,
        )
        self.alerts.append(alert)
        return alert, True

    def expire_alerts(
        self,
        retention_secs: float,
        *,
        auto_ack_secs: float | None = None,
        now: datetime | None = None,
    ) -> list[Alert]:
        """Drop alerts older than *retention_secs*; return the dropped alerts.

        Alerts older than *auto_ack_secs* are acknowledged but kept.
        """

        now = now or utcnow()
        cutoff = now - timedelta(seconds=retention_secs)
        expired = [a for a in self.alerts if a.timestamp <= cutoff]
        if expired:
            self.alerts = [a for a in self.alerts if a.timestamp > cutoff]
        if auto_ack_secs is not None:
            ack_cutoff = now - timedelta(seconds=auto_ack_secs)
            for alert in self.alerts:
                if not alert.acknowledged and alert.updated_at <= ack_cutoff:
                    alert.acknowledged = True
        return expired

    def acknowledge(self, alert_id: str) -> bool:
        for alert in self.alerts:
            if alert.id == alert_id:
                alert.acknowledged = True
                return True
        return False

    def record_rejection(self, rejected: Rejected, now: datetime | None = None) -> AuditEntry:
        """Append an audit entry for a rejected action."""

        entry = AuditEntry(
            timestamp=now or utcnow(),
            opportunity_id=rejected.action.opportunity_id,
            opportunity_kind=rejected.action.rationale.kind,
            action_id=rejected.action.id,
            venue_id=rejected.action.venue_id,
            check=rejected.check,
            reason=rejected.reason,
        )
        self.audit.append(entry)
        return entry

    def record_failure(
        self, action: Action, check: str, reason: str, now: datetime | None = None
    ) -> AuditEntry:
        """Append an audit entry for an action that failed without a trade."""

        entry = AuditEntry(
            timestamp=now or utcnow(),
            opportunity_id=action.opportunity_id,
            opportunity_kind=action.rationale.kind,
            action_id=action.id,
            venue_id=action.venue_id,
            check=check,
            reason=reason,
        )
        self.audit.append(entry)
        return entry

    # ------------------------------------------------------------------
    # Read-only access

    def view(self) -> StateView:
        """Return a deep copy safe to hand to code outside the tick loop."""

        return StateView(
            positions=MappingProxyType(copy.deepcopy(self.positions)),
            open_orders=MappingProxyType(dict(self.open_orders)),
            alerts=tuple(copy.deepcopy(self.alerts)),
            trades=tuple(self.trades),
            audit=tuple(self.audit),
            snapshots=MappingProxyType(dict(self.snapshots)),
            cash=self.cash,
        )

    def report(self, recent: int = 10) -> str:
        """Return a Markdown summary of positions, recent trades and alerts."""

        lines = ["# Tradeloop report", ""]
        lines.append(f"Portfolio value: {self.portfolio_value():.2f} (cash {self.cash:.2f})")
        lines.append("")
        lines.append("## Positions")
        lines.append("")
        lines.append("| Bucket | Size | Avg entry | Mark | Realized | Unrealized |")
        lines.append("|---|---|---|---|---|---|")
        for key in sorted(self.positions):
            p = self.positions[key]
            mark = f"{p.mark_price:.6f}" if p.mark_price is not None else "-"
            lines.append(
                f"| {key} | {p.size:.6f} | {p.average_entry_price:.6f} | {mark} "
                f"| {p.realized_pnl:.2f} | {p.unrealized_pnl:.2f} |"
            )
        lines.append("")
        lines.append("## Recent trades")
        lines.append("")
        trades = list(self.trades)[-recent:]
        if not trades:
            lines.append("_none_")
        for t in trades:
            status = "ok" if t.confirmed else f"FAILED ({t.error})"
            lines.append(
                f"- {t.timestamp.isoformat()} {t.venue_id} {t.side} {t.size} @ {t.price} {status}"
            )
        lines.append("")
        lines.append("## Active alerts")
        lines.append("")
        active = [a for a in self.alerts if not a.acknowledged]
        active.sort(key=lambda a: SEVERITY_RANK[a.severity], reverse=True)
        if not active:
            lines.append("_none_")
        for a in active:
            lines.append(f"- [{a.severity}] {a.category}@{a.venue_id}: {a.message}")
        return "\n".join(lines) + "\n"
