"""Fixed-interval tick loop: snapshot, detect, gate, execute, persist, sleep."""

from __future__ import annotations

import asyncio
import logging
import sqlite3
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Mapping, Sequence

from tradeloop.adapters.base import VenueAdapter
from tradeloop.config import RiskConfig
from tradeloop.engine.alerts import LiquidationScanner, ThresholdAlerter
from tradeloop.engine.arbitrage import ArbitrageDetector
from tradeloop.engine.executor import ExecutionDispatcher
from tradeloop.engine.market_maker import QuoteGenerator
from tradeloop.engine.rebalance import RebalancePlanner
from tradeloop.engine.risk import RiskGate, SharedExposure
from tradeloop.engine.snapshot import SnapshotAggregator
from tradeloop.metrics.exporter import (
    ALERTS_TOTAL,
    ERRORS_TOTAL,
    OPPORTUNITIES_TOTAL,
    REJECTIONS_TOTAL,
    STALE_VENUES,
    TICK_LATENCY,
    TICKS_SKIPPED,
    TICKS_TOTAL,
)
from tradeloop.models import (
    SEVERITY_RANK,
    AccountHealth,
    Action,
    Alert,
    Approved,
    DispatchOutcome,
    Executed,
    Failed,
    GateOutcome,
    MarketSnapshot,
    Opportunity,
    QuoteRefresh,
    RebalanceOpportunity,
    Rejected,
    Severity,
    StaleQuotes,
    utcnow,
)
from tradeloop.persistence import db
from tradeloop.state import StateStore

log = logging.getLogger(__name__)

NOTIFY_SEVERITIES = frozenset({"high", "critical"})


def next_deadline(deadline: float, now: float, interval: float) -> tuple[float, int]:
    """Return the next tick deadline on the fixed grid and how many slots were missed.

    A tick that overran its slot is never queued: missed slots are skipped and
    the loop resumes at the first grid point after *now*.
    """

    deadline += interval
    if now <= deadline:
        return deadline, 0
    missed = int((now - deadline) // interval) + 1
    return deadline + missed * interval, missed


async def wait_for_stop(stop: asyncio.Event, timeout: float) -> bool:
    """Sleep up to *timeout* seconds; return ``True`` if *stop* was set."""

    if stop.is_set():
        return True
    if timeout <= 0:
        return False
    try:
        await asyncio.wait_for(stop.wait(), timeout)
    except asyncio.TimeoutError:
        return False
    return True


@dataclass
class TickReport:
    """Counters describing one completed tick."""

    started_at: datetime
    snapshots: int = 0
    failures: dict[str, str] = field(default_factory=dict)
    opportunities: int = 0
    approved: int = 0
    rejected: int = 0
    executed: int = 0
    failed: int = 0
    alerts: int = 0
    errors: dict[str, str] = field(default_factory=dict)
    outcomes: list[DispatchOutcome] = field(default_factory=list)
    latency: float = 0.0


class TickScheduler:
    """Drive one bot instance.

    The scheduler owns the :class:`StateStore`. Within a tick only venue I/O is
    awaited; detection, gating and state updates run sequentially so state is
    never mutated concurrently.
    """

    def __init__(
        self,
        *,
        aggregator: SnapshotAggregator,
        dispatcher: ExecutionDispatcher,
        state: StateStore,
        risk_config: RiskConfig | None = None,
        risk_gate: RiskGate | None = None,
        arbitrage: ArbitrageDetector | None = None,
        market_maker: QuoteGenerator | None = None,
        rebalancer: RebalancePlanner | None = None,
        alerter: ThresholdAlerter | None = None,
        liquidation: LiquidationScanner | None = None,
        interval: float = 5.0,
        error_backoff: float = 5.0,
        failure_alert_after: int = 3,
        alert_retention_secs: float = 86_400.0,
        alert_auto_ack_secs: float | None = None,
        health_timeout: float = 3.0,
        conn: sqlite3.Connection | None = None,
        notifier: Callable[[Alert], Any] | None = None,
        shared_exposure: SharedExposure | None = None,
        name: str = "tradeloop",
        on_tick: Callable[[TickReport], None] | None = None,
    ) -> None:
        self.aggregator = aggregator
        self.dispatcher = dispatcher
        self.state = state
        self.risk_config = risk_config
        self.risk_gate = risk_gate or RiskGate()
        self.arbitrage = arbitrage
        self.market_maker = market_maker
        self.rebalancer = rebalancer
        self.alerter = alerter
        self.liquidation = liquidation
        self.interval = interval
        self.error_backoff = error_backoff
        self.failure_alert_after = failure_alert_after
        self.alert_retention_secs = alert_retention_secs
        self.alert_auto_ack_secs = alert_auto_ack_secs
        self.health_timeout = health_timeout
        self.conn = conn
        self.notifier = notifier
        self.shared_exposure = shared_exposure
        self.name = name
        self.on_tick = on_tick

    @property
    def adapters(self) -> Mapping[str, VenueAdapter]:
        return self.aggregator.adapters

    # ------------------------------------------------------------------
    # Loop

    async def run(self, stop: asyncio.Event | None = None, *, max_ticks: int | None = None) -> int:
        """Tick until *stop* is set (or *max_ticks* ticks ran); return the tick count.

        Ticks start on a fixed grid of ``interval`` seconds. A tick that fails
        is abandoned, keeping whatever state it already recorded, and the loop
        sleeps ``error_backoff`` seconds before the next attempt.
        """

        stop = stop or asyncio.Event()
        loop = asyncio.get_running_loop()
        deadline = loop.time()
        ticks = 0
        log.info("%s: tick loop starting (interval %.2fs)", self.name, self.interval)
        while not stop.is_set():
            started = loop.time()
            try:
                report = await self.tick()
            except Exception:
                ticks += 1
                TICKS_TOTAL.labels("error").inc()
                log.exception(
                    "%s: tick failed; backing off %.2fs", self.name, self.error_backoff
                )
                if max_ticks is not None and ticks >= max_ticks:
                    break
                if await wait_for_stop(stop, self.error_backoff):
                    break
                deadline = loop.time()
                continue

            ticks += 1
            TICKS_TOTAL.labels("ok").inc()
            TICK_LATENCY.observe(loop.time() - started)
            if self.on_tick is not None:
                self.on_tick(report)
            if max_ticks is not None and ticks >= max_ticks:
                break

            now = loop.time()
            deadline, missed = next_deadline(deadline, now, self.interval)
            if missed:
                TICKS_SKIPPED.inc(missed)
                log.warning(
                    "%s: tick overran interval; skipping %d tick(s)", self.name, missed
                )
            if await wait_for_stop(stop, deadline - now):
                break
        log.info("%s: tick loop stopped after %d tick(s)", self.name, ticks)
        return ticks

    async def tick(self) -> TickReport:
        """Run one full snapshot, detect, gate, execute and persist cycle."""

        loop = asyncio.get_running_loop()
        t0 = loop.time()
        now = utcnow()
        report = TickReport(started_at=now)
        state = self.state

        result = await self.aggregator.collect()
        state.apply_snapshots(result.snapshots, result.failures)
        report.snapshots = len(result.snapshots)
        report.failures = dict(result.failures)
        fresh = state.fresh_snapshots()
        STALE_VENUES.set(len(self.adapters) - len(fresh))

        state.expire_alerts(
            self.alert_retention_secs, auto_ack_secs=self.alert_auto_ack_secs, now=now
        )
        self._venue_failure_alerts(result.failures, now, report)
        if self.alerter is not None:
            for breach in self.alerter.scan(fresh, state):
                self._raise_alert(
                    breach.metric,
                    breach.venue_id,
                    breach.severity,
                    f"{breach.metric} moved {breach.change:.2f} "
                    f"({breach.previous_value:.6g} -> {breach.current_value:.6g})",
                    now,
                    report,
                    value=breach.change,
                )
        if self.liquidation is not None:
            await self._scan_liquidations(fresh, now, report)

        await self.dispatcher.reconcile(state)

        for opportunity, actions in self._proposals(fresh, now, report):
            report.opportunities += 1
            OPPORTUNITIES_TOTAL.labels(opportunity.kind).inc()
            try:
                await self._handle(opportunity, actions, now, report)
            except Exception as exc:
                log.exception(
                    "%s: handling %s opportunity %s failed",
                    self.name,
                    opportunity.kind,
                    opportunity.id,
                )
                ERRORS_TOTAL.labels(self.name, "handle").inc()
                report.errors[opportunity.id] = f"{type(exc).__name__}: {exc}"

        if self.shared_exposure is not None:
            await self.shared_exposure.set_exposure(self.name, state.gross_exposure())
        report.latency = loop.time() - t0
        return report

    # ------------------------------------------------------------------
    # Detection

    def _detector_failed(self, source: str, exc: Exception, report: TickReport) -> None:
        log.exception("%s: %s detector failed", self.name, source)
        ERRORS_TOTAL.labels(source, "detect").inc()
        report.errors[source] = f"{type(exc).__name__}: {exc}"

    def _proposals(
        self, fresh: Mapping[str, MarketSnapshot], now: datetime, report: TickReport
    ) -> list[tuple[Opportunity, list[Action]]]:
        """Return opportunities with their actions in execution order.

        Stale-quote cancellations come first, then arbitrage by rank, then
        rebalancing, then new quotes. A detector that raises loses its own
        proposals for this tick only; the failure lands in ``report.errors``.
        """

        cancels: list[tuple[Opportunity, list[Action]]] = []
        quotes: list[tuple[Opportunity, list[Action]]] = []
        if self.market_maker is not None:
            for venue_id in self.market_maker.venues:
                try:
                    planned = [
                        (opp, self.market_maker.propose(opp))
                        for opp in self.market_maker.plan(venue_id, self.state, now)
                    ]
                except Exception as exc:
                    self._detector_failed(f"market_maker:{venue_id}", exc, report)
                    continue
                for opp, actions in planned:
                    target = cancels if isinstance(opp, StaleQuotes) else quotes
                    target.append((opp, actions))

        ordered = list(cancels)
        if self.arbitrage is not None:
            try:
                ordered += [
                    (opp, self.arbitrage.propose(opp))
                    for opp in self.arbitrage.detect(fresh, self.state)
                ]
            except Exception as exc:
                self._detector_failed("arbitrage", exc, report)
        if self.rebalancer is not None:
            try:
                ordered += [
                    (opp, self.rebalancer.propose(opp))
                    for opp in self.rebalancer.plan(fresh, self.state, now)
                ]
            except Exception as exc:
                self._detector_failed("rebalance", exc, report)
        ordered.extend(quotes)
        return ordered

    async def _scan_liquidations(
        self, fresh: Mapping[str, MarketSnapshot], now: datetime, report: TickReport
    ) -> None:
        accounts: list[AccountHealth] = []
        for venue_id in fresh:
            adapter = self.adapters[venue_id]
            try:
                accounts.extend(
                    await asyncio.wait_for(
                        asyncio.to_thread(adapter.fetch_account_health, venue_id),
                        self.health_timeout,
                    )
                )
            except Exception as exc:
                log.warning("account health fetch failed venue=%s: %s", venue_id, exc)
        previous = self.state.update_account_health(accounts)
        scanner = self.liquidation
        for breach in scanner.health_breaches(accounts, previous):
            self._raise_alert(
                breach.metric,
                breach.venue_id,
                breach.severity,
                f"health ratio dropped {breach.change:.2f}% "
                f"({breach.previous_value:.4f} -> {breach.current_value:.4f})",
                now,
                report,
                value=breach.current_value,
            )
        for cand in scanner.scan(accounts):
            OPPORTUNITIES_TOTAL.labels(cand.kind).inc()
            self._raise_alert(
                "liquidation",
                f"{cand.venue_id}:{cand.account}",
                scanner.candidate_severity(cand),
                f"account {cand.account} health {cand.health_ratio:.4f}, "
                f"est. bonus {cand.estimated_bonus:.2f} ({cand.risk_level} risk)",
                now,
                report,
                value=cand.estimated_bonus,
            )

    # ------------------------------------------------------------------
    # Gating and dispatch

    async def _check_shared(self, outcome: GateOutcome) -> GateOutcome:
        if self.shared_exposure is None or not isinstance(outcome, Approved):
            return outcome
        action = outcome.action
        if action.kind == "cancel":
            return outcome
        snap = self.state.snapshots.get(action.venue_id)
        price = action.limit_price or (snap.mid_price if snap is not None else None)
        if price is None:
            return outcome
        notional = action.size * price
        if await self.shared_exposure.try_reserve(self.name, notional):
            return outcome
        return Rejected(action, "shared_exposure", f"shared exposure limit reached ({notional:.2f})")

    async def _handle(
        self,
        opportunity: Opportunity,
        actions: Sequence[Action],
        now: datetime,
        report: TickReport,
    ) -> None:
        if not actions:
            return
        if self.risk_config is None:
            log.warning("no risk configuration; dropping %s opportunity", opportunity.kind)
            return
        gate = self.risk_gate
        cfg = self.risk_config

        if opportunity.atomic:
            outcomes = [
                await self._check_shared(gate.evaluate(a, self.state, cfg)) for a in actions
            ]
            rejected = [o for o in outcomes if isinstance(o, Rejected)]
            for r in rejected:
                self._reject(r, now, report)
            if rejected:
                log.info(
                    "dropping %s opportunity %s: %d of %d leg(s) rejected",
                    opportunity.kind,
                    opportunity.id,
                    len(rejected),
                    len(actions),
                )
                return
            for outcome in outcomes:
                report.approved += 1
                result = await self._dispatch(outcome.action, report)
                if isinstance(result, Failed):
                    log.error(
                        "%s opportunity %s: leg failed; remaining legs not sent",
                        opportunity.kind,
                        opportunity.id,
                    )
                    break
            return

        results: list[GateOutcome] = []
        for action in actions:
            outcome = await self._check_shared(gate.evaluate(action, self.state, cfg))
            results.append(outcome)
            if isinstance(outcome, Rejected):
                self._reject(outcome, now, report)
                continue
            report.approved += 1
            result = await self._dispatch(action, report)
            if (
                isinstance(result, Executed)
                and isinstance(opportunity, RebalanceOpportunity)
                and opportunity.reason == "rebalance"
            ):
                self.state.last_rebalance = now
        if isinstance(opportunity, QuoteRefresh) and self.market_maker is not None:
            self.market_maker.on_gate_results(opportunity.venue_id, self.state, results)

    async def _dispatch(self, action: Action, report: TickReport) -> DispatchOutcome:
        outcome = await self.dispatcher.dispatch(action, self.state)
        report.outcomes.append(outcome)
        if isinstance(outcome, (Executed, Failed)):
            if isinstance(outcome, Executed):
                report.executed += 1
            else:
                report.failed += 1
            if outcome.trade is not None:
                self._persist(db.insert_trade, outcome.trade)
            elif isinstance(outcome, Failed) and outcome.audit is not None:
                self._persist(db.insert_rejection, outcome.audit)
        return outcome

    def _reject(self, rejected: Rejected, now: datetime, report: TickReport) -> None:
        entry = self.state.record_rejection(rejected, now)
        report.rejected += 1
        REJECTIONS_TOTAL.labels(rejected.check).inc()
        self._persist(db.insert_rejection, entry)

    # ------------------------------------------------------------------
    # Alerts and persistence

    def _venue_failure_alerts(
        self, failures: Mapping[str, str], now: datetime, report: TickReport
    ) -> None:
        for venue_id, kind in failures.items():
            count = self.state.failures.get(venue_id, 0)
            if count >= self.failure_alert_after:
                self._raise_alert(
                    "venue_unavailable",
                    venue_id,
                    "high",
                    f"{count} consecutive failed ticks (last: {kind})",
                    now,
                    report,
                )

    def _raise_alert(
        self,
        category: str,
        venue_id: str,
        severity: Severity,
        message: str,
        now: datetime,
        report: TickReport,
        *,
        value: Any = None,
    ) -> Alert:
        existing = self.state.active_alert(category, venue_id)
        previous: str | None = existing.severity if existing is not None else None
        alert, created = self.state.upsert_alert(
            category, venue_id, severity, message, value=value, now=now
        )
        escalated = created or SEVERITY_RANK[severity] > SEVERITY_RANK[previous or "low"]
        if created or severity != previous:
            ALERTS_TOTAL.labels(category, severity).inc()
            report.alerts += 1
            log.warning("alert [%s] %s@%s: %s", severity, category, venue_id, message)
        self._persist(db.upsert_alert, alert)
        if self.notifier is not None and escalated and severity in NOTIFY_SEVERITIES:
            self.notifier(alert)
        return alert

    def _persist(self, fn: Callable[[sqlite3.Connection, Any], Any], record: Any) -> None:
        if self.conn is None:
            return
        try:
            fn(self.conn, record)
        except sqlite3.Error as exc:
            log.error("audit write failed (%s): %s", fn.__name__, exc)
