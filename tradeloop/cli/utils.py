"""Shared helpers used across tradeloop CLI command modules."""

from __future__ import annotations

import logging
import sqlite3
from collections import defaultdict
from typing import Any, Callable

from tradeloop.adapters import CCXTAdapter, VenueAdapter
from tradeloop.config import Settings
from tradeloop.engine.alerts import LiquidationScanner, ThresholdAlerter
from tradeloop.engine.arbitrage import ArbitrageDetector
from tradeloop.engine.executor import ExecutionDispatcher
from tradeloop.engine.market_maker import QuoteGenerator
from tradeloop.engine.rebalance import RebalancePlanner
from tradeloop.engine.risk import SharedExposure
from tradeloop.engine.scheduler import TickReport, TickScheduler
from tradeloop.engine.snapshot import SnapshotAggregator
from tradeloop.models import Alert
from tradeloop.notify import fmt_usd, notify_alert
from tradeloop.state import StateStore

log = logging.getLogger("tradeloop")


def build_adapters(
    cfg: Settings, factory: Callable[..., VenueAdapter] = CCXTAdapter
) -> dict[str, VenueAdapter]:
    """Return ``venue_id -> adapter`` with one adapter per exchange."""

    by_exchange: dict[str, dict[str, str]] = defaultdict(dict)
    for venue in cfg.venues:
        by_exchange[venue.exchange][venue.id] = venue.symbol
    adapters: dict[str, VenueAdapter] = {}
    for exchange, symbols in by_exchange.items():
        adapter = factory(exchange, symbols, timeout=cfg.venue_timeout_secs)
        for venue_id in symbols:
            adapters[venue_id] = adapter
    return adapters


def build_scheduler(
    cfg: Settings,
    adapters: dict[str, VenueAdapter],
    *,
    conn: sqlite3.Connection | None = None,
    notifier: Callable[[Alert], Any] | None = None,
    shared_exposure: SharedExposure | None = None,
    interval: float | None = None,
) -> TickScheduler:
    """Wire one :class:`TickScheduler` from *cfg* and *adapters*."""

    if notifier is None and cfg.discord_alert_notify:
        notifier = notify_alert
    if shared_exposure is None and cfg.risk and cfg.risk.shared_exposure_limit is not None:
        shared_exposure = SharedExposure(cfg.risk.shared_exposure_limit)

    state = StateStore(
        cash=cfg.initial_cash,
        trade_retention=cfg.trade_retention,
        audit_retention=cfg.audit_retention,
        history_size=cfg.history_size,
    )
    aggregator = SnapshotAggregator(
        adapters,
        depth=cfg.orderbook_depth,
        timeout=cfg.venue_timeout_secs,
        max_concurrency=cfg.max_concurrency,
        probe_sizes=cfg.probe_sizes,
    )
    heartbeat = HeartbeatLogger(cfg.bot_name, state, every=cfg.heartbeat_every_ticks)
    return TickScheduler(
        aggregator=aggregator,
        dispatcher=ExecutionDispatcher(adapters),
        state=state,
        risk_config=cfg.risk,
        arbitrage=ArbitrageDetector(cfg.arbitrage) if cfg.arbitrage else None,
        market_maker=QuoteGenerator(cfg.market_maker) if cfg.market_maker else None,
        rebalancer=RebalancePlanner(cfg.rebalance) if cfg.rebalance else None,
        alerter=ThresholdAlerter(cfg.alerts) if cfg.alerts else None,
        liquidation=LiquidationScanner(cfg.liquidation) if cfg.liquidation else None,
        interval=interval or cfg.tick_interval_secs,
        error_backoff=cfg.error_backoff_secs,
        failure_alert_after=cfg.failure_alert_after,
        alert_retention_secs=cfg.alert_retention_secs,
        alert_auto_ack_secs=cfg.alert_auto_ack_secs,
        health_timeout=cfg.venue_timeout_secs,
        conn=conn,
        notifier=notifier,
        shared_exposure=shared_exposure,
        name=cfg.bot_name,
        on_tick=heartbeat,
    )


def format_heartbeat(
    name: str,
    *,
    ticks: int,
    trades: int,
    failed: int,
    rejected: int,
    alerts: int,
    value: float,
    latency_total: float,
) -> str:
    """Build a one-line heartbeat summary for the tick loop."""

    avg_latency_ms = (latency_total / ticks * 1000.0) if ticks else 0.0
    return (
        f"[{name}] heartbeat: ticks={ticks}, trades={trades}, failed={failed}, "
        f"rejected={rejected}, alerts={alerts}, value={fmt_usd(value)}, "
        f"avg_latency_ms={avg_latency_ms:.1f}"
    )


class HeartbeatLogger:
    """Accumulate tick reports and log a heartbeat every *every* ticks."""

    def __init__(self, name: str, state: StateStore, every: int = 12) -> None:
        self.name = name
        self.state = state
        self.every = every
        self.ticks = 0
        self.trades = 0
        self.failed = 0
        self.rejected = 0
        self.alerts = 0
        self.latency_total = 0.0

    def __call__(self, report: TickReport) -> None:
        self.ticks += 1
        self.trades += report.executed
        self.failed += report.failed
        self.rejected += report.rejected
        self.alerts += report.alerts
        self.latency_total += report.latency
        if self.every > 0 and self.ticks % self.every == 0:
            log.info(
                format_heartbeat(
                    self.name,
                    ticks=self.ticks,
                    trades=self.trades,
                    failed=self.failed,
                    rejected=self.rejected,
                    alerts=self.alerts,
                    value=float(self.state.portfolio_value()),
                    latency_total=self.latency_total,
                )
            )


__all__ = ["HeartbeatLogger", "build_adapters", "build_scheduler", "format_heartbeat"]
