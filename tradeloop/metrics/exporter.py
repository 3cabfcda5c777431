"""Prometheus metrics collectors and helpers.

This module exposes counters, gauges and histograms for the tick loop as well
as a helper for starting the metrics HTTP server.
"""

from prometheus_client import Counter, Gauge, Histogram, start_http_server

# Scheduler
TICKS_TOTAL = Counter("ticks_total", "Scheduler ticks run", ["result"])
TICKS_SKIPPED = Counter("ticks_skipped_total", "Ticks skipped after an overrun")
TICK_LATENCY = Histogram("tick_latency_seconds", "Wall time of one tick in seconds")

# Market data
VENUE_ERRORS = Counter(
    "venue_errors_total", "Venue fetch failures by kind", ["venue", "kind"]
)
SNAPSHOT_AGE = Histogram(
    "snapshot_age_seconds",
    "Age of order book snapshots when collected (per venue)",
    ["venue"],
)
STALE_VENUES = Gauge("stale_venues", "Venues without a fresh snapshot this tick")

# Decisions and execution
OPPORTUNITIES_TOTAL = Counter(
    "opportunities_total", "Opportunities detected", ["kind"]
)
REJECTIONS_TOTAL = Counter(
    "rejections_total", "Actions rejected by the risk gate", ["check"]
)
ACTIONS_TOTAL = Counter("actions_total", "Actions dispatched", ["venue", "result"])
TRADES_TOTAL = Counter("trades_total", "Confirmed trades", ["venue", "side"])
REALIZED_PNL = Gauge("realized_pnl", "Realized PnL per bucket", ["bucket"])
ALERTS_TOTAL = Counter(
    "alerts_total", "Alerts raised or escalated", ["category", "severity"]
)
ERRORS_TOTAL = Counter("errors_total", "Total errors encountered", ["venue", "stage"])


def start_metrics_server(port: int) -> None:
    """Start the Prometheus metrics server on the provided ``port``.

    Parameters
    ----------
    port:
        TCP port to bind the HTTP server to.
    """

    start_http_server(int(port))
