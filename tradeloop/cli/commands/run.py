"""Tick loop CLI command."""

from __future__ import annotations

import asyncio
import signal

import typer

from tradeloop.config import settings, validate_for_run
from tradeloop.errors import ConfigError
from tradeloop.metrics.exporter import start_metrics_server
from tradeloop.notify import fmt_usd, notify_discord
from tradeloop.persistence.db import init_db

from ..core import app, log
from ..utils import build_adapters, build_scheduler


@app.command("run")
def run(
    ticks: int | None = typer.Option(
        None, "--ticks", help="Stop after this many ticks (default: run until signalled)."
    ),
    interval: float | None = typer.Option(
        None, "--interval", help="Override TICK_INTERVAL_SECS for this session."
    ),
    persist: bool = typer.Option(
        True, "--persist/--no-persist", help="Write trades, rejections and alerts to SQLite."
    ),
    metrics: bool = typer.Option(
        True, "--metrics/--no-metrics", help="Serve Prometheus metrics on PROM_PORT."
    ),
    help_verbose: bool = False,
) -> None:
    """Run the snapshot, detect, gate and execute loop until stopped."""

    if help_verbose:
        app.print_verbose_help_for("run")
        raise SystemExit(0)

    try:
        cfg = validate_for_run(settings)
    except ConfigError as exc:
        log.error("configuration error: %s", exc)
        raise typer.Exit(code=2)

    adapters = build_adapters(cfg)
    if metrics:
        try:
            start_metrics_server(cfg.prom_port)
        except OSError as exc:
            log.warning("metrics server not started on port %s: %s", cfg.prom_port, exc)

    conn = init_db(cfg.sqlite_path) if persist and cfg.sqlite_path else None
    scheduler = build_scheduler(cfg, adapters, conn=conn, interval=interval)
    log.info(
        "%s starting: venues=%s strategies=%s dry_run=%s",
        cfg.bot_name,
        ",".join(v.id for v in cfg.venues),
        ",".join(cfg.enabled_strategies()),
        cfg.dry_run,
    )

    async def _main() -> int:
        stop = asyncio.Event()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, stop.set)
            except (NotImplementedError, RuntimeError):  # pragma: no cover - platform
                log.debug("signal handler for %s unavailable", sig)
        return await scheduler.run(stop, max_ticks=ticks)

    try:
        asyncio.run(_main())
    except KeyboardInterrupt:  # pragma: no cover - ctrl+c without handlers
        log.info("interrupted")
    finally:
        if conn is not None:
            conn.close()
        value = scheduler.state.portfolio_value()
        notify_discord(cfg.bot_name, f"[{cfg.bot_name}] stop | value={fmt_usd(value)}")
        typer.echo(scheduler.state.report())


__all__ = ["run"]
