"""Configuration inspection CLI commands."""

from __future__ import annotations

import typer

from tradeloop.config import settings, validate_for_run
from tradeloop.errors import ConfigError

from ..core import app


@app.command("config:check")
@app.command("config_check")
def config_check() -> None:
    """Validate the loaded configuration and summarise what would run."""

    try:
        cfg = validate_for_run(settings)
    except ConfigError as exc:
        typer.echo(f"config error: {exc}")
        raise typer.Exit(code=2)

    typer.echo(f"bot: {cfg.bot_name} (env={cfg.env}, dry_run={cfg.dry_run})")
    typer.echo(f"strategies: {', '.join(cfg.enabled_strategies())}")
    for venue in cfg.venues:
        typer.echo(f"venue {venue.id}: {venue.exchange} {venue.symbol}")
    typer.echo(f"tick interval: {cfg.tick_interval_secs}s")


__all__ = ["config_check"]
