"""Verbose help content for the tradeloop CLI package."""

from __future__ import annotations

from textwrap import dedent

VERBOSE_GLOBAL_OVERVIEW = dedent(
    """\
    Command reference

    Use ``--help`` for a compact summary of commands.
    Use ``--help-verbose`` either globally for the full catalog or after a command
    to drill into that command's flags, typical output, and operational tips.

    Venues are configured as VENUES=id=exchange:SYMBOL,... and served via CCXT.
    """
)


VERBOSE_COMMAND_HELP: dict[str, str] = {
    "run": dedent(
        """\
        run
          Purpose:
            Start the tick loop: snapshot every venue, detect opportunities for the
            enabled strategies, gate them through risk checks and execute approved
            actions. Runs until SIGINT/SIGTERM.
          Key flags:
            --ticks INTEGER       Stop after N ticks (default: run forever).
            --interval FLOAT      Override TICK_INTERVAL_SECS for this session.
            --persist/--no-persist  Write trades, rejections and alerts to SQLite.
          Usage tips:
            - Keep DRY_RUN=true until snapshot, quote and convert output look sane.
            - Prometheus metrics are served on PROM_PORT (default 9109).
            - High and critical alerts are pushed to DISCORD_WEBHOOK_URL when set.
          Sample log lines:
            [tradeloop] heartbeat: ticks=12, trades=3, failed=0, rejected=5, alerts=1,
              value=$10,000.00, avg_latency_ms=84.2
        """
    ),
    "snapshot": dedent(
        """\
        snapshot
          Purpose:
            Collect one snapshot per configured venue and print best bid/ask, spread
            and depth. Places no orders.
          Key flags:
            --depth INTEGER   Levels to request per side (default: ORDERBOOK_DEPTH).
          Sample output:
            [binance-eth] ETH/USDT bid=2000.1 ask=2000.3 spread=0.0100% depth=12.5/9.8
        """
    ),
    "quote": dedent(
        """\
        quote
          Purpose:
            Print the market-making quotes that would be placed for each configured
            venue, using the current book and spread adjustments.
          Sample output:
            [binance-eth] bid=1999.2 ask=2001.2 spread=0.1000% size=0.5
        """
    ),
    "convert": dedent(
        """\
        convert VENUE AMOUNT
          Purpose:
            Estimate what converting AMOUNT would return on VENUE by walking the
            current order book. Places no orders.
          Key flags:
            --direction TEXT  base_to_quote (sell base, default) or quote_to_base.
          Sample output:
            [binance-eth] base_to_quote in=1.5 out=3000.42 rate=2000.28000000
        """
    ),
    "config:check": dedent(
        """\
        config:check
          Purpose:
            Validate the loaded configuration and print enabled strategies and venues.
            Exits with status 2 when the configuration cannot run.
        """
    ),
}

__all__ = ["VERBOSE_COMMAND_HELP", "VERBOSE_GLOBAL_OVERVIEW"]
