"""Command line interface tests driven through Typer's runner."""

from __future__ import annotations

import logging

from typer.testing import CliRunner

from tradeloop.cli import app, format_heartbeat
from tradeloop.cli.commands import config as config_cmds
from tradeloop.cli.commands import convert as convert_cmds
from tradeloop.cli.commands import quote as quote_cmds
from tradeloop.cli.commands import run as run_cmds
from tradeloop.cli.commands import snapshot as snapshot_cmds
from tradeloop.cli.utils import HeartbeatLogger
from tradeloop.config import load_settings
from tradeloop.engine.scheduler import TickReport
from tradeloop.models import utcnow
from tradeloop.state import StateStore
from tests.venue_mocks import DummyAdapter, mid_book

runner = CliRunner()

RISK = {
    "max_position_size": "100000",
    "min_profit": "5",
    "stop_loss": "1000000",
    "min_fill_ratio": "0.5",
}
ARBITRAGE = {
    "min_edge": "0.001",
    "min_profit": "5",
    "max_position_size": "100000",
    "cost_rate": "0.0005",
    "max_notional": "10000",
}


def two_venue_settings(**overrides):
    params = dict(
        venues="a=binance:ETH/USDT,b=kraken:ETH/USDT",
        risk=RISK,
        arbitrage=ARBITRAGE,
        sqlite_path=None,
    )
    params.update(overrides)
    return load_settings(**params)


def test_config_check_reports_summary(monkeypatch):
    monkeypatch.setattr(config_cmds, "settings", two_venue_settings(bot_name="bot1"))
    result = runner.invoke(app, ["config:check"])
    assert result.exit_code == 0
    assert "bot: bot1" in result.output
    assert "strategies: arbitrage" in result.output
    assert "venue b: kraken ETH/USDT" in result.output


def test_config_check_alias_and_failure(monkeypatch):
    monkeypatch.setattr(config_cmds, "settings", load_settings(venues=""))
    result = runner.invoke(app, ["config_check"])
    assert result.exit_code == 2
    assert "config error" in result.output
    assert "no venues configured" in result.output


def test_snapshot_prints_top_of_book(monkeypatch):
    adapter = DummyAdapter({"a": mid_book("a", "1.50")})
    monkeypatch.setattr(snapshot_cmds, "settings", load_settings(venues="a=binance:ETH/USDT"))
    monkeypatch.setattr(snapshot_cmds, "build_adapters", lambda cfg: {"a": adapter})
    result = runner.invoke(app, ["snapshot"])
    assert result.exit_code == 0
    assert "[a] ETH/USDT bid=1.499 ask=1.501" in result.output


def test_snapshot_without_venues_exits(monkeypatch):
    monkeypatch.setattr(snapshot_cmds, "settings", load_settings(venues=""))
    result = runner.invoke(app, ["snapshot"])
    assert result.exit_code == 2


def test_quote_prints_bid_and_ask(monkeypatch):
    cfg = load_settings(
        venues="a=binance:ETH/USDT",
        market_maker={
            "venues": ["a"],
            "base_spread": "0.002",
            "order_size": "1",
            "refresh_interval_secs": 10,
        },
    )
    adapter = DummyAdapter({"a": mid_book("a", "1.50")})
    monkeypatch.setattr(quote_cmds, "settings", cfg)
    monkeypatch.setattr(quote_cmds, "build_adapters", lambda cfg: {"a": adapter})
    result = runner.invoke(app, ["quote"])
    assert result.exit_code == 0
    assert "[a] bid=1.49850000 ask=1.50150000 spread=0.2000% size=1" in result.output


def test_run_single_tick_executes_and_reports(monkeypatch):
    adapter = DummyAdapter({"a": mid_book("a", "1.50"), "b": mid_book("b", "1.52")})
    sent = []
    monkeypatch.setattr(run_cmds, "settings", two_venue_settings())
    monkeypatch.setattr(run_cmds, "build_adapters", lambda cfg: {"a": adapter, "b": adapter})
    monkeypatch.setattr(run_cmds, "notify_discord", lambda *a, **k: sent.append(a))

    result = runner.invoke(app, ["run", "--ticks", "1", "--no-persist", "--no-metrics"])

    assert result.exit_code == 0, result.output
    assert [a.side for a in adapter.submitted] == ["buy", "sell"]
    assert "# Tradeloop report" in result.output
    assert len(sent) == 1
    assert "stop" in sent[0][1]


def test_run_rejects_invalid_config(monkeypatch):
    monkeypatch.setattr(run_cmds, "settings", load_settings(venues="a=binance:ETH/USDT"))
    result = runner.invoke(app, ["run", "--ticks", "1", "--no-persist", "--no-metrics"])
    assert result.exit_code == 2


def test_basic_help_lists_commands(capsys):
    app._print_basic_help()
    out = capsys.readouterr().out
    assert "config:check" in out
    for name in ("quote", "run", "snapshot"):
        assert name in out


def test_format_heartbeat():
    line = format_heartbeat(
        "bot",
        ticks=4,
        trades=2,
        failed=1,
        rejected=3,
        alerts=0,
        value=1234.5,
        latency_total=0.2,
    )
    assert line == (
        "[bot] heartbeat: ticks=4, trades=2, failed=1, rejected=3, alerts=0, "
        "value=$1,234.50, avg_latency_ms=50.0"
    )


def test_heartbeat_logger_logs_every_n_ticks(caplog):
    beat = HeartbeatLogger("bot", StateStore(), every=2)
    report = TickReport(started_at=utcnow(), executed=1, latency=0.01)
    with caplog.at_level(logging.INFO, logger="tradeloop"):
        beat(report)
        assert "heartbeat" not in caplog.text
        beat(report)
    assert "[bot] heartbeat: ticks=2, trades=2" in caplog.text


def test_convert_estimates_against_book(monkeypatch):
    adapter = DummyAdapter({"a": mid_book("a", "1.50")})
    monkeypatch.setattr(convert_cmds, "settings", load_settings(venues="a=binance:ETH/USDT"))
    monkeypatch.setattr(convert_cmds, "build_adapters", lambda cfg: {"a": adapter})
    result = runner.invoke(app, ["convert", "a", "2"])
    assert result.exit_code == 0, result.output
    assert "[a] base_to_quote in=2 out=2.998 rate=1.49900000" in result.output


def test_convert_rejects_unknown_venue_and_direction(monkeypatch):
    monkeypatch.setattr(convert_cmds, "settings", load_settings(venues="a=binance:ETH/USDT"))
    assert runner.invoke(app, ["convert", "zzz", "2"]).exit_code == 2
    assert runner.invoke(app, ["convert", "a", "2", "--direction", "sideways"]).exit_code == 2
    assert runner.invoke(app, ["convert", "a", "abc"]).exit_code == 2
