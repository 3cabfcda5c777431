"""Configuration model tests."""

from __future__ import annotations

import json
import os
from decimal import Decimal

import pytest

from tradeloop import config
from tradeloop.config import Settings, load_settings, validate_for_run
from tradeloop.errors import ConfigError

D = Decimal

RISK = {
    "max_position_size": "10",
    "min_profit": "5",
    "stop_loss": "100",
    "min_fill_ratio": "0.9",
}
ARBITRAGE = {
    "min_edge": "0.001",
    "min_profit": "5",
    "max_position_size": "10",
    "cost_rate": "0.0005",
}


def test_venues_csv():
    cfg = load_settings(venues="a=Binance:eth/usdt, b=kraken:ETH/USD")
    assert [(v.id, v.exchange, v.symbol) for v in cfg.venues] == [
        ("a", "binance", "ETH/USDT"),
        ("b", "kraken", "ETH/USD"),
    ]


def test_venues_json_from_env(monkeypatch):
    monkeypatch.setenv(
        "VENUES", json.dumps([{"id": "a", "exchange": "kraken", "symbol": "ETH/USD"}])
    )
    cfg = Settings()
    assert cfg.venue("a").exchange == "kraken"
    with pytest.raises(KeyError):
        cfg.venue("missing")


def test_malformed_venue_entry_is_config_error():
    with pytest.raises(ConfigError):
        load_settings(venues="a-binance")


def test_strategy_sections_from_env(monkeypatch):
    monkeypatch.setenv("RISK", json.dumps(RISK))
    monkeypatch.setenv("ARBITRAGE", json.dumps(ARBITRAGE))
    cfg = Settings()
    assert cfg.risk.min_fill_ratio == D("0.9")
    assert cfg.arbitrage.top_k == 3
    assert "arbitrage" in cfg.enabled_strategies()


def test_unknown_section_field_is_rejected():
    with pytest.raises(ConfigError):
        load_settings(risk={**RISK, "max_drawdown": "3"})


def test_fill_ratio_range_enforced():
    with pytest.raises(ConfigError):
        load_settings(risk={**RISK, "min_fill_ratio": "1.5"})


def test_alert_breakpoints_must_increase():
    with pytest.raises(ConfigError):
        load_settings(
            alerts={
                "price_breakpoints": ["5", "1", "10"],
                "spread_breakpoints": ["1", "2", "3"],
                "liquidity_breakpoints": ["1", "2", "3"],
            }
        )


def test_validate_for_run_requires_venues_and_strategy():
    with pytest.raises(ConfigError) as exc:
        validate_for_run(load_settings(venues=""))
    assert "no venues configured" in str(exc.value)
    assert "no strategy" in str(exc.value)


def test_validate_for_run_requires_risk_for_trading():
    cfg = load_settings(venues="a=binance:ETH/USDT", arbitrage=ARBITRAGE)
    with pytest.raises(ConfigError, match="RISK section"):
        validate_for_run(cfg)


def test_validate_for_run_checks_strategy_venues():
    cfg = load_settings(
        venues="a=binance:ETH/USDT",
        risk=RISK,
        market_maker={
            "venues": ["zzz"],
            "base_spread": "0.002",
            "order_size": "1",
            "refresh_interval_secs": 10,
        },
    )
    with pytest.raises(ConfigError, match="unknown venue 'zzz'"):
        validate_for_run(cfg)


def test_validate_for_run_accepts_complete_config():
    cfg = load_settings(venues="a=binance:ETH/USDT,b=kraken:ETH/USDT", risk=RISK, arbitrage=ARBITRAGE)
    assert validate_for_run(cfg) is cfg


def test_fee_overrides_normalised_from_bps():
    cfg = load_settings(fee_overrides='{"Kraken": {"eth/usd": {"taker_bps": 26}}}')
    assert cfg.fee_overrides == {"kraken": {"ETH/USD": {"taker": 0.0026}}}


def test_creds_for_prefers_exchange_keys(monkeypatch):
    monkeypatch.setenv("KRAKEN_API_KEY", "key")
    monkeypatch.setenv("KRAKEN_API_SECRET", "secret")
    assert config.creds_for("kraken") == ("key", "secret")


def test_load_env_file_strips_quotes(monkeypatch, tmp_path):
    env_path = tmp_path / ".env"
    env_path.write_text('# comment\nTRADELOOP_TEST_VALUE="bar"\n')
    monkeypatch.delenv("TRADELOOP_TEST_VALUE", raising=False)
    config._load_env_file(str(env_path))
    assert os.environ["TRADELOOP_TEST_VALUE"] == "bar"
    monkeypatch.delenv("TRADELOOP_TEST_VALUE")
