"""Configuration management and credential helpers.

This module loads environment variables from a local ``.env`` file if one is
present so that credentials such as API keys are available without manual
exports. Values in the real environment take precedence over those in the
file.

Strategy sections (``ARBITRAGE``, ``MARKET_MAKER``, ``REBALANCE``, ``ALERTS``,
``LIQUIDATION`` and ``RISK``) are JSON objects validated by strict models:
unknown keys and missing thresholds fail at startup instead of falling back to
silent defaults. A section that is absent disables its strategy.
"""

from __future__ import annotations

import json
import os
from decimal import Decimal
from pathlib import Path
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

from tradeloop.errors import ConfigError


def _load_env_file(path: str = ".env") -> None:
    """Populate :mod:`os.environ` with key/value pairs from *path*.

    Lines starting with ``#`` or lacking an ``=`` separator are ignored.
    Existing keys are not overwritten. Values wrapped in single or double
    quotes are unquoted to match typical ``.env`` file behavior.
    """

    try:
        for line in Path(path).read_text().splitlines():
            line = line.strip()
            if not line or line.startswith("#") or "=" not in line:
                continue
            key, value = line.split("=", 1)
            value = value.strip()
            if (value.startswith('"') and value.endswith('"')) or (
                value.startswith("'") and value.endswith("'")
            ):
                value = value[1:-1]
            os.environ.setdefault(key.strip(), value)
    except FileNotFoundError:
        pass


_load_env_file()


def _coerce_fee_value(value: Any, *, assume_bps: bool) -> float | None:
    """Return a decimal fee rate parsed from *value*, or ``None``."""

    if value is None:
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if assume_bps:
        number /= 10_000.0
    return max(number, 0.0)


def _normalize_fee_overrides(data: Any) -> dict[str, dict[str, dict[str, float]]]:
    """Return a normalised fee override mapping derived from *data*.

    Parameters
    ----------
    data:
        Raw mapping or JSON string of the form
        ``{exchange: {symbol: {maker_bps|maker, taker_bps|taker}}}``.

    Returns
    -------
    dict[str, dict[str, dict[str, float]]]
        Mapping keyed by lower-case exchange and upper-case symbol with decimal
        ``maker``/``taker`` rates.
    """

    if data is None:
        return {}
    if isinstance(data, str):
        raw = data.strip()
        if not raw:
            return {}
        try:
            data = json.loads(raw)
        except ValueError as exc:
            raise ValueError(f"fee_overrides is not valid JSON: {exc}") from exc
    if not isinstance(data, dict):
        raise ValueError("fee_overrides must be a JSON object")

    normalised: dict[str, dict[str, dict[str, float]]] = {}
    for venue_key, symbols in data.items():
        if not isinstance(symbols, dict):
            continue
        venue = str(venue_key).strip().lower()
        if not venue:
            continue
        venue_map = normalised.setdefault(venue, {})
        for symbol_key, fee_map in symbols.items():
            if not isinstance(fee_map, dict):
                continue
            symbol = str(symbol_key).strip().upper()
            if not symbol:
                continue
            maker = _coerce_fee_value(fee_map.get("maker_bps"), assume_bps=True)
            taker = _coerce_fee_value(fee_map.get("taker_bps"), assume_bps=True)
            if maker is None:
                maker = _coerce_fee_value(fee_map.get("maker"), assume_bps=False)
            if taker is None:
                taker = _coerce_fee_value(fee_map.get("taker"), assume_bps=False)
            if maker is None and taker is None:
                continue
            entry = venue_map.setdefault(symbol, {})
            if maker is not None:
                entry["maker"] = maker
            if taker is not None:
                entry["taker"] = taker
    return normalised


class _StrictModel(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)


Breakpoints = tuple[Decimal, Decimal, Decimal]


def _check_breakpoints(value: Breakpoints) -> Breakpoints:
    if any(v <= 0 for v in value):
        raise ValueError("breakpoints must be positive")
    if not value[0] < value[1] < value[2]:
        raise ValueError("breakpoints must be strictly increasing (medium < high < critical)")
    return value


class VenueConfig(_StrictModel):
    """One monitored venue: an exchange market identified by *id*."""

    id: str
    exchange: str
    symbol: str


class ArbitrageConfig(_StrictModel):
    """Cross-venue arbitrage thresholds. Fractions, not percents."""

    min_edge: Decimal
    min_profit: Decimal
    max_position_size: Decimal
    cost_rate: Decimal
    gas_cost: Decimal = Decimal(0)
    max_notional: Decimal | None = None
    depth_levels: int = Field(10, ge=1)
    top_k: int = Field(3, ge=1)
    include_venue_fees: bool = True


class SpreadAdjustmentConfig(_StrictModel):
    name: Literal["volatility", "depth", "time_of_day"]
    params: dict[str, Any] = {}


class MarketMakerConfig(_StrictModel):
    """Quote generation parameters for the market-making venues."""

    venues: list[str]
    base_spread: Decimal
    order_size: Decimal
    refresh_interval_secs: float = Field(gt=0)
    max_orders_per_side: int = Field(1, ge=1)
    adjustments: list[SpreadAdjustmentConfig] = []


class BucketConfig(_StrictModel):
    """Target allocation for the inventory held on one venue."""

    venue_id: str
    target_allocation: Decimal
    threshold: Decimal
    stop_loss: Decimal | None = None
    take_profit: Decimal | None = None

    @field_validator("target_allocation")
    @classmethod
    def check_target_range(cls, value: Decimal) -> Decimal:
        if not Decimal(0) <= value <= Decimal(1):
            raise ValueError("target_allocation must be between 0 and 1")
        return value


class RebalanceConfig(_StrictModel):
    """Buckets plus the minimum spacing between regular rebalances (0 disables)."""

    buckets: list[BucketConfig]
    interval_secs: float = Field(0, ge=0)


class AlertConfig(_StrictModel):
    """Breakpoints for price change (%), spread change (points) and liquidity drop (%)."""

    price_breakpoints: Breakpoints
    spread_breakpoints: Breakpoints
    liquidity_breakpoints: Breakpoints
    depth_levels: int = Field(10, ge=1)

    @field_validator("price_breakpoints", "spread_breakpoints", "liquidity_breakpoints")
    @classmethod
    def validate_breakpoints(cls, value: Breakpoints) -> Breakpoints:
        return _check_breakpoints(value)


class LiquidationConfig(_StrictModel):
    """Liquidation scanner thresholds; health breakpoints are % drops per tick."""

    liquidation_threshold: Decimal
    min_position_size: Decimal
    max_position_size: Decimal
    gas_per_liquidation: Decimal
    health_breakpoints: Breakpoints
    min_bonus_rate: Decimal = Decimal("0.05")
    max_bonus_rate: Decimal = Decimal("0.15")

    @field_validator("health_breakpoints")
    @classmethod
    def validate_breakpoints(cls, value: Breakpoints) -> Breakpoints:
        return _check_breakpoints(value)


class RiskConfig(_StrictModel):
    """Limits applied by :class:`tradeloop.engine.risk.RiskGate`."""

    max_position_size: Decimal
    min_profit: Decimal
    stop_loss: Decimal
    min_fill_ratio: Decimal
    max_slippage: Decimal | None = None
    min_rebalance_value: Decimal = Decimal(0)
    min_quote_edge: Decimal = Decimal(0)
    shared_exposure_limit: Decimal | None = None

    @field_validator("min_fill_ratio")
    @classmethod
    def check_fill_ratio(cls, value: Decimal) -> Decimal:
        if not Decimal(0) < value <= Decimal(1):
            raise ValueError("min_fill_ratio must be in (0, 1]")
        return value


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    env: str = "dev"
    bot_name: str = "tradeloop"
    log_level: str = "INFO"
    # Optional log file path; when set, logs also write to this file.
    log_file: str | None = "data/tradeloop.log"
    log_max_bytes: int = 1_000_000
    log_backup_count: int = 3

    venues: Annotated[list[VenueConfig], NoDecode] = []

    # Legacy fallback credentials used when no per-exchange key is set.
    tradeloop_api_key: str | None = None
    tradeloop_api_secret: str | None = None

    dry_run: bool = True
    tick_interval_secs: float = Field(5.0, gt=0)
    venue_timeout_secs: float = Field(3.0, gt=0)
    error_backoff_secs: float = Field(5.0, ge=0)
    max_concurrency: int = Field(8, ge=1)
    orderbook_depth: int = Field(10, ge=1)
    probe_sizes: list[Decimal] = []
    history_size: int = Field(100, ge=2)
    failure_alert_after: int = Field(3, ge=1)
    alert_retention_secs: float = 86_400.0
    alert_auto_ack_secs: float | None = 300.0
    trade_retention: int = Field(1000, ge=1)
    audit_retention: int = Field(1000, ge=1)
    initial_cash: Decimal = Decimal(0)

    prom_port: int = 9109
    sqlite_path: str | None = "tradeloop.db"
    discord_webhook_url: str | None = None
    discord_alert_notify: bool = True
    heartbeat_every_ticks: int = 12

    # Optional per-exchange fee overrides with basis point inputs.
    fee_overrides: Annotated[dict[str, dict[str, dict[str, float]]], NoDecode] = {}

    arbitrage: ArbitrageConfig | None = None
    market_maker: MarketMakerConfig | None = None
    rebalance: RebalanceConfig | None = None
    alerts: AlertConfig | None = None
    liquidation: LiquidationConfig | None = None
    risk: RiskConfig | None = None

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="",
        env_nested_delimiter="__",
        extra="ignore",
    )

    @staticmethod
    def _normalise_venues_value(value: Any) -> list[Any]:
        """Return venue entries from JSON or ``id=exchange:SYMBOL`` CSV."""

        if value is None:
            return []
        if isinstance(value, str):
            raw = value.strip()
            if not raw:
                return []
            try:
                parsed = json.loads(raw)
            except ValueError:
                entries: list[Any] = []
                for item in raw.split(","):
                    item = item.strip()
                    if not item:
                        continue
                    if "=" not in item or ":" not in item:
                        raise ValueError(
                            f"venue entry {item!r} must look like id=exchange:SYMBOL"
                        )
                    venue_id, rest = item.split("=", 1)
                    exchange, symbol = rest.split(":", 1)
                    entries.append(
                        {
                            "id": venue_id.strip(),
                            "exchange": exchange.strip().lower(),
                            "symbol": symbol.strip().upper(),
                        }
                    )
                return entries
            return list(parsed) if isinstance(parsed, list) else [parsed]
        if isinstance(value, (list, tuple)):
            return list(value)
        return [value]

    @field_validator("venues", mode="before")
    @classmethod
    def parse_venues(cls, value: Any) -> list[Any]:
        return cls._normalise_venues_value(value)

    @field_validator("fee_overrides", mode="before")
    @classmethod
    def parse_fee_overrides(cls, value: Any) -> dict[str, dict[str, dict[str, float]]]:
        return _normalize_fee_overrides(value)

    def venue(self, venue_id: str) -> VenueConfig:
        """Return the configured venue named *venue_id*."""

        for cfg in self.venues:
            if cfg.id == venue_id:
                return cfg
        raise KeyError(venue_id)

    def enabled_strategies(self) -> list[str]:
        return [
            name
            for name in ("arbitrage", "market_maker", "rebalance", "alerts", "liquidation")
            if getattr(self, name) is not None
        ]


def load_settings(**overrides: Any) -> Settings:
    """Build :class:`Settings`, converting validation failures to :class:`ConfigError`."""

    try:
        return Settings(**overrides)
    except ValidationError as exc:
        raise ConfigError(f"invalid configuration: {exc}") from exc


def validate_for_run(cfg: Settings) -> Settings:
    """Check cross-field constraints required before the loop may start.

    Raises
    ------
    ConfigError
        When the venue list is empty or duplicated, a strategy references an
        unknown venue, no strategy is enabled, or trading strategies run
        without a ``risk`` section.
    """

    problems: list[str] = []
    ids = [v.id for v in cfg.venues]
    if not ids:
        problems.append("no venues configured (VENUES)")
    dupes = sorted({i for i in ids if ids.count(i) > 1})
    if dupes:
        problems.append(f"duplicate venue ids: {', '.join(dupes)}")
    known = set(ids)

    strategies = cfg.enabled_strategies()
    if not strategies:
        problems.append("no strategy sections configured")
    trading = {"arbitrage", "market_maker", "rebalance"} & set(strategies)
    if trading and cfg.risk is None:
        problems.append("RISK section is required when a trading strategy is enabled")

    if cfg.market_maker is not None:
        for venue_id in cfg.market_maker.venues:
            if venue_id not in known:
                problems.append(f"market_maker references unknown venue {venue_id!r}")
    if cfg.rebalance is not None:
        total = Decimal(0)
        for bucket in cfg.rebalance.buckets:
            total += bucket.target_allocation
            if bucket.venue_id not in known:
                problems.append(f"rebalance references unknown venue {bucket.venue_id!r}")
        if total > 1:
            problems.append("rebalance target allocations sum to more than 100%")

    if problems:
        raise ConfigError("; ".join(problems))
    return cfg


# Singleton settings instance populated on import.
settings = Settings()


def creds_for(ex_id: str) -> tuple[str | None, str | None]:
    """Return API credentials for *ex_id*, falling back to legacy values.

    Per-exchange keys are read from ``<EXCHANGE>_API_KEY`` and
    ``<EXCHANGE>_API_SECRET``.
    """

    prefix = ex_id.strip().upper()
    key = os.environ.get(f"{prefix}_API_KEY")
    secret = os.environ.get(f"{prefix}_API_SECRET")
    return (
        key or settings.tradeloop_api_key,
        secret or settings.tradeloop_api_secret,
    )
