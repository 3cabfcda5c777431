"""Ccxt-based adapter implementing the :class:`VenueAdapter` interface.

One adapter wraps one ccxt exchange client and serves every configured venue
on that exchange; a venue is simply a ``venue_id -> symbol`` mapping. ccxt
returns floats, which are converted to :class:`~decimal.Decimal` here so the
engine never sees binary floating point.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Iterable, Mapping

import ccxt

from tradeloop.adapters.base import SubmitResult, VenueAdapter
from tradeloop.config import creds_for, settings
from tradeloop.engine.analytics import buy_with_quote, sell_base
from tradeloop.errors import ExecutionError, VenueError
from tradeloop.models import (
    AccountHealth,
    Action,
    Conversion,
    Direction,
    MarketSnapshot,
    OrderAck,
    PriceLevel,
    TradeParams,
    TradeRecord,
    VaultBalances,
    VenueStats,
    new_id,
)

log = logging.getLogger(__name__)

FINISHED = ("canceled", "cancelled", "expired")


def _dec(value: Any, default: str = "0") -> Decimal:
    if value is None:
        return Decimal(default)
    return Decimal(str(value))


def _levels(raw: Iterable[Any], depth: int) -> tuple[PriceLevel, ...]:
    out = []
    for entry in list(raw or [])[:depth]:
        price, qty = entry[0], entry[1]
        out.append(PriceLevel(_dec(price), _dec(qty)))
    return tuple(out)


class CCXTAdapter(VenueAdapter):
    """Venue adapter backed by the ``ccxt`` library."""

    def __init__(
        self,
        ex_id: str,
        symbols: Mapping[str, str],
        key: str | None = None,
        secret: str | None = None,
        *,
        timeout: float | None = None,
    ) -> None:
        """Initialise the underlying ccxt client for *ex_id*.

        Parameters
        ----------
        ex_id:
            Exchange identifier recognised by ``ccxt``.
        symbols:
            Mapping of venue id to market symbol served by this exchange.
        key, secret:
            API credentials. When omitted, :func:`tradeloop.config.creds_for`
            provides them from the environment.
        timeout:
            Per-request client timeout in seconds. Order submission waits on
            the exchange for at most this long.
        """
        ex_id = (ex_id or "").strip().strip("'\"").lower()
        if key is None or secret is None:
            key, secret = creds_for(ex_id)
        cls = getattr(ccxt, ex_id)
        config: dict[str, Any] = {"apiKey": key, "secret": secret, "enableRateLimit": True}
        if timeout is not None:
            config["timeout"] = int(timeout * 1000)
        self.ex = cls(config)
        self.symbols = dict(symbols)
        self._fee: dict[str, tuple[Decimal, Decimal]] = {}

    def name(self) -> str:
        """Return the exchange identifier."""
        return self.ex.id

    def _symbol(self, venue_id: str) -> str:
        try:
            return self.symbols[venue_id]
        except KeyError:
            raise VenueError(venue_id, f"venue not served by {self.ex.id}") from None

    def _resolve_fee_override(self, symbol: str) -> dict[str, float] | None:
        """Return the configured fee override for *symbol* on this exchange."""

        overrides = settings.fee_overrides or {}
        venue_map = overrides.get(str(self.ex.id).lower())
        if not isinstance(venue_map, dict):
            return None
        fee_map = venue_map.get(symbol.upper())
        if not isinstance(fee_map, dict):
            fee_map = venue_map.get("*") if isinstance(venue_map.get("*"), dict) else None
        return fee_map

    def fetch_fees(self, symbol: str) -> tuple[Decimal, Decimal]:
        """Return ``(maker, taker)`` fees for *symbol*, respecting overrides."""

        if symbol in self._fee:
            return self._fee[symbol]
        market = self.ex.market(symbol)
        trading = (getattr(self.ex, "fees", {}) or {}).get("trading", {})
        maker = market.get("maker", trading.get("maker", 0.001))
        taker = market.get("taker", trading.get("taker", 0.001))
        override = self._resolve_fee_override(symbol) or {}
        maker = override.get("maker", maker)
        taker = override.get("taker", taker)
        self._fee[symbol] = (_dec(maker), _dec(taker))
        return self._fee[symbol]

    def _trade_params(self, symbol: str) -> TradeParams:
        maker, taker = self.fetch_fees(symbol)
        market = self.ex.market(symbol)
        min_amount = (market.get("limits", {}) or {}).get("amount", {}) or {}
        return TradeParams(maker, taker, _dec(min_amount.get("min")))

    def _call(self, venue_id: str, fn, *args: Any) -> Any:
        try:
            return fn(*args)
        except ccxt.NetworkError as exc:
            raise VenueError(venue_id, f"{type(exc).__name__}: {exc}") from exc
        except ccxt.ExchangeError as exc:
            raise VenueError(venue_id, f"{type(exc).__name__}: {exc}") from exc

    def fetch_orderbook(self, venue_id: str, depth: int = 10) -> MarketSnapshot:
        """Return a snapshot of *venue_id* limited to *depth* levels."""

        symbol = self._symbol(venue_id)
        ob = self._call(venue_id, self.ex.fetch_order_book, symbol, depth)
        ts = ob.get("timestamp")
        timestamp = (
            datetime.fromtimestamp(ts / 1000.0, tz=timezone.utc)
            if ts
            else datetime.now(timezone.utc)
        )
        try:
            params = self._trade_params(symbol)
        except (ccxt.BaseError, KeyError) as exc:
            log.debug("trade params unavailable for %s: %s", venue_id, exc)
            params = None
        return MarketSnapshot(
            venue_id=venue_id,
            symbol=symbol,
            timestamp=timestamp,
            bids=_levels(ob.get("bids"), depth),
            asks=_levels(ob.get("asks"), depth),
            trade_params=params,
        )

    def fetch_venue_stats(self, venue_id: str) -> VenueStats:
        """Return fee rates and account balances for *venue_id*.

        Balances require credentials and are omitted in dry-run mode.
        """

        symbol = self._symbol(venue_id)
        params = self._call(venue_id, self._trade_params, symbol)
        balances = None
        if not settings.dry_run:
            base, quote = symbol.split("/", 1)
            total = self._call(venue_id, self.ex.fetch_balance).get("total", {}) or {}
            balances = VaultBalances(_dec(total.get(base)), _dec(total.get(quote)))
        return VenueStats(venue_id=venue_id, trade_params=params, vault_balances=balances)

    def estimate_conversion(
        self, venue_id: str, amount: Decimal, direction: Direction
    ) -> Conversion:
        """Estimate converting *amount* by walking the current book.

        ``base_to_quote`` sells *amount* of base into the bids;
        ``quote_to_base`` spends *amount* of quote on the asks.
        """

        snap = self.fetch_orderbook(venue_id, 50)
        if direction == "base_to_quote":
            used, output = sell_base(snap.bids, amount)
        else:
            used, output = buy_with_quote(snap.asks, amount)
        rate = output / used if used > 0 else Decimal(0)
        return Conversion(
            venue_id=venue_id,
            direction=direction,
            input_amount=amount,
            output_amount=output,
            rate=rate,
            filled=used >= amount,
        )

    def _dry_run(self, action: Action, symbol: str) -> SubmitResult:
        if action.kind == "cancel":
            return OrderAck(
                order_id=action.order_id or "",
                venue_id=action.venue_id,
                action_id=action.id,
                status="cancelled",
            )
        if action.kind == "limit":
            return OrderAck(
                order_id=f"dryrun-{new_id()[:12]}",
                venue_id=action.venue_id,
                action_id=action.id,
                status="open",
                side=action.side,
                price=action.limit_price,
                size=action.size,
            )
        ob = self._call(action.venue_id, self.ex.fetch_order_book, symbol, 1)
        side_levels = ob["asks"] if action.side == "buy" else ob["bids"]
        if not side_levels:
            raise ExecutionError(action.venue_id, "dry run: empty book side")
        price = _dec(side_levels[0][0])
        fee = self.fetch_fees(symbol)[1] * price * action.size
        return TradeRecord.from_fill(action, price=price, fees=fee, order_id="dryrun")

    def submit_action(self, action: Action) -> SubmitResult:
        """Place, fill or cancel the order described by *action*."""

        symbol = self._symbol(action.venue_id)
        if settings.dry_run:
            return self._dry_run(action, symbol)

        if action.kind == "cancel":
            self._call(action.venue_id, self.ex.cancel_order, action.order_id, symbol)
            return OrderAck(
                order_id=action.order_id or "",
                venue_id=action.venue_id,
                action_id=action.id,
                status="cancelled",
            )

        amount = float(action.size)
        price = float(action.limit_price) if action.limit_price is not None else None
        try:
            if action.kind == "market":
                o = self.ex.create_order(symbol, "market", action.side, amount)
            elif action.kind == "swap":
                o = self.ex.create_order(
                    symbol, "limit", action.side, amount, price, {"timeInForce": "IOC"}
                )
            else:
                o = self.ex.create_order(symbol, "limit", action.side, amount, price)
        except ccxt.RequestTimeout as exc:
            log.error(
                "create_order timed out venue=%s side=%s size=%s, order state unknown: %s",
                action.venue_id,
                action.side,
                action.size,
                exc,
            )
            raise ExecutionError(action.venue_id, f"timeout, order state unknown: {exc}") from exc
        except ccxt.BaseError as exc:
            log.error(
                "create_order failed venue=%s side=%s size=%s: %s",
                action.venue_id,
                action.side,
                action.size,
                exc,
            )
            raise ExecutionError(action.venue_id, str(exc)) from exc

        order_id = str(o.get("id") or "")
        filled = _dec(o.get("filled"))
        if action.kind == "limit" and o.get("status") != "closed":
            return OrderAck(
                order_id=order_id,
                venue_id=action.venue_id,
                action_id=action.id,
                status="open",
                side=action.side,
                price=action.limit_price,
                size=action.size,
            )
        if filled <= 0:
            raise ExecutionError(action.venue_id, "order not filled", order_id=order_id)
        avg = _dec(o.get("average") or o.get("price"))
        fees = sum((_dec(f.get("cost")) for f in o.get("fees") or []), Decimal(0))
        return TradeRecord.from_fill(
            action, price=avg, size=filled, fees=fees, order_id=order_id
        )

    def fetch_order_fills(
        self, venue_id: str, order_ids: Iterable[str]
    ) -> list[TradeRecord]:
        """Return fills for finished orders among *order_ids*.

        Closed orders report their full fill. Cancelled or expired orders are
        reported only when part of them filled before they were taken down.
        """

        if settings.dry_run:
            return []
        symbol = self._symbol(venue_id)
        fills: list[TradeRecord] = []
        for order_id in order_ids:
            o = self._call(venue_id, self.ex.fetch_order, order_id, symbol)
            status = o.get("status")
            filled = _dec(o.get("filled"))
            if status != "closed" and not (status in FINISHED and filled > 0):
                continue
            fees = sum((_dec(f.get("cost")) for f in o.get("fees") or []), Decimal(0))
            fills.append(
                TradeRecord(
                    venue_id=venue_id,
                    side=o.get("side") or "buy",
                    size=filled,
                    price=_dec(o.get("average") or o.get("price")),
                    fees=fees,
                    action_id="",
                    opportunity_id="",
                    order_id=order_id,
                )
            )
        return fills

    def fetch_account_health(self, venue_id: str) -> list[AccountHealth]:
        """Return health ratios for derivative positions on *venue_id*.

        The health ratio is the inverse of ccxt's ``marginRatio``; venues that
        do not expose positions return an empty list.
        """

        has = getattr(self.ex, "has", {}) or {}
        if not has.get("fetchPositions"):
            return []
        symbol = self._symbol(venue_id)
        positions = self._call(venue_id, self.ex.fetch_positions, [symbol])
        out: list[AccountHealth] = []
        for pos in positions or []:
            ratio = pos.get("marginRatio")
            if not ratio:
                continue
            out.append(
                AccountHealth(
                    account=str(pos.get("id") or f"{self.ex.id}:{symbol}"),
                    venue_id=venue_id,
                    health_ratio=Decimal(1) / _dec(ratio),
                    position_size=abs(_dec(pos.get("contracts"))),
                    price=_dec(pos.get("markPrice")),
                )
            )
        return out
