"""Shared data models for the trading loop.

Market data, opportunities, actions and trade records are frozen dataclasses so
that a tick can never mutate a view another component already holds. Positions
and alerts are the only mutable records and are owned by
:class:`tradeloop.state.StateStore`.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from decimal import Decimal
from typing import ClassVar, Literal, Optional, Union

Side = Literal["buy", "sell"]
ActionKind = Literal["market", "limit", "cancel", "swap"]
Direction = Literal["base_to_quote", "quote_to_base"]
Severity = Literal["low", "medium", "high", "critical"]

SEVERITY_RANK: dict[str, int] = {"low": 0, "medium": 1, "high": 2, "critical": 3}

ZERO = Decimal(0)


def new_id() -> str:
    """Return a fresh opaque identifier."""

    return uuid.uuid4().hex


def utcnow() -> datetime:
    """Return the current time as an aware UTC datetime."""

    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Market data


@dataclass(frozen=True)
class PriceLevel:
    """One order book level."""

    price: Decimal
    quantity: Decimal


@dataclass(frozen=True)
class VaultBalances:
    """Reserves held by a venue or balance manager."""

    base: Decimal
    quote: Decimal
    fee_token: Decimal = ZERO


@dataclass(frozen=True)
class TradeParams:
    """Fee rates and minimum order size for a venue."""

    maker_fee: Decimal
    taker_fee: Decimal
    min_order_size: Decimal = ZERO


@dataclass(frozen=True)
class DepthQuote:
    """Depth-weighted execution prices for a probe size on both book sides."""

    size: Decimal
    bid_filled: Decimal
    bid_price: Optional[Decimal]
    ask_filled: Decimal
    ask_price: Optional[Decimal]


@dataclass(frozen=True)
class MarketSnapshot:
    """Order book state for one venue at one tick.

    Level sequences are stored as tuples, best price first. Lists passed in are
    copied so two snapshots never share a mutable level array.
    """

    venue_id: str
    symbol: str
    timestamp: datetime
    bids: tuple[PriceLevel, ...]
    asks: tuple[PriceLevel, ...]
    vault_balances: VaultBalances | None = None
    trade_params: TradeParams | None = None
    depth_quotes: tuple[DepthQuote, ...] = ()
    stale: bool = False

    def __post_init__(self) -> None:
        object.__setattr__(self, "bids", tuple(self.bids))
        object.__setattr__(self, "asks", tuple(self.asks))
        object.__setattr__(self, "depth_quotes", tuple(self.depth_quotes))

    @property
    def best_bid(self) -> PriceLevel | None:
        return self.bids[0] if self.bids else None

    @property
    def best_ask(self) -> PriceLevel | None:
        return self.asks[0] if self.asks else None

    @property
    def mid_price(self) -> Decimal | None:
        """Average of best bid and best ask, or ``None`` for a one-sided book."""

        if not self.bids or not self.asks:
            return None
        return (self.bids[0].price + self.asks[0].price) / 2

    @property
    def spread_percent(self) -> Decimal | None:
        """Spread as a fraction of mid-price."""

        mid = self.mid_price
        if mid is None or mid <= 0:
            return None
        return (self.asks[0].price - self.bids[0].price) / mid

    def mark_stale(self) -> "MarketSnapshot":
        """Return a copy flagged as stale."""

        return replace(self, stale=True)


@dataclass(frozen=True)
class VenueStats:
    """Fee rates and reserves reported by :meth:`VenueAdapter.fetch_venue_stats`."""

    venue_id: str
    trade_params: TradeParams
    vault_balances: VaultBalances | None = None


@dataclass(frozen=True)
class Conversion:
    """Estimated output of converting *input_amount* on a venue."""

    venue_id: str
    direction: Direction
    input_amount: Decimal
    output_amount: Decimal
    rate: Decimal
    filled: bool = True


@dataclass(frozen=True)
class AccountHealth:
    """Collateral health of one account as reported by a venue."""

    account: str
    venue_id: str
    health_ratio: Decimal
    position_size: Decimal
    price: Decimal
    timestamp: datetime = field(default_factory=utcnow)


# ---------------------------------------------------------------------------
# Opportunities


@dataclass(frozen=True)
class ArbitrageOpportunity:
    """Price gap between two venues quoting the same pair."""

    kind: ClassVar[str] = "arbitrage"
    atomic: ClassVar[bool] = True

    symbol: str
    buy_venue: str
    sell_venue: str
    buy_price: Decimal
    sell_price: Decimal
    size_estimate: Decimal
    gross_edge: Decimal
    gross_profit: Decimal
    cost: Decimal
    net_profit: Decimal
    id: str = field(default_factory=new_id)
    created_at: datetime = field(default_factory=utcnow)

    @property
    def direction(self) -> str:
        return f"{self.buy_venue}->{self.sell_venue}"

    @property
    def venue_id(self) -> str:
        return self.buy_venue


@dataclass(frozen=True)
class RebalanceOpportunity:
    """Allocation bucket that drifted beyond its threshold.

    ``amount`` is the quote value to trade; ``size`` the same amount in base
    units at ``price``. ``reason`` is ``rebalance``, ``stop_loss`` or
    ``take_profit``.
    """

    kind: ClassVar[str] = "rebalance"
    atomic: ClassVar[bool] = False

    venue_id: str
    target_value: Decimal
    current_value: Decimal
    direction: Side
    amount: Decimal
    size: Decimal
    price: Decimal
    reason: str = "rebalance"
    id: str = field(default_factory=new_id)
    created_at: datetime = field(default_factory=utcnow)


@dataclass(frozen=True)
class ThresholdBreach:
    """A metric moved past an alert breakpoint since the previous snapshot."""

    kind: ClassVar[str] = "threshold"
    atomic: ClassVar[bool] = False

    venue_id: str
    metric: str
    previous_value: Decimal
    current_value: Decimal
    change: Decimal
    severity: Severity
    id: str = field(default_factory=new_id)
    created_at: datetime = field(default_factory=utcnow)


@dataclass(frozen=True)
class LiquidationCandidate:
    """Account whose health ratio fell below the liquidation threshold."""

    kind: ClassVar[str] = "liquidation"
    atomic: ClassVar[bool] = False

    venue_id: str
    account: str
    health_ratio: Decimal
    position_size: Decimal
    estimated_bonus: Decimal
    risk_level: Literal["low", "medium", "high"]
    id: str = field(default_factory=new_id)
    created_at: datetime = field(default_factory=utcnow)


@dataclass(frozen=True)
class QuoteRefresh:
    """New two-sided quote for a market-making venue."""

    kind: ClassVar[str] = "quote"
    atomic: ClassVar[bool] = False

    venue_id: str
    bid_price: Decimal
    ask_price: Decimal
    size: Decimal
    spread: Decimal
    sides: tuple[Side, ...] = ("buy", "sell")
    id: str = field(default_factory=new_id)
    created_at: datetime = field(default_factory=utcnow)


@dataclass(frozen=True)
class StaleQuotes:
    """Resting quotes that must be cancelled before new ones are placed."""

    kind: ClassVar[str] = "stale_quotes"
    atomic: ClassVar[bool] = False

    venue_id: str
    order_ids: tuple[str, ...]
    id: str = field(default_factory=new_id)
    created_at: datetime = field(default_factory=utcnow)


Opportunity = Union[
    ArbitrageOpportunity,
    RebalanceOpportunity,
    ThresholdBreach,
    LiquidationCandidate,
    QuoteRefresh,
    StaleQuotes,
]


# ---------------------------------------------------------------------------
# Actions and outcomes


@dataclass(frozen=True)
class Action:
    """Concrete instruction for a venue, tied to the opportunity behind it.

    ``limit_price`` is the limit price for ``limit`` orders and the minimum
    acceptable price for ``swap`` actions. ``order_id`` identifies the order a
    ``cancel`` targets.
    """

    kind: ActionKind
    venue_id: str
    side: Side | None
    size: Decimal
    rationale: Opportunity
    limit_price: Decimal | None = None
    order_id: str | None = None
    id: str = field(default_factory=new_id)
    created_at: datetime = field(default_factory=utcnow)

    @property
    def opportunity_id(self) -> str:
        return self.rationale.id


@dataclass(frozen=True)
class Approved:
    action: Action


@dataclass(frozen=True)
class Rejected:
    action: Action
    check: str
    reason: str


GateOutcome = Union[Approved, Rejected]


@dataclass(frozen=True)
class TradeRecord:
    """Append-only record of an executed (or failed) action."""

    venue_id: str
    side: Side
    size: Decimal
    price: Decimal
    fees: Decimal
    action_id: str
    opportunity_id: str
    timestamp: datetime = field(default_factory=utcnow)
    order_id: str | None = None
    confirmed: bool = True
    error: str | None = None

    @classmethod
    def from_fill(
        cls,
        action: Action,
        *,
        price: Decimal,
        size: Decimal | None = None,
        fees: Decimal = ZERO,
        order_id: str | None = None,
        side: Side | None = None,
    ) -> "TradeRecord":
        """Build a confirmed record for *action*."""

        return cls(
            venue_id=action.venue_id,
            side=side or action.side or "buy",
            size=action.size if size is None else size,
            price=price,
            fees=fees,
            action_id=action.id,
            opportunity_id=action.opportunity_id,
            order_id=order_id or action.order_id,
        )

    @classmethod
    def failed(cls, action: Action, error: str) -> "TradeRecord":
        """Build an unconfirmed record describing why *action* failed."""

        return cls(
            venue_id=action.venue_id,
            side=action.side or "buy",
            size=action.size,
            price=action.limit_price or ZERO,
            fees=ZERO,
            action_id=action.id,
            opportunity_id=action.opportunity_id,
            order_id=action.order_id,
            confirmed=False,
            error=error,
        )


@dataclass(frozen=True)
class OrderAck:
    """Venue acknowledgement for an order that did not fill immediately."""

    order_id: str
    venue_id: str
    action_id: str
    status: Literal["open", "cancelled"]
    side: Side | None = None
    price: Decimal | None = None
    size: Decimal = ZERO
    timestamp: datetime = field(default_factory=utcnow)


@dataclass(frozen=True)
class Executed:
    action: Action
    trade: TradeRecord


@dataclass(frozen=True)
class Acknowledged:
    action: Action
    ack: OrderAck


@dataclass(frozen=True)
class Failed:
    """Dispatch failure; failed cancellations carry an audit entry, not a trade."""

    action: Action
    trade: TradeRecord | None
    audit: AuditEntry | None = None


DispatchOutcome = Union[Executed, Acknowledged, Failed]


@dataclass(frozen=True)
class RestingQuote:
    """Open market-making order tracked until filled or cancelled."""

    order_id: str
    venue_id: str
    side: Side
    price: Decimal
    size: Decimal
    placed_at: datetime
    action_id: str = ""
    opportunity_id: str = ""


@dataclass(frozen=True)
class AuditEntry:
    """Rejected action, or failed cancellation, kept for post-hoc review."""

    timestamp: datetime
    opportunity_id: str
    opportunity_kind: str
    action_id: str
    venue_id: str
    check: str
    reason: str


# ---------------------------------------------------------------------------
# Mutable state records


@dataclass
class Position:
    """Signed inventory for one bucket with average-cost accounting."""

    bucket: str
    size: Decimal = ZERO
    average_entry_price: Decimal = ZERO
    realized_pnl: Decimal = ZERO
    unrealized_pnl: Decimal = ZERO
    mark_price: Decimal | None = None
    target_allocation: Decimal | None = None

    def apply_fill(self, side: Side, size: Decimal, price: Decimal, fees: Decimal = ZERO) -> None:
        """Update size, entry price and realized PnL for a confirmed fill."""

        signed = size if side == "buy" else -size
        if self.size == 0 or (self.size > 0) == (signed > 0):
            total = abs(self.size) + size
            self.average_entry_price = (
                abs(self.size) * self.average_entry_price + size * price
            ) / total
        else:
            closed = min(size, abs(self.size))
            direction = 1 if self.size > 0 else -1
            self.realized_pnl += closed * (price - self.average_entry_price) * direction
            if size > abs(self.size):
                self.average_entry_price = price
        self.realized_pnl -= fees
        self.size += signed
        if self.size == 0:
            self.average_entry_price = ZERO
        self.remark(self.mark_price if self.mark_price is not None else price)

    def remark(self, price: Decimal) -> None:
        """Revalue open inventory at *price*; size and realized PnL are untouched."""

        self.mark_price = price
        self.unrealized_pnl = (price - self.average_entry_price) * self.size

    @property
    def value(self) -> Decimal:
        if self.mark_price is None:
            return ZERO
        return self.size * self.mark_price

    @property
    def total_pnl(self) -> Decimal:
        return self.realized_pnl + self.unrealized_pnl


@dataclass
class Alert:
    """Operator-facing alert deduplicated by ``(category, venue_id)``."""

    category: str
    venue_id: str
    severity: Severity
    message: str
    id: str = field(default_factory=new_id)
    timestamp: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    acknowledged: bool = False
    value: Decimal | None = None

    @property
    def key(self) -> tuple[str, str]:
        return (self.category, self.venue_id)
