"""Abstract interface every venue adapter implements."""

from __future__ import annotations

from abc import ABC, abstractmethod
from decimal import Decimal
from typing import Iterable, Union

from tradeloop.models import (
    AccountHealth,
    Action,
    Conversion,
    Direction,
    MarketSnapshot,
    OrderAck,
    TradeRecord,
    VenueStats,
)

SubmitResult = Union[TradeRecord, OrderAck]


class VenueAdapter(ABC):
    """Uniform read/write access to one or more venues behind a single SDK.

    Methods are synchronous and may block on network I/O; the engine runs them
    in worker threads. Failures are raised as :class:`tradeloop.errors.VenueError`
    (transient) or :class:`tradeloop.errors.ExecutionError` (unconfirmed trade).
    """

    @abstractmethod
    def name(self) -> str:
        """Return the identifier of the SDK or exchange behind this adapter."""

    @abstractmethod
    def fetch_orderbook(self, venue_id: str, depth: int = 10) -> MarketSnapshot:
        """Return a snapshot of *venue_id* limited to *depth* levels per side."""

    @abstractmethod
    def fetch_venue_stats(self, venue_id: str) -> VenueStats:
        """Return fee rates and vault balances for *venue_id*."""

    @abstractmethod
    def estimate_conversion(
        self, venue_id: str, amount: Decimal, direction: Direction
    ) -> Conversion:
        """Estimate the output of converting *amount* in *direction*."""

    @abstractmethod
    def submit_action(self, action: Action) -> SubmitResult:
        """Execute *action* and wait for confirmation.

        Market and swap actions return a :class:`TradeRecord`; resting limit
        orders and cancellations return an :class:`OrderAck`.
        """

    def fetch_account_health(self, venue_id: str) -> list[AccountHealth]:
        """Return health ratios for accounts exposed by the venue's data feed."""

        return []

    def fetch_order_fills(
        self, venue_id: str, order_ids: Iterable[str]
    ) -> list[TradeRecord]:
        """Return fills for previously acknowledged orders among *order_ids*."""

        return []
