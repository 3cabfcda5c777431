"""Exception hierarchy shared across the trading loop."""

from __future__ import annotations


class TradeloopError(Exception):
    """Base class for all errors raised by :mod:`tradeloop`."""


class ConfigError(TradeloopError):
    """Configuration is missing or malformed; the loop must not start."""


class VenueError(TradeloopError):
    """Transient failure talking to a venue (timeout, RPC hiccup, rate limit)."""

    def __init__(self, venue_id: str, message: str) -> None:
        super().__init__(f"{venue_id}: {message}")
        self.venue_id = venue_id


class DataIntegrityError(TradeloopError):
    """A venue returned data that cannot be trusted (crossed or malformed book)."""

    def __init__(self, venue_id: str, message: str) -> None:
        super().__init__(f"{venue_id}: {message}")
        self.venue_id = venue_id


class ExecutionError(TradeloopError):
    """An action was submitted but the venue did not confirm it."""

    def __init__(self, venue_id: str, message: str, order_id: str | None = None) -> None:
        super().__init__(f"{venue_id}: {message}")
        self.venue_id = venue_id
        self.order_id = order_id
