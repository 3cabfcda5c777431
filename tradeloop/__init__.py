"""Core package for the tradeloop multi-strategy trading loop."""

from __future__ import annotations

from .errors import ConfigError, DataIntegrityError, ExecutionError, TradeloopError, VenueError
from .models import Action, MarketSnapshot, PriceLevel, TradeRecord

__all__ = [
    "Action",
    "ConfigError",
    "DataIntegrityError",
    "ExecutionError",
    "MarketSnapshot",
    "PriceLevel",
    "TradeRecord",
    "TradeloopError",
    "VenueError",
]
