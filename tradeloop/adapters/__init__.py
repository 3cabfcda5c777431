"""Venue adapter interfaces and implementations."""

from .base import SubmitResult, VenueAdapter
from .ccxt_adapter import CCXTAdapter

__all__ = ["VenueAdapter", "SubmitResult", "CCXTAdapter"]
