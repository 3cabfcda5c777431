"""Grouped Typer command modules for the tradeloop CLI."""

from __future__ import annotations

from . import config, convert, quote, run, snapshot

__all__ = ["config", "convert", "quote", "run", "snapshot"]
