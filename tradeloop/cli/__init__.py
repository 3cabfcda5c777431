"""tradeloop CLI package that exposes the Typer application and command helpers."""

from __future__ import annotations

from .core import CLIApp, app, log
from .utils import HeartbeatLogger, build_adapters, build_scheduler, format_heartbeat

# Import command modules for side-effect registration
from . import commands
from .commands.config import config_check
from .commands.convert import convert
from .commands.quote import quote
from .commands.run import run
from .commands.snapshot import snapshot

__all__ = [
    "CLIApp",
    "HeartbeatLogger",
    "app",
    "build_adapters",
    "build_scheduler",
    "commands",
    "config_check",
    "convert",
    "format_heartbeat",
    "log",
    "quote",
    "run",
    "snapshot",
]
