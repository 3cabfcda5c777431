"""Core Typer application and logging bootstrap for the tradeloop CLI package."""

from __future__ import annotations

import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from typing import Any

import typer

from tradeloop.config import settings

from .help_text import VERBOSE_COMMAND_HELP, VERBOSE_GLOBAL_OVERVIEW

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


class CLIApp(typer.Typer):
    """Custom Typer application that prints usage on bad invocation."""

    # ------------------------------------------------------------------
    def _unique_commands(self) -> dict[str, dict[str, Any]]:
        """Return mapping of canonical command names to command/aliases."""

        mapping: dict[str, dict[str, Any]] = {}
        for cmd in self.registered_commands:
            name = cmd.name or cmd.callback.__name__
            canonical = name.replace("_", ":")
            info = mapping.setdefault(canonical, {"command": cmd, "aliases": []})
            info["aliases"].append(name)
        return mapping

    def _command_names(self) -> set[str]:
        names: set[str] = set()
        for info in self._unique_commands().values():
            names.update(info["aliases"])
        return names

    def main(self, args: list[str] | None = None):  # type: ignore[override]
        """Run the CLI with *args*, handling help flags and bad input."""

        if args is None:
            args = sys.argv[1:]

        if args and "--help-verbose" in args:
            idx = args.index("--help-verbose")
            if idx == 0:
                self._print_verbose_help()
            else:
                target = args[0]
                canonical = None
                for cname, info in self._unique_commands().items():
                    if target == cname or target in info["aliases"]:
                        canonical = cname
                        break
                self._print_verbose_help(canonical)
            raise SystemExit(0)

        if args and args[0] == "--help":
            self._print_basic_help()
            raise SystemExit(0)

        if not args or args[0] not in self._command_names():
            typer.echo("Usage: tradeloop [COMMAND]")
            typer.echo("Commands:")
            for cname in sorted(self._unique_commands()):
                typer.echo(f"  {cname}")
            raise SystemExit(0 if not args else 1)
        return super().__call__(args=args, prog_name="tradeloop")

    def __call__(self, *args: Any, **kwargs: Any) -> Any:
        if args or kwargs:
            return super().__call__(*args, **kwargs)
        return self.main()

    # ------------------------------------------------------------------
    def _print_basic_help(self) -> None:
        """Print a short summary of available commands."""

        typer.echo("Usage: tradeloop [--help | --help-verbose] COMMAND [ARGS]")
        typer.echo("\nAvailable commands:")
        for cname, info in sorted(self._unique_commands().items()):
            doc = info["command"].callback.__doc__ or ""
            desc = (doc.strip().splitlines() or [""])[0]
            aliases = [
                a.replace("_", ":")
                for a in info["aliases"]
                if a.replace("_", ":") != cname
            ]
            alias_str = f" (aliases: {', '.join(sorted(aliases))})" if aliases else ""
            typer.echo(f"  {cname:<14} {desc}{alias_str}")
        typer.echo(
            "\nTip: run --help-verbose for the full catalog or COMMAND --help-verbose"
            " for focused tips."
        )

    # ------------------------------------------------------------------
    def _print_verbose_help(self, command: str | None = None) -> None:
        """Print detailed command reference with optional command filtering."""

        typer.echo(VERBOSE_GLOBAL_OVERVIEW.strip())
        typer.echo()

        if command:
            text = VERBOSE_COMMAND_HELP.get(command)
            if text:
                typer.echo(text.rstrip())
            else:
                typer.echo(f"No verbose help available for '{command}'.")
            return

        for cname in sorted(self._unique_commands()):
            text = VERBOSE_COMMAND_HELP.get(cname)
            if text:
                typer.echo(text.rstrip())
                typer.echo()

    def print_verbose_help_for(self, command: str) -> None:
        """Expose verbose help rendering for command functions."""

        self._print_verbose_help(command)


def configure_logging(logger: logging.Logger) -> logging.Logger:
    """Attach console and rotating file handlers to *logger* once."""

    if getattr(logger, "_configured", False):
        return logger
    logger.setLevel(getattr(logging, str(settings.log_level).upper(), logging.INFO))
    logger.propagate = False
    ch = logging.StreamHandler()
    ch.setLevel(logger.level)
    ch.setFormatter(logging.Formatter(LOG_FORMAT))
    logger.addHandler(ch)

    log_path = getattr(settings, "log_file", None)
    if log_path:
        try:
            directory = os.path.dirname(log_path)
            if directory:
                os.makedirs(directory, exist_ok=True)
            fh = RotatingFileHandler(
                log_path,
                maxBytes=int(settings.log_max_bytes or 1_000_000),
                backupCount=int(settings.log_backup_count or 3),
            )
        except OSError as exc:
            logger.warning("file logging disabled (%s): %s", log_path, exc)
        else:
            fh.setLevel(logger.level)
            fh.setFormatter(logging.Formatter(LOG_FORMAT))
            logger.addHandler(fh)
    setattr(logger, "_configured", True)
    return logger


app = CLIApp(add_completion=False)
log = configure_logging(logging.getLogger("tradeloop"))

__all__ = ["CLIApp", "app", "configure_logging", "log"]
