"""Notification helpers for external services.

Supports sending messages to a Discord webhook. Failures are logged and
counted but never raised into the tick loop.
"""

from __future__ import annotations

import json
import logging
import urllib.request
from decimal import Decimal
from typing import Any, Mapping, Optional
from urllib.parse import parse_qsl, urlencode, urlparse, urlunparse

from .config import settings
from .metrics.exporter import ERRORS_TOTAL
from .models import Alert

log = logging.getLogger(__name__)

_CONSOLE_LEVEL = {
    "low": logging.INFO,
    "medium": logging.INFO,
    "high": logging.WARNING,
    "critical": logging.ERROR,
    "info": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}


def fmt_usd(amount: float | Decimal) -> str:
    """Return *amount* formatted as a USD string.

    Parameters
    ----------
    amount:
        Numeric amount in USD.

    Returns
    -------
    str
        Dollar-formatted string with thousands separator and two decimals.
    """

    return f"${amount:,.2f}"


def _with_wait(webhook: str) -> str:
    """Append ``wait=true`` to Discord webhooks so they return a body."""

    pr = urlparse(webhook)
    if not (pr.netloc.endswith("discord.com") or pr.netloc.endswith("discordapp.com")):
        return webhook
    qs = dict(parse_qsl(pr.query, keep_blank_values=True))
    if "wait" in qs:
        return webhook
    qs["wait"] = "true"
    return urlunparse(pr._replace(query=urlencode(qs)))


def notify_discord(
    venue: str,
    message: str,
    url: Optional[str] = None,
    *,
    severity: str | None = None,
    extra: Optional[Mapping[str, Any]] = None,
) -> bool:
    """Send *message* to a Discord webhook.

    Parameters
    ----------
    venue:
        Venue or subsystem issuing the notification; labels error metrics.
    message:
        Text content to send.
    url:
        Optional override for the webhook URL. Defaults to
        ``settings.discord_webhook_url``.
    severity:
        Console log level hint: an alert severity or ``info``/``warning``/``error``.
    extra:
        Optional structured context appended as a JSON code block.

    Returns
    -------
    bool
        ``True`` when the webhook accepted the message.
    """

    level = _CONSOLE_LEVEL.get((severity or "info").lower(), logging.INFO)
    if extra:
        log.log(level, "[discord] %s | ctx=%s", message, json.dumps(extra, default=str))
    else:
        log.log(level, "[discord] %s", message)

    webhook = url or getattr(settings, "discord_webhook_url", None)
    if not webhook:
        log.debug("notify_discord: webhook not configured; skipping network send")
        return False

    content = message
    if extra:
        content += "\n```json\n" + json.dumps(extra, indent=2, default=str) + "\n```"
    payload = json.dumps({"content": content}).encode("utf-8")
    req = urllib.request.Request(
        _with_wait(webhook),
        data=payload,
        headers={
            "Content-Type": "application/json",
            "User-Agent": "tradeloop/1.0",
        },
        method="POST",
    )
    try:
        with urllib.request.urlopen(req, timeout=3):
            log.debug("notify_discord: sent message (%d chars)", len(message or ""))
            return True
    except Exception as e:
        code = getattr(e, "code", None)
        if code is not None:
            log.error("notify_discord: HTTP %s error: %s", code, e)
        else:
            log.error("notify_discord: send failed: %s", e)
        ERRORS_TOTAL.labels(venue, "discord_send").inc()
        return False


def notify_alert(alert: Alert, url: Optional[str] = None) -> bool:
    """Send a formatted :class:`Alert` to Discord."""

    return notify_discord(
        alert.venue_id,
        f"[{alert.severity.upper()}] {alert.category}@{alert.venue_id}: {alert.message}",
        url,
        severity=alert.severity,
        extra={"alert_id": alert.id, "value": alert.value},
    )
