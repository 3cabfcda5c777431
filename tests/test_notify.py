from __future__ import annotations

from types import SimpleNamespace
from unittest.mock import patch

from tradeloop import notify
from tradeloop.models import Alert


def test_notify_discord_noop_when_url_missing(monkeypatch):
    """notify_discord should return quietly when no webhook is configured."""
    monkeypatch.setattr(notify, "settings", SimpleNamespace(discord_webhook_url=None))
    with patch("urllib.request.urlopen") as mock_open:
        assert notify.notify_discord("test", "hello") is False
    assert mock_open.call_count == 0


def test_notify_discord_sends_with_url(monkeypatch):
    """notify_discord should attempt a network call when URL is set."""
    monkeypatch.setattr(
        notify,
        "settings",
        SimpleNamespace(discord_webhook_url="https://example.com"),
    )
    with patch("urllib.request.urlopen") as mock_open:
        assert notify.notify_discord("test", "hi") is True
        assert mock_open.call_count == 1
        req = mock_open.call_args.args[0]
        assert req.full_url == "https://example.com"


def test_discord_webhooks_wait_for_body():
    url = notify._with_wait("https://discord.com/api/webhooks/1/abc")
    assert url.endswith("?wait=true")


def test_send_failure_is_logged_not_raised(monkeypatch, caplog):
    monkeypatch.setattr(notify, "settings", SimpleNamespace(discord_webhook_url="https://example.com"))
    with patch("urllib.request.urlopen", side_effect=OSError("unreachable")):
        with caplog.at_level("ERROR"):
            assert notify.notify_discord("eth", "hi") is False
    assert "send failed" in caplog.text


def test_notify_alert_formats_severity(monkeypatch):
    monkeypatch.setattr(notify, "settings", SimpleNamespace(discord_webhook_url="https://example.com"))
    alert = Alert(category="venue_unavailable", venue_id="eth", severity="high", message="3 failures")
    with patch("urllib.request.urlopen") as mock_open:
        notify.notify_alert(alert)
    body = mock_open.call_args.args[0].data.decode()
    assert "[HIGH] venue_unavailable@eth: 3 failures" in body


def test_fmt_usd_formats_with_separator():
    """fmt_usd should include separators and dollar sign."""
    assert notify.fmt_usd(1234.5) == "$1,234.50"
