"""Shared pytest fixtures."""

from __future__ import annotations

import logging

import pytest


@pytest.fixture(autouse=True)
def propagate_tradeloop_logs(monkeypatch):
    """Let caplog see records even after the CLI configured its own handlers."""

    monkeypatch.setattr(logging.getLogger("tradeloop"), "propagate", True)
