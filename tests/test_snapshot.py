"""Snapshot validation and concurrent aggregation tests."""

import asyncio
from decimal import Decimal

import pytest

from tradeloop.engine.snapshot import SnapshotAggregator, depth_quotes, validate_snapshot
from tradeloop.errors import DataIntegrityError, VenueError
from tradeloop.state import StateStore
from tests.venue_mocks import DummyAdapter, mid_book, snapshot

D = Decimal


def test_validate_rejects_crossed_book():
    with pytest.raises(DataIntegrityError):
        validate_snapshot(snapshot("eth", [(101, 1)], [(100, 1)]))


def test_validate_rejects_unsorted_levels():
    with pytest.raises(DataIntegrityError):
        validate_snapshot(snapshot("eth", [(98, 1), (99, 1)], [(100, 1)]))


def test_validate_rejects_empty_side():
    with pytest.raises(DataIntegrityError):
        validate_snapshot(snapshot("eth", [], [(100, 1)]))


def test_depth_quotes_for_probe_sizes():
    snap = snapshot("eth", [(99, 1), (98, 1)], [(101, 1), (102, 1)])
    (probe,) = depth_quotes(snap, [D(2)])
    assert probe.bid_price == D("98.5")
    assert probe.ask_price == D("101.5")
    assert probe.ask_filled == D(2)


def test_collect_tolerates_partial_failures():
    adapter = DummyAdapter(
        {
            "ok": mid_book("ok", 100),
            "crossed": snapshot("crossed", [(101, 1)], [(100, 1)]),
        }
    )
    adapter.errors["down"] = VenueError("down", "connection refused")
    agg = SnapshotAggregator({v: adapter for v in ("ok", "crossed", "down")})

    result = asyncio.run(agg.collect())

    assert set(result.snapshots) == {"ok"}
    assert result.failures == {"crossed": "data_integrity", "down": "venue_error"}


def test_collect_times_out_slow_venue():
    slow = DummyAdapter({"slow": mid_book("slow", 100)}, delay=0.3)
    fast = DummyAdapter({"fast": mid_book("fast", 100)})
    agg = SnapshotAggregator({"slow": slow, "fast": fast}, timeout=0.05)

    result = asyncio.run(agg.collect())

    assert set(result.snapshots) == {"fast"}
    assert result.failures == {"slow": "timeout"}


def test_failed_venue_previous_snapshot_is_marked_stale():
    adapter = DummyAdapter({"eth": mid_book("eth", 100)})
    agg = SnapshotAggregator({"eth": adapter})
    state = StateStore()

    first = asyncio.run(agg.collect())
    state.apply_snapshots(first.snapshots, first.failures)
    adapter.errors["eth"] = VenueError("eth", "503")
    second = asyncio.run(agg.collect())
    state.apply_snapshots(second.snapshots, second.failures)

    assert state.snapshots["eth"].stale
    assert state.failures["eth"] == 1


def test_collect_attaches_probe_quotes():
    adapter = DummyAdapter({"eth": mid_book("eth", 100)})
    agg = SnapshotAggregator({"eth": adapter}, probe_sizes=[D(1), D(5)])
    result = asyncio.run(agg.collect())
    assert [q.size for q in result.snapshots["eth"].depth_quotes] == [D(1), D(5)]
