"""Pure analytics helper tests."""

from decimal import Decimal

import pytest

from tradeloop.engine import analytics
from tests.venue_mocks import levels

D = Decimal


def test_depth_weighted_price_walks_levels_best_first():
    asks = levels([(100, 1), (101, 1), (105, 10)])
    achieved, avg = analytics.depth_weighted_price(asks, D(2))
    assert achieved == D(2)
    assert avg == D("100.5")


def test_depth_weighted_price_partial_fill():
    asks = levels([(100, 1), (101, 1)])
    achieved, avg = analytics.depth_weighted_price(asks, D(5))
    assert achieved == D(2)
    assert not analytics.is_fully_filled(achieved, D(5))
    assert avg == D("100.5")


def test_depth_weighted_price_is_monotonic_in_size():
    asks = levels([(100, 1), (101, 2), (103, 3)])
    prices = [analytics.depth_weighted_price(asks, D(s))[1] for s in (1, 2, 3, 5, 6)]
    assert prices == sorted(prices)


def test_depth_weighted_price_empty_book():
    assert analytics.depth_weighted_price([], D(1)) == (D(0), None)


def test_cumulative_depth_limits_levels():
    bids = levels([(10, 1), (9, 2), (8, 3)])
    assert analytics.cumulative_depth(bids, 2) == D(3)
    assert analytics.cumulative_notional(bids, 2) == D(28)


def test_cross_venue_edge_is_symmetric():
    a, b = D("1.50"), D("1.52")
    assert analytics.cross_venue_edge(a, b) == analytics.cross_venue_edge(b, a)
    assert analytics.cross_venue_edge(a, a) == 0


def test_cross_venue_edge_rejects_non_positive_prices():
    with pytest.raises(ValueError):
        analytics.cross_venue_edge(D(0), D(1))


def test_spread_percent_requires_positive_mid():
    assert analytics.spread_percent(D(99), D(101), D(100)) == D("0.02")
    with pytest.raises(ValueError):
        analytics.spread_percent(D(1), D(2), D(0))


def test_allocation_deviation_sign():
    assert analytics.allocation_deviation(D(3000), D("0.4"), D(10000)) == D(-1000)
    assert analytics.allocation_deviation(D(5000), D("0.4"), D(10000)) == D(1000)


def test_percent_change_from_zero():
    assert analytics.percent_change(D(0), D(0)) == 0
    assert analytics.percent_change(D(0), D(5)) == 1
    assert analytics.percent_change(D(100), D(90)) == D("-0.1")


def test_slippage_is_adverse_positive():
    assert analytics.slippage(D(100), D(101), "buy") == D("0.01")
    assert analytics.slippage(D(100), D(99), "sell") == D("0.01")


def test_sell_base_and_buy_with_quote():
    bids = levels([(10, 1), (9, 1)])
    asks = levels([(10, 1), (11, 1)])
    assert analytics.sell_base(bids, D(2)) == (D(2), D(19))
    spent, received = analytics.buy_with_quote(asks, D("15.5"))
    assert spent == D("15.5")
    assert received == D("1.5")


def test_return_volatility_flat_series_is_zero():
    assert analytics.return_volatility([D(100)] * 5) == 0
    assert analytics.return_volatility([D(100), D(101), D(100), D(102)]) > 0
