"""Pure analytics over order book levels: depth pricing, spreads and deviations.

All helpers take and return :class:`decimal.Decimal` values and perform no
I/O, so they can be called freely from detectors and the risk gate.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Iterable, Sequence

from tradeloop.models import PriceLevel, Side

ZERO = Decimal(0)


def depth_weighted_price(
    levels: Sequence[PriceLevel], target_size: Decimal
) -> tuple[Decimal, Decimal | None]:
    """Return ``(achieved_size, weighted_average_price)`` for *target_size*.

    Levels are walked best price first, consuming quantity until the target is
    filled or the book is exhausted.

    Parameters
    ----------
    levels:
        Book side ordered best-first (descending bids or ascending asks).
    target_size:
        Base quantity to fill.

    Returns
    -------
    tuple[Decimal, Decimal | None]
        Filled quantity and its average price. The price is ``None`` when
        nothing could be filled. Callers must treat
        ``achieved_size < target_size`` as insufficient liquidity rather than
        use the partial price.
    """

    if target_size <= 0:
        return ZERO, None
    remaining = target_size
    filled = ZERO
    cost = ZERO
    for level in levels:
        if remaining <= 0:
            break
        take = min(level.quantity, remaining)
        if take <= 0:
            continue
        filled += take
        cost += take * level.price
        remaining -= take
    if filled == 0:
        return ZERO, None
    return filled, cost / filled


def is_fully_filled(achieved: Decimal, target: Decimal) -> bool:
    """Return ``True`` when a depth walk covered the whole *target*."""

    return achieved >= target


def cumulative_depth(levels: Sequence[PriceLevel], n_levels: int) -> Decimal:
    """Total quantity resting in the first *n_levels* of *levels*."""

    return sum((lvl.quantity for lvl in levels[: max(n_levels, 0)]), ZERO)


def cumulative_notional(levels: Sequence[PriceLevel], n_levels: int) -> Decimal:
    """Total quote value resting in the first *n_levels* of *levels*."""

    return sum((lvl.quantity * lvl.price for lvl in levels[: max(n_levels, 0)]), ZERO)


def mid_price(best_bid: Decimal, best_ask: Decimal) -> Decimal:
    return (best_bid + best_ask) / 2


def spread_percent(best_bid: Decimal, best_ask: Decimal, mid: Decimal) -> Decimal:
    """Return ``(best_ask - best_bid) / mid`` as a fraction."""

    if mid <= 0:
        raise ValueError("mid price must be positive")
    return (best_ask - best_bid) / mid


def cross_venue_edge(price_a: Decimal, price_b: Decimal) -> Decimal:
    """Return ``|a - b| / min(a, b)``; symmetric in its arguments.

    The cheaper venue is the buy leg and the dearer venue the sell leg.
    """

    if price_a <= 0 or price_b <= 0:
        raise ValueError("prices must be positive")
    return abs(price_a - price_b) / min(price_a, price_b)


def allocation_deviation(
    current_value: Decimal, target_percent: Decimal, total_value: Decimal
) -> Decimal:
    """Return ``current - target_percent * total``.

    A positive result means the bucket is over-allocated, negative means
    under-allocated. *target_percent* is a fraction (``0.4`` for 40%).
    """

    return current_value - target_percent * total_value


def percent_change(previous: Decimal, current: Decimal) -> Decimal:
    """Relative change from *previous* to *current* as a fraction."""

    if previous == 0:
        return ZERO if current == 0 else Decimal(1)
    return (current - previous) / previous


def slippage(reference: Decimal, executed: Decimal, side: Side) -> Decimal:
    """Adverse price move from *reference* to *executed* as a fraction.

    Positive values are unfavourable: paying above the reference when buying,
    receiving below it when selling.
    """

    if reference <= 0:
        raise ValueError("reference price must be positive")
    if side == "buy":
        return (executed - reference) / reference
    return (reference - executed) / reference


def sell_base(bids: Sequence[PriceLevel], base_amount: Decimal) -> tuple[Decimal, Decimal]:
    """Walk *bids* selling *base_amount*; return ``(base_sold, quote_received)``."""

    filled, avg = depth_weighted_price(bids, base_amount)
    if avg is None:
        return ZERO, ZERO
    return filled, filled * avg


def buy_with_quote(
    asks: Sequence[PriceLevel], quote_amount: Decimal
) -> tuple[Decimal, Decimal]:
    """Walk *asks* spending *quote_amount*; return ``(quote_spent, base_received)``."""

    remaining = quote_amount
    spent = ZERO
    received = ZERO
    for level in asks:
        if remaining <= 0:
            break
        level_cost = level.price * level.quantity
        if level_cost <= remaining:
            spent += level_cost
            received += level.quantity
            remaining -= level_cost
        else:
            spent += remaining
            received += remaining / level.price
            remaining = ZERO
    return spent, received


def return_volatility(prices: Iterable[Decimal]) -> Decimal:
    """Population standard deviation of successive relative price changes."""

    series = [p for p in prices if p > 0]
    if len(series) < 3:
        return ZERO
    changes = [(b - a) / a for a, b in zip(series, series[1:])]
    mean = sum(changes, ZERO) / len(changes)
    variance = sum(((c - mean) ** 2 for c in changes), ZERO) / len(changes)
    return variance.sqrt()
