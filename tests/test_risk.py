"""Risk gate ordering, rejection and shared exposure tests."""

import asyncio
from decimal import Decimal

from tradeloop.config import RiskConfig
from tradeloop.engine.risk import CHECK_ORDER, RiskGate, SharedExposure
from tradeloop.models import (
    Action,
    Approved,
    ArbitrageOpportunity,
    QuoteRefresh,
    Rejected,
    RestingQuote,
    StaleQuotes,
    TradeRecord,
    utcnow,
)
from tradeloop.state import StateStore
from tests.venue_mocks import mid_book, snapshot

D = Decimal


def risk(**overrides) -> RiskConfig:
    params = dict(
        max_position_size=D(10),
        min_profit=D(5),
        stop_loss=D(100),
        min_fill_ratio=D("0.9"),
    )
    params.update(overrides)
    return RiskConfig(**params)


def arb(net=D(50)) -> ArbitrageOpportunity:
    return ArbitrageOpportunity(
        symbol="ETH/USDT",
        buy_venue="eth",
        sell_venue="eth2",
        buy_price=D(100),
        sell_price=D(102),
        size_estimate=D(1),
        gross_edge=D("0.02"),
        gross_profit=net + 1,
        cost=D(1),
        net_profit=net,
    )


def market(size, side="buy", net=D(50), venue="eth") -> Action:
    return Action(kind="market", venue_id=venue, side=side, size=D(str(size)), rationale=arb(net))


def book_state() -> StateStore:
    state = StateStore()
    state.apply_snapshots({"eth": mid_book("eth", 100, qty="20")})
    return state


def hold(state: StateStore, size, price=100) -> None:
    state.record_trade(
        TradeRecord(
            venue_id="eth",
            side="buy",
            size=D(str(size)),
            price=D(str(price)),
            fees=D(0),
            action_id="x",
            opportunity_id="y",
        )
    )


def test_approves_action_within_limits():
    outcome = RiskGate().evaluate(market(1), book_state(), risk())
    assert isinstance(outcome, Approved)


def test_cancel_always_passes():
    opp = StaleQuotes(venue_id="eth", order_ids=("q1",))
    action = Action(kind="cancel", venue_id="eth", side=None, size=D(0), rationale=opp, order_id="q1")
    state = StateStore()
    hold(state, 50)
    assert isinstance(RiskGate().evaluate(action, state, risk(stop_loss=D(0))), Approved)


def test_checks_run_in_fixed_order():
    assert CHECK_ORDER == ("position_limit", "min_profit", "stop_loss", "liquidity")
    outcome = RiskGate().evaluate(market(50, net=D(1)), book_state(), risk())
    assert isinstance(outcome, Rejected)
    assert outcome.check == "position_limit"


def test_min_profit_rejects_thin_opportunity():
    outcome = RiskGate().evaluate(market(1, net=D(5)), book_state(), risk())
    assert isinstance(outcome, Rejected)
    assert outcome.check == "min_profit"


def test_rejection_is_monotonic_in_tightened_limits():
    gate = RiskGate()
    state = book_state()
    action = market(12)
    assert isinstance(gate.evaluate(action, state, risk()), Rejected)
    for limit in (D(9), D(5), D(1)):
        assert isinstance(gate.evaluate(action, state, risk(max_position_size=limit)), Rejected)


def test_reducing_action_passes_position_and_stop_checks():
    gate = RiskGate()
    state = book_state()
    hold(state, 15, price=200)  # over the cap and deep in loss
    outcome = gate.evaluate(market(5, side="sell"), state, risk(stop_loss=D(10)))
    assert isinstance(outcome, Approved)


def test_stop_loss_blocks_adding_to_losing_bucket():
    gate = RiskGate()
    state = book_state()
    hold(state, 2, price=200)  # marked at 100 -> loss 200
    outcome = gate.evaluate(market(1), state, risk(stop_loss=D(150)))
    assert isinstance(outcome, Rejected)
    assert outcome.check == "stop_loss"


def test_liquidity_requires_fill_ratio():
    state = StateStore()
    state.apply_snapshots({"eth": snapshot("eth", [(99, 1)], [(101, 1)])})
    outcome = RiskGate().evaluate(market(2), state, risk())
    assert isinstance(outcome, Rejected)
    assert outcome.check == "liquidity"


def test_liquidity_requires_fresh_snapshot():
    state = book_state()
    state.apply_snapshots({}, failed=["eth"])
    outcome = RiskGate().evaluate(market(1), state, risk())
    assert isinstance(outcome, Rejected)
    assert outcome.reason == "no fresh snapshot for venue"


def test_slippage_limit():
    state = StateStore()
    state.apply_snapshots({"eth": snapshot("eth", [(99, 5)], [(100, 1), (110, 5)])})
    outcome = RiskGate().evaluate(market(2), state, risk(max_slippage=D("0.01")))
    assert isinstance(outcome, Rejected)
    assert "slippage" in outcome.reason


def test_limit_quote_skips_liquidity_and_checks_edge():
    quote = QuoteRefresh(
        venue_id="eth", bid_price=D("99.9"), ask_price=D("100.1"), size=D(1), spread=D("0.002")
    )
    action = Action(
        kind="limit", venue_id="eth", side="buy", size=D(1), rationale=quote, limit_price=D("99.9")
    )
    state = StateStore()
    assert isinstance(RiskGate().evaluate(action, state, risk()), Approved)
    outcome = RiskGate().evaluate(action, state, risk(min_quote_edge=D(1)))
    assert isinstance(outcome, Rejected)
    assert outcome.check == "min_profit"


def test_shared_exposure_caps_sum_across_bots():
    async def scenario():
        shared = SharedExposure(D(100))
        assert await shared.try_reserve("a", D(60))
        assert not await shared.try_reserve("b", D(50))
        assert await shared.try_reserve("b", D(40))
        await shared.set_exposure("a", D(10))
        assert await shared.total() == D(50)

    asyncio.run(scenario())


def quote_limit(side, size):
    quote = QuoteRefresh(
        venue_id="eth", bid_price=D("99.9"), ask_price=D("100.1"), size=D(size), spread=D("0.002")
    )
    price = quote.bid_price if side == "buy" else quote.ask_price
    return Action(
        kind="limit", venue_id="eth", side=side, size=D(size), rationale=quote, limit_price=price
    )


def rest(state: StateStore, order_id, side, size) -> None:
    state.track_order(
        RestingQuote(
            order_id=order_id,
            venue_id="eth",
            side=side,
            price=D(100),
            size=D(size),
            placed_at=utcnow(),
        )
    )


def test_position_limit_counts_same_side_resting_orders():
    state = StateStore()
    hold(state, 4)
    action = quote_limit("buy", 2)
    assert isinstance(RiskGate().evaluate(action, state, risk()), Approved)

    rest(state, "r1", "buy", 3)
    rest(state, "r2", "buy", 2)
    outcome = RiskGate().evaluate(action, state, risk())
    assert isinstance(outcome, Rejected)
    assert outcome.check == "position_limit"


def test_opposite_side_resting_orders_do_not_count():
    state = StateStore()
    hold(state, 4)
    rest(state, "r1", "sell", 8)
    assert isinstance(RiskGate().evaluate(quote_limit("buy", 2), state, risk()), Approved)
