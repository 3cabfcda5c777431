"""Execution dispatcher tests."""

import asyncio
import time
from decimal import Decimal

from tradeloop.engine.executor import ExecutionDispatcher
from tradeloop.errors import ExecutionError
from tradeloop.models import (
    Acknowledged,
    Action,
    Executed,
    Failed,
    QuoteRefresh,
    RebalanceOpportunity,
    StaleQuotes,
    TradeRecord,
)
from tradeloop.state import StateStore
from tests.venue_mocks import DummyAdapter, mid_book

D = Decimal


def rebalance_action(side="buy", size=2) -> Action:
    opp = RebalanceOpportunity(
        venue_id="eth",
        target_value=D(400),
        current_value=D(200),
        direction=side,
        amount=D(200),
        size=D(str(size)),
        price=D(100),
    )
    return Action(kind="market", venue_id="eth", side=side, size=D(str(size)), rationale=opp)


def quote_action(side="buy") -> Action:
    opp = QuoteRefresh(
        venue_id="eth", bid_price=D(99), ask_price=D(101), size=D(1), spread=D("0.02")
    )
    price = D(99) if side == "buy" else D(101)
    return Action(kind="limit", venue_id="eth", side=side, size=D(1), rationale=opp, limit_price=price)


def test_confirmed_fill_moves_position():
    adapter = DummyAdapter({"eth": mid_book("eth", 100, half_spread="1")})
    state = StateStore(cash=D(1000))
    outcome = asyncio.run(ExecutionDispatcher({"eth": adapter}).dispatch(rebalance_action(), state))
    assert isinstance(outcome, Executed)
    assert outcome.trade.price == D(101)
    assert state.position_size("eth") == D(2)
    assert state.cash == D(1000) - D(202)


def test_adapter_failure_leaves_position_untouched(caplog):
    adapter = DummyAdapter(
        {"eth": mid_book("eth", 100)}, fail_submit=ExecutionError("eth", "rejected by venue")
    )
    state = StateStore(cash=D(1000))
    with caplog.at_level("ERROR"):
        outcome = asyncio.run(ExecutionDispatcher({"eth": adapter}).dispatch(rebalance_action(), state))
    assert isinstance(outcome, Failed)
    assert not outcome.trade.confirmed
    assert "rejected by venue" in outcome.trade.error
    assert state.position_size("eth") == 0
    assert state.cash == D(1000)
    assert len(state.trades) == 1
    assert "execution failed" in caplog.text


def test_limit_order_is_tracked_then_cancelled():
    adapter = DummyAdapter({"eth": mid_book("eth", 100)})
    dispatcher = ExecutionDispatcher({"eth": adapter})
    state = StateStore()

    placed = asyncio.run(dispatcher.dispatch(quote_action(), state))
    assert isinstance(placed, Acknowledged)
    (order_id,) = state.open_orders
    assert state.open_orders[order_id].price == D(99)

    stale = StaleQuotes(venue_id="eth", order_ids=(order_id,))
    cancel = Action(kind="cancel", venue_id="eth", side=None, size=D(0), rationale=stale, order_id=order_id)
    outcome = asyncio.run(dispatcher.dispatch(cancel, state))
    assert isinstance(outcome, Acknowledged)
    assert outcome.ack.status == "cancelled"
    assert state.open_orders == {}


def test_reconcile_records_resting_fills():
    adapter = DummyAdapter({"eth": mid_book("eth", 100)})
    dispatcher = ExecutionDispatcher({"eth": adapter})
    state = StateStore()
    action = quote_action("sell")
    asyncio.run(dispatcher.dispatch(action, state))
    (order_id,) = state.open_orders
    adapter.pending_fills.append(
        TradeRecord(
            venue_id="eth",
            side="sell",
            size=D(1),
            price=D(101),
            fees=D(0),
            action_id="",
            opportunity_id="",
            order_id=order_id,
        )
    )

    fills = asyncio.run(dispatcher.reconcile(state))

    assert len(fills) == 1
    assert fills[0].action_id == action.id
    assert fills[0].opportunity_id == action.opportunity_id
    assert state.open_orders == {}
    assert state.position_size("eth") == D(-1)


class SlowAdapter(DummyAdapter):
    def submit_action(self, action):
        time.sleep(0.3)
        return super().submit_action(action)


def test_slow_confirmation_still_moves_position():
    adapter = SlowAdapter({"eth": mid_book("eth", 100, half_spread="1")})
    state = StateStore(cash=D(1000))
    outcome = asyncio.run(ExecutionDispatcher({"eth": adapter}).dispatch(rebalance_action(), state))
    assert isinstance(outcome, Executed)
    assert state.position_size("eth") == D(2)
    assert [t.confirmed for t in state.trades] == [True]


def place_and_cancel_action(dispatcher, state):
    action = quote_action()
    asyncio.run(dispatcher.dispatch(action, state))
    (order_id,) = state.open_orders
    stale = StaleQuotes(venue_id="eth", order_ids=(order_id,))
    cancel = Action(kind="cancel", venue_id="eth", side=None, size=D(0), rationale=stale, order_id=order_id)
    return action, order_id, cancel


def test_cancel_records_partial_fill_before_forgetting_order():
    adapter = DummyAdapter({"eth": mid_book("eth", 100)})
    dispatcher = ExecutionDispatcher({"eth": adapter})
    state = StateStore()
    action, order_id, cancel = place_and_cancel_action(dispatcher, state)
    adapter.pending_fills.append(
        TradeRecord(
            venue_id="eth",
            side="buy",
            size=D("0.4"),
            price=D(99),
            fees=D(0),
            action_id="",
            opportunity_id="",
            order_id=order_id,
        )
    )

    outcome = asyncio.run(dispatcher.dispatch(cancel, state))

    assert isinstance(outcome, Acknowledged)
    assert state.open_orders == {}
    assert state.position_size("eth") == D("0.4")
    assert state.trades[-1].action_id == action.id


def test_failed_cancel_goes_to_audit_not_trades():
    adapter = DummyAdapter({"eth": mid_book("eth", 100)})
    dispatcher = ExecutionDispatcher({"eth": adapter})
    state = StateStore()
    _, order_id, cancel = place_and_cancel_action(dispatcher, state)
    adapter.fail_submit = ExecutionError("eth", "unknown order")

    outcome = asyncio.run(dispatcher.dispatch(cancel, state))

    assert isinstance(outcome, Failed)
    assert outcome.trade is None
    assert outcome.audit.check == "cancel_failed"
    assert "unknown order" in outcome.audit.reason
    assert len(state.trades) == 0
    assert state.audit[-1] is outcome.audit
    assert order_id in state.open_orders
