"""Dispatch approved actions to venue adapters and record the outcomes."""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from dataclasses import replace
from typing import Iterable, Mapping

from tradeloop.adapters.base import VenueAdapter
from tradeloop.metrics.exporter import ACTIONS_TOTAL, REALIZED_PNL, TRADES_TOTAL
from tradeloop.models import (
    Acknowledged,
    Action,
    DispatchOutcome,
    Executed,
    Failed,
    OrderAck,
    RestingQuote,
    TradeRecord,
)
from tradeloop.state import StateStore

log = logging.getLogger(__name__)


class ExecutionDispatcher:
    """Hand approved actions to adapters; only confirmed fills move positions.

    Submission is not cut short here: the adapter owns the wait for a
    confirmed or failed result, bounded by its own client timeout.
    """

    def __init__(self, adapters: Mapping[str, VenueAdapter]) -> None:
        self.adapters = dict(adapters)

    def _record_fill(self, state: StateStore, trade: TradeRecord) -> None:
        state.record_trade(trade)
        TRADES_TOTAL.labels(trade.venue_id, trade.side).inc()
        pos = state.positions.get(trade.venue_id)
        if pos is not None:
            REALIZED_PNL.labels(trade.venue_id).set(float(pos.realized_pnl))

    async def _fetch_fills(self, venue_id: str, order_ids: Iterable[str]) -> list[TradeRecord] | None:
        adapter = self.adapters.get(venue_id)
        if adapter is None:
            return None
        try:
            return await asyncio.to_thread(adapter.fetch_order_fills, venue_id, list(order_ids))
        except Exception as exc:
            log.warning("order reconciliation failed venue=%s: %s", venue_id, exc)
            return None

    def _apply_order_fill(
        self, state: StateStore, fill: TradeRecord, quote: RestingQuote | None
    ) -> TradeRecord:
        if quote is not None:
            fill = replace(
                fill,
                action_id=fill.action_id or quote.action_id,
                opportunity_id=fill.opportunity_id or quote.opportunity_id,
            )
        self._record_fill(state, fill)
        return fill

    async def _settle_cancelled(self, action: Action, order_id: str | None, state: StateStore) -> None:
        """Record whatever filled before the cancel, then stop tracking the order."""

        if order_id and order_id in state.open_orders:
            fills = await self._fetch_fills(action.venue_id, [order_id])
            if fills is None:
                log.warning(
                    "cancelled order %s on %s: final fill state unknown", order_id, action.venue_id
                )
            for fill in fills or []:
                if fill.order_id == order_id:
                    self._apply_order_fill(state, fill, state.open_orders.get(order_id))
        state.forget_order(order_id)

    async def dispatch(self, action: Action, state: StateStore) -> DispatchOutcome:
        """Submit *action* and update *state* from the result.

        Adapter exceptions are contained here. A failed order is recorded as
        an unconfirmed :class:`TradeRecord` and positions are left untouched;
        a failed cancellation goes to the audit log and the order stays
        tracked so reconciliation can still pick up its fills.
        """

        adapter = self.adapters[action.venue_id]
        try:
            result = await asyncio.to_thread(adapter.submit_action, action)
        except Exception as exc:
            reason = f"{type(exc).__name__}: {exc}"
            log.error(
                "execution failed action=%s venue=%s kind=%s side=%s size=%s: %s",
                action.id,
                action.venue_id,
                action.kind,
                action.side,
                action.size,
                exc,
            )
            ACTIONS_TOTAL.labels(action.venue_id, "failed").inc()
            if action.kind == "cancel":
                entry = state.record_failure(action, "cancel_failed", reason)
                return Failed(action, None, audit=entry)
            record = TradeRecord.failed(action, reason)
            state.record_trade(record)
            return Failed(action, record)

        if isinstance(result, OrderAck):
            if result.status == "open":
                state.track_order(
                    RestingQuote(
                        order_id=result.order_id,
                        venue_id=action.venue_id,
                        side=action.side or "buy",
                        price=action.limit_price or result.price,
                        size=action.size,
                        placed_at=result.timestamp,
                        action_id=action.id,
                        opportunity_id=action.opportunity_id,
                    )
                )
            else:
                await self._settle_cancelled(action, result.order_id or action.order_id, state)
            ACTIONS_TOTAL.labels(action.venue_id, result.status).inc()
            return Acknowledged(action, result)

        if not result.confirmed:
            log.error(
                "execution unconfirmed action=%s venue=%s: %s",
                action.id,
                action.venue_id,
                result.error,
            )
            state.record_trade(result)
            ACTIONS_TOTAL.labels(action.venue_id, "failed").inc()
            return Failed(action, result)

        self._record_fill(state, result)
        ACTIONS_TOTAL.labels(action.venue_id, "executed").inc()
        log.info(
            "executed %s %s %s @ %s on %s (fees %s)",
            action.kind,
            result.side,
            result.size,
            result.price,
            result.venue_id,
            result.fees,
        )
        return Executed(action, result)

    async def reconcile(self, state: StateStore) -> list[TradeRecord]:
        """Record fills for tracked resting quotes and stop tracking them."""

        by_venue: dict[str, list[str]] = defaultdict(list)
        for quote in state.open_orders.values():
            by_venue[quote.venue_id].append(quote.order_id)
        recorded: list[TradeRecord] = []
        for venue_id, order_ids in by_venue.items():
            fills = await self._fetch_fills(venue_id, order_ids)
            for fill in fills or []:
                quote = state.forget_order(fill.order_id)
                recorded.append(self._apply_order_fill(state, fill, quote))
        return recorded
