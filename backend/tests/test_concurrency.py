"""
Concurrency Tests.

Validates that racing transitions on one order cannot both succeed.
"""

import pytest
import asyncio
from decimal import Decimal

from backend.app.core.exceptions import OrderTerminalError
from backend.app.domain.orders.coordinator import OrderCoordinator
from backend.app.models.order_enums import OrderStatus


async def _run(session_factory, providers, active_orders, action, order_id, user_id, refund_on_cancel=False):
    async with session_factory() as session:
        coordinator = OrderCoordinator(session, providers, active_orders, refund_on_cancel=refund_on_cancel)
        try:
            order = await getattr(coordinator, action)(order_id, user_id)
            return order.status
        except OrderTerminalError as exc:
            return exc


@pytest.mark.asyncio
async def test_concurrent_finish_and_cancel(coordinator, session_factory, gateway, providers, active_orders, customer, load_order):
    """Exactly one of finish/cancel wins; the loser sees a terminal order."""
    gateway.queue_purchase(order_id="8001")
    await coordinator.buy_number(customer, "russia", "telegram")
    gateway.yield_on_call = True

    results = await asyncio.gather(
        _run(session_factory, providers, active_orders, "finish_order", "8001", customer),
        _run(session_factory, providers, active_orders, "cancel_order", "8001", customer),
    )

    winners = [r for r in results if isinstance(r, OrderStatus)]
    losers = [r for r in results if isinstance(r, OrderTerminalError)]
    assert len(winners) == 1
    assert len(losers) == 1
    assert gateway.count("finish") + gateway.count("cancel") == 1
    assert (await load_order("8001")).status == winners[0]


@pytest.mark.asyncio
async def test_concurrent_cancels_refund_once(coordinator, session_factory, gateway, providers, active_orders, customer, load_ledger):
    gateway.queue_purchase(cost="10", order_id="8002")
    await coordinator.buy_number(customer, "russia", "telegram")
    gateway.yield_on_call = True

    results = await asyncio.gather(*[
        _run(session_factory, providers, active_orders, "cancel_order", "8002", customer, refund_on_cancel=True)
        for _ in range(3)
    ])

    assert results.count(OrderStatus.CANCELLED) == 1
    assert gateway.count("cancel") == 1
    refunds = [e for e in await load_ledger(customer) if e.reference == "refund:8002"]
    assert len(refunds) == 1
    assert await coordinator.ledger.get_balance(customer) == Decimal("50.00")
