"""
Race condition tests for concurrent stock reservations.

Each task uses its own session (and connection) so the conditional UPDATE is
the only thing standing between concurrent buyers and an oversold product.
"""
import asyncio
from typing import Any, List

import pytest
from sqlalchemy import func, select

from order_fulfillment.core.inventory import InventoryLedger
from order_fulfillment.core.order_workflow import OrderLine, OrderWorkflow
from order_fulfillment.database.models import Order
from order_fulfillment.exceptions import InsufficientStock


class TestRaceConditions:
    """Test suite for race condition scenarios."""

    @pytest.mark.race
    @pytest.mark.asyncio
    async def test_concurrent_reservations_never_oversell(
        self, session_factory, seed, inventory: InventoryLedger
    ) -> None:
        """Ten buyers race for five units: exactly five succeed."""

        async def buy_one() -> int:
            async with session_factory() as session:
                try:
                    remaining = await inventory.reserve(seed.mouse_id, 1, session)
                    await session.commit()
                except Exception:
                    await session.rollback()
                    raise
                return remaining

        results: List[Any] = await asyncio.gather(
            *(buy_one() for _ in range(10)), return_exceptions=True
        )

        successes = [r for r in results if isinstance(r, int)]
        failures = [r for r in results if isinstance(r, InsufficientStock)]

        assert len(successes) == 5
        assert len(failures) == 5
        assert sorted(successes) == [0, 1, 2, 3, 4]

        async with session_factory() as session:
            assert await inventory.get_current_stock(seed.mouse_id, session) == 0

    @pytest.mark.race
    @pytest.mark.asyncio
    async def test_concurrent_orders_for_last_unit(
        self, session_factory, seed, workflow: OrderWorkflow
    ) -> None:
        """Only one of several concurrent orders gets the single cable."""

        async def place_order() -> int:
            async with session_factory() as session:
                order = await workflow.create_order(
                    seed.user_id, [OrderLine(product_id=seed.cable_id, quantity=1)], session
                )
                return order.id

        results = await asyncio.gather(
            *(place_order() for _ in range(4)), return_exceptions=True
        )

        created = [r for r in results if isinstance(r, int)]
        rejected = [r for r in results if isinstance(r, InsufficientStock)]

        assert len(created) == 1
        assert len(rejected) == 3

        async with session_factory() as session:
            assert await workflow.inventory.get_current_stock(seed.cable_id, session) == 0
            order_count = await session.scalar(select(func.count(Order.id)))
            assert order_count == 1
