"""
Integration tests for the HTTP API.

The application lifespan is not run, so the production database is never
touched; sessions come from the per-test SQLite engine.
"""
from typing import Any, AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from order_fulfillment.api.main import app
from order_fulfillment.api.routes import get_health_check, get_order_workflow
from order_fulfillment.core.order_workflow import OrderWorkflow
from order_fulfillment.database.connection import get_db
from order_fulfillment.integrations.payment_gateway import ScriptedPaymentGateway
from order_fulfillment.monitoring.health import HealthCheck


@pytest_asyncio.fixture
async def client(session_factory, workflow: OrderWorkflow) -> AsyncGenerator[AsyncClient, Any]:
    """Create test HTTP client wired to the test database."""

    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_order_workflow] = lambda: workflow
    app.dependency_overrides[get_health_check] = lambda: HealthCheck(
        session_factory=session_factory
    )

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


async def create_order(client: AsyncClient, seed, quantity: int = 1) -> dict:
    response = await client.post(
        "/orders",
        json={
            "user_id": seed.user_id,
            "items": [{"product_id": seed.mouse_id, "quantity": quantity}],
        },
    )
    assert response.status_code == 201, response.text
    return response.json()


class TestOrderEndpoints:

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_create_and_fetch_order(self, client: AsyncClient, seed) -> None:
        order = await create_order(client, seed, quantity=2)

        assert order["status"] == "pending"
        assert order["total"] == pytest.approx(39.0)
        assert order["items"][0]["price"] == pytest.approx(19.5)

        response = await client.get(f"/orders/{order['id']}")
        assert response.status_code == 200
        assert response.json()["id"] == order["id"]

        stock = await client.get(f"/inventory/{seed.mouse_id}")
        assert stock.json() == {"product_id": seed.mouse_id, "stock": 3}

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_responses_carry_request_id(self, client: AsyncClient, seed) -> None:
        response = await client.get("/orders")

        assert response.status_code == 200
        assert response.headers["X-Request-ID"]

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_insufficient_stock_is_bad_request(self, client: AsyncClient, seed) -> None:
        response = await client.post(
            "/orders",
            json={"user_id": seed.user_id, "items": [{"product_id": seed.cable_id, "quantity": 3}]},
        )

        assert response.status_code == 400
        assert response.json() == {
            "error": "InsufficientStock",
            "message": "Not enough stock for Cable",
        }

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_non_positive_quantity_is_rejected(self, client: AsyncClient, seed) -> None:
        response = await client.post(
            "/orders",
            json={"user_id": seed.user_id, "items": [{"product_id": seed.cable_id, "quantity": 0}]},
        )

        assert response.status_code == 422

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_unknown_order_is_not_found(self, client: AsyncClient, seed) -> None:
        response = await client.get("/orders/999")

        assert response.status_code == 404
        assert response.json()["message"] == "Order #999 not found"

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_list_orders_for_user(self, client: AsyncClient, seed) -> None:
        order = await create_order(client, seed)

        mine = await client.get(f"/orders/user/{seed.user_id}")
        theirs = await client.get(f"/orders/user/{seed.other_user_id}")

        assert [o["id"] for o in mine.json()] == [order["id"]]
        assert theirs.json() == []

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_full_details(self, client: AsyncClient, seed) -> None:
        order = await create_order(client, seed)

        response = await client.get(f"/orders/{order['id']}/full")

        assert response.status_code == 200
        body = response.json()
        assert body["user"]["latest_order"]["id"] == order["id"]
        assert body["items"][0]["product"]["category"]["name"] == "Peripherals"

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_pay_confirms_order(self, client: AsyncClient, seed) -> None:
        order = await create_order(client, seed)

        response = await client.post(f"/orders/{order['id']}/pay")

        assert response.status_code == 200
        assert response.json() == {
            "order_id": order["id"],
            "success": True,
            "transaction_id": "TXN-SCRIPTED",
            "status": "confirmed",
        }

        cancel = await client.post(f"/orders/{order['id']}/cancel")
        assert cancel.status_code == 400
        assert cancel.json()["message"] == "Only pending orders can be cancelled"

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_pay_with_gateway_down_is_bad_gateway(
        self, client: AsyncClient, seed, workflow: OrderWorkflow
    ) -> None:
        order = await create_order(client, seed)
        workflow.payment_gateway = ScriptedPaymentGateway.always_failing()

        response = await client.post(f"/orders/{order['id']}/pay")

        assert response.status_code == 502
        assert response.json()["error"] == "PaymentUnavailable"
        assert (await client.get(f"/orders/{order['id']}")).json()["status"] == "pending"

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_cancel_restocks(self, client: AsyncClient, seed) -> None:
        order = await create_order(client, seed, quantity=5)

        response = await client.post(f"/orders/{order['id']}/cancel")

        assert response.status_code == 200
        assert response.json()["status"] == "cancelled"
        stock = await client.get(f"/inventory/{seed.mouse_id}")
        assert stock.json()["stock"] == 5

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_patch_status(self, client: AsyncClient, seed) -> None:
        order = await create_order(client, seed)

        response = await client.patch(
            f"/orders/{order['id']}/status", json={"status": "confirmed"}
        )

        assert response.status_code == 200
        assert response.json()["status"] == "confirmed"

        again = await client.patch(f"/orders/{order['id']}/status", json={"status": "pending"})
        assert again.status_code == 400


class TestInventoryEndpoints:

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_unknown_product_stock(self, client: AsyncClient, seed) -> None:
        response = await client.get("/inventory/999")

        assert response.status_code == 404

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_batch(self, client: AsyncClient, seed) -> None:
        response = await client.post(
            "/inventory/batch", json={"product_ids": [seed.keyboard_id, 999]}
        )

        assert response.status_code == 200
        assert response.json() == {
            "success": False,
            "processed": 1,
            "failed": 1,
            "errors": [{"product_id": 999, "error": "Product #999 not found"}],
        }


class TestMonitoringEndpoints:

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_health(self, client: AsyncClient) -> None:
        response = await client.get("/health")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "healthy"
        assert body["checks"]["database"]["status"] == "healthy"

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_liveness(self, client: AsyncClient) -> None:
        response = await client.get("/health/live")

        assert response.json()["status"] == "healthy"

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_metrics(self, client: AsyncClient, seed) -> None:
        await create_order(client, seed)

        response = await client.get("/metrics")

        assert response.status_code == 200
        assert "orders_created_total" in response.text
