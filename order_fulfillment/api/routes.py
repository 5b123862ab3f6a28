"""
API routes for order fulfillment.

Domain errors are translated to HTTP responses by the handlers registered
in ``order_fulfillment.api.main``.
"""
import time
from typing import Any, Dict, List

import structlog
from fastapi import APIRouter, Depends, HTTPException, Response, status
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from sqlalchemy.ext.asyncio import AsyncSession

from order_fulfillment.core.inventory import InventoryLedger
from order_fulfillment.core.order_workflow import OrderLine, OrderWorkflow
from order_fulfillment.database.connection import get_db
from order_fulfillment.database.models import Order, OrderStatus
from order_fulfillment.monitoring.health import HealthCheck

from .schemas import (
    BatchProcessingResult,
    CreateOrderRequest,
    HealthCheckResponse,
    OrderFullDetailsResponse,
    OrderResponse,
    PaymentResponse,
    ProductBatchRequest,
    StockResponse,
    UpdateStatusRequest,
)

logger = structlog.get_logger(__name__)

# Create routers
order_router = APIRouter(prefix="/orders", tags=["orders"])
inventory_router = APIRouter(prefix="/inventory", tags=["inventory"])
monitoring_router = APIRouter(tags=["monitoring"])

# Initialize services
order_workflow = OrderWorkflow()
inventory_ledger = InventoryLedger()
health_check = HealthCheck()


def get_order_workflow() -> OrderWorkflow:
    """Dependency returning the shared workflow engine."""
    return order_workflow


def get_inventory_ledger() -> InventoryLedger:
    """Dependency returning the shared inventory ledger."""
    return inventory_ledger


def get_health_check() -> HealthCheck:
    """Dependency returning the shared health check service."""
    return health_check


def to_order_response(order: Order) -> OrderResponse:
    return OrderResponse.model_validate(order)


@order_router.post(
    "",
    response_model=OrderResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create an order",
    description="Create an order, reserving stock for every line",
)
async def create_order(
    request: CreateOrderRequest,
    db: AsyncSession = Depends(get_db),
    workflow: OrderWorkflow = Depends(get_order_workflow),
) -> OrderResponse:
    """Create a new order."""
    logger.info(
        "api_create_order_request",
        user_id=request.user_id,
        lines=len(request.items),
    )

    order = await workflow.create_order(
        user_id=request.user_id,
        items=[OrderLine(product_id=i.product_id, quantity=i.quantity) for i in request.items],
        db=db,
    )

    logger.info("api_create_order_success", order_id=order.id, total=str(order.total))
    return to_order_response(order)


@order_router.get(
    "",
    response_model=List[OrderResponse],
    summary="List orders",
)
async def list_orders(
    db: AsyncSession = Depends(get_db),
    workflow: OrderWorkflow = Depends(get_order_workflow),
) -> List[OrderResponse]:
    """List all orders."""
    return [to_order_response(order) for order in await workflow.list_orders(db)]


@order_router.get(
    "/user/{user_id}",
    response_model=List[OrderResponse],
    summary="List a user's orders",
)
async def list_user_orders(
    user_id: int,
    db: AsyncSession = Depends(get_db),
    workflow: OrderWorkflow = Depends(get_order_workflow),
) -> List[OrderResponse]:
    """List orders placed by one user."""
    orders = await workflow.list_orders_for_user(user_id, db)
    return [to_order_response(order) for order in orders]


@order_router.get(
    "/{order_id}",
    response_model=OrderResponse,
    summary="Get an order",
)
async def get_order(
    order_id: int,
    db: AsyncSession = Depends(get_db),
    workflow: OrderWorkflow = Depends(get_order_workflow),
) -> OrderResponse:
    """Get one order by ID."""
    return to_order_response(await workflow.get_order(order_id, db))


@order_router.get(
    "/{order_id}/full",
    response_model=OrderFullDetailsResponse,
    summary="Get full order details",
    description="Order with user summary, items, products and categories",
)
async def get_order_full_details(
    order_id: int,
    db: AsyncSession = Depends(get_db),
    workflow: OrderWorkflow = Depends(get_order_workflow),
) -> OrderFullDetailsResponse:
    """Get the acyclic full view of an order."""
    return await workflow.get_order_full_details(order_id, db)


@order_router.post(
    "/{order_id}/pay",
    response_model=PaymentResponse,
    summary="Pay for an order",
    description="Charge the order total with bounded retries and confirm the order",
)
async def pay_order(
    order_id: int,
    db: AsyncSession = Depends(get_db),
    workflow: OrderWorkflow = Depends(get_order_workflow),
) -> PaymentResponse:
    """Process payment for an order."""
    start_time = time.time()
    logger.info("api_pay_order_request", order_id=order_id)

    result = await workflow.process_payment(order_id, db)

    logger.info(
        "api_pay_order_success",
        order_id=order_id,
        transaction_id=result.transaction_id,
        duration_seconds=time.time() - start_time,
    )
    return PaymentResponse(
        order_id=order_id,
        success=result.success,
        transaction_id=result.transaction_id,
        status=OrderStatus.CONFIRMED,
    )


@order_router.post(
    "/{order_id}/cancel",
    response_model=OrderResponse,
    summary="Cancel an order",
    description="Cancel a pending order and restock its items",
)
async def cancel_order(
    order_id: int,
    db: AsyncSession = Depends(get_db),
    workflow: OrderWorkflow = Depends(get_order_workflow),
) -> OrderResponse:
    """Cancel a pending order."""
    logger.info("api_cancel_order_request", order_id=order_id)
    return to_order_response(await workflow.cancel_order(order_id, db))


@order_router.patch(
    "/{order_id}/status",
    response_model=OrderResponse,
    summary="Change order status",
)
async def update_order_status(
    order_id: int,
    request: UpdateStatusRequest,
    db: AsyncSession = Depends(get_db),
    workflow: OrderWorkflow = Depends(get_order_workflow),
) -> OrderResponse:
    """Move an order to a new status if the state machine allows it."""
    logger.info("api_update_status_request", order_id=order_id, status=request.status.value)
    return to_order_response(await workflow.update_status(order_id, request.status, db))


@inventory_router.get(
    "/{product_id}",
    response_model=StockResponse,
    summary="Get current stock",
)
async def get_stock(
    product_id: int,
    db: AsyncSession = Depends(get_db),
    ledger: InventoryLedger = Depends(get_inventory_ledger),
) -> StockResponse:
    """Current stock for one product."""
    stock = await ledger.get_current_stock(product_id, db)
    return StockResponse(product_id=product_id, stock=stock)


@inventory_router.post(
    "/batch",
    response_model=BatchProcessingResult,
    summary="Process a product batch",
    description="Touch a batch of products, reporting missing ones individually",
)
async def process_product_batch(
    request: ProductBatchRequest,
    db: AsyncSession = Depends(get_db),
    ledger: InventoryLedger = Depends(get_inventory_ledger),
) -> Dict[str, Any]:
    """Run catalog maintenance over a batch of products."""
    return await ledger.process_product_batch(request.product_ids, db)


@monitoring_router.get(
    "/health",
    response_model=HealthCheckResponse,
    summary="Health check",
    description="Check overall system health",
)
async def health(checker: HealthCheck = Depends(get_health_check)) -> Dict[str, Any]:
    """Health check endpoint for monitoring."""
    return await checker.check_all()


@monitoring_router.get(
    "/health/live",
    response_model=HealthCheckResponse,
    summary="Liveness check",
)
async def liveness(checker: HealthCheck = Depends(get_health_check)) -> Dict[str, Any]:
    """Liveness check endpoint."""
    return await checker.liveness()


@monitoring_router.get(
    "/health/ready",
    response_model=HealthCheckResponse,
    summary="Readiness check",
)
async def readiness(checker: HealthCheck = Depends(get_health_check)) -> Dict[str, Any]:
    """Readiness check endpoint."""
    result = await checker.readiness()
    if result["status"] != "healthy":
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=result)
    return result


@monitoring_router.get(
    "/metrics",
    summary="Prometheus metrics",
    include_in_schema=False,
)
async def prometheus_metrics() -> Response:
    """Expose Prometheus metrics."""
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
