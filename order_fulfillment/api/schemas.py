"""
Pydantic schemas for API request/response models.
"""
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from order_fulfillment.core.projection import (
    CategorySummary,
    OrderFullDetailsResponse,
    OrderItemDetails,
    OrderSummary,
    ProductSummary,
    UserSummary,
)
from order_fulfillment.database.models import OrderStatus


class OrderLineRequest(BaseModel):
    """One requested order line."""

    product_id: int = Field(..., description="Product identifier")
    quantity: int = Field(..., gt=0, description="Units to order")


class CreateOrderRequest(BaseModel):
    """Request schema for creating an order."""

    user_id: int = Field(..., description="Ordering user")
    items: List[OrderLineRequest] = Field(..., description="Order lines, reserved in order")

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "user_id": 1,
                    "items": [
                        {"product_id": 10, "quantity": 2},
                        {"product_id": 11, "quantity": 1},
                    ],
                }
            ]
        }
    }


class UpdateStatusRequest(BaseModel):
    """Request schema for an explicit status change."""

    status: OrderStatus = Field(..., description="Target status")


class OrderItemResponse(BaseModel):
    """Order line with price snapshot."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    product_id: int
    quantity: int
    price: float = Field(..., description="Unit price at order time")


class OrderResponse(BaseModel):
    """Response schema for an order."""

    model_config = ConfigDict(from_attributes=True)

    id: int = Field(..., description="Order ID")
    user_id: int = Field(..., description="Ordering user")
    status: OrderStatus = Field(..., description="Order status")
    total: float = Field(..., description="Sum of item subtotals")
    created_at: datetime = Field(..., description="Creation timestamp")
    items: List[OrderItemResponse] = Field(default_factory=list)


class PaymentResponse(BaseModel):
    """Response schema for a successful payment."""

    order_id: int = Field(..., description="Order ID")
    success: bool = Field(..., description="Whether the charge succeeded")
    transaction_id: Optional[str] = Field(default=None, description="Gateway transaction ID")
    status: OrderStatus = Field(..., description="Order status after payment")


class StockResponse(BaseModel):
    """Response schema for a stock lookup."""

    product_id: int
    stock: int


class ProductBatchRequest(BaseModel):
    """Request schema for batch product maintenance."""

    product_ids: List[int] = Field(..., description="Products to process")


class BatchProductError(BaseModel):
    product_id: int
    error: str


class BatchProcessingResult(BaseModel):
    """Aggregated result of a batch product operation."""

    success: bool
    processed: int
    failed: int
    errors: List[BatchProductError]


class HealthCheckResponse(BaseModel):
    """Response schema for health checks."""

    status: str = Field(..., description="Overall health status (healthy/unhealthy)")
    checks: Optional[Dict[str, Any]] = Field(default=None, description="Individual service checks")
    message: Optional[str] = Field(default=None, description="Status message")


__all__ = [
    "BatchProcessingResult",
    "BatchProductError",
    "CategorySummary",
    "CreateOrderRequest",
    "HealthCheckResponse",
    "OrderFullDetailsResponse",
    "OrderItemDetails",
    "OrderItemResponse",
    "OrderLineRequest",
    "OrderResponse",
    "OrderSummary",
    "PaymentResponse",
    "ProductBatchRequest",
    "ProductSummary",
    "StockResponse",
    "UpdateStatusRequest",
    "UserSummary",
]
