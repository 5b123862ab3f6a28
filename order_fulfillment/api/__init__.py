"""FastAPI application and routes."""
from .main import app
from .schemas import (
    CreateOrderRequest,
    OrderFullDetailsResponse,
    OrderResponse,
    PaymentResponse,
    UpdateStatusRequest,
)

__all__ = [
    "app",
    "CreateOrderRequest",
    "OrderFullDetailsResponse",
    "OrderResponse",
    "PaymentResponse",
    "UpdateStatusRequest",
]
