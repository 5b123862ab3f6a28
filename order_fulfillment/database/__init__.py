"""Database package for the order fulfillment service."""
from .connection import close_db, create_session_factory, get_db, init_db
from .models import (
    Base,
    Category,
    MovementType,
    Order,
    OrderItem,
    OrderStatus,
    Product,
    StockMovement,
    User,
)

__all__ = [
    "Base",
    "Category",
    "MovementType",
    "Order",
    "OrderItem",
    "OrderStatus",
    "Product",
    "StockMovement",
    "User",
    "close_db",
    "create_session_factory",
    "get_db",
    "init_db",
]
