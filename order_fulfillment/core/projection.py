"""
Client-facing order projection.

Stored orders reference users by foreign key only. The projected view embeds a
user summary whose ``latest_order`` is a scalar summary of this same order,
so the output is a tree with no user↔order back-edges.
"""
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field

from order_fulfillment.database.models import Order, OrderItem, OrderStatus


class CategorySummary(BaseModel):
    """Category id and name."""

    id: int
    name: str


class ProductSummary(BaseModel):
    """Product fields needed to render an order line."""

    id: int
    name: str
    price: float
    category: Optional[CategorySummary] = None


class OrderSummary(BaseModel):
    """Flattened order summary: scalar fields only, never a user."""

    id: int
    status: OrderStatus
    total: float
    created_at: datetime


class UserSummary(BaseModel):
    """User fields plus the summary of the order being viewed."""

    id: int
    email: str
    name: str
    is_active: bool
    created_at: datetime
    latest_order: OrderSummary = Field(
        ..., description="Summary of the projected order, not a live lookup"
    )


class OrderItemDetails(BaseModel):
    """Order line with its price snapshot and product summary."""

    id: int
    product_id: int
    quantity: int
    price: float
    product: ProductSummary


class OrderFullDetailsResponse(BaseModel):
    """Acyclic full view of an order."""

    id: int
    status: OrderStatus
    total: float
    user_id: int
    created_at: datetime
    user: UserSummary
    items: List[OrderItemDetails]


def _project_item(item: OrderItem) -> OrderItemDetails:
    product = item.product
    category = product.category
    return OrderItemDetails(
        id=item.id,
        product_id=item.product_id,
        quantity=item.quantity,
        price=float(item.price),
        product=ProductSummary(
            id=product.id,
            name=product.name,
            price=float(product.price),
            category=CategorySummary(id=category.id, name=category.name) if category else None,
        ),
    )


def project_order(order: Order) -> OrderFullDetailsResponse:
    """
    Build the full details view of an order.

    Expects ``order.user``, ``order.items``, ``item.product`` and
    ``item.product.category`` to be loaded already.

    Args:
        order: Fully loaded order

    Returns:
        OrderFullDetailsResponse: Acyclic projection
    """
    status = order.order_status
    total = float(order.total)
    user = order.user

    return OrderFullDetailsResponse(
        id=order.id,
        status=status,
        total=total,
        user_id=order.user_id,
        created_at=order.created_at,
        user=UserSummary(
            id=user.id,
            email=user.email,
            name=user.name,
            is_active=user.is_active,
            created_at=user.created_at,
            latest_order=OrderSummary(
                id=order.id,
                status=status,
                total=total,
                created_at=order.created_at,
            ),
        ),
        items=[_project_item(item) for item in order.items],
    )
