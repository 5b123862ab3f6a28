"""
Error taxonomy for the order fulfillment workflow.

Three families, each with its own propagation policy:
- NotFoundError: surfaced immediately, never retried
- ValidationFailure: surfaced immediately, never retried
- TransientServiceFailure: retried with backoff by the caller
"""
from typing import Any, Optional


class OrderFulfillmentError(Exception):
    """Base exception for order fulfillment errors."""

    pass


class NotFoundError(OrderFulfillmentError):
    """Raised when a referenced entity does not exist."""

    entity = "Entity"

    def __init__(self, entity_id: Any):
        super().__init__(f"{self.entity} #{entity_id} not found")
        self.entity_id = entity_id


class UserNotFound(NotFoundError):
    entity = "User"


class ProductNotFound(NotFoundError):
    entity = "Product"


class OrderNotFound(NotFoundError):
    entity = "Order"


class ValidationFailure(OrderFulfillmentError):
    """Raised when a request is well-formed but cannot be honored."""

    pass


class InsufficientStock(ValidationFailure):
    """Raised when a product does not have enough stock for a reservation."""

    def __init__(
        self,
        product_name: str,
        requested: Optional[int] = None,
        available: Optional[int] = None,
    ):
        super().__init__(f"Not enough stock for {product_name}")
        self.product_name = product_name
        self.requested = requested
        self.available = available


class InvalidTransition(ValidationFailure):
    """Raised when an order status change is not allowed from its current status."""

    def __init__(self, current: Any, target: Any, message: Optional[str] = None):
        current_value = getattr(current, "value", current)
        target_value = getattr(target, "value", target)
        super().__init__(
            message or f"Cannot move order from {current_value} to {target_value}"
        )
        self.current = current
        self.target = target


class InvalidQuantity(ValidationFailure):
    """Raised when a stock quantity is not a positive integer."""

    pass


class TransientServiceFailure(OrderFulfillmentError):
    """
    Raised when an external dependency fails in a way that may succeed on retry.

    Subclasses set ``fatal = True`` to opt out of retries.
    """

    fatal = False
