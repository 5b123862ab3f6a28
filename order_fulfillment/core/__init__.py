"""Core order fulfillment logic."""
from .inventory import InventoryLedger
from .order_workflow import OrderLine, OrderWorkflow
from .projection import OrderFullDetailsResponse, project_order
from .saga import Saga

__all__ = [
    "InventoryLedger",
    "OrderFullDetailsResponse",
    "OrderLine",
    "OrderWorkflow",
    "Saga",
    "project_order",
]
