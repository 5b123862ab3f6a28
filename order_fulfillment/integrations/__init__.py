"""External payment integrations."""
from .payment_gateway import (
    PaymentError,
    PaymentFailed,
    PaymentGateway,
    PaymentResult,
    PaymentUnavailable,
    ScriptedPaymentGateway,
    SimulatedPaymentGateway,
    create_payment_gateway,
)

__all__ = [
    "PaymentError",
    "PaymentFailed",
    "PaymentGateway",
    "PaymentResult",
    "PaymentUnavailable",
    "ScriptedPaymentGateway",
    "SimulatedPaymentGateway",
    "create_payment_gateway",
]
