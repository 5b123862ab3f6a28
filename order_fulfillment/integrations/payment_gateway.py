"""
Payment gateway adapters.

The workflow engine treats the gateway as slow and unreliable: every call may
independently succeed or fail, and any failure not marked fatal is retried.
"""
import asyncio
import random
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable, List, Optional, Tuple, Union

import structlog

from order_fulfillment.config import Settings, get_settings
from order_fulfillment.exceptions import TransientServiceFailure

logger = structlog.get_logger(__name__)


class PaymentError(TransientServiceFailure):
    """Base exception for payment gateway failures."""

    def __init__(self, message: str, fatal: bool = False):
        super().__init__(message)
        self.fatal = fatal


class PaymentFailed(PaymentError):
    """Raised when the gateway declines or rejects a charge."""

    pass


class PaymentUnavailable(PaymentError):
    """Raised when the gateway cannot be reached or is overloaded."""

    pass


@dataclass(frozen=True)
class PaymentResult:
    """Outcome of a single charge. Never persisted."""

    success: bool
    transaction_id: Optional[str] = None


class PaymentGateway(ABC):
    """Charges money for an order."""

    name = "gateway"

    @abstractmethod
    async def charge(self, order_id: int, amount: Decimal) -> PaymentResult:
        """
        Charge ``amount`` for ``order_id``.

        Raises:
            PaymentFailed: If the charge is declined
            PaymentUnavailable: If the gateway cannot process the charge
        """


class SimulatedPaymentGateway(PaymentGateway):
    """
    In-process gateway with latency and probabilistic failure.

    Pass a seeded ``random.Random`` to make failures reproducible.
    """

    name = "simulated"

    def __init__(
        self,
        failure_rate: Optional[float] = None,
        latency_seconds: Optional[float] = None,
        rng: Optional[random.Random] = None,
    ):
        settings = get_settings()
        self.failure_rate = (
            settings.payment_simulated_failure_rate if failure_rate is None else failure_rate
        )
        self.latency_seconds = (
            settings.payment_simulated_latency if latency_seconds is None else latency_seconds
        )
        self.rng = rng or random.Random()

    async def charge(self, order_id: int, amount: Decimal) -> PaymentResult:
        await asyncio.sleep(self.latency_seconds)

        if self.rng.random() < self.failure_rate:
            logger.warning("simulated_payment_unavailable", order_id=order_id)
            raise PaymentUnavailable("Payment service unavailable")

        transaction_id = f"TXN-{int(time.time() * 1000)}"
        logger.info(
            "simulated_payment_charged",
            order_id=order_id,
            amount=str(amount),
            transaction_id=transaction_id,
        )
        return PaymentResult(success=True, transaction_id=transaction_id)


Outcome = Union[PaymentResult, Exception]


class ScriptedPaymentGateway(PaymentGateway):
    """
    Gateway that replays a fixed script of outcomes.

    Each outcome is either a PaymentResult to return or an exception to raise.
    Once the script runs out, the last outcome repeats. Calls are recorded.
    """

    name = "scripted"

    def __init__(self, outcomes: Iterable[Outcome], latency_seconds: float = 0.0):
        self._outcomes: List[Outcome] = list(outcomes)
        if not self._outcomes:
            raise ValueError("At least one scripted outcome is required")
        self.latency_seconds = latency_seconds
        self.calls: List[Tuple[int, Decimal]] = []

    @classmethod
    def always_succeeding(cls) -> "ScriptedPaymentGateway":
        return cls([PaymentResult(success=True, transaction_id="TXN-SCRIPTED")])

    @classmethod
    def always_failing(cls, message: str = "Payment service unavailable") -> "ScriptedPaymentGateway":
        return cls([PaymentUnavailable(message)])

    async def charge(self, order_id: int, amount: Decimal) -> PaymentResult:
        if self.latency_seconds:
            await asyncio.sleep(self.latency_seconds)

        index = min(len(self.calls), len(self._outcomes) - 1)
        self.calls.append((order_id, amount))
        outcome = self._outcomes[index]

        if isinstance(outcome, Exception):
            raise outcome
        return outcome


def create_payment_gateway(settings: Optional[Settings] = None) -> PaymentGateway:
    """
    Build the gateway selected by ``settings.payment_gateway``.

    Args:
        settings: Optional settings (defaults to the cached application settings)

    Returns:
        PaymentGateway: Configured gateway
    """
    settings = settings or get_settings()

    if settings.payment_gateway == "stripe":
        from order_fulfillment.integrations.stripe_gateway import StripePaymentGateway

        return StripePaymentGateway(settings=settings)

    return SimulatedPaymentGateway(
        failure_rate=settings.payment_simulated_failure_rate,
        latency_seconds=settings.payment_simulated_latency,
    )
