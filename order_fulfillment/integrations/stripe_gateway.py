"""
Stripe-backed payment gateway.

Implements:
- Error classification into retryable and fatal failures
- Circuit breaker pattern
- One confirmed PaymentIntent per order, across retried attempts
- Blocking Stripe calls run in a worker thread
"""
import asyncio
import time
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Callable, Optional

import stripe
import structlog

from order_fulfillment.config import Settings, get_settings
from order_fulfillment.integrations.payment_gateway import (
    PaymentError,
    PaymentFailed,
    PaymentGateway,
    PaymentResult,
    PaymentUnavailable,
)

logger = structlog.get_logger(__name__)

FATAL_STRIPE_ERRORS = (
    stripe.CardError,
    stripe.InvalidRequestError,
    stripe.AuthenticationError,
    stripe.PermissionError,
)


class CircuitBreaker:
    """
    Circuit breaker for Stripe API calls.

    Prevents cascading failures by temporarily stopping requests
    when error rate exceeds threshold.
    """

    def __init__(
        self,
        failure_threshold: int = 5,
        timeout: int = 60,
        success_threshold: int = 2,
    ):
        """
        Initialize circuit breaker.

        Args:
            failure_threshold: Number of failures before opening circuit
            timeout: Seconds before attempting to close circuit
            success_threshold: Successful calls needed to close circuit
        """
        self.failure_threshold = failure_threshold
        self.timeout = timeout
        self.success_threshold = success_threshold
        self.failure_count = 0
        self.success_count = 0
        self.last_failure_time: Optional[float] = None
        self.state = "closed"  # closed, open, half_open

    def call(self, func: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        """
        Execute function with circuit breaker protection.

        Raises:
            PaymentUnavailable: If circuit is open
        """
        if self.state == "open":
            if (
                self.last_failure_time
                and time.time() - self.last_failure_time > self.timeout
            ):
                self.state = "half_open"
                self.success_count = 0
                logger.info("circuit_breaker_half_open")
            else:
                raise PaymentUnavailable("Circuit breaker is open")

        try:
            result = func(*args, **kwargs)
        except FATAL_STRIPE_ERRORS:
            # Declines say nothing about Stripe's availability
            raise
        except Exception:
            self.on_failure()
            raise
        self.on_success()
        return result

    def on_success(self) -> None:
        """Record successful call."""
        self.failure_count = 0
        if self.state == "half_open":
            self.success_count += 1
            if self.success_count >= self.success_threshold:
                self.state = "closed"
                logger.info("circuit_breaker_closed")

    def on_failure(self) -> None:
        """Record failed call."""
        self.failure_count += 1
        self.last_failure_time = time.time()
        if self.failure_count >= self.failure_threshold:
            self.state = "open"
            logger.warning(
                "circuit_breaker_opened",
                failure_count=self.failure_count,
            )


def to_minor_units(amount: Decimal) -> int:
    """Convert a decimal currency amount to integer cents."""
    return int((amount * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


class StripePaymentGateway(PaymentGateway):
    """
    Charges orders through Stripe PaymentIntents.

    Card and request errors are fatal; connectivity, API and rate-limit
    errors are retryable.
    """

    name = "stripe"

    def __init__(
        self,
        settings: Optional[Settings] = None,
        circuit_breaker: Optional[CircuitBreaker] = None,
    ):
        settings = settings or get_settings()
        if not settings.stripe_secret_key:
            raise ValueError("stripe_secret_key must be set to use the stripe payment gateway")

        stripe.api_key = settings.stripe_secret_key
        stripe.api_version = settings.stripe_api_version
        self.settings = settings
        self.circuit_breaker = circuit_breaker or CircuitBreaker()

        logger.info(
            "stripe_gateway_initialized",
            api_version=settings.stripe_api_version,
            test_mode=settings.stripe_secret_key.startswith("sk_test_"),
        )

    @staticmethod
    def _translate_error(error: stripe.StripeError) -> PaymentError:
        """
        Map a Stripe error to the payment error taxonomy.

        Args:
            error: Stripe error

        Returns:
            PaymentError: Fatal PaymentFailed or retryable PaymentUnavailable
        """
        if isinstance(error, FATAL_STRIPE_ERRORS):
            return PaymentFailed(str(error), fatal=True)
        # Rate limits, connection and API errors are worth another attempt
        return PaymentUnavailable(str(error))

    async def charge(self, order_id: int, amount: Decimal) -> PaymentResult:
        amount_cents = to_minor_units(amount)
        # Same key for every attempt on an order
        idempotency_key = f"order:{order_id}:charge"

        logger.info(
            "creating_payment_intent",
            order_id=order_id,
            amount_cents=amount_cents,
            currency=self.settings.payment_currency,
        )

        def _create() -> Any:
            return stripe.PaymentIntent.create(
                amount=amount_cents,
                currency=self.settings.payment_currency.lower(),
                payment_method=self.settings.stripe_payment_method,
                confirm=True,
                idempotency_key=idempotency_key,
                metadata={"order_id": str(order_id)},
                automatic_payment_methods={"enabled": True, "allow_redirects": "never"},
            )

        try:
            payment_intent = await asyncio.to_thread(self.circuit_breaker.call, _create)
        except stripe.StripeError as e:
            error = self._translate_error(e)
            logger.error(
                "stripe_api_error",
                order_id=order_id,
                error_code=getattr(e, "code", None),
                error_message=str(e),
                fatal=error.fatal,
            )
            raise error from e

        logger.info(
            "payment_intent_created",
            order_id=order_id,
            payment_intent_id=payment_intent.id,
            status=payment_intent.status,
        )

        return PaymentResult(
            success=payment_intent.status == "succeeded",
            transaction_id=payment_intent.id,
        )
