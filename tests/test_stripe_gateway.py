"""
Unit tests for the Stripe gateway adapter.
"""
import threading
from decimal import Decimal
from unittest.mock import MagicMock

import pytest
import stripe

from order_fulfillment.config import Settings
from order_fulfillment.integrations.payment_gateway import PaymentFailed, PaymentUnavailable
from order_fulfillment.integrations.stripe_gateway import (
    CircuitBreaker,
    StripePaymentGateway,
    to_minor_units,
)


@pytest.fixture
def stripe_settings() -> Settings:
    return Settings(
        payment_gateway="stripe",
        stripe_secret_key="sk_test_fake_key_for_testing",
        payment_currency="USD",
    )


def payment_intent(status: str = "succeeded") -> MagicMock:
    intent = MagicMock()
    intent.id = "pi_test_123"
    intent.status = status
    return intent


class TestStripePaymentGateway:
    """Charge flow and error classification."""

    @pytest.mark.unit
    def test_to_minor_units_rounds_half_up(self) -> None:
        assert to_minor_units(Decimal("19.99")) == 1999
        assert to_minor_units(Decimal("0.005")) == 1

    @pytest.mark.unit
    def test_requires_secret_key(self) -> None:
        with pytest.raises(ValueError, match="stripe_secret_key"):
            StripePaymentGateway(settings=Settings(payment_gateway="stripe"))

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_successful_charge(self, stripe_settings: Settings, mocker) -> None:
        create = mocker.patch("stripe.PaymentIntent.create", return_value=payment_intent())
        gateway = StripePaymentGateway(settings=stripe_settings)

        result = await gateway.charge(42, Decimal("99.98"))

        assert result.success is True
        assert result.transaction_id == "pi_test_123"
        kwargs = create.call_args.kwargs
        assert kwargs["amount"] == 9998
        assert kwargs["currency"] == "usd"
        assert kwargs["confirm"] is True
        assert kwargs["metadata"] == {"order_id": "42"}
        assert kwargs["idempotency_key"] == "order:42:charge"

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_retried_charges_share_idempotency_key(
        self, stripe_settings: Settings, mocker
    ) -> None:
        create = mocker.patch(
            "stripe.PaymentIntent.create",
            side_effect=[stripe.APIConnectionError("Network error"), payment_intent()],
        )
        gateway = StripePaymentGateway(settings=stripe_settings)

        with pytest.raises(PaymentUnavailable):
            await gateway.charge(42, Decimal("99.98"))
        await gateway.charge(42, Decimal("99.98"))
        other = mocker.patch("stripe.PaymentIntent.create", return_value=payment_intent())
        await gateway.charge(43, Decimal("99.98"))

        first, second = (c.kwargs["idempotency_key"] for c in create.call_args_list)
        assert first == second
        assert other.call_args.kwargs["idempotency_key"] != first

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_stripe_call_runs_off_event_loop_thread(
        self, stripe_settings: Settings, mocker
    ) -> None:
        calling_threads = []

        def create(**kwargs):
            calling_threads.append(threading.get_ident())
            return payment_intent()

        mocker.patch("stripe.PaymentIntent.create", side_effect=create)
        gateway = StripePaymentGateway(settings=stripe_settings)

        result = await gateway.charge(7, Decimal("1.00"))

        assert result.success is True
        assert calling_threads and calling_threads[0] != threading.get_ident()

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_unconfirmed_intent_is_unsuccessful(
        self, stripe_settings: Settings, mocker
    ) -> None:
        mocker.patch(
            "stripe.PaymentIntent.create", return_value=payment_intent("requires_action")
        )
        gateway = StripePaymentGateway(settings=stripe_settings)

        result = await gateway.charge(1, Decimal("1.00"))

        assert result.success is False

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_card_error_is_fatal(self, stripe_settings: Settings, mocker) -> None:
        mocker.patch(
            "stripe.PaymentIntent.create",
            side_effect=stripe.CardError("Your card was declined", None, "card_declined"),
        )
        gateway = StripePaymentGateway(settings=stripe_settings)

        with pytest.raises(PaymentFailed) as exc_info:
            await gateway.charge(1, Decimal("1.00"))

        assert exc_info.value.fatal is True
        assert gateway.circuit_breaker.failure_count == 0

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_connection_error_is_retryable(
        self, stripe_settings: Settings, mocker
    ) -> None:
        mocker.patch(
            "stripe.PaymentIntent.create",
            side_effect=stripe.APIConnectionError("Network error"),
        )
        gateway = StripePaymentGateway(settings=stripe_settings)

        with pytest.raises(PaymentUnavailable) as exc_info:
            await gateway.charge(1, Decimal("1.00"))

        assert exc_info.value.fatal is False
        assert gateway.circuit_breaker.failure_count == 1

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_open_circuit_short_circuits(
        self, stripe_settings: Settings, mocker
    ) -> None:
        create = mocker.patch(
            "stripe.PaymentIntent.create",
            side_effect=stripe.APIConnectionError("Network error"),
        )
        gateway = StripePaymentGateway(
            settings=stripe_settings, circuit_breaker=CircuitBreaker(failure_threshold=2)
        )

        for _ in range(2):
            with pytest.raises(PaymentUnavailable):
                await gateway.charge(1, Decimal("1.00"))

        with pytest.raises(PaymentUnavailable, match="Circuit breaker is open"):
            await gateway.charge(1, Decimal("1.00"))

        assert create.call_count == 2


class TestCircuitBreaker:

    @pytest.mark.unit
    def test_half_open_after_timeout_then_closes(self, mocker) -> None:
        breaker = CircuitBreaker(failure_threshold=1, timeout=30, success_threshold=1)
        failing = mocker.Mock(side_effect=RuntimeError("down"))

        with pytest.raises(RuntimeError):
            breaker.call(failing)
        assert breaker.state == "open"

        breaker.last_failure_time -= 60
        assert breaker.call(lambda: "ok") == "ok"
        assert breaker.state == "closed"
