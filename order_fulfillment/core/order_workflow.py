"""
Order workflow engine.

Owns the order lifecycle state machine:
1. Create: open an order shell, reserve stock per line item, persist the total
   (run as a saga so a failed line releases earlier reservations)
2. Pay: charge the gateway with bounded exponential-backoff retries
3. Cancel: restock every item and mark the order cancelled

PENDING → CONFIRMED (payment) | CANCELLED (cancel). Both are terminal.
"""
import asyncio
import time
from collections.abc import Mapping
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Union

import structlog
from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from order_fulfillment.config import Settings, get_settings
from order_fulfillment.core.inventory import InventoryLedger
from order_fulfillment.core.projection import OrderFullDetailsResponse, project_order
from order_fulfillment.core.saga import Saga
from order_fulfillment.database.models import Order, OrderItem, OrderStatus, Product, User
from order_fulfillment.exceptions import (
    InsufficientStock,
    InvalidQuantity,
    InvalidTransition,
    OrderFulfillmentError,
    OrderNotFound,
    ProductNotFound,
    UserNotFound,
)
from order_fulfillment.integrations.payment_gateway import (
    PaymentFailed,
    PaymentGateway,
    PaymentResult,
    create_payment_gateway,
)
from order_fulfillment.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)

ALLOWED_TRANSITIONS = {
    OrderStatus.PENDING: frozenset({OrderStatus.CONFIRMED, OrderStatus.CANCELLED}),
    OrderStatus.CONFIRMED: frozenset(),
    OrderStatus.CANCELLED: frozenset(),
}


@dataclass(frozen=True)
class OrderLine:
    """A requested product and quantity."""

    product_id: int
    quantity: int


def is_retryable(error: BaseException) -> bool:
    """Every payment failure is retried unless it is marked fatal."""
    return isinstance(error, Exception) and not getattr(error, "fatal", False)


class OrderWorkflow:
    """
    Order lifecycle orchestrator.

    Every operation takes the caller's session. Stock changes go through the
    inventory ledger only.
    """

    def __init__(
        self,
        payment_gateway: Optional[PaymentGateway] = None,
        inventory: Optional[InventoryLedger] = None,
        settings: Optional[Settings] = None,
        sleep: Optional[Callable[[float], Awaitable[Any]]] = None,
    ):
        """
        Initialize the workflow engine.

        Args:
            payment_gateway: Optional gateway (built from settings if omitted)
            inventory: Optional inventory ledger
            settings: Optional settings
            sleep: Optional async sleep used between payment attempts
        """
        self.settings = settings or get_settings()
        self.payment_gateway = payment_gateway or create_payment_gateway(self.settings)
        self.inventory = inventory or InventoryLedger()
        self._sleep = sleep or asyncio.sleep

        logger.info(
            "order_workflow_initialized",
            payment_gateway=self.payment_gateway.name,
            max_payment_attempts=self.settings.payment_retry_max_attempts,
        )

    # Lookups

    async def get_user(self, user_id: int, db: AsyncSession) -> User:
        user = await db.get(User, user_id)
        if user is None:
            raise UserNotFound(user_id)
        return user

    async def get_product(self, product_id: int, db: AsyncSession) -> Product:
        product = await db.get(Product, product_id, populate_existing=True)
        if product is None:
            raise ProductNotFound(product_id)
        return product

    @staticmethod
    def _order_query() -> Any:
        return (
            select(Order)
            .options(
                selectinload(Order.user),
                selectinload(Order.items)
                .selectinload(OrderItem.product)
                .selectinload(Product.category),
            )
            .execution_options(populate_existing=True)
        )

    async def get_order(
        self, order_id: int, db: AsyncSession, for_update: bool = False
    ) -> Order:
        """
        Load an order with its user, items, products and categories.

        Raises:
            OrderNotFound: If the order does not exist
        """
        stmt = self._order_query().where(Order.id == order_id)
        if for_update:
            stmt = stmt.with_for_update()

        order = (await db.execute(stmt)).scalar_one_or_none()
        if order is None:
            raise OrderNotFound(order_id)
        return order

    async def list_orders(self, db: AsyncSession) -> List[Order]:
        result = await db.scalars(self._order_query().order_by(Order.id))
        return list(result.all())

    async def list_orders_for_user(self, user_id: int, db: AsyncSession) -> List[Order]:
        result = await db.scalars(
            self._order_query().where(Order.user_id == user_id).order_by(Order.id)
        )
        return list(result.all())

    async def get_order_full_details(
        self, order_id: int, db: AsyncSession
    ) -> OrderFullDetailsResponse:
        """Load an order and return its acyclic projection."""
        return project_order(await self.get_order(order_id, db))

    # State machine

    @staticmethod
    def _check_transition(
        order: Order, target: OrderStatus, message: Optional[str] = None
    ) -> OrderStatus:
        current = order.order_status
        if target not in ALLOWED_TRANSITIONS[current]:
            raise InvalidTransition(current, target, message)
        return current

    def _apply_transition(self, order: Order, target: OrderStatus) -> None:
        current = self._check_transition(order, target)
        order.status = target.value
        metrics.record_status_transition(current.value, target.value)
        logger.info(
            "order_status_changed",
            order_id=order.id,
            from_status=current.value,
            to_status=target.value,
        )

    async def update_status(
        self, order_id: int, status: Union[OrderStatus, str], db: AsyncSession
    ) -> Order:
        """
        Move an order to ``status`` if the state machine allows it.

        Cancellation is routed through cancel_order so stock is always restored.

        Raises:
            OrderNotFound: If the order does not exist
            InvalidTransition: If the transition is not allowed
        """
        target = OrderStatus(status)
        if target is OrderStatus.CANCELLED:
            return await self.cancel_order(order_id, db)

        order = await self.get_order(order_id, db, for_update=True)
        self._apply_transition(order, target)
        await db.commit()
        return await self.get_order(order_id, db)

    # Creation

    @staticmethod
    def _transactional(
        db: AsyncSession, action: Callable[..., Awaitable[Any]]
    ) -> Callable[..., Awaitable[Any]]:
        """Wrap a saga action so it commits on success and rolls back on failure."""

        async def run(*args: Any) -> Any:
            try:
                result = await action(*args)
                await db.commit()
            except Exception:
                await db.rollback()
                raise
            return result

        return run

    @staticmethod
    def _coerce_lines(items: Sequence[Union[OrderLine, Mapping]]) -> List[OrderLine]:
        lines = [
            OrderLine(product_id=item["product_id"], quantity=item["quantity"])
            if isinstance(item, Mapping)
            else item
            for item in items
        ]
        for line in lines:
            if not isinstance(line.quantity, int) or line.quantity <= 0:
                raise InvalidQuantity(
                    f"Quantity for product #{line.product_id} must be a positive integer"
                )
        return lines

    async def create_order(
        self,
        user_id: int,
        items: Sequence[Union[OrderLine, Mapping]],
        db: AsyncSession,
    ) -> Order:
        """
        Create an order, reserving stock for every line in the order given.

        Each step commits on its own. If any line fails, reservations already
        made for this order are released and the order is discarded before the
        error propagates.

        Args:
            user_id: Ordering user
            items: Lines of ``{product_id, quantity}``
            db: Database session

        Returns:
            Order: The created order with user, items and products loaded

        Raises:
            InvalidQuantity: If a line quantity is not positive
            UserNotFound: If the user does not exist
            ProductNotFound: If a product does not exist
            InsufficientStock: If a product cannot cover its line
        """
        lines = self._coerce_lines(items)

        try:
            user = await self.get_user(user_id, db)
        except UserNotFound:
            metrics.record_order_created("rejected")
            raise

        logger.info("order_creation_started", user_id=user_id, lines=len(lines))

        async def open_order(ctx: Dict[str, Any]) -> int:
            order = Order(user_id=user.id, status=OrderStatus.PENDING.value, total=Decimal("0"))
            db.add(order)
            await db.flush()
            ctx["order_id"] = order.id
            ctx["total"] = Decimal("0")
            return order.id

        async def discard_order(ctx: Dict[str, Any], order_id: int) -> None:
            await db.execute(
                delete(OrderItem)
                .where(OrderItem.order_id == order_id)
                .execution_options(synchronize_session=False)
            )
            await db.execute(
                delete(Order)
                .where(Order.id == order_id)
                .execution_options(synchronize_session=False)
            )
            logger.info("order_discarded", order_id=order_id)

        def reserve_line(line: OrderLine) -> Callable[[Dict[str, Any]], Awaitable[Dict[str, int]]]:
            async def reserve_item(ctx: Dict[str, Any]) -> Dict[str, int]:
                product = await self.get_product(line.product_id, db)
                if product.stock < line.quantity:
                    raise InsufficientStock(
                        product.name, requested=line.quantity, available=product.stock
                    )

                item = OrderItem(
                    order_id=ctx["order_id"],
                    product_id=product.id,
                    quantity=line.quantity,
                    price=product.price,
                )
                db.add(item)
                await db.flush()

                await self.inventory.reserve(
                    product.id,
                    line.quantity,
                    db,
                    order_id=ctx["order_id"],
                    order_item_id=item.id,
                )
                ctx["total"] += item.subtotal
                return {
                    "order_item_id": item.id,
                    "product_id": product.id,
                    "quantity": line.quantity,
                }

            return reserve_item

        async def release_item(ctx: Dict[str, Any], reservation: Dict[str, int]) -> None:
            await self.inventory.release(
                reservation["order_item_id"],
                reservation["product_id"],
                reservation["quantity"],
                db,
                order_id=ctx["order_id"],
            )

        async def finalize_total(ctx: Dict[str, Any]) -> Decimal:
            order = await db.get(Order, ctx["order_id"])
            order.total = ctx["total"]
            await db.flush()
            return ctx["total"]

        saga = Saga(name="create_order")
        saga.add_step(
            "open_order",
            self._transactional(db, open_order),
            self._transactional(db, discard_order),
        )
        for index, line in enumerate(lines):
            saga.add_step(
                f"reserve_item_{index}",
                self._transactional(db, reserve_line(line)),
                self._transactional(db, release_item),
            )
        saga.add_step("finalize_total", self._transactional(db, finalize_total))

        try:
            context = await saga.execute()
        except Exception as e:
            outcome = "rejected" if isinstance(e, OrderFulfillmentError) else "failed"
            metrics.record_order_created(outcome)
            if saga.compensated_steps:
                metrics.record_saga_compensation()
            logger.warning(
                "order_creation_failed",
                user_id=user_id,
                error=str(e),
                error_type=type(e).__name__,
                compensated_steps=len(saga.compensated_steps),
            )
            raise

        metrics.record_order_created("created")
        logger.info(
            "order_created",
            order_id=context["order_id"],
            user_id=user_id,
            total=str(context["total"]),
            lines=len(lines),
        )
        return await self.get_order(context["order_id"], db)

    # Payment

    async def _charge_once(self, order_id: int, amount: Decimal) -> PaymentResult:
        try:
            result = await self.payment_gateway.charge(order_id, amount)
        except Exception:
            metrics.record_payment_attempt("failed")
            raise

        if not result.success:
            metrics.record_payment_attempt("failed")
            raise PaymentFailed(f"Payment for order #{order_id} was not successful")

        metrics.record_payment_attempt("succeeded")
        return result

    async def process_payment(self, order_id: int, db: AsyncSession) -> PaymentResult:
        """
        Charge the order total, retrying with exponential backoff.

        Every failed attempt ``n`` (0-based), the last one included, is
        followed by a wait of ``base * 2**n``; with three attempts that is
        100ms, 200ms and 400ms. Fatal errors stop at once without waiting.
        The read transaction is closed before the first charge so nothing is
        held across gateway calls or sleeps.

        Returns:
            PaymentResult: The successful charge

        Raises:
            OrderNotFound: If the order does not exist
            InvalidTransition: If the order is not PENDING
            PaymentError: The last failure once attempts are exhausted
        """
        order = await self.get_order(order_id, db)
        self._check_transition(order, OrderStatus.CONFIRMED)
        amount = order.total
        await db.commit()

        max_attempts = self.settings.payment_retry_max_attempts
        backoff = wait_exponential(multiplier=self.settings.payment_retry_base_delay, exp_base=2)
        failed_attempts: List[RetryCallState] = []
        start_time = time.monotonic()

        logger.info(
            "payment_processing_started",
            order_id=order_id,
            amount=str(amount),
            max_attempts=max_attempts,
        )

        def record_failure(retry_state: RetryCallState) -> None:
            failed_attempts.append(retry_state)

        def log_retry(retry_state: RetryCallState) -> None:
            error = retry_state.outcome.exception() if retry_state.outcome else None
            logger.warning(
                "payment_attempt_failed",
                order_id=order_id,
                attempt=retry_state.attempt_number,
                error=str(error),
                retry_in_seconds=retry_state.next_action.sleep if retry_state.next_action else None,
            )

        retrying = AsyncRetrying(
            stop=stop_after_attempt(max_attempts),
            wait=backoff,
            retry=retry_if_exception(is_retryable),
            after=record_failure,
            before_sleep=log_retry,
            sleep=self._sleep,
            reraise=True,
        )

        try:
            async for attempt in retrying:
                with attempt:
                    result = await self._charge_once(order_id, amount)
        except Exception as e:
            if is_retryable(e) and failed_attempts:
                # Exhausted attempts back off once more before the failure surfaces
                delay = backoff(failed_attempts[-1])
                logger.warning(
                    "payment_attempt_failed",
                    order_id=order_id,
                    attempt=failed_attempts[-1].attempt_number,
                    error=str(e),
                    backoff_seconds=delay,
                )
                await self._sleep(delay)

            metrics.record_payment_duration("failed", time.monotonic() - start_time)
            logger.error(
                "payment_failed",
                order_id=order_id,
                attempts=retrying.statistics.get("attempt_number"),
                error=str(e),
                fatal=getattr(e, "fatal", False),
            )
            raise

        order = await self.get_order(order_id, db, for_update=True)
        try:
            self._apply_transition(order, OrderStatus.CONFIRMED)
        except InvalidTransition:
            logger.error(
                "payment_charged_for_non_pending_order",
                order_id=order_id,
                status=order.status,
                transaction_id=result.transaction_id,
            )
            raise
        await db.commit()

        metrics.record_payment_duration("succeeded", time.monotonic() - start_time)
        logger.info(
            "payment_confirmed",
            order_id=order_id,
            transaction_id=result.transaction_id,
        )
        return result

    # Cancellation

    async def cancel_order(self, order_id: int, db: AsyncSession) -> Order:
        """
        Cancel a PENDING order, restocking every item.

        Restocks are keyed per item, so a retried cancellation never credits
        the same item twice.

        Raises:
            OrderNotFound: If the order does not exist
            InvalidTransition: If the order is not PENDING
        """
        order = await self.get_order(order_id, db, for_update=True)
        self._check_transition(
            order, OrderStatus.CANCELLED, "Only pending orders can be cancelled"
        )

        restocked = 0
        try:
            for item in order.items:
                if await self.inventory.release(
                    item.id, item.product_id, item.quantity, db, order_id=order.id
                ):
                    restocked += 1
            self._apply_transition(order, OrderStatus.CANCELLED)
            await db.commit()
        except Exception:
            await db.rollback()
            raise

        metrics.record_cancellation()
        logger.info("order_cancelled", order_id=order_id, items_restocked=restocked)
        return await self.get_order(order_id, db)
