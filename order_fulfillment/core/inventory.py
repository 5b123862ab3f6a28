"""
Inventory ledger: the only component allowed to change product stock.

Reservations are a single conditional UPDATE (``stock >= quantity`` in the
WHERE clause), so concurrent callers can never oversell a product.
"""
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence

import structlog
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from order_fulfillment.database.models import MovementType, Product, StockMovement
from order_fulfillment.exceptions import InsufficientStock, InvalidQuantity, ProductNotFound
from order_fulfillment.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)


def _ensure_positive(quantity: int) -> None:
    if not isinstance(quantity, int) or isinstance(quantity, bool) or quantity <= 0:
        raise InvalidQuantity(f"Quantity must be a positive integer, got {quantity!r}")


class InventoryLedger:
    """
    Atomic stock operations over the products table.

    Methods flush into the caller's session and never commit; the caller owns
    the transaction boundary.
    """

    async def reserve(
        self,
        product_id: int,
        quantity: int,
        db: AsyncSession,
        order_id: Optional[int] = None,
        order_item_id: Optional[int] = None,
    ) -> int:
        """
        Atomically check ``stock >= quantity`` and decrement.

        Args:
            product_id: Product to reserve from
            quantity: Units to reserve
            db: Database session
            order_id: Optional order the reservation belongs to
            order_item_id: Optional order item the reservation belongs to

        Returns:
            int: Stock remaining after the reservation

        Raises:
            InvalidQuantity: If quantity is not positive
            ProductNotFound: If the product does not exist
            InsufficientStock: If stock is below quantity at evaluation time
        """
        _ensure_positive(quantity)

        stmt = (
            update(Product)
            .where(Product.id == product_id, Product.stock >= quantity)
            .values(stock=Product.stock - quantity, updated_at=datetime.now(timezone.utc))
            .returning(Product.stock)
            .execution_options(synchronize_session=False)
        )
        remaining = (await db.execute(stmt)).scalar_one_or_none()

        if remaining is None:
            row = (
                await db.execute(select(Product.name, Product.stock).where(Product.id == product_id))
            ).one_or_none()
            if row is None:
                metrics.record_reservation("not_found")
                raise ProductNotFound(product_id)

            metrics.record_reservation("insufficient")
            logger.info(
                "stock_reservation_rejected",
                product_id=product_id,
                requested=quantity,
                available=row.stock,
            )
            raise InsufficientStock(row.name, requested=quantity, available=row.stock)

        db.add(
            StockMovement(
                product_id=product_id,
                order_id=order_id,
                order_item_id=order_item_id,
                movement_type=MovementType.RESERVE.value,
                quantity=quantity,
            )
        )
        await db.flush()

        metrics.record_reservation("reserved")
        logger.info(
            "stock_reserved",
            product_id=product_id,
            quantity=quantity,
            remaining=remaining,
            order_id=order_id,
        )
        return remaining

    async def restock(
        self,
        product_id: int,
        quantity: int,
        db: AsyncSession,
        order_id: Optional[int] = None,
        order_item_id: Optional[int] = None,
    ) -> int:
        """
        Atomically increment stock.

        Returns:
            int: Stock after the increment

        Raises:
            InvalidQuantity: If quantity is not positive
            ProductNotFound: If the product does not exist
        """
        _ensure_positive(quantity)

        stmt = (
            update(Product)
            .where(Product.id == product_id)
            .values(stock=Product.stock + quantity, updated_at=datetime.now(timezone.utc))
            .returning(Product.stock)
            .execution_options(synchronize_session=False)
        )
        stock = (await db.execute(stmt)).scalar_one_or_none()
        if stock is None:
            raise ProductNotFound(product_id)

        db.add(
            StockMovement(
                product_id=product_id,
                order_id=order_id,
                order_item_id=order_item_id,
                movement_type=MovementType.RESTOCK.value,
                quantity=quantity,
            )
        )
        await db.flush()

        metrics.record_restock("restocked")
        logger.info(
            "stock_restocked",
            product_id=product_id,
            quantity=quantity,
            stock=stock,
            order_id=order_id,
        )
        return stock

    async def release(
        self,
        order_item_id: int,
        product_id: int,
        quantity: int,
        db: AsyncSession,
        order_id: Optional[int] = None,
    ) -> bool:
        """
        Compensate the reservation made for one order item.

        Keyed by the order item: releasing the same item twice restocks once.

        Returns:
            bool: True if stock was restocked, False if already released
        """
        already_released = await db.scalar(
            select(StockMovement.id).where(
                StockMovement.order_item_id == order_item_id,
                StockMovement.movement_type == MovementType.RESTOCK.value,
            )
        )
        if already_released is not None:
            metrics.record_restock("duplicate")
            logger.warning(
                "stock_release_skipped_duplicate",
                order_item_id=order_item_id,
                product_id=product_id,
            )
            return False

        await self.restock(
            product_id, quantity, db, order_id=order_id, order_item_id=order_item_id
        )
        return True

    async def get_current_stock(self, product_id: int, db: AsyncSession) -> int:
        """
        Read the stock counter straight from the database.

        Raises:
            ProductNotFound: If the product does not exist
        """
        stock = await db.scalar(select(Product.stock).where(Product.id == product_id))
        if stock is None:
            raise ProductNotFound(product_id)
        return stock

    async def process_product_batch(
        self, product_ids: Sequence[int], db: AsyncSession
    ) -> Dict[str, Any]:
        """
        Touch every existing product in one bulk update.

        Missing products are reported individually instead of failing the batch.

        Returns:
            Dict[str, Any]: ``{success, processed, failed, errors}``
        """
        if not product_ids:
            return {"success": True, "processed": 0, "failed": 0, "errors": []}

        existing_ids = set(
            (await db.scalars(select(Product.id).where(Product.id.in_(product_ids)))).all()
        )

        errors: List[Dict[str, Any]] = []
        for product_id in dict.fromkeys(product_ids):
            if product_id not in existing_ids:
                errors.append(
                    {"product_id": product_id, "error": str(ProductNotFound(product_id))}
                )

        processed = 0
        if existing_ids:
            result = await db.execute(
                update(Product)
                .where(Product.id.in_(existing_ids))
                .values(updated_at=datetime.now(timezone.utc))
                .execution_options(synchronize_session=False)
            )
            processed = result.rowcount or 0

        logger.info(
            "product_batch_processed",
            processed=processed,
            failed=len(errors),
        )

        return {
            "success": not errors,
            "processed": processed,
            "failed": len(errors),
            "errors": errors,
        }
