"""Stock Service - the ledger through which every stock change flows.

StockLedger.apply_movement() works inside the caller's session and never
commits, so an order completion and its stock decrements share one
transaction. StockService wraps the same call in a transaction of its own
for manual adjustments and exposes the read-only helpers (availability,
movement history, low stock).

Negative stock is allowed. Availability is advisory and never blocks a sale.
"""

import logging
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from pos_core.core.exceptions import NotFoundError
from pos_core.db.session import SessionLocal, transaction
from pos_core.models.product import Product
from pos_core.models.stock import MovementType, StockMovement
from pos_core.schemas.stock import AvailabilityResponse, LowStockItem, StockMovementResponse

logger = logging.getLogger(__name__)


class StockLedger:
    """Applies signed stock deltas and records one movement per change."""

    async def apply_movement(
        self,
        session: AsyncSession,
        *,
        product_id: int,
        quantity: int,
        movement_type: str,
        reference_type: Optional[str] = None,
        reference_id: Optional[int] = None,
        user_id: Optional[int] = None,
        notes: Optional[str] = None,
    ) -> StockMovement:
        """Change a product's stock by ``quantity`` and append the audit row.

        Raises NotFoundError if the product does not exist. The caller owns
        the transaction.
        """
        result = await session.execute(
            select(Product)
            .where(Product.id == product_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        product = result.scalar_one_or_none()
        if product is None:
            raise NotFoundError(f"Product {product_id} not found")

        previous_quantity = product.stock_quantity
        new_quantity = previous_quantity + quantity
        product.stock_quantity = new_quantity

        movement = StockMovement(
            product_id=product_id,
            movement_type=MovementType(movement_type).value,
            quantity=quantity,
            reference_type=reference_type,
            reference_id=reference_id,
            previous_quantity=previous_quantity,
            new_quantity=new_quantity,
            notes=notes,
            created_by=user_id,
        )
        session.add(movement)
        await session.flush()

        if new_quantity < 0:
            logger.warning(f"Product {product_id} ({product.name}) stock is negative: {new_quantity}")
        logger.info(
            f"Stock {movement_type} for product {product_id}: "
            f"{previous_quantity} -> {new_quantity} (ref={reference_type}:{reference_id})"
        )
        return movement


class StockService:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession] = SessionLocal,
        ledger: Optional[StockLedger] = None,
    ):
        self.session_factory = session_factory
        self.ledger = ledger or StockLedger()

    async def adjust_stock(
        self,
        product_id: int,
        quantity: int,
        movement_type: str = MovementType.ADJUSTMENT.value,
        user_id: Optional[int] = None,
        notes: Optional[str] = None,
        reference_type: str = "manual",
        reference_id: Optional[int] = None,
    ) -> StockMovementResponse:
        """Apply a stock change in its own transaction."""
        async with transaction(self.session_factory, "Failed to update stock") as session:
            movement = await self.ledger.apply_movement(
                session,
                product_id=product_id,
                quantity=quantity,
                movement_type=movement_type,
                reference_type=reference_type,
                reference_id=reference_id,
                user_id=user_id,
                notes=notes,
            )
        return StockMovementResponse.model_validate(movement)

    async def check_availability(self, product_id: int, required: int) -> AvailabilityResponse:
        async with self.session_factory() as session:
            result = await session.execute(
                select(Product).where(
                    Product.id == product_id,
                    Product.is_active.is_(True),
                    Product.not_deleted(),
                )
            )
            product = result.scalar_one_or_none()

        if product is None:
            return AvailabilityResponse(
                product_id=product_id,
                available=False,
                current_stock=0,
                required=required,
                message="Product not found or inactive",
            )

        available = product.stock_quantity >= required
        message = (
            "Stock available"
            if available
            else f"Insufficient stock. Available: {product.stock_quantity}, Requested: {required}"
        )
        return AvailabilityResponse(
            product_id=product_id,
            available=available,
            current_stock=product.stock_quantity,
            required=required,
            message=message,
        )

    async def list_movements(self, product_id: int, limit: int = 100) -> List[StockMovementResponse]:
        async with self.session_factory() as session:
            if await session.get(Product, product_id) is None:
                raise NotFoundError(f"Product {product_id} not found")
            result = await session.execute(
                select(StockMovement)
                .where(StockMovement.product_id == product_id)
                .order_by(StockMovement.id.desc())
                .limit(limit)
            )
            return [StockMovementResponse.model_validate(m) for m in result.scalars()]

    async def list_low_stock(self) -> List[LowStockItem]:
        """Active products at or below their low-stock threshold."""
        async with self.session_factory() as session:
            result = await session.execute(
                select(Product)
                .where(
                    Product.is_active.is_(True),
                    Product.not_deleted(),
                    Product.stock_quantity <= Product.low_stock_threshold,
                )
                .order_by(Product.stock_quantity, Product.name)
            )
            return [LowStockItem.model_validate(p) for p in result.scalars()]
