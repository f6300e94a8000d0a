"""
Cart service.

Adding a product already in the cart merges the quantities. Setting a line's
quantity below one removes the line. Stock is checked when the order is
placed, not here.
"""

import uuid
from decimal import Decimal
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from mtaani_gas.core.logging import get_logger
from mtaani_gas.database.base import utcnow
from mtaani_gas.database.models.cart import CartItem
from mtaani_gas.services.cart.repository import CartRepository

logger = get_logger(__name__)


class CartServiceError(Exception):
    """Base exception for cart service errors."""

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.context = context


class CartValidationError(CartServiceError):
    """Raised when cart input is invalid."""

    pass


class CartItemNotFoundError(CartServiceError):
    """Raised when a product or cart line is not found."""

    pass


class CartProcessingError(CartServiceError):
    """Raised when the store fails during a cart operation."""

    pass


class CartService:
    """Customer cart operations."""

    def __init__(self, session: AsyncSession):
        self.session = session
        self.repository = CartRepository(session)

    async def get_cart(self, user_id: uuid.UUID) -> dict[str, Any]:
        """
        Cart lines with product details and totals.

        Args:
            user_id: Cart owner

        Returns:
            Lines, unit count and cart total
        """
        lines = await self.repository.get_lines(user_id)
        total = sum((line.line_total for line in lines), Decimal("0.00"))
        return {
            "items": [self._format_line(line) for line in lines],
            "total_items": sum(line.quantity for line in lines),
            "total_amount": float(total),
        }

    async def add_item(
        self,
        user_id: uuid.UUID,
        product_id: uuid.UUID,
        quantity: int = 1,
    ) -> dict[str, Any]:
        """
        Add a product to the cart or merge into its existing line.

        Raises:
            CartValidationError: If quantity is below one
            CartItemNotFoundError: If the product does not exist
        """
        if quantity < 1:
            raise CartValidationError("Quantity must be at least 1")

        product = await self.repository.get_product(product_id)
        if product is None:
            raise CartItemNotFoundError("Product not found", product_id=str(product_id))

        try:
            line = await self.repository.get_line_for_product(user_id, product_id)
            if line is None:
                line = await self.repository.add_line(user_id, product, quantity)
            else:
                line.quantity += quantity
                line.updated_at = utcnow()
            await self.session.commit()
        except SQLAlchemyError as e:
            await self.session.rollback()
            raise CartProcessingError(f"Failed to add item to cart: {e}") from e

        logger.info(
            "Cart line updated",
            user_id=str(user_id),
            product_id=str(product_id),
            quantity=line.quantity,
        )
        return self._format_line(line)

    async def update_item(
        self,
        user_id: uuid.UUID,
        item_id: uuid.UUID,
        quantity: int,
    ) -> dict[str, Any]:
        line = await self._get_owned(item_id, user_id)
        try:
            if quantity < 1:
                await self.repository.delete_line(line)
                await self.session.commit()
                return {"id": str(item_id), "removed": True}

            line.quantity = quantity
            line.updated_at = utcnow()
            await self.session.commit()
        except SQLAlchemyError as e:
            await self.session.rollback()
            raise CartProcessingError(f"Failed to update cart item: {e}") from e

        return self._format_line(line)

    async def remove_item(self, user_id: uuid.UUID, item_id: uuid.UUID) -> None:
        line = await self._get_owned(item_id, user_id)
        try:
            await self.repository.delete_line(line)
            await self.session.commit()
        except SQLAlchemyError as e:
            await self.session.rollback()
            raise CartProcessingError(f"Failed to remove cart item: {e}") from e

    async def clear_cart(self, user_id: uuid.UUID) -> int:
        try:
            removed = await self.repository.clear(user_id)
            await self.session.commit()
        except SQLAlchemyError as e:
            await self.session.rollback()
            raise CartProcessingError(f"Failed to clear cart: {e}") from e

        logger.info("Cart cleared", user_id=str(user_id), removed=removed)
        return removed

    async def _get_owned(self, item_id: uuid.UUID, user_id: uuid.UUID) -> CartItem:
        line = await self.repository.get_line(item_id, user_id)
        if line is None:
            raise CartItemNotFoundError("Cart item not found", item_id=str(item_id))
        return line

    @staticmethod
    def _format_line(line: CartItem) -> dict[str, Any]:
        return {
            "id": str(line.id),
            "product_id": str(line.product_id),
            "product_name": line.product.name,
            "price": float(line.product.price),
            "stock": line.product.stock,
            "quantity": line.quantity,
            "line_total": float(line.line_total),
        }
