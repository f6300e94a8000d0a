"""
Cart data access repository.
"""

import uuid
from typing import Optional, Sequence

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from mtaani_gas.core.logging import get_logger
from mtaani_gas.database.models.cart import CartItem
from mtaani_gas.database.models.product import Product

logger = get_logger(__name__)


class CartRepository:
    """Repository for cart line and product lookups."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_lines(self, user_id: uuid.UUID) -> Sequence[CartItem]:
        result = await self.session.execute(
            select(CartItem)
            .where(CartItem.user_id == user_id)
            .order_by(CartItem.created_at)
            .execution_options(populate_existing=True)
        )
        return result.scalars().all()

    async def get_line(self, item_id: uuid.UUID, user_id: uuid.UUID) -> Optional[CartItem]:
        result = await self.session.execute(
            select(CartItem)
            .where(CartItem.id == item_id, CartItem.user_id == user_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get_line_for_product(
        self,
        user_id: uuid.UUID,
        product_id: uuid.UUID,
    ) -> Optional[CartItem]:
        result = await self.session.execute(
            select(CartItem)
            .where(CartItem.user_id == user_id, CartItem.product_id == product_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get_product(self, product_id: uuid.UUID) -> Optional[Product]:
        result = await self.session.execute(
            select(Product).where(Product.id == product_id, Product.is_active.is_(True))
        )
        return result.scalar_one_or_none()

    async def add_line(
        self,
        user_id: uuid.UUID,
        product: Product,
        quantity: int,
    ) -> CartItem:
        line = CartItem(user_id=user_id, product_id=product.id, quantity=quantity, product=product)
        self.session.add(line)
        await self.session.flush()
        return line

    async def delete_line(self, line: CartItem) -> None:
        await self.session.delete(line)
        await self.session.flush()

    async def clear(self, user_id: uuid.UUID) -> int:
        result = await self.session.execute(
            delete(CartItem)
            .where(CartItem.user_id == user_id)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount
