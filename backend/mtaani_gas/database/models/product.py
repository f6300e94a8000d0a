"""Product catalog model.

The catalog is maintained elsewhere; this service reads prices and moves
stock when orders are placed or cancelled.
"""

from decimal import Decimal
from typing import Optional

from sqlalchemy import Boolean, CheckConstraint, Integer, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from mtaani_gas.database.base import BaseModel


class Product(BaseModel):
    """
    Gas cylinder or accessory offered in the catalog.

    Attributes:
        name: Product display name
        description: Optional long description
        price: Current unit price
        stock: Units on hand, never negative
        is_active: Whether the product is listed
    """

    __tablename__ = "products"

    name: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        comment="Product display name",
    )

    description: Mapped[Optional[str]] = mapped_column(
        Text,
        nullable=True,
        comment="Product description",
    )

    price: Mapped[Decimal] = mapped_column(
        Numeric(precision=10, scale=2),
        nullable=False,
        comment="Current unit price",
    )

    stock: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
        comment="Units on hand",
    )

    is_active: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=True,
        comment="Listed in the catalog",
    )

    __table_args__ = (
        CheckConstraint("price >= 0", name="ck_products_price_non_negative"),
        CheckConstraint("stock >= 0", name="ck_products_stock_non_negative"),
        {"comment": "Product catalog"},
    )

    def has_stock(self, quantity: int) -> bool:
        return self.stock >= quantity
