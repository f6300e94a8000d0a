"""Cart line model.

One row per (user, product); adding a product that is already in the cart
merges quantities into the existing line.
"""

import uuid
from decimal import Decimal

from sqlalchemy import CheckConstraint, ForeignKey, Integer, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from mtaani_gas.database.base import BaseModel
from mtaani_gas.database.models.product import Product


class CartItem(BaseModel):
    """
    A product line in a customer's cart.

    Attributes:
        user_id: Owning customer
        product_id: Catalog product
        quantity: Requested units, at least one
    """

    __tablename__ = "cart_items"

    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
        comment="Owning customer",
    )

    product_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(),
        ForeignKey("products.id", ondelete="CASCADE"),
        nullable=False,
        comment="Catalog product",
    )

    quantity: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=1,
        comment="Requested units",
    )

    product: Mapped[Product] = relationship(
        "Product",
        foreign_keys=[product_id],
        lazy="selectin",
    )

    __table_args__ = (
        UniqueConstraint("user_id", "product_id", name="uq_cart_items_user_product"),
        CheckConstraint("quantity > 0", name="ck_cart_items_quantity_positive"),
        {"comment": "Customer cart lines"},
    )

    @property
    def line_total(self) -> Decimal:
        return self.product.price * self.quantity
