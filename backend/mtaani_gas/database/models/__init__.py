"""
Database models package initialization.

Models are imported here so they register with the Base metadata for
Alembic and relationship resolution.
"""

from mtaani_gas.database.base import Base, BaseModel, TimestampMixin, UUIDMixin
from mtaani_gas.database.models.user import User, UserRole
from mtaani_gas.database.models.product import Product
from mtaani_gas.database.models.cart import CartItem
from mtaani_gas.database.models.order import (
    Order,
    OrderDealerCandidate,
    OrderItem,
    OrderStatusHistory,
)
from mtaani_gas.database.models.payment import Payment, PaymentMethod

__all__ = [
    "Base",
    "BaseModel",
    "TimestampMixin",
    "UUIDMixin",
    "User",
    "UserRole",
    "Product",
    "CartItem",
    "Order",
    "OrderItem",
    "OrderStatusHistory",
    "OrderDealerCandidate",
    "Payment",
    "PaymentMethod",
]
