"""
Order models for the order lifecycle.

An order moves along three axes: the delivery lifecycle (``status``), the
payment axis (``payment_status``) and dealer assignment
(``assignment_status``). Line items and status history are owned by the
order; dealer candidates are a transient offer list cleared on claim.
"""

import uuid
from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    Enum as SQLEnum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from mtaani_gas.database.base import Base, BaseModel, UUIDMixin, enum_values, utcnow
from mtaani_gas.services.dealers.location import Location
from mtaani_gas.services.orders.enums import (
    AssignmentStatus,
    OrderPaymentMethod,
    OrderPaymentStatus,
    OrderStatus,
)

if TYPE_CHECKING:
    from mtaani_gas.database.models.user import User


class Order(BaseModel):
    """
    Customer order.

    Attributes:
        user_id: Customer who placed the order
        dealer_id: Dealer who claimed the order, if any
        delivery_location: Free-text delivery location
        status: Delivery lifecycle status
        payment_status: Payment axis mirrored from payments
        assignment_status: Dealer assignment axis
        available_to_agents: Whether dealers may currently claim the order
        assignment_expiry: End of the claim window
        payment_method: Rail chosen by the customer
        special_instructions: Optional delivery notes
        total_amount: Sum of line totals at creation, never recomputed
        assigned_at: When a dealer claimed the order
        delivered_at: When the order reached delivered
    """

    __tablename__ = "orders"

    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
        comment="Customer who placed the order",
    )

    dealer_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid(),
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
        comment="Dealer who claimed the order",
    )

    delivery_location: Mapped[str] = mapped_column(
        Text,
        nullable=False,
        comment="Free-text delivery location",
    )

    status: Mapped[OrderStatus] = mapped_column(
        SQLEnum(
            OrderStatus,
            name="order_status",
            native_enum=False,
            values_callable=enum_values,
        ),
        nullable=False,
        default=OrderStatus.PENDING,
        server_default=OrderStatus.PENDING.value,
        index=True,
        comment="Delivery lifecycle status",
    )

    payment_status: Mapped[OrderPaymentStatus] = mapped_column(
        SQLEnum(
            OrderPaymentStatus,
            name="order_payment_status",
            native_enum=False,
            values_callable=enum_values,
        ),
        nullable=False,
        default=OrderPaymentStatus.PENDING,
        server_default=OrderPaymentStatus.PENDING.value,
        comment="Payment status mirrored from payments",
    )

    assignment_status: Mapped[AssignmentStatus] = mapped_column(
        SQLEnum(
            AssignmentStatus,
            name="assignment_status",
            native_enum=False,
            values_callable=enum_values,
        ),
        nullable=False,
        default=AssignmentStatus.UNASSIGNED,
        server_default=AssignmentStatus.UNASSIGNED.value,
        comment="Dealer assignment status",
    )

    available_to_agents: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        comment="Open for dealers to claim",
    )

    assignment_expiry: Mapped[Optional[datetime]] = mapped_column(
        DateTime(),
        nullable=True,
        comment="End of the claim window",
    )

    payment_method: Mapped[OrderPaymentMethod] = mapped_column(
        SQLEnum(
            OrderPaymentMethod,
            name="order_payment_method",
            native_enum=False,
            values_callable=enum_values,
        ),
        nullable=False,
        default=OrderPaymentMethod.CASH,
        comment="Payment rail chosen by the customer",
    )

    special_instructions: Mapped[Optional[str]] = mapped_column(
        String(1000),
        nullable=True,
        comment="Delivery notes",
    )

    total_amount: Mapped[Decimal] = mapped_column(
        Numeric(precision=10, scale=2),
        nullable=False,
        comment="Sum of line totals at creation",
    )

    assigned_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(),
        nullable=True,
        comment="When a dealer claimed the order",
    )

    delivered_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(),
        nullable=True,
        comment="When the order was delivered",
    )

    # Relationships
    customer: Mapped["User"] = relationship(
        "User",
        foreign_keys=[user_id],
        lazy="selectin",
    )

    dealer: Mapped[Optional["User"]] = relationship(
        "User",
        foreign_keys=[dealer_id],
        lazy="selectin",
    )

    items: Mapped[list["OrderItem"]] = relationship(
        "OrderItem",
        back_populates="order",
        lazy="selectin",
        cascade="all, delete-orphan",
        order_by="OrderItem.created_at",
    )

    status_history: Mapped[list["OrderStatusHistory"]] = relationship(
        "OrderStatusHistory",
        back_populates="order",
        lazy="selectin",
        cascade="all, delete-orphan",
        order_by="OrderStatusHistory.changed_at",
    )

    __table_args__ = (
        Index("ix_orders_user_status", "user_id", "status"),
        Index("ix_orders_dealer_status", "dealer_id", "status"),
        Index(
            "ix_orders_open_for_claim",
            "status",
            "available_to_agents",
            "assignment_expiry",
        ),
        CheckConstraint(
            "total_amount >= 0",
            name="ck_orders_total_amount_non_negative",
        ),
        {"comment": "Customer orders with lifecycle, payment and assignment state"},
    )

    @property
    def parsed_location(self) -> Location:
        return Location.parse(self.delivery_location)

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal()

    @property
    def can_customer_cancel(self) -> bool:
        return self.status.can_customer_cancel()


class OrderItem(BaseModel):
    """
    Line item snapshot.

    Product name and unit price are copied at order time so later catalog
    edits never change an existing order.
    """

    __tablename__ = "order_items"

    order_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(),
        ForeignKey("orders.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
        comment="Parent order",
    )

    product_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid(),
        ForeignKey("products.id", ondelete="SET NULL"),
        nullable=True,
        comment="Catalog product at order time",
    )

    product_name: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        comment="Product name snapshot",
    )

    unit_price: Mapped[Decimal] = mapped_column(
        Numeric(precision=10, scale=2),
        nullable=False,
        comment="Unit price snapshot",
    )

    quantity: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        comment="Ordered units",
    )

    order: Mapped[Order] = relationship("Order", back_populates="items")

    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_order_items_quantity_positive"),
        CheckConstraint("unit_price >= 0", name="ck_order_items_unit_price_non_negative"),
        {"comment": "Immutable order line snapshots"},
    )

    @property
    def line_total(self) -> Decimal:
        return self.unit_price * self.quantity


class OrderStatusHistory(Base, UUIDMixin):
    """Append-only audit entry written with every order state change."""

    __tablename__ = "order_status_history"

    order_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(),
        ForeignKey("orders.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
        comment="Parent order",
    )

    status: Mapped[OrderStatus] = mapped_column(
        SQLEnum(
            OrderStatus,
            name="order_status",
            native_enum=False,
            values_callable=enum_values,
        ),
        nullable=False,
        comment="Order status after the change",
    )

    changed_by: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
        comment="Actor identity, e.g. dealer:<id>",
    )

    note: Mapped[Optional[str]] = mapped_column(
        Text,
        nullable=True,
        comment="Optional description of the change",
    )

    changed_at: Mapped[datetime] = mapped_column(
        DateTime(),
        nullable=False,
        default=utcnow,
        comment="When the change was recorded",
    )

    order: Mapped[Order] = relationship("Order", back_populates="status_history")

    __table_args__ = (
        Index("ix_order_status_history_order_changed", "order_id", "changed_at"),
        {"comment": "Order status audit trail"},
    )


class OrderDealerCandidate(Base, UUIDMixin):
    """A dealer offered an order before anyone claims it."""

    __tablename__ = "order_dealer_candidates"

    order_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(),
        ForeignKey("orders.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
        comment="Offered order",
    )

    dealer_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
        comment="Offered dealer",
    )

    score: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
        comment="Ward match score",
    )

    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default="available",
        comment="Offer status",
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(),
        nullable=False,
        default=utcnow,
        comment="When the offer was made",
    )

    __table_args__ = (
        UniqueConstraint("order_id", "dealer_id", name="uq_order_dealer_candidates_pair"),
        {"comment": "Dealers offered each open order"},
    )
