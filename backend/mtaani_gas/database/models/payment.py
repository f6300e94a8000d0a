"""
Payment models: stored payment methods and simulated payments.

Card numbers are never stored; a card method keeps only its brand and last
four digits.
"""

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional

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
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from mtaani_gas.database.base import BaseModel, enum_values, utcnow
from mtaani_gas.database.models.order import Order
from mtaani_gas.services.orders.enums import OrderPaymentMethod
from mtaani_gas.services.payments.enums import PaymentMethodType, PaymentStatus


class PaymentMethod(BaseModel):
    """
    Stored payment method.

    Attributes:
        user_id: Owning customer
        type: mpesa or card
        provider: "M-Pesa" or the card brand
        last_four: Last four digits of the phone or card number
        phone_number: M-Pesa phone number
        is_default: Default method for the user
        is_active: False once soft deleted
    """

    __tablename__ = "payment_methods"

    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
        comment="Owning customer",
    )

    type: Mapped[PaymentMethodType] = mapped_column(
        SQLEnum(
            PaymentMethodType,
            name="payment_method_type",
            native_enum=False,
            values_callable=enum_values,
        ),
        nullable=False,
        comment="Payment method kind",
    )

    provider: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        comment="M-Pesa or card brand",
    )

    last_four: Mapped[str] = mapped_column(
        String(4),
        nullable=False,
        comment="Last four digits",
    )

    phone_number: Mapped[Optional[str]] = mapped_column(
        String(32),
        nullable=True,
        comment="M-Pesa phone number",
    )

    is_default: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        comment="Default method for the user",
    )

    is_active: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=True,
        comment="False once removed",
    )

    __table_args__ = (
        Index("ix_payment_methods_user_active", "user_id", "is_active"),
        {"comment": "Stored customer payment methods"},
    )

    @property
    def display_name(self) -> str:
        return f"{self.provider} ****{self.last_four}"


class Payment(BaseModel):
    """
    Simulated payment for an order.

    Attributes:
        order_id: Paid order
        user_id: Paying customer
        payment_method_id: Stored method used, if any
        method: Payment rail
        amount: Copied from the order total at initiation
        status: Payment lifecycle status
        transaction_id: Unique simulated gateway reference
        simulation_code: Numeric challenge code
        simulation_expires_at: Code expiry
        verification_attempts: Wrong codes submitted so far
        completed_at: When the payment was confirmed
        failure_reason: Why the payment failed
    """

    __tablename__ = "payments"

    order_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(),
        ForeignKey("orders.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
        comment="Paid order",
    )

    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
        comment="Paying customer",
    )

    payment_method_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid(),
        ForeignKey("payment_methods.id", ondelete="SET NULL"),
        nullable=True,
        comment="Stored payment method used",
    )

    method: Mapped[OrderPaymentMethod] = mapped_column(
        SQLEnum(
            OrderPaymentMethod,
            name="order_payment_method",
            native_enum=False,
            values_callable=enum_values,
        ),
        nullable=False,
        comment="Payment rail",
    )

    amount: Mapped[Decimal] = mapped_column(
        Numeric(precision=10, scale=2),
        nullable=False,
        comment="Amount charged",
    )

    status: Mapped[PaymentStatus] = mapped_column(
        SQLEnum(
            PaymentStatus,
            name="payment_status",
            native_enum=False,
            values_callable=enum_values,
        ),
        nullable=False,
        default=PaymentStatus.PENDING_PAYMENT,
        index=True,
        comment="Payment lifecycle status",
    )

    transaction_id: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        unique=True,
        comment="Simulated gateway reference",
    )

    phone_number: Mapped[Optional[str]] = mapped_column(
        String(32),
        nullable=True,
        comment="M-Pesa phone number",
    )

    card_last_four: Mapped[Optional[str]] = mapped_column(
        String(4),
        nullable=True,
        comment="Card last four digits",
    )

    simulation_code: Mapped[Optional[str]] = mapped_column(
        String(8),
        nullable=True,
        comment="Challenge code",
    )

    simulation_expires_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(),
        nullable=True,
        comment="Challenge code expiry",
    )

    verification_attempts: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
        comment="Wrong codes submitted",
    )

    completed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(),
        nullable=True,
        comment="When the payment was confirmed",
    )

    failure_reason: Mapped[Optional[str]] = mapped_column(
        Text,
        nullable=True,
        comment="Why the payment failed",
    )

    order: Mapped[Order] = relationship(
        "Order",
        foreign_keys=[order_id],
        lazy="selectin",
    )

    __table_args__ = (
        Index("ix_payments_user_created", "user_id", "created_at"),
        Index("ix_payments_order_created", "order_id", "created_at"),
        CheckConstraint("amount >= 0", name="ck_payments_amount_non_negative"),
        CheckConstraint(
            "verification_attempts >= 0",
            name="ck_payments_verification_attempts_non_negative",
        ),
        {"comment": "Simulated order payments"},
    )

    def is_code_expired(self, now: Optional[datetime] = None) -> bool:
        if self.simulation_expires_at is None:
            return True
        return (now or utcnow()) > self.simulation_expires_at
