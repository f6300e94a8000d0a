"""
Payment data access repository.

Reads and writes for simulated payments and stored payment methods. Status
and attempt-counter writes are conditional UPDATEs so concurrent
verifications of the same payment cannot both pass. Nothing here commits;
the service owns the transaction.
"""

import uuid
from datetime import datetime
from typing import Any, Optional, Sequence

from sqlalchemy import func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from mtaani_gas.core.logging import get_logger
from mtaani_gas.database.base import utcnow
from mtaani_gas.database.models.order import Order
from mtaani_gas.database.models.payment import Payment, PaymentMethod
from mtaani_gas.services.orders.enums import (
    PAYMENT_CONFIRMABLE_STATUSES,
    OrderPaymentStatus,
    OrderStatus,
)
from mtaani_gas.services.payments.enums import PaymentMethodType, PaymentStatus

logger = get_logger(__name__)


class PaymentRepositoryError(Exception):
    """Base exception for payment repository errors."""

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.context = context


class PaymentRepository:
    """
    Repository for payment and payment method data access.
    """

    def __init__(self, session: AsyncSession):
        """
        Initialize payment repository.

        Args:
            session: Async database session
        """
        self.session = session

    # Payments

    async def create_payment(self, **fields: Any) -> Payment:
        """
        Insert a payment row.

        Args:
            **fields: Payment column values

        Returns:
            Flushed payment

        Raises:
            PaymentRepositoryError: If the insert fails
        """
        payment = Payment(**fields)
        self.session.add(payment)
        try:
            await self.session.flush()
        except SQLAlchemyError as e:
            logger.error(
                "Payment insert failed",
                order_id=str(fields.get("order_id")),
                error=str(e),
            )
            raise PaymentRepositoryError(
                "Failed to create payment",
                order_id=str(fields.get("order_id")),
                error=str(e),
            ) from e

        logger.debug(
            "Payment created",
            payment_id=str(payment.id),
            transaction_id=payment.transaction_id,
        )
        return payment

    async def get_user_payment(
        self,
        payment_id: uuid.UUID,
        user_id: uuid.UUID,
    ) -> Optional[Payment]:
        result = await self.session.execute(
            select(Payment)
            .where(Payment.id == payment_id, Payment.user_id == user_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get_latest_order_payment(
        self,
        order_id: uuid.UUID,
        user_id: uuid.UUID,
    ) -> Optional[Payment]:
        result = await self.session.execute(
            select(Payment)
            .where(Payment.order_id == order_id, Payment.user_id == user_id)
            .order_by(Payment.created_at.desc())
            .limit(1)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get_user_payments(
        self,
        user_id: uuid.UUID,
        limit: int = 50,
        offset: int = 0,
    ) -> Sequence[Payment]:
        result = await self.session.execute(
            select(Payment)
            .where(Payment.user_id == user_id)
            .order_by(Payment.created_at.desc())
            .limit(limit)
            .offset(offset)
            .execution_options(populate_existing=True)
        )
        return result.scalars().all()

    async def increment_attempts(self, payment_id: uuid.UUID, max_attempts: int) -> bool:
        """
        Count one wrong code if the payment is still verifiable.

        Returns:
            True if the counter was incremented
        """
        result = await self.session.execute(
            update(Payment)
            .where(
                Payment.id == payment_id,
                Payment.status == PaymentStatus.SIMULATION_PENDING,
                Payment.verification_attempts < max_attempts,
            )
            .values(
                verification_attempts=Payment.verification_attempts + 1,
                updated_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def transition_status(
        self,
        payment_id: uuid.UUID,
        from_status: PaymentStatus,
        to_status: PaymentStatus,
        **values: Any,
    ) -> bool:
        """
        Move a payment between statuses if it is still in from_status.

        Returns:
            True if the transition was applied
        """
        result = await self.session.execute(
            update(Payment)
            .where(Payment.id == payment_id, Payment.status == from_status)
            .values(status=to_status, updated_at=utcnow(), **values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def mark_paid(
        self,
        payment_id: uuid.UUID,
        completed_at: datetime,
        max_attempts: int,
    ) -> bool:
        result = await self.session.execute(
            update(Payment)
            .where(
                Payment.id == payment_id,
                Payment.status == PaymentStatus.SIMULATION_PENDING,
                Payment.verification_attempts < max_attempts,
            )
            .values(
                status=PaymentStatus.PAID,
                completed_at=completed_at,
                updated_at=completed_at,
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    # Order mirror

    async def set_order_payment_status(
        self,
        order_id: uuid.UUID,
        payment_status: OrderPaymentStatus,
    ) -> None:
        await self.session.execute(
            update(Order)
            .where(Order.id == order_id)
            .values(payment_status=payment_status, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )

    async def confirm_order_after_payment(self, order_id: uuid.UUID) -> bool:
        """
        Confirm an order that is still waiting on payment.

        Orders further along the delivery lifecycle are left untouched.

        Returns:
            True if the order moved to confirmed
        """
        result = await self.session.execute(
            update(Order)
            .where(
                Order.id == order_id,
                Order.status.in_(PAYMENT_CONFIRMABLE_STATUSES),
            )
            .values(status=OrderStatus.CONFIRMED, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def get_order(self, order_id: uuid.UUID) -> Optional[Order]:
        result = await self.session.execute(
            select(Order)
            .where(Order.id == order_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    # Payment methods

    async def list_methods(self, user_id: uuid.UUID) -> Sequence[PaymentMethod]:
        """Active methods, default first, then newest first."""
        result = await self.session.execute(
            select(PaymentMethod)
            .where(PaymentMethod.user_id == user_id, PaymentMethod.is_active.is_(True))
            .order_by(PaymentMethod.is_default.desc(), PaymentMethod.created_at.desc())
            .execution_options(populate_existing=True)
        )
        return result.scalars().all()

    async def get_method(
        self,
        method_id: uuid.UUID,
        user_id: uuid.UUID,
    ) -> Optional[PaymentMethod]:
        result = await self.session.execute(
            select(PaymentMethod)
            .where(
                PaymentMethod.id == method_id,
                PaymentMethod.user_id == user_id,
                PaymentMethod.is_active.is_(True),
            )
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get_default_method(self, user_id: uuid.UUID) -> Optional[PaymentMethod]:
        result = await self.session.execute(
            select(PaymentMethod)
            .where(
                PaymentMethod.user_id == user_id,
                PaymentMethod.is_active.is_(True),
                PaymentMethod.is_default.is_(True),
            )
            .limit(1)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def count_active_methods(
        self,
        user_id: uuid.UUID,
        method_type: Optional[PaymentMethodType] = None,
    ) -> int:
        stmt = select(func.count(PaymentMethod.id)).where(
            PaymentMethod.user_id == user_id,
            PaymentMethod.is_active.is_(True),
        )
        if method_type is not None:
            stmt = stmt.where(PaymentMethod.type == method_type)
        result = await self.session.execute(stmt)
        return int(result.scalar_one())

    async def add_method(self, **fields: Any) -> PaymentMethod:
        method = PaymentMethod(**fields)
        self.session.add(method)
        await self.session.flush()
        return method

    async def clear_default(self, user_id: uuid.UUID) -> None:
        await self.session.execute(
            update(PaymentMethod)
            .where(PaymentMethod.user_id == user_id, PaymentMethod.is_default.is_(True))
            .values(is_default=False, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )

    async def mark_default(self, method_id: uuid.UUID) -> None:
        await self.session.execute(
            update(PaymentMethod)
            .where(PaymentMethod.id == method_id)
            .values(is_default=True, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
