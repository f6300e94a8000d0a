"""
Payment service for simulated order payments.

Initiation issues a challenge code through the simulated gateway and stores
the payment in ``simulation_pending``. Verification fails closed: the
payment must belong to the caller, be awaiting verification, be inside its
code lifetime and under the attempt cap, and the code must match. Wrong
codes are counted durably even though the call fails; a correct code marks
the payment paid and mirrors that onto the order in the same transaction.
"""

import uuid
from typing import Any, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from mtaani_gas.core.config import get_settings
from mtaani_gas.core.logging import get_logger
from mtaani_gas.database.base import utcnow
from mtaani_gas.database.models.payment import Payment
from mtaani_gas.services.orders.enums import (
    OrderPaymentMethod,
    OrderPaymentStatus,
    OrderStatus,
)
from mtaani_gas.services.orders.repository import OrderRepository, OrderRepositoryError
from mtaani_gas.services.orders.state_machine import OrderStateMachine
from mtaani_gas.services.payments.enums import (
    PaymentMethodType,
    PaymentStatus,
    validate_payment_status_transition,
)
from mtaani_gas.services.payments.gateway import (
    PaymentGatewayError,
    SimulatedPaymentGateway,
    get_payment_gateway,
)
from mtaani_gas.services.payments.repository import (
    PaymentRepository,
    PaymentRepositoryError,
)

logger = get_logger(__name__)


class PaymentServiceError(Exception):
    """Base exception for payment service errors."""

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.context = context


class PaymentNotFoundError(PaymentServiceError):
    """Raised when a payment, order or method is not found for the caller."""

    pass


class PaymentValidationError(PaymentServiceError):
    """Raised when payment input is invalid."""

    pass


class PaymentStateError(PaymentServiceError):
    """Raised when a payment is not in a state that allows the operation."""

    pass


class PaymentCodeExpiredError(PaymentServiceError):
    """Raised when a challenge code is submitted after its expiry."""

    pass


class PaymentAttemptsExceededError(PaymentServiceError):
    """Raised when the verification attempt cap has been reached."""

    pass


class InvalidPaymentCodeError(PaymentServiceError):
    """Raised when a submitted code does not match."""

    def __init__(self, message: str, attempts_remaining: int, **context: Any):
        super().__init__(message, **context)
        self.attempts_remaining = attempts_remaining


class PaymentMethodError(PaymentServiceError):
    """Raised when a stored payment method cannot be used or changed."""

    pass


class PaymentProcessingError(PaymentServiceError):
    """Raised when the store or gateway fails during a payment operation."""

    pass


class PaymentService:
    """
    Payment service orchestrating simulated payments.

    Attributes:
        repository: Payment repository for data access
        order_repository: Order repository for ownership checks
        gateway: Simulated payment gateway
    """

    def __init__(
        self,
        session: AsyncSession,
        gateway: Optional[SimulatedPaymentGateway] = None,
    ):
        """
        Initialize payment service.

        Args:
            session: Async database session
            gateway: Optional gateway instance (defaults to the configured one)
        """
        self.session = session
        self.repository = PaymentRepository(session)
        self.order_repository = OrderRepository(session)
        self.state_machine = OrderStateMachine(session)
        self.gateway = gateway or get_payment_gateway()
        self.max_attempts = get_settings().payment_max_verification_attempts

    async def initiate_payment(
        self,
        order_id: uuid.UUID,
        payment_method_id: uuid.UUID,
        user_id: uuid.UUID,
    ) -> dict[str, Any]:
        """
        Start a simulated payment for an order.

        Args:
            order_id: Order to pay
            payment_method_id: Stored payment method of the same customer
            user_id: Paying customer

        Returns:
            Payment id, transaction id, challenge code and its lifetime

        Raises:
            PaymentNotFoundError: If the order or method is not the caller's
            PaymentValidationError: If the order is already paid or cancelled
            PaymentProcessingError: If the gateway or store fails
        """
        logger.info(
            "Initiating payment",
            order_id=str(order_id),
            payment_method_id=str(payment_method_id),
            user_id=str(user_id),
        )

        order = await self._read(self.order_repository.get_customer_order(order_id, user_id))
        if order is None:
            raise PaymentNotFoundError("Order not found", order_id=str(order_id))

        if order.payment_status == OrderPaymentStatus.PAID:
            raise PaymentValidationError("Order is already paid", order_id=str(order_id))

        if order.status == OrderStatus.CANCELLED:
            raise PaymentValidationError(
                "Cannot pay for a cancelled order",
                order_id=str(order_id),
            )

        method = await self._read(self.repository.get_method(payment_method_id, user_id))
        if method is None:
            raise PaymentNotFoundError(
                "Payment method not found",
                payment_method_id=str(payment_method_id),
            )

        rail = OrderPaymentMethod(method.type.value)

        try:
            challenge = await self.gateway.issue_challenge(rail, order.total_amount, order.id)
        except PaymentGatewayError as e:
            logger.error("Payment gateway failed", order_id=str(order_id), error=str(e))
            raise PaymentProcessingError(
                f"Payment gateway error: {e}",
                order_id=str(order_id),
            ) from e

        try:
            payment = await self.repository.create_payment(
                order_id=order.id,
                user_id=user_id,
                payment_method_id=method.id,
                method=rail,
                amount=order.total_amount,
                status=PaymentStatus.SIMULATION_PENDING,
                transaction_id=challenge.transaction_id,
                phone_number=method.phone_number if method.type == PaymentMethodType.MPESA else None,
                card_last_four=method.last_four if method.type == PaymentMethodType.CARD else None,
                simulation_code=challenge.code,
                simulation_expires_at=challenge.expires_at,
                verification_attempts=0,
            )

            order.payment_method = rail
            order.payment_status = OrderPaymentStatus.PENDING

            await self.session.commit()

        except (SQLAlchemyError, PaymentRepositoryError) as e:
            await self.session.rollback()
            raise PaymentProcessingError(
                f"Failed to initiate payment: {e}",
                order_id=str(order_id),
            ) from e

        logger.info(
            "Payment initiated",
            payment_id=str(payment.id),
            order_id=str(order_id),
            transaction_id=payment.transaction_id,
        )

        return {
            "payment_id": str(payment.id),
            "transaction_id": payment.transaction_id,
            "simulation_code": challenge.code,
            "expires_in": challenge.expires_in_seconds,
            "expires_at": challenge.expires_at.isoformat(),
            "amount": float(payment.amount),
            "method": rail.value,
            "message": f"Enter the {len(challenge.code)}-digit code to complete payment",
        }

    async def verify_code(
        self,
        payment_id: uuid.UUID,
        entered_code: str,
        user_id: uuid.UUID,
    ) -> dict[str, Any]:
        """
        Verify a challenge code and settle the payment.

        Args:
            payment_id: Payment being verified
            entered_code: Code typed by the customer
            user_id: Paying customer

        Returns:
            Settled payment and order state

        Raises:
            PaymentNotFoundError: If the payment is not the caller's
            PaymentAttemptsExceededError: If the attempt cap was reached
            PaymentStateError: If the payment is not awaiting verification
            PaymentCodeExpiredError: If the code expired
            PaymentValidationError: If the order was cancelled meanwhile
            InvalidPaymentCodeError: If the code does not match
            PaymentProcessingError: If the store fails
        """
        payment = await self._read(self.repository.get_user_payment(payment_id, user_id))
        if payment is None:
            raise PaymentNotFoundError("Payment not found", payment_id=str(payment_id))

        if payment.verification_attempts >= self.max_attempts:
            raise PaymentAttemptsExceededError(
                "Maximum verification attempts exceeded. Please initiate a new payment",
                payment_id=str(payment_id),
            )

        if payment.status != PaymentStatus.SIMULATION_PENDING:
            raise PaymentStateError(
                f"Payment is not awaiting verification (status: {payment.status.value})",
                payment_id=str(payment_id),
            )

        now = utcnow()
        if payment.is_code_expired(now):
            raise PaymentCodeExpiredError(
                "Payment code has expired. Please initiate a new payment",
                payment_id=str(payment_id),
            )

        order = await self._read(self.repository.get_order(payment.order_id))
        if order.status == OrderStatus.CANCELLED:
            raise PaymentValidationError(
                "Cannot pay for a cancelled order",
                payment_id=str(payment_id),
                order_id=str(payment.order_id),
            )

        if not self.gateway.codes_match(payment.simulation_code, entered_code):
            await self._record_wrong_code(payment)

        try:
            paid = await self.repository.mark_paid(payment.id, now, self.max_attempts)
            if not paid:
                raise PaymentStateError(
                    "Payment is no longer awaiting verification",
                    payment_id=str(payment_id),
                )

            await self.repository.set_order_payment_status(
                payment.order_id, OrderPaymentStatus.PAID
            )
            await self.repository.confirm_order_after_payment(payment.order_id)
            order = await self.repository.get_order(payment.order_id)

            self.state_machine.record_status_change(
                payment.order_id,
                order.status,
                f"customer:{user_id}",
                f"Payment completed via {payment.method.value} ({payment.transaction_id})",
            )
            await self.session.commit()

        except PaymentServiceError:
            await self.session.rollback()
            raise
        except SQLAlchemyError as e:
            await self.session.rollback()
            logger.error("Payment verification failed", payment_id=str(payment_id), error=str(e))
            raise PaymentProcessingError(
                f"Failed to verify payment: {e}",
                payment_id=str(payment_id),
            ) from e

        logger.info(
            "Payment verified",
            payment_id=str(payment_id),
            order_id=str(payment.order_id),
            order_status=order.status.value,
        )

        return {
            "payment_id": str(payment.id),
            "transaction_id": payment.transaction_id,
            "status": PaymentStatus.PAID.value,
            "order_id": str(payment.order_id),
            "order_status": order.status.value,
            "payment_status": OrderPaymentStatus.PAID.value,
            "amount": float(payment.amount),
            "completed_at": now.isoformat(),
        }

    async def _record_wrong_code(self, payment: Payment) -> None:
        """Count a wrong code, fail the payment at the cap, then raise."""
        try:
            incremented = await self.repository.increment_attempts(
                payment.id, self.max_attempts
            )
            attempts = payment.verification_attempts + 1

            if incremented and attempts >= self.max_attempts:
                await self.repository.transition_status(
                    payment.id,
                    PaymentStatus.SIMULATION_PENDING,
                    PaymentStatus.FAILED,
                    failure_reason="Maximum verification attempts exceeded",
                )
                await self.repository.set_order_payment_status(
                    payment.order_id, OrderPaymentStatus.FAILED
                )

            await self.session.commit()

        except SQLAlchemyError as e:
            await self.session.rollback()
            raise PaymentProcessingError(
                f"Failed to record verification attempt: {e}",
                payment_id=str(payment.id),
            ) from e

        if not incremented:
            raise PaymentAttemptsExceededError(
                "Maximum verification attempts exceeded. Please initiate a new payment",
                payment_id=str(payment.id),
            )

        remaining = max(0, self.max_attempts - attempts)
        logger.warning(
            "Wrong payment code submitted",
            payment_id=str(payment.id),
            attempts=attempts,
            attempts_remaining=remaining,
        )
        raise InvalidPaymentCodeError(
            f"Invalid code. {remaining} attempts remaining",
            attempts_remaining=remaining,
            payment_id=str(payment.id),
        )

    async def get_payment_status(
        self,
        order_id: uuid.UUID,
        user_id: uuid.UUID,
    ) -> dict[str, Any]:
        """
        Latest payment for one of the caller's orders.

        Raises:
            PaymentNotFoundError: If the order is not the caller's
        """
        order = await self._read(self.order_repository.get_customer_order(order_id, user_id))
        if order is None:
            raise PaymentNotFoundError("Order not found", order_id=str(order_id))

        payment = await self._read(self.repository.get_latest_order_payment(order_id, user_id))
        if payment is None:
            return {
                "order_id": str(order_id),
                "status": PaymentStatus.PENDING_PAYMENT.value,
                "order_payment_status": order.payment_status.value,
                "payment": None,
            }

        return {
            "order_id": str(order_id),
            "status": payment.status.value,
            "order_payment_status": order.payment_status.value,
            "payment": self._format_payment(payment),
        }

    async def get_payment_history(
        self,
        user_id: uuid.UUID,
        limit: int = 50,
        offset: int = 0,
    ) -> list[dict[str, Any]]:
        payments = await self._read(
            self.repository.get_user_payments(user_id, limit=limit, offset=offset)
        )
        return [self._format_payment(payment) for payment in payments]

    async def refund_payment(
        self,
        payment_id: uuid.UUID,
        user_id: uuid.UUID,
        reason: Optional[str] = None,
    ) -> dict[str, Any]:
        """
        Refund a paid payment.

        Raises:
            PaymentNotFoundError: If the payment is not the caller's
            PaymentStateError: If the payment is not paid
            PaymentProcessingError: If the store fails
        """
        payment = await self._read(self.repository.get_user_payment(payment_id, user_id))
        if payment is None:
            raise PaymentNotFoundError("Payment not found", payment_id=str(payment_id))

        if not validate_payment_status_transition(payment.status, PaymentStatus.REFUNDED):
            raise PaymentStateError(
                f"Cannot refund payment with status: {payment.status.value}",
                payment_id=str(payment_id),
            )

        try:
            refunded = await self.repository.transition_status(
                payment.id,
                PaymentStatus.PAID,
                PaymentStatus.REFUNDED,
                failure_reason=reason,
            )
            if not refunded:
                raise PaymentStateError(
                    "Payment status changed, cannot refund",
                    payment_id=str(payment_id),
                )

            await self.repository.set_order_payment_status(
                payment.order_id, OrderPaymentStatus.REFUNDED
            )
            order = await self.repository.get_order(payment.order_id)
            self.state_machine.record_status_change(
                payment.order_id,
                order.status,
                f"customer:{user_id}",
                reason or f"Payment refunded ({payment.transaction_id})",
            )
            await self.session.commit()

        except PaymentServiceError:
            await self.session.rollback()
            raise
        except SQLAlchemyError as e:
            await self.session.rollback()
            raise PaymentProcessingError(
                f"Failed to refund payment: {e}",
                payment_id=str(payment_id),
            ) from e

        logger.info("Payment refunded", payment_id=str(payment_id), order_id=str(payment.order_id))

        return {
            "payment_id": str(payment_id),
            "status": PaymentStatus.REFUNDED.value,
            "order_id": str(payment.order_id),
            "payment_status": OrderPaymentStatus.REFUNDED.value,
        }

    async def _read(self, awaitable):
        try:
            return await awaitable
        except (SQLAlchemyError, PaymentRepositoryError, OrderRepositoryError) as e:
            logger.error("Payment query failed", error=str(e))
            raise PaymentProcessingError(f"Failed to load payment: {e}") from e

    @staticmethod
    def _format_payment(payment: Payment) -> dict[str, Any]:
        return {
            "id": str(payment.id),
            "order_id": str(payment.order_id),
            "method": payment.method.value,
            "amount": float(payment.amount),
            "status": payment.status.value,
            "transaction_id": payment.transaction_id,
            "phone_number": payment.phone_number,
            "card_last_four": payment.card_last_four,
            "verification_attempts": payment.verification_attempts,
            "completed_at": payment.completed_at.isoformat() if payment.completed_at else None,
            "failure_reason": payment.failure_reason,
            "created_at": payment.created_at.isoformat(),
        }
