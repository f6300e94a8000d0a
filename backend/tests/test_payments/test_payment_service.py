"""
Test suite for PaymentService.

Covers initiation against stored methods, code verification with its
attempt cap and expiry, refunds, status reads and gateway failures. Runs
against a real SQLite database; the gateway is mocked where a test needs a
known code or a failure.
"""

from datetime import timedelta
from decimal import Decimal
from unittest.mock import AsyncMock, Mock, patch
from uuid import UUID, uuid4

import pytest
from sqlalchemy import update
from sqlalchemy.exc import OperationalError

from mtaani_gas.database.base import utcnow
from mtaani_gas.database.models import Order, Payment
from mtaani_gas.services.orders.enums import (
    OrderPaymentMethod,
    OrderPaymentStatus,
    OrderStatus,
)
from mtaani_gas.services.orders.service import OrderService
from mtaani_gas.services.payments.enums import PaymentStatus
from mtaani_gas.services.payments.gateway import (
    PaymentChallenge,
    PaymentGatewayError,
    SimulatedPaymentGateway,
)
from mtaani_gas.services.payments.methods import PaymentMethodService
from mtaani_gas.services.payments.service import (
    InvalidPaymentCodeError,
    PaymentAttemptsExceededError,
    PaymentCodeExpiredError,
    PaymentNotFoundError,
    PaymentProcessingError,
    PaymentService,
    PaymentStateError,
    PaymentValidationError,
)

KNOWN_CODE = "4821"
WRONG_CODE = "1111"


# ============================================================================
# Test Fixtures
# ============================================================================


@pytest.fixture
def fixed_gateway() -> Mock:
    """Gateway double that always issues KNOWN_CODE."""
    real = SimulatedPaymentGateway(delay_seconds=0)
    gateway = Mock(spec=SimulatedPaymentGateway)
    gateway.issue_challenge = AsyncMock(
        side_effect=lambda method, amount, order_id: PaymentChallenge(
            transaction_id=f"{method.value.upper()}-1700000000000-ABCD1234",
            code=KNOWN_CODE,
            expires_at=utcnow() + timedelta(minutes=10),
        )
    )
    gateway.codes_match = Mock(side_effect=real.codes_match)
    return gateway


@pytest.fixture
def service(db_session, fixed_gateway) -> PaymentService:
    """PaymentService with a predictable gateway."""
    return PaymentService(db_session, gateway=fixed_gateway)


@pytest.fixture
async def mpesa_method_id(db_session, customer) -> UUID:
    """Customer's M-Pesa method, which is also their default."""
    method = await PaymentMethodService(db_session).add_mpesa(customer.id, "0712345678")
    return UUID(method["id"])


@pytest.fixture
async def order_id(place_order, customer, product) -> UUID:
    """Pending order of two units, KES 2,400."""
    return await place_order(
        customer, product, quantity=2, payment_method=OrderPaymentMethod.MPESA
    )


@pytest.fixture
async def initiated(service, order_id, mpesa_method_id, customer) -> dict:
    """Payment awaiting its challenge code."""
    return await service.initiate_payment(order_id, mpesa_method_id, customer.id)


async def _payment(session, payment_id) -> Payment:
    return await session.get(Payment, UUID(payment_id), populate_existing=True)


async def _order(session, order_id) -> Order:
    return await session.get(Order, order_id, populate_existing=True)


# ============================================================================
# Initiation Tests
# ============================================================================


class TestInitiatePayment:
    """Test starting simulated payments."""

    async def test_initiate_stores_pending_payment(
        self, service, db_session, order_id, mpesa_method_id, customer
    ):
        # Act
        result = await service.initiate_payment(order_id, mpesa_method_id, customer.id)

        # Assert
        assert result["simulation_code"] == KNOWN_CODE
        assert result["method"] == "mpesa"
        assert result["amount"] == 2400.0
        assert result["transaction_id"].startswith("MPESA-")
        assert 0 < result["expires_in"] <= 600
        assert result["message"] == "Enter the 4-digit code to complete payment"

        payment = await _payment(db_session, result["payment_id"])
        assert payment.status == PaymentStatus.SIMULATION_PENDING
        assert payment.amount == Decimal("2400.00")
        assert payment.phone_number == "0712345678"
        assert payment.verification_attempts == 0

    async def test_unknown_order_not_found(self, service, mpesa_method_id, customer):
        with pytest.raises(PaymentNotFoundError) as exc_info:
            await service.initiate_payment(uuid4(), mpesa_method_id, customer.id)

        assert str(exc_info.value) == "Order not found"

    async def test_other_customers_method_not_found(
        self, service, db_session, order_id, customer, make_user
    ):
        # Arrange
        stranger = await make_user()
        method = await PaymentMethodService(db_session).add_mpesa(stranger.id, "0799999999")

        # Act & Assert
        with pytest.raises(PaymentNotFoundError) as exc_info:
            await service.initiate_payment(order_id, UUID(method["id"]), customer.id)
        assert str(exc_info.value) == "Payment method not found"

    async def test_cancelled_order_rejected(
        self, service, db_session, order_id, mpesa_method_id, customer
    ):
        await OrderService(db_session).cancel_order(order_id, customer.id)

        with pytest.raises(PaymentValidationError) as exc_info:
            await service.initiate_payment(order_id, mpesa_method_id, customer.id)

        assert str(exc_info.value) == "Cannot pay for a cancelled order"

    async def test_paid_order_rejected(
        self, service, order_id, mpesa_method_id, customer, initiated
    ):
        await service.verify_code(UUID(initiated["payment_id"]), KNOWN_CODE, customer.id)

        with pytest.raises(PaymentValidationError) as exc_info:
            await service.initiate_payment(order_id, mpesa_method_id, customer.id)

        assert str(exc_info.value) == "Order is already paid"

    async def test_gateway_failure_becomes_processing_error(
        self, db_session, order_id, mpesa_method_id, customer
    ):
        """Test gateway errors surface as processing errors and store nothing."""
        # Arrange
        gateway = Mock(spec=SimulatedPaymentGateway)
        gateway.issue_challenge = AsyncMock(
            side_effect=PaymentGatewayError("provider down", code="unavailable")
        )
        service = PaymentService(db_session, gateway=gateway)

        # Act
        with pytest.raises(PaymentProcessingError):
            await service.initiate_payment(order_id, mpesa_method_id, customer.id)

        # Assert
        history = await service.get_payment_history(customer.id)
        assert history == []


# ============================================================================
# Code Verification Tests
# ============================================================================


class TestVerifyCode:
    """Test settling payments with the challenge code."""

    async def test_correct_code_settles_payment_and_order(
        self, service, db_session, initiated, order_id, customer
    ):
        # Act
        result = await service.verify_code(
            UUID(initiated["payment_id"]), f" {KNOWN_CODE} ", customer.id
        )

        # Assert
        assert result["status"] == "paid"
        assert result["payment_status"] == "paid"
        assert result["order_status"] == "confirmed"

        payment = await _payment(db_session, initiated["payment_id"])
        assert payment.status == PaymentStatus.PAID
        assert payment.completed_at is not None

        order = await _order(db_session, order_id)
        assert order.payment_status == OrderPaymentStatus.PAID
        assert order.status == OrderStatus.CONFIRMED
        assert "Payment completed via mpesa" in order.status_history[-1].note

    async def test_paid_order_is_no_longer_offered_to_dealers(
        self, service, initiated, customer, dealer
    ):
        await service.verify_code(UUID(initiated["payment_id"]), KNOWN_CODE, customer.id)

        available = await OrderService(service.session).get_available_orders(dealer)

        assert available["orders"] == []

    async def test_payment_on_claimed_order_keeps_delivery_status(
        self, service, db_session, initiated, order_id, customer, dealer
    ):
        # Arrange
        orders = OrderService(db_session)
        await orders.claim_order(order_id, dealer.id)
        await orders.advance_status(order_id, dealer.id, OrderStatus.PREPARING)

        # Act
        result = await service.verify_code(
            UUID(initiated["payment_id"]), KNOWN_CODE, customer.id
        )

        # Assert
        assert result["order_status"] == "preparing"

    async def test_wrong_code_counts_attempt(self, service, db_session, initiated, customer):
        # Act
        with pytest.raises(InvalidPaymentCodeError) as exc_info:
            await service.verify_code(UUID(initiated["payment_id"]), WRONG_CODE, customer.id)

        # Assert
        assert exc_info.value.attempts_remaining == 2
        assert str(exc_info.value) == "Invalid code. 2 attempts remaining"
        payment = await _payment(db_session, initiated["payment_id"])
        assert payment.verification_attempts == 1
        assert payment.status == PaymentStatus.SIMULATION_PENDING

    async def test_third_wrong_code_fails_payment(
        self, service, db_session, initiated, order_id, customer
    ):
        """Test the attempt cap fails the payment and locks the code."""
        payment_id = UUID(initiated["payment_id"])

        # Act
        remaining = []
        for _ in range(3):
            with pytest.raises(InvalidPaymentCodeError) as exc_info:
                await service.verify_code(payment_id, WRONG_CODE, customer.id)
            remaining.append(exc_info.value.attempts_remaining)

        # Assert
        assert remaining == [2, 1, 0]
        payment = await _payment(db_session, initiated["payment_id"])
        assert payment.status == PaymentStatus.FAILED
        assert payment.verification_attempts == 3
        assert payment.failure_reason == "Maximum verification attempts exceeded"
        order = await _order(db_session, order_id)
        assert order.payment_status == OrderPaymentStatus.FAILED

        with pytest.raises(PaymentAttemptsExceededError):
            await service.verify_code(payment_id, KNOWN_CODE, customer.id)

    async def test_expired_code_rejected(self, service, db_session, initiated, customer):
        """Test an expired code is refused without touching the payment."""
        # Arrange
        await db_session.execute(
            update(Payment)
            .where(Payment.id == UUID(initiated["payment_id"]))
            .values(simulation_expires_at=utcnow() - timedelta(seconds=1))
        )
        await db_session.commit()

        # Act
        with pytest.raises(PaymentCodeExpiredError):
            await service.verify_code(UUID(initiated["payment_id"]), KNOWN_CODE, customer.id)

        # Assert
        payment = await _payment(db_session, initiated["payment_id"])
        assert payment.status == PaymentStatus.SIMULATION_PENDING
        assert payment.verification_attempts == 0

    @pytest.mark.parametrize(
        "entered_code",
        ["٤٨٢١", "48٢١", "abcd", "4821x", "é"],
        ids=["arabic-indic", "mixed-digits", "letters", "trailing-char", "accent"],
    )
    async def test_malformed_code_counts_as_wrong(
        self, service, db_session, initiated, customer, entered_code
    ):
        """Test non-numeric and non-ASCII codes are counted like any wrong code."""
        # Act
        with pytest.raises(InvalidPaymentCodeError) as exc_info:
            await service.verify_code(UUID(initiated["payment_id"]), entered_code, customer.id)

        # Assert
        assert exc_info.value.attempts_remaining == 2
        payment = await _payment(db_session, initiated["payment_id"])
        assert payment.verification_attempts == 1
        assert payment.status == PaymentStatus.SIMULATION_PENDING

    async def test_cancelled_order_cannot_be_settled(
        self, service, db_session, initiated, order_id, customer
    ):
        """Test a payment started before cancellation can no longer settle."""
        # Arrange
        await OrderService(db_session).cancel_order(order_id, customer.id)

        # Act
        with pytest.raises(PaymentValidationError) as exc_info:
            await service.verify_code(UUID(initiated["payment_id"]), KNOWN_CODE, customer.id)

        # Assert
        assert str(exc_info.value) == "Cannot pay for a cancelled order"
        payment = await _payment(db_session, initiated["payment_id"])
        assert payment.status == PaymentStatus.SIMULATION_PENDING
        assert payment.verification_attempts == 0
        order = await _order(db_session, order_id)
        assert order.status == OrderStatus.CANCELLED
        assert order.payment_status == OrderPaymentStatus.PENDING

    async def test_store_failure_on_lookup_becomes_processing_error(
        self, service, initiated, customer
    ):
        """Test a failing payment lookup keeps the store error as the cause."""
        # Arrange
        failing_lookup = AsyncMock(
            side_effect=OperationalError("SELECT", {}, Exception("database is locked"))
        )

        # Act
        with patch.object(service.repository, "get_user_payment", failing_lookup):
            with pytest.raises(PaymentProcessingError) as exc_info:
                await service.verify_code(
                    UUID(initiated["payment_id"]), KNOWN_CODE, customer.id
                )

        # Assert
        assert str(exc_info.value).startswith("Failed to load payment:")
        assert "database is locked" in str(exc_info.value)

    async def test_settled_payment_cannot_be_verified_again(
        self, service, initiated, customer
    ):
        payment_id = UUID(initiated["payment_id"])
        await service.verify_code(payment_id, KNOWN_CODE, customer.id)

        with pytest.raises(PaymentStateError):
            await service.verify_code(payment_id, KNOWN_CODE, customer.id)

    async def test_other_customer_cannot_verify(self, service, initiated, make_user):
        stranger = await make_user()

        with pytest.raises(PaymentNotFoundError):
            await service.verify_code(UUID(initiated["payment_id"]), KNOWN_CODE, stranger.id)


# ============================================================================
# Refund and Read Tests
# ============================================================================


class TestRefundPayment:
    """Test refunds of settled payments."""

    async def test_refund_paid_payment(
        self, service, db_session, initiated, order_id, customer
    ):
        # Arrange
        payment_id = UUID(initiated["payment_id"])
        await service.verify_code(payment_id, KNOWN_CODE, customer.id)

        # Act
        result = await service.refund_payment(payment_id, customer.id, reason="Wrong size")

        # Assert
        assert result["status"] == "refunded"
        payment = await _payment(db_session, initiated["payment_id"])
        assert payment.status == PaymentStatus.REFUNDED
        order = await _order(db_session, order_id)
        assert order.payment_status == OrderPaymentStatus.REFUNDED
        assert order.status_history[-1].note == "Wrong size"

    async def test_unpaid_payment_cannot_be_refunded(self, service, initiated, customer):
        with pytest.raises(PaymentStateError) as exc_info:
            await service.refund_payment(UUID(initiated["payment_id"]), customer.id)

        assert str(exc_info.value) == "Cannot refund payment with status: simulation_pending"

    async def test_refund_is_not_repeatable(self, service, initiated, customer):
        payment_id = UUID(initiated["payment_id"])
        await service.verify_code(payment_id, KNOWN_CODE, customer.id)
        await service.refund_payment(payment_id, customer.id)

        with pytest.raises(PaymentStateError):
            await service.refund_payment(payment_id, customer.id)


class TestPaymentReads:
    """Test payment status and history."""

    async def test_status_without_payment(self, service, order_id, customer):
        result = await service.get_payment_status(order_id, customer.id)

        assert result["status"] == "pending_payment"
        assert result["payment"] is None

    async def test_status_reports_latest_payment(self, service, initiated, order_id, customer):
        result = await service.get_payment_status(order_id, customer.id)

        assert result["status"] == "simulation_pending"
        assert result["payment"]["id"] == initiated["payment_id"]

    async def test_status_for_foreign_order_not_found(self, service, order_id, make_user):
        stranger = await make_user()

        with pytest.raises(PaymentNotFoundError):
            await service.get_payment_status(order_id, stranger.id)

    async def test_history_lists_callers_payments(self, service, initiated, customer, make_user):
        stranger = await make_user()

        mine = await service.get_payment_history(customer.id)
        theirs = await service.get_payment_history(stranger.id)

        assert [p["id"] for p in mine] == [initiated["payment_id"]]
        assert theirs == []
