"""
Tests for the simulated payment gateway.
"""

import re
from decimal import Decimal
from unittest.mock import AsyncMock, patch
from uuid import uuid4

import pytest

from mtaani_gas.database.base import utcnow
from mtaani_gas.services.orders.enums import OrderPaymentMethod
from mtaani_gas.services.payments.gateway import (
    PaymentGatewayError,
    SimulatedPaymentGateway,
    generate_code,
    generate_transaction_id,
)


@pytest.fixture
def gateway() -> SimulatedPaymentGateway:
    """Gateway with no artificial latency and a ten minute code lifetime."""
    return SimulatedPaymentGateway(code_ttl_minutes=10, delay_seconds=0)


class TestCodeGeneration:
    """Test challenge codes and transaction references."""

    def test_code_is_four_digits(self):
        for _ in range(50):
            assert re.fullmatch(r"\d{4}", generate_code())

    @pytest.mark.parametrize("method", [OrderPaymentMethod.MPESA, OrderPaymentMethod.CARD])
    def test_transaction_id_format(self, method):
        transaction_id = generate_transaction_id(method)

        assert re.fullmatch(rf"{method.value.upper()}-\d{{13}}-[0-9A-F]{{8}}", transaction_id)

    def test_transaction_ids_are_unique(self):
        ids = {generate_transaction_id(OrderPaymentMethod.MPESA) for _ in range(100)}

        assert len(ids) == 100


class TestIssueChallenge:
    """Test issuing challenges."""

    async def test_challenge_expires_after_ttl(self, gateway):
        # Act
        challenge = await gateway.issue_challenge(
            OrderPaymentMethod.MPESA, Decimal("1200.00"), uuid4()
        )

        # Assert
        remaining = (challenge.expires_at - utcnow()).total_seconds()
        assert 590 < remaining <= 600
        assert 590 <= challenge.expires_in_seconds <= 600

    async def test_cash_cannot_be_simulated(self, gateway):
        with pytest.raises(PaymentGatewayError) as exc_info:
            await gateway.issue_challenge(OrderPaymentMethod.CASH, Decimal("100"), uuid4())

        assert exc_info.value.code == "unsupported_method"

    async def test_non_positive_amount_rejected(self, gateway):
        with pytest.raises(PaymentGatewayError) as exc_info:
            await gateway.issue_challenge(OrderPaymentMethod.CARD, Decimal("0"), uuid4())

        assert exc_info.value.code == "invalid_amount"

    async def test_configured_delay_is_awaited(self):
        gateway = SimulatedPaymentGateway(delay_seconds=2)

        with patch(
            "mtaani_gas.services.payments.gateway.asyncio.sleep", new_callable=AsyncMock
        ) as mock_sleep:
            await gateway.issue_challenge(OrderPaymentMethod.MPESA, Decimal("50"), uuid4())

        mock_sleep.assert_awaited_once_with(2)


class TestCodesMatch:
    """Test code comparison."""

    def test_surrounding_whitespace_ignored(self, gateway):
        assert gateway.codes_match("0042", " 0042 ") is True

    def test_mismatch(self, gateway):
        assert gateway.codes_match("0042", "0043") is False

    @pytest.mark.parametrize("submitted", ["٠٠٤٢", "00٤٢", "ｏｏ42", "0042é"])
    def test_non_ascii_input_is_a_mismatch(self, gateway, submitted):
        assert gateway.codes_match("0042", submitted) is False

    def test_missing_expected_code_never_matches(self, gateway):
        assert gateway.codes_match(None, "0042") is False

    def test_format_amount(self):
        assert SimulatedPaymentGateway.format_amount(Decimal("2400.5")) == "KES 2,400.50"
