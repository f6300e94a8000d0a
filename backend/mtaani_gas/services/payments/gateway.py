"""
Simulated payment gateway client.

Stands in for the M-Pesa and card rails: instead of calling a provider it
issues a short numeric challenge code that the customer types back in, and
waits a configurable delay to mimic provider latency.
"""

import asyncio
import secrets
import time
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Optional
from uuid import UUID

from mtaani_gas.core.config import get_settings
from mtaani_gas.core.logging import get_logger
from mtaani_gas.database.base import utcnow
from mtaani_gas.services.orders.enums import OrderPaymentMethod

logger = get_logger(__name__)

CODE_LENGTH = 4


class PaymentGatewayError(Exception):
    """Raised when the simulated gateway cannot issue a challenge."""

    def __init__(self, message: str, code: Optional[str] = None, **context: Any):
        super().__init__(message)
        self.code = code
        self.context = context


@dataclass(frozen=True)
class PaymentChallenge:
    transaction_id: str
    code: str
    expires_at: datetime

    @property
    def expires_in_seconds(self) -> int:
        return max(0, int((self.expires_at - utcnow()).total_seconds()))


def generate_code(length: int = CODE_LENGTH) -> str:
    """Random zero-padded numeric code."""
    return f"{secrets.randbelow(10**length):0{length}d}"


def generate_transaction_id(method: OrderPaymentMethod) -> str:
    """Unique gateway-style reference, e.g. MPESA-1700000000000-9F2C41AB."""
    timestamp_ms = int(time.time() * 1000)
    return f"{method.value.upper()}-{timestamp_ms}-{secrets.token_hex(4).upper()}"


class SimulatedPaymentGateway:
    """
    Gateway client issuing simulated payment challenges.

    Attributes:
        code_ttl: Lifetime of an issued code
        delay_seconds: Artificial latency before a challenge is returned
    """

    def __init__(
        self,
        code_ttl_minutes: Optional[int] = None,
        delay_seconds: Optional[float] = None,
    ):
        settings = get_settings()
        self.code_ttl = timedelta(
            minutes=code_ttl_minutes
            if code_ttl_minutes is not None
            else settings.payment_code_ttl_minutes
        )
        self.delay_seconds = (
            delay_seconds
            if delay_seconds is not None
            else settings.payment_simulation_delay_seconds
        )

    async def issue_challenge(
        self,
        method: OrderPaymentMethod,
        amount: Decimal,
        order_id: UUID,
    ) -> PaymentChallenge:
        """
        Issue a challenge code for a payment.

        Args:
            method: Payment rail
            amount: Amount being charged
            order_id: Order being paid

        Returns:
            Challenge with transaction id, code and expiry

        Raises:
            PaymentGatewayError: If the rail cannot be simulated
        """
        if method == OrderPaymentMethod.CASH:
            raise PaymentGatewayError(
                "Cash payments are settled on delivery",
                code="unsupported_method",
                order_id=str(order_id),
            )
        if amount <= 0:
            raise PaymentGatewayError(
                "Payment amount must be positive",
                code="invalid_amount",
                order_id=str(order_id),
            )

        if self.delay_seconds > 0:
            await asyncio.sleep(self.delay_seconds)

        challenge = PaymentChallenge(
            transaction_id=generate_transaction_id(method),
            code=generate_code(),
            expires_at=utcnow() + self.code_ttl,
        )

        logger.info(
            "Payment challenge issued",
            order_id=str(order_id),
            method=method.value,
            transaction_id=challenge.transaction_id,
            amount=self.format_amount(amount),
        )
        return challenge

    def codes_match(self, expected: Optional[str], submitted: str) -> bool:
        if not expected:
            return False
        return secrets.compare_digest(
            expected.encode("utf-8"), submitted.strip().encode("utf-8")
        )

    @staticmethod
    def format_amount(amount: Decimal, currency: str = "KES") -> str:
        return f"{currency} {amount:,.2f}"


def get_payment_gateway() -> SimulatedPaymentGateway:
    return SimulatedPaymentGateway()
