"""Payment status enums and the payment transition table."""

from enum import Enum
from typing import Dict, FrozenSet


class PaymentStatus(str, Enum):
    """Simulated payment lifecycle.

    Valid transitions:
    - PENDING_PAYMENT -> SIMULATION_PENDING, FAILED
    - SIMULATION_PENDING -> PAID, FAILED
    - PAID -> REFUNDED
    - FAILED -> (terminal state)
    - REFUNDED -> (terminal state)
    """

    PENDING_PAYMENT = "pending_payment"
    SIMULATION_PENDING = "simulation_pending"
    PAID = "paid"
    FAILED = "failed"
    REFUNDED = "refunded"


class PaymentMethodType(str, Enum):
    """Kinds of stored payment methods."""

    MPESA = "mpesa"
    CARD = "card"


PAYMENT_STATUS_TRANSITIONS: Dict[PaymentStatus, FrozenSet[PaymentStatus]] = {
    PaymentStatus.PENDING_PAYMENT: frozenset(
        {PaymentStatus.SIMULATION_PENDING, PaymentStatus.FAILED}
    ),
    PaymentStatus.SIMULATION_PENDING: frozenset(
        {PaymentStatus.PAID, PaymentStatus.FAILED}
    ),
    PaymentStatus.PAID: frozenset({PaymentStatus.REFUNDED}),
    PaymentStatus.FAILED: frozenset(),
    PaymentStatus.REFUNDED: frozenset(),
}


def validate_payment_status_transition(
    current: PaymentStatus,
    new: PaymentStatus,
) -> bool:
    """Validate if payment status transition is allowed."""
    return new in PAYMENT_STATUS_TRANSITIONS.get(current, frozenset())
