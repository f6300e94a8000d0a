"""Order status enums and the lifecycle transition table.

Orders move along three independent axes: the delivery lifecycle
(:class:`OrderStatus`), the payment axis (:class:`OrderPaymentStatus`) and the
dealer assignment axis (:class:`AssignmentStatus`). Only the delivery
lifecycle has a transition table; the other two are driven by the claim and
payment operations.
"""

from enum import Enum
from typing import Dict, FrozenSet, Set


class OrderStatus(str, Enum):
    """Order delivery lifecycle.

    Valid transitions:
    - PENDING -> CONFIRMED
    - PENDING_PAYMENT -> CONFIRMED
    - CONFIRMED -> PREPARING, CANCELLED
    - PREPARING -> ON_THE_WAY, CANCELLED
    - ON_THE_WAY -> DELIVERED, CANCELLED
    - DELIVERED -> (terminal state)
    - CANCELLED -> (terminal state)
    """

    PENDING = "pending"
    PENDING_PAYMENT = "pending_payment"
    CONFIRMED = "confirmed"
    PREPARING = "preparing"
    ON_THE_WAY = "on_the_way"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"

    def is_terminal(self) -> bool:
        """Check if no further transitions are possible."""
        return not ORDER_STATUS_TRANSITIONS.get(self)

    def can_customer_cancel(self) -> bool:
        """Check if the customer may still cancel from this status."""
        return self in CUSTOMER_CANCELLABLE_STATUSES

    @property
    def display_name(self) -> str:
        return self.value.replace("_", " ").title()


class OrderPaymentStatus(str, Enum):
    """Payment axis mirrored on the order."""

    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    REFUNDED = "refunded"


class AssignmentStatus(str, Enum):
    """Dealer assignment axis.

    UNASSIGNED while the order is being created, AVAILABLE once dealer
    candidates are recorded and the offer window is open, ASSIGNED after a
    dealer claims it.
    """

    UNASSIGNED = "unassigned"
    AVAILABLE = "available"
    ASSIGNED = "assigned"


class OrderPaymentMethod(str, Enum):
    """Payment rail chosen for an order."""

    CASH = "cash"
    MPESA = "mpesa"
    CARD = "card"


ORDER_STATUS_TRANSITIONS: Dict[OrderStatus, FrozenSet[OrderStatus]] = {
    OrderStatus.PENDING: frozenset({OrderStatus.CONFIRMED}),
    OrderStatus.PENDING_PAYMENT: frozenset({OrderStatus.CONFIRMED}),
    OrderStatus.CONFIRMED: frozenset({OrderStatus.PREPARING, OrderStatus.CANCELLED}),
    OrderStatus.PREPARING: frozenset({OrderStatus.ON_THE_WAY, OrderStatus.CANCELLED}),
    OrderStatus.ON_THE_WAY: frozenset({OrderStatus.DELIVERED, OrderStatus.CANCELLED}),
    OrderStatus.DELIVERED: frozenset(),
    OrderStatus.CANCELLED: frozenset(),
}

CUSTOMER_CANCELLABLE_STATUSES: FrozenSet[OrderStatus] = frozenset(
    {OrderStatus.PENDING, OrderStatus.CONFIRMED}
)

# Statuses a successful payment may move forward to CONFIRMED.
PAYMENT_CONFIRMABLE_STATUSES: FrozenSet[OrderStatus] = frozenset(
    {OrderStatus.PENDING, OrderStatus.PENDING_PAYMENT}
)

# Display order for per-status counts.
STATUS_COUNT_ORDER: tuple[OrderStatus, ...] = (
    OrderStatus.PENDING,
    OrderStatus.CONFIRMED,
    OrderStatus.PREPARING,
    OrderStatus.ON_THE_WAY,
    OrderStatus.DELIVERED,
    OrderStatus.CANCELLED,
)

# Sort rank for a dealer's own orders; unlisted statuses sort last.
DEALER_ORDER_PRIORITY: Dict[OrderStatus, int] = {
    OrderStatus.ON_THE_WAY: 1,
    OrderStatus.PREPARING: 2,
    OrderStatus.CONFIRMED: 3,
    OrderStatus.DELIVERED: 4,
}


def validate_order_status_transition(
    current: OrderStatus,
    new: OrderStatus,
) -> bool:
    """Validate if order status transition is allowed.

    Args:
        current: Current order status
        new: Desired new status

    Returns:
        True if transition is valid
    """
    return new in ORDER_STATUS_TRANSITIONS.get(current, frozenset())


def get_allowed_order_transitions(current: OrderStatus) -> Set[OrderStatus]:
    """Get all allowed transitions from current order status."""
    return set(ORDER_STATUS_TRANSITIONS.get(current, frozenset()))
