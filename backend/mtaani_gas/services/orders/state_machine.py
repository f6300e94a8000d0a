"""Order state machine implementation with transition validation.

Transitions are applied as a conditional UPDATE on the order's current
status, so two requests racing from the same status cannot both succeed.
The caller owns the transaction; nothing here commits.
"""

import uuid
from datetime import datetime
from typing import Any, Callable, Dict, Optional

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from mtaani_gas.core.logging import get_logger
from mtaani_gas.database.base import utcnow
from mtaani_gas.database.models.order import Order, OrderStatusHistory
from mtaani_gas.services.orders.enums import (
    OrderStatus,
    get_allowed_order_transitions,
    validate_order_status_transition,
)

logger = get_logger(__name__)


class StateTransitionError(Exception):
    """Raised when an invalid state transition is attempted."""

    def __init__(
        self,
        message: str,
        current_state: OrderStatus,
        target_state: OrderStatus,
        **context: Any,
    ):
        super().__init__(message)
        self.current_state = current_state
        self.target_state = target_state
        self.context = context


class ConcurrentTransitionError(StateTransitionError):
    """Raised when the order left its expected status before the update landed."""

    pass


class OrderStateMachine:
    """State machine for the order delivery lifecycle.

    Validates transitions against the transition table, applies them with
    their side effects and appends status history in the same transaction.
    """

    def __init__(self, db_session: AsyncSession):
        self.db = db_session
        self._side_effects: Dict[
            OrderStatus, Callable[[datetime], Dict[str, Any]]
        ] = {
            OrderStatus.DELIVERED: self._effect_delivered,
        }

    def validate_transition(self, order: Order, target_status: OrderStatus) -> bool:
        """Validate that the order may move to target_status.

        Raises:
            StateTransitionError: If the transition table forbids the move
        """
        current_status = order.status

        if not validate_order_status_transition(current_status, target_status):
            allowed = get_allowed_order_transitions(current_status)
            raise StateTransitionError(
                f"Cannot change status from {current_status.value} to "
                f"{target_status.value}",
                current_state=current_status,
                target_state=target_status,
                order_id=str(order.id),
                allowed_transitions=sorted(s.value for s in allowed),
            )

        return True

    async def apply_transition(
        self,
        order: Order,
        target_status: OrderStatus,
        changed_by: str,
        note: Optional[str] = None,
    ) -> Order:
        """Apply a validated transition and record it.

        Args:
            order: Order as last read by the caller
            target_status: Target status
            changed_by: Actor identity for the history entry
            note: Optional history note

        Returns:
            The order refreshed from the database

        Raises:
            StateTransitionError: If the transition is not allowed
            ConcurrentTransitionError: If another request changed the order first
        """
        self.validate_transition(order, target_status)

        current_status = order.status
        now = utcnow()
        values: Dict[str, Any] = {"status": target_status, "updated_at": now}
        side_effect = self._side_effects.get(target_status)
        if side_effect:
            values.update(side_effect(now))

        result = await self.db.execute(
            update(Order)
            .where(Order.id == order.id, Order.status == current_status)
            .values(**values)
            .execution_options(synchronize_session=False)
        )

        if result.rowcount == 0:
            raise ConcurrentTransitionError(
                "Order status changed by another request, reload and retry",
                current_state=current_status,
                target_state=target_status,
                order_id=str(order.id),
            )

        self.record_status_change(order.id, target_status, changed_by, note)
        await self.db.flush()

        logger.info(
            "State transition applied",
            order_id=str(order.id),
            transition=f"{current_status.value}->{target_status.value}",
            changed_by=changed_by,
        )

        refreshed = await self.db.get(Order, order.id, populate_existing=True)
        return refreshed

    def record_status_change(
        self,
        order_id: uuid.UUID,
        status: OrderStatus,
        changed_by: str,
        note: Optional[str] = None,
    ) -> OrderStatusHistory:
        """Append a status history entry to the current transaction."""
        entry = OrderStatusHistory(
            order_id=order_id,
            status=status,
            changed_by=changed_by,
            note=note,
            changed_at=utcnow(),
        )
        self.db.add(entry)

        logger.debug(
            "Status change recorded",
            order_id=str(order_id),
            status=status.value,
            changed_by=changed_by,
        )
        return entry

    # Side effects

    def _effect_delivered(self, now: datetime) -> Dict[str, Any]:
        return {"delivered_at": now}
