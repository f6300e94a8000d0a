"""
Order service implementing the order lifecycle.

Places orders from the customer's cart, offers them to dealers in the same
ward, arbitrates dealer claims, advances delivery status and handles customer
cancellation. Every mutation runs in the caller's session as one transaction:
the service commits on success and rolls back on any failure.
"""

import uuid
from datetime import timedelta
from decimal import Decimal
from typing import Any, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from mtaani_gas.core.config import get_settings
from mtaani_gas.core.logging import get_logger
from mtaani_gas.database.base import utcnow
from mtaani_gas.database.models.order import Order
from mtaani_gas.database.models.user import User
from mtaani_gas.services.dealers.location import Location
from mtaani_gas.services.dealers.matcher import (
    PARTIAL_MATCH_SCORE,
    DealerProfile,
    match_dealers,
    score_ward_match,
)
from mtaani_gas.services.orders.enums import (
    STATUS_COUNT_ORDER,
    OrderPaymentMethod,
    OrderPaymentStatus,
    OrderStatus,
)
from mtaani_gas.services.orders.repository import OrderRepository, OrderRepositoryError
from mtaani_gas.services.orders.state_machine import (
    ConcurrentTransitionError,
    OrderStateMachine,
    StateTransitionError,
)

logger = get_logger(__name__)


class OrderServiceError(Exception):
    """Base exception for order service errors."""

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.context = context


class EmptyCartError(OrderServiceError):
    """Raised when an order is placed from an empty cart."""

    pass


class InsufficientStockError(OrderServiceError):
    """Raised when a cart line asks for more units than are in stock."""

    pass


class OrderNotFoundError(OrderServiceError):
    """Raised when an order does not exist or is not visible to the caller."""

    pass


class OrderNotAvailableError(OrderServiceError):
    """Raised when a claim finds the order closed or already taken."""

    pass


class OrderAccessError(OrderServiceError):
    """Raised when a dealer acts on an order assigned to someone else."""

    pass


class OrderCancellationError(OrderServiceError):
    """Raised when an order can no longer be cancelled by its customer."""

    pass


class OrderConflictError(OrderServiceError):
    """Raised when a concurrent request changed the order first."""

    pass


class OrderProcessingError(OrderServiceError):
    """Raised when the store fails during an order operation."""

    pass


def customer_actor(user_id: uuid.UUID) -> str:
    return f"customer:{user_id}"


def dealer_actor(dealer_id: uuid.UUID) -> str:
    return f"dealer:{dealer_id}"


class OrderService:
    """
    Order service orchestrating the order lifecycle.

    Attributes:
        session: Async database session owning the transaction
        repository: Order repository for data access
        state_machine: State machine for status transitions
    """

    def __init__(self, session: AsyncSession):
        """
        Initialize order service.

        Args:
            session: Async database session
        """
        self.session = session
        self.repository = OrderRepository(session)
        self.state_machine = OrderStateMachine(session)
        self.settings = get_settings()

    async def create_order_from_cart(
        self,
        user_id: uuid.UUID,
        delivery_location: str,
        payment_method: OrderPaymentMethod = OrderPaymentMethod.CASH,
        special_instructions: Optional[str] = None,
    ) -> dict[str, Any]:
        """
        Place an order from the customer's cart.

        Snapshots every cart line into the order, takes the units out of
        stock, empties the cart, records the dealers whose ward matches the
        delivery location and opens the claim window. All of it commits
        together or not at all.

        Args:
            user_id: Customer placing the order
            delivery_location: Free-text delivery location
            payment_method: Chosen payment rail
            special_instructions: Optional delivery notes

        Returns:
            Summary of the created order and the dealers it was offered to

        Raises:
            EmptyCartError: If the cart has no lines
            InsufficientStockError: If any line exceeds available stock
            OrderProcessingError: If the store fails
        """
        logger.info("Creating order from cart", user_id=str(user_id))

        try:
            lines = await self.repository.get_cart_lines(user_id)
            if not lines:
                raise EmptyCartError("Cart is empty", user_id=str(user_id))

            for line in lines:
                self._check_stock(line.product.name, line.product.stock, line.quantity)

            total_amount = sum(
                (line.product.price * line.quantity for line in lines),
                Decimal("0.00"),
            )

            order = await self.repository.insert_order(
                user_id=user_id,
                delivery_location=delivery_location,
                payment_method=payment_method,
                total_amount=total_amount,
                lines=[(line.product, line.quantity) for line in lines],
                special_instructions=special_instructions,
            )

            for line in lines:
                decremented = await self.repository.decrement_stock(
                    line.product_id, line.quantity
                )
                if not decremented:
                    raise InsufficientStockError(
                        f"Insufficient stock for {line.product.name}. "
                        f"Requested: {line.quantity}",
                        product_id=str(line.product_id),
                    )

            await self.repository.clear_cart(user_id)

            location = Location.parse(delivery_location)
            dealers = await self.repository.get_active_dealers()
            matches = match_dealers(
                location,
                [
                    DealerProfile(id=d.id, name=d.name, location=d.parsed_location)
                    for d in dealers
                ],
            )
            self.repository.add_candidates(order.id, matches)

            expiry = utcnow() + timedelta(hours=self.settings.order_assignment_window_hours)
            self.repository.open_for_dealers(order, expiry)

            self.state_machine.record_status_change(
                order.id,
                OrderStatus.PENDING,
                customer_actor(user_id),
                "Order placed",
            )

            await self.session.commit()

        except OrderServiceError:
            await self.session.rollback()
            raise
        except (SQLAlchemyError, OrderRepositoryError) as e:
            await self.session.rollback()
            logger.error("Order creation failed", user_id=str(user_id), error=str(e))
            raise OrderProcessingError(
                f"Failed to create order: {e}",
                user_id=str(user_id),
            ) from e

        logger.info(
            "Order created",
            order_id=str(order.id),
            user_id=str(user_id),
            total_amount=float(total_amount),
            dealers_available=len(matches),
            ward=location.ward,
        )

        return {
            "order_id": str(order.id),
            "total_amount": float(total_amount),
            "status": OrderStatus.PENDING.value,
            "payment_status": OrderPaymentStatus.PENDING.value,
            "dealers_available": len(matches),
            "customer_ward": location.ward,
            "available_dealers": [
                {"id": str(match.dealer_id), "name": match.name} for match in matches
            ],
        }

    async def claim_order(
        self,
        order_id: uuid.UUID,
        dealer_id: uuid.UUID,
    ) -> dict[str, Any]:
        """
        Assign an open order to the calling dealer.

        The claim is a single conditional UPDATE re-checking that the order is
        still pending, unassigned, offered and inside its claim window, so only
        one of several concurrent claimants can win.

        Raises:
            OrderNotAvailableError: If the order is closed or already taken
            OrderProcessingError: If the store fails
        """
        now = utcnow()

        try:
            claimed = await self.repository.claim(order_id, dealer_id, now)
            if not claimed:
                raise OrderNotAvailableError(
                    "Order not available or already taken",
                    order_id=str(order_id),
                    dealer_id=str(dealer_id),
                )

            await self.repository.delete_candidates(order_id)
            self.state_machine.record_status_change(
                order_id,
                OrderStatus.CONFIRMED,
                dealer_actor(dealer_id),
                "Order accepted by dealer",
            )
            await self.session.commit()

        except OrderServiceError:
            await self.session.rollback()
            logger.info(
                "Order claim rejected",
                order_id=str(order_id),
                dealer_id=str(dealer_id),
            )
            raise
        except (SQLAlchemyError, OrderRepositoryError) as e:
            await self.session.rollback()
            logger.error(
                "Order claim failed",
                order_id=str(order_id),
                dealer_id=str(dealer_id),
                error=str(e),
            )
            raise OrderProcessingError(
                f"Failed to accept order: {e}",
                order_id=str(order_id),
            ) from e

        logger.info("Order claimed", order_id=str(order_id), dealer_id=str(dealer_id))

        return {
            "order_id": str(order_id),
            "status": OrderStatus.CONFIRMED.value,
            "dealer_id": str(dealer_id),
            "assigned_at": now.isoformat(),
        }

    async def advance_status(
        self,
        order_id: uuid.UUID,
        dealer_id: uuid.UUID,
        target_status: OrderStatus,
    ) -> dict[str, Any]:
        """
        Move a dealer's order along the delivery lifecycle.

        Cancelling returns the order's units to stock.

        Raises:
            OrderAccessError: If the order is not assigned to the dealer
            StateTransitionError: If the transition table forbids the move
            OrderConflictError: If another request changed the status first
            OrderProcessingError: If the store fails
        """
        order = await self._read(self.repository.get_dealer_order(order_id, dealer_id))
        if order is None:
            raise OrderAccessError(
                "Order not found or you are not assigned to this order",
                order_id=str(order_id),
                dealer_id=str(dealer_id),
            )

        previous_status = order.status

        try:
            updated = await self.state_machine.apply_transition(
                order,
                target_status,
                dealer_actor(dealer_id),
                note=f"Status updated to {target_status.display_name}",
            )

            if target_status == OrderStatus.CANCELLED:
                await self.repository.restore_stock(order.items)
                await self.repository.delete_candidates(order_id)

            await self.session.commit()

        except ConcurrentTransitionError as e:
            await self.session.rollback()
            raise OrderConflictError(str(e), order_id=str(order_id)) from e
        except StateTransitionError:
            await self.session.rollback()
            raise
        except (SQLAlchemyError, OrderRepositoryError) as e:
            await self.session.rollback()
            logger.error(
                "Status update failed",
                order_id=str(order_id),
                target_status=target_status.value,
                error=str(e),
            )
            raise OrderProcessingError(
                f"Failed to update order status: {e}",
                order_id=str(order_id),
            ) from e

        logger.info(
            "Order status advanced",
            order_id=str(order_id),
            dealer_id=str(dealer_id),
            transition=f"{previous_status.value}->{target_status.value}",
        )

        return {
            "order_id": str(order_id),
            "previous_status": previous_status.value,
            "status": updated.status.value,
            "delivered_at": updated.delivered_at.isoformat() if updated.delivered_at else None,
        }

    async def cancel_order(
        self,
        order_id: uuid.UUID,
        user_id: uuid.UUID,
        reason: Optional[str] = None,
    ) -> dict[str, Any]:
        """
        Cancel a customer's own order and return its units to stock.

        Raises:
            OrderNotFoundError: If the order does not belong to the customer
            OrderCancellationError: If the order is past confirmed
            OrderProcessingError: If the store fails
        """
        order = await self._read(self.repository.get_customer_order(order_id, user_id))
        if order is None:
            raise OrderNotFoundError("Order not found", order_id=str(order_id))

        if not order.can_customer_cancel:
            raise OrderCancellationError(
                f"Cannot cancel order with status: {order.status.value}",
                order_id=str(order_id),
            )

        try:
            cancelled = await self.repository.cancel_for_customer(order_id, user_id)
            if not cancelled:
                current = await self.repository.get_order_by_id(order_id, refresh=True)
                raise OrderCancellationError(
                    f"Cannot cancel order with status: {current.status.value}",
                    order_id=str(order_id),
                )

            await self.repository.restore_stock(order.items)
            await self.repository.delete_candidates(order_id)
            self.state_machine.record_status_change(
                order_id,
                OrderStatus.CANCELLED,
                customer_actor(user_id),
                reason or "Order cancelled by customer",
            )
            await self.session.commit()

        except OrderServiceError:
            await self.session.rollback()
            raise
        except (SQLAlchemyError, OrderRepositoryError) as e:
            await self.session.rollback()
            logger.error("Order cancellation failed", order_id=str(order_id), error=str(e))
            raise OrderProcessingError(
                f"Failed to cancel order: {e}",
                order_id=str(order_id),
            ) from e

        logger.info("Order cancelled by customer", order_id=str(order_id), user_id=str(user_id))

        return {"order_id": str(order_id), "status": OrderStatus.CANCELLED.value}

    async def expire_stale_offers(self) -> int:
        """
        Close the dealer offer on orders nobody claimed in time.

        Returns:
            Number of orders withdrawn from dealers
        """
        try:
            order_ids = await self.repository.close_expired_offers(utcnow())
            await self.session.commit()
        except (SQLAlchemyError, OrderRepositoryError) as e:
            await self.session.rollback()
            logger.error("Expired offer sweep failed", error=str(e))
            raise OrderProcessingError(f"Failed to close expired offers: {e}") from e

        if order_ids:
            logger.info(
                "Expired dealer offers closed",
                count=len(order_ids),
                order_ids=[str(order_id) for order_id in order_ids],
            )
        return len(order_ids)

    # Customer reads

    async def get_user_orders(
        self,
        user_id: uuid.UUID,
        status: Optional[OrderStatus] = None,
        payment_status: Optional[OrderPaymentStatus] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[dict[str, Any]]:
        orders = await self._read(
            self.repository.get_user_orders(
                user_id,
                status=status,
                payment_status=payment_status,
                limit=limit,
                offset=offset,
            )
        )
        return [self._format_order(order) for order in orders]

    async def get_order(self, order_id: uuid.UUID, user_id: uuid.UUID) -> dict[str, Any]:
        """
        Get a customer's order with items and status history.

        Raises:
            OrderNotFoundError: If the order does not belong to the customer
        """
        order = await self._read(self.repository.get_customer_order(order_id, user_id))
        if order is None:
            raise OrderNotFoundError("Order not found", order_id=str(order_id))
        return self._format_order(order, include_history=True)

    async def get_order_stats(self, user_id: uuid.UUID) -> dict[str, int]:
        return await self._read(self.repository.get_user_order_stats(user_id))

    async def get_status_counts(self, user_id: uuid.UUID) -> list[dict[str, Any]]:
        counts = await self._read(self.repository.get_status_counts(user_id))
        ordered = [
            {"status": status.value, "count": counts.get(status, 0)}
            for status in STATUS_COUNT_ORDER
        ]
        ordered.extend(
            {"status": status.value, "count": count}
            for status, count in counts.items()
            if status not in STATUS_COUNT_ORDER
        )
        return ordered

    # Dealer reads

    async def get_available_orders(self, dealer: User) -> dict[str, Any]:
        """
        Open orders ranked against the dealer's ward.

        Only orders with a nonzero ward score are returned, best match first
        and newest first within a score.
        """
        dealer_location = dealer.parsed_location
        if dealer_location.is_empty:
            return {
                "orders": [],
                "location_info": {
                    "agent_ward": None,
                    "total_available": 0,
                    "message": "Set your location to see orders in your ward",
                },
            }

        orders = await self._read(self.repository.get_open_orders(utcnow()))

        ranked = []
        for order in orders:
            order_location = order.parsed_location
            score = score_ward_match(order_location, dealer_location)
            if score:
                ranked.append((score, order, order_location))

        # Orders arrive newest first; the stable sort keeps that within a score.
        ranked.sort(key=lambda entry: -entry[0])

        results = []
        for score, order, order_location in ranked:
            data = self._format_order(order)
            data["location_match"] = {
                "score": score,
                "same_ward": score >= PARTIAL_MATCH_SCORE,
                "agent_ward": dealer_location.ward,
                "customer_ward": order_location.ward,
            }
            results.append(data)

        return {
            "orders": results,
            "location_info": {
                "agent_ward": dealer_location.ward,
                "total_available": len(results),
            },
        }

    async def get_dealer_orders(self, dealer_id: uuid.UUID) -> list[dict[str, Any]]:
        orders = await self._read(self.repository.get_dealer_orders(dealer_id))
        return [self._format_order(order) for order in orders]

    async def get_dealer_order_details(
        self,
        order_id: uuid.UUID,
        dealer_id: uuid.UUID,
    ) -> dict[str, Any]:
        """
        Order details for a dealer: unassigned orders or the dealer's own.

        Raises:
            OrderNotFoundError: If the order is missing or assigned elsewhere
        """
        order = await self._read(
            self.repository.get_order_visible_to_dealer(order_id, dealer_id)
        )
        if order is None:
            raise OrderNotFoundError("Order not found", order_id=str(order_id))
        return self._format_order(order, include_history=True)

    # Helpers

    async def _read(self, awaitable):
        try:
            return await awaitable
        except (SQLAlchemyError, OrderRepositoryError) as e:
            logger.error("Order query failed", error=str(e))
            raise OrderProcessingError(f"Failed to load orders: {e}") from e

    @staticmethod
    def _check_stock(product_name: str, available: int, requested: int) -> None:
        if available < requested:
            raise InsufficientStockError(
                f"Insufficient stock for {product_name}. "
                f"Available: {available}, Requested: {requested}",
                available=available,
                requested=requested,
            )

    @staticmethod
    def _format_order(order: Order, include_history: bool = False) -> dict[str, Any]:
        """
        Format order for response.

        Args:
            order: Order instance
            include_history: Whether to include status history entries

        Returns:
            Dictionary containing formatted order data
        """
        data = {
            "id": str(order.id),
            "user_id": str(order.user_id),
            "customer_name": order.customer.name if order.customer else None,
            "customer_phone": order.customer.phone if order.customer else None,
            "dealer_id": str(order.dealer_id) if order.dealer_id else None,
            "dealer_name": order.dealer.name if order.dealer else None,
            "delivery_location": order.delivery_location,
            "status": order.status.value,
            "payment_status": order.payment_status.value,
            "assignment_status": order.assignment_status.value,
            "available_to_agents": order.available_to_agents,
            "payment_method": order.payment_method.value,
            "special_instructions": order.special_instructions,
            "total_amount": float(order.total_amount),
            "assignment_expiry": (
                order.assignment_expiry.isoformat() if order.assignment_expiry else None
            ),
            "assigned_at": order.assigned_at.isoformat() if order.assigned_at else None,
            "delivered_at": order.delivered_at.isoformat() if order.delivered_at else None,
            "created_at": order.created_at.isoformat(),
            "updated_at": order.updated_at.isoformat(),
            "items": [
                {
                    "id": str(item.id),
                    "product_id": str(item.product_id) if item.product_id else None,
                    "product_name": item.product_name,
                    "unit_price": float(item.unit_price),
                    "quantity": item.quantity,
                    "line_total": float(item.line_total),
                }
                for item in order.items
            ],
        }

        if include_history:
            data["status_history"] = [
                {
                    "status": entry.status.value,
                    "changed_by": entry.changed_by,
                    "note": entry.note,
                    "changed_at": entry.changed_at.isoformat(),
                }
                for entry in order.status_history
            ]

        return data
