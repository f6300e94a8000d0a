"""
Order data access repository.

Queries and conditional updates for orders, their line items, status history
and dealer candidates, plus the catalog stock and cart writes that order
placement and cancellation perform. Stock and claim writes are conditional
UPDATEs whose affected row count tells the caller whether the precondition
still held when the write landed. Nothing here commits; the service owns the
transaction.
"""

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Any, Iterable, Optional, Sequence

from sqlalchemy import case, delete, func, or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from mtaani_gas.core.logging import get_logger
from mtaani_gas.database.base import utcnow
from mtaani_gas.database.models.cart import CartItem
from mtaani_gas.database.models.order import (
    Order,
    OrderDealerCandidate,
    OrderItem,
)
from mtaani_gas.database.models.product import Product
from mtaani_gas.database.models.user import User, UserRole
from mtaani_gas.services.dealers.matcher import DealerMatch
from mtaani_gas.services.orders.enums import (
    CUSTOMER_CANCELLABLE_STATUSES,
    DEALER_ORDER_PRIORITY,
    AssignmentStatus,
    OrderPaymentMethod,
    OrderPaymentStatus,
    OrderStatus,
)

logger = get_logger(__name__)


class OrderRepositoryError(Exception):
    """Base exception for order repository errors."""

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.context = context


class OrderRepository:
    """
    Repository for order data access operations.

    Provides async reads with eager-loaded items and history, and the
    conditional writes the lifecycle relies on.
    """

    def __init__(self, session: AsyncSession):
        """
        Initialize order repository.

        Args:
            session: Async database session
        """
        self.session = session

    # Cart and catalog

    async def get_cart_lines(self, user_id: uuid.UUID) -> Sequence[CartItem]:
        """Cart lines for a user with their products loaded."""
        result = await self.session.execute(
            select(CartItem)
            .where(CartItem.user_id == user_id)
            .order_by(CartItem.created_at)
            .execution_options(populate_existing=True)
        )
        return result.scalars().all()

    async def decrement_stock(self, product_id: uuid.UUID, quantity: int) -> bool:
        """
        Take units out of stock if enough remain.

        Returns:
            True if the decrement was applied
        """
        result = await self.session.execute(
            update(Product)
            .where(Product.id == product_id, Product.stock >= quantity)
            .values(stock=Product.stock - quantity, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def restore_stock(self, items: Iterable[OrderItem]) -> None:
        """Return the units of each order line to stock."""
        for item in items:
            if item.product_id is None:
                continue
            await self.session.execute(
                update(Product)
                .where(Product.id == item.product_id)
                .values(stock=Product.stock + item.quantity, updated_at=utcnow())
                .execution_options(synchronize_session=False)
            )

    async def clear_cart(self, user_id: uuid.UUID) -> int:
        result = await self.session.execute(
            delete(CartItem)
            .where(CartItem.user_id == user_id)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    # Order creation

    async def insert_order(
        self,
        user_id: uuid.UUID,
        delivery_location: str,
        payment_method: OrderPaymentMethod,
        total_amount: Decimal,
        lines: Sequence[tuple[Product, int]],
        special_instructions: Optional[str] = None,
    ) -> Order:
        """
        Insert an order row in its initial state with its line snapshots.

        Args:
            user_id: Customer placing the order
            delivery_location: Free-text delivery location
            payment_method: Chosen payment rail
            total_amount: Precomputed order total
            lines: (product, quantity) pairs to snapshot
            special_instructions: Optional delivery notes

        Returns:
            Flushed order with its id assigned
        """
        order = Order(
            user_id=user_id,
            delivery_location=delivery_location,
            payment_method=payment_method,
            total_amount=total_amount,
            special_instructions=special_instructions,
            status=OrderStatus.PENDING,
            payment_status=OrderPaymentStatus.PENDING,
            assignment_status=AssignmentStatus.UNASSIGNED,
            available_to_agents=False,
            items=[
                OrderItem(
                    product_id=product.id,
                    product_name=product.name,
                    unit_price=product.price,
                    quantity=quantity,
                )
                for product, quantity in lines
            ],
            status_history=[],
        )
        self.session.add(order)
        await self.session.flush()

        logger.debug(
            "Order row inserted",
            order_id=str(order.id),
            user_id=str(user_id),
            item_count=len(order.items),
        )
        return order

    async def get_active_dealers(self) -> Sequence[User]:
        result = await self.session.execute(
            select(User).where(
                User.role == UserRole.DEALER,
                User.is_active.is_(True),
            )
        )
        return result.scalars().all()

    def add_candidates(
        self,
        order_id: uuid.UUID,
        matches: Iterable[DealerMatch],
    ) -> list[OrderDealerCandidate]:
        candidates = [
            OrderDealerCandidate(
                order_id=order_id,
                dealer_id=match.dealer_id,
                score=match.score,
                status="available",
            )
            for match in matches
        ]
        self.session.add_all(candidates)
        return candidates

    def open_for_dealers(self, order: Order, expiry: datetime) -> None:
        """Open the claim window on a freshly created order."""
        order.available_to_agents = True
        order.assignment_status = AssignmentStatus.AVAILABLE
        order.assignment_expiry = expiry

    async def delete_candidates(self, order_id: uuid.UUID) -> int:
        result = await self.session.execute(
            delete(OrderDealerCandidate)
            .where(OrderDealerCandidate.order_id == order_id)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    # Conditional lifecycle writes

    async def claim(
        self,
        order_id: uuid.UUID,
        dealer_id: uuid.UUID,
        now: datetime,
    ) -> bool:
        """
        Assign the order to a dealer if it is still open.

        The predicate re-checks every claim precondition inside the UPDATE, so
        of several concurrent claimants exactly one sees an affected row.

        Returns:
            True if this call won the claim
        """
        result = await self.session.execute(
            update(Order)
            .where(
                Order.id == order_id,
                Order.status == OrderStatus.PENDING,
                Order.dealer_id.is_(None),
                Order.available_to_agents.is_(True),
                or_(
                    Order.assignment_expiry.is_(None),
                    Order.assignment_expiry > now,
                ),
            )
            .values(
                dealer_id=dealer_id,
                status=OrderStatus.CONFIRMED,
                assignment_status=AssignmentStatus.ASSIGNED,
                assigned_at=now,
                available_to_agents=False,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def cancel_for_customer(self, order_id: uuid.UUID, user_id: uuid.UUID) -> bool:
        """
        Cancel an order if it is still customer-cancellable.

        Returns:
            True if the cancellation was applied
        """
        result = await self.session.execute(
            update(Order)
            .where(
                Order.id == order_id,
                Order.user_id == user_id,
                Order.status.in_(CUSTOMER_CANCELLABLE_STATUSES),
            )
            .values(
                status=OrderStatus.CANCELLED,
                available_to_agents=False,
                updated_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    # Reads

    async def get_order_by_id(
        self,
        order_id: uuid.UUID,
        refresh: bool = False,
    ) -> Optional[Order]:
        """
        Get order by ID with items and history.

        Args:
            order_id: Order identifier
            refresh: Overwrite any copy already in the session

        Returns:
            Order if found, None otherwise

        Raises:
            OrderRepositoryError: If query fails
        """
        try:
            stmt = select(Order).where(Order.id == order_id)
            if refresh:
                stmt = stmt.execution_options(populate_existing=True)
            result = await self.session.execute(stmt)
            return result.scalar_one_or_none()
        except SQLAlchemyError as e:
            logger.error("Failed to fetch order", order_id=str(order_id), error=str(e))
            raise OrderRepositoryError(
                "Failed to fetch order",
                order_id=str(order_id),
                error=str(e),
            ) from e

    async def get_customer_order(
        self,
        order_id: uuid.UUID,
        user_id: uuid.UUID,
    ) -> Optional[Order]:
        result = await self.session.execute(
            select(Order)
            .where(Order.id == order_id, Order.user_id == user_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get_dealer_order(
        self,
        order_id: uuid.UUID,
        dealer_id: uuid.UUID,
    ) -> Optional[Order]:
        result = await self.session.execute(
            select(Order)
            .where(Order.id == order_id, Order.dealer_id == dealer_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get_order_visible_to_dealer(
        self,
        order_id: uuid.UUID,
        dealer_id: uuid.UUID,
    ) -> Optional[Order]:
        """Order if unassigned or assigned to this dealer."""
        result = await self.session.execute(
            select(Order).where(
                Order.id == order_id,
                or_(Order.dealer_id.is_(None), Order.dealer_id == dealer_id),
            )
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get_user_orders(
        self,
        user_id: uuid.UUID,
        status: Optional[OrderStatus] = None,
        payment_status: Optional[OrderPaymentStatus] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> Sequence[Order]:
        """
        Get a customer's orders, newest first.

        Args:
            user_id: Customer identifier
            status: Optional lifecycle filter
            payment_status: Optional payment filter
            limit: Maximum number of orders
            offset: Number of orders to skip

        Returns:
            Matching orders
        """
        stmt = select(Order).where(Order.user_id == user_id)
        if status is not None:
            stmt = stmt.where(Order.status == status)
        if payment_status is not None:
            stmt = stmt.where(Order.payment_status == payment_status)

        stmt = stmt.order_by(Order.created_at.desc()).limit(limit).offset(offset)
        stmt = stmt.execution_options(populate_existing=True)
        result = await self.session.execute(stmt)
        return result.scalars().all()

    async def get_user_order_stats(self, user_id: uuid.UUID) -> dict[str, int]:
        def count_status(status: OrderStatus):
            return func.coalesce(
                func.sum(case((Order.status == status, 1), else_=0)), 0
            )

        result = await self.session.execute(
            select(
                func.count(Order.id).label("total_orders"),
                count_status(OrderStatus.PENDING).label("pending_orders"),
                count_status(OrderStatus.CONFIRMED).label("confirmed_orders"),
                count_status(OrderStatus.ON_THE_WAY).label("on_the_way_orders"),
                count_status(OrderStatus.DELIVERED).label("delivered_orders"),
            ).where(Order.user_id == user_id)
        )
        row = result.one()
        return {key: int(value or 0) for key, value in row._mapping.items()}

    async def get_status_counts(self, user_id: uuid.UUID) -> dict[OrderStatus, int]:
        result = await self.session.execute(
            select(Order.status, func.count(Order.id))
            .where(Order.user_id == user_id)
            .group_by(Order.status)
        )
        return {status: int(count) for status, count in result.all()}

    async def get_open_orders(self, now: datetime) -> Sequence[Order]:
        """Orders a dealer could still claim, newest first."""
        result = await self.session.execute(
            select(Order)
            .where(
                Order.status == OrderStatus.PENDING,
                Order.dealer_id.is_(None),
                Order.available_to_agents.is_(True),
                Order.assignment_status == AssignmentStatus.AVAILABLE,
                or_(
                    Order.assignment_expiry.is_(None),
                    Order.assignment_expiry > now,
                ),
            )
            .order_by(Order.created_at.desc())
            .execution_options(populate_existing=True)
        )
        return result.scalars().all()

    async def get_dealer_orders(
        self,
        dealer_id: uuid.UUID,
        limit: int = 100,
    ) -> Sequence[Order]:
        """Orders assigned to a dealer, active work first, then newest first."""
        priority = case(
            *[(Order.status == status, rank) for status, rank in DEALER_ORDER_PRIORITY.items()],
            else_=len(DEALER_ORDER_PRIORITY) + 1,
        )
        result = await self.session.execute(
            select(Order)
            .where(Order.dealer_id == dealer_id)
            .order_by(priority, Order.created_at.desc())
            .limit(limit)
            .execution_options(populate_existing=True)
        )
        return result.scalars().all()

    async def close_expired_offers(self, now: datetime) -> list[uuid.UUID]:
        """
        Withdraw open orders whose claim window has passed.

        The orders stay pending so the customer can still cancel them, but they
        no longer appear in any dealer's available list and their candidate
        rows are removed.

        Returns:
            IDs of the orders that were closed
        """
        result = await self.session.execute(
            select(Order.id).where(
                Order.status == OrderStatus.PENDING,
                Order.dealer_id.is_(None),
                Order.available_to_agents.is_(True),
                Order.assignment_expiry.is_not(None),
                Order.assignment_expiry <= now,
            )
        )
        order_ids = list(result.scalars().all())
        if not order_ids:
            return []

        await self.session.execute(
            update(Order)
            .where(
                Order.id.in_(order_ids),
                Order.dealer_id.is_(None),
                Order.available_to_agents.is_(True),
            )
            .values(available_to_agents=False, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        await self.session.execute(
            delete(OrderDealerCandidate)
            .where(OrderDealerCandidate.order_id.in_(order_ids))
            .execution_options(synchronize_session=False)
        )
        return order_ids
