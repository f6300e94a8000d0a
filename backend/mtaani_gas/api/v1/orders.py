"""
Customer order endpoints.

Customers place orders from their cart, follow them through the delivery
lifecycle and cancel them while no dealer is on the way. Every route is
scoped to the authenticated customer's own orders.
"""

from typing import Optional
from uuid import UUID

from fastapi import APIRouter, HTTPException, Query, status

from mtaani_gas.api.deps import CurrentClient, DatabaseSession
from mtaani_gas.core.logging import get_logger
from mtaani_gas.schemas.orders import (
    OrderCancelRequest,
    OrderCancelResponse,
    OrderCreateRequest,
    OrderCreateResponse,
    OrderDetailResponse,
    OrderListResponse,
    OrderStatsResponse,
    StatusCountsResponse,
)
from mtaani_gas.services.orders.enums import OrderPaymentStatus, OrderStatus
from mtaani_gas.services.orders.service import (
    EmptyCartError,
    InsufficientStockError,
    OrderCancellationError,
    OrderNotFoundError,
    OrderProcessingError,
    OrderService,
)

logger = get_logger(__name__)

router = APIRouter(prefix="/orders", tags=["orders"])


@router.post(
    "",
    response_model=OrderCreateResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Place order from cart",
)
async def create_order(
    request: OrderCreateRequest,
    current_user: CurrentClient,
    db: DatabaseSession,
) -> OrderCreateResponse:
    """
    Turn the customer's cart into an order and offer it to matching dealers.

    Raises:
        HTTPException: 400 if the cart is empty or stock is short, 500 if the
            order cannot be stored
    """
    service = OrderService(db)

    try:
        result = await service.create_order_from_cart(
            user_id=current_user.id,
            delivery_location=request.delivery_location,
            payment_method=request.payment_method,
            special_instructions=request.special_instructions,
        )
    except (EmptyCartError, InsufficientStockError) as e:
        logger.warning(
            "Order placement rejected",
            user_id=str(current_user.id),
            error=str(e),
            context=e.context,
        )
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e)) from e
    except OrderProcessingError as e:
        logger.error(
            "Order placement failed",
            user_id=str(current_user.id),
            error=str(e),
        )
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=str(e),
        ) from e

    return OrderCreateResponse(**result)


@router.get(
    "",
    response_model=OrderListResponse,
    summary="List my orders",
)
async def list_orders(
    current_user: CurrentClient,
    db: DatabaseSession,
    status_filter: Optional[OrderStatus] = Query(None, alias="status"),
    payment_status: Optional[OrderPaymentStatus] = Query(None),
    limit: int = Query(50, ge=1, le=100),
    offset: int = Query(0, ge=0),
) -> OrderListResponse:
    service = OrderService(db)

    try:
        orders = await service.get_user_orders(
            current_user.id,
            status=status_filter,
            payment_status=payment_status,
            limit=limit,
            offset=offset,
        )
    except OrderProcessingError as e:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=str(e),
        ) from e

    return OrderListResponse(orders=orders, count=len(orders))


@router.get(
    "/stats",
    response_model=OrderStatsResponse,
    summary="Order counts for the dashboard",
)
async def get_order_stats(
    current_user: CurrentClient,
    db: DatabaseSession,
) -> OrderStatsResponse:
    service = OrderService(db)

    try:
        stats = await service.get_order_stats(current_user.id)
    except OrderProcessingError as e:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=str(e),
        ) from e

    return OrderStatsResponse(stats=stats)


@router.get(
    "/status/counts",
    response_model=StatusCountsResponse,
    summary="Order counts per status",
)
async def get_status_counts(
    current_user: CurrentClient,
    db: DatabaseSession,
) -> StatusCountsResponse:
    service = OrderService(db)

    try:
        counts = await service.get_status_counts(current_user.id)
    except OrderProcessingError as e:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=str(e),
        ) from e

    return StatusCountsResponse(counts=counts)


@router.get(
    "/{order_id}",
    response_model=OrderDetailResponse,
    summary="Get order with status history",
)
async def get_order(
    order_id: UUID,
    current_user: CurrentClient,
    db: DatabaseSession,
) -> OrderDetailResponse:
    service = OrderService(db)

    try:
        order = await service.get_order(order_id, current_user.id)
    except OrderNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e)) from e
    except OrderProcessingError as e:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=str(e),
        ) from e

    return OrderDetailResponse(order=order)


@router.patch(
    "/{order_id}/cancel",
    response_model=OrderCancelResponse,
    summary="Cancel order",
)
async def cancel_order(
    order_id: UUID,
    current_user: CurrentClient,
    db: DatabaseSession,
    request: Optional[OrderCancelRequest] = None,
) -> OrderCancelResponse:
    """
    Cancel an order that is still pending or confirmed.

    Raises:
        HTTPException: 404 if the order is not the customer's, 400 if it has
            moved past confirmed
    """
    service = OrderService(db)

    try:
        result = await service.cancel_order(
            order_id,
            current_user.id,
            reason=request.reason if request else None,
        )
    except OrderNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e)) from e
    except OrderCancellationError as e:
        logger.warning(
            "Order cancellation rejected",
            order_id=str(order_id),
            user_id=str(current_user.id),
            error=str(e),
        )
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e)) from e
    except OrderProcessingError as e:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=str(e),
        ) from e

    return OrderCancelResponse(**result)
