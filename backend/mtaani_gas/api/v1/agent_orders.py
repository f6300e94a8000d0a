"""
Dealer order endpoints.

Dealers browse open orders ranked against their ward, claim one, and move
their claimed orders through delivery.
"""

from uuid import UUID

from fastapi import APIRouter, HTTPException, status

from mtaani_gas.api.deps import CurrentDealer, DatabaseSession
from mtaani_gas.core.logging import get_logger
from mtaani_gas.schemas.orders import (
    AvailableOrdersResponse,
    OrderClaimResponse,
    OrderDetailResponse,
    OrderListResponse,
    OrderStatusUpdateRequest,
    OrderStatusUpdateResponse,
)
from mtaani_gas.services.orders.service import (
    OrderAccessError,
    OrderConflictError,
    OrderNotAvailableError,
    OrderNotFoundError,
    OrderProcessingError,
    OrderService,
)
from mtaani_gas.services.orders.state_machine import StateTransitionError

logger = get_logger(__name__)

router = APIRouter(prefix="/agent-orders", tags=["agent-orders"])


@router.get(
    "/available",
    response_model=AvailableOrdersResponse,
    summary="Open orders near the dealer",
)
async def list_available_orders(
    current_user: CurrentDealer,
    db: DatabaseSession,
) -> AvailableOrdersResponse:
    """
    Open orders whose delivery location matches the dealer's ward.

    Exact ward matches come first, then partial matches; orders in other
    wards are not listed.
    """
    service = OrderService(db)

    try:
        result = await service.get_available_orders(current_user)
    except OrderProcessingError as e:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=str(e),
        ) from e

    return AvailableOrdersResponse(
        orders=result["orders"],
        count=len(result["orders"]),
        location_info=result["location_info"],
    )


@router.get(
    "/my-orders",
    response_model=OrderListResponse,
    summary="Orders assigned to the dealer",
)
async def list_my_orders(
    current_user: CurrentDealer,
    db: DatabaseSession,
) -> OrderListResponse:
    service = OrderService(db)

    try:
        orders = await service.get_dealer_orders(current_user.id)
    except OrderProcessingError as e:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=str(e),
        ) from e

    return OrderListResponse(orders=orders, count=len(orders))


@router.get(
    "/{order_id}",
    response_model=OrderDetailResponse,
    summary="Order details for a dealer",
)
async def get_agent_order(
    order_id: UUID,
    current_user: CurrentDealer,
    db: DatabaseSession,
) -> OrderDetailResponse:
    service = OrderService(db)

    try:
        order = await service.get_dealer_order_details(order_id, current_user.id)
    except OrderNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e)) from e
    except OrderProcessingError as e:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=str(e),
        ) from e

    return OrderDetailResponse(order=order)


@router.post(
    "/{order_id}/accept",
    response_model=OrderClaimResponse,
    summary="Claim an open order",
)
async def accept_order(
    order_id: UUID,
    current_user: CurrentDealer,
    db: DatabaseSession,
) -> OrderClaimResponse:
    """
    Claim an order for the calling dealer.

    Raises:
        HTTPException: 404 if the order is closed, expired or already taken
    """
    service = OrderService(db)

    try:
        result = await service.claim_order(order_id, current_user.id)
    except OrderNotAvailableError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e)) from e
    except OrderProcessingError as e:
        logger.error(
            "Order claim failed",
            order_id=str(order_id),
            dealer_id=str(current_user.id),
            error=str(e),
        )
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=str(e),
        ) from e

    return OrderClaimResponse(**result)


@router.patch(
    "/{order_id}/status",
    response_model=OrderStatusUpdateResponse,
    summary="Advance a claimed order",
)
async def update_order_status(
    order_id: UUID,
    request: OrderStatusUpdateRequest,
    current_user: CurrentDealer,
    db: DatabaseSession,
) -> OrderStatusUpdateResponse:
    """
    Move a claimed order to its next status.

    Raises:
        HTTPException: 404 if the order is not the dealer's, 400 for an
            illegal transition, 409 if the status changed concurrently
    """
    service = OrderService(db)

    try:
        result = await service.advance_status(order_id, current_user.id, request.status)
    except OrderAccessError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e)) from e
    except OrderConflictError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e)) from e
    except StateTransitionError as e:
        logger.warning(
            "Illegal status transition",
            order_id=str(order_id),
            current_state=e.current_state.value,
            target_state=e.target_state.value,
        )
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e)) from e
    except OrderProcessingError as e:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=str(e),
        ) from e

    return OrderStatusUpdateResponse(
        message=f"Order status updated to {request.status.display_name}",
        **result,
    )
