"""
Shopping cart endpoints.
"""

from uuid import UUID

from fastapi import APIRouter, HTTPException, status

from mtaani_gas.api.deps import CurrentClient, DatabaseSession
from mtaani_gas.core.logging import get_logger
from mtaani_gas.schemas.cart import (
    CartAddRequest,
    CartItemMutationResponse,
    CartResponse,
    CartUpdateRequest,
)
from mtaani_gas.services.cart.service import (
    CartItemNotFoundError,
    CartProcessingError,
    CartService,
    CartValidationError,
)

logger = get_logger(__name__)

router = APIRouter(prefix="/cart", tags=["cart"])


@router.get("", response_model=CartResponse, summary="Get cart")
async def get_cart(current_user: CurrentClient, db: DatabaseSession) -> CartResponse:
    cart = await CartService(db).get_cart(current_user.id)
    return CartResponse(**cart)


@router.post(
    "",
    response_model=CartItemMutationResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Add product to cart",
)
async def add_to_cart(
    request: CartAddRequest,
    current_user: CurrentClient,
    db: DatabaseSession,
) -> CartItemMutationResponse:
    """Add units of a product; an existing line for the product is topped up."""
    service = CartService(db)

    try:
        item = await service.add_item(current_user.id, request.product_id, request.quantity)
    except CartValidationError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e)) from e
    except CartItemNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e)) from e
    except CartProcessingError as e:
        logger.error("Add to cart failed", user_id=str(current_user.id), error=str(e))
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=str(e),
        ) from e

    return CartItemMutationResponse(message="Item added to cart", item=item)


@router.patch(
    "/{item_id}",
    response_model=CartItemMutationResponse,
    summary="Change line quantity",
)
async def update_cart_item(
    item_id: UUID,
    request: CartUpdateRequest,
    current_user: CurrentClient,
    db: DatabaseSession,
) -> CartItemMutationResponse:
    service = CartService(db)

    try:
        item = await service.update_item(current_user.id, item_id, request.quantity)
    except CartItemNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e)) from e
    except CartProcessingError as e:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=str(e),
        ) from e

    if item.get("removed"):
        return CartItemMutationResponse(message="Item removed from cart")
    return CartItemMutationResponse(message="Cart item updated", item=item)


@router.delete(
    "/{item_id}",
    response_model=CartItemMutationResponse,
    summary="Remove line",
)
async def remove_cart_item(
    item_id: UUID,
    current_user: CurrentClient,
    db: DatabaseSession,
) -> CartItemMutationResponse:
    service = CartService(db)

    try:
        await service.remove_item(current_user.id, item_id)
    except CartItemNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e)) from e
    except CartProcessingError as e:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=str(e),
        ) from e

    return CartItemMutationResponse(message="Item removed from cart")


@router.delete("", response_model=CartItemMutationResponse, summary="Empty cart")
async def clear_cart(current_user: CurrentClient, db: DatabaseSession) -> CartItemMutationResponse:
    try:
        removed = await CartService(db).clear_cart(current_user.id)
    except CartProcessingError as e:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=str(e),
        ) from e

    return CartItemMutationResponse(message=f"Cart cleared ({removed} items removed)")
