"""
Payment API endpoints.

Stored payment methods plus the simulated payment flow: initiate issues a
short challenge code, verify-code settles the payment when the customer
types it back in. Code verification is rate limited per client address.
"""

from typing import Optional
from uuid import UUID

from fastapi import APIRouter, HTTPException, Query, Request, status

from mtaani_gas.api.deps import CurrentClient, DatabaseSession
from mtaani_gas.core.config import get_settings
from mtaani_gas.core.logging import get_logger
from mtaani_gas.core.rate_limit import limiter
from mtaani_gas.schemas.payments import (
    CardMethodRequest,
    MpesaMethodRequest,
    PaymentHistoryResponse,
    PaymentInitiateRequest,
    PaymentInitiateResponse,
    PaymentMethodDetailResponse,
    PaymentMethodListResponse,
    PaymentRefundRequest,
    PaymentRefundResponse,
    PaymentStatusResponse,
    PaymentVerifyRequest,
    PaymentVerifyResponse,
)
from mtaani_gas.services.payments.methods import PaymentMethodService
from mtaani_gas.services.payments.service import (
    InvalidPaymentCodeError,
    PaymentAttemptsExceededError,
    PaymentCodeExpiredError,
    PaymentMethodError,
    PaymentNotFoundError,
    PaymentProcessingError,
    PaymentService,
    PaymentStateError,
    PaymentValidationError,
)

logger = get_logger(__name__)

router = APIRouter(prefix="/payments", tags=["payments"])


def _processing_failed(event: str, error: PaymentProcessingError) -> HTTPException:
    logger.error(event, error=str(error), context=error.context)
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(error))


# Payment methods


@router.get(
    "/methods",
    response_model=PaymentMethodListResponse,
    summary="List stored payment methods",
)
async def list_payment_methods(
    current_user: CurrentClient,
    db: DatabaseSession,
) -> PaymentMethodListResponse:
    methods = await PaymentMethodService(db).list_methods(current_user.id)
    return PaymentMethodListResponse(payment_methods=methods)


@router.get(
    "/methods/default",
    response_model=PaymentMethodDetailResponse,
    summary="Get default payment method",
)
async def get_default_payment_method(
    current_user: CurrentClient,
    db: DatabaseSession,
) -> PaymentMethodDetailResponse:
    method = await PaymentMethodService(db).get_default_method(current_user.id)
    if method is None:
        return PaymentMethodDetailResponse(message="No default payment method")
    return PaymentMethodDetailResponse(payment_method=method)


@router.post(
    "/methods/mpesa",
    response_model=PaymentMethodDetailResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Add M-Pesa number",
)
async def add_mpesa_method(
    request: MpesaMethodRequest,
    current_user: CurrentClient,
    db: DatabaseSession,
) -> PaymentMethodDetailResponse:
    service = PaymentMethodService(db)

    try:
        method = await service.add_mpesa(current_user.id, request.phone)
    except PaymentValidationError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e)) from e
    except PaymentProcessingError as e:
        raise _processing_failed("Failed to add payment method", e) from e

    return PaymentMethodDetailResponse(
        message="M-Pesa payment method added",
        payment_method=method,
    )


@router.post(
    "/methods/card",
    response_model=PaymentMethodDetailResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Add card",
)
async def add_card_method(
    request: CardMethodRequest,
    current_user: CurrentClient,
    db: DatabaseSession,
) -> PaymentMethodDetailResponse:
    service = PaymentMethodService(db)

    try:
        method = await service.add_card(
            current_user.id,
            card_number=request.card_number,
            expiry_month=request.expiry_month,
            expiry_year=request.expiry_year,
            cvv=request.cvv,
            cardholder_name=request.cardholder_name,
        )
    except PaymentValidationError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e)) from e
    except PaymentProcessingError as e:
        raise _processing_failed("Failed to add payment method", e) from e

    return PaymentMethodDetailResponse(message="Card added", payment_method=method)


@router.put(
    "/methods/{method_id}/default",
    response_model=PaymentMethodDetailResponse,
    summary="Make a payment method the default",
)
async def set_default_payment_method(
    method_id: UUID,
    current_user: CurrentClient,
    db: DatabaseSession,
) -> PaymentMethodDetailResponse:
    service = PaymentMethodService(db)

    try:
        method = await service.set_default(method_id, current_user.id)
    except PaymentNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e)) from e
    except PaymentProcessingError as e:
        raise _processing_failed("Failed to update payment method", e) from e

    return PaymentMethodDetailResponse(
        message="Default payment method updated",
        payment_method=method,
    )


@router.delete(
    "/methods/{method_id}",
    response_model=PaymentMethodDetailResponse,
    summary="Remove a payment method",
)
async def delete_payment_method(
    method_id: UUID,
    current_user: CurrentClient,
    db: DatabaseSession,
) -> PaymentMethodDetailResponse:
    service = PaymentMethodService(db)

    try:
        await service.delete_method(method_id, current_user.id)
    except PaymentNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e)) from e
    except PaymentMethodError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e)) from e
    except PaymentProcessingError as e:
        raise _processing_failed("Failed to remove payment method", e) from e

    return PaymentMethodDetailResponse(message="Payment method removed")


# Simulated payments


@router.post(
    "/initiate",
    response_model=PaymentInitiateResponse,
    summary="Start a simulated payment",
)
async def initiate_payment(
    request: PaymentInitiateRequest,
    current_user: CurrentClient,
    db: DatabaseSession,
) -> PaymentInitiateResponse:
    """
    Issue a challenge code for an order.

    Raises:
        HTTPException: 404 if the order or method is unknown, 400 if the order
            is already paid or cancelled
    """
    service = PaymentService(db)

    try:
        result = await service.initiate_payment(
            order_id=request.order_id,
            payment_method_id=request.payment_method_id,
            user_id=current_user.id,
        )
    except PaymentNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e)) from e
    except PaymentValidationError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e)) from e
    except PaymentProcessingError as e:
        raise _processing_failed("Failed to initiate payment", e) from e

    return PaymentInitiateResponse(**result)


@router.post(
    "/verify-code",
    response_model=PaymentVerifyResponse,
    summary="Verify a payment code",
)
@limiter.limit(get_settings().rate_limit_verify_code)
async def verify_payment_code(
    request: Request,
    payload: PaymentVerifyRequest,
    current_user: CurrentClient,
    db: DatabaseSession,
) -> PaymentVerifyResponse:
    """
    Check the code the customer typed and settle the payment.

    A wrong code answers 400 with ``attempts_remaining``; once the attempts
    are used up the payment fails and a new one has to be initiated.
    """
    service = PaymentService(db)

    try:
        result = await service.verify_code(
            payment_id=payload.payment_id,
            entered_code=payload.entered_code,
            user_id=current_user.id,
        )
    except PaymentNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e)) from e
    except InvalidPaymentCodeError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"message": str(e), "attempts_remaining": e.attempts_remaining},
        ) from e
    except PaymentAttemptsExceededError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"message": str(e), "attempts_remaining": 0},
        ) from e
    except (
        PaymentCodeExpiredError,
        PaymentStateError,
        PaymentValidationError,
    ) as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e)) from e
    except PaymentProcessingError as e:
        raise _processing_failed("Failed to verify payment", e) from e

    return PaymentVerifyResponse(**result)


@router.get(
    "/status/{order_id}",
    response_model=PaymentStatusResponse,
    summary="Latest payment for an order",
)
async def get_payment_status(
    order_id: UUID,
    current_user: CurrentClient,
    db: DatabaseSession,
) -> PaymentStatusResponse:
    service = PaymentService(db)

    try:
        result = await service.get_payment_status(order_id, current_user.id)
    except PaymentNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e)) from e
    except PaymentProcessingError as e:
        raise _processing_failed("Payment status lookup failed", e) from e

    return PaymentStatusResponse(**result)


@router.get(
    "/history",
    response_model=PaymentHistoryResponse,
    summary="Payment history",
)
async def get_payment_history(
    current_user: CurrentClient,
    db: DatabaseSession,
    limit: int = Query(50, ge=1, le=100),
    offset: int = Query(0, ge=0),
) -> PaymentHistoryResponse:
    try:
        payments = await PaymentService(db).get_payment_history(
            current_user.id, limit=limit, offset=offset
        )
    except PaymentProcessingError as e:
        raise _processing_failed("Payment history lookup failed", e) from e

    return PaymentHistoryResponse(payments=payments, count=len(payments))


@router.post(
    "/refund/{payment_id}",
    response_model=PaymentRefundResponse,
    summary="Refund a completed payment",
)
async def refund_payment(
    payment_id: UUID,
    current_user: CurrentClient,
    db: DatabaseSession,
    request: Optional[PaymentRefundRequest] = None,
) -> PaymentRefundResponse:
    service = PaymentService(db)

    try:
        result = await service.refund_payment(
            payment_id,
            current_user.id,
            reason=request.reason if request else None,
        )
    except PaymentNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e)) from e
    except PaymentStateError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e)) from e
    except PaymentProcessingError as e:
        raise _processing_failed("Failed to refund payment", e) from e

    logger.info("Refund processed", payment_id=str(payment_id), user_id=str(current_user.id))
    return PaymentRefundResponse(**result)
