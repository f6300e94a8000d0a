"""
Payment Pydantic schemas for API request/response validation.
"""

from typing import Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class PaymentInitiateRequest(BaseModel):
    order_id: UUID = Field(..., description="Order to pay")
    payment_method_id: UUID = Field(..., description="Stored payment method")


class PaymentVerifyRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    payment_id: UUID = Field(..., description="Payment being verified")
    entered_code: str = Field(..., min_length=1, max_length=8, description="Challenge code")


class PaymentRefundRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=500)


class MpesaMethodRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    phone: str = Field(..., min_length=1, max_length=20, description="M-Pesa phone number")


class CardMethodRequest(BaseModel):
    """Card details. Only the brand and last four digits are kept."""

    model_config = ConfigDict(str_strip_whitespace=True)

    card_number: str = Field(..., min_length=1, max_length=23)
    expiry_month: int = Field(..., description="1-12")
    expiry_year: int = Field(..., description="Four-digit year")
    cvv: str = Field(..., min_length=1, max_length=4)
    cardholder_name: str = Field(..., min_length=1, max_length=255)


class PaymentInitiateResponse(BaseModel):
    success: bool = True
    message: str
    payment_id: str
    transaction_id: str
    simulation_code: str
    expires_in: int
    expires_at: str
    amount: float
    method: str


class PaymentVerifyResponse(BaseModel):
    success: bool = True
    message: str = "Payment completed successfully"
    payment_id: str
    transaction_id: str
    status: str
    order_id: str
    order_status: str
    payment_status: str
    amount: float
    completed_at: str


class PaymentResponse(BaseModel):
    id: str
    order_id: str
    method: str
    amount: float
    status: str
    transaction_id: str
    phone_number: Optional[str] = None
    card_last_four: Optional[str] = None
    verification_attempts: int
    completed_at: Optional[str] = None
    failure_reason: Optional[str] = None
    created_at: str


class PaymentStatusResponse(BaseModel):
    success: bool = True
    order_id: str
    status: str
    order_payment_status: str
    payment: Optional[PaymentResponse] = None


class PaymentHistoryResponse(BaseModel):
    success: bool = True
    payments: list[PaymentResponse]
    count: int


class PaymentRefundResponse(BaseModel):
    success: bool = True
    message: str = "Payment refunded successfully"
    payment_id: str
    status: str
    order_id: str
    payment_status: str


class PaymentMethodResponse(BaseModel):
    id: str
    type: str
    provider: str
    last_four: str
    phone_number: Optional[str] = None
    display_name: str
    is_default: bool
    created_at: str


class PaymentMethodListResponse(BaseModel):
    success: bool = True
    payment_methods: list[PaymentMethodResponse]


class PaymentMethodDetailResponse(BaseModel):
    success: bool = True
    message: Optional[str] = None
    payment_method: Optional[PaymentMethodResponse] = None
