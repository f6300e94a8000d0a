"""
Order Pydantic schemas for API request/response validation.

Covers customer order placement and reads and the dealer claim and status
endpoints. Every response carries ``success: true``.
"""

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from mtaani_gas.services.orders.enums import OrderPaymentMethod, OrderStatus


class OrderCreateRequest(BaseModel):
    """Place an order from the caller's cart."""

    model_config = ConfigDict(str_strip_whitespace=True)

    delivery_location: str = Field(
        ...,
        min_length=1,
        max_length=500,
        description="Delivery address, ward first (e.g. 'Kasarani, Nairobi')",
    )
    payment_method: OrderPaymentMethod = Field(
        default=OrderPaymentMethod.CASH,
        description="Payment rail",
    )
    special_instructions: Optional[str] = Field(
        None,
        max_length=1000,
        description="Delivery notes",
    )

    @field_validator("payment_method", mode="before")
    @classmethod
    def normalize_payment_method(cls, v: Any) -> Any:
        if isinstance(v, str):
            return v.strip().lower()
        return v


class OrderStatusUpdateRequest(BaseModel):
    """Dealer status change."""

    status: OrderStatus = Field(..., description="Target status")

    @field_validator("status", mode="before")
    @classmethod
    def normalize_status(cls, v: Any) -> Any:
        if isinstance(v, str):
            return v.strip().lower()
        return v


class OrderCancelRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=500)


class OrderItemResponse(BaseModel):
    id: str
    product_id: Optional[str] = None
    product_name: str
    unit_price: float
    quantity: int
    line_total: float


class StatusHistoryResponse(BaseModel):
    status: str
    changed_by: str
    note: Optional[str] = None
    changed_at: str


class LocationMatchResponse(BaseModel):
    score: int
    same_ward: bool
    agent_ward: str
    customer_ward: Optional[str] = None


class OrderResponse(BaseModel):
    """Order as returned to customers and dealers."""

    id: str
    user_id: str
    customer_name: Optional[str] = None
    customer_phone: Optional[str] = None
    dealer_id: Optional[str] = None
    dealer_name: Optional[str] = None
    delivery_location: str
    status: str
    payment_status: str
    assignment_status: str
    available_to_agents: bool
    payment_method: str
    special_instructions: Optional[str] = None
    total_amount: float
    assignment_expiry: Optional[str] = None
    assigned_at: Optional[str] = None
    delivered_at: Optional[str] = None
    created_at: str
    updated_at: str
    items: list[OrderItemResponse] = Field(default_factory=list)
    status_history: Optional[list[StatusHistoryResponse]] = None
    location_match: Optional[LocationMatchResponse] = None


class DealerSummary(BaseModel):
    id: str
    name: str


class OrderCreateResponse(BaseModel):
    success: bool = True
    message: str = "Order placed successfully"
    order_id: str
    total_amount: float
    status: str
    payment_status: str
    dealers_available: int
    customer_ward: Optional[str] = None
    available_dealers: list[DealerSummary]


class OrderListResponse(BaseModel):
    success: bool = True
    orders: list[OrderResponse]
    count: int


class OrderDetailResponse(BaseModel):
    success: bool = True
    order: OrderResponse


class OrderStats(BaseModel):
    total_orders: int
    pending_orders: int
    confirmed_orders: int
    on_the_way_orders: int
    delivered_orders: int


class OrderStatsResponse(BaseModel):
    success: bool = True
    stats: OrderStats


class StatusCount(BaseModel):
    status: str
    count: int


class StatusCountsResponse(BaseModel):
    success: bool = True
    counts: list[StatusCount]


class OrderCancelResponse(BaseModel):
    success: bool = True
    message: str = "Order cancelled successfully"
    order_id: str
    status: str


class OrderClaimResponse(BaseModel):
    success: bool = True
    message: str = "Order accepted successfully"
    order_id: str
    status: str
    dealer_id: str
    assigned_at: str


class OrderStatusUpdateResponse(BaseModel):
    success: bool = True
    message: str
    order_id: str
    previous_status: str
    status: str
    delivered_at: Optional[str] = None


class AvailableOrdersResponse(BaseModel):
    success: bool = True
    orders: list[OrderResponse]
    count: int
    location_info: dict[str, Any]
