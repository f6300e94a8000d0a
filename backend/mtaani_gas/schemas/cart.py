"""
Cart Pydantic schemas for API request/response validation.
"""

from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field


class CartAddRequest(BaseModel):
    product_id: UUID = Field(..., description="Catalog product")
    quantity: int = Field(default=1, ge=1, description="Units to add")


class CartUpdateRequest(BaseModel):
    quantity: int = Field(..., description="New quantity; below 1 removes the line")


class CartItemResponse(BaseModel):
    id: str
    product_id: str
    product_name: str
    price: float
    stock: int
    quantity: int
    line_total: float


class CartResponse(BaseModel):
    success: bool = True
    items: list[CartItemResponse]
    total_items: int
    total_amount: float


class CartItemMutationResponse(BaseModel):
    success: bool = True
    message: str
    item: Optional[CartItemResponse] = None
