from __future__ import annotations

from decimal import Decimal
from typing import Literal

from pydantic import BaseModel, Field

from spotin.models import ItemCategory


class LoginRequest(BaseModel):
    username: str
    password: str


class ToggleCheckinRpcRequest(BaseModel):
    p_barcode: str
    p_scanned_by_user_id: int | None = None


class CheckinCheckoutRequest(BaseModel):
    barcode: str | None = None
    scanned_by_user_id: int | None = None
    action: Literal['checkin', 'checkout'] | None = None
    client_id: int | None = None


class CartItemIn(BaseModel):
    id: int | None = None
    name: str
    quantity: int = Field(gt=0)
    price: Decimal = Field(ge=0)
    category: ItemCategory = ItemCategory.PRODUCT


class CompleteOrderRequest(BaseModel):
    client_id: int
    items: list[CartItemIn] = Field(min_length=1)
    payment_method: str = 'cash'
    discount_percentage: Decimal = Field(default=Decimal('0'), ge=0, le=100)


class CreateOrderRequest(BaseModel):
    client_id: int
    items: list[CartItemIn] = Field(min_length=1)


class LineItemStatusUpdate(BaseModel):
    status: str


class RefundRequest(BaseModel):
    reason: str
    restock: bool = True


class StockItemCreate(BaseModel):
    name: str
    current_quantity: Decimal = Field(default=Decimal('0'), ge=0)
    min_quantity: Decimal = Field(default=Decimal('0'), ge=0)
    cost_per_unit: Decimal = Field(default=Decimal('0'), ge=0)
    unit: str = 'unit'
    category: str | None = None


class StockAdjustment(BaseModel):
    delta: Decimal


class ProductCreate(BaseModel):
    name: str
    price: Decimal = Field(ge=0)
    category: ItemCategory = ItemCategory.PRODUCT


class IngredientIn(BaseModel):
    stock_id: int
    quantity_needed: Decimal = Field(gt=0)


class ClientCreate(BaseModel):
    first_name: str
    last_name: str
    phone: str
    email: str | None = None
    barcode: str | None = None
