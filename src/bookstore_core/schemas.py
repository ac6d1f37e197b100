"""Pydantic schemas for API payloads."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from .models import DeliveryType, DiscountType, OrderStatus, StockStatus


class Payload(BaseModel):
    """Base for request bodies; unknown fields are rejected."""

    model_config = ConfigDict(extra="forbid")


class ReadModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)


class Message(BaseModel):
    message: str


# -- catalog -----------------------------------------------------------------


class BookCreate(Payload):
    title: str = Field(..., min_length=1, max_length=255)
    author: str = Field(..., min_length=1, max_length=255)
    isbn: str = Field(..., min_length=1, max_length=32)
    price: Decimal = Field(..., ge=0, decimal_places=2)
    stock: int = Field(0, ge=0)


class BookUpdate(Payload):
    title: Optional[str] = Field(None, min_length=1, max_length=255)
    author: Optional[str] = Field(None, min_length=1, max_length=255)
    price: Optional[Decimal] = Field(None, ge=0, decimal_places=2)
    stock: Optional[int] = Field(None, ge=0)


class BookRead(ReadModel):
    id: int
    title: str
    author: str
    isbn: str
    price: Decimal
    stock: int
    stock_status: StockStatus
    created_at: datetime
    updated_at: datetime


class RestockRequest(Payload):
    quantity: int


# -- cart --------------------------------------------------------------------


class CartItemCreate(Payload):
    book_id: int
    quantity: int = 1


class CartItemUpdate(Payload):
    quantity: int


class CartItemRead(ReadModel):
    id: int
    book_id: int
    quantity: int
    price_snapshot: Decimal
    stock_snapshot: int
    updated_at: datetime


class CartLineRead(BaseModel):
    book_id: int
    title: str
    quantity: int
    unit_price: Decimal
    line_total: Decimal
    stock_status: StockStatus


class CartRead(BaseModel):
    user_id: str
    items: list[CartLineRead]
    total_quantity: int
    subtotal: Decimal


# -- locations ---------------------------------------------------------------


class StoreCreate(Payload):
    code: str = Field(..., min_length=1, max_length=30)
    name: str = Field(..., min_length=1, max_length=120)
    city: str = Field(..., min_length=1, max_length=80)
    state: str = Field(..., min_length=1, max_length=80)
    address: Optional[str] = Field(None, max_length=220)
    is_active: bool = True


class StoreRead(ReadModel):
    id: int
    code: str
    name: str
    city: str
    state: str
    address: Optional[str] = None
    is_active: bool
    created_at: datetime


class WarehouseCreate(Payload):
    code: str = Field(..., min_length=1, max_length=30)
    name: str = Field(..., min_length=1, max_length=120)
    city: Optional[str] = Field(None, max_length=80)
    is_active: bool = True


class WarehouseRead(ReadModel):
    id: int
    code: str
    name: str
    city: Optional[str] = None
    is_active: bool
    created_at: datetime


class StockLevelSet(Payload):
    stock: int
    low_stock_threshold: Optional[int] = None


class StockBook(ReadModel):
    id: int
    title: str
    isbn: str


class StoreStockRead(ReadModel):
    store_id: int
    book_id: int
    stock: int
    low_stock_threshold: int
    is_low: bool
    updated_at: datetime
    book: StockBook


class WarehouseStockRead(ReadModel):
    warehouse_id: int
    book_id: int
    stock: int
    low_stock_threshold: int
    is_low: bool
    updated_at: datetime
    book: StockBook


class TransferCreate(Payload):
    from_warehouse_id: int
    to_store_id: int
    book_id: int
    quantity: int
    note: Optional[str] = None


class TransferRead(ReadModel):
    id: int
    from_warehouse_id: int
    to_store_id: int
    book_id: int
    quantity: int
    note: Optional[str] = None
    created_by: str
    created_at: datetime


# -- promotions --------------------------------------------------------------


class PromotionCreate(Payload):
    code: str = Field(..., min_length=1, max_length=40)
    name: str = Field(..., min_length=1, max_length=120)
    discount_type: DiscountType
    discount_value: Decimal = Field(..., decimal_places=2)
    min_subtotal: Decimal = Field(Decimal("0"), decimal_places=2)
    max_discount_amount: Optional[Decimal] = Field(None, decimal_places=2)
    starts_at: Optional[datetime] = None
    ends_at: Optional[datetime] = None
    max_redemptions: Optional[int] = None
    is_active: bool = True


class PromotionUpdate(Payload):
    code: Optional[str] = Field(None, min_length=1, max_length=40)
    name: Optional[str] = Field(None, min_length=1, max_length=120)
    discount_type: Optional[DiscountType] = None
    discount_value: Optional[Decimal] = Field(None, decimal_places=2)
    min_subtotal: Optional[Decimal] = Field(None, decimal_places=2)
    max_discount_amount: Optional[Decimal] = Field(None, decimal_places=2)
    starts_at: Optional[datetime] = None
    ends_at: Optional[datetime] = None
    max_redemptions: Optional[int] = None
    is_active: Optional[bool] = None


class PromotionRead(ReadModel):
    id: int
    code: str
    name: str
    discount_type: DiscountType
    discount_value: Decimal
    min_subtotal: Decimal
    max_discount_amount: Optional[Decimal] = None
    starts_at: Optional[datetime] = None
    ends_at: Optional[datetime] = None
    max_redemptions: Optional[int] = None
    redeemed_count: int
    is_active: bool
    created_at: datetime


class PromoPreviewRequest(Payload):
    code: str = Field(..., max_length=40)


class PromoPreviewRead(BaseModel):
    valid: bool
    code: str
    message: str
    reason: Optional[str] = None
    subtotal: Decimal
    discount_amount: Decimal
    total: Decimal


# -- orders ------------------------------------------------------------------


class OrderCreate(Payload):
    promo_code: Optional[str] = Field(None, max_length=40)
    delivery_type: DeliveryType = DeliveryType.HOME_DELIVERY
    store_id: Optional[int] = None
    shipping_full_name: Optional[str] = Field(None, max_length=120)
    shipping_phone: Optional[str] = Field(None, max_length=50)
    shipping_address: Optional[str] = Field(None, max_length=255)
    payment_receipt_url: Optional[str] = Field(None, max_length=500)


class OrderStatusUpdate(Payload):
    status: OrderStatus


class OrderItemRead(ReadModel):
    book_id: int
    title: str
    quantity: int
    unit_price: Decimal
    line_total: Decimal


class OrderRead(ReadModel):
    id: int
    user_id: str
    status: OrderStatus
    delivery_type: DeliveryType
    store_id: Optional[int] = None
    subtotal_price: Decimal
    discount_amount: Decimal
    promo_code: Optional[str] = None
    total_price: Decimal
    shipping_full_name: Optional[str] = None
    shipping_phone: Optional[str] = None
    shipping_address: Optional[str] = None
    payment_receipt_url: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    items: list[OrderItemRead] = Field(default_factory=list)
