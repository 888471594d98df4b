from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from datetime import datetime
from decimal import Decimal
from typing import Any, Optional
from marketplace.domain.models import AddressType, OrderStatus, PaymentMethod, PaymentStatus

class RequestModel(BaseModel):
    """Accepts both snake_case and camelCase keys from clients."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

class AddressCreate(RequestModel):
    full_name: str = Field(min_length=1)
    phone: str = Field(min_length=1, max_length=30)
    address_line1: str = Field(min_length=1)
    address_line2: Optional[str] = None
    city: str = Field(min_length=1)
    state: Optional[str] = None  # defaults to DEFAULT_STATE
    postal_code: str = Field(min_length=1)
    country: Optional[str] = None  # defaults to DEFAULT_COUNTRY
    type: Optional[AddressType] = None
    is_default: bool = False
    instructions: Optional[str] = None

class AddressUpdate(RequestModel):
    full_name: Optional[str] = None
    phone: Optional[str] = None
    address_line1: Optional[str] = None
    address_line2: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    postal_code: Optional[str] = None
    country: Optional[str] = None
    type: Optional[AddressType] = None
    is_default: Optional[bool] = None
    instructions: Optional[str] = None

class OrderItemCreate(RequestModel):
    product_id: str
    quantity: int = Field(gt=0)
    selected_variant: Optional[str] = None
    variant_price: Optional[Decimal] = Field(default=None, ge=0)
    variant_original_price: Optional[Decimal] = Field(default=None, ge=0)

class OrderCreate(RequestModel):
    address_id: Optional[str] = None  # authenticated callers
    address: Optional[AddressCreate] = None  # guests
    items: list[OrderItemCreate] = Field(min_length=1)
    payment_method: PaymentMethod
    notes: Optional[str] = None

class OrderUpdate(RequestModel):
    status: Optional[OrderStatus] = None
    payment_status: Optional[PaymentStatus] = None
    tracking_number: Optional[str] = None
    estimated_delivery: Optional[datetime] = None
    delivered_at: Optional[datetime] = None
    cancellation_reason: Optional[str] = None
    payment_reference: Optional[str] = None

class OrderCancel(RequestModel):
    reason: Optional[str] = None

class AddressRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    id: str
    user_id: Optional[str] = None
    full_name: str
    phone: str
    address_line1: str
    address_line2: Optional[str] = None
    city: str
    state: str
    postal_code: str
    country: str
    type: str
    is_default: bool
    instructions: Optional[str] = None
    created_at: datetime

class OrderItemRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    id: str
    product_id: Optional[str] = None
    item_name: str
    item_image: str
    unit_price: Decimal
    quantity: int
    total_price: Decimal
    unit: Optional[str] = None
    specifications: Optional[dict[str, Any]] = None
    selected_variant: Optional[str] = None
    variant_price: Optional[Decimal] = None
    variant_original_price: Optional[Decimal] = None

class OrderRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    id: str
    order_number: str
    user_id: Optional[str] = None
    address_id: str
    subtotal: Decimal
    delivery_fee: Decimal
    discount: Decimal
    total_amount: Decimal
    status: str
    payment_method: str
    payment_status: str
    payment_reference: Optional[str] = None
    notes: Optional[str] = None
    tracking_number: Optional[str] = None
    estimated_delivery: Optional[datetime] = None
    delivered_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    cancellation_reason: Optional[str] = None
    created_at: datetime
    address: AddressRead
    items: list[OrderItemRead]

class OrderPage(BaseModel):
    orders: list[OrderRead]
    total: int
    total_pages: int

class RecentOrder(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    id: str
    order_number: str
    status: str
    total_amount: Decimal
    created_at: datetime

class DashboardStats(BaseModel):
    total_orders: int
    total_revenue: Decimal
    pending_orders: int
    completed_orders: int
    total_products: int
    recent_orders: list[RecentOrder]

class DeliverySettingsRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    is_delivery_enabled: Optional[bool] = None
    delivery_fee: Optional[Decimal] = None
    free_delivery_threshold: Optional[Decimal] = None

class DeliverySettingsUpdate(RequestModel):
    is_delivery_enabled: bool
    delivery_fee: Decimal = Field(ge=0)
    free_delivery_threshold: Decimal = Field(ge=0)

class DeliveryQuoteRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    fee: Decimal
    is_free: bool
    reason: str
