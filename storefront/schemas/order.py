from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, Field

from storefront.models.order import OrderStatus, PaymentStatus


class OrderLineCreate(BaseModel):
    product_id: str
    variant_id: str | None = None
    quantity: int = Field(default=1, ge=1)


class ShippingInfo(BaseModel):
    name: str
    email: str = ""
    phone: str = ""
    address: str
    city: str
    state: str | None = None
    country: str
    postal_code: str | None = None


class OrderCreate(BaseModel):
    items: list[OrderLineCreate] = Field(min_length=1)
    shipping: ShippingInfo
    customer_id: str | None = None  # empty = the calling actor
    # Pricing inputs are computed upstream; this layer only sums them
    tax: Decimal = Field(default=Decimal("0"), ge=0)
    shipping_fee: Decimal = Field(default=Decimal("0"), ge=0)
    discount: Decimal = Field(default=Decimal("0"), ge=0)
    payment_method: str | None = None
    notes: str | None = None


class OrderStatusUpdate(BaseModel):
    status: OrderStatus
    notes: str | None = None


class OrderCancel(BaseModel):
    reason: str = Field(min_length=1)


class OrderItemOut(BaseModel):
    id: str
    product_id: str
    variant_id: str | None = None
    product_name: str
    sku: str
    variant_details: str | None = None
    quantity: int
    unit_price: Decimal
    line_total: Decimal

    model_config = {"from_attributes": True}


class StatusHistoryOut(BaseModel):
    id: int
    status: str
    notes: str | None = None
    changed_by: str | None = None
    created_at: datetime

    model_config = {"from_attributes": True}


class OrderOut(BaseModel):
    id: str
    order_number: str
    customer_id: str
    status: OrderStatus
    subtotal: Decimal
    tax: Decimal
    shipping_fee: Decimal
    discount: Decimal
    total_amount: Decimal
    payment_method: str | None = None
    payment_status: PaymentStatus
    shipping_name: str
    shipping_email: str
    shipping_phone: str
    shipping_address: str
    shipping_city: str
    shipping_state: str | None = None
    shipping_country: str
    shipping_postal_code: str | None = None
    notes: str | None = None
    cancelled_at: datetime | None = None
    cancellation_reason: str | None = None
    items: list[OrderItemOut]
    status_history: list[StatusHistoryOut] = []
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class OrderStatistics(BaseModel):
    total_orders: int
    pending_orders: int
    processing_orders: int
    shipped_orders: int
    delivered_orders: int
    cancelled_orders: int
    total_revenue: Decimal
    average_order_value: Decimal
