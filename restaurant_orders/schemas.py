"""
Pydantic Schemas for Request/Response Validation

The storefront speaks camelCase JSON; every model here generates camelCase
aliases and still accepts snake_case field names. Money is Decimal inside
the service and rendered as a JSON number on the wire.
"""

from datetime import datetime
from decimal import Decimal
from typing import Annotated, Optional

from pydantic import BaseModel, ConfigDict, Field, PlainSerializer
from pydantic.alias_generators import to_camel

from restaurant_orders.models import OrderMethod, OrderStatus


Money = Annotated[
    Decimal,
    PlainSerializer(float, return_type=float, when_used="json"),
]


class CamelModel(BaseModel):
    """Base model: camelCase on the wire, snake_case in Python."""
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
    )


# =============================================================================
# REQUEST SCHEMAS
# =============================================================================

class SelectedItemCreate(CamelModel):
    """A sub-item chosen for a line item (option, add-on, side)."""
    id: int = 0
    name: str = ""
    group_name: Optional[str] = None
    type: Optional[str] = None
    price: Money = Decimal("0")
    quantity: int = Field(default=1, ge=1)


class OrderItemCreate(CamelModel):
    """Single item in an order."""
    id: int = Field(..., examples=[12])
    name: str = Field(..., min_length=1, max_length=200, examples=["Pizza Margherita"])
    quantity: int = Field(..., ge=1, le=99, examples=[2])
    price: Money = Field(..., ge=0, examples=[9.5])
    original_price: Optional[Money] = Field(None, ge=0, examples=[11.0])
    notes: Optional[str] = Field(None, max_length=500)
    selected_options: list[int] = Field(default_factory=list)
    selected_items: Optional[list[SelectedItemCreate]] = None
    group_order: Optional[list[str]] = None
    image: Optional[str] = None


class CustomerInfoCreate(CamelModel):
    """Customer contact data plus the delivery address fields."""
    first_name: str = Field(..., min_length=1, max_length=100, examples=["Jane"])
    last_name: str = Field(..., min_length=1, max_length=100, examples=["Doe"])
    email: str = Field(..., min_length=3, max_length=255, examples=["jane@example.com"])
    phone: Optional[str] = Field(None, max_length=30)
    comment: Optional[str] = None

    # Delivery address (required for delivery orders)
    postal_code: Optional[str] = Field(None, max_length=20, examples=["1010"])
    street: Optional[str] = Field(None, max_length=255)
    house: Optional[str] = Field(None, max_length=50)
    stairs: Optional[str] = Field(None, max_length=50)
    buzzer: Optional[str] = Field(None, max_length=50)
    door: Optional[str] = Field(None, max_length=50)
    bell: Optional[str] = Field(None, max_length=50)


class OrderCreate(CamelModel):
    """Request schema for creating a new order (online or cash)."""
    items: list[OrderItemCreate] = Field(default_factory=list)
    customer_info: CustomerInfoCreate
    order_method: OrderMethod = Field(..., examples=["delivery"])
    payment_method: str = Field(..., min_length=1, max_length=50, examples=["stripe", "cash"])
    status: str = Field(default=OrderStatus.PENDING.value, examples=["pending"])
    total_amount: Money = Field(..., ge=0, examples=[19.0])
    special_notes: Optional[str] = None


class PaymentIntentRequest(CamelModel):
    """Request a payment intent for an existing order."""
    order_id: int


class PaymentCancelRequest(CamelModel):
    """Body variant of the cancel callback."""
    session_id: Optional[str] = None


# =============================================================================
# RESPONSE SCHEMAS
# =============================================================================

class OrderCreateResponse(CamelModel):
    """Response after successfully creating an order."""
    order_id: int
    order_number: str


class CheckoutSessionResponse(CamelModel):
    """Hosted checkout page for a freshly created order."""
    session_id: str
    url: Optional[str]
    order_id: int
    order_number: str


class PaymentIntentResponse(CamelModel):
    client_secret: str


class SelectedItemView(CamelModel):
    id: int
    name: str
    group_name: Optional[str] = None
    type: Optional[str] = None
    price: Money
    quantity: int


class OrderItemView(CamelModel):
    """One line item as it was at order time."""
    id: int
    name: str
    quantity: int
    price: Money
    original_price: Money
    note: str
    image: str
    selected_items: list[SelectedItemView]
    group_order: list[str]


class CustomerInfoView(CamelModel):
    """Customer data flattened with the delivery address (null for pickup)."""
    first_name: str
    last_name: str
    email: str
    phone: Optional[str] = None
    postal_code: Optional[str] = None
    street: Optional[str] = None
    house: Optional[str] = None
    stairs: Optional[str] = None
    buzzer: Optional[str] = None
    door: Optional[str] = None
    bell: Optional[str] = None
    special_notes: Optional[str] = None


class OrderView(CamelModel):
    """Client-facing projection of a persisted order."""
    order_id: int
    order_number: str
    status: OrderStatus
    total: Money
    payment_method: str
    order_method: OrderMethod
    created_at: datetime
    customer_info: Optional[CustomerInfoView] = None
    items: list[OrderItemView]
    discount_coupon: int
    special_notes: Optional[str] = None
    original_total: Money


class WebhookResponse(CamelModel):
    received: bool = True
    event_type: Optional[str] = None
    order_id: Optional[int] = None
    status: Optional[OrderStatus] = None


class ErrorResponse(BaseModel):
    """Standard error response."""
    success: bool = False
    error: str
    detail: Optional[str] = None


class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    database: str
    payment_service: str
    timestamp: datetime
