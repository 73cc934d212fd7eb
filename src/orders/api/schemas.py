"""Pydantic request/response schemas for the Orders API.

These are external contracts (anti-corruption layer), separate from the Order
aggregate. Fields are camelCase on the wire; snake_case is accepted on input.
"""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ---------------------------------------------------------------------------
# Shared sub-models
# ---------------------------------------------------------------------------
class AddressSchema(CamelModel):
    address1: str
    city: str
    postal_code: str
    country: str = "US"
    state: str | None = None
    address2: str | None = None
    first_name: str | None = None
    last_name: str | None = None
    company: str | None = None
    phone: str | None = None


class LineItemRequest(CamelModel):
    order_item_id: str
    quantity: int


# ---------------------------------------------------------------------------
# Request Schemas
# ---------------------------------------------------------------------------
class CancelOrderRequest(CamelModel):
    reason: str


class UpdateOrderRequest(CamelModel):
    tags: list[str] | None = None
    notes: str | None = None


class FulfillmentOptions(CamelModel):
    insurance: bool = False
    signature: bool = False


class CreateFulfillmentRequest(CamelModel):
    items: list[LineItemRequest]
    carrier: str | None = None
    service: str | None = None
    options: FulfillmentOptions | None = None

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        json_schema_extra={
            "examples": [
                {
                    "items": [{"orderItemId": "item-001", "quantity": 2}],
                    "carrier": "ups",
                    "service": "ground",
                    "options": {"insurance": True, "signature": False},
                }
            ]
        },
    )


class AuthorizePaymentRequest(CamelModel):
    payment_method_id: str
    amount_cents: int | None = None
    currency: str | None = None


class CapturePaymentRequest(CamelModel):
    amount_cents: int | None = None


class RefundRequest(CamelModel):
    amount_cents: int
    items: list[LineItemRequest] | None = None
    reason: str | None = None


class TrackingUpdateRequest(CamelModel):
    status: str
    description: str | None = None
    location: str | None = None
    timestamp: datetime | None = None
    estimated_delivery: datetime | None = None


class QuoteItemSchema(CamelModel):
    name: str
    quantity: int = Field(ge=1)
    weight_grams: float = Field(default=450, gt=0)
    value_cents: int = Field(default=0, ge=0)


class QuoteRatesRequest(CamelModel):
    from_address: AddressSchema
    to_address: AddressSchema
    items: list[QuoteItemSchema]
    signature: bool = False


class CarrierUpdateRequest(CamelModel):
    tracking_number: str
    status: str  # carrier's raw status, e.g. in_transit, delivered
    description: str | None = None
    location: str | None = None
    timestamp: datetime | None = None


# ---------------------------------------------------------------------------
# Response Schemas
# ---------------------------------------------------------------------------
class OrderItemResponse(CamelModel):
    id: str
    name: str
    sku: str | None = None
    quantity: int
    price_cents: int
    fulfilled_qty: int
    refunded_qty: int


class PaymentResponse(CamelModel):
    id: str
    amount_cents: int
    captured_cents: int
    refunded_cents: int
    currency: str | None = None
    provider: str | None = None
    provider_charge_id: str | None = None
    status: str
    failure_reason: str | None = None
    authorized_at: datetime | None = None
    captured_at: datetime | None = None
    voided_at: datetime | None = None


class ShipmentItemResponse(CamelModel):
    order_item_id: str
    quantity: int


class TrackingEventResponse(CamelModel):
    status: str
    description: str | None = None
    location: str | None = None
    timestamp: datetime


class ShipmentResponse(CamelModel):
    id: str
    carrier: str
    service: str
    tracking_number: str | None = None
    label_id: str | None = None
    label_url: str | None = None
    cost_cents: int
    status: str
    from_address: AddressSchema | None = None
    to_address: AddressSchema | None = None
    estimated_delivery: datetime | None = None
    actual_delivery: datetime | None = None
    created_at: datetime | None = None
    items: list[ShipmentItemResponse] = []
    tracking_events: list[TrackingEventResponse] = []


class RefundItemResponse(CamelModel):
    order_item_id: str
    quantity: int
    amount_cents: int


class RefundResponse(CamelModel):
    id: str
    payment_id: str
    amount_cents: int
    reason: str | None = None
    status: str
    provider: str | None = None
    provider_refund_id: str | None = None
    created_at: datetime | None = None
    items: list[RefundItemResponse] = []


class OrderSummaryResponse(CamelModel):
    id: str
    number: str
    payment_status: str
    fulfillment_status: str
    grand_total_cents: int
    currency: str | None = None
    customer_id: str | None = None
    customer_name: str | None = None
    email: str | None = None
    item_count: int
    tags: list[str] = []
    created_at: datetime | None = None
    updated_at: datetime | None = None


class OrderResponse(OrderSummaryResponse):
    billing_address: AddressSchema | None = None
    shipping_address: AddressSchema | None = None
    cancel_reason: str | None = None
    cancelled_at: datetime | None = None
    notes: str | None = None
    items: list[OrderItemResponse] = []
    payments: list[PaymentResponse] = []
    shipments: list[ShipmentResponse] = []
    refunds: list[RefundResponse] = []


class OrderPageResponse(CamelModel):
    orders: list[OrderSummaryResponse]
    total: int
    page: int
    page_size: int
    total_pages: int


class OrderExportResponse(CamelModel):
    headers: list[str]
    rows: list[list[str]]


class AuditLogResponse(CamelModel):
    id: str
    order_id: str | None = None
    entity_type: str
    entity_id: str
    action: str
    actor: str
    actor_type: str
    changes: dict
    created_at: datetime


class ShippingRateResponse(CamelModel):
    carrier: str
    service: str
    cost_cents: int
    estimated_days: int
    currency: str


class WebhookAckResponse(CamelModel):
    received: bool = True
    payment: PaymentResponse | None = None
