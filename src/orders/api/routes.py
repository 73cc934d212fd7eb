"""FastAPI routes for the Orders API: orders, shipments, rate quotes and webhooks.

Handlers are plain ``def`` functions: orchestrator calls block on per-order
locks and provider round trips, so FastAPI runs them on its threadpool.
"""

from dataclasses import asdict
from datetime import date

from fastapi import APIRouter, Depends, Header, Query, Request, Response
from starlette.concurrency import run_in_threadpool

from orders.api.schemas import (
    AuditLogResponse,
    AuthorizePaymentRequest,
    CancelOrderRequest,
    CapturePaymentRequest,
    CarrierUpdateRequest,
    CreateFulfillmentRequest,
    OrderExportResponse,
    OrderPageResponse,
    OrderResponse,
    PaymentResponse,
    QuoteRatesRequest,
    RefundRequest,
    RefundResponse,
    ShipmentResponse,
    ShippingRateResponse,
    TrackingUpdateRequest,
    UpdateOrderRequest,
    WebhookAckResponse,
)
from orders.orchestrator import OrderOrchestrator, TrackingUpdate
from orders.queries import OrderFilters, OrderSort, Pagination
from shipping.carrier.port import Address, ShipmentItemSpec, ShipmentRequest


def get_orchestrator(request: Request) -> OrderOrchestrator:
    return request.app.state.orchestrator


def get_actor(x_admin_id: str = Header(default="system")) -> str:
    return x_admin_id or "system"


def order_filters(
    payment_status: list[str] | None = Query(default=None, alias="paymentStatus"),
    fulfillment_status: list[str] | None = Query(default=None, alias="fulfillmentStatus"),
    q: str | None = None,
    created_from: date | None = Query(default=None, alias="createdFrom"),
    created_to: date | None = Query(default=None, alias="createdTo"),
    min_total_cents: int | None = Query(default=None, alias="minTotalCents"),
    max_total_cents: int | None = Query(default=None, alias="maxTotalCents"),
) -> OrderFilters:
    return OrderFilters(
        payment_status=set(payment_status or ()),
        fulfillment_status=set(fulfillment_status or ()),
        q=q,
        created_from=created_from,
        created_to=created_to,
        min_total_cents=min_total_cents,
        max_total_cents=max_total_cents,
    )


# ---------------------------------------------------------------------------
# Order Router
# ---------------------------------------------------------------------------
order_router = APIRouter(prefix="/orders", tags=["orders"])


@order_router.get("", response_model=OrderPageResponse)
def list_orders(
    filters: OrderFilters = Depends(order_filters),
    sort: str = "created_at",
    direction: str = "desc",
    page: int = 1,
    page_size: int = Query(default=20, alias="pageSize"),
    orchestrator: OrderOrchestrator = Depends(get_orchestrator),
):
    """List orders with filters, sorting and pagination."""
    result = orchestrator.get_orders(filters, OrderSort(sort, direction), Pagination(page, page_size))
    return result.to_dict()


@order_router.get("/export", response_model=OrderExportResponse)
def export_orders(
    filters: OrderFilters = Depends(order_filters),
    format: str = "csv",
    orchestrator: OrderOrchestrator = Depends(get_orchestrator),
):
    """Export matching orders, newest first, as CSV (default) or JSON."""
    export = orchestrator.export_orders(filters)
    if format == "json":
        return export.to_dict()
    return Response(
        content=export.to_csv(),
        media_type="text/csv",
        headers={"Content-Disposition": 'attachment; filename="orders.csv"'},
    )


@order_router.get("/{order_id}", response_model=OrderResponse)
def get_order(order_id: str, orchestrator: OrderOrchestrator = Depends(get_orchestrator)):
    return orchestrator.get_order(order_id)


@order_router.patch("/{order_id}", response_model=OrderResponse)
def update_order(
    order_id: str,
    body: UpdateOrderRequest,
    actor: str = Depends(get_actor),
    orchestrator: OrderOrchestrator = Depends(get_orchestrator),
):
    """Replace an order's tags and/or notes."""
    return orchestrator.update_order_metadata(order_id, tags=body.tags, notes=body.notes, actor=actor)


@order_router.get("/{order_id}/audit-logs", response_model=list[AuditLogResponse])
def get_audit_logs(
    order_id: str,
    entity_type: str | None = Query(default=None, alias="entityType"),
    actor: str | None = None,
    action: str | None = None,
    created_from: date | None = Query(default=None, alias="createdFrom"),
    created_to: date | None = Query(default=None, alias="createdTo"),
    limit: int = 50,
    orchestrator: OrderOrchestrator = Depends(get_orchestrator),
):
    return orchestrator.audit_history(
        order_id,
        entity_type=entity_type,
        actor=actor,
        action=action,
        created_from=created_from,
        created_to=created_to,
        limit=limit,
    )


@order_router.post("/{order_id}/cancel", response_model=OrderResponse)
def cancel_order(
    order_id: str,
    body: CancelOrderRequest,
    actor: str = Depends(get_actor),
    orchestrator: OrderOrchestrator = Depends(get_orchestrator),
):
    """Cancel an order, voiding open authorizations and unshipped labels."""
    return orchestrator.cancel_order(order_id, body.reason, actor=actor)


@order_router.post("/{order_id}/fulfillments", status_code=201, response_model=ShipmentResponse)
def create_fulfillment(
    order_id: str,
    body: CreateFulfillmentRequest,
    actor: str = Depends(get_actor),
    orchestrator: OrderOrchestrator = Depends(get_orchestrator),
):
    """Buy a shipping label for some or all of the order's items."""
    return orchestrator.create_fulfillment(
        order_id,
        items=[line.model_dump() for line in body.items],
        carrier=body.carrier,
        service=body.service,
        options=body.options.model_dump() if body.options else None,
        actor=actor,
    )


@order_router.post("/{order_id}/payments/authorize", status_code=201, response_model=PaymentResponse)
def authorize_payment(
    order_id: str,
    body: AuthorizePaymentRequest,
    actor: str = Depends(get_actor),
    orchestrator: OrderOrchestrator = Depends(get_orchestrator),
):
    return orchestrator.authorize_payment(
        order_id,
        body.payment_method_id,
        amount_cents=body.amount_cents,
        currency=body.currency,
        actor=actor,
    )


@order_router.post("/{order_id}/payments/capture", response_model=PaymentResponse)
def capture_payment(
    order_id: str,
    body: CapturePaymentRequest | None = None,
    actor: str = Depends(get_actor),
    orchestrator: OrderOrchestrator = Depends(get_orchestrator),
):
    """Capture the order's authorized payment, in full unless an amount is given."""
    amount_cents = body.amount_cents if body else None
    return orchestrator.capture_payment(order_id, amount_cents=amount_cents, actor=actor)


@order_router.post("/{order_id}/refunds", status_code=201, response_model=RefundResponse)
def process_refund(
    order_id: str,
    body: RefundRequest,
    actor: str = Depends(get_actor),
    orchestrator: OrderOrchestrator = Depends(get_orchestrator),
):
    return orchestrator.process_refund(
        order_id,
        body.amount_cents,
        items=[line.model_dump() for line in body.items] if body.items else None,
        reason=body.reason,
        actor=actor,
    )


# ---------------------------------------------------------------------------
# Shipment Router
# ---------------------------------------------------------------------------
shipment_router = APIRouter(prefix="/shipments", tags=["shipments"])


@shipment_router.post("/{shipment_id}/tracking", response_model=ShipmentResponse)
def update_tracking(
    shipment_id: str,
    body: TrackingUpdateRequest,
    orchestrator: OrderOrchestrator = Depends(get_orchestrator),
):
    return orchestrator.update_shipment_tracking(
        shipment_id,
        TrackingUpdate(
            status=body.status,
            description=body.description,
            location=body.location,
            timestamp=body.timestamp,
            estimated_delivery=body.estimated_delivery,
        ),
    )


# ---------------------------------------------------------------------------
# Shipping Router
# ---------------------------------------------------------------------------
shipping_router = APIRouter(prefix="/shipping", tags=["shipping"])


@shipping_router.post("/quote-rates", response_model=list[ShippingRateResponse])
def quote_rates(body: QuoteRatesRequest, orchestrator: OrderOrchestrator = Depends(get_orchestrator)):
    """Quote carrier rates for a parcel, cheapest first."""
    request = ShipmentRequest(
        from_address=Address(**body.from_address.model_dump()),
        to_address=Address(**body.to_address.model_dump()),
        items=[ShipmentItemSpec(**item.model_dump()) for item in body.items],
        signature=body.signature,
    )
    return [asdict(rate) for rate in orchestrator.quote_rates(request)]


# ---------------------------------------------------------------------------
# Webhook Router
# ---------------------------------------------------------------------------
webhook_router = APIRouter(prefix="/webhooks", tags=["webhooks"])


@webhook_router.post("/payments", response_model=WebhookAckResponse)
async def payment_webhook(
    request: Request,
    stripe_signature: str = Header(default=""),
    orchestrator: OrderOrchestrator = Depends(get_orchestrator),
):
    """Verify and apply a payment processor webhook. The raw body is needed for the signature."""
    payload = await request.body()
    event = await run_in_threadpool(orchestrator.verify_payment_webhook, payload, stripe_signature)
    payment = await run_in_threadpool(orchestrator.record_payment_event, event)
    return {"received": True, "payment": payment}


@webhook_router.post("/shipping", response_model=ShipmentResponse)
def shipping_webhook(body: CarrierUpdateRequest, orchestrator: OrderOrchestrator = Depends(get_orchestrator)):
    return orchestrator.record_carrier_update(
        body.tracking_number,
        body.status,
        description=body.description,
        location=body.location,
        timestamp=body.timestamp,
    )
