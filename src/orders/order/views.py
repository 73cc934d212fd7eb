"""Plain-dict views of the Order aggregate for API responses and exports."""

from orders.order.order import Address, Order, Payment, Refund, Shipment


def address_view(address: Address | None) -> dict | None:
    if address is None:
        return None
    return {
        "first_name": address.first_name,
        "last_name": address.last_name,
        "company": address.company,
        "address1": address.address1,
        "address2": address.address2,
        "city": address.city,
        "state": address.state,
        "postal_code": address.postal_code,
        "country": address.country,
        "phone": address.phone,
    }


def payment_view(payment: Payment) -> dict:
    return {
        "id": str(payment.id),
        "amount_cents": payment.amount_cents,
        "captured_cents": payment.captured_cents,
        "refunded_cents": payment.refunded_cents,
        "currency": payment.currency,
        "provider": payment.provider,
        "provider_charge_id": payment.provider_charge_id,
        "status": payment.status,
        "failure_reason": payment.failure_reason,
        "authorized_at": payment.authorized_at,
        "captured_at": payment.captured_at,
        "voided_at": payment.voided_at,
    }


def shipment_view(order: Order, shipment: Shipment) -> dict:
    return {
        "id": str(shipment.id),
        "carrier": shipment.carrier,
        "service": shipment.service,
        "tracking_number": shipment.tracking_number,
        "label_id": shipment.label_id,
        "label_url": shipment.label_url,
        "cost_cents": shipment.cost_cents,
        "status": shipment.status,
        "from_address": address_view(shipment.from_address),
        "to_address": address_view(shipment.to_address),
        "estimated_delivery": shipment.estimated_delivery,
        "actual_delivery": shipment.actual_delivery,
        "created_at": shipment.created_at,
        "items": [
            {"order_item_id": str(si.order_item_id), "quantity": si.quantity}
            for si in order.items_of_shipment(shipment.id)
        ],
        "tracking_events": [
            {
                "status": e.status,
                "description": e.description,
                "location": e.location,
                "timestamp": e.timestamp,
            }
            for e in order.tracking_of_shipment(shipment.id)
        ],
    }


def refund_view(order: Order, refund: Refund) -> dict:
    return {
        "id": str(refund.id),
        "payment_id": str(refund.payment_id),
        "amount_cents": refund.amount_cents,
        "reason": refund.reason,
        "status": refund.status,
        "provider": refund.provider,
        "provider_refund_id": refund.provider_refund_id,
        "created_at": refund.created_at,
        "items": [
            {"order_item_id": str(ri.order_item_id), "quantity": ri.quantity, "amount_cents": ri.amount_cents}
            for ri in order.items_of_refund(refund.id)
        ],
    }


def order_summary_view(order: Order) -> dict:
    """The fields shown in order listings."""
    return {
        "id": str(order.id),
        "number": order.number,
        "payment_status": order.payment_status,
        "fulfillment_status": order.fulfillment_status,
        "grand_total_cents": order.grand_total_cents,
        "currency": order.currency,
        "customer_id": str(order.customer_id) if order.customer_id else None,
        "customer_name": order.customer_name,
        "email": order.email,
        "item_count": sum(i.quantity for i in order.items or []),
        "tags": order.tag_list,
        "created_at": order.created_at,
        "updated_at": order.updated_at,
    }


def order_view(order: Order) -> dict:
    """The full order with every owned entity."""
    sorted_shipments = sorted(order.shipments or [], key=lambda s: s.created_at)
    sorted_refunds = sorted(order.refunds or [], key=lambda r: r.created_at)
    return {
        **order_summary_view(order),
        "billing_address": address_view(order.billing_address),
        "shipping_address": address_view(order.shipping_address),
        "cancel_reason": order.cancel_reason,
        "cancelled_at": order.cancelled_at,
        "notes": order.notes,
        "items": [
            {
                "id": str(item.id),
                "name": item.name,
                "sku": item.sku,
                "quantity": item.quantity,
                "price_cents": item.price_cents,
                "fulfilled_qty": item.fulfilled_qty,
                "refunded_qty": item.refunded_qty,
            }
            for item in order.items or []
        ],
        "payments": [payment_view(p) for p in order.payments or []],
        "shipments": [shipment_view(order, s) for s in sorted_shipments],
        "refunds": [refund_view(order, r) for r in sorted_refunds],
    }
