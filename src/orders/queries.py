"""Order listing and export: filters, sorting, pagination and CSV rendering.

Filters and sort orders are translated into repository queries so that the
database does the filtering and paging. Nothing here mutates an order.
"""

import csv
import io
import math
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import date, datetime

from protean.utils.query import Q

from orders.audit.queries import as_utc
from orders.errors import ValidationError
from orders.order.order import Order
from orders.order.views import order_summary_view
from shared.statuses import FulfillmentStatus, PaymentStatus

SORT_FIELDS = ("created_at", "grand_total_cents", "number")
SORT_DIRECTIONS = ("asc", "desc")
DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100

EXPORT_HEADERS = [
    "Order Number",
    "Date",
    "Customer",
    "Email",
    "Total",
    "Payment Status",
    "Fulfillment Status",
    "Items",
    "Tracking Numbers",
]


@dataclass
class OrderFilters:
    payment_status: set[str] = field(default_factory=set)
    fulfillment_status: set[str] = field(default_factory=set)
    q: str | None = None
    created_from: date | datetime | None = None
    created_to: date | datetime | None = None
    min_total_cents: int | None = None
    max_total_cents: int | None = None

    def __post_init__(self) -> None:
        self.payment_status = {s.upper() for s in self.payment_status or ()}
        self.fulfillment_status = {s.upper() for s in self.fulfillment_status or ()}
        unknown = self.payment_status - {s.value for s in PaymentStatus}
        if unknown:
            raise ValidationError(f"Unknown payment status: {', '.join(sorted(unknown))}")
        unknown = self.fulfillment_status - {s.value for s in FulfillmentStatus}
        if unknown:
            raise ValidationError(f"Unknown fulfillment status: {', '.join(sorted(unknown))}")
        if (
            self.min_total_cents is not None
            and self.max_total_cents is not None
            and self.min_total_cents > self.max_total_cents
        ):
            raise ValidationError("min_total_cents cannot exceed max_total_cents")

    @property
    def search_text(self) -> str | None:
        return (self.q or "").strip() or None

    def criteria(self) -> Q:
        """Column filters as a Protean ``Q``. Free-text search is resolved by the repository."""
        conditions = {}
        if self.payment_status:
            conditions["payment_status__in"] = sorted(self.payment_status)
        if self.fulfillment_status:
            conditions["fulfillment_status__in"] = sorted(self.fulfillment_status)
        if self.min_total_cents is not None:
            conditions["grand_total_cents__gte"] = self.min_total_cents
        if self.max_total_cents is not None:
            conditions["grand_total_cents__lte"] = self.max_total_cents
        # An order without a creation time never matches a date range
        if self.created_from is not None:
            conditions["created_at__gte"] = as_utc(self.created_from)
        if self.created_to is not None:
            conditions["created_at__lte"] = as_utc(self.created_to, end_of_day=True)
        return Q(**conditions)


@dataclass
class OrderSort:
    field: str = "created_at"
    direction: str = "desc"

    def __post_init__(self) -> None:
        if self.field not in SORT_FIELDS:
            raise ValidationError(f"Cannot sort by {self.field}; use one of {', '.join(SORT_FIELDS)}")
        if self.direction not in SORT_DIRECTIONS:
            raise ValidationError("Sort direction must be asc or desc")

    @property
    def order_by(self) -> list[str]:
        """Repository ordering, with the order number breaking ties."""
        prefix = "-" if self.direction == "desc" else ""
        keys = [f"{prefix}{self.field}"]
        if self.field != "number":
            keys.append(f"{prefix}number")
        return keys


@dataclass
class Pagination:
    page: int = 1
    page_size: int = DEFAULT_PAGE_SIZE

    def __post_init__(self) -> None:
        if self.page < 1:
            raise ValidationError("Page must be at least 1")
        if not 1 <= self.page_size <= MAX_PAGE_SIZE:
            raise ValidationError(f"Page size must be between 1 and {MAX_PAGE_SIZE}")

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.page_size


@dataclass
class OrderPage:
    orders: list[dict]
    total: int
    page: int
    page_size: int
    total_pages: int

    def to_dict(self) -> dict:
        return {
            "orders": self.orders,
            "total": self.total,
            "page": self.page,
            "page_size": self.page_size,
            "total_pages": self.total_pages,
        }


@dataclass
class OrderExport:
    headers: list[str]
    rows: list[list[str]]

    def to_csv(self) -> str:
        buffer = io.StringIO()
        writer = csv.writer(buffer)
        writer.writerow(self.headers)
        writer.writerows(self.rows)
        return buffer.getvalue()

    def to_dict(self) -> dict:
        return {"headers": self.headers, "rows": self.rows}


def page_of(window: list[Order], total: int, pagination: Pagination) -> OrderPage:
    """Wrap one page of orders already fetched with ``pagination``'s offset and size."""
    return OrderPage(
        orders=[order_summary_view(o) for o in window],
        total=total,
        page=pagination.page,
        page_size=pagination.page_size,
        total_pages=math.ceil(total / pagination.page_size),
    )


def export_row(order: Order) -> list[str]:
    return [
        order.number,
        as_utc(order.created_at).strftime("%Y-%m-%d") if order.created_at else "",
        order.customer_name or "Guest",
        order.email or "",
        f"{order.grand_total_cents / 100:.2f}",
        order.payment_status,
        order.fulfillment_status,
        "; ".join(f"{item.name} ({item.quantity})" for item in order.items or []),
        "; ".join(s.tracking_number for s in order.shipments or [] if s.tracking_number),
    ]


def export_of(orders: Iterable[Order]) -> OrderExport:
    return OrderExport(headers=list(EXPORT_HEADERS), rows=[export_row(o) for o in orders])
