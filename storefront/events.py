"""Domain events.

Events are immutable facts named in the past tense. Services record them on
the session while a unit of work is open; they are handed to the
notification dispatcher only after the commit succeeds.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy.orm import Session

_PENDING_KEY = "pending_events"


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class Event:
    occurred_at: datetime = field(default_factory=_now, kw_only=True)

    @property
    def name(self) -> str:
        return type(self).__name__


@dataclass(frozen=True)
class OrderLine:
    product_id: str
    variant_id: str | None
    sku: str
    product_name: str
    quantity: int
    unit_price: Decimal
    line_total: Decimal


@dataclass(frozen=True)
class OrderCreated(Event):
    order_id: str
    order_number: str
    customer_id: str
    shipping_name: str
    shipping_email: str
    subtotal: Decimal
    tax: Decimal
    shipping_fee: Decimal
    discount: Decimal
    total_amount: Decimal
    lines: tuple[OrderLine, ...]


@dataclass(frozen=True)
class OrderStatusChanged(Event):
    order_id: str
    order_number: str
    old_status: str
    new_status: str
    notes: str | None = None


@dataclass(frozen=True)
class OrderCancelled(Event):
    order_id: str
    order_number: str
    reason: str


@dataclass(frozen=True)
class LowStockDetected(Event):
    product_id: str
    variant_id: str | None
    sku: str
    current_stock: int
    threshold: int


@dataclass(frozen=True)
class LowStockResolved(Event):
    product_id: str
    variant_id: str | None
    sku: str
    current_stock: int
    threshold: int


def record(db: Session, event: Event) -> None:
    db.info.setdefault(_PENDING_KEY, []).append(event)


def pop_pending(db: Session) -> list[Event]:
    return db.info.pop(_PENDING_KEY, [])


def discard_pending(db: Session) -> None:
    db.info.pop(_PENDING_KEY, None)
