import logging
import uuid
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal

from sqlalchemy import func, or_, update
from sqlalchemy.orm import Session
from sqlalchemy.orm.attributes import set_committed_value

from storefront import events
from storefront.config import settings
from storefront.database import atomic
from storefront.exceptions import (
    IllegalTransition,
    InsufficientStock,
    NotCancellable,
    NotFound,
    OrderValidationError,
    ProductUnavailable,
)
from storefront.models.order import Order, OrderItem, OrderStatus, OrderStatusHistory, PaymentStatus
from storefront.models.product import ProductVariant
from storefront.schemas.order import OrderCreate, OrderLineCreate
from storefront.services import catalog_service, inventory_service, status_machine

logger = logging.getLogger(__name__)

CENTS = Decimal("0.01")


def _money(value) -> Decimal:
    return Decimal(str(value)).quantize(CENTS, rounding=ROUND_HALF_UP)


def _generate_order_number() -> str:
    ts = datetime.now(timezone.utc).strftime("%Y%m%d%H%M%S")
    short = uuid.uuid4().hex[:6].upper()
    return f"{settings.ORDER_NUMBER_PREFIX}-{ts}-{short}"


def _add_status_history(order: Order, status: OrderStatus, notes: str | None, actor_id: str | None) -> None:
    order.status_history.append(OrderStatusHistory(status=status.value, notes=notes, changed_by=actor_id))


def _resolve_lines(db: Session, lines: list[OrderLineCreate]) -> list[tuple[OrderLineCreate, catalog_service.Sku]]:
    """Look up every line's SKU and check stock before anything is written."""
    resolved = []
    demand: dict[tuple[str, str | None], int] = {}
    for line in lines:
        try:
            sku = catalog_service.get_sku(db, line.product_id, line.variant_id)
        except NotFound as e:
            raise ProductUnavailable(f"Product not found: {e}") from e
        if not sku.available:
            raise ProductUnavailable(f"Product is not available: {sku.display_name}")

        # Lines repeating a SKU draw on the same stock
        key = (sku.product_id, sku.variant_id)
        demand[key] = demand.get(key, 0) + line.quantity
        if demand[key] > sku.quantity:
            raise InsufficientStock(sku.sku, sku.quantity, demand[key])
        resolved.append((line, sku))
    return resolved


def calculate_totals(
    lines: list[tuple[int, Decimal]],
    tax: Decimal = Decimal("0"),
    shipping_fee: Decimal = Decimal("0"),
    discount: Decimal = Decimal("0"),
) -> dict[str, Decimal]:
    """Sum (quantity, unit_price) pairs and the caller-supplied charges."""
    subtotal = sum((_money(price) * qty for qty, price in lines), Decimal("0"))
    subtotal = _money(subtotal)
    tax, shipping_fee, discount = _money(tax), _money(shipping_fee), _money(discount)
    return {
        "subtotal": subtotal,
        "tax": tax,
        "shipping_fee": shipping_fee,
        "discount": discount,
        "total_amount": subtotal + tax + shipping_fee - discount,
    }


def _order_created_event(order: Order) -> events.OrderCreated:
    return events.OrderCreated(
        order_id=order.id,
        order_number=order.order_number,
        customer_id=order.customer_id,
        shipping_name=order.shipping_name,
        shipping_email=order.shipping_email,
        subtotal=order.subtotal,
        tax=order.tax,
        shipping_fee=order.shipping_fee,
        discount=order.discount,
        total_amount=order.total_amount,
        lines=tuple(
            events.OrderLine(
                product_id=item.product_id,
                variant_id=item.variant_id,
                sku=item.sku,
                product_name=item.product_name,
                quantity=item.quantity,
                unit_price=item.unit_price,
                line_total=item.line_total,
            )
            for item in order.items
        ),
    )


def create_order(db: Session, data: OrderCreate, actor_id: str | None = None, dispatcher=None) -> Order:
    customer_id = data.customer_id or actor_id
    if not customer_id:
        raise OrderValidationError("An order needs a customer")

    with atomic(db, dispatcher):
        resolved = _resolve_lines(db, data.items)

        totals = calculate_totals(
            [(line.quantity, sku.effective_price) for line, sku in resolved],
            tax=data.tax,
            shipping_fee=data.shipping_fee,
            discount=data.discount,
        )
        if totals["total_amount"] < 0:
            raise OrderValidationError(f"Discount {totals['discount']} exceeds the order amount")

        order = Order(
            order_number=_generate_order_number(),
            customer_id=customer_id,
            status=OrderStatus.PENDING,
            payment_method=data.payment_method,
            payment_status=PaymentStatus.PENDING,
            shipping_name=data.shipping.name,
            shipping_email=data.shipping.email,
            shipping_phone=data.shipping.phone,
            shipping_address=data.shipping.address,
            shipping_city=data.shipping.city,
            shipping_state=data.shipping.state,
            shipping_country=data.shipping.country,
            shipping_postal_code=data.shipping.postal_code,
            notes=data.notes,
            **totals,
        )
        db.add(order)

        for position, (line, sku) in enumerate(resolved):
            unit_price = _money(sku.effective_price)
            order.items.append(OrderItem(
                position=position,
                product_id=sku.product_id,
                variant_id=sku.variant_id,
                product_name=sku.display_name,
                sku=sku.sku,
                variant_details=sku.attributes if isinstance(sku, ProductVariant) else None,
                quantity=line.quantity,
                unit_price=unit_price,
                line_total=_money(unit_price * line.quantity),
            ))
        db.flush()

        # Deduct inventory; any failure here rolls back the order with it
        for line, sku in resolved:
            inventory_service.reserve(db, sku, line.quantity, actor_id=actor_id, reference=order.order_number)

        _add_status_history(order, OrderStatus.PENDING, "Order created", actor_id)
        db.flush()
        events.record(db, _order_created_event(order))

    logger.info("Order %s created for %s, total %s", order.order_number, customer_id, order.total_amount)
    db.refresh(order)
    return order


def get_order(db: Session, order_id: str, include_deleted: bool = False) -> Order | None:
    q = db.query(Order).filter(Order.id == order_id)
    if not include_deleted:
        q = q.filter(Order.deleted_at.is_(None))
    return q.first()


def get_order_by_number(db: Session, order_number: str) -> Order | None:
    return db.query(Order).filter(Order.order_number == order_number, Order.deleted_at.is_(None)).first()


def list_orders(
    db: Session,
    skip: int = 0,
    limit: int = 100,
    status: OrderStatus | None = None,
    customer_id: str | None = None,
    payment_status: PaymentStatus | None = None,
    search: str | None = None,
    start_date: datetime | None = None,
    end_date: datetime | None = None,
) -> list[Order]:
    q = db.query(Order).filter(Order.deleted_at.is_(None))
    if status:
        q = q.filter(Order.status == status)
    if customer_id:
        q = q.filter(Order.customer_id == customer_id)
    if payment_status:
        q = q.filter(Order.payment_status == payment_status)
    if search:
        pattern = f"%{search}%"
        q = q.filter(or_(
            Order.order_number.like(pattern),
            Order.shipping_name.like(pattern),
            Order.shipping_email.like(pattern),
        ))
    if start_date:
        q = q.filter(Order.created_at >= start_date)
    if end_date:
        q = q.filter(Order.created_at <= end_date)
    return q.order_by(Order.created_at.desc(), Order.order_number.desc()).offset(skip).limit(limit).all()


def _claim_status(db: Session, order: Order, current: OrderStatus, target: OrderStatus) -> bool:
    """Move the stored status from ``current`` to ``target`` unless someone else moved it first."""
    result = db.execute(
        update(Order)
        .where(Order.id == order.id, Order.status == current)
        .values(status=target)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        db.refresh(order)
        return False
    set_committed_value(order, "status", target)
    return True


def update_order_status(
    db: Session,
    order: Order,
    status: OrderStatus | str,
    notes: str | None = None,
    actor_id: str | None = None,
    dispatcher=None,
) -> Order:
    current = OrderStatus(order.status)
    target = status_machine.transition(current, status)
    if target == OrderStatus.CANCELLED:
        return cancel_order(db, order, notes or "Cancelled", actor_id=actor_id, dispatcher=dispatcher)

    with atomic(db, dispatcher):
        if not _claim_status(db, order, current, target):
            raise IllegalTransition(OrderStatus(order.status).value, target.value)
        _add_status_history(order, target, notes, actor_id)
        db.flush()
        events.record(db, events.OrderStatusChanged(
            order_id=order.id,
            order_number=order.order_number,
            old_status=current.value,
            new_status=target.value,
            notes=notes,
        ))

    logger.info("Order %s moved %s -> %s", order.order_number, current.value, target.value)
    db.refresh(order)
    return order


def cancel_order(
    db: Session,
    order: Order,
    reason: str,
    actor_id: str | None = None,
    dispatcher=None,
) -> Order:
    current = OrderStatus(order.status)
    if current not in status_machine.CANCELLABLE:
        raise NotCancellable(order.order_number, current.value)

    with atomic(db, dispatcher):
        if not _claim_status(db, order, current, OrderStatus.CANCELLED):
            raise NotCancellable(order.order_number, OrderStatus(order.status).value)

        for item in order.items:
            sku = catalog_service.get_sku(db, item.product_id, item.variant_id)
            inventory_service.restore(
                db, sku, item.quantity,
                reason=f"Order {order.order_number} cancelled",
                actor_id=actor_id,
                reference=order.order_number,
            )

        order.cancelled_at = datetime.now(timezone.utc)
        order.cancellation_reason = reason
        _add_status_history(order, OrderStatus.CANCELLED, reason, actor_id)
        db.flush()
        events.record(db, events.OrderCancelled(
            order_id=order.id,
            order_number=order.order_number,
            reason=reason,
        ))

    logger.info("Order %s cancelled: %s", order.order_number, reason)
    db.refresh(order)
    return order


def get_status_history(db: Session, order_id: str) -> list[OrderStatusHistory]:
    return (
        db.query(OrderStatusHistory)
        .filter(OrderStatusHistory.order_id == order_id)
        .order_by(OrderStatusHistory.id)
        .all()
    )


def soft_delete_order(db: Session, order: Order) -> Order:
    if order.deleted_at is None:
        order.deleted_at = datetime.now(timezone.utc)
        db.commit()
        db.refresh(order)
    return order


def get_statistics(db: Session, start_date: datetime | None = None, end_date: datetime | None = None) -> dict:
    q = db.query(Order).filter(Order.deleted_at.is_(None))
    if start_date:
        q = q.filter(Order.created_at >= start_date)
    if end_date:
        q = q.filter(Order.created_at <= end_date)

    counts = dict(
        q.with_entities(Order.status, func.count(Order.id)).group_by(Order.status).all()
    )
    revenue, average = q.with_entities(func.sum(Order.total_amount), func.avg(Order.total_amount)).one()

    stats = {f"{s.value}_orders": counts.get(s, 0) for s in OrderStatus}
    stats["total_orders"] = sum(counts.values())
    stats["total_revenue"] = _money(revenue or 0)
    stats["average_order_value"] = _money(average or 0)
    return stats
