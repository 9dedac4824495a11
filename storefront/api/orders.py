import os
from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import FileResponse
from sqlalchemy.orm import Session

from storefront.api.deps import get_actor, get_dispatcher, require
from storefront.database import get_db
from storefront.exceptions import ConcurrentUpdateError
from storefront.identity import CANCEL_ANY_ORDER, MANAGE_ORDERS, Actor
from storefront.models.order import Order, OrderStatus, PaymentStatus
from storefront.schemas.order import (
    OrderCancel,
    OrderCreate,
    OrderOut,
    OrderStatistics,
    OrderStatusUpdate,
    StatusHistoryOut,
)
from storefront.services import invoice_service, order_service

router = APIRouter(prefix="/orders", tags=["Orders"])


def _load_order(db: Session, order_id: str, actor: Actor) -> Order:
    order = order_service.get_order(db, order_id)
    if not order:
        raise HTTPException(404, "Order not found")
    if order.customer_id != actor.id and not actor.can(MANAGE_ORDERS):
        raise HTTPException(403, "Unauthorized access to order")
    return order


@router.post("", response_model=OrderOut, status_code=201)
def create_order(
    data: OrderCreate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
    dispatcher=Depends(get_dispatcher),
):
    if data.customer_id and data.customer_id != actor.id and not actor.can(MANAGE_ORDERS):
        raise HTTPException(403, "Cannot place orders for another customer")
    try:
        return order_service.create_order(db, data, actor_id=actor.id, dispatcher=dispatcher)
    except ValueError as e:
        raise HTTPException(422, str(e))
    except ConcurrentUpdateError as e:
        raise HTTPException(409, str(e))


@router.get("", response_model=list[OrderOut])
def list_orders(
    skip: int = 0,
    limit: int = 100,
    status: OrderStatus | None = None,
    payment_status: PaymentStatus | None = None,
    customer_id: str | None = None,
    search: str | None = None,
    start_date: datetime | None = None,
    end_date: datetime | None = None,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
):
    # Customers only ever see their own orders
    if not actor.can(MANAGE_ORDERS):
        customer_id = actor.id
    return order_service.list_orders(
        db,
        skip=skip,
        limit=limit,
        status=status,
        customer_id=customer_id,
        payment_status=payment_status,
        search=search,
        start_date=start_date,
        end_date=end_date,
    )


@router.get("/statistics", response_model=OrderStatistics)
def order_statistics(
    start_date: datetime | None = None,
    end_date: datetime | None = None,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require(MANAGE_ORDERS)),
):
    return order_service.get_statistics(db, start_date=start_date, end_date=end_date)


@router.get("/by-number/{order_number}", response_model=OrderOut)
def get_order_by_number(order_number: str, db: Session = Depends(get_db), actor: Actor = Depends(get_actor)):
    order = order_service.get_order_by_number(db, order_number)
    if not order:
        raise HTTPException(404, "Order not found")
    return _load_order(db, order.id, actor)


@router.get("/{order_id}", response_model=OrderOut)
def get_order(order_id: str, db: Session = Depends(get_db), actor: Actor = Depends(get_actor)):
    return _load_order(db, order_id, actor)


@router.get("/{order_id}/status-history", response_model=list[StatusHistoryOut])
def status_history(order_id: str, db: Session = Depends(get_db), actor: Actor = Depends(get_actor)):
    order = _load_order(db, order_id, actor)
    return order_service.get_status_history(db, order.id)


@router.put("/{order_id}/status", response_model=OrderOut)
def update_status(
    order_id: str,
    data: OrderStatusUpdate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require(MANAGE_ORDERS)),
    dispatcher=Depends(get_dispatcher),
):
    order = _load_order(db, order_id, actor)
    try:
        return order_service.update_order_status(
            db, order, data.status, notes=data.notes, actor_id=actor.id, dispatcher=dispatcher
        )
    except ValueError as e:
        raise HTTPException(422, str(e))
    except ConcurrentUpdateError as e:
        raise HTTPException(409, str(e))


@router.post("/{order_id}/cancel", response_model=OrderOut)
def cancel_order(
    order_id: str,
    data: OrderCancel,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
    dispatcher=Depends(get_dispatcher),
):
    order = order_service.get_order(db, order_id)
    if not order:
        raise HTTPException(404, "Order not found")
    if order.customer_id != actor.id and not actor.can(CANCEL_ANY_ORDER):
        raise HTTPException(403, "Unauthorized access to order")
    try:
        return order_service.cancel_order(db, order, data.reason, actor_id=actor.id, dispatcher=dispatcher)
    except ValueError as e:
        raise HTTPException(422, str(e))
    except ConcurrentUpdateError as e:
        raise HTTPException(409, str(e))


@router.get("/{order_id}/invoice")
def download_invoice(order_id: str, db: Session = Depends(get_db), actor: Actor = Depends(get_actor)):
    order = _load_order(db, order_id, actor)
    invoice = invoice_service.get_latest_invoice(db, order.id)
    if not invoice or not os.path.exists(invoice.file_path):
        raise HTTPException(404, "Invoice not found")
    return FileResponse(
        invoice.file_path,
        media_type="text/plain",
        filename=os.path.basename(invoice.file_path),
    )


@router.delete("/{order_id}", status_code=204)
def delete_order(order_id: str, db: Session = Depends(get_db), actor: Actor = Depends(require(MANAGE_ORDERS))):
    order = _load_order(db, order_id, actor)
    order_service.soft_delete_order(db, order)
