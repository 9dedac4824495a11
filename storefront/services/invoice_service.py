import logging
import os
import uuid
from datetime import datetime, timezone
from typing import Protocol

from sqlalchemy.orm import Session, sessionmaker

from storefront.config import settings
from storefront.events import OrderCreated
from storefront.models.invoice import OrderInvoice

logger = logging.getLogger(__name__)


class DocumentRenderer(Protocol):
    def render_invoice(self, invoice_number: str, order: OrderCreated) -> str:
        """Render the invoice and return a handle (path) to the document."""
        ...


class TextInvoiceRenderer:
    """Writes a plain-text invoice into ``output_dir``."""

    def __init__(self, output_dir: str | None = None):
        self.output_dir = output_dir or settings.INVOICE_DIR

    def render_invoice(self, invoice_number: str, order: OrderCreated) -> str:
        os.makedirs(self.output_dir, exist_ok=True)
        path = os.path.join(self.output_dir, f"{order.order_number}-{invoice_number}.txt")
        with open(path, "w", encoding="utf-8") as fh:
            fh.write(_format_invoice(invoice_number, order))
        return path


def _format_invoice(invoice_number: str, order: OrderCreated) -> str:
    lines = [
        f"Invoice {invoice_number}",
        f"Order {order.order_number}",
        f"Date {order.occurred_at:%Y-%m-%d}",
        f"Bill to {order.shipping_name} <{order.shipping_email}>",
        "",
    ]
    for line in order.lines:
        lines.append(f"{line.sku:<20} {line.product_name:<30} {line.quantity:>4} x {line.unit_price:>10} = {line.line_total:>10}")
    lines += [
        "",
        f"{'Subtotal':<58} {order.subtotal:>10}",
        f"{'Tax':<58} {order.tax:>10}",
        f"{'Shipping':<58} {order.shipping_fee:>10}",
        f"{'Discount':<58} {-order.discount:>10}",
        f"{'Total':<58} {order.total_amount:>10}",
    ]
    return "\n".join(lines) + "\n"


def _generate_invoice_number() -> str:
    day = datetime.now(timezone.utc).strftime("%Y%m%d")
    short = uuid.uuid4().hex[:6].upper()
    return f"INV-{day}-{short}"


def new_invoice_number(db: Session) -> str:
    while True:
        number = _generate_invoice_number()
        if not db.query(OrderInvoice).filter(OrderInvoice.invoice_number == number).first():
            return number


class InvoiceGenerator:
    """Generates the invoice for a committed order.

    Subscribed to ``OrderCreated``; uses its own session because it runs
    after the order's unit of work has closed.
    """

    def __init__(self, session_factory: sessionmaker, renderer: DocumentRenderer | None = None):
        self.session_factory = session_factory
        self.renderer = renderer or TextInvoiceRenderer()

    def __call__(self, event: OrderCreated) -> OrderInvoice:
        return self.generate(event)

    def generate(self, event: OrderCreated) -> OrderInvoice:
        db = self.session_factory()
        try:
            invoice_number = new_invoice_number(db)
            path = self.renderer.render_invoice(invoice_number, event)
            invoice = OrderInvoice(order_id=event.order_id, invoice_number=invoice_number, file_path=path)
            db.add(invoice)
            db.commit()
            db.refresh(invoice)
            logger.info("Invoice %s generated for order %s", invoice_number, event.order_number)
            return invoice
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()


def get_latest_invoice(db: Session, order_id: str) -> OrderInvoice | None:
    return (
        db.query(OrderInvoice)
        .filter(OrderInvoice.order_id == order_id)
        .order_by(OrderInvoice.generated_at.desc())
        .first()
    )
