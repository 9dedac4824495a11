"""Low-stock alerting.

Called after every write to a SKU's quantity. Keeps at most one unresolved
alert per SKU and resolves it once the SKU is restocked above threshold.
Alert rows are never deleted.
"""

import logging
from datetime import datetime, timezone

from sqlalchemy.orm import Session

from storefront import events
from storefront.models.inventory import LowStockAlert
from storefront.models.product import Product, ProductVariant, StockStatus, compute_stock_status

logger = logging.getLogger(__name__)


def _unresolved(db: Session, sku: Product | ProductVariant):
    q = db.query(LowStockAlert).filter(
        LowStockAlert.product_id == sku.product_id,
        LowStockAlert.is_resolved.is_(False),
    )
    if sku.variant_id:
        return q.filter(LowStockAlert.variant_id == sku.variant_id)
    return q.filter(LowStockAlert.variant_id.is_(None))


def check_stock_level(db: Session, sku: Product | ProductVariant) -> LowStockAlert | None:
    """Raise or resolve the SKU's alert for its current quantity.

    Returns the alert created by this call, if any.
    """
    threshold = sku.effective_threshold
    status = compute_stock_status(sku.quantity, threshold)

    if status in (StockStatus.LOW_STOCK, StockStatus.OUT_OF_STOCK):
        if _unresolved(db, sku).first() is not None:
            return None
        alert = LowStockAlert(
            product_id=sku.product_id,
            variant_id=sku.variant_id,
            current_stock=sku.quantity,
            threshold=threshold,
        )
        db.add(alert)
        db.flush()
        logger.info("Low stock on %s: %d left (threshold %d)", sku.sku, sku.quantity, threshold)
        events.record(db, events.LowStockDetected(
            product_id=sku.product_id,
            variant_id=sku.variant_id,
            sku=sku.sku,
            current_stock=sku.quantity,
            threshold=threshold,
        ))
        return alert

    open_alerts = _unresolved(db, sku).all()
    if open_alerts:
        now = datetime.now(timezone.utc)
        for alert in open_alerts:
            alert.is_resolved = True
            alert.resolved_at = now
        db.flush()
        logger.info("Stock restored on %s: %d on hand, resolved %d alert(s)", sku.sku, sku.quantity, len(open_alerts))
        events.record(db, events.LowStockResolved(
            product_id=sku.product_id,
            variant_id=sku.variant_id,
            sku=sku.sku,
            current_stock=sku.quantity,
            threshold=threshold,
        ))
    return None


def list_alerts(db: Session, unresolved_only: bool = True) -> list[LowStockAlert]:
    q = db.query(LowStockAlert)
    if unresolved_only:
        q = q.filter(LowStockAlert.is_resolved.is_(False))
    return q.order_by(LowStockAlert.id.desc()).all()


def get_alert(db: Session, alert_id: int) -> LowStockAlert | None:
    return db.query(LowStockAlert).filter(LowStockAlert.id == alert_id).first()


def resolve_alert(db: Session, alert_id: int) -> LowStockAlert | None:
    alert = get_alert(db, alert_id)
    if not alert:
        return None
    if not alert.is_resolved:
        alert.is_resolved = True
        alert.resolved_at = datetime.now(timezone.utc)
        db.commit()
        db.refresh(alert)
    return alert
