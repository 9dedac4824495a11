"""Stock ledger.

Every change to a SKU's quantity goes through ``apply_transaction``, which
writes the new quantity with a compare-and-set under a row lock and appends
an ``InventoryTransaction`` recording the before and after levels. The
functions here never commit: they run inside the caller's unit of work so an
order and its stock movements land or roll back together.
"""

import logging

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from storefront.config import settings
from storefront.database import atomic
from storefront.exceptions import ConcurrentUpdateError, InsufficientStock, OrderValidationError
from storefront.models.inventory import InventoryTransaction, TransactionType
from storefront.models.product import Product, ProductVariant
from storefront.services import catalog_service, stock_monitor

logger = logging.getLogger(__name__)

Sku = Product | ProductVariant


def compute_new_quantity(current: int, quantity: int, txn_type: TransactionType | str) -> int:
    """Apply a ledger entry to ``current``.

    ``adjustment`` sets the level to ``quantity`` outright; every other type
    moves it by ``quantity``.
    """
    txn_type = TransactionType(txn_type)
    if txn_type in (TransactionType.PURCHASE, TransactionType.RETURN):
        return current + quantity
    if txn_type in (TransactionType.SALE, TransactionType.DAMAGE):
        return current - quantity
    return quantity


def apply_transaction(
    db: Session,
    sku: Sku,
    txn_type: TransactionType,
    quantity: int,
    actor_id: str | None = None,
    notes: str = "",
    reference: str = "",
    require_active: bool = False,
) -> InventoryTransaction:
    if quantity < 0 or (quantity == 0 and txn_type != TransactionType.ADJUSTMENT):
        raise OrderValidationError(f"Invalid {txn_type.value} quantity {quantity} for {sku.sku}")

    for attempt in range(1, settings.STOCK_WRITE_RETRIES + 1):
        locked = catalog_service.get_sku(db, sku.product_id, sku.variant_id, for_update=True)
        before = locked.quantity
        if require_active and not locked.available:
            raise InsufficientStock(locked.sku, 0, quantity)
        after = compute_new_quantity(before, quantity, txn_type)
        if after < 0:
            raise InsufficientStock(locked.sku, before, quantity)

        if catalog_service.persist_quantity(db, locked, before, after):
            break
        logger.warning(
            "Stock for %s changed during %s (attempt %d/%d), retrying",
            locked.sku, txn_type.value, attempt, settings.STOCK_WRITE_RETRIES,
        )
    else:
        raise ConcurrentUpdateError(f"Stock for {sku.sku} kept changing, gave up after {settings.STOCK_WRITE_RETRIES} attempts")

    txn = InventoryTransaction(
        product_id=locked.product_id,
        variant_id=locked.variant_id,
        type=txn_type.value,
        quantity=quantity,
        quantity_before=before,
        quantity_after=after,
        reference=reference,
        notes=notes,
        created_by=actor_id,
    )
    db.add(txn)
    db.flush()
    logger.debug("Ledger %s %s: %d -> %d", txn_type.value, locked.sku, before, after)

    stock_monitor.check_stock_level(db, locked)
    return txn


def reserve(db: Session, sku: Sku, quantity: int, actor_id: str | None = None, reference: str = "") -> InventoryTransaction:
    """Take ``quantity`` units for an order line. Inactive SKUs have nothing to sell."""
    return apply_transaction(
        db, sku, TransactionType.SALE, quantity,
        actor_id=actor_id, notes="Order placement", reference=reference, require_active=True,
    )


def restore(
    db: Session, sku: Sku, quantity: int, reason: str = "Order cancellation",
    actor_id: str | None = None, reference: str = "",
) -> InventoryTransaction:
    return apply_transaction(
        db, sku, TransactionType.RETURN, quantity, actor_id=actor_id, notes=reason, reference=reference,
    )


def adjust(db: Session, sku: Sku, new_quantity: int, actor_id: str | None = None, notes: str = "") -> InventoryTransaction:
    return apply_transaction(db, sku, TransactionType.ADJUSTMENT, new_quantity, actor_id=actor_id, notes=notes)


def update_stock(
    db: Session,
    product_id: str,
    quantity: int,
    txn_type: TransactionType = TransactionType.ADJUSTMENT,
    notes: str = "",
    variant_id: str | None = None,
    actor_id: str | None = None,
    dispatcher=None,
) -> InventoryTransaction:
    """Record a manual stock movement in its own unit of work."""
    with atomic(db, dispatcher):
        sku = catalog_service.get_sku(db, product_id, variant_id)
        if txn_type == TransactionType.ADJUSTMENT:
            txn = adjust(db, sku, quantity, actor_id=actor_id, notes=notes)
        else:
            txn = apply_transaction(db, sku, txn_type, quantity, actor_id=actor_id, notes=notes)
    db.refresh(txn)
    return txn


def get_inventory_history(
    db: Session, product_id: str, variant_id: str | None = None, limit: int | None = None
) -> list[InventoryTransaction]:
    q = db.query(InventoryTransaction).filter(InventoryTransaction.product_id == product_id)
    if variant_id:
        q = q.filter(InventoryTransaction.variant_id == variant_id)
    return q.order_by(InventoryTransaction.id.desc()).limit(limit or settings.INVENTORY_HISTORY_LIMIT).all()


def latest_transaction(db: Session, sku: Sku) -> InventoryTransaction | None:
    q = db.query(InventoryTransaction).filter(InventoryTransaction.product_id == sku.product_id)
    if sku.variant_id:
        q = q.filter(InventoryTransaction.variant_id == sku.variant_id)
    else:
        q = q.filter(InventoryTransaction.variant_id.is_(None))
    return q.order_by(InventoryTransaction.id.desc()).first()


def find_ledger_discrepancies(db: Session) -> list[dict]:
    """List SKUs whose stored quantity disagrees with their latest ledger entry."""
    latest_ids = select(func.max(InventoryTransaction.id)).group_by(
        InventoryTransaction.product_id, InventoryTransaction.variant_id
    )
    discrepancies = []
    for txn in db.query(InventoryTransaction).filter(InventoryTransaction.id.in_(latest_ids)).all():
        sku = catalog_service.get_sku(db, txn.product_id, txn.variant_id)
        if sku.quantity != txn.quantity_after:
            discrepancies.append({
                "product_id": sku.product_id,
                "variant_id": sku.variant_id,
                "sku": sku.sku,
                "quantity": sku.quantity,
                "ledger_quantity": txn.quantity_after,
            })
    return discrepancies
