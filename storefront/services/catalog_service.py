import json
from datetime import datetime, timezone

from sqlalchemy import or_, update
from sqlalchemy.orm import Session
from sqlalchemy.orm.attributes import set_committed_value

from storefront.config import settings
from storefront.database import atomic
from storefront.exceptions import NotFound
from storefront.models.inventory import InventoryTransaction, TransactionType
from storefront.models.product import Product, ProductVariant, StockStatus, compute_stock_status
from storefront.schemas.product import ProductCreate, ProductUpdate, VariantCreate, VariantUpdate
from storefront.services import stock_monitor

Sku = Product | ProductVariant


def _opening_stock(sku: Sku, actor_id: str | None) -> InventoryTransaction:
    return InventoryTransaction(
        product_id=sku.product_id,
        variant_id=sku.variant_id,
        type=TransactionType.PURCHASE.value,
        quantity=sku.quantity,
        quantity_before=0,
        quantity_after=sku.quantity,
        notes="Initial stock on creation",
        created_by=actor_id,
    )


def _new_variant(product: Product, data: VariantCreate) -> ProductVariant:
    variant = ProductVariant(
        sku=data.sku,
        name=data.name,
        attributes=json.dumps(data.attributes),
        price_override=data.price_override,
        low_stock_threshold_override=data.low_stock_threshold_override,
        quantity=data.quantity,
        is_active=data.is_active,
    )
    product.variants.append(variant)
    variant.stock_status = compute_stock_status(variant.quantity, variant.effective_threshold).value
    return variant


def _ensure_unique_sku(db: Session, sku: str) -> None:
    if get_product_by_sku(db, sku) or get_variant_by_sku(db, sku):
        raise ValueError(f"SKU {sku} already exists")


def _ensure_distinct_skus(data: ProductCreate) -> None:
    seen = set()
    for sku in [data.sku, *(v.sku for v in data.variants)]:
        if sku in seen:
            raise ValueError(f"SKU {sku} is used more than once")
        seen.add(sku)


def create_product(db: Session, data: ProductCreate, actor_id: str | None = None, dispatcher=None) -> Product:
    _ensure_distinct_skus(data)
    with atomic(db, dispatcher):
        _ensure_unique_sku(db, data.sku)
        threshold = data.low_stock_threshold
        if threshold is None:
            threshold = settings.DEFAULT_LOW_STOCK_THRESHOLD
        product = Product(
            sku=data.sku,
            name=data.name,
            description=data.description,
            price=data.price,
            is_active=data.is_active,
            quantity=data.quantity,
            low_stock_threshold=threshold,
            stock_status=compute_stock_status(data.quantity, threshold).value,
        )
        db.add(product)

        for v_data in data.variants:
            _ensure_unique_sku(db, v_data.sku)
            _new_variant(product, v_data)

        db.flush()

        for sku in [product, *product.variants]:
            if sku.quantity > 0:
                db.add(_opening_stock(sku, actor_id))
                stock_monitor.check_stock_level(db, sku)
    db.refresh(product)
    return product


def get_product(db: Session, product_id: str, include_deleted: bool = False) -> Product | None:
    q = db.query(Product).filter(Product.id == product_id)
    if not include_deleted:
        q = q.filter(Product.deleted_at.is_(None))
    return q.first()


def get_product_by_sku(db: Session, sku: str) -> Product | None:
    # Deleted products keep their SKU reserved
    return db.query(Product).filter(Product.sku == sku).first()


def list_products(
    db: Session,
    skip: int = 0,
    limit: int = 100,
    active_only: bool = False,
    stock_status: StockStatus | None = None,
    search: str | None = None,
) -> list[Product]:
    q = db.query(Product).filter(Product.deleted_at.is_(None))
    if active_only:
        q = q.filter(Product.is_active.is_(True))
    if stock_status:
        q = q.filter(Product.stock_status == stock_status.value)
    if search:
        pattern = f"%{search}%"
        q = q.filter(or_(Product.name.like(pattern), Product.sku.like(pattern)))
    return q.order_by(Product.created_at.desc()).offset(skip).limit(limit).all()


def soft_delete_product(db: Session, product_id: str) -> Product | None:
    """Hide a product from the catalog. Its ledger and past orders keep pointing at it."""
    product = get_product(db, product_id)
    if not product:
        return None
    product.deleted_at = datetime.now(timezone.utc)
    db.commit()
    db.refresh(product)
    return product


def update_product(db: Session, product_id: str, data: ProductUpdate, dispatcher=None) -> Product | None:
    product = get_product(db, product_id)
    if not product:
        return None
    update_data = data.model_dump(exclude_unset=True)
    with atomic(db, dispatcher):
        for field, value in update_data.items():
            setattr(product, field, value)
        if "low_stock_threshold" in update_data:
            # Thresholds moved, so re-classify the product and variants that inherit it
            for sku in [product, *product.variants]:
                sku.stock_status = compute_stock_status(sku.quantity, sku.effective_threshold).value
                db.flush()
                stock_monitor.check_stock_level(db, sku)
    db.refresh(product)
    return product


# --- Variant service ---

def create_variant(
    db: Session, product_id: str, data: VariantCreate, actor_id: str | None = None, dispatcher=None
) -> ProductVariant | None:
    product = get_product(db, product_id)
    if not product:
        return None
    with atomic(db, dispatcher):
        _ensure_unique_sku(db, data.sku)
        variant = _new_variant(product, data)
        db.flush()
        if variant.quantity > 0:
            db.add(_opening_stock(variant, actor_id))
            stock_monitor.check_stock_level(db, variant)
    db.refresh(variant)
    return variant


def get_variant(db: Session, variant_id: str) -> ProductVariant | None:
    return db.query(ProductVariant).filter(ProductVariant.id == variant_id).first()


def get_variant_by_sku(db: Session, sku: str) -> ProductVariant | None:
    return db.query(ProductVariant).filter(ProductVariant.sku == sku).first()


def update_variant(db: Session, variant_id: str, data: VariantUpdate, dispatcher=None) -> ProductVariant | None:
    variant = get_variant(db, variant_id)
    if not variant:
        return None
    update_data = data.model_dump(exclude_unset=True)
    if "attributes" in update_data:
        update_data["attributes"] = json.dumps(update_data["attributes"])
    with atomic(db, dispatcher):
        for field, value in update_data.items():
            setattr(variant, field, value)
        if "low_stock_threshold_override" in update_data:
            variant.stock_status = compute_stock_status(variant.quantity, variant.effective_threshold).value
            db.flush()
            stock_monitor.check_stock_level(db, variant)
    db.refresh(variant)
    return variant


# --- SKU access used by the ledger and the order engine ---

def get_sku(db: Session, product_id: str, variant_id: str | None = None, for_update: bool = False) -> Sku:
    """Load the stocked record for a product or one of its variants.

    With ``for_update`` the row is re-read under a row lock (a no-op on
    SQLite, where writes are serialized by the database lock instead).
    """
    if variant_id:
        q = db.query(ProductVariant).filter(
            ProductVariant.id == variant_id,
            ProductVariant.product_id == product_id,
        )
    else:
        q = db.query(Product).filter(Product.id == product_id)
    if for_update:
        q = q.with_for_update().populate_existing()
    sku = q.first()
    if sku is None:
        if variant_id:
            raise NotFound(f"Variant {variant_id} not found for product {product_id}")
        raise NotFound(f"Product {product_id} not found")
    return sku


def persist_quantity(db: Session, sku: Sku, expected: int, new_quantity: int) -> bool:
    """Compare-and-set the quantity of ``sku``.

    The row is only written when its stored quantity still equals
    ``expected``; returns False when another writer got there first.
    """
    model = type(sku)
    status = compute_stock_status(new_quantity, sku.effective_threshold)
    result = db.execute(
        update(model)
        .where(model.id == sku.id, model.quantity == expected)
        .values(quantity=new_quantity, stock_status=status.value)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        return False
    set_committed_value(sku, "quantity", new_quantity)
    set_committed_value(sku, "stock_status", status.value)
    return True


def list_stock_levels(db: Session, statuses: tuple[StockStatus, ...]) -> list[dict]:
    values = [s.value for s in statuses]
    levels = []
    products = (
        db.query(Product)
        .filter(Product.stock_status.in_(values), Product.deleted_at.is_(None))
        .order_by(Product.quantity)
        .all()
    )
    for product in products:
        levels.append(_stock_level(product))
    variants = (
        db.query(ProductVariant)
        .join(Product)
        .filter(ProductVariant.stock_status.in_(values), Product.deleted_at.is_(None))
        .order_by(ProductVariant.quantity)
        .all()
    )
    for variant in variants:
        levels.append(_stock_level(variant))
    return levels


def _stock_level(sku: Sku) -> dict:
    return {
        "product_id": sku.product_id,
        "variant_id": sku.variant_id,
        "sku": sku.sku,
        "name": sku.display_name,
        "quantity": sku.quantity,
        "threshold": sku.effective_threshold,
        "stock_status": sku.stock_status,
    }
