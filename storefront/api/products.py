from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from storefront.api.deps import get_dispatcher, require
from storefront.database import get_db
from storefront.exceptions import ConcurrentUpdateError, NotFound
from storefront.identity import MANAGE_CATALOG, MANAGE_INVENTORY, Actor
from storefront.models.product import StockStatus
from storefront.schemas.product import (
    InventoryTransactionOut,
    ProductCreate,
    ProductOut,
    ProductUpdate,
    StockLevelOut,
    StockUpdate,
    VariantCreate,
    VariantOut,
    VariantUpdate,
)
from storefront.services import catalog_service, inventory_service

router = APIRouter(prefix="/products", tags=["Products"])


@router.post("", response_model=ProductOut, status_code=201)
def create_product(
    data: ProductCreate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require(MANAGE_CATALOG)),
    dispatcher=Depends(get_dispatcher),
):
    try:
        return catalog_service.create_product(db, data, actor_id=actor.id, dispatcher=dispatcher)
    except ValueError as e:
        raise HTTPException(400, str(e))


@router.get("", response_model=list[ProductOut])
def list_products(
    skip: int = 0,
    limit: int = 100,
    active_only: bool = False,
    stock_status: StockStatus | None = None,
    search: str | None = None,
    db: Session = Depends(get_db),
):
    return catalog_service.list_products(
        db, skip=skip, limit=limit, active_only=active_only, stock_status=stock_status, search=search
    )


@router.get("/low-stock", response_model=list[StockLevelOut])
def low_stock(include_out_of_stock: bool = True, db: Session = Depends(get_db)):
    statuses = (StockStatus.LOW_STOCK, StockStatus.OUT_OF_STOCK) if include_out_of_stock else (StockStatus.LOW_STOCK,)
    return catalog_service.list_stock_levels(db, statuses)


@router.get("/{product_id}", response_model=ProductOut)
def get_product(product_id: str, db: Session = Depends(get_db)):
    product = catalog_service.get_product(db, product_id)
    if not product:
        raise HTTPException(404, "Product not found")
    return product


@router.patch("/{product_id}", response_model=ProductOut)
def update_product(
    product_id: str,
    data: ProductUpdate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require(MANAGE_CATALOG)),
    dispatcher=Depends(get_dispatcher),
):
    product = catalog_service.update_product(db, product_id, data, dispatcher=dispatcher)
    if not product:
        raise HTTPException(404, "Product not found")
    return product


@router.delete("/{product_id}", status_code=204)
def delete_product(product_id: str, db: Session = Depends(get_db), actor: Actor = Depends(require(MANAGE_CATALOG))):
    if not catalog_service.soft_delete_product(db, product_id):
        raise HTTPException(404, "Product not found")


@router.put("/{product_id}/inventory", response_model=InventoryTransactionOut)
def update_inventory(
    product_id: str,
    data: StockUpdate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require(MANAGE_INVENTORY)),
    dispatcher=Depends(get_dispatcher),
):
    try:
        return inventory_service.update_stock(
            db,
            product_id,
            data.quantity,
            txn_type=data.type,
            notes=data.notes,
            variant_id=data.variant_id,
            actor_id=actor.id,
            dispatcher=dispatcher,
        )
    except NotFound as e:
        raise HTTPException(404, str(e))
    except ValueError as e:
        raise HTTPException(422, str(e))
    except ConcurrentUpdateError as e:
        raise HTTPException(409, str(e))


@router.get("/{product_id}/inventory-history", response_model=list[InventoryTransactionOut])
def inventory_history(
    product_id: str,
    variant_id: str | None = None,
    limit: int | None = None,
    db: Session = Depends(get_db),
):
    if not catalog_service.get_product(db, product_id):
        raise HTTPException(404, "Product not found")
    return inventory_service.get_inventory_history(db, product_id, variant_id=variant_id, limit=limit)


# --- Variant endpoints ---

@router.post("/{product_id}/variants", response_model=VariantOut, status_code=201)
def create_variant(
    product_id: str,
    data: VariantCreate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require(MANAGE_CATALOG)),
    dispatcher=Depends(get_dispatcher),
):
    try:
        variant = catalog_service.create_variant(db, product_id, data, actor_id=actor.id, dispatcher=dispatcher)
    except ValueError as e:
        raise HTTPException(400, str(e))
    if not variant:
        raise HTTPException(404, "Product not found")
    return variant


@router.get("/{product_id}/variants", response_model=list[VariantOut])
def list_variants(product_id: str, db: Session = Depends(get_db)):
    product = catalog_service.get_product(db, product_id)
    if not product:
        raise HTTPException(404, "Product not found")
    return product.variants


@router.patch("/variants/{variant_id}", response_model=VariantOut)
def update_variant(
    variant_id: str,
    data: VariantUpdate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require(MANAGE_CATALOG)),
    dispatcher=Depends(get_dispatcher),
):
    variant = catalog_service.update_variant(db, variant_id, data, dispatcher=dispatcher)
    if not variant:
        raise HTTPException(404, "Variant not found")
    return variant
