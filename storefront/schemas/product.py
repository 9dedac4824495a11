import json
from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, Field, field_validator

from storefront.models.inventory import TransactionType


# --- Variant schemas ---

class VariantCreate(BaseModel):
    sku: str
    name: str = ""
    attributes: dict[str, str] = {}  # {"color": "Red", "size": "M"}
    price_override: Decimal | None = Field(default=None, ge=0)
    low_stock_threshold_override: int | None = Field(default=None, ge=0)
    quantity: int = Field(default=0, ge=0)
    is_active: bool = True


class VariantUpdate(BaseModel):
    name: str | None = None
    attributes: dict[str, str] | None = None
    price_override: Decimal | None = Field(default=None, ge=0)
    low_stock_threshold_override: int | None = Field(default=None, ge=0)
    is_active: bool | None = None

    @field_validator("name", "attributes", "is_active")
    @classmethod
    def not_null(cls, v):
        if v is None:
            raise ValueError("may not be null")
        return v


class VariantOut(BaseModel):
    id: str
    product_id: str
    sku: str
    name: str
    attributes: dict[str, str] = {}
    price_override: Decimal | None
    low_stock_threshold_override: int | None
    effective_price: Decimal
    effective_threshold: int
    is_active: bool
    quantity: int
    stock_status: str
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}

    @field_validator("attributes", mode="before")
    @classmethod
    def parse_attributes(cls, v):
        if isinstance(v, str):
            return json.loads(v)
        return v


# --- Product schemas ---

class ProductCreate(BaseModel):
    sku: str
    name: str
    description: str = ""
    price: Decimal = Field(default=Decimal("0.00"), ge=0)
    is_active: bool = True
    quantity: int = Field(default=0, ge=0)
    low_stock_threshold: int | None = Field(default=None, ge=0)  # None = config default
    variants: list[VariantCreate] = []


class ProductUpdate(BaseModel):
    name: str | None = None
    description: str | None = None
    price: Decimal | None = Field(default=None, ge=0)
    is_active: bool | None = None
    low_stock_threshold: int | None = Field(default=None, ge=0)

    @field_validator("name", "description", "price", "is_active", "low_stock_threshold")
    @classmethod
    def not_null(cls, v):
        if v is None:
            raise ValueError("may not be null")
        return v


class ProductOut(BaseModel):
    id: str
    sku: str
    name: str
    description: str
    price: Decimal
    is_active: bool
    quantity: int
    low_stock_threshold: int
    stock_status: str
    variants: list[VariantOut] = []
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


# --- Inventory schemas ---

class StockUpdate(BaseModel):
    """Manual ledger entry. For ``adjustment`` the quantity is the new absolute level."""

    type: TransactionType = TransactionType.ADJUSTMENT
    quantity: int = Field(ge=0)
    variant_id: str | None = None
    notes: str = ""


class StockLevelOut(BaseModel):
    product_id: str
    variant_id: str | None = None
    sku: str
    name: str
    quantity: int
    threshold: int
    stock_status: str


class InventoryTransactionOut(BaseModel):
    id: int
    product_id: str
    variant_id: str | None
    type: str
    quantity: int
    quantity_before: int
    quantity_after: int
    reference: str
    notes: str
    created_by: str | None
    created_at: datetime

    model_config = {"from_attributes": True}


class LowStockAlertOut(BaseModel):
    id: int
    product_id: str
    variant_id: str | None
    current_stock: int
    threshold: int
    is_resolved: bool
    resolved_at: datetime | None
    created_at: datetime

    model_config = {"from_attributes": True}


class LedgerDiscrepancyOut(BaseModel):
    product_id: str
    variant_id: str | None = None
    sku: str
    quantity: int
    ledger_quantity: int
