import uuid
from datetime import datetime
from decimal import Decimal
from enum import Enum as PyEnum

from sqlalchemy import Boolean, DateTime, ForeignKey, Integer, Numeric, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from storefront.config import settings
from storefront.database import Base


class StockStatus(str, PyEnum):
    IN_STOCK = "in_stock"
    LOW_STOCK = "low_stock"
    OUT_OF_STOCK = "out_of_stock"


def compute_stock_status(quantity: int, threshold: int) -> StockStatus:
    if quantity <= 0:
        return StockStatus.OUT_OF_STOCK
    if quantity <= threshold:
        return StockStatus.LOW_STOCK
    return StockStatus.IN_STOCK


class Product(Base):
    __tablename__ = "products"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    sku: Mapped[str] = mapped_column(String, unique=True, index=True)
    name: Mapped[str] = mapped_column(String, nullable=False)
    description: Mapped[str] = mapped_column(Text, default="")
    price: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=Decimal("0.00"))
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    quantity: Mapped[int] = mapped_column(Integer, default=0)
    low_stock_threshold: Mapped[int] = mapped_column(
        Integer, default=lambda: settings.DEFAULT_LOW_STOCK_THRESHOLD
    )
    stock_status: Mapped[str] = mapped_column(String, default=StockStatus.OUT_OF_STOCK.value, index=True)
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now(), onupdate=func.now())

    variants: Mapped[list["ProductVariant"]] = relationship(
        "ProductVariant", back_populates="product", cascade="all, delete-orphan"
    )

    @property
    def product_id(self) -> str:
        return self.id

    @property
    def variant_id(self) -> str | None:
        return None

    @property
    def effective_price(self) -> Decimal:
        return self.price

    @property
    def effective_threshold(self) -> int:
        return self.low_stock_threshold

    @property
    def display_name(self) -> str:
        return self.name

    @property
    def available(self) -> bool:
        return self.is_active and self.deleted_at is None


class ProductVariant(Base):
    __tablename__ = "product_variants"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    product_id: Mapped[str] = mapped_column(String, ForeignKey("products.id"), nullable=False, index=True)
    sku: Mapped[str] = mapped_column(String, unique=True, index=True)
    name: Mapped[str] = mapped_column(String, default="")

    # Attributes as JSON, e.g. '{"color":"Red","size":"M"}'
    attributes: Mapped[str] = mapped_column(Text, default="{}")

    # Override parent product values (NULL = use parent)
    price_override: Mapped[Decimal | None] = mapped_column(Numeric(10, 2), nullable=True)
    low_stock_threshold_override: Mapped[int | None] = mapped_column(Integer, nullable=True)

    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    quantity: Mapped[int] = mapped_column(Integer, default=0)
    stock_status: Mapped[str] = mapped_column(String, default=StockStatus.OUT_OF_STOCK.value, index=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now(), onupdate=func.now())

    product: Mapped["Product"] = relationship("Product", back_populates="variants")

    @property
    def variant_id(self) -> str:
        return self.id

    @property
    def effective_price(self) -> Decimal:
        return self.price_override if self.price_override is not None else self.product.price

    @property
    def effective_threshold(self) -> int:
        if self.low_stock_threshold_override is not None:
            return self.low_stock_threshold_override
        return self.product.low_stock_threshold

    @property
    def display_name(self) -> str:
        return f"{self.product.name} ({self.name})" if self.name else self.product.name

    @property
    def available(self) -> bool:
        return self.is_active and self.product.available
