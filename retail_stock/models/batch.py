import uuid
from datetime import date, datetime
from enum import Enum as PyEnum

from sqlalchemy import CheckConstraint, Date, DateTime, Enum, Float, ForeignKey, Integer, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from retail_stock.config import settings
from retail_stock.database import Base


class BatchStatus(str, PyEnum):
    ACTIVE = "active"
    EXPIRED = "expired"
    DISPOSED = "disposed"


class Batch(Base):
    """One procured lot of a product. Quantities live on its InventoryDetail."""

    __tablename__ = "product_batches"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    batch_code: Mapped[str] = mapped_column(String, unique=True, index=True)
    product_id: Mapped[str] = mapped_column(String, ForeignKey("products.id"), nullable=False, index=True)

    mfg_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    expiry_date: Mapped[date | None] = mapped_column(Date, nullable=True, index=True)

    cost_price: Mapped[float] = mapped_column(Float, default=0.0)
    unit_price: Mapped[float] = mapped_column(Float, default=0.0)

    # Promotion metadata, maintained by the promotion scheduler
    promotion_applied: Mapped[str] = mapped_column(String, default="none")
    discount_percentage: Mapped[float] = mapped_column(Float, default=0.0)

    status: Mapped[str] = mapped_column(
        Enum(BatchStatus, values_callable=lambda x: [e.value for e in x]),
        default=BatchStatus.ACTIVE,
        index=True,
    )
    notes: Mapped[str] = mapped_column(Text, default="")

    # Creation order, FEFO tie-break for equal expiry dates
    seq: Mapped[int] = mapped_column(Integer, default=0, index=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now(), onupdate=func.now())

    product: Mapped["Product"] = relationship("Product", back_populates="batches")  # noqa: F821
    inventory: Mapped["InventoryDetail"] = relationship(
        "InventoryDetail", back_populates="batch", uselist=False, cascade="all, delete-orphan"
    )

    @property
    def is_expired(self) -> bool:
        if not self.expiry_date:
            return False
        return date.today() > self.expiry_date

    @property
    def days_until_expiry(self) -> int | None:
        if not self.expiry_date:
            return None
        return (self.expiry_date - date.today()).days

    @property
    def is_near_expiry(self) -> bool:
        days = self.days_until_expiry
        return days is not None and 0 < days <= settings.NEAR_EXPIRY_DAYS


class InventoryDetail(Base):
    """Physical balance of one batch, split between warehouse and shelf.

    Written only through batch_registry.adjust_balances.
    """

    __tablename__ = "inventory_details"
    __table_args__ = (
        CheckConstraint("quantity_on_hand >= 0", name="ck_inventory_details_on_hand_non_negative"),
        CheckConstraint("quantity_on_shelf >= 0", name="ck_inventory_details_on_shelf_non_negative"),
    )

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    batch_id: Mapped[str] = mapped_column(String, ForeignKey("product_batches.id"), unique=True, nullable=False)

    quantity_on_hand: Mapped[int] = mapped_column(Integer, default=0)  # warehouse, not sellable
    quantity_on_shelf: Mapped[int] = mapped_column(Integer, default=0)  # sellable now

    location: Mapped[str] = mapped_column(String, default="")
    updated_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now(), onupdate=func.now())

    batch: Mapped["Batch"] = relationship("Batch", back_populates="inventory")

    @property
    def total_quantity(self) -> int:
        return self.quantity_on_hand + self.quantity_on_shelf
