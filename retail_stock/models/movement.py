import uuid
from datetime import datetime
from enum import Enum as PyEnum

from sqlalchemy import DateTime, Enum, ForeignKey, Integer, String, Text, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from retail_stock.database import Base


class MovementType(str, PyEnum):
    IN = "in"
    OUT = "out"
    ADJUSTMENT = "adjustment"
    TRANSFER = "transfer"
    AUDIT = "audit"


class MovementLedgerEntry(Base):
    """Immutable record of one stock change on one batch.

    delta_on_hand / delta_on_shelf are the realized balance changes; summed per
    batch they reconcile to the batch's InventoryDetail.
    """

    __tablename__ = "inventory_movements"
    __table_args__ = (
        UniqueConstraint("correlation_id", "line_index", name="uq_inventory_movements_correlation_line"),
    )

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    movement_number: Mapped[str] = mapped_column(String, unique=True, index=True)
    batch_id: Mapped[str] = mapped_column(String, ForeignKey("product_batches.id"), nullable=False, index=True)
    inventory_detail_id: Mapped[str] = mapped_column(String, ForeignKey("inventory_details.id"), nullable=False)

    movement_type: Mapped[str] = mapped_column(
        Enum(MovementType, values_callable=lambda x: [e.value for e in x]),
        nullable=False,
        index=True,
    )
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)  # as requested; sign depends on type
    delta_on_hand: Mapped[int] = mapped_column(Integer, default=0)
    delta_on_shelf: Mapped[int] = mapped_column(Integer, default=0)

    reason: Mapped[str] = mapped_column(String, default="")  # display text only
    notes: Mapped[str] = mapped_column(Text, default="")
    actor_id: Mapped[str | None] = mapped_column(String, nullable=True, index=True)  # None = system
    document_id: Mapped[str | None] = mapped_column(String, nullable=True, index=True)

    # Caller-supplied id of the apply() call; one entry per (correlation_id, line_index)
    correlation_id: Mapped[str | None] = mapped_column(String, nullable=True, index=True)
    line_index: Mapped[int] = mapped_column(Integer, default=0)
    reversal_of_id: Mapped[str | None] = mapped_column(
        String, ForeignKey("inventory_movements.id"), nullable=True, index=True
    )

    occurred_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now(), index=True)

    batch: Mapped["Batch"] = relationship("Batch")  # noqa: F821

    @property
    def signed_quantity(self) -> int:
        return self.delta_on_hand + self.delta_on_shelf
