import uuid
from datetime import datetime
from enum import Enum as PyEnum

from sqlalchemy import CheckConstraint, DateTime, Enum, ForeignKey, Integer, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from retail_stock.database import Base


class DocumentKind(str, PyEnum):
    SALES_ORDER = "sales_order"
    STOCK_OUT = "stock_out"


class DocumentStatus(str, PyEnum):
    DRAFT = "draft"
    PENDING = "pending"
    APPROVED = "approved"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class StockOutReason(str, PyEnum):
    SALES = "sales"
    TRANSFER = "transfer"
    DAMAGE = "damage"
    EXPIRED = "expired"
    RETURN_TO_SUPPLIER = "return_to_supplier"
    INTERNAL_USE = "internal_use"
    OTHER = "other"


class StockDocument(Base):
    """A stock-moving document: a sales order or an administrative stock-out."""

    __tablename__ = "stock_documents"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    document_number: Mapped[str] = mapped_column(String, unique=True, index=True)
    kind: Mapped[str] = mapped_column(
        Enum(DocumentKind, values_callable=lambda x: [e.value for e in x]),
        nullable=False,
        index=True,
    )
    status: Mapped[str] = mapped_column(
        Enum(DocumentStatus, values_callable=lambda x: [e.value for e in x]),
        default=DocumentStatus.DRAFT,
        index=True,
    )
    status_history: Mapped[str] = mapped_column(Text, default="[]")  # JSON list of {status, timestamp, note}

    reason_code: Mapped[str] = mapped_column(
        Enum(StockOutReason, values_callable=lambda x: [e.value for e in x]),
        default=StockOutReason.SALES,
    )
    destination: Mapped[str] = mapped_column(String, default="")
    notes: Mapped[str] = mapped_column(Text, default="")
    created_by: Mapped[str | None] = mapped_column(String, nullable=True)

    completed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now(), onupdate=func.now())

    lines: Mapped[list["StockDocumentLine"]] = relationship(
        "StockDocumentLine",
        back_populates="document",
        cascade="all, delete-orphan",
        order_by="StockDocumentLine.position",
    )


class StockDocumentLine(Base):
    __tablename__ = "stock_document_lines"
    __table_args__ = (CheckConstraint("quantity >= 1", name="ck_stock_document_lines_quantity_positive"),)

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    document_id: Mapped[str] = mapped_column(String, ForeignKey("stock_documents.id"), nullable=False, index=True)
    product_id: Mapped[str] = mapped_column(String, ForeignKey("products.id"), nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    # Stock-out lines may name the batch to take from instead of using FEFO
    batch_id: Mapped[str | None] = mapped_column(String, ForeignKey("product_batches.id"), nullable=True)
    position: Mapped[int] = mapped_column(Integer, default=0)

    document: Mapped["StockDocument"] = relationship("StockDocument", back_populates="lines")
