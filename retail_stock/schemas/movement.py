from datetime import date, datetime
from typing import Literal

from pydantic import BaseModel, Field, field_validator, model_validator

from retail_stock.models.movement import MovementType
from retail_stock.services.batch_registry import StockField
from retail_stock.services.movement_service import RESERVED_CORRELATION_PREFIXES, DebitSource


class MovementLineIn(BaseModel):
    batch_id: str
    inventory_detail_id: str | None = None
    quantity: int
    field: StockField | None = None


class MovementCreate(BaseModel):
    """Manual movement: the caller names batches explicitly, no FEFO."""

    movement_type: MovementType
    lines: list[MovementLineIn] = Field(..., min_length=1)
    debit_source: DebitSource | None = None
    reason: str = Field("", max_length=200)
    notes: str = Field("", max_length=500)
    correlation_id: str | None = None

    @field_validator("correlation_id")
    @classmethod
    def check_correlation_id(cls, v: str | None) -> str | None:
        if v is None:
            return v
        v = v.strip()
        if not v:
            return None
        if v.startswith(RESERVED_CORRELATION_PREFIXES):
            raise ValueError(f"Correlation ids starting with {', '.join(RESERVED_CORRELATION_PREFIXES)} are reserved")
        return v

    @model_validator(mode="after")
    def default_debit_source(self):
        if self.movement_type == MovementType.OUT and self.debit_source is None:
            self.debit_source = DebitSource.SHELF_THEN_HAND
        return self


class BulkTransferItem(BaseModel):
    batch_id: str
    inventory_detail_id: str | None = None
    quantity: int = Field(..., gt=0)


class BulkTransferCreate(BaseModel):
    transfers: list[BulkTransferItem] = Field(..., min_length=1)
    direction: Literal["to_shelf", "to_warehouse"]
    reason: str = Field("", max_length=200)
    notes: str = Field("", max_length=500)


class ReversalCreate(BaseModel):
    reason: str = Field("", max_length=200)


class MovementOut(BaseModel):
    id: str
    movement_number: str
    batch_id: str
    inventory_detail_id: str
    movement_type: MovementType
    quantity: int
    delta_on_hand: int
    delta_on_shelf: int
    signed_quantity: int
    reason: str
    notes: str
    actor_id: str | None
    document_id: str | None
    reversal_of_id: str | None
    line_index: int
    occurred_at: datetime

    model_config = {"from_attributes": True}


class AllocationRequest(BaseModel):
    product_id: str
    quantity: int = Field(..., gt=0)
    source: StockField = StockField.ON_SHELF


class FefoCandidateOut(BaseModel):
    batch_id: str
    batch_code: str
    expiry_date: date | None
    available: int
    unit_price: float
