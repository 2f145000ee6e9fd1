import json
from datetime import datetime

from pydantic import BaseModel, Field, field_validator

from retail_stock.models.document import DocumentKind, DocumentStatus, StockOutReason


class DocumentLineIn(BaseModel):
    product_id: str
    quantity: int = Field(..., ge=1)
    batch_id: str | None = None


class DocumentCreate(BaseModel):
    kind: DocumentKind
    reason_code: StockOutReason = StockOutReason.SALES
    destination: str = Field("", max_length=200)
    notes: str = Field("", max_length=1000)
    lines: list[DocumentLineIn] = []


class DocumentLinesUpdate(BaseModel):
    lines: list[DocumentLineIn]


class StatusNote(BaseModel):
    note: str = ""


class DocumentLineOut(BaseModel):
    id: str
    product_id: str
    quantity: int
    batch_id: str | None
    position: int

    model_config = {"from_attributes": True}


class DocumentOut(BaseModel):
    id: str
    document_number: str
    kind: DocumentKind
    status: DocumentStatus
    status_history: list[dict] = []
    reason_code: StockOutReason
    destination: str
    notes: str
    created_by: str | None
    completed_at: datetime | None
    lines: list[DocumentLineOut] = []
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}

    @field_validator("status_history", mode="before")
    @classmethod
    def parse_history(cls, v):
        if isinstance(v, str):
            return json.loads(v)
        return v
