from datetime import date, datetime

from pydantic import BaseModel, Field, field_validator

from retail_stock.models.batch import BatchStatus


class BatchCreate(BaseModel):
    product_id: str
    batch_code: str
    mfg_date: date | None = None
    expiry_date: date | None = None
    cost_price: float = Field(0.0, ge=0)
    unit_price: float = Field(0.0, ge=0)
    quantity: int = Field(0, ge=0)  # initial stock, booked to the warehouse
    location: str = ""
    notes: str = ""

    @field_validator("batch_code")
    @classmethod
    def normalize_code(cls, v: str) -> str:
        v = v.strip().upper()
        if not v:
            raise ValueError("Batch code is required")
        return v


class BatchDispose(BaseModel):
    reason: str = ""


class LocationUpdate(BaseModel):
    location: str = Field("", max_length=100)


class BalanceOut(BaseModel):
    id: str
    batch_id: str
    quantity_on_hand: int
    quantity_on_shelf: int
    total_quantity: int
    location: str
    updated_at: datetime

    model_config = {"from_attributes": True}


class BatchOut(BaseModel):
    id: str
    batch_code: str
    product_id: str
    mfg_date: date | None
    expiry_date: date | None
    cost_price: float
    unit_price: float
    promotion_applied: str
    discount_percentage: float
    status: BatchStatus
    notes: str
    is_expired: bool
    is_near_expiry: bool
    days_until_expiry: int | None
    inventory: BalanceOut | None = None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class ExpireRequest(BaseModel):
    as_of: date | None = None
