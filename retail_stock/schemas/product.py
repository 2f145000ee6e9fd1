from datetime import datetime

from pydantic import BaseModel, Field


class ProductOut(BaseModel):
    id: str
    code: str
    name: str
    unit_of_measure: str
    reorder_point: int
    created_at: datetime

    model_config = {"from_attributes": True}


class ReorderPointUpdate(BaseModel):
    reorder_point: int = Field(..., ge=0)


class ProductStockOut(BaseModel):
    product_id: str
    code: str
    name: str
    quantity_on_hand: int
    quantity_on_shelf: int
    total_quantity: int
    active_batches: int
    reorder_point: int
    needs_reorder: bool
    is_out_of_stock: bool
    is_low_stock: bool
