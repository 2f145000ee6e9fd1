from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from retail_stock.database import get_db
from retail_stock.models.product import Product
from retail_stock.schemas.movement import AllocationRequest
from retail_stock.services import allocator

router = APIRouter(prefix="/allocations", tags=["Allocations"])


@router.post("")
def plan_allocation(data: AllocationRequest, db: Session = Depends(get_db)):
    """Dry run: which batches FEFO would take. Nothing is written."""
    if not db.query(Product).filter(Product.id == data.product_id).first():
        raise HTTPException(404, "Product not found")
    return allocator.allocate(db, data.product_id, data.quantity, data.source).to_dict()
