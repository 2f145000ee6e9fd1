from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from retail_stock.config import settings
from retail_stock.database import get_db
from retail_stock.models.product import Product
from retail_stock.schemas.movement import FefoCandidateOut, MovementOut
from retail_stock.schemas.product import ProductOut, ProductStockOut, ReorderPointUpdate
from retail_stock.services import allocator, ledger, product_stock
from retail_stock.services.batch_registry import StockField

router = APIRouter(prefix="/products", tags=["Products"])


def _get_product(db: Session, product_id: str) -> Product:
    product = db.query(Product).filter(Product.id == product_id).first()
    if not product:
        raise HTTPException(404, "Product not found")
    return product


@router.get("", response_model=list[ProductOut])
def list_products(skip: int = 0, limit: int = settings.DEFAULT_PAGE_LIMIT, db: Session = Depends(get_db)):
    return db.query(Product).order_by(Product.code).offset(skip).limit(limit).all()


@router.get("/restock-needed", response_model=list[ProductStockOut])
def restock_needed(db: Session = Depends(get_db)):
    return [s.to_dict() for s in product_stock.list_restock_needed(db)]


@router.get("/{product_id}", response_model=ProductOut)
def get_product(product_id: str, db: Session = Depends(get_db)):
    return _get_product(db, product_id)


@router.get("/{product_id}/stock", response_model=ProductStockOut)
def get_product_stock(product_id: str, db: Session = Depends(get_db)):
    stock = product_stock.get_product_stock(db, product_id)
    if not stock:
        raise HTTPException(404, "Product not found")
    return stock.to_dict()


@router.put("/{product_id}/reorder-point", response_model=ProductOut)
def update_reorder_point(product_id: str, data: ReorderPointUpdate, db: Session = Depends(get_db)):
    try:
        product = product_stock.set_reorder_point(db, product_id, data.reorder_point)
    except ValueError as e:
        raise HTTPException(400, str(e))
    if not product:
        raise HTTPException(404, "Product not found")
    return product


@router.get("/{product_id}/batches/fefo", response_model=list[FefoCandidateOut])
def fefo_preview(product_id: str, source: StockField = StockField.ON_SHELF, db: Session = Depends(get_db)):
    """Batches in the order FEFO would take them, for the POS batch picker."""
    _get_product(db, product_id)
    return allocator.preview(db, product_id, source)


@router.get("/{product_id}/movements", response_model=list[MovementOut])
def product_movements(product_id: str, limit: int = settings.DEFAULT_PAGE_LIMIT, db: Session = Depends(get_db)):
    _get_product(db, product_id)
    return ledger.history_for_product(db, product_id, limit=limit)
