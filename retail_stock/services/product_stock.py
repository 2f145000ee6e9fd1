"""Per-product stock totals, summed from the batches' inventory details."""

from dataclasses import dataclass

from sqlalchemy import and_, func
from sqlalchemy.orm import Session

from retail_stock.models.batch import Batch, BatchStatus, InventoryDetail
from retail_stock.models.product import Product


@dataclass
class ProductStock:
    product_id: str
    code: str
    name: str
    quantity_on_hand: int
    quantity_on_shelf: int
    active_batches: int
    reorder_point: int

    @property
    def total_quantity(self) -> int:
        return self.quantity_on_hand + self.quantity_on_shelf

    @property
    def is_out_of_stock(self) -> bool:
        return self.total_quantity == 0

    @property
    def needs_reorder(self) -> bool:
        return self.total_quantity <= self.reorder_point

    @property
    def is_low_stock(self) -> bool:
        return 0 < self.total_quantity <= self.reorder_point * 2

    def to_dict(self) -> dict:
        return {
            "product_id": self.product_id,
            "code": self.code,
            "name": self.name,
            "quantity_on_hand": self.quantity_on_hand,
            "quantity_on_shelf": self.quantity_on_shelf,
            "total_quantity": self.total_quantity,
            "active_batches": self.active_batches,
            "reorder_point": self.reorder_point,
            "needs_reorder": self.needs_reorder,
            "is_out_of_stock": self.is_out_of_stock,
            "is_low_stock": self.is_low_stock,
        }


def _stock_query(db: Session):
    # Expired and disposed batches hold no sellable stock
    return (
        db.query(
            Product,
            func.coalesce(func.sum(InventoryDetail.quantity_on_hand), 0),
            func.coalesce(func.sum(InventoryDetail.quantity_on_shelf), 0),
            func.count(Batch.id),
        )
        .outerjoin(Batch, and_(Batch.product_id == Product.id, Batch.status == BatchStatus.ACTIVE))
        .outerjoin(InventoryDetail, InventoryDetail.batch_id == Batch.id)
        .group_by(Product.id)
    )


def _to_stock(row) -> ProductStock:
    product, on_hand, on_shelf, batches = row
    return ProductStock(
        product_id=product.id,
        code=product.code,
        name=product.name,
        quantity_on_hand=int(on_hand),
        quantity_on_shelf=int(on_shelf),
        active_batches=int(batches),
        reorder_point=product.reorder_point,
    )


def get_product_stock(db: Session, product_id: str) -> ProductStock | None:
    row = _stock_query(db).filter(Product.id == product_id).first()
    return _to_stock(row) if row else None


def list_restock_needed(db: Session) -> list[ProductStock]:
    """Products at or below their reorder point, emptiest first."""
    stock = [_to_stock(row) for row in _stock_query(db).order_by(Product.code).all()]
    return sorted((s for s in stock if s.needs_reorder), key=lambda s: s.total_quantity)


def set_reorder_point(db: Session, product_id: str, reorder_point: int) -> Product | None:
    if reorder_point < 0:
        raise ValueError("Reorder point cannot be negative")
    product = db.query(Product).filter(Product.id == product_id).first()
    if not product:
        return None
    product.reorder_point = reorder_point
    db.commit()
    db.refresh(product)
    return product
