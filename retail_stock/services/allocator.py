"""First-Expired-First-Out batch selection.

Pure reads: the same registry snapshot always gives the same plan.
"""

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import date

from sqlalchemy.orm import Session

from retail_stock.errors import ShortageError
from retail_stock.models.batch import Batch, InventoryDetail
from retail_stock.services import batch_registry
from retail_stock.services.batch_registry import StockField


@dataclass(frozen=True)
class Allocation:
    batch_id: str
    batch_code: str
    inventory_detail_id: str
    quantity: int
    expiry_date: date | None
    unit_price: float


@dataclass
class AllocationPlan:
    product_id: str
    requested: int
    source: StockField
    allocations: list[Allocation] = field(default_factory=list)

    @property
    def total(self) -> int:
        return sum(a.quantity for a in self.allocations)

    def to_dict(self) -> dict:
        return {
            "product_id": self.product_id,
            "requested": self.requested,
            "source": self.source.value,
            "allocations": [
                {
                    "batch_id": a.batch_id,
                    "batch_code": a.batch_code,
                    "inventory_detail_id": a.inventory_detail_id,
                    "quantity": a.quantity,
                    "expiry_date": a.expiry_date.isoformat() if a.expiry_date else None,
                    "unit_price": a.unit_price,
                }
                for a in self.allocations
            ],
        }


def fefo_key(batch: Batch) -> tuple:
    # Undated batches sort after every dated one; equal dates go oldest batch first
    return (batch.expiry_date is None, batch.expiry_date or date.max, batch.seq, batch.batch_code)


def _available(detail: InventoryDetail, source: StockField) -> int:
    if source == StockField.ON_HAND:
        return detail.quantity_on_hand
    return detail.quantity_on_shelf


def candidates(
    db: Session,
    product_id: str,
    source: StockField = StockField.ON_SHELF,
    exclude: Mapping[str, int] | None = None,
) -> list[tuple[Batch, InventoryDetail, int]]:
    """Eligible batches in FEFO order with the quantity each can still give."""
    source = StockField(source)
    exclude = exclude or {}
    rows = sorted(batch_registry.list_eligible_batches(db, product_id, source), key=lambda row: fefo_key(row[0]))
    result = []
    for batch, detail in rows:
        available = _available(detail, source) - exclude.get(batch.id, 0)
        if available > 0:
            result.append((batch, detail, available))
    return result


def allocate(
    db: Session,
    product_id: str,
    quantity: int,
    source: StockField = StockField.ON_SHELF,
    exclude: Mapping[str, int] | None = None,
) -> AllocationPlan:
    """Plan which batches satisfy `quantity` of a product.

    `exclude` maps batch id to units already promised to earlier lines of the
    same document. Raises ShortageError carrying what could be satisfied.
    """
    if quantity <= 0:
        raise ValueError("Requested quantity must be positive")
    source = StockField(source)

    plan = AllocationPlan(product_id=product_id, requested=quantity, source=source)
    remaining = quantity
    for batch, detail, available in candidates(db, product_id, source, exclude):
        if remaining == 0:
            break
        take = min(remaining, available)
        plan.allocations.append(
            Allocation(
                batch_id=batch.id,
                batch_code=batch.batch_code,
                inventory_detail_id=detail.id,
                quantity=take,
                expiry_date=batch.expiry_date,
                unit_price=batch.unit_price,
            )
        )
        remaining -= take

    if remaining > 0:
        raise ShortageError(product_id, quantity, quantity - remaining)
    return plan


def preview(db: Session, product_id: str, source: StockField = StockField.ON_SHELF) -> list[dict]:
    """Candidate batches in the order allocate() would use them."""
    return [
        {
            "batch_id": batch.id,
            "batch_code": batch.batch_code,
            "expiry_date": batch.expiry_date,
            "available": available,
            "unit_price": batch.unit_price,
        }
        for batch, _, available in candidates(db, product_id, source)
    ]
