"""Per-batch stock balances.

adjust_balances is the only write path into InventoryDetail. It is a single
conditional UPDATE ("add delta where the result stays >= 0"), so two
concurrent debits against the same batch cannot both succeed when only one
fits.
"""

import logging
from enum import Enum as PyEnum

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from retail_stock.errors import BatchMismatchError, BatchNotFoundError, NegativeBalanceError
from retail_stock.models.batch import Batch, BatchStatus, InventoryDetail

logger = logging.getLogger(__name__)


class StockField(str, PyEnum):
    ON_HAND = "on_hand"
    ON_SHELF = "on_shelf"


def _column(field: StockField):
    if StockField(field) == StockField.ON_HAND:
        return InventoryDetail.quantity_on_hand
    return InventoryDetail.quantity_on_shelf


def list_eligible_batches(
    db: Session, product_id: str, source: StockField = StockField.ON_SHELF
) -> list[tuple[Batch, InventoryDetail]]:
    """Active batches of a product that hold stock in `source`. Unordered."""
    rows = db.execute(
        select(Batch, InventoryDetail)
        .join(InventoryDetail, InventoryDetail.batch_id == Batch.id)
        .where(
            Batch.product_id == product_id,
            Batch.status == BatchStatus.ACTIVE,
            _column(source) > 0,
        )
        .execution_options(populate_existing=True)
    ).all()
    return [(batch, detail) for batch, detail in rows]


def get_inventory_detail(db: Session, batch_id: str, inventory_detail_id: str | None = None) -> InventoryDetail:
    """Fresh balance for a batch.

    When the caller also names an inventory detail, it must be the one that
    belongs to this batch.
    """
    detail = db.execute(
        select(InventoryDetail)
        .where(InventoryDetail.batch_id == batch_id)
        .execution_options(populate_existing=True)
    ).scalar_one_or_none()
    if detail is None:
        raise BatchNotFoundError(batch_id)
    if inventory_detail_id and inventory_detail_id != detail.id:
        raise BatchMismatchError(batch_id, inventory_detail_id)
    return detail


def adjust_balances(
    db: Session,
    batch_id: str,
    delta_on_hand: int = 0,
    delta_on_shelf: int = 0,
    inventory_detail_id: str | None = None,
) -> InventoryDetail:
    if inventory_detail_id:
        get_inventory_detail(db, batch_id, inventory_detail_id)
    result = db.execute(
        update(InventoryDetail)
        .where(
            InventoryDetail.batch_id == batch_id,
            InventoryDetail.quantity_on_hand + delta_on_hand >= 0,
            InventoryDetail.quantity_on_shelf + delta_on_shelf >= 0,
        )
        .values(
            quantity_on_hand=InventoryDetail.quantity_on_hand + delta_on_hand,
            quantity_on_shelf=InventoryDetail.quantity_on_shelf + delta_on_shelf,
        )
        .execution_options(synchronize_session=False)
    )
    # zero rows: missing batch (raised here) or the update would underflow
    detail = get_inventory_detail(db, batch_id)
    if result.rowcount != 1:
        raise NegativeBalanceError(
            batch_id, detail.quantity_on_hand, detail.quantity_on_shelf, delta_on_hand, delta_on_shelf
        )
    logger.debug(
        "Batch %s balance now on_hand=%d on_shelf=%d (%+d/%+d)",
        batch_id,
        detail.quantity_on_hand,
        detail.quantity_on_shelf,
        delta_on_hand,
        delta_on_shelf,
    )
    return detail
