from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from retail_stock.api.deps import get_actor_id
from retail_stock.config import settings
from retail_stock.database import get_db
from retail_stock.models.movement import MovementType
from retail_stock.schemas.movement import BulkTransferCreate, MovementCreate, MovementOut, ReversalCreate
from retail_stock.services import ledger, movement_service
from retail_stock.services.movement_service import MovementResult, PlanLine

router = APIRouter(prefix="/movements", tags=["Movements"])


def _finish(db: Session, result: MovementResult) -> dict:
    """Commit an applied movement, or roll back and surface the failing line."""
    if not result.applied:
        db.rollback()
        result.raise_for_failure()
    db.commit()
    return result.to_dict()


@router.get("", response_model=list[MovementOut])
def list_movements(
    skip: int = 0,
    limit: int = settings.DEFAULT_PAGE_LIMIT,
    batch_id: str | None = None,
    product_id: str | None = None,
    movement_type: MovementType | None = None,
    actor_id: str | None = None,
    document_id: str | None = None,
    start_date: datetime | None = None,
    end_date: datetime | None = None,
    search: str | None = None,
    db: Session = Depends(get_db),
):
    return ledger.list_entries(
        db,
        skip=skip,
        limit=limit,
        batch_id=batch_id,
        product_id=product_id,
        movement_type=movement_type,
        actor_id=actor_id,
        document_id=document_id,
        start_date=start_date,
        end_date=end_date,
        search=search,
    )


@router.get("/{movement_id}", response_model=MovementOut)
def get_movement(movement_id: str, db: Session = Depends(get_db)):
    entry = ledger.get_entry(db, movement_id)
    if not entry:
        raise HTTPException(404, "Inventory movement not found")
    return entry


@router.post("", status_code=201)
def create_movement(data: MovementCreate, db: Session = Depends(get_db), actor_id: str | None = Depends(get_actor_id)):
    lines = [
        PlanLine(
            batch_id=line.batch_id,
            quantity=line.quantity,
            inventory_detail_id=line.inventory_detail_id,
            field=line.field,
        )
        for line in data.lines
    ]
    try:
        result = movement_service.apply(
            db,
            data.movement_type,
            lines,
            reason=data.reason,
            actor_id=actor_id,
            debit_source=data.debit_source,
            correlation_id=data.correlation_id,
            notes=data.notes,
        )
    except ValueError as e:
        raise HTTPException(400, str(e))
    return _finish(db, result)


@router.post("/bulk-transfer", status_code=201)
def bulk_transfer(data: BulkTransferCreate, db: Session = Depends(get_db), actor_id: str | None = Depends(get_actor_id)):
    transfers = [
        PlanLine(batch_id=t.batch_id, quantity=t.quantity, inventory_detail_id=t.inventory_detail_id)
        for t in data.transfers
    ]
    try:
        result = movement_service.bulk_transfer(
            db,
            transfers,
            data.direction,
            reason=data.reason,
            actor_id=actor_id,
            notes=data.notes,
        )
    except ValueError as e:
        raise HTTPException(400, str(e))
    return _finish(db, result)


@router.delete("/{movement_id}")
def reverse_movement(
    movement_id: str,
    data: ReversalCreate | None = None,
    db: Session = Depends(get_db),
    actor_id: str | None = Depends(get_actor_id),
):
    """Ledger entries are never deleted; this books the inverse entry instead."""
    reason = data.reason if data else ""
    result = movement_service.reverse_movement(db, movement_id, actor_id, reason)
    return _finish(db, result)
