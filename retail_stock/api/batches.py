from datetime import date

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from retail_stock.api.deps import get_actor_id
from retail_stock.config import settings
from retail_stock.database import get_db
from retail_stock.models.batch import BatchStatus
from retail_stock.schemas.batch import BalanceOut, BatchCreate, BatchDispose, BatchOut, ExpireRequest, LocationUpdate
from retail_stock.schemas.movement import MovementOut
from retail_stock.services import batch_registry, batch_service, ledger

router = APIRouter(prefix="/batches", tags=["Batches"])


@router.post("", response_model=BatchOut, status_code=201)
def create_batch(data: BatchCreate, db: Session = Depends(get_db), actor_id: str | None = Depends(get_actor_id)):
    try:
        return batch_service.create_batch(db, data, actor_id)
    except ValueError as e:
        raise HTTPException(400, str(e))


@router.get("", response_model=list[BatchOut])
def list_batches(
    skip: int = 0,
    limit: int = settings.DEFAULT_PAGE_LIMIT,
    product_id: str | None = None,
    status: BatchStatus | None = None,
    db: Session = Depends(get_db),
):
    return batch_service.list_batches(db, skip=skip, limit=limit, product_id=product_id, status=status)


@router.get("/near-expiry", response_model=list[BatchOut])
def near_expiry(days: int | None = None, db: Session = Depends(get_db)):
    return batch_service.list_near_expiry(db, days=days)


@router.get("/expired", response_model=list[BatchOut])
def expired_batches(as_of: date | None = None, db: Session = Depends(get_db)):
    return batch_service.list_expired(db, as_of=as_of)


@router.post("/expire")
def expire_batches(data: ExpireRequest, db: Session = Depends(get_db)):
    """Hook for the expiry scheduler."""
    return {"expired": batch_service.expire_batches(db, as_of=data.as_of)}


@router.get("/{batch_id}", response_model=BatchOut)
def get_batch(batch_id: str, db: Session = Depends(get_db)):
    batch = batch_service.get_batch(db, batch_id)
    if not batch:
        raise HTTPException(404, "Product batch not found")
    return batch


@router.get("/{batch_id}/balance", response_model=BalanceOut)
def get_balance(batch_id: str, db: Session = Depends(get_db)):
    return batch_registry.get_inventory_detail(db, batch_id)


@router.get("/{batch_id}/reconcile")
def reconcile(batch_id: str, db: Session = Depends(get_db)):
    return ledger.reconcile(db, batch_id).to_dict()


@router.get("/{batch_id}/movements", response_model=list[MovementOut])
def batch_movements(batch_id: str, limit: int = settings.DEFAULT_PAGE_LIMIT, db: Session = Depends(get_db)):
    batch_registry.get_inventory_detail(db, batch_id)
    return ledger.history_for_batch(db, batch_id, limit=limit)


@router.put("/{batch_id}/location", response_model=BalanceOut)
def update_location(batch_id: str, data: LocationUpdate, db: Session = Depends(get_db)):
    return batch_service.update_location(db, batch_id, data.location)


@router.post("/{batch_id}/dispose", response_model=BatchOut)
def dispose_batch(
    batch_id: str,
    data: BatchDispose,
    db: Session = Depends(get_db),
    actor_id: str | None = Depends(get_actor_id),
):
    try:
        batch = batch_service.dispose_batch(db, batch_id, data.reason, actor_id)
    except ValueError as e:
        raise HTTPException(400, str(e))
    if not batch:
        raise HTTPException(404, "Product batch not found")
    return batch
