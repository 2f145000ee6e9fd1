import logging
from datetime import date, timedelta

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from retail_stock.config import settings
from retail_stock.models.batch import Batch, BatchStatus, InventoryDetail
from retail_stock.models.movement import MovementType
from retail_stock.models.product import Product
from retail_stock.schemas.batch import BatchCreate
from retail_stock.services import batch_registry, movement_service
from retail_stock.services.movement_service import PlanLine

logger = logging.getLogger(__name__)


def _next_seq(db: Session) -> int:
    return db.execute(select(func.coalesce(func.max(Batch.seq), 0))).scalar_one() + 1


def create_batch(db: Session, data: BatchCreate, actor_id: str | None = None) -> Batch:
    """Register a received lot. Initial stock is booked as an inbound movement."""
    product = db.query(Product).filter(Product.id == data.product_id).first()
    if not product:
        raise ValueError(f"Product {data.product_id} not found")
    if get_batch_by_code(db, data.batch_code):
        raise ValueError(f"Batch code {data.batch_code} already exists")
    if data.mfg_date and data.expiry_date and data.expiry_date < data.mfg_date:
        raise ValueError("Expiry date cannot be before manufacture date")

    batch = Batch(
        batch_code=data.batch_code,
        product_id=product.id,
        mfg_date=data.mfg_date,
        expiry_date=data.expiry_date,
        cost_price=data.cost_price,
        unit_price=data.unit_price,
        notes=data.notes,
        seq=_next_seq(db),
    )
    db.add(batch)
    db.flush()
    db.add(InventoryDetail(batch_id=batch.id, location=data.location))
    db.flush()

    if data.quantity > 0:
        result = movement_service.apply(
            db,
            MovementType.IN,
            [PlanLine(batch_id=batch.id, quantity=data.quantity)],
            reason=f"Initial stock for batch {batch.batch_code}",
            actor_id=actor_id,
        )
        result.raise_for_failure()

    db.commit()
    db.refresh(batch)
    logger.info("Created batch %s for product %s with %d unit(s)", batch.batch_code, product.code, data.quantity)
    return batch


def get_batch(db: Session, batch_id: str) -> Batch | None:
    return db.query(Batch).filter(Batch.id == batch_id).first()


def get_batch_by_code(db: Session, batch_code: str) -> Batch | None:
    return db.query(Batch).filter(Batch.batch_code == batch_code.strip().upper()).first()


def list_batches(
    db: Session,
    skip: int = 0,
    limit: int = 100,
    product_id: str | None = None,
    status: BatchStatus | None = None,
) -> list[Batch]:
    q = db.query(Batch)
    if product_id:
        q = q.filter(Batch.product_id == product_id)
    if status:
        q = q.filter(Batch.status == status)
    return q.order_by(Batch.seq).offset(skip).limit(limit).all()


def list_near_expiry(db: Session, days: int | None = None) -> list[Batch]:
    today = date.today()
    cutoff = today + timedelta(days=settings.NEAR_EXPIRY_DAYS if days is None else days)
    return (
        db.query(Batch)
        .filter(
            Batch.status == BatchStatus.ACTIVE,
            Batch.expiry_date.is_not(None),
            Batch.expiry_date >= today,
            Batch.expiry_date <= cutoff,
        )
        .order_by(Batch.expiry_date, Batch.seq)
        .all()
    )


def expire_batches(db: Session, as_of: date | None = None) -> int:
    """Mark active batches past their expiry date as expired. Returns the count."""
    as_of = as_of or date.today()
    result = db.execute(
        update(Batch)
        .where(Batch.status == BatchStatus.ACTIVE, Batch.expiry_date.is_not(None), Batch.expiry_date < as_of)
        .values(status=BatchStatus.EXPIRED)
        .execution_options(synchronize_session=False)
    )
    db.commit()
    if result.rowcount:
        logger.info("Marked %d batch(es) expired as of %s", result.rowcount, as_of.isoformat())
    return result.rowcount


def dispose_batch(db: Session, batch_id: str, reason: str = "", actor_id: str | None = None) -> Batch | None:
    """Write off whatever stock is left and retire the batch."""
    batch = get_batch(db, batch_id)
    if not batch:
        return None
    if batch.status == BatchStatus.DISPOSED:
        raise ValueError(f"Batch {batch.batch_code} is already disposed")

    detail = batch_registry.get_inventory_detail(db, batch.id)
    text = f"Disposed: {reason}" if reason else "Disposed"
    lines = []
    if detail.quantity_on_hand:
        lines.append(PlanLine(batch_id=batch.id, quantity=-detail.quantity_on_hand, field=batch_registry.StockField.ON_HAND))
    if detail.quantity_on_shelf:
        lines.append(PlanLine(batch_id=batch.id, quantity=-detail.quantity_on_shelf, field=batch_registry.StockField.ON_SHELF))
    if lines:
        result = movement_service.apply(db, MovementType.ADJUSTMENT, lines, reason=text, actor_id=actor_id)
        if not result.applied:
            db.rollback()
            result.raise_for_failure()

    batch.status = BatchStatus.DISPOSED
    batch.notes = f"{batch.notes}\n{text}" if batch.notes else text
    db.commit()
    db.refresh(batch)
    logger.info("Disposed batch %s", batch.batch_code)
    return batch


def list_expired(db: Session, as_of: date | None = None) -> list[Batch]:
    """Batches past their expiry date, whether or not the scheduler has marked them yet."""
    as_of = as_of or date.today()
    return (
        db.query(Batch)
        .filter(
            Batch.status != BatchStatus.DISPOSED,
            Batch.expiry_date.is_not(None),
            Batch.expiry_date < as_of,
        )
        .order_by(Batch.expiry_date, Batch.seq)
        .all()
    )


def update_location(db: Session, batch_id: str, location: str) -> InventoryDetail:
    detail = batch_registry.get_inventory_detail(db, batch_id)
    detail.location = location.strip()
    db.commit()
    db.refresh(detail)
    return detail
