import uuid
from dataclasses import dataclass
from datetime import datetime, timezone

from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session

from retail_stock.models.batch import Batch
from retail_stock.models.movement import MovementLedgerEntry, MovementType
from retail_stock.services import batch_registry


def _generate_movement_number() -> str:
    ts = datetime.now(timezone.utc).strftime("%Y%m%d%H%M%S")
    short = uuid.uuid4().hex[:6].upper()
    return f"MOV-{ts}-{short}"


@dataclass
class Reconciliation:
    batch_id: str
    ledger_on_hand: int
    ledger_on_shelf: int
    balance_on_hand: int
    balance_on_shelf: int

    @property
    def total(self) -> int:
        return self.ledger_on_hand + self.ledger_on_shelf

    @property
    def matches(self) -> bool:
        return self.ledger_on_hand == self.balance_on_hand and self.ledger_on_shelf == self.balance_on_shelf

    def to_dict(self) -> dict:
        return {
            "batch_id": self.batch_id,
            "ledger_on_hand": self.ledger_on_hand,
            "ledger_on_shelf": self.ledger_on_shelf,
            "ledger_total": self.total,
            "balance_on_hand": self.balance_on_hand,
            "balance_on_shelf": self.balance_on_shelf,
            "matches": self.matches,
        }


def booked_id(db: Session, correlation_id: str, line_index: int) -> str | None:
    return db.execute(
        select(MovementLedgerEntry.id).where(
            MovementLedgerEntry.correlation_id == correlation_id,
            MovementLedgerEntry.line_index == line_index,
        )
    ).scalar_one_or_none()


def append(db: Session, entry: MovementLedgerEntry) -> str:
    """Add an entry and return its id.

    An entry whose (correlation_id, line_index) is already booked is not
    written again; the existing entry's id is returned instead.
    """
    if entry.correlation_id:
        existing = booked_id(db, entry.correlation_id, entry.line_index or 0)
        if existing:
            return existing
    if not entry.movement_number:
        entry.movement_number = _generate_movement_number()
    db.add(entry)
    db.flush()
    return entry.id


def reconcile(db: Session, batch_id: str) -> Reconciliation:
    detail = batch_registry.get_inventory_detail(db, batch_id)
    on_hand, on_shelf = db.execute(
        select(
            func.coalesce(func.sum(MovementLedgerEntry.delta_on_hand), 0),
            func.coalesce(func.sum(MovementLedgerEntry.delta_on_shelf), 0),
        ).where(MovementLedgerEntry.batch_id == batch_id)
    ).one()
    return Reconciliation(
        batch_id=batch_id,
        ledger_on_hand=int(on_hand),
        ledger_on_shelf=int(on_shelf),
        balance_on_hand=detail.quantity_on_hand,
        balance_on_shelf=detail.quantity_on_shelf,
    )


def get_entry(db: Session, movement_id: str) -> MovementLedgerEntry | None:
    return db.query(MovementLedgerEntry).filter(MovementLedgerEntry.id == movement_id).first()


def find_by_correlation(db: Session, correlation_id: str) -> list[MovementLedgerEntry]:
    """Entries booked by one apply() call, in plan order."""
    return (
        db.query(MovementLedgerEntry)
        .filter(MovementLedgerEntry.correlation_id == correlation_id)
        .order_by(MovementLedgerEntry.line_index)
        .all()
    )


def find_reversal(db: Session, movement_id: str) -> MovementLedgerEntry | None:
    return db.query(MovementLedgerEntry).filter(MovementLedgerEntry.reversal_of_id == movement_id).first()


def history_for_batch(db: Session, batch_id: str, limit: int = 100) -> list[MovementLedgerEntry]:
    return (
        db.query(MovementLedgerEntry)
        .filter(MovementLedgerEntry.batch_id == batch_id)
        .order_by(MovementLedgerEntry.occurred_at.desc(), MovementLedgerEntry.line_index.desc())
        .limit(limit)
        .all()
    )


def history_for_product(db: Session, product_id: str, limit: int = 100) -> list[MovementLedgerEntry]:
    return (
        db.query(MovementLedgerEntry)
        .join(Batch, Batch.id == MovementLedgerEntry.batch_id)
        .filter(Batch.product_id == product_id)
        .order_by(MovementLedgerEntry.occurred_at.desc(), MovementLedgerEntry.line_index.desc())
        .limit(limit)
        .all()
    )


def list_entries(
    db: Session,
    skip: int = 0,
    limit: int = 100,
    batch_id: str | None = None,
    product_id: str | None = None,
    movement_type: MovementType | None = None,
    actor_id: str | None = None,
    document_id: str | None = None,
    start_date: datetime | None = None,
    end_date: datetime | None = None,
    search: str | None = None,
) -> list[MovementLedgerEntry]:
    q = db.query(MovementLedgerEntry)
    if batch_id:
        q = q.filter(MovementLedgerEntry.batch_id == batch_id)
    if product_id:
        q = q.join(Batch, Batch.id == MovementLedgerEntry.batch_id).filter(Batch.product_id == product_id)
    if movement_type:
        q = q.filter(MovementLedgerEntry.movement_type == movement_type)
    if actor_id:
        q = q.filter(MovementLedgerEntry.actor_id == actor_id)
    if document_id:
        q = q.filter(MovementLedgerEntry.document_id == document_id)
    if start_date:
        q = q.filter(MovementLedgerEntry.occurred_at >= start_date)
    if end_date:
        q = q.filter(MovementLedgerEntry.occurred_at <= end_date)
    if search:
        pattern = f"%{search}%"
        q = q.filter(
            or_(
                MovementLedgerEntry.movement_number.ilike(pattern),
                MovementLedgerEntry.reason.ilike(pattern),
                MovementLedgerEntry.notes.ilike(pattern),
            )
        )
    return (
        q.order_by(MovementLedgerEntry.occurred_at.desc(), MovementLedgerEntry.line_index.desc())
        .offset(skip)
        .limit(limit)
        .all()
    )
