"""Applies stock movements: balance updates plus their ledger entries, as one unit.

Balances are updated line by line in plan order. If any line fails, the lines
already applied are compensated with inverse balance updates and no ledger
entry is written. Ledger entries are appended only once every balance update
of the call has succeeded, so a rolled-back movement leaves no trace.

Nothing here commits; the caller owns the transaction.
"""

import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from enum import Enum as PyEnum

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from retail_stock.errors import (
    AlreadyReversedError,
    BatchMismatchError,
    BatchNotFoundError,
    MovementNotFoundError,
    StockError,
)
from retail_stock.models.batch import InventoryDetail
from retail_stock.models.movement import MovementLedgerEntry, MovementType
from retail_stock.services import batch_registry, ledger
from retail_stock.services.batch_registry import StockField

logger = logging.getLogger(__name__)

# Correlation ids the service books under itself; callers may not use them
RESERVED_CORRELATION_PREFIXES = ("doc:", "reversal:")


class DebitSource(str, PyEnum):
    SHELF = "shelf"
    SHELF_THEN_HAND = "shelf_then_hand"
    HAND = "hand"


class LineStatus(str, PyEnum):
    APPLIED = "applied"
    ROLLED_BACK = "rolled_back"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass
class PlanLine:
    batch_id: str
    quantity: int
    inventory_detail_id: str | None = None
    # Target of adjustment/audit lines; defaults to on hand
    field: StockField | None = None


@dataclass
class LineOutcome:
    index: int
    batch_id: str
    quantity: int
    status: LineStatus = LineStatus.SKIPPED
    inventory_detail_id: str | None = None
    delta_on_hand: int = 0
    delta_on_shelf: int = 0
    movement_id: str | None = None
    error: StockError | None = None

    def to_dict(self) -> dict:
        data = {
            "index": self.index,
            "batch_id": self.batch_id,
            "quantity": self.quantity,
            "status": self.status.value,
            "delta_on_hand": self.delta_on_hand,
            "delta_on_shelf": self.delta_on_shelf,
            "movement_id": self.movement_id,
        }
        if self.error is not None:
            data["error"] = self.error.to_dict()
        return data


@dataclass
class MovementResult:
    movement_type: MovementType
    lines: list[LineOutcome] = field(default_factory=list)
    replayed: bool = False

    @property
    def applied(self) -> bool:
        return all(line.status == LineStatus.APPLIED for line in self.lines)

    @property
    def failures(self) -> list[LineOutcome]:
        return [line for line in self.lines if line.status == LineStatus.FAILED]

    @property
    def movement_ids(self) -> list[str]:
        return [line.movement_id for line in self.lines if line.movement_id]

    def raise_for_failure(self) -> None:
        for line in self.failures:
            raise line.error

    def to_dict(self) -> dict:
        return {
            "movement_type": self.movement_type.value,
            "applied": self.applied,
            "replayed": self.replayed,
            "lines": [line.to_dict() for line in self.lines],
        }


DeltaResolver = Callable[[PlanLine, InventoryDetail], tuple[int, int]]


def _validate_quantity(movement_type: MovementType, quantity: int) -> None:
    if quantity == 0:
        raise ValueError("Quantity cannot be zero")
    if movement_type in (MovementType.IN, MovementType.OUT) and quantity < 0:
        raise ValueError(f"Quantity for '{movement_type.value}' movements must be positive")


def line_deltas(
    movement_type: MovementType,
    line: PlanLine,
    detail: InventoryDetail,
    debit_source: DebitSource | None = None,
) -> tuple[int, int]:
    """(delta_on_hand, delta_on_shelf) for one plan line."""
    q = line.quantity
    if movement_type == MovementType.IN:
        return q, 0
    if movement_type == MovementType.OUT:
        if debit_source == DebitSource.SHELF:
            return 0, -q
        if debit_source == DebitSource.HAND:
            return -q, 0
        from_shelf = min(detail.quantity_on_shelf, q)
        return -(q - from_shelf), -from_shelf
    if movement_type == MovementType.TRANSFER:
        # positive = warehouse to shelf
        return -q, q
    if line.field and StockField(line.field) == StockField.ON_SHELF:
        return 0, q
    return q, 0


def _compensate(db: Session, applied: list[LineOutcome]) -> None:
    for outcome in reversed(applied):
        try:
            batch_registry.adjust_balances(db, outcome.batch_id, -outcome.delta_on_hand, -outcome.delta_on_shelf)
        except StockError:
            logger.exception("Compensation failed for batch %s, rolling back session", outcome.batch_id)
            db.rollback()
            raise
        outcome.status = LineStatus.ROLLED_BACK


def _replay(movement_type: MovementType, entries: list[MovementLedgerEntry]) -> MovementResult:
    result = MovementResult(movement_type=movement_type, replayed=True)
    for entry in entries:
        result.lines.append(
            LineOutcome(
                index=entry.line_index,
                batch_id=entry.batch_id,
                quantity=entry.quantity,
                status=LineStatus.APPLIED,
                inventory_detail_id=entry.inventory_detail_id,
                delta_on_hand=entry.delta_on_hand,
                delta_on_shelf=entry.delta_on_shelf,
                movement_id=entry.id,
            )
        )
    return result


def _run(
    db: Session,
    movement_type: MovementType,
    plan_lines: Sequence[PlanLine],
    resolve: DeltaResolver,
    reason: str,
    actor_id: str | None,
    correlation_id: str | None,
    document_id: str | None,
    notes: str,
    reversal_of_id: str | None = None,
) -> MovementResult:
    result = MovementResult(
        movement_type=movement_type,
        lines=[LineOutcome(index=i, batch_id=line.batch_id, quantity=line.quantity) for i, line in enumerate(plan_lines)],
    )
    applied: list[LineOutcome] = []

    try:
        for line, outcome in zip(plan_lines, result.lines):
            try:
                detail = batch_registry.get_inventory_detail(db, line.batch_id, line.inventory_detail_id)
                delta_on_hand, delta_on_shelf = resolve(line, detail)
                batch_registry.adjust_balances(db, line.batch_id, delta_on_hand, delta_on_shelf)
            except StockError as e:
                outcome.status = LineStatus.FAILED
                outcome.error = e
                if isinstance(e, (BatchNotFoundError, BatchMismatchError)):
                    logger.error("Movement %s line %d rejected: %s", movement_type.value, outcome.index, e)
                else:
                    logger.warning("Movement %s line %d failed, rolling back: %s", movement_type.value, outcome.index, e)
                _compensate(db, applied)
                return result

            outcome.inventory_detail_id = detail.id
            outcome.delta_on_hand = delta_on_hand
            outcome.delta_on_shelf = delta_on_shelf
            outcome.status = LineStatus.APPLIED
            applied.append(outcome)

        for outcome in applied:
            entry = MovementLedgerEntry(
                batch_id=outcome.batch_id,
                inventory_detail_id=outcome.inventory_detail_id,
                movement_type=movement_type,
                quantity=outcome.quantity,
                delta_on_hand=outcome.delta_on_hand,
                delta_on_shelf=outcome.delta_on_shelf,
                reason=reason,
                notes=notes,
                actor_id=actor_id,
                document_id=document_id,
                correlation_id=correlation_id,
                line_index=outcome.index,
                reversal_of_id=reversal_of_id,
            )
            movement_id = ledger.append(db, entry)
            if movement_id != entry.id:
                # A concurrent retry booked this correlation id first
                logger.warning("Movement %s booked concurrently, undoing this attempt", correlation_id)
                _compensate(db, applied)
                return _replay(movement_type, ledger.find_by_correlation(db, correlation_id))
            outcome.movement_id = movement_id
    except IntegrityError:
        # Another session committed the same correlation id first; rolling back
        # undoes this attempt's balance changes
        db.rollback()
        prior = ledger.find_by_correlation(db, correlation_id) if correlation_id else []
        if not prior:
            logger.exception("Integrity failure while applying %s movement", movement_type.value)
            raise
        logger.warning("Movement %s committed concurrently, replaying it", correlation_id)
        return _replay(movement_type, prior)
    except SQLAlchemyError:
        logger.exception("Storage failure while applying %s movement, rolling back", movement_type.value)
        db.rollback()
        raise

    logger.info(
        "Applied %s movement: %d line(s), actor=%s, reason=%r",
        movement_type.value,
        len(applied),
        actor_id or "system",
        reason,
    )
    return result


def apply(
    db: Session,
    movement_type: MovementType,
    plan_lines: Sequence[PlanLine],
    reason: str = "",
    actor_id: str | None = None,
    debit_source: DebitSource | None = None,
    correlation_id: str | None = None,
    document_id: str | None = None,
    notes: str = "",
) -> MovementResult:
    """Apply every plan line or none of them.

    Business failures (not found, mismatch, insufficient stock) come back as a
    result with applied=False and per-line outcomes; storage failures roll the
    session back and propagate. A correlation_id that was already booked
    replays the earlier result without touching balances.
    """
    movement_type = MovementType(movement_type)
    if not plan_lines:
        raise ValueError("A movement needs at least one line")
    if movement_type == MovementType.OUT:
        if debit_source is None:
            raise ValueError("Outbound movements need a debit source")
        debit_source = DebitSource(debit_source)
    for line in plan_lines:
        _validate_quantity(movement_type, line.quantity)

    if correlation_id:
        prior = ledger.find_by_correlation(db, correlation_id)
        if prior:
            logger.info("Movement %s already booked, replaying %d entries", correlation_id, len(prior))
            return _replay(movement_type, prior)

    return _run(
        db,
        movement_type,
        plan_lines,
        lambda line, detail: line_deltas(movement_type, line, detail, debit_source),
        reason,
        actor_id,
        correlation_id,
        document_id,
        notes,
    )


def reverse_movement(db: Session, movement_id: str, actor_id: str | None = None, reason: str = "") -> MovementResult:
    """Administrative reversal: book the inverse of an entry as a new entry."""
    entry = ledger.get_entry(db, movement_id)
    if not entry:
        raise MovementNotFoundError(movement_id)
    if entry.reversal_of_id:
        raise AlreadyReversedError(f"Movement {entry.movement_number} is itself a reversal")
    if ledger.find_reversal(db, entry.id):
        raise AlreadyReversedError(f"Movement {entry.movement_number} has already been reversed")

    line = PlanLine(batch_id=entry.batch_id, quantity=-entry.quantity, inventory_detail_id=entry.inventory_detail_id)
    text = f"Reversal of {entry.movement_number}"
    return _run(
        db,
        MovementType(entry.movement_type),
        [line],
        lambda _line, _detail: (-entry.delta_on_hand, -entry.delta_on_shelf),
        f"{text}: {reason}" if reason else text,
        actor_id,
        f"reversal:{entry.id}",
        entry.document_id,
        "",
        reversal_of_id=entry.id,
    )


def bulk_transfer(
    db: Session,
    transfers: Sequence[PlanLine],
    direction: str,
    reason: str = "",
    actor_id: str | None = None,
    notes: str = "",
) -> MovementResult:
    """Move stock between warehouse and shelf for many batches at once.

    direction is "to_shelf" or "to_warehouse".
    """
    if direction not in ("to_shelf", "to_warehouse"):
        raise ValueError(f"Unknown transfer direction '{direction}'")
    lines = []
    for t in transfers:
        if t.quantity <= 0:
            raise ValueError(f"Transfer quantity for batch {t.batch_id} must be positive")
        signed = t.quantity if direction == "to_shelf" else -t.quantity
        lines.append(PlanLine(batch_id=t.batch_id, quantity=signed, inventory_detail_id=t.inventory_detail_id))
    return apply(
        db,
        MovementType.TRANSFER,
        lines,
        reason=reason or "Bulk stock transfer",
        actor_id=actor_id,
        notes=notes,
    )
