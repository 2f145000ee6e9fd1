"""Lifecycle of stock-moving documents (sales orders and stock-out orders).

    draft -> pending -> (approved ->) completed
    cancelled is reachable from any non-terminal state.

Only the transition into completed moves stock, exactly once per document.
If any line cannot be fulfilled the document keeps its previous status and
the caller gets an itemized shortage report.
"""

import json
import logging
import uuid
from datetime import datetime, timezone

from sqlalchemy.orm import Session

from retail_stock.errors import (
    AlreadyCompletedError,
    DocumentNotFoundError,
    EmptyDocumentError,
    FulfillmentRejectedError,
    InvalidTransitionError,
    NegativeBalanceError,
    ShortageError,
)
from retail_stock.models.batch import Batch, BatchStatus
from retail_stock.models.document import DocumentKind, DocumentStatus, StockDocument, StockDocumentLine, StockOutReason
from retail_stock.models.movement import MovementType
from retail_stock.models.product import Product
from retail_stock.schemas.document import DocumentCreate, DocumentLineIn
from retail_stock.services import allocator, batch_registry, movement_service
from retail_stock.services.batch_registry import StockField
from retail_stock.services.movement_service import DebitSource, PlanLine

logger = logging.getLogger(__name__)

TRANSITIONS: dict[DocumentStatus, set[DocumentStatus]] = {
    DocumentStatus.DRAFT: {DocumentStatus.PENDING, DocumentStatus.CANCELLED},
    DocumentStatus.PENDING: {DocumentStatus.APPROVED, DocumentStatus.COMPLETED, DocumentStatus.CANCELLED},
    DocumentStatus.APPROVED: {DocumentStatus.COMPLETED, DocumentStatus.CANCELLED},
    DocumentStatus.COMPLETED: set(),
    DocumentStatus.CANCELLED: set(),
}

# How each document kind takes stock: where FEFO looks and what the debit hits
_STOCK_POLICY: dict[DocumentKind, tuple[StockField, DebitSource]] = {
    DocumentKind.SALES_ORDER: (StockField.ON_SHELF, DebitSource.SHELF),
    DocumentKind.STOCK_OUT: (StockField.ON_HAND, DebitSource.HAND),
}

_NUMBER_PREFIX = {
    DocumentKind.SALES_ORDER: "ORD",
    DocumentKind.STOCK_OUT: "SO",
}


def _generate_document_number(kind: DocumentKind) -> str:
    ts = datetime.now(timezone.utc).strftime("%Y%m%d%H%M%S")
    short = uuid.uuid4().hex[:6].upper()
    return f"{_NUMBER_PREFIX[kind]}-{ts}-{short}"


def _add_status_history(doc: StockDocument, status: str, note: str = "", actor_id: str | None = None) -> None:
    history = json.loads(doc.status_history) if doc.status_history else []
    history.append({
        "status": status,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "note": note,
        "actor_id": actor_id,
    })
    doc.status_history = json.dumps(history)


def _build_lines(db: Session, kind: DocumentKind, lines: list[DocumentLineIn]) -> list[StockDocumentLine]:
    built = []
    for position, line in enumerate(lines):
        if not db.query(Product).filter(Product.id == line.product_id).first():
            raise ValueError(f"Product {line.product_id} not found")
        if line.batch_id:
            if kind != DocumentKind.STOCK_OUT:
                raise ValueError("Only stock-out lines can name a batch")
            batch = db.query(Batch).filter(Batch.id == line.batch_id).first()
            if not batch or batch.product_id != line.product_id:
                raise ValueError(f"Batch {line.batch_id} not found for product {line.product_id}")
        built.append(
            StockDocumentLine(
                product_id=line.product_id,
                quantity=line.quantity,
                batch_id=line.batch_id,
                position=position,
            )
        )
    return built


def create_document(db: Session, data: DocumentCreate, actor_id: str | None = None) -> StockDocument:
    doc = StockDocument(
        document_number=_generate_document_number(data.kind),
        kind=data.kind,
        status=DocumentStatus.DRAFT,
        reason_code=data.reason_code,
        destination=data.destination,
        notes=data.notes,
        created_by=actor_id,
    )
    doc.lines = _build_lines(db, data.kind, data.lines)
    _add_status_history(doc, DocumentStatus.DRAFT.value, "Document created", actor_id)
    db.add(doc)
    db.commit()
    db.refresh(doc)
    return doc


def get_document(db: Session, document_id: str) -> StockDocument | None:
    return db.query(StockDocument).filter(StockDocument.id == document_id).first()


def list_documents(
    db: Session,
    skip: int = 0,
    limit: int = 100,
    kind: DocumentKind | None = None,
    status: DocumentStatus | None = None,
) -> list[StockDocument]:
    q = db.query(StockDocument)
    if kind:
        q = q.filter(StockDocument.kind == kind)
    if status:
        q = q.filter(StockDocument.status == status)
    return q.order_by(StockDocument.created_at.desc()).offset(skip).limit(limit).all()


def _require(db: Session, document_id: str) -> StockDocument:
    doc = get_document(db, document_id)
    if not doc:
        raise DocumentNotFoundError(document_id)
    return doc


def update_lines(db: Session, document_id: str, lines: list[DocumentLineIn]) -> StockDocument:
    doc = _require(db, document_id)
    if DocumentStatus(doc.status) != DocumentStatus.DRAFT:
        raise ValueError(f"Cannot edit document in '{DocumentStatus(doc.status).value}' status")
    doc.lines = _build_lines(db, DocumentKind(doc.kind), lines)
    db.commit()
    db.refresh(doc)
    return doc


def _check_transition(doc: StockDocument, target: DocumentStatus) -> None:
    current = DocumentStatus(doc.status)
    if target == DocumentStatus.COMPLETED and current == DocumentStatus.COMPLETED:
        raise AlreadyCompletedError(doc.document_number)
    if target not in TRANSITIONS[current]:
        raise InvalidTransitionError(current.value, target.value)


def transition(
    db: Session, document_id: str, target: DocumentStatus, actor_id: str | None = None, note: str = ""
) -> StockDocument:
    """Move a document to `target`. Completion goes through complete_document."""
    target = DocumentStatus(target)
    if target == DocumentStatus.COMPLETED:
        return complete_document(db, document_id, actor_id, note)

    doc = _require(db, document_id)
    _check_transition(doc, target)
    doc.status = target
    _add_status_history(doc, target.value, note, actor_id)
    db.commit()
    db.refresh(doc)
    logger.info("Document %s moved to %s", doc.document_number, target.value)
    return doc


def _plan(db: Session, doc: StockDocument) -> tuple[list[PlanLine], list[dict]]:
    """Resolve every line to batches; collect all shortages rather than stopping at the first."""
    source, _ = _STOCK_POLICY[DocumentKind(doc.kind)]
    planned: dict[str, int] = {}
    plan_lines: list[PlanLine] = []
    shortages: list[dict] = []

    for line in doc.lines:
        if line.batch_id:
            detail = batch_registry.get_inventory_detail(db, line.batch_id)
            batch = db.query(Batch).filter(Batch.id == line.batch_id).first()
            on_source = detail.quantity_on_hand if source == StockField.ON_HAND else detail.quantity_on_shelf
            available = on_source - planned.get(line.batch_id, 0) if batch.status == BatchStatus.ACTIVE else 0
            if available < line.quantity:
                shortages.append({"product_id": line.product_id, "requested": line.quantity, "available": max(available, 0)})
                continue
            planned[line.batch_id] = planned.get(line.batch_id, 0) + line.quantity
            plan_lines.append(PlanLine(batch_id=line.batch_id, quantity=line.quantity, inventory_detail_id=detail.id))
            continue

        try:
            plan = allocator.allocate(db, line.product_id, line.quantity, source, exclude=planned)
        except ShortageError as e:
            shortages.append(e.to_report())
            continue
        for a in plan.allocations:
            planned[a.batch_id] = planned.get(a.batch_id, 0) + a.quantity
            plan_lines.append(PlanLine(batch_id=a.batch_id, quantity=a.quantity, inventory_detail_id=a.inventory_detail_id))

    return plan_lines, shortages


def _shortages_from_result(db: Session, doc: StockDocument, result: movement_service.MovementResult) -> list[dict]:
    """Map failed plan lines back to the products they were serving."""
    source, _ = _STOCK_POLICY[DocumentKind(doc.kind)]
    requested = {}
    for line in doc.lines:
        requested[line.product_id] = requested.get(line.product_id, 0) + line.quantity

    report = []
    seen = set()
    for failed in result.failures:
        batch = db.query(Batch).filter(Batch.id == failed.batch_id).first()
        product_id = batch.product_id if batch else None
        if product_id in seen:
            continue
        seen.add(product_id)
        if isinstance(failed.error, NegativeBalanceError) and product_id:
            available = sum(a for _, _, a in allocator.candidates(db, product_id, source))
        else:
            available = 0
        report.append({"product_id": product_id, "requested": requested.get(product_id, 0), "available": available})
    return report


def complete_document(db: Session, document_id: str, actor_id: str | None = None, note: str = "") -> StockDocument:
    doc = _require(db, document_id)
    _check_transition(doc, DocumentStatus.COMPLETED)
    if not doc.lines:
        raise EmptyDocumentError(doc.document_number)

    kind = DocumentKind(doc.kind)
    previous = doc.status
    plan_lines, shortages = _plan(db, doc)
    if shortages:
        logger.warning("Document %s not completed, %d line(s) short", doc.document_number, len(shortages))
        raise FulfillmentRejectedError(doc.document_number, shortages)

    _, debit_source = _STOCK_POLICY[kind]
    if kind == DocumentKind.STOCK_OUT:
        reason = f"Stock out order {doc.document_number} - {StockOutReason(doc.reason_code).value}"
    else:
        reason = f"Sales order {doc.document_number}"

    result = movement_service.apply(
        db,
        MovementType.OUT,
        plan_lines,
        reason=reason,
        actor_id=actor_id,
        debit_source=debit_source,
        correlation_id=f"doc:{doc.id}",
        document_id=doc.id,
        notes=doc.notes,
    )
    if not result.applied:
        shortages = _shortages_from_result(db, doc, result)
        db.rollback()
        logger.warning(
            "Document %s stays %s: stock changed while completing", doc.document_number, DocumentStatus(previous).value
        )
        raise FulfillmentRejectedError(doc.document_number, shortages)

    doc.status = DocumentStatus.COMPLETED
    doc.completed_at = datetime.now(timezone.utc)
    _add_status_history(doc, DocumentStatus.COMPLETED.value, note or f"{len(result.movement_ids)} movement(s) booked", actor_id)
    db.commit()
    db.refresh(doc)
    logger.info("Document %s completed with %d movement(s)", doc.document_number, len(result.movement_ids))
    return doc


def cancel_document(db: Session, document_id: str, actor_id: str | None = None, note: str = "") -> StockDocument:
    return transition(db, document_id, DocumentStatus.CANCELLED, actor_id, note or "Document cancelled")
