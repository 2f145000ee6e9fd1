from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from retail_stock.api.deps import get_actor_id
from retail_stock.config import settings
from retail_stock.database import get_db
from retail_stock.models.document import DocumentKind, DocumentStatus
from retail_stock.schemas.document import DocumentCreate, DocumentLinesUpdate, DocumentOut, StatusNote
from retail_stock.services import fulfillment_service

router = APIRouter(prefix="/documents", tags=["Documents"])


@router.post("", response_model=DocumentOut, status_code=201)
def create_document(data: DocumentCreate, db: Session = Depends(get_db), actor_id: str | None = Depends(get_actor_id)):
    try:
        return fulfillment_service.create_document(db, data, actor_id)
    except ValueError as e:
        raise HTTPException(400, str(e))


@router.get("", response_model=list[DocumentOut])
def list_documents(
    skip: int = 0,
    limit: int = settings.DEFAULT_PAGE_LIMIT,
    kind: DocumentKind | None = None,
    status: DocumentStatus | None = None,
    db: Session = Depends(get_db),
):
    return fulfillment_service.list_documents(db, skip=skip, limit=limit, kind=kind, status=status)


@router.get("/{document_id}", response_model=DocumentOut)
def get_document(document_id: str, db: Session = Depends(get_db)):
    doc = fulfillment_service.get_document(db, document_id)
    if not doc:
        raise HTTPException(404, "Document not found")
    return doc


@router.put("/{document_id}/lines", response_model=DocumentOut)
def update_lines(document_id: str, data: DocumentLinesUpdate, db: Session = Depends(get_db)):
    try:
        return fulfillment_service.update_lines(db, document_id, data.lines)
    except ValueError as e:
        raise HTTPException(400, str(e))


@router.post("/{document_id}/submit", response_model=DocumentOut)
def submit_document(
    document_id: str,
    data: StatusNote | None = None,
    db: Session = Depends(get_db),
    actor_id: str | None = Depends(get_actor_id),
):
    note = data.note if data else ""
    return fulfillment_service.transition(db, document_id, DocumentStatus.PENDING, actor_id, note or "Submitted")


@router.post("/{document_id}/approve", response_model=DocumentOut)
def approve_document(
    document_id: str,
    data: StatusNote | None = None,
    db: Session = Depends(get_db),
    actor_id: str | None = Depends(get_actor_id),
):
    note = data.note if data else ""
    return fulfillment_service.transition(db, document_id, DocumentStatus.APPROVED, actor_id, note or "Approved")


@router.post("/{document_id}/complete", response_model=DocumentOut)
def complete_document(
    document_id: str,
    data: StatusNote | None = None,
    db: Session = Depends(get_db),
    actor_id: str | None = Depends(get_actor_id),
):
    note = data.note if data else ""
    return fulfillment_service.complete_document(db, document_id, actor_id, note)


@router.post("/{document_id}/cancel", response_model=DocumentOut)
def cancel_document(
    document_id: str,
    data: StatusNote | None = None,
    db: Session = Depends(get_db),
    actor_id: str | None = Depends(get_actor_id),
):
    note = data.note if data else ""
    return fulfillment_service.cancel_document(db, document_id, actor_id, note)
