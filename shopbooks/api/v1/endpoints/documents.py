"""API endpoints for sales, sales orders, purchases and purchase orders (GST)."""
from datetime import date
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Query, status

from shopbooks.api.deps import DB, CurrentActor
from shopbooks.core.exceptions import NotFoundError
from shopbooks.models.document import DocumentKind
from shopbooks.schemas.document import (
    CancelRequest,
    ConversionResponse,
    ConvertRequest,
    DocumentCreate,
    DocumentListResponse,
    DocumentResponse,
    DocumentWithStockResponse,
    DueDateUpdate,
    ItemsUpdate,
    PaymentCreate,
    StatusUpdate,
    stock_results,
)
from shopbooks.services.document_converter import DocumentConverter
from shopbooks.services.document_service import DocumentResult, DocumentService

router = APIRouter()


KIND_PATHS = {
    "sales": DocumentKind.SALE,
    "sales-orders": DocumentKind.SALES_ORDER,
    "purchases": DocumentKind.PURCHASE,
    "purchase-orders": DocumentKind.PURCHASE_ORDER,
}


def resolve_kind(kind_path: str) -> DocumentKind:
    kind = KIND_PATHS.get(kind_path)
    if kind is None:
        raise NotFoundError("Document kind", kind_path)
    return kind


def with_stock(result: DocumentResult) -> DocumentWithStockResponse:
    return DocumentWithStockResponse(
        document=DocumentResponse.from_document(result.document),
        stock_results=stock_results(result.stock_results),
    )


# ==================== Create ====================

@router.post(
    "/{kind_path}",
    response_model=DocumentWithStockResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_document(
    kind_path: str,
    document_in: DocumentCreate,
    db: DB,
    actor: CurrentActor,
):
    """
    Create a sale, sales order, purchase or purchase order.

    Lines are priced, taxed and totalled server side; the document number is
    allocated atomically. Stock moves for completed invoices and the outcome
    is reported per line in `stockResults`.
    """
    kind = resolve_kind(kind_path)
    result = await DocumentService(db).create_document(kind, document_in, actor)
    return with_stock(result)


# ==================== Read ====================

@router.get("", response_model=DocumentListResponse)
async def list_documents(
    db: DB,
    company_id: UUID = Query(..., alias="companyId"),
    kind: Optional[str] = Query(None, description="sales, sales-orders, purchases or purchase-orders"),
    doc_status: Optional[str] = Query(None, alias="status"),
    payment_status: Optional[str] = Query(None, alias="paymentStatus"),
    overdue: bool = Query(False),
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=200),
):
    """List documents with derived payment status (OVERDUE computed at read time)."""
    today = date.today()
    documents, total = await DocumentService(db).list_documents(
        company_id,
        kind=resolve_kind(kind) if kind else None,
        status=doc_status,
        payment_status=payment_status,
        overdue_only=overdue,
        today=today,
        skip=skip,
        limit=limit,
    )
    return DocumentListResponse(
        items=[DocumentResponse.from_document(d, today) for d in documents],
        total=total,
    )


@router.get("/{document_id}", response_model=DocumentResponse)
async def get_document(document_id: UUID, db: DB):
    document = await DocumentService(db).get_document(document_id)
    return DocumentResponse.from_document(document)


# ==================== Payments ====================

@router.post("/{document_id}/payments", response_model=DocumentResponse)
async def add_payment(
    document_id: UUID,
    payment_in: PaymentCreate,
    db: DB,
    actor: CurrentActor,
):
    """Record a payment against a document's pending amount."""
    document = await DocumentService(db).add_payment(document_id, payment_in, actor)
    return DocumentResponse.from_document(document)


@router.put("/{document_id}/due-date", response_model=DocumentResponse)
async def set_due_date(
    document_id: UUID,
    due_in: DueDateUpdate,
    db: DB,
    actor: CurrentActor,
):
    document = await DocumentService(db).set_due_date(document_id, due_in.credit_days, actor)
    return DocumentResponse.from_document(document)


# ==================== Lifecycle ====================

@router.put("/{document_id}/items", response_model=DocumentResponse)
async def update_items(
    document_id: UUID,
    items_in: ItemsUpdate,
    db: DB,
    actor: CurrentActor,
):
    """Replace the lines of a draft or open order and recompute totals."""
    document = await DocumentService(db).update_items(document_id, items_in, actor)
    return DocumentResponse.from_document(document)


@router.put("/{document_id}/status", response_model=DocumentWithStockResponse)
async def change_status(
    document_id: UUID,
    status_in: StatusUpdate,
    db: DB,
    actor: CurrentActor,
):
    result = await DocumentService(db).change_status(document_id, status_in.status, actor)
    return with_stock(result)


@router.post("/{document_id}/cancel", response_model=DocumentWithStockResponse)
async def cancel_document(
    document_id: UUID,
    db: DB,
    actor: CurrentActor,
    cancel_in: Optional[CancelRequest] = None,
):
    """Cancel a document, reversing recorded payments and any stock it moved."""
    reason = cancel_in.reason if cancel_in else None
    result = await DocumentService(db).cancel_document(document_id, reason, actor)
    return with_stock(result)


@router.post("/{document_id}/convert", response_model=ConversionResponse)
async def convert_document(
    document_id: UUID,
    db: DB,
    actor: CurrentActor,
    convert_in: Optional[ConvertRequest] = None,
):
    """
    Convert a sales order to a sale, a purchase order to a purchase, or a
    sale to a purchase in the customer's linked company.

    Repeating the call returns the document created the first time with
    `alreadyConverted` set.
    """
    target_company_id = convert_in.target_company_id if convert_in else None
    result = await DocumentConverter(db).convert(document_id, actor, target_company_id)
    return ConversionResponse(
        source_id=result.source_id,
        already_converted=result.already_converted,
        target=DocumentResponse.from_document(result.target),
        stock_results=stock_results(result.stock_results),
    )


@router.post("/{document_id}/generate-order", response_model=ConversionResponse)
async def generate_counter_order(
    document_id: UUID,
    db: DB,
    actor: CurrentActor,
    generate_in: Optional[ConvertRequest] = None,
):
    """
    Raise the matching order in the counterparty's linked company: a purchase
    order for a sales order, a sales order for a purchase order.

    The source order stays open. Repeating the call returns the order created
    the first time with `alreadyConverted` set.
    """
    target_company_id = generate_in.target_company_id if generate_in else None
    result = await DocumentConverter(db).generate_counter_order(document_id, actor, target_company_id)
    return ConversionResponse(
        source_id=result.source_id,
        already_converted=result.already_converted,
        target=DocumentResponse.from_document(result.target),
    )
