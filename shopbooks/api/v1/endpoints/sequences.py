"""API endpoints for document number sequences."""
from datetime import date
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Query

from shopbooks.api.deps import DB
from shopbooks.api.v1.endpoints.documents import resolve_kind
from shopbooks.schemas.document import SequencePreviewResponse
from shopbooks.services.document_sequence_service import DocumentSequenceService
from shopbooks.services.document_service import resolve_order_type

router = APIRouter()


@router.get("/preview", response_model=SequencePreviewResponse)
async def preview_next_number(
    db: DB,
    company_id: UUID = Query(..., alias="companyId"),
    kind: str = Query(..., description="sales, sales-orders, purchases or purchase-orders"),
    gst_enabled: bool = Query(True, alias="gstEnabled"),
    order_type: Optional[str] = Query(None, alias="orderType"),
    day: Optional[date] = Query(None),
):
    """Show the next document number without consuming it."""
    document_kind = resolve_kind(kind)
    order_type = resolve_order_type(document_kind, order_type)
    service = DocumentSequenceService(db)
    next_number = await service.preview_next_number(
        company_id, document_kind, day, gst_enabled, order_type
    )
    current = await service.get_current_number(
        company_id, document_kind, day, gst_enabled, order_type
    )
    return SequencePreviewResponse(next_number=next_number, current_number=current)
