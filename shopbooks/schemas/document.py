"""Pydantic schemas for trade documents.

Inputs accept the field spellings used by the different screens (taxMode or
gstMode, with-tax / include / inclusive, ...). Outputs carry one canonical
value per field plus the compatibility aliases readers still expect:

    cgstAmount / cgst      sgstAmount / sgst      igstAmount / igst
    lineTotal / amount / itemAmount

Order lines report `gstMode` (include/exclude); invoice lines report
`taxMode` (with-tax/without-tax).
"""
from datetime import date, datetime
from decimal import Decimal
from typing import Any, List, Optional
from uuid import UUID

from pydantic import AliasChoices, Field, computed_field, model_serializer

from shopbooks.models.document import Document, DocumentItem, TaxMode, ORDER_KINDS
from shopbooks.schemas.base import BaseCreateSchema, BaseResponseSchema
from shopbooks.services import payment_state_machine
from shopbooks.services.stock_adjuster import StockAdjustmentResult


INVOICE_MODE_LABELS = {TaxMode.INCLUSIVE.value: "with-tax", TaxMode.EXCLUSIVE.value: "without-tax"}
ORDER_MODE_LABELS = {TaxMode.INCLUSIVE.value: "include", TaxMode.EXCLUSIVE.value: "exclude"}


# ==================== Input ====================

class LineItemIn(BaseCreateSchema):
    """A line as entered. Numeric checks happen in the tax calculator so the
    error can name the offending line."""
    item_id: Optional[UUID] = None
    name: Optional[str] = None
    quantity: Optional[Decimal] = None
    unit: str = "PCS"
    price_per_unit: Optional[Decimal] = Field(
        None, validation_alias=AliasChoices("pricePerUnit", "price_per_unit", "price", "rate")
    )
    tax_rate: Optional[Decimal] = None
    tax_mode: Optional[str] = Field(
        None, validation_alias=AliasChoices("taxMode", "tax_mode", "gstMode", "gst_mode")
    )
    discount_percent: Decimal = Decimal("0")
    discount_amount: Decimal = Decimal("0")


class PaymentIn(BaseCreateSchema):
    method: Optional[str] = "cash"
    paid_amount: Decimal = Field(
        Decimal("0"), validation_alias=AliasChoices("paidAmount", "paid_amount", "advanceAmount")
    )
    payment_date: Optional[date] = None
    due_date: Optional[date] = None
    credit_days: int = 0
    reference: Optional[str] = None


class DocumentCreate(BaseCreateSchema):
    company_id: UUID
    party_id: UUID
    document_date: Optional[date] = None
    order_type: Optional[str] = None
    gst_enabled: bool = True
    tax_mode: Optional[str] = Field(
        None, validation_alias=AliasChoices("taxMode", "tax_mode", "gstMode", "gst_mode")
    )
    items: List[LineItemIn] = Field(default_factory=list)
    round_off_enabled: bool = False
    round_off: Decimal = Decimal("0")
    payment: PaymentIn = Field(default_factory=PaymentIn)
    status: Optional[str] = None
    notes: Optional[str] = None


class ItemsUpdate(BaseCreateSchema):
    items: List[LineItemIn]
    round_off_enabled: Optional[bool] = None
    round_off: Optional[Decimal] = None


class PaymentCreate(BaseCreateSchema):
    amount: Decimal
    method: Optional[str] = "cash"
    reference: Optional[str] = None
    payment_date: Optional[date] = None
    due_date: Optional[date] = None


class DueDateUpdate(BaseCreateSchema):
    credit_days: int = Field(..., ge=0)


class CancelRequest(BaseCreateSchema):
    reason: Optional[str] = None


class StatusUpdate(BaseCreateSchema):
    status: str


class ConvertRequest(BaseCreateSchema):
    target_company_id: Optional[UUID] = None


class StockCheckRequest(BaseCreateSchema):
    company_id: UUID
    items: List[LineItemIn]


# ==================== Output ====================

class DocumentItemResponse(BaseResponseSchema):
    id: UUID
    line_number: int
    item_id: Optional[UUID] = None
    name: str
    quantity: Decimal
    unit: str
    price_per_unit: Decimal
    tax_rate: Decimal
    tax_mode: Optional[str] = None
    gst_mode: Optional[str] = None
    discount_percent: Decimal
    discount_amount: Decimal
    taxable_amount: Decimal
    cgst_amount: Decimal
    sgst_amount: Decimal
    igst_amount: Decimal
    tax_amount: Decimal
    line_total: Decimal

    @computed_field(alias="cgst")
    @property
    def cgst(self) -> Decimal:
        return self.cgst_amount

    @computed_field(alias="sgst")
    @property
    def sgst(self) -> Decimal:
        return self.sgst_amount

    @computed_field(alias="igst")
    @property
    def igst(self) -> Decimal:
        return self.igst_amount

    @computed_field(alias="amount")
    @property
    def amount(self) -> Decimal:
        return self.line_total

    @computed_field(alias="itemAmount")
    @property
    def item_amount(self) -> Decimal:
        return self.line_total

    @model_serializer(mode="wrap")
    def _drop_unused_mode(self, handler) -> dict:
        data = handler(self)
        for key in ("taxMode", "gstMode", "tax_mode", "gst_mode"):
            if key in data and data[key] is None:
                del data[key]
        return data

    @classmethod
    def from_item(cls, item: DocumentItem, is_order: bool) -> "DocumentItemResponse":
        labels = ORDER_MODE_LABELS if is_order else INVOICE_MODE_LABELS
        label = labels.get(item.tax_mode, item.tax_mode.lower())
        return cls(
            id=item.id,
            line_number=item.line_number,
            item_id=item.item_id,
            name=item.name,
            quantity=item.quantity,
            unit=item.unit,
            price_per_unit=item.price_per_unit,
            tax_rate=item.tax_rate,
            tax_mode=None if is_order else label,
            gst_mode=label if is_order else None,
            discount_percent=item.discount_percent,
            discount_amount=item.discount_amount,
            taxable_amount=item.taxable_amount,
            cgst_amount=item.cgst_amount,
            sgst_amount=item.sgst_amount,
            igst_amount=item.igst_amount,
            tax_amount=item.tax_amount,
            line_total=item.line_total,
        )


class TotalsResponse(BaseResponseSchema):
    subtotal: Decimal
    total_discount: Decimal
    total_taxable_amount: Decimal
    total_cgst: Decimal
    total_sgst: Decimal
    total_igst: Decimal
    total_tax: Decimal
    round_off_enabled: bool
    round_off: Decimal
    final_total: Decimal


class PaymentInfoResponse(BaseResponseSchema):
    method: str
    status: str
    paid_amount: Decimal
    pending_amount: Decimal
    payment_date: Optional[date] = None
    due_date: Optional[date] = None
    credit_days: int
    reference: Optional[str] = None


class PaymentHistoryResponse(BaseResponseSchema):
    entry_number: int
    amount: Decimal
    method: str
    reference: Optional[str] = None
    payment_date: date
    due_date: Optional[date] = None
    note: Optional[str] = None
    created_by: str
    created_at: datetime


class ConversionInfo(BaseResponseSchema):
    is_converted: bool
    converted_at: Optional[datetime] = None
    converted_by: Optional[str] = None
    target_id: Optional[UUID] = None
    target_type: Optional[str] = None
    source_id: Optional[UUID] = None
    source_type: Optional[str] = None
    counter_order_id: Optional[UUID] = None
    generated_from_id: Optional[UUID] = None


class DocumentResponse(BaseResponseSchema):
    id: UUID
    document_type: str
    order_type: Optional[str] = None
    document_number: str
    number_is_fallback: bool
    document_date: date
    company_id: UUID
    party_id: UUID
    gst_enabled: bool
    status: str
    notes: Optional[str] = None
    cancellation_reason: Optional[str] = None
    items: List[DocumentItemResponse]
    totals: TotalsResponse
    payment: PaymentInfoResponse
    payment_history: List[PaymentHistoryResponse]
    conversion: ConversionInfo
    created_by: str
    updated_by: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    version: int

    @classmethod
    def from_document(cls, document: Document, today: Optional[date] = None) -> "DocumentResponse":
        is_order = document.document_type in ORDER_KINDS
        link_out = document.conversion
        link_in = document.converted_from
        return cls(
            id=document.id,
            document_type=document.document_type,
            order_type=document.order_type,
            document_number=document.document_number,
            number_is_fallback=document.number_is_fallback,
            document_date=document.document_date,
            company_id=document.company_id,
            party_id=document.party_id,
            gst_enabled=document.gst_enabled,
            status=document.status,
            notes=document.notes,
            cancellation_reason=document.cancellation_reason,
            items=[DocumentItemResponse.from_item(item, is_order) for item in document.items],
            totals=TotalsResponse.model_validate(document),
            payment=PaymentInfoResponse(
                method=document.payment_method,
                status=payment_state_machine.resolve_status(document, today),
                paid_amount=document.paid_amount,
                pending_amount=document.pending_amount,
                payment_date=document.payment_date,
                due_date=document.due_date,
                credit_days=document.credit_days,
                reference=document.payment_reference,
            ),
            payment_history=[
                PaymentHistoryResponse.model_validate(entry) for entry in document.payment_history
            ],
            conversion=ConversionInfo(
                is_converted=document.is_converted,
                converted_at=document.converted_at,
                converted_by=document.converted_by,
                target_id=link_out.target_id if link_out else None,
                target_type=link_out.target_type if link_out else None,
                source_id=link_in.source_id if link_in else None,
                source_type=link_in.source_type if link_in else None,
                counter_order_id=document.counter_order_id,
                generated_from_id=document.generated_from_id,
            ),
            created_by=document.created_by,
            updated_by=document.updated_by,
            created_at=document.created_at,
            updated_at=document.updated_at,
            version=document.version,
        )


class StockResultResponse(BaseResponseSchema):
    document_item_id: UUID
    item_id: UUID
    operation: str
    status: str
    channel: Optional[str] = None
    new_stock: Optional[Decimal] = None
    error: Optional[str] = None
    skipped: bool = False

    @classmethod
    def from_result(cls, result: StockAdjustmentResult) -> "StockResultResponse":
        return cls.model_validate(result)


class DocumentWithStockResponse(BaseResponseSchema):
    document: DocumentResponse
    stock_results: List[StockResultResponse] = Field(default_factory=list)


class ConversionResponse(BaseResponseSchema):
    source_id: UUID
    already_converted: bool
    target: DocumentResponse
    stock_results: List[StockResultResponse] = Field(default_factory=list)


class StockAvailabilityResponse(BaseResponseSchema):
    item_id: UUID
    name: Optional[str] = None
    requested_quantity: Decimal
    available_stock: Optional[Decimal] = None
    is_available: bool
    shortfall: Decimal
    error: Optional[str] = None


class StockCheckResponse(BaseResponseSchema):
    all_items_available: bool
    lines: List[StockAvailabilityResponse]

    @classmethod
    def from_results(cls, results: List[Any]) -> "StockCheckResponse":
        return cls(
            all_items_available=all(result.is_available for result in results),
            lines=[StockAvailabilityResponse.model_validate(result) for result in results],
        )


class DocumentListResponse(BaseResponseSchema):
    items: List[DocumentResponse]
    total: int


class SequencePreviewResponse(BaseResponseSchema):
    next_number: str
    current_number: int


def stock_results(results: List[Any]) -> List[StockResultResponse]:
    return [StockResultResponse.from_result(result) for result in results]
