"""
Document service: create, read, pay, edit and cancel trade documents.

Each mutating operation runs inside run_in_transaction, so a numbering
collision or a concurrent payment is retried once on fresh data. Stock side
effects run after the financial write has committed and are reported per
line; they never undo the document.
"""
import logging
import uuid
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import List, Optional, Sequence, Tuple

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from shopbooks.core.enum_utils import get_enum_value, normalize_enum_input
from shopbooks.core.exceptions import NotFoundError, ValidationError
from shopbooks.core.transactions import run_in_transaction
from shopbooks.config import settings
from shopbooks.models.company import Company
from shopbooks.models.document import (
    Document,
    DocumentItem,
    DocumentKind,
    DocumentStatus,
    OrderType,
    PaymentStatus,
    TaxMode,
)
from shopbooks.models.item import Item
from shopbooks.models.stock_adjustment import StockOperation
from shopbooks.schemas.document import DocumentCreate, ItemsUpdate, LineItemIn, PaymentCreate
from shopbooks.services import document_lifecycle, payment_state_machine
from shopbooks.services.document_sequence_service import DocumentSequenceService
from shopbooks.services.party_directory import PartyDirectory
from shopbooks.services.stock_adjuster import StockAdjuster, StockAdjustmentResult, StockRequest
from shopbooks.services.tax_calculator import (
    LineCalculation,
    LineInput,
    calculate_lines,
    resolve_tax_mode,
    to_decimal,
)
from shopbooks.services.totals_service import aggregate, verify_document


logger = logging.getLogger(__name__)


@dataclass
class DocumentResult:
    document: Document
    stock_results: List[StockAdjustmentResult] = field(default_factory=list)


@dataclass
class StockAvailability:
    """Requested quantity of one item against its current stock."""
    item_id: uuid.UUID
    requested_quantity: Decimal
    name: Optional[str] = None
    available_stock: Optional[Decimal] = None
    is_available: bool = False
    shortfall: Decimal = Decimal("0")
    error: Optional[str] = None


def build_line_inputs(
    items: Sequence[LineItemIn],
    default_tax_mode: TaxMode = TaxMode.EXCLUSIVE,
) -> List[LineInput]:
    """Turn API lines into calculator input, defaulting rate and tax mode."""
    lines = []
    for index, item in enumerate(items):
        try:
            tax_mode = resolve_tax_mode(item.tax_mode, default_tax_mode)
        except ValidationError as exc:
            raise ValidationError(
                f"Item {index + 1}: {exc.message}", field=f"items[{index}].taxMode", line=index + 1
            )
        lines.append(LineInput(
            name=(item.name or "").strip(),
            quantity=item.quantity,
            price_per_unit=item.price_per_unit,
            tax_rate=to_decimal(item.tax_rate, to_decimal(settings.DEFAULT_TAX_RATE)),
            tax_mode=tax_mode,
            discount_percent=to_decimal(item.discount_percent),
            discount_amount=to_decimal(item.discount_amount),
            unit=(item.unit or "PCS").upper(),
            item_id=item.item_id,
        ))
    return lines


def build_document_items(
    lines: Sequence[LineInput],
    calculations: Sequence[LineCalculation],
) -> List[DocumentItem]:
    items = []
    for number, (line, calc) in enumerate(zip(lines, calculations), start=1):
        stored = calc.quantized()
        items.append(DocumentItem(
            line_number=number,
            item_id=line.item_id,
            name=line.name,
            quantity=line.quantity,
            unit=line.unit,
            price_per_unit=line.price_per_unit,
            tax_rate=line.tax_rate,
            tax_mode=line.tax_mode.value,
            discount_percent=line.discount_percent,
            discount_amount=line.discount_amount,
            base_amount=stored.base_amount,
            applied_discount=stored.discount,
            taxable_amount=stored.taxable_amount,
            cgst_amount=stored.cgst_amount,
            sgst_amount=stored.sgst_amount,
            igst_amount=stored.igst_amount,
            tax_amount=stored.cgst_amount + stored.sgst_amount + stored.igst_amount,
            line_total=stored.line_total,
        ))
    return items


def resolve_order_type(kind: DocumentKind, value) -> Optional[str]:
    if kind != DocumentKind.SALES_ORDER:
        return None
    if not value:
        return OrderType.SALES_ORDER.value
    aliases = {"ORDER": OrderType.SALES_ORDER, "QUOTE": OrderType.QUOTATION, "PROFORMA_INVOICE": OrderType.PROFORMA}
    order_type = normalize_enum_input(value, OrderType, aliases)
    if order_type is None:
        raise ValidationError(f"Invalid order type '{value}'", field="orderType")
    return order_type.value


class DocumentService:
    """Lifecycle operations for sales, sales orders, purchases and purchase orders."""

    def __init__(
        self,
        db: AsyncSession,
        sequence_service: Optional[DocumentSequenceService] = None,
        stock_adjuster: Optional[StockAdjuster] = None,
        party_directory: Optional[PartyDirectory] = None,
    ):
        self.db = db
        self.sequence_service = sequence_service or DocumentSequenceService(db)
        self.stock_adjuster = stock_adjuster or StockAdjuster(db)
        self.parties = party_directory or PartyDirectory(db)

    # ==================== Reads ====================

    async def get_company(self, company_id: uuid.UUID) -> Company:
        company = await self.db.get(Company, company_id)
        if company is None:
            raise NotFoundError("Company", company_id)
        return company

    async def get_document(self, document_id: uuid.UUID, for_update: bool = False) -> Document:
        """Load a document with items, history and conversion links, always fresh."""
        stmt = (
            select(Document)
            .where(Document.id == document_id)
            .execution_options(populate_existing=True)
        )
        if for_update:
            stmt = stmt.with_for_update()
        result = await self.db.execute(stmt)
        document = result.scalar_one_or_none()
        if document is None:
            raise NotFoundError("Document", document_id)
        return document

    async def list_documents(
        self,
        company_id: uuid.UUID,
        kind: Optional[DocumentKind] = None,
        status: Optional[str] = None,
        payment_status: Optional[str] = None,
        overdue_only: bool = False,
        today: Optional[date] = None,
        skip: int = 0,
        limit: int = 50,
    ) -> Tuple[List[Document], int]:
        """List documents newest first. payment_status=OVERDUE means overdue_only."""
        today = today or date.today()
        stmt = select(Document).where(Document.company_id == company_id)
        if kind is not None:
            stmt = stmt.where(Document.document_type == get_enum_value(kind))
        if status:
            stmt = stmt.where(Document.status == status.upper())

        payment_status = payment_status.upper() if payment_status else None
        if payment_status == PaymentStatus.OVERDUE.value:
            overdue_only, payment_status = True, None
        if overdue_only:
            stmt = stmt.where(
                Document.payment_status.in_([PaymentStatus.PENDING.value, PaymentStatus.PARTIAL.value]),
                Document.due_date.is_not(None),
                Document.due_date < today,
                Document.pending_amount > 0,
            )
        elif payment_status:
            stmt = stmt.where(Document.payment_status == payment_status)

        result = await self.db.execute(
            stmt.order_by(Document.document_date.desc(), Document.created_at.desc())
        )
        documents = list(result.scalars())
        if payment_status in (PaymentStatus.PENDING.value, PaymentStatus.PARTIAL.value):
            documents = [
                d for d in documents
                if payment_state_machine.resolve_status(d, today) == payment_status
            ]
        return documents[skip:skip + limit], len(documents)

    # ==================== Helpers ====================

    async def _validate_item_refs(self, company_id: uuid.UUID, lines: Sequence[LineInput]) -> None:
        for index, line in enumerate(lines):
            if line.item_id is None:
                continue
            item = await self.db.get(Item, line.item_id)
            if item is None or item.company_id != company_id:
                raise NotFoundError("Item", line.item_id)

    def stock_requests(self, document: Document, operation: str, only_lines=None) -> List[StockRequest]:
        return [
            StockRequest(
                document_id=document.id,
                document_item_id=item.id,
                item_id=item.item_id,
                company_id=document.company_id,
                quantity=item.quantity,
                operation=operation,
            )
            for item in document.items
            if item.item_id is not None and (only_lines is None or item.id in only_lines)
        ]

    async def _stock_on_complete(self, document: Document, actor: str) -> List[StockAdjustmentResult]:
        """Sales take stock out, purchases put it in; orders and drafts never move stock."""
        if document.status != DocumentStatus.COMPLETED.value:
            return []
        if document.document_type == DocumentKind.SALE.value:
            operation = StockOperation.SALE_DECREMENT.value
        elif document.document_type == DocumentKind.PURCHASE.value:
            operation = StockOperation.PURCHASE_INCREMENT.value
        else:
            return []
        return await self.stock_adjuster.apply(self.stock_requests(document, operation), actor)

    async def _stock_on_cancel(self, document: Document, actor: str) -> List[StockAdjustmentResult]:
        """Undo only the stock movements that actually happened."""
        if document.document_type == DocumentKind.SALE.value:
            taken = [StockOperation.SALE_DECREMENT.value, StockOperation.CONVERSION_DECREMENT.value]
            operation = StockOperation.CANCEL_RESTORE.value
        elif document.document_type == DocumentKind.PURCHASE.value:
            taken = [StockOperation.PURCHASE_INCREMENT.value]
            operation = StockOperation.PURCHASE_REVERSAL.value
        else:
            return []
        applied = await self.stock_adjuster.applied_lines(document.id, taken)
        if not applied:
            return []
        return await self.stock_adjuster.apply(
            self.stock_requests(document, operation, only_lines=applied), actor
        )

    async def check_stock(self, company_id: uuid.UUID, items: Sequence[LineItemIn]) -> List[StockAvailability]:
        """
        Compare requested quantities with current stock before a sale is saved.

        Advisory only: creating a sale never blocks on it. Lines naming the
        same item are added up; lines without an item link are skipped.
        """
        requested = {}
        for index, line in enumerate(items):
            if line.item_id is None:
                continue
            quantity = to_decimal(line.quantity)
            if quantity <= 0:
                raise ValidationError(
                    f"Item {index + 1}: quantity must be greater than zero",
                    field=f"items[{index}].quantity",
                    line=index + 1,
                )
            requested[line.item_id] = requested.get(line.item_id, Decimal("0")) + quantity

        results = []
        for item_id, quantity in requested.items():
            item = await self.db.get(Item, item_id)
            if item is None or item.company_id != company_id:
                results.append(StockAvailability(
                    item_id=item_id, requested_quantity=quantity, shortfall=quantity, error="Item not found",
                ))
                continue
            shortfall = max(quantity - item.current_stock, Decimal("0"))
            results.append(StockAvailability(
                item_id=item_id,
                requested_quantity=quantity,
                name=item.name,
                available_stock=item.current_stock,
                is_available=shortfall == 0,
                shortfall=shortfall,
            ))
        return results

    # ==================== Create ====================

    async def create_document(self, kind: DocumentKind, data: DocumentCreate, actor: str) -> DocumentResult:
        """
        Create a document from raw input.

        Lines and totals are computed before anything touches the database,
        so calculation errors fail fast. The number is allocated inside the
        write transaction; a collision on insert is retried once with a new
        number.
        """
        kind = DocumentKind(get_enum_value(kind))
        default_mode = resolve_tax_mode(data.tax_mode)
        lines = build_line_inputs(data.items, default_mode)
        calculations = calculate_lines(lines, data.gst_enabled)
        order_type = resolve_order_type(kind, data.order_type)
        status = document_lifecycle.initial_status(
            kind.value, data.status.upper() if data.status else None
        )
        document_date = data.document_date or date.today()

        async def operation() -> uuid.UUID:
            await self.get_company(data.company_id)
            await self.parties.get_party(data.party_id, data.company_id)
            await self._validate_item_refs(data.company_id, lines)
            allocated = await self.sequence_service.allocate_with_fallback(
                data.company_id, kind, date.today(), data.gst_enabled, order_type
            )

            document = Document(
                document_type=kind.value,
                order_type=order_type,
                document_number=allocated.number,
                number_is_fallback=allocated.is_fallback,
                document_date=document_date,
                company_id=data.company_id,
                party_id=data.party_id,
                gst_enabled=data.gst_enabled,
                tax_mode=default_mode.value,
                notes=data.notes,
                status=status,
                round_off_enabled=data.round_off_enabled,
                created_by=actor,
                items=build_document_items(lines, calculations),
            )
            aggregate(calculations, data.round_off_enabled, data.round_off).apply_to(document)
            payment_state_machine.initial_payment(
                document,
                data.payment.paid_amount,
                data.payment.method,
                actor,
                payment_date=data.payment.payment_date or document_date,
                due_date=data.payment.due_date,
                credit_days=data.payment.credit_days,
                reference=data.payment.reference,
            )
            verify_document(document)

            self.db.add(document)
            await self.db.flush()
            return document.id

        document_id = await run_in_transaction(self.db, operation, label=f"create {kind.value}")
        document = await self.get_document(document_id)
        logger.info("Created %s %s by %s", kind.value, document.document_number, actor)

        results = await self._stock_on_complete(document, actor)
        if results:
            document = await self.get_document(document_id)
        return DocumentResult(document, results)

    # ==================== Edit ====================

    async def update_items(self, document_id: uuid.UUID, data: ItemsUpdate, actor: str) -> Document:
        """Replace all lines and recompute totals from scratch (draft/open orders only)."""

        async def operation() -> None:
            document = await self.get_document(document_id, for_update=True)
            if not document_lifecycle.can_edit_items(document):
                raise ValidationError(
                    f"Items of a {document.status.lower()} document cannot be changed",
                    error_code="DOCUMENT_LOCKED",
                    field="items",
                )
            lines = build_line_inputs(data.items, TaxMode(document.tax_mode))
            calculations = calculate_lines(lines, document.gst_enabled)
            await self._validate_item_refs(document.company_id, lines)

            round_off_enabled = (
                document.round_off_enabled if data.round_off_enabled is None else data.round_off_enabled
            )
            round_off = document.round_off if data.round_off is None else data.round_off

            document.items.clear()
            await self.db.flush()
            document.items.extend(build_document_items(lines, calculations))
            document.round_off_enabled = round_off_enabled
            aggregate(calculations, round_off_enabled, round_off).apply_to(document)
            payment_state_machine.recompute_after_total_change(document)
            document.updated_by = actor
            verify_document(document)
            await self.db.flush()

        await run_in_transaction(self.db, operation, label="update items")
        return await self.get_document(document_id)

    # ==================== Payments ====================

    async def add_payment(self, document_id: uuid.UUID, data: PaymentCreate, actor: str) -> Document:
        """
        Apply a payment under a row lock and a versioned UPDATE.

        Two payments racing on the same document serialize on the lock; where
        the database has no row locks the loser's UPDATE finds a newer version,
        and the retry re-reads the pending amount before validating again. A
        payment that still fits is retried until it lands; one that no longer
        fits fails with OVERPAYMENT.
        """

        async def operation() -> None:
            document = await self.get_document(document_id, for_update=True)
            if document.status == DocumentStatus.CONVERTED.value:
                raise ValidationError(
                    "Payments for a converted order belong on the invoice created from it",
                    error_code="DOCUMENT_CONVERTED",
                )
            payment_state_machine.add_payment(
                document,
                data.amount,
                data.method,
                actor,
                reference=data.reference,
                payment_date=data.payment_date,
                due_date=data.due_date,
            )
            await self.db.flush()

        await run_in_transaction(
            self.db, operation, retries=settings.PAYMENT_CONFLICT_RETRIES, label="add payment"
        )
        document = await self.get_document(document_id)
        logger.info(
            "Payment of %s recorded on %s (pending %s)",
            data.amount, document.document_number, document.pending_amount,
        )
        return document

    async def set_due_date(self, document_id: uuid.UUID, credit_days: int, actor: str) -> Document:
        async def operation() -> None:
            document = await self.get_document(document_id, for_update=True)
            payment_state_machine.set_due_date(document, credit_days, actor)
            await self.db.flush()

        await run_in_transaction(self.db, operation, label="set due date")
        return await self.get_document(document_id)

    # ==================== Status ====================

    async def change_status(self, document_id: uuid.UUID, new_status: str, actor: str) -> DocumentResult:
        """Move along the lifecycle graph. Cancelling and converting have their own operations."""
        new_status = new_status.upper()
        if new_status == DocumentStatus.CANCELLED.value:
            return await self.cancel_document(document_id, None, actor)
        if new_status == DocumentStatus.CONVERTED.value:
            raise ValidationError("Use the convert operation to convert a document", field="status")

        async def operation() -> None:
            document = await self.get_document(document_id, for_update=True)
            document_lifecycle.transition_document(document, new_status, actor)
            await self.db.flush()

        await run_in_transaction(self.db, operation, label="change status")
        document = await self.get_document(document_id)
        results = await self._stock_on_complete(document, actor)
        if results:
            document = await self.get_document(document_id)
        return DocumentResult(document, results)

    async def cancel_document(self, document_id: uuid.UUID, reason: Optional[str], actor: str) -> DocumentResult:
        """
        Cancel a document: reverse the payments in the history, mark it
        CANCELLED, then restore any stock it moved.

        Raises:
            ValidationError: fully paid (REFUND_REQUIRED), already converted,
                or already in a terminal status
        """

        async def operation() -> None:
            document = await self.get_document(document_id, for_update=True)
            if document.is_converted:
                raise ValidationError(
                    "Converted documents cannot be cancelled",
                    error_code="DOCUMENT_CONVERTED",
                )
            document_lifecycle.validate_transition(
                document.document_type, document.status, DocumentStatus.CANCELLED.value
            )
            payment_state_machine.cancel(document, reason, actor)
            document_lifecycle.transition_document(document, DocumentStatus.CANCELLED.value, actor)
            await self.db.flush()

        await run_in_transaction(self.db, operation, label="cancel document")
        document = await self.get_document(document_id)
        logger.info("Cancelled %s by %s: %s", document.document_number, actor, reason)

        results = await self._stock_on_cancel(document, actor)
        if results:
            document = await self.get_document(document_id)
        return DocumentResult(document, results)
