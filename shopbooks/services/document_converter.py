"""
Document conversion.

Supported paths:

    SALES_ORDER    -> SALE       same company, stock taken out on conversion
    PURCHASE_ORDER -> PURCHASE   same company, stock put in on conversion
    SALE           -> PURCHASE   the customer's own company (cross-company),
                                 no stock movement

Counter orders (`generate_counter_order`) mirror an order into the
counterparty's linked company without converting it:

    SALES_ORDER    -> PURCHASE_ORDER   in the customer's company
    PURCHASE_ORDER -> SALES_ORDER      in the supplier's company

The source company is found or created there as a supplier or customer.
The source stays open and can still be converted to an invoice later.

Exactly once: the source is claimed with a compare-and-set UPDATE
(`is_converted = false -> true`, or `counter_order_generated` for counter
orders) before any target is built. The claim, target, link and source
status are written in one transaction, so a target without a claimed source
is never visible. A caller that loses the race, or repeats a finished
conversion, gets the existing target back with `already_converted=True`.
"""
import logging
import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import List, Optional, Tuple

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from shopbooks.core.exceptions import ConflictError, InvariantViolation, ValidationError
from shopbooks.core.transactions import run_in_transaction
from shopbooks.models.document import (
    Document,
    DocumentConversion,
    DocumentItem,
    DocumentKind,
    DocumentStatus,
    OrderType,
)
from shopbooks.models.party import PartyType
from shopbooks.models.stock_adjustment import StockOperation
from shopbooks.services import document_lifecycle, payment_state_machine
from shopbooks.services.document_sequence_service import AllocatedNumber, DocumentSequenceService
from shopbooks.services.document_service import DocumentService
from shopbooks.services.party_directory import PartyDirectory
from shopbooks.services.stock_adjuster import StockAdjuster, StockAdjustmentResult
from shopbooks.services.totals_service import verify_document


logger = logging.getLogger(__name__)


# source kind -> (target kind, cross-company)
CONVERSION_PATHS = {
    DocumentKind.SALES_ORDER.value: (DocumentKind.SALE.value, False),
    DocumentKind.PURCHASE_ORDER.value: (DocumentKind.PURCHASE.value, False),
    DocumentKind.SALE.value: (DocumentKind.PURCHASE.value, True),
}

# order kind -> (counter order kind, role of the source company in the target company)
COUNTER_ORDER_PATHS = {
    DocumentKind.SALES_ORDER.value: (DocumentKind.PURCHASE_ORDER.value, PartyType.SUPPLIER),
    DocumentKind.PURCHASE_ORDER.value: (DocumentKind.SALES_ORDER.value, PartyType.CUSTOMER),
}

# Stock movement on the target of a same-company conversion
CONVERSION_STOCK_OPERATIONS = {
    DocumentKind.SALE.value: StockOperation.CONVERSION_DECREMENT.value,
    DocumentKind.PURCHASE.value: StockOperation.PURCHASE_INCREMENT.value,
}

UNIT_ALIASES = {"PC": "PCS", "PIECE": "PCS", "PIECES": "PCS", "NOS": "PCS"}


@dataclass
class ConversionResult:
    source_id: uuid.UUID
    target: Document
    already_converted: bool
    stock_results: List[StockAdjustmentResult] = field(default_factory=list)


def normalize_unit(unit: Optional[str]) -> str:
    value = (unit or "PCS").strip().upper()
    return UNIT_ALIASES.get(value, value)


def remap_items(source: Document, keep_item_links: bool) -> List[DocumentItem]:
    """
    Copy source lines into target lines.

    Amounts are carried verbatim (tax was settled on the source); only names
    and enum spellings are translated. Item links are dropped when the target
    lives in another company's inventory.
    """
    return [
        DocumentItem(
            line_number=item.line_number,
            item_id=item.item_id if keep_item_links else None,
            name=item.name,
            quantity=item.quantity,
            unit=normalize_unit(item.unit),
            price_per_unit=item.price_per_unit,
            tax_rate=item.tax_rate,
            tax_mode=item.tax_mode,
            discount_percent=item.discount_percent,
            discount_amount=item.discount_amount,
            base_amount=item.base_amount,
            applied_discount=item.applied_discount,
            taxable_amount=item.taxable_amount,
            cgst_amount=item.cgst_amount,
            sgst_amount=item.sgst_amount,
            igst_amount=item.igst_amount,
            tax_amount=item.tax_amount,
            line_total=item.line_total,
        )
        for item in source.items
    ]


def build_target(
    source: Document,
    kind: str,
    company_id: uuid.UUID,
    party_id: uuid.UUID,
    allocated: AllocatedNumber,
    actor: str,
    status: str,
    keep_item_links: bool,
    note: str,
    order_type: Optional[str] = None,
) -> Document:
    """New document carrying the source's lines, totals and payment."""
    today = date.today()
    target = Document(
        document_type=kind,
        order_type=order_type,
        document_number=allocated.number,
        number_is_fallback=allocated.is_fallback,
        document_date=today,
        company_id=company_id,
        party_id=party_id,
        gst_enabled=source.gst_enabled,
        tax_mode=source.tax_mode,
        notes=source.notes,
        status=status,
        subtotal=source.subtotal,
        total_discount=source.total_discount,
        total_taxable_amount=source.total_taxable_amount,
        total_cgst=source.total_cgst,
        total_sgst=source.total_sgst,
        total_igst=source.total_igst,
        total_tax=source.total_tax,
        round_off_enabled=source.round_off_enabled,
        round_off=source.round_off,
        final_total=source.final_total,
        created_by=actor,
        items=remap_items(source, keep_item_links=keep_item_links),
    )
    payment_state_machine.initial_payment(
        target,
        source.paid_amount,
        source.payment_method,
        actor,
        payment_date=today,
        due_date=source.due_date,
        credit_days=source.credit_days,
        reference=source.payment_reference,
        note=note,
    )
    verify_document(target)
    return target


class DocumentConverter:
    """Converts orders to invoices, sales invoices to cross-company purchases,
    and mirrors orders into the counterparty's company."""

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
        self.documents = DocumentService(
            db,
            sequence_service=self.sequence_service,
            stock_adjuster=self.stock_adjuster,
            party_directory=self.parties,
        )

    async def _claim(self, source_id: uuid.UUID, actor: str) -> bool:
        """Compare-and-set the converted flag. False means someone else holds it."""
        result = await self.db.execute(
            update(Document)
            .where(Document.id == source_id, Document.is_converted.is_(False))
            .values(
                is_converted=True,
                converted_at=datetime.now(timezone.utc),
                converted_by=actor,
                version=Document.version + 1,
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def _resolve_target_company(
        self,
        source: Document,
        cross_company: bool,
        explicit_target: Optional[uuid.UUID],
    ) -> uuid.UUID:
        if not cross_company:
            if explicit_target is not None and explicit_target != source.company_id:
                raise ValidationError(
                    "Orders convert within their own company", field="targetCompanyId"
                )
            return source.company_id

        target_company_id = explicit_target
        if target_company_id is None:
            party = await self.parties.get_party(source.party_id)
            target_company_id = party.linked_company_id
        if target_company_id is None:
            raise ValidationError(
                "Party is not linked to a company; pass targetCompanyId",
                field="targetCompanyId",
            )
        if target_company_id == source.company_id:
            raise ValidationError(
                "Cross-company conversion needs a target company different from the source company",
                error_code="SAME_COMPANY_CONVERSION",
                field="targetCompanyId",
            )
        await self.documents.get_company(target_company_id)
        return target_company_id

    def _check_source(self, source: Document) -> Tuple[str, bool]:
        if source.document_type not in CONVERSION_PATHS:
            raise ValidationError(f"{source.document_type} documents cannot be converted")
        if source.status == DocumentStatus.CANCELLED.value:
            raise ValidationError("Cancelled documents cannot be converted")
        if source.document_type == DocumentKind.SALE.value and source.status != DocumentStatus.COMPLETED.value:
            raise ValidationError("Only completed sales can be converted to a purchase")
        return CONVERSION_PATHS[source.document_type]

    async def convert(
        self,
        source_id: uuid.UUID,
        actor: str,
        target_company_id: Optional[uuid.UUID] = None,
    ) -> ConversionResult:
        """
        Convert a document exactly once.

        Raises:
            NotFoundError: unknown source, target company or customer
            ValidationError: unsupported path, cancelled source, same-company
                cross conversion
            ConflictError: lost the claim twice in a row
        """

        async def operation() -> Tuple[uuid.UUID, bool]:
            source = await self.documents.get_document(source_id)
            if source.is_converted:
                return self._existing_target(source), True

            target_kind, cross_company = self._check_source(source)
            company_id = await self._resolve_target_company(source, cross_company, target_company_id)
            gst_enabled = source.gst_enabled
            source_company_id = source.company_id

            allocated = await self.sequence_service.allocate_with_fallback(
                company_id, target_kind, date.today(), gst_enabled
            )
            if not await self._claim(source_id, actor):
                raise ConflictError(f"Document {source_id} is being converted by another request")

            # Fresh copy: the claim bumped the version behind the ORM's back
            source = await self.documents.get_document(source_id)
            if cross_company:
                source_company = await self.documents.get_company(source_company_id)
                counterparty = await self.parties.find_or_create_counterparty(
                    company_id, source_company, actor, PartyType.SUPPLIER
                )
                party_id = counterparty.id
            else:
                party_id = source.party_id

            target = build_target(
                source, target_kind, company_id, party_id, allocated, actor,
                status=DocumentStatus.COMPLETED.value,
                keep_item_links=not cross_company,
                note=f"Carried over from {source.document_number}",
            )
            self.db.add(target)
            await self.db.flush()

            self.db.add(DocumentConversion(
                source_id=source.id,
                source_type=source.document_type,
                target_id=target.id,
                target_type=target_kind,
                target_company_id=company_id,
                converted_by=actor,
            ))
            if source.is_order:
                document_lifecycle.transition_document(source, DocumentStatus.CONVERTED.value, actor)
            source.updated_by = actor
            await self.db.flush()
            return target.id, False

        target_id, already_converted = await run_in_transaction(
            self.db, operation, label="convert document"
        )
        target = await self.documents.get_document(target_id)

        if already_converted:
            logger.info("Document %s already converted to %s", source_id, target.document_number)
            return ConversionResult(source_id, target, True)

        logger.info(
            "Converted document %s to %s %s by %s",
            source_id, target.document_type, target.document_number, actor,
        )
        results = await self._stock_for_target(target, actor)
        if results:
            target = await self.documents.get_document(target_id)
        return ConversionResult(source_id, target, False, results)

    def _existing_target(self, source: Document) -> uuid.UUID:
        if source.conversion is None:
            raise InvariantViolation(f"Document {source.id} is marked converted but has no conversion link")
        return source.conversion.target_id

    async def _stock_for_target(self, target: Document, actor: str) -> List[StockAdjustmentResult]:
        link = target.converted_from
        if link is None or link.is_cross_company:
            return []
        operation = CONVERSION_STOCK_OPERATIONS.get(target.document_type)
        if operation is None:
            return []
        requests = self.documents.stock_requests(target, operation)
        return await self.stock_adjuster.apply(requests, actor)

    # ==================== Counter orders ====================

    async def _claim_counter_order(self, source_id: uuid.UUID, actor: str) -> bool:
        result = await self.db.execute(
            update(Document)
            .where(Document.id == source_id, Document.counter_order_generated.is_(False))
            .values(
                counter_order_generated=True,
                counter_order_generated_at=datetime.now(timezone.utc),
                counter_order_generated_by=actor,
                version=Document.version + 1,
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def generate_counter_order(
        self,
        source_id: uuid.UUID,
        actor: str,
        target_company_id: Optional[uuid.UUID] = None,
    ) -> ConversionResult:
        """
        Raise the matching order in the counterparty's company, exactly once.

        A sales order becomes a purchase order of the customer's linked
        company; a purchase order becomes a sales order of the supplier's.
        The counter order starts as DRAFT, drops item links and moves no
        stock. The source keeps its status.

        Raises:
            NotFoundError: unknown source or target company
            ValidationError: not an order, cancelled source, party without a
                linked company, same-company target
            ConflictError: lost the claim twice in a row
        """

        async def operation() -> Tuple[uuid.UUID, bool]:
            source = await self.documents.get_document(source_id)
            if source.counter_order_generated:
                if source.counter_order_id is None:
                    raise InvariantViolation(
                        f"Document {source.id} is marked as mirrored but has no counter order"
                    )
                return source.counter_order_id, True

            path = COUNTER_ORDER_PATHS.get(source.document_type)
            if path is None:
                raise ValidationError(f"{source.document_type} documents cannot generate a counter order")
            if source.status == DocumentStatus.CANCELLED.value:
                raise ValidationError("Cancelled orders cannot generate a counter order")
            target_kind, party_type = path
            company_id = await self._resolve_target_company(source, True, target_company_id)
            source_company_id = source.company_id
            order_type = OrderType.SALES_ORDER.value if target_kind == DocumentKind.SALES_ORDER.value else None

            allocated = await self.sequence_service.allocate_with_fallback(
                company_id, target_kind, date.today(), source.gst_enabled, order_type
            )
            if not await self._claim_counter_order(source_id, actor):
                raise ConflictError(f"Document {source_id} is being mirrored by another request")

            source = await self.documents.get_document(source_id)
            source_company = await self.documents.get_company(source_company_id)
            counterparty = await self.parties.find_or_create_counterparty(
                company_id, source_company, actor, party_type
            )

            target = build_target(
                source, target_kind, company_id, counterparty.id, allocated, actor,
                status=document_lifecycle.initial_status(target_kind),
                keep_item_links=False,
                note=f"Mirrored from {source.document_number}",
                order_type=order_type,
            )
            target.generated_from_id = source.id
            self.db.add(target)
            await self.db.flush()

            source.counter_order_id = target.id
            source.updated_by = actor
            await self.db.flush()
            return target.id, False

        target_id, already_generated = await run_in_transaction(
            self.db, operation, label="generate counter order"
        )
        target = await self.documents.get_document(target_id)
        if already_generated:
            logger.info("Document %s already mirrored as %s", source_id, target.document_number)
        else:
            logger.info(
                "Generated %s %s in company %s from document %s by %s",
                target.document_type, target.document_number, target.company_id, source_id, actor,
            )
        return ConversionResult(source_id, target, already_generated)
