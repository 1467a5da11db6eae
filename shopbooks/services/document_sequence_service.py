"""
Document Sequence Service for Atomic Number Generation

NUMBERING RULES:
- Format: {PREFIX}-{YYYYMMDD}-{SEQ4}
- Separate counter per (company, prefix, day); restarts at 0001 daily
- Counter advanced with one atomic UPDATE ... RETURNING statement inside the
  caller's transaction, so a rolled back document also rolls back its number
  (no gaps) and concurrent writers never see the same value
- Counter exhaustion is loud: SequenceExhaustedError (policy FAIL) or a
  wider sequence (policy WIDEN), never a silent wrap

USAGE:
    from shopbooks.services.document_sequence_service import DocumentSequenceService

    async def create_sale(db: AsyncSession, company_id):
        service = DocumentSequenceService(db)
        number = await service.get_next_number(company_id, DocumentKind.SALE, gst_enabled=True)
        # Returns: GST-20261019-0001

PREFIXES:
    GST / INV       - Sales invoice (GST / non-GST)
    SO / QUO / PI   - Sales order / quotation / proforma invoice
    PO-GST / PO     - Purchase order
    PUR-GST / PUR   - Purchase invoice
"""

import asyncio
import logging
import re
import uuid
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Dict, Optional, Tuple, Union

from sqlalchemy import select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from shopbooks.config import settings
from shopbooks.core.enum_utils import get_enum_value
from shopbooks.core.exceptions import SequenceExhaustedError, ValidationError
from shopbooks.models.document import Document, DocumentKind, OrderType
from shopbooks.models.document_sequence import DocumentSequence


logger = logging.getLogger(__name__)


# (gst prefix, non-gst prefix) per document kind
DOCUMENT_PREFIXES = {
    DocumentKind.SALE.value: ("GST", "INV"),
    DocumentKind.PURCHASE_ORDER.value: ("PO-GST", "PO"),
    DocumentKind.PURCHASE.value: ("PUR-GST", "PUR"),
}

# Sales orders are prefixed by order type, GST or not
ORDER_TYPE_PREFIXES = {
    OrderType.SALES_ORDER.value: "SO",
    OrderType.QUOTATION.value: "QUO",
    OrderType.PROFORMA.value: "PI",
}

FALLBACK_MARKER = "EMRG"


def resolve_prefix(
    kind: Union[DocumentKind, str],
    gst_enabled: bool = True,
    order_type: Optional[Union[OrderType, str]] = None,
) -> str:
    """Return the number prefix for a document kind."""
    kind_value = get_enum_value(kind)
    if kind_value == DocumentKind.SALES_ORDER.value:
        order_value = get_enum_value(order_type) or OrderType.SALES_ORDER.value
        if order_value not in ORDER_TYPE_PREFIXES:
            raise ValidationError(f"Invalid order type '{order_value}'", field="orderType")
        return ORDER_TYPE_PREFIXES[order_value]

    if kind_value not in DOCUMENT_PREFIXES:
        valid = ", ".join(list(DOCUMENT_PREFIXES) + [DocumentKind.SALES_ORDER.value])
        raise ValidationError(f"Invalid document type '{kind_value}'. Valid types: {valid}")
    gst_prefix, plain_prefix = DOCUMENT_PREFIXES[kind_value]
    return gst_prefix if gst_enabled else plain_prefix


def format_document_number(
    prefix: str,
    day: date,
    sequence: int,
    width: Optional[int] = None,
    overflow_policy: Optional[str] = None,
) -> str:
    """
    Format `{PREFIX}-{YYYYMMDD}-{SEQ}`.

    Raises:
        SequenceExhaustedError: sequence does not fit in `width` digits and
            the policy is FAIL. Under WIDEN the number simply grows a digit.
    """
    width = width or settings.SEQUENCE_WIDTH
    overflow_policy = (overflow_policy or settings.SEQUENCE_OVERFLOW_POLICY).upper()

    if sequence > 10 ** width - 1 and overflow_policy != "WIDEN":
        raise SequenceExhaustedError(
            f"Sequence {prefix}-{day.strftime('%Y%m%d')} exhausted: "
            f"more than {10 ** width - 1} documents in one day"
        )
    return f"{prefix}-{day.strftime('%Y%m%d')}-{str(sequence).zfill(width)}"


def parse_sequence(document_number: str, prefix: str, day: date) -> Optional[int]:
    """Extract the sequence part of a regular (non-fallback) number."""
    pattern = rf"^{re.escape(prefix)}-{day.strftime('%Y%m%d')}-(\d+)$"
    match = re.match(pattern, document_number or "")
    return int(match.group(1)) if match else None


# ==================== Counters ====================

class SequenceCounter:
    """Atomic `next_value(key) -> int` abstraction."""

    async def next_value(self, company_id: uuid.UUID, prefix: str, day: date) -> int:
        raise NotImplementedError

    async def current_value(self, company_id: uuid.UUID, prefix: str, day: date) -> int:
        raise NotImplementedError

    async def raise_to(self, company_id: uuid.UUID, prefix: str, day: date, value: int) -> int:
        raise NotImplementedError


class SqlSequenceCounter(SequenceCounter):
    """
    Counter stored in document_sequences.

    `next_value` makes sure the row exists (INSERT ... ON CONFLICT DO NOTHING)
    and then increments it with a single UPDATE ... RETURNING. The row lock
    taken by the UPDATE is held until the caller's transaction ends, which
    serializes allocations for the same key without a read-modify-write.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    def _insert(self):
        dialect = self.db.get_bind().dialect.name
        if dialect == "postgresql":
            return pg_insert(DocumentSequence)
        if dialect == "sqlite":
            return sqlite_insert(DocumentSequence)
        raise NotImplementedError(f"No atomic sequence insert for dialect {dialect}")

    async def _ensure_row(self, company_id: uuid.UUID, prefix: str, day: date) -> None:
        stmt = self._insert().values(
            id=uuid.uuid4(),
            company_id=company_id,
            prefix=prefix,
            sequence_date=day,
            current_number=0,
            updated_at=datetime.now(timezone.utc),
        ).on_conflict_do_nothing(
            index_elements=["company_id", "prefix", "sequence_date"]
        )
        await self.db.execute(stmt)

    def _key(self, company_id: uuid.UUID, prefix: str, day: date):
        return (
            DocumentSequence.company_id == company_id,
            DocumentSequence.prefix == prefix,
            DocumentSequence.sequence_date == day,
        )

    async def next_value(self, company_id: uuid.UUID, prefix: str, day: date) -> int:
        await self._ensure_row(company_id, prefix, day)
        stmt = (
            update(DocumentSequence)
            .where(*self._key(company_id, prefix, day))
            .values(
                current_number=DocumentSequence.current_number + 1,
                updated_at=datetime.now(timezone.utc),
            )
            .returning(DocumentSequence.current_number)
            .execution_options(synchronize_session=False)
        )
        result = await self.db.execute(stmt)
        return result.scalar_one()

    async def current_value(self, company_id: uuid.UUID, prefix: str, day: date) -> int:
        result = await self.db.execute(
            select(DocumentSequence.current_number).where(*self._key(company_id, prefix, day))
        )
        return result.scalar_one_or_none() or 0

    async def raise_to(self, company_id: uuid.UUID, prefix: str, day: date, value: int) -> int:
        await self._ensure_row(company_id, prefix, day)
        await self.db.execute(
            update(DocumentSequence)
            .where(*self._key(company_id, prefix, day), DocumentSequence.current_number < value)
            .values(current_number=value, updated_at=datetime.now(timezone.utc))
            .execution_options(synchronize_session=False)
        )
        return await self.current_value(company_id, prefix, day)


class InMemorySequenceCounter(SequenceCounter):
    """Process-local counter guarded by an asyncio.Lock (tests and tooling)."""

    def __init__(self):
        self._values: Dict[Tuple[uuid.UUID, str, date], int] = {}
        self._lock = asyncio.Lock()

    async def next_value(self, company_id: uuid.UUID, prefix: str, day: date) -> int:
        async with self._lock:
            key = (company_id, prefix, day)
            self._values[key] = self._values.get(key, 0) + 1
            return self._values[key]

    async def current_value(self, company_id: uuid.UUID, prefix: str, day: date) -> int:
        return self._values.get((company_id, prefix, day), 0)

    async def raise_to(self, company_id: uuid.UUID, prefix: str, day: date, value: int) -> int:
        async with self._lock:
            key = (company_id, prefix, day)
            self._values[key] = max(self._values.get(key, 0), value)
            return self._values[key]


# ==================== Service ====================

@dataclass(frozen=True)
class AllocatedNumber:
    number: str
    sequence: Optional[int]
    is_fallback: bool = False


class DocumentSequenceService:
    """
    Service for generating document numbers.

    Features:
    - Atomic per-(company, prefix, day) counters
    - Preview without consuming a number
    - Re-seeding a counter from existing documents (repair path)
    - Flagged timestamp numbers when the counter store is unavailable
    """

    def __init__(
        self,
        db: Optional[AsyncSession] = None,
        counter: Optional[SequenceCounter] = None,
        width: Optional[int] = None,
        overflow_policy: Optional[str] = None,
    ):
        """
        Initialize the service.

        Args:
            db: Async database session (required for the SQL counter and sync)
            counter: Counter implementation; defaults to SqlSequenceCounter(db)
            width: Sequence digits (default SEQUENCE_WIDTH)
            overflow_policy: FAIL or WIDEN (default SEQUENCE_OVERFLOW_POLICY)
        """
        if counter is None and db is None:
            raise ValueError("DocumentSequenceService needs a session or a counter")
        self.db = db
        self.counter = counter or SqlSequenceCounter(db)
        self.width = width or settings.SEQUENCE_WIDTH
        self.overflow_policy = overflow_policy or settings.SEQUENCE_OVERFLOW_POLICY

    def _format(self, prefix: str, day: date, sequence: int) -> str:
        return format_document_number(prefix, day, sequence, self.width, self.overflow_policy)

    async def get_next_number(
        self,
        company_id: uuid.UUID,
        kind: Union[DocumentKind, str],
        day: Optional[date] = None,
        gst_enabled: bool = True,
        order_type: Optional[Union[OrderType, str]] = None,
    ) -> str:
        """
        Consume and return the next number for a company/kind/day.

        Raises:
            ValidationError: unknown document kind or order type
            SequenceExhaustedError: counter passed 9999 under policy FAIL
        """
        allocated = await self._allocate(company_id, kind, day, gst_enabled, order_type)
        return allocated.number

    async def _allocate(self, company_id, kind, day, gst_enabled, order_type) -> AllocatedNumber:
        prefix = resolve_prefix(kind, gst_enabled, order_type)
        day = day or date.today()
        sequence = await self.counter.next_value(company_id, prefix, day)
        return AllocatedNumber(self._format(prefix, day, sequence), sequence)

    async def allocate_with_fallback(
        self,
        company_id: uuid.UUID,
        kind: Union[DocumentKind, str],
        day: Optional[date] = None,
        gst_enabled: bool = True,
        order_type: Optional[Union[OrderType, str]] = None,
    ) -> AllocatedNumber:
        """
        Allocate a number, substituting a flagged timestamp number when the
        counter store itself fails.

        Call this before staging anything else in the session: a database
        failure rolls the session back so the caller's transaction can go on.
        Exhaustion and validation errors are never replaced by a fallback.
        """
        try:
            return await self._allocate(company_id, kind, day, gst_enabled, order_type)
        except SQLAlchemyError as exc:
            if self.db is not None:
                await self.db.rollback()
            prefix = resolve_prefix(kind, gst_enabled, order_type)
            number = self.fallback_number(prefix, day or date.today())
            logger.warning(
                "Sequence counter unavailable for company %s prefix %s, issuing fallback number %s: %s",
                company_id, prefix, number, exc,
            )
            return AllocatedNumber(number, None, is_fallback=True)

    @staticmethod
    def fallback_number(prefix: str, day: date) -> str:
        stamp = datetime.now(timezone.utc).strftime("%H%M%S%f")
        return f"{prefix}-{day.strftime('%Y%m%d')}-{FALLBACK_MARKER}{stamp}"

    async def preview_next_number(
        self,
        company_id: uuid.UUID,
        kind: Union[DocumentKind, str],
        day: Optional[date] = None,
        gst_enabled: bool = True,
        order_type: Optional[Union[OrderType, str]] = None,
    ) -> str:
        """What the next number would be, without consuming it."""
        prefix = resolve_prefix(kind, gst_enabled, order_type)
        day = day or date.today()
        current = await self.counter.current_value(company_id, prefix, day)
        return self._format(prefix, day, current + 1)

    async def get_current_number(
        self,
        company_id: uuid.UUID,
        kind: Union[DocumentKind, str],
        day: Optional[date] = None,
        gst_enabled: bool = True,
        order_type: Optional[Union[OrderType, str]] = None,
    ) -> int:
        prefix = resolve_prefix(kind, gst_enabled, order_type)
        return await self.counter.current_value(company_id, prefix, day or date.today())

    async def sync_sequence_from_max(
        self,
        company_id: uuid.UUID,
        kind: Union[DocumentKind, str],
        day: Optional[date] = None,
        gst_enabled: bool = True,
        order_type: Optional[Union[OrderType, str]] = None,
    ) -> int:
        """
        Raise the counter to the highest number already used by documents.

        Repair path for counters lost or restored from an older backup; the
        counter never moves backwards. Returns the resulting counter value.
        """
        if self.db is None:
            raise ValueError("sync_sequence_from_max needs a database session")

        prefix = resolve_prefix(kind, gst_enabled, order_type)
        day = day or date.today()
        result = await self.db.execute(
            select(Document.document_number).where(
                Document.company_id == company_id,
                Document.document_type == get_enum_value(kind),
                Document.document_number.like(f"{prefix}-{day.strftime('%Y%m%d')}-%"),
            )
        )
        highest = max(
            (seq for seq in (parse_sequence(n, prefix, day) for n in result.scalars()) if seq is not None),
            default=0,
        )
        value = await self.counter.raise_to(company_id, prefix, day, highest)
        logger.info("Synced sequence %s-%s for company %s to %d", prefix, day, company_id, value)
        return value
