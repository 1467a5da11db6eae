"""Trade document models (sales invoices, sales orders, purchases, purchase orders).

All four document kinds share one table: they are structurally identical and
differ only in numbering prefix, lifecycle statuses and stock behaviour.

Supports:
- Line items with a GST (CGST/SGST) breakdown
- Document totals with optional round-off
- Payment info plus an append-only payment history
- A single conversion link per source document (order → invoice,
  sales invoice → cross-company purchase invoice)
- Counter orders raised in the counterparty's company (sales order ↔
  purchase order), tracked apart from the conversion link
"""
import uuid
from datetime import datetime, date, timezone
from decimal import Decimal
from enum import Enum
from typing import List, Optional

from sqlalchemy import (
    String, Boolean, DateTime, Date, ForeignKey, Integer, Text,
    UniqueConstraint, Index,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from shopbooks.database import Base
from shopbooks.db_types import UUIDType, MoneyType, QuantityType, RateType


class DocumentKind(str, Enum):
    """Document kind enumeration."""
    SALE = "SALE"                       # Sales invoice
    SALES_ORDER = "SALES_ORDER"         # Sales order / quotation / proforma
    PURCHASE = "PURCHASE"               # Purchase invoice
    PURCHASE_ORDER = "PURCHASE_ORDER"


class OrderType(str, Enum):
    """Sales order sub-type (drives the numbering prefix)."""
    SALES_ORDER = "SALES_ORDER"
    QUOTATION = "QUOTATION"
    PROFORMA = "PROFORMA"


class TaxMode(str, Enum):
    """Whether line prices already include GST."""
    EXCLUSIVE = "EXCLUSIVE"
    INCLUSIVE = "INCLUSIVE"


class DocumentStatus(str, Enum):
    """Document lifecycle status."""
    DRAFT = "DRAFT"
    CONFIRMED = "CONFIRMED"       # Orders only
    COMPLETED = "COMPLETED"       # Invoices only
    CONVERTED = "CONVERTED"       # Orders only, terminal
    CANCELLED = "CANCELLED"       # Terminal


class PaymentStatus(str, Enum):
    """
    Payment status enumeration.

    OVERDUE is never stored: it is derived from PENDING/PARTIAL when the
    due date has passed with money still pending.
    """
    PENDING = "PENDING"
    PARTIAL = "PARTIAL"
    PAID = "PAID"
    OVERDUE = "OVERDUE"
    CANCELLED = "CANCELLED"


class PaymentMethod(str, Enum):
    """Payment method enumeration."""
    CASH = "CASH"
    CARD = "CARD"
    UPI = "UPI"
    BANK_TRANSFER = "BANK_TRANSFER"
    CHEQUE = "CHEQUE"
    CREDIT = "CREDIT"
    ONLINE = "ONLINE"


ORDER_KINDS = (DocumentKind.SALES_ORDER.value, DocumentKind.PURCHASE_ORDER.value)


class Document(Base):
    """
    Trade document with items, totals, payment info and conversion metadata.

    `version` is SQLAlchemy's optimistic concurrency counter: every ORM
    UPDATE is issued as `... WHERE version = :loaded_version` and raises
    StaleDataError when another writer got there first.
    """
    __tablename__ = "documents"
    __table_args__ = (
        UniqueConstraint(
            "company_id", "document_type", "document_number",
            name="uq_documents_company_type_number"
        ),
        Index("ix_documents_company_type_date", "company_id", "document_type", "document_date"),
        Index("ix_documents_due_date", "due_date"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )
    document_type: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        comment="SALE, SALES_ORDER, PURCHASE, PURCHASE_ORDER"
    )
    order_type: Mapped[Optional[str]] = mapped_column(
        String(20),
        nullable=True,
        comment="SALES_ORDER, QUOTATION, PROFORMA (sales orders only)"
    )
    document_number: Mapped[str] = mapped_column(
        String(40),
        nullable=False,
        index=True,
        comment="{PREFIX}-{YYYYMMDD}-{SEQ4}"
    )
    number_is_fallback: Mapped[bool] = mapped_column(
        Boolean,
        default=False,
        nullable=False,
        comment="Timestamp number issued while the sequence counter was unavailable"
    )
    document_date: Mapped[date] = mapped_column(Date, nullable=False)

    company_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("companies.id", ondelete="RESTRICT"),
        nullable=False,
        index=True
    )
    party_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("parties.id", ondelete="RESTRICT"),
        nullable=False,
        index=True
    )

    gst_enabled: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    tax_mode: Mapped[str] = mapped_column(
        String(20),
        default=TaxMode.EXCLUSIVE.value,
        nullable=False,
        comment="Default tax mode for lines: EXCLUSIVE, INCLUSIVE"
    )
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Totals
    subtotal: Mapped[Decimal] = mapped_column(MoneyType, default=Decimal("0"), nullable=False)
    total_discount: Mapped[Decimal] = mapped_column(MoneyType, default=Decimal("0"), nullable=False)
    total_taxable_amount: Mapped[Decimal] = mapped_column(MoneyType, default=Decimal("0"), nullable=False)
    total_cgst: Mapped[Decimal] = mapped_column(MoneyType, default=Decimal("0"), nullable=False)
    total_sgst: Mapped[Decimal] = mapped_column(MoneyType, default=Decimal("0"), nullable=False)
    total_igst: Mapped[Decimal] = mapped_column(MoneyType, default=Decimal("0"), nullable=False)
    total_tax: Mapped[Decimal] = mapped_column(MoneyType, default=Decimal("0"), nullable=False)
    round_off_enabled: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    round_off: Mapped[Decimal] = mapped_column(MoneyType, default=Decimal("0"), nullable=False)
    final_total: Mapped[Decimal] = mapped_column(MoneyType, default=Decimal("0"), nullable=False)

    # Payment
    payment_method: Mapped[str] = mapped_column(
        String(20),
        default=PaymentMethod.CASH.value,
        nullable=False
    )
    payment_status: Mapped[str] = mapped_column(
        String(20),
        default=PaymentStatus.PENDING.value,
        nullable=False,
        comment="PENDING, PARTIAL, PAID, CANCELLED (OVERDUE is derived at read time)"
    )
    paid_amount: Mapped[Decimal] = mapped_column(MoneyType, default=Decimal("0"), nullable=False)
    pending_amount: Mapped[Decimal] = mapped_column(MoneyType, default=Decimal("0"), nullable=False)
    payment_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    due_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    credit_days: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    payment_reference: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    # Lifecycle
    status: Mapped[str] = mapped_column(
        String(20),
        default=DocumentStatus.DRAFT.value,
        nullable=False,
        index=True
    )
    cancellation_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    cancelled_by: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    # Conversion (source side). The link itself lives in document_conversions.
    is_converted: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    converted_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    converted_by: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    # Counter order raised in the counterparty's company (SO -> PO, PO -> SO).
    # Tracked apart from the conversion so an order can still become an invoice.
    counter_order_generated: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    counter_order_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUIDType,
        ForeignKey("documents.id", ondelete="SET NULL"),
        nullable=True
    )
    counter_order_generated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    counter_order_generated_by: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    generated_from_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUIDType,
        ForeignKey("documents.id", ondelete="SET NULL"),
        nullable=True,
        comment="Order in another company this counter order was generated from"
    )

    created_by: Mapped[str] = mapped_column(String(100), nullable=False)
    updated_by: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False
    )

    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    items: Mapped[List["DocumentItem"]] = relationship(
        "DocumentItem",
        back_populates="document",
        cascade="all, delete-orphan",
        order_by="DocumentItem.line_number",
        lazy="selectin"
    )
    payment_history: Mapped[List["PaymentHistoryEntry"]] = relationship(
        "PaymentHistoryEntry",
        back_populates="document",
        cascade="all, delete-orphan",
        order_by="PaymentHistoryEntry.entry_number",
        lazy="selectin"
    )
    conversion: Mapped[Optional["DocumentConversion"]] = relationship(
        "DocumentConversion",
        foreign_keys="DocumentConversion.source_id",
        uselist=False,
        viewonly=True,
        lazy="selectin"
    )
    converted_from: Mapped[Optional["DocumentConversion"]] = relationship(
        "DocumentConversion",
        foreign_keys="DocumentConversion.target_id",
        uselist=False,
        viewonly=True,
        lazy="selectin"
    )

    @property
    def is_order(self) -> bool:
        return self.document_type in ORDER_KINDS

    def __repr__(self) -> str:
        return f"<Document(number='{self.document_number}', type='{self.document_type}')>"


class DocumentItem(Base):
    """
    Line item of a document.

    Each computed value has exactly one column; API aliases such as
    `cgst`/`cgstAmount` or `amount`/`itemAmount` are produced by the schemas.
    """
    __tablename__ = "document_items"
    __table_args__ = (
        UniqueConstraint("document_id", "line_number", name="uq_document_items_line"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )
    document_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("documents.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    line_number: Mapped[int] = mapped_column(Integer, nullable=False)
    item_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUIDType,
        ForeignKey("items.id", ondelete="SET NULL"),
        nullable=True,
        comment="Optional inventory link; stock moves only for linked lines"
    )
    name: Mapped[str] = mapped_column(String(300), nullable=False)
    quantity: Mapped[Decimal] = mapped_column(QuantityType, nullable=False)
    unit: Mapped[str] = mapped_column(String(20), default="PCS", nullable=False)
    price_per_unit: Mapped[Decimal] = mapped_column(MoneyType, nullable=False)
    tax_rate: Mapped[Decimal] = mapped_column(RateType, default=Decimal("0"), nullable=False)
    tax_mode: Mapped[str] = mapped_column(
        String(20),
        default=TaxMode.EXCLUSIVE.value,
        nullable=False
    )
    discount_percent: Mapped[Decimal] = mapped_column(RateType, default=Decimal("0"), nullable=False)
    discount_amount: Mapped[Decimal] = mapped_column(
        MoneyType,
        default=Decimal("0"),
        nullable=False,
        comment="Absolute discount as entered; wins over discount_percent when non-zero"
    )

    # Computed
    base_amount: Mapped[Decimal] = mapped_column(MoneyType, default=Decimal("0"), nullable=False)
    applied_discount: Mapped[Decimal] = mapped_column(MoneyType, default=Decimal("0"), nullable=False)
    taxable_amount: Mapped[Decimal] = mapped_column(MoneyType, default=Decimal("0"), nullable=False)
    cgst_amount: Mapped[Decimal] = mapped_column(MoneyType, default=Decimal("0"), nullable=False)
    sgst_amount: Mapped[Decimal] = mapped_column(MoneyType, default=Decimal("0"), nullable=False)
    igst_amount: Mapped[Decimal] = mapped_column(MoneyType, default=Decimal("0"), nullable=False)
    tax_amount: Mapped[Decimal] = mapped_column(MoneyType, default=Decimal("0"), nullable=False)
    line_total: Mapped[Decimal] = mapped_column(MoneyType, default=Decimal("0"), nullable=False)

    document: Mapped["Document"] = relationship("Document", back_populates="items")

    def __repr__(self) -> str:
        return f"<DocumentItem(line={self.line_number}, name='{self.name}')>"


class PaymentHistoryEntry(Base):
    """
    Append-only payment log entry.

    Amounts are signed: a cancellation appends the reversal of everything
    paid so far as a negative entry. Rows are never updated or deleted.
    """
    __tablename__ = "payment_history"
    __table_args__ = (
        UniqueConstraint("document_id", "entry_number", name="uq_payment_history_entry"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )
    document_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("documents.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    entry_number: Mapped[int] = mapped_column(Integer, nullable=False)
    amount: Mapped[Decimal] = mapped_column(MoneyType, nullable=False)
    method: Mapped[str] = mapped_column(String(20), nullable=False)
    reference: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    payment_date: Mapped[date] = mapped_column(Date, nullable=False)
    due_date: Mapped[Optional[date]] = mapped_column(
        Date,
        nullable=True,
        comment="Due date as it stood when the entry was written"
    )
    note: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    created_by: Mapped[str] = mapped_column(String(100), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )

    document: Mapped["Document"] = relationship("Document", back_populates="payment_history")


class DocumentConversion(Base):
    """
    Link between a converted source document and the document created from it.

    One row per source (source_id is unique) and per target; both sides
    resolve the other by id instead of carrying copied document numbers.
    """
    __tablename__ = "document_conversions"

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )
    source_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("documents.id", ondelete="CASCADE"),
        nullable=False,
        unique=True
    )
    source_type: Mapped[str] = mapped_column(String(20), nullable=False)
    target_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("documents.id", ondelete="CASCADE"),
        nullable=False,
        unique=True
    )
    target_type: Mapped[str] = mapped_column(String(20), nullable=False)
    target_company_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("companies.id", ondelete="CASCADE"),
        nullable=False
    )
    converted_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )
    converted_by: Mapped[str] = mapped_column(String(100), nullable=False)

    @property
    def is_cross_company(self) -> bool:
        return self.source_type == DocumentKind.SALE.value
