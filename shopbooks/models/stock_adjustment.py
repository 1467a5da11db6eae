"""Stock adjustment records.

Each row is the idempotency key for one stock side effect: a given document
line can be decremented for a sale (or restored on cancellation) at most once.
"""
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import String, DateTime, ForeignKey, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from shopbooks.database import Base
from shopbooks.db_types import UUIDType, QuantityType


class StockOperation(str, Enum):
    """Which document event moved the stock."""
    SALE_DECREMENT = "SALE_DECREMENT"
    CANCEL_RESTORE = "CANCEL_RESTORE"
    CONVERSION_DECREMENT = "CONVERSION_DECREMENT"
    PURCHASE_INCREMENT = "PURCHASE_INCREMENT"
    PURCHASE_REVERSAL = "PURCHASE_REVERSAL"


class StockAdjustmentStatus(str, Enum):
    """Outcome of a stock side effect."""
    PENDING = "PENDING"                     # Claimed, call in flight
    APPLIED = "APPLIED"                     # Inventory service confirmed
    FALLBACK_APPLIED = "FALLBACK_APPLIED"   # Direct stock write after a definite primary failure
    FAILED = "FAILED"                       # Neither path applied; safe to retry
    UNCONFIRMED = "UNCONFIRMED"             # Primary outcome unknown; needs reconciliation


class StockChannel(str, Enum):
    PRIMARY = "PRIMARY"
    FALLBACK = "FALLBACK"


class StockAdjustment(Base):
    """Stock movement record keyed by (document line, operation)."""
    __tablename__ = "stock_adjustments"
    __table_args__ = (
        UniqueConstraint("document_item_id", "operation", name="uq_stock_adjustments_line_operation"),
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
    document_item_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("document_items.id", ondelete="CASCADE"),
        nullable=False
    )
    item_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("items.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    company_id: Mapped[uuid.UUID] = mapped_column(UUIDType, nullable=False)
    operation: Mapped[str] = mapped_column(
        String(30),
        nullable=False,
        comment="SALE_DECREMENT, CANCEL_RESTORE, CONVERSION_DECREMENT, PURCHASE_INCREMENT, PURCHASE_REVERSAL"
    )
    delta: Mapped[Decimal] = mapped_column(QuantityType, nullable=False)
    status: Mapped[str] = mapped_column(
        String(20),
        default=StockAdjustmentStatus.PENDING.value,
        nullable=False,
        comment="PENDING, APPLIED, FALLBACK_APPLIED, FAILED, UNCONFIRMED"
    )
    channel: Mapped[Optional[str]] = mapped_column(String(10), nullable=True)
    new_stock: Mapped[Optional[Decimal]] = mapped_column(QuantityType, nullable=True)
    error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_by: Mapped[str] = mapped_column(String(100), nullable=False)

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
