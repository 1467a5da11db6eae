"""
Document Sequence Model for Atomic Number Generation

NUMBERING RULES:
━━━━━━━━━━━━━━━━
• One counter row per (company, prefix, day)
• Sequence restarts at 0001 every day
• Incremented with a single UPDATE ... RETURNING statement, never by
  reading the highest existing number
• Format: {PREFIX}-{YYYYMMDD}-{SEQ4}

DOCUMENT FORMATS:
━━━━━━━━━━━━━━━━
• GST-20261019-0001     (GST sales invoice)
• INV-20261019-0001     (non-GST sales invoice)
• SO / QUO / PI         (sales order / quotation / proforma)
• PO-GST / PO           (purchase order)
• PUR-GST / PUR         (purchase invoice)
"""

import uuid
from datetime import date, datetime, timezone

from sqlalchemy import String, Integer, Date, DateTime, ForeignKey, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from shopbooks.database import Base
from shopbooks.db_types import UUIDType


class DocumentSequence(Base):
    """Per-(company, prefix, day) counter for document numbers."""
    __tablename__ = "document_sequences"
    __table_args__ = (
        UniqueConstraint(
            "company_id", "prefix", "sequence_date",
            name="uq_document_sequences_company_prefix_date"
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )
    company_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("companies.id", ondelete="CASCADE"),
        nullable=False
    )
    prefix: Mapped[str] = mapped_column(
        String(10),
        nullable=False,
        comment="GST, INV, SO, QUO, PI, PO-GST, PO, PUR-GST, PUR"
    )
    sequence_date: Mapped[date] = mapped_column(Date, nullable=False)
    current_number: Mapped[int] = mapped_column(
        Integer,
        default=0,
        nullable=False,
        comment="Last number issued; 0 means nothing issued yet"
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False
    )

    def __repr__(self) -> str:
        return f"<DocumentSequence({self.prefix} {self.sequence_date}: {self.current_number})>"
