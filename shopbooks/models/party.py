"""Party model: customers and suppliers inside one company's books."""
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from sqlalchemy import String, Boolean, DateTime, ForeignKey, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from shopbooks.database import Base
from shopbooks.db_types import UUIDType


class PartyType(str, Enum):
    """Party type enumeration."""
    CUSTOMER = "CUSTOMER"
    SUPPLIER = "SUPPLIER"
    BOTH = "BOTH"


class Party(Base):
    """
    Counterparty of a document, owned by exactly one company.

    `linked_company_id` is set when the party stands for another company
    known to the system (cross-company purchase invoices); it is the
    identity key used to find the counterparty again, phone numbers are not.
    """
    __tablename__ = "parties"
    __table_args__ = (
        UniqueConstraint("company_id", "phone", name="uq_parties_company_phone"),
        UniqueConstraint(
            "company_id", "party_type", "linked_company_id",
            name="uq_parties_company_type_linked_company"
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
        nullable=False,
        index=True
    )
    party_type: Mapped[str] = mapped_column(
        String(20),
        default=PartyType.CUSTOMER.value,
        nullable=False,
        comment="CUSTOMER, SUPPLIER, BOTH"
    )
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    phone: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    gst_number: Mapped[Optional[str]] = mapped_column(String(15), nullable=True)
    address: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    linked_company_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUIDType,
        ForeignKey("companies.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
        comment="Company this party represents in another company's books"
    )
    is_auto_created: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
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

    @property
    def is_supplier(self) -> bool:
        return self.party_type in (PartyType.SUPPLIER.value, PartyType.BOTH.value)

    @property
    def is_customer(self) -> bool:
        return self.party_type in (PartyType.CUSTOMER.value, PartyType.BOTH.value)

    def __repr__(self) -> str:
        return f"<Party(name='{self.name}', type='{self.party_type}')>"
