"""Inventory item model."""
import uuid
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import String, Boolean, DateTime, ForeignKey
from sqlalchemy.orm import Mapped, mapped_column

from shopbooks.database import Base
from shopbooks.db_types import UUIDType, MoneyType, QuantityType, RateType


class Item(Base):
    """Stock-keeping item. `current_stock` is only changed through the stock adjuster."""
    __tablename__ = "items"

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
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    unit: Mapped[str] = mapped_column(String(20), default="PCS", nullable=False)
    sale_price: Mapped[Decimal] = mapped_column(MoneyType, default=Decimal("0"), nullable=False)
    purchase_price: Mapped[Decimal] = mapped_column(MoneyType, default=Decimal("0"), nullable=False)
    tax_rate: Mapped[Decimal] = mapped_column(RateType, default=Decimal("18"), nullable=False)
    current_stock: Mapped[Decimal] = mapped_column(
        QuantityType,
        default=Decimal("0"),
        nullable=False,
        comment="May go negative when sales outrun recorded purchases"
    )
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

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

    def __repr__(self) -> str:
        return f"<Item(name='{self.name}', stock={self.current_stock})>"
