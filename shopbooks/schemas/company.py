"""Pydantic schemas for companies, parties and items."""
from datetime import datetime
from decimal import Decimal
from typing import Optional
from uuid import UUID

from pydantic import Field

from shopbooks.models.party import PartyType
from shopbooks.schemas.base import BaseCreateSchema, BaseResponseSchema


# ==================== Company ====================

class CompanyCreate(BaseCreateSchema):
    name: str = Field(..., min_length=1, max_length=200)
    gst_number: Optional[str] = Field(None, max_length=15)
    phone: Optional[str] = Field(None, max_length=20)
    email: Optional[str] = Field(None, max_length=255)
    address: Optional[str] = None


class CompanyResponse(BaseResponseSchema):
    id: UUID
    name: str
    gst_number: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    address: Optional[str] = None
    is_active: bool
    created_at: datetime


# ==================== Party ====================

class PartyCreate(BaseCreateSchema):
    company_id: UUID
    name: str = Field(..., min_length=1, max_length=200)
    party_type: PartyType = PartyType.CUSTOMER
    phone: Optional[str] = Field(None, max_length=20)
    email: Optional[str] = Field(None, max_length=255)
    gst_number: Optional[str] = Field(None, max_length=15)
    address: Optional[str] = None
    linked_company_id: Optional[UUID] = Field(
        None, description="Company this party represents, for cross-company purchase invoices"
    )


class PartyResponse(BaseResponseSchema):
    id: UUID
    company_id: UUID
    party_type: str
    name: str
    phone: Optional[str] = None
    email: Optional[str] = None
    gst_number: Optional[str] = None
    linked_company_id: Optional[UUID] = None
    is_auto_created: bool
    created_by: str
    created_at: datetime


# ==================== Item ====================

class ItemCreate(BaseCreateSchema):
    company_id: UUID
    name: str = Field(..., min_length=1, max_length=200)
    unit: str = Field("PCS", max_length=20)
    sale_price: Decimal = Field(Decimal("0"), ge=0)
    purchase_price: Decimal = Field(Decimal("0"), ge=0)
    tax_rate: Decimal = Field(Decimal("18"), ge=0, le=100)
    opening_stock: Decimal = Field(Decimal("0"))


class ItemResponse(BaseResponseSchema):
    id: UUID
    company_id: UUID
    name: str
    unit: str
    sale_price: Decimal
    purchase_price: Decimal
    tax_rate: Decimal
    current_stock: Decimal
    is_active: bool
