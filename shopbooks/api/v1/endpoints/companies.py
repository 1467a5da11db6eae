"""API endpoints for companies, parties and items."""
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Query, status
from sqlalchemy import select

from shopbooks.api.deps import DB, CurrentActor
from shopbooks.core.exceptions import NotFoundError
from shopbooks.models.company import Company
from shopbooks.models.item import Item
from shopbooks.schemas.company import (
    CompanyCreate, CompanyResponse,
    PartyCreate, PartyResponse,
    ItemCreate, ItemResponse,
)
from shopbooks.schemas.document import StockCheckRequest, StockCheckResponse
from shopbooks.services.document_service import DocumentService
from shopbooks.services.party_directory import PartyDirectory

router = APIRouter()


# ==================== Company ====================

@router.post("/companies", response_model=CompanyResponse, status_code=status.HTTP_201_CREATED)
async def create_company(company_in: CompanyCreate, db: DB):
    """Register a company."""
    company = Company(**company_in.model_dump())
    db.add(company)
    await db.commit()
    await db.refresh(company)
    return company


@router.get("/companies/{company_id}", response_model=CompanyResponse)
async def get_company(company_id: UUID, db: DB):
    company = await db.get(Company, company_id)
    if company is None:
        raise NotFoundError("Company", company_id)
    return company


# ==================== Party ====================

@router.post("/parties", response_model=PartyResponse, status_code=status.HTTP_201_CREATED)
async def create_party(party_in: PartyCreate, db: DB, actor: CurrentActor):
    """Create a customer or supplier in a company's books."""
    party = await PartyDirectory(db).create_party(
        company_id=party_in.company_id,
        name=party_in.name,
        actor=actor,
        party_type=party_in.party_type,
        phone=party_in.phone,
        email=party_in.email,
        gst_number=party_in.gst_number,
        address=party_in.address,
        linked_company_id=party_in.linked_company_id,
    )
    await db.commit()
    return party


@router.get("/parties", response_model=List[PartyResponse])
async def list_parties(
    db: DB,
    company_id: UUID = Query(..., alias="companyId"),
    party_type: Optional[str] = Query(None, alias="partyType"),
):
    return await PartyDirectory(db).list_parties(company_id, party_type)


# ==================== Item ====================

@router.post("/items", response_model=ItemResponse, status_code=status.HTTP_201_CREATED)
async def create_item(item_in: ItemCreate, db: DB):
    """Create an inventory item with its opening stock."""
    if await db.get(Company, item_in.company_id) is None:
        raise NotFoundError("Company", item_in.company_id)
    data = item_in.model_dump(exclude={"opening_stock", "unit"})
    item = Item(**data, unit=item_in.unit.upper(), current_stock=item_in.opening_stock)
    db.add(item)
    await db.commit()
    await db.refresh(item)
    return item


@router.post("/items/stock-check", response_model=StockCheckResponse)
async def check_stock(check_in: StockCheckRequest, db: DB):
    """Report per item whether current stock covers the requested quantity."""
    results = await DocumentService(db).check_stock(check_in.company_id, check_in.items)
    return StockCheckResponse.from_results(results)


@router.get("/items/{item_id}", response_model=ItemResponse)
async def get_item(item_id: UUID, db: DB):
    item = await db.get(Item, item_id)
    if item is None:
        raise NotFoundError("Item", item_id)
    return item


@router.get("/items", response_model=List[ItemResponse])
async def list_items(db: DB, company_id: UUID = Query(..., alias="companyId")):
    result = await db.execute(
        select(Item).where(Item.company_id == company_id).order_by(Item.name)
    )
    return list(result.scalars())
