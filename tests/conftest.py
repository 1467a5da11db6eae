"""Pytest configuration and fixtures for ShopBooks tests.

Provides an in-memory SQLite database per test, a file-backed database for
concurrency tests, an HTTP client bound to the app and seed data.
"""

import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")

from decimal import Decimal
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from shopbooks.main import app
from shopbooks.database import build_engine, build_session_factory, get_db, init_db
from shopbooks.models.company import Company
from shopbooks.models.item import Item
from shopbooks.models.party import Party, PartyType
from shopbooks.schemas.document import DocumentCreate, LineItemIn, PaymentIn


# ── Test Database Setup ──────────────────────────────────────────

@pytest_asyncio.fixture
async def engine():
    """Fresh in-memory database per test."""
    test_engine = build_engine("sqlite+aiosqlite://")
    await init_db(test_engine)
    yield test_engine
    await test_engine.dispose()


@pytest_asyncio.fixture
async def session_factory(engine):
    return build_session_factory(engine)


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def file_engine(tmp_path):
    """File-backed database: every session gets its own connection."""
    path = tmp_path / "shopbooks_test.db"
    test_engine = build_engine(f"sqlite+aiosqlite:///{path}")
    await init_db(test_engine)
    yield test_engine
    await test_engine.dispose()


@pytest_asyncio.fixture
async def file_session_factory(file_engine):
    return build_session_factory(file_engine)


@pytest_asyncio.fixture
async def client(session_factory) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client with the database dependency pointed at the test engine."""

    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
        headers={"X-Actor-Id": "tester"},
    ) as test_client:
        yield test_client

    app.dependency_overrides.clear()


# ── Test Data Fixtures ───────────────────────────────────────────

async def seed_company(session: AsyncSession, name: str, phone: str) -> Company:
    company = Company(name=name, phone=phone, gst_number="27AAACA1234A1Z5")
    session.add(company)
    await session.commit()
    return company


async def seed_party(
    session: AsyncSession,
    company: Company,
    name: str,
    party_type: PartyType = PartyType.CUSTOMER,
    phone: str = None,
    linked_company: Company = None,
) -> Party:
    party = Party(
        company_id=company.id,
        name=name,
        party_type=party_type.value,
        phone=phone,
        linked_company_id=linked_company.id if linked_company else None,
        created_by="tester",
    )
    session.add(party)
    await session.commit()
    return party


async def seed_item(session: AsyncSession, company: Company, name: str, stock: str = "100") -> Item:
    item = Item(
        company_id=company.id,
        name=name,
        sale_price=Decimal("100"),
        purchase_price=Decimal("80"),
        tax_rate=Decimal("18"),
        current_stock=Decimal(stock),
    )
    session.add(item)
    await session.commit()
    return item


@pytest_asyncio.fixture
async def company(db_session) -> Company:
    return await seed_company(db_session, "Acme Traders", "9000000001")


@pytest_asyncio.fixture
async def other_company(db_session) -> Company:
    return await seed_company(db_session, "Bharat Retail", "9000000002")


@pytest_asyncio.fixture
async def customer(db_session, company) -> Party:
    return await seed_party(db_session, company, "Walk-in Customer", phone="9100000001")


@pytest_asyncio.fixture
async def linked_customer(db_session, company, other_company) -> Party:
    """Customer in Acme's books that is Bharat Retail's own company."""
    return await seed_party(
        db_session, company, "Bharat Retail", phone="9000000002", linked_company=other_company
    )


@pytest_asyncio.fixture
async def supplier(db_session, company) -> Party:
    return await seed_party(db_session, company, "Wholesale Supplies", PartyType.SUPPLIER, "9200000001")


@pytest_asyncio.fixture
async def item(db_session, company) -> Item:
    return await seed_item(db_session, company, "Steel Bottle")


@pytest.fixture
def make_document():
    """Build a DocumentCreate with one line of 10 x 100 @ 18% unless told otherwise."""

    def _make(company, party, item=None, paid="0", credit_days=0, lines=None, **kwargs):
        if lines is None:
            lines = [LineItemIn(
                item_id=item.id if item else None,
                name=item.name if item else "Steel Bottle",
                quantity=Decimal("10"),
                price_per_unit=Decimal("100"),
                tax_rate=Decimal("18"),
            )]
        return DocumentCreate(
            company_id=company.id,
            party_id=party.id,
            items=lines,
            payment=PaymentIn(method="cash", paid_amount=Decimal(paid), credit_days=credit_days),
            **kwargs,
        )

    return _make


# ── Test Markers ─────────────────────────────────────────────────

def pytest_configure(config):
    """Configure custom markers."""
    config.addinivalue_line("markers", "unit: Unit tests")
    config.addinivalue_line("markers", "api: HTTP API tests")
    config.addinivalue_line("markers", "concurrency: Concurrent writers")
