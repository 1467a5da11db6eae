"""Document number allocation tests."""

import asyncio
import uuid
from datetime import date

import pytest
from sqlalchemy import delete
from sqlalchemy.exc import OperationalError

from shopbooks.core.exceptions import SequenceExhaustedError, ValidationError
from shopbooks.models.document import DocumentKind, OrderType
from shopbooks.models.document_sequence import DocumentSequence
from shopbooks.services.document_sequence_service import (
    DocumentSequenceService,
    InMemorySequenceCounter,
    SequenceCounter,
    format_document_number,
    parse_sequence,
    resolve_prefix,
)
from shopbooks.services.document_service import DocumentService
from tests.conftest import seed_company


DAY = date(2026, 10, 19)


@pytest.mark.unit
class TestFormat:

    def test_format(self):
        assert format_document_number("GST", DAY, 7, width=4) == "GST-20261019-0007"

    @pytest.mark.parametrize("kind,gst,order_type,prefix", [
        (DocumentKind.SALE, True, None, "GST"),
        (DocumentKind.SALE, False, None, "INV"),
        (DocumentKind.PURCHASE, True, None, "PUR-GST"),
        (DocumentKind.PURCHASE, False, None, "PUR"),
        (DocumentKind.PURCHASE_ORDER, True, None, "PO-GST"),
        (DocumentKind.PURCHASE_ORDER, False, None, "PO"),
        (DocumentKind.SALES_ORDER, True, None, "SO"),
        (DocumentKind.SALES_ORDER, False, OrderType.QUOTATION, "QUO"),
        (DocumentKind.SALES_ORDER, True, OrderType.PROFORMA, "PI"),
    ])
    def test_prefixes(self, kind, gst, order_type, prefix):
        assert resolve_prefix(kind, gst, order_type) == prefix

    def test_unknown_kind(self):
        with pytest.raises(ValidationError):
            resolve_prefix("CREDIT_NOTE")

    def test_exhaustion_fails_loudly(self):
        assert format_document_number("GST", DAY, 9999, 4, "FAIL") == "GST-20261019-9999"
        with pytest.raises(SequenceExhaustedError):
            format_document_number("GST", DAY, 10000, 4, "FAIL")

    def test_exhaustion_widens(self):
        assert format_document_number("GST", DAY, 10000, 4, "WIDEN") == "GST-20261019-10000"

    def test_parse_ignores_fallback_numbers(self):
        assert parse_sequence("GST-20261019-0042", "GST", DAY) == 42
        assert parse_sequence("GST-20261019-EMRG101010000000", "GST", DAY) is None
        assert parse_sequence("INV-20261019-0042", "GST", DAY) is None


@pytest.mark.asyncio
class TestInMemoryCounter:

    async def test_concurrent_allocations_are_dense(self):
        service = DocumentSequenceService(counter=InMemorySequenceCounter())
        company_id = uuid.uuid4()

        numbers = await asyncio.gather(*[
            service.get_next_number(company_id, DocumentKind.SALE, DAY) for _ in range(50)
        ])

        assert len(set(numbers)) == 50
        assert sorted(numbers) == [f"GST-20261019-{n:04d}" for n in range(1, 51)]

    async def test_counters_are_per_company_and_day(self):
        service = DocumentSequenceService(counter=InMemorySequenceCounter())
        first, second = uuid.uuid4(), uuid.uuid4()

        assert await service.get_next_number(first, DocumentKind.SALE, DAY) == "GST-20261019-0001"
        assert await service.get_next_number(second, DocumentKind.SALE, DAY) == "GST-20261019-0001"
        assert await service.get_next_number(first, DocumentKind.SALE, date(2026, 10, 20)) \
            == "GST-20261020-0001"
        assert await service.get_next_number(first, DocumentKind.SALE, DAY) == "GST-20261019-0002"

    async def test_exhaustion_policy_applies_to_allocation(self):
        counter = InMemorySequenceCounter()
        company_id = uuid.uuid4()
        await counter.raise_to(company_id, "GST", DAY, 9999)

        failing = DocumentSequenceService(counter=counter, overflow_policy="FAIL")
        with pytest.raises(SequenceExhaustedError):
            await failing.get_next_number(company_id, DocumentKind.SALE, DAY)

        widening = DocumentSequenceService(counter=counter, overflow_policy="WIDEN")
        assert await widening.get_next_number(company_id, DocumentKind.SALE, DAY) == "GST-20261019-10001"


class BrokenCounter(SequenceCounter):
    async def next_value(self, company_id, prefix, day):
        raise OperationalError("UPDATE document_sequences", {}, Exception("database is locked"))


@pytest.mark.asyncio
class TestFallback:

    async def test_fallback_number_is_flagged(self):
        service = DocumentSequenceService(counter=BrokenCounter())

        allocated = await service.allocate_with_fallback(uuid.uuid4(), DocumentKind.SALE, DAY)

        assert allocated.is_fallback is True
        assert allocated.sequence is None
        assert allocated.number.startswith("GST-20261019-EMRG")

    async def test_exhaustion_is_never_masked(self):
        counter = InMemorySequenceCounter()
        company_id = uuid.uuid4()
        await counter.raise_to(company_id, "GST", DAY, 9999)
        service = DocumentSequenceService(counter=counter, overflow_policy="FAIL")

        with pytest.raises(SequenceExhaustedError):
            await service.allocate_with_fallback(company_id, DocumentKind.SALE, DAY)


@pytest.mark.asyncio
class TestSqlCounter:

    async def test_sequential_numbers(self, db_session, company):
        service = DocumentSequenceService(db_session)

        first = await service.get_next_number(company.id, DocumentKind.SALE, DAY)
        second = await service.get_next_number(company.id, DocumentKind.SALE, DAY)
        other_prefix = await service.get_next_number(company.id, DocumentKind.SALE, DAY, gst_enabled=False)
        await db_session.commit()

        assert first == "GST-20261019-0001"
        assert second == "GST-20261019-0002"
        assert other_prefix == "INV-20261019-0001"

    async def test_rollback_returns_the_number(self, db_session, company):
        service = DocumentSequenceService(db_session)
        company_id = company.id

        await service.get_next_number(company_id, DocumentKind.SALE, DAY)
        await db_session.rollback()

        assert await service.get_next_number(company_id, DocumentKind.SALE, DAY) == "GST-20261019-0001"

    async def test_preview_does_not_consume(self, db_session, company):
        service = DocumentSequenceService(db_session)

        assert await service.preview_next_number(company.id, DocumentKind.PURCHASE, DAY) \
            == "PUR-GST-20261019-0001"
        assert await service.preview_next_number(company.id, DocumentKind.PURCHASE, DAY) \
            == "PUR-GST-20261019-0001"
        assert await service.get_current_number(company.id, DocumentKind.PURCHASE, DAY) == 0

    async def test_sync_from_existing_documents(self, db_session, company, customer, make_document):
        company_id = company.id
        created = await DocumentService(db_session).create_document(
            DocumentKind.SALE, make_document(company, customer), "tester"
        )
        assert created.document.document_number == f"GST-{date.today():%Y%m%d}-0001"

        # Counter row lost, documents still there
        await db_session.execute(delete(DocumentSequence))
        await db_session.commit()

        service = DocumentSequenceService(db_session)
        assert await service.sync_sequence_from_max(company_id, DocumentKind.SALE) == 1
        assert await service.get_next_number(company_id, DocumentKind.SALE) \
            == f"GST-{date.today():%Y%m%d}-0002"


@pytest.mark.asyncio
@pytest.mark.concurrency
class TestConcurrentSqlAllocation:

    async def test_concurrent_writers_get_distinct_dense_numbers(self, file_session_factory):
        async with file_session_factory() as session:
            company = await seed_company(session, "Acme Traders", "9000000001")
        company_id = company.id

        async def allocate() -> str:
            async with file_session_factory() as session:
                number = await DocumentSequenceService(session).get_next_number(
                    company_id, DocumentKind.SALE, DAY
                )
                await session.commit()
                return number

        numbers = await asyncio.gather(*[allocate() for _ in range(10)])

        assert len(set(numbers)) == 10
        assert sorted(numbers) == [f"GST-20261019-{n:04d}" for n in range(1, 11)]
