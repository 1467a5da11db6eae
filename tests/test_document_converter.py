"""Document conversion tests."""

import asyncio
from datetime import date
from decimal import Decimal

import pytest

from shopbooks.core.exceptions import DependencyError, ValidationError
from shopbooks.models.document import DocumentKind
from shopbooks.models.item import Item
from shopbooks.models.party import PartyType
from shopbooks.schemas.document import DocumentCreate, LineItemIn, PaymentIn
from shopbooks.services.document_converter import DocumentConverter, normalize_unit
from shopbooks.services.document_service import DocumentService
from shopbooks.services.party_directory import PartyDirectory
from tests.conftest import seed_company, seed_item, seed_party


TODAY_NUMBER = f"{date.today():%Y%m%d}"


class UnreachableDirectory(PartyDirectory):
    async def find_or_create_counterparty(self, *args, **kwargs):
        raise DependencyError("Counterparty directory unavailable")


async def create(db_session, kind, data):
    result = await DocumentService(db_session).create_document(kind, data, "tester")
    return result.document


@pytest.mark.unit
class TestUnits:

    @pytest.mark.parametrize("value,expected", [
        ("pcs", "PCS"), ("Piece", "PCS"), ("nos", "PCS"), (None, "PCS"), ("kg", "KG"),
    ])
    def test_normalize_unit(self, value, expected):
        assert normalize_unit(value) == expected


@pytest.mark.asyncio
class TestOrderToInvoice:

    async def test_sales_order_becomes_sale(self, db_session, company, customer, item, make_document):
        item_id = item.id
        order = await create(
            db_session, DocumentKind.SALES_ORDER, make_document(company, customer, item, paid="200")
        )
        order_id = order.id

        result = await DocumentConverter(db_session).convert(order_id, "tester")
        target = result.target

        assert result.already_converted is False
        assert target.document_type == "SALE"
        assert target.document_number == f"GST-{TODAY_NUMBER}-0001"
        assert target.status == "COMPLETED"
        assert target.final_total == Decimal("1180.00")
        assert target.paid_amount == Decimal("200.00")
        assert target.pending_amount == Decimal("980.00")
        assert target.items[0].item_id == item_id
        assert target.converted_from.source_id == order_id

        source = await DocumentService(db_session).get_document(order_id)
        assert source.status == "CONVERTED"
        assert source.is_converted is True
        assert source.conversion.target_id == target.id

        assert [r.operation for r in result.stock_results] == ["CONVERSION_DECREMENT"]
        stocked = await db_session.get(Item, item_id, populate_existing=True)
        assert stocked.current_stock == Decimal("90")

    async def test_purchase_order_becomes_purchase(self, db_session, company, supplier, item, make_document):
        item_id = item.id
        order = await create(db_session, DocumentKind.PURCHASE_ORDER, make_document(company, supplier, item))

        result = await DocumentConverter(db_session).convert(order.id, "tester")

        assert result.target.document_type == "PURCHASE"
        assert result.target.document_number == f"PUR-GST-{TODAY_NUMBER}-0001"
        stocked = await db_session.get(Item, item_id, populate_existing=True)
        assert stocked.current_stock == Decimal("110")

    async def test_repeat_returns_existing_target(self, db_session, company, customer, make_document):
        order = await create(db_session, DocumentKind.SALES_ORDER, make_document(company, customer))
        converter = DocumentConverter(db_session)

        first = await converter.convert(order.id, "tester")
        second = await converter.convert(order.id, "tester")

        assert second.already_converted is True
        assert second.target.id == first.target.id
        assert second.stock_results == []

    async def test_cancelled_order_cannot_convert(self, db_session, company, customer, make_document):
        order = await create(db_session, DocumentKind.SALES_ORDER, make_document(company, customer))
        order_id = order.id
        await DocumentService(db_session).cancel_document(order_id, None, "tester")

        with pytest.raises(ValidationError):
            await DocumentConverter(db_session).convert(order_id, "tester")

    async def test_converted_order_cannot_be_cancelled(self, db_session, company, customer, make_document):
        order = await create(db_session, DocumentKind.SALES_ORDER, make_document(company, customer))
        order_id = order.id
        await DocumentConverter(db_session).convert(order_id, "tester")

        with pytest.raises(ValidationError) as exc_info:
            await DocumentService(db_session).cancel_document(order_id, None, "tester")
        assert exc_info.value.error_code == "DOCUMENT_CONVERTED"

    async def test_units_normalized_on_target(self, db_session, company, customer, make_document):
        lines = [LineItemIn(
            name="Cotton Towel", quantity=Decimal("2"), unit="piece",
            price_per_unit=Decimal("250"), tax_rate=Decimal("5"),
        )]
        order = await create(db_session, DocumentKind.SALES_ORDER, make_document(company, customer, lines=lines))

        result = await DocumentConverter(db_session).convert(order.id, "tester")

        assert result.target.items[0].unit == "PCS"


@pytest.mark.asyncio
class TestCrossCompany:

    async def test_sale_becomes_purchase_of_linked_company(
        self, db_session, company, other_company, linked_customer, item, make_document
    ):
        item_id = item.id
        acme_id, bharat_id = company.id, other_company.id
        sale = await create(db_session, DocumentKind.SALE, make_document(company, linked_customer, item, paid="500"))
        sale_id = sale.id

        result = await DocumentConverter(db_session).convert(sale_id, "tester")
        target = result.target

        assert target.document_type == "PURCHASE"
        assert target.company_id == bharat_id
        assert target.document_number == f"PUR-GST-{TODAY_NUMBER}-0001"
        assert target.final_total == Decimal("1180.00")
        assert target.items[0].item_id is None
        assert result.stock_results == []

        supplier = await PartyDirectory(db_session).get_party(target.party_id, bharat_id)
        assert supplier.party_type == "SUPPLIER"
        assert supplier.linked_company_id == acme_id
        assert supplier.is_auto_created is True
        assert supplier.name == "Acme Traders"

        # Only the original sale took stock
        stocked = await db_session.get(Item, item_id, populate_existing=True)
        assert stocked.current_stock == Decimal("90")

        source = await DocumentService(db_session).get_document(sale_id)
        assert source.status == "COMPLETED"
        assert source.is_converted is True

    async def test_existing_counterparty_is_reused(
        self, db_session, company, other_company, linked_customer, make_document
    ):
        bharat_id = other_company.id
        converter = DocumentConverter(db_session)

        first_sale = await create(db_session, DocumentKind.SALE, make_document(company, linked_customer))
        second_sale = await create(db_session, DocumentKind.SALE, make_document(company, linked_customer))
        first = await converter.convert(first_sale.id, "tester")
        second = await converter.convert(second_sale.id, "tester")

        assert first.target.party_id == second.target.party_id
        suppliers = await PartyDirectory(db_session).list_parties(bharat_id, "SUPPLIER")
        assert len(suppliers) == 1

    async def test_phone_clash_does_not_block_conversion(
        self, db_session, company, other_company, linked_customer, make_document
    ):
        acme_id, bharat_id = company.id, other_company.id
        # Acme's own phone already belongs to a customer in Bharat's books
        await seed_party(db_session, other_company, "Acme Front Desk", phone="9000000001")
        sale = await create(db_session, DocumentKind.SALE, make_document(company, linked_customer))

        result = await DocumentConverter(db_session).convert(sale.id, "tester")

        supplier = await PartyDirectory(db_session).get_party(result.target.party_id, bharat_id)
        assert supplier.name == "Acme Traders"
        assert supplier.phone is None
        assert supplier.linked_company_id == acme_id

    async def test_same_company_rejected(self, db_session, company, linked_customer, make_document):
        acme_id = company.id
        sale = await create(db_session, DocumentKind.SALE, make_document(company, linked_customer))

        with pytest.raises(ValidationError) as exc_info:
            await DocumentConverter(db_session).convert(sale.id, "tester", target_company_id=acme_id)

        assert exc_info.value.error_code == "SAME_COMPANY_CONVERSION"

    async def test_unlinked_customer_needs_target(self, db_session, company, customer, make_document):
        sale = await create(db_session, DocumentKind.SALE, make_document(company, customer))

        with pytest.raises(ValidationError) as exc_info:
            await DocumentConverter(db_session).convert(sale.id, "tester")

        assert exc_info.value.field == "targetCompanyId"

    async def test_failed_conversion_leaves_source_unconverted(
        self, db_session, company, other_company, linked_customer, make_document
    ):
        bharat_id = other_company.id
        sale = await create(db_session, DocumentKind.SALE, make_document(company, linked_customer))
        sale_id = sale.id
        directory = UnreachableDirectory(db_session)
        converter = DocumentConverter(db_session, party_directory=directory)

        with pytest.raises(DependencyError):
            await converter.convert(sale_id, "tester")

        source = await DocumentService(db_session).get_document(sale_id)
        assert source.is_converted is False
        assert source.conversion is None
        documents, total = await DocumentService(db_session).list_documents(bharat_id)
        assert total == 0

        retried = await DocumentConverter(db_session).convert(sale_id, "tester")
        assert retried.already_converted is False


@pytest.mark.asyncio
@pytest.mark.concurrency
class TestConcurrentConversion:

    async def test_racing_conversions_create_one_target(self, file_session_factory):
        async with file_session_factory() as session:
            company = await seed_company(session, "Acme Traders", "9000000001")
            customer = await seed_party(session, company, "Walk-in Customer")
            item = await seed_item(session, company, "Steel Bottle")
            order = await create(session, DocumentKind.SALES_ORDER, DocumentCreate(
                company_id=company.id,
                party_id=customer.id,
                items=[LineItemIn(
                    item_id=item.id, name="Steel Bottle", quantity=Decimal("10"),
                    price_per_unit=Decimal("100"), tax_rate=Decimal("18"),
                )],
                payment=PaymentIn(),
            ))
            order_id, item_id, company_id = order.id, item.id, company.id

        async def convert():
            async with file_session_factory() as session:
                return await DocumentConverter(session).convert(order_id, "tester")

        results = await asyncio.gather(*[convert() for _ in range(3)])

        assert len({r.target.id for r in results}) == 1
        assert sorted(r.already_converted for r in results) == [False, True, True]

        async with file_session_factory() as session:
            stocked = await session.get(Item, item_id)
            assert stocked.current_stock == Decimal("90")
            documents, total = await DocumentService(session).list_documents(
                company_id, kind=DocumentKind.SALE
            )
            assert total == 1


@pytest.mark.asyncio
class TestCounterOrders:

    async def test_sales_order_mirrored_as_purchase_order(
        self, db_session, company, other_company, linked_customer, item, make_document
    ):
        acme_id, bharat_id = company.id, other_company.id
        order = await create(
            db_session, DocumentKind.SALES_ORDER, make_document(company, linked_customer, item, paid="300")
        )
        order_id = order.id
        converter = DocumentConverter(db_session)

        result = await converter.generate_counter_order(order_id, "tester")
        target = result.target

        assert result.already_converted is False
        assert target.document_type == "PURCHASE_ORDER"
        assert target.company_id == bharat_id
        assert target.document_number == f"PO-GST-{TODAY_NUMBER}-0001"
        assert target.status == "DRAFT"
        assert target.final_total == Decimal("1180.00")
        assert target.paid_amount == Decimal("300.00")
        assert target.items[0].item_id is None
        assert target.generated_from_id == order_id

        supplier = await PartyDirectory(db_session).get_party(target.party_id, bharat_id)
        assert supplier.party_type == "SUPPLIER"
        assert supplier.linked_company_id == acme_id

        source = await DocumentService(db_session).get_document(order_id)
        assert source.status == "DRAFT"
        assert source.counter_order_generated is True
        assert source.counter_order_id == target.id
        assert source.is_converted is False

    async def test_repeat_returns_existing_counter_order(
        self, db_session, company, other_company, linked_customer, make_document
    ):
        bharat_id = other_company.id
        order = await create(db_session, DocumentKind.SALES_ORDER, make_document(company, linked_customer))
        converter = DocumentConverter(db_session)

        first = await converter.generate_counter_order(order.id, "tester")
        second = await converter.generate_counter_order(order.id, "tester")

        assert second.already_converted is True
        assert second.target.id == first.target.id
        documents, total = await DocumentService(db_session).list_documents(bharat_id)
        assert total == 1

    async def test_mirrored_order_still_converts_to_sale(
        self, db_session, company, linked_customer, item, make_document
    ):
        acme_id, item_id = company.id, item.id
        order = await create(db_session, DocumentKind.SALES_ORDER, make_document(company, linked_customer, item))
        order_id = order.id
        converter = DocumentConverter(db_session)
        await converter.generate_counter_order(order_id, "tester")

        result = await converter.convert(order_id, "tester")

        assert result.target.document_type == "SALE"
        assert result.target.company_id == acme_id
        stocked = await db_session.get(Item, item_id, populate_existing=True)
        assert stocked.current_stock == Decimal("90")

    async def test_purchase_order_mirrored_as_sales_order(
        self, db_session, company, other_company, make_document
    ):
        acme_id, bharat_id = company.id, other_company.id
        linked_supplier = await seed_party(
            db_session, company, "Bharat Retail", PartyType.SUPPLIER, linked_company=other_company
        )
        order = await create(db_session, DocumentKind.PURCHASE_ORDER, make_document(company, linked_supplier))

        result = await DocumentConverter(db_session).generate_counter_order(order.id, "tester")
        target = result.target

        assert target.document_type == "SALES_ORDER"
        assert target.order_type == "SALES_ORDER"
        assert target.company_id == bharat_id
        assert target.document_number == f"SO-{TODAY_NUMBER}-0001"

        buyer = await PartyDirectory(db_session).get_party(target.party_id, bharat_id)
        assert buyer.party_type == "CUSTOMER"
        assert buyer.linked_company_id == acme_id
        assert buyer.is_auto_created is True

    async def test_invoice_cannot_be_mirrored(self, db_session, company, linked_customer, make_document):
        sale = await create(db_session, DocumentKind.SALE, make_document(company, linked_customer))

        with pytest.raises(ValidationError):
            await DocumentConverter(db_session).generate_counter_order(sale.id, "tester")

    async def test_cancelled_order_cannot_be_mirrored(
        self, db_session, company, linked_customer, make_document
    ):
        order = await create(db_session, DocumentKind.SALES_ORDER, make_document(company, linked_customer))
        order_id = order.id
        await DocumentService(db_session).cancel_document(order_id, None, "tester")

        with pytest.raises(ValidationError):
            await DocumentConverter(db_session).generate_counter_order(order_id, "tester")

    async def test_unlinked_party_needs_target(self, db_session, company, customer, make_document):
        order = await create(db_session, DocumentKind.SALES_ORDER, make_document(company, customer))

        with pytest.raises(ValidationError) as exc_info:
            await DocumentConverter(db_session).generate_counter_order(order.id, "tester")

        assert exc_info.value.field == "targetCompanyId"
