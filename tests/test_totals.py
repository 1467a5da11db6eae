"""Document totals aggregation tests."""

from decimal import Decimal
from types import SimpleNamespace

import pytest

from shopbooks.core.exceptions import InvariantViolation
from shopbooks.models.document import TaxMode
from shopbooks.services.tax_calculator import LineInput, calculate_lines
from shopbooks.services.totals_service import aggregate, verify_document, verify_final_total


def calculations():
    return calculate_lines([
        LineInput("Steel Bottle", Decimal("10"), Decimal("100"), Decimal("18")),
        LineInput("Lunch Box", Decimal("3"), Decimal("33.33"), Decimal("12"), discount_percent=Decimal("5")),
        LineInput("Flask", Decimal("1"), Decimal("590"), Decimal("18"), tax_mode=TaxMode.INCLUSIVE),
    ])


@pytest.mark.unit
class TestAggregate:

    def test_totals(self):
        totals = aggregate(calculate_lines([
            LineInput("Steel Bottle", Decimal("10"), Decimal("100"), Decimal("18")),
        ]))

        assert totals.subtotal == Decimal("1000.00")
        assert totals.total_taxable_amount == Decimal("1000.00")
        assert totals.total_cgst == Decimal("90.00")
        assert totals.total_sgst == Decimal("90.00")
        assert totals.total_tax == Decimal("180.00")
        assert totals.round_off == Decimal("0")
        assert totals.final_total == Decimal("1180.00")

    def test_idempotent(self):
        lines = calculations()
        assert aggregate(lines, True, Decimal("0.25")) == aggregate(lines, True, Decimal("0.25"))

    def test_final_total_matches_stored_lines(self):
        lines = calculations()
        totals = aggregate(lines)

        stored = [line.quantized().line_total for line in lines]
        verify_final_total(stored, totals.round_off, totals.final_total)
        assert totals.final_total == sum(stored)

    def test_round_off_only_when_enabled(self):
        lines = calculations()

        disabled = aggregate(lines, round_off_enabled=False, round_off=Decimal("0.40"))
        enabled = aggregate(lines, round_off_enabled=True, round_off=Decimal("0.40"))

        assert disabled.round_off == Decimal("0")
        assert enabled.round_off == Decimal("0.40")
        assert enabled.final_total - disabled.final_total == Decimal("0.40")

    def test_negative_round_off(self):
        totals = aggregate(calculations(), True, Decimal("-0.33"))
        assert totals.round_off == Decimal("-0.33")


@pytest.mark.unit
class TestInvariant:

    def test_mismatch_raises(self):
        document = SimpleNamespace(
            items=[SimpleNamespace(line_total=Decimal("1180.00"))],
            round_off=Decimal("0"),
            final_total=Decimal("1181.00"),
        )
        with pytest.raises(InvariantViolation):
            verify_document(document)

    def test_match_passes(self):
        document = SimpleNamespace(
            items=[SimpleNamespace(line_total=Decimal("1180.00")), SimpleNamespace(line_total=Decimal("50.50"))],
            round_off=Decimal("-0.50"),
            final_total=Decimal("1230.00"),
        )
        verify_document(document)
