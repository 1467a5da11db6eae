"""Line item tax calculation tests."""

from decimal import Decimal

import pytest

from shopbooks.core.exceptions import ValidationError
from shopbooks.models.document import TaxMode
from shopbooks.services.tax_calculator import (
    LineInput,
    calculate_line,
    calculate_lines,
    money,
    resolve_tax_mode,
)


def line(**overrides) -> LineInput:
    values = dict(
        name="Steel Bottle",
        quantity=Decimal("10"),
        price_per_unit=Decimal("100"),
        tax_rate=Decimal("18"),
        tax_mode=TaxMode.EXCLUSIVE,
    )
    values.update(overrides)
    return LineInput(**values)


@pytest.mark.unit
class TestExclusiveMode:

    def test_tax_added_on_top(self):
        calc = calculate_line(line()).quantized()

        assert calc.taxable_amount == Decimal("1000.00")
        assert calc.cgst_amount == Decimal("90.00")
        assert calc.sgst_amount == Decimal("90.00")
        assert calc.igst_amount == Decimal("0.00")
        assert calc.line_total == Decimal("1180.00")

    @pytest.mark.parametrize("quantity,price,rate", [
        ("3", "33.33", "18"),
        ("7", "19.99", "5"),
        ("1.5", "249.95", "12"),
        ("13", "0.07", "28"),
    ])
    def test_components_add_up_to_line_total(self, quantity, price, rate):
        calc = calculate_line(line(
            quantity=Decimal(quantity), price_per_unit=Decimal(price), tax_rate=Decimal(rate)
        ))
        stored = calc.quantized()

        assert money(calc.taxable_amount + calc.cgst_amount + calc.sgst_amount) == money(calc.line_total)
        assert stored.taxable_amount + stored.cgst_amount + stored.sgst_amount + stored.igst_amount \
            == stored.line_total

    def test_percent_discount_before_tax(self):
        calc = calculate_line(line(discount_percent=Decimal("10"))).quantized()

        assert calc.discount == Decimal("100.00")
        assert calc.taxable_amount == Decimal("900.00")
        assert calc.line_total == Decimal("1062.00")

    def test_absolute_discount_wins_over_percent(self):
        calc = calculate_line(line(
            discount_percent=Decimal("50"), discount_amount=Decimal("200")
        )).quantized()

        assert calc.discount == Decimal("200.00")
        assert calc.taxable_amount == Decimal("800.00")


@pytest.mark.unit
class TestInclusiveMode:

    def test_tax_extracted_from_price(self):
        calc = calculate_line(line(
            quantity=Decimal("1"), price_per_unit=Decimal("1180"), tax_mode=TaxMode.INCLUSIVE
        )).quantized()

        assert calc.taxable_amount == Decimal("1000.00")
        assert calc.cgst_amount == Decimal("90.00")
        assert calc.sgst_amount == Decimal("90.00")
        assert calc.line_total == Decimal("1180.00")

    @pytest.mark.parametrize("price,rate", [("99.99", "18"), ("250", "12"), ("17.35", "5")])
    def test_line_total_is_amount_after_discount(self, price, rate):
        calc = calculate_line(line(
            quantity=Decimal("3"),
            price_per_unit=Decimal(price),
            tax_rate=Decimal(rate),
            tax_mode=TaxMode.INCLUSIVE,
        ))

        assert calc.line_total == calc.after_discount
        assert money(calc.taxable_amount * (1 + Decimal(rate) / 100)) == money(calc.after_discount)


@pytest.mark.unit
class TestWithoutTax:

    def test_gst_disabled(self):
        calc = calculate_line(line(), gst_enabled=False).quantized()

        assert calc.tax_amount == Decimal("0.00")
        assert calc.taxable_amount == Decimal("1000.00")
        assert calc.line_total == Decimal("1000.00")

    def test_zero_rate(self):
        calc = calculate_line(line(tax_rate=Decimal("0"), tax_mode=TaxMode.INCLUSIVE)).quantized()

        assert calc.tax_amount == Decimal("0.00")
        assert calc.line_total == Decimal("1000.00")


@pytest.mark.unit
class TestValidation:

    def test_non_positive_quantity_names_the_line(self):
        lines = [line(), line(quantity=Decimal("0"))]

        with pytest.raises(ValidationError) as exc_info:
            calculate_lines(lines)

        assert exc_info.value.line == 2
        assert exc_info.value.field == "items[1].quantity"
        assert exc_info.value.message.startswith("Item 2:")

    def test_negative_price_rejected(self):
        with pytest.raises(ValidationError) as exc_info:
            calculate_line(line(price_per_unit=Decimal("-1")))
        assert exc_info.value.field == "items[0].pricePerUnit"

    def test_missing_name_rejected(self):
        with pytest.raises(ValidationError):
            calculate_line(line(name="  "))

    def test_rate_out_of_range(self):
        with pytest.raises(ValidationError):
            calculate_line(line(tax_rate=Decimal("101")))

    def test_discount_above_line_amount(self):
        with pytest.raises(ValidationError):
            calculate_line(line(discount_amount=Decimal("1000.01")))

    def test_empty_document(self):
        with pytest.raises(ValidationError):
            calculate_lines([])


@pytest.mark.unit
class TestTaxModeAliases:

    @pytest.mark.parametrize("value,expected", [
        ("inclusive", TaxMode.INCLUSIVE),
        ("include", TaxMode.INCLUSIVE),
        ("with-tax", TaxMode.INCLUSIVE),
        ("EXCLUSIVE", TaxMode.EXCLUSIVE),
        ("exclude", TaxMode.EXCLUSIVE),
        ("without-tax", TaxMode.EXCLUSIVE),
        (None, TaxMode.EXCLUSIVE),
    ])
    def test_resolve(self, value, expected):
        assert resolve_tax_mode(value) == expected

    def test_unknown_mode(self):
        with pytest.raises(ValidationError):
            resolve_tax_mode("sometimes")
