"""
GST line-item calculator.

Pure functions: no database, no I/O. Every line is computed from raw input:

    base           = quantity * price_per_unit
    discount       = discount_amount if discount_amount > 0
                     else base * discount_percent / 100
    after_discount = base - discount

    GST enabled and rate > 0:
        EXCLUSIVE  taxable = after_discount
                   cgst = sgst = taxable * (rate / 2) / 100
                   line_total = taxable + cgst + sgst
        INCLUSIVE  taxable = after_discount / (1 + rate / 100)
                   cgst = sgst = taxable * (rate / 2) / 100
                   line_total = after_discount
    otherwise      taxable = line_total = after_discount, no tax

IGST is reserved for inter-state supply and always zero here.

Results stay unrounded in LineCalculation; `quantized()` rounds to paise
when the values are stored.
"""
from dataclasses import dataclass, replace
from decimal import Decimal, ROUND_HALF_UP, InvalidOperation
from typing import Any, Iterable, List, Optional
from uuid import UUID

from shopbooks.core.enum_utils import normalize_enum_input
from shopbooks.core.exceptions import ValidationError
from shopbooks.models.document import TaxMode


ZERO = Decimal("0")
HUNDRED = Decimal("100")
TWO_PLACES = Decimal("0.01")

# Order screens say include/exclude, invoice screens say with-tax/without-tax
TAX_MODE_ALIASES = {
    "INCLUDE": TaxMode.INCLUSIVE,
    "WITH_TAX": TaxMode.INCLUSIVE,
    "EXCLUDE": TaxMode.EXCLUSIVE,
    "WITHOUT_TAX": TaxMode.EXCLUSIVE,
}


def to_decimal(value: Any, default: Decimal = ZERO) -> Decimal:
    """Convert API/DB numerics to Decimal without float artefacts."""
    if value is None or value == "":
        return default
    if isinstance(value, Decimal):
        return value
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise ValidationError(f"Not a number: {value!r}")


def money(value: Decimal) -> Decimal:
    """Round a monetary value to 2 decimal places (half up)."""
    return to_decimal(value).quantize(TWO_PLACES, rounding=ROUND_HALF_UP)


def resolve_tax_mode(value: Any, default: TaxMode = TaxMode.EXCLUSIVE) -> TaxMode:
    """Map exclusive/inclusive, include/exclude and with-tax/without-tax onto TaxMode."""
    if value is None or value == "":
        return default
    mode = normalize_enum_input(value, TaxMode, TAX_MODE_ALIASES)
    if mode is None:
        raise ValidationError(f"Unknown tax mode: {value}", field="taxMode")
    return mode


@dataclass(frozen=True)
class LineInput:
    """Raw line as entered by the user (rate already defaulted)."""
    name: str
    quantity: Decimal
    price_per_unit: Decimal
    tax_rate: Decimal
    tax_mode: TaxMode = TaxMode.EXCLUSIVE
    discount_percent: Decimal = ZERO
    discount_amount: Decimal = ZERO
    unit: str = "PCS"
    item_id: Optional[UUID] = None


@dataclass(frozen=True)
class LineCalculation:
    """Computed monetary values for one line."""
    base_amount: Decimal
    discount: Decimal
    after_discount: Decimal
    taxable_amount: Decimal
    cgst_amount: Decimal
    sgst_amount: Decimal
    igst_amount: Decimal
    line_total: Decimal

    @property
    def tax_amount(self) -> Decimal:
        return self.cgst_amount + self.sgst_amount + self.igst_amount

    def quantized(self) -> "LineCalculation":
        """
        Storage form: every field rounded to 2 dp.

        For taxed exclusive lines the stored line total is the sum of the
        stored components, so taxable + cgst + sgst + igst == line_total holds
        exactly on what is persisted.
        """
        taxable = money(self.taxable_amount)
        cgst = money(self.cgst_amount)
        sgst = money(self.sgst_amount)
        igst = money(self.igst_amount)
        after_discount = money(self.after_discount)

        if self.line_total == self.after_discount:
            line_total = after_discount
        else:
            line_total = taxable + cgst + sgst + igst

        return replace(
            self,
            base_amount=money(self.base_amount),
            discount=money(self.discount),
            after_discount=after_discount,
            taxable_amount=taxable,
            cgst_amount=cgst,
            sgst_amount=sgst,
            igst_amount=igst,
            line_total=line_total,
        )


def _line_error(index: int, field: str, message: str) -> ValidationError:
    return ValidationError(
        f"Item {index + 1}: {message}",
        field=f"items[{index}].{field}",
        line=index + 1,
    )


def validate_line(line: LineInput, index: int) -> None:
    """Reject malformed lines, naming the offending line (1-based) and field."""
    if not line.name or not line.name.strip():
        raise _line_error(index, "name", "name is required")
    if line.quantity is None or line.quantity <= ZERO:
        raise _line_error(index, "quantity", "quantity must be greater than 0")
    if line.price_per_unit is None or line.price_per_unit < ZERO:
        raise _line_error(index, "pricePerUnit", "price per unit cannot be negative")
    if line.tax_rate < ZERO or line.tax_rate > HUNDRED:
        raise _line_error(index, "taxRate", "tax rate must be between 0 and 100")
    if line.discount_percent < ZERO or line.discount_percent > HUNDRED:
        raise _line_error(index, "discountPercent", "discount percent must be between 0 and 100")
    if line.discount_amount < ZERO:
        raise _line_error(index, "discountAmount", "discount amount cannot be negative")
    if line.discount_amount > line.quantity * line.price_per_unit:
        raise _line_error(index, "discountAmount", "discount amount exceeds the line amount")


def calculate_line(line: LineInput, gst_enabled: bool = True, index: int = 0) -> LineCalculation:
    """Compute one line. Raises ValidationError for malformed input."""
    validate_line(line, index)

    base = line.quantity * line.price_per_unit
    if line.discount_amount > ZERO:
        discount = line.discount_amount
    else:
        discount = base * line.discount_percent / HUNDRED
    after_discount = base - discount

    if gst_enabled and line.tax_rate > ZERO:
        half_rate = line.tax_rate / 2
        if line.tax_mode == TaxMode.INCLUSIVE:
            taxable = after_discount / (1 + line.tax_rate / HUNDRED)
            cgst = taxable * half_rate / HUNDRED
            line_total = after_discount
        else:
            taxable = after_discount
            cgst = taxable * half_rate / HUNDRED
            line_total = taxable + cgst + cgst
        sgst = cgst
    else:
        taxable = after_discount
        cgst = sgst = ZERO
        line_total = after_discount

    return LineCalculation(
        base_amount=base,
        discount=discount,
        after_discount=after_discount,
        taxable_amount=taxable,
        cgst_amount=cgst,
        sgst_amount=sgst,
        igst_amount=ZERO,
        line_total=line_total,
    )


def calculate_lines(lines: Iterable[LineInput], gst_enabled: bool = True) -> List[LineCalculation]:
    """Compute every line; the first malformed line fails the whole batch."""
    lines = list(lines)
    if not lines:
        raise ValidationError("At least one item is required", field="items")
    return [calculate_line(line, gst_enabled, index) for index, line in enumerate(lines)]
