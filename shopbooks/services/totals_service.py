"""Document totals aggregation and the totals invariant check."""
from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable, Optional, Sequence

from shopbooks.core.exceptions import InvariantViolation
from shopbooks.services.tax_calculator import LineCalculation, ZERO, money, to_decimal


@dataclass(frozen=True)
class DocumentTotals:
    subtotal: Decimal
    total_discount: Decimal
    total_taxable_amount: Decimal
    total_cgst: Decimal
    total_sgst: Decimal
    total_igst: Decimal
    total_tax: Decimal
    round_off: Decimal
    final_total: Decimal

    def apply_to(self, document) -> None:
        """Copy the totals onto a Document row."""
        document.subtotal = self.subtotal
        document.total_discount = self.total_discount
        document.total_taxable_amount = self.total_taxable_amount
        document.total_cgst = self.total_cgst
        document.total_sgst = self.total_sgst
        document.total_igst = self.total_igst
        document.total_tax = self.total_tax
        document.round_off = self.round_off
        document.final_total = self.final_total


def effective_round_off(round_off_enabled: bool, round_off: Optional[Decimal]) -> Decimal:
    """Round-off only counts when explicitly enabled and non-zero."""
    value = to_decimal(round_off)
    if not round_off_enabled or value == ZERO:
        return ZERO
    return money(value)


def aggregate(
    lines: Sequence[LineCalculation],
    round_off_enabled: bool = False,
    round_off: Optional[Decimal] = None,
) -> DocumentTotals:
    """
    Fold computed lines into document totals.

    Sums run over the unrounded line values and are rounded once, except the
    final total: it is the sum of the stored (rounded) line totals plus the
    round-off, so it always equals what a reader gets by adding up the
    persisted lines. Always pass the full line list; there is no
    incremental update.
    """
    lines = list(lines)
    total_cgst = sum((line.cgst_amount for line in lines), ZERO)
    total_sgst = sum((line.sgst_amount for line in lines), ZERO)
    adjustment = effective_round_off(round_off_enabled, round_off)

    return DocumentTotals(
        subtotal=money(sum((line.base_amount for line in lines), ZERO)),
        total_discount=money(sum((line.discount for line in lines), ZERO)),
        total_taxable_amount=money(sum((line.taxable_amount for line in lines), ZERO)),
        total_cgst=money(total_cgst),
        total_sgst=money(total_sgst),
        total_igst=money(sum((line.igst_amount for line in lines), ZERO)),
        total_tax=money(total_cgst + total_sgst),
        round_off=adjustment,
        final_total=sum((line.quantized().line_total for line in lines), ZERO) + adjustment,
    )


def verify_final_total(line_totals: Iterable[Decimal], round_off: Decimal, final_total: Decimal) -> None:
    """Raise InvariantViolation when final_total != Σ line_total + round_off."""
    expected = sum((money(value) for value in line_totals), ZERO) + money(round_off)
    if money(expected) != money(final_total):
        raise InvariantViolation(
            f"Final total {money(final_total)} does not match line totals plus round-off {money(expected)}"
        )


def verify_document(document) -> None:
    """Check the totals invariant on a Document before it is committed."""
    verify_final_total(
        (item.line_total for item in document.items),
        document.round_off,
        document.final_total,
    )
