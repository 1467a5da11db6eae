"""
Payment State Machine

All changes to a document's paid/pending amounts and payment status go
through this module.

    PENDING -> PARTIAL -> PAID
        \\_________\\________-> CANCELLED   (terminal)

OVERDUE is a derived flag, never stored: a PENDING or PARTIAL document whose
due date has passed with money still pending resolves to OVERDUE on every
read (resolve_status), and stops being overdue as soon as it is paid.

Over-payment is rejected everywhere, never clamped. A fully paid document
cannot be cancelled; it has to be settled through a return/refund
(error code REFUND_REQUIRED).
"""

import logging
from datetime import date, timedelta
from decimal import Decimal
from typing import Optional

from shopbooks.core.enum_utils import normalize_enum_input
from shopbooks.core.exceptions import ValidationError
from shopbooks.models.document import Document, PaymentHistoryEntry, PaymentMethod, PaymentStatus
from shopbooks.services.tax_calculator import ZERO, money, to_decimal


logger = logging.getLogger(__name__)


PENDING = PaymentStatus.PENDING.value
PARTIAL = PaymentStatus.PARTIAL.value
PAID = PaymentStatus.PAID.value
OVERDUE = PaymentStatus.OVERDUE.value
CANCELLED = PaymentStatus.CANCELLED.value

REFUND_REQUIRED = "REFUND_REQUIRED"

PAYMENT_METHOD_ALIASES = {
    "BANK": PaymentMethod.BANK_TRANSFER,
    "NEFT": PaymentMethod.BANK_TRANSFER,
    "RTGS": PaymentMethod.BANK_TRANSFER,
    "IMPS": PaymentMethod.BANK_TRANSFER,
    "CREDIT_CARD": PaymentMethod.CARD,
    "DEBIT_CARD": PaymentMethod.CARD,
    "NET_BANKING": PaymentMethod.ONLINE,
    "NETBANKING": PaymentMethod.ONLINE,
}


# =============================================================================
# PURE HELPERS
# =============================================================================

def normalize_payment_method(value) -> str:
    """Map free-form payment method input to a stored value; unknown means CASH."""
    method = normalize_enum_input(value, PaymentMethod, PAYMENT_METHOD_ALIASES)
    if method is None:
        if value:
            logger.info("Unknown payment method %r recorded as CASH", value)
        return PaymentMethod.CASH.value
    return method.value


def compute_due_date(payment_date: date, credit_days: int) -> date:
    """due date = payment date + credit days."""
    if credit_days is None or credit_days < 0:
        raise ValidationError("Credit days cannot be negative", field="creditDays")
    return payment_date + timedelta(days=credit_days)


def pending_for(final_total: Decimal, paid_amount: Decimal) -> Decimal:
    """pending = max(0, final total - paid)."""
    return max(ZERO, money(final_total) - money(paid_amount))


def derive_status(final_total: Decimal, paid_amount: Decimal) -> str:
    """Stored status from the amounts alone (PENDING, PARTIAL or PAID)."""
    if money(paid_amount) >= money(final_total):
        return PAID
    if paid_amount > ZERO:
        return PARTIAL
    return PENDING


def is_overdue(document: Document, today: Optional[date] = None) -> bool:
    today = today or date.today()
    return (
        document.payment_status in (PENDING, PARTIAL)
        and document.due_date is not None
        and document.due_date < today
        and document.pending_amount > ZERO
    )


def resolve_status(document: Document, today: Optional[date] = None) -> str:
    """Status as reported to readers, with OVERDUE derived on the fly."""
    if is_overdue(document, today):
        return OVERDUE
    return document.payment_status


def _append_history(
    document: Document,
    amount: Decimal,
    method: str,
    payment_date: date,
    actor: str,
    reference: Optional[str] = None,
    note: Optional[str] = None,
    due_date: Optional[date] = None,
) -> PaymentHistoryEntry:
    entry = PaymentHistoryEntry(
        entry_number=len(document.payment_history) + 1,
        amount=money(amount),
        method=method,
        reference=reference,
        payment_date=payment_date,
        due_date=due_date,
        note=note,
        created_by=actor,
    )
    document.payment_history.append(entry)
    return entry


# =============================================================================
# TRANSITIONS
# =============================================================================

def initial_payment(
    document: Document,
    paid_amount,
    method,
    actor: str,
    payment_date: Optional[date] = None,
    due_date: Optional[date] = None,
    credit_days: int = 0,
    reference: Optional[str] = None,
    note: str = "Initial payment",
) -> None:
    """
    Initialise payment info on a new document whose totals are already set.

    Credit days derive the due date when no explicit due date is given.
    A history entry is written only when something was actually paid.
    """
    paid = money(to_decimal(paid_amount))
    if paid < ZERO:
        raise ValidationError("Paid amount cannot be negative", field="payment.paidAmount")
    if paid > money(document.final_total):
        raise ValidationError(
            f"Paid amount ({paid}) exceeds the document total ({money(document.final_total)})",
            error_code="OVERPAYMENT",
            field="payment.paidAmount",
        )

    payment_date = payment_date or document.document_date or date.today()
    credit_days = credit_days or 0
    if due_date is None and credit_days > 0:
        due_date = compute_due_date(payment_date, credit_days)
    elif credit_days < 0:
        raise ValidationError("Credit days cannot be negative", field="payment.creditDays")

    document.payment_method = normalize_payment_method(method)
    document.payment_date = payment_date
    document.credit_days = credit_days
    document.payment_reference = reference
    document.paid_amount = paid
    document.pending_amount = pending_for(document.final_total, paid)
    document.payment_status = derive_status(document.final_total, paid)
    document.due_date = None if document.payment_status == PAID else due_date

    if paid > ZERO:
        _append_history(
            document, paid, document.payment_method, payment_date, actor,
            reference=reference, note=note, due_date=due_date,
        )


def add_payment(
    document: Document,
    amount,
    method,
    actor: str,
    reference: Optional[str] = None,
    payment_date: Optional[date] = None,
    due_date: Optional[date] = None,
) -> PaymentHistoryEntry:
    """
    Apply a payment.

    Raises:
        ValidationError: non-positive amount, amount above the pending
            balance, or a cancelled document
    """
    amount = money(to_decimal(amount))
    if document.payment_status == CANCELLED:
        raise ValidationError("Cannot add a payment to a cancelled document", field="amount")
    if amount <= ZERO:
        raise ValidationError("Payment amount must be greater than 0", field="amount")
    if amount > money(document.pending_amount):
        raise ValidationError(
            f"Payment amount ({amount}) exceeds balance due ({money(document.pending_amount)})",
            error_code="OVERPAYMENT",
            field="amount",
        )

    payment_date = payment_date or date.today()
    method_value = normalize_payment_method(method)
    if due_date is not None:
        document.due_date = due_date
    due_snapshot = document.due_date

    new_paid = money(document.paid_amount) + amount
    document.paid_amount = new_paid
    document.pending_amount = pending_for(document.final_total, new_paid)
    document.payment_status = derive_status(document.final_total, new_paid)
    if document.payment_status == PAID:
        document.pending_amount = ZERO
        document.due_date = None

    document.payment_method = method_value
    document.payment_date = payment_date
    document.payment_reference = reference
    document.updated_by = actor

    return _append_history(
        document, amount, method_value, payment_date, actor,
        reference=reference, due_date=due_snapshot,
    )


def cancel(document: Document, reason: Optional[str], actor: str) -> Optional[PaymentHistoryEntry]:
    """
    Cancel the payment side of a document.

    Appends a reversal entry of -paid when anything was paid, zeroes
    paid/pending and moves to CANCELLED.

    Raises:
        ValidationError: already cancelled, or fully paid (REFUND_REQUIRED)
    """
    if document.payment_status == CANCELLED:
        raise ValidationError("Document is already cancelled", error_code="ALREADY_CANCELLED")

    paid = money(document.paid_amount)
    if document.payment_status == PAID and paid > ZERO and paid >= money(document.final_total):
        raise ValidationError(
            "Fully paid documents cannot be cancelled; record a return/refund instead",
            error_code=REFUND_REQUIRED,
        )

    entry = None
    if paid > ZERO:
        entry = _append_history(
            document, -paid, document.payment_method, date.today(), actor,
            note=f"Cancellation reversal: {reason}" if reason else "Cancellation reversal",
            due_date=document.due_date,
        )

    document.paid_amount = ZERO
    document.pending_amount = ZERO
    document.payment_status = CANCELLED
    document.cancellation_reason = reason
    document.updated_by = actor
    return entry


def set_due_date(document: Document, credit_days: int, actor: Optional[str] = None) -> date:
    """
    due date = payment date (or document date) + credit days.

    The stored status is left alone; overdue is re-derived on the next read.
    """
    if document.payment_status in (PAID, CANCELLED):
        raise ValidationError(
            f"Cannot set a due date on a {document.payment_status.lower()} document",
            field="creditDays",
        )
    base = document.payment_date or document.document_date
    document.due_date = compute_due_date(base, credit_days)
    document.credit_days = credit_days
    if actor:
        document.updated_by = actor
    return document.due_date


def recompute_after_total_change(document: Document) -> None:
    """
    Re-derive pending/status after the final total changed (item edits).

    Raises:
        ValidationError: the new total is below what has already been paid
    """
    if money(document.paid_amount) > money(document.final_total):
        raise ValidationError(
            f"New total ({money(document.final_total)}) is below the amount already paid "
            f"({money(document.paid_amount)})",
            error_code="OVERPAYMENT",
            field="items",
        )
    document.pending_amount = pending_for(document.final_total, document.paid_amount)
    document.payment_status = derive_status(document.final_total, document.paid_amount)
    if document.payment_status == PAID:
        document.due_date = None
