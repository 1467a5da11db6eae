"""Payment state machine tests."""

from datetime import date, timedelta
from decimal import Decimal

import pytest

from shopbooks.core.exceptions import ValidationError
from shopbooks.models.document import Document, PaymentStatus
from shopbooks.services import payment_state_machine as psm


TODAY = date(2026, 10, 19)


def new_document(total: str = "1180") -> Document:
    return Document(
        final_total=Decimal(total),
        document_date=TODAY,
        payment_history=[],
    )


def paid_document(total: str = "1180", paid: str = "0", credit_days: int = 0) -> Document:
    document = new_document(total)
    psm.initial_payment(document, Decimal(paid), "cash", "tester", payment_date=TODAY, credit_days=credit_days)
    return document


@pytest.mark.unit
class TestInitialPayment:

    def test_partial(self):
        document = paid_document(paid="500")

        assert document.pending_amount == Decimal("680.00")
        assert document.payment_status == PaymentStatus.PARTIAL.value
        assert len(document.payment_history) == 1
        assert document.payment_history[0].amount == Decimal("500.00")

    def test_paid_clears_due_date(self):
        document = paid_document(paid="1180", credit_days=15)

        assert document.pending_amount == Decimal("0.00")
        assert document.payment_status == PaymentStatus.PAID.value
        assert document.due_date is None

    def test_unpaid_on_credit(self):
        document = paid_document(credit_days=30)

        assert document.payment_status == PaymentStatus.PENDING.value
        assert document.pending_amount == Decimal("1180.00")
        assert document.due_date == TODAY + timedelta(days=30)
        assert document.payment_history == []

    def test_overpayment_rejected(self):
        with pytest.raises(ValidationError) as exc_info:
            paid_document(paid="1180.01")
        assert exc_info.value.error_code == "OVERPAYMENT"

    def test_negative_rejected(self):
        with pytest.raises(ValidationError):
            paid_document(paid="-1")

    @pytest.mark.parametrize("value,expected", [
        ("upi", "UPI"),
        ("Bank Transfer", "BANK_TRANSFER"),
        ("neft", "BANK_TRANSFER"),
        ("credit-card", "CARD"),
        ("barter", "CASH"),
        (None, "CASH"),
    ])
    def test_payment_method_normalized(self, value, expected):
        assert psm.normalize_payment_method(value) == expected


@pytest.mark.unit
class TestAddPayment:

    def test_pending_is_monotonic(self):
        document = paid_document(credit_days=10)
        previous = document.pending_amount

        for amount in ("100", "250.50", "329.50", "500"):
            psm.add_payment(document, Decimal(amount), "upi", "tester", payment_date=TODAY)
            assert document.pending_amount <= previous
            assert document.pending_amount == max(
                Decimal("0"), document.final_total - document.paid_amount
            )
            previous = document.pending_amount

        assert document.payment_status == PaymentStatus.PAID.value
        assert document.due_date is None
        assert [entry.entry_number for entry in document.payment_history] == [1, 2, 3, 4]

    def test_history_keeps_due_date_snapshot(self):
        document = paid_document(credit_days=10)

        entry = psm.add_payment(document, Decimal("100"), "cash", "tester", payment_date=TODAY)

        assert entry.due_date == TODAY + timedelta(days=10)
        assert document.payment_status == PaymentStatus.PARTIAL.value

    def test_overpayment_rejected(self):
        document = paid_document(paid="1000")

        with pytest.raises(ValidationError) as exc_info:
            psm.add_payment(document, Decimal("180.01"), "cash", "tester")

        assert exc_info.value.error_code == "OVERPAYMENT"
        assert document.paid_amount == Decimal("1000.00")

    def test_zero_rejected(self):
        with pytest.raises(ValidationError):
            psm.add_payment(paid_document(), Decimal("0"), "cash", "tester")

    def test_cancelled_rejected(self):
        document = paid_document(paid="100")
        psm.cancel(document, "wrong party", "tester")

        with pytest.raises(ValidationError):
            psm.add_payment(document, Decimal("10"), "cash", "tester")


@pytest.mark.unit
class TestOverdue:

    def test_past_due_resolves_to_overdue(self):
        document = paid_document(paid="500")
        document.due_date = TODAY - timedelta(days=1)

        assert document.pending_amount == Decimal("680.00")
        assert psm.resolve_status(document, TODAY) == PaymentStatus.OVERDUE.value
        assert document.payment_status == PaymentStatus.PARTIAL.value

    def test_not_overdue_on_due_date(self):
        document = paid_document(paid="500")
        document.due_date = TODAY

        assert psm.resolve_status(document, TODAY) == PaymentStatus.PARTIAL.value

    def test_paying_off_clears_overdue(self):
        document = paid_document(paid="500")
        document.due_date = TODAY - timedelta(days=5)

        psm.add_payment(document, Decimal("680"), "cash", "tester", payment_date=TODAY)

        assert psm.resolve_status(document, TODAY) == PaymentStatus.PAID.value

    def test_set_due_date(self):
        document = paid_document(paid="100")

        due = psm.set_due_date(document, 7, "tester")

        assert due == TODAY + timedelta(days=7)
        assert document.credit_days == 7

    def test_set_due_date_on_paid_rejected(self):
        with pytest.raises(ValidationError):
            psm.set_due_date(paid_document(paid="1180"), 7)


@pytest.mark.unit
class TestCancel:

    def test_reversal_entry(self):
        document = paid_document(paid="500")

        entry = psm.cancel(document, "customer returned", "tester")

        assert entry.amount == Decimal("-500.00")
        assert document.paid_amount == Decimal("0")
        assert document.pending_amount == Decimal("0")
        assert document.payment_status == PaymentStatus.CANCELLED.value
        assert sum(e.amount for e in document.payment_history) == Decimal("0.00")

    def test_unpaid_cancel_writes_no_entry(self):
        document = paid_document()

        assert psm.cancel(document, None, "tester") is None
        assert document.payment_history == []

    def test_fully_paid_requires_refund(self):
        document = paid_document(paid="1180")

        with pytest.raises(ValidationError) as exc_info:
            psm.cancel(document, "changed mind", "tester")

        assert exc_info.value.error_code == psm.REFUND_REQUIRED
        assert document.payment_status == PaymentStatus.PAID.value

    def test_cancel_twice(self):
        document = paid_document()
        psm.cancel(document, None, "tester")

        with pytest.raises(ValidationError) as exc_info:
            psm.cancel(document, None, "tester")
        assert exc_info.value.error_code == "ALREADY_CANCELLED"


@pytest.mark.unit
class TestTotalChange:

    def test_new_total_below_paid_rejected(self):
        document = paid_document(paid="1000")
        document.final_total = Decimal("900")

        with pytest.raises(ValidationError):
            psm.recompute_after_total_change(document)

    def test_new_total_recomputes_pending(self):
        document = paid_document(paid="500")
        document.final_total = Decimal("500")

        psm.recompute_after_total_change(document)

        assert document.pending_amount == Decimal("0")
        assert document.payment_status == PaymentStatus.PAID.value
