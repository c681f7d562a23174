"""
Test suite for loans module

Tests loan origination, loan numbering, EMI collection, advance payments,
corrections, renewal, edits and deletion. All money math must be exact.
"""

import pytest
from decimal import Decimal
from datetime import date

from microfinance.storage import InMemoryStorage
from microfinance.audit import AuditTrail, AuditEventType
from microfinance.config import get_config
from microfinance.customers import CustomerManager
from microfinance.exceptions import DuplicatePaymentError, LoanLimitExceeded, NotFoundError
from microfinance.loans import LoanManager, loan_number_sequence, validate_loan_terms
from microfinance.matching import effective_payments
from microfinance.models import Loan, LoanStatus, LoanType, EMIType, PaymentStatus


class LoanTestCase:
    """Shared fixtures: one customer and an empty loan book"""

    def setup_method(self):
        self.storage = InMemoryStorage()
        self.audit_trail = AuditTrail(self.storage)
        self.customer_manager = CustomerManager(self.storage, self.audit_trail)
        self.loan_manager = LoanManager(self.storage, self.audit_trail, self.customer_manager)
        self.customer = self.customer_manager.create_customer(
            name="Lakshmi Devi",
            customer_number="C001",
            phone=["9876543210"],
            business_name="Devi Flowers",
            area="Market Road",
            address="12 Market Road"
        )

    def daily_loan(self, days=10, emi="500", start="2024-03-01", **kwargs):
        return self.loan_manager.create_loan(
            customer_id=self.customer.id,
            amount=Decimal(emi) * days,
            emi_amount=emi,
            loan_type="Daily",
            loan_days=days,
            emi_start_date=start,
            date_applied="2024-02-28",
            **kwargs
        )


class TestLoanNumbers:
    """Test loan number helpers"""

    def test_sequence(self):
        assert loan_number_sequence("LN12") == 12
        assert loan_number_sequence("X1") == 0
        assert loan_number_sequence("") == 0


class TestLoanCreation(LoanTestCase):
    """Test loan origination"""

    def test_create_daily_loan(self):
        loan = self.daily_loan()

        assert loan.loan_number == "LN1"
        assert loan.loan_type == LoanType.DAILY
        assert loan.period_count == 10
        assert loan.total_emi_count == 10
        assert loan.total_loan_amount == Decimal('5000')
        assert loan.remaining_amount == Decimal('5000')
        assert loan.next_emi_date == date(2024, 3, 1)
        assert loan.status == LoanStatus.ACTIVE
        assert loan.customer_number == "C001"
        assert loan.customer_name == "Lakshmi Devi"

        stored = self.loan_manager.get_loan(loan.id)
        assert stored.total_loan_amount == Decimal('5000')
        assert stored.emi_start_date == date(2024, 3, 1)

    def test_create_custom_monthly_loan(self):
        loan = self.loan_manager.create_loan(
            customer_id=self.customer.id,
            amount="10000",
            emi_amount="1000",
            loan_type="Monthly",
            loan_days=12,
            emi_start_date="2024-01-31",
            date_applied="2024-01-01",
            emi_type="custom",
            custom_emi_amount="400"
        )
        assert loan.emi_type == EMIType.CUSTOM
        assert loan.total_loan_amount == Decimal('11400')
        assert loan.expected_emi_amount(12) == Decimal('400')
        assert loan.expected_emi_amount(11) == Decimal('1000')

    def test_creation_is_audited(self):
        loan = self.daily_loan()
        events = self.audit_trail.get_events_for_entity("loan", loan.id)
        assert [e.event_type for e in events] == [AuditEventType.LOAN_CREATED]
        assert events[0].metadata["loan_number"] == "LN1"
        assert events[0].metadata["total_loan_amount"] == "5000"

    def test_numbers_increase_per_customer(self):
        assert self.daily_loan().loan_number == "LN1"
        assert self.daily_loan().loan_number == "LN2"

    def test_lowest_free_number_is_reused(self):
        first = self.daily_loan()
        self.daily_loan()
        self.loan_manager.delete_loan(first.id)
        assert self.daily_loan().loan_number == "LN1"

    def test_loan_limit(self, monkeypatch):
        monkeypatch.setattr(get_config(), "max_loans_per_customer", 2)
        self.daily_loan()
        self.daily_loan()
        with pytest.raises(LoanLimitExceeded):
            self.daily_loan()

    def test_unknown_customer(self):
        with pytest.raises(NotFoundError):
            self.loan_manager.create_loan("missing", 1000, 100, "Daily", 10, "2024-03-01", "2024-03-01")

    @pytest.mark.parametrize("overrides,message", [
        ({"emi_amount": "0"}, "EMI amount"),
        ({"amount": "-5"}, "Loan amount"),
        ({"loan_days": 0}, "Loan days"),
        ({"loan_type": "Yearly"}, "Unknown loan type"),
        ({"emi_type": "balloon"}, "Unknown EMI type"),
        ({"emi_type": "custom"}, "Daily loans only support fixed EMI"),
        ({"emi_start_date": "2024-01-01"}, "cannot be before loan date"),
        ({"emi_start_date": None}, "EMI start date is required"),
    ])
    def test_invalid_terms(self, overrides, message):
        terms = dict(
            customer_id=self.customer.id, amount="5000", emi_amount="500", loan_type="Daily",
            loan_days=10, emi_start_date="2024-03-01", date_applied="2024-02-28"
        )
        terms.update(overrides)
        with pytest.raises(ValueError, match=message):
            self.loan_manager.create_loan(**terms)

    def test_custom_loan_needs_last_amount(self):
        with pytest.raises(ValueError, match="Custom EMI amount is required"):
            self.loan_manager.create_loan(
                self.customer.id, 5000, 1000, "Weekly", 5, "2024-03-01", "2024-03-01", emi_type="custom"
            )

    def test_failed_creation_stores_nothing(self):
        with pytest.raises(ValueError):
            self.daily_loan(emi="0")
        assert self.loan_manager.get_customer_loans(self.customer.id) == []

    def test_validate_loan_terms_lists_every_error(self):
        errors = validate_loan_terms(Loan())
        assert len(errors) >= 4


class TestRecordPayment(LoanTestCase):
    """Test single EMI collection"""

    def test_full_payment_is_paid(self):
        loan = self.daily_loan()
        payment = self.loan_manager.record_payment(loan.id, "500", payment_date="2024-03-01", collected_by="op1")

        assert payment.status == PaymentStatus.PAID
        stored = self.loan_manager.get_loan(loan.id)
        assert stored.emi_paid_count == 1
        assert stored.total_paid_amount == Decimal('500')
        assert stored.remaining_amount == Decimal('4500')
        assert stored.last_emi_date == date(2024, 3, 1)
        assert stored.next_emi_date == date(2024, 3, 2)
        assert stored.emi_history[0].collected_by == "op1"

    def test_short_payment_is_partial_but_counts(self):
        loan = self.daily_loan()
        payment = self.loan_manager.record_payment(loan.id, 200, payment_date="2024-03-01")

        assert payment.status == PaymentStatus.PARTIAL
        stored = self.loan_manager.get_loan(loan.id)
        assert stored.emi_paid_count == 1
        assert stored.remaining_amount == Decimal('4800')

    def test_same_day_payment_is_rejected(self):
        loan = self.daily_loan()
        self.loan_manager.record_payment(loan.id, 500, payment_date="2024-03-01")
        with pytest.raises(DuplicatePaymentError):
            self.loan_manager.record_payment(loan.id, 500, payment_date="2024-03-01T18:30:00")

        stored = self.loan_manager.get_loan(loan.id)
        assert stored.emi_paid_count == 1
        assert len(stored.emi_history) == 1

    @pytest.mark.parametrize("amount", [0, -10, "abc", None])
    def test_amount_must_be_positive(self, amount):
        loan = self.daily_loan()
        with pytest.raises(ValueError, match="greater than 0"):
            self.loan_manager.record_payment(loan.id, amount, payment_date="2024-03-01")

    def test_unknown_payment_method(self):
        loan = self.daily_loan()
        with pytest.raises(ValueError, match="payment method"):
            self.loan_manager.record_payment(loan.id, 500, payment_date="2024-03-01", payment_method="Barter")

    def test_unknown_loan(self):
        with pytest.raises(NotFoundError):
            self.loan_manager.record_payment("missing", 500, payment_date="2024-03-01")

    def test_last_payment_completes_loan(self):
        loan = self.daily_loan(days=2)
        self.loan_manager.record_payment(loan.id, 500, payment_date="2024-03-01")
        self.loan_manager.record_payment(loan.id, 500, payment_date="2024-03-02")

        stored = self.loan_manager.get_loan(loan.id)
        assert stored.status == LoanStatus.COMPLETED
        assert stored.next_emi_date is None
        assert stored.remaining_amount == Decimal('0')

        events = [e.event_type for e in self.audit_trail.get_events_for_entity("loan", loan.id)]
        assert AuditEventType.LOAN_COMPLETED in events

        with pytest.raises(ValueError, match="already completed"):
            self.loan_manager.record_payment(loan.id, 500, payment_date="2024-03-03")

    def test_custom_last_installment_is_paid_in_full(self):
        loan = self.loan_manager.create_loan(
            self.customer.id, 2500, 1000, "Weekly", 3, "2024-03-04", "2024-03-01",
            emi_type="custom", custom_emi_amount=500
        )
        self.loan_manager.record_payment(loan.id, 1000, payment_date="2024-03-04")
        self.loan_manager.record_payment(loan.id, 1000, payment_date="2024-03-11")
        last = self.loan_manager.record_payment(loan.id, 500, payment_date="2024-03-18")

        assert last.status == PaymentStatus.PAID
        assert self.loan_manager.get_loan(loan.id).status == LoanStatus.COMPLETED

    def test_ledger_stays_consistent(self):
        loan = self.daily_loan()
        for day in range(1, 5):
            self.loan_manager.record_payment(loan.id, 500, payment_date=f"2024-03-0{day}")
        assert self.loan_manager.reconcile(loan.id).is_consistent


class TestAdvancePayment(LoanTestCase):
    """Test collection of future installments"""

    def test_one_entry_per_due_date(self):
        loan = self.daily_loan()
        payments = self.loan_manager.record_advance_payment(loan.id, "2024-03-03", "2024-03-05", 500)

        assert [p.day for p in payments] == [date(2024, 3, 3), date(2024, 3, 4), date(2024, 3, 5)]
        assert all(p.status == PaymentStatus.ADVANCE for p in payments)
        assert all(p.payment_type == "advance" for p in payments)

        stored = self.loan_manager.get_loan(loan.id)
        assert stored.emi_paid_count == 3
        assert stored.total_paid_amount == Decimal('1500')

    def test_weekly_range_only_takes_due_dates(self):
        loan = self.loan_manager.create_loan(self.customer.id, 5000, 1000, "Weekly", 5, "2024-03-04", "2024-03-01")
        payments = self.loan_manager.record_advance_payment(loan.id, "2024-03-01", "2024-03-20", 1000)
        assert [p.day for p in payments] == [date(2024, 3, 4), date(2024, 3, 11), date(2024, 3, 18)]

    def test_capped_at_remaining_installments(self):
        loan = self.daily_loan(days=3)
        self.loan_manager.record_payment(loan.id, 500, payment_date="2024-03-01")
        payments = self.loan_manager.record_advance_payment(loan.id, "2024-03-02", "2024-03-31", 500)

        assert len(payments) == 2
        assert self.loan_manager.get_loan(loan.id).status == LoanStatus.COMPLETED

    def test_range_with_existing_payment_is_rejected(self):
        loan = self.daily_loan()
        self.loan_manager.record_payment(loan.id, 500, payment_date="2024-03-04")
        with pytest.raises(DuplicatePaymentError):
            self.loan_manager.record_advance_payment(loan.id, "2024-03-03", "2024-03-05", 500)
        assert self.loan_manager.get_loan(loan.id).emi_paid_count == 1

    def test_reversed_range(self):
        loan = self.daily_loan()
        with pytest.raises(ValueError, match="Start date must be before end date"):
            self.loan_manager.record_advance_payment(loan.id, "2024-03-05", "2024-03-03", 500)

    def test_range_without_installments(self):
        loan = self.daily_loan()
        with pytest.raises(ValueError, match="No installments"):
            self.loan_manager.record_advance_payment(loan.id, "2024-02-01", "2024-02-10", 500)


class TestCorrectPayment(LoanTestCase):
    """Test append-only corrections"""

    def test_correction_replaces_amount(self):
        loan = self.daily_loan()
        wrong = self.loan_manager.record_payment(loan.id, 50, payment_date="2024-03-01")
        correction = self.loan_manager.correct_payment(loan.id, wrong.id, 500, corrected_by="admin", reason="typo")

        assert correction.corrects_payment_id == wrong.id
        assert correction.status == PaymentStatus.PAID
        assert correction.day == date(2024, 3, 1)

        stored = self.loan_manager.get_loan(loan.id)
        assert len(stored.emi_history) == 2
        assert [p.id for p in effective_payments(stored.emi_history)] == [correction.id]
        assert stored.emi_paid_count == 1
        assert stored.total_paid_amount == Decimal('500')
        assert self.loan_manager.reconcile(loan.id).is_consistent

    def test_explicit_status(self):
        loan = self.daily_loan()
        wrong = self.loan_manager.record_payment(loan.id, 500, payment_date="2024-03-01")
        correction = self.loan_manager.correct_payment(loan.id, wrong.id, 300, status="Partial")
        assert correction.status == PaymentStatus.PARTIAL
        assert self.loan_manager.get_loan(loan.id).total_paid_amount == Decimal('300')

    def test_cannot_correct_twice(self):
        loan = self.daily_loan()
        wrong = self.loan_manager.record_payment(loan.id, 50, payment_date="2024-03-01")
        self.loan_manager.correct_payment(loan.id, wrong.id, 500)
        with pytest.raises(ValueError, match="already corrected"):
            self.loan_manager.correct_payment(loan.id, wrong.id, 400)

    def test_correction_is_audited(self):
        loan = self.daily_loan()
        wrong = self.loan_manager.record_payment(loan.id, 50, payment_date="2024-03-01")
        self.loan_manager.correct_payment(loan.id, wrong.id, 500, corrected_by="admin")
        event = self.audit_trail.get_events_for_entity("loan", loan.id)[-1]
        assert event.event_type == AuditEventType.PAYMENT_CORRECTED
        assert event.metadata["old_amount"] == "50"
        assert event.user_id == "admin"


class TestRenewal(LoanTestCase):
    """Test loan renewal"""

    def test_renew(self):
        loan = self.daily_loan()
        self.loan_manager.record_payment(loan.id, 500, payment_date="2024-03-01")
        result = self.loan_manager.renew_loan(
            loan.id, amount=10000, emi_amount=1000, loan_type="Weekly", loan_days=10,
            renewal_date="2024-03-15"
        )
        original, successor = result["original_loan"], result["new_loan"]

        assert original.is_renewed
        assert original.status == LoanStatus.RENEWED
        assert original.renewed_loan_number == "LN2"
        assert original.renewed_date == date(2024, 3, 15)
        assert successor.loan_number == "LN2"
        assert successor.original_loan_number == "LN1"
        assert successor.emi_start_date == date(2024, 3, 15)

        active = self.loan_manager.get_active_loans(self.customer.id)
        assert [l.loan_number for l in active] == ["LN2"]

    def test_renewed_loan_cannot_be_renewed_or_paid(self):
        loan = self.daily_loan()
        self.loan_manager.renew_loan(loan.id, 1000, 100, "Daily", 10, renewal_date="2024-03-15")
        with pytest.raises(ValueError, match="already been renewed"):
            self.loan_manager.renew_loan(loan.id, 1000, 100, "Daily", 10, renewal_date="2024-03-16")
        with pytest.raises(ValueError, match="renewed loan"):
            self.loan_manager.record_payment(loan.id, 500, payment_date="2024-03-16")

    def test_invalid_successor_leaves_original_untouched(self):
        loan = self.daily_loan()
        with pytest.raises(ValueError):
            self.loan_manager.renew_loan(loan.id, 1000, 0, "Daily", 10, renewal_date="2024-03-15")
        assert not self.loan_manager.get_loan(loan.id).is_renewed
        assert len(self.loan_manager.get_customer_loans(self.customer.id)) == 1


class TestUpdateAndDelete(LoanTestCase):
    """Test loan edits and deletion"""

    def test_update_terms_recomputes_progress(self):
        loan = self.daily_loan()
        self.loan_manager.record_payment(loan.id, 500, payment_date="2024-03-01")
        updated = self.loan_manager.update_loan(loan.id, {"emi_amount": "600", "loan_days": 5})

        assert updated.total_emi_count == 5
        assert updated.total_loan_amount == Decimal('3000')
        assert updated.remaining_amount == Decimal('2500')
        assert updated.emi_paid_count == 1

    def test_shrinking_term_can_complete_loan(self):
        loan = self.daily_loan()
        self.loan_manager.record_payment(loan.id, 500, payment_date="2024-03-01")
        updated = self.loan_manager.update_loan(loan.id, {"loan_days": 1})
        assert updated.status == LoanStatus.COMPLETED

    def test_unknown_field(self):
        loan = self.daily_loan()
        with pytest.raises(ValueError, match="Cannot update loan fields"):
            self.loan_manager.update_loan(loan.id, {"emi_paid_count": 5})

    def test_invalid_edit_is_rejected(self):
        loan = self.daily_loan()
        with pytest.raises(ValueError):
            self.loan_manager.update_loan(loan.id, {"emi_amount": "0"})
        assert self.loan_manager.get_loan(loan.id).emi_amount == Decimal('500')

    def test_delete_loan_without_payments(self):
        loan = self.daily_loan()
        self.loan_manager.delete_loan(loan.id, deleted_by="admin", reason="duplicate entry")
        assert self.loan_manager.get_loan(loan.id) is None

        event = self.audit_trail.get_events_for_entity("loan", loan.id)[-1]
        assert event.event_type == AuditEventType.LOAN_DELETED
        assert event.metadata["reason"] == "duplicate entry"

    def test_delete_loan_with_payments_is_refused(self):
        loan = self.daily_loan()
        self.loan_manager.record_payment(loan.id, 500, payment_date="2024-03-01")
        with pytest.raises(ValueError, match="cannot be deleted"):
            self.loan_manager.delete_loan(loan.id)


class TestLoanQueries(LoanTestCase):
    """Test loan lookups"""

    def test_customer_loans_sorted_by_number(self):
        for _ in range(11):
            self.daily_loan()
        numbers = [l.loan_number for l in self.loan_manager.get_customer_loans(self.customer.id)]
        assert numbers[:3] == ["LN1", "LN2", "LN3"]
        assert numbers[-2:] == ["LN10", "LN11"]

    def test_get_loan_by_number(self):
        loan = self.daily_loan()
        assert self.loan_manager.get_loan_by_number(self.customer.id, "LN1").id == loan.id
        assert self.loan_manager.get_loan_by_number(self.customer.id, "LN7") is None

    def test_overdue_loans(self):
        late = self.daily_loan()
        current = self.daily_loan(start="2024-03-10")
        self.loan_manager.record_payment(late.id, 500, payment_date="2024-03-01")

        overdue = self.loan_manager.get_overdue_loans(date(2024, 3, 5))
        assert [l.id for l in overdue] == [late.id]
        assert current.id not in [l.id for l in overdue]
