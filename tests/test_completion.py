"""
Test suite for completion tracking

Tests repayment progress, the ledger reconciliation and the punctuality
rating.
"""

import pytest
from decimal import Decimal
from datetime import date

from microfinance.models import Loan, PaymentRecord, PaymentStatus
from microfinance.completion import (
    BehaviorRating, compute_completion, completion_percentage, payment_behavior,
    rate_punctuality, reconcile
)


def daily_loan(**kwargs):
    defaults = dict(
        loan_number="LN1",
        amount=Decimal('5000'),
        emi_amount=Decimal('500'),
        loan_type="Daily",
        loan_days=10,
        emi_start_date=date(2024, 3, 1),
    )
    defaults.update(kwargs)
    return Loan(**defaults)


class TestCompletionPercentage:
    """Test percentage arithmetic"""

    def test_plain_ratio(self):
        assert completion_percentage(3, 10) == pytest.approx(30.0)

    def test_clamped_to_100(self):
        assert completion_percentage(12, 10) == 100.0

    def test_zero_total(self):
        assert completion_percentage(5, 0) == 0.0

    def test_never_negative(self):
        assert completion_percentage(-1, 10) == 0.0


class TestComputeCompletion:
    """Test progress snapshot of a loan"""

    def test_progress_from_stored_counters(self):
        loan = daily_loan(emi_paid_count=4, total_paid_amount=Decimal('2000'))
        completion = compute_completion(loan)

        assert completion.paid_count == 4
        assert completion.total_count == 10
        assert completion.paid_amount == Decimal('2000')
        assert completion.total_loan_amount == Decimal('5000')
        assert completion.remaining_amount == Decimal('3000')
        assert completion.completion_percentage == pytest.approx(40.0)
        assert completion.remaining_emis == 6
        assert not completion.is_completed

    def test_overpaid_loan_clamps(self):
        loan = daily_loan(emi_paid_count=12, total_paid_amount=Decimal('6000'))
        completion = compute_completion(loan)
        assert completion.completion_percentage == 100.0
        assert completion.remaining_amount == Decimal('0')
        assert completion.remaining_emis == 0
        assert completion.is_completed

    def test_total_emi_count_takes_precedence_over_loan_days(self):
        loan = daily_loan(loan_days=10, total_emi_count=20, emi_paid_count=5)
        assert compute_completion(loan).total_count == 20

    def test_loan_without_periods(self):
        completion = compute_completion(daily_loan(loan_days=None))
        assert completion.total_count == 0
        assert completion.completion_percentage == 0.0

    def test_accepts_stored_document(self):
        completion = compute_completion({
            "loanType": "Weekly", "emiAmount": "1000", "totalEmiCount": 4,
            "emiPaidCount": 1, "totalPaidAmount": "1000"
        })
        assert completion.remaining_amount == Decimal('3000')
        assert completion.to_dict()["completionPercentage"] == pytest.approx(25.0)


class TestReconcile:
    """Test stored counters against the EMI history"""

    def test_consistent_loan(self):
        loan = daily_loan(
            emi_paid_count=2,
            total_paid_amount=Decimal('1000'),
            emi_history=[
                PaymentRecord(payment_date=date(2024, 3, 1), amount=Decimal('500')),
                PaymentRecord(payment_date=date(2024, 3, 2), amount=Decimal('500')),
            ]
        )
        report = reconcile(loan)
        assert report.is_consistent
        assert report.ledger_paid_count == 2

    def test_counter_drift_is_reported(self):
        loan = daily_loan(
            emi_paid_count=3,
            total_paid_amount=Decimal('1500'),
            emi_history=[PaymentRecord(payment_date=date(2024, 3, 1), amount=Decimal('500'))]
        )
        report = reconcile(loan)
        assert not report.is_consistent
        assert report.stored_paid_count == 3
        assert report.ledger_paid_amount == Decimal('500')

    def test_duplicate_days_are_reported(self):
        loan = daily_loan(
            emi_paid_count=2,
            total_paid_amount=Decimal('1000'),
            emi_history=[
                PaymentRecord(payment_date=date(2024, 3, 1), amount=Decimal('500')),
                PaymentRecord(payment_date="2024-03-01T18:00:00", amount=Decimal('500')),
            ]
        )
        report = reconcile(loan)
        assert report.duplicate_days == ["2024-03-01"]
        assert not report.to_dict()["isConsistent"]

    def test_corrections_replace_originals(self):
        loan = daily_loan(
            emi_paid_count=1,
            total_paid_amount=Decimal('500'),
            emi_history=[
                PaymentRecord(payment_date=date(2024, 3, 1), amount=Decimal('50'), id="p1"),
                PaymentRecord(payment_date=date(2024, 3, 1), amount=Decimal('500'), corrects_payment_id="p1"),
            ]
        )
        assert reconcile(loan).is_consistent


class TestPaymentBehavior:
    """Test punctuality rating"""

    def test_no_payments_is_excellent(self):
        behavior = payment_behavior(daily_loan())
        assert behavior.rating == BehaviorRating.EXCELLENT
        assert behavior.punctuality_score == 100.0
        assert behavior.total_payments == 0

    def test_on_time_and_late_payments(self):
        loan = daily_loan(emi_history=[
            PaymentRecord(payment_date=date(2024, 3, 1), amount=Decimal('500')),
            PaymentRecord(payment_date=date(2024, 3, 2), amount=Decimal('500')),
            PaymentRecord(payment_date=date(2024, 3, 5), amount=Decimal('500')),
            PaymentRecord(payment_date=date(2024, 3, 9), amount=Decimal('500')),
        ])
        behavior = payment_behavior(loan)
        assert behavior.on_time_payments == 2
        assert behavior.late_payments == 2
        assert behavior.punctuality_score == pytest.approx(50.0)
        assert behavior.rating == BehaviorRating.RISKY

    def test_advance_payments_are_on_time(self):
        loan = daily_loan(emi_history=[
            PaymentRecord(payment_date=date(2024, 3, 8), amount=Decimal('500'), status=PaymentStatus.ADVANCE),
        ])
        assert payment_behavior(loan).on_time_payments == 1

    @pytest.mark.parametrize("score,rating", [
        (100, BehaviorRating.EXCELLENT),
        (90, BehaviorRating.EXCELLENT),
        (80, BehaviorRating.GOOD),
        (60, BehaviorRating.AVERAGE),
        (59.9, BehaviorRating.RISKY),
    ])
    def test_rating_thresholds(self, score, rating):
        assert rate_punctuality(score) == rating
