"""
Loan Completion Tracking

Progress of a loan towards full repayment, a reconciliation of the stored
counters against the EMI history, and the punctuality rating shown on a
customer's profile.
"""

from decimal import Decimal
from dataclasses import dataclass, field
from typing import Any, Dict, List, Union
from enum import Enum
import logging

from .models import Loan, PaymentStatus
from .matching import effective_payments
from .schedule import full_schedule


logger = logging.getLogger(__name__)

ZERO = Decimal('0')


@dataclass
class Completion:
    """Snapshot of a loan's repayment progress"""
    paid_count: int
    total_count: int
    paid_amount: Decimal
    remaining_amount: Decimal
    completion_percentage: float
    total_loan_amount: Decimal = ZERO

    @property
    def remaining_emis(self) -> int:
        return max(0, self.total_count - self.paid_count)

    @property
    def is_completed(self) -> bool:
        return self.total_count > 0 and self.paid_count >= self.total_count

    def to_dict(self) -> Dict[str, Any]:
        return {
            'paidCount': self.paid_count,
            'totalCount': self.total_count,
            'paidAmount': str(self.paid_amount),
            'remainingAmount': str(self.remaining_amount),
            'completionPercentage': self.completion_percentage,
            'totalLoanAmount': str(self.total_loan_amount),
            'remainingEmis': self.remaining_emis,
            'isCompleted': self.is_completed
        }


def completion_percentage(paid_count: int, total_count: int) -> float:
    """paid / total as a percentage in [0, 100]; 0 when there is nothing scheduled"""
    if total_count <= 0:
        return 0.0
    return min(100.0, max(0.0, paid_count / total_count * 100))


def compute_completion(loan: Union[Loan, Dict[str, Any]]) -> Completion:
    """
    Repayment progress of a loan.

    The paid count is the loan's stored ``emi_paid_count``, maintained by the
    loan manager as payments are recorded. ``reconcile`` checks it against the
    history.
    """
    loan = Loan.coerce(loan)
    total_count = loan.period_count
    paid_count = loan.emi_paid_count
    total_amount = loan.total_loan_amount
    paid_amount = loan.total_paid_amount

    return Completion(
        paid_count=paid_count,
        total_count=total_count,
        paid_amount=paid_amount,
        remaining_amount=max(ZERO, total_amount - paid_amount),
        completion_percentage=completion_percentage(paid_count, total_count),
        total_loan_amount=total_amount
    )


@dataclass
class LedgerReconciliation:
    """Stored counters compared with what the EMI history adds up to"""
    loan_id: str
    loan_number: str
    stored_paid_count: int
    ledger_paid_count: int
    stored_paid_amount: Decimal
    ledger_paid_amount: Decimal
    duplicate_days: List[str] = field(default_factory=list)

    @property
    def is_consistent(self) -> bool:
        return (
            self.stored_paid_count == self.ledger_paid_count
            and self.stored_paid_amount == self.ledger_paid_amount
            and not self.duplicate_days
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'loanId': self.loan_id,
            'loanNumber': self.loan_number,
            'storedPaidCount': self.stored_paid_count,
            'ledgerPaidCount': self.ledger_paid_count,
            'storedPaidAmount': str(self.stored_paid_amount),
            'ledgerPaidAmount': str(self.ledger_paid_amount),
            'duplicateDays': self.duplicate_days,
            'isConsistent': self.is_consistent
        }


def reconcile(loan: Union[Loan, Dict[str, Any]]) -> LedgerReconciliation:
    """
    Recompute paid count and amount from the EMI history.

    Every effective entry counts as one installment whatever its status
    (Paid, Partial or Advance), the same way payments are counted when they
    are recorded. Days holding more than one effective entry are reported as
    duplicates.
    """
    loan = Loan.coerce(loan)
    payments = effective_payments(loan.emi_history)

    seen = set()
    duplicates = []
    for record in payments:
        day = record.day
        if day is None:
            continue
        if day in seen and day.isoformat() not in duplicates:
            duplicates.append(day.isoformat())
        seen.add(day)

    report = LedgerReconciliation(
        loan_id=loan.id,
        loan_number=loan.loan_number,
        stored_paid_count=loan.emi_paid_count,
        ledger_paid_count=len(payments),
        stored_paid_amount=loan.total_paid_amount,
        ledger_paid_amount=sum((record.amount for record in payments), ZERO),
        duplicate_days=duplicates
    )
    if not report.is_consistent:
        logger.warning(
            "Ledger mismatch on loan %s: stored %s/%s, ledger %s/%s",
            loan.loan_number, report.stored_paid_count, report.stored_paid_amount,
            report.ledger_paid_count, report.ledger_paid_amount
        )
    return report


class BehaviorRating(Enum):
    EXCELLENT = "EXCELLENT"
    GOOD = "GOOD"
    AVERAGE = "AVERAGE"
    RISKY = "RISKY"


@dataclass
class PaymentBehavior:
    punctuality_score: float
    rating: BehaviorRating
    total_payments: int
    on_time_payments: int

    @property
    def late_payments(self) -> int:
        return self.total_payments - self.on_time_payments

    def to_dict(self) -> Dict[str, Any]:
        return {
            'punctualityScore': self.punctuality_score,
            'behaviorRating': self.rating.value,
            'totalPayments': self.total_payments,
            'onTimePayments': self.on_time_payments,
            'latePayments': self.late_payments
        }


def rate_punctuality(score: float) -> BehaviorRating:
    if score >= 90:
        return BehaviorRating.EXCELLENT
    if score >= 75:
        return BehaviorRating.GOOD
    if score >= 60:
        return BehaviorRating.AVERAGE
    return BehaviorRating.RISKY


def payment_behavior(loan: Union[Loan, Dict[str, Any]]) -> PaymentBehavior:
    """
    Punctuality of a loan's repayments.

    Payments are taken in date order and paired with installments in schedule
    order; a payment is on time when it is made on or before its installment's
    due date. Advance payments are always on time. A loan with no payments
    rates EXCELLENT.
    """
    loan = Loan.coerce(loan)
    payments = sorted(
        (record for record in effective_payments(loan.emi_history) if record.day is not None),
        key=lambda record: record.day
    )
    if not payments:
        return PaymentBehavior(100.0, BehaviorRating.EXCELLENT, 0, 0)

    schedule = full_schedule(loan)
    on_time = 0
    for position, record in enumerate(payments):
        if record.status == PaymentStatus.ADVANCE:
            on_time += 1
        elif position < len(schedule) and record.day <= schedule[position]:
            on_time += 1

    score = on_time / len(payments) * 100
    return PaymentBehavior(score, rate_punctuality(score), len(payments), on_time)

