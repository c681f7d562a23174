"""
Collection Reporting

Daily collection sheet of the recovery team: what was collected in a period,
split by collector and by office, and which installments falling due on a
given day are still unpaid.
"""

from decimal import Decimal
from datetime import date
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .models import Loan, to_calendar_date
from .matching import EMIStatus, classify, effective_payments
from .schedule import is_due_on


UNASSIGNED_OFFICE = "Unassigned"


@dataclass
class PendingEMI:
    """An installment due on the report day without a payment"""
    loan_id: str
    loan_number: str
    customer_id: str
    customer_name: str
    customer_number: str
    emi_amount: Decimal
    status: EMIStatus

    def to_dict(self) -> Dict[str, Any]:
        return {
            'loanId': self.loan_id,
            'loanNumber': self.loan_number,
            'customerId': self.customer_id,
            'customerName': self.customer_name,
            'customerNumber': self.customer_number,
            'emiAmount': str(self.emi_amount),
            'status': self.status.value
        }


@dataclass
class CollectionReport:
    start_date: date
    end_date: date
    total_collected: Decimal = Decimal('0')
    payment_count: int = 0
    by_collector: Dict[str, Decimal] = field(default_factory=dict)
    by_office: Dict[str, Decimal] = field(default_factory=dict)
    pending: List[PendingEMI] = field(default_factory=list)

    @property
    def pending_amount(self) -> Decimal:
        return sum((item.emi_amount for item in self.pending), Decimal('0'))

    def to_dict(self) -> Dict[str, Any]:
        return {
            'startDate': self.start_date.isoformat(),
            'endDate': self.end_date.isoformat(),
            'totalCollected': str(self.total_collected),
            'paymentCount': self.payment_count,
            'byCollector': {key: str(value) for key, value in self.by_collector.items()},
            'byOffice': {key: str(value) for key, value in self.by_office.items()},
            'pending': [item.to_dict() for item in self.pending],
            'pendingAmount': str(self.pending_amount)
        }


def build_collection_report(
    loans: List[Loan],
    start_date: date,
    end_date: Optional[date] = None,
    today: Optional[date] = None,
    customer_offices: Optional[Dict[str, str]] = None
) -> CollectionReport:
    """
    Summarise collections between ``start_date`` and ``end_date`` (inclusive).

    Payments without an office of their own are credited to the office of the
    loan's customer when ``customer_offices`` knows it. The pending list holds
    the installments of active loans due on ``end_date`` that have no payment
    that day, classified against ``today`` (defaults to ``end_date``).
    """
    start = to_calendar_date(start_date)
    end = to_calendar_date(end_date) if end_date is not None else start
    if start is None or end is None:
        raise ValueError("Collection report needs valid dates")
    if end < start:
        raise ValueError("End date must not be before start date")
    today = to_calendar_date(today) if today is not None else end
    customer_offices = customer_offices or {}

    report = CollectionReport(start_date=start, end_date=end)
    for raw in loans:
        loan = Loan.coerce(raw)
        for payment in effective_payments(loan.emi_history):
            day = payment.day
            if day is None or not start <= day <= end:
                continue
            report.total_collected += payment.amount
            report.payment_count += 1
            report.by_collector[payment.collected_by] = (
                report.by_collector.get(payment.collected_by, Decimal('0')) + payment.amount
            )
            office = payment.office_category or customer_offices.get(loan.customer_id) or UNASSIGNED_OFFICE
            report.by_office[office] = report.by_office.get(office, Decimal('0')) + payment.amount

        if loan.is_schedulable and loan.emi_amount is not None and is_due_on(loan, end):
            outcome = classify(end, loan.emi_history, today)
            if outcome.status in (EMIStatus.DUE, EMIStatus.MISSED):
                report.pending.append(PendingEMI(
                    loan_id=loan.id,
                    loan_number=loan.loan_number,
                    customer_id=loan.customer_id,
                    customer_name=loan.customer_name,
                    customer_number=loan.customer_number,
                    emi_amount=loan.expected_emi_amount(loan.emi_paid_count + 1),
                    status=outcome.status
                ))

    report.pending.sort(key=lambda item: (item.customer_number, item.loan_number))
    return report
