"""
EMI Calendar

Builds the month view of a customer's EMIs: one entry per day of the month,
with the due installments of every active loan classified against that loan's
payment history.

The month is 0-based (0 = January) at this boundary, matching the calendar
widget that requests it. ``today`` is always passed in, so two calls with the
same arguments produce identical output.
"""

from decimal import Decimal
from datetime import date, datetime
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Union
import logging

from .exceptions import CalendarInputError
from .models import Loan, to_calendar_date
from .matching import EMIStatus, classify, merge_statuses
from .schedule import generate_installments, month_window


logger = logging.getLogger(__name__)


@dataclass
class LoanDayDetail:
    """One loan's installment on a calendar day"""
    loan_number: str
    status: EMIStatus
    amount: Decimal
    emi_amount: Decimal

    def to_dict(self) -> Dict[str, Any]:
        return {
            'loanNumber': self.loan_number,
            'status': self.status.value,
            'amount': str(self.amount),
            'emiAmount': str(self.emi_amount)
        }


@dataclass
class CalendarDay:
    """A single day of the month view"""
    date: date
    is_emi_due: bool = False
    status: Optional[EMIStatus] = None
    amount: Optional[Decimal] = None
    due_amount: Optional[Decimal] = None
    loan_numbers: List[str] = field(default_factory=list)
    loan_details: List[LoanDayDetail] = field(default_factory=list)
    is_weekend: bool = False
    is_today: bool = False
    is_past: bool = False

    def to_dict(self) -> Dict[str, Any]:
        result = {
            'date': self.date.isoformat(),
            'isEmiDue': self.is_emi_due,
            'isWeekend': self.is_weekend,
            'isToday': self.is_today,
            'isPast': self.is_past
        }
        if self.is_emi_due:
            result.update({
                'status': self.status.value,
                'amount': str(self.amount),
                'dueAmount': str(self.due_amount),
                'loanNumbers': list(self.loan_numbers),
                'loanDetails': [detail.to_dict() for detail in self.loan_details]
            })
        return result


def _calendar_loans(loans: Iterable[Union[Loan, Dict[str, Any]]], loan_numbers=None) -> List[Loan]:
    """Active, non-renewed loans that have what a schedule needs"""
    selected = []
    for raw in loans:
        if not isinstance(raw, (Loan, dict)):
            logger.debug("Skipping calendar entry of type %s", type(raw).__name__)
            continue
        loan = Loan.coerce(raw)
        if not loan.is_schedulable:
            continue
        if loan_numbers is not None and loan.loan_number not in loan_numbers:
            continue
        if loan.emi_start_date is None or loan.loan_type is None or loan.emi_amount is None:
            logger.debug("Skipping loan %s: incomplete EMI terms", loan.loan_number or loan.id)
            continue
        selected.append(loan)
    return selected


def build_month_calendar(
    loans: List[Union[Loan, Dict[str, Any]]],
    year: int,
    month: int,
    today: Union[date, datetime],
    loan_numbers: Optional[Iterable[str]] = None
) -> List[CalendarDay]:
    """
    Build the EMI calendar for one month.

    Due dates stop at the loan's last installment: a 30-day Daily loan
    starting on 1 January shows 30 due days in January, not 31. Each day's
    due amount is the installment that date settles, so the final day of a
    custom-EMI loan carries the custom last amount.

    Args:
        loans: A customer's loans (Loan objects or stored documents)
        year: Calendar year
        month: Month, 0-11
        today: The caller's current day
        loan_numbers: Restrict the view to these loans (default: all); a single
            loan number may be passed as a plain string

    Returns:
        One CalendarDay per day of the month in ascending order

    Raises:
        CalendarInputError: ``loans`` is not a list
        ValueError: ``month`` is outside 0-11
    """
    if not isinstance(loans, (list, tuple)):
        raise CalendarInputError(f"loans must be a list, got {type(loans).__name__}")
    if not isinstance(month, int) or not 0 <= month <= 11:
        raise ValueError(f"month must be between 0 and 11, got {month!r}")

    today = to_calendar_date(today)
    first_day, last_day = month_window(year, month + 1)
    if isinstance(loan_numbers, str):
        loan_numbers = [loan_numbers]
    wanted = set(loan_numbers) if loan_numbers is not None else None

    details_by_day: Dict[date, List[LoanDayDetail]] = {}
    for loan in _calendar_loans(loans, wanted):
        limit = loan.period_count or None
        for position, due in generate_installments(loan, first_day, last_day, limit=limit):
            outcome = classify(due, loan.emi_history, today)
            details_by_day.setdefault(due, []).append(LoanDayDetail(
                loan_number=loan.loan_number,
                status=outcome.status,
                amount=outcome.amount,
                emi_amount=loan.expected_emi_amount(position)
            ))

    days = []
    for day_number in range(1, last_day.day + 1):
        current = date(year, month + 1, day_number)
        entry = CalendarDay(
            date=current,
            is_weekend=current.weekday() >= 5,
            is_today=current == today,
            is_past=current < today
        )
        details = details_by_day.get(current)
        if details:
            entry.is_emi_due = True
            entry.status = merge_statuses(detail.status for detail in details)
            entry.amount = sum((detail.amount for detail in details), Decimal('0'))
            entry.due_amount = sum((detail.emi_amount for detail in details), Decimal('0'))
            entry.loan_numbers = [detail.loan_number for detail in details]
            entry.loan_details = details
        days.append(entry)

    return days
