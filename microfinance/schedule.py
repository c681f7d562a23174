"""
EMI Due-Date Schedule

Generates installment due dates for a loan. Daily loans fall due every day
from the EMI start date, weekly loans every seventh day, and monthly loans on
the start date's day-of-month, moved back to the last day of shorter months
(a loan starting on the 31st is due on 30 April and 29 February in leap years).

The n-th installment is always computed from the start date, never by stepping
from the previous installment, so a clamped February date does not drag every
later monthly installment back to the 28th.
"""

import calendar
from datetime import date, timedelta
from typing import Iterator, List, Optional, Tuple, Union

from .models import Loan, LoanType, coerce_enum, to_calendar_date


STEP_DAYS = {
    LoanType.DAILY: 1,
    LoanType.WEEKLY: 7,
}


def add_months(start: date, months: int, day: Optional[int] = None) -> date:
    """Shift ``start`` by whole months keeping ``day`` (default: start's day), clamped"""
    month_index = start.year * 12 + (start.month - 1) + months
    year, month = divmod(month_index, 12)
    month += 1
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, min(day or start.day, last_day))


def installment_date(emi_start_date: date, loan_type: LoanType, index: int) -> date:
    """Due date of the 0-based ``index``-th installment"""
    if loan_type == LoanType.MONTHLY:
        return add_months(emi_start_date, index)
    return emi_start_date + timedelta(days=STEP_DAYS[loan_type] * index)


def _first_index_on_or_after(emi_start_date: date, loan_type: LoanType, day: date) -> int:
    """Smallest installment index whose due date is >= ``day``"""
    if day <= emi_start_date:
        return 0
    if loan_type == LoanType.MONTHLY:
        index = (day.year - emi_start_date.year) * 12 + (day.month - emi_start_date.month)
        if installment_date(emi_start_date, loan_type, index) < day:
            index += 1
        return index
    step = STEP_DAYS[loan_type]
    return -(-(day - emi_start_date).days // step)


def generate_installments(
    loan: Loan,
    window_start: Union[date, str],
    window_end: Union[date, str],
    limit: Optional[int] = None
) -> Iterator[Tuple[int, date]]:
    """
    Lazily yield ``(position, due_date)`` for installments inside ``[window_start, window_end]``.

    ``position`` is the 1-based installment number counted from the EMI start
    date, so a window in the middle of a loan still knows which installment
    each date settles (and ``loan.expected_emi_amount(position)`` gives its
    amount).

    The result depends only on the loan's EMI start date and type and on the
    window, so calling it again with the same inputs yields the same dates.
    A loan without a readable start date or type yields nothing.

    Args:
        loan: Loan (anything with ``emi_start_date`` and ``loan_type``)
        window_start: First day of the window, inclusive
        window_end: Last day of the window, inclusive
        limit: Optional cap on installments counted from the start date
            (the loan's period count when generating its full schedule)

    Yields:
        Installment positions and due dates in ascending order
    """
    start = to_calendar_date(getattr(loan, 'emi_start_date', None))
    loan_type = coerce_enum(LoanType, getattr(loan, 'loan_type', None))
    first_day = to_calendar_date(window_start)
    last_day = to_calendar_date(window_end)
    if start is None or loan_type is None or first_day is None or last_day is None:
        return
    if last_day < first_day:
        return

    index = _first_index_on_or_after(start, loan_type, first_day)
    while limit is None or index < limit:
        due = installment_date(start, loan_type, index)
        if due > last_day:
            break
        yield index + 1, due
        index += 1


def generate_due_dates(
    loan: Loan,
    window_start: Union[date, str],
    window_end: Union[date, str],
    limit: Optional[int] = None
) -> Iterator[date]:
    """Lazily yield the loan's due dates inside the window, ascending (see ``generate_installments``)"""
    for _, due in generate_installments(loan, window_start, window_end, limit):
        yield due


def month_window(year: int, month: int) -> tuple:
    """First and last day of a calendar month (``month`` is 1-12)"""
    return date(year, month, 1), date(year, month, calendar.monthrange(year, month)[1])


def full_schedule(loan: Loan) -> List[date]:
    """Every installment date of the loan, ``period_count`` dates long"""
    start = to_calendar_date(loan.emi_start_date)
    loan_type = coerce_enum(LoanType, loan.loan_type)
    count = loan.period_count
    if start is None or loan_type is None or count <= 0:
        return []
    return [installment_date(start, loan_type, i) for i in range(count)]


def last_scheduled_emi_date(emi_start_date: Optional[date], loan_type, emi_paid_count: int) -> Optional[date]:
    """Due date of the last installment covered by ``emi_paid_count`` payments"""
    loan_type = coerce_enum(LoanType, loan_type)
    if emi_start_date is None or loan_type is None or emi_paid_count <= 0:
        return emi_start_date
    return installment_date(emi_start_date, loan_type, emi_paid_count - 1)


def next_scheduled_emi_date(emi_start_date: Optional[date], loan_type, emi_paid_count: int) -> Optional[date]:
    """Due date of the first installment not yet covered by a payment"""
    loan_type = coerce_enum(LoanType, loan_type)
    if emi_start_date is None or loan_type is None:
        return emi_start_date
    return installment_date(emi_start_date, loan_type, max(emi_paid_count, 0))


def next_due_date(loan: Loan, on_or_after: date) -> Optional[date]:
    """First scheduled installment on or after ``on_or_after``; None once the schedule is exhausted"""
    start = to_calendar_date(loan.emi_start_date)
    loan_type = coerce_enum(LoanType, loan.loan_type)
    if start is None or loan_type is None:
        return None
    index = _first_index_on_or_after(start, loan_type, on_or_after)
    if loan.period_count and index >= loan.period_count:
        return None
    return installment_date(start, loan_type, index)


def is_due_on(loan: Loan, day: date) -> bool:
    """True when ``day`` is one of the loan's scheduled installment dates"""
    for _ in generate_due_dates(loan, day, day, limit=loan.period_count or None):
        return True
    return False


def count_overdue_emis(loan: Loan, today: date) -> int:
    """
    Installments due before ``today`` that the paid counter does not cover.

    Counted from schedule position: with ``k`` installments paid, installments
    ``k, k+1, ...`` that are already past their due date are overdue.
    """
    start = to_calendar_date(loan.emi_start_date)
    loan_type = coerce_enum(LoanType, loan.loan_type)
    total = loan.period_count
    if start is None or loan_type is None or loan.emi_paid_count >= total:
        return 0

    overdue = 0
    for index in range(loan.emi_paid_count, total):
        if installment_date(start, loan_type, index) >= today:
            break
        overdue += 1
    return overdue
