"""
Loan Amount Calculator

Pure helpers for the money side of a loan: the total repayable amount for a
set of loan terms and the period wording used on forms and reports.
"""

from decimal import Decimal
from typing import Any, Optional, Union

from .models import EMIType, LoanType, parse_amount, parse_count, coerce_enum


PERIOD_LABELS = {
    LoanType.DAILY: "days",
    LoanType.WEEKLY: "weeks",
    LoanType.MONTHLY: "months",
}

ZERO = Decimal('0')


def compute_total_loan_amount(
    loan_type: Union[LoanType, str, None],
    emi_type: Union[EMIType, str, None],
    emi_amount: Any,
    period_count: Any,
    custom_last_amount: Any = None
) -> Decimal:
    """
    Total amount repayable over the life of a loan.

    Fixed EMIs repay ``emi_amount * period_count``. A custom EMI on a weekly or
    monthly loan replaces the last installment with ``custom_last_amount``.
    Daily loans are always fixed.

    Incomplete terms (missing or non-numeric inputs, ``period_count <= 0``)
    give 0: a half-filled form is not computable yet, which is not an error.

    Args:
        loan_type: Daily, Weekly or Monthly
        emi_type: fixed or custom
        emi_amount: Regular installment
        period_count: Number of installments
        custom_last_amount: Final installment for custom EMIs

    Returns:
        Decimal total, 0 when not computable
    """
    loan_type = coerce_enum(LoanType, loan_type)
    emi_type = coerce_enum(EMIType, emi_type) or EMIType.FIXED
    emi = parse_amount(emi_amount)
    periods = parse_count(period_count)

    if emi is None or periods is None or periods <= 0:
        return ZERO

    if emi_type == EMIType.CUSTOM and loan_type in (LoanType.WEEKLY, LoanType.MONTHLY):
        last = parse_amount(custom_last_amount)
        if last is None:
            return ZERO
        return emi * (periods - 1) + last

    return emi * periods


def period_label(loan_type: Union[LoanType, str, None]) -> str:
    """Plural period noun for a loan type: days, weeks or months"""
    resolved = coerce_enum(LoanType, loan_type)
    if resolved is None:
        raise ValueError(f"Unknown loan type: {loan_type!r}")
    return PERIOD_LABELS[resolved]


def emi_breakdown(loan_type, emi_type, emi_amount, period_count, custom_last_amount=None) -> dict:
    """Split a loan into its regular and (optional) differing last installment"""
    loan_type = coerce_enum(LoanType, loan_type)
    emi_type = coerce_enum(EMIType, emi_type) or EMIType.FIXED
    periods = parse_count(period_count) or 0
    emi = parse_amount(emi_amount) or ZERO
    last: Optional[Decimal] = parse_amount(custom_last_amount)

    if emi_type == EMIType.CUSTOM and loan_type != LoanType.DAILY and last is not None and periods > 0:
        return {
            "regular_periods": periods - 1,
            "regular_emi_amount": emi,
            "last_period": 1,
            "last_emi_amount": last,
        }
    return {
        "regular_periods": periods,
        "regular_emi_amount": emi,
        "last_period": 0,
        "last_emi_amount": ZERO,
    }
