"""
Payment Ledger Matcher

Decides what happened on a single due date of a single loan by looking the
date up in the loan's EMI history. A payment matches a due date when its
calendar day equals the due date; the time of day is ignored.
"""

from decimal import Decimal
from datetime import date
from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Union
from enum import Enum

from .models import PaymentRecord, PaymentStatus, to_calendar_date


class EMIStatus(Enum):
    """Outcome of a due date as shown on the calendar"""
    PAID = "paid"
    PARTIAL = "partial"
    ADVANCE = "advance"
    MISSED = "missed"
    DUE = "due"


# Worst first: when several outcomes land on one day the earliest in this
# tuple wins, so a single missed EMI is never hidden behind a paid one.
STATUS_PRECEDENCE = (
    EMIStatus.MISSED,
    EMIStatus.DUE,
    EMIStatus.PARTIAL,
    EMIStatus.ADVANCE,
    EMIStatus.PAID,
)

_RANK = {status: rank for rank, status in enumerate(STATUS_PRECEDENCE)}

_FROM_PAYMENT = {
    PaymentStatus.PAID: EMIStatus.PAID,
    PaymentStatus.PARTIAL: EMIStatus.PARTIAL,
    PaymentStatus.ADVANCE: EMIStatus.ADVANCE,
}


@dataclass
class Classification:
    """Result of matching one due date against a ledger"""
    status: EMIStatus
    amount: Decimal = Decimal('0')
    payments: List[PaymentRecord] = field(default_factory=list)

    @property
    def is_settled(self) -> bool:
        return bool(self.payments)


def merge_statuses(statuses: Iterable[EMIStatus]) -> Optional[EMIStatus]:
    """Pick the status that wins under ``STATUS_PRECEDENCE``; None for no input"""
    winner = None
    for status in statuses:
        if winner is None or _RANK[status] < _RANK[winner]:
            winner = status
    return winner


def payment_status(record: PaymentRecord) -> EMIStatus:
    """Calendar status for a recorded payment (unknown statuses count as paid)"""
    return _FROM_PAYMENT.get(record.status, EMIStatus.PAID)


def effective_payments(emi_history: Iterable[Union[PaymentRecord, dict]]) -> List[PaymentRecord]:
    """
    History entries that still count.

    The ledger is append-only: a correction is a new entry pointing at the
    entry it replaces through ``corrects_payment_id``. Replaced entries stay in
    the history but are left out here.
    """
    records = [PaymentRecord.coerce(entry) for entry in emi_history or []]
    superseded = {record.corrects_payment_id for record in records if record.corrects_payment_id}
    return [record for record in records if record.id not in superseded]


def payments_on(due_date: date, emi_history: Iterable[Union[PaymentRecord, dict]]) -> List[PaymentRecord]:
    """Effective history entries whose payment falls on ``due_date``"""
    return [
        record for record in effective_payments(emi_history)
        if record.day is not None and record.day == due_date
    ]


def classify(
    due_date: Union[date, str],
    emi_history: Iterable[Union[PaymentRecord, dict]],
    today: date
) -> Classification:
    """
    Classify one due date of one loan.

    A due date with recorded payments takes the payments' status (several
    payments on one day are merged by precedence) and their summed amount.
    Without a payment the date is ``missed`` when it lies before ``today`` and
    ``due`` otherwise (today itself is still due).

    ``today`` is always supplied by the caller so the result only depends on
    the arguments.
    """
    due_day = to_calendar_date(due_date)
    today = to_calendar_date(today)
    matched = payments_on(due_day, emi_history) if due_day is not None else []

    if matched:
        total = sum((record.amount for record in matched), Decimal('0'))
        status = merge_statuses(payment_status(record) for record in matched)
        return Classification(status=status, amount=total, payments=matched)

    if due_day is not None and today is not None and due_day < today:
        return Classification(status=EMIStatus.MISSED)
    return Classification(status=EMIStatus.DUE)
