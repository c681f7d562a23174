"""
Loan and Payment Records

Dataclasses for loans and their EMI history, plus the lenient parsing used at
the boundary with the document store and the HTTP layer. Stored documents use
the camelCase shape the dashboard reads (``emiAmount``, ``emiHistory`` ...);
in Python the same fields are snake_case.

Parsing never raises on bad values: an unreadable number or date becomes
``None`` so that one dirty customer record cannot break a whole calendar.
"""

from decimal import Decimal, InvalidOperation
from datetime import date, datetime, timezone
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union
from enum import Enum
from zoneinfo import ZoneInfo
import uuid

from .config import get_config


class LoanType(Enum):
    """Installment cadence"""
    DAILY = "Daily"
    WEEKLY = "Weekly"
    MONTHLY = "Monthly"


class EMIType(Enum):
    """Whether the last installment may differ from the others"""
    FIXED = "fixed"
    CUSTOM = "custom"


class LoanStatus(Enum):
    """Loan lifecycle states"""
    ACTIVE = "active"
    PENDING = "pending"
    OVERDUE = "overdue"
    COMPLETED = "completed"
    RENEWED = "renewed"
    CLOSED = "closed"
    DEFAULTED = "defaulted"


class PaymentStatus(Enum):
    """Status recorded on an EMI history entry"""
    PAID = "Paid"
    PARTIAL = "Partial"
    ADVANCE = "Advance"


class PaymentMethod(Enum):
    CASH = "Cash"
    BANK_TRANSFER = "Bank Transfer"
    UPI = "UPI"
    CHEQUE = "Cheque"
    OTHER = "Other"


def coerce_enum(enum_cls, value):
    """Case-insensitive enum lookup by value; None when unknown"""
    if isinstance(value, enum_cls):
        return value
    if not isinstance(value, str):
        return None
    wanted = value.strip().lower()
    for member in enum_cls:
        if member.value.lower() == wanted:
            return member
    return None


def parse_amount(value: Any) -> Optional[Decimal]:
    """Read a monetary amount; None for absent or non-numeric input"""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, Decimal):
        amount = value
    elif isinstance(value, (int, float)):
        amount = Decimal(str(value))
    elif isinstance(value, str):
        if not value.strip():
            return None
        try:
            amount = Decimal(value.strip())
        except InvalidOperation:
            return None
    else:
        return None
    if not amount.is_finite():
        return None
    return amount


def parse_count(value: Any) -> Optional[int]:
    """Read a whole period count; None for absent or non-numeric input"""
    amount = parse_amount(value)
    if amount is None:
        return None
    return int(amount)


def business_zone() -> ZoneInfo:
    return ZoneInfo(get_config().business_timezone)


def business_today() -> date:
    """Current calendar day in the business timezone"""
    return datetime.now(business_zone()).date()


def to_calendar_date(value: Any, tz: Optional[ZoneInfo] = None) -> Optional[date]:
    """
    Truncate a date-like value to its calendar day.

    Naive datetimes and plain ISO strings are taken as already local. Aware
    datetimes (``...Z`` or ``+00:00``) are first converted to the business
    timezone, so a UTC timestamp late in the evening lands on the next local day.

    Returns None for anything that cannot be read as a date.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        moment = value
    elif isinstance(value, date):
        return value
    elif isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        if text.endswith('Z'):
            text = text[:-1] + '+00:00'
        try:
            moment = datetime.fromisoformat(text)
        except ValueError:
            try:
                return date.fromisoformat(text[:10])
            except ValueError:
                return None
    else:
        return None

    if moment.tzinfo is not None:
        moment = moment.astimezone(tz or business_zone())
    return moment.date()


def _parse_timestamp(value: Any) -> Optional[datetime]:
    if isinstance(value, datetime):
        return value
    if isinstance(value, str) and value:
        try:
            return datetime.fromisoformat(value.replace('Z', '+00:00'))
        except ValueError:
            return None
    return None


def _iso(value: Optional[Union[date, datetime]]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def _num(value: Optional[Decimal]) -> Optional[str]:
    return str(value) if value is not None else None


@dataclass
class PaymentRecord:
    """
    One EMI history entry

    ``payment_date`` keeps whatever precision was recorded (a date, or a
    datetime when the time of collection is known); matching only ever looks
    at the calendar day.
    """
    payment_date: Optional[Union[date, datetime]]
    amount: Decimal
    status: Optional[PaymentStatus] = PaymentStatus.PAID
    payment_method: str = PaymentMethod.CASH.value
    collected_by: str = "system"
    office_category: Optional[str] = None
    payment_type: str = "single"  # single or advance
    notes: str = ""
    corrects_payment_id: Optional[str] = None
    id: str = field(default_factory=lambda: str(uuid.uuid4()))

    def __post_init__(self):
        if not isinstance(self.amount, Decimal):
            self.amount = parse_amount(self.amount) or Decimal('0')
        if self.status is not None and not isinstance(self.status, PaymentStatus):
            self.status = coerce_enum(PaymentStatus, self.status)
        if isinstance(self.payment_date, str):
            text = self.payment_date
            moment = _parse_timestamp(text) if 'T' in text else None
            self.payment_date = moment or to_calendar_date(text)
        elif self.payment_date is not None and not isinstance(self.payment_date, date):
            self.payment_date = None

    @property
    def day(self) -> Optional[date]:
        return to_calendar_date(self.payment_date)

    @classmethod
    def from_record(cls, data: Dict[str, Any]) -> 'PaymentRecord':
        return cls(
            payment_date=data.get('paymentDate', data.get('payment_date')),
            amount=data.get('amount'),
            status=data.get('status'),
            payment_method=data.get('paymentMethod', data.get('payment_method')) or PaymentMethod.CASH.value,
            collected_by=data.get('collectedBy', data.get('collected_by')) or "system",
            office_category=data.get('officeCategory', data.get('office_category')),
            payment_type=data.get('paymentType', data.get('payment_type')) or "single",
            notes=data.get('notes') or "",
            corrects_payment_id=data.get('correctsPaymentId'),
            id=str(data.get('id') or data.get('_id') or uuid.uuid4())
        )

    @classmethod
    def coerce(cls, value: Union['PaymentRecord', Dict[str, Any]]) -> 'PaymentRecord':
        return value if isinstance(value, cls) else cls.from_record(value)

    def to_record(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'paymentDate': _iso(self.payment_date),
            'amount': str(self.amount),
            'status': self.status.value if self.status else None,
            'paymentMethod': self.payment_method,
            'collectedBy': self.collected_by,
            'officeCategory': self.office_category,
            'paymentType': self.payment_type,
            'notes': self.notes,
            'correctsPaymentId': self.corrects_payment_id
        }


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Loan:
    """
    A single credit extended to a customer, with its EMI ledger

    Plain Python values are accepted for convenience (``loan_type="Weekly"``,
    ``emi_amount=500``, ``emi_start_date="2024-01-01"``) and normalised on
    construction; values that cannot be read are stored as ``None``.
    """
    customer_id: str = ""
    loan_number: str = ""
    amount: Optional[Decimal] = None
    emi_amount: Optional[Decimal] = None
    loan_type: Optional[LoanType] = None
    emi_start_date: Optional[date] = None
    loan_days: Optional[int] = None
    total_emi_count: Optional[int] = None
    emi_type: EMIType = EMIType.FIXED
    custom_emi_amount: Optional[Decimal] = None
    date_applied: Optional[date] = None

    emi_paid_count: int = 0
    total_paid_amount: Decimal = Decimal('0')
    remaining_amount: Optional[Decimal] = None
    last_emi_date: Optional[date] = None
    next_emi_date: Optional[date] = None

    status: Optional[LoanStatus] = LoanStatus.ACTIVE
    is_renewed: bool = False
    renewed_loan_number: str = ""
    renewed_date: Optional[date] = None
    original_loan_number: str = ""

    customer_name: str = ""
    customer_number: str = ""
    created_by: str = "system"
    emi_history: List[PaymentRecord] = field(default_factory=list)

    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    created_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime = field(default_factory=_utcnow)

    def __post_init__(self):
        if not isinstance(self.loan_type, LoanType):
            self.loan_type = coerce_enum(LoanType, self.loan_type)
        if not isinstance(self.emi_type, EMIType):
            self.emi_type = coerce_enum(EMIType, self.emi_type) or EMIType.FIXED
        if self.status is not None and not isinstance(self.status, LoanStatus):
            self.status = coerce_enum(LoanStatus, self.status)
        for name in ('amount', 'emi_amount', 'custom_emi_amount', 'remaining_amount'):
            value = getattr(self, name)
            if value is not None and not isinstance(value, Decimal):
                setattr(self, name, parse_amount(value))
        for name in ('loan_days', 'total_emi_count'):
            value = getattr(self, name)
            if value is not None and (isinstance(value, bool) or not isinstance(value, int)):
                setattr(self, name, parse_count(value))
        if isinstance(self.emi_paid_count, bool) or not isinstance(self.emi_paid_count, int):
            self.emi_paid_count = parse_count(self.emi_paid_count) or 0
        if not isinstance(self.total_paid_amount, Decimal):
            self.total_paid_amount = parse_amount(self.total_paid_amount) or Decimal('0')
        for name in ('emi_start_date', 'date_applied', 'last_emi_date', 'next_emi_date', 'renewed_date'):
            value = getattr(self, name)
            if value is not None and (isinstance(value, datetime) or not isinstance(value, date)):
                setattr(self, name, to_calendar_date(value))
        self.emi_history = [PaymentRecord.coerce(entry) for entry in self.emi_history]

    def touch(self) -> None:
        self.updated_at = _utcnow()

    @property
    def period_count(self) -> int:
        """Scheduled number of installments (``totalEmiCount`` or ``loanDays``)"""
        return self.total_emi_count or self.loan_days or 0

    @property
    def is_custom_emi(self) -> bool:
        return self.emi_type == EMIType.CUSTOM and self.loan_type != LoanType.DAILY

    @property
    def total_loan_amount(self) -> Decimal:
        from .calculator import compute_total_loan_amount
        return compute_total_loan_amount(
            self.loan_type, self.emi_type, self.emi_amount,
            self.period_count, self.custom_emi_amount
        )

    @property
    def is_schedulable(self) -> bool:
        """Active, not superseded by a renewal"""
        return self.status == LoanStatus.ACTIVE and not self.is_renewed

    def expected_emi_amount(self, period_number: int) -> Decimal:
        """Installment due for a 1-based period number"""
        if self.is_custom_emi and self.custom_emi_amount is not None and period_number == self.period_count:
            return self.custom_emi_amount
        return self.emi_amount or Decimal('0')

    @classmethod
    def from_record(cls, data: Dict[str, Any]) -> 'Loan':
        """Build a Loan from a stored or submitted document"""
        def pick(camel: str, snake: str, default=None):
            if camel in data:
                return data[camel]
            return data.get(snake, default)

        now = datetime.now(timezone.utc)
        raw_status = pick('status', 'status')
        status = LoanStatus.ACTIVE if raw_status in (None, '') else coerce_enum(LoanStatus, raw_status)
        is_renewed = bool(pick('isRenewed', 'is_renewed', False))
        if status == LoanStatus.RENEWED:
            is_renewed = True

        history = pick('emiHistory', 'emi_history') or []
        if not isinstance(history, list):
            history = []

        return cls(
            id=str(pick('id', '_id') or data.get('_id') or uuid.uuid4()),
            created_at=_parse_timestamp(pick('createdAt', 'created_at')) or now,
            updated_at=_parse_timestamp(pick('updatedAt', 'updated_at')) or now,
            customer_id=str(pick('customerId', 'customer_id') or ''),
            loan_number=str(pick('loanNumber', 'loan_number') or ''),
            amount=parse_amount(pick('amount', 'amount')),
            emi_amount=parse_amount(pick('emiAmount', 'emi_amount')),
            loan_type=coerce_enum(LoanType, pick('loanType', 'loan_type')),
            emi_start_date=to_calendar_date(pick('emiStartDate', 'emi_start_date')),
            loan_days=parse_count(pick('loanDays', 'loan_days')),
            total_emi_count=parse_count(pick('totalEmiCount', 'total_emi_count')),
            emi_type=coerce_enum(EMIType, pick('emiType', 'emi_type')) or EMIType.FIXED,
            custom_emi_amount=parse_amount(pick('customEmiAmount', 'custom_emi_amount')),
            date_applied=to_calendar_date(pick('dateApplied', 'date_applied')),
            emi_paid_count=parse_count(pick('emiPaidCount', 'emi_paid_count')) or 0,
            total_paid_amount=parse_amount(pick('totalPaidAmount', 'total_paid_amount')) or Decimal('0'),
            remaining_amount=parse_amount(pick('remainingAmount', 'remaining_amount')),
            last_emi_date=to_calendar_date(pick('lastEmiDate', 'last_emi_date')),
            next_emi_date=to_calendar_date(pick('nextEmiDate', 'next_emi_date')),
            status=status,
            is_renewed=is_renewed,
            renewed_loan_number=pick('renewedLoanNumber', 'renewed_loan_number') or "",
            renewed_date=to_calendar_date(pick('renewedDate', 'renewed_date')),
            original_loan_number=pick('originalLoanNumber', 'original_loan_number') or "",
            customer_name=pick('customerName', 'customer_name') or "",
            customer_number=pick('customerNumber', 'customer_number') or "",
            created_by=pick('createdBy', 'created_by') or "system",
            emi_history=[PaymentRecord.coerce(entry) for entry in history if isinstance(entry, (dict, PaymentRecord))]
        )

    @classmethod
    def coerce(cls, value: Union['Loan', Dict[str, Any]]) -> 'Loan':
        return value if isinstance(value, cls) else cls.from_record(value)

    def to_record(self) -> Dict[str, Any]:
        """Document shape shared by storage and the HTTP layer"""
        return {
            'id': self.id,
            'createdAt': self.created_at.isoformat(),
            'updatedAt': self.updated_at.isoformat(),
            'customerId': self.customer_id,
            'customerName': self.customer_name,
            'customerNumber': self.customer_number,
            'loanNumber': self.loan_number,
            'amount': _num(self.amount),
            'emiAmount': _num(self.emi_amount),
            'loanType': self.loan_type.value if self.loan_type else None,
            'emiType': self.emi_type.value,
            'customEmiAmount': _num(self.custom_emi_amount),
            'loanDays': self.loan_days,
            'totalEmiCount': self.total_emi_count,
            'totalLoanAmount': str(self.total_loan_amount),
            'dateApplied': _iso(self.date_applied),
            'emiStartDate': _iso(self.emi_start_date),
            'emiPaidCount': self.emi_paid_count,
            'totalPaidAmount': str(self.total_paid_amount),
            'remainingAmount': _num(self.remaining_amount),
            'lastEmiDate': _iso(self.last_emi_date),
            'nextEmiDate': _iso(self.next_emi_date),
            'status': self.status.value if self.status else None,
            'isRenewed': self.is_renewed,
            'renewedLoanNumber': self.renewed_loan_number,
            'renewedDate': _iso(self.renewed_date),
            'originalLoanNumber': self.original_loan_number,
            'createdBy': self.created_by,
            'emiHistory': [entry.to_record() for entry in self.emi_history]
        }
