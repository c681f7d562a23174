"""
Loan Module

Handles loan origination, EMI collection, advance payments, payment
corrections, renewal and edits. Loans are stored as documents in the external
camelCase shape with their EMI history embedded; the history is append-only.
"""

from decimal import Decimal
from datetime import date
from typing import Any, Dict, List, Optional, Union
import logging
import re

from .storage import StorageInterface
from .audit import AuditTrail, AuditEventType
from .config import get_config
from .exceptions import DuplicatePaymentError, LoanLimitExceeded, NotFoundError
from .logging_config import log_action
from .models import (
    EMIType, Loan, LoanStatus, LoanType, PaymentMethod, PaymentRecord, PaymentStatus,
    business_today, coerce_enum, parse_amount, parse_count, to_calendar_date
)
from .matching import effective_payments
from .completion import LedgerReconciliation, reconcile
from .schedule import (
    count_overdue_emis, generate_due_dates, last_scheduled_emi_date, next_scheduled_emi_date
)


logger = logging.getLogger(__name__)

LOAN_NUMBER_PATTERN = re.compile(r'^LN(\d+)$')

EDITABLE_TERMS = (
    'amount', 'emi_amount', 'loan_type', 'loan_days', 'emi_type',
    'custom_emi_amount', 'emi_start_date', 'date_applied'
)


def loan_number_sequence(loan_number: str) -> int:
    """Numeric part of ``LN<n>``; 0 for anything else"""
    match = LOAN_NUMBER_PATTERN.match(loan_number or "")
    return int(match.group(1)) if match else 0


def validate_loan_terms(loan: Loan) -> List[str]:
    """
    Business-rule check of a loan's terms

    Returns:
        List of error messages, empty when the terms are valid
    """
    errors = []
    if loan.amount is None or loan.amount <= 0:
        errors.append("Loan amount must be greater than 0")
    if loan.emi_amount is None or loan.emi_amount <= 0:
        errors.append("EMI amount must be greater than 0")
    if loan.loan_type is None:
        errors.append("Loan type must be Daily, Weekly or Monthly")
    if not loan.loan_days or loan.loan_days <= 0:
        errors.append("Loan days must be greater than 0")
    if loan.loan_type == LoanType.DAILY and loan.emi_type == EMIType.CUSTOM:
        errors.append("Daily loans only support fixed EMI")
    if loan.is_custom_emi and (loan.custom_emi_amount is None or loan.custom_emi_amount <= 0):
        errors.append("Custom EMI amount is required for custom EMI type with Weekly/Monthly loans")
    if loan.emi_start_date is None:
        errors.append("EMI start date is required")
    elif loan.date_applied is not None and loan.emi_start_date < loan.date_applied:
        errors.append("EMI start date cannot be before loan date")
    return errors


class LoanManager:
    """
    Manages loans and their EMI ledgers
    """

    def __init__(
        self,
        storage: StorageInterface,
        audit_trail: AuditTrail,
        customer_manager=None
    ):
        self.storage = storage
        self.audit_trail = audit_trail
        self.customer_manager = customer_manager
        self.table_name = "loans"

    def create_loan(
        self,
        customer_id: str,
        amount: Union[Decimal, int, str],
        emi_amount: Union[Decimal, int, str],
        loan_type: Union[LoanType, str],
        loan_days: int,
        emi_start_date: Union[date, str],
        date_applied: Optional[Union[date, str]] = None,
        emi_type: Union[EMIType, str] = EMIType.FIXED,
        custom_emi_amount: Optional[Union[Decimal, int, str]] = None,
        created_by: str = "system",
        original_loan_number: str = ""
    ) -> Loan:
        """
        Create a new loan for a customer

        Args:
            customer_id: Borrowing customer
            amount: Principal disbursed
            emi_amount: Regular installment
            loan_type: Daily, Weekly or Monthly
            loan_days: Number of installments
            emi_start_date: First installment's due date
            date_applied: Loan date (defaults to today)
            emi_type: fixed or custom
            custom_emi_amount: Last installment for custom Weekly/Monthly loans
            created_by: Operator or admin creating the loan
            original_loan_number: Loan this one renews, if any

        Returns:
            Created Loan

        Raises:
            ValueError: Unknown customer or invalid terms
            LoanLimitExceeded: No free loan number left for the customer
        """
        with self.storage.atomic():
            loan = self._build_loan(
                customer_id, amount, emi_amount, loan_type, loan_days, emi_start_date,
                date_applied, emi_type, custom_emi_amount, created_by, original_loan_number
            )
            self._save_loan(loan)

            self.audit_trail.log_event(
                event_type=AuditEventType.LOAN_CREATED,
                entity_type="loan",
                entity_id=loan.id,
                metadata={
                    "customer_id": customer_id,
                    "loan_number": loan.loan_number,
                    "amount": loan.amount,
                    "emi_amount": loan.emi_amount,
                    "loan_type": loan.loan_type,
                    "total_loan_amount": loan.total_loan_amount
                },
                user_id=created_by
            )

        log_action(
            logger, "info", f"Created loan {loan.loan_number}",
            user_id=created_by, action="loan_created", resource=f"loan:{loan.id}"
        )
        return loan

    def _build_loan(
        self, customer_id, amount, emi_amount, loan_type, loan_days, emi_start_date,
        date_applied, emi_type, custom_emi_amount, created_by, original_loan_number
    ) -> Loan:
        customer_name = ""
        customer_number = ""
        if self.customer_manager is not None:
            customer = self.customer_manager.require_customer(customer_id)
            customer_name = customer.name
            customer_number = customer.customer_number

        if isinstance(loan_type, str) and coerce_enum(LoanType, loan_type) is None:
            raise ValueError(f"Unknown loan type: {loan_type}")
        if isinstance(emi_type, str) and coerce_enum(EMIType, emi_type) is None:
            raise ValueError(f"Unknown EMI type: {emi_type}")

        days = parse_count(loan_days)
        loan = Loan(
            customer_id=customer_id,
            customer_name=customer_name,
            customer_number=customer_number,
            loan_number=self.next_loan_number(customer_id),
            amount=parse_amount(amount),
            emi_amount=parse_amount(emi_amount),
            loan_type=loan_type,
            loan_days=days,
            total_emi_count=days,
            emi_type=emi_type,
            custom_emi_amount=parse_amount(custom_emi_amount),
            emi_start_date=to_calendar_date(emi_start_date),
            date_applied=to_calendar_date(date_applied) if date_applied is not None else business_today(),
            created_by=created_by,
            original_loan_number=original_loan_number
        )
        if loan.loan_type == LoanType.DAILY:
            loan.custom_emi_amount = None

        errors = validate_loan_terms(loan)
        if errors:
            raise ValueError("; ".join(errors))

        loan.remaining_amount = loan.total_loan_amount
        loan.next_emi_date = loan.emi_start_date
        return loan

    def next_loan_number(self, customer_id: str) -> str:
        """Lowest unused ``LN<n>`` for the customer"""
        limit = get_config().max_loans_per_customer
        used = {
            loan_number_sequence(doc.get('loanNumber'))
            for doc in self.storage.find(self.table_name, {"customerId": customer_id})
        }
        for sequence in range(1, limit + 1):
            if sequence not in used:
                return f"LN{sequence}"
        raise LoanLimitExceeded(f"Customer {customer_id} already has {limit} loans")

    def get_loan(self, loan_id: str) -> Optional[Loan]:
        """Get loan by ID"""
        loan_dict = self.storage.load(self.table_name, loan_id)
        if loan_dict:
            return Loan.from_record(loan_dict)
        return None

    def require_loan(self, loan_id: str) -> Loan:
        loan = self.get_loan(loan_id)
        if not loan:
            raise NotFoundError(f"Loan {loan_id} not found")
        return loan

    def get_loan_by_number(self, customer_id: str, loan_number: str) -> Optional[Loan]:
        found = self.storage.find_one(self.table_name, {"customerId": customer_id, "loanNumber": loan_number})
        return Loan.from_record(found) if found else None

    def get_customer_loans(self, customer_id: str) -> List[Loan]:
        """All loans of a customer ordered by loan number"""
        loans = [Loan.from_record(doc) for doc in self.storage.find(self.table_name, {"customerId": customer_id})]
        return sorted(loans, key=lambda loan: (loan_number_sequence(loan.loan_number), loan.loan_number))

    def get_active_loans(self, customer_id: Optional[str] = None) -> List[Loan]:
        """Active, non-renewed loans, for one customer or the whole book"""
        if customer_id is not None:
            loans = self.get_customer_loans(customer_id)
        else:
            loans = [Loan.from_record(doc) for doc in self.storage.load_all(self.table_name)]
        return [loan for loan in loans if loan.is_schedulable]

    def get_overdue_loans(self, today: Optional[date] = None) -> List[Loan]:
        """Active loans with at least one unpaid installment before ``today``"""
        today = today or business_today()
        return [loan for loan in self.get_active_loans() if count_overdue_emis(loan, today) > 0]

    def record_payment(
        self,
        loan_id: str,
        amount: Union[Decimal, int, str],
        payment_date: Optional[Union[date, str]] = None,
        collected_by: str = "system",
        payment_method: Union[PaymentMethod, str] = PaymentMethod.CASH,
        office_category: Optional[str] = None,
        notes: str = ""
    ) -> PaymentRecord:
        """
        Record one EMI collection

        The payment is Paid when it covers the installment it settles (the
        custom last installment for the final period of a custom loan) and
        Partial otherwise. Either way it counts as one installment.

        Args:
            loan_id: Loan ID
            amount: Amount collected
            payment_date: Day (or moment) of collection, defaults to today
            collected_by: Operator who collected the money
            payment_method: Cash, Bank Transfer, UPI, Cheque or Other
            office_category: Office that collected
            notes: Free text

        Returns:
            The appended PaymentRecord

        Raises:
            ValueError: Unknown, renewed or completed loan, or non-positive amount
            DuplicatePaymentError: The loan already has a payment that day
        """
        value = parse_amount(amount)
        if value is None or value <= 0:
            raise ValueError("Payment amount must be greater than 0")

        with self.storage.atomic():
            loan = self.require_loan(loan_id)
            self._check_collectable(loan)

            payment = PaymentRecord(
                payment_date=payment_date if payment_date is not None else business_today(),
                amount=value,
                payment_method=self._method(payment_method),
                collected_by=collected_by,
                office_category=office_category,
                notes=notes
            )
            if payment.day is None:
                raise ValueError(f"Invalid payment date: {payment_date}")
            self._check_free_day(loan, payment.day)

            expected = loan.expected_emi_amount(loan.emi_paid_count + 1)
            payment.status = PaymentStatus.PAID if value >= expected else PaymentStatus.PARTIAL

            self._apply_payments(loan, [payment])

            self.audit_trail.log_event(
                event_type=AuditEventType.PAYMENT_RECORDED,
                entity_type="loan",
                entity_id=loan.id,
                metadata={
                    "payment_id": payment.id,
                    "loan_number": loan.loan_number,
                    "amount": payment.amount,
                    "status": payment.status,
                    "payment_date": payment.day,
                    "remaining_amount": loan.remaining_amount
                },
                user_id=collected_by
            )
            self._log_completion(loan, collected_by)

        log_action(
            logger, "info", f"Recorded {payment.status.value} EMI of {payment.amount} on {loan.loan_number}",
            user_id=collected_by, action="payment_recorded", resource=f"loan:{loan.id}"
        )
        return payment

    def record_advance_payment(
        self,
        loan_id: str,
        from_date: Union[date, str],
        to_date: Union[date, str],
        amount_per_emi: Union[Decimal, int, str],
        collected_by: str = "system",
        payment_method: Union[PaymentMethod, str] = PaymentMethod.CASH,
        notes: str = ""
    ) -> List[PaymentRecord]:
        """
        Collect several future installments at once

        One Advance entry is appended per scheduled due date in
        ``[from_date, to_date]``, dated on that due date, so the calendar shows
        each installment as settled in advance.

        Raises:
            ValueError: Bad range or amount, no installment in range, or the
                loan cannot take payments
            DuplicatePaymentError: A due date in range already has a payment
        """
        start = to_calendar_date(from_date)
        end = to_calendar_date(to_date)
        value = parse_amount(amount_per_emi)
        if start is None or end is None:
            raise ValueError("Advance payment needs a valid date range")
        if start > end:
            raise ValueError("Start date must be before end date")
        if value is None or value <= 0:
            raise ValueError("EMI amount must be a positive number")

        with self.storage.atomic():
            loan = self.require_loan(loan_id)
            self._check_collectable(loan)

            due_dates = list(generate_due_dates(loan, start, end, limit=loan.period_count))
            due_dates = due_dates[:max(0, loan.period_count - loan.emi_paid_count)]
            if not due_dates:
                raise ValueError(f"No installments of {loan.loan_number} fall due between {start} and {end}")
            for due in due_dates:
                self._check_free_day(loan, due)

            payments = [
                PaymentRecord(
                    payment_date=due,
                    amount=value,
                    status=PaymentStatus.ADVANCE,
                    payment_method=self._method(payment_method),
                    collected_by=collected_by,
                    payment_type="advance",
                    notes=notes or f"Advance payment from {start} to {end}"
                )
                for due in due_dates
            ]
            self._apply_payments(loan, payments)

            self.audit_trail.log_event(
                event_type=AuditEventType.PAYMENT_RECORDED,
                entity_type="loan",
                entity_id=loan.id,
                metadata={
                    "payment_ids": [payment.id for payment in payments],
                    "loan_number": loan.loan_number,
                    "installments": len(payments),
                    "amount_per_emi": value,
                    "from_date": start,
                    "to_date": end
                },
                user_id=collected_by
            )
            self._log_completion(loan, collected_by)

        logger.info("Recorded %d advance EMIs on %s", len(payments), loan.loan_number)
        return payments

    def correct_payment(
        self,
        loan_id: str,
        payment_id: str,
        amount: Union[Decimal, int, str],
        status: Optional[Union[PaymentStatus, str]] = None,
        corrected_by: str = "system",
        reason: str = ""
    ) -> PaymentRecord:
        """
        Replace a mis-recorded payment

        The original entry stays in the history; a new entry on the same day
        points at it through ``corrects_payment_id`` and takes its place. The
        installment count is unchanged and the paid amount moves by the
        difference.

        Raises:
            ValueError: Unknown loan or payment, payment already corrected
        """
        value = parse_amount(amount)
        if value is None or value <= 0:
            raise ValueError("Corrected amount must be greater than 0")
        if isinstance(status, str) and coerce_enum(PaymentStatus, status) is None:
            raise ValueError(f"Unknown payment status: {status}")

        with self.storage.atomic():
            loan = self.require_loan(loan_id)
            original = next((p for p in effective_payments(loan.emi_history) if p.id == payment_id), None)
            if original is None:
                raise ValueError(f"Payment {payment_id} not found on loan {loan.loan_number} or already corrected")

            if status is None:
                position = self._installment_position(loan, original)
                status = PaymentStatus.PAID if value >= loan.expected_emi_amount(position) else PaymentStatus.PARTIAL
                if original.status == PaymentStatus.ADVANCE:
                    status = PaymentStatus.ADVANCE

            correction = PaymentRecord(
                payment_date=original.payment_date,
                amount=value,
                status=status,
                payment_method=original.payment_method,
                collected_by=original.collected_by,
                office_category=original.office_category,
                payment_type=original.payment_type,
                notes=reason or f"Correction of payment {original.id}",
                corrects_payment_id=original.id
            )

            loan.emi_history.append(correction)
            loan.total_paid_amount += value - original.amount
            loan.remaining_amount = max(Decimal('0'), loan.total_loan_amount - loan.total_paid_amount)
            loan.touch()
            self._save_loan(loan)

            self.audit_trail.log_event(
                event_type=AuditEventType.PAYMENT_CORRECTED,
                entity_type="loan",
                entity_id=loan.id,
                metadata={
                    "payment_id": correction.id,
                    "corrects_payment_id": original.id,
                    "old_amount": original.amount,
                    "new_amount": value,
                    "reason": reason
                },
                user_id=corrected_by
            )

        logger.info("Corrected payment %s on %s", original.id, loan.loan_number)
        return correction

    def renew_loan(
        self,
        loan_id: str,
        amount: Union[Decimal, int, str],
        emi_amount: Union[Decimal, int, str],
        loan_type: Union[LoanType, str],
        loan_days: int,
        emi_start_date: Optional[Union[date, str]] = None,
        renewal_date: Optional[Union[date, str]] = None,
        emi_type: Union[EMIType, str] = EMIType.FIXED,
        custom_emi_amount: Optional[Union[Decimal, int, str]] = None,
        requested_by: str = "system"
    ) -> Dict[str, Loan]:
        """
        Replace a loan with a successor

        The successor takes the customer's next free loan number and records
        the original's number; the original is flagged renewed and drops out
        of scheduling. A loan can be renewed only once.

        Returns:
            ``{"original_loan": ..., "new_loan": ...}``
        """
        with self.storage.atomic():
            original = self.require_loan(loan_id)
            if original.is_renewed or original.status == LoanStatus.RENEWED:
                raise ValueError(f"Loan {original.loan_number} has already been renewed")

            renewal_day = to_calendar_date(renewal_date) if renewal_date is not None else business_today()
            successor = self._build_loan(
                original.customer_id, amount, emi_amount, loan_type, loan_days,
                emi_start_date if emi_start_date is not None else renewal_day,
                renewal_day, emi_type, custom_emi_amount, requested_by, original.loan_number
            )
            self._save_loan(successor)

            original.is_renewed = True
            original.status = LoanStatus.RENEWED
            original.renewed_loan_number = successor.loan_number
            original.renewed_date = renewal_day
            original.touch()
            self._save_loan(original)

            self.audit_trail.log_event(
                event_type=AuditEventType.LOAN_RENEWED,
                entity_type="loan",
                entity_id=original.id,
                metadata={
                    "original_loan_number": original.loan_number,
                    "new_loan_id": successor.id,
                    "new_loan_number": successor.loan_number,
                    "new_amount": successor.amount
                },
                user_id=requested_by
            )

        log_action(
            logger, "info", f"Renewed {original.loan_number} as {successor.loan_number}",
            user_id=requested_by, action="loan_renewed", resource=f"loan:{original.id}"
        )
        return {"original_loan": original, "new_loan": successor}

    def update_loan(self, loan_id: str, changes: Dict[str, Any], updated_by: str = "system") -> Loan:
        """
        Edit a loan's terms

        Counters and history are kept; remaining amount, next EMI date and
        completion are recomputed from the new terms.
        """
        unknown = set(changes) - set(EDITABLE_TERMS)
        if unknown:
            raise ValueError(f"Cannot update loan fields: {', '.join(sorted(unknown))}")

        with self.storage.atomic():
            loan = self.require_loan(loan_id)
            if loan.is_renewed:
                raise ValueError(f"Loan {loan.loan_number} has been renewed and can no longer be edited")

            before = {key: getattr(loan, key) for key in changes}
            record = loan.to_record()
            edited = Loan.from_record(record)
            for key, value in changes.items():
                setattr(edited, key, value)
            if 'loan_days' in changes:
                edited.total_emi_count = None
            edited.__post_init__()
            if 'loan_days' in changes:
                edited.total_emi_count = edited.loan_days
            if edited.loan_type == LoanType.DAILY:
                edited.custom_emi_amount = None

            errors = validate_loan_terms(edited)
            if errors:
                raise ValueError("; ".join(errors))

            self._refresh_progress(edited)
            edited.touch()
            self._save_loan(edited)

            self.audit_trail.log_event(
                event_type=AuditEventType.LOAN_UPDATED,
                entity_type="loan",
                entity_id=edited.id,
                metadata={
                    "loan_number": edited.loan_number,
                    "old_data": before,
                    "new_data": {key: getattr(edited, key) for key in changes}
                },
                user_id=updated_by
            )
            if loan.status != LoanStatus.COMPLETED:
                self._log_completion(edited, updated_by)

        return edited

    def delete_loan(self, loan_id: str, deleted_by: str = "system", reason: str = "") -> Loan:
        """Remove a loan that has no collections recorded against it"""
        with self.storage.atomic():
            loan = self.require_loan(loan_id)
            if effective_payments(loan.emi_history):
                raise ValueError(f"Loan {loan.loan_number} has recorded payments and cannot be deleted")

            self.storage.delete(self.table_name, loan.id)

            self.audit_trail.log_event(
                event_type=AuditEventType.LOAN_DELETED,
                entity_type="loan",
                entity_id=loan.id,
                metadata={
                    "customer_id": loan.customer_id,
                    "loan_number": loan.loan_number,
                    "reason": reason
                },
                user_id=deleted_by
            )

        logger.info("Deleted loan %s of customer %s", loan.loan_number, loan.customer_id)
        return loan

    def reconcile(self, loan_id: str) -> LedgerReconciliation:
        """Compare a loan's stored counters with its EMI history"""
        return reconcile(self.require_loan(loan_id))

    def _check_collectable(self, loan: Loan) -> None:
        if loan.is_renewed or loan.status == LoanStatus.RENEWED:
            raise ValueError(f"Cannot process payment for renewed loan {loan.loan_number}")
        if loan.status == LoanStatus.COMPLETED or (loan.period_count and loan.emi_paid_count >= loan.period_count):
            raise ValueError(f"Loan {loan.loan_number} is already completed")

    def _check_free_day(self, loan: Loan, day: date) -> None:
        for existing in effective_payments(loan.emi_history):
            if existing.day == day:
                raise DuplicatePaymentError(
                    f"Loan {loan.loan_number} already has a payment on {day.isoformat()}"
                )

    def _installment_position(self, loan: Loan, payment: PaymentRecord) -> int:
        """1-based position of an effective payment in the ledger"""
        ordered = effective_payments(loan.emi_history)
        for position, record in enumerate(ordered, start=1):
            if record.id == payment.id:
                return position
        return len(ordered)

    def _apply_payments(self, loan: Loan, payments: List[PaymentRecord]) -> None:
        loan.emi_history.extend(payments)
        loan.emi_paid_count += len(payments)
        loan.total_paid_amount += sum((payment.amount for payment in payments), Decimal('0'))
        self._refresh_progress(loan)
        loan.touch()
        self._save_loan(loan)

    def _refresh_progress(self, loan: Loan) -> None:
        loan.remaining_amount = max(Decimal('0'), loan.total_loan_amount - loan.total_paid_amount)
        if loan.emi_paid_count > 0:
            loan.last_emi_date = last_scheduled_emi_date(loan.emi_start_date, loan.loan_type, loan.emi_paid_count)
        if loan.period_count and loan.emi_paid_count >= loan.period_count:
            loan.status = LoanStatus.COMPLETED
            loan.next_emi_date = None
        else:
            if loan.status == LoanStatus.COMPLETED:
                loan.status = LoanStatus.ACTIVE
            loan.next_emi_date = next_scheduled_emi_date(loan.emi_start_date, loan.loan_type, loan.emi_paid_count)

    def _log_completion(self, loan: Loan, user_id: str) -> None:
        if loan.status == LoanStatus.COMPLETED:
            self.audit_trail.log_event(
                event_type=AuditEventType.LOAN_COMPLETED,
                entity_type="loan",
                entity_id=loan.id,
                metadata={"loan_number": loan.loan_number, "total_paid_amount": loan.total_paid_amount},
                user_id=user_id
            )
            logger.info("Loan %s completed", loan.loan_number)

    def _method(self, payment_method: Union[PaymentMethod, str]) -> str:
        method = coerce_enum(PaymentMethod, payment_method)
        if method is None:
            raise ValueError(f"Unknown payment method: {payment_method}")
        return method.value

    def _save_loan(self, loan: Loan) -> None:
        self.storage.save(self.table_name, loan.id, loan.to_record())
