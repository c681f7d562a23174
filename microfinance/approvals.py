"""
Approval Request Module

Data-entry operators do not change customers or loans directly. They submit
a request carrying the change, and an administrator approves or rejects it.
Approval applies the change through the customer and loan managers in the
same storage transaction that records the decision, so a change that fails
validation leaves the request undecided.
"""

from datetime import datetime, timezone
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
from enum import Enum
import logging
import uuid

from .storage import StorageInterface, StorageRecord
from .audit import AuditTrail, AuditEventType
from .exceptions import NotFoundError
from .customers import CustomerManager
from .loans import LoanManager


logger = logging.getLogger(__name__)


class RequestType(Enum):
    """Kinds of change an operator can ask for"""
    NEW_CUSTOMER = "New Customer"
    NEW_LOAN = "New Loan"
    LOAN_ADDITION = "Loan Addition"
    CUSTOMER_EDIT = "Customer Edit"
    LOAN_EDIT = "Loan Edit"
    LOAN_RENEW = "Loan Renew"
    LOAN_DELETION = "Loan Deletion"
    EMI_CORRECTION = "EMI Correction"


class RequestStatus(Enum):
    PENDING = "Pending"
    IN_REVIEW = "In Review"
    ON_HOLD = "On Hold"
    APPROVED = "Approved"
    REJECTED = "Rejected"


class RequestPriority(Enum):
    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"
    URGENT = "Urgent"


OPEN_STATUSES = (RequestStatus.PENDING, RequestStatus.IN_REVIEW, RequestStatus.ON_HOLD)

# Request types that act on an existing customer or loan
NEEDS_CUSTOMER = (RequestType.NEW_LOAN, RequestType.LOAN_ADDITION, RequestType.CUSTOMER_EDIT)
NEEDS_LOAN = (
    RequestType.LOAN_EDIT, RequestType.LOAN_RENEW,
    RequestType.LOAN_DELETION, RequestType.EMI_CORRECTION
)


@dataclass
class ApprovalRequest(StorageRecord):
    """A proposed change waiting for an administrator's decision"""
    request_type: RequestType
    payload: Dict[str, Any]
    created_by: str
    customer_id: Optional[str] = None
    loan_id: Optional[str] = None
    description: str = ""
    status: RequestStatus = RequestStatus.PENDING
    priority: RequestPriority = RequestPriority.MEDIUM
    reviewed_by: Optional[str] = None
    review_notes: Optional[str] = None
    reviewed_at: Optional[datetime] = None
    result: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_open(self) -> bool:
        return self.status in OPEN_STATUSES

    def to_dict(self) -> Dict[str, Any]:
        result = super().to_dict()
        result['request_type'] = self.request_type.value
        result['status'] = self.status.value
        result['priority'] = self.priority.value
        result['reviewed_at'] = self.reviewed_at.isoformat() if self.reviewed_at else None
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ApprovalRequest':
        data = dict(data)
        data['created_at'] = datetime.fromisoformat(data['created_at'])
        data['updated_at'] = datetime.fromisoformat(data['updated_at'])
        data['request_type'] = RequestType(data['request_type'])
        data['status'] = RequestStatus(data['status'])
        data['priority'] = RequestPriority(data['priority'])
        if data.get('reviewed_at'):
            data['reviewed_at'] = datetime.fromisoformat(data['reviewed_at'])
        return cls(**data)


class ApprovalQueue:
    """
    Queue of change requests and the administrator decisions on them
    """

    def __init__(
        self,
        storage: StorageInterface,
        audit_trail: AuditTrail,
        customer_manager: CustomerManager,
        loan_manager: LoanManager
    ):
        self.storage = storage
        self.audit_trail = audit_trail
        self.customer_manager = customer_manager
        self.loan_manager = loan_manager
        self.table_name = "requests"

    def submit(
        self,
        request_type: RequestType,
        payload: Dict[str, Any],
        created_by: str,
        customer_id: Optional[str] = None,
        loan_id: Optional[str] = None,
        description: str = "",
        priority: RequestPriority = RequestPriority.MEDIUM
    ) -> ApprovalRequest:
        """
        Submit a change for approval

        Args:
            request_type: Kind of change
            payload: Arguments of the change (fields of the new customer,
                loan terms, edited fields, correction amount ...)
            created_by: Submitting operator
            customer_id: Customer the change applies to
            loan_id: Loan the change applies to
            description: Note for the reviewer
            priority: Review priority

        Returns:
            The pending ApprovalRequest

        Raises:
            ValueError: Missing or unknown customer or loan
        """
        request_type = RequestType(request_type)
        priority = RequestPriority(priority)

        if request_type in NEEDS_CUSTOMER:
            if not customer_id:
                raise ValueError(f"{request_type.value} request needs a customer")
            self.customer_manager.require_customer(customer_id)
        if request_type in NEEDS_LOAN:
            if not loan_id:
                raise ValueError(f"{request_type.value} request needs a loan")
            loan = self.loan_manager.require_loan(loan_id)
            customer_id = customer_id or loan.customer_id
        if request_type == RequestType.EMI_CORRECTION and not payload.get('payment_id'):
            raise ValueError("EMI Correction request needs the payment_id being corrected")

        now = datetime.now(timezone.utc)
        request = ApprovalRequest(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            request_type=request_type,
            payload=dict(payload),
            created_by=created_by,
            customer_id=customer_id,
            loan_id=loan_id,
            description=description,
            priority=priority
        )

        self._save_request(request)

        self.audit_trail.log_event(
            event_type=AuditEventType.REQUEST_SUBMITTED,
            entity_type="request",
            entity_id=request.id,
            metadata={
                "request_type": request_type.value,
                "customer_id": customer_id,
                "loan_id": loan_id,
                "priority": priority.value
            },
            user_id=created_by
        )
        logger.info("%s request %s submitted by %s", request_type.value, request.id, created_by)

        return request

    def get_request(self, request_id: str) -> Optional[ApprovalRequest]:
        data = self.storage.load(self.table_name, request_id)
        return ApprovalRequest.from_dict(data) if data else None

    def require_request(self, request_id: str) -> ApprovalRequest:
        request = self.get_request(request_id)
        if not request:
            raise NotFoundError(f"Request {request_id} not found")
        return request

    def mark_in_review(self, request_id: str, reviewer: str) -> ApprovalRequest:
        return self._move(request_id, RequestStatus.IN_REVIEW, reviewer, None)

    def put_on_hold(self, request_id: str, reviewer: str, notes: str = "") -> ApprovalRequest:
        return self._move(request_id, RequestStatus.ON_HOLD, reviewer, notes)

    def approve(self, request_id: str, reviewer: str, notes: str = "") -> ApprovalRequest:
        """
        Approve a request and apply its change

        Raises:
            ValueError: Request not open, or the change itself is rejected by
                the customer or loan manager (the request stays open)
        """
        with self.storage.atomic():
            request = self._open_request(request_id)
            try:
                result = self._apply(request, reviewer)
            except (TypeError, KeyError) as exc:
                raise ValueError(f"Invalid {request.request_type.value} payload: {exc}") from exc

            request.status = RequestStatus.APPROVED
            request.reviewed_by = reviewer
            request.review_notes = notes
            request.reviewed_at = datetime.now(timezone.utc)
            request.result = result
            request.touch()
            self._save_request(request)

            self.audit_trail.log_event(
                event_type=AuditEventType.REQUEST_APPROVED,
                entity_type="request",
                entity_id=request.id,
                metadata={"request_type": request.request_type.value, "result": result},
                user_id=reviewer
            )

        logger.info("%s request %s approved by %s", request.request_type.value, request.id, reviewer)
        return request

    def reject(self, request_id: str, reviewer: str, reason: str) -> ApprovalRequest:
        """Reject a request; its change is discarded"""
        if not reason:
            raise ValueError("A reason is required to reject a request")

        request = self._open_request(request_id)
        request.status = RequestStatus.REJECTED
        request.reviewed_by = reviewer
        request.review_notes = reason
        request.reviewed_at = datetime.now(timezone.utc)
        request.touch()
        self._save_request(request)

        self.audit_trail.log_event(
            event_type=AuditEventType.REQUEST_REJECTED,
            entity_type="request",
            entity_id=request.id,
            metadata={"request_type": request.request_type.value, "reason": reason},
            user_id=reviewer
        )
        logger.info("%s request %s rejected by %s", request.request_type.value, request.id, reviewer)

        return request

    def list_requests(
        self,
        status: Optional[RequestStatus] = None,
        request_type: Optional[RequestType] = None,
        created_by: Optional[str] = None
    ) -> List[ApprovalRequest]:
        requests = [ApprovalRequest.from_dict(data) for data in self.storage.load_all(self.table_name)]
        if status:
            requests = [r for r in requests if r.status == status]
        if request_type:
            requests = [r for r in requests if r.request_type == request_type]
        if created_by:
            requests = [r for r in requests if r.created_by == created_by]
        return requests

    def list_pending(self) -> List[ApprovalRequest]:
        """Open requests, most urgent first, oldest first within a priority"""
        rank = {priority: position for position, priority in enumerate(reversed(list(RequestPriority)))}
        pending = [r for r in self.list_requests() if r.is_open]
        return sorted(pending, key=lambda r: (rank[r.priority], r.created_at))

    def stats(self) -> Dict[str, Any]:
        """Request counts by status, type and priority"""
        requests = self.list_requests()
        by_status = {status.value: 0 for status in RequestStatus}
        by_type: Dict[str, int] = {}
        by_priority: Dict[str, int] = {}
        for request in requests:
            by_status[request.status.value] += 1
            by_type[request.request_type.value] = by_type.get(request.request_type.value, 0) + 1
            if request.is_open:
                by_priority[request.priority.value] = by_priority.get(request.priority.value, 0) + 1
        return {
            "total": len(requests),
            "open": sum(1 for r in requests if r.is_open),
            "by_status": by_status,
            "by_type": by_type,
            "open_by_priority": by_priority
        }

    def _open_request(self, request_id: str) -> ApprovalRequest:
        request = self.require_request(request_id)
        if not request.is_open:
            raise ValueError(f"Request {request_id} is already {request.status.value}")
        return request

    def _move(self, request_id: str, status: RequestStatus, reviewer: str, notes: Optional[str]) -> ApprovalRequest:
        request = self._open_request(request_id)
        request.status = status
        request.reviewed_by = reviewer
        if notes is not None:
            request.review_notes = notes
        request.touch()
        self._save_request(request)

        self.audit_trail.log_event(
            event_type=AuditEventType.REQUEST_UPDATED,
            entity_type="request",
            entity_id=request.id,
            metadata={"status": status.value},
            user_id=reviewer
        )
        return request

    def _apply(self, request: ApprovalRequest, reviewer: str) -> Dict[str, Any]:
        """Carry out an approved change; returns ids of what it touched"""
        payload = dict(request.payload)
        kind = request.request_type

        if kind == RequestType.NEW_CUSTOMER:
            loan_terms = payload.pop('loan', None)
            customer = self.customer_manager.create_customer(created_by=request.created_by, **payload)
            result = {"customer_id": customer.id}
            if loan_terms:
                loan = self.loan_manager.create_loan(customer.id, created_by=request.created_by, **loan_terms)
                result["loan_id"] = loan.id
            return result

        if kind in (RequestType.NEW_LOAN, RequestType.LOAN_ADDITION):
            loan = self.loan_manager.create_loan(request.customer_id, created_by=request.created_by, **payload)
            return {"loan_id": loan.id, "loan_number": loan.loan_number}

        if kind == RequestType.CUSTOMER_EDIT:
            self.customer_manager.update_customer(request.customer_id, payload, updated_by=reviewer)
            return {"customer_id": request.customer_id}

        if kind == RequestType.LOAN_EDIT:
            self.loan_manager.update_loan(request.loan_id, payload, updated_by=reviewer)
            return {"loan_id": request.loan_id}

        if kind == RequestType.LOAN_RENEW:
            renewed = self.loan_manager.renew_loan(request.loan_id, requested_by=request.created_by, **payload)
            return {"loan_id": request.loan_id, "new_loan_id": renewed["new_loan"].id}

        if kind == RequestType.LOAN_DELETION:
            self.loan_manager.delete_loan(request.loan_id, deleted_by=reviewer, reason=payload.get('reason', ''))
            return {"loan_id": request.loan_id}

        if kind == RequestType.EMI_CORRECTION:
            correction = self.loan_manager.correct_payment(
                request.loan_id,
                payload['payment_id'],
                payload['amount'],
                status=payload.get('status'),
                corrected_by=reviewer,
                reason=payload.get('reason', request.description)
            )
            return {"loan_id": request.loan_id, "payment_id": correction.id}

        raise ValueError(f"Unsupported request type: {kind.value}")

    def _save_request(self, request: ApprovalRequest) -> None:
        self.storage.save(self.table_name, request.id, request.to_dict())
