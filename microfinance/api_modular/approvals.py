"""
Approval request endpoints
"""

from typing import Optional
from fastapi import APIRouter, HTTPException, Depends, status

from .system import BackOfficeSystem, get_back_office, http_error, tagged
from .schemas import SubmitRequest, ReviewRequest
from ..approvals import RequestPriority, RequestStatus, RequestType


router = APIRouter()


@router.post("", status_code=status.HTTP_201_CREATED)
async def submit_request(
    request: SubmitRequest,
    system: BackOfficeSystem = Depends(get_back_office)
):
    """Submit a change for approval"""
    try:
        submitted = system.approval_queue.submit(
            request_type=RequestType(request.request_type),
            payload=request.payload,
            created_by=request.created_by,
            customer_id=request.customer_id,
            loan_id=request.loan_id,
            description=request.description,
            priority=RequestPriority(request.priority)
        )
    except ValueError as e:
        raise http_error(e)

    return submitted.to_dict()


@router.get("")
async def list_requests(
    status: Optional[str] = None,
    request_type: Optional[str] = None,
    created_by: Optional[str] = None,
    system: BackOfficeSystem = Depends(get_back_office)
):
    """List requests by status, type or submitter"""
    try:
        requests = system.approval_queue.list_requests(
            status=RequestStatus(status) if status else None,
            request_type=RequestType(request_type) if request_type else None,
            created_by=created_by
        )
    except ValueError as e:
        raise http_error(e)

    return tagged("requests", [r.to_dict() for r in requests])


@router.get("/pending")
async def list_pending(system: BackOfficeSystem = Depends(get_back_office)):
    """Open requests, most urgent first"""
    return tagged("requests", [r.to_dict() for r in system.approval_queue.list_pending()])


@router.get("/stats")
async def get_stats(system: BackOfficeSystem = Depends(get_back_office)):
    """Request counts by status, type and priority"""
    return system.approval_queue.stats()


@router.get("/{request_id}")
async def get_request(
    request_id: str,
    system: BackOfficeSystem = Depends(get_back_office)
):
    request = system.approval_queue.get_request(request_id)
    if not request:
        raise HTTPException(status_code=404, detail="Request not found")
    return request.to_dict()


@router.post("/{request_id}/review")
async def mark_in_review(
    request_id: str,
    request: ReviewRequest,
    system: BackOfficeSystem = Depends(get_back_office)
):
    try:
        return system.approval_queue.mark_in_review(request_id, request.reviewer).to_dict()
    except ValueError as e:
        raise http_error(e)


@router.post("/{request_id}/hold")
async def put_on_hold(
    request_id: str,
    request: ReviewRequest,
    system: BackOfficeSystem = Depends(get_back_office)
):
    try:
        return system.approval_queue.put_on_hold(request_id, request.reviewer, request.notes).to_dict()
    except ValueError as e:
        raise http_error(e)


@router.post("/{request_id}/approve")
async def approve_request(
    request_id: str,
    request: ReviewRequest,
    system: BackOfficeSystem = Depends(get_back_office)
):
    """Approve a request and apply its change"""
    try:
        return system.approval_queue.approve(request_id, request.reviewer, request.notes).to_dict()
    except ValueError as e:
        raise http_error(e)


@router.post("/{request_id}/reject")
async def reject_request(
    request_id: str,
    request: ReviewRequest,
    system: BackOfficeSystem = Depends(get_back_office)
):
    """Reject a request; ``notes`` carries the reason"""
    try:
        return system.approval_queue.reject(request_id, request.reviewer, request.notes).to_dict()
    except ValueError as e:
        raise http_error(e)
