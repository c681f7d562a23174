"""
Loan endpoints
"""

from typing import Optional
from fastapi import APIRouter, HTTPException, Depends, status

from .system import BackOfficeSystem, get_back_office, http_error, tagged
from .schemas import CreateLoanRequest, UpdateLoanRequest, RenewLoanRequest
from ..completion import compute_completion, payment_behavior
from ..models import business_today, to_calendar_date
from ..schedule import count_overdue_emis, full_schedule


router = APIRouter()


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_loan(
    request: CreateLoanRequest,
    system: BackOfficeSystem = Depends(get_back_office)
):
    """Create a loan directly (administrators; operators submit a New Loan request)"""
    try:
        loan = system.loan_manager.create_loan(
            customer_id=request.customer_id,
            amount=request.amount,
            emi_amount=request.emi_amount,
            loan_type=request.loan_type,
            loan_days=request.loan_days,
            emi_start_date=request.emi_start_date,
            date_applied=request.date_applied,
            emi_type=request.emi_type,
            custom_emi_amount=request.custom_emi_amount,
            created_by=request.created_by
        )
    except ValueError as e:
        raise http_error(e)

    return {"loan_id": loan.id, "loan_number": loan.loan_number, "loan": loan.to_record()}


@router.get("")
async def list_loans(
    customer_id: Optional[str] = None,
    active_only: bool = True,
    system: BackOfficeSystem = Depends(get_back_office)
):
    """Loans of one customer or of the whole book"""
    if active_only:
        loans = system.loan_manager.get_active_loans(customer_id)
    elif customer_id:
        loans = system.loan_manager.get_customer_loans(customer_id)
    else:
        raise HTTPException(status_code=400, detail="customer_id is required when active_only is false")

    return tagged("loans", [loan.to_record() for loan in loans])


@router.get("/overdue")
async def list_overdue_loans(
    today: Optional[str] = None,
    system: BackOfficeSystem = Depends(get_back_office)
):
    """Active loans with unpaid installments before today"""
    day = to_calendar_date(today) if today else business_today()
    if day is None:
        raise HTTPException(status_code=400, detail=f"Invalid date: {today}")

    items = []
    for loan in system.loan_manager.get_overdue_loans(day):
        record = loan.to_record()
        record["overdueEmis"] = count_overdue_emis(loan, day)
        items.append(record)
    return tagged("loans", items)


@router.get("/{loan_id}")
async def get_loan(
    loan_id: str,
    system: BackOfficeSystem = Depends(get_back_office)
):
    """Get loan by ID with its repayment progress"""
    loan = system.loan_manager.get_loan(loan_id)
    if not loan:
        raise HTTPException(status_code=404, detail="Loan not found")

    record = loan.to_record()
    record["completion"] = compute_completion(loan).to_dict()
    return record


@router.put("/{loan_id}")
async def update_loan(
    loan_id: str,
    request: UpdateLoanRequest,
    system: BackOfficeSystem = Depends(get_back_office)
):
    """Edit loan terms"""
    try:
        loan = system.loan_manager.update_loan(loan_id, request.changes(), updated_by=request.updated_by)
    except ValueError as e:
        raise http_error(e)

    return loan.to_record()


@router.post("/{loan_id}/renew")
async def renew_loan(
    loan_id: str,
    request: RenewLoanRequest,
    system: BackOfficeSystem = Depends(get_back_office)
):
    """Renew a loan into a successor"""
    try:
        renewed = system.loan_manager.renew_loan(
            loan_id,
            amount=request.amount,
            emi_amount=request.emi_amount,
            loan_type=request.loan_type,
            loan_days=request.loan_days,
            emi_start_date=request.emi_start_date,
            renewal_date=request.renewal_date,
            emi_type=request.emi_type,
            custom_emi_amount=request.custom_emi_amount,
            requested_by=request.requested_by
        )
    except ValueError as e:
        raise http_error(e)

    return {
        "original_loan": renewed["original_loan"].to_record(),
        "new_loan": renewed["new_loan"].to_record()
    }


@router.delete("/{loan_id}")
async def delete_loan(
    loan_id: str,
    reason: str = "",
    deleted_by: str = "system",
    system: BackOfficeSystem = Depends(get_back_office)
):
    """Delete a loan without collections"""
    try:
        loan = system.loan_manager.delete_loan(loan_id, deleted_by=deleted_by, reason=reason)
    except ValueError as e:
        raise http_error(e)

    return {"loan_id": loan.id, "message": f"Loan {loan.loan_number} deleted"}


@router.get("/{loan_id}/completion")
async def get_completion(
    loan_id: str,
    system: BackOfficeSystem = Depends(get_back_office)
):
    """Repayment progress"""
    try:
        loan = system.loan_manager.require_loan(loan_id)
    except ValueError as e:
        raise http_error(e)

    return compute_completion(loan).to_dict()


@router.get("/{loan_id}/behavior")
async def get_payment_behavior(
    loan_id: str,
    system: BackOfficeSystem = Depends(get_back_office)
):
    """Punctuality score and rating"""
    try:
        loan = system.loan_manager.require_loan(loan_id)
    except ValueError as e:
        raise http_error(e)

    return payment_behavior(loan).to_dict()


@router.get("/{loan_id}/reconciliation")
async def get_reconciliation(
    loan_id: str,
    system: BackOfficeSystem = Depends(get_back_office)
):
    """Stored counters compared with the EMI history"""
    try:
        report = system.loan_manager.reconcile(loan_id)
    except ValueError as e:
        raise http_error(e)

    return report.to_dict()


@router.get("/{loan_id}/schedule")
async def get_schedule(
    loan_id: str,
    system: BackOfficeSystem = Depends(get_back_office)
):
    """Every installment due date of the loan"""
    try:
        loan = system.loan_manager.require_loan(loan_id)
    except ValueError as e:
        raise http_error(e)

    return tagged("due_dates", [
        {"installment": position, "dueDate": due.isoformat(), "emiAmount": str(loan.expected_emi_amount(position))}
        for position, due in enumerate(full_schedule(loan), start=1)
    ])
