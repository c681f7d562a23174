"""
EMI payment endpoints
"""

from fastapi import APIRouter, Depends, status

from .system import BackOfficeSystem, get_back_office, http_error, tagged
from .schemas import RecordPaymentRequest, AdvancePaymentRequest, CorrectPaymentRequest


router = APIRouter()


@router.post("", status_code=status.HTTP_201_CREATED)
async def record_payment(
    request: RecordPaymentRequest,
    system: BackOfficeSystem = Depends(get_back_office)
):
    """Record one EMI collection"""
    try:
        payment = system.loan_manager.record_payment(
            loan_id=request.loan_id,
            amount=request.amount,
            payment_date=request.payment_date,
            collected_by=request.collected_by,
            payment_method=request.payment_method,
            office_category=request.office_category,
            notes=request.notes
        )
    except ValueError as e:
        raise http_error(e)

    loan = system.loan_manager.get_loan(request.loan_id)
    return {"payment": payment.to_record(), "loan": loan.to_record()}


@router.post("/advance", status_code=status.HTTP_201_CREATED)
async def record_advance_payment(
    request: AdvancePaymentRequest,
    system: BackOfficeSystem = Depends(get_back_office)
):
    """Collect the installments due in a date range in advance"""
    try:
        payments = system.loan_manager.record_advance_payment(
            loan_id=request.loan_id,
            from_date=request.from_date,
            to_date=request.to_date,
            amount_per_emi=request.amount_per_emi,
            collected_by=request.collected_by,
            payment_method=request.payment_method,
            notes=request.notes
        )
    except ValueError as e:
        raise http_error(e)

    return tagged("payments", [payment.to_record() for payment in payments])


@router.post("/corrections", status_code=status.HTTP_201_CREATED)
async def correct_payment(
    request: CorrectPaymentRequest,
    system: BackOfficeSystem = Depends(get_back_office)
):
    """Replace a mis-recorded payment with a correcting entry"""
    try:
        correction = system.loan_manager.correct_payment(
            loan_id=request.loan_id,
            payment_id=request.payment_id,
            amount=request.amount,
            status=request.status,
            corrected_by=request.corrected_by,
            reason=request.reason
        )
    except ValueError as e:
        raise http_error(e)

    return {"payment": correction.to_record()}


@router.get("/{loan_id}")
async def get_payments(
    loan_id: str,
    system: BackOfficeSystem = Depends(get_back_office)
):
    """Full EMI history of a loan, corrected entries included"""
    try:
        loan = system.loan_manager.require_loan(loan_id)
    except ValueError as e:
        raise http_error(e)

    return tagged("payments", [payment.to_record() for payment in loan.emi_history])
