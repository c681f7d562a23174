"""
EMI calendar endpoint
"""

from typing import List, Optional
from fastapi import APIRouter, HTTPException, Depends, Query

from .system import BackOfficeSystem, get_back_office, http_error, tagged
from ..emi_calendar import build_month_calendar
from ..models import business_today, to_calendar_date


router = APIRouter()


@router.get("/{customer_id}")
async def get_month_calendar(
    customer_id: str,
    year: int,
    month: int = Query(..., ge=0, le=11, description="Month, 0 = January"),
    today: Optional[str] = None,
    loan_number: Optional[List[str]] = Query(None),
    system: BackOfficeSystem = Depends(get_back_office)
):
    """Month view of a customer's EMIs"""
    day = to_calendar_date(today) if today else business_today()
    if day is None:
        raise HTTPException(status_code=400, detail=f"Invalid date: {today}")

    try:
        system.customer_manager.require_customer(customer_id)
        loans = system.loan_manager.get_customer_loans(customer_id)
        days = build_month_calendar(loans, year, month, day, loan_numbers=loan_number)
    except ValueError as e:
        raise http_error(e)

    return tagged("calendar_days", [entry.to_dict() for entry in days])
