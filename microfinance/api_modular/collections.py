"""
Collection report endpoints
"""

from typing import Optional
from fastapi import APIRouter, HTTPException, Depends

from .system import BackOfficeSystem, get_back_office, http_error
from ..collection import build_collection_report
from ..models import Loan, business_today, to_calendar_date


router = APIRouter()


@router.get("/report")
async def get_collection_report(
    start_date: Optional[str] = None,
    end_date: Optional[str] = None,
    today: Optional[str] = None,
    system: BackOfficeSystem = Depends(get_back_office)
):
    """Collections in a period and the installments still pending on its last day"""
    start = to_calendar_date(start_date) if start_date else business_today()
    end = to_calendar_date(end_date) if end_date else start
    day = to_calendar_date(today) if today else None
    if start is None or end is None or (today and day is None):
        raise HTTPException(status_code=400, detail="Invalid date")

    loans = [Loan.from_record(doc) for doc in system.storage.load_all(system.loan_manager.table_name)]
    offices = {
        customer.id: customer.office_category.value
        for customer in system.customer_manager.list_customers(include_inactive=True)
    }

    try:
        report = build_collection_report(loans, start, end, today=day, customer_offices=offices)
    except ValueError as e:
        raise http_error(e)

    return report.to_dict()
