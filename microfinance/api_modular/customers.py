"""
Customer management endpoints
"""

from typing import Optional
from fastapi import APIRouter, HTTPException, Depends, status

from .system import BackOfficeSystem, get_back_office, http_error, tagged
from .schemas import CreateCustomerRequest, UpdateCustomerRequest, DeactivateRequest
from ..customers import CustomerCategory, CustomerStatus, OfficeCategory


router = APIRouter()


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_customer(
    request: CreateCustomerRequest,
    system: BackOfficeSystem = Depends(get_back_office)
):
    """Create a new customer"""
    try:
        customer = system.customer_manager.create_customer(
            name=request.name,
            customer_number=request.customer_number,
            phone=request.phone,
            business_name=request.business_name,
            area=request.area,
            address=request.address,
            whatsapp_number=request.whatsapp_number,
            email=request.email,
            category=CustomerCategory(request.category),
            office_category=OfficeCategory(request.office_category),
            created_by=request.created_by
        )
    except ValueError as e:
        raise http_error(e)

    return {"customer_id": customer.id, "customer": customer.to_dict()}


@router.get("")
async def list_customers(
    office_category: Optional[str] = None,
    status: Optional[str] = None,
    category: Optional[str] = None,
    search: Optional[str] = None,
    include_inactive: bool = False,
    system: BackOfficeSystem = Depends(get_back_office)
):
    """List customers filtered by office, status, category or free text"""
    try:
        customers = system.customer_manager.list_customers(
            office_category=OfficeCategory(office_category) if office_category else None,
            status=CustomerStatus(status) if status else None,
            category=CustomerCategory(category) if category else None,
            search=search,
            include_inactive=include_inactive
        )
    except ValueError as e:
        raise http_error(e)

    return tagged("customers", [c.to_dict() for c in customers])


@router.get("/{customer_id}")
async def get_customer(
    customer_id: str,
    system: BackOfficeSystem = Depends(get_back_office)
):
    """Get customer by ID"""
    customer = system.customer_manager.get_customer(customer_id)
    if not customer:
        raise HTTPException(status_code=404, detail="Customer not found")

    return customer.to_dict()


@router.put("/{customer_id}")
async def update_customer(
    customer_id: str,
    request: UpdateCustomerRequest,
    system: BackOfficeSystem = Depends(get_back_office)
):
    """Update customer information"""
    try:
        customer = system.customer_manager.update_customer(
            customer_id, request.changes(), updated_by=request.updated_by
        )
    except ValueError as e:
        raise http_error(e)

    return customer.to_dict()


@router.post("/{customer_id}/deactivate")
async def deactivate_customer(
    customer_id: str,
    request: DeactivateRequest,
    system: BackOfficeSystem = Depends(get_back_office)
):
    """Deactivate a customer"""
    try:
        customer = system.customer_manager.deactivate_customer(
            customer_id, request.reason, updated_by=request.updated_by
        )
    except ValueError as e:
        raise http_error(e)

    return customer.to_dict()


@router.get("/{customer_id}/loans")
async def get_customer_loans(
    customer_id: str,
    system: BackOfficeSystem = Depends(get_back_office)
):
    """All loans of a customer ordered by loan number"""
    try:
        system.customer_manager.require_customer(customer_id)
    except ValueError as e:
        raise http_error(e)

    loans = system.loan_manager.get_customer_loans(customer_id)
    return tagged("loans", [loan.to_record() for loan in loans])
