"""
Pydantic schemas for API requests
"""

from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field


# Customer schemas
class CreateCustomerRequest(BaseModel):
    name: str
    customer_number: str
    phone: List[str] = Field(..., description="One or more 10-digit phone numbers")
    business_name: str
    area: str
    address: str
    whatsapp_number: Optional[str] = None
    email: Optional[str] = None
    category: str = Field("A", description="Customer category (A, B, C)")
    office_category: str = Field("Office 1", description="Office 1 or Office 2")
    created_by: str = "system"


class UpdateCustomerRequest(BaseModel):
    name: Optional[str] = None
    phone: Optional[List[str]] = None
    whatsapp_number: Optional[str] = None
    business_name: Optional[str] = None
    area: Optional[str] = None
    address: Optional[str] = None
    email: Optional[str] = None
    category: Optional[str] = None
    office_category: Optional[str] = None
    status: Optional[str] = None
    notes: Optional[str] = None
    updated_by: str = "system"

    def changes(self) -> Dict[str, Any]:
        return {
            key: value for key, value in self.model_dump(exclude={"updated_by"}).items()
            if value is not None
        }


class DeactivateRequest(BaseModel):
    reason: str = ""
    updated_by: str = "system"


# Loan schemas
class LoanTermsModel(BaseModel):
    amount: str  # Decimal as string
    emi_amount: str  # Decimal as string
    loan_type: str = Field(..., description="Daily, Weekly or Monthly")
    loan_days: int = Field(..., description="Number of installments")
    emi_type: str = Field("fixed", description="fixed or custom")
    custom_emi_amount: Optional[str] = None  # last installment of custom loans


class CreateLoanRequest(LoanTermsModel):
    customer_id: str
    emi_start_date: str  # ISO date string
    date_applied: Optional[str] = None  # ISO date string
    created_by: str = "system"


class UpdateLoanRequest(BaseModel):
    amount: Optional[str] = None
    emi_amount: Optional[str] = None
    loan_type: Optional[str] = None
    loan_days: Optional[int] = None
    emi_type: Optional[str] = None
    custom_emi_amount: Optional[str] = None
    emi_start_date: Optional[str] = None
    date_applied: Optional[str] = None
    updated_by: str = "system"

    def changes(self) -> Dict[str, Any]:
        return {
            key: value for key, value in self.model_dump(exclude={"updated_by"}).items()
            if value is not None
        }


class RenewLoanRequest(LoanTermsModel):
    emi_start_date: Optional[str] = None
    renewal_date: Optional[str] = None
    requested_by: str = "system"


# Payment schemas
class RecordPaymentRequest(BaseModel):
    loan_id: str
    amount: str  # Decimal as string
    payment_date: Optional[str] = None  # ISO date or timestamp
    collected_by: str = "system"
    payment_method: str = "Cash"
    office_category: Optional[str] = None
    notes: str = ""


class AdvancePaymentRequest(BaseModel):
    loan_id: str
    from_date: str
    to_date: str
    amount_per_emi: str
    collected_by: str = "system"
    payment_method: str = "Cash"
    notes: str = ""


class CorrectPaymentRequest(BaseModel):
    loan_id: str
    payment_id: str
    amount: str
    status: Optional[str] = None
    corrected_by: str = "system"
    reason: str = ""


# Approval request schemas
class SubmitRequest(BaseModel):
    request_type: str = Field(..., description="New Customer, New Loan, Customer Edit, ...")
    payload: Dict[str, Any] = Field(default_factory=dict)
    created_by: str
    customer_id: Optional[str] = None
    loan_id: Optional[str] = None
    description: str = ""
    priority: str = "Medium"


class ReviewRequest(BaseModel):
    reviewer: str
    notes: str = ""


# Team schemas
class CreateTeamMemberRequest(BaseModel):
    name: str
    phone: str
    login_id: str
    role: str = Field(..., description="Recovery Team or Data Entry Operator")
    office_category: Optional[str] = None
    whatsapp_number: Optional[str] = None
    address: str = ""
    join_date: Optional[str] = None
    created_by: str = "system"


class UpdateTeamMemberRequest(BaseModel):
    name: Optional[str] = None
    phone: Optional[str] = None
    whatsapp_number: Optional[str] = None
    address: Optional[str] = None
    role: Optional[str] = None
    office_category: Optional[str] = None
    status: Optional[str] = None
    updated_by: str = "system"

    def changes(self) -> Dict[str, Any]:
        return {
            key: value for key, value in self.model_dump(exclude={"updated_by"}).items()
            if value is not None
        }


class AssignCustomersRequest(BaseModel):
    customer_ids: List[str]
    assigned_by: str = "system"
