"""
Customer Management Module

Manages borrower profiles: contact numbers, business and area, the unique
customer number used on passbooks, risk category and the office that
services the customer.
"""

from datetime import datetime, timezone
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
from enum import Enum
import logging
import uuid
import re

from .storage import StorageInterface, StorageRecord
from .audit import AuditTrail, AuditEventType
from .exceptions import NotFoundError


logger = logging.getLogger(__name__)

PHONE_PATTERN = re.compile(r'^\d{10}$')


class CustomerCategory(Enum):
    """Risk grade assigned at onboarding"""
    A = "A"
    B = "B"
    C = "C"


class OfficeCategory(Enum):
    """Branch office servicing a customer"""
    OFFICE_1 = "Office 1"
    OFFICE_2 = "Office 2"


class CustomerStatus(Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    PENDING = "pending"


@dataclass
class Customer(StorageRecord):
    """Borrower profile"""
    name: str
    customer_number: str
    phone: List[str] = field(default_factory=list)
    whatsapp_number: Optional[str] = None
    business_name: str = ""
    area: str = ""
    address: str = ""
    email: Optional[str] = None
    category: CustomerCategory = CustomerCategory.A
    office_category: OfficeCategory = OfficeCategory.OFFICE_1
    status: CustomerStatus = CustomerStatus.ACTIVE
    is_active: bool = True
    created_by: str = "system"
    notes: Optional[str] = None

    def __post_init__(self):
        self.name = (self.name or "").strip()
        self.customer_number = (self.customer_number or "").strip()
        if not self.name:
            raise ValueError("Customer name is required")
        if not self.customer_number:
            raise ValueError("Customer number is required")

        self.phone = [number.strip() for number in self.phone if number and number.strip()]
        if not self.phone:
            raise ValueError("At least one phone number is required")
        for number in self.phone:
            if not PHONE_PATTERN.match(number):
                raise ValueError(f"Phone number must be 10 digits: {number}")

        if self.whatsapp_number:
            self.whatsapp_number = self.whatsapp_number.strip()
            if not PHONE_PATTERN.match(self.whatsapp_number):
                raise ValueError("WhatsApp number must be 10 digits")
        else:
            self.whatsapp_number = None

        if self.email:
            self.email = self.email.strip().lower()
            if '@' not in self.email:
                raise ValueError("Invalid email format")

        self.category = CustomerCategory(self.category) if not isinstance(self.category, CustomerCategory) else self.category
        self.office_category = OfficeCategory(self.office_category) if not isinstance(self.office_category, OfficeCategory) else self.office_category
        self.status = CustomerStatus(self.status) if not isinstance(self.status, CustomerStatus) else self.status

    @property
    def primary_phone(self) -> str:
        return self.phone[0]

    @property
    def has_whatsapp(self) -> bool:
        return bool(self.whatsapp_number)

    def to_dict(self) -> Dict[str, Any]:
        result = super().to_dict()
        result['category'] = self.category.value
        result['office_category'] = self.office_category.value
        result['status'] = self.status.value
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Customer':
        data = dict(data)
        data['created_at'] = datetime.fromisoformat(data['created_at'])
        data['updated_at'] = datetime.fromisoformat(data['updated_at'])
        return cls(**data)


UPDATABLE_FIELDS = (
    'name', 'phone', 'whatsapp_number', 'business_name', 'area', 'address',
    'email', 'category', 'office_category', 'status', 'notes'
)


class CustomerManager:
    """
    Manages customer lifecycle: onboarding, profile edits and deactivation
    """

    def __init__(self, storage: StorageInterface, audit_trail: AuditTrail):
        self.storage = storage
        self.audit_trail = audit_trail
        self.table_name = "customers"

    def create_customer(
        self,
        name: str,
        customer_number: str,
        phone: List[str],
        business_name: str,
        area: str,
        address: str,
        whatsapp_number: Optional[str] = None,
        email: Optional[str] = None,
        category: CustomerCategory = CustomerCategory.A,
        office_category: OfficeCategory = OfficeCategory.OFFICE_1,
        created_by: str = "system"
    ) -> Customer:
        """
        Create a new customer

        Args:
            name: Customer's name
            customer_number: Unique passbook number
            phone: One or more 10-digit phone numbers
            business_name: Business run by the customer
            area: Collection area
            address: Postal address
            whatsapp_number: Optional 10-digit WhatsApp number
            email: Optional email address
            category: Risk grade A, B or C
            office_category: Servicing office
            created_by: Operator creating the record

        Returns:
            Created Customer object

        Raises:
            ValueError: Invalid fields or customer number already in use
        """
        if self.get_customer_by_number(customer_number.strip()):
            raise ValueError(f"Customer number {customer_number} already exists")

        now = datetime.now(timezone.utc)
        customer = Customer(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            name=name,
            customer_number=customer_number,
            phone=list(phone),
            whatsapp_number=whatsapp_number,
            business_name=business_name,
            area=area,
            address=address,
            email=email,
            category=category,
            office_category=office_category,
            created_by=created_by
        )

        self._save_customer(customer)

        self.audit_trail.log_event(
            event_type=AuditEventType.CUSTOMER_CREATED,
            entity_type="customer",
            entity_id=customer.id,
            metadata={
                "name": customer.name,
                "customer_number": customer.customer_number,
                "office_category": customer.office_category.value
            },
            user_id=created_by
        )
        logger.info("Created customer %s (%s)", customer.customer_number, customer.id)

        return customer

    def get_customer(self, customer_id: str) -> Optional[Customer]:
        """Get customer by ID"""
        customer_dict = self.storage.load(self.table_name, customer_id)
        if customer_dict:
            return Customer.from_dict(customer_dict)
        return None

    def require_customer(self, customer_id: str) -> Customer:
        customer = self.get_customer(customer_id)
        if not customer:
            raise NotFoundError(f"Customer {customer_id} not found")
        return customer

    def get_customer_by_number(self, customer_number: str) -> Optional[Customer]:
        """Get customer by customer number"""
        found = self.storage.find_one(self.table_name, {"customer_number": customer_number})
        return Customer.from_dict(found) if found else None

    def update_customer(self, customer_id: str, changes: Dict[str, Any], updated_by: str = "system") -> Customer:
        """
        Apply profile edits

        Only the fields in ``UPDATABLE_FIELDS`` may change; the customer
        number is permanent.
        """
        customer = self.require_customer(customer_id)

        unknown = set(changes) - set(UPDATABLE_FIELDS)
        if unknown:
            raise ValueError(f"Cannot update fields: {', '.join(sorted(unknown))}")

        old_data = {key: customer.to_dict().get(key) for key in changes}
        data = customer.to_dict()
        data.update({key: value.value if isinstance(value, Enum) else value for key, value in changes.items()})
        updated = Customer.from_dict(data)
        updated.touch()

        self._save_customer(updated)

        self.audit_trail.log_event(
            event_type=AuditEventType.CUSTOMER_UPDATED,
            entity_type="customer",
            entity_id=customer.id,
            metadata={
                "old_data": old_data,
                "new_data": {key: updated.to_dict().get(key) for key in changes}
            },
            user_id=updated_by
        )

        return updated

    def deactivate_customer(self, customer_id: str, reason: str, updated_by: str = "system") -> Customer:
        """Deactivate a customer account"""
        customer = self.require_customer(customer_id)

        customer.is_active = False
        customer.status = CustomerStatus.INACTIVE
        customer.touch()

        self._save_customer(customer)

        self.audit_trail.log_event(
            event_type=AuditEventType.CUSTOMER_DEACTIVATED,
            entity_type="customer",
            entity_id=customer.id,
            metadata={"reason": reason},
            user_id=updated_by
        )

        return customer

    def list_customers(
        self,
        office_category: Optional[OfficeCategory] = None,
        status: Optional[CustomerStatus] = None,
        category: Optional[CustomerCategory] = None,
        search: Optional[str] = None,
        include_inactive: bool = False
    ) -> List[Customer]:
        """
        List customers, optionally filtered

        ``search`` matches name, customer number, business name, area or any
        phone number, case-insensitively.
        """
        customers = [Customer.from_dict(data) for data in self.storage.load_all(self.table_name)]

        if not include_inactive:
            customers = [c for c in customers if c.is_active]

        if office_category:
            customers = [c for c in customers if c.office_category == office_category]

        if status:
            customers = [c for c in customers if c.status == status]

        if category:
            customers = [c for c in customers if c.category == category]

        if search:
            needle = search.strip().lower()
            customers = [
                c for c in customers
                if needle in c.name.lower()
                or needle in c.customer_number.lower()
                or needle in c.business_name.lower()
                or needle in c.area.lower()
                or any(needle in number for number in c.phone)
            ]

        return sorted(customers, key=lambda c: c.customer_number)

    def _save_customer(self, customer: Customer) -> None:
        self.storage.save(self.table_name, customer.id, customer.to_dict())
