"""
Team Management Module

Field staff of the back office: recovery agents who collect EMIs and the
data-entry operators who submit requests. Customers are assigned to recovery
agents for collection.
"""

from datetime import date, datetime, timezone
from dataclasses import dataclass
from typing import Any, Dict, List, Optional
from enum import Enum
import logging
import uuid

from .storage import StorageInterface, StorageRecord
from .audit import AuditTrail, AuditEventType
from .exceptions import NotFoundError
from .customers import PHONE_PATTERN, OfficeCategory


logger = logging.getLogger(__name__)


class TeamRole(Enum):
    RECOVERY_TEAM = "Recovery Team"
    DATA_ENTRY_OPERATOR = "Data Entry Operator"


class MemberStatus(Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"


@dataclass
class TeamMember(StorageRecord):
    """Staff member with a back-office login"""
    name: str
    phone: str
    login_id: str
    role: TeamRole
    office_category: Optional[OfficeCategory] = None
    whatsapp_number: Optional[str] = None
    address: str = ""
    status: MemberStatus = MemberStatus.ACTIVE
    join_date: Optional[date] = None

    def __post_init__(self):
        self.name = (self.name or "").strip()
        self.login_id = (self.login_id or "").strip()
        self.phone = (self.phone or "").strip()
        if not self.name:
            raise ValueError("Team member name is required")
        if not self.login_id:
            raise ValueError("Login id is required")
        if not PHONE_PATTERN.match(self.phone):
            raise ValueError("Phone number must be 10 digits")
        self.role = TeamRole(self.role)
        self.status = MemberStatus(self.status)
        if self.office_category:
            self.office_category = OfficeCategory(self.office_category)
        else:
            self.office_category = None
        if isinstance(self.join_date, str):
            self.join_date = date.fromisoformat(self.join_date)

    @property
    def is_active(self) -> bool:
        return self.status == MemberStatus.ACTIVE

    def to_dict(self) -> Dict[str, Any]:
        result = super().to_dict()
        result['role'] = self.role.value
        result['status'] = self.status.value
        result['office_category'] = self.office_category.value if self.office_category else None
        result['join_date'] = self.join_date.isoformat() if self.join_date else None
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'TeamMember':
        data = dict(data)
        data['created_at'] = datetime.fromisoformat(data['created_at'])
        data['updated_at'] = datetime.fromisoformat(data['updated_at'])
        return cls(**data)


@dataclass
class CustomerAssignment(StorageRecord):
    """A customer placed with a recovery agent for collection"""
    customer_id: str
    team_member_id: str
    assigned_by: str

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'CustomerAssignment':
        data = dict(data)
        data['created_at'] = datetime.fromisoformat(data['created_at'])
        data['updated_at'] = datetime.fromisoformat(data['updated_at'])
        return cls(**data)


MEMBER_FIELDS = ('name', 'phone', 'whatsapp_number', 'address', 'role', 'office_category', 'status')


class TeamManager:
    """
    Manages team members and their customer assignments
    """

    def __init__(self, storage: StorageInterface, audit_trail: AuditTrail, customer_manager=None):
        self.storage = storage
        self.audit_trail = audit_trail
        self.customer_manager = customer_manager
        self.table_name = "team_members"
        self.assignments_table = "assignments"

    def create_member(
        self,
        name: str,
        phone: str,
        login_id: str,
        role: TeamRole,
        office_category: Optional[OfficeCategory] = None,
        whatsapp_number: Optional[str] = None,
        address: str = "",
        join_date: Optional[date] = None,
        created_by: str = "system"
    ) -> TeamMember:
        """
        Add a team member

        Raises:
            ValueError: Invalid fields or login id already taken
        """
        if self.get_member_by_login(login_id.strip()):
            raise ValueError(f"Login id {login_id} is already in use")

        now = datetime.now(timezone.utc)
        member = TeamMember(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            name=name,
            phone=phone,
            login_id=login_id,
            role=role,
            office_category=office_category,
            whatsapp_number=whatsapp_number,
            address=address,
            join_date=join_date or now.date()
        )
        self._save_member(member)

        self.audit_trail.log_event(
            event_type=AuditEventType.TEAM_MEMBER_CREATED,
            entity_type="team_member",
            entity_id=member.id,
            metadata={"login_id": member.login_id, "role": member.role.value},
            user_id=created_by
        )
        logger.info("Added %s %s", member.role.value, member.login_id)

        return member

    def get_member(self, member_id: str) -> Optional[TeamMember]:
        data = self.storage.load(self.table_name, member_id)
        return TeamMember.from_dict(data) if data else None

    def require_member(self, member_id: str) -> TeamMember:
        member = self.get_member(member_id)
        if not member:
            raise NotFoundError(f"Team member {member_id} not found")
        return member

    def get_member_by_login(self, login_id: str) -> Optional[TeamMember]:
        found = self.storage.find_one(self.table_name, {"login_id": login_id})
        return TeamMember.from_dict(found) if found else None

    def update_member(self, member_id: str, changes: Dict[str, Any], updated_by: str = "system") -> TeamMember:
        """Edit a team member; the login id cannot change"""
        unknown = set(changes) - set(MEMBER_FIELDS)
        if unknown:
            raise ValueError(f"Cannot update fields: {', '.join(sorted(unknown))}")

        member = self.require_member(member_id)
        data = member.to_dict()
        data.update({key: value.value if isinstance(value, Enum) else value for key, value in changes.items()})
        updated = TeamMember.from_dict(data)
        updated.touch()
        self._save_member(updated)

        self.audit_trail.log_event(
            event_type=AuditEventType.TEAM_MEMBER_UPDATED,
            entity_type="team_member",
            entity_id=member_id,
            metadata={"changes": changes},
            user_id=updated_by
        )
        return updated

    def deactivate_member(self, member_id: str, updated_by: str = "system") -> TeamMember:
        return self.update_member(member_id, {"status": MemberStatus.INACTIVE}, updated_by)

    def list_members(
        self,
        role: Optional[TeamRole] = None,
        office_category: Optional[OfficeCategory] = None,
        active_only: bool = False
    ) -> List[TeamMember]:
        members = [TeamMember.from_dict(data) for data in self.storage.load_all(self.table_name)]
        if role:
            members = [m for m in members if m.role == role]
        if office_category:
            members = [m for m in members if m.office_category == office_category]
        if active_only:
            members = [m for m in members if m.is_active]
        return sorted(members, key=lambda m: m.name.lower())

    def assign_customers(self, member_id: str, customer_ids: List[str], assigned_by: str = "system") -> List[CustomerAssignment]:
        """
        Place customers with a recovery agent

        A customer has at most one agent; assigning moves the customer from
        any previous agent.

        Raises:
            ValueError: Unknown or inactive member, member not in the recovery
                team, or unknown customer
        """
        member = self.require_member(member_id)
        if member.role != TeamRole.RECOVERY_TEAM:
            raise ValueError(f"{member.login_id} is not in the recovery team")
        if not member.is_active:
            raise ValueError(f"{member.login_id} is inactive")

        assignments = []
        with self.storage.atomic():
            for customer_id in customer_ids:
                if self.customer_manager is not None:
                    self.customer_manager.require_customer(customer_id)

                for previous in self.storage.find(self.assignments_table, {"customer_id": customer_id}):
                    self.storage.delete(self.assignments_table, previous['id'])

                now = datetime.now(timezone.utc)
                assignment = CustomerAssignment(
                    id=str(uuid.uuid4()),
                    created_at=now,
                    updated_at=now,
                    customer_id=customer_id,
                    team_member_id=member.id,
                    assigned_by=assigned_by
                )
                self.storage.save(self.assignments_table, assignment.id, assignment.to_dict())
                assignments.append(assignment)

                self.audit_trail.log_event(
                    event_type=AuditEventType.CUSTOMER_ASSIGNED,
                    entity_type="customer",
                    entity_id=customer_id,
                    metadata={"team_member_id": member.id, "login_id": member.login_id},
                    user_id=assigned_by
                )

        logger.info("Assigned %d customers to %s", len(assignments), member.login_id)
        return assignments

    def list_assignments(self, member_id: Optional[str] = None) -> List[CustomerAssignment]:
        filters = {"team_member_id": member_id} if member_id else {}
        return [CustomerAssignment.from_dict(data) for data in self.storage.find(self.assignments_table, filters)]

    def assigned_member(self, customer_id: str) -> Optional[TeamMember]:
        found = self.storage.find_one(self.assignments_table, {"customer_id": customer_id})
        return self.get_member(found['team_member_id']) if found else None

    def _save_member(self, member: TeamMember) -> None:
        self.storage.save(self.table_name, member.id, member.to_dict())
