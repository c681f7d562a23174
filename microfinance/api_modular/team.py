"""
Team member endpoints
"""

from typing import Optional
from fastapi import APIRouter, HTTPException, Depends, status

from .system import BackOfficeSystem, get_back_office, http_error, tagged
from .schemas import CreateTeamMemberRequest, UpdateTeamMemberRequest, AssignCustomersRequest
from ..customers import OfficeCategory
from ..team import TeamRole


router = APIRouter()


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_member(
    request: CreateTeamMemberRequest,
    system: BackOfficeSystem = Depends(get_back_office)
):
    """Add a team member"""
    try:
        member = system.team_manager.create_member(
            name=request.name,
            phone=request.phone,
            login_id=request.login_id,
            role=TeamRole(request.role),
            office_category=OfficeCategory(request.office_category) if request.office_category else None,
            whatsapp_number=request.whatsapp_number,
            address=request.address,
            join_date=request.join_date,
            created_by=request.created_by
        )
    except ValueError as e:
        raise http_error(e)

    return member.to_dict()


@router.get("")
async def list_members(
    role: Optional[str] = None,
    office_category: Optional[str] = None,
    active_only: bool = False,
    system: BackOfficeSystem = Depends(get_back_office)
):
    try:
        members = system.team_manager.list_members(
            role=TeamRole(role) if role else None,
            office_category=OfficeCategory(office_category) if office_category else None,
            active_only=active_only
        )
    except ValueError as e:
        raise http_error(e)

    return tagged("team_members", [m.to_dict() for m in members])


@router.get("/{member_id}")
async def get_member(
    member_id: str,
    system: BackOfficeSystem = Depends(get_back_office)
):
    member = system.team_manager.get_member(member_id)
    if not member:
        raise HTTPException(status_code=404, detail="Team member not found")
    return member.to_dict()


@router.put("/{member_id}")
async def update_member(
    member_id: str,
    request: UpdateTeamMemberRequest,
    system: BackOfficeSystem = Depends(get_back_office)
):
    try:
        member = system.team_manager.update_member(member_id, request.changes(), updated_by=request.updated_by)
    except ValueError as e:
        raise http_error(e)
    return member.to_dict()


@router.post("/{member_id}/deactivate")
async def deactivate_member(
    member_id: str,
    system: BackOfficeSystem = Depends(get_back_office)
):
    try:
        return system.team_manager.deactivate_member(member_id).to_dict()
    except ValueError as e:
        raise http_error(e)


@router.post("/{member_id}/assignments", status_code=status.HTTP_201_CREATED)
async def assign_customers(
    member_id: str,
    request: AssignCustomersRequest,
    system: BackOfficeSystem = Depends(get_back_office)
):
    """Place customers with a recovery agent"""
    try:
        assignments = system.team_manager.assign_customers(
            member_id, request.customer_ids, assigned_by=request.assigned_by
        )
    except ValueError as e:
        raise http_error(e)

    return tagged("assignments", [a.to_dict() for a in assignments])


@router.get("/{member_id}/assignments")
async def list_assignments(
    member_id: str,
    system: BackOfficeSystem = Depends(get_back_office)
):
    try:
        system.team_manager.require_member(member_id)
    except ValueError as e:
        raise http_error(e)

    return tagged("assignments", [a.to_dict() for a in system.team_manager.list_assignments(member_id)])
