from fastapi import APIRouter, BackgroundTasks, Depends, status
from sqlalchemy.orm import Session
from typing import List
from uuid import UUID

from app.core.errors import ClinicError
from app.database import get_db
from app.models.all_models import User
from app.routes.utils.security import http_error
from app.schemas.user import (
    TeamMemberResponse,
    InviteRequest,
    InviteResponse,
    RoleChangeRequest,
    StatusChangeRequest,
)
from app.services import team
from app.services.notifications import NotificationService, get_notifier
from app.utils.auth import get_current_user

router = APIRouter(prefix="/team", tags=["team"])


def invitation_email(member: User, clinic_name: str, token: str) -> str:
    return f"""
    Dear {member.full_name},

    You have been invited to join {clinic_name} on JuaAfya as {member.role.value}.
    Use the invitation code below to set your password:

    {token}

    Best regards,
    The JuaAfya Team
    """

@router.get("", response_model=List[TeamMemberResponse])
async def list_team(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    try:
        return team.list_members(db, current_user)
    except ClinicError as exc:
        raise http_error(exc)

@router.post("/invite", response_model=InviteResponse, status_code=status.HTTP_201_CREATED)
async def invite_member(
    invite: InviteRequest,
    background_tasks: BackgroundTasks,
    current_user: User = Depends(get_current_user),
    notifier: NotificationService = Depends(get_notifier),
    db: Session = Depends(get_db)
):
    try:
        member, token = team.invite_member(
            db, current_user, invite.email, invite.full_name, invite.role,
            phone=invite.phone, department=invite.department, specialization=invite.specialization,
        )
    except ClinicError as exc:
        raise http_error(exc)

    background_tasks.add_task(
        notifier.send_email,
        member.email,
        f"You're invited to {current_user.clinic.name}",
        invitation_email(member, current_user.clinic.name, token),
    )
    return InviteResponse(member=TeamMemberResponse.model_validate(member), invite_token=token)

@router.put("/{user_id}/role", response_model=TeamMemberResponse)
async def change_role(
    user_id: UUID,
    change: RoleChangeRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    try:
        return team.change_role(db, current_user, user_id, change.role)
    except ClinicError as exc:
        raise http_error(exc)

@router.put("/{user_id}/status", response_model=TeamMemberResponse)
async def change_status(
    user_id: UUID,
    change: StatusChangeRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    try:
        return team.change_status(db, current_user, user_id, change.status)
    except ClinicError as exc:
        raise http_error(exc)
