from pydantic import BaseModel, EmailStr, UUID4, Field
from typing import Optional
from datetime import datetime

from app.models.all_models import UserRole, UserStatus


class TeamMemberResponse(BaseModel):
    id: UUID4
    email: EmailStr
    full_name: str
    phone: Optional[str] = None
    role: UserRole
    status: UserStatus
    department: Optional[str] = None
    specialization: Optional[str] = None
    last_login_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True

class InviteRequest(BaseModel):
    email: EmailStr
    full_name: str = Field(..., min_length=2, max_length=200)
    # free text; legacy labels such as "lab technician" are accepted
    role: str
    phone: Optional[str] = None
    department: Optional[str] = None
    specialization: Optional[str] = None

class InviteResponse(BaseModel):
    member: TeamMemberResponse
    invite_token: str

class RoleChangeRequest(BaseModel):
    role: str

class StatusChangeRequest(BaseModel):
    status: UserStatus
