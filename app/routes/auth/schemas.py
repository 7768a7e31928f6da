# app/routes/auth/schemas.py

from pydantic import BaseModel, EmailStr, field_validator, Field
from datetime import datetime
from typing import Optional
from uuid import UUID
import re

from app.models.all_models import UserRole, UserStatus, ClinicPlan, ClinicStatus


def check_password_strength(v: str) -> str:
    if len(v) < 8:
        raise ValueError('Password must be at least 8 characters long')
    if not re.search(r'[A-Z]', v):
        raise ValueError('Password must contain at least one uppercase letter')
    if not re.search(r'[a-z]', v):
        raise ValueError('Password must contain at least one lowercase letter')
    if not re.search(r'\d', v):
        raise ValueError('Password must contain at least one digit')
    if not re.search(r'[!@#$%^&*(),.?":{}|<>]', v):
        raise ValueError('Password must contain at least one special character')
    return v


def normalize_phone(v: Optional[str]) -> Optional[str]:
    if v is None:
        return v
    # Remove any spaces or dashes
    phone = re.sub(r'[\s\-]', '', v)
    if not re.match(r'^\+?\d{9,15}$', phone):
        raise ValueError('Invalid phone number format')
    return phone

# ================================
# REQUEST SCHEMAS
# ================================

class ClinicSignupRequest(BaseModel):
    clinic_name: str = Field(..., min_length=2, max_length=150)
    full_name: str = Field(..., min_length=2, max_length=200)
    email: EmailStr
    phone: Optional[str] = None
    password: str = Field(..., min_length=8)
    country: Optional[str] = "Kenya"

    @field_validator('password')
    def validate_password(cls, v):
        return check_password_strength(v)

    @field_validator('phone')
    def validate_phone(cls, v):
        return normalize_phone(v)

class UserLoginRequest(BaseModel):
    email: EmailStr
    password: str

class RefreshTokenRequest(BaseModel):
    refresh_token: str

class AcceptInvitationRequest(BaseModel):
    token: str
    password: str = Field(..., min_length=8)
    full_name: Optional[str] = None

    @field_validator('password')
    def validate_password(cls, v):
        return check_password_strength(v)

class ChangePasswordRequest(BaseModel):
    current_password: str
    new_password: str = Field(..., min_length=8)

    @field_validator('new_password')
    def validate_password(cls, v):
        return check_password_strength(v)

# ================================
# RESPONSE SCHEMAS
# ================================

class ClinicSummary(BaseModel):
    id: UUID
    name: str
    slug: str
    plan: ClinicPlan
    status: ClinicStatus
    currency: Optional[str] = None

    class Config:
        from_attributes = True

class UserProfileResponse(BaseModel):
    id: UUID
    clinic_id: Optional[UUID] = None
    full_name: str
    email: str
    phone: Optional[str] = None
    role: UserRole
    status: UserStatus
    department: Optional[str] = None
    specialization: Optional[str] = None
    last_login_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    clinic: Optional[ClinicSummary] = None

    class Config:
        from_attributes = True

class UserLoginResponse(BaseModel):
    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    message: str
    user: UserProfileResponse

class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    expires_in: int

class MessageResponse(BaseModel):
    message: str
    success: bool = True
