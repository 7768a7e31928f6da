# app/routes/auth/router.py

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session
import logging
import re
import uuid
from email_validator import validate_email, EmailNotValidError

from app.database import get_db
from app.models.all_models import User, Clinic, UserRole, UserStatus, ClinicStatus, clinic_now
from app.config import settings
from app.routes.auth.schemas import (
    ClinicSignupRequest,
    UserLoginRequest,
    UserLoginResponse,
    RefreshTokenRequest,
    AcceptInvitationRequest,
    ChangePasswordRequest,
    UserProfileResponse,
    TokenResponse,
    MessageResponse,
)
from app.services import audit
from app.utils.auth import (
    create_access_token,
    token_pair,
    verify_token,
    hash_password,
    verify_password,
    get_current_user
)

router = APIRouter(prefix="/auth", tags=["Authentication"])
logger = logging.getLogger(__name__)


def _unique_slug(db: Session, name: str) -> str:
    base = re.sub(r'[^a-z0-9]+', '-', name.lower()).strip('-') or "clinic"
    slug = base
    while db.query(Clinic).filter(Clinic.slug == slug).first():
        slug = f"{base}-{uuid.uuid4().hex[:6]}"
    return slug


def _load_user(db: Session, user_id) -> User:
    try:
        user_id = uuid.UUID(str(user_id))
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token"
        )
    return db.query(User).filter(User.id == user_id).first()

# ================================
# SIGNUP ENDPOINTS
# ================================

@router.post("/signup", response_model=UserLoginResponse, status_code=status.HTTP_201_CREATED)
async def signup(
    signup_data: ClinicSignupRequest,
    db: Session = Depends(get_db)
):
    """
    Register a new clinic together with its first Admin account.
    """
    try:
        valid = validate_email(signup_data.email, check_deliverability=False)
        email = valid.normalized
    except EmailNotValidError:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail="Invalid email format"
        )

    if db.query(User).filter(User.email == email).first():
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Email already registered"
        )

    clinic = Clinic(
        name=signup_data.clinic_name,
        slug=_unique_slug(db, signup_data.clinic_name),
        email=email,
        phone=signup_data.phone,
        country=signup_data.country,
        status=ClinicStatus.ACTIVE,
        settings={"consultationFee": settings.DEFAULT_CONSULTATION_FEE},
    )
    db.add(clinic)
    db.flush()

    admin = User(
        clinic_id=clinic.id,
        full_name=signup_data.full_name,
        email=email,
        phone=signup_data.phone,
        password=hash_password(signup_data.password),
        role=UserRole.ADMIN,
        status=UserStatus.ACTIVE,
        last_login_at=clinic_now(),
    )
    db.add(admin)
    db.flush()
    audit.record(db, "clinic.created", "clinic", clinic.id, actor=admin, details={"name": clinic.name})
    db.commit()
    db.refresh(admin)

    logger.info("Clinic %s registered by %s", clinic.slug, email)
    return UserLoginResponse(
        **token_pair(admin),
        message="Clinic registered successfully",
        user=UserProfileResponse.model_validate(admin),
    )

@router.post("/accept-invitation", response_model=UserLoginResponse)
async def accept_invitation(
    invitation: AcceptInvitationRequest,
    db: Session = Depends(get_db)
):
    """
    Exchange an invitation token for a password and an active account.
    """
    payload = verify_token(invitation.token, token_type="invite")
    user = _load_user(db, payload.get("sub"))
    if user is None or user.status != UserStatus.INVITED:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invitation is no longer valid"
        )

    user.password = hash_password(invitation.password)
    if invitation.full_name:
        user.full_name = invitation.full_name
    user.status = UserStatus.ACTIVE
    user.last_login_at = clinic_now()
    audit.record(db, "team.invitation_accepted", "user", user.id, actor=user)
    db.commit()
    db.refresh(user)

    return UserLoginResponse(
        **token_pair(user),
        message="Invitation accepted",
        user=UserProfileResponse.model_validate(user),
    )

# ================================
# LOGIN ENDPOINTS
# ================================

@router.post("/login", response_model=UserLoginResponse)
async def login(
    login_data: UserLoginRequest,
    db: Session = Depends(get_db)
):
    """
    Authenticate user and return access tokens.
    """
    user = db.query(User).filter(User.email == login_data.email).first()

    if not user or not verify_password(login_data.password, user.password):
        logger.info("Failed login for %s", login_data.email)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid credentials"
        )

    # Check if account is active
    if not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Account is not active. Please contact your clinic administrator."
        )

    user.last_login_at = clinic_now()
    db.commit()
    db.refresh(user)

    return UserLoginResponse(
        **token_pair(user),
        message="Login successful",
        user=UserProfileResponse.model_validate(user),
    )

@router.post("/change-password", response_model=MessageResponse)
async def change_password(
    password_data: ChangePasswordRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """
    Change password for authenticated user.
    """
    if not verify_password(password_data.current_password, current_user.password):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Current password is incorrect"
        )

    current_user.password = hash_password(password_data.new_password)
    db.commit()

    return MessageResponse(message="Password changed successfully")

# ================================
# TOKEN MANAGEMENT
# ================================

@router.post("/refresh-token", response_model=TokenResponse)
async def refresh_token(
    token_data: RefreshTokenRequest,
    db: Session = Depends(get_db)
):
    """
    Refresh access token using refresh token.
    """
    payload = verify_token(token_data.refresh_token, token_type="refresh")
    user = _load_user(db, payload.get("sub"))
    if not user or not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not found or inactive"
        )

    return TokenResponse(
        access_token=create_access_token({"sub": str(user.id), "role": user.role.value}),
        expires_in=settings.ACCESS_TOKEN_EXPIRE_MINUTES * 60,
    )

# ================================
# PROFILE ENDPOINTS
# ================================

@router.get("/me", response_model=UserProfileResponse)
async def get_current_user_profile(
    current_user: User = Depends(get_current_user)
):
    """
    Get current user profile information.
    """
    return UserProfileResponse.model_validate(current_user)
