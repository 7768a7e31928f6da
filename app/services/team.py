import logging
from typing import List, Optional, Tuple

from sqlalchemy.orm import Session

from app.core.errors import AuthorizationError, InvalidTransitionError, NotFoundError, PayloadError
from app.core.roles import require, resolve_role
from app.models.all_models import User, UserRole, UserStatus
from app.services import audit
from app.services.tenancy import clinic_id_of, scoped_query
from app.utils.auth import create_invite_token

logger = logging.getLogger(__name__)


def _member(db: Session, actor, user_id) -> User:
    member = scoped_query(db, User, actor).filter(User.id == user_id).first()
    if member is None:
        raise NotFoundError("Team member not found")
    return member


def _guard_super_admin(actor, member: User) -> None:
    if member.role == UserRole.SUPER_ADMIN and actor.role != UserRole.SUPER_ADMIN:
        raise AuthorizationError("Cannot modify super admin role")


def _resolve(role) -> UserRole:
    resolved = resolve_role(role)
    if resolved is None:
        raise PayloadError(f"Unknown role: {role!r}")
    return resolved


def list_members(db: Session, actor) -> List[User]:
    require(actor, "settings.view")
    return scoped_query(db, User, actor).order_by(User.full_name).all()


def invite_member(db: Session, actor, email: str, full_name: str, role, phone: Optional[str] = None,
                  department: Optional[str] = None, specialization: Optional[str] = None) -> Tuple[User, str]:
    """Create an invited account; the returned token lets them set a password."""
    require(actor, "settings.team")
    role = _resolve(role)
    if role == UserRole.SUPER_ADMIN:
        raise AuthorizationError("Super admin accounts cannot be created by invitation")
    if db.query(User).filter(User.email == email).first():
        raise InvalidTransitionError("Email already registered")

    member = User(
        clinic_id=clinic_id_of(actor),
        full_name=full_name,
        email=email,
        phone=phone,
        role=role,
        status=UserStatus.INVITED,
        department=department,
        specialization=specialization,
        invited_by=actor.id,
    )
    db.add(member)
    db.flush()
    audit.record(db, "team.invited", "user", member.id, actor=actor, details={"email": email, "role": role.value})
    db.commit()
    db.refresh(member)
    logger.info("%s invited %s as %s", actor.email, email, role.value)
    return member, create_invite_token(member)


def change_role(db: Session, actor, user_id, role) -> User:
    require(actor, "settings.team")
    member = _member(db, actor, user_id)
    role = _resolve(role)
    _guard_super_admin(actor, member)
    if role == UserRole.SUPER_ADMIN and actor.role != UserRole.SUPER_ADMIN:
        raise AuthorizationError("Only a super admin can grant super admin")

    previous = member.role
    member.role = role
    audit.record(db, "team.role_changed", "user", member.id, actor=actor,
                 details={"from": previous.value, "to": role.value})
    db.commit()
    db.refresh(member)
    return member


def change_status(db: Session, actor, user_id, new_status) -> User:
    require(actor, "settings.team")
    try:
        new_status = UserStatus(new_status)
    except ValueError:
        raise PayloadError(f"Unknown status: {new_status!r}")
    member = _member(db, actor, user_id)
    _guard_super_admin(actor, member)
    if member.id == actor.id:
        raise InvalidTransitionError("You cannot change your own account status")
    if new_status == UserStatus.INVITED:
        raise InvalidTransitionError("Accounts cannot be moved back to invited")

    previous = member.status
    member.status = new_status
    audit.record(db, "team.status_changed", "user", member.id, actor=actor,
                 details={"from": previous.value, "to": new_status.value})
    db.commit()
    db.refresh(member)
    return member
