"""Map free-form and legacy role labels onto canonical roles."""
import re
from typing import Optional, Union

from app.core.errors import AuthorizationError
from app.core.permissions import authorize
from app.models.all_models import UserRole, UserStatus

# keys are normalised with _role_key()
LEGACY_ROLE_MAP = {
    "superadmin": UserRole.SUPER_ADMIN,
    "super admin": UserRole.SUPER_ADMIN,
    "admin": UserRole.ADMIN,
    "clinic admin": UserRole.ADMIN,
    "doctor": UserRole.DOCTOR,
    "nurse": UserRole.NURSE,
    "receptionist": UserRole.RECEPTIONIST,
    "lab tech": UserRole.LAB_TECH,
    "labtech": UserRole.LAB_TECH,
    "lab technician": UserRole.LAB_TECH,
    "pharmacist": UserRole.PHARMACIST,
    "accountant": UserRole.ACCOUNTANT,
}


def _role_key(label: str) -> str:
    return re.sub(r"[\s_\-]+", " ", label.strip().lower())


def resolve_role(label: Union[UserRole, str, None]) -> Optional[UserRole]:
    if isinstance(label, UserRole):
        return label
    if not isinstance(label, str) or not label.strip():
        return None
    return LEGACY_ROLE_MAP.get(_role_key(label))


def actor_can(actor, permission: str) -> bool:
    """True only for an active actor whose role resolves and grants ``permission``."""
    if actor is None:
        return False
    if getattr(actor, "status", None) != UserStatus.ACTIVE:
        return False
    role = resolve_role(getattr(actor, "role", None))
    if role is None:
        return False
    return authorize(role, permission)


def require(actor, permission: str, message: Optional[str] = None) -> None:
    if not actor_can(actor, permission):
        raise AuthorizationError(
            message or f"You do not have permission to perform this action ({permission}).",
            {"permission": permission},
        )
