"""Role -> capability matrix.

Capabilities are ``"<resource>.<action>"`` strings. A grant of
``"<resource>.*"`` covers every action on that resource and
``"super_admin.*"`` covers everything.
"""
from typing import Dict, FrozenSet, List, NamedTuple, Optional, Union

from app.models.all_models import UserRole

SUPER_ADMIN_WILDCARD = "super_admin.*"


class Capability(NamedTuple):
    resource: str
    action: str

    @classmethod
    def parse(cls, permission: str) -> Optional["Capability"]:
        """Split ``"billing.manage"``; ``None`` for anything malformed."""
        if not isinstance(permission, str) or "." not in permission:
            return None
        resource, action = permission.split(".", 1)
        if not resource or not action:
            return None
        return cls(resource, action)

    def __str__(self) -> str:
        return f"{self.resource}.{self.action}"


PERMISSION_MATRIX: Dict[UserRole, FrozenSet[str]] = {
    UserRole.SUPER_ADMIN: frozenset([
        SUPER_ADMIN_WILDCARD,
        "super_admin.clinics",
        "super_admin.impersonate",
        "super_admin.suspend",
        "super_admin.delete",
    ]),
    UserRole.ADMIN: frozenset([
        "patients.*",
        "appointments.*",
        "visits.*",
        "inventory.*",
        "pharmacy.*",
        "billing.*",
        "reports.*",
        "sms.*",
        "settings.*",
    ]),
    UserRole.DOCTOR: frozenset([
        "patients.view",
        "patients.create",
        "patients.edit",
        "appointments.view",
        "appointments.create",
        "appointments.edit",
        "visits.view",
        "visits.create",
        "visits.edit",
        "visits.complete",
        "inventory.view",
        "pharmacy.view",
        "pharmacy.dispense",
        "reports.view",
    ]),
    UserRole.NURSE: frozenset([
        "patients.view",
        "patients.create",
        "patients.edit",
        "appointments.view",
        "visits.view",
        "visits.create",
        "visits.edit",
        "inventory.view",
    ]),
    UserRole.RECEPTIONIST: frozenset([
        "patients.view",
        "patients.create",
        "patients.edit",
        "appointments.view",
        "appointments.create",
        "appointments.edit",
        "appointments.cancel",
        "visits.view",
        "visits.create",
        "billing.view",
        "sms.send",
    ]),
    UserRole.PHARMACIST: frozenset([
        "patients.view",
        "visits.view",
        "inventory.view",
        "inventory.create",
        "inventory.edit",
        "inventory.adjust",
        "pharmacy.view",
        "pharmacy.dispense",
        "reports.view",
    ]),
    UserRole.LAB_TECH: frozenset([
        "patients.view",
        "visits.view",
        "visits.edit",
        "inventory.view",
        "reports.view",
    ]),
    UserRole.ACCOUNTANT: frozenset([
        "patients.view",
        "appointments.view",
        "visits.view",
        "inventory.view",
        "billing.view",
        "billing.manage",
        "reports.view",
        "reports.export",
    ]),
}

_ROLES_BY_KEY = {role.value.lower(): role for role in PERMISSION_MATRIX}


def canonical_role(role: Union[UserRole, str, None]) -> Optional[UserRole]:
    """Case-insensitive match against the matrix keys. No fuzzy matching."""
    if role is None:
        return None
    if isinstance(role, UserRole):
        return role
    if not isinstance(role, str):
        return None
    return _ROLES_BY_KEY.get(role.strip().lower())


def role_permissions(role: Union[UserRole, str, None]) -> FrozenSet[str]:
    matched = canonical_role(role)
    if matched is None:
        return frozenset()
    return PERMISSION_MATRIX[matched]


def authorize(role: Union[UserRole, str, None], permission: Union[str, Capability]) -> bool:
    grants = role_permissions(role)
    if not grants:
        return False

    # malformed strings deny for every role, super admin included
    capability = permission if isinstance(permission, Capability) else Capability.parse(permission)
    if capability is None:
        return False

    if SUPER_ADMIN_WILDCARD in grants:
        return True

    if str(capability) in grants:
        return True

    return f"{capability.resource}.*" in grants


def can(role: Union[UserRole, str, None], resource: str, action: str) -> bool:
    return authorize(role, f"{resource}.{action}")


def roles_with_permission(permission: str) -> List[UserRole]:
    return [role for role in PERMISSION_MATRIX if authorize(role, permission)]
