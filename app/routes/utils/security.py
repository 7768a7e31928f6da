from fastapi import Depends, HTTPException, status

from app.core.errors import ClinicError
from app.core.roles import actor_can
from app.models.all_models import User
from app.utils.auth import get_current_user


def http_error(exc: ClinicError) -> HTTPException:
    """Translate a domain failure into the HTTP error the client sees."""
    return HTTPException(status_code=exc.status_code, detail=exc.to_dict())


def require_permission(permission: str):
    """Dependency factory: the current user must hold ``permission``.

    Usage:
    @router.post("/inventory")
    async def create_item(user: User = Depends(require_permission("inventory.create"))):
        ...
    """
    def permission_checker(current_user: User = Depends(get_current_user)) -> User:
        if not actor_can(current_user, permission):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail={
                    "kind": "authorization_error",
                    "message": "Insufficient permissions",
                    "permission": permission,
                },
            )
        return current_user
    return permission_checker
