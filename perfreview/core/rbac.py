from fastapi import Depends

from perfreview.core.errors import AuthorizationError
from perfreview.core.security import get_current_user
from perfreview.models.user import User


def has_role(user: User, *names: str) -> bool:
    return user.role in names


def require_roles(*required: str):
    """
    Usage:
      Depends(require_roles("ADMIN"))
      Depends(require_roles("ADMIN", "MANAGER"))  # any-of
    """
    required_set = set(required)

    def _dep(user: User = Depends(get_current_user)) -> User:
        if user.role not in required_set:
            raise AuthorizationError(
                f"Forbidden. Requires one of: {sorted(required_set)}",
                details={"required_roles": sorted(required_set)},
            )
        return user

    return _dep
