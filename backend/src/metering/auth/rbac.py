"""Role-based access control for API endpoints.

Two roles exist: ``USER`` (every authenticated caller) and ``ADMIN``
(plan administration, overrides, audit log). ADMIN inherits USER.
"""
from enum import Enum
from functools import wraps
from typing import Callable, List

import structlog
from fastapi import HTTPException, status

logger = structlog.get_logger(__name__)


class Role(str, Enum):
    """Application roles."""

    USER = "USER"
    ADMIN = "ADMIN"


# Role hierarchy: higher roles inherit permissions from lower roles
ROLE_HIERARCHY = {
    Role.ADMIN: [Role.ADMIN, Role.USER],
    Role.USER: [Role.USER],
}


def check_role_hierarchy(user_role: str, required_roles: List[Role]) -> bool:
    """
    Check if user role satisfies any of the required roles (considering hierarchy).

    Args:
        user_role: User's role
        required_roles: List of acceptable roles

    Returns:
        True if user role satisfies requirement
    """
    try:
        user_role_enum = Role(user_role)
    except ValueError:
        return False

    allowed = ROLE_HIERARCHY.get(user_role_enum, [])
    return any(role in allowed for role in required_roles)


def require_roles(*required_roles: Role):
    """
    Decorator to require specific roles for endpoint access.

    Usage:
        @router.post("")
        @require_roles(Role.ADMIN)
        async def create_plan(..., current_user: dict = Depends(get_current_user)):
            ...

    Raises:
        HTTPException: 401 without a user, 403 without the role
    """

    def decorator(func: Callable) -> Callable:
        @wraps(func)
        async def wrapper(*args, **kwargs):
            current_user = kwargs.get("current_user")

            if not current_user:
                logger.error("rbac_missing_current_user", endpoint=func.__name__)
                raise HTTPException(
                    status_code=status.HTTP_401_UNAUTHORIZED,
                    detail="Authentication required",
                )

            user_role = current_user.get("role")
            if not check_role_hierarchy(user_role, list(required_roles)):
                logger.warning(
                    "rbac_permission_denied",
                    user_id=current_user.get("sub"),
                    user_role=user_role,
                    required_roles=[r.value for r in required_roles],
                    endpoint=func.__name__,
                )
                raise HTTPException(
                    status_code=status.HTTP_403_FORBIDDEN,
                    detail=f"Insufficient permissions. Required roles: {', '.join(r.value for r in required_roles)}",
                )

            return await func(*args, **kwargs)

        return wrapper

    return decorator
