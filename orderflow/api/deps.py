"""
OrderFlow — Request dependencies (current user, role gates)
"""
from fastapi import Depends, HTTPException, Request, status

from orderflow.schemas.common import CurrentUser, UserRole


def get_current_user(request: Request) -> CurrentUser:
    """Build the requester identity from the claims set by JWTAuthMiddleware."""
    claims = getattr(request.state, "user", None)
    if not claims:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated.")
    try:
        return CurrentUser(id=str(claims["sub"]), role=UserRole(claims.get("role")))
    except (KeyError, ValueError):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Token carries no valid role.")


def require_roles(*roles: UserRole):
    def checker(user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
        if user.role not in roles:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Role '{user.role.value}' is not allowed to perform this action.",
            )
        return user
    return checker
