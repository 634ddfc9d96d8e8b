# jobview/core/security.py

"""
Authenticated caller identity.

Token verification happens in the authentication middleware, which stores the
resolved identity on ``request.state.user``. Routes only depend on
``get_current_user``.
"""

from dataclasses import dataclass

from fastapi import HTTPException, Request, status


@dataclass(frozen=True)
class CurrentUser:
    id: int
    is_admin: bool = False


def get_current_user(request: Request) -> CurrentUser:
    """Return the identity placed on the request by the auth middleware."""
    user = getattr(request.state, "user", None)
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )
    if isinstance(user, CurrentUser):
        return user
    return CurrentUser(id=int(user["id"]), is_admin=bool(user.get("is_admin", False)))
