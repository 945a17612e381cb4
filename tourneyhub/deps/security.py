# tourneyhub/deps/security.py
from fastapi import Depends, HTTPException, status

from tourneyhub.auth_token import get_current_user


def is_admin(user) -> bool:
    return getattr(user, "role", None) == "admin"


def require_user(user=Depends(get_current_user)):
    """401 if not logged in; returns the user otherwise."""
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
        )
    return user


def require_admin(user=Depends(require_user)):
    """403 if the logged-in user is not an admin."""
    if is_admin(user):
        return user
    raise HTTPException(
        status_code=status.HTTP_403_FORBIDDEN,
        detail="Admin only",
    )
