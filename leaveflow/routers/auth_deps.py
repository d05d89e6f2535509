"""
Request identity dependencies.

Authentication happens upstream; the gateway forwards the authenticated
user's id in the `X-User-ID` header. These dependencies turn that header
into an active `User` and enforce role checks.
"""
import logging
from typing import Callable, List, Optional

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.orm import Session

from leaveflow.core.config import settings
from leaveflow.database import get_db
from leaveflow.models.user import User, UserRole

logger = logging.getLogger(__name__)


def get_current_user(
    x_user_id: Optional[str] = Header(default=None, alias=settings.user_id_header),
    db: Session = Depends(get_db)
) -> User:
    """
    Resolves the acting user from the forwarded identity header.
    """
    if not x_user_id:
        logger.warning("Authentication failed: missing identity header")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
        )

    try:
        user_id = int(x_user_id)
    except ValueError:
        logger.warning(f"Authentication failed: malformed user id '{x_user_id}'")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid user identity",
        )

    user = db.query(User).filter(User.id == user_id).first()
    if user is None:
        logger.warning(f"Authentication failed: user {user_id} not found")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not found",
        )
    if not user.is_active:
        logger.warning(f"Authentication failed: user {user_id} is inactive")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="User is inactive"
        )
    return user


def require_role(allowed_roles: List[UserRole]) -> Callable:
    """
    Dependency factory that checks if the user has one of the allowed roles.

    Usage:
        @router.post("/workflows")
        def create(user: User = Depends(require_role([UserRole.ADMIN]))):
            ...
    """
    def role_checker(current_user: User = Depends(get_current_user)):
        if current_user.role not in allowed_roles:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Access denied. Required roles: {[r.value for r in allowed_roles]}"
            )
        return current_user
    return role_checker


def require_admin():
    """Shorthand for requiring admin roles only."""
    return require_role([UserRole.SUPER_ADMIN, UserRole.ADMIN])
