"""
Authentication dependencies for FastAPI
"""
from fastapi import Depends, HTTPException, status, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.orm import Session
from typing import Optional

from gorepair.db.session import get_db
from gorepair.models.user import User, UserRole
from gorepair.utils.auth import decode_access_token

security = HTTPBearer(auto_error=False)  # Don't auto-raise error, check cookie first


async def get_current_user(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: Session = Depends(get_db)
) -> User:
    """
    Get current authenticated user from JWT token
    Supports both Authorization header and httpOnly cookie
    """
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )

    token = None

    # Try to get token from Authorization header first
    if credentials:
        token = credentials.credentials
    else:
        # Fallback to httpOnly cookie
        token = request.cookies.get("access_token")

    if not token:
        raise credentials_exception

    payload = decode_access_token(token)

    if payload is None:
        raise credentials_exception

    email: str = payload.get("sub")
    user_id: int = payload.get("user_id")

    if email is None or user_id is None:
        raise credentials_exception

    user = db.query(User).filter(User.id == user_id, User.email == email).first()

    if user is None:
        raise credentials_exception

    if not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Inactive user"
        )

    # Lets the rate limiter key on the user instead of the IP
    request.state.user_id = user.id

    return user


def require_any_role(*allowed_roles: UserRole):
    """
    Dependency factory for multiple allowed roles
    Usage: Depends(require_any_role(UserRole.MANAGER, UserRole.PARTNER))
    """
    async def role_checker(current_user: User = Depends(get_current_user)) -> User:
        # Admin has access to everything
        if current_user.role == UserRole.ADMIN:
            return current_user

        if current_user.role not in allowed_roles:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Access denied. Required roles: {', '.join(r.value for r in allowed_roles)}"
            )
        return current_user

    return role_checker


# ============ ROLE-SPECIFIC DEPENDENCIES ============

get_current_staff_user = require_any_role(UserRole.MANAGER, UserRole.PARTNER)


async def get_current_technician_user(
    current_user: User = Depends(get_current_user)
) -> User:
    """Dependency to get current technician user"""
    if current_user.role != UserRole.TECHNICIAN:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Access denied. Technician role required."
        )

    return current_user
