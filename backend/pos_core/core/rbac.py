"""Role-Based Access Control (RBAC) utilities.

Tokens are issued elsewhere; this module only reads them.
"""

from enum import Enum
from typing import Annotated, Optional

from fastapi import Depends, HTTPException, Request, status

from pos_core.core.security import decode_access_token


class UserRole(str, Enum):
    """User roles for RBAC."""

    ADMIN = "admin"
    MANAGER = "manager"
    CASHIER = "cashier"


# Role hierarchy: admin > manager > cashier
ROLE_HIERARCHY = {
    UserRole.ADMIN: 3,
    UserRole.MANAGER: 2,
    UserRole.CASHIER: 1,
}


class TokenData:
    """Decoded token data.

    Attributes:
        user_id: The operator's ID, recorded on orders, payments and stock movements.
        username: Display name from the token.
        role: The operator's role (admin/manager/cashier).
    """

    def __init__(self, user_id: int, username: str, role: UserRole):
        self.user_id = user_id
        self.id = user_id
        self.username = username
        self.role = role


def _token_from_request(request: Request) -> Optional[str]:
    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        token = auth_header.split(" ", 1)[1]
        if token:
            return token
    return request.cookies.get("access_token")


def token_data_from_payload(payload: Optional[dict]) -> Optional[TokenData]:
    """Build TokenData from a decoded payload, or None if claims are missing."""
    if not payload:
        return None

    user_id = payload.get("sub")
    role = payload.get("role")
    if user_id is None or role is None:
        return None

    try:
        user_role = UserRole(role)
        uid = int(user_id)
    except ValueError:
        return None

    return TokenData(user_id=uid, username=payload.get("username") or "", role=user_role)


async def get_current_user(request: Request) -> TokenData:
    """Get the current authenticated user from JWT token.

    Checks in order:
    1. Authorization: Bearer <token> header
    2. access_token cookie
    """
    token = _token_from_request(request)
    payload = decode_access_token(token) if token else None

    if payload is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )

    user = token_data_from_payload(payload)
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token payload",
        )
    return user


def require_role(minimum_role: UserRole):
    """Dependency to require a minimum role level."""

    async def role_checker(
        current_user: Annotated[TokenData, Depends(get_current_user)]
    ) -> TokenData:
        user_level = ROLE_HIERARCHY.get(current_user.role, 0)
        required_level = ROLE_HIERARCHY.get(minimum_role, 0)

        if user_level < required_level:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Requires role {minimum_role.value} or higher",
            )
        return current_user

    return role_checker


# Common role dependencies
RequireAdmin = Annotated[TokenData, Depends(require_role(UserRole.ADMIN))]
RequireManager = Annotated[TokenData, Depends(require_role(UserRole.MANAGER))]
CurrentUser = Annotated[TokenData, Depends(get_current_user)]
