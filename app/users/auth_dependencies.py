# app/users/auth_dependencies.py
# Centralized Authentication Dependencies

from typing import Optional
from fastapi import Depends, Cookie
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy import select, and_
from sqlalchemy.ext.asyncio import AsyncSession

from app.database.connection import get_db
from app.helpers.exceptions import AuthError, ForbiddenError
from app.users.user_models.user_model import User
from app.users.auth_token_model.token_model import Token
from app.users.security import decode_token

# Security schemes
security_scheme = HTTPBearer(auto_error=False)  # Don't auto-raise for cookie fallback

BEARER = {"WWW-Authenticate": "Bearer"}


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security_scheme),
    access_token_cookie: Optional[str] = Cookie(None, alias="access_token"),
    db: AsyncSession = Depends(get_db)
) -> User:
    """
    Get current authenticated user.

    Accepts token from EITHER:
    - Authorization: Bearer header (for mobile/Postman)
    - httpOnly cookie (for web browsers)

    Validates:
    1. JWT signature and expiry
    2. Token exists in database and is not revoked
    3. User exists and is active
    """
    if credentials:
        token_string = credentials.credentials
    elif access_token_cookie:
        token_string = access_token_cookie
    else:
        raise AuthError(
            "Not authenticated. Provide token in Authorization header or cookie.",
            headers=BEARER,
        )

    payload = decode_token(token_string)
    if not payload or payload.get("type") != "access":
        raise AuthError("Invalid or expired access token", headers=BEARER)

    user_email = payload.get("sub")
    if not user_email:
        raise AuthError("Token missing user identifier", headers=BEARER)

    token_record = await db.execute(
        select(Token).where(
            and_(
                Token.token_string == token_string,
                Token.token_type == "access"
            )
        )
    )
    token_obj = token_record.scalars().first()

    if not token_obj:
        raise AuthError("Token not found. Please log in again.", headers=BEARER)

    if token_obj.is_revoked:
        raise AuthError("Token has been revoked. Please log in again.", headers=BEARER)

    result = await db.execute(select(User).where(User.email == user_email))
    user = result.scalars().first()

    if not user:
        raise AuthError("User not found", headers=BEARER)

    if not user.is_active:
        raise ForbiddenError("User account is inactive")

    return user


def require_roles(*roles: str):
    """Dependency factory: 403 unless the caller holds one of `roles`."""

    async def _checker(current_user: User = Depends(get_current_user)) -> User:
        if current_user.role not in roles:
            raise ForbiddenError(f"Requires one of roles: {', '.join(roles)}")
        return current_user

    return _checker


get_current_staff = require_roles("pharmacist", "admin")
get_current_admin = require_roles("admin")
