import logging
from typing import Optional

from sqlalchemy import update
from sqlalchemy.future import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.helpers.exceptions import AuthError, ValidationError
from app.users.user_models.schemas import UserLogin, UserRegister
from app.users.user_models.user_model import User
from app.users.security import (
    get_password_hash,
    verify_password,
    create_access_token,
    create_refresh_token,
    decode_token,
    token_claims,
)
from app.users.auth_token_model.token_model import Token

logger = logging.getLogger(__name__)


# ============================================================
# ✅ REGISTER A NEW USER
# ============================================================
async def registering_user(user_data: UserRegister, db: AsyncSession) -> User:
    result = await db.execute(select(User).where(User.email == user_data.email))
    if result.scalars().first():
        raise ValidationError.for_field("email", "User with this email already exists")

    new_user = User(
        email=user_data.email,
        hashed_password=get_password_hash(user_data.password),
        first_name=user_data.first_name,
        last_name=user_data.last_name,
        phone=user_data.phone,
        role="customer",
    )

    db.add(new_user)
    await db.commit()
    await db.refresh(new_user)
    logger.info(f"👤 Registered customer {new_user.email}")
    return new_user


# ============================================================
# ✅ AUTHENTICATE USER
# ============================================================
async def authenticate_user(email: str, password: str, db: AsyncSession) -> Optional[User]:
    result = await db.execute(select(User).where(User.email == email))
    user = result.scalars().first()

    if not user or not verify_password(password, user.hashed_password):
        return None
    return user


# ============================================================
# ✅ LOGIN USER
# ============================================================
async def login_user(user_data: UserLogin, db: AsyncSession) -> tuple[str, str, User]:
    user = await authenticate_user(user_data.email, user_data.password, db)
    if not user:
        raise AuthError(
            "Incorrect email or password",
            headers={"WWW-Authenticate": "Bearer"},
        )

    if not user.is_active:
        raise AuthError("Inactive user")

    access_token = await create_access_token(data=token_claims(user), db=db)
    refresh_token = await create_refresh_token(data=token_claims(user), db=db)

    return access_token, refresh_token, user


# ============================================================
# ✅ REFRESH ACCESS TOKEN
# ============================================================
async def refresh_access_token(refresh_token: str, db: AsyncSession) -> tuple[str, str]:
    payload = decode_token(refresh_token)
    if not payload or payload.get("type") != "refresh" or not payload.get("sub"):
        raise AuthError("Invalid refresh token", headers={"WWW-Authenticate": "Bearer"})

    result = await db.execute(select(Token).where(Token.token_string == refresh_token))
    stored_token = result.scalars().first()

    if not stored_token or stored_token.is_revoked:
        raise AuthError("Refresh token revoked or invalid", headers={"WWW-Authenticate": "Bearer"})

    result = await db.execute(select(User).where(User.email == payload["sub"]))
    user = result.scalars().first()

    if not user or not user.is_active:
        raise AuthError("User inactive or not found", headers={"WWW-Authenticate": "Bearer"})

    access_token = await create_access_token(data=token_claims(user), db=db)
    new_refresh_token = await create_refresh_token(data=token_claims(user), db=db)

    # Rotate: the old refresh token is single-use
    stored_token.is_revoked = True
    await db.commit()

    return access_token, new_refresh_token


# ============================================================
# ✅ LOGOUT USER (Global Revocation)
# ============================================================
async def logout_user(user: User, db: AsyncSession) -> None:
    await db.execute(
        update(Token)
        .where(Token.user_id == user.id)
        .values(is_revoked=True)
    )
    await db.commit()
