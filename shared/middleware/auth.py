"""
shared/middleware/auth.py
FastAPI dependency functions for authentication and authorization.
JWT is validated here; profile-scoped routes resolve the caller's Profile.
"""

import uuid
from typing import Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from config.redis_client import RedisCache, get_redis
from shared.models.models import Profile, ProfileRole, User
from shared.utils.security import verify_access_token

security = HTTPBearer(auto_error=False)

INVALID_TOKEN = "Invalid or expired token"


class TokenData:
    def __init__(self, payload: dict, token: str):
        self.user_id = _as_uuid(payload.get("sub"))
        self.email: str = payload.get("email", "")
        self.jti: Optional[str] = payload.get("jti")
        self.payload = payload
        self.token = token


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def _as_uuid(value) -> uuid.UUID:
    try:
        return uuid.UUID(str(value))
    except ValueError:
        raise _unauthorized(INVALID_TOKEN)


async def _decode(token: str, redis) -> TokenData:
    """Verify signature/expiry and reject tokens deny-listed at logout."""
    try:
        data = TokenData(verify_access_token(token), token)
    except JWTError:
        raise _unauthorized(INVALID_TOKEN)

    if data.jti and await RedisCache(redis).is_token_revoked(data.jti):
        raise _unauthorized("Token has been revoked")
    return data


async def get_token_data(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    redis=Depends(get_redis),
) -> TokenData:
    if not credentials:
        raise _unauthorized("Authentication required")
    return await _decode(credentials.credentials, redis)


async def get_current_user(
    token_data: TokenData = Depends(get_token_data),
    db: AsyncSession = Depends(get_db),
) -> User:
    """Load the User behind the JWT sub claim."""
    user = await db.scalar(select(User).where(User.id == token_data.user_id))

    if not user:
        raise _unauthorized("User not found")
    if not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="User account is inactive",
        )
    return user


async def get_current_profile(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> Profile:
    """Resolve the caller's Profile. Users who skipped onboarding get 403."""
    profile = await db.scalar(select(Profile).where(Profile.user_id == current_user.id))
    if not profile:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Complete your profile setup first",
        )
    return profile


async def get_optional_profile(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: AsyncSession = Depends(get_db),
    redis=Depends(get_redis),
) -> Optional[Profile]:
    """Caller's profile on public endpoints; anonymous or bad tokens give None."""
    if not credentials:
        return None
    try:
        token_data = await _decode(credentials.credentials, redis)
    except HTTPException:
        return None
    return await db.scalar(select(Profile).where(Profile.user_id == token_data.user_id))


class RoleRequired:
    """Dependency factory for profile-role based access control."""

    def __init__(self, *roles: ProfileRole):
        self.roles = roles

    async def __call__(self, profile: Profile = Depends(get_current_profile)) -> Profile:
        if profile.role not in self.roles:
            allowed = " or ".join(r.value for r in self.roles)
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Only {allowed} profiles can do this",
            )
        return profile


require_musician = RoleRequired(ProfileRole.MUSICIAN)
