"""
services/profile/router.py
Profile onboarding, editing, completeness checks and avatar upload.
"""

import logging
import time
from uuid import UUID

from fastapi import APIRouter, Depends, File, HTTPException, UploadFile, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from config.redis_client import RedisCache, get_redis
from config.settings import settings
from config.storage import ObjectStorage, StorageError, get_storage, key_from_public_url
from shared.middleware.auth import get_current_profile, get_current_user
from shared.models.models import Profile, ProfileRole, User
from shared.schemas.schemas import (
    ProfileCompletionResponse,
    ProfileCreateRequest,
    ProfileResponse,
    ProfileUpdateRequest,
)
from shared.utils.uploads import validate_image_upload

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/profiles", tags=["Profiles"])


# ── Helpers ───────────────────────────────────────────────────

def missing_profile_fields(profile: Profile) -> list[str]:
    """
    Fields a profile still needs before it shows up properly in the app.
    Everyone needs a name, location and bio; musicians also need genres and pricing.
    """
    missing = []
    if not (profile.display_name or "").strip():
        missing.append("display_name")
    if not (profile.location or "").strip():
        missing.append("location")
    if not (profile.bio or "").strip():
        missing.append("bio")
    if profile.role == ProfileRole.MUSICIAN:
        if not profile.genres:
            missing.append("genres")
        if profile.price_min is None:
            missing.append("price_min")
    return missing


async def get_profile_or_404(profile_id: UUID, db: AsyncSession) -> Profile:
    result = await db.execute(select(Profile).where(Profile.id == profile_id))
    profile = result.scalar_one_or_none()
    if not profile:
        raise HTTPException(status_code=404, detail="Profile not found")
    return profile


# ── Own Profile ───────────────────────────────────────────────

@router.post("/me", response_model=ProfileResponse, status_code=status.HTTP_201_CREATED)
async def create_my_profile(
    data: ProfileCreateRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    redis=Depends(get_redis),
):
    """First-login onboarding: pick a role and fill in the basics."""
    existing = await db.execute(select(Profile).where(Profile.user_id == current_user.id))
    if existing.scalar_one_or_none():
        raise HTTPException(status_code=409, detail="Profile already exists")

    values = data.model_dump()
    values["role"] = ProfileRole(values["role"])
    profile = Profile(user_id=current_user.id, rating_avg=0, rating_count=0, **values)
    db.add(profile)
    await db.flush()
    await db.commit()
    await RedisCache(redis).invalidate_profile(profile.id)

    logger.info(f"Profile {profile.id} created for user {current_user.id} as {profile.role.value}")
    return ProfileResponse.model_validate(profile)


@router.get("/me", response_model=ProfileResponse)
async def get_my_profile(profile: Profile = Depends(get_current_profile)):
    return ProfileResponse.model_validate(profile)


@router.put("/me", response_model=ProfileResponse)
async def update_my_profile(
    data: ProfileUpdateRequest,
    profile: Profile = Depends(get_current_profile),
    db: AsyncSession = Depends(get_db),
    redis=Depends(get_redis),
):
    """Partial update. Only fields present in the request body are changed."""
    updates = data.model_dump(exclude_unset=True)

    if "display_name" in updates and not (updates["display_name"] or "").strip():
        raise HTTPException(status_code=400, detail="Display name cannot be blank")

    new_min = updates.get("price_min", profile.price_min)
    new_max = updates.get("price_max", profile.price_max)
    if new_min is not None and new_max is not None and new_min > new_max:
        raise HTTPException(status_code=400, detail="price_min cannot be greater than price_max")

    for field, value in updates.items():
        if field == "genres" and value is None:
            value = []
        setattr(profile, field, value)

    await db.commit()
    await RedisCache(redis).invalidate_profile(profile.id)
    return ProfileResponse.model_validate(profile)


@router.get("/me/completion", response_model=ProfileCompletionResponse)
async def get_my_profile_completion(profile: Profile = Depends(get_current_profile)):
    missing = missing_profile_fields(profile)
    return ProfileCompletionResponse(is_complete=not missing, missing_fields=missing)


@router.post("/me/avatar", response_model=ProfileResponse)
async def upload_avatar(
    file: UploadFile = File(...),
    profile: Profile = Depends(get_current_profile),
    db: AsyncSession = Depends(get_db),
    redis=Depends(get_redis),
    storage: ObjectStorage = Depends(get_storage),
):
    """
    Upload a new avatar to object storage and point the profile at it.
    JPEG, PNG or GIF up to AVATAR_MAX_BYTES; content is sniffed, not trusted.
    """
    content = await file.read(settings.AVATAR_MAX_BYTES + 1)
    ext = validate_image_upload(content, file.content_type, settings.AVATAR_MAX_BYTES)

    key = f"avatars/{profile.id}-{int(time.time() * 1000)}.{ext}"
    try:
        url = await storage.upload(settings.AVATAR_BUCKET, key, content, file.content_type)
    except StorageError:
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail="Could not store the image. Please try again.",
        )

    old_key = key_from_public_url(profile.avatar_url, settings.AVATAR_BUCKET)
    profile.avatar_url = url
    await db.commit()
    await RedisCache(redis).invalidate_profile(profile.id)

    if old_key and old_key != key:
        try:
            await storage.delete(settings.AVATAR_BUCKET, old_key)
        except Exception as e:
            logger.warning(f"Could not delete old avatar {old_key}: {e}")

    return ProfileResponse.model_validate(profile)


# ── Public Profiles ───────────────────────────────────────────

@router.get("/{profile_id}", response_model=ProfileResponse)
async def get_profile(
    profile_id: UUID,
    db: AsyncSession = Depends(get_db),
    redis=Depends(get_redis),
):
    """Public profile. Cached in Redis for REDIS_CACHE_TTL seconds."""
    cache = RedisCache(redis)
    cached = await cache.get(cache.profile_key(profile_id))
    if cached:
        return ProfileResponse.model_validate(cached)

    profile = await get_profile_or_404(profile_id, db)
    response = ProfileResponse.model_validate(profile)
    await cache.set(cache.profile_key(profile_id), response.model_dump(mode="json"))
    return response
