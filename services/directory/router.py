"""
services/directory/router.py
Public musician directory: text search, genre/location filters and price buckets.
"""

import math
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy import String, cast, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from config.redis_client import RedisCache, get_redis
from config.settings import settings
from shared.models.models import Profile, ProfileRole
from shared.schemas.schemas import DirectoryResponse, ProfileResponse

router = APIRouter(prefix="/directory", tags=["Directory"])

# Price buckets shown as filter chips in the directory
PRICE_RANGES = ("all", "low", "medium", "high")


def apply_price_range(query, price_range: str):
    """
    low:    price_max <= 200
    medium: price_min <= 500 and price_max <= 1000
    high:   price_min > 500
    """
    if price_range == "low":
        return query.where(Profile.price_max <= 200)
    if price_range == "medium":
        return query.where(Profile.price_min <= 500, Profile.price_max <= 1000)
    if price_range == "high":
        return query.where(Profile.price_min > 500)
    return query


def _genre_filter(genre: str):
    # Genres are a JSON array; match the quoted element case-insensitively
    return cast(Profile.genres, String).ilike(f'%"{genre.strip()}"%')


@router.get("/musicians", response_model=DirectoryResponse)
async def list_musicians(
    q: Optional[str] = Query(None, max_length=100, description="Matches name, bio or location"),
    genre: Optional[str] = Query(None, max_length=50),
    location: Optional[str] = Query(None, max_length=100),
    price_range: str = Query("all", pattern="^(all|low|medium|high)$"),
    sort_by: str = Query("newest", pattern="^(newest|rating|price)$"),
    page: int = Query(1, ge=1),
    page_size: int = Query(settings.DIRECTORY_PAGE_SIZE, ge=1, le=50),
    db: AsyncSession = Depends(get_db),
    redis=Depends(get_redis),
):
    """Browse musicians. Results are cached briefly per filter combination."""
    cache = RedisCache(redis)
    cache_key = f"directory:{q}:{genre}:{location}:{price_range}:{sort_by}:{page}:{page_size}"
    cached = await cache.get(cache_key)
    if cached:
        return DirectoryResponse.model_validate(cached)

    query = select(Profile).where(Profile.role == ProfileRole.MUSICIAN)

    if q and q.strip():
        term = f"%{q.strip()}%"
        query = query.where(
            or_(
                Profile.display_name.ilike(term),
                Profile.bio.ilike(term),
                Profile.location.ilike(term),
            )
        )
    if genre and genre.strip() and genre.lower() != "all":
        query = query.where(_genre_filter(genre))
    if location and location.strip():
        query = query.where(Profile.location.ilike(f"%{location.strip()}%"))
    query = apply_price_range(query, price_range)

    total = await db.scalar(select(func.count()).select_from(query.subquery())) or 0

    if sort_by == "rating":
        query = query.order_by(Profile.rating_avg.desc(), Profile.rating_count.desc())
    elif sort_by == "price":
        query = query.order_by(Profile.price_min.asc().nulls_last())
    else:
        query = query.order_by(Profile.created_at.desc())

    result = await db.execute(query.offset((page - 1) * page_size).limit(page_size))
    response = DirectoryResponse(
        items=[ProfileResponse.model_validate(p) for p in result.scalars()],
        total=total,
        page=page,
        page_size=page_size,
        pages=math.ceil(total / page_size) if total else 0,
    )
    await cache.set(cache_key, response.model_dump(mode="json"), ttl=60)
    return response


@router.get("/genres", response_model=list[str])
async def list_genres(db: AsyncSession = Depends(get_db)):
    """Distinct genres across all musician profiles, sorted case-insensitively."""
    result = await db.execute(
        select(Profile.genres).where(Profile.role == ProfileRole.MUSICIAN)
    )
    genres = {}
    for row in result.scalars():
        for g in row or []:
            genres.setdefault(g.lower(), g)
    return sorted(genres.values(), key=str.lower)
