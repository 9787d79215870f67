"""
services/review/router.py
Ratings and reviews between profiles that have worked together.
"""

import logging
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy import func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from config.redis_client import RedisCache, get_redis
from shared.middleware.auth import get_current_profile
from shared.models.models import (
    BandMember,
    BandRole,
    Booking,
    BookingStatus,
    Event,
    NotificationType,
    Profile,
    Review,
)
from shared.schemas.schemas import ReviewCreateRequest, ReviewListResponse, ReviewResponse
from shared.utils.dates import as_utc, utcnow
from services.band.router import leader_ids
from services.event.router import event_owner_ids
from services.notification.router import dispatch_notification
from services.profile.router import get_profile_or_404

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/reviews", tags=["Reviews"])

NOT_ELIGIBLE_DETAIL = "You can only review someone you have worked with on a completed event."


# ── Eligibility ───────────────────────────────────────────────

def _is_finished(booking: Booking, event: Event) -> bool:
    if booking.status == BookingStatus.COMPLETED:
        return True
    return booking.status == BookingStatus.CONFIRMED and as_utc(event.ends_at) <= utcnow()


async def _links_profiles(
    booking: Booking, event: Event, reviewer_id: UUID, reviewee_id: UUID, db: AsyncSession
) -> bool:
    """True when one profile sits on the applicant side and the other owns the event."""
    applicants = {booking.musician_profile_id}
    if booking.band_id:
        applicants.update(await leader_ids(db, booking.band_id))
    owners = await event_owner_ids(event, db)
    return (
        (reviewer_id in applicants and reviewee_id in owners)
        or (reviewer_id in owners and reviewee_id in applicants)
    )


async def _candidate_bookings(
    reviewer_id: UUID, reviewee_id: UUID, booking_id: Optional[UUID], db: AsyncSession
) -> list[tuple[Booking, Event]]:
    query = (
        select(Booking, Event)
        .join(Event, Event.id == Booking.event_id)
        .where(Booking.status.in_((BookingStatus.COMPLETED, BookingStatus.CONFIRMED)))
    )
    if booking_id:
        query = query.where(Booking.id == booking_id)
    else:
        pair = (reviewer_id, reviewee_id)
        led_bands = select(BandMember.band_id).where(
            BandMember.profile_id.in_(pair), BandMember.role == BandRole.LEADER
        )
        query = query.where(
            or_(Booking.musician_profile_id.in_(pair), Booking.band_id.in_(led_bands))
        )
    result = await db.execute(query.order_by(Booking.created_at.asc()))
    return list(result.tuples().all())


async def _refresh_rating(profile_id: UUID, db: AsyncSession) -> None:
    """Recalculate and denormalize the aggregate rating onto the profile."""
    avg, count = (
        await db.execute(
            select(func.avg(Review.rating), func.count(Review.id)).where(
                Review.reviewee_profile_id == profile_id
            )
        )
    ).one()
    await db.execute(
        update(Profile)
        .where(Profile.id == profile_id)
        .values(rating_avg=round(float(avg or 0), 2), rating_count=count)
    )


# ── Endpoints ─────────────────────────────────────────────────

@router.post("", response_model=ReviewResponse, status_code=status.HTTP_201_CREATED)
async def create_review(
    data: ReviewCreateRequest,
    profile: Profile = Depends(get_current_profile),
    db: AsyncSession = Depends(get_db),
    redis=Depends(get_redis),
):
    """
    Review a profile you worked with.
    - A booking must link the two profiles (applicant side and event owner)
    - It must be completed, or confirmed with the event already over
    - One review per booking per reviewer
    """
    if data.reviewee_profile_id == profile.id:
        raise HTTPException(status_code=400, detail="You cannot review yourself")
    reviewee = await get_profile_or_404(data.reviewee_profile_id, db)

    if data.booking_id and not await db.scalar(select(Booking.id).where(Booking.id == data.booking_id)):
        raise HTTPException(status_code=404, detail="Booking not found")

    eligible = []
    for booking, event in await _candidate_bookings(profile.id, reviewee.id, data.booking_id, db):
        if _is_finished(booking, event) and await _links_profiles(booking, event, profile.id, reviewee.id, db):
            eligible.append(booking)

    if not eligible:
        raise HTTPException(status_code=403, detail=NOT_ELIGIBLE_DETAIL)

    reviewed = set(
        (
            await db.execute(
                select(Review.booking_id).where(
                    Review.reviewer_profile_id == profile.id,
                    Review.booking_id.in_([b.id for b in eligible]),
                )
            )
        ).scalars()
    )
    booking = next((b for b in eligible if b.id not in reviewed), None)
    if booking is None:
        raise HTTPException(status_code=409, detail="You have already reviewed this booking")

    review = Review(
        booking_id=booking.id,
        reviewer_profile_id=profile.id,
        reviewee_profile_id=reviewee.id,
        rating=data.rating,
        comment=data.comment,
    )
    db.add(review)
    await db.flush()

    await _refresh_rating(reviewee.id, db)
    await dispatch_notification(
        db,
        reviewee.id,
        NotificationType.REVIEW_RECEIVED,
        {"rating": data.rating, "reviewer_name": profile.display_name},
        booking_id=booking.id,
    )
    await db.commit()
    await RedisCache(redis).invalidate_profile(reviewee.id)

    logger.info(f"Review {review.id} by {profile.id} for {reviewee.id} ({data.rating}★)")
    response = ReviewResponse.model_validate(review)
    response.reviewer_name = profile.display_name
    return response


@router.get("/profile/{profile_id}", response_model=ReviewListResponse)
async def get_profile_reviews(
    profile_id: UUID,
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=50),
    db: AsyncSession = Depends(get_db),
):
    """Public: reviews a profile has received, newest first, with its rating summary."""
    reviewee = await get_profile_or_404(profile_id, db)

    result = await db.execute(
        select(Review, Profile.display_name)
        .join(Profile, Profile.id == Review.reviewer_profile_id)
        .where(Review.reviewee_profile_id == reviewee.id)
        .order_by(Review.created_at.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
    )
    items = []
    for review, reviewer_name in result.all():
        item = ReviewResponse.model_validate(review)
        item.reviewer_name = reviewer_name
        items.append(item)

    return ReviewListResponse(
        items=items,
        rating_avg=reviewee.rating_avg or 0,
        rating_count=reviewee.rating_count or 0,
    )
