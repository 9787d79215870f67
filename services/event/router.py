"""
services/event/router.py
Event posting and discovery. Individuals post for themselves; band leaders
post on behalf of their band. An event locks once a booking is confirmed.
"""

import logging
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy import String, cast, delete, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from shared.middleware.auth import get_current_profile
from shared.models.models import (
    Band,
    BandMember,
    BandRole,
    Booking,
    BookingAuditLog,
    BookingStatus,
    Event,
    PostedByType,
    Profile,
)
from shared.schemas.schemas import EventCreateRequest, EventResponse, EventUpdateRequest, MessageResponse
from shared.utils.dates import utcnow
from services.band.router import get_band_or_404, is_band_leader, leader_ids

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/events", tags=["Events"])

LOCKED_STATUSES = (BookingStatus.CONFIRMED, BookingStatus.COMPLETED)
LOCKED_DETAIL = "This event cannot be edited because artists have already confirmed their participation"


# ── Helpers (shared with bookings and reviews) ────────────────

async def get_event_or_404(event_id: UUID, db: AsyncSession) -> Event:
    result = await db.execute(select(Event).where(Event.id == event_id))
    event = result.scalar_one_or_none()
    if not event:
        raise HTTPException(status_code=404, detail="Event not found")
    return event


async def is_event_owner(event: Event, profile_id: UUID, db: AsyncSession) -> bool:
    """The posting profile owns an individual event; any band leader owns a band event."""
    if event.organizer_profile_id == profile_id:
        return True
    if event.posted_by_type == PostedByType.BAND and event.band_id:
        return await is_band_leader(db, event.band_id, profile_id)
    return False


async def event_owner_ids(event: Event, db: AsyncSession) -> set[UUID]:
    """Every profile that should hear about activity on this event."""
    owners = {event.organizer_profile_id}
    if event.posted_by_type == PostedByType.BAND and event.band_id:
        owners.update(await leader_ids(db, event.band_id))
    return owners


async def _confirmed_count(event_id: UUID, db: AsyncSession) -> int:
    return await db.scalar(
        select(func.count(Booking.id)).where(
            Booking.event_id == event_id, Booking.status.in_(LOCKED_STATUSES)
        )
    ) or 0


async def _ensure_editable(event: Event, profile: Profile, db: AsyncSession) -> None:
    if not await is_event_owner(event, profile.id, db):
        raise HTTPException(status_code=403, detail="Only the event owner can modify this event")
    if await _confirmed_count(event.id, db):
        raise HTTPException(status_code=409, detail=LOCKED_DETAIL)


async def enrich_event(event: Event, db: AsyncSession) -> EventResponse:
    """Add owner name, band name and confirmed count to an event."""
    response = EventResponse.model_validate(event)
    response.organizer_name = await db.scalar(
        select(Profile.display_name).where(Profile.id == event.organizer_profile_id)
    )
    if event.band_id:
        response.band_name = await db.scalar(select(Band.name).where(Band.id == event.band_id))
    response.confirmed_count = await _confirmed_count(event.id, db)
    response.is_locked = response.confirmed_count > 0
    return response


# ── Create ────────────────────────────────────────────────────

@router.post("", response_model=EventResponse, status_code=status.HTTP_201_CREATED)
async def create_event(
    data: EventCreateRequest,
    profile: Profile = Depends(get_current_profile),
    db: AsyncSession = Depends(get_db),
):
    """
    Post an event. Organizers and musicians can post individually; posting as
    a band requires leading that band.
    """
    values = data.model_dump()
    posted_by = PostedByType(values.pop("posted_by_type"))

    if posted_by == PostedByType.BAND:
        band = await get_band_or_404(data.band_id, db)
        if not await is_band_leader(db, band.id, profile.id):
            raise HTTPException(status_code=403, detail="Only the band leader can post events for the band")
    else:
        values["band_id"] = None

    event = Event(organizer_profile_id=profile.id, posted_by_type=posted_by, **values)
    db.add(event)
    await db.flush()
    await db.commit()

    logger.info(f"Event {event.id} posted by {profile.id} as {posted_by.value}")
    return await enrich_event(event, db)


# ── Read ──────────────────────────────────────────────────────

@router.get("", response_model=list[EventResponse])
async def list_events(
    q: Optional[str] = Query(None, max_length=100),
    location: Optional[str] = Query(None, max_length=100),
    event_type: Optional[str] = Query(None, max_length=50),
    genre: Optional[str] = Query(None, max_length=50),
    posted_by_type: Optional[PostedByType] = None,
    include_past: bool = False,
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=50),
    db: AsyncSession = Depends(get_db),
):
    """Browse events, soonest first. Past events are hidden unless include_past."""
    query = select(Event)

    if not include_past:
        query = query.where(Event.ends_at >= utcnow())
    if q and q.strip():
        term = f"%{q.strip()}%"
        query = query.where(or_(Event.title.ilike(term), Event.description.ilike(term)))
    if location and location.strip():
        query = query.where(Event.location.ilike(f"%{location.strip()}%"))
    if event_type:
        query = query.where(Event.event_type == event_type)
    if genre and genre.strip():
        query = query.where(cast(Event.genres, String).ilike(f'%"{genre.strip()}"%'))
    if posted_by_type:
        query = query.where(Event.posted_by_type == PostedByType(posted_by_type))

    query = query.order_by(Event.starts_at.asc()).offset((page - 1) * page_size).limit(page_size)
    result = await db.execute(query)
    return [await enrich_event(e, db) for e in result.scalars()]


@router.get("/mine", response_model=list[EventResponse])
async def list_my_events(
    profile: Profile = Depends(get_current_profile),
    db: AsyncSession = Depends(get_db),
):
    """Events the caller posted, plus band events for bands the caller leads."""
    led_bands = select(BandMember.band_id).where(
        BandMember.profile_id == profile.id, BandMember.role == BandRole.LEADER
    )
    result = await db.execute(
        select(Event)
        .where(
            or_(
                Event.organizer_profile_id == profile.id,
                Event.band_id.in_(led_bands),
            )
        )
        .order_by(Event.starts_at.desc())
    )
    return [await enrich_event(e, db) for e in result.scalars()]


@router.get("/{event_id}", response_model=EventResponse)
async def get_event(event_id: UUID, db: AsyncSession = Depends(get_db)):
    event = await get_event_or_404(event_id, db)
    return await enrich_event(event, db)


# ── Update / Delete ───────────────────────────────────────────

@router.put("/{event_id}", response_model=EventResponse)
async def update_event(
    event_id: UUID,
    data: EventUpdateRequest,
    profile: Profile = Depends(get_current_profile),
    db: AsyncSession = Depends(get_db),
):
    event = await get_event_or_404(event_id, db)
    await _ensure_editable(event, profile, db)

    updates = data.model_dump(exclude_unset=True)
    budget_min = updates.get("budget_min", event.budget_min)
    budget_max = updates.get("budget_max", event.budget_max)
    if budget_min is not None and budget_max is not None and budget_min > budget_max:
        raise HTTPException(status_code=400, detail="budget_min cannot be greater than budget_max")

    for field, value in updates.items():
        if field == "genres" and value is None:
            value = []
        if field == "title" and value is None:
            continue
        setattr(event, field, value)

    if "starts_at" in updates:
        # Pending applications carry their own copy of the window for overlap checks
        await db.execute(
            update(Booking)
            .where(Booking.event_id == event.id)
            .values(scheduled_start=event.starts_at, scheduled_end=event.ends_at)
        )

    await db.commit()
    return await enrich_event(event, db)


@router.delete("/{event_id}", response_model=MessageResponse)
async def delete_event(
    event_id: UUID,
    profile: Profile = Depends(get_current_profile),
    db: AsyncSession = Depends(get_db),
):
    """Delete an event and its pending/declined applications."""
    event = await get_event_or_404(event_id, db)
    await _ensure_editable(event, profile, db)

    booking_ids = select(Booking.id).where(Booking.event_id == event.id)
    await db.execute(delete(BookingAuditLog).where(BookingAuditLog.booking_id.in_(booking_ids)))
    await db.execute(delete(Booking).where(Booking.event_id == event.id))
    await db.execute(delete(Event).where(Event.id == event.id))
    await db.commit()

    logger.info(f"Event {event_id} deleted by {profile.id}")
    return MessageResponse(message="Event deleted")
