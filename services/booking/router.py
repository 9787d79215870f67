"""
services/booking/router.py
Applications against events and their lifecycle.
States: PENDING → CONFIRMED | DECLINED   (event owner)
        CONFIRMED → COMPLETED | CANCELLED (applicant side)
"""

import logging
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy import delete, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from shared.middleware.auth import get_current_profile, require_musician
from shared.models.models import (
    Band,
    BandMember,
    BandRole,
    Booking,
    BookingAuditLog,
    BookingStatus,
    Event,
    Message,
    NotificationType,
    PostedByType,
    Profile,
)
from shared.schemas.schemas import (
    BookingAuditLogResponse,
    BookingCreateRequest,
    BookingResponse,
    BookingStatusChangeRequest,
    MessageResponse,
)
from shared.utils.dates import as_utc, utcnow
from services.band.router import get_band_or_404, is_band_leader
from services.event.router import event_owner_ids, get_event_or_404, is_event_owner
from services.notification.router import dispatch_notification

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/bookings", tags=["Bookings"])

APPLICATION_EXTENSION = "job_application"


# ── Helpers ───────────────────────────────────────────────────

async def _get_booking_or_404(booking_id: UUID, db: AsyncSession) -> Booking:
    result = await db.execute(select(Booking).where(Booking.id == booking_id))
    booking = result.scalar_one_or_none()
    if not booking:
        raise HTTPException(status_code=404, detail="Booking not found")
    return booking


async def is_applicant_side(booking: Booking, profile_id: UUID, db: AsyncSession) -> bool:
    """The applying musician, or any leader of the band the application was made for."""
    if booking.musician_profile_id == profile_id:
        return True
    if booking.band_id:
        return await is_band_leader(db, booking.band_id, profile_id)
    return False


async def _log_status_change(
    db: AsyncSession,
    booking: Booking,
    from_status: Optional[str],
    to_status: str,
    changed_by: Profile,
    reason: str = None,
    metadata: dict = None,
):
    """Append an immutable audit log entry for every status change."""
    db.add(BookingAuditLog(
        booking_id=booking.id,
        from_status=from_status,
        to_status=to_status,
        changed_by_id=changed_by.id,
        reason=reason,
        audit_metadata=metadata,
    ))


async def _applicant_name(booking: Booking, db: AsyncSession) -> Optional[str]:
    if booking.band_id:
        band_name = await db.scalar(select(Band.name).where(Band.id == booking.band_id))
        if band_name:
            return band_name
    return await db.scalar(
        select(Profile.display_name).where(Profile.id == booking.musician_profile_id)
    )


async def _enrich_booking(booking: Booking, db: AsyncSession) -> BookingResponse:
    response = BookingResponse.model_validate(booking)
    response.event_title = await db.scalar(select(Event.title).where(Event.id == booking.event_id))
    response.applicant_name = await db.scalar(
        select(Profile.display_name).where(Profile.id == booking.musician_profile_id)
    )
    if booking.band_id:
        response.band_name = await db.scalar(select(Band.name).where(Band.id == booking.band_id))
    return response


def _application_content(event: Event, quotation, additional_requirements: Optional[str]) -> str:
    lines = [f"Hi! I'm interested in your event \"{event.title}\"."]
    when = as_utc(event.starts_at).strftime("%d %b %Y %H:%M UTC")
    lines.append(f"Date: {when}")
    if event.location:
        lines.append(f"Location: {event.location}")
    lines.append(f"My quotation: {quotation}")
    if additional_requirements:
        lines.append(f"Requirements: {additional_requirements}")
    return "\n".join(lines)


async def _send_application_message(
    db: AsyncSession, booking: Booking, event: Event, applicant: Profile
) -> None:
    """Drop a job_application message into the event owner's inbox."""
    db.add(Message(
        sender_profile_id=applicant.id,
        recipient_profile_id=event.organizer_profile_id,
        content=_application_content(event, booking.quotation, booking.additional_requirements),
        topic=f"Job Application: {event.title}",
        extension=APPLICATION_EXTENSION,
        event_id=event.id,
        payload={
            "event_id": str(event.id),
            "application_id": str(booking.id),
            "quotation": str(booking.quotation),
            "event_title": event.title,
            "event_date": as_utc(event.starts_at).isoformat(),
        },
    ))


async def _notify_event_owners(
    db: AsyncSession,
    event: Event,
    notification_type: NotificationType,
    template_vars: dict,
    booking_id: UUID = None,
    exclude: UUID = None,
) -> None:
    for owner_id in await event_owner_ids(event, db):
        if owner_id != exclude:
            await dispatch_notification(db, owner_id, notification_type, template_vars, booking_id=booking_id)


# ── Apply ─────────────────────────────────────────────────────

@router.post("", response_model=BookingResponse, status_code=status.HTTP_201_CREATED)
async def apply_to_event(
    data: BookingCreateRequest,
    profile: Profile = Depends(require_musician),
    db: AsyncSession = Depends(get_db),
):
    """
    Apply to an event with a quotation, individually or on behalf of a band.
    1. Validate the event is open and not the caller's own
    2. Create the application, or revive / re-quote an existing one
    3. Send the owner an application message and a notification
    """
    event = await get_event_or_404(data.event_id, db)
    applied_by = PostedByType(data.applied_by_type)

    band = None
    if applied_by == PostedByType.BAND:
        band = await get_band_or_404(data.band_id, db)
        if not await is_band_leader(db, band.id, profile.id):
            raise HTTPException(status_code=403, detail="Only the band leader can apply on behalf of the band")

    if await is_event_owner(event, profile.id, db) or (band and event.band_id == band.id):
        raise HTTPException(status_code=400, detail="You cannot apply to your own event")
    if as_utc(event.starts_at) <= utcnow():
        raise HTTPException(status_code=400, detail="This event has already started")

    result = await db.execute(
        select(Booking).where(
            Booking.event_id == event.id, Booking.musician_profile_id == profile.id
        )
    )
    booking = result.scalar_one_or_none()
    notify_owner = True

    if booking is None:
        booking = Booking(
            event_id=event.id,
            musician_profile_id=profile.id,
            band_id=band.id if band else None,
            applied_by_type=applied_by,
            quotation=data.quotation,
            additional_requirements=data.additional_requirements,
            status=BookingStatus.PENDING,
            scheduled_start=event.starts_at,
            scheduled_end=event.ends_at,
        )
        db.add(booking)
        await db.flush()
        await _log_status_change(db, booking, None, BookingStatus.PENDING.value, profile)
    elif booking.status in (BookingStatus.CONFIRMED, BookingStatus.COMPLETED):
        raise HTTPException(
            status_code=409,
            detail=f"You already have a {booking.status.value} booking for this event",
        )
    else:
        previous = booking.status
        booking.quotation = data.quotation
        booking.additional_requirements = data.additional_requirements
        booking.applied_by_type = applied_by
        booking.band_id = band.id if band else None
        booking.scheduled_start = event.starts_at
        booking.scheduled_end = event.ends_at
        if previous == BookingStatus.PENDING:
            notify_owner = False
            await _log_status_change(
                db, booking, previous.value, previous.value, profile,
                reason="Quotation updated", metadata={"quotation": str(data.quotation)},
            )
        else:
            booking.status = BookingStatus.PENDING
            booking.declined_at = None
            booking.cancelled_at = None
            booking.confirmed_at = None
            await _log_status_change(db, booking, previous.value, BookingStatus.PENDING.value, profile)

    await _send_application_message(db, booking, event, profile)

    if notify_owner:
        await _notify_event_owners(
            db,
            event,
            NotificationType.APPLICATION_RECEIVED,
            {
                "event_title": event.title,
                "applicant_name": band.name if band else profile.display_name,
                "quotation": str(data.quotation),
            },
            booking_id=booking.id,
        )

    await db.flush()
    await db.commit()
    logger.info(f"Application {booking.id} to event {event.id} by {profile.id} ({applied_by.value})")
    return await _enrich_booking(booking, db)


# ── Listing ───────────────────────────────────────────────────

@router.get("/mine", response_model=list[BookingResponse])
async def list_my_bookings(
    status_filter: Optional[BookingStatus] = Query(None, alias="status"),
    profile: Profile = Depends(get_current_profile),
    db: AsyncSession = Depends(get_db),
):
    """Caller's own applications plus those made for bands the caller leads."""
    led_bands = select(BandMember.band_id).where(
        BandMember.profile_id == profile.id, BandMember.role == BandRole.LEADER
    )
    query = select(Booking).where(
        or_(Booking.musician_profile_id == profile.id, Booking.band_id.in_(led_bands))
    )
    if status_filter:
        query = query.where(Booking.status == BookingStatus(status_filter))

    result = await db.execute(query.order_by(Booking.created_at.desc()))
    return [await _enrich_booking(b, db) for b in result.scalars()]


@router.get("/event/{event_id}", response_model=list[BookingResponse])
async def list_event_bookings(
    event_id: UUID,
    profile: Profile = Depends(get_current_profile),
    db: AsyncSession = Depends(get_db),
):
    """Applications received for an event. Owner only."""
    event = await get_event_or_404(event_id, db)
    if not await is_event_owner(event, profile.id, db):
        raise HTTPException(status_code=403, detail="Only the event owner can view its applications")

    result = await db.execute(
        select(Booking).where(Booking.event_id == event.id).order_by(Booking.created_at.desc())
    )
    return [await _enrich_booking(b, db) for b in result.scalars()]


@router.get("/{booking_id}", response_model=BookingResponse)
async def get_booking(
    booking_id: UUID,
    profile: Profile = Depends(get_current_profile),
    db: AsyncSession = Depends(get_db),
):
    booking = await _get_booking_or_404(booking_id, db)
    await _ensure_participant(booking, profile, db)
    return await _enrich_booking(booking, db)


async def _ensure_participant(booking: Booking, profile: Profile, db: AsyncSession) -> Event:
    event = await get_event_or_404(booking.event_id, db)
    if not (
        await is_applicant_side(booking, profile.id, db)
        or await is_event_owner(event, profile.id, db)
    ):
        raise HTTPException(status_code=403, detail="Access denied")
    return event


# ── Event Owner Actions ───────────────────────────────────────

async def _owner_transition(
    booking_id: UUID, profile: Profile, db: AsyncSession, action: str
) -> tuple[Booking, Event]:
    booking = await _get_booking_or_404(booking_id, db)
    event = await get_event_or_404(booking.event_id, db)
    if not await is_event_owner(event, profile.id, db):
        raise HTTPException(status_code=403, detail=f"Only the event owner can {action} applications")
    if booking.status != BookingStatus.PENDING:
        raise HTTPException(
            status_code=400,
            detail=f"Cannot {action} an application that is {booking.status.value}",
        )
    return booking, event


@router.post("/{booking_id}/confirm", response_model=BookingResponse)
async def confirm_booking(
    booking_id: UUID,
    data: Optional[BookingStatusChangeRequest] = None,
    profile: Profile = Depends(get_current_profile),
    db: AsyncSession = Depends(get_db),
):
    """
    Accept an application. Other applications for the same event stay open;
    a musician cannot hold two confirmed bookings with overlapping windows.
    """
    booking, event = await _owner_transition(booking_id, profile, db, "confirm")

    clash = await db.scalar(
        select(Booking.id).where(
            Booking.musician_profile_id == booking.musician_profile_id,
            Booking.status == BookingStatus.CONFIRMED,
            Booking.id != booking.id,
            Booking.scheduled_start < booking.scheduled_end,
            Booking.scheduled_end > booking.scheduled_start,
        ).limit(1)
    )
    if clash:
        raise HTTPException(
            status_code=409,
            detail="This artist already has a confirmed booking at an overlapping time",
        )

    booking.status = BookingStatus.CONFIRMED
    booking.confirmed_at = utcnow()
    await _log_status_change(
        db, booking, BookingStatus.PENDING.value, BookingStatus.CONFIRMED.value, profile,
        reason=data.reason if data else None,
    )
    await dispatch_notification(
        db,
        booking.musician_profile_id,
        NotificationType.BOOKING_CONFIRMED,
        {"event_title": event.title},
        booking_id=booking.id,
    )
    await db.commit()

    logger.info(f"Booking {booking.id} confirmed by {profile.id}")
    return await _enrich_booking(booking, db)


@router.post("/{booking_id}/decline", response_model=BookingResponse)
async def decline_booking(
    booking_id: UUID,
    data: Optional[BookingStatusChangeRequest] = None,
    profile: Profile = Depends(get_current_profile),
    db: AsyncSession = Depends(get_db),
):
    booking, event = await _owner_transition(booking_id, profile, db, "decline")

    booking.status = BookingStatus.DECLINED
    booking.declined_at = utcnow()
    await _log_status_change(
        db, booking, BookingStatus.PENDING.value, BookingStatus.DECLINED.value, profile,
        reason=data.reason if data else None,
    )
    await dispatch_notification(
        db,
        booking.musician_profile_id,
        NotificationType.BOOKING_DECLINED,
        {"event_title": event.title},
        booking_id=booking.id,
    )
    await db.commit()
    return await _enrich_booking(booking, db)


# ── Applicant Actions ─────────────────────────────────────────

async def _applicant_transition(
    booking_id: UUID, profile: Profile, db: AsyncSession, action: str
) -> tuple[Booking, Event]:
    booking = await _get_booking_or_404(booking_id, db)
    if not await is_applicant_side(booking, profile.id, db):
        raise HTTPException(status_code=403, detail=f"Only the applicant can {action} this booking")
    if booking.status != BookingStatus.CONFIRMED:
        raise HTTPException(
            status_code=400,
            detail=f"Cannot {action} a booking that is {booking.status.value}",
        )
    event = await get_event_or_404(booking.event_id, db)
    return booking, event


@router.post("/{booking_id}/complete", response_model=BookingResponse)
async def complete_booking(
    booking_id: UUID,
    data: Optional[BookingStatusChangeRequest] = None,
    profile: Profile = Depends(get_current_profile),
    db: AsyncSession = Depends(get_db),
):
    """Applicant marks the gig as played. Unlocks reviews for both sides."""
    booking, event = await _applicant_transition(booking_id, profile, db, "complete")

    booking.status = BookingStatus.COMPLETED
    booking.completed_at = utcnow()
    await _log_status_change(
        db, booking, BookingStatus.CONFIRMED.value, BookingStatus.COMPLETED.value, profile,
        reason=data.reason if data else None,
    )
    await _notify_event_owners(
        db,
        event,
        NotificationType.BOOKING_COMPLETED,
        {"applicant_name": await _applicant_name(booking, db), "event_title": event.title},
        booking_id=booking.id,
        exclude=profile.id,
    )
    await db.commit()
    return await _enrich_booking(booking, db)


@router.post("/{booking_id}/cancel", response_model=BookingResponse)
async def cancel_booking(
    booking_id: UUID,
    data: Optional[BookingStatusChangeRequest] = None,
    profile: Profile = Depends(get_current_profile),
    db: AsyncSession = Depends(get_db),
):
    booking, event = await _applicant_transition(booking_id, profile, db, "cancel")

    booking.status = BookingStatus.CANCELLED
    booking.cancelled_at = utcnow()
    await _log_status_change(
        db, booking, BookingStatus.CONFIRMED.value, BookingStatus.CANCELLED.value, profile,
        reason=data.reason if data else None,
    )
    await _notify_event_owners(
        db,
        event,
        NotificationType.BOOKING_CANCELLED,
        {"applicant_name": await _applicant_name(booking, db), "event_title": event.title},
        booking_id=booking.id,
        exclude=profile.id,
    )
    await db.commit()

    logger.info(f"Booking {booking.id} cancelled by {profile.id}")
    return await _enrich_booking(booking, db)


@router.delete("/{booking_id}", response_model=MessageResponse)
async def withdraw_application(
    booking_id: UUID,
    profile: Profile = Depends(get_current_profile),
    db: AsyncSession = Depends(get_db),
):
    """Withdraw a pending application. The row and its history are removed."""
    booking = await _get_booking_or_404(booking_id, db)
    if not await is_applicant_side(booking, profile.id, db):
        raise HTTPException(status_code=403, detail="Only the applicant can withdraw this application")
    if booking.status != BookingStatus.PENDING:
        raise HTTPException(status_code=400, detail="Only pending applications can be withdrawn")

    event = await get_event_or_404(booking.event_id, db)
    applicant_name = await _applicant_name(booking, db)

    await db.execute(delete(BookingAuditLog).where(BookingAuditLog.booking_id == booking.id))
    await db.execute(delete(Booking).where(Booking.id == booking.id))
    await _notify_event_owners(
        db,
        event,
        NotificationType.APPLICATION_WITHDRAWN,
        {"applicant_name": applicant_name, "event_title": event.title},
    )
    await db.commit()
    return MessageResponse(message="Application withdrawn")


# ── History ───────────────────────────────────────────────────

@router.get("/{booking_id}/history", response_model=list[BookingAuditLogResponse])
async def get_booking_history(
    booking_id: UUID,
    profile: Profile = Depends(get_current_profile),
    db: AsyncSession = Depends(get_db),
):
    booking = await _get_booking_or_404(booking_id, db)
    await _ensure_participant(booking, profile, db)

    result = await db.execute(
        select(BookingAuditLog)
        .where(BookingAuditLog.booking_id == booking.id)
        .order_by(BookingAuditLog.created_at.asc())
    )
    return [BookingAuditLogResponse.model_validate(log) for log in result.scalars()]
