"""
services/notification/router.py
In-app notifications plus the central dispatcher used by the other services.
Email delivery is handed to the Celery worker (tasks.notification_tasks).
"""

import logging
from datetime import datetime, timezone
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from starlette.concurrency import run_in_threadpool
from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from config.settings import settings
from shared.middleware.auth import get_current_profile
from shared.models.models import Notification, NotificationType, Profile, User
from shared.schemas.schemas import MessageResponse, NotificationResponse

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/notifications", tags=["Notifications"])


# ── Notification Templates ────────────────────────────────────

TEMPLATES = {
    "APPLICATION_RECEIVED": {
        "title": "New application for {event_title}",
        "body": "{applicant_name} applied to {event_title} with a quote of {quotation}.",
    },
    "APPLICATION_WITHDRAWN": {
        "title": "Application withdrawn",
        "body": "{applicant_name} withdrew their application for {event_title}.",
    },
    "BOOKING_CONFIRMED": {
        "title": "You're booked! 🎉",
        "body": "Your application for {event_title} has been confirmed.",
    },
    "BOOKING_DECLINED": {
        "title": "Application declined",
        "body": "Your application for {event_title} was not accepted this time.",
    },
    "BOOKING_COMPLETED": {
        "title": "Gig completed",
        "body": "{applicant_name} marked {event_title} as completed. Leave them a review!",
    },
    "BOOKING_CANCELLED": {
        "title": "Booking cancelled",
        "body": "{applicant_name} cancelled their confirmed booking for {event_title}.",
    },
    "REVIEW_RECEIVED": {
        "title": "You received a {rating}★ review",
        "body": "{reviewer_name} left you a review.",
    },
    "REVIEW_REQUEST": {
        "title": "How did {event_title} go? ⭐",
        "body": "Share your experience working with {counterpart_name}.",
    },
    "NEW_MESSAGE": {
        "title": "New message from {sender_name}",
        "body": "{preview}",
    },
    "BAND_REQUEST": {
        "title": "New join request for {band_name}",
        "body": "{profile_name} wants to join {band_name}.",
    },
    "BAND_INVITATION": {
        "title": "Band invitation",
        "body": "You have been invited to join {band_name}.",
    },
    "BAND_REQUEST_ACCEPTED": {
        "title": "Welcome to {band_name}",
        "body": "{profile_name} is now a member of {band_name}.",
    },
}


def render_template(notification_type: str, template_vars: Optional[dict] = None) -> tuple[str, str]:
    template = TEMPLATES.get(notification_type, {})
    vars_ = template_vars or {}
    title = template.get("title", "Notification").format(**vars_)
    body = template.get("body", "").format(**vars_)
    return title, body


async def dispatch_notification(
    db: AsyncSession,
    profile_id: UUID,
    notification_type: NotificationType,
    template_vars: dict = None,
    booking_id: UUID = None,
    send_email_: bool = True,
) -> Notification:
    """
    Central notification dispatcher.
    1. Save to DB (in-app)
    2. Queue email via Celery (best effort)
    """
    title, body = render_template(notification_type.value, template_vars)

    notif = Notification(
        profile_id=profile_id,
        booking_id=booking_id,
        type=notification_type,
        title=title,
        body=body,
        data={k: str(v) for k, v in (template_vars or {}).items()},
    )
    db.add(notif)

    if send_email_ and settings.EMAIL_NOTIFICATIONS_ENABLED:
        email = await db.scalar(
            select(User.email).join(Profile, Profile.user_id == User.id).where(Profile.id == profile_id)
        )
        if email:
            try:
                from tasks.notification_tasks import send_email

                await run_in_threadpool(send_email.delay, email, title, f"<p>{body}</p>")
                notif.sent_email = True
            except Exception as e:
                # Broker outages must not fail the request that triggered the notification
                logger.warning(f"Could not queue email for profile {profile_id}: {e}")

    await db.flush()
    return notif


# ── REST Endpoints ────────────────────────────────────────────

@router.get("", response_model=list[NotificationResponse])
async def get_my_notifications(
    unread_only: bool = Query(False),
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=50),
    profile: Profile = Depends(get_current_profile),
    db: AsyncSession = Depends(get_db),
):
    """Get the caller's in-app notifications, newest first."""
    query = (
        select(Notification)
        .where(Notification.profile_id == profile.id)
        .order_by(Notification.created_at.desc())
    )

    if unread_only:
        query = query.where(Notification.is_read == False)  # noqa: E712

    query = query.offset((page - 1) * page_size).limit(page_size)
    result = await db.execute(query)
    return [NotificationResponse.model_validate(n) for n in result.scalars()]


@router.get("/unread-count")
async def unread_count(
    profile: Profile = Depends(get_current_profile),
    db: AsyncSession = Depends(get_db),
):
    count = await db.scalar(
        select(func.count(Notification.id)).where(
            Notification.profile_id == profile.id,
            Notification.is_read == False,  # noqa: E712
        )
    )
    return {"unread_count": count or 0}


@router.post("/read-all", response_model=MessageResponse)
async def mark_all_read(
    profile: Profile = Depends(get_current_profile),
    db: AsyncSession = Depends(get_db),
):
    await db.execute(
        update(Notification)
        .where(Notification.profile_id == profile.id, Notification.is_read == False)  # noqa: E712
        .values(is_read=True, read_at=datetime.now(timezone.utc))
    )
    await db.commit()
    return MessageResponse(message="All notifications marked as read")


@router.post("/{notification_id}/read", response_model=MessageResponse)
async def mark_read(
    notification_id: UUID,
    profile: Profile = Depends(get_current_profile),
    db: AsyncSession = Depends(get_db),
):
    await db.execute(
        update(Notification)
        .where(Notification.id == notification_id, Notification.profile_id == profile.id)
        .values(is_read=True, read_at=datetime.now(timezone.utc))
    )
    await db.commit()
    return MessageResponse(message="Marked as read")
