"""
tasks/notification_tasks.py
Celery tasks for out-of-band notification delivery.

- send_email: transactional e-mail through Resend, retried with backoff
- send_review_requests: hourly beat task nudging both sides of a finished gig

Usage from a route (see services.notification.router.dispatch_notification):
    from tasks.notification_tasks import send_email
    send_email.delay(to_email, subject, html_body)
"""

import logging
from datetime import datetime, timedelta, timezone
from functools import lru_cache
from typing import Optional

from celery import Task
from sqlalchemy import create_engine, select
from sqlalchemy.orm import Session, sessionmaker

from config.settings import settings
from tasks.celery_app import celery_app

logger = logging.getLogger(__name__)


# ── Sync DB access for workers ─────────────────────────────────────────────────

def sync_database_url(url: str) -> str:
    """Celery runs sync: swap async drivers for their blocking counterparts."""
    return url.replace("+asyncpg", "+psycopg2").replace("+aiosqlite", "")


@lru_cache()
def _session_factory() -> sessionmaker:
    engine = create_engine(sync_database_url(settings.DATABASE_URL), pool_pre_ping=True)
    return sessionmaker(bind=engine)


class DatabaseTask(Task):
    """Base class that provides a synchronous DB session for tasks."""
    abstract = True

    def get_session(self) -> Session:
        return _session_factory()()


# ── Delivery ───────────────────────────────────────────────────────────────────

def _send_email(to_email: str, subject: str, html_body: str) -> bool:
    """Send transactional email via Resend. Returns True on success."""
    if not settings.RESEND_API_KEY:
        logger.info(f"RESEND_API_KEY not set; skipping email '{subject}' to {to_email}")
        return True
    try:
        import resend

        resend.api_key = settings.RESEND_API_KEY
        resend.Emails.send({
            "from": f"{settings.EMAIL_FROM_NAME} <{settings.EMAIL_FROM}>",
            "to": to_email,
            "subject": subject,
            "html": html_body,
        })
        return True
    except Exception as e:
        logger.warning(f"Email send failed: {e}")
        return False


@celery_app.task(bind=True, max_retries=3, default_retry_delay=60)
def send_email(self, to_email: str, subject: str, html_body: str):
    """Send a transactional email via Resend with retry on failure."""
    success = _send_email(to_email, subject, html_body)
    if not success:
        raise self.retry(countdown=60 * (2 ** self.request.retries))


# ── Review requests ───────────────────────────────────────────────────────────

def _leader_ids(db: Session, band_id) -> list:
    from shared.models.models import BandMember, BandRole

    return list(db.scalars(
        select(BandMember.profile_id).where(
            BandMember.band_id == band_id, BandMember.role == BandRole.LEADER
        )
    ))


def _display_name(db: Session, profile_id, band_id=None) -> str:
    """Band name when acting for a band, otherwise the profile's display name."""
    from shared.models.models import Band, Profile

    if band_id:
        name = db.scalar(select(Band.name).where(Band.id == band_id))
    else:
        name = db.scalar(select(Profile.display_name).where(Profile.id == profile_id))
    return name or ""


def queue_review_requests(db: Session, now: Optional[datetime] = None) -> int:
    """
    Create REVIEW_REQUEST notifications for bookings completed between
    REVIEW_REQUEST_DELAY_HOURS and one hour earlier. Every profile on either side
    (the musician plus leaders of the applying band, the organizer plus
    leaders of a posting band) that has not reviewed yet and was not already
    asked gets one.
    Returns the number of notifications created.
    """
    from shared.models.models import (
        Booking,
        BookingStatus,
        Event,
        Notification,
        NotificationType,
        PostedByType,
        Profile,
        Review,
        User,
    )
    from services.notification.router import render_template

    now = now or datetime.now(timezone.utc)
    window_end = now - timedelta(hours=settings.REVIEW_REQUEST_DELAY_HOURS)
    window_start = window_end - timedelta(hours=1)

    rows = db.execute(
        select(Booking, Event)
        .join(Event, Event.id == Booking.event_id)
        .where(
            Booking.status == BookingStatus.COMPLETED,
            Booking.completed_at >= window_start,
            Booking.completed_at < window_end,
        )
    ).all()

    created = 0
    for booking, event in rows:
        applicants = {booking.musician_profile_id}
        if booking.band_id:
            applicants.update(_leader_ids(db, booking.band_id))
        owners = {event.organizer_profile_id}
        band_event = event.posted_by_type == PostedByType.BAND and event.band_id
        if band_event:
            owners.update(_leader_ids(db, event.band_id))

        applicant_name = _display_name(db, booking.musician_profile_id, booking.band_id)
        owner_name = _display_name(db, event.organizer_profile_id, event.band_id if band_event else None)
        pairs = [(pid, owner_name) for pid in applicants] + [(pid, applicant_name) for pid in owners]

        for profile_id, counterpart_name in pairs:
            already_reviewed = db.execute(
                select(Review.id).where(
                    Review.booking_id == booking.id,
                    Review.reviewer_profile_id == profile_id,
                )
            ).first()
            already_asked = db.execute(
                select(Notification.id).where(
                    Notification.booking_id == booking.id,
                    Notification.profile_id == profile_id,
                    Notification.type == NotificationType.REVIEW_REQUEST,
                )
            ).first()
            if already_reviewed or already_asked:
                continue

            vars_ = {"event_title": event.title, "counterpart_name": counterpart_name}
            title, body = render_template(NotificationType.REVIEW_REQUEST.value, vars_)
            db.add(Notification(
                profile_id=profile_id,
                booking_id=booking.id,
                type=NotificationType.REVIEW_REQUEST,
                title=title,
                body=body,
                data=vars_,
            ))
            created += 1

            if settings.EMAIL_NOTIFICATIONS_ENABLED:
                email = db.execute(
                    select(User.email).join(Profile, Profile.user_id == User.id).where(Profile.id == profile_id)
                ).scalar_one_or_none()
                if email:
                    send_email.delay(email, title, f"<p>{body}</p>")

    db.commit()
    return created


@celery_app.task(bind=True, base=DatabaseTask)
def send_review_requests(self):
    """Beat task: runs every hour."""
    db = self.get_session()
    try:
        sent = queue_review_requests(db)
        logger.info(f"Sent {sent} review requests")
    except Exception as e:
        db.rollback()
        logger.exception(f"send_review_requests failed: {e}")
        raise
    finally:
        db.close()
