"""
tests/test_tasks.py
Celery worker helpers, run against a synchronous in-memory SQLite session.
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
from sqlalchemy import create_engine, select
from sqlalchemy.orm import Session

from config.database import Base
from config.settings import settings
from shared.models.models import (
    Band,
    BandMember,
    BandRole,
    Booking,
    BookingStatus,
    Event,
    Notification,
    NotificationType,
    PostedByType,
    Profile,
    ProfileRole,
    Review,
    User,
)
from tasks.notification_tasks import queue_review_requests, sync_database_url

NOW = datetime(2026, 6, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def sync_db():
    engine = create_engine("sqlite://")
    Base.metadata.create_all(engine)
    with Session(engine) as session:
        yield session
    engine.dispose()


def _profile(db: Session, email: str, role: ProfileRole, name: str) -> Profile:
    user = User(email=email, password_hash="x")
    db.add(user)
    db.flush()
    profile = Profile(user_id=user.id, role=role, display_name=name, genres=[])
    db.add(profile)
    db.flush()
    return profile


def _band(db: Session, name: str, leaders, members=()) -> Band:
    band = Band(name=name, created_by_id=leaders[0].id)
    db.add(band)
    db.flush()
    for profile in leaders:
        db.add(BandMember(band_id=band.id, profile_id=profile.id, role=BandRole.LEADER))
    for profile in members:
        db.add(BandMember(band_id=band.id, profile_id=profile.id, role=BandRole.MEMBER))
    db.flush()
    return band


def _completed_booking(db: Session, completed_at: datetime) -> tuple[Booking, Profile, Profile]:
    musician = _profile(db, f"m{completed_at.timestamp()}@example.com", ProfileRole.MUSICIAN, "Alex Rivers")
    organizer = _profile(db, f"o{completed_at.timestamp()}@example.com", ProfileRole.ORGANIZER, "Olivia Events")
    starts_at = completed_at - timedelta(hours=5)
    event = Event(
        organizer_profile_id=organizer.id,
        title="Harbour Festival",
        genres=["Folk"],
        starts_at=starts_at,
        ends_at=starts_at + timedelta(hours=4),
        posted_by_type=PostedByType.INDIVIDUAL,
    )
    db.add(event)
    db.flush()
    booking = Booking(
        event_id=event.id,
        musician_profile_id=musician.id,
        applied_by_type=PostedByType.INDIVIDUAL,
        quotation=Decimal("500"),
        status=BookingStatus.COMPLETED,
        scheduled_start=event.starts_at,
        scheduled_end=event.ends_at,
        completed_at=completed_at,
    )
    db.add(booking)
    db.commit()
    return booking, musician, organizer


# ── sync_database_url ──────────────────────────────────────────────────────────

@pytest.mark.parametrize(
    "url, expected",
    [
        ("postgresql+asyncpg://u:p@db/gigs", "postgresql+psycopg2://u:p@db/gigs"),
        ("sqlite+aiosqlite:///./gigs.db", "sqlite:///./gigs.db"),
        ("postgresql://u:p@db/gigs", "postgresql://u:p@db/gigs"),
    ],
)
def test_sync_database_url(url, expected):
    assert sync_database_url(url) == expected


# ── Review requests ────────────────────────────────────────────────────────────

def test_review_requests_sent_to_both_sides(sync_db: Session):
    completed_at = NOW - timedelta(hours=settings.REVIEW_REQUEST_DELAY_HOURS, minutes=30)
    booking, musician, organizer = _completed_booking(sync_db, completed_at)

    assert queue_review_requests(sync_db, now=NOW) == 2

    rows = sync_db.execute(
        select(Notification.profile_id, Notification.body).where(
            Notification.type == NotificationType.REVIEW_REQUEST
        )
    ).all()
    bodies = dict(rows)
    assert bodies[musician.id] == "Share your experience working with Olivia Events."
    assert bodies[organizer.id] == "Share your experience working with Alex Rivers."


def test_review_requests_are_not_repeated(sync_db: Session):
    completed_at = NOW - timedelta(hours=settings.REVIEW_REQUEST_DELAY_HOURS, minutes=30)
    _completed_booking(sync_db, completed_at)

    assert queue_review_requests(sync_db, now=NOW) == 2
    assert queue_review_requests(sync_db, now=NOW) == 0


def test_review_requests_skip_existing_reviewers(sync_db: Session):
    completed_at = NOW - timedelta(hours=settings.REVIEW_REQUEST_DELAY_HOURS, minutes=10)
    booking, musician, organizer = _completed_booking(sync_db, completed_at)
    sync_db.add(Review(
        booking_id=booking.id,
        reviewer_profile_id=organizer.id,
        reviewee_profile_id=musician.id,
        rating=5,
    ))
    sync_db.commit()

    assert queue_review_requests(sync_db, now=NOW) == 1
    recipient = sync_db.scalar(
        select(Notification.profile_id).where(Notification.type == NotificationType.REVIEW_REQUEST)
    )
    assert recipient == musician.id


@pytest.mark.parametrize("hours_ago", [0.5, 5])
def test_review_requests_outside_window(sync_db: Session, hours_ago):
    _completed_booking(sync_db, NOW - timedelta(hours=hours_ago))
    assert queue_review_requests(sync_db, now=NOW) == 0


def test_review_requests_reach_every_band_leader(sync_db: Session):
    completed_at = NOW - timedelta(hours=settings.REVIEW_REQUEST_DELAY_HOURS, minutes=30)
    booking, musician, organizer = _completed_booking(sync_db, completed_at)
    event = sync_db.get(Event, booking.event_id)

    co_leader = _profile(sync_db, "co.leader@example.com", ProfileRole.MUSICIAN, "Casey Strings")
    bassist = _profile(sync_db, "bassist@example.com", ProfileRole.MUSICIAN, "Bo Low")
    host_partner = _profile(sync_db, "host.partner@example.com", ProfileRole.MUSICIAN, "Pat Host")

    applying = _band(sync_db, "The Night Owls", [musician, co_leader], members=[bassist])
    hosting = _band(sync_db, "Harbour Crew", [organizer, host_partner])
    booking.applied_by_type = PostedByType.BAND
    booking.band_id = applying.id
    event.posted_by_type = PostedByType.BAND
    event.band_id = hosting.id
    sync_db.commit()

    assert queue_review_requests(sync_db, now=NOW) == 4

    bodies = dict(sync_db.execute(
        select(Notification.profile_id, Notification.body).where(
            Notification.type == NotificationType.REVIEW_REQUEST
        )
    ).all())
    assert set(bodies) == {musician.id, co_leader.id, organizer.id, host_partner.id}
    assert bodies[co_leader.id] == "Share your experience working with Harbour Crew."
    assert bodies[host_partner.id] == "Share your experience working with The Night Owls."
