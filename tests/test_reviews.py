"""
tests/test_reviews.py
Review eligibility, duplicate protection and rating aggregation.
"""

from datetime import datetime, timedelta, timezone

import pytest
from httpx import AsyncClient
from sqlalchemy import select

from shared.models.models import (
    BookingStatus,
    Event,
    Notification,
    NotificationType,
    PostedByType,
    Profile,
    User,
)
from tests.conftest import FakeRedis, auth_headers, make_band, make_booking, make_event


async def _review(client, reviewer: User, reviewee: Profile, rating=5, **extra):
    return await client.post(
        "/reviews",
        headers=auth_headers(reviewer),
        json={"reviewee_profile_id": str(reviewee.id), "rating": rating, **extra},
    )


# ── Eligibility ────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_review_after_completed_booking(
    client: AsyncClient, db, event: Event, organizer: Profile, organizer_user: User, musician: Profile
):
    booking = await make_booking(db, event, musician, status=BookingStatus.COMPLETED)

    response = await _review(client, organizer_user, musician, rating=4, comment="Tight set, great energy")
    assert response.status_code == 201
    data = response.json()
    assert data["booking_id"] == str(booking.id)
    assert data["reviewer_name"] == organizer.display_name
    assert data["rating"] == 4

    notif = await db.scalar(select(Notification).where(Notification.profile_id == musician.id))
    assert notif.type == NotificationType.REVIEW_RECEIVED


@pytest.mark.asyncio
async def test_musician_reviews_organizer(
    client: AsyncClient, db, event: Event, organizer: Profile, musician: Profile, musician_user: User
):
    await make_booking(db, event, musician, status=BookingStatus.COMPLETED)
    response = await _review(client, musician_user, organizer)
    assert response.status_code == 201


@pytest.mark.asyncio
async def test_review_after_confirmed_event_has_ended(
    client: AsyncClient, db, organizer: Profile, organizer_user: User, musician: Profile
):
    past = await make_event(db, organizer, starts_at=datetime.now(timezone.utc) - timedelta(days=2))
    await make_booking(db, past, musician, status=BookingStatus.CONFIRMED)

    response = await _review(client, organizer_user, musician)
    assert response.status_code == 201


@pytest.mark.asyncio
@pytest.mark.parametrize("status", [BookingStatus.PENDING, BookingStatus.CONFIRMED, BookingStatus.DECLINED])
async def test_review_requires_finished_booking(
    client: AsyncClient, db, event: Event, organizer_user: User, musician: Profile, status
):
    # The fixture event is still in the future, so a confirmed booking is not finished yet
    await make_booking(db, event, musician, status=status)
    response = await _review(client, organizer_user, musician)
    assert response.status_code == 403
    assert response.json()["detail"].startswith("You can only review someone you have worked with")


@pytest.mark.asyncio
async def test_review_requires_shared_booking(
    client: AsyncClient, db, event: Event, organizer_user: User, musician: Profile, other_musician: Profile
):
    await make_booking(db, event, musician, status=BookingStatus.COMPLETED)
    response = await _review(client, organizer_user, other_musician)
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_musicians_cannot_review_each_other_via_same_event(
    client: AsyncClient, db, event: Event, musician: Profile, musician_user: User, other_musician: Profile
):
    await make_booking(db, event, musician, status=BookingStatus.COMPLETED)
    await make_booking(db, event, other_musician, status=BookingStatus.COMPLETED)
    response = await _review(client, musician_user, other_musician)
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_band_leader_reviews_organizer_for_band_booking(
    client: AsyncClient, db, event: Event, organizer: Profile,
    musician: Profile, other_musician: Profile, other_musician_user: User,
):
    # Leadership passed to the other musician after the band applied
    band = await make_band(db, other_musician, members=[musician])
    await make_booking(
        db, event, musician, status=BookingStatus.COMPLETED,
        applied_by_type=PostedByType.BAND, band_id=band.id,
    )
    response = await _review(client, other_musician_user, organizer)
    assert response.status_code == 201


@pytest.mark.asyncio
async def test_review_with_explicit_booking(
    client: AsyncClient, db, organizer: Profile, organizer_user: User, musician: Profile
):
    first = await make_event(db, organizer, title="First")
    second = await make_event(db, organizer, title="Second")
    await make_booking(db, first, musician, status=BookingStatus.COMPLETED)
    target = await make_booking(db, second, musician, status=BookingStatus.COMPLETED)

    response = await _review(client, organizer_user, musician, booking_id=str(target.id))
    assert response.json()["booking_id"] == str(target.id)


@pytest.mark.asyncio
async def test_review_unknown_booking(client: AsyncClient, musician: Profile, organizer: Profile, organizer_user: User):
    response = await _review(
        client, organizer_user, musician, booking_id="00000000-0000-0000-0000-000000000000"
    )
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_cannot_review_self(client: AsyncClient, musician: Profile, musician_user: User):
    response = await _review(client, musician_user, musician)
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_rating_out_of_range(client: AsyncClient, musician: Profile, organizer: Profile, organizer_user: User):
    response = await _review(client, organizer_user, musician, rating=6)
    assert response.status_code == 422


# ── Duplicates & Aggregates ────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_duplicate_review_conflicts(
    client: AsyncClient, db, event: Event, organizer_user: User, musician: Profile
):
    await make_booking(db, event, musician, status=BookingStatus.COMPLETED)
    assert (await _review(client, organizer_user, musician)).status_code == 201

    again = await _review(client, organizer_user, musician, rating=1)
    assert again.status_code == 409


@pytest.mark.asyncio
async def test_second_booking_allows_second_review(
    client: AsyncClient, db, organizer: Profile, organizer_user: User, musician: Profile
):
    for title in ("Spring Fair", "Summer Fair"):
        gig = await make_event(db, organizer, title=title)
        await make_booking(db, gig, musician, status=BookingStatus.COMPLETED)

    assert (await _review(client, organizer_user, musician, rating=5)).status_code == 201
    assert (await _review(client, organizer_user, musician, rating=3)).status_code == 201
    assert (await _review(client, organizer_user, musician)).status_code == 409


@pytest.mark.asyncio
async def test_rating_is_recomputed(
    client: AsyncClient, db, event: Event, organizer: Profile,
    musician: Profile, musician_user: User, other_musician: Profile, other_musician_user: User,
    fake_redis: FakeRedis,
):
    await make_booking(db, event, musician, status=BookingStatus.COMPLETED)
    await make_booking(db, event, other_musician, status=BookingStatus.COMPLETED)

    # Warm the profile cache so invalidation is observable
    await client.get(f"/profiles/{organizer.id}")
    assert f"profile:{organizer.id}" in fake_redis.store

    await _review(client, musician_user, organizer, rating=5)
    await _review(client, other_musician_user, organizer, rating=4, comment="Smooth load-in")
    assert f"profile:{organizer.id}" not in fake_redis.store

    response = await client.get(f"/reviews/profile/{organizer.id}")
    assert response.status_code == 200
    data = response.json()
    assert data["rating_count"] == 2
    assert float(data["rating_avg"]) == 4.5
    assert {r["reviewer_name"] for r in data["items"]} == {musician.display_name, other_musician.display_name}

    profile = await client.get(f"/profiles/{organizer.id}")
    assert profile.json()["rating_count"] == 2


@pytest.mark.asyncio
async def test_reviews_for_unknown_profile(client: AsyncClient):
    response = await client.get("/reviews/profile/00000000-0000-0000-0000-000000000000")
    assert response.status_code == 404
