"""
tests/test_notifications.py
In-app notifications: listing, read state, unread count and template rendering.
"""

import threading
import uuid

import pytest
from httpx import AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from config.settings import settings
from services.notification.router import dispatch_notification, render_template
from shared.models.models import Notification, NotificationType, Profile, User
from tests.conftest import auth_headers


async def _notify(db: AsyncSession, profile: Profile, notification_type=NotificationType.BOOKING_CONFIRMED, **vars_):
    notif = await dispatch_notification(
        db, profile.id, notification_type, vars_ or {"event_title": "Friday Night Jazz"}
    )
    await db.commit()
    return notif


# ── Listing ────────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_get_notifications_empty(client: AsyncClient, musician: Profile, musician_user: User):
    response = await client.get("/notifications", headers=auth_headers(musician_user))
    assert response.status_code == 200
    assert response.json() == []


@pytest.mark.asyncio
async def test_get_notifications_returns_own(
    client: AsyncClient, db: AsyncSession, musician: Profile, musician_user: User, organizer: Profile
):
    """Profiles only see notifications addressed to them."""
    mine = await _notify(db, musician)
    await _notify(db, organizer, NotificationType.APPLICATION_WITHDRAWN, applicant_name="X", event_title="Y")

    response = await client.get("/notifications", headers=auth_headers(musician_user))
    data = response.json()
    assert [n["id"] for n in data] == [str(mine.id)]
    assert data[0]["title"] == "You're booked! 🎉"
    assert data[0]["body"] == "Your application for Friday Night Jazz has been confirmed."
    assert data[0]["type"] == "BOOKING_CONFIRMED"


@pytest.mark.asyncio
async def test_unread_only_filter(
    client: AsyncClient, db: AsyncSession, musician: Profile, musician_user: User
):
    first = await _notify(db, musician)
    await _notify(db, musician)
    await client.post(f"/notifications/{first.id}/read", headers=auth_headers(musician_user))

    response = await client.get("/notifications", headers=auth_headers(musician_user), params={"unread_only": True})
    assert len(response.json()) == 1
    assert response.json()[0]["id"] != str(first.id)


# ── Read State ─────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_unread_count_and_read_all(
    client: AsyncClient, db: AsyncSession, musician: Profile, musician_user: User
):
    for _ in range(3):
        await _notify(db, musician)

    count = await client.get("/notifications/unread-count", headers=auth_headers(musician_user))
    assert count.json() == {"unread_count": 3}

    response = await client.post("/notifications/read-all", headers=auth_headers(musician_user))
    assert response.status_code == 200

    count = await client.get("/notifications/unread-count", headers=auth_headers(musician_user))
    assert count.json() == {"unread_count": 0}


@pytest.mark.asyncio
async def test_cannot_mark_someone_elses_notification(
    client: AsyncClient, db: AsyncSession, musician: Profile, organizer: Profile, organizer_user: User
):
    notif = await _notify(db, musician)

    await client.post(f"/notifications/{notif.id}/read", headers=auth_headers(organizer_user))

    await db.refresh(notif)
    assert notif.is_read is False


@pytest.mark.asyncio
async def test_mark_unknown_notification_is_noop(client: AsyncClient, musician: Profile, musician_user: User):
    response = await client.post(f"/notifications/{uuid.uuid4()}/read", headers=auth_headers(musician_user))
    assert response.status_code == 200


@pytest.mark.asyncio
async def test_notifications_require_profile(client: AsyncClient):
    response = await client.get("/notifications")
    assert response.status_code == 401


# ── Dispatch ───────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_dispatch_stores_template_vars(db: AsyncSession, musician: Profile):
    notif = await _notify(
        db, musician, NotificationType.REVIEW_RECEIVED, rating=5, reviewer_name="Olivia Events"
    )
    assert isinstance(notif, Notification)
    assert notif.title == "You received a 5★ review"
    assert notif.data == {"rating": "5", "reviewer_name": "Olivia Events"}
    assert notif.sent_email is False


def test_render_template_unknown_type():
    assert render_template("SOMETHING_NEW") == ("Notification", "")


def test_render_template_band_request():
    title, body = render_template(
        NotificationType.BAND_REQUEST.value, {"band_name": "The Night Owls", "profile_name": "Sam Keys"}
    )
    assert title == "New join request for The Night Owls"
    assert body == "Sam Keys wants to join The Night Owls."


@pytest.mark.asyncio
async def test_dispatch_queues_email_off_the_event_loop(
    db: AsyncSession, musician: Profile, musician_user: User, monkeypatch
):
    from tasks.notification_tasks import send_email

    calls = []

    def record(*args):
        calls.append((threading.get_ident(), args))

    monkeypatch.setattr(settings, "EMAIL_NOTIFICATIONS_ENABLED", True)
    monkeypatch.setattr(send_email, "delay", record)

    notif = await _notify(db, musician)

    assert notif.sent_email is True
    [(thread_id, (to_email, subject, html_body))] = calls
    assert thread_id != threading.get_ident()
    assert to_email == musician_user.email
    assert subject == notif.title
    assert html_body == f"<p>{notif.body}</p>"
