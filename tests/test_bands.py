"""
tests/test_bands.py
Band creation, roster management, join requests / invitations,
leadership transfer, disbanding and the band chat.
"""

import pytest
from httpx import AsyncClient
from sqlalchemy import func, select

from shared.models.models import (
    Band,
    BandMember,
    BandRole,
    Notification,
    NotificationType,
    Profile,
    User,
)
from tests.conftest import auth_headers, make_band


async def _role_of(db, band_id, profile_id):
    db.expire_all()
    return await db.scalar(
        select(BandMember.role).where(BandMember.band_id == band_id, BandMember.profile_id == profile_id)
    )


# ── Creation & Listing ─────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_create_band_makes_creator_leader(client: AsyncClient, musician: Profile, musician_user: User):
    response = await client.post(
        "/bands",
        headers=auth_headers(musician_user),
        json={"name": "  Velvet Static ", "description": "Shoegaze trio"},
    )
    assert response.status_code == 201
    data = response.json()
    assert data["name"] == "Velvet Static"
    assert data["member_count"] == 1
    assert data["my_role"] == "leader"
    assert data["members"][0]["profile_id"] == str(musician.id)


@pytest.mark.asyncio
async def test_organizer_cannot_create_band(client: AsyncClient, organizer: Profile, organizer_user: User):
    response = await client.post("/bands", headers=auth_headers(organizer_user), json={"name": "Nope"})
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_list_bands_and_mine(
    client: AsyncClient, db, musician: Profile, musician_user: User, other_musician: Profile
):
    await make_band(db, musician, members=[other_musician])
    await make_band(db, other_musician, name="Solo Project")

    listed = await client.get("/bands")
    assert listed.status_code == 200
    counts = {b["name"]: b["member_count"] for b in listed.json()}
    assert counts == {"The Night Owls": 2, "Solo Project": 1}

    mine = await client.get("/bands/mine", headers=auth_headers(musician_user))
    assert [(b["name"], b["my_role"]) for b in mine.json()] == [("The Night Owls", "leader")]


@pytest.mark.asyncio
async def test_band_detail_shows_viewer_role(
    client: AsyncClient, db, musician: Profile, other_musician: Profile, other_musician_user: User
):
    band = await make_band(db, musician, members=[other_musician])

    anonymous = await client.get(f"/bands/{band.id}")
    assert anonymous.status_code == 200
    assert anonymous.json()["my_role"] is None
    assert len(anonymous.json()["members"]) == 2

    signed_in = await client.get(f"/bands/{band.id}", headers=auth_headers(other_musician_user))
    assert signed_in.json()["my_role"] == "member"


@pytest.mark.asyncio
async def test_update_band_leader_only(
    client: AsyncClient, db, musician: Profile, musician_user: User,
    other_musician: Profile, other_musician_user: User,
):
    band = await make_band(db, musician, members=[other_musician])

    denied = await client.put(
        f"/bands/{band.id}", headers=auth_headers(other_musician_user), json={"name": "Hijacked"}
    )
    assert denied.status_code == 403

    ok = await client.put(f"/bands/{band.id}", headers=auth_headers(musician_user), json={"name": "Owls"})
    assert ok.status_code == 200
    assert ok.json()["name"] == "Owls"


# ── Join Requests & Invitations ────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_join_request_flow(
    client: AsyncClient, db, musician: Profile, musician_user: User,
    other_musician: Profile, other_musician_user: User,
):
    band = await make_band(db, musician)

    response = await client.post(
        f"/bands/{band.id}/join-requests",
        headers=auth_headers(other_musician_user),
        json={"message": "I play keys"},
    )
    assert response.status_code == 201
    request_id = response.json()["id"]
    assert response.json()["request_type"] == "musician_to_band"

    duplicate = await client.post(
        f"/bands/{band.id}/join-requests", headers=auth_headers(other_musician_user), json={}
    )
    assert duplicate.status_code == 409

    incoming = await client.get("/bands/requests/incoming", headers=auth_headers(musician_user))
    assert [r["id"] for r in incoming.json()] == [request_id]
    assert incoming.json()[0]["profile_name"] == other_musician.display_name

    # Requester cannot approve their own join request
    self_accept = await client.post(
        f"/bands/requests/{request_id}/accept", headers=auth_headers(other_musician_user)
    )
    assert self_accept.status_code == 403

    accepted = await client.post(f"/bands/requests/{request_id}/accept", headers=auth_headers(musician_user))
    assert accepted.status_code == 200
    assert accepted.json()["status"] == "accepted"
    assert await _role_of(db, band.id, other_musician.id) == BandRole.MEMBER

    again = await client.post(f"/bands/requests/{request_id}/accept", headers=auth_headers(musician_user))
    assert again.status_code == 400

    notified = await db.scalar(
        select(func.count(Notification.id)).where(
            Notification.profile_id == other_musician.id,
            Notification.type == NotificationType.BAND_REQUEST_ACCEPTED,
        )
    )
    assert notified == 1


@pytest.mark.asyncio
async def test_member_cannot_request_to_join(
    client: AsyncClient, db, musician: Profile, other_musician: Profile, other_musician_user: User
):
    band = await make_band(db, musician, members=[other_musician])
    response = await client.post(
        f"/bands/{band.id}/join-requests", headers=auth_headers(other_musician_user), json={}
    )
    assert response.status_code == 409


@pytest.mark.asyncio
async def test_invitation_flow(
    client: AsyncClient, db, musician: Profile, musician_user: User,
    other_musician: Profile, other_musician_user: User,
):
    band = await make_band(db, musician)

    invite = await client.post(
        f"/bands/{band.id}/invitations",
        headers=auth_headers(musician_user),
        json={"profile_id": str(other_musician.id), "message": "Join us"},
    )
    assert invite.status_code == 201
    request_id = invite.json()["id"]

    mine = await client.get("/bands/requests/mine", headers=auth_headers(other_musician_user))
    assert [r["id"] for r in mine.json()] == [request_id]
    assert mine.json()[0]["band_name"] == "The Night Owls"

    # Only the invitee answers an invitation
    leader_accept = await client.post(f"/bands/requests/{request_id}/accept", headers=auth_headers(musician_user))
    assert leader_accept.status_code == 403

    rejected = await client.post(
        f"/bands/requests/{request_id}/reject", headers=auth_headers(other_musician_user)
    )
    assert rejected.status_code == 200
    assert rejected.json()["status"] == "rejected"
    assert await _role_of(db, band.id, other_musician.id) is None


@pytest.mark.asyncio
async def test_cannot_invite_organizer(
    client: AsyncClient, db, musician: Profile, musician_user: User, organizer: Profile
):
    band = await make_band(db, musician)
    response = await client.post(
        f"/bands/{band.id}/invitations",
        headers=auth_headers(musician_user),
        json={"profile_id": str(organizer.id)},
    )
    assert response.status_code == 400


# ── Membership ─────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_sole_leader_cannot_leave_with_members(
    client: AsyncClient, db, musician: Profile, musician_user: User, other_musician: Profile
):
    band = await make_band(db, musician, members=[other_musician])
    response = await client.delete(f"/bands/{band.id}/members/me", headers=auth_headers(musician_user))
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_member_leaves(
    client: AsyncClient, db, musician: Profile, other_musician: Profile, other_musician_user: User
):
    band = await make_band(db, musician, members=[other_musician])
    response = await client.delete(f"/bands/{band.id}/members/me", headers=auth_headers(other_musician_user))
    assert response.status_code == 200
    assert await _role_of(db, band.id, other_musician.id) is None


@pytest.mark.asyncio
async def test_last_member_leaving_dissolves_band(client: AsyncClient, db, musician: Profile, musician_user: User):
    band = await make_band(db, musician)
    response = await client.delete(f"/bands/{band.id}/members/me", headers=auth_headers(musician_user))
    assert response.status_code == 200

    db.expire_all()
    assert await db.scalar(select(func.count(Band.id)).where(Band.id == band.id)) == 0


@pytest.mark.asyncio
async def test_leader_removes_member(
    client: AsyncClient, db, musician: Profile, musician_user: User,
    other_musician: Profile, other_musician_user: User,
):
    band = await make_band(db, musician, members=[other_musician])

    denied = await client.delete(
        f"/bands/{band.id}/members/{musician.id}", headers=auth_headers(other_musician_user)
    )
    assert denied.status_code == 403

    removed = await client.delete(
        f"/bands/{band.id}/members/{other_musician.id}", headers=auth_headers(musician_user)
    )
    assert removed.status_code == 200
    assert await _role_of(db, band.id, other_musician.id) is None


@pytest.mark.asyncio
async def test_transfer_leadership(
    client: AsyncClient, db, musician: Profile, musician_user: User, other_musician: Profile
):
    band = await make_band(db, musician, members=[other_musician])

    response = await client.post(
        f"/bands/{band.id}/transfer-leadership",
        headers=auth_headers(musician_user),
        json={"new_leader_profile_id": str(other_musician.id)},
    )
    assert response.status_code == 200
    assert response.json()["my_role"] == "member"
    assert await _role_of(db, band.id, other_musician.id) == BandRole.LEADER
    assert await _role_of(db, band.id, musician.id) == BandRole.MEMBER

    # Former leader can now leave
    left = await client.delete(f"/bands/{band.id}/members/me", headers=auth_headers(musician_user))
    assert left.status_code == 200


@pytest.mark.asyncio
async def test_transfer_to_non_member(
    client: AsyncClient, db, musician: Profile, musician_user: User, other_musician: Profile
):
    band = await make_band(db, musician)
    response = await client.post(
        f"/bands/{band.id}/transfer-leadership",
        headers=auth_headers(musician_user),
        json={"new_leader_profile_id": str(other_musician.id)},
    )
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_disband(
    client: AsyncClient, db, musician: Profile, musician_user: User,
    other_musician: Profile, other_musician_user: User,
):
    band = await make_band(db, musician, members=[other_musician])

    denied = await client.delete(f"/bands/{band.id}", headers=auth_headers(other_musician_user))
    assert denied.status_code == 403

    response = await client.delete(f"/bands/{band.id}", headers=auth_headers(musician_user))
    assert response.status_code == 200

    assert (await client.get(f"/bands/{band.id}")).status_code == 404
    db.expire_all()
    assert await db.scalar(select(func.count(BandMember.id)).where(BandMember.band_id == band.id)) == 0


# ── Band Chat ──────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_band_chat_members_only(
    client: AsyncClient, db, musician: Profile, musician_user: User,
    other_musician: Profile, other_musician_user: User, organizer_user: User, organizer: Profile,
):
    band = await make_band(db, musician, members=[other_musician])

    first = await client.post(
        f"/bands/{band.id}/chat", headers=auth_headers(musician_user), json={"content": "Rehearsal at 7"}
    )
    assert first.status_code == 201
    assert first.json()["sender_name"] == musician.display_name

    await client.post(
        f"/bands/{band.id}/chat", headers=auth_headers(other_musician_user), json={"content": "See you there"}
    )

    history = await client.get(f"/bands/{band.id}/chat", headers=auth_headers(other_musician_user))
    assert [m["content"] for m in history.json()] == ["Rehearsal at 7", "See you there"]

    outsider = await client.get(f"/bands/{band.id}/chat", headers=auth_headers(organizer_user))
    assert outsider.status_code == 403


@pytest.mark.asyncio
async def test_band_chat_rejects_blank(client: AsyncClient, db, musician: Profile, musician_user: User):
    band = await make_band(db, musician)
    response = await client.post(
        f"/bands/{band.id}/chat", headers=auth_headers(musician_user), json={"content": "   "}
    )
    assert response.status_code == 422
