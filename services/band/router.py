"""
services/band/router.py
Bands: roster management, join requests / invitations, leadership transfer
and disbanding. The creator of a band becomes its first leader.
"""

import logging
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from shared.middleware.auth import get_current_profile, get_optional_profile, require_musician
from shared.models.models import (
    Band,
    BandChatMessage,
    BandMember,
    BandRequest,
    BandRequestStatus,
    BandRequestType,
    BandRole,
    Booking,
    Event,
    NotificationType,
    Profile,
    ProfileRole,
)
from shared.schemas.schemas import (
    BandCreateRequest,
    BandDetailResponse,
    BandInviteRequest,
    BandJoinRequestCreate,
    BandMemberResponse,
    BandRequestResponse,
    BandResponse,
    BandUpdateRequest,
    MessageResponse,
    TransferLeadershipRequest,
)
from shared.utils.dates import utcnow
from services.notification.router import dispatch_notification

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/bands", tags=["Bands"])


# ── Helpers (also used by events, bookings and band chat) ─────

async def get_band_or_404(band_id: UUID, db: AsyncSession) -> Band:
    result = await db.execute(
        select(Band).where(Band.id == band_id, Band.is_active == True)  # noqa: E712
    )
    band = result.scalar_one_or_none()
    if not band:
        raise HTTPException(status_code=404, detail="Band not found")
    return band


async def get_membership(db: AsyncSession, band_id: UUID, profile_id: UUID) -> Optional[BandMember]:
    result = await db.execute(
        select(BandMember).where(BandMember.band_id == band_id, BandMember.profile_id == profile_id)
    )
    return result.scalar_one_or_none()


async def is_band_leader(db: AsyncSession, band_id: UUID, profile_id: UUID) -> bool:
    membership = await get_membership(db, band_id, profile_id)
    return membership is not None and membership.role == BandRole.LEADER


async def require_band_leader(db: AsyncSession, band_id: UUID, profile: Profile, action: str) -> None:
    if not await is_band_leader(db, band_id, profile.id):
        raise HTTPException(status_code=403, detail=f"Only the band leader can {action}")


async def leader_ids(db: AsyncSession, band_id: UUID) -> list[UUID]:
    result = await db.execute(
        select(BandMember.profile_id).where(
            BandMember.band_id == band_id, BandMember.role == BandRole.LEADER
        )
    )
    return list(result.scalars())


async def _member_count(db: AsyncSession, band_id: UUID) -> int:
    return await db.scalar(
        select(func.count(BandMember.id)).where(BandMember.band_id == band_id)
    ) or 0


def _band_response(band: Band, member_count: int, my_role: Optional[str] = None) -> BandResponse:
    return BandResponse(
        id=band.id,
        name=band.name,
        description=band.description,
        created_by_id=band.created_by_id,
        is_active=band.is_active,
        created_at=band.created_at,
        member_count=member_count,
        my_role=my_role,
    )


async def _band_detail(band: Band, db: AsyncSession, viewer: Optional[Profile] = None) -> BandDetailResponse:
    result = await db.execute(
        select(BandMember, Profile)
        .join(Profile, Profile.id == BandMember.profile_id)
        .where(BandMember.band_id == band.id)
        .order_by(BandMember.joined_at.asc())
    )
    members = []
    my_role = None
    for membership, member_profile in result.all():
        members.append(BandMemberResponse(
            profile_id=membership.profile_id,
            role=membership.role.value,
            joined_at=membership.joined_at,
            display_name=member_profile.display_name,
            avatar_url=member_profile.avatar_url,
        ))
        if viewer and membership.profile_id == viewer.id:
            my_role = membership.role.value

    base = _band_response(band, len(members), my_role)
    return BandDetailResponse(**base.model_dump(), members=members)


async def _enrich_request(req: BandRequest, db: AsyncSession) -> BandRequestResponse:
    band_name = await db.scalar(select(Band.name).where(Band.id == req.band_id))
    profile_name = await db.scalar(select(Profile.display_name).where(Profile.id == req.profile_id))
    return BandRequestResponse(
        id=req.id,
        band_id=req.band_id,
        profile_id=req.profile_id,
        invited_by_id=req.invited_by_id,
        request_type=req.request_type.value,
        status=req.status.value,
        message=req.message,
        created_at=req.created_at,
        responded_at=req.responded_at,
        band_name=band_name,
        profile_name=profile_name,
    )


async def _has_pending_request(db: AsyncSession, band_id: UUID, profile_id: UUID) -> bool:
    pending = await db.scalar(
        select(func.count(BandRequest.id)).where(
            BandRequest.band_id == band_id,
            BandRequest.profile_id == profile_id,
            BandRequest.status == BandRequestStatus.PENDING,
        )
    )
    return bool(pending)


async def _get_request_or_404(request_id: UUID, db: AsyncSession) -> BandRequest:
    result = await db.execute(select(BandRequest).where(BandRequest.id == request_id))
    req = result.scalar_one_or_none()
    if not req:
        raise HTTPException(status_code=404, detail="Request not found")
    return req


async def _authorize_response(req: BandRequest, profile: Profile, db: AsyncSession) -> None:
    """Leaders answer join requests; the invited musician answers invitations."""
    if req.request_type == BandRequestType.MUSICIAN_TO_BAND:
        await require_band_leader(db, req.band_id, profile, "respond to join requests")
    elif req.profile_id != profile.id:
        raise HTTPException(status_code=403, detail="This invitation is not addressed to you")
    if req.status != BandRequestStatus.PENDING:
        raise HTTPException(status_code=400, detail=f"Request has already been {req.status.value}")


async def _delete_band(db: AsyncSession, band_id: UUID) -> None:
    """Remove a band and everything hanging off it. Events and bookings keep their rows."""
    await db.execute(update(Event).where(Event.band_id == band_id).values(band_id=None))
    await db.execute(update(Booking).where(Booking.band_id == band_id).values(band_id=None))
    await db.execute(delete(BandChatMessage).where(BandChatMessage.band_id == band_id))
    await db.execute(delete(BandRequest).where(BandRequest.band_id == band_id))
    await db.execute(delete(BandMember).where(BandMember.band_id == band_id))
    await db.execute(delete(Band).where(Band.id == band_id))


# ── Band CRUD ─────────────────────────────────────────────────

@router.post("", response_model=BandDetailResponse, status_code=status.HTTP_201_CREATED)
async def create_band(
    data: BandCreateRequest,
    profile: Profile = Depends(require_musician),
    db: AsyncSession = Depends(get_db),
):
    """Create a band. The creator is added as its leader in the same transaction."""
    band = Band(name=data.name.strip(), description=data.description, created_by_id=profile.id)
    db.add(band)
    await db.flush()

    db.add(BandMember(band_id=band.id, profile_id=profile.id, role=BandRole.LEADER))
    await db.flush()
    await db.commit()

    logger.info(f"Band {band.id} created by {profile.id}")
    return await _band_detail(band, db, viewer=profile)


@router.get("", response_model=list[BandResponse])
async def list_bands(
    q: Optional[str] = Query(None, max_length=100),
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=50),
    db: AsyncSession = Depends(get_db),
):
    """Active bands with member counts, newest first."""
    member_counts = (
        select(BandMember.band_id, func.count(BandMember.id).label("member_count"))
        .group_by(BandMember.band_id)
        .subquery()
    )
    query = (
        select(Band, func.coalesce(member_counts.c.member_count, 0))
        .outerjoin(member_counts, member_counts.c.band_id == Band.id)
        .where(Band.is_active == True)  # noqa: E712
    )
    if q and q.strip():
        query = query.where(Band.name.ilike(f"%{q.strip()}%"))
    query = query.order_by(Band.created_at.desc()).offset((page - 1) * page_size).limit(page_size)

    result = await db.execute(query)
    return [_band_response(band, count) for band, count in result.all()]


@router.get("/mine", response_model=list[BandResponse])
async def list_my_bands(
    profile: Profile = Depends(get_current_profile),
    db: AsyncSession = Depends(get_db),
):
    result = await db.execute(
        select(Band, BandMember.role)
        .join(BandMember, BandMember.band_id == Band.id)
        .where(BandMember.profile_id == profile.id, Band.is_active == True)  # noqa: E712
        .order_by(BandMember.joined_at.desc())
    )
    bands = []
    for band, role in result.all():
        bands.append(_band_response(band, await _member_count(db, band.id), role.value))
    return bands


# ── Requests & Invitations (declared before /{band_id}) ───────

@router.get("/requests/incoming", response_model=list[BandRequestResponse])
async def list_incoming_requests(
    profile: Profile = Depends(get_current_profile),
    db: AsyncSession = Depends(get_db),
):
    """Pending join requests for every band the caller leads."""
    led_bands = select(BandMember.band_id).where(
        BandMember.profile_id == profile.id, BandMember.role == BandRole.LEADER
    )
    result = await db.execute(
        select(BandRequest)
        .where(
            BandRequest.band_id.in_(led_bands),
            BandRequest.request_type == BandRequestType.MUSICIAN_TO_BAND,
            BandRequest.status == BandRequestStatus.PENDING,
        )
        .order_by(BandRequest.created_at.desc())
    )
    return [await _enrich_request(r, db) for r in result.scalars()]


@router.get("/requests/mine", response_model=list[BandRequestResponse])
async def list_my_requests(
    profile: Profile = Depends(get_current_profile),
    db: AsyncSession = Depends(get_db),
):
    """The caller's own pending join requests and the invitations waiting on them."""
    result = await db.execute(
        select(BandRequest)
        .where(
            BandRequest.profile_id == profile.id,
            BandRequest.status == BandRequestStatus.PENDING,
        )
        .order_by(BandRequest.created_at.desc())
    )
    return [await _enrich_request(r, db) for r in result.scalars()]


@router.post("/requests/{request_id}/accept", response_model=BandRequestResponse)
async def accept_request(
    request_id: UUID,
    profile: Profile = Depends(get_current_profile),
    db: AsyncSession = Depends(get_db),
):
    req = await _get_request_or_404(request_id, db)
    await _authorize_response(req, profile, db)
    band = await get_band_or_404(req.band_id, db)

    if not await get_membership(db, band.id, req.profile_id):
        db.add(BandMember(band_id=band.id, profile_id=req.profile_id, role=BandRole.MEMBER))

    req.status = BandRequestStatus.ACCEPTED
    req.responded_at = utcnow()

    new_member_name = await db.scalar(select(Profile.display_name).where(Profile.id == req.profile_id))
    vars_ = {"band_name": band.name, "profile_name": new_member_name}
    if req.request_type == BandRequestType.MUSICIAN_TO_BAND:
        await dispatch_notification(db, req.profile_id, NotificationType.BAND_REQUEST_ACCEPTED, vars_)
    else:
        for leader_id in await leader_ids(db, band.id):
            await dispatch_notification(db, leader_id, NotificationType.BAND_REQUEST_ACCEPTED, vars_)

    await db.commit()
    return await _enrich_request(req, db)


@router.post("/requests/{request_id}/reject", response_model=BandRequestResponse)
async def reject_request(
    request_id: UUID,
    profile: Profile = Depends(get_current_profile),
    db: AsyncSession = Depends(get_db),
):
    req = await _get_request_or_404(request_id, db)
    await _authorize_response(req, profile, db)

    req.status = BandRequestStatus.REJECTED
    req.responded_at = utcnow()
    await db.commit()
    return await _enrich_request(req, db)


# ── Single Band ───────────────────────────────────────────────

@router.get("/{band_id}", response_model=BandDetailResponse)
async def get_band(
    band_id: UUID,
    viewer: Optional[Profile] = Depends(get_optional_profile),
    db: AsyncSession = Depends(get_db),
):
    """Public roster. my_role is filled in when the caller is signed in."""
    band = await get_band_or_404(band_id, db)
    return await _band_detail(band, db, viewer=viewer)


@router.put("/{band_id}", response_model=BandDetailResponse)
async def update_band(
    band_id: UUID,
    data: BandUpdateRequest,
    profile: Profile = Depends(get_current_profile),
    db: AsyncSession = Depends(get_db),
):
    band = await get_band_or_404(band_id, db)
    await require_band_leader(db, band.id, profile, "edit the band")

    for field, value in data.model_dump(exclude_unset=True).items():
        if value is not None:
            setattr(band, field, value.strip() if field == "name" else value)

    await db.commit()
    return await _band_detail(band, db, viewer=profile)


@router.post(
    "/{band_id}/join-requests",
    response_model=BandRequestResponse,
    status_code=status.HTTP_201_CREATED,
)
async def request_to_join(
    band_id: UUID,
    data: BandJoinRequestCreate,
    profile: Profile = Depends(require_musician),
    db: AsyncSession = Depends(get_db),
):
    band = await get_band_or_404(band_id, db)

    if await get_membership(db, band.id, profile.id):
        raise HTTPException(status_code=409, detail="You are already a member of this band")
    if await _has_pending_request(db, band.id, profile.id):
        raise HTTPException(status_code=409, detail="A request for this band is already pending")

    req = BandRequest(
        band_id=band.id,
        profile_id=profile.id,
        request_type=BandRequestType.MUSICIAN_TO_BAND,
        status=BandRequestStatus.PENDING,
        message=data.message,
    )
    db.add(req)
    await db.flush()

    for leader_id in await leader_ids(db, band.id):
        await dispatch_notification(
            db,
            leader_id,
            NotificationType.BAND_REQUEST,
            {"band_name": band.name, "profile_name": profile.display_name},
        )

    await db.commit()
    return await _enrich_request(req, db)


@router.post(
    "/{band_id}/invitations",
    response_model=BandRequestResponse,
    status_code=status.HTTP_201_CREATED,
)
async def invite_musician(
    band_id: UUID,
    data: BandInviteRequest,
    profile: Profile = Depends(get_current_profile),
    db: AsyncSession = Depends(get_db),
):
    band = await get_band_or_404(band_id, db)
    await require_band_leader(db, band.id, profile, "send invitations")

    result = await db.execute(select(Profile).where(Profile.id == data.profile_id))
    invitee = result.scalar_one_or_none()
    if not invitee:
        raise HTTPException(status_code=404, detail="Profile not found")
    if invitee.role != ProfileRole.MUSICIAN:
        raise HTTPException(status_code=400, detail="Only musicians can be invited to a band")
    if await get_membership(db, band.id, invitee.id):
        raise HTTPException(status_code=409, detail="This musician is already a member")
    if await _has_pending_request(db, band.id, invitee.id):
        raise HTTPException(status_code=409, detail="A request for this musician is already pending")

    req = BandRequest(
        band_id=band.id,
        profile_id=invitee.id,
        invited_by_id=profile.id,
        request_type=BandRequestType.BAND_TO_MUSICIAN,
        status=BandRequestStatus.PENDING,
        message=data.message,
    )
    db.add(req)
    await db.flush()

    await dispatch_notification(
        db, invitee.id, NotificationType.BAND_INVITATION, {"band_name": band.name}
    )

    await db.commit()
    return await _enrich_request(req, db)


# ── Membership ────────────────────────────────────────────────

@router.delete("/{band_id}/members/me", response_model=MessageResponse)
async def leave_band(
    band_id: UUID,
    profile: Profile = Depends(get_current_profile),
    db: AsyncSession = Depends(get_db),
):
    """
    Leave a band. A sole leader must hand over leadership first unless they
    are the last member, in which case the band is dissolved.
    """
    band = await get_band_or_404(band_id, db)
    membership = await get_membership(db, band.id, profile.id)
    if not membership:
        raise HTTPException(status_code=404, detail="You are not a member of this band")

    member_count = await _member_count(db, band.id)
    if member_count == 1:
        await _delete_band(db, band.id)
        await db.commit()
        logger.info(f"Band {band.id} dissolved after its last member left")
        return MessageResponse(message="You left the band and it has been disbanded")

    if membership.role == BandRole.LEADER and len(await leader_ids(db, band.id)) == 1:
        raise HTTPException(
            status_code=400,
            detail="Transfer leadership to another member before leaving the band",
        )

    await db.execute(delete(BandMember).where(BandMember.id == membership.id))
    await db.commit()
    return MessageResponse(message="You left the band")


@router.delete("/{band_id}/members/{profile_id}", response_model=MessageResponse)
async def remove_member(
    band_id: UUID,
    profile_id: UUID,
    profile: Profile = Depends(get_current_profile),
    db: AsyncSession = Depends(get_db),
):
    band = await get_band_or_404(band_id, db)
    await require_band_leader(db, band.id, profile, "remove members")

    if profile_id == profile.id:
        raise HTTPException(status_code=400, detail="Use the leave endpoint to remove yourself")

    membership = await get_membership(db, band.id, profile_id)
    if not membership:
        raise HTTPException(status_code=404, detail="Member not found")

    await db.execute(delete(BandMember).where(BandMember.id == membership.id))
    await db.commit()
    return MessageResponse(message="Member removed")


@router.post("/{band_id}/transfer-leadership", response_model=BandDetailResponse)
async def transfer_leadership(
    band_id: UUID,
    data: TransferLeadershipRequest,
    profile: Profile = Depends(get_current_profile),
    db: AsyncSession = Depends(get_db),
):
    """Current leader hands leadership to an existing member and becomes a member."""
    band = await get_band_or_404(band_id, db)
    current = await get_membership(db, band.id, profile.id)
    if not current or current.role != BandRole.LEADER:
        raise HTTPException(status_code=403, detail="Only the band leader can transfer leadership")

    if data.new_leader_profile_id == profile.id:
        raise HTTPException(status_code=400, detail="You are already the leader")

    target = await get_membership(db, band.id, data.new_leader_profile_id)
    if not target:
        raise HTTPException(status_code=404, detail="The new leader must be a member of the band")

    target.role = BandRole.LEADER
    current.role = BandRole.MEMBER
    await db.commit()

    logger.info(f"Band {band.id} leadership moved from {profile.id} to {target.profile_id}")
    return await _band_detail(band, db, viewer=profile)


@router.delete("/{band_id}", response_model=MessageResponse)
async def disband(
    band_id: UUID,
    profile: Profile = Depends(get_current_profile),
    db: AsyncSession = Depends(get_db),
):
    """Leader disbands the band: members, requests and chat go with it."""
    band = await get_band_or_404(band_id, db)
    await require_band_leader(db, band.id, profile, "disband the band")

    await _delete_band(db, band.id)
    await db.commit()
    logger.info(f"Band {band_id} disbanded by {profile.id}")
    return MessageResponse(message="Band disbanded")
