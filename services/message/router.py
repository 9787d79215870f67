"""
services/message/router.py
Direct messages between profiles and the per-band group chat.
"""

import logging
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy import and_, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from shared.middleware.auth import get_current_profile
from shared.models.models import BandChatMessage, Event, Message, NotificationType, Profile
from shared.schemas.schemas import (
    BandChatMessageCreate,
    BandChatMessageResponse,
    ConversationResponse,
    DirectMessageCreate,
    DirectMessageResponse,
)
from shared.utils.dates import as_utc, utcnow
from services.band.router import get_band_or_404, get_membership
from services.notification.router import dispatch_notification

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/messages", tags=["Messages"])
band_chat_router = APIRouter(prefix="/bands", tags=["Band Chat"])

PREVIEW_LENGTH = 80


# ── Helpers ───────────────────────────────────────────────────

def event_details_block(event: Event) -> str:
    """Plain-text summary appended to messages sent in the context of an event."""
    lines = ["--- Event Details ---", f"Event: {event.title}"]
    lines.append(f"Date: {as_utc(event.starts_at).strftime('%d %b %Y %H:%M UTC')}")
    if event.location:
        lines.append(f"Location: {event.location}")
    if event.budget_min is not None or event.budget_max is not None:
        low = event.budget_min if event.budget_min is not None else "?"
        high = event.budget_max if event.budget_max is not None else "?"
        lines.append(f"Budget: {low} - {high}")
    return "\n".join(lines)


def _preview(content: str) -> str:
    first_line = content.splitlines()[0] if content else ""
    if len(first_line) > PREVIEW_LENGTH:
        return first_line[:PREVIEW_LENGTH - 1] + "…"
    return first_line


# ── Direct Messages ───────────────────────────────────────────

@router.post("", response_model=DirectMessageResponse, status_code=status.HTTP_201_CREATED)
async def send_message(
    data: DirectMessageCreate,
    profile: Profile = Depends(get_current_profile),
    db: AsyncSession = Depends(get_db),
):
    """Send a direct message. Passing event_id appends the event's details."""
    if data.recipient_profile_id == profile.id:
        raise HTTPException(status_code=400, detail="You cannot send a message to yourself")

    recipient = await db.scalar(select(Profile).where(Profile.id == data.recipient_profile_id))
    if not recipient:
        raise HTTPException(status_code=404, detail="Recipient not found")

    content = data.content
    payload = None
    if data.event_id:
        event = await db.scalar(select(Event).where(Event.id == data.event_id))
        if not event:
            raise HTTPException(status_code=404, detail="Event not found")
        content = f"{content}\n\n{event_details_block(event)}"
        payload = {"event_id": str(event.id), "event_title": event.title}

    message = Message(
        sender_profile_id=profile.id,
        recipient_profile_id=recipient.id,
        content=content,
        topic=data.topic,
        event_id=data.event_id,
        payload=payload,
    )
    db.add(message)
    await db.flush()

    await dispatch_notification(
        db,
        recipient.id,
        NotificationType.NEW_MESSAGE,
        {"sender_name": profile.display_name, "preview": _preview(data.content)},
        send_email_=False,
    )
    await db.commit()
    return DirectMessageResponse.model_validate(message)


@router.get("/conversations", response_model=list[ConversationResponse])
async def list_conversations(
    profile: Profile = Depends(get_current_profile),
    db: AsyncSession = Depends(get_db),
):
    """One row per counterpart: latest message and how many are unread, newest first."""
    result = await db.execute(
        select(Message)
        .where(
            or_(
                Message.sender_profile_id == profile.id,
                Message.recipient_profile_id == profile.id,
            )
        )
        .order_by(Message.created_at.desc())
    )

    latest: dict[UUID, Message] = {}
    unread: dict[UUID, int] = {}
    for msg in result.scalars():
        other = msg.recipient_profile_id if msg.sender_profile_id == profile.id else msg.sender_profile_id
        latest.setdefault(other, msg)
        if msg.recipient_profile_id == profile.id and not msg.is_read:
            unread[other] = unread.get(other, 0) + 1

    if not latest:
        return []

    profiles = await db.execute(select(Profile).where(Profile.id.in_(latest.keys())))
    by_id = {p.id: p for p in profiles.scalars()}

    conversations = []
    for other_id, msg in latest.items():
        other = by_id.get(other_id)
        if not other:
            continue
        conversations.append(ConversationResponse(
            profile_id=other.id,
            display_name=other.display_name,
            avatar_url=other.avatar_url,
            last_message=DirectMessageResponse.model_validate(msg),
            unread_count=unread.get(other_id, 0),
        ))
    return conversations


@router.get("/with/{profile_id}", response_model=list[DirectMessageResponse])
async def get_thread(
    profile_id: UUID,
    limit: int = Query(200, ge=1, le=500),
    profile: Profile = Depends(get_current_profile),
    db: AsyncSession = Depends(get_db),
):
    """
    Conversation with another profile, oldest first (the latest `limit`
    messages). Messages the caller received in this thread are marked read.
    """
    other = await db.scalar(select(Profile.id).where(Profile.id == profile_id))
    if not other:
        raise HTTPException(status_code=404, detail="Profile not found")

    between = or_(
        and_(Message.sender_profile_id == profile.id, Message.recipient_profile_id == profile_id),
        and_(Message.sender_profile_id == profile_id, Message.recipient_profile_id == profile.id),
    )
    result = await db.execute(
        select(Message).where(between).order_by(Message.created_at.desc()).limit(limit)
    )
    messages = list(reversed(result.scalars().all()))

    await db.execute(
        update(Message)
        .where(
            Message.sender_profile_id == profile_id,
            Message.recipient_profile_id == profile.id,
            Message.is_read == False,  # noqa: E712
        )
        .values(is_read=True, read_at=utcnow())
    )
    await db.commit()

    return [DirectMessageResponse.model_validate(m) for m in messages]


# ── Band Chat ─────────────────────────────────────────────────

async def _require_member(band_id: UUID, profile: Profile, db: AsyncSession) -> None:
    await get_band_or_404(band_id, db)
    if not await get_membership(db, band_id, profile.id):
        raise HTTPException(status_code=403, detail="Only band members can use the band chat")


@band_chat_router.get("/{band_id}/chat", response_model=list[BandChatMessageResponse])
async def get_band_chat(
    band_id: UUID,
    limit: int = Query(100, ge=1, le=500),
    profile: Profile = Depends(get_current_profile),
    db: AsyncSession = Depends(get_db),
):
    await _require_member(band_id, profile, db)
    result = await db.execute(
        select(BandChatMessage)
        .where(BandChatMessage.band_id == band_id)
        .order_by(BandChatMessage.created_at.desc())
        .limit(limit)
    )
    return [BandChatMessageResponse.model_validate(m) for m in reversed(result.scalars().all())]


@band_chat_router.post(
    "/{band_id}/chat",
    response_model=BandChatMessageResponse,
    status_code=status.HTTP_201_CREATED,
)
async def post_band_chat(
    band_id: UUID,
    data: BandChatMessageCreate,
    profile: Profile = Depends(get_current_profile),
    db: AsyncSession = Depends(get_db),
):
    await _require_member(band_id, profile, db)
    message = BandChatMessage(
        band_id=band_id,
        sender_profile_id=profile.id,
        sender_name=profile.display_name,
        content=data.content,
    )
    db.add(message)
    await db.flush()
    await db.commit()
    return BandChatMessageResponse.model_validate(message)
