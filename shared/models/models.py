"""
shared/models/models.py
All SQLAlchemy ORM models for the Gig Marketplace.
UUID primary keys throughout; JSON columns map to JSONB on PostgreSQL.
"""

import uuid
from datetime import datetime
from decimal import Decimal
from enum import Enum as PyEnum
from typing import List, Optional

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    SmallInteger,
    String,
    Text,
    UniqueConstraint,
    Uuid,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship

from config.database import Base
from shared.utils.dates import utcnow

JSONType = JSON().with_variant(JSONB(), "postgresql")


def _enum(enum_cls, **kw) -> Enum:
    """Enum column that stores member values rather than names."""
    return Enum(enum_cls, values_callable=lambda e: [m.value for m in e], **kw)


# ── Enumerations ──────────────────────────────────────────────

class ProfileRole(str, PyEnum):
    MUSICIAN = "musician"
    ORGANIZER = "organizer"


class BandRole(str, PyEnum):
    LEADER = "leader"
    MEMBER = "member"


class BandRequestType(str, PyEnum):
    MUSICIAN_TO_BAND = "musician_to_band"     # Join request
    BAND_TO_MUSICIAN = "band_to_musician"     # Invitation


class BandRequestStatus(str, PyEnum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"


class PostedByType(str, PyEnum):
    INDIVIDUAL = "individual"
    BAND = "band"


class BookingStatus(str, PyEnum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    COMPLETED = "completed"
    DECLINED = "declined"
    CANCELLED = "cancelled"


class NotificationType(str, PyEnum):
    APPLICATION_RECEIVED = "APPLICATION_RECEIVED"
    APPLICATION_WITHDRAWN = "APPLICATION_WITHDRAWN"
    BOOKING_CONFIRMED = "BOOKING_CONFIRMED"
    BOOKING_DECLINED = "BOOKING_DECLINED"
    BOOKING_COMPLETED = "BOOKING_COMPLETED"
    BOOKING_CANCELLED = "BOOKING_CANCELLED"
    REVIEW_RECEIVED = "REVIEW_RECEIVED"
    REVIEW_REQUEST = "REVIEW_REQUEST"
    NEW_MESSAGE = "NEW_MESSAGE"
    BAND_REQUEST = "BAND_REQUEST"
    BAND_INVITATION = "BAND_INVITATION"
    BAND_REQUEST_ACCEPTED = "BAND_REQUEST_ACCEPTED"


# ── Mixins ────────────────────────────────────────────────────

class TimestampMixin:
    """Adds created_at and updated_at to any model."""
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        server_default=func.now(),
        onupdate=utcnow,
        nullable=False,
    )


# ── Accounts ──────────────────────────────────────────────────

class User(TimestampMixin, Base):
    """Login account. Owns exactly one Profile once onboarding is done."""
    __tablename__ = "users"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    email: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    last_login_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    profile: Mapped[Optional["Profile"]] = relationship(back_populates="user", uselist=False)
    refresh_tokens: Mapped[List["RefreshToken"]] = relationship(
        back_populates="user", passive_deletes=True
    )

    def __repr__(self) -> str:
        return f"<User {self.email}>"


class RefreshToken(Base):
    """Refresh tokens stored for rotation and revocation."""
    __tablename__ = "refresh_tokens"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    token_hash: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    is_revoked: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now()
    )
    user_agent: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    ip_address: Mapped[Optional[str]] = mapped_column(String(45), nullable=True)

    user: Mapped["User"] = relationship(back_populates="refresh_tokens")

    __table_args__ = (Index("ix_refresh_tokens_user_id", "user_id"),)


# ── Profiles & Bands ──────────────────────────────────────────

class Profile(TimestampMixin, Base):
    """
    Public identity of a musician, band or organizer.
    Created on first login after signup; never deleted in-app.
    """
    __tablename__ = "profiles"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), unique=True, nullable=False
    )
    role: Mapped[ProfileRole] = mapped_column(_enum(ProfileRole), nullable=False)
    display_name: Mapped[str] = mapped_column(String(255), nullable=False)
    bio: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    location: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    genres: Mapped[List[str]] = mapped_column(JSONType, default=list, nullable=False)
    price_min: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    price_max: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    youtube_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    avatar_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    is_band: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    # Rating (denormalized for directory sorting)
    rating_avg: Mapped[Decimal] = mapped_column(Numeric(3, 2), default=0)
    rating_count: Mapped[int] = mapped_column(Integer, default=0)

    user: Mapped["User"] = relationship(back_populates="profile")

    __table_args__ = (
        CheckConstraint(
            "price_min IS NULL OR price_max IS NULL OR price_min <= price_max",
            name="ck_profile_price_range",
        ),
        Index("ix_profiles_role", "role"),
    )

    def __repr__(self) -> str:
        return f"<Profile {self.display_name} ({self.role})>"


class Band(TimestampMixin, Base):
    """A named group of musicians with a leader/member roster."""
    __tablename__ = "bands"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_by_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("profiles.id"), nullable=False
    )
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    members: Mapped[List["BandMember"]] = relationship(
        back_populates="band", passive_deletes=True
    )


class BandMember(Base):
    """Membership join entity carrying the member's role."""
    __tablename__ = "band_members"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    band_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("bands.id", ondelete="CASCADE"), nullable=False
    )
    profile_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False
    )
    role: Mapped[BandRole] = mapped_column(_enum(BandRole), nullable=False, default=BandRole.MEMBER)
    joined_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )

    band: Mapped["Band"] = relationship(back_populates="members")
    profile: Mapped["Profile"] = relationship()

    __table_args__ = (
        UniqueConstraint("band_id", "profile_id", name="uq_band_member"),
        Index("ix_band_members_profile_id", "profile_id"),
    )


class BandRequest(TimestampMixin, Base):
    """Join request from a musician, or an invitation from a band leader."""
    __tablename__ = "band_requests"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    band_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("bands.id", ondelete="CASCADE"), nullable=False
    )
    profile_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False
    )  # The musician joining or being invited
    invited_by_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("profiles.id"), nullable=True
    )
    request_type: Mapped[BandRequestType] = mapped_column(_enum(BandRequestType), nullable=False)
    status: Mapped[BandRequestStatus] = mapped_column(
        _enum(BandRequestStatus), nullable=False, default=BandRequestStatus.PENDING
    )
    message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    responded_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    __table_args__ = (
        Index("ix_band_requests_band_status", "band_id", "status"),
        Index("ix_band_requests_profile_status", "profile_id", "status"),
    )


# ── Events & Bookings ─────────────────────────────────────────

class Event(TimestampMixin, Base):
    """
    An engagement posted by an organizer or a musician/band.
    Editable until one of its bookings is confirmed or completed.
    """
    __tablename__ = "events"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    organizer_profile_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("profiles.id"), nullable=False
    )
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    event_type: Mapped[str] = mapped_column(String(50), nullable=False, default="gig")
    genres: Mapped[List[str]] = mapped_column(JSONType, default=list, nullable=False)
    location: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    starts_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    ends_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    budget_min: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 2), nullable=True)
    budget_max: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 2), nullable=True)
    requirements: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    equipment_provided: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    parking_info: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    posted_by_type: Mapped[PostedByType] = mapped_column(
        _enum(PostedByType), nullable=False, default=PostedByType.INDIVIDUAL
    )
    band_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("bands.id", ondelete="SET NULL"), nullable=True
    )

    bookings: Mapped[List["Booking"]] = relationship(
        back_populates="event", passive_deletes=True
    )

    __table_args__ = (
        CheckConstraint("ends_at > starts_at", name="ck_event_window"),
        Index("ix_events_organizer", "organizer_profile_id"),
        Index("ix_events_starts_at", "starts_at"),
    )


class Booking(TimestampMixin, Base):
    """
    A musician's (or band's) application and quote against an event.
    Status transitions: pending → confirmed | declined (event owner),
    confirmed → completed | cancelled (applicant).
    """
    __tablename__ = "bookings"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    event_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("events.id", ondelete="CASCADE"), nullable=False
    )
    # Applicant; the band leader for band applications
    musician_profile_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("profiles.id"), nullable=False
    )
    band_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("bands.id", ondelete="SET NULL"), nullable=True
    )
    applied_by_type: Mapped[PostedByType] = mapped_column(
        _enum(PostedByType, name="appliedbytype"), nullable=False, default=PostedByType.INDIVIDUAL
    )
    quotation: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    additional_requirements: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    status: Mapped[BookingStatus] = mapped_column(
        _enum(BookingStatus), nullable=False, default=BookingStatus.PENDING
    )

    # Schedule (copied from the event window)
    scheduled_start: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    scheduled_end: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    # Timestamps
    confirmed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    declined_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    event: Mapped["Event"] = relationship(back_populates="bookings")
    audit_logs: Mapped[List["BookingAuditLog"]] = relationship(
        back_populates="booking", passive_deletes=True
    )

    __table_args__ = (
        UniqueConstraint("event_id", "musician_profile_id", name="uq_booking_event_musician"),
        CheckConstraint("quotation > 0", name="ck_booking_quotation_positive"),
        Index("ix_bookings_musician", "musician_profile_id"),
        Index("ix_bookings_status", "status"),
    )


class BookingAuditLog(Base):
    """Immutable log of all booking status transitions."""
    __tablename__ = "booking_audit_logs"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    booking_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("bookings.id", ondelete="CASCADE"), nullable=False
    )
    from_status: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)
    to_status: Mapped[str] = mapped_column(String(30), nullable=False)
    changed_by_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("profiles.id"), nullable=True
    )
    reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    audit_metadata: Mapped[Optional[dict]] = mapped_column(JSONType, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now()
    )

    booking: Mapped["Booking"] = relationship(back_populates="audit_logs")


# ── Reviews ───────────────────────────────────────────────────

class Review(TimestampMixin, Base):
    """Rating + comment from one profile about another, tied to a booking."""
    __tablename__ = "reviews"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    booking_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("bookings.id"), nullable=False
    )
    reviewer_profile_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("profiles.id"), nullable=False
    )
    reviewee_profile_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("profiles.id"), nullable=False
    )
    rating: Mapped[int] = mapped_column(SmallInteger, nullable=False)
    comment: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    __table_args__ = (
        UniqueConstraint("booking_id", "reviewer_profile_id", name="uq_review_booking_reviewer"),
        CheckConstraint("rating >= 1 AND rating <= 5", name="ck_review_rating_range"),
        Index("ix_reviews_reviewee", "reviewee_profile_id"),
    )


# ── Messaging ─────────────────────────────────────────────────

class Message(Base):
    """Direct message between two profiles, optionally carrying event context."""
    __tablename__ = "messages"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    sender_profile_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("profiles.id"), nullable=False
    )
    recipient_profile_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("profiles.id"), nullable=False
    )
    content: Mapped[str] = mapped_column(Text, nullable=False)
    topic: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    extension: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)  # "job_application"
    event_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("events.id", ondelete="SET NULL"), nullable=True
    )
    payload: Mapped[Optional[dict]] = mapped_column(JSONType, nullable=True)
    is_read: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    read_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )

    __table_args__ = (
        Index("ix_messages_sender_recipient", "sender_profile_id", "recipient_profile_id"),
        Index("ix_messages_recipient_read", "recipient_profile_id", "is_read"),
    )


class BandChatMessage(Base):
    """Message in a band's shared channel. Sender name is snapshotted."""
    __tablename__ = "band_chat_messages"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    band_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("bands.id", ondelete="CASCADE"), nullable=False
    )
    sender_profile_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("profiles.id"), nullable=False
    )
    sender_name: Mapped[str] = mapped_column(String(255), nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )

    __table_args__ = (Index("ix_band_chat_band_created", "band_id", "created_at"),)


class Notification(TimestampMixin, Base):
    """In-app notification log. Mirrored to email by the Celery worker."""
    __tablename__ = "notifications"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    profile_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False
    )
    booking_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("bookings.id", ondelete="SET NULL"), nullable=True
    )
    type: Mapped[NotificationType] = mapped_column(_enum(NotificationType), nullable=False)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    body: Mapped[str] = mapped_column(Text, nullable=False)
    data: Mapped[Optional[dict]] = mapped_column(JSONType, nullable=True)
    is_read: Mapped[bool] = mapped_column(Boolean, default=False)
    read_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    sent_email: Mapped[bool] = mapped_column(Boolean, default=False)

    __table_args__ = (Index("ix_notifications_profile_read", "profile_id", "is_read"),)
