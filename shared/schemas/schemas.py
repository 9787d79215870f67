"""
shared/schemas/schemas.py
All Pydantic v2 request/response schemas for the platform.
"""

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator, model_validator

from shared.models.models import PostedByType, ProfileRole
from shared.utils.dates import as_utc


# ── Base ──────────────────────────────────────────────────────

class BaseSchema(BaseModel):
    model_config = ConfigDict(from_attributes=True, use_enum_values=True)


class PaginatedResponse(BaseSchema):
    items: List[Any]
    total: int
    page: int
    page_size: int
    pages: int


def _clean_genres(v: Optional[List[str]]) -> Optional[List[str]]:
    """Trim, drop blanks and de-duplicate case-insensitively, keeping order."""
    if v is None:
        return v
    seen = set()
    cleaned = []
    for genre in v:
        g = genre.strip()
        if g and g.lower() not in seen:
            seen.add(g.lower())
            cleaned.append(g)
    return cleaned


def _reject_nulls(data: Any, fields: tuple) -> Any:
    """Partial updates may omit these fields but never clear them."""
    if isinstance(data, dict):
        cleared = [f for f in fields if f in data and data[f] is None]
        if cleared:
            raise ValueError(f"{', '.join(cleared)} cannot be null")
    return data


# ── Auth ──────────────────────────────────────────────────────

class SignupRequest(BaseSchema):
    email: EmailStr
    password: str = Field(..., min_length=8, max_length=128)


class LoginRequest(BaseSchema):
    email: EmailStr
    password: str = Field(..., min_length=1, max_length=128)


class RefreshRequest(BaseSchema):
    refresh_token: Optional[str] = None


class UserResponse(BaseSchema):
    id: uuid.UUID
    email: EmailStr
    is_active: bool
    created_at: datetime
    has_profile: bool = False
    profile_id: Optional[uuid.UUID] = None


class AuthResponse(BaseSchema):
    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int
    user: UserResponse


# ── Profile ───────────────────────────────────────────────────

class ProfileCreateRequest(BaseSchema):
    role: ProfileRole
    display_name: str = Field(..., min_length=1, max_length=255)
    bio: Optional[str] = Field(None, max_length=4000)
    location: Optional[str] = Field(None, max_length=255)
    genres: List[str] = Field(default_factory=list)
    price_min: Optional[int] = Field(None, ge=0)
    price_max: Optional[int] = Field(None, ge=0)
    youtube_url: Optional[str] = Field(None, max_length=500)
    is_band: bool = False

    @field_validator("genres")
    @classmethod
    def clean_genres(cls, v: Optional[List[str]]) -> Optional[List[str]]:
        return _clean_genres(v)

    @field_validator("display_name")
    @classmethod
    def strip_display_name(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Display name cannot be blank")
        return v

    @model_validator(mode="after")
    def check_price_range(self):
        if self.price_min is not None and self.price_max is not None and self.price_min > self.price_max:
            raise ValueError("price_min cannot be greater than price_max")
        return self


class ProfileUpdateRequest(BaseSchema):
    display_name: Optional[str] = Field(None, min_length=1, max_length=255)
    bio: Optional[str] = Field(None, max_length=4000)
    location: Optional[str] = Field(None, max_length=255)
    genres: Optional[List[str]] = None
    price_min: Optional[int] = Field(None, ge=0)
    price_max: Optional[int] = Field(None, ge=0)
    youtube_url: Optional[str] = Field(None, max_length=500)
    is_band: Optional[bool] = None

    @model_validator(mode="before")
    @classmethod
    def no_null_flags(cls, data: Any) -> Any:
        return _reject_nulls(data, ("is_band",))

    @field_validator("genres")
    @classmethod
    def clean_genres(cls, v: Optional[List[str]]) -> Optional[List[str]]:
        return _clean_genres(v)

    @model_validator(mode="after")
    def check_price_range(self):
        if self.price_min is not None and self.price_max is not None and self.price_min > self.price_max:
            raise ValueError("price_min cannot be greater than price_max")
        return self


class ProfileResponse(BaseSchema):
    id: uuid.UUID
    user_id: uuid.UUID
    role: str
    display_name: str
    bio: Optional[str]
    location: Optional[str]
    genres: List[str]
    price_min: Optional[int]
    price_max: Optional[int]
    youtube_url: Optional[str]
    avatar_url: Optional[str]
    is_band: bool
    rating_avg: Decimal
    rating_count: int
    created_at: datetime


class ProfileCompletionResponse(BaseSchema):
    is_complete: bool
    missing_fields: List[str]


class DirectoryResponse(PaginatedResponse):
    items: List[ProfileResponse]


# ── Band ──────────────────────────────────────────────────────

class BandCreateRequest(BaseSchema):
    name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = Field(None, max_length=4000)


class BandUpdateRequest(BaseSchema):
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = Field(None, max_length=4000)


class BandMemberResponse(BaseSchema):
    profile_id: uuid.UUID
    role: str
    joined_at: datetime
    display_name: Optional[str] = None
    avatar_url: Optional[str] = None


class BandResponse(BaseSchema):
    id: uuid.UUID
    name: str
    description: Optional[str]
    created_by_id: uuid.UUID
    is_active: bool
    created_at: datetime
    member_count: int = 0
    my_role: Optional[str] = None


class BandDetailResponse(BandResponse):
    members: List[BandMemberResponse] = []


class BandJoinRequestCreate(BaseSchema):
    message: Optional[str] = Field(None, max_length=1000)


class BandInviteRequest(BaseSchema):
    profile_id: uuid.UUID
    message: Optional[str] = Field(None, max_length=1000)


class BandRequestResponse(BaseSchema):
    id: uuid.UUID
    band_id: uuid.UUID
    profile_id: uuid.UUID
    invited_by_id: Optional[uuid.UUID]
    request_type: str
    status: str
    message: Optional[str]
    created_at: datetime
    responded_at: Optional[datetime]
    band_name: Optional[str] = None
    profile_name: Optional[str] = None


class TransferLeadershipRequest(BaseSchema):
    new_leader_profile_id: uuid.UUID


# ── Event ─────────────────────────────────────────────────────

class EventCreateRequest(BaseSchema):
    title: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = Field(None, max_length=5000)
    event_type: str = Field(default="gig", max_length=50)
    genres: List[str] = Field(default_factory=list)
    location: Optional[str] = Field(None, max_length=255)
    starts_at: datetime
    ends_at: datetime
    budget_min: Optional[Decimal] = Field(None, ge=0)
    budget_max: Optional[Decimal] = Field(None, ge=0)
    requirements: Optional[str] = Field(None, max_length=2000)
    equipment_provided: Optional[str] = Field(None, max_length=2000)
    parking_info: Optional[str] = Field(None, max_length=1000)
    posted_by_type: PostedByType = PostedByType.INDIVIDUAL
    band_id: Optional[uuid.UUID] = None

    @field_validator("genres")
    @classmethod
    def clean_genres(cls, v: Optional[List[str]]) -> Optional[List[str]]:
        return _clean_genres(v)

    @field_validator("starts_at", "ends_at")
    @classmethod
    def normalize_tz(cls, v: datetime) -> datetime:
        return as_utc(v)

    @model_validator(mode="after")
    def check_event(self):
        if self.ends_at <= self.starts_at:
            raise ValueError("End time must be after start time")
        if (
            self.budget_min is not None
            and self.budget_max is not None
            and self.budget_min > self.budget_max
        ):
            raise ValueError("budget_min cannot be greater than budget_max")
        if self.posted_by_type == PostedByType.BAND and not self.band_id:
            raise ValueError("band_id is required when posting as a band")
        return self


class EventUpdateRequest(BaseSchema):
    title: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = Field(None, max_length=5000)
    event_type: Optional[str] = Field(None, max_length=50)
    genres: Optional[List[str]] = None
    location: Optional[str] = Field(None, max_length=255)
    starts_at: Optional[datetime] = None
    ends_at: Optional[datetime] = None
    budget_min: Optional[Decimal] = Field(None, ge=0)
    budget_max: Optional[Decimal] = Field(None, ge=0)
    requirements: Optional[str] = Field(None, max_length=2000)
    equipment_provided: Optional[str] = Field(None, max_length=2000)
    parking_info: Optional[str] = Field(None, max_length=1000)

    @model_validator(mode="before")
    @classmethod
    def no_null_required(cls, data: Any) -> Any:
        return _reject_nulls(data, ("event_type", "starts_at", "ends_at"))

    @field_validator("genres")
    @classmethod
    def clean_genres(cls, v: Optional[List[str]]) -> Optional[List[str]]:
        return _clean_genres(v)

    @field_validator("starts_at", "ends_at")
    @classmethod
    def normalize_tz(cls, v: Optional[datetime]) -> Optional[datetime]:
        return as_utc(v)

    @model_validator(mode="after")
    def check_window(self):
        if (self.starts_at is None) != (self.ends_at is None):
            raise ValueError("starts_at and ends_at must be updated together")
        if self.starts_at is not None and self.ends_at <= self.starts_at:
            raise ValueError("End time must be after start time")
        return self


class EventResponse(BaseSchema):
    id: uuid.UUID
    organizer_profile_id: uuid.UUID
    title: str
    description: Optional[str]
    event_type: str
    genres: List[str]
    location: Optional[str]
    starts_at: datetime
    ends_at: datetime
    budget_min: Optional[Decimal]
    budget_max: Optional[Decimal]
    requirements: Optional[str]
    equipment_provided: Optional[str]
    parking_info: Optional[str]
    posted_by_type: str
    band_id: Optional[uuid.UUID]
    created_at: datetime
    # Joined
    organizer_name: Optional[str] = None
    band_name: Optional[str] = None
    confirmed_count: int = 0
    is_locked: bool = False


# ── Booking ───────────────────────────────────────────────────

class BookingCreateRequest(BaseSchema):
    event_id: uuid.UUID
    quotation: Decimal = Field(..., gt=0, max_digits=10, decimal_places=2)
    additional_requirements: Optional[str] = Field(None, max_length=2000)
    applied_by_type: PostedByType = PostedByType.INDIVIDUAL
    band_id: Optional[uuid.UUID] = None

    @model_validator(mode="after")
    def check_band(self):
        if self.applied_by_type == PostedByType.BAND and not self.band_id:
            raise ValueError("band_id is required when applying as a band")
        if self.applied_by_type == PostedByType.INDIVIDUAL:
            self.band_id = None
        return self


class BookingResponse(BaseSchema):
    id: uuid.UUID
    event_id: uuid.UUID
    musician_profile_id: uuid.UUID
    band_id: Optional[uuid.UUID]
    applied_by_type: str
    quotation: Decimal
    additional_requirements: Optional[str]
    status: str
    scheduled_start: Optional[datetime]
    scheduled_end: Optional[datetime]
    confirmed_at: Optional[datetime]
    completed_at: Optional[datetime]
    cancelled_at: Optional[datetime]
    declined_at: Optional[datetime]
    created_at: datetime
    updated_at: datetime
    # Joined
    event_title: Optional[str] = None
    applicant_name: Optional[str] = None
    band_name: Optional[str] = None


class BookingStatusChangeRequest(BaseSchema):
    reason: Optional[str] = Field(None, max_length=500)


class BookingAuditLogResponse(BaseSchema):
    id: uuid.UUID
    from_status: Optional[str]
    to_status: str
    changed_by_id: Optional[uuid.UUID]
    reason: Optional[str]
    created_at: datetime


# ── Messaging ─────────────────────────────────────────────────

class DirectMessageCreate(BaseSchema):
    recipient_profile_id: uuid.UUID
    content: str = Field(..., min_length=1, max_length=5000)
    topic: Optional[str] = Field(None, max_length=255)
    event_id: Optional[uuid.UUID] = None  # Appends an event details block

    @field_validator("content")
    @classmethod
    def content_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Message cannot be empty")
        return v.strip()


class DirectMessageResponse(BaseSchema):
    id: uuid.UUID
    sender_profile_id: uuid.UUID
    recipient_profile_id: uuid.UUID
    content: str
    topic: Optional[str]
    extension: Optional[str]
    event_id: Optional[uuid.UUID]
    payload: Optional[Dict[str, Any]]
    is_read: bool
    created_at: datetime


class ConversationResponse(BaseSchema):
    profile_id: uuid.UUID
    display_name: str
    avatar_url: Optional[str]
    last_message: DirectMessageResponse
    unread_count: int


class BandChatMessageCreate(BaseSchema):
    content: str = Field(..., min_length=1, max_length=5000)

    @field_validator("content")
    @classmethod
    def content_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Message cannot be empty")
        return v.strip()


class BandChatMessageResponse(BaseSchema):
    id: uuid.UUID
    band_id: uuid.UUID
    sender_profile_id: uuid.UUID
    sender_name: str
    content: str
    created_at: datetime


# ── Review ────────────────────────────────────────────────────

class ReviewCreateRequest(BaseSchema):
    reviewee_profile_id: uuid.UUID
    booking_id: Optional[uuid.UUID] = None
    rating: int = Field(..., ge=1, le=5)
    comment: Optional[str] = Field(None, max_length=2000)


class ReviewResponse(BaseSchema):
    id: uuid.UUID
    booking_id: uuid.UUID
    reviewer_profile_id: uuid.UUID
    reviewee_profile_id: uuid.UUID
    rating: int
    comment: Optional[str]
    created_at: datetime
    reviewer_name: Optional[str] = None


class ReviewListResponse(BaseSchema):
    items: List[ReviewResponse]
    rating_avg: Decimal
    rating_count: int


# ── Notification ──────────────────────────────────────────────

class NotificationResponse(BaseSchema):
    id: uuid.UUID
    type: str
    title: str
    body: str
    is_read: bool
    read_at: Optional[datetime]
    created_at: datetime
    booking_id: Optional[uuid.UUID]


# ── Generic ───────────────────────────────────────────────────

class MessageResponse(BaseSchema):
    message: str
    success: bool = True
