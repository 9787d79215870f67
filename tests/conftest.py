"""
tests/conftest.py
Shared fixtures: in-memory SQLite database, Redis and object-storage doubles,
an ASGI test client and ready-made musician / organizer accounts.
"""

import fnmatch
import os
from datetime import datetime, timedelta, timezone
from decimal import Decimal

# Settings are read at import time, so the environment must be ready first
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("JWT_SECRET_KEY", "test-jwt-secret-key")
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["EMAIL_NOTIFICATIONS_ENABLED"] = "false"
os.environ.setdefault("S3_PUBLIC_BASE_URL", "https://cdn.test")

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import AsyncSessionLocal, Base, engine
from config.redis_client import get_redis
from config.storage import StorageError, get_storage
from main import app
from shared.models.models import (
    Band,
    BandMember,
    BandRole,
    Booking,
    BookingStatus,
    Event,
    PostedByType,
    Profile,
    ProfileRole,
    User,
)
from shared.utils.security import create_access_token, hash_password

TEST_PASSWORD = "correct-horse-battery"


# ── Doubles ───────────────────────────────────────────────────

class FakeRedis:
    """Just enough of redis.asyncio.Redis for the cache, deny-list and rate limiter."""

    def __init__(self):
        self.store: dict[str, str] = {}
        self.ttls: dict[str, int] = {}

    async def get(self, key):
        return self.store.get(key)

    async def set(self, key, value, ex=None):
        self.store[key] = value
        if ex:
            self.ttls[key] = ex
        return True

    async def setex(self, key, ttl, value):
        return await self.set(key, value, ex=ttl)

    async def delete(self, *keys):
        removed = 0
        for key in keys:
            if self.store.pop(key, None) is not None:
                removed += 1
            self.ttls.pop(key, None)
        return removed

    async def keys(self, pattern="*"):
        return [k for k in self.store if fnmatch.fnmatchcase(k, pattern)]

    async def exists(self, key):
        return 1 if key in self.store else 0

    async def incr(self, key):
        value = int(self.store.get(key, 0)) + 1
        self.store[key] = str(value)
        return value

    async def expire(self, key, seconds):
        self.ttls[key] = seconds
        return True

    async def ping(self):
        return True

    async def aclose(self):
        return None


class FakeStorage:
    """Records uploads instead of talking to S3."""

    def __init__(self):
        self.objects: dict[tuple[str, str], bytes] = {}
        self.deleted: list[tuple[str, str]] = []
        self.fail = False

    def public_url(self, bucket: str, key: str) -> str:
        return f"https://cdn.test/{bucket}/{key}"

    async def upload(self, bucket: str, key: str, body: bytes, content_type: str) -> str:
        if self.fail:
            raise StorageError("storage unavailable")
        self.objects[(bucket, key)] = body
        return self.public_url(bucket, key)

    async def delete(self, bucket: str, key: str) -> None:
        self.objects.pop((bucket, key), None)
        self.deleted.append((bucket, key))


# ── Core fixtures ─────────────────────────────────────────────

@pytest_asyncio.fixture
async def db() -> AsyncSession:
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async with AsyncSessionLocal() as session:
        yield session

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture
def fake_redis() -> FakeRedis:
    return FakeRedis()


@pytest.fixture
def storage() -> FakeStorage:
    return FakeStorage()


@pytest_asyncio.fixture
async def client(db, fake_redis, storage) -> AsyncClient:
    app.dependency_overrides[get_redis] = lambda: fake_redis
    app.dependency_overrides[get_storage] = lambda: storage
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


def auth_headers(user: User) -> dict:
    token, _ = create_access_token(user_id=str(user.id), email=user.email)
    return {"Authorization": f"Bearer {token}"}


# ── Factories ─────────────────────────────────────────────────

async def make_user(db: AsyncSession, email: str) -> User:
    user = User(email=email, password_hash=hash_password(TEST_PASSWORD))
    db.add(user)
    await db.commit()
    return user


async def make_profile(db: AsyncSession, user: User, role: ProfileRole, **kwargs) -> Profile:
    values = {
        "display_name": email_name(user.email),
        "bio": "Playing live since forever.",
        "location": "Austin, TX",
        "genres": [],
        "rating_avg": Decimal("0"),
        "rating_count": 0,
    }
    values.update(kwargs)
    profile = Profile(user_id=user.id, role=role, **values)
    db.add(profile)
    await db.commit()
    return profile


def email_name(email: str) -> str:
    return email.split("@")[0].replace(".", " ").title()


async def make_event(db: AsyncSession, owner: Profile, **kwargs) -> Event:
    starts_at = kwargs.pop("starts_at", datetime.now(timezone.utc) + timedelta(days=7))
    values = {
        "title": "Friday Night Jazz",
        "description": "Three sets in the courtyard.",
        "location": "Austin, TX",
        "genres": ["Jazz"],
        "starts_at": starts_at,
        "ends_at": starts_at + timedelta(hours=4),
        "budget_min": Decimal("200"),
        "budget_max": Decimal("600"),
        "posted_by_type": PostedByType.INDIVIDUAL,
    }
    values.update(kwargs)
    event = Event(organizer_profile_id=owner.id, **values)
    db.add(event)
    await db.commit()
    return event


async def make_booking(
    db: AsyncSession,
    event: Event,
    applicant: Profile,
    status: BookingStatus = BookingStatus.PENDING,
    **kwargs,
) -> Booking:
    booking = Booking(
        event_id=event.id,
        musician_profile_id=applicant.id,
        applied_by_type=kwargs.pop("applied_by_type", PostedByType.INDIVIDUAL),
        quotation=kwargs.pop("quotation", Decimal("350")),
        status=status,
        scheduled_start=event.starts_at,
        scheduled_end=event.ends_at,
        **kwargs,
    )
    db.add(booking)
    await db.commit()
    return booking


async def make_band(db: AsyncSession, leader: Profile, name: str = "The Night Owls", members=()) -> Band:
    band = Band(name=name, description="Late-night funk", created_by_id=leader.id)
    db.add(band)
    await db.flush()
    db.add(BandMember(band_id=band.id, profile_id=leader.id, role=BandRole.LEADER))
    for member in members:
        db.add(BandMember(band_id=band.id, profile_id=member.id, role=BandRole.MEMBER))
    await db.commit()
    return band


# ── Account fixtures ──────────────────────────────────────────

@pytest_asyncio.fixture
async def musician_user(db) -> User:
    return await make_user(db, "alex.rivers@example.com")


@pytest_asyncio.fixture
async def musician(db, musician_user) -> Profile:
    return await make_profile(
        db,
        musician_user,
        ProfileRole.MUSICIAN,
        genres=["Rock", "Blues"],
        price_min=150,
        price_max=400,
    )


@pytest_asyncio.fixture
async def other_musician_user(db) -> User:
    return await make_user(db, "sam.keys@example.com")


@pytest_asyncio.fixture
async def other_musician(db, other_musician_user) -> Profile:
    return await make_profile(
        db,
        other_musician_user,
        ProfileRole.MUSICIAN,
        location="Denver, CO",
        genres=["Jazz"],
        price_min=600,
        price_max=1200,
    )


@pytest_asyncio.fixture
async def organizer_user(db) -> User:
    return await make_user(db, "olivia.events@example.com")


@pytest_asyncio.fixture
async def organizer(db, organizer_user) -> Profile:
    return await make_profile(db, organizer_user, ProfileRole.ORGANIZER)


@pytest_asyncio.fixture
async def event(db, organizer) -> Event:
    return await make_event(db, organizer)
