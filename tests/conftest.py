"""
Shared fixtures: in-memory SQLite cache tables, a controllable clock and a fake report provider
"""
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Tuple

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.database.cache_models import Base, ProfileCacheEntry
from app.services.profile_cache_service import ProfileCacheService
from app.tasks.cache_update_scheduler import ProfileCacheScheduler

# A Monday
START = datetime(2026, 10, 12, 9, 0, tzinfo=timezone.utc)
TTL = timedelta(days=28)


class FakeClock:
    def __init__(self, now: datetime = START):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now

    def set(self, when: datetime) -> None:
        self.now = when


def make_report(username: str = "insta_42", followers: int = 1000, credibility: float = 0.8, **profile_fields) -> Dict[str, Any]:
    """Provider-shaped Instagram report payload"""
    profile = {
        "username": username,
        "fullname": f"{username} full name",
        "url": f"https://instagram.com/{username}",
        "picture": f"https://cdn.example.com/{username}.jpg",
        "followers": followers,
        "following": 120,
        "engagementRate": 0.034,
        "avgLikes": 340,
        "avgComments": 12,
        "avgReelsPlays": 5100,
        "postsCount": 87,
        "country": "AE",
        "language": {"code": "en", "name": "English"},
        "isVerified": True,
        "accountType": "Creator",
        "contacts": [{"type": "email", "value": f"{username}@example.com"}],
    }
    profile.update(profile_fields)

    return {
        "error": False,
        "profile": {
            "profile": profile,
            "audience": {
                "credibility": credibility,
                "notable": 0.05,
                "genders": [{"code": "FEMALE", "weight": 0.62}, {"code": "MALE", "weight": 0.38}],
                "ages": [{"code": "18-24", "weight": 0.41}],
                "gendersPerAge": [{"code": "18-24", "male": 0.2, "female": 0.21}],
                "geoCountries": [{"name": "United Arab Emirates", "code": "AE", "weight": 0.55}],
                "notableUsers": [{"userId": 1234, "username": "notable_one", "followers": 50000}],
            },
            "stats": {"followers": {"value": followers, "compared": 0.02}},
            "hashtags": [{"tag": "dubai", "weight": 0.3}],
            "mentions": [{"tag": "brand", "weight": 0.1}],
            "recentPosts": [
                {"id": 111, "url": "https://instagram.com/p/111", "created": "2026-10-01T10:00:00Z",
                 "likes": 300, "comments": 10, "type": "photo", "hashtags": ["dubai"]}
            ],
            "popularPosts": [],
            "sponsoredPosts": None,
        },
    }


class FakeProvider:
    """Records fetch_report calls; per-user payloads or exceptions can be configured"""

    def __init__(self):
        self.calls: List[Tuple[str, str]] = []
        self.payloads: Dict[str, Any] = {}
        self.failures: Dict[str, Exception] = {}

    async def fetch_report(self, external_user_id: str, platform: str):
        self.calls.append((external_user_id, platform))
        if external_user_id in self.failures:
            raise self.failures[external_user_id]
        if external_user_id in self.payloads:
            return self.payloads[external_user_id]
        return make_report(username=external_user_id)


@pytest_asyncio.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False}
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def provider():
    return FakeProvider()


@pytest.fixture
def service(session_factory, provider, clock):
    return ProfileCacheService(
        session_factory=session_factory,
        provider=provider,
        clock=clock,
        ttl=TTL,
        expiry_window=timedelta(hours=24),
        urgent_priority=75,
        read_mode="lazy"
    )


@pytest.fixture
def scheduler(service):
    return ProfileCacheScheduler(cache_service=service, batch_size=10, request_delay=0)


@pytest.fixture
def add_entry(session_factory, clock):
    """Insert a cache row directly, bypassing the provider"""
    async def _add_entry(source_account_ref: str, expires_at: datetime, update_priority: int = 50,
                         platform: str = "INSTAGRAM", external_user_id: str = None) -> ProfileCacheEntry:
        entry = ProfileCacheEntry(
            source_account_ref=source_account_ref,
            external_user_id=external_user_id or f"ext_{source_account_ref}",
            platform=platform,
            cached_at=clock(),
            last_updated=clock(),
            expires_at=expires_at,
            username=source_account_ref,
            update_priority=update_priority
        )
        async with session_factory() as db:
            db.add(entry)
            await db.commit()
        return entry

    return _add_entry
