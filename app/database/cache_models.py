"""
PROFILE REPORT CACHE MODELS
Latest provider snapshot per connected account, its audience breakdown,
and the append-only update log used for credit auditing
"""
from datetime import datetime, timezone
import enum
import uuid as uuid_lib

from sqlalchemy import Column, String, Integer, BigInteger, Boolean, DateTime, Text, Float, ForeignKey, Index, CheckConstraint, UniqueConstraint, JSON, Uuid
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import declarative_base, relationship
from sqlalchemy.types import TypeDecorator

Base = declarative_base()

# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests)
JSONType = JSON().with_variant(JSONB(), "postgresql")


class UTCDateTime(TypeDecorator):
    """Timezone-aware datetime that always round-trips as UTC"""
    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Platform(str, enum.Enum):
    INSTAGRAM = "INSTAGRAM"
    TIKTOK = "TIKTOK"
    YOUTUBE = "YOUTUBE"

    @classmethod
    def normalize(cls, value) -> "Platform":
        """Canonical upper-case platform, raises ValueError for unknown platforms"""
        if isinstance(value, cls):
            return value
        return cls(str(value).strip().upper())


class UpdateType(str, enum.Enum):
    INITIAL = "initial"
    SCHEDULED = "scheduled"
    MANUAL = "manual"


class UpdateStatus(str, enum.Enum):
    COMPLETED = "completed"
    FAILED = "failed"


# =============================================================================
# PROFILE CACHE TABLES
# =============================================================================

class ProfileCacheEntry(Base):
    """Latest profile report snapshot for one (source account, platform)"""
    __tablename__ = "profile_report_cache"

    # Identity
    id = Column(Uuid, primary_key=True, default=uuid_lib.uuid4)
    source_account_ref = Column(String(255), nullable=False, index=True)  # connected account being tracked
    external_user_id = Column(String(255), nullable=False)  # provider's identifier
    platform = Column(String(20), nullable=False)

    # Temporal
    cached_at = Column(UTCDateTime, nullable=False, default=utcnow)
    last_updated = Column(UTCDateTime, nullable=False, default=utcnow)
    expires_at = Column(UTCDateTime, nullable=False)

    # Core metrics
    username = Column(String(255), nullable=True)
    full_name = Column(String(500), nullable=True)
    followers = Column(BigInteger, nullable=False, default=0)
    following = Column(BigInteger, nullable=False, default=0)
    engagement_rate = Column(Float, nullable=False, default=0.0)
    avg_likes = Column(Float, nullable=False, default=0.0)
    avg_comments = Column(Float, nullable=False, default=0.0)
    avg_views = Column(Float, nullable=False, default=0.0)
    avg_reels_plays = Column(Float, nullable=False, default=0.0)
    posts_count = Column(Integer, nullable=False, default=0)

    # Extended attributes
    profile_url = Column(Text, nullable=True)
    picture_url = Column(Text, nullable=True)
    bio = Column(Text, nullable=True)
    city = Column(String(255), nullable=True)
    state = Column(String(255), nullable=True)
    country = Column(String(100), nullable=True)
    age_group = Column(String(20), nullable=True)
    gender = Column(String(20), nullable=True)
    language_code = Column(String(10), nullable=True)
    language_name = Column(String(100), nullable=True)
    is_private = Column(Boolean, nullable=False, default=False)
    is_verified = Column(Boolean, nullable=False, default=False)
    account_type = Column(String(50), nullable=True)

    # Platform-shaped extensions, validated by app.models.profile_report before storage
    contacts = Column(JSONType, nullable=False, default=list)
    hashtags = Column(JSONType, nullable=False, default=list)
    mentions = Column(JSONType, nullable=False, default=list)
    stats = Column(JSONType, nullable=False, default=dict)
    recent_posts = Column(JSONType, nullable=False, default=list)
    popular_posts = Column(JSONType, nullable=False, default=list)
    sponsored_posts = Column(JSONType, nullable=False, default=list)

    # Business-assigned refresh urgency (0-100), survives repopulation
    update_priority = Column(Integer, nullable=False, default=50)

    # Relationships
    audience = relationship("AudienceCacheEntry", back_populates="profile", uselist=False, cascade="all, delete-orphan")
    update_logs = relationship("UpdateLogEntry", back_populates="profile", passive_deletes=True)

    __table_args__ = (
        UniqueConstraint('source_account_ref', 'platform', name='uq_profile_report_cache_account_platform'),
        CheckConstraint('update_priority >= 0 AND update_priority <= 100', name='check_update_priority_range'),
        Index('idx_profile_report_cache_expires', 'expires_at'),
        Index('idx_profile_report_cache_priority', 'update_priority'),
        Index('idx_profile_report_cache_last_updated', 'last_updated'),
    )


class AudienceCacheEntry(Base):
    """Audience demographics snapshot owned by exactly one ProfileCacheEntry"""
    __tablename__ = "audience_report_cache"

    id = Column(Uuid, primary_key=True, default=uuid_lib.uuid4)
    profile_cache_id = Column(Uuid, ForeignKey('profile_report_cache.id', ondelete='CASCADE'), nullable=False, unique=True)

    # Quality scores
    credibility_score = Column(Float, nullable=True)
    notable_percentage = Column(Float, nullable=True)
    fake_followers_percentage = Column(Float, nullable=True)

    # Demographic distributions
    genders = Column(JSONType, nullable=False, default=list)          # [{"code": "FEMALE", "weight": 0.62}, ...]
    ages = Column(JSONType, nullable=False, default=list)             # [{"code": "18-24", "weight": 0.41}, ...]
    genders_per_age = Column(JSONType, nullable=False, default=list)  # [{"code": "18-24", "male": 0.2, "female": 0.21}, ...]

    # Geo distributions
    geo_countries = Column(JSONType, nullable=False, default=list)
    geo_cities = Column(JSONType, nullable=False, default=list)
    geo_states = Column(JSONType, nullable=False, default=list)

    # Affinity data
    interests = Column(JSONType, nullable=False, default=list)
    brand_affinity = Column(JSONType, nullable=False, default=list)
    languages = Column(JSONType, nullable=False, default=list)
    ethnicities = Column(JSONType, nullable=False, default=list)
    audience_reachability = Column(JSONType, nullable=False, default=list)
    audience_types = Column(JSONType, nullable=False, default=list)
    notable_users = Column(JSONType, nullable=False, default=list)
    audience_lookalikes = Column(JSONType, nullable=False, default=list)

    # Relationship
    profile = relationship("ProfileCacheEntry", back_populates="audience")


class UpdateLogEntry(Base):
    """One row per populate attempt, successful or not"""
    __tablename__ = "profile_report_update_log"

    id = Column(BigInteger().with_variant(Integer(), "sqlite"), primary_key=True, autoincrement=True)
    profile_cache_id = Column(Uuid, ForeignKey('profile_report_cache.id', ondelete='SET NULL'), nullable=True, index=True)

    # Key the attempt was made for, kept even when no cache row exists
    source_account_ref = Column(String(255), nullable=True)
    platform = Column(String(20), nullable=True)

    update_type = Column(String(20), nullable=False)
    status = Column(String(20), nullable=False)
    credits_used = Column(Integer, nullable=False, default=0)
    error_message = Column(Text, nullable=True)

    started_at = Column(UTCDateTime, nullable=False, default=utcnow)
    completed_at = Column(UTCDateTime, nullable=True)

    profile = relationship("ProfileCacheEntry", back_populates="update_logs")

    __table_args__ = (
        CheckConstraint("update_type IN ('initial', 'scheduled', 'manual')", name='check_update_type_valid'),
        CheckConstraint("status IN ('completed', 'failed')", name='check_update_status_valid'),
        CheckConstraint("credits_used >= 0", name='check_credits_used_non_negative'),
        Index('idx_profile_report_update_log_started', 'started_at'),
        Index('idx_profile_report_update_log_status_started', 'status', 'started_at'),
    )
