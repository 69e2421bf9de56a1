"""
Profile Cache Models - Pydantic models for cache reads, job results and API requests
"""
from pydantic import BaseModel, Field
from typing import Optional, List, Dict, Any
from datetime import datetime
import uuid


# =============================================================================
# CACHED SNAPSHOT MODELS
# =============================================================================

class CachedAudience(BaseModel):
    credibility_score: Optional[float] = None
    notable_percentage: Optional[float] = None
    fake_followers_percentage: Optional[float] = None
    genders: List[Dict[str, Any]] = Field(default_factory=list)
    ages: List[Dict[str, Any]] = Field(default_factory=list)
    genders_per_age: List[Dict[str, Any]] = Field(default_factory=list)
    geo_countries: List[Dict[str, Any]] = Field(default_factory=list)
    geo_cities: List[Dict[str, Any]] = Field(default_factory=list)
    geo_states: List[Dict[str, Any]] = Field(default_factory=list)
    interests: List[Dict[str, Any]] = Field(default_factory=list)
    brand_affinity: List[Dict[str, Any]] = Field(default_factory=list)
    languages: List[Dict[str, Any]] = Field(default_factory=list)
    ethnicities: List[Dict[str, Any]] = Field(default_factory=list)
    audience_reachability: List[Dict[str, Any]] = Field(default_factory=list)
    audience_types: List[Dict[str, Any]] = Field(default_factory=list)
    notable_users: List[Dict[str, Any]] = Field(default_factory=list)
    audience_lookalikes: List[Dict[str, Any]] = Field(default_factory=list)

    class Config:
        from_attributes = True


class CachedProfile(BaseModel):
    """Latest cached snapshot for a (source account, platform) key"""
    id: uuid.UUID
    source_account_ref: str
    external_user_id: str
    platform: str

    cached_at: datetime
    last_updated: datetime
    expires_at: datetime

    username: Optional[str] = None
    full_name: Optional[str] = None
    followers: int = 0
    following: int = 0
    engagement_rate: float = 0.0
    avg_likes: float = 0.0
    avg_comments: float = 0.0
    avg_views: float = 0.0
    avg_reels_plays: float = 0.0
    posts_count: int = 0

    profile_url: Optional[str] = None
    picture_url: Optional[str] = None
    bio: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    country: Optional[str] = None
    age_group: Optional[str] = None
    gender: Optional[str] = None
    language_code: Optional[str] = None
    language_name: Optional[str] = None
    is_private: bool = False
    is_verified: bool = False
    account_type: Optional[str] = None

    contacts: List[Dict[str, Any]] = Field(default_factory=list)
    hashtags: List[Dict[str, Any]] = Field(default_factory=list)
    mentions: List[Dict[str, Any]] = Field(default_factory=list)
    stats: Dict[str, Any] = Field(default_factory=dict)
    recent_posts: List[Dict[str, Any]] = Field(default_factory=list)
    popular_posts: List[Dict[str, Any]] = Field(default_factory=list)
    sponsored_posts: List[Dict[str, Any]] = Field(default_factory=list)

    update_priority: int = 50
    audience: Optional[CachedAudience] = None

    class Config:
        from_attributes = True

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at <= now


# =============================================================================
# POPULATE / SCHEDULING MODELS
# =============================================================================

class PopulateResult(BaseModel):
    success: bool
    error: Optional[str] = None
    profile_cache_id: Optional[uuid.UUID] = None


class RefreshCandidate(BaseModel):
    """Cache key selected for refresh, in refresh order"""
    id: uuid.UUID
    source_account_ref: str
    external_user_id: str
    platform: str
    username: Optional[str] = None
    expires_at: datetime
    update_priority: int

    class Config:
        from_attributes = True


class CacheStats(BaseModel):
    total_cached_profiles: int = 0
    profiles_needing_update: int = 0
    last_update_run: Optional[datetime] = None
    credits_used_this_month: int = 0


class CacheUpdateJobResult(BaseModel):
    success: bool
    updated: int = 0
    errors: int = 0
    credits_used: int = 0
    candidates: int = Field(0, description="Candidates processed in this run")
    total_cached: int = 0
    needing_update: int = 0
    start_time: datetime
    end_time: datetime
    duration_ms: float = 0.0
    trigger: str = "scheduled"
    reason: Optional[str] = None
    error: Optional[str] = None


class SchedulerStatus(BaseModel):
    last_run: Optional[datetime] = None
    last_result: Optional[CacheUpdateJobResult] = None
    total_runs: int = 0
    total_profiles_refreshed: int = 0
    total_failures: int = 0
    next_update_time: datetime
    urgent_updates_pending: bool = False


# =============================================================================
# API REQUEST MODELS
# =============================================================================

class ProfileRefreshRequest(BaseModel):
    source_account_ref: str = Field(..., min_length=1, description="Connected account being tracked")
    external_user_id: str = Field(..., min_length=1, description="Provider's identifier for the account")
    platform: str = Field(..., min_length=1, description="instagram, tiktok or youtube")


class PriorityUpdateRequest(BaseModel):
    update_priority: Optional[int] = Field(None, ge=0, le=100, description="Refresh urgency, above 75 is refreshed early")
    tier: Optional[str] = Field(None, description="GOLD, SILVER, PARTNERED or BRONZE; scores the priority when update_priority is omitted")
    active_campaigns: int = Field(0, ge=0, description="Campaigns currently running for the account")
    follower_growth_rate: float = Field(0.0, description="Recent follower growth in percent")
