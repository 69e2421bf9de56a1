"""
Profile Report Models - Pydantic models for the provider's profile report payload
Each platform gets its own report model so a shape change upstream fails at ingestion
"""
from pydantic import BaseModel, Field, ValidationError, validator
from typing import Optional, List, Dict, Any, Union, Literal, Annotated

from app.core.exceptions import ExternalFetchError


class _ProviderModel(BaseModel):
    class Config:
        populate_by_name = True
        extra = "ignore"


def _none_to_list(value):
    return [] if value is None else value


def _none_to_zero(value):
    return 0 if value is None else value


# =============================================================================
# SHARED SHAPES
# =============================================================================

class Contact(_ProviderModel):
    type: str = Field(..., description="Contact channel, e.g. email or phone")
    value: str = Field(..., description="Contact value")


class WeightedTag(_ProviderModel):
    tag: str = Field(..., description="Hashtag or mention without prefix")
    weight: float = Field(0.0, description="Share of posts using the tag")


class StatMetric(_ProviderModel):
    value: Optional[float] = Field(None, description="Current value")
    compared: Optional[float] = Field(None, description="Relative change against the previous period")


class Language(_ProviderModel):
    code: Optional[str] = None
    name: Optional[str] = None


class ReportProfile(_ProviderModel):
    """Core account metrics (the nested `profile.profile` section)"""
    username: Optional[str] = None
    full_name: Optional[str] = Field(None, alias="fullname")
    url: Optional[str] = None
    picture: Optional[str] = None
    bio: Optional[str] = None
    followers: int = 0
    following: int = 0
    engagement_rate: float = Field(0.0, alias="engagementRate")
    avg_likes: float = Field(0.0, alias="avgLikes")
    avg_comments: float = Field(0.0, alias="avgComments")
    avg_views: float = Field(0.0, alias="avgViews")
    avg_reels_plays: float = Field(0.0, alias="avgReelsPlays")
    posts_count: int = Field(0, alias="postsCount")
    city: Optional[str] = None
    state: Optional[str] = None
    country: Optional[str] = None
    age_group: Optional[str] = Field(None, alias="ageGroup")
    gender: Optional[str] = None
    language: Optional[Language] = None
    is_private: bool = Field(False, alias="isPrivate")
    is_verified: bool = Field(False, alias="isVerified")
    account_type: Optional[str] = Field(None, alias="accountType")
    contacts: List[Contact] = Field(default_factory=list)

    @validator('followers', 'following', 'engagement_rate', 'avg_likes', 'avg_comments',
               'avg_views', 'avg_reels_plays', 'posts_count', pre=True)
    def missing_metric_is_zero(cls, v):
        return _none_to_zero(v)

    @validator('is_private', 'is_verified', pre=True)
    def missing_flag_is_false(cls, v):
        return False if v is None else v

    @validator('contacts', pre=True)
    def missing_contacts(cls, v):
        return _none_to_list(v)


# =============================================================================
# AUDIENCE
# =============================================================================

class WeightedCode(_ProviderModel):
    code: str
    weight: float = 0.0


class GenderAgeSplit(_ProviderModel):
    code: str
    male: float = 0.0
    female: float = 0.0


class WeightedName(_ProviderModel):
    name: str
    code: Optional[str] = None
    weight: float = 0.0


class AudienceUser(_ProviderModel):
    user_id: str = Field(..., alias="userId")
    username: Optional[str] = None
    full_name: Optional[str] = Field(None, alias="fullname")
    followers: Optional[int] = None
    engagements: Optional[int] = None

    @validator('user_id', pre=True)
    def user_id_as_string(cls, v):
        return str(v) if isinstance(v, int) else v


class ReportAudience(_ProviderModel):
    credibility: Optional[float] = None
    notable: Optional[float] = None
    genders: List[WeightedCode] = Field(default_factory=list)
    ages: List[WeightedCode] = Field(default_factory=list)
    genders_per_age: List[GenderAgeSplit] = Field(default_factory=list, alias="gendersPerAge")
    geo_countries: List[WeightedName] = Field(default_factory=list, alias="geoCountries")
    geo_cities: List[WeightedName] = Field(default_factory=list, alias="geoCities")
    geo_states: List[WeightedName] = Field(default_factory=list, alias="geoStates")
    interests: List[WeightedName] = Field(default_factory=list)
    brand_affinity: List[WeightedName] = Field(default_factory=list, alias="brandAffinity")
    languages: List[WeightedName] = Field(default_factory=list)
    ethnicities: List[WeightedName] = Field(default_factory=list)
    audience_reachability: List[WeightedCode] = Field(default_factory=list, alias="audienceReachability")
    audience_types: List[WeightedCode] = Field(default_factory=list, alias="audienceTypes")
    notable_users: List[AudienceUser] = Field(default_factory=list, alias="notableUsers")
    audience_lookalikes: List[AudienceUser] = Field(default_factory=list, alias="audienceLookalikes")

    @validator('genders', 'ages', 'genders_per_age', 'geo_countries', 'geo_cities', 'geo_states',
               'interests', 'brand_affinity', 'languages', 'ethnicities', 'audience_reachability',
               'audience_types', 'notable_users', 'audience_lookalikes', pre=True)
    def missing_breakdown(cls, v):
        return _none_to_list(v)

    @property
    def fake_followers_percentage(self) -> Optional[float]:
        if not self.credibility:
            return None
        return (1 - self.credibility) * 100


# =============================================================================
# PLATFORM POSTS
# =============================================================================

class _BasePost(_ProviderModel):
    id: str
    url: Optional[str] = None
    created: Optional[str] = None
    likes: int = 0
    comments: int = 0
    thumbnail: Optional[str] = None

    @validator('id', pre=True)
    def id_as_string(cls, v):
        return str(v) if isinstance(v, int) else v

    @validator('likes', 'comments', pre=True)
    def missing_counts(cls, v):
        return _none_to_zero(v)


class InstagramPost(_BasePost):
    type: Optional[str] = Field(None, description="photo, video or carousel")
    text: Optional[str] = None
    views: Optional[int] = None
    hashtags: List[str] = Field(default_factory=list)
    mentions: List[str] = Field(default_factory=list)

    @validator('hashtags', 'mentions', pre=True)
    def missing_tags(cls, v):
        return _none_to_list(v)


class TikTokPost(_BasePost):
    text: Optional[str] = None
    views: int = 0
    shares: int = 0
    saves: Optional[int] = None
    video: Optional[str] = None

    @validator('views', 'shares', pre=True)
    def missing_video_counts(cls, v):
        return _none_to_zero(v)


class YouTubePost(_BasePost):
    title: Optional[str] = None
    views: int = 0
    duration: Optional[int] = Field(None, description="Video duration in seconds")

    @validator('views', pre=True)
    def missing_views(cls, v):
        return _none_to_zero(v)


# =============================================================================
# PLATFORM REPORTS
# =============================================================================

class _BaseReport(_ProviderModel):
    profile: ReportProfile = Field(default_factory=ReportProfile)
    audience: ReportAudience = Field(default_factory=ReportAudience)
    stats: Dict[str, StatMetric] = Field(default_factory=dict)
    hashtags: List[WeightedTag] = Field(default_factory=list)
    mentions: List[WeightedTag] = Field(default_factory=list)

    @validator('profile', 'audience', pre=True)
    def missing_section(cls, v):
        return {} if v is None else v

    @validator('stats', pre=True)
    def missing_stats(cls, v):
        return {} if v is None else v

    @validator('hashtags', 'mentions', pre=True)
    def missing_tags(cls, v):
        return _none_to_list(v)


class InstagramReport(_BaseReport):
    platform: Literal["INSTAGRAM"]
    recent_posts: List[InstagramPost] = Field(default_factory=list, alias="recentPosts")
    popular_posts: List[InstagramPost] = Field(default_factory=list, alias="popularPosts")
    sponsored_posts: List[InstagramPost] = Field(default_factory=list, alias="sponsoredPosts")

    @validator('recent_posts', 'popular_posts', 'sponsored_posts', pre=True)
    def missing_posts(cls, v):
        return _none_to_list(v)


class TikTokReport(_BaseReport):
    platform: Literal["TIKTOK"]
    recent_posts: List[TikTokPost] = Field(default_factory=list, alias="recentPosts")
    popular_posts: List[TikTokPost] = Field(default_factory=list, alias="popularPosts")
    sponsored_posts: List[TikTokPost] = Field(default_factory=list, alias="sponsoredPosts")

    @validator('recent_posts', 'popular_posts', 'sponsored_posts', pre=True)
    def missing_posts(cls, v):
        return _none_to_list(v)


class YouTubeReport(_BaseReport):
    platform: Literal["YOUTUBE"]
    recent_posts: List[YouTubePost] = Field(default_factory=list, alias="recentPosts")
    popular_posts: List[YouTubePost] = Field(default_factory=list, alias="popularPosts")
    sponsored_posts: List[YouTubePost] = Field(default_factory=list, alias="sponsoredPosts")

    @validator('recent_posts', 'popular_posts', 'sponsored_posts', pre=True)
    def missing_posts(cls, v):
        return _none_to_list(v)


ProfileReport = Annotated[
    Union[InstagramReport, TikTokReport, YouTubeReport],
    Field(discriminator="platform")
]


class ProfileReportEnvelope(BaseModel):
    report: ProfileReport


def parse_profile_report(payload: Any, platform: str) -> Union[InstagramReport, TikTokReport, YouTubeReport]:
    """
    Validate a raw provider payload into the report model for `platform`

    Raises:
        ExternalFetchError: payload has no profile section or does not match the platform shape
    """
    if not isinstance(payload, dict):
        raise ExternalFetchError("Empty response from profile report provider")

    if payload.get("error"):
        message = payload.get("message") or "provider reported an error"
        raise ExternalFetchError(f"Profile report provider error: {message}")

    section = payload.get("profile")
    if not section:
        raise ExternalFetchError("No profile data returned from profile report provider")
    if not isinstance(section, dict):
        raise ExternalFetchError(f"Unexpected profile section type: {type(section).__name__}")

    try:
        envelope = ProfileReportEnvelope(report={**section, "platform": platform})
    except ValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()[:5]
        )
        raise ExternalFetchError(f"Malformed {platform} profile report: {problems}", cause=e) from e

    return envelope.report


def dump_items(items: List[BaseModel]) -> List[Dict[str, Any]]:
    """JSON-ready list for the cache's extension columns"""
    return [item.dict() for item in items]
