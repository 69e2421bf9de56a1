"""
Profile Cache Service
Fetches provider profile reports into the cache, selects stale entries for refresh
and serves the latest snapshot to the rest of the application
"""

import logging
import asyncio
import enum
import uuid as uuid_lib
from contextlib import asynccontextmanager
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional, Tuple

import httpx
from sqlalchemy import select, update, and_, or_, func, case
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import selectinload

from app.core.config import settings
from app.core.exceptions import ExternalFetchError, PersistenceError, OperationalError, ProfileCacheError
from app.database.connection import get_session
from app.database.cache_models import (
    ProfileCacheEntry, AudienceCacheEntry, UpdateLogEntry,
    Platform, UpdateType, UpdateStatus, utcnow
)
from app.models.profile_cache import CachedProfile, CacheStats, PopulateResult, RefreshCandidate
from app.models.profile_report import parse_profile_report, dump_items
from app.scrapers.profile_report_client import ProfileReportClient, ProfileReportAPIError

logger = logging.getLogger(__name__)

# Columns rewritten when an existing entry is replaced. update_priority is
# deliberately absent so a business-assigned priority survives refreshes.
_REPLACED_PROFILE_COLUMNS = (
    "external_user_id", "cached_at", "last_updated", "expires_at",
    "username", "full_name", "followers", "following", "engagement_rate",
    "avg_likes", "avg_comments", "avg_views", "avg_reels_plays", "posts_count",
    "profile_url", "picture_url", "bio", "city", "state", "country",
    "age_group", "gender", "language_code", "language_name",
    "is_private", "is_verified", "account_type",
    "contacts", "hashtags", "mentions", "stats",
    "recent_posts", "popular_posts", "sponsored_posts",
)

_REPLACED_AUDIENCE_COLUMNS = (
    "credibility_score", "notable_percentage", "fake_followers_percentage",
    "genders", "ages", "genders_per_age", "geo_countries", "geo_cities", "geo_states",
    "interests", "brand_affinity", "languages", "ethnicities", "audience_reachability",
    "audience_types", "notable_users", "audience_lookalikes",
)


class PriorityTier(str, enum.Enum):
    GOLD = "GOLD"
    SILVER = "SILVER"
    PARTNERED = "PARTNERED"
    BRONZE = "BRONZE"


_TIER_BONUS = {
    PriorityTier.GOLD: 30,
    PriorityTier.SILVER: 10,
    PriorityTier.PARTNERED: 5,
    PriorityTier.BRONZE: 0,
}


def calculate_update_priority(
    tier: PriorityTier,
    days_since_last_update: float,
    active_campaigns: int = 0,
    follower_growth_rate: float = 0.0
) -> int:
    """
    Score how urgently an account should be refreshed (1-100)

    Scores above the urgent threshold (75 by default) make an entry a refresh
    candidate even when its snapshot has not expired. Used by
    ProfileCacheService.rescore_update_priority, which backs
    PUT /profile-cache/profiles/{ref}/{platform}/priority when the body sends a
    tier instead of an explicit update_priority.
    """
    priority = 50.0
    priority += _TIER_BONUS[PriorityTier(tier)]
    priority += min(days_since_last_update * 0.5, 20)
    priority += active_campaigns * 5

    if follower_growth_rate > 5:
        priority += 10
    elif follower_growth_rate > 2:
        priority += 5

    return int(min(max(priority, 1), 100))


class ProfileCacheService:
    """Service for populating, reading and scheduling refreshes of cached profile reports"""

    def __init__(
        self,
        session_factory: Callable = None,
        provider=None,
        clock: Callable[[], datetime] = None,
        ttl: timedelta = None,
        expiry_window: timedelta = None,
        urgent_priority: int = None,
        read_mode: str = None
    ):
        self.session_factory = session_factory or get_session
        self.provider = provider
        self.clock = clock or utcnow
        self.ttl = ttl or timedelta(days=settings.PROFILE_CACHE_TTL_DAYS)
        self.expiry_window = expiry_window or timedelta(hours=settings.PROFILE_CACHE_EXPIRY_WINDOW_HOURS)
        self.urgent_priority = settings.PROFILE_CACHE_URGENT_PRIORITY if urgent_priority is None else urgent_priority
        self.read_mode = (read_mode or settings.PROFILE_CACHE_READ_MODE).lower()
        # key -> (lock, callers holding or waiting on it)
        self._key_locks: Dict[Tuple[str, str], Tuple[asyncio.Lock, int]] = {}

    def _get_provider(self):
        if self.provider is None:
            self.provider = ProfileReportClient.from_settings()
        return self.provider

    @asynccontextmanager
    async def _key_lock(self, source_account_ref: str, platform: str):
        """Serialise populates per key; the lock is dropped once nobody holds or waits on it"""
        key = (source_account_ref, platform)
        lock, users = self._key_locks.get(key, (None, 0))
        if lock is None:
            lock = asyncio.Lock()
        self._key_locks[key] = (lock, users + 1)
        try:
            async with lock:
                yield
        finally:
            lock, users = self._key_locks[key]
            if users <= 1:
                del self._key_locks[key]
            else:
                self._key_locks[key] = (lock, users - 1)

    @staticmethod
    def _insert_for(session):
        """Dialect-specific INSERT supporting ON CONFLICT DO UPDATE"""
        if session.bind.dialect.name == "sqlite":
            return sqlite.insert
        return postgresql.insert

    # =========================================================================
    # POPULATOR
    # =========================================================================

    async def populate_profile_cache(
        self,
        source_account_ref: str,
        external_user_id: str,
        platform: str,
        update_type: Optional[UpdateType] = None
    ) -> PopulateResult:
        """
        Fetch a full report and atomically replace the cache entry for the key

        Never raises: every failure is returned as PopulateResult(success=False)
        and recorded as a failed update log row.
        """
        started_at = self.clock()

        try:
            platform_key = Platform.normalize(platform).value
            update_type = UpdateType(update_type) if update_type is not None else None
        except ValueError:
            logger.error(f"PROFILE_CACHE: Unsupported platform '{platform}' or update type '{update_type}' for {source_account_ref}")
            error = f"Unsupported platform or update type: {platform} / {update_type}"
            await self._log_failed_attempt(
                source_account_ref, None if platform is None else str(platform)[:20], None,
                UpdateType.INITIAL, started_at, error
            )
            return PopulateResult(success=False, error=error)

        async with self._key_lock(source_account_ref, platform_key):
            existing_id = None
            try:
                existing_id = await self._get_entry_id(source_account_ref, platform_key)
                if update_type is None:
                    update_type = UpdateType.INITIAL if existing_id is None else UpdateType.MANUAL

                logger.info(f"PROFILE_CACHE: Caching {platform_key} user {external_user_id} for {source_account_ref} ({update_type.value})")
                report = await self._fetch_report(external_user_id, platform_key)
                profile_cache_id = await self._replace_entry(
                    source_account_ref, external_user_id, platform_key, report, update_type, started_at
                )

            except Exception as e:
                error = e if isinstance(e, ProfileCacheError) else OperationalError(f"Unexpected error caching profile: {e}", cause=e)
                logger.error(f"PROFILE_CACHE: Failed to cache {platform_key} user {external_user_id} for {source_account_ref}: {error}")

                log_type = update_type or (UpdateType.INITIAL if existing_id is None else UpdateType.MANUAL)
                await self._log_failed_attempt(
                    source_account_ref, platform_key, existing_id, log_type, started_at, str(error)
                )
                return PopulateResult(success=False, error=str(error))

        logger.info(f"PROFILE_CACHE: Successfully cached {platform_key} user {external_user_id} for {source_account_ref}")
        return PopulateResult(success=True, profile_cache_id=profile_cache_id)

    async def _get_entry_id(self, source_account_ref: str, platform: str) -> Optional[uuid_lib.UUID]:
        async with self.session_factory() as db:
            result = await db.execute(
                select(ProfileCacheEntry.id).where(
                    and_(
                        ProfileCacheEntry.source_account_ref == source_account_ref,
                        ProfileCacheEntry.platform == platform
                    )
                )
            )
            return result.scalar_one_or_none()

    async def _fetch_report(self, external_user_id: str, platform: str):
        try:
            payload = await self._get_provider().fetch_report(external_user_id, platform)
        except ProfileReportAPIError as e:
            raise ExternalFetchError(f"Profile report request failed: {e}", cause=e) from e
        except httpx.HTTPError as e:
            raise ExternalFetchError(f"Profile report transport error: {e}", cause=e) from e

        return parse_profile_report(payload, platform)

    async def _replace_entry(
        self,
        source_account_ref: str,
        external_user_id: str,
        platform: str,
        report,
        update_type: UpdateType,
        started_at: datetime
    ) -> uuid_lib.UUID:
        """Upsert profile + audience and append the update log in one transaction"""
        now = self.clock()
        profile = report.profile
        audience = report.audience

        profile_values = {
            "source_account_ref": source_account_ref,
            "external_user_id": external_user_id,
            "platform": platform,
            "cached_at": now,
            "last_updated": now,
            "expires_at": now + self.ttl,
            "username": profile.username,
            "full_name": profile.full_name,
            "followers": profile.followers,
            "following": profile.following,
            "engagement_rate": profile.engagement_rate,
            "avg_likes": profile.avg_likes,
            "avg_comments": profile.avg_comments,
            "avg_views": profile.avg_views,
            "avg_reels_plays": profile.avg_reels_plays,
            "posts_count": profile.posts_count,
            "profile_url": profile.url,
            "picture_url": profile.picture,
            "bio": profile.bio,
            "city": profile.city,
            "state": profile.state,
            "country": profile.country,
            "age_group": profile.age_group,
            "gender": profile.gender,
            "language_code": profile.language.code if profile.language else None,
            "language_name": profile.language.name if profile.language else None,
            "is_private": profile.is_private,
            "is_verified": profile.is_verified,
            "account_type": profile.account_type,
            "contacts": dump_items(profile.contacts),
            "hashtags": dump_items(report.hashtags),
            "mentions": dump_items(report.mentions),
            "stats": {name: metric.dict() for name, metric in report.stats.items()},
            "recent_posts": dump_items(report.recent_posts),
            "popular_posts": dump_items(report.popular_posts),
            "sponsored_posts": dump_items(report.sponsored_posts),
        }

        audience_values = {
            "credibility_score": audience.credibility,
            "notable_percentage": audience.notable,
            "fake_followers_percentage": audience.fake_followers_percentage,
            "genders": dump_items(audience.genders),
            "ages": dump_items(audience.ages),
            "genders_per_age": dump_items(audience.genders_per_age),
            "geo_countries": dump_items(audience.geo_countries),
            "geo_cities": dump_items(audience.geo_cities),
            "geo_states": dump_items(audience.geo_states),
            "interests": dump_items(audience.interests),
            "brand_affinity": dump_items(audience.brand_affinity),
            "languages": dump_items(audience.languages),
            "ethnicities": dump_items(audience.ethnicities),
            "audience_reachability": dump_items(audience.audience_reachability),
            "audience_types": dump_items(audience.audience_types),
            "notable_users": dump_items(audience.notable_users),
            "audience_lookalikes": dump_items(audience.audience_lookalikes),
        }

        try:
            async with self.session_factory() as db:
                async with db.begin():
                    insert = self._insert_for(db)

                    profile_stmt = insert(ProfileCacheEntry).values(id=uuid_lib.uuid4(), **profile_values)
                    profile_stmt = profile_stmt.on_conflict_do_update(
                        index_elements=["source_account_ref", "platform"],
                        set_={column: profile_stmt.excluded[column] for column in _REPLACED_PROFILE_COLUMNS}
                    ).returning(ProfileCacheEntry.id)
                    profile_cache_id = (await db.execute(profile_stmt)).scalar_one()

                    audience_stmt = insert(AudienceCacheEntry).values(
                        id=uuid_lib.uuid4(), profile_cache_id=profile_cache_id, **audience_values
                    )
                    audience_stmt = audience_stmt.on_conflict_do_update(
                        index_elements=["profile_cache_id"],
                        set_={column: audience_stmt.excluded[column] for column in _REPLACED_AUDIENCE_COLUMNS}
                    )
                    await db.execute(audience_stmt)

                    db.add(UpdateLogEntry(
                        profile_cache_id=profile_cache_id,
                        source_account_ref=source_account_ref,
                        platform=platform,
                        update_type=update_type.value,
                        status=UpdateStatus.COMPLETED.value,
                        credits_used=1,
                        started_at=started_at,
                        completed_at=now
                    ))

            return profile_cache_id

        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to store cached profile: {e}", cause=e) from e

    async def _log_failed_attempt(
        self,
        source_account_ref: str,
        platform: str,
        profile_cache_id: Optional[uuid_lib.UUID],
        update_type: UpdateType,
        started_at: datetime,
        error_message: str
    ) -> None:
        try:
            async with self.session_factory() as db:
                db.add(UpdateLogEntry(
                    profile_cache_id=profile_cache_id,
                    source_account_ref=source_account_ref,
                    platform=platform,
                    update_type=update_type.value,
                    status=UpdateStatus.FAILED.value,
                    credits_used=0,
                    error_message=error_message[:2000],
                    started_at=started_at,
                    completed_at=self.clock()
                ))
                await db.commit()
        except Exception as log_error:
            logger.error(f"PROFILE_CACHE: Could not record failed update for {source_account_ref} ({platform}): {log_error}")

    # =========================================================================
    # ACCESSOR
    # =========================================================================

    async def get_cached_profile(
        self,
        source_account_ref: str,
        platform: str,
        honor_expiry: Optional[bool] = None
    ) -> Optional[CachedProfile]:
        """
        Latest cached snapshot for the key, or None

        In the default lazy read mode expired snapshots are still returned;
        callers decide whether to fall back or request a refresh.
        """
        try:
            platform_key = Platform.normalize(platform).value
        except ValueError:
            return None

        if honor_expiry is None:
            honor_expiry = self.read_mode == "strict"

        query = select(ProfileCacheEntry).options(
            selectinload(ProfileCacheEntry.audience)
        ).where(
            and_(
                ProfileCacheEntry.source_account_ref == source_account_ref,
                ProfileCacheEntry.platform == platform_key
            )
        )
        if honor_expiry:
            query = query.where(ProfileCacheEntry.expires_at > self.clock())
        query = query.order_by(ProfileCacheEntry.last_updated.desc()).limit(1)

        try:
            async with self.session_factory() as db:
                result = await db.execute(query)
                entry = result.scalar_one_or_none()
                if entry is None:
                    return None
                return CachedProfile.from_orm(entry)
        except SQLAlchemyError as e:
            logger.error(f"PROFILE_CACHE: Error reading cached profile {source_account_ref} ({platform_key}): {e}")
            raise OperationalError(f"Failed to read cached profile: {e}", cause=e) from e

    async def set_update_priority(self, source_account_ref: str, platform: str, priority: int) -> bool:
        """Persist a business-assigned priority; returns False when no entry exists"""
        platform_key = Platform.normalize(platform).value
        priority = min(max(int(priority), 0), 100)

        async with self.session_factory() as db:
            result = await db.execute(
                update(ProfileCacheEntry).where(
                    and_(
                        ProfileCacheEntry.source_account_ref == source_account_ref,
                        ProfileCacheEntry.platform == platform_key
                    )
                ).values(update_priority=priority)
            )
            await db.commit()

        updated = result.rowcount > 0
        if updated:
            logger.info(f"PROFILE_CACHE: Priority for {source_account_ref} ({platform_key}) set to {priority}")
        return updated

    async def rescore_update_priority(
        self,
        source_account_ref: str,
        platform: str,
        tier: PriorityTier,
        active_campaigns: int = 0,
        follower_growth_rate: float = 0.0
    ) -> Optional[int]:
        """Score and persist a priority from business signals; None when no entry exists"""
        platform_key = Platform.normalize(platform).value
        tier = PriorityTier(tier)

        async with self.session_factory() as db:
            last_updated = (await db.execute(
                select(ProfileCacheEntry.last_updated).where(
                    and_(
                        ProfileCacheEntry.source_account_ref == source_account_ref,
                        ProfileCacheEntry.platform == platform_key
                    )
                )
            )).scalar_one_or_none()

        if last_updated is None:
            return None

        days_since_last_update = (self.clock() - last_updated).total_seconds() / 86400
        priority = calculate_update_priority(tier, days_since_last_update, active_campaigns, follower_growth_rate)
        await self.set_update_priority(source_account_ref, platform_key, priority)
        return priority

    # =========================================================================
    # FRESHNESS EVALUATOR
    # =========================================================================

    async def get_profiles_needing_update(self, limit: int = 10) -> List[RefreshCandidate]:
        """Entries expiring within the window or flagged urgent, most pressing first"""
        now = self.clock()
        expired_first = case((ProfileCacheEntry.expires_at <= now, 1), else_=2)

        query = select(
            ProfileCacheEntry.id,
            ProfileCacheEntry.source_account_ref,
            ProfileCacheEntry.external_user_id,
            ProfileCacheEntry.platform,
            ProfileCacheEntry.username,
            ProfileCacheEntry.expires_at,
            ProfileCacheEntry.update_priority
        ).where(
            or_(
                ProfileCacheEntry.expires_at <= now + self.expiry_window,
                ProfileCacheEntry.update_priority > self.urgent_priority
            )
        ).order_by(
            expired_first,
            ProfileCacheEntry.update_priority.desc(),
            ProfileCacheEntry.expires_at.asc()
        ).limit(limit)

        async with self.session_factory() as db:
            result = await db.execute(query)
            return [RefreshCandidate(**row._mapping) for row in result.all()]

    async def update_expired_profiles(
        self,
        batch_size: int = 10,
        request_delay: float = 0.5,
        update_type: UpdateType = UpdateType.SCHEDULED
    ) -> Dict[str, int]:
        """Refresh one bounded batch of candidates, sequentially with a fixed delay between calls"""
        candidates = (await self.get_profiles_needing_update(limit=batch_size))[:batch_size]

        results = {
            'candidates': len(candidates),
            'updated': 0,
            'errors': 0,
            'credits_used': 0
        }

        for index, candidate in enumerate(candidates):
            if index > 0 and request_delay > 0:
                # Respect the provider's rate limit
                await asyncio.sleep(request_delay)

            try:
                logger.info(f"PROFILE_CACHE: Updating {candidate.platform} user {candidate.external_user_id} (expires {candidate.expires_at.isoformat()}, priority {candidate.update_priority})")
                result = await self.populate_profile_cache(
                    candidate.source_account_ref,
                    candidate.external_user_id,
                    candidate.platform,
                    update_type=update_type
                )
                if result.success:
                    results['updated'] += 1
                    results['credits_used'] += 1
                else:
                    results['errors'] += 1

            except Exception as e:
                logger.error(f"PROFILE_CACHE: Error updating profile {candidate.external_user_id}: {e}")
                results['errors'] += 1

        logger.info(f"PROFILE_CACHE: Batch complete - {results['updated']} updated, {results['errors']} errors, {results['credits_used']} credits used")
        return results

    # =========================================================================
    # STATISTICS
    # =========================================================================

    async def get_cache_stats(self) -> CacheStats:
        """Counts, staleness and this month's credit spend"""
        now = self.clock()
        month_start = now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)

        try:
            async with self.session_factory() as db:
                cache_row = (await db.execute(
                    select(
                        func.count(ProfileCacheEntry.id),
                        func.count(case((ProfileCacheEntry.expires_at <= now, 1))),
                        func.max(ProfileCacheEntry.last_updated)
                    )
                )).one()

                credits_used = (await db.execute(
                    select(func.coalesce(func.sum(UpdateLogEntry.credits_used), 0)).where(
                        and_(
                            UpdateLogEntry.started_at >= month_start,
                            UpdateLogEntry.status == UpdateStatus.COMPLETED.value
                        )
                    )
                )).scalar()

        except Exception as e:
            logger.error(f"PROFILE_CACHE: Error getting cache stats: {e}")
            raise OperationalError(f"Failed to compute cache stats: {e}", cause=e) from e

        return CacheStats(
            total_cached_profiles=cache_row[0] or 0,
            profiles_needing_update=cache_row[1] or 0,
            last_update_run=cache_row[2],
            credits_used_this_month=int(credits_used or 0)
        )


# Global service instance
profile_cache_service = ProfileCacheService()
