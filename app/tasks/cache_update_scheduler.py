"""
Profile Cache Update Job
Refreshes expiring profile reports in bounded batches; triggered externally (cron / API)
"""

import logging
import time
from datetime import datetime, timedelta, timezone
from typing import Optional

from app.core.config import settings
from app.database.cache_models import UpdateType, utcnow
from app.models.profile_cache import CacheUpdateJobResult, SchedulerStatus
from app.services.profile_cache_service import ProfileCacheService, profile_cache_service

logger = logging.getLogger(__name__)

# Upper bound on provider calls per job run
MAX_BATCH_SIZE = 10


def get_next_update_time(now: Optional[datetime] = None) -> datetime:
    """Next Sunday 02:00 UTC; on a Sunday this is the following week's run"""
    now = (now or utcnow()).astimezone(timezone.utc)
    days_until_sunday = (6 - now.weekday()) % 7 or 7
    next_run = now + timedelta(days=days_until_sunday)
    return next_run.replace(hour=2, minute=0, second=0, microsecond=0)


class ProfileCacheScheduler:
    """Runs cache update jobs and keeps cumulative run statistics"""

    def __init__(
        self,
        cache_service: ProfileCacheService = None,
        batch_size: int = None,
        request_delay: float = None
    ):
        self.cache_service = cache_service or profile_cache_service
        batch_size = settings.PROFILE_CACHE_BATCH_SIZE if batch_size is None else batch_size
        self.batch_size = min(max(int(batch_size), 0), MAX_BATCH_SIZE)
        self.request_delay = settings.PROFILE_CACHE_REQUEST_DELAY if request_delay is None else request_delay
        self.last_result: Optional[CacheUpdateJobResult] = None
        self.stats = {
            'last_run': None,
            'total_runs': 0,
            'total_profiles_refreshed': 0,
            'total_failures': 0
        }

    async def run_cache_update_job(
        self,
        update_type: UpdateType = UpdateType.SCHEDULED,
        reason: Optional[str] = None
    ) -> CacheUpdateJobResult:
        """
        Run one refresh batch

        Never raises. If the run cannot proceed (stats or candidate queries fail)
        the result has success=False and every counter at zero.
        """
        update_type = UpdateType(update_type)
        start_time = self.cache_service.clock()
        started = time.monotonic()
        logger.info(f"CACHE_JOB: Starting {update_type.value} profile cache update" + (f" ({reason})" if reason else ""))

        try:
            before = await self.cache_service.get_cache_stats()
            logger.info(f"CACHE_JOB: Before update - {before.total_cached_profiles} cached, {before.profiles_needing_update} expired")

            results = await self.cache_service.update_expired_profiles(
                batch_size=self.batch_size,
                request_delay=self.request_delay,
                update_type=update_type
            )

            after = await self.cache_service.get_cache_stats()
            duration_ms = (time.monotonic() - started) * 1000

            result = CacheUpdateJobResult(
                success=True,
                updated=results['updated'],
                errors=results['errors'],
                credits_used=results['credits_used'],
                candidates=results['candidates'],
                total_cached=after.total_cached_profiles,
                needing_update=after.profiles_needing_update,
                start_time=start_time,
                end_time=self.cache_service.clock(),
                duration_ms=duration_ms,
                trigger=update_type.value,
                reason=reason
            )
            logger.info(f"CACHE_JOB: Completed in {duration_ms:.0f}ms - {result.updated} updated, {result.errors} errors, {result.credits_used} credits, {result.needing_update} still expired")

        except Exception as e:
            logger.error(f"CACHE_JOB: Update job failed: {e}")
            result = CacheUpdateJobResult(
                success=False,
                start_time=start_time,
                end_time=self.cache_service.clock(),
                duration_ms=(time.monotonic() - started) * 1000,
                trigger=update_type.value,
                reason=reason,
                error=str(e)
            )

        self.stats['last_run'] = start_time
        self.stats['total_runs'] += 1
        self.stats['total_profiles_refreshed'] += result.updated
        self.stats['total_failures'] += result.errors if result.success else 1
        self.last_result = result
        return result

    async def trigger_manual_update(self, reason: str = "manual") -> CacheUpdateJobResult:
        """Run the update job on demand, e.g. after a provider outage"""
        logger.info(f"CACHE_JOB: Manual update triggered - reason: {reason}")
        return await self.run_cache_update_job(update_type=UpdateType.MANUAL, reason=reason)

    async def check_urgent_updates(self) -> bool:
        """True when any cached profile has already expired"""
        stats = await self.cache_service.get_cache_stats()
        return stats.profiles_needing_update > 0

    async def get_scheduler_status(self) -> SchedulerStatus:
        """Cumulative run statistics plus the next cadence time"""
        try:
            urgent = await self.check_urgent_updates()
        except Exception as e:
            logger.warning(f"CACHE_JOB: Could not check urgent updates: {e}")
            urgent = False

        return SchedulerStatus(
            last_run=self.stats['last_run'],
            last_result=self.last_result,
            total_runs=self.stats['total_runs'],
            total_profiles_refreshed=self.stats['total_profiles_refreshed'],
            total_failures=self.stats['total_failures'],
            next_update_time=get_next_update_time(self.cache_service.clock()),
            urgent_updates_pending=urgent
        )


# Global scheduler instance
profile_cache_scheduler = ProfileCacheScheduler()
