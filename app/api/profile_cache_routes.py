"""
Profile Cache API Routes
Trigger endpoints for the external scheduler plus read / refresh endpoints for cached reports
"""

from fastapi import APIRouter, HTTPException, Query, Path, Depends, Header
from typing import Optional
import hmac
import logging

from app.core.config import settings
from app.core.exceptions import AuthenticationException, NotFoundException, ValidationException
from app.database.cache_models import Platform
from app.models.profile_cache import ProfileRefreshRequest, PriorityUpdateRequest
from app.services.profile_cache_service import ProfileCacheService, PriorityTier, profile_cache_service
from app.tasks.cache_update_scheduler import ProfileCacheScheduler, profile_cache_scheduler

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/profile-cache", tags=["Profile Cache"])


def get_profile_cache_service() -> ProfileCacheService:
    return profile_cache_service


def get_profile_cache_scheduler() -> ProfileCacheScheduler:
    return profile_cache_scheduler


async def verify_update_token(authorization: str = Header(None)):
    """Bearer check for cron callers; open when CACHE_UPDATE_TOKEN is unset"""
    expected = settings.CACHE_UPDATE_TOKEN
    if not expected:
        return

    if not authorization or not authorization.startswith("Bearer "):
        raise AuthenticationException()

    token = authorization[len("Bearer "):]
    if not hmac.compare_digest(token, expected):
        raise AuthenticationException()


def _platform_or_422(platform: str) -> str:
    try:
        return Platform.normalize(platform).value
    except ValueError:
        raise ValidationException(f"Unsupported platform '{platform}'")


# =============================================================================
# SCHEDULER TRIGGERS
# =============================================================================

@router.post("/update", dependencies=[Depends(verify_update_token)])
async def run_cache_update(scheduler: ProfileCacheScheduler = Depends(get_profile_cache_scheduler)):
    """Run one scheduled refresh batch (called by cron)"""
    result = await scheduler.run_cache_update_job()
    return {
        "success": result.success,
        "data": result,
        "message": f"Cache update complete - {result.updated}/{result.candidates} profiles refreshed"
        if result.success else f"Cache update failed: {result.error}"
    }


@router.post("/update/manual")
async def trigger_manual_update(
    reason: str = Query("manual", max_length=200, description="Why the update was triggered"),
    scheduler: ProfileCacheScheduler = Depends(get_profile_cache_scheduler)
):
    """Manually trigger a refresh batch"""
    logger.info(f"PROFILE_CACHE_API: Manual update requested - {reason}")
    result = await scheduler.trigger_manual_update(reason=reason)
    return {
        "success": result.success,
        "data": result
    }


@router.get("/urgent")
async def check_urgent_updates(scheduler: ProfileCacheScheduler = Depends(get_profile_cache_scheduler)):
    """Whether any cached profile has expired"""
    try:
        urgent = await scheduler.check_urgent_updates()
        return {"success": True, "data": {"urgent_updates_pending": urgent}}
    except Exception as e:
        logger.error(f"PROFILE_CACHE_API: Error checking urgent updates: {e}")
        raise HTTPException(status_code=500, detail=f"Failed to check urgent updates: {str(e)}")


@router.get("/schedule")
async def get_schedule(scheduler: ProfileCacheScheduler = Depends(get_profile_cache_scheduler)):
    """Scheduler run statistics and the next regular update time"""
    try:
        status = await scheduler.get_scheduler_status()
        return {"success": True, "data": status}
    except Exception as e:
        logger.error(f"PROFILE_CACHE_API: Error getting scheduler status: {e}")
        raise HTTPException(status_code=500, detail=f"Failed to get scheduler status: {str(e)}")


@router.get("/stats")
async def get_cache_stats(service: ProfileCacheService = Depends(get_profile_cache_service)):
    """Cache size, staleness and this month's credit spend"""
    try:
        stats = await service.get_cache_stats()
        return {"success": True, "data": stats}
    except Exception as e:
        logger.error(f"PROFILE_CACHE_API: Error getting cache stats: {e}")
        raise HTTPException(status_code=500, detail=f"Failed to get cache stats: {str(e)}")


# =============================================================================
# CACHED PROFILES
# =============================================================================

@router.get("/profiles/{source_account_ref}/{platform}")
async def get_cached_profile(
    source_account_ref: str = Path(..., description="Connected account being tracked"),
    platform: str = Path(..., description="instagram, tiktok or youtube"),
    honor_expiry: Optional[bool] = Query(None, description="Hide expired snapshots (defaults to the configured read mode)"),
    service: ProfileCacheService = Depends(get_profile_cache_service)
):
    """Latest cached report for a connected account"""
    platform_key = _platform_or_422(platform)
    try:
        profile = await service.get_cached_profile(source_account_ref, platform_key, honor_expiry=honor_expiry)
    except Exception as e:
        logger.error(f"PROFILE_CACHE_API: Error reading {source_account_ref} ({platform_key}): {e}")
        raise HTTPException(status_code=500, detail=f"Failed to read cached profile: {str(e)}")

    if profile is None:
        raise NotFoundException(f"No cached profile for {source_account_ref} on {platform_key}")

    return {
        "success": True,
        "data": profile,
        "is_expired": profile.is_expired(service.clock())
    }


@router.post("/profiles/refresh")
async def refresh_profile(
    request: ProfileRefreshRequest,
    service: ProfileCacheService = Depends(get_profile_cache_service)
):
    """Fetch a fresh report for one account now (costs one provider credit)"""
    platform_key = _platform_or_422(request.platform)
    result = await service.populate_profile_cache(
        request.source_account_ref, request.external_user_id, platform_key
    )
    if not result.success:
        logger.warning(f"PROFILE_CACHE_API: Refresh failed for {request.source_account_ref} ({platform_key}): {result.error}")
        raise HTTPException(status_code=502, detail=f"Failed to refresh profile: {result.error}")

    return {"success": True, "data": result}


@router.put("/profiles/{source_account_ref}/{platform}/priority")
async def set_update_priority(
    request: PriorityUpdateRequest,
    source_account_ref: str = Path(...),
    platform: str = Path(...),
    service: ProfileCacheService = Depends(get_profile_cache_service)
):
    """Override how urgently a cached profile is refreshed, or score it from a tier"""
    platform_key = _platform_or_422(platform)

    tier = None
    if request.update_priority is None:
        if request.tier is None:
            raise ValidationException("Either update_priority or tier is required")
        try:
            tier = PriorityTier(request.tier.upper())
        except ValueError:
            raise ValidationException(f"Unsupported tier '{request.tier}'")

    try:
        if tier is None:
            updated = await service.set_update_priority(source_account_ref, platform_key, request.update_priority)
            priority = request.update_priority
        else:
            priority = await service.rescore_update_priority(
                source_account_ref, platform_key, tier,
                request.active_campaigns, request.follower_growth_rate
            )
            updated = priority is not None
    except Exception as e:
        logger.error(f"PROFILE_CACHE_API: Error setting priority for {source_account_ref} ({platform_key}): {e}")
        raise HTTPException(status_code=500, detail=f"Failed to set priority: {str(e)}")

    if not updated:
        raise NotFoundException(f"No cached profile for {source_account_ref} on {platform_key}")

    return {
        "success": True,
        "data": {
            "source_account_ref": source_account_ref,
            "platform": platform_key,
            "update_priority": priority
        }
    }
