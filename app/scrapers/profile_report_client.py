import logging
import json
from typing import Dict, Any, Optional
import httpx
from tenacity import (
    retry,
    stop_after_attempt,
    wait_exponential,
    retry_if_exception_type,
    before_sleep_log
)

from app.core.config import settings

logger = logging.getLogger(__name__)


class ProfileReportAPIError(Exception):
    """Custom exception for profile report provider errors"""
    def __init__(self, message: str, status_code: Optional[int] = None, response_data: Optional[Dict] = None):
        super().__init__(message)
        self.status_code = status_code
        self.response_data = response_data


class ProfileReportInstabilityError(ProfileReportAPIError):
    """Temporary provider issue (rate limit, 5xx, timeout) that should be retried"""
    pass


class ProfileReportNotFoundError(ProfileReportAPIError):
    """Unknown account on the provider side, never retried"""
    pass


class ProfileReportClient:
    """
    Client for the profile report provider (Modash-compatible API)

    Every successful report request costs one provider credit, so retries
    are limited to transient failures.
    """

    def __init__(self, api_key: str, base_url: str = None, timeout: float = None):
        self.api_key = api_key
        self.base_url = (base_url or settings.PROFILE_REPORT_API_URL).rstrip("/")
        self.timeout = timeout or settings.PROFILE_REPORT_TIMEOUT
        self.session: Optional[httpx.AsyncClient] = None

    @classmethod
    def from_settings(cls) -> "ProfileReportClient":
        return cls(api_key=settings.PROFILE_REPORT_API_KEY)

    async def __aenter__(self):
        """Async context manager entry"""
        self.session = self._create_session()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit"""
        if self.session:
            await self.session.aclose()
            self.session = None

    def _create_session(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=httpx.Timeout(self.timeout, connect=15.0),
            limits=httpx.Limits(max_connections=settings.MAX_CONCURRENT_REQUESTS)
        )

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Accept": "application/json",
            "Content-Type": "application/json"
        }

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1.5, min=2, max=20),
        retry=retry_if_exception_type((ProfileReportInstabilityError, httpx.TimeoutException, httpx.NetworkError)),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True
    )
    async def _make_request(self, endpoint: str) -> Dict[str, Any]:
        """GET an endpoint with automatic retry on transient failures"""
        if not self.api_key:
            raise ProfileReportAPIError("PROFILE_REPORT_API_KEY is not configured")

        url = f"{self.base_url}{endpoint}"
        logger.debug(f"PROFILE_REPORT: GET {url}")

        owns_session = self.session is None
        session = self._create_session() if owns_session else self.session
        try:
            response = await session.get(url, headers=self._headers())
        finally:
            if owns_session:
                await session.aclose()

        logger.debug(f"PROFILE_REPORT: Response status {response.status_code} for {endpoint}")

        if response.status_code == 401:
            raise ProfileReportAPIError("Authentication failed - check PROFILE_REPORT_API_KEY", status_code=401)
        if response.status_code == 404:
            raise ProfileReportNotFoundError(f"Account not found: {endpoint}", status_code=404)
        if response.status_code == 429 or response.status_code >= 500:
            raise ProfileReportInstabilityError(
                f"Provider unavailable: {response.status_code}",
                status_code=response.status_code
            )
        if response.status_code != 200:
            logger.error(f"PROFILE_REPORT: Request failed with status {response.status_code}: {response.text[:500]}")
            raise ProfileReportAPIError(
                f"API request failed: {response.status_code} - {response.text[:200]}",
                status_code=response.status_code
            )

        try:
            return response.json()
        except json.JSONDecodeError as e:
            raise ProfileReportAPIError(f"Invalid JSON response: {str(e)}", status_code=response.status_code) from e

    async def fetch_report(self, external_user_id: str, platform: str) -> Dict[str, Any]:
        """Fetch the full profile report (one credit) for an account"""
        endpoint = f"/v1/{platform.lower()}/profile/{external_user_id}/report"
        logger.info(f"PROFILE_REPORT: Fetching report for {platform} user {external_user_id}")
        return await self._make_request(endpoint)
