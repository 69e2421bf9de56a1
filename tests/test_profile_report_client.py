import httpx
import pytest
from tenacity import wait_none

from app.scrapers.profile_report_client import (
    ProfileReportClient, ProfileReportAPIError, ProfileReportInstabilityError, ProfileReportNotFoundError
)

from conftest import make_report


@pytest.fixture(autouse=True)
def no_retry_wait(monkeypatch):
    monkeypatch.setattr(ProfileReportClient._make_request.retry, "wait", wait_none())


def _client_with(handler, api_key="test-key"):
    client = ProfileReportClient(api_key=api_key, base_url="https://provider.test/")
    client._create_session = lambda: httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return client


async def test_fetch_report_calls_platform_report_endpoint():
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(200, json=make_report())

    payload = await _client_with(handler).fetch_report("insta_42", "INSTAGRAM")

    assert payload["profile"]["profile"]["username"] == "insta_42"
    assert str(seen[0].url) == "https://provider.test/v1/instagram/profile/insta_42/report"
    assert seen[0].headers["Authorization"] == "Bearer test-key"


async def test_not_found_is_not_retried():
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(404, json={"error": True})

    with pytest.raises(ProfileReportNotFoundError):
        await _client_with(handler).fetch_report("ghost", "TIKTOK")
    assert len(calls) == 1


async def test_server_errors_are_retried_then_raised():
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(503, text="unavailable")

    with pytest.raises(ProfileReportInstabilityError):
        await _client_with(handler).fetch_report("insta_42", "INSTAGRAM")
    assert len(calls) == 3


async def test_rate_limit_recovers_on_retry():
    responses = iter([httpx.Response(429), httpx.Response(200, json=make_report())])

    payload = await _client_with(lambda request: next(responses)).fetch_report("insta_42", "INSTAGRAM")

    assert payload["error"] is False


async def test_missing_api_key_fails_fast():
    with pytest.raises(ProfileReportAPIError, match="not configured"):
        await _client_with(lambda request: httpx.Response(200), api_key="").fetch_report("insta_42", "INSTAGRAM")


async def test_invalid_json_is_wrapped():
    def handler(request):
        return httpx.Response(200, text="<html>maintenance</html>")

    with pytest.raises(ProfileReportAPIError, match="Invalid JSON"):
        await _client_with(handler).fetch_report("insta_42", "INSTAGRAM")
