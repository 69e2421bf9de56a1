import pytest

from app.core.exceptions import ExternalFetchError
from app.models.profile_report import (
    InstagramReport, TikTokReport, YouTubeReport, parse_profile_report, dump_items
)

from conftest import make_report


def test_parses_instagram_report_with_camel_case_fields():
    report = parse_profile_report(make_report(followers=2500), "INSTAGRAM")

    assert isinstance(report, InstagramReport)
    assert report.profile.followers == 2500
    assert report.profile.full_name == "insta_42 full name"
    assert report.profile.engagement_rate == pytest.approx(0.034)
    assert report.profile.avg_reels_plays == 5100
    assert report.profile.language.code == "en"
    assert report.profile.contacts[0].value == "insta_42@example.com"
    assert report.recent_posts[0].id == "111"
    assert report.recent_posts[0].hashtags == ["dubai"]
    assert report.sponsored_posts == []
    assert report.audience.notable_users[0].user_id == "1234"
    assert report.stats["followers"].compared == pytest.approx(0.02)


def test_fake_followers_derived_from_credibility():
    report = parse_profile_report(make_report(credibility=0.8), "INSTAGRAM")
    assert report.audience.fake_followers_percentage == pytest.approx(20.0)

    report = parse_profile_report(make_report(credibility=None), "INSTAGRAM")
    assert report.audience.fake_followers_percentage is None


def test_platform_selects_post_shape():
    payload = make_report()
    payload["profile"]["recentPosts"] = [
        {"id": "v1", "likes": 10, "comments": 1, "views": 900, "shares": 4, "video": "https://cdn.example.com/v1.mp4"}
    ]

    tiktok = parse_profile_report(payload, "TIKTOK")
    assert isinstance(tiktok, TikTokReport)
    assert tiktok.recent_posts[0].shares == 4

    payload["profile"]["recentPosts"] = [{"id": "yt1", "title": "Launch", "views": 12000, "duration": 312}]
    youtube = parse_profile_report(payload, "YOUTUBE")
    assert isinstance(youtube, YouTubeReport)
    assert youtube.recent_posts[0].duration == 312


def test_missing_metrics_default_to_zero():
    report = parse_profile_report(make_report(followers=None, isVerified=None), "INSTAGRAM")
    assert report.profile.followers == 0
    assert report.profile.is_verified is False


def test_missing_profile_section_is_rejected():
    with pytest.raises(ExternalFetchError):
        parse_profile_report({"error": False}, "INSTAGRAM")

    with pytest.raises(ExternalFetchError):
        parse_profile_report({"error": False, "profile": None}, "INSTAGRAM")


def test_provider_error_flag_is_rejected():
    with pytest.raises(ExternalFetchError, match="quota exceeded"):
        parse_profile_report({"error": True, "message": "quota exceeded"}, "INSTAGRAM")


def test_non_dict_payload_is_rejected():
    with pytest.raises(ExternalFetchError):
        parse_profile_report(None, "INSTAGRAM")


def test_shape_drift_is_rejected():
    payload = make_report()
    payload["profile"]["recentPosts"] = [{"likes": 3}]

    with pytest.raises(ExternalFetchError, match="Malformed INSTAGRAM profile report"):
        parse_profile_report(payload, "INSTAGRAM")


def test_dump_items_produces_plain_dicts():
    report = parse_profile_report(make_report(), "INSTAGRAM")
    assert dump_items(report.hashtags) == [{"tag": "dubai", "weight": 0.3}]
