# ---------- TESTS FOR SOURCE ADAPTERS ----------

from datetime import datetime, timedelta, timezone
from types import SimpleNamespace
from unittest.mock import patch

import feedparser
import pytest
import requests

from jobpilot.config.entity_schemas import SearchCriteria, SourceConfig
from jobpilot.config.statuses import SourceType
from jobpilot.utils.exceptions import TransientUpstreamError
from jobpilot.utils.rate_limiter import RateLimitConfig, SourceRateLimiter
from jobpilot.utils.sources import fetch_candidates
from jobpilot.utils.sources.api import fetch_api, format_salary, job_to_raw
from jobpilot.utils.sources.base import (
    extract_requirements,
    fuzzy_key,
    matches_criteria,
    matches_location,
    matches_role,
    normalize_url,
    strip_html,
)
from jobpilot.utils.sources.mock import fetch_mock
from jobpilot.utils.sources.rss import entry_to_raw, fetch_rss, parse_feed

from conftest import make_posting, manual_source

# --- MOCK DATA ---

RSS_FEED = """<?xml version="1.0" encoding="UTF-8"?>
<rss version="2.0">
  <channel>
    <title>Remote jobs</title>
    <item>
      <title>Acme: Senior Python Developer</title>
      <link>https://jobs.example.com/acme-python</link>
      <guid>acme-python-1</guid>
      <pubDate>Mon, 12 Oct 2026 10:00:00 GMT</pubDate>
      <description>&lt;p&gt;Fully remote. Python, FastAPI and AWS.&lt;/p&gt;</description>
    </item>
    <item>
      <title>Globex: Marketing Manager</title>
      <link>https://jobs.example.com/globex-marketing</link>
      <guid>globex-marketing-1</guid>
      <pubDate>Mon, 12 Oct 2026 11:00:00 GMT</pubDate>
      <description>Brand campaigns.</description>
    </item>
  </channel>
</rss>
"""

API_JOBS = [
    {
        "id": "123",
        "position": "Python Developer",
        "company": "Initech",
        "location": "Worldwide",
        "description": "<p>Requirements:\n- Python experience\n- REST APIs</p>",
        "tags": ["python", "api"],
        "epoch": 1791800000,
        "salary_min": 90000,
        "salary_max": 120000,
        "slug": "python-developer-initech-123",
    },
    {
        "id": "124",
        "position": "Python Developer",
        "company": "Low Pay Ltd",
        "description": "Python",
        "epoch": 1791800000,
        "salary_max": 40000,
        "url": "https://remoteok.com/remote-jobs/124",
    },
]

CRITERIA = SearchCriteria(target_roles=["Python Developer"], remote_ok=True)


def api_source(**overrides):
    fields = {"id": "remoteok", "name": "RemoteOK", "type": SourceType.API}
    fields["url"] = "https://remoteok.com/api"
    fields.update(overrides)
    return SourceConfig(**fields)


@pytest.fixture
def rate_limiter():
    return SourceRateLimiter(
        configs={"default": RateLimitConfig(max_requests=1000, window_seconds=60)}
    )


@pytest.fixture
def no_retry():
    with patch(
        "jobpilot.utils.sources.api.with_retry",
        side_effect=lambda func, *args, **kwargs: func(),
    ):
        yield


# --- TESTS ---


def test_matches_role_handles_variations():
    """Test exact, substring and fuzzy role matching."""
    assert matches_role("Senior Python Developer", ["Python Developer"])
    assert matches_role("Front-end Engineer", ["Frontend Developer"])
    assert matches_role("Anything", [])
    assert not matches_role("Marketing Manager", ["Python Developer"])


def test_matches_location_with_remote():
    """Test that remote postings match when remote work is acceptable."""
    assert matches_location("Remote - EU", ["Helsinki"], remote_ok=True)
    assert not matches_location("Remote - EU", ["Helsinki"], remote_ok=False)
    assert matches_location("Helsinki, Finland", ["helsinki"], remote_ok=False)
    assert not matches_location(None, ["Helsinki"], remote_ok=False)


def test_matches_criteria_contract_type():
    """Test that a contract type outside the criteria is filtered out."""
    criteria = SearchCriteria(
        target_roles=["Python Developer"], contract_types=["Full-time"]
    )
    assert matches_criteria(make_posting(contract_type="Full-time"), criteria)
    assert not matches_criteria(make_posting(contract_type="Contract"), criteria)


def test_text_helpers():
    """Test HTML stripping and requirement extraction."""
    assert strip_html("<p>Hello <b>world</b></p>") == "Hello\nworld"
    requirements = extract_requirements(
        "About us\nRequirements:\n- 5 years of Python\n- Docker\n"
    )
    assert requirements == ["5 years of Python", "Docker"]
    assert extract_requirements("We use Python and AWS") == ["Python", "AWS"]


def test_duplicate_keys_normalize_noise():
    """Test that URL and fuzzy keys ignore case, tracking parameters and punctuation."""
    assert normalize_url("http://WWW.Example.com/jobs/1/?ref=x") == normalize_url(
        "https://example.com/jobs/1"
    )
    first = make_posting(company="Acme, Inc.", title="Python Developer")
    second = make_posting(company="acme inc", title="python developer")
    assert fuzzy_key(first) == fuzzy_key(second)


def test_manual_source_filters_and_skips_malformed():
    """Test that manual postings go through validation and criteria filtering."""
    raw = [
        make_posting("a").model_dump(mode="json"),
        make_posting("b", title="Marketing Manager").model_dump(mode="json"),
        {"external_id": "c", "title": "", "company": "Acme", "url": "x"},
    ]
    source = manual_source(postings=raw)
    criteria = SearchCriteria(target_roles=["Python Developer"])

    postings = list(fetch_candidates(source, criteria))

    assert [p.external_id for p in postings] == ["a"]
    assert postings[0].remote_type is not None


def test_manual_source_respects_since_cursor():
    """Test that postings older than the cursor are not returned again."""
    source = manual_source()
    since = datetime.now(timezone.utc)

    assert list(fetch_candidates(source, CRITERIA, since)) == []


def test_rss_entry_splits_company_and_title():
    """Test the "Company: Position" title convention."""
    source = SourceConfig(id="feed", name="Feed", type=SourceType.RSS, url="u")
    entry = feedparser.parse(RSS_FEED).entries[0]

    raw = entry_to_raw(entry, source)

    assert raw["company"] == "Acme"
    assert raw["title"] == "Senior Python Developer"
    assert raw["external_id"] == "feed-acme-python-1"
    assert raw["remote_type"] == "Remote"
    assert raw["posted_at"] == datetime(2026, 10, 12, 10, 0, tzinfo=timezone.utc)


def test_fetch_rss_filters_by_criteria(rate_limiter):
    """Test that RSS entries are parsed, filtered and normalized."""
    source = SourceConfig(
        id="feed", name="Feed", type=SourceType.RSS, url="https://x/rss"
    )
    with patch(
        "jobpilot.utils.sources.rss.download_feed",
        return_value=feedparser.parse(RSS_FEED),
    ):
        postings = list(fetch_rss(source, CRITERIA, None, rate_limiter))

    assert [p.company for p in postings] == ["Acme"]


def test_fetch_rss_without_url_is_transient(rate_limiter):
    """Test that a misconfigured RSS source fails as an upstream error."""
    source = SourceConfig(id="feed", name="Feed", type=SourceType.RSS)
    with pytest.raises(TransientUpstreamError):
        fetch_rss(source, CRITERIA, None, rate_limiter)


def test_job_to_raw_maps_api_fields():
    """Test mapping of RemoteOK-style API items."""
    raw = job_to_raw(API_JOBS[0], api_source())

    assert raw["external_id"] == "remoteok-123"
    assert raw["salary"] == "$90,000 - $120,000 USD"
    assert raw["url"].endswith("python-developer-initech-123")
    assert "Python experience" in raw["requirements"]


def test_fetch_api_filters_salary(rate_limiter, no_retry):
    """Test that jobs paying below the campaign minimum are dropped."""
    criteria = SearchCriteria(target_roles=["Python Developer"], salary_min=60000)
    with patch(
        "jobpilot.utils.sources.api.fetch_json_jobs", return_value=API_JOBS
    ):
        postings = list(fetch_api(api_source(), criteria, None, rate_limiter))

    assert [p.company for p in postings] == ["Initech"]


def test_fetch_api_falls_back_to_rss(rate_limiter, no_retry):
    """Test that an API outage uses the fallback feed when one is configured."""
    source = api_source(fallback_rss_url="https://remoteok.com/remote-jobs.rss")
    with patch(
        "jobpilot.utils.sources.api.fetch_json_jobs",
        side_effect=requests.ConnectionError("down"),
    ), patch(
        "jobpilot.utils.sources.api.download_feed",
        return_value=feedparser.parse(RSS_FEED),
    ) as mock_feed:
        postings = list(fetch_api(source, CRITERIA, None, rate_limiter))

    mock_feed.assert_called_once_with("https://remoteok.com/remote-jobs.rss")
    assert [p.company for p in postings] == ["Acme"]


def test_fetch_api_outage_without_fallback(rate_limiter, no_retry):
    """Test that an API outage without fallback raises TransientUpstreamError."""
    with patch(
        "jobpilot.utils.sources.api.fetch_json_jobs",
        side_effect=requests.ConnectionError("down"),
    ):
        with pytest.raises(TransientUpstreamError):
            fetch_api(api_source(), CRITERIA, None, rate_limiter)


def test_mock_source_is_deterministic_per_day():
    """Test that the mock adapter returns the same postings within one day."""
    source = SourceConfig(id="mock", name="Demo", type=SourceType.MOCK)
    criteria = SearchCriteria(target_roles=["Python Developer"])
    now = datetime(2026, 10, 18, 9, 0, tzinfo=timezone.utc)

    first = [p.external_id for p in fetch_mock(source, criteria, None, now=now)]
    again = [
        p.external_id
        for p in fetch_mock(source, criteria, None, now=now + timedelta(hours=3))
    ]
    next_day = [
        p.external_id
        for p in fetch_mock(source, criteria, None, now=now + timedelta(days=1))
    ]

    assert 5 <= len(first) <= 15
    assert first == again
    assert not set(first) & set(next_day)


def test_normalize_url_keeps_identifying_query_parameters():
    """Test that posting ids in the query survive while tracking parameters go."""
    first = normalize_url("https://jobs.example.com/viewjob?jk=1")
    second = normalize_url("https://jobs.example.com/viewjob?jk=2")
    assert first != second
    assert normalize_url(
        "https://jobs.example.com/viewjob?utm_source=x&jk=1&utm_medium=y#top"
    ) == first
    assert normalize_url("https://boards.example.com/a?b=2&a=1") == normalize_url(
        "https://boards.example.com/a?a=1&b=2"
    )


def test_fetch_api_skips_malformed_items(rate_limiter, no_retry):
    """Test that one unreadable job does not abort the rest of the fetch."""
    base = {"position": "Python Developer", "epoch": 1791800000, "slug": "job"}
    jobs = [
        {**base, "id": "1", "company": "Good"},
        {**base, "id": "2", "company": "Odd Salary", "salary_min": "n/a"},
        {**base, "id": "3", "company": "Broken Tags", "tags": 5},
        {**base, "id": "4", "company": "Odd Epoch", "epoch": "yesterday"},
        {**base, "id": "5", "company": "AlsoGood"},
    ]
    with patch("jobpilot.utils.sources.api.fetch_json_jobs", return_value=jobs):
        postings = list(fetch_api(api_source(), CRITERIA, None, rate_limiter))

    assert [p.company for p in postings] == [
        "Good",
        "Odd Salary",
        "Odd Epoch",
        "AlsoGood",
    ]
    assert postings[1].salary is None
    assert postings[2].posted_at is None


def test_format_salary_ignores_non_numeric_bounds():
    """Test that salary text tolerates strings and missing bounds."""
    assert format_salary({"salary_min": "n/a", "salary_max": 50000}) == (
        "Up to $50,000 USD"
    )
    assert format_salary({"salary_min": "70,000"}) == "$70,000+ USD"
    assert format_salary({"salary_min": "n/a"}) is None


def test_parse_feed_skips_unreadable_entries():
    """Test that a bad feed entry is skipped and the good ones are kept."""
    source = SourceConfig(id="feed", name="Feed", type=SourceType.RSS, url="u")
    parsed = feedparser.parse(RSS_FEED)
    feed = SimpleNamespace(entries=[{"title": None}, *parsed.entries])

    postings = list(parse_feed(feed, source, CRITERIA, None))

    assert [p.company for p in postings] == ["Acme"]
