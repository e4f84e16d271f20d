"""
RSS source adapter.

Downloads a feed with requests (so timeouts and rate limits apply like any
other source) and parses it with feedparser. Feed titles in the
"Company: Position" format are split into company and title.
"""

import hashlib
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, Optional

import feedparser
import requests

from jobpilot.config.entity_schemas import (
    NormalizedPosting,
    SearchCriteria,
    SourceConfig,
)
from jobpilot.config.settings import HTTP_TIMEOUT_SECONDS, USER_AGENT
from jobpilot.utils.exceptions import TransientUpstreamError
from jobpilot.utils.logger import get_logger
from jobpilot.utils.rate_limiter import (
    RETRY_CONFIGS,
    SourceRateLimiter,
    with_retry,
)
from jobpilot.utils.sources.base import (
    dedupe_by_external_id,
    determine_remote_type,
    extract_requirements,
    is_newer_than,
    matches_criteria,
    parse_items,
    strip_html,
)

logger = get_logger(__name__)


def download_feed(url: str, session: Optional[requests.Session] = None) -> Any:
    """Fetch and parse a feed.

    Raises:
        requests.RequestException: On network failure or a non-200 response.
    """
    session = session or requests.Session()
    response = session.get(
        url,
        headers={"User-Agent": USER_AGENT, "Accept": "application/rss+xml, */*"},
        timeout=HTTP_TIMEOUT_SECONDS,
    )
    response.raise_for_status()
    return feedparser.parse(response.content)


def _entry_date(entry: Any) -> Optional[datetime]:
    parsed = entry.get("published_parsed") or entry.get("updated_parsed")
    if not parsed:
        return None
    return datetime(*parsed[:6], tzinfo=timezone.utc)


def entry_to_raw(entry: Any, source: SourceConfig) -> Dict[str, Any]:
    """Map a feedparser entry to NormalizedPosting fields."""
    title = entry.get("title", "")
    company = entry.get("author", "") or "Unknown"
    if ":" in title:
        head, _, tail = title.partition(":")
        if head.strip() and tail.strip():
            company, title = head.strip(), tail.strip()

    link = entry.get("link", "")
    guid = entry.get("id") or hashlib.sha256(link.encode()).hexdigest()[:12]
    description = strip_html(entry.get("summary") or entry.get("description") or "")
    categories = [tag["term"] for tag in entry.get("tags", []) if tag.get("term")]
    location = entry.get("location") or None

    return {
        "external_id": f"{source.id}-{guid}",
        "title": title,
        "company": company,
        "location": location,
        "description": description,
        "requirements": (extract_requirements(description) + categories)[:15],
        "remote_type": determine_remote_type(location, description),
        "url": link,
        "posted_at": _entry_date(entry),
        "application_url": link or None,
    }


def parse_feed(
    feed: Any,
    source: SourceConfig,
    criteria: SearchCriteria,
    since: Optional[datetime],
) -> Iterator[NormalizedPosting]:
    postings = parse_items(feed.entries, entry_to_raw, source)
    valid = (
        p
        for p in postings
        if is_newer_than(p, since) and matches_criteria(p, criteria)
    )
    return dedupe_by_external_id(valid)


def fetch_rss(
    source: SourceConfig,
    criteria: SearchCriteria,
    since: Optional[datetime],
    rate_limiter: SourceRateLimiter,
) -> Iterator[NormalizedPosting]:
    """Fetch candidates from an RSS feed.

    Raises:
        TransientUpstreamError: If the feed cannot be downloaded.
    """
    if not source.url:
        raise TransientUpstreamError(f"RSS source {source.id} has no url")
    key = source.rate_limit_key or source.id
    try:
        feed = rate_limiter.execute(
            key,
            lambda: with_retry(
                lambda: download_feed(source.url),
                RETRY_CONFIGS["standard"],
                retry_on=(requests.RequestException,),
            ),
        )
    except requests.RequestException as e:
        raise TransientUpstreamError(f"RSS feed {source.url} unavailable: {e}") from e

    logger.info(
        "Fetched RSS feed",
        extra={"extra_fields": {"source_id": source.id, "entries": len(feed.entries)}},
    )
    return parse_feed(feed, source, criteria, since)
