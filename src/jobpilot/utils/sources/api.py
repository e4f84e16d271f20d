"""
JSON API source adapter (RemoteOK-style).

The API returns one array of all recent jobs; the first element carries legal
and metadata text and is skipped. Filtering by campaign criteria happens
locally. When the API fails after retries and the source has a
`fallback_rss_url`, the RSS feed is used instead.
"""

from datetime import datetime, timezone
from typing import Any, Dict, Iterator, List, Optional

import requests

from jobpilot.config.entity_schemas import (
    NormalizedPosting,
    SearchCriteria,
    SourceConfig,
)
from jobpilot.config.settings import HTTP_TIMEOUT_SECONDS, USER_AGENT
from jobpilot.utils.exceptions import TransientUpstreamError
from jobpilot.utils.logger import get_logger
from jobpilot.utils.rate_limiter import RETRY_CONFIGS, SourceRateLimiter, with_retry
from jobpilot.utils.sources.base import (
    as_number,
    dedupe_by_external_id,
    extract_requirements,
    is_newer_than,
    matches_criteria,
    parse_items,
    strip_html,
)
from jobpilot.utils.sources.rss import download_feed, parse_feed

logger = get_logger(__name__)


def fetch_json_jobs(
    url: str, session: Optional[requests.Session] = None
) -> List[Dict[str, Any]]:
    """Download the job array, dropping the leading metadata element.

    Raises:
        requests.RequestException: On network failure or a non-200 response.
        ValueError: If the body is not a JSON array.
    """
    session = session or requests.Session()
    response = session.get(
        url,
        headers={"User-Agent": USER_AGENT, "Accept": "application/json"},
        timeout=HTTP_TIMEOUT_SECONDS,
    )
    response.raise_for_status()
    data = response.json()
    if not isinstance(data, list):
        raise ValueError("Invalid API response format")
    return [item for item in data[1:] if isinstance(item, dict) and "position" in item]


def format_salary(job: Dict[str, Any]) -> Optional[str]:
    """Render the salary range, ignoring bounds that are not numbers."""
    low, high = as_number(job.get("salary_min")), as_number(job.get("salary_max"))
    if low and high:
        return f"${low:,.0f} - ${high:,.0f} USD"
    if low:
        return f"${low:,.0f}+ USD"
    if high:
        return f"Up to ${high:,.0f} USD"
    return None


def _posted_at(epoch: Any) -> Optional[datetime]:
    seconds = as_number(epoch)
    if not seconds:
        return None
    try:
        return datetime.fromtimestamp(seconds, tz=timezone.utc)
    except (OverflowError, OSError, ValueError):
        return None


def job_to_raw(job: Dict[str, Any], source: SourceConfig) -> Dict[str, Any]:
    description = strip_html(job.get("description"))
    tags = [str(tag) for tag in job.get("tags") or []]
    url = job.get("url") or (
        f"https://remoteok.com/remote-jobs/{job['slug']}" if job.get("slug") else ""
    )
    return {
        "external_id": f"{source.id}-{job.get('id', '')}" if job.get("id") else "",
        "title": job.get("position", ""),
        "company": job.get("company", ""),
        "location": job.get("location") or "Remote",
        "description": description,
        "requirements": (extract_requirements(description) + tags)[:15],
        "salary": format_salary(job),
        "contract_type": "Full-time",
        "remote_type": "Remote",
        "url": url,
        "posted_at": _posted_at(job.get("epoch")),
        "application_url": job.get("apply_url"),
    }


def _within_salary(job: Dict[str, Any], criteria: SearchCriteria) -> bool:
    high = as_number(job.get("salary_max"))
    return not (criteria.salary_min and high and high < criteria.salary_min)


def fetch_api(
    source: SourceConfig,
    criteria: SearchCriteria,
    since: Optional[datetime],
    rate_limiter: SourceRateLimiter,
) -> Iterator[NormalizedPosting]:
    """Fetch candidates from a JSON job API, falling back to RSS.

    Raises:
        TransientUpstreamError: If the API and the fallback feed both fail.
    """
    key = source.rate_limit_key or source.id
    try:
        jobs = rate_limiter.execute(
            key,
            lambda: with_retry(
                lambda: fetch_json_jobs(source.url),
                RETRY_CONFIGS["standard"],
                retry_on=(requests.RequestException, ValueError),
            ),
        )
    except (requests.RequestException, ValueError) as e:
        logger.error(
            "Job API fetch failed",
            extra={
                "extra_fields": {
                    "source_id": source.id,
                    "url": source.url,
                    "error": str(e),
                    "error_type": type(e).__name__,
                }
            },
        )
        if not source.fallback_rss_url:
            raise TransientUpstreamError(
                f"Job API {source.url} unavailable: {e}"
            ) from e
        return _fetch_fallback(source, criteria, since, rate_limiter, e)

    logger.info(
        "Fetched job API",
        extra={"extra_fields": {"source_id": source.id, "jobs": len(jobs)}},
    )
    postings = parse_items(
        (job for job in jobs if _within_salary(job, criteria)), job_to_raw, source
    )
    valid = (
        p
        for p in postings
        if is_newer_than(p, since) and matches_criteria(p, criteria)
    )
    return dedupe_by_external_id(valid)


def _fetch_fallback(
    source: SourceConfig,
    criteria: SearchCriteria,
    since: Optional[datetime],
    rate_limiter: SourceRateLimiter,
    cause: Exception,
) -> Iterator[NormalizedPosting]:
    logger.info(
        "Falling back to RSS feed",
        extra={
            "extra_fields": {"source_id": source.id, "url": source.fallback_rss_url}
        },
    )
    try:
        feed = rate_limiter.execute(
            source.rate_limit_key or source.id,
            lambda: download_feed(source.fallback_rss_url),
        )
    except requests.RequestException as e:
        raise TransientUpstreamError(
            f"Job API failed ({cause}) and RSS fallback also failed ({e})"
        ) from e
    return parse_feed(feed, source, criteria, since)
