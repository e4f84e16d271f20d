"""
Source adapter registry.

Maps each SourceType to its fetch function. Every adapter has the same
signature, so discovery never needs to know which kind of source it is
reading from:

    fetch(source, criteria, since, rate_limiter) -> Iterator[NormalizedPosting]
"""

from datetime import datetime
from typing import Callable, Dict, Iterator, List, Optional

from jobpilot.config.entity_schemas import (
    NormalizedPosting,
    SearchCriteria,
    SourceConfig,
)
from jobpilot.config.statuses import SourceType
from jobpilot.utils.rate_limiter import SourceRateLimiter
from jobpilot.utils.sources.api import fetch_api
from jobpilot.utils.sources.manual import fetch_manual
from jobpilot.utils.sources.mock import fetch_mock
from jobpilot.utils.sources.rss import fetch_rss

FetchFunction = Callable[..., Iterator[NormalizedPosting]]

ADAPTERS: Dict[SourceType, FetchFunction] = {
    SourceType.API: fetch_api,
    SourceType.RSS: fetch_rss,
    SourceType.MANUAL: fetch_manual,
    SourceType.MOCK: fetch_mock,
}

# Sources installed on first start when the store has none
DEFAULT_SOURCES: List[SourceConfig] = [
    SourceConfig(
        id="remoteok",
        name="RemoteOK",
        type=SourceType.API,
        url="https://remoteok.com/api",
        fallback_rss_url="https://remoteok.com/remote-jobs.rss",
        rate_limit_key="remoteok",
    ),
    SourceConfig(
        id="mock",
        name="Demo Mode",
        type=SourceType.MOCK,
        rate_limit_key="mock",
    ),
]


def fetch_candidates(
    source: SourceConfig,
    criteria: SearchCriteria,
    since: Optional[datetime] = None,
    rate_limiter: Optional[SourceRateLimiter] = None,
) -> Iterator[NormalizedPosting]:
    """Fetch normalized postings from `source` newer than `since`.

    The returned iterator is finite. Calling again with the same `since`
    restarts the fetch.

    Raises:
        TransientUpstreamError: If the source is unreachable.
        ValueError: If no adapter is registered for the source type.
    """
    adapter = ADAPTERS.get(source.type)
    if adapter is None:
        raise ValueError(f"No adapter for source type {source.type}")
    return adapter(source, criteria, since, rate_limiter or SourceRateLimiter())
