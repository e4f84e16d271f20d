"""
Manual source adapter.

Postings entered by the user are stored on the SourceConfig itself. They go
through the same validation and criteria filtering as fetched postings.
"""

from datetime import datetime
from typing import Iterator, Optional

from jobpilot.config.entity_schemas import (
    NormalizedPosting,
    SearchCriteria,
    SourceConfig,
)
from jobpilot.utils.rate_limiter import SourceRateLimiter
from jobpilot.utils.sources.base import (
    dedupe_by_external_id,
    determine_remote_type,
    is_newer_than,
    matches_criteria,
    parse_posting,
)


def fetch_manual(
    source: SourceConfig,
    criteria: SearchCriteria,
    since: Optional[datetime],
    rate_limiter: Optional[SourceRateLimiter] = None,
) -> Iterator[NormalizedPosting]:
    def candidates() -> Iterator[NormalizedPosting]:
        for raw in source.postings:
            posting = parse_posting(raw, source.id)
            if posting is None:
                continue
            if posting.remote_type is None:
                posting = posting.model_copy(
                    update={
                        "remote_type": determine_remote_type(
                            posting.location, posting.description
                        )
                    }
                )
            if is_newer_than(posting, since) and matches_criteria(posting, criteria):
                yield posting

    return dedupe_by_external_id(candidates())
