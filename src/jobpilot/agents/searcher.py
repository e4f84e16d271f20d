"""
Searcher Service - Job Discovery for a Campaign.

This module contains the SearcherService class, which runs one discovery pass
for a campaign across all of its job sources and persists new JobOffers.

The service:
1. Resolves the campaign's sources (all enabled sources when it lists none)
2. Fetches candidates from every source in parallel (ThreadPoolExecutor)
3. Drops expired postings and cross-source duplicates (normalized URL and a
   fuzzy company|title|location key) against the campaign's existing offers
4. Inserts each new posting as a DISCOVERED JobOffer with a conditional insert
   on its deterministic id, so re-runs and concurrent runs never duplicate it
5. Advances the per-source "since" cursor for sources that fetched successfully

A failing source only fails its own part of the pass. It is logged as
`job.discovery_source_failed` and retried on the next scheduled tick with the
same cursor.
"""

from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Set, Tuple

from jobpilot.config.entity_schemas import (
    Campaign,
    JobOffer,
    NormalizedPosting,
    SourceConfig,
    job_offer_id_for,
    utcnow,
)
from jobpilot.config.settings import ENABLE_MOCK_JOBS
from jobpilot.config.statuses import ActionType, LogStatus, SourceType
from jobpilot.utils.action_log import ActionLog
from jobpilot.utils.exceptions import ClaimConflictError, InfrastructureError
from jobpilot.utils.logger import get_logger, log_performance
from jobpilot.utils.rate_limiter import SourceRateLimiter
from jobpilot.utils.sources import fetch_candidates
from jobpilot.utils.sources.base import fuzzy_key, normalize_url

logger = get_logger(__name__)


def _seen_elsewhere(
    known: Dict[str, Set[str]], value: Optional[str], source_id: str
) -> bool:
    """True if `value` was already produced by a source other than `source_id`."""
    if not value:
        return False
    return bool(known.get(value, set()) - {source_id})


@dataclass
class DiscoveryResult:
    campaign_id: str
    new_offer_ids: List[str] = field(default_factory=list)
    skipped_existing: int = 0
    skipped_duplicates: int = 0
    skipped_expired: int = 0
    failed_sources: Dict[str, str] = field(default_factory=dict)
    succeeded_sources: List[str] = field(default_factory=list)

    def as_metadata(self) -> Dict[str, Any]:
        return {
            "new": len(self.new_offer_ids),
            "skipped_existing": self.skipped_existing,
            "skipped_duplicates": self.skipped_duplicates,
            "skipped_expired": self.skipped_expired,
            "succeeded_sources": self.succeeded_sources,
            "failed_sources": sorted(self.failed_sources),
        }


class SearcherService:
    """Service responsible for discovering job postings for a campaign.

    Args:
        store: Store implementation.
        action_log: Action Log sink.
        rate_limiter: Shared per-source rate limiter.
        fetch: Source dispatch function (defaults to the adapter registry).
        max_workers: Upper bound on sources fetched in parallel.
        mock_enabled: Include MOCK sources when a campaign lists no sources.
    """

    def __init__(
        self,
        store: Any,
        action_log: ActionLog,
        rate_limiter: Optional[SourceRateLimiter] = None,
        fetch: Callable[..., Any] = fetch_candidates,
        max_workers: int = 4,
        mock_enabled: bool = ENABLE_MOCK_JOBS,
    ) -> None:
        self.store = store
        self.action_log = action_log
        self.rate_limiter = rate_limiter or SourceRateLimiter()
        self.fetch = fetch
        self.max_workers = max_workers
        self.mock_enabled = mock_enabled

    # ------------------------------
    # Public interface
    # ------------------------------
    def resolve_sources(self, campaign: Campaign) -> List[SourceConfig]:
        """Return the enabled sources a campaign discovers from.

        A campaign that lists no sources uses every enabled source. MOCK
        sources are only included implicitly when mock jobs are enabled; a
        campaign that names a MOCK source explicitly always gets it.
        """
        if campaign.source_ids:
            sources = [self.store.get("sources", sid) for sid in campaign.source_ids]
            missing = [
                sid for sid, src in zip(campaign.source_ids, sources) if src is None
            ]
            if missing:
                logger.warning(
                    "Campaign references unknown sources",
                    extra={
                        "extra_fields": {
                            "campaign_id": campaign.id,
                            "missing_sources": missing,
                        }
                    },
                )
            return [src for src in sources if src is not None and src.enabled]

        return [
            src
            for src in self.store.query("sources", enabled=True)
            if src.type != SourceType.MOCK or self.mock_enabled
        ]

    def discover(
        self, campaign: Campaign, sources: Optional[List[SourceConfig]] = None
    ) -> DiscoveryResult:
        """Run one discovery pass for `campaign`.

        Args:
            campaign: The campaign to discover for.
            sources: Pre-resolved sources (resolved here when omitted).

        Returns:
            DiscoveryResult: New offer ids and skip/failure counts.
        """
        sources = sources if sources is not None else self.resolve_sources(campaign)
        result = DiscoveryResult(campaign_id=campaign.id)
        started_at = utcnow()

        self.action_log.record(
            "campaign",
            campaign.id,
            ActionType.JOB_DISCOVERY_STARTED,
            status=LogStatus.PENDING,
            test_mode=campaign.test_mode,
            user_id=campaign.user_id,
            metadata={"sources": [src.id for src in sources]},
        )

        with log_performance("discovery", campaign_id=campaign.id):
            fetched = self._fetch_sources_parallel(campaign, sources, result)

        existing = self.store.query("job_offers", campaign_id=campaign.id)
        known_ids = {offer.id for offer in existing}
        # normalized URL / fuzzy key -> ids of the sources that produced it
        known_urls: Dict[str, Set[str]] = {}
        known_keys: Dict[str, Set[str]] = {}
        for offer in existing:
            url = normalize_url(offer.posting.url)
            if url:
                known_urls.setdefault(url, set()).add(offer.source_id)
            known_keys.setdefault(fuzzy_key(offer.posting), set()).add(
                offer.source_id
            )

        for source, postings in fetched:
            for posting in postings:
                self._persist_posting(
                    campaign,
                    source,
                    posting,
                    result,
                    known_ids,
                    known_urls,
                    known_keys,
                    started_at,
                )

        self._advance_cursors(campaign, result.succeeded_sources, started_at)

        self.action_log.record(
            "campaign",
            campaign.id,
            ActionType.JOB_DISCOVERY_COMPLETED,
            status=LogStatus.SUCCESS if result.succeeded_sources else LogStatus.FAILURE,
            test_mode=campaign.test_mode,
            user_id=campaign.user_id,
            metadata=result.as_metadata(),
        )
        logger.info(
            "Discovery completed",
            extra={
                "extra_fields": {"campaign_id": campaign.id, **result.as_metadata()}
            },
        )
        return result

    # ------------------------------
    # Internal functions
    # ------------------------------
    def _fetch_single_source(
        self, campaign: Campaign, source: SourceConfig
    ) -> Tuple[SourceConfig, List[NormalizedPosting]]:
        """Fetch and materialize one source's candidates.

        The adapter iterator is consumed here so errors raised mid-iteration
        count against this source only.
        """
        since = campaign.source_cursors.get(source.id)
        postings = list(
            self.fetch(source, campaign.criteria, since, self.rate_limiter)
        )
        logger.info(
            "Fetched source",
            extra={
                "extra_fields": {
                    "campaign_id": campaign.id,
                    "source_id": source.id,
                    "postings": len(postings),
                }
            },
        )
        return source, postings

    def _fetch_sources_parallel(
        self,
        campaign: Campaign,
        sources: List[SourceConfig],
        result: DiscoveryResult,
    ) -> List[Tuple[SourceConfig, List[NormalizedPosting]]]:
        if not sources:
            return []

        fetched = []
        workers = max(1, min(self.max_workers, len(sources)))
        with ThreadPoolExecutor(max_workers=workers) as executor:
            future_to_source = {
                executor.submit(self._fetch_single_source, campaign, source): source
                for source in sources
            }
            for future in as_completed(future_to_source):
                source = future_to_source[future]
                try:
                    fetched.append(future.result())
                    result.succeeded_sources.append(source.id)
                except InfrastructureError:
                    raise
                except Exception as e:
                    # One source failing never aborts the others
                    result.failed_sources[source.id] = str(e)
                    logger.error(
                        "Source fetch failed",
                        extra={
                            "extra_fields": {
                                "campaign_id": campaign.id,
                                "source_id": source.id,
                                "error": str(e),
                                "error_type": type(e).__name__,
                            }
                        },
                    )
                    self.action_log.record(
                        "campaign",
                        campaign.id,
                        ActionType.JOB_DISCOVERY_SOURCE_FAILED,
                        status=LogStatus.FAILURE,
                        test_mode=campaign.test_mode,
                        user_id=campaign.user_id,
                        metadata={"source_id": source.id},
                        error_message=str(e),
                    )
        return fetched

    def _persist_posting(
        self,
        campaign: Campaign,
        source: SourceConfig,
        posting: NormalizedPosting,
        result: DiscoveryResult,
        known_ids: Set[str],
        known_urls: Dict[str, Set[str]],
        known_keys: Dict[str, Set[str]],
        now: datetime,
    ) -> None:
        """Persist one candidate unless it is expired, known or a duplicate.

        URL and fuzzy-key duplicates only count across different sources;
        within one source the external id is the identity.
        """
        if posting.is_expired(now):
            result.skipped_expired += 1
            return

        offer_id = job_offer_id_for(campaign.id, source.id, posting.external_id)
        if offer_id in known_ids:
            result.skipped_existing += 1
            return

        url = normalize_url(posting.url)
        key = fuzzy_key(posting)
        if _seen_elsewhere(known_urls, url, source.id) or _seen_elsewhere(
            known_keys, key, source.id
        ):
            result.skipped_duplicates += 1
            return

        offer = JobOffer(
            id=offer_id,
            campaign_id=campaign.id,
            user_id=campaign.user_id,
            source_id=source.id,
            external_id=posting.external_id,
            posting=posting,
        )
        # Conditional insert: a concurrent pass may have inserted it already
        if not self.store.put("job_offers", offer, if_absent=True):
            result.skipped_existing += 1
            return

        known_ids.add(offer_id)
        if url:
            known_urls.setdefault(url, set()).add(source.id)
        known_keys.setdefault(key, set()).add(source.id)
        result.new_offer_ids.append(offer_id)
        self.action_log.record(
            "job_offer",
            offer_id,
            ActionType.JOB_DISCOVERED,
            test_mode=campaign.test_mode,
            user_id=campaign.user_id,
            metadata={
                "campaign_id": campaign.id,
                "source_id": source.id,
                "external_id": posting.external_id,
                "title": posting.title,
                "company": posting.company,
            },
        )

    def _advance_cursors(
        self, campaign: Campaign, source_ids: List[str], fetched_at: datetime
    ) -> None:
        """Move the since cursor of successful sources to the fetch start time."""
        current = self.store.get("campaigns", campaign.id)
        if current is None:
            return
        cursors = dict(current.source_cursors)
        for source_id in source_ids:
            cursors[source_id] = fetched_at
        try:
            self.store.compare_and_set(
                "campaigns",
                campaign.id,
                {"updated_at": current.updated_at},
                {"source_cursors": cursors, "last_discovery_at": fetched_at},
            )
        except ClaimConflictError:
            # The campaign changed underneath; the next pass refetches from the
            # old cursor and persistence deduplicates
            logger.info(
                "Skipped cursor update after concurrent campaign change",
                extra={"extra_fields": {"campaign_id": campaign.id}},
            )
