"""
Campaign Orchestrator - Campaign Lifecycle, Scheduling and Stage Handlers.

This module contains the CampaignOrchestrator class, which ties the pipeline
services together:

    DRAFT -> ACTIVE <-> PAUSED -> COMPLETED | FAILED

Only ACTIVE campaigns are eligible for discovery. `tick()` is called on a fixed
schedule (see agents.workers.DiscoveryScheduler) and enqueues a discovery run
for every ACTIVE campaign whose `next_discovery_at` has passed. The slot is
claimed with a compare-and-set on `next_discovery_at`, so two schedulers (or a
scheduler restarted mid-tick) never enqueue the same run twice.

Stage handlers (one per work queue):
    handle_discovery   campaign id     -> new job offers -> analysis queue
    handle_analysis    job offer id    -> MATCHED offers' applications -> generation
    handle_generation  application id  -> auto-confirmed applications -> dispatch
    handle_dispatch    application id  -> submission

Claim gating by campaign status:
    ACTIVE     new claims proceed
    COMPLETED  new claims proceed (a stopped campaign drains work already queued)
    PAUSED     work is skipped and re-enqueued when the campaign is resumed
    FAILED     no new claims
"""

from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional, Union

from jobpilot.config.entity_schemas import Application, Campaign, JobOffer, utcnow
from jobpilot.config.settings import (
    CLAIM_LEASE_SECONDS,
    DISCOVERY_INTERVAL_SECONDS,
    SCHEDULER_TICK_SECONDS,
)
from jobpilot.config.statuses import (
    ActionType,
    ApplicationMethod,
    ApplicationStatus,
    CampaignStatus,
    JobOfferStatus,
    LogStatus,
)
from jobpilot.utils.action_log import ActionLog
from jobpilot.utils.exceptions import (
    ClaimConflictError,
    EntityNotFoundError,
    IllegalTransitionError,
)
from jobpilot.utils.logger import get_logger, set_correlation_id
from jobpilot.utils.state_manager import transition
from jobpilot.utils.work_queue import WorkItem

logger = get_logger(__name__)

# Campaign fields the owner may change through update()
UPDATABLE_FIELDS = (
    "name",
    "criteria",
    "match_threshold",
    "test_mode",
    "auto_apply",
    "source_ids",
    "max_applications",
)

CLAIMABLE_STATUSES = (CampaignStatus.ACTIVE, CampaignStatus.COMPLETED)

CLAIM_EXPIRED_MESSAGE = "Claim lease expired before the worker finished"

# Claimed application status -> status it fails to -> action logged
EXPIRED_APPLICATION_CLAIMS = (
    (
        ApplicationStatus.GENERATING,
        ApplicationStatus.GENERATION_FAILED,
        ActionType.DOCUMENT_GENERATION_FAILED,
    ),
    (
        ApplicationStatus.SUBMITTING,
        ApplicationStatus.SUBMISSION_FAILED,
        ActionType.APPLICATION_SUBMISSION_FAILED,
    ),
)


def _claim_expired(entity: Union[JobOffer, Application], cutoff: datetime) -> bool:
    claimed_at = entity.claimed_at or entity.updated_at
    return claimed_at <= cutoff


class CampaignOrchestrator:
    """Owns the campaign lifecycle and drives work through the stages.

    Args:
        store: Store implementation.
        action_log: Action Log sink.
        work_queue: Per-stage work queues.
        searcher: SearcherService.
        scorer: ScorerService.
        generator: GeneratorService.
        dispatcher: DispatcherService.
        discovery_interval: Seconds between scheduled discovery runs.
        requeue_after: Seconds a DISCOVERED offer may sit untouched before
            the tick hands it to analysis again.
        claim_lease: Seconds an entity may stay claimed (ANALYZING,
            GENERATING, SUBMITTING) before the tick treats its worker as lost.
    """

    def __init__(
        self,
        store: Any,
        action_log: ActionLog,
        work_queue: Any,
        searcher: Any,
        scorer: Any,
        generator: Any,
        dispatcher: Any,
        discovery_interval: int = DISCOVERY_INTERVAL_SECONDS,
        requeue_after: int = SCHEDULER_TICK_SECONDS * 5,
        claim_lease: int = CLAIM_LEASE_SECONDS,
    ) -> None:
        self.store = store
        self.action_log = action_log
        self.work_queue = work_queue
        self.searcher = searcher
        self.scorer = scorer
        self.generator = generator
        self.dispatcher = dispatcher
        self.discovery_interval = timedelta(seconds=discovery_interval)
        self.requeue_after = timedelta(seconds=requeue_after)
        self.claim_lease = timedelta(seconds=claim_lease)
        self._handlers: Dict[str, Callable[[WorkItem], Any]] = {
            "discovery": lambda item: self.handle_discovery(item.entity_id),
            "analysis": lambda item: self.handle_analysis(item.entity_id),
            "generation": lambda item: self.handle_generation(item.entity_id),
            "dispatch": lambda item: self.handle_dispatch(item.entity_id),
        }

    # ------------------------------
    # Campaign CRUD
    # ------------------------------
    def create(self, user_id: str, fields: Dict[str, Any]) -> Campaign:
        """Create a DRAFT campaign.

        Raises:
            pydantic.ValidationError: If the fields do not form a valid campaign.
        """
        allowed = {k: v for k, v in fields.items() if k in UPDATABLE_FIELDS}
        campaign = Campaign(user_id=user_id, **allowed)
        self.store.put("campaigns", campaign)
        self._record(
            campaign,
            ActionType.CAMPAIGN_CREATED,
            metadata={"name": campaign.name, "test_mode": campaign.test_mode},
        )
        return campaign

    def get(self, campaign_id: str, user_id: Optional[str] = None) -> Campaign:
        campaign = self.store.get("campaigns", campaign_id)
        if campaign is None or (user_id and campaign.user_id != user_id):
            raise EntityNotFoundError("campaigns", campaign_id)
        return campaign

    def list(
        self, user_id: str, status: Optional[CampaignStatus] = None
    ) -> List[Campaign]:
        filters: Dict[str, Any] = {"user_id": user_id}
        if status:
            filters["status"] = status
        campaigns = self.store.query("campaigns", **filters)
        return sorted(campaigns, key=lambda c: c.created_at, reverse=True)

    def update(
        self, campaign_id: str, user_id: Optional[str], fields: Dict[str, Any]
    ) -> Campaign:
        """Change a DRAFT or PAUSED campaign.

        test_mode is frozen once the campaign has been started, so applications
        already created keep the mode they were created under and new ones
        match them.

        Raises:
            IllegalTransitionError: If the campaign is not editable or the
                update would change test_mode after start.
        """
        campaign = self.get(campaign_id, user_id)
        if campaign.status not in (CampaignStatus.DRAFT, CampaignStatus.PAUSED):
            raise IllegalTransitionError(
                "CampaignStatus", campaign.status.value, "update"
            )
        updates = {k: v for k, v in fields.items() if k in UPDATABLE_FIELDS}
        if (
            campaign.started_at is not None
            and "test_mode" in updates
            and updates["test_mode"] != campaign.test_mode
        ):
            raise IllegalTransitionError(
                "CampaignStatus", campaign.status.value, "test_mode change"
            )
        if not updates:
            return campaign

        # Validate the merged result before writing
        Campaign.model_validate({**campaign.model_dump(), **updates})
        campaign = self.store.compare_and_set(
            "campaigns",
            campaign.id,
            {"status": campaign.status, "updated_at": campaign.updated_at},
            {**updates, "updated_at": utcnow()},
        )
        self._record(
            campaign, ActionType.CAMPAIGN_UPDATED, metadata={"fields": sorted(updates)}
        )
        return campaign

    def delete(self, campaign_id: str, user_id: Optional[str] = None) -> None:
        """Delete a DRAFT or COMPLETED campaign. Its job offers are kept."""
        campaign = self.get(campaign_id, user_id)
        if campaign.status not in (CampaignStatus.DRAFT, CampaignStatus.COMPLETED):
            raise IllegalTransitionError(
                "CampaignStatus", campaign.status.value, "deleted"
            )
        self.store.delete("campaigns", campaign.id)
        self._record(campaign, ActionType.CAMPAIGN_DELETED)

    def list_job_offers(
        self,
        campaign_id: str,
        user_id: Optional[str] = None,
        status: Optional[JobOfferStatus] = None,
    ) -> List[JobOffer]:
        campaign = self.get(campaign_id, user_id)
        filters: Dict[str, Any] = {"campaign_id": campaign.id}
        if status:
            filters["status"] = status
        offers = self.store.query("job_offers", **filters)
        return sorted(offers, key=lambda o: o.discovered_at, reverse=True)

    # ------------------------------
    # Lifecycle
    # ------------------------------
    def start(self, campaign_id: str, user_id: Optional[str] = None) -> Campaign:
        """Start a DRAFT campaign or resume a PAUSED one.

        Discovery is enqueued immediately. On resume, work that was skipped
        while the campaign was paused is enqueued again.
        """
        campaign = self.get(campaign_id, user_id)
        resumed = campaign.status == CampaignStatus.PAUSED
        now = utcnow()
        campaign = transition(
            self.store,
            "campaigns",
            campaign,
            CampaignStatus.ACTIVE,
            started_at=campaign.started_at or now,
            paused_at=None,
            next_discovery_at=now + self.discovery_interval,
        )
        self._record(
            campaign,
            ActionType.CAMPAIGN_STARTED,
            metadata={"resumed": resumed, "test_mode": campaign.test_mode},
        )
        self.work_queue.put("discovery", campaign.id, campaign.id)
        if resumed:
            self._requeue_pending(campaign)
        return campaign

    def pause(self, campaign_id: str, user_id: Optional[str] = None) -> Campaign:
        """Block new claims. Work already claimed completes normally."""
        campaign = self.get(campaign_id, user_id)
        campaign = transition(
            self.store,
            "campaigns",
            campaign,
            CampaignStatus.PAUSED,
            paused_at=utcnow(),
        )
        self._record(campaign, ActionType.CAMPAIGN_PAUSED)
        return campaign

    def stop(
        self,
        campaign_id: str,
        user_id: Optional[str] = None,
        reason: Optional[str] = None,
    ) -> Campaign:
        """Complete the campaign: no new discovery, queued work still drains."""
        campaign = self.get(campaign_id, user_id)
        was_paused = campaign.status == CampaignStatus.PAUSED
        campaign = transition(
            self.store,
            "campaigns",
            campaign,
            CampaignStatus.COMPLETED,
            completed_at=utcnow(),
            next_discovery_at=None,
        )
        self._record(
            campaign,
            ActionType.CAMPAIGN_STOPPED,
            metadata={"reason": reason} if reason else None,
        )
        if was_paused:
            self._requeue_pending(campaign)
        return campaign

    def fail(self, campaign: Campaign, reason: str) -> Optional[Campaign]:
        """Move a campaign to FAILED. Returns None if it already left ACTIVE/PAUSED."""
        try:
            campaign = transition(
                self.store,
                "campaigns",
                campaign,
                CampaignStatus.FAILED,
                failure_reason=reason,
                next_discovery_at=None,
            )
        except (ClaimConflictError, IllegalTransitionError) as e:
            logger.warning(
                "Could not mark campaign failed",
                extra={
                    "extra_fields": {
                        "campaign_id": campaign.id,
                        "reason": reason,
                        "error": str(e),
                    }
                },
            )
            return None
        logger.error(
            "Campaign failed",
            extra={"extra_fields": {"campaign_id": campaign.id, "reason": reason}},
        )
        self._record(
            campaign,
            ActionType.CAMPAIGN_FAILED,
            LogStatus.FAILURE,
            error_message=reason,
        )
        return campaign

    def trigger_discovery(
        self, campaign_id: str, user_id: Optional[str] = None
    ) -> Campaign:
        """Enqueue a discovery run now, outside the schedule."""
        campaign = self.get(campaign_id, user_id)
        if campaign.status != CampaignStatus.ACTIVE:
            raise IllegalTransitionError(
                "CampaignStatus", campaign.status.value, "discovery"
            )
        self.work_queue.put("discovery", campaign.id, campaign.id)
        logger.info(
            "Discovery triggered manually",
            extra={"extra_fields": {"campaign_id": campaign.id}},
        )
        return campaign

    # ------------------------------
    # Scheduling
    # ------------------------------
    def tick(self, now: Optional[datetime] = None) -> List[str]:
        """Enqueue due discovery runs and stale DISCOVERED offers.

        Also recovers entities whose claim outlived the lease, which happens
        when a worker dies between claiming and finishing.

        Returns:
            List[str]: Ids of campaigns a discovery run was enqueued for.
        """
        now = now or utcnow()
        enqueued = []
        for campaign in self.store.query("campaigns", status=CampaignStatus.ACTIVE):
            if campaign.next_discovery_at is None or campaign.next_discovery_at <= now:
                try:
                    self.store.compare_and_set(
                        "campaigns",
                        campaign.id,
                        {
                            "status": CampaignStatus.ACTIVE,
                            "next_discovery_at": campaign.next_discovery_at,
                        },
                        {"next_discovery_at": now + self.discovery_interval},
                    )
                except ClaimConflictError:
                    # Another scheduler took this slot, or the campaign changed
                    continue
                self.work_queue.put("discovery", campaign.id, campaign.id)
                enqueued.append(campaign.id)

            self._requeue_stale_offers(campaign, now)

        self._recover_expired_claims(now)

        if enqueued:
            logger.info(
                "Scheduled discovery runs",
                extra={"extra_fields": {"campaign_ids": enqueued}},
            )
        return enqueued

    # ------------------------------
    # Stage handlers
    # ------------------------------
    def handle(self, item: WorkItem) -> Any:
        """Route a work item to its stage handler."""
        handler = self._handlers.get(item.stage)
        if handler is None:
            raise ValueError(f"Unknown stage: {item.stage}")
        set_correlation_id(campaign_id=item.campaign_id, entity_id=item.entity_id)
        return handler(item)

    def handle_discovery(self, campaign_id: str) -> Any:
        campaign = self.store.get("campaigns", campaign_id)
        if campaign is None or campaign.status != CampaignStatus.ACTIVE:
            logger.info(
                "Skipping discovery for inactive campaign",
                extra={
                    "extra_fields": {
                        "campaign_id": campaign_id,
                        "status": campaign.status.value if campaign else None,
                    }
                },
            )
            return None

        sources = self.searcher.resolve_sources(campaign)
        if not sources:
            self.fail(campaign, "No enabled job sources resolved for campaign")
            return None

        result = self.searcher.discover(campaign, sources)
        for offer_id in result.new_offer_ids:
            self.work_queue.put("analysis", offer_id, campaign.id)
        return result

    def handle_analysis(self, job_offer_id: str) -> Any:
        offer = self.store.get("job_offers", job_offer_id)
        if offer is None:
            raise EntityNotFoundError("job_offers", job_offer_id)
        campaign = self._claimable_campaign(offer.campaign_id, job_offer_id)
        if campaign is None:
            return None

        if offer.status == JobOfferStatus.DISCOVERED and offer.posting.is_expired():
            offer = transition(self.store, "job_offers", offer, JobOfferStatus.EXPIRED)
            self.action_log.record(
                "job_offer",
                offer.id,
                ActionType.JOB_ANALYZED,
                test_mode=campaign.test_mode,
                user_id=offer.user_id,
                metadata={
                    "campaign_id": campaign.id,
                    "outcome": JobOfferStatus.EXPIRED.value,
                },
            )
            return offer

        offer, application = self.scorer.analyze(job_offer_id, campaign)
        if application is not None:
            self.work_queue.put("generation", application.id, campaign.id)
            self._check_application_cap(campaign)
        return offer

    def handle_generation(self, application_id: str) -> Any:
        application = self.store.get("applications", application_id)
        if application is None:
            raise EntityNotFoundError("applications", application_id)
        if self._claimable_campaign(application.campaign_id, application_id) is None:
            return None

        application = self.generator.generate(application_id)
        if application.status == ApplicationStatus.READY_TO_SUBMIT:
            self.work_queue.put("dispatch", application.id, application.campaign_id)
        return application

    def handle_dispatch(self, application_id: str) -> Any:
        application = self.store.get("applications", application_id)
        if application is None:
            raise EntityNotFoundError("applications", application_id)
        if self._claimable_campaign(application.campaign_id, application_id) is None:
            return None
        return self.dispatcher.dispatch(application_id)

    # ------------------------------
    # Internal functions
    # ------------------------------
    def _claimable_campaign(
        self, campaign_id: str, entity_id: str
    ) -> Optional[Campaign]:
        """Return the campaign if its status allows new claims, else None."""
        campaign = self.store.get("campaigns", campaign_id)
        if campaign is not None and campaign.status in CLAIMABLE_STATUSES:
            return campaign
        logger.info(
            "Skipping work for campaign that does not accept claims",
            extra={
                "extra_fields": {
                    "campaign_id": campaign_id,
                    "entity_id": entity_id,
                    "status": campaign.status.value if campaign else None,
                }
            },
        )
        return None

    def _check_application_cap(self, campaign: Campaign) -> None:
        if campaign.max_applications is None:
            return
        count = len(self.store.query("applications", campaign_id=campaign.id))
        if count < campaign.max_applications:
            return
        current = self.store.get("campaigns", campaign.id)
        if current is None or current.status != CampaignStatus.ACTIVE:
            return
        try:
            self.stop(campaign.id, reason="max_applications reached")
        except (ClaimConflictError, IllegalTransitionError):
            logger.info(
                "Campaign changed before it could be stopped at its cap",
                extra={"extra_fields": {"campaign_id": campaign.id}},
            )

    def _requeue_stale_offers(self, campaign: Campaign, now: datetime) -> None:
        """Hand DISCOVERED offers that were deferred or lost back to analysis."""
        cutoff = now - self.requeue_after
        for offer in self.store.query(
            "job_offers", campaign_id=campaign.id, status=JobOfferStatus.DISCOVERED
        ):
            if offer.updated_at <= cutoff:
                self.work_queue.put("analysis", offer.id, campaign.id)

    def _recover_expired_claims(self, now: datetime) -> int:
        """Release or fail entities whose claim is older than the lease.

        ANALYZING offers go back to DISCOVERED and to the analysis queue.
        GENERATING and SUBMITTING applications fail; a user retry is required,
        so a submission that may already have been sent is never repeated
        automatically.

        Returns:
            int: Number of entities recovered.
        """
        cutoff = now - self.claim_lease
        recovered = 0

        for offer in self.store.query("job_offers", status=JobOfferStatus.ANALYZING):
            if not _claim_expired(offer, cutoff):
                continue
            try:
                offer = transition(
                    self.store, "job_offers", offer, JobOfferStatus.DISCOVERED
                )
            except ClaimConflictError:
                continue
            campaign = self.store.get("campaigns", offer.campaign_id)
            self.action_log.record(
                "job_offer",
                offer.id,
                ActionType.JOB_ANALYSIS_FAILED,
                status=LogStatus.FAILURE,
                test_mode=campaign.test_mode if campaign else False,
                user_id=offer.user_id,
                metadata={
                    "campaign_id": offer.campaign_id,
                    "outcome": JobOfferStatus.DISCOVERED.value,
                },
                error_message=CLAIM_EXPIRED_MESSAGE,
            )
            self.work_queue.put("analysis", offer.id, offer.campaign_id)
            recovered += 1

        for claimed, failed, action in EXPIRED_APPLICATION_CLAIMS:
            for application in self.store.query("applications", status=claimed):
                if not _claim_expired(application, cutoff):
                    continue
                try:
                    application = transition(
                        self.store,
                        "applications",
                        application,
                        failed,
                        error_message=CLAIM_EXPIRED_MESSAGE,
                    )
                except ClaimConflictError:
                    continue
                self.action_log.record(
                    "application",
                    application.id,
                    action,
                    status=LogStatus.FAILURE,
                    test_mode=application.test_mode,
                    user_id=application.user_id,
                    metadata={
                        "campaign_id": application.campaign_id,
                        "claimed_status": claimed.value,
                    },
                    error_message=CLAIM_EXPIRED_MESSAGE,
                )
                recovered += 1

        if recovered:
            logger.warning(
                "Recovered entities with expired claims",
                extra={
                    "extra_fields": {
                        "recovered": recovered,
                        "claim_lease_seconds": int(self.claim_lease.total_seconds()),
                    }
                },
            )
        return recovered

    def _requeue_pending(self, campaign: Campaign) -> None:
        """Enqueue every entity of the campaign that is waiting for a stage."""
        counts = {"analysis": 0, "generation": 0, "dispatch": 0}
        for offer in self.store.query(
            "job_offers", campaign_id=campaign.id, status=JobOfferStatus.DISCOVERED
        ):
            self.work_queue.put("analysis", offer.id, campaign.id)
            counts["analysis"] += 1
        for application in self.store.query("applications", campaign_id=campaign.id):
            if application.status == ApplicationStatus.PENDING_GENERATION:
                self.work_queue.put("generation", application.id, campaign.id)
                counts["generation"] += 1
            elif (
                application.status == ApplicationStatus.READY_TO_SUBMIT
                and application.method != ApplicationMethod.ASSISTED
            ):
                self.work_queue.put("dispatch", application.id, campaign.id)
                counts["dispatch"] += 1
        logger.info(
            "Re-enqueued pending work",
            extra={"extra_fields": {"campaign_id": campaign.id, **counts}},
        )

    def _record(
        self,
        campaign: Campaign,
        action: ActionType,
        status: LogStatus = LogStatus.SUCCESS,
        metadata: Optional[dict] = None,
        error_message: Optional[str] = None,
    ) -> None:
        self.action_log.record(
            "campaign",
            campaign.id,
            action,
            status=status,
            test_mode=campaign.test_mode,
            user_id=campaign.user_id,
            metadata=metadata,
            error_message=error_message,
        )
