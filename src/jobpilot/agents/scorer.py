"""
Scorer Service - Two-Stage Match Scoring and the Threshold Gate.

CLASSES:
    ScorerService

FUNCTIONS (in order of workflow):
    1. analyze              (public use)
    2. _prefilter           (internal use)
    3. _reason              (internal use)
    4. _gate                (internal use)
    5. _create_application  (internal use)

Stage 1 compares the profile embedding with an embedding of the posting text.
Postings below the prefilter floor are REJECTED without ever reaching the
reasoning provider. Stage 2 asks the reasoning provider for a schema-validated
JobAnalysis. `match_score >= campaign.match_threshold` moves the offer to
MATCHED and creates its Application; anything lower is REJECTED.
"""

from typing import Any, List, Optional, Tuple

from jobpilot.config.analysis_schemas import JobAnalysis
from jobpilot.config.entity_schemas import (
    Application,
    Campaign,
    JobOffer,
    Profile,
    application_id_for,
    utcnow,
)
from jobpilot.config.settings import MATCH_PREFILTER_FLOOR
from jobpilot.config.statuses import ActionType, JobOfferStatus, LogStatus
from jobpilot.utils.action_log import ActionLog
from jobpilot.utils.exceptions import InfrastructureError, ProfileNotReadyError
from jobpilot.utils.llms import cosine_similarity
from jobpilot.utils.logger import get_logger
from jobpilot.utils.rate_limiter import ProviderLimiter
from jobpilot.utils.state_manager import claim, transition

logger = get_logger(__name__)


class ScorerService:
    """Scores JobOffers against the candidate profile.

    Args:
        store: Store implementation.
        action_log: Action Log sink.
        embedding_provider: Object with `embed(text) -> List[float]`.
        reasoning_provider: Object with
            `analyze_match(profile, posting) -> JobAnalysis`.
        profile_provider: Object with `get_profile` / `get_profile_embedding`.
        limiter: Bounded concurrency per provider.
        prefilter_floor: Minimum cosine similarity for the reasoning stage.
    """

    def __init__(
        self,
        store: Any,
        action_log: ActionLog,
        embedding_provider: Any,
        reasoning_provider: Any,
        profile_provider: Any,
        limiter: Optional[ProviderLimiter] = None,
        prefilter_floor: float = MATCH_PREFILTER_FLOOR,
    ) -> None:
        self.store = store
        self.action_log = action_log
        self.embedding_provider = embedding_provider
        self.reasoning_provider = reasoning_provider
        self.profile_provider = profile_provider
        self.limiter = limiter or ProviderLimiter()
        self.prefilter_floor = prefilter_floor

    # ------------------------------
    # Public interface
    # ------------------------------
    def analyze(
        self, job_offer_id: str, campaign: Campaign
    ) -> Tuple[JobOffer, Optional[Application]]:
        """Claim a DISCOVERED offer, score it and apply the threshold gate.

        Args:
            job_offer_id: Offer to analyze.
            campaign: The owning campaign (threshold, test mode, auto apply).

        Returns:
            Tuple of the offer in its resulting status and the Application
            created for it (None unless the offer was MATCHED).

        Raises:
            ClaimConflictError: If another worker claimed the offer first or it
                is no longer DISCOVERED.
            EntityNotFoundError: If the offer does not exist.
        """
        offer = claim(
            self.store,
            "job_offers",
            job_offer_id,
            JobOfferStatus.DISCOVERED,
            JobOfferStatus.ANALYZING,
            claimed_at=utcnow(),
        )

        try:
            profile, profile_vector = self._load_profile(offer)
        except ProfileNotReadyError as e:
            # Not an error: release the claim and wait for the embedding
            offer = transition(
                self.store, "job_offers", offer, JobOfferStatus.DISCOVERED
            )
            self._record(
                offer,
                campaign,
                ActionType.JOB_ANALYSIS_DEFERRED,
                LogStatus.PENDING,
                error_message=str(e),
            )
            return offer, None
        except InfrastructureError:
            raise
        except Exception as e:
            return self._fail(offer, campaign, e), None

        try:
            similarity = self._prefilter(offer, profile_vector)
            if similarity < self.prefilter_floor:
                offer = transition(
                    self.store,
                    "job_offers",
                    offer,
                    JobOfferStatus.REJECTED,
                    prefilter_similarity=similarity,
                    analyzed_at=utcnow(),
                )
                self._record(
                    offer,
                    campaign,
                    ActionType.JOB_ANALYZED,
                    metadata={
                        "prefiltered": True,
                        "similarity": round(similarity, 4),
                        "outcome": JobOfferStatus.REJECTED.value,
                    },
                )
                return offer, None

            analysis = self._reason(profile, offer)
        except InfrastructureError:
            raise
        except Exception as e:
            return self._fail(offer, campaign, e), None

        return self._gate(offer, campaign, analysis, similarity)

    # ------------------------------
    # Internal functions
    # ------------------------------
    def _load_profile(self, offer: JobOffer) -> Tuple[Profile, List[float]]:
        profile = self.profile_provider.get_profile(offer.user_id)
        if profile is None:
            raise ValueError(f"No profile for user {offer.user_id}")
        vector = self.profile_provider.get_profile_embedding(offer.user_id)
        if not vector:
            raise ProfileNotReadyError(
                f"Profile embedding for user {offer.user_id} is not ready"
            )
        return profile, vector

    def _prefilter(self, offer: JobOffer, profile_vector: List[float]) -> float:
        """Stage 1: cosine similarity between profile and posting embeddings."""
        with self.limiter.slot("embedding"):
            posting_vector = self.embedding_provider.embed(offer.posting.as_text())
        return cosine_similarity(profile_vector, posting_vector)

    def _reason(self, profile: Profile, offer: JobOffer) -> JobAnalysis:
        """Stage 2: structured analysis from the reasoning provider."""
        with self.limiter.slot("reasoning"):
            return self.reasoning_provider.analyze_match(profile, offer.posting)

    def _gate(
        self,
        offer: JobOffer,
        campaign: Campaign,
        analysis: JobAnalysis,
        similarity: float,
    ) -> Tuple[JobOffer, Optional[Application]]:
        matched = analysis.match_score >= campaign.match_threshold
        target = JobOfferStatus.MATCHED if matched else JobOfferStatus.REJECTED
        offer = transition(
            self.store,
            "job_offers",
            offer,
            target,
            match_score=analysis.match_score,
            match_analysis=analysis,
            prefilter_similarity=similarity,
            analyzed_at=utcnow(),
            error_message=None,
        )
        self._record(
            offer,
            campaign,
            ActionType.JOB_ANALYZED,
            metadata={
                "prefiltered": False,
                "similarity": round(similarity, 4),
                "match_score": analysis.match_score,
                "threshold": campaign.match_threshold,
                "recommendation": analysis.recommendation,
                "outcome": target.value,
            },
        )
        logger.info(
            "Job offer analyzed",
            extra={
                "extra_fields": {
                    "job_offer_id": offer.id,
                    "match_score": analysis.match_score,
                    "threshold": campaign.match_threshold,
                    "outcome": target.value,
                }
            },
        )

        if not matched:
            return offer, None
        return offer, self._create_application(offer, campaign)

    def _create_application(
        self, offer: JobOffer, campaign: Campaign
    ) -> Optional[Application]:
        """Create the one Application for a MATCHED offer.

        The id is derived from the offer id, so a second attempt is a no-op.
        """
        application = Application(
            id=application_id_for(offer.id),
            campaign_id=campaign.id,
            user_id=campaign.user_id,
            job_offer_id=offer.id,
            source_id=offer.source_id,
            requires_confirm=not (campaign.auto_apply and not campaign.test_mode),
            test_mode=campaign.test_mode,
        )
        if not self.store.put("applications", application, if_absent=True):
            logger.info(
                "Application already exists for job offer",
                extra={"extra_fields": {"job_offer_id": offer.id}},
            )
            return None

        self.action_log.record(
            "application",
            application.id,
            ActionType.APPLICATION_CREATED,
            test_mode=application.test_mode,
            user_id=application.user_id,
            metadata={
                "job_offer_id": offer.id,
                "campaign_id": campaign.id,
                "requires_confirm": application.requires_confirm,
            },
        )
        return application

    def _fail(self, offer: JobOffer, campaign: Campaign, error: Exception) -> JobOffer:
        logger.error(
            "Job offer analysis failed",
            extra={
                "extra_fields": {
                    "job_offer_id": offer.id,
                    "error": str(error),
                    "error_type": type(error).__name__,
                }
            },
            exc_info=True,
        )
        offer = transition(
            self.store,
            "job_offers",
            offer,
            JobOfferStatus.ERROR,
            error_message=f"{type(error).__name__}: {error}",
        )
        self._record(
            offer,
            campaign,
            ActionType.JOB_ANALYSIS_FAILED,
            LogStatus.FAILURE,
            error_message=str(error),
        )
        return offer

    def _record(
        self,
        offer: JobOffer,
        campaign: Campaign,
        action: ActionType,
        status: LogStatus = LogStatus.SUCCESS,
        metadata: Optional[dict] = None,
        error_message: Optional[str] = None,
    ) -> None:
        self.action_log.record(
            "job_offer",
            offer.id,
            action,
            status=status,
            test_mode=campaign.test_mode,
            user_id=offer.user_id,
            metadata={"campaign_id": campaign.id, **(metadata or {})},
            error_message=error_message,
        )
