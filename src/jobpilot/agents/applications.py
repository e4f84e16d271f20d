"""
Application Service - User Actions on Applications and Job Offers.

These are the only mutation entry points into otherwise worker-owned state:

    confirm            PENDING_REVIEW -> READY_TO_SUBMIT (enqueues dispatch)
    withdraw           PENDING_REVIEW | READY_TO_SUBMIT | *_FAILED -> WITHDRAWN
    mark_submitted     PENDING_REVIEW | READY_TO_SUBMIT -> SUBMITTED
    regenerate         PENDING_REVIEW | GENERATION_FAILED -> PENDING_GENERATION
    retry_submission   SUBMISSION_FAILED -> READY_TO_SUBMIT (enqueues dispatch)
    retry_analysis     ERROR | REJECTED job offer -> DISCOVERED

Every action validates the transition table, so e.g. confirming a withdrawn
application raises IllegalTransitionError.
"""

from typing import Any, Dict, List, Optional

from jobpilot.config.entity_schemas import (
    Application,
    EmailRecord,
    GeneratedDocument,
    JobOffer,
    utcnow,
)
from jobpilot.config.statuses import (
    ActionType,
    ApplicationMethod,
    ApplicationStatus,
    JobOfferStatus,
)
from jobpilot.agents.dispatcher import mark_offer_applied
from jobpilot.utils.action_log import ActionLog
from jobpilot.utils.exceptions import EntityNotFoundError, IllegalTransitionError
from jobpilot.utils.logger import get_logger
from jobpilot.utils.state_manager import transition

logger = get_logger(__name__)

DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100


class ApplicationService:
    """User-facing operations on applications.

    Args:
        store: Store implementation.
        action_log: Action Log sink.
        work_queue: Stage queues used to hand work back to the workers.
    """

    def __init__(self, store: Any, action_log: ActionLog, work_queue: Any) -> None:
        self.store = store
        self.action_log = action_log
        self.work_queue = work_queue

    # ------------------------------
    # Read operations
    # ------------------------------
    def get(self, application_id: str, user_id: Optional[str] = None) -> Application:
        """Return an application owned by `user_id`.

        Raises:
            EntityNotFoundError: If it does not exist or belongs to someone else.
        """
        application = self.store.get("applications", application_id)
        if application is None or (user_id and application.user_id != user_id):
            raise EntityNotFoundError("applications", application_id)
        return application

    def list(
        self,
        user_id: str,
        campaign_id: Optional[str] = None,
        status: Optional[ApplicationStatus] = None,
        page: int = 1,
        limit: int = DEFAULT_PAGE_SIZE,
    ) -> Dict[str, Any]:
        """Paginated applications, newest first."""
        page = max(1, page)
        limit = max(1, min(limit, MAX_PAGE_SIZE))

        filters: Dict[str, Any] = {"user_id": user_id}
        if campaign_id:
            filters["campaign_id"] = campaign_id
        if status:
            filters["status"] = status
        applications = sorted(
            self.store.query("applications", **filters),
            key=lambda app: app.created_at,
            reverse=True,
        )

        start = (page - 1) * limit
        items = applications[start : start + limit]
        return {
            "items": items,
            "total": len(applications),
            "page": page,
            "limit": limit,
            "has_more": start + len(items) < len(applications),
        }

    def documents(
        self, application_id: str, user_id: Optional[str] = None
    ) -> List[GeneratedDocument]:
        """All document versions for an application, by type then version."""
        application = self.get(application_id, user_id)
        documents = self.store.query("documents", application_id=application.id)
        return sorted(documents, key=lambda d: (d.type.value, d.version))

    def emails(
        self, application_id: str, user_id: Optional[str] = None
    ) -> List[EmailRecord]:
        application = self.get(application_id, user_id)
        emails = self.store.query("emails", application_id=application.id)
        return sorted(emails, key=lambda e: e.created_at)

    # ------------------------------
    # User actions
    # ------------------------------
    def confirm(
        self, application_id: str, user_id: Optional[str] = None
    ) -> Application:
        application = self.get(application_id, user_id)
        application = transition(
            self.store,
            "applications",
            application,
            ApplicationStatus.READY_TO_SUBMIT,
            confirmed_at=utcnow(),
        )
        self._record(application, ActionType.APPLICATION_CONFIRMED)
        self.work_queue.put("dispatch", application.id, application.campaign_id)
        return application

    def withdraw(
        self,
        application_id: str,
        user_id: Optional[str] = None,
        reason: Optional[str] = None,
    ) -> Application:
        application = self.get(application_id, user_id)
        updates: Dict[str, Any] = {"withdrawn_at": utcnow()}
        if reason:
            updates["notes"] = reason
        application = transition(
            self.store,
            "applications",
            application,
            ApplicationStatus.WITHDRAWN,
            **updates,
        )
        self._record(
            application,
            ActionType.APPLICATION_WITHDRAWN,
            metadata={"reason": reason} if reason else None,
        )
        return application

    def mark_submitted(
        self,
        application_id: str,
        user_id: Optional[str] = None,
        reference: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> Application:
        """Record a submission the user made themselves (ASSISTED)."""
        application = self.get(application_id, user_id)
        updates: Dict[str, Any] = {
            "submitted_at": utcnow(),
            "method": application.method or ApplicationMethod.ASSISTED,
        }
        if reference:
            updates["submission_reference"] = reference
        if notes:
            updates["notes"] = notes
        application = transition(
            self.store,
            "applications",
            application,
            ApplicationStatus.SUBMITTED,
            **updates,
        )
        mark_offer_applied(self.store, application.job_offer_id)
        self._record(
            application,
            ActionType.APPLICATION_SUBMITTED,
            metadata={
                "method": application.method.value,
                "reference": reference,
                "manual": True,
            },
        )
        return application

    def regenerate(
        self, application_id: str, user_id: Optional[str] = None
    ) -> Application:
        """Request a new version of both documents."""
        application = self.get(application_id, user_id)
        previous = application.status
        application = transition(
            self.store,
            "applications",
            application,
            ApplicationStatus.PENDING_GENERATION,
            error_message=None,
        )
        self._record(
            application,
            ActionType.APPLICATION_REGENERATE_REQUESTED,
            metadata={"previous_status": previous.value},
        )
        self.work_queue.put("generation", application.id, application.campaign_id)
        return application

    def retry_submission(
        self, application_id: str, user_id: Optional[str] = None
    ) -> Application:
        """Retry a failed (or deferred) submission.

        A SUBMISSION_FAILED application goes back to READY_TO_SUBMIT. An
        application still READY_TO_SUBMIT (deferred by a rate cap) is simply
        handed to the dispatcher again.
        """
        application = self.get(application_id, user_id)
        if application.status == ApplicationStatus.READY_TO_SUBMIT:
            if application.method == ApplicationMethod.ASSISTED:
                raise IllegalTransitionError(
                    "ApplicationStatus",
                    application.status.value,
                    "retry of an ASSISTED submission",
                )
        else:
            application = transition(
                self.store,
                "applications",
                application,
                ApplicationStatus.READY_TO_SUBMIT,
                error_message=None,
            )
        self._record(
            application,
            ActionType.APPLICATION_RETRY_REQUESTED,
            metadata={"retry_count": application.retry_count},
        )
        self.work_queue.put("dispatch", application.id, application.campaign_id)
        return application

    def retry_analysis(
        self, job_offer_id: str, user_id: Optional[str] = None
    ) -> JobOffer:
        """Send an ERROR or REJECTED job offer back through analysis."""
        offer = self.store.get("job_offers", job_offer_id)
        if offer is None or (user_id and offer.user_id != user_id):
            raise EntityNotFoundError("job_offers", job_offer_id)
        previous = offer.status
        offer = transition(
            self.store,
            "job_offers",
            offer,
            JobOfferStatus.DISCOVERED,
            error_message=None,
        )
        campaign = self.store.get("campaigns", offer.campaign_id)
        self.action_log.record(
            "job_offer",
            offer.id,
            ActionType.JOB_RETRY_REQUESTED,
            test_mode=campaign.test_mode if campaign else False,
            user_id=offer.user_id,
            metadata={
                "campaign_id": offer.campaign_id,
                "previous_status": previous.value,
            },
        )
        self.work_queue.put("analysis", offer.id, offer.campaign_id)
        return offer

    # ------------------------------
    # Internal functions
    # ------------------------------
    def _record(
        self,
        application: Application,
        action: ActionType,
        metadata: Optional[dict] = None,
    ) -> None:
        self.action_log.record(
            "application",
            application.id,
            action,
            test_mode=application.test_mode,
            user_id=application.user_id,
            metadata={"campaign_id": application.campaign_id, **(metadata or {})},
        )
