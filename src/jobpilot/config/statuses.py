"""
Status Enums and Transition Tables.

Every status field in the pipeline is a str-valued Enum paired with an explicit
transition table. `check_transition` is the only place legality is decided;
the state manager calls it before every compare-and-set.

Key Definitions:
    - CampaignStatus / CAMPAIGN_TRANSITIONS
    - JobOfferStatus / JOB_OFFER_TRANSITIONS
    - ApplicationStatus / APPLICATION_TRANSITIONS
    - EmailStatus / EMAIL_TRANSITIONS
    - ApplicationMethod, DocumentType, SourceType, LogStatus, ActionType
"""

from enum import Enum
from typing import Dict, FrozenSet, Type

from jobpilot.utils.exceptions import IllegalTransitionError


class CampaignStatus(str, Enum):
    DRAFT = "DRAFT"
    ACTIVE = "ACTIVE"
    PAUSED = "PAUSED"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class JobOfferStatus(str, Enum):
    DISCOVERED = "DISCOVERED"
    ANALYZING = "ANALYZING"
    MATCHED = "MATCHED"
    REJECTED = "REJECTED"
    APPLIED = "APPLIED"
    EXPIRED = "EXPIRED"
    ERROR = "ERROR"


class ApplicationStatus(str, Enum):
    PENDING_GENERATION = "PENDING_GENERATION"
    GENERATING = "GENERATING"
    GENERATION_FAILED = "GENERATION_FAILED"
    PENDING_REVIEW = "PENDING_REVIEW"
    READY_TO_SUBMIT = "READY_TO_SUBMIT"
    SUBMITTING = "SUBMITTING"
    SUBMITTED = "SUBMITTED"
    SUBMISSION_FAILED = "SUBMISSION_FAILED"
    WITHDRAWN = "WITHDRAWN"


class EmailStatus(str, Enum):
    QUEUED = "QUEUED"
    SENDING = "SENDING"
    SENT = "SENT"
    FAILED = "FAILED"


class ApplicationMethod(str, Enum):
    AUTO_API = "AUTO_API"
    AUTO_FORM = "AUTO_FORM"
    EMAIL = "EMAIL"
    ASSISTED = "ASSISTED"


class DocumentType(str, Enum):
    CV = "CV"
    COVER_LETTER = "COVER_LETTER"


class SourceType(str, Enum):
    API = "API"
    RSS = "RSS"
    MANUAL = "MANUAL"
    MOCK = "MOCK"


class LogStatus(str, Enum):
    SUCCESS = "success"
    FAILURE = "failure"
    PENDING = "pending"


class ActionType(str, Enum):
    CAMPAIGN_CREATED = "campaign.created"
    CAMPAIGN_UPDATED = "campaign.updated"
    CAMPAIGN_STARTED = "campaign.started"
    CAMPAIGN_PAUSED = "campaign.paused"
    CAMPAIGN_STOPPED = "campaign.stopped"
    CAMPAIGN_FAILED = "campaign.failed"
    CAMPAIGN_DELETED = "campaign.deleted"
    JOB_DISCOVERY_STARTED = "job.discovery_started"
    JOB_DISCOVERY_COMPLETED = "job.discovery_completed"
    JOB_DISCOVERY_SOURCE_FAILED = "job.discovery_source_failed"
    JOB_DISCOVERED = "job.discovered"
    JOB_ANALYSIS_DEFERRED = "job.analysis_deferred"
    JOB_ANALYZED = "job.analyzed"
    JOB_ANALYSIS_FAILED = "job.analysis_failed"
    JOB_RETRY_REQUESTED = "job.retry_requested"
    APPLICATION_CREATED = "application.created"
    DOCUMENT_GENERATION_STARTED = "document.generation_started"
    DOCUMENT_GENERATED = "document.generated"
    DOCUMENT_GENERATION_FAILED = "document.generation_failed"
    APPLICATION_CONFIRMED = "application.confirmed"
    APPLICATION_AUTO_CONFIRMED = "application.auto_confirmed"
    APPLICATION_WITHDRAWN = "application.withdrawn"
    APPLICATION_ASSISTED = "application.assisted"
    APPLICATION_SUBMITTED = "application.submitted"
    APPLICATION_SUBMISSION_FAILED = "application.submission_failed"
    APPLICATION_SUBMISSION_DEFERRED = "application.submission_deferred"
    APPLICATION_REGENERATE_REQUESTED = "application.regenerate_requested"
    APPLICATION_RETRY_REQUESTED = "application.retry_requested"
    EMAIL_QUEUED = "email.queued"
    EMAIL_SENT = "email.sent"
    EMAIL_FAILED = "email.failed"


# ---------- TRANSITION TABLES ----------

CAMPAIGN_TRANSITIONS: Dict[CampaignStatus, FrozenSet[CampaignStatus]] = {
    CampaignStatus.DRAFT: frozenset({CampaignStatus.ACTIVE}),
    CampaignStatus.ACTIVE: frozenset(
        {CampaignStatus.PAUSED, CampaignStatus.COMPLETED, CampaignStatus.FAILED}
    ),
    CampaignStatus.PAUSED: frozenset(
        {CampaignStatus.ACTIVE, CampaignStatus.COMPLETED, CampaignStatus.FAILED}
    ),
    CampaignStatus.COMPLETED: frozenset(),
    CampaignStatus.FAILED: frozenset(),
}

JOB_OFFER_TRANSITIONS: Dict[JobOfferStatus, FrozenSet[JobOfferStatus]] = {
    JobOfferStatus.DISCOVERED: frozenset(
        {JobOfferStatus.ANALYZING, JobOfferStatus.EXPIRED}
    ),
    # ANALYZING -> DISCOVERED releases a claim when the profile is not ready
    JobOfferStatus.ANALYZING: frozenset(
        {
            JobOfferStatus.MATCHED,
            JobOfferStatus.REJECTED,
            JobOfferStatus.ERROR,
            JobOfferStatus.DISCOVERED,
        }
    ),
    JobOfferStatus.MATCHED: frozenset({JobOfferStatus.APPLIED}),
    # Explicit user retry only
    JobOfferStatus.REJECTED: frozenset({JobOfferStatus.DISCOVERED}),
    JobOfferStatus.ERROR: frozenset({JobOfferStatus.DISCOVERED}),
    JobOfferStatus.APPLIED: frozenset(),
    JobOfferStatus.EXPIRED: frozenset(),
}

APPLICATION_TRANSITIONS: Dict[ApplicationStatus, FrozenSet[ApplicationStatus]] = {
    ApplicationStatus.PENDING_GENERATION: frozenset({ApplicationStatus.GENERATING}),
    ApplicationStatus.GENERATING: frozenset(
        {ApplicationStatus.PENDING_REVIEW, ApplicationStatus.GENERATION_FAILED}
    ),
    ApplicationStatus.GENERATION_FAILED: frozenset(
        {ApplicationStatus.PENDING_GENERATION, ApplicationStatus.WITHDRAWN}
    ),
    ApplicationStatus.PENDING_REVIEW: frozenset(
        {
            ApplicationStatus.READY_TO_SUBMIT,
            ApplicationStatus.PENDING_GENERATION,
            ApplicationStatus.SUBMITTED,
            ApplicationStatus.WITHDRAWN,
        }
    ),
    ApplicationStatus.READY_TO_SUBMIT: frozenset(
        {
            ApplicationStatus.SUBMITTING,
            ApplicationStatus.SUBMITTED,
            ApplicationStatus.WITHDRAWN,
        }
    ),
    ApplicationStatus.SUBMITTING: frozenset(
        {ApplicationStatus.SUBMITTED, ApplicationStatus.SUBMISSION_FAILED}
    ),
    ApplicationStatus.SUBMISSION_FAILED: frozenset(
        {ApplicationStatus.READY_TO_SUBMIT, ApplicationStatus.WITHDRAWN}
    ),
    ApplicationStatus.SUBMITTED: frozenset(),
    ApplicationStatus.WITHDRAWN: frozenset(),
}

EMAIL_TRANSITIONS: Dict[EmailStatus, FrozenSet[EmailStatus]] = {
    EmailStatus.QUEUED: frozenset({EmailStatus.SENDING}),
    EmailStatus.SENDING: frozenset({EmailStatus.SENT, EmailStatus.FAILED}),
    EmailStatus.SENT: frozenset(),
    EmailStatus.FAILED: frozenset(),
}

TRANSITIONS_BY_ENUM: Dict[Type[Enum], Dict] = {
    CampaignStatus: CAMPAIGN_TRANSITIONS,
    JobOfferStatus: JOB_OFFER_TRANSITIONS,
    ApplicationStatus: APPLICATION_TRANSITIONS,
    EmailStatus: EMAIL_TRANSITIONS,
}


def can_transition(current: Enum, target: Enum) -> bool:
    """Return True if `current -> target` is in the transition table."""
    table = TRANSITIONS_BY_ENUM[type(current)]
    return target in table[current]


def check_transition(current: Enum, target: Enum) -> None:
    """Validate a status transition.

    Args:
        current: The entity's current status.
        target: The requested status (same enum type as `current`).

    Raises:
        IllegalTransitionError: If the transition table does not allow it.
    """
    if type(current) is not type(target) or not can_transition(current, target):
        raise IllegalTransitionError(
            type(current).__name__, current.value, target.value
        )


def is_terminal(status: Enum) -> bool:
    """Return True if no transition leaves `status`."""
    return not TRANSITIONS_BY_ENUM[type(status)][status]
