"""
Configuration Module for jobpilot.

Re-exports the status enums and the request schemas most callers need. For
everything else, import directly from the focused modules:
    from jobpilot.config.settings import DEFAULT_MATCH_THRESHOLD
    from jobpilot.config.entity_schemas import Campaign, JobOffer
    from jobpilot.config.analysis_schemas import JobAnalysis
"""

from jobpilot.config.statuses import (
    ActionType,
    ApplicationMethod,
    ApplicationStatus,
    CampaignStatus,
    DocumentType,
    EmailStatus,
    JobOfferStatus,
    LogStatus,
    SourceType,
)

from jobpilot.config.request_schemas import (
    CampaignCreate,
    CampaignUpdate,
    MarkSubmittedRequest,
    SourceUpsert,
    WithdrawRequest,
)

__all__ = [
    "ActionType",
    "ApplicationMethod",
    "ApplicationStatus",
    "CampaignStatus",
    "DocumentType",
    "EmailStatus",
    "JobOfferStatus",
    "LogStatus",
    "SourceType",
    "CampaignCreate",
    "CampaignUpdate",
    "MarkSubmittedRequest",
    "SourceUpsert",
    "WithdrawRequest",
]
