"""
Entity Schemas for Pipeline State.

Pydantic models for every entity the pipeline persists. The store serializes
them with `model_dump(mode="json")` and rebuilds them with `model_validate`, so
both store backends hold exactly the same shape.

Key Models:
    - Campaign (+ SearchCriteria)
    - NormalizedPosting: The common shape every source adapter produces
    - JobOffer
    - Application
    - GeneratedDocument
    - EmailRecord
    - ActionLogEntry
    - SourceConfig
    - Profile

JobOffer and Application ids are derived deterministically (see
`job_offer_id_for` and `application_id_for`), so uniqueness of
(campaign, source, external id) and of one application per job offer is
enforced by a conditional insert on the id.
"""

import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from jobpilot.config.analysis_schemas import JobAnalysis
from jobpilot.config.settings import (
    DEFAULT_MATCH_THRESHOLD,
    DEFAULT_SALARY_CURRENCY,
)
from jobpilot.config.statuses import (
    ApplicationMethod,
    ApplicationStatus,
    CampaignStatus,
    DocumentType,
    EmailStatus,
    JobOfferStatus,
    LogStatus,
    SourceType,
)

_ID_NAMESPACE = uuid.UUID("8f0b7a4e-3c1d-4e4b-9a57-1b2f4d6c9e10")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid.uuid4())


def job_offer_id_for(campaign_id: str, source_id: str, external_id: str) -> str:
    """Deterministic JobOffer id for (campaign, source, external id)."""
    return str(
        uuid.uuid5(_ID_NAMESPACE, f"job-offer|{campaign_id}|{source_id}|{external_id}")
    )


def application_id_for(job_offer_id: str) -> str:
    """Deterministic Application id for a JobOffer."""
    return str(uuid.uuid5(_ID_NAMESPACE, f"application|{job_offer_id}"))


# ---------- CAMPAIGN ----------


class SearchCriteria(BaseModel):
    target_roles: List[str] = Field(default_factory=list)
    target_locations: List[str] = Field(default_factory=list)
    contract_types: List[str] = Field(default_factory=list)
    salary_min: Optional[int] = Field(default=None, ge=0)
    salary_max: Optional[int] = Field(default=None, ge=0)
    salary_currency: str = DEFAULT_SALARY_CURRENCY
    remote_ok: bool = True

    @model_validator(mode="after")
    def validate_salary_band(self) -> "SearchCriteria":
        if (
            self.salary_min is not None
            and self.salary_max is not None
            and self.salary_min > self.salary_max
        ):
            raise ValueError("salary_min must not exceed salary_max")
        return self


class Campaign(BaseModel):
    id: str = Field(default_factory=new_id)
    user_id: str
    name: str = Field(min_length=1, max_length=200)
    criteria: SearchCriteria = Field(default_factory=SearchCriteria)
    match_threshold: int = Field(default=DEFAULT_MATCH_THRESHOLD, ge=0, le=100)
    test_mode: bool = False
    auto_apply: bool = False
    source_ids: List[str] = Field(default_factory=list)
    max_applications: Optional[int] = Field(default=None, ge=1)
    status: CampaignStatus = CampaignStatus.DRAFT
    failure_reason: Optional[str] = None
    # Per-source "since" cursor, advanced only after a successful fetch
    source_cursors: Dict[str, datetime] = Field(default_factory=dict)
    next_discovery_at: Optional[datetime] = None
    last_discovery_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    started_at: Optional[datetime] = None
    paused_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None


# ---------- JOB OFFER ----------


class NormalizedPosting(BaseModel):
    """A job posting in the shape every source adapter must produce."""

    external_id: str = Field(min_length=1)
    title: str = Field(min_length=1)
    company: str = Field(min_length=1)
    location: Optional[str] = None
    description: str = ""
    requirements: List[str] = Field(default_factory=list)
    salary: Optional[str] = None
    contract_type: Optional[str] = None
    remote_type: Optional[str] = None
    url: str = Field(min_length=1)
    posted_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    application_email: Optional[str] = None
    application_url: Optional[str] = None

    @field_validator("external_id", "title", "company", "url", mode="before")
    @classmethod
    def strip_required_text(cls, v: Any) -> Any:
        return v.strip() if isinstance(v, str) else v

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        if self.expires_at is None:
            return False
        expires_at = self.expires_at
        if expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=timezone.utc)
        return expires_at < (now or utcnow())

    def as_text(self) -> str:
        """Text used for the embedding pre-filter."""
        parts = [self.title, self.company, self.location or "", self.description]
        if self.requirements:
            parts.append("Requirements: " + ", ".join(self.requirements))
        return "\n".join(part for part in parts if part)


class JobOffer(BaseModel):
    id: str
    campaign_id: str
    user_id: str
    source_id: str
    external_id: str
    posting: NormalizedPosting
    status: JobOfferStatus = JobOfferStatus.DISCOVERED
    match_score: Optional[int] = Field(default=None, ge=0, le=100)
    match_analysis: Optional[JobAnalysis] = None
    prefilter_similarity: Optional[float] = None
    error_message: Optional[str] = None
    discovered_at: datetime = Field(default_factory=utcnow)
    analyzed_at: Optional[datetime] = None
    # Set when a worker claims the offer for analysis
    claimed_at: Optional[datetime] = None
    updated_at: datetime = Field(default_factory=utcnow)


# ---------- APPLICATION ----------


class Application(BaseModel):
    id: str
    campaign_id: str
    user_id: str
    job_offer_id: str
    source_id: str
    status: ApplicationStatus = ApplicationStatus.PENDING_GENERATION
    method: Optional[ApplicationMethod] = None
    requires_confirm: bool = True
    # Copied from the campaign at creation time and never changed
    test_mode: bool
    notes: Optional[str] = None
    submission_reference: Optional[str] = None
    error_message: Optional[str] = None
    retry_count: int = 0
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    # Set when a worker claims the application for generation or submission
    claimed_at: Optional[datetime] = None
    confirmed_at: Optional[datetime] = None
    submitted_at: Optional[datetime] = None
    withdrawn_at: Optional[datetime] = None


class GeneratedDocument(BaseModel):
    id: str = Field(default_factory=new_id)
    application_id: str
    user_id: str
    type: DocumentType
    version: int = Field(ge=1)
    content: Dict[str, Any]
    artifact_ref: str
    filename: str
    test_mode: bool = False
    created_at: datetime = Field(default_factory=utcnow)


class EmailRecord(BaseModel):
    id: str = Field(default_factory=new_id)
    application_id: str
    user_id: str
    recipient: str
    subject: str
    body: str
    attachments: List[str] = Field(default_factory=list)
    status: EmailStatus = EmailStatus.QUEUED
    # Mirrors application.test_mode at send time
    dry_run: bool
    message_id: Optional[str] = None
    error_message: Optional[str] = None
    retry_count: int = 0
    created_at: datetime = Field(default_factory=utcnow)
    sent_at: Optional[datetime] = None


# ---------- ACTION LOG ----------


class ActionLogEntry(BaseModel):
    id: str = Field(default_factory=new_id)
    created_at: datetime = Field(default_factory=utcnow)
    user_id: Optional[str] = None
    entity_type: str
    entity_id: str
    action: str
    status: LogStatus = LogStatus.SUCCESS
    test_mode: bool = False
    metadata: Dict[str, Any] = Field(default_factory=dict)
    error_message: Optional[str] = None


# ---------- SOURCES ----------


class SourceConfig(BaseModel):
    id: str = Field(min_length=1)
    name: str
    type: SourceType
    url: Optional[str] = None
    fallback_rss_url: Optional[str] = None
    enabled: bool = True
    supports_api_submission: bool = False
    submission_url: Optional[str] = None
    supports_form_automation: bool = False
    # Key into the rate limit presets, defaults to the source id
    rate_limit_key: Optional[str] = None
    # Raw postings for MANUAL sources, validated by the adapter
    postings: List[Dict[str, Any]] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utcnow)


# ---------- PROFILE ----------


class WorkExperience(BaseModel):
    company: str
    title: str
    location: Optional[str] = None
    start_date: str
    end_date: Optional[str] = None
    description: Optional[str] = None
    highlights: List[str] = Field(default_factory=list)


class Education(BaseModel):
    institution: str
    degree: str
    field: Optional[str] = None
    end_date: Optional[str] = None


class Language(BaseModel):
    name: str
    proficiency: str


class Profile(BaseModel):
    """Candidate profile as maintained by the profile editor."""

    user_id: str
    first_name: str
    last_name: str
    email: str
    phone: Optional[str] = None
    location: Optional[str] = None
    linkedin: Optional[str] = None
    summary: Optional[str] = None
    skills: List[str] = Field(default_factory=list)
    work_experiences: List[WorkExperience] = Field(default_factory=list)
    educations: List[Education] = Field(default_factory=list)
    languages: List[Language] = Field(default_factory=list)
    baseline_cv: Optional[str] = None
    embedding: Optional[List[float]] = None

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"


# ---------- STORE KINDS ----------

MODEL_BY_KIND = {
    "campaigns": Campaign,
    "job_offers": JobOffer,
    "applications": Application,
    "documents": GeneratedDocument,
    "emails": EmailRecord,
    "action_logs": ActionLogEntry,
    "sources": SourceConfig,
    "profiles": Profile,
}

# Every kind is keyed by "id" except profiles, which are keyed by owner
KEY_FIELD_BY_KIND = {kind: "id" for kind in MODEL_BY_KIND}
KEY_FIELD_BY_KIND["profiles"] = "user_id"
