"""
Request Schemas for API Payload Validation.

Pydantic models for the bodies the HTTP API accepts. They only shape and
validate input; the services apply the business rules (which fields may change
in which campaign status, which transitions are legal).

Key Models:
    - CampaignCreate: Body of POST /api/campaigns
    - CampaignUpdate: Body of PATCH /api/campaigns/{id} (all fields optional)
    - WithdrawRequest: Optional body of POST /api/applications/{id}/withdraw
    - MarkSubmittedRequest: Body of POST /api/applications/{id}/mark-submitted
    - SourceUpsert: Body of PUT /api/sources/{id}
"""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from jobpilot.config.entity_schemas import SearchCriteria
from jobpilot.config.settings import DEFAULT_MATCH_THRESHOLD
from jobpilot.config.statuses import SourceType


class CampaignCreate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str = Field(min_length=1, max_length=200)
    criteria: SearchCriteria = Field(default_factory=SearchCriteria)
    match_threshold: int = Field(default=DEFAULT_MATCH_THRESHOLD, ge=0, le=100)
    test_mode: bool = False
    auto_apply: bool = False
    source_ids: List[str] = Field(default_factory=list)
    max_applications: Optional[int] = Field(default=None, ge=1)

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        """Reject names that are only whitespace."""
        if not v.strip():
            raise ValueError("name must not be blank")
        return v.strip()


class CampaignUpdate(BaseModel):
    """Partial update; only the fields that were sent are applied."""

    model_config = ConfigDict(extra="forbid")

    name: Optional[str] = Field(default=None, min_length=1, max_length=200)
    criteria: Optional[SearchCriteria] = None
    match_threshold: Optional[int] = Field(default=None, ge=0, le=100)
    test_mode: Optional[bool] = None
    auto_apply: Optional[bool] = None
    source_ids: Optional[List[str]] = None
    max_applications: Optional[int] = Field(default=None, ge=1)

    def changes(self) -> Dict[str, Any]:
        return self.model_dump(exclude_unset=True)


class WithdrawRequest(BaseModel):
    reason: Optional[str] = Field(default=None, max_length=1000)


class MarkSubmittedRequest(BaseModel):
    reference: Optional[str] = Field(default=None, max_length=500)
    notes: Optional[str] = Field(default=None, max_length=2000)


class SourceUpsert(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str = Field(min_length=1)
    type: SourceType
    url: Optional[str] = None
    fallback_rss_url: Optional[str] = None
    enabled: bool = True
    supports_api_submission: bool = False
    submission_url: Optional[str] = None
    supports_form_automation: bool = False
    rate_limit_key: Optional[str] = None
    postings: List[Dict[str, Any]] = Field(default_factory=list)
