"""
Campaign API Routes.

Campaign CRUD, lifecycle actions (start, pause, stop, manual discovery) and the
job offers discovered for a campaign.
"""

from typing import List, Optional

from fastapi import APIRouter, Depends, Query, Response, status

from jobpilot.api.utils.state_helpers import get_pipeline, get_user_id
from jobpilot.config.entity_schemas import Campaign, JobOffer
from jobpilot.config.request_schemas import CampaignCreate, CampaignUpdate
from jobpilot.config.statuses import CampaignStatus, JobOfferStatus
from jobpilot.main import Pipeline
from jobpilot.utils.logger import get_logger, set_correlation_id

logger = get_logger(__name__)

router = APIRouter(prefix="/api", tags=["campaigns"])


@router.post("/campaigns", status_code=status.HTTP_201_CREATED)
def create_campaign(
    payload: CampaignCreate,
    user_id: str = Depends(get_user_id),
    pipeline: Pipeline = Depends(get_pipeline),
) -> Campaign:
    """Create a DRAFT campaign."""
    campaign = pipeline.orchestrator.create(user_id, payload.model_dump())
    logger.info(
        "Campaign created",
        extra={"extra_fields": {"campaign_id": campaign.id, "user_id": user_id}},
    )
    return campaign


@router.get("/campaigns")
def list_campaigns(
    status_filter: Optional[CampaignStatus] = Query(default=None, alias="status"),
    user_id: str = Depends(get_user_id),
    pipeline: Pipeline = Depends(get_pipeline),
) -> List[Campaign]:
    return pipeline.orchestrator.list(user_id, status_filter)


@router.get("/campaigns/{campaign_id}")
def get_campaign(
    campaign_id: str,
    user_id: str = Depends(get_user_id),
    pipeline: Pipeline = Depends(get_pipeline),
) -> Campaign:
    return pipeline.orchestrator.get(campaign_id, user_id)


@router.patch("/campaigns/{campaign_id}")
def update_campaign(
    campaign_id: str,
    payload: CampaignUpdate,
    user_id: str = Depends(get_user_id),
    pipeline: Pipeline = Depends(get_pipeline),
) -> Campaign:
    """Update a DRAFT or PAUSED campaign. Returns 409 in any other status."""
    return pipeline.orchestrator.update(campaign_id, user_id, payload.changes())


@router.delete("/campaigns/{campaign_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_campaign(
    campaign_id: str,
    user_id: str = Depends(get_user_id),
    pipeline: Pipeline = Depends(get_pipeline),
) -> Response:
    pipeline.orchestrator.delete(campaign_id, user_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/campaigns/{campaign_id}/start")
def start_campaign(
    campaign_id: str,
    user_id: str = Depends(get_user_id),
    pipeline: Pipeline = Depends(get_pipeline),
) -> Campaign:
    """Start a DRAFT campaign or resume a PAUSED one."""
    set_correlation_id(campaign_id=campaign_id)
    return pipeline.orchestrator.start(campaign_id, user_id)


@router.post("/campaigns/{campaign_id}/pause")
def pause_campaign(
    campaign_id: str,
    user_id: str = Depends(get_user_id),
    pipeline: Pipeline = Depends(get_pipeline),
) -> Campaign:
    set_correlation_id(campaign_id=campaign_id)
    return pipeline.orchestrator.pause(campaign_id, user_id)


@router.post("/campaigns/{campaign_id}/stop")
def stop_campaign(
    campaign_id: str,
    user_id: str = Depends(get_user_id),
    pipeline: Pipeline = Depends(get_pipeline),
) -> Campaign:
    """Complete the campaign. Work already queued still finishes."""
    set_correlation_id(campaign_id=campaign_id)
    return pipeline.orchestrator.stop(campaign_id, user_id)


@router.post("/campaigns/{campaign_id}/discover", status_code=status.HTTP_202_ACCEPTED)
def trigger_discovery(
    campaign_id: str,
    user_id: str = Depends(get_user_id),
    pipeline: Pipeline = Depends(get_pipeline),
) -> dict:
    """Enqueue a discovery run for an ACTIVE campaign now."""
    set_correlation_id(campaign_id=campaign_id)
    campaign = pipeline.orchestrator.trigger_discovery(campaign_id, user_id)
    return {"campaign_id": campaign.id, "status": "queued"}


@router.get("/campaigns/{campaign_id}/job-offers")
def list_job_offers(
    campaign_id: str,
    status_filter: Optional[JobOfferStatus] = Query(default=None, alias="status"),
    user_id: str = Depends(get_user_id),
    pipeline: Pipeline = Depends(get_pipeline),
) -> List[JobOffer]:
    return pipeline.orchestrator.list_job_offers(campaign_id, user_id, status_filter)
