"""
Job Offer API Routes.

Job offers are listed per campaign (see routes.campaigns). The only user action
on an offer is an explicit retry of a failed or rejected analysis.
"""

from fastapi import APIRouter, Depends, status

from jobpilot.api.utils.state_helpers import get_pipeline, get_user_id
from jobpilot.config.entity_schemas import JobOffer
from jobpilot.main import Pipeline

router = APIRouter(prefix="/api", tags=["job-offers"])


@router.post("/job-offers/{job_offer_id}/retry", status_code=status.HTTP_202_ACCEPTED)
def retry_job_offer(
    job_offer_id: str,
    user_id: str = Depends(get_user_id),
    pipeline: Pipeline = Depends(get_pipeline),
) -> JobOffer:
    """Send an ERROR or REJECTED offer back to analysis."""
    return pipeline.applications.retry_analysis(job_offer_id, user_id)
