"""
Application API Routes.

Read access to applications (with their documents and emails) and the user
actions that move an application through its lifecycle.
"""

from typing import List, Optional

from fastapi import APIRouter, Body, Depends, Query

from jobpilot.api.utils.state_helpers import get_pipeline, get_user_id
from jobpilot.config.entity_schemas import Application, EmailRecord, GeneratedDocument
from jobpilot.config.request_schemas import MarkSubmittedRequest, WithdrawRequest
from jobpilot.config.statuses import ApplicationStatus
from jobpilot.main import Pipeline

router = APIRouter(prefix="/api", tags=["applications"])


@router.get("/applications")
def list_applications(
    campaign_id: Optional[str] = None,
    status_filter: Optional[ApplicationStatus] = Query(default=None, alias="status"),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    user_id: str = Depends(get_user_id),
    pipeline: Pipeline = Depends(get_pipeline),
) -> dict:
    """Paginated applications: items, total, page, limit, has_more."""
    result = pipeline.applications.list(
        user_id,
        campaign_id=campaign_id,
        status=status_filter,
        page=page,
        limit=limit,
    )
    result["items"] = [app.model_dump(mode="json") for app in result["items"]]
    return result


@router.get("/applications/{application_id}")
def get_application(
    application_id: str,
    user_id: str = Depends(get_user_id),
    pipeline: Pipeline = Depends(get_pipeline),
) -> Application:
    return pipeline.applications.get(application_id, user_id)


@router.post("/applications/{application_id}/confirm")
def confirm_application(
    application_id: str,
    user_id: str = Depends(get_user_id),
    pipeline: Pipeline = Depends(get_pipeline),
) -> Application:
    """Approve the reviewed documents and hand the application to the dispatcher."""
    return pipeline.applications.confirm(application_id, user_id)


@router.post("/applications/{application_id}/withdraw")
def withdraw_application(
    application_id: str,
    payload: Optional[WithdrawRequest] = Body(default=None),
    user_id: str = Depends(get_user_id),
    pipeline: Pipeline = Depends(get_pipeline),
) -> Application:
    reason = payload.reason if payload else None
    return pipeline.applications.withdraw(application_id, user_id, reason=reason)


@router.post("/applications/{application_id}/mark-submitted")
def mark_submitted(
    application_id: str,
    payload: Optional[MarkSubmittedRequest] = Body(default=None),
    user_id: str = Depends(get_user_id),
    pipeline: Pipeline = Depends(get_pipeline),
) -> Application:
    """Record a submission the user made outside the pipeline."""
    payload = payload or MarkSubmittedRequest()
    return pipeline.applications.mark_submitted(
        application_id, user_id, reference=payload.reference, notes=payload.notes
    )


@router.post("/applications/{application_id}/regenerate")
def regenerate_documents(
    application_id: str,
    user_id: str = Depends(get_user_id),
    pipeline: Pipeline = Depends(get_pipeline),
) -> Application:
    return pipeline.applications.regenerate(application_id, user_id)


@router.post("/applications/{application_id}/retry-submission")
def retry_submission(
    application_id: str,
    user_id: str = Depends(get_user_id),
    pipeline: Pipeline = Depends(get_pipeline),
) -> Application:
    return pipeline.applications.retry_submission(application_id, user_id)


@router.get("/applications/{application_id}/documents")
def list_documents(
    application_id: str,
    user_id: str = Depends(get_user_id),
    pipeline: Pipeline = Depends(get_pipeline),
) -> List[GeneratedDocument]:
    return pipeline.applications.documents(application_id, user_id)


@router.get("/applications/{application_id}/emails")
def list_emails(
    application_id: str,
    user_id: str = Depends(get_user_id),
    pipeline: Pipeline = Depends(get_pipeline),
) -> List[EmailRecord]:
    return pipeline.applications.emails(application_id, user_id)
