"""
Health Check Route.
"""

from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse

from jobpilot.api.utils.state_helpers import get_pipeline
from jobpilot.main import Pipeline
from jobpilot.utils.exceptions import InfrastructureError

router = APIRouter(prefix="/api", tags=["health"])


@router.get("/health")
def health(pipeline: Pipeline = Depends(get_pipeline)) -> JSONResponse:
    """Liveness plus the depth of every stage queue."""
    try:
        depths = pipeline.work_queue.depths()
    except InfrastructureError as e:
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"status": "unhealthy", "error": str(e)},
        )
    return JSONResponse(
        content={
            "status": "healthy",
            "store": type(pipeline.store).__name__,
            "queues": depths,
            "pending_action_log_entries": pipeline.action_log.pending_count,
        }
    )
