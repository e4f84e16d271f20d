"""
Pipeline Dependency Helpers.

FastAPI dependencies shared by the routes: the process-wide Pipeline and the
caller's user id. Authentication is handled in front of this service; the
caller's identity arrives in the X-User-Id header.
"""

import threading
from typing import Optional

from fastapi import Header, HTTPException, status

from jobpilot.main import Pipeline, build_pipeline, ensure_default_sources

_pipeline: Optional[Pipeline] = None
_pipeline_lock = threading.Lock()


def get_pipeline() -> Pipeline:
    """Get or create the process-wide pipeline using lazy initialization."""
    global _pipeline
    with _pipeline_lock:
        if _pipeline is None:
            _pipeline = build_pipeline()
            ensure_default_sources(_pipeline.store)
    return _pipeline


def get_user_id(x_user_id: Optional[str] = Header(default=None)) -> str:
    """Return the caller's user id.

    Raises:
        HTTPException 400: If the X-User-Id header is missing or blank.
    """
    if not x_user_id or not x_user_id.strip():
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="X-User-Id header is required",
        )
    return x_user_id.strip()
