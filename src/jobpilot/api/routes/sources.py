"""
Job Source API Routes.

Job sources are shared configuration: every campaign either names the sources
it uses or uses all enabled ones.
"""

from typing import List

from fastapi import APIRouter, Depends

from jobpilot.api.utils.state_helpers import get_pipeline, get_user_id
from jobpilot.config.entity_schemas import SourceConfig
from jobpilot.config.request_schemas import SourceUpsert
from jobpilot.main import Pipeline
from jobpilot.utils.logger import get_logger

logger = get_logger(__name__)

router = APIRouter(prefix="/api", tags=["sources"])


@router.get("/sources")
def list_sources(
    user_id: str = Depends(get_user_id),
    pipeline: Pipeline = Depends(get_pipeline),
) -> List[SourceConfig]:
    return sorted(pipeline.store.query("sources"), key=lambda s: s.id)


@router.put("/sources/{source_id}")
def upsert_source(
    source_id: str,
    payload: SourceUpsert,
    user_id: str = Depends(get_user_id),
    pipeline: Pipeline = Depends(get_pipeline),
) -> SourceConfig:
    """Create or replace a job source configuration."""
    existing = pipeline.store.get("sources", source_id)
    fields = payload.model_dump()
    if existing is not None:
        fields["created_at"] = existing.created_at
    source = SourceConfig(id=source_id, **fields)
    pipeline.store.put("sources", source)
    logger.info(
        "Job source saved",
        extra={
            "extra_fields": {
                "source_id": source.id,
                "type": source.type.value,
                "enabled": source.enabled,
                "created": existing is None,
                "user_id": user_id,
            }
        },
    )
    return source
