"""
jobpilot Campaign Execution Pipeline.

This module is the composition root. `build_pipeline` wires the store, the
stage queues and the pipeline services together:

1. SearcherService: Discovers postings from the campaign's job sources
2. ScorerService: Embedding pre-filter, structured match analysis, threshold gate
3. GeneratorService: Tailored CV and cover letter, rendered to DOCX
4. DispatcherService: Submits (or, in test mode, simulates) the application
5. CampaignOrchestrator: Campaign lifecycle, scheduling and stage handlers
6. ApplicationService: User actions on applications

`run()` starts one worker pool per stage plus the discovery scheduler and
blocks until interrupted or until an infrastructure failure stops the workers.

To run the workers locally:
    python -m jobpilot.main
"""

import sys
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from jobpilot.agents.applications import ApplicationService
from jobpilot.agents.dispatcher import DispatcherService
from jobpilot.agents.generator import GeneratorService
from jobpilot.agents.orchestrator import CampaignOrchestrator
from jobpilot.agents.scorer import ScorerService
from jobpilot.agents.searcher import SearcherService
from jobpilot.agents.workers import DiscoveryScheduler, StageWorkerPool
from jobpilot.utils.action_log import ActionLog
from jobpilot.utils.email_service import SESEmailTransport
from jobpilot.utils.llms import OpenAIEmbeddingProvider, OpenAIReasoningProvider
from jobpilot.utils.logger import configure_logging, get_logger
from jobpilot.utils.profile_provider import StoreProfileProvider
from jobpilot.utils.rate_limiter import ProviderLimiter, SourceRateLimiter
from jobpilot.utils.renderer import DocxRenderer
from jobpilot.utils.s3_manager import ArtifactStore
from jobpilot.utils.sources import DEFAULT_SOURCES, fetch_candidates
from jobpilot.utils.state_manager import get_store
from jobpilot.utils.submission_clients import submit_via_api, submit_via_form
from jobpilot.utils.work_queue import create_work_queue

logger = get_logger(__name__)


@dataclass
class Pipeline:
    store: Any
    action_log: ActionLog
    work_queue: Any
    orchestrator: CampaignOrchestrator
    applications: ApplicationService
    workers: StageWorkerPool


def build_pipeline(
    store: Any = None,
    work_queue: Any = None,
    embedding_provider: Any = None,
    reasoning_provider: Any = None,
    profile_provider: Any = None,
    renderer: Any = None,
    artifact_store: Any = None,
    email_transport: Any = None,
    fetch: Callable[..., Any] = fetch_candidates,
    api_submit: Callable[..., str] = submit_via_api,
    form_submit: Callable[..., str] = submit_via_form,
    worker_counts: Optional[Dict[str, int]] = None,
    **tunables: Any,
) -> Pipeline:
    """Wire up a complete pipeline.

    Every collaborator can be injected; anything omitted is built from
    settings (store and queue backends, OpenAI providers, S3 or local
    artifacts, SES).

    Args:
        tunables: Optional overrides passed to the services:
            prefilter_floor, form_automation_enabled, max_per_day,
            max_per_week, discovery_interval, requeue_after, claim_lease,
            mock_enabled.

    Returns:
        Pipeline: The wired services. Workers are created but not started.
    """
    store = store if store is not None else get_store()
    work_queue = work_queue if work_queue is not None else create_work_queue()
    action_log = ActionLog(store)
    artifact_store = artifact_store or ArtifactStore()
    profile_provider = profile_provider or StoreProfileProvider(store)
    reasoning_provider = reasoning_provider or OpenAIReasoningProvider()
    limiter = ProviderLimiter()

    def _pick(*names: str) -> Dict[str, Any]:
        return {name: tunables[name] for name in names if name in tunables}

    searcher = SearcherService(
        store,
        action_log,
        rate_limiter=SourceRateLimiter(),
        fetch=fetch,
        **_pick("mock_enabled"),
    )
    scorer = ScorerService(
        store,
        action_log,
        embedding_provider or OpenAIEmbeddingProvider(),
        reasoning_provider,
        profile_provider,
        limiter=limiter,
        **_pick("prefilter_floor"),
    )
    generator = GeneratorService(
        store,
        action_log,
        reasoning_provider,
        profile_provider,
        renderer or DocxRenderer(artifact_store),
        limiter=limiter,
    )
    dispatcher = DispatcherService(
        store,
        action_log,
        email_transport or SESEmailTransport(),
        artifact_store,
        profile_provider,
        api_submit=api_submit,
        form_submit=form_submit,
        **_pick("form_automation_enabled", "max_per_day", "max_per_week"),
    )
    orchestrator = CampaignOrchestrator(
        store,
        action_log,
        work_queue,
        searcher,
        scorer,
        generator,
        dispatcher,
        **_pick("discovery_interval", "requeue_after", "claim_lease"),
    )
    return Pipeline(
        store=store,
        action_log=action_log,
        work_queue=work_queue,
        orchestrator=orchestrator,
        applications=ApplicationService(store, action_log, work_queue),
        workers=StageWorkerPool(work_queue, orchestrator.handle, worker_counts),
    )


def ensure_default_sources(store: Any) -> int:
    """Insert the built-in job sources that are not configured yet."""
    added = 0
    for source in DEFAULT_SOURCES:
        if store.put("sources", source, if_absent=True):
            added += 1
    if added:
        logger.info(
            "Added default job sources",
            extra={"extra_fields": {"added": added}},
        )
    return added


def run() -> int:
    """Run stage workers and the discovery scheduler until interrupted."""
    configure_logging()
    pipeline = build_pipeline()
    ensure_default_sources(pipeline.store)

    scheduler = DiscoveryScheduler(pipeline.orchestrator)
    pipeline.workers.start()
    scheduler.start()
    logger.info("jobpilot pipeline running")

    try:
        pipeline.workers.wait()
    except KeyboardInterrupt:
        logger.info("Shutting down")
    finally:
        scheduler.stop(timeout=5)
        pipeline.workers.stop(timeout=5)

    if pipeline.workers.fatal_error is not None:
        logger.critical(
            "Pipeline stopped after an infrastructure failure",
            extra={"extra_fields": {"error": str(pipeline.workers.fatal_error)}},
        )
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(run())
