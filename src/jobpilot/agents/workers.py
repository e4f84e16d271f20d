"""
Stage Workers and the Discovery Scheduler.

StageWorkerPool runs a fixed number of threads per stage. Each thread pulls one
WorkItem at a time from its stage queue and passes it to the handler
(CampaignOrchestrator.handle). Stages are independent consumer groups, so a
slow generation stage never starves discovery.

Error handling at the worker boundary:
    ClaimConflictError   another worker got there first; acknowledged quietly
    PipelineError        stage-local failure, already reflected in the entity
                         status by the service; logged and acknowledged
    InfrastructureError  store or queue unavailable; the item is NOT
                         acknowledged and the whole pool stops so the process
                         can be restarted
"""

import threading
from typing import Any, Callable, Dict, List, Optional

from jobpilot.config.settings import (
    ANALYSIS_WORKERS,
    DISCOVERY_WORKERS,
    DISPATCH_WORKERS,
    GENERATION_WORKERS,
    SCHEDULER_TICK_SECONDS,
)
from jobpilot.utils.exceptions import (
    ClaimConflictError,
    InfrastructureError,
    PipelineError,
)
from jobpilot.utils.logger import clear_correlation_ids, get_logger
from jobpilot.utils.work_queue import STAGES, WorkItem

logger = get_logger(__name__)

DEFAULT_WORKER_COUNTS = {
    "discovery": DISCOVERY_WORKERS,
    "analysis": ANALYSIS_WORKERS,
    "generation": GENERATION_WORKERS,
    "dispatch": DISPATCH_WORKERS,
}


class StageWorkerPool:
    """Thread pool with one consumer group per stage.

    Args:
        work_queue: Per-stage work queues.
        handler: Callable that processes one WorkItem.
        worker_counts: Threads per stage (defaults from settings).
        poll_timeout: Seconds a worker blocks on an empty queue before
            re-checking the stop flag.
    """

    def __init__(
        self,
        work_queue: Any,
        handler: Callable[[WorkItem], Any],
        worker_counts: Optional[Dict[str, int]] = None,
        poll_timeout: float = 1.0,
    ) -> None:
        self.work_queue = work_queue
        self.handler = handler
        self.worker_counts = {**DEFAULT_WORKER_COUNTS, **(worker_counts or {})}
        self.poll_timeout = poll_timeout
        self.fatal_error: Optional[BaseException] = None
        self._stop_event = threading.Event()
        self._threads: List[threading.Thread] = []

    @property
    def running(self) -> bool:
        return any(thread.is_alive() for thread in self._threads)

    def start(self) -> None:
        self._stop_event.clear()
        for stage in STAGES:
            for index in range(self.worker_counts.get(stage, 0)):
                thread = threading.Thread(
                    target=self._run,
                    args=(stage,),
                    name=f"{stage}-worker-{index}",
                    daemon=True,
                )
                thread.start()
                self._threads.append(thread)
        logger.info(
            "Started stage workers",
            extra={"extra_fields": {"worker_counts": self.worker_counts}},
        )

    def stop(self, timeout: Optional[float] = None) -> None:
        self._stop_event.set()
        for thread in self._threads:
            thread.join(timeout)
        self._threads = [t for t in self._threads if t.is_alive()]
        logger.info("Stopped stage workers")

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until the pool is stopped. Returns True if it stopped."""
        return self._stop_event.wait(timeout)

    def process(self, item: WorkItem) -> bool:
        """Run one item through the handler and acknowledge it.

        Returns:
            bool: False if an infrastructure failure stopped the pool.
        """
        try:
            self.handler(item)
        except ClaimConflictError as e:
            logger.debug(
                "Lost claim, skipping work item",
                extra={
                    "extra_fields": {
                        "stage": item.stage,
                        "entity_id": item.entity_id,
                        "error": str(e),
                    }
                },
            )
        except InfrastructureError as e:
            logger.critical(
                "Infrastructure failure, stopping workers",
                extra={
                    "extra_fields": {
                        "stage": item.stage,
                        "entity_id": item.entity_id,
                        "error": str(e),
                        "error_type": type(e).__name__,
                    }
                },
                exc_info=True,
            )
            self.fatal_error = e
            self._stop_event.set()
            return False
        except PipelineError as e:
            logger.error(
                "Work item failed",
                extra={
                    "extra_fields": {
                        "stage": item.stage,
                        "entity_id": item.entity_id,
                        "error": str(e),
                        "error_type": type(e).__name__,
                    }
                },
                exc_info=True,
            )
        except Exception as e:
            logger.error(
                "Unexpected error processing work item",
                extra={
                    "extra_fields": {
                        "stage": item.stage,
                        "entity_id": item.entity_id,
                        "error": str(e),
                        "error_type": type(e).__name__,
                    }
                },
                exc_info=True,
            )
        finally:
            clear_correlation_ids()

        self.work_queue.ack(item)
        return True

    # ------------------------------
    # Internal functions
    # ------------------------------
    def _run(self, stage: str) -> None:
        while not self._stop_event.is_set():
            try:
                item = self.work_queue.get(stage, timeout=self.poll_timeout)
            except InfrastructureError as e:
                logger.critical(
                    "Work queue unavailable, stopping workers",
                    extra={"extra_fields": {"stage": stage, "error": str(e)}},
                )
                self.fatal_error = e
                self._stop_event.set()
                return
            if item is None:
                continue
            self.process(item)


class DiscoveryScheduler:
    """Calls `orchestrator.tick()` every `interval` seconds on its own thread."""

    def __init__(self, orchestrator: Any, interval: float = SCHEDULER_TICK_SECONDS):
        self.orchestrator = orchestrator
        self.interval = interval
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def start(self) -> None:
        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._run, name="discovery-scheduler", daemon=True
        )
        self._thread.start()

    def stop(self, timeout: Optional[float] = None) -> None:
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout)

    def _run(self) -> None:
        while not self._stop_event.is_set():
            try:
                self.orchestrator.tick()
            except Exception as e:
                # The next tick retries; an unreachable store shows up here
                logger.error(
                    "Scheduler tick failed",
                    extra={
                        "extra_fields": {
                            "error": str(e),
                            "error_type": type(e).__name__,
                        }
                    },
                    exc_info=True,
                )
            self._stop_event.wait(self.interval)
