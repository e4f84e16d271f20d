"""
Lambda Worker Handlers for Stage Queues and the Discovery Schedule.

On AWS every stage queue (discovery, analysis, generation, dispatch) is an SQS
queue with this Lambda as its event source, and an EventBridge schedule calls
the scheduler handler once per tick.

The worker:
1. Parses each SQS record into a WorkItem
2. Runs it through the same worker boundary the local worker pool uses
   (StageWorkerPool.process), so error handling is identical
3. Reports records that hit an infrastructure failure as batch item failures,
   leaving them on the queue to be retried after the visibility timeout

Lambda Configuration:
    Event source mapping: one per stage queue, with ReportBatchItemFailures
    Timeout: 15 minutes (document generation waits on the reasoning provider)
"""

import json
from typing import Any, Dict, List

from jobpilot.api.utils.state_helpers import get_pipeline
from jobpilot.utils.logger import (
    clear_correlation_ids,
    configure_logging,
    get_logger,
    log_performance,
    set_correlation_id,
)
from jobpilot.utils.work_queue import WorkItem

logger = get_logger(__name__)


def worker_handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    """Process a batch of SQS stage messages.

    Args:
        event: SQS event with a "Records" list.
        context: Lambda context object.

    Returns:
        dict: {"batchItemFailures": [{"itemIdentifier": message_id}, ...]}
    """
    configure_logging(context)
    pipeline = get_pipeline()
    failures: List[Dict[str, str]] = []

    for record in event.get("Records", []):
        message_id = record.get("messageId", "")
        try:
            item = WorkItem.from_json(record["body"], record.get("receiptHandle"))
        except (ValueError, KeyError) as e:
            # Unreadable messages are dropped, a retry cannot fix them
            logger.error(
                "Dropping unreadable stage message",
                extra={
                    "extra_fields": {
                        "message_id": message_id,
                        "error": str(e),
                        "error_type": type(e).__name__,
                    }
                },
            )
            continue

        set_correlation_id(request_id=message_id)
        with log_performance(
            f"{item.stage}_stage", entity_id=item.entity_id, message_id=message_id
        ):
            ok = pipeline.workers.process(item)
        clear_correlation_ids()

        if not ok:
            failures.append({"itemIdentifier": message_id})

    if failures:
        logger.warning(
            "Stage batch finished with failures",
            extra={"extra_fields": {"failed": len(failures)}},
        )
    return {"batchItemFailures": failures}


def scheduler_handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    """Run one discovery scheduling tick (EventBridge schedule)."""
    configure_logging(context)
    pipeline = get_pipeline()
    enqueued = pipeline.orchestrator.tick()
    return {
        "statusCode": 200,
        "body": json.dumps({"enqueued_campaigns": enqueued}),
    }
