"""
Per-Stage Work Queues.

The pipeline has four stages, each with its own queue and its own consumer
group (see agents.workers):

    discovery  -> campaign id
    analysis   -> job offer id
    generation -> application id
    dispatch   -> application id

A message only names the entity. The worker re-reads the entity and claims it
by status, so duplicate or stale messages are harmless: the claim fails and
the message is acknowledged.

Backends:
    - InMemoryWorkQueue: queue.Queue per stage (local development, tests)
    - SQSWorkQueue: one SQS queue per stage (AWS)

Environment Variables:
    QUEUE_BACKEND: "memory" (default) or "sqs"
    SQS_QUEUE_URL_<STAGE>: Queue URL per stage for the SQS backend
"""

import json
import queue
from dataclasses import dataclass
from typing import Any, Dict, Optional

from botocore.exceptions import BotoCoreError, ClientError

from jobpilot.config.settings import QUEUE_BACKEND, SQS_QUEUE_URLS
from jobpilot.utils.exceptions import InfrastructureError
from jobpilot.utils.logger import get_logger

logger = get_logger(__name__)

STAGES = ("discovery", "analysis", "generation", "dispatch")


@dataclass
class WorkItem:
    stage: str
    entity_id: str
    campaign_id: Optional[str] = None
    # Backend handle used to acknowledge the message (SQS receipt handle)
    receipt: Optional[str] = None

    def to_json(self) -> str:
        return json.dumps(
            {
                "stage": self.stage,
                "entity_id": self.entity_id,
                "campaign_id": self.campaign_id,
            }
        )

    @classmethod
    def from_json(cls, body: str, receipt: Optional[str] = None) -> "WorkItem":
        data = json.loads(body)
        return cls(
            stage=data["stage"],
            entity_id=data["entity_id"],
            campaign_id=data.get("campaign_id"),
            receipt=receipt,
        )


def _check_stage(stage: str) -> None:
    if stage not in STAGES:
        raise ValueError(f"Unknown stage: {stage}")


class InMemoryWorkQueue:
    """One unbounded queue.Queue per stage."""

    def __init__(self) -> None:
        self._queues: Dict[str, "queue.Queue[WorkItem]"] = {
            stage: queue.Queue() for stage in STAGES
        }

    def put(
        self, stage: str, entity_id: str, campaign_id: Optional[str] = None
    ) -> None:
        _check_stage(stage)
        self._queues[stage].put(WorkItem(stage, entity_id, campaign_id))

    def get(self, stage: str, timeout: float = 1.0) -> Optional[WorkItem]:
        """Block up to `timeout` seconds for the next item, or return None."""
        try:
            return self._queues[stage].get(timeout=timeout)
        except queue.Empty:
            return None

    def ack(self, item: WorkItem) -> None:
        self._queues[item.stage].task_done()

    def depths(self) -> Dict[str, int]:
        return {stage: q.qsize() for stage, q in self._queues.items()}

    def join(self, stage: str) -> None:
        """Block until every item put on `stage` has been acknowledged."""
        self._queues[stage].join()


class SQSWorkQueue:
    """One SQS queue per stage.

    Unacknowledged messages become visible again after the queue's visibility
    timeout, so a crashed worker's item is retried by another worker.

    Args:
        queue_urls: Queue URL per stage.
        sqs_client: Optional boto3 SQS client (created lazily otherwise).
    """

    def __init__(
        self,
        queue_urls: Optional[Dict[str, str]] = None,
        sqs_client: Any = None,
    ) -> None:
        self.queue_urls = queue_urls or SQS_QUEUE_URLS
        self._sqs_client = sqs_client

    def put(
        self, stage: str, entity_id: str, campaign_id: Optional[str] = None
    ) -> None:
        _check_stage(stage)
        item = WorkItem(stage, entity_id, campaign_id)
        try:
            self._client().send_message(
                QueueUrl=self._url(stage), MessageBody=item.to_json()
            )
        except (ClientError, BotoCoreError) as e:
            raise self._unavailable("send_message", stage, e) from e

    def get(self, stage: str, timeout: float = 1.0) -> Optional[WorkItem]:
        try:
            response = self._client().receive_message(
                QueueUrl=self._url(stage),
                MaxNumberOfMessages=1,
                WaitTimeSeconds=max(0, min(20, int(timeout))),
            )
        except (ClientError, BotoCoreError) as e:
            raise self._unavailable("receive_message", stage, e) from e

        messages = response.get("Messages", [])
        if not messages:
            return None
        message = messages[0]
        try:
            return WorkItem.from_json(message["Body"], message["ReceiptHandle"])
        except (ValueError, KeyError) as e:
            logger.error(
                "Dropping unreadable queue message",
                extra={
                    "extra_fields": {
                        "stage": stage,
                        "error": str(e),
                        "error_type": type(e).__name__,
                    }
                },
            )
            self._delete(stage, message["ReceiptHandle"])
            return None

    def ack(self, item: WorkItem) -> None:
        if item.receipt:
            self._delete(item.stage, item.receipt)

    def depths(self) -> Dict[str, int]:
        depths = {}
        for stage in STAGES:
            try:
                response = self._client().get_queue_attributes(
                    QueueUrl=self._url(stage),
                    AttributeNames=["ApproximateNumberOfMessages"],
                )
            except (ClientError, BotoCoreError) as e:
                raise self._unavailable("get_queue_attributes", stage, e) from e
            attributes = response.get("Attributes", {})
            depths[stage] = int(attributes.get("ApproximateNumberOfMessages", 0))
        return depths

    # ------------------------------
    # Internal functions
    # ------------------------------
    def _delete(self, stage: str, receipt: str) -> None:
        try:
            self._client().delete_message(
                QueueUrl=self._url(stage), ReceiptHandle=receipt
            )
        except (ClientError, BotoCoreError) as e:
            raise self._unavailable("delete_message", stage, e) from e

    def _url(self, stage: str) -> str:
        url = self.queue_urls.get(stage)
        if not url:
            raise InfrastructureError(f"No SQS queue URL configured for {stage}")
        return url

    def _client(self) -> Any:
        if self._sqs_client is None:
            import boto3

            self._sqs_client = boto3.client("sqs")
        return self._sqs_client

    def _unavailable(
        self, operation: str, stage: str, error: Exception
    ) -> InfrastructureError:
        logger.error(
            "SQS operation failed",
            extra={
                "extra_fields": {
                    "operation": operation,
                    "stage": stage,
                    "error": str(error),
                    "error_type": type(error).__name__,
                }
            },
            exc_info=True,
        )
        return InfrastructureError(f"SQS {operation} failed for {stage}: {error}")


def create_work_queue(backend: str = QUEUE_BACKEND) -> Any:
    if backend == "sqs":
        return SQSWorkQueue()
    if backend == "memory":
        return InMemoryWorkQueue()
    raise ValueError(f"Unknown queue backend: {backend}")
