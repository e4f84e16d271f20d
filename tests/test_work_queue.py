# ---------- TESTS FOR WORK QUEUES ----------

import json
from unittest.mock import MagicMock

import pytest
from botocore.exceptions import ClientError

from jobpilot.utils.exceptions import InfrastructureError
from jobpilot.utils.work_queue import (
    InMemoryWorkQueue,
    SQSWorkQueue,
    WorkItem,
    create_work_queue,
)

# --- MOCK DATA ---

QUEUE_URLS = {
    stage: f"https://sqs.eu-north-1.amazonaws.com/123456789012/jobpilot-{stage}"
    for stage in ("discovery", "analysis", "generation", "dispatch")
}


@pytest.fixture
def mock_sqs_client():
    return MagicMock()


@pytest.fixture
def sqs_queue(mock_sqs_client):
    return SQSWorkQueue(queue_urls=QUEUE_URLS, sqs_client=mock_sqs_client)


# --- TESTS ---


def test_in_memory_queue_is_per_stage():
    """Test that items are delivered only to their own stage in FIFO order."""
    work_queue = InMemoryWorkQueue()
    work_queue.put("analysis", "offer-1", "c-1")
    work_queue.put("analysis", "offer-2", "c-1")

    assert work_queue.get("discovery", timeout=0.01) is None
    first = work_queue.get("analysis", timeout=0.01)
    assert (first.entity_id, first.campaign_id) == ("offer-1", "c-1")
    assert work_queue.depths()["analysis"] == 1


def test_unknown_stage_rejected():
    """Test that only the four pipeline stages are accepted."""
    with pytest.raises(ValueError):
        InMemoryWorkQueue().put("cleanup", "x")


def test_work_item_json():
    """Test that the receipt handle is not part of the message body."""
    item = WorkItem("dispatch", "app-1", "c-1", receipt="r-1")

    assert json.loads(item.to_json()) == {
        "stage": "dispatch",
        "entity_id": "app-1",
        "campaign_id": "c-1",
    }
    assert WorkItem.from_json(item.to_json(), "r-2").receipt == "r-2"


def test_sqs_put_sends_to_stage_queue(sqs_queue, mock_sqs_client):
    """Test that items are sent to the queue configured for their stage."""
    sqs_queue.put("generation", "app-1", "c-1")

    kwargs = mock_sqs_client.send_message.call_args[1]
    assert kwargs["QueueUrl"] == QUEUE_URLS["generation"]
    assert json.loads(kwargs["MessageBody"])["entity_id"] == "app-1"


def test_sqs_get_and_ack(sqs_queue, mock_sqs_client):
    """Test that received messages carry their receipt handle for deletion."""
    body = WorkItem("analysis", "offer-1", "c-1").to_json()
    mock_sqs_client.receive_message.return_value = {
        "Messages": [{"Body": body, "ReceiptHandle": "receipt-1"}]
    }

    item = sqs_queue.get("analysis", timeout=30)
    sqs_queue.ack(item)

    assert item.entity_id == "offer-1"
    assert mock_sqs_client.receive_message.call_args[1]["WaitTimeSeconds"] == 20
    mock_sqs_client.delete_message.assert_called_once_with(
        QueueUrl=QUEUE_URLS["analysis"], ReceiptHandle="receipt-1"
    )


def test_sqs_empty_receive(sqs_queue, mock_sqs_client):
    """Test that an empty receive returns None."""
    mock_sqs_client.receive_message.return_value = {}

    assert sqs_queue.get("dispatch") is None


def test_sqs_drops_unreadable_message(sqs_queue, mock_sqs_client):
    """Test that a malformed message is deleted instead of poisoning the queue."""
    mock_sqs_client.receive_message.return_value = {
        "Messages": [{"Body": "not json", "ReceiptHandle": "receipt-9"}]
    }

    assert sqs_queue.get("analysis") is None
    mock_sqs_client.delete_message.assert_called_once()


def test_sqs_errors_are_infrastructure_errors(sqs_queue, mock_sqs_client):
    """Test that SQS client errors become InfrastructureError."""
    mock_sqs_client.send_message.side_effect = ClientError(
        {"Error": {"Code": "AWS.SimpleQueueService.NonExistentQueue", "Message": ""}},
        "SendMessage",
    )

    with pytest.raises(InfrastructureError):
        sqs_queue.put("discovery", "c-1")


def test_sqs_missing_queue_url(mock_sqs_client):
    """Test that a stage without a configured URL is an infrastructure error."""
    work_queue = SQSWorkQueue(
        queue_urls={"discovery": QUEUE_URLS["discovery"]}, sqs_client=mock_sqs_client
    )

    with pytest.raises(InfrastructureError):
        work_queue.put("dispatch", "app-1")


def test_sqs_depths(sqs_queue, mock_sqs_client):
    """Test that depths read ApproximateNumberOfMessages per stage."""
    mock_sqs_client.get_queue_attributes.return_value = {
        "Attributes": {"ApproximateNumberOfMessages": "4"}
    }

    assert sqs_queue.depths() == {
        "discovery": 4,
        "analysis": 4,
        "generation": 4,
        "dispatch": 4,
    }


def test_create_work_queue():
    """Test backend selection."""
    assert isinstance(create_work_queue("memory"), InMemoryWorkQueue)
    assert isinstance(create_work_queue("sqs"), SQSWorkQueue)
    with pytest.raises(ValueError):
        create_work_queue("redis")
