# ---------- TESTS FOR LAMBDA HANDLERS ----------

import json
from unittest.mock import MagicMock, patch

import pytest

from jobpilot.config.entity_schemas import SearchCriteria
from jobpilot.utils.exceptions import InfrastructureError
from jobpilot.utils.work_queue import WorkItem

import lambda_handler
import lambda_worker

from conftest import USER_ID, manual_source


def sqs_record(message_id, body):
    return {
        "messageId": message_id,
        "receiptHandle": f"receipt-{message_id}",
        "body": body,
        "eventSource": "aws:sqs",
    }


@pytest.fixture
def active_campaign(pipeline):
    pipeline.store.put("sources", manual_source())
    campaign = pipeline.orchestrator.create(
        USER_ID,
        {
            "name": "Python roles",
            "criteria": SearchCriteria(target_roles=["Python Developer"]),
            "source_ids": ["manual"],
        },
    )
    return pipeline.orchestrator.start(campaign.id)


# --- TESTS ---


def test_worker_handler_processes_records(pipeline, active_campaign):
    """Test that SQS records run through the stage worker boundary."""
    event = {
        "Records": [
            sqs_record(
                "m-1",
                WorkItem("discovery", active_campaign.id, active_campaign.id).to_json(),
            )
        ]
    }

    with patch("lambda_worker.get_pipeline", return_value=pipeline):
        result = lambda_worker.worker_handler(event, None)

    assert result == {"batchItemFailures": []}
    assert len(pipeline.orchestrator.list_job_offers(active_campaign.id)) == 3


def test_worker_handler_reports_infrastructure_failures(pipeline):
    """Test that records hit by an infrastructure failure are left on the queue."""
    pipeline.workers.handler = MagicMock(
        side_effect=[InfrastructureError("DynamoDB unavailable"), None]
    )
    event = {
        "Records": [
            sqs_record("m-1", WorkItem("analysis", "offer-1").to_json()),
            sqs_record("m-2", WorkItem("analysis", "offer-2").to_json()),
            sqs_record("m-3", "not json"),
        ]
    }

    with patch("lambda_worker.get_pipeline", return_value=pipeline):
        result = lambda_worker.worker_handler(event, None)

    assert result == {"batchItemFailures": [{"itemIdentifier": "m-1"}]}
    assert pipeline.workers.handler.call_count == 2


def test_scheduler_handler_ticks(pipeline):
    """Test that the scheduler handler runs one tick and reports what it enqueued."""
    pipeline.orchestrator.tick = MagicMock(return_value=["c-1"])

    with patch("lambda_worker.get_pipeline", return_value=pipeline):
        result = lambda_worker.scheduler_handler({"source": "aws.events"}, None)

    assert result["statusCode"] == 200
    assert json.loads(result["body"]) == {"enqueued_campaigns": ["c-1"]}


@patch("lambda_handler.worker_handler", return_value={"batchItemFailures": []})
def test_handler_routes_sqs_events(mock_worker_handler):
    """Test that SQS events go to the worker handler."""
    event = {"Records": [sqs_record("m-1", "{}")]}

    lambda_handler.handler(event, None)

    mock_worker_handler.assert_called_once_with(event, None)


@patch("lambda_handler.scheduler_handler", return_value={"statusCode": 200})
def test_handler_routes_schedule_events(mock_scheduler_handler):
    """Test that EventBridge events go to the scheduler handler."""
    lambda_handler.handler({"source": "aws.events"}, None)

    mock_scheduler_handler.assert_called_once()


@patch("lambda_handler.api_handler", return_value={"statusCode": 200})
def test_handler_routes_http_events(mock_api_handler):
    """Test that everything else goes to the FastAPI app."""
    event = {"requestContext": {"http": {"method": "GET"}}, "rawPath": "/api/health"}

    lambda_handler.handler(event, None)

    mock_api_handler.assert_called_once_with(event, None)
