"""
AWS Lambda Handler for the FastAPI Application and the Pipeline Workers.

This module provides the main Lambda entry point that routes incoming events to:
1. FastAPI application (via Mangum) for HTTP API Gateway/Function URL requests
2. Stage worker handler for SQS stage queue messages
3. Scheduler handler for the EventBridge discovery schedule

The handler detects the event type from its structure:
- Events with SQS "Records" → Stage worker handler
- Events with source "aws.events" → Scheduler handler
- Everything else → API Gateway/Function URL → FastAPI app

Lambda Configuration:
    Handler: lambda_handler.handler
    Runtime: Python 3.12
    Memory: 1024 MB minimum (recommended for LLM operations)

Environment Variables:
    OPENAI_API_KEY: OpenAI API key for LLM operations
    STORE_BACKEND / DYNAMODB_TABLE_PREFIX: Pipeline state storage
    QUEUE_BACKEND / SQS_QUEUE_URL_<STAGE>: Stage queues
    S3_DOCUMENTS_BUCKET: S3 bucket name for rendered documents
    SES_FROM_EMAIL / EMAIL_ENABLED: Email submissions
    FRONTEND_URL: Frontend domain for CORS configuration (optional)
"""

from mangum import Mangum

from jobpilot.api.server import app
from jobpilot.utils.logger import configure_logging, get_logger
from lambda_worker import scheduler_handler, worker_handler

configure_logging()

logger = get_logger(__name__)
logger.info("Lambda handler initialized")

# Create Mangum handler to wrap FastAPI app for Lambda
api_handler = Mangum(
    app,
    lifespan="off",
    text_mime_types=[
        "application/json",
        "text/plain",
    ],
)


def _is_sqs_event(event) -> bool:
    records = event.get("Records") if isinstance(event, dict) else None
    return bool(records) and records[0].get("eventSource") == "aws:sqs"


def handler(event, context):
    """Main Lambda handler that routes incoming events to appropriate handlers.

    Args:
        event: Lambda event object. Structure varies by invocation type:
            - API Gateway: Contains "httpMethod"/"requestContext", "headers", "body"
            - SQS: Contains "Records" with eventSource "aws:sqs"
            - EventBridge schedule: Contains "source": "aws.events"
        context: Lambda context object providing runtime information.

    Returns:
        dict: Response dictionary. Format depends on handler.
    """
    if _is_sqs_event(event):
        logger.info("Routing to stage worker handler")
        return worker_handler(event, context)

    if isinstance(event, dict) and event.get("source") == "aws.events":
        logger.info("Routing to scheduler handler")
        return scheduler_handler(event, context)

    # Otherwise, route to FastAPI app (API Gateway/Function URL)
    logger.info("Routing to API handler")
    return api_handler(event, context)
