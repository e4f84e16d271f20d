"""
Request Logging Middleware.

Every request gets a request id (taken from X-Request-ID or the API Gateway
trace header, generated otherwise). The id is set as the correlation id for
the request's log records and echoed back in the X-Request-ID response header,
so the dashboard can quote it when reporting a failed action.
"""

import time
import uuid
from typing import Any

from fastapi import Request

from jobpilot.utils.logger import clear_correlation_ids, get_logger, set_correlation_id

logger = get_logger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"


def _request_id(request: Request) -> str:
    trace_id = request.headers.get("X-Amzn-Trace-Id", "")
    return (
        request.headers.get(REQUEST_ID_HEADER)
        or (trace_id.split("Root=")[-1].split(";")[0] if trace_id else "")
        or str(uuid.uuid4())
    )


async def log_requests_middleware(request: Request, call_next: Any) -> Any:
    """Log the request, run it, then log status and duration.

    Args:
        request: Incoming request.
        call_next: Next middleware or route handler.

    Returns:
        Response: The handler's response with X-Request-ID set.
    """
    start_time = time.time()
    clear_correlation_ids()
    request_id = _request_id(request)
    set_correlation_id(request_id=request_id)

    fields = {
        "http_method": request.method,
        "http_path": request.url.path,
        "user_id": request.headers.get("X-User-Id"),
    }
    logger.info(
        "HTTP request",
        extra={
            "extra_fields": {
                **fields,
                "client_ip": request.client.host if request.client else None,
            }
        },
    )

    response = await call_next(request)
    duration_ms = round((time.time() - start_time) * 1000, 2)

    response_fields = {
        **fields,
        "http_status_code": response.status_code,
        "duration_ms": duration_ms,
    }
    if response.status_code >= 500:
        logger.error("HTTP response", extra={"extra_fields": response_fields})
    else:
        logger.info("HTTP response", extra={"extra_fields": response_fields})

    response.headers[REQUEST_ID_HEADER] = request_id
    return response
