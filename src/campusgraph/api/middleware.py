"""API middleware for request tracing and access logging."""

import time
from uuid import uuid4

from fastapi import FastAPI, Request, Response
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from ..logging import get_context_logger, log_api_request

logger = get_context_logger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"
# Client-supplied ids longer than this are replaced
MAX_REQUEST_ID_LENGTH = 128


class RequestIdMiddleware(BaseHTTPMiddleware):
    """Tag each request with an id and write one access log line."""

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        request_id = request.headers.get(REQUEST_ID_HEADER, "")
        if not request_id or len(request_id) > MAX_REQUEST_ID_LENGTH:
            request_id = uuid4().hex
        request.state.request_id = request_id

        started = time.perf_counter()
        response = await call_next(request)
        elapsed_ms = (time.perf_counter() - started) * 1000

        response.headers[REQUEST_ID_HEADER] = request_id
        log_api_request(
            request.method,
            request.url.path,
            response.status_code,
            elapsed_ms,
            request_id=request_id,
        )
        return response


def setup_middleware(app: FastAPI) -> None:
    app.add_middleware(RequestIdMiddleware)
    logger.debug("Request id middleware installed")
