"""
Correlation ID middleware
=========================
Every request carries an X-Correlation-ID (taken from the client or freshly
generated) so that the intake call, the queued job and the worker logs for a
case can be matched up.
"""
from __future__ import annotations

import uuid
import logging
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

logger = logging.getLogger(__name__)

CORRELATION_HEADER = "X-Correlation-ID"


class CorrelationMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next) -> Response:
        correlation_id = request.headers.get(CORRELATION_HEADER) or str(uuid.uuid4())
        request.state.correlation_id = correlation_id

        logger.info(
            "%s %s [%s]", request.method, request.url.path, correlation_id,
            extra={"correlation_id": correlation_id},
        )

        response = await call_next(request)
        response.headers[CORRELATION_HEADER] = correlation_id
        return response
