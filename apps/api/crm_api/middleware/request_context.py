from __future__ import annotations

import uuid
from dataclasses import dataclass

from opentelemetry import trace
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from crm_api.context import begin_request, end_request


CORRELATION_HEADER = "x-correlation-id"
REQUEST_ID_HEADER = "x-request-id"


@dataclass(frozen=True, slots=True)
class RequestContext:
    request_id: str
    correlation_id: str
    client_address: str | None


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Outermost middleware: names the request before anything can log or fail.

    The caller's ``X-Correlation-Id`` is reused when present so a client can
    follow one operation across several requests; the request id is always
    fresh. Both are echoed back on every response, including error responses.
    """

    async def dispatch(self, request: Request, call_next):  # type: ignore[no-untyped-def]
        correlation_id = request.headers.get(CORRELATION_HEADER) or str(uuid.uuid4())
        context = RequestContext(
            request_id=str(uuid.uuid4()),
            correlation_id=correlation_id,
            client_address=request.client.host if request.client is not None else None,
        )
        request.state.context = context

        span = trace.get_current_span()
        if span.is_recording():
            span.set_attribute("correlation_id", correlation_id)

        token = begin_request(correlation_id)
        try:
            response = await call_next(request)
        finally:
            end_request(token)

        response.headers[CORRELATION_HEADER] = correlation_id
        response.headers[REQUEST_ID_HEADER] = context.request_id
        return response
