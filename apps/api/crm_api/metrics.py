from __future__ import annotations

import re

from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest
from starlette.requests import Request


http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "path", "status"],
)

http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "path"],
)

auth_tokens_issued_total = Counter(
    "auth_tokens_issued_total",
    "Tokens issued by type",
    ["token_type"],
)

auth_failures_total = Counter(
    "auth_failures_total",
    "Authentication and token failures by reason",
    ["reason"],
)

auth_degraded_total = Counter(
    "auth_degraded_total",
    "Requests authenticated from token claims because the user store was unavailable",
)

store_retries_total = Counter(
    "store_retries_total",
    "Record store retries after transient failures",
    ["operation"],
)

store_condition_failures_total = Counter(
    "store_condition_failures_total",
    "Conditional writes rejected by the record store",
    ["table", "operation"],
)

visibility_hidden_reads_total = Counter(
    "visibility_hidden_reads_total",
    "Records hidden from a caller by the tenant/visibility predicate",
    ["resource"],
)


_UUID_RE = re.compile(
    r"\b[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[1-5][0-9a-fA-F]{3}-[89abAB][0-9a-fA-F]{3}-[0-9a-fA-F]{12}\b"
)
_PATH_PARAM_RE = re.compile(r"\{[^{}]+\}")


def _sanitize_path(path: str) -> str:
    return _UUID_RE.sub("{id}", path)


def resolve_http_path_label(request: Request) -> str:
    route = request.scope.get("route")
    if route is not None:
        path_format = getattr(route, "path_format", None)
        if isinstance(path_format, str) and path_format:
            return _PATH_PARAM_RE.sub("{id}", path_format)
    return _sanitize_path(request.url.path)


def observe_http_request(method: str, path: str, status: int, duration: float) -> None:
    http_requests_total.labels(method=method, path=path, status=str(status)).inc()
    http_request_duration_seconds.labels(method=method, path=path).observe(duration)


def observe_token_issued(token_type: str) -> None:
    auth_tokens_issued_total.labels(token_type=token_type).inc()


def observe_auth_failure(reason: str) -> None:
    auth_failures_total.labels(reason=reason).inc()


def observe_auth_degraded() -> None:
    auth_degraded_total.inc()


def observe_store_retry(operation: str) -> None:
    store_retries_total.labels(operation=operation).inc()


def observe_store_condition_failure(table: str, operation: str) -> None:
    store_condition_failures_total.labels(table=table, operation=operation).inc()


def observe_hidden_reads(resource: str, count: int = 1) -> None:
    if count > 0:
        visibility_hidden_reads_total.labels(resource=resource).inc(count)


def generate_metrics_payload() -> bytes:
    return generate_latest()


def metrics_content_type() -> str:
    return CONTENT_TYPE_LATEST
