from __future__ import annotations

import time
from typing import Callable, Optional

from fastapi import Request, Response
from prometheus_client import CONTENT_TYPE_LATEST, Counter, Gauge, Histogram, Info, generate_latest

from creatorpay.core.settings import S

METRICS_ENABLED = S.metrics_enabled

REQUEST_COUNT = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "path", "status"],
)
REQUEST_ERRORS = Counter(
    "http_request_errors_total",
    "Total HTTP requests resulting in server errors",
    ["method", "path", "status"],
)
REQUEST_LATENCY = Histogram(
    "http_request_duration_seconds",
    "HTTP request latency in seconds",
    ["method", "path"],
    buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1, 2.5, 5, 10),
)
IN_PROGRESS = Gauge(
    "http_requests_in_progress",
    "In-progress HTTP requests",
    ["method", "path"],
)
WEBHOOK_EVENTS = Counter(
    "paypal_webhook_events_total",
    "PayPal webhook events by type and outcome",
    ["event_type", "outcome"],
)
WEBHOOK_VERIFICATION_FAILURES = Counter(
    "paypal_webhook_verification_failures_total",
    "PayPal webhook deliveries rejected by signature verification",
)
WEBHOOK_VERIFICATION_BYPASSES = Counter(
    "paypal_webhook_verification_bypass_total",
    "PayPal webhook deliveries accepted without verification (no webhook id configured)",
)
PAYPAL_API_REQUESTS = Counter(
    "paypal_api_requests_total",
    "Outbound PayPal REST calls",
    ["method", "status"],
)
TABLE_RESOLUTIONS = Counter(
    "entity_table_resolutions_total",
    "Entity names resolved to a physical table",
    ["entity", "table"],
)
UPTIME_SECONDS = Gauge(
    "app_uptime_seconds",
    "Application uptime in seconds",
)
APP_INFO = Info(
    "app",
    "Application metadata",
)

_START_TIME = time.monotonic()


def _route_path(request: Request) -> str:
    route = request.scope.get("route")
    if route and getattr(route, "path", None):
        return route.path
    return request.url.path


def record_webhook_event(event_type: str, outcome: str) -> None:
    WEBHOOK_EVENTS.labels(event_type=event_type or "unknown", outcome=outcome).inc()


def record_verification_failure() -> None:
    WEBHOOK_VERIFICATION_FAILURES.inc()


def record_verification_bypass() -> None:
    WEBHOOK_VERIFICATION_BYPASSES.inc()


def record_paypal_request(method: str, status: Optional[int]) -> None:
    PAYPAL_API_REQUESTS.labels(method=method.upper(), status=str(status) if status else "error").inc()


def record_table_resolution(entity: str, table: str) -> None:
    TABLE_RESOLUTIONS.labels(entity=entity, table=table).inc()


async def metrics_middleware(request: Request, call_next: Callable[[Request], Response]) -> Response:
    path = _route_path(request)
    method = request.method
    start = time.perf_counter()
    IN_PROGRESS.labels(method=method, path=path).inc()
    status_code = 500
    try:
        response = await call_next(request)
        status_code = response.status_code
        return response
    finally:
        IN_PROGRESS.labels(method=method, path=path).dec()
        REQUEST_LATENCY.labels(method=method, path=path).observe(time.perf_counter() - start)
        REQUEST_COUNT.labels(method=method, path=path, status=str(status_code)).inc()
        if status_code >= 500:
            REQUEST_ERRORS.labels(method=method, path=path, status=str(status_code)).inc()


def set_app_info(name: str, version: str) -> None:
    APP_INFO.info({"name": name, "version": version})


def metrics_endpoint() -> Response:
    UPTIME_SECONDS.set(time.monotonic() - _START_TIME)
    return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)
