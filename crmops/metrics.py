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

reporting_requests_total = Counter(
    "crmops_reporting_requests_total",
    "Opportunity report executions by report type and outcome",
    ["report", "report_type", "outcome"],
)

reporting_duration_seconds = Histogram(
    "crmops_reporting_duration_seconds",
    "Opportunity report execution time in seconds",
    ["report", "report_type"],
)

reporting_records_returned = Histogram(
    "crmops_reporting_records_returned",
    "Records returned per drilldown",
    ["report_type"],
    buckets=(0, 1, 5, 10, 25, 50, 100, 250, 500, 1000),
)

stage_settings_fallbacks_total = Counter(
    "crmops_stage_settings_fallbacks_total",
    "Stage configuration lookups that fell back to defaults, by reason",
    ["reason"],
)

http_client_retries_total = Counter(
    "crmops_http_client_retries_total",
    "Outbound HTTP client retries by method and cause",
    ["method", "cause"],
)

http_client_failures_total = Counter(
    "crmops_http_client_failures_total",
    "Outbound HTTP client calls that surfaced an ApiError, by method and status class",
    ["method", "status_class"],
)


_UUID_RE = re.compile(
    r"\b[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[1-5][0-9a-fA-F]{3}-[89abAB][0-9a-fA-F]{3}-[0-9a-fA-F]{12}\b"
)
_INT_RE = re.compile(r"/\d+\b")
_PATH_PARAM_RE = re.compile(r"\{[^{}]+\}")


def _sanitize_path(path: str) -> str:
    without_uuids = _UUID_RE.sub("{id}", path)
    return _INT_RE.sub("/{id}", without_uuids)


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


def observe_report(report: str, report_type: str, outcome: str, duration: float, record_count: int | None = None) -> None:
    reporting_requests_total.labels(report=report, report_type=report_type, outcome=outcome).inc()
    reporting_duration_seconds.labels(report=report, report_type=report_type).observe(duration)
    if record_count is not None:
        reporting_records_returned.labels(report_type=report_type).observe(record_count)


def observe_stage_settings_fallback(reason: str) -> None:
    stage_settings_fallbacks_total.labels(reason=reason).inc()


def observe_http_client_retry(method: str, cause: str) -> None:
    http_client_retries_total.labels(method=method, cause=cause).inc()


def observe_http_client_failure(method: str, status: int) -> None:
    status_class = "network" if status == 0 else f"{status // 100}xx"
    http_client_failures_total.labels(method=method, status_class=status_class).inc()


def generate_metrics_payload() -> bytes:
    return generate_latest()


def metrics_content_type() -> str:
    return CONTENT_TYPE_LATEST
