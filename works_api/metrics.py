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

webhook_events_total = Counter(
    "works_agreement_webhook_events_total",
    "SimPRO webhook deliveries by source shape, action and outcome",
    ["source_kind", "action", "outcome"],
)

agreements_created_total = Counter(
    "works_agreements_created_total",
    "Works agreements persisted by provenance",
    ["provenance"],
)

agreement_create_conflicts_total = Counter(
    "works_agreement_create_conflicts_total",
    "Create attempts rejected because an agreement already existed",
    ["provenance"],
)

enrichment_duration_seconds = Histogram(
    "simpro_enrichment_duration_seconds",
    "SimPRO job enrichment duration in seconds",
)

enrichment_failures_total = Counter(
    "simpro_enrichment_failures_total",
    "SimPRO job enrichment failures by reason",
    ["reason"],
)


_INT_RE = re.compile(r"/\d+\b")
_PATH_PARAM_RE = re.compile(r"\{[^{}]+\}")


def _normalize_route_template(path: str) -> str:
    return _PATH_PARAM_RE.sub("{id}", path)


def _sanitize_path(path: str) -> str:
    return _INT_RE.sub("/{id}", path)


def resolve_http_path_label(request: Request) -> str:
    route = request.scope.get("route")
    if route is not None:
        path_format = getattr(route, "path_format", None)
        if isinstance(path_format, str) and path_format:
            return _normalize_route_template(path_format)
    return _sanitize_path(request.url.path)


def observe_http_request(method: str, path: str, status: int, duration: float) -> None:
    http_requests_total.labels(method=method, path=path, status=str(status)).inc()
    http_request_duration_seconds.labels(method=method, path=path).observe(duration)


def observe_webhook_event(source_kind: str, action: str, outcome: str) -> None:
    webhook_events_total.labels(source_kind=source_kind, action=action, outcome=outcome).inc()


def observe_agreement_created(provenance: str) -> None:
    agreements_created_total.labels(provenance=provenance).inc()


def observe_agreement_conflict(provenance: str) -> None:
    agreement_create_conflicts_total.labels(provenance=provenance).inc()


def observe_enrichment(duration: float) -> None:
    enrichment_duration_seconds.observe(duration)


def observe_enrichment_failure(reason: str) -> None:
    enrichment_failures_total.labels(reason=reason).inc()


def generate_metrics_payload() -> bytes:
    return generate_latest()


def metrics_content_type() -> str:
    return CONTENT_TYPE_LATEST
