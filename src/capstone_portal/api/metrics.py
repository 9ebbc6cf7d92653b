"""Prometheus metrics for Capstone Portal.

All metrics are module-level singletons registered on the default
``REGISTRY``.  Workflow services import them directly.

Metrics defined here:

  application_transitions_total{from_status, to_status}
      Counter: committed application status changes.

  capacity_rejections_total{operation}
      Counter: operations refused because a supervisor was at capacity.

  transaction_retries_total{operation}
      Counter: unit-of-work re-runs caused by a commit conflict.

  transaction_conflicts_total{operation}
      Counter: units of work that exhausted their retry budget.

  best_effort_failures_total{step}
      Counter: side effects (linked-application sync, partner-field sync,
      completion cleanup, event publishing) that failed and were logged.

  rate_limit_decisions_total{endpoint, outcome}
      Counter: rate-limiter outcomes: allowed, limited, fail_open.

  http_requests_total{method, path, status}
      Counter: HTTP requests handled by the FastAPI application.

  http_request_duration_seconds{method, path}
      Histogram: HTTP request latency in seconds.

Usage::

    from capstone_portal.api.metrics import capacity_rejections_total
    capacity_rejections_total.labels(operation="approve_application").inc()
"""

from __future__ import annotations

from prometheus_client import Counter, Histogram

# ---------------------------------------------------------------------------
# Workflow metrics
# ---------------------------------------------------------------------------

application_transitions_total: Counter = Counter(
    "application_transitions_total",
    "Committed application status changes.",
    labelnames=["from_status", "to_status"],
)

capacity_rejections_total: Counter = Counter(
    "capacity_rejections_total",
    "Operations refused because the supervisor had no spare capacity.",
    labelnames=["operation"],
)
"""Labels:
  operation: approve_application, accept_co_supervision, send_co_supervision_request
"""

transaction_retries_total: Counter = Counter(
    "transaction_retries_total",
    "Unit-of-work re-runs caused by a commit conflict.",
    labelnames=["operation"],
)

transaction_conflicts_total: Counter = Counter(
    "transaction_conflicts_total",
    "Units of work that exhausted their retry budget.",
    labelnames=["operation"],
)

best_effort_failures_total: Counter = Counter(
    "best_effort_failures_total",
    "Best-effort side effects that failed and were logged.",
    labelnames=["step"],
)

# ---------------------------------------------------------------------------
# Rate limiting
# ---------------------------------------------------------------------------

rate_limit_decisions_total: Counter = Counter(
    "rate_limit_decisions_total",
    "Rate-limiter outcomes by endpoint.",
    labelnames=["endpoint", "outcome"],
)
"""Labels:
  endpoint: rate-limited endpoint key (e.g. resend-verification)
  outcome:  allowed, limited, fail_open
"""

# ---------------------------------------------------------------------------
# HTTP metrics (populated by middleware in main.py)
# ---------------------------------------------------------------------------

http_requests_total: Counter = Counter(
    "http_requests_total",
    "HTTP requests handled by the FastAPI application.",
    labelnames=["method", "path", "status"],
)

http_request_duration_seconds: Histogram = Histogram(
    "http_request_duration_seconds",
    "HTTP request latency in seconds.",
    labelnames=["method", "path"],
    buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
)
