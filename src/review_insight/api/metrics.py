"""Prometheus metrics for ReviewInsight.

Exposes application-level metrics alongside the standard process metrics
from prometheus_client.

All metrics are module-level singletons registered on the default
``REGISTRY``.  They are safe to import from multiple modules because
prometheus_client deduplicates by metric name.

Metrics defined here:

  analysis_tasks_total{task_type, status}
      Counter: analysis tasks reaching a terminal state (completed, failed),
      split into single-app analyses and comparisons.

  reviews_scraped_total{platform}
      Counter: reviews fetched from the storefronts.

  reviews_stored_total{platform}
      Counter: reviews newly inserted into the ``reviews`` table.

  ai_requests_total{kind, status}
      Counter: completion API calls by kind (single, comparison) and
      outcome (success, error).

  http_requests_total{method, path, status}
      Counter: HTTP requests handled by the FastAPI application.

  http_request_duration_seconds{method, path}
      Histogram: HTTP request latency in seconds.

  celery_tasks_total{task_name, status}
      Counter: Celery task completions by task name and outcome.

  celery_task_duration_seconds{task_name}
      Histogram: Celery task wall-clock duration in seconds.

Usage::

    from review_insight.api.metrics import analysis_tasks_total
    analysis_tasks_total.labels(task_type="single", status="completed").inc()
"""

from __future__ import annotations

from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest

# ---------------------------------------------------------------------------
# Analysis metrics
# ---------------------------------------------------------------------------

analysis_tasks_total: Counter = Counter(
    "analysis_tasks_total",
    "Analysis tasks reaching a terminal state by type and status.",
    labelnames=["task_type", "status"],
)
"""Labels:
  task_type: single or comparison
  status:    completed or failed
"""

reviews_scraped_total: Counter = Counter(
    "reviews_scraped_total",
    "Reviews fetched from the storefronts by platform.",
    labelnames=["platform"],
)

reviews_stored_total: Counter = Counter(
    "reviews_stored_total",
    "Reviews newly inserted into the database by platform.",
    labelnames=["platform"],
)

ai_requests_total: Counter = Counter(
    "ai_requests_total",
    "Completion API calls by kind and outcome.",
    labelnames=["kind", "status"],
)

# ---------------------------------------------------------------------------
# HTTP metrics (populated by middleware in main.py)
# ---------------------------------------------------------------------------

http_requests_total: Counter = Counter(
    "http_requests_total",
    "HTTP requests handled by the FastAPI application.",
    labelnames=["method", "path", "status"],
)
"""Labels:
  method: HTTP method (GET, POST, ...)
  path:   route template where available, raw path otherwise
  status: HTTP response status code as string (e.g. '200', '404')
"""

http_request_duration_seconds: Histogram = Histogram(
    "http_request_duration_seconds",
    "HTTP request latency in seconds.",
    labelnames=["method", "path"],
    buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
)

# ---------------------------------------------------------------------------
# Celery task metrics (populated in workers/tasks.py)
# ---------------------------------------------------------------------------

celery_tasks_total: Counter = Counter(
    "celery_tasks_total",
    "Celery task completions by task name and outcome.",
    labelnames=["task_name", "status"],
)

celery_task_duration_seconds: Histogram = Histogram(
    "celery_task_duration_seconds",
    "Celery task wall-clock duration in seconds.",
    labelnames=["task_name"],
    buckets=[1.0, 5.0, 10.0, 30.0, 60.0, 120.0, 300.0, 600.0, 1800.0],
)


# ---------------------------------------------------------------------------
# Response helper
# ---------------------------------------------------------------------------


def get_metrics_response() -> tuple[bytes, str]:
    """Generate a Prometheus text-format metrics response.

    Returns:
        A tuple of (body_bytes, content_type_string) suitable for constructing
        a FastAPI ``Response`` object.
    """
    return generate_latest(), CONTENT_TYPE_LATEST
