"""Celery tasks for ReviewInsight.

Analysis tasks (enqueued by the API):

- ``process_analysis``: scrape, store, sample and analyse one app.
- ``process_refresh``: forced deep incremental scrape plus re-analysis of
  a stored app.
- ``process_comparison``: analyse two to five apps and compare them.

Maintenance tasks (driven by ``workers/beat_schedule.py``):

- ``update_hot_apps``: top up reviews of recently analysed apps.
- ``cleanup_old_reviews``: keep the newest reviews per app.
- ``cleanup_guest_analyses``: purge expired guest records.
- ``fail_stale_tasks``: fail analyses left running past their time limit.

All tasks are synchronous Celery tasks that bridge to async code via
``asyncio.run()``.  The analysis bodies record their own failures on the
task row, so none of them is retried; a retry would re-scrape and
re-bill the LLM call.  An analysis interrupted by the soft time limit
marks its row failed before returning.  Maintenance tasks catch all
exceptions at the outermost level, log them at ERROR level, and do NOT
re-raise.

Task names::

    review_insight.workers.tasks.process_analysis
    review_insight.workers.tasks.process_refresh
    review_insight.workers.tasks.process_comparison
    review_insight.workers.tasks.update_hot_apps
    review_insight.workers.tasks.cleanup_old_reviews
    review_insight.workers.tasks.cleanup_guest_analyses
    review_insight.workers.tasks.fail_stale_tasks
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from typing import Any, Optional

import structlog
from celery.exceptions import SoftTimeLimitExceeded

from review_insight.analysis import comparison as comparison_pipeline
from review_insight.analysis import pipeline
from review_insight.api.metrics import celery_task_duration_seconds, celery_tasks_total
from review_insight.workers._task_helpers import (
    run_guest_cleanup,
    run_hot_apps_update,
    run_mark_timed_out,
    run_review_cleanup,
    run_stale_task_sweep,
)
from review_insight.workers.celery_app import celery_app

logger = structlog.get_logger(__name__)
_stdlib_logger = logging.getLogger(__name__)


def _record_metrics(task_name: str, status: str, started: float) -> None:
    try:
        celery_tasks_total.labels(task_name=task_name, status=status).inc()
        celery_task_duration_seconds.labels(task_name=task_name).observe(
            time.perf_counter() - started
        )
    except Exception as exc:  # noqa: BLE001
        _stdlib_logger.debug("%s: metrics recording failed: %s", task_name, exc)


def _uuid_or_none(value: Optional[str]) -> Optional[uuid.UUID]:
    return uuid.UUID(value) if value else None


def _mark_timed_out(task_name: str, task_id: str) -> None:
    """Fail the task row after the soft time limit interrupted *task_name*.

    The interrupted event loop may have left pooled connections behind, so
    the pool is dropped before a fresh loop writes the failure.
    """
    from review_insight.core import database as _db  # noqa: PLC0415

    log = logger.bind(task=task_name, task_id=task_id)
    log.error(f"{task_name}: soft time limit exceeded")
    try:
        _db.async_engine.sync_engine.dispose(close=False)
        asyncio.run(run_mark_timed_out(uuid.UUID(task_id)))
    except Exception as exc:
        log.error(f"{task_name}: could not record the timeout", error=str(exc), exc_info=True)


# ---------------------------------------------------------------------------
# Analysis tasks
# ---------------------------------------------------------------------------


@celery_app.task(name="review_insight.workers.tasks.process_analysis")
def process_analysis(
    task_id: str,
    platform: str,
    app_id: str,
    app_info: dict[str, Any],
    options: Optional[dict[str, Any]] = None,
) -> dict[str, Any]:
    """Run the single-app analysis pipeline for *task_id*.

    Args:
        task_id: UUID string of the ``analysis_tasks`` row.
        platform: ``"ios"`` or ``"android"``.
        app_id: Storefront identifier.
        app_info: App metadata fetched by the API before enqueueing.
        options: ``{multiCountry, countries, ratingFilter}``.

    Returns:
        ``{"task_id": ...}``.  The outcome itself lives on the task row.
    """
    started = time.perf_counter()
    log = logger.bind(task="process_analysis", task_id=task_id)
    log.info("process_analysis: starting", platform=platform, app_id=app_id)
    try:
        asyncio.run(
            pipeline.process_analysis(uuid.UUID(task_id), platform, app_id, app_info, options)
        )
    except SoftTimeLimitExceeded:
        _mark_timed_out("process_analysis", task_id)
        _record_metrics("process_analysis", "timeout", started)
        return {"task_id": task_id, "error": "timed out"}
    except Exception as exc:
        log.error("process_analysis: unhandled error", error=str(exc), exc_info=True)
        _record_metrics("process_analysis", "error", started)
        return {"task_id": task_id, "error": str(exc)}
    _record_metrics("process_analysis", "success", started)
    return {"task_id": task_id}


@celery_app.task(name="review_insight.workers.tasks.process_refresh")
def process_refresh(
    task_id: str,
    app_pk: str,
    options: Optional[dict[str, Any]] = None,
) -> dict[str, Any]:
    """Re-scrape and re-analyse the stored app *app_pk* for *task_id*."""
    started = time.perf_counter()
    log = logger.bind(task="process_refresh", task_id=task_id)
    log.info("process_refresh: starting", app_pk=app_pk)
    try:
        asyncio.run(pipeline.process_refresh(uuid.UUID(task_id), uuid.UUID(app_pk), options))
    except SoftTimeLimitExceeded:
        _mark_timed_out("process_refresh", task_id)
        _record_metrics("process_refresh", "timeout", started)
        return {"task_id": task_id, "error": "timed out"}
    except Exception as exc:
        log.error("process_refresh: unhandled error", error=str(exc), exc_info=True)
        _record_metrics("process_refresh", "error", started)
        return {"task_id": task_id, "error": str(exc)}
    _record_metrics("process_refresh", "success", started)
    return {"task_id": task_id}


@celery_app.task(name="review_insight.workers.tasks.process_comparison")
def process_comparison(
    task_id: str,
    apps: list[dict[str, Any]],
    comparison_options: Optional[dict[str, Any]],
    user_id: Optional[str],
) -> dict[str, Any]:
    """Analyse and compare the apps of comparison task *task_id*."""
    started = time.perf_counter()
    log = logger.bind(task="process_comparison", task_id=task_id)
    log.info("process_comparison: starting", total_apps=len(apps))
    try:
        asyncio.run(
            comparison_pipeline.process_comparison(
                uuid.UUID(task_id), apps, comparison_options, _uuid_or_none(user_id)
            )
        )
    except SoftTimeLimitExceeded:
        _mark_timed_out("process_comparison", task_id)
        _record_metrics("process_comparison", "timeout", started)
        return {"task_id": task_id, "error": "timed out"}
    except Exception as exc:
        log.error("process_comparison: unhandled error", error=str(exc), exc_info=True)
        _record_metrics("process_comparison", "error", started)
        return {"task_id": task_id, "error": str(exc)}
    _record_metrics("process_comparison", "success", started)
    return {"task_id": task_id}


# ---------------------------------------------------------------------------
# Maintenance tasks
# ---------------------------------------------------------------------------


@celery_app.task(name="review_insight.workers.tasks.update_hot_apps")
def update_hot_apps(limit: int = 10) -> dict[str, Any]:
    """Incrementally refresh reviews of the most recently analysed apps.

    Returns:
        ``{"total", "successful", "skipped", "failed"}`` counts, or
        ``{"error": ...}`` when the run could not start.
    """
    started = time.perf_counter()
    log = logger.bind(task="update_hot_apps")
    try:
        summary = asyncio.run(run_hot_apps_update(limit))
    except Exception as exc:
        log.error("update_hot_apps: failed", error=str(exc), exc_info=True)
        _record_metrics("update_hot_apps", "error", started)
        return {"error": str(exc)}
    log.info("update_hot_apps: complete", **summary)
    _record_metrics("update_hot_apps", "success", started)
    return summary


@celery_app.task(name="review_insight.workers.tasks.cleanup_old_reviews")
def cleanup_old_reviews(keep: int = 1000) -> dict[str, Any]:
    """Delete all but the newest *keep* reviews of every app."""
    started = time.perf_counter()
    log = logger.bind(task="cleanup_old_reviews")
    try:
        summary = asyncio.run(run_review_cleanup(keep))
    except Exception as exc:
        log.error("cleanup_old_reviews: failed", error=str(exc), exc_info=True)
        _record_metrics("cleanup_old_reviews", "error", started)
        return {"error": str(exc), "deleted": 0}
    log.info("cleanup_old_reviews: complete", **summary)
    _record_metrics("cleanup_old_reviews", "success", started)
    return summary


@celery_app.task(name="review_insight.workers.tasks.cleanup_guest_analyses")
def cleanup_guest_analyses() -> dict[str, Any]:
    """Delete guest-analysis records past their 24-hour expiry."""
    started = time.perf_counter()
    log = logger.bind(task="cleanup_guest_analyses")
    try:
        deleted = asyncio.run(run_guest_cleanup())
    except Exception as exc:
        log.error("cleanup_guest_analyses: failed", error=str(exc), exc_info=True)
        _record_metrics("cleanup_guest_analyses", "error", started)
        return {"error": str(exc), "deleted": 0}
    _record_metrics("cleanup_guest_analyses", "success", started)
    return {"deleted": deleted}


@celery_app.task(name="review_insight.workers.tasks.fail_stale_tasks")
def fail_stale_tasks() -> dict[str, Any]:
    """Fail analyses stuck in ``pending``/``processing`` past the hard limit."""
    started = time.perf_counter()
    log = logger.bind(task="fail_stale_tasks")
    try:
        failed = asyncio.run(run_stale_task_sweep())
    except Exception as exc:
        log.error("fail_stale_tasks: failed", error=str(exc), exc_info=True)
        _record_metrics("fail_stale_tasks", "error", started)
        return {"error": str(exc), "failed": 0}
    _record_metrics("fail_stale_tasks", "success", started)
    return {"failed": failed}
