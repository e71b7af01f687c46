"""Celery application for ReviewInsight.

Configures the broker, result backend, serialization and time limits.  All
configuration values are sourced from ``Settings`` so that no secrets or
environment-specific values are hard-coded here.

Usage (starting a worker)::

    celery -A review_insight.workers.celery_app worker --loglevel=info

Usage (starting the Beat scheduler)::

    celery -A review_insight.workers.celery_app beat --loglevel=info

Usage (within application code)::

    from review_insight.workers.tasks import process_analysis

    process_analysis.delay(str(task.id), "ios", "284882215", app_info, options)
"""

from __future__ import annotations

import logging

from celery import Celery
from celery.signals import task_postrun, worker_process_init
from dotenv import load_dotenv

_logger = logging.getLogger(__name__)

load_dotenv()

from review_insight.config.settings import get_settings  # noqa: E402

settings = get_settings()

#: The global Celery application instance.
celery_app = Celery(
    "review_insight",
    broker=settings.celery_broker_url,
    backend=settings.celery_result_backend,
    include=["review_insight.workers.tasks"],
)

# ---------------------------------------------------------------------------
# Core configuration
# ---------------------------------------------------------------------------

celery_app.conf.update(
    # All task arguments and return values must be JSON-serializable.
    task_serializer="json",
    result_serializer="json",
    accept_content=["json"],
    timezone="UTC",
    enable_utc=True,
    # Analyses run for minutes; one at a time per worker process.
    worker_prefetch_multiplier=1,
    result_expires=86_400,
    # An analysis scrapes up to ~2000 reviews and makes one LLM call; a
    # comparison repeats that for up to five apps.
    task_soft_time_limit=1_800,
    task_time_limit=2_400,
    task_routes={
        "review_insight.workers.tasks.cleanup_*": {"queue": "maintenance"},
        "review_insight.workers.tasks.update_hot_apps": {"queue": "maintenance"},
        "review_insight.workers.tasks.fail_stale_tasks": {"queue": "maintenance"},
    },
    beat_schedule_filename="celerybeat-schedule",
)

from review_insight.workers.beat_schedule import beat_schedule  # noqa: E402

celery_app.conf.beat_schedule = beat_schedule


# ---------------------------------------------------------------------------
# Engine disposal on fork
# ---------------------------------------------------------------------------
@worker_process_init.connect
def _dispose_engines_on_fork(**kwargs: object) -> None:  # noqa: ARG001
    """Dispose the async engine after Celery forks a worker process.

    Pooled asyncpg connections belong to the parent's event loop and cannot
    be reused by the child's ``asyncio.run()`` loops.
    """
    from review_insight.core import database as _db  # noqa: PLC0415

    _db.async_engine.sync_engine.dispose(close=False)


# ---------------------------------------------------------------------------
# Engine disposal after each task
# ---------------------------------------------------------------------------
@task_postrun.connect
def _dispose_async_engine_after_task(**kwargs: object) -> None:  # noqa: ARG001
    """Drop pooled connections bound to the finished task's event loop.

    Every task body runs its own ``asyncio.run()``; connections left in the
    pool would be attached to a closed loop when the next task starts.
    """
    try:
        from review_insight.core import database as _db  # noqa: PLC0415

        _db.async_engine.sync_engine.dispose(close=False)
    except Exception as exc:  # noqa: BLE001
        _logger.debug("engine disposal after task failed: %s", exc)
