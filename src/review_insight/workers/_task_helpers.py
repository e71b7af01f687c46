"""Internal async helpers for the maintenance tasks and time-limit handling.

This module contains the async coroutines used by the synchronous Celery
tasks in ``workers/tasks.py``.  They are kept apart from the task module so
they can be unit-tested without importing the Celery application.

All functions open their own ``AsyncSessionLocal`` context managers and
commit or close the session before returning.  Celery workers call these
via ``asyncio.run()`` from synchronous task bodies, so each invocation
requires a fresh event loop with no pre-existing session.
"""

from __future__ import annotations

import uuid
from typing import Any

from review_insight.analysis.pipeline import TIMED_OUT_MESSAGE, fail_stale_tasks, update_task
from review_insight.core.database import AsyncSessionLocal
from review_insight.core.guest import cleanup_expired_guest_analyses
from review_insight.scrapers.incremental import DEFAULT_KEEP_COUNT, cleanup_all_apps
from review_insight.scrapers.quick_fetch import trigger_hot_apps_update


async def run_hot_apps_update(limit: int = 10) -> dict[str, Any]:
    """Incrementally refresh the *limit* most recently analysed apps."""
    async with AsyncSessionLocal() as db:
        return await trigger_hot_apps_update(db, limit=limit)


async def run_review_cleanup(keep: int = DEFAULT_KEEP_COUNT) -> dict[str, int]:
    """Trim every app down to its newest *keep* reviews."""
    async with AsyncSessionLocal() as db:
        return await cleanup_all_apps(db, keep=keep)


async def run_guest_cleanup() -> int:
    """Delete expired guest-analysis records."""
    async with AsyncSessionLocal() as db:
        return await cleanup_expired_guest_analyses(db)


async def run_stale_task_sweep() -> int:
    """Fail analyses stuck in ``pending``/``processing``."""
    async with AsyncSessionLocal() as db:
        return await fail_stale_tasks(db)


async def run_mark_timed_out(task_id: uuid.UUID) -> None:
    """Record a soft-time-limit expiry on the task row."""
    async with AsyncSessionLocal() as db:
        await update_task(db, task_id, status="failed", error_msg=TIMED_OUT_MESSAGE)
