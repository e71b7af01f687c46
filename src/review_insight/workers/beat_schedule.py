"""Celery Beat periodic task schedule for ReviewInsight.

All times are UTC (configured in ``celery_app.py``).

Schedule overview:

+---------------------------+---------------------+-----------------------------+
| Task name                 | Schedule            | Purpose                     |
+===========================+=====================+=============================+
| update_hot_apps           | Every 6 hours       | Top up stored reviews of the|
|                           |                     | most recently analysed apps.|
+---------------------------+---------------------+-----------------------------+
| cleanup_old_reviews       | 02:00 daily         | Keep only the newest 1000   |
|                           |                     | reviews per app.            |
+---------------------------+---------------------+-----------------------------+
| cleanup_guest_analyses    | Every hour          | Delete guest records older  |
|                           |                     | than 24 hours.              |
+---------------------------+---------------------+-----------------------------+
| fail_stale_tasks          | Every 30 minutes    | Fail analyses still running |
|                           |                     | two hours after creation.   |
+---------------------------+---------------------+-----------------------------+
"""

from __future__ import annotations

from celery.schedules import crontab

#: Celery Beat schedule dict.  Applied to ``celery_app.conf.beat_schedule``
#: in ``celery_app.py``.
beat_schedule: dict[str, dict] = {  # type: ignore[type-arg]
    "update_hot_apps": {
        "task": "review_insight.workers.tasks.update_hot_apps",
        "schedule": crontab(minute=0, hour="*/6"),
        "kwargs": {"limit": 10},
        "options": {
            "queue": "maintenance",
            "expires": 3_600,
        },
    },
    "cleanup_old_reviews": {
        "task": "review_insight.workers.tasks.cleanup_old_reviews",
        "schedule": crontab(hour=2, minute=0),
        "kwargs": {"keep": 1000},
        "options": {
            "queue": "maintenance",
            "expires": 3_600,
        },
    },
    "cleanup_guest_analyses": {
        "task": "review_insight.workers.tasks.cleanup_guest_analyses",
        "schedule": crontab(minute=15),
        "options": {
            "queue": "maintenance",
            "expires": 1_800,
        },
    },
    "fail_stale_tasks": {
        "task": "review_insight.workers.tasks.fail_stale_tasks",
        "schedule": crontab(minute="*/30"),
        "options": {
            "queue": "maintenance",
            "expires": 1_800,
        },
    },
}
