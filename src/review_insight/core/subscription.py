"""Monthly analysis quotas and the usage audit log.

Free accounts get a fixed number of analyses per calendar month; paid
tiers are unlimited.  The monthly counter on ``users`` is reset lazily:
every quota check first calls :func:`reset_monthly_count_if_needed`, which
zeroes the counter when ``last_reset_date`` lies in an earlier month.

None of the functions here commit.  Callers commit once the surrounding
unit of work (task creation, webhook handling, ...) is complete.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from typing import Any, Optional

import structlog
from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from review_insight.config.tiers import TIER_LIMITS, SubscriptionTier, TierLimits
from review_insight.core.models.users import UsageLog, User

logger = structlog.get_logger(__name__)

USAGE_ACTIONS: frozenset[str] = frozenset(
    {
        "signup",
        "login",
        "analysis_started",
        "analysis_completed",
        "analysis_failed",
        "subscription_upgraded",
        "subscription_downgraded",
        "email_sent",
    }
)

QUOTA_REACHED_REASON = "Monthly analysis limit reached"


def get_subscription_limits(tier: str | None) -> TierLimits:
    """Return the limits for *tier*, falling back to the free plan."""
    try:
        return TIER_LIMITS[SubscriptionTier(tier)]
    except ValueError:
        return TIER_LIMITS[SubscriptionTier.FREE]


def _needs_reset(last_reset: datetime | None, now: datetime) -> bool:
    if last_reset is None:
        return True
    return (last_reset.year, last_reset.month) != (now.year, now.month)


async def reset_monthly_count_if_needed(
    session: AsyncSession,
    user: User,
    now: Optional[datetime] = None,
) -> bool:
    """Zero *user*'s monthly counter when a new calendar month has started.

    Returns:
        True when the counter was reset.
    """
    now = now or datetime.now(tz=UTC)
    if not _needs_reset(user.last_reset_date, now):
        return False

    user.monthly_analysis_count = 0
    user.last_reset_date = now
    session.add(user)
    await session.flush()
    logger.debug("subscription.monthly_reset", user_id=str(user.id))
    return True


async def can_user_analyze(
    session: AsyncSession,
    user: User,
    now: Optional[datetime] = None,
) -> dict[str, Any]:
    """Decide whether *user* may start another analysis this month.

    Returns:
        ``{"canAnalyze", "reason", "remainingAnalyses", "subscriptionTier"}``.
        ``remainingAnalyses`` is ``None`` on unlimited plans.
    """
    await reset_monthly_count_if_needed(session, user, now=now)
    limits = get_subscription_limits(user.subscription_tier)
    tier = limits.tier.value

    if limits.is_unlimited:
        return {
            "canAnalyze": True,
            "reason": None,
            "remainingAnalyses": None,
            "subscriptionTier": tier,
        }

    remaining = max(0, limits.monthly_analyses - (user.monthly_analysis_count or 0))
    return {
        "canAnalyze": remaining > 0,
        "reason": None if remaining > 0 else QUOTA_REACHED_REASON,
        "remainingAnalyses": remaining,
        "subscriptionTier": tier,
    }


async def log_usage(
    session: AsyncSession,
    user_id: uuid.UUID,
    action_type: str,
    task_id: Optional[uuid.UUID] = None,
    metadata: Optional[dict[str, Any]] = None,
) -> UsageLog:
    """Append a row to ``usage_logs``.

    Raises:
        ValueError: If *action_type* is not a known usage action.
    """
    if action_type not in USAGE_ACTIONS:
        raise ValueError(f"Unknown usage action: {action_type!r}")

    entry = UsageLog(
        user_id=user_id,
        action_type=action_type,
        task_id=task_id,
        metadata_=metadata,
    )
    session.add(entry)
    await session.flush()
    return entry


async def record_analysis_usage(
    session: AsyncSession,
    user: User,
    task_id: uuid.UUID,
) -> None:
    """Count one analysis against *user*'s monthly quota and log it."""
    await session.execute(
        update(User)
        .where(User.id == user.id)
        .values(monthly_analysis_count=User.monthly_analysis_count + 1)
    )
    await log_usage(session, user.id, "analysis_started", task_id=task_id)
    logger.info("subscription.analysis_recorded", user_id=str(user.id), task_id=str(task_id))


async def increment_monthly_count(session: AsyncSession, user_id: uuid.UUID) -> None:
    """Increase the monthly counter of *user_id* by one without logging."""
    await session.execute(
        update(User)
        .where(User.id == user_id)
        .values(monthly_analysis_count=User.monthly_analysis_count + 1)
    )
