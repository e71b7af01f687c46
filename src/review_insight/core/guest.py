"""Anonymous visitor limits.

A visitor without an account may run one analysis per 24 hours.  Visitors
are recognised by client IP and by a short fingerprint of a few request
headers; a match on either one counts.  The check fails open: if the
database cannot be queried, the analysis is allowed.
"""

from __future__ import annotations

import hashlib
import uuid
from datetime import UTC, datetime, timedelta
from typing import Any, Optional

import structlog
from fastapi import Request
from sqlalchemy import delete, or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from review_insight.core.models.users import GuestAnalysis

logger = structlog.get_logger(__name__)

GUEST_WINDOW = timedelta(hours=24)
GUEST_LIMIT_REASON = (
    "You have already used your free trial. Please sign up to get 3 analyses per month!"
)
_FINGERPRINT_LENGTH = 16


def get_client_ip(request: Request) -> str:
    """Return the originating client IP as reported by the proxy chain."""
    forwarded_for = request.headers.get("x-forwarded-for")
    if forwarded_for:
        return forwarded_for.split(",")[0].strip()
    for header in ("x-real-ip", "cf-connecting-ip"):
        value = request.headers.get(header)
        if value:
            return value.strip()
    return "unknown"


def get_browser_fingerprint(request: Request) -> str:
    """Hash User-Agent, Accept-Language and Accept-Encoding into a short id.

    Not an identity guarantee; it only has to be stable for one browser.
    """
    combined = "|".join(
        request.headers.get(name, "")
        for name in ("user-agent", "accept-language", "accept-encoding")
    )
    return hashlib.sha256(combined.encode("utf-8")).hexdigest()[:_FINGERPRINT_LENGTH]


def _aware(moment: datetime) -> datetime:
    return moment if moment.tzinfo else moment.replace(tzinfo=UTC)


async def can_guest_analyze(
    session: AsyncSession,
    ip_address: str,
    fingerprint: str,
    now: Optional[datetime] = None,
) -> dict[str, Any]:
    """Check the 24-hour guest limit for an IP/fingerprint pair.

    Returns:
        ``{"canAnalyze": bool, "reason": str | None,
        "remainingSeconds": int | None}``.
    """
    now = now or datetime.now(tz=UTC)
    since = now - GUEST_WINDOW
    try:
        result = await session.execute(
            select(GuestAnalysis.created_at)
            .where(
                GuestAnalysis.created_at >= since,
                or_(
                    GuestAnalysis.ip_address == ip_address,
                    GuestAnalysis.fingerprint == fingerprint,
                ),
            )
            .order_by(GuestAnalysis.created_at.desc())
            .limit(1)
        )
        last_created = result.scalar_one_or_none()
    except SQLAlchemyError as exc:
        logger.warning("guest.limit_check_failed", error=str(exc))
        await session.rollback()
        return {"canAnalyze": True, "reason": None, "remainingSeconds": None}

    if last_created is None:
        return {"canAnalyze": True, "reason": None, "remainingSeconds": None}

    remaining = GUEST_WINDOW - (now - _aware(last_created))
    return {
        "canAnalyze": False,
        "reason": GUEST_LIMIT_REASON,
        "remainingSeconds": max(int(remaining.total_seconds()), 0),
    }


async def record_guest_analysis(
    session: AsyncSession,
    ip_address: str,
    fingerprint: str,
    task_id: uuid.UUID,
    *,
    platform: str,
    app_url: str,
    user_agent: Optional[str] = None,
    now: Optional[datetime] = None,
) -> bool:
    """Record a guest analysis; failures are logged and reported as False.

    Commits the session on success.
    """
    now = now or datetime.now(tz=UTC)
    try:
        session.add(
            GuestAnalysis(
                ip_address=ip_address,
                fingerprint=fingerprint,
                task_id=task_id,
                platform=platform,
                app_url=app_url,
                user_agent=user_agent,
                created_at=now,
                expires_at=now + GUEST_WINDOW,
            )
        )
        await session.commit()
    except SQLAlchemyError as exc:
        await session.rollback()
        logger.warning("guest.record_failed", task_id=str(task_id), error=str(exc))
        return False
    return True


async def cleanup_expired_guest_analyses(
    session: AsyncSession, now: Optional[datetime] = None
) -> int:
    """Delete expired guest records and return how many were removed."""
    now = now or datetime.now(tz=UTC)
    result = await session.execute(
        delete(GuestAnalysis)
        .where(GuestAnalysis.expires_at < now)
        .execution_options(synchronize_session=False)
    )
    await session.commit()
    deleted = max(result.rowcount or 0, 0)
    logger.info("guest.cleanup", deleted=deleted)
    return deleted


def format_remaining_time(seconds: float) -> str:
    """Render a wait as ``"3 hours 5 minutes"`` or ``"12 minutes"``."""
    total_minutes = max(int(seconds), 0) // 60
    hours, minutes = divmod(total_minutes, 60)
    minute_text = f"{minutes} minute{'' if minutes == 1 else 's'}"
    if hours > 0:
        return f"{hours} hour{'s' if hours > 1 else ''} {minute_text}"
    return minute_text
