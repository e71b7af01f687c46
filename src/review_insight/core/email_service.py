"""Email notification service for account and analysis lifecycle events.

Sends transactional emails for:
- Account registration (welcome).
- Analysis completion and failure.
- Subscription activation after a successful Stripe checkout.
- A test message triggered from the user settings page.

All send methods are ``async``.  When ``smtp_host`` is not configured in
:class:`~review_insight.config.settings.Settings`, every send method
silently no-ops and logs at ``DEBUG`` level.  This means the service is
safe to instantiate in all environments, including CI and local
development without an SMTP server.

The module-level :func:`notify_analysis_completed` and
:func:`notify_analysis_failed` helpers look the user up, honour their
notification preferences and record an ``email_sent`` usage log entry.

Usage in a FastAPI route::

    from review_insight.core.email_service import get_email_service

    @router.post("/user/test-email")
    async def send_test(
        email_svc: Annotated[EmailService, Depends(get_email_service)],
    ):
        ...
"""

from __future__ import annotations

import logging
import uuid
from functools import lru_cache
from typing import Optional

import structlog
from fastapi_mail import ConnectionConfig, FastMail, MessageSchema, MessageType
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from review_insight.config.settings import Settings, get_settings
from review_insight.core.models.users import User
from review_insight.core.subscription import log_usage

logger = structlog.get_logger(__name__)
_stdlib_logger = logging.getLogger(__name__)


class EmailService:
    """Sends transactional notification emails via SMTP using ``fastapi-mail``.

    The service does not open any network connection at construction time.
    When ``smtp_host`` is ``None`` (the default), :meth:`is_configured`
    returns ``False`` and all send methods immediately return ``False``.

    Args:
        settings: Application settings instance.  Defaults to the global
            cached settings singleton if omitted.
    """

    def __init__(self, settings: Optional[Settings] = None) -> None:
        self._settings = settings or get_settings()
        self._mail: Optional[FastMail] = None

        if self._settings.smtp_host:
            config = ConnectionConfig(
                MAIL_USERNAME=self._settings.smtp_username or "",
                MAIL_PASSWORD=self._settings.smtp_password or "",
                MAIL_FROM=self._settings.smtp_from_address,
                MAIL_FROM_NAME=self._settings.app_name,
                MAIL_PORT=self._settings.smtp_port,
                MAIL_SERVER=self._settings.smtp_host,
                MAIL_STARTTLS=self._settings.smtp_starttls,
                MAIL_SSL_TLS=self._settings.smtp_ssl,
                USE_CREDENTIALS=bool(self._settings.smtp_username),
                VALIDATE_CERTS=True,
            )
            self._mail = FastMail(config)

    # ------------------------------------------------------------------
    # Public interface
    # ------------------------------------------------------------------

    def is_configured(self) -> bool:
        return self._mail is not None

    def report_url(self, app_slug: str) -> str:
        """Public URL of the report page for *app_slug*."""
        return f"{self._settings.app_url.rstrip('/')}/app/{app_slug}"

    def comparison_url(self, task_id: uuid.UUID | str) -> str:
        """URL of the results page of comparison *task_id*."""
        return f"{self._settings.app_url.rstrip('/')}/compare/results/{task_id}"

    async def send_welcome_email(self, user_email: str, name: Optional[str]) -> bool:
        """Greet a newly registered user."""
        greeting = f"Hi {name}," if name else "Hi,"
        body = (
            f"{greeting}\n\n"
            f"Welcome to {self._settings.app_name}!\n\n"
            f"Paste an App Store or Google Play link to get an AI-generated report of "
            f"the critical issues, experience problems and feature requests your users "
            f"mention in their reviews.\n\n"
            f"Free accounts include 3 analyses per month.\n\n"
            f"Start your first analysis: {self._settings.app_url}\n"
        )
        return await self._send_event(
            "welcome",
            recipient=user_email,
            subject=f"Welcome to {self._settings.app_name}!",
            body=body,
        )

    async def send_analysis_completed(
        self,
        user_email: str,
        app_name: str,
        report_url: str,
    ) -> bool:
        """Tell a user their analysis report is ready."""
        body = (
            f"Hello,\n\n"
            f"We've completed the analysis for {app_name}. Your review report is now "
            f"available:\n\n"
            f"  {report_url}\n\n"
            f"The report covers sentiment, critical issues, experience issues, "
            f"feature requests and priority recommendations.\n"
        )
        return await self._send_event(
            "analysis_completed",
            recipient=user_email,
            subject=f"Analysis Complete: {app_name}",
            body=body,
        )

    async def send_analysis_failed(
        self,
        user_email: str,
        app_name: str,
        error: Optional[str] = None,
    ) -> bool:
        """Tell a user their analysis could not be completed."""
        body = (
            f"Hello,\n\n"
            f"Unfortunately the analysis for {app_name} could not be completed.\n\n"
            f"Error  : {error or 'Unknown error'}\n\n"
            f"This is usually temporary. Please try again in a few minutes: "
            f"{self._settings.app_url}\n"
        )
        return await self._send_event(
            "analysis_failed",
            recipient=user_email,
            subject=f"Analysis Failed: {app_name}",
            body=body,
        )

    async def send_subscription_activated(
        self,
        user_email: str,
        tier: str,
        next_billing_date: Optional[str] = None,
    ) -> bool:
        """Confirm that a paid plan is active."""
        plan = tier.capitalize()
        body = f"Hello,\n\nYour {plan} plan is now active. Enjoy unlimited analyses!\n"
        if next_billing_date:
            body += f"\nNext billing date: {next_billing_date}\n"
        body += f"\nGo to your dashboard: {self._settings.app_url}/dashboard\n"
        return await self._send_event(
            "subscription_activated",
            recipient=user_email,
            subject=f"Subscription Activated: {plan} Plan",
            body=body,
        )

    async def send_test_email(self, user_email: str) -> bool:
        """Send a short message confirming that notifications reach the user."""
        body = (
            f"This is a test email from {self._settings.app_name}.\n\n"
            f"If you are reading this, your email notifications are configured "
            f"correctly.\n"
        )
        return await self._send_event(
            "test",
            recipient=user_email,
            subject=f"[{self._settings.app_name}] Test email",
            body=body,
        )

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _send_event(self, event: str, recipient: str, subject: str, body: str) -> bool:
        if not self.is_configured():
            _stdlib_logger.debug(
                "email_service: SMTP not configured, skipping %s to %s", event, recipient
            )
            return False
        sent = await self._send(recipient=recipient, subject=subject, body=body)
        if sent:
            logger.info("email_service: sent", event=event, recipient=recipient)
        return sent

    async def _send(self, recipient: str, subject: str, body: str) -> bool:
        """Send a plain-text email via fastapi-mail.

        Failures are caught, logged at WARNING level, and reported as
        ``False`` so that an SMTP outage never fails an analysis or an HTTP
        request.
        """
        message = MessageSchema(
            subject=subject,
            recipients=[recipient],
            body=body,
            subtype=MessageType.plain,
        )
        try:
            await self._mail.send_message(message)  # type: ignore[union-attr]
        except Exception as exc:  # noqa: BLE001
            _stdlib_logger.warning(
                "email_service: failed to send email to %s subject=%r: %s",
                recipient,
                subject,
                exc,
            )
            return False
        return True


# ---------------------------------------------------------------------------
# FastAPI dependency
# ---------------------------------------------------------------------------


@lru_cache(maxsize=1)
def _get_email_service_singleton() -> EmailService:
    return EmailService(settings=get_settings())


def get_email_service() -> EmailService:
    """FastAPI dependency that returns the shared ``EmailService`` singleton."""
    return _get_email_service_singleton()


# ---------------------------------------------------------------------------
# Analysis notifications
# ---------------------------------------------------------------------------


async def _notifiable_user(session: AsyncSession, user_id: uuid.UUID) -> Optional[User]:
    result = await session.execute(select(User).where(User.id == user_id))
    user = result.scalar_one_or_none()
    if user is None or not user.email_notifications or not user.analysis_complete_emails:
        return None
    return user


async def notify_analysis_completed(
    session: AsyncSession,
    user_id: uuid.UUID,
    app_name: str,
    app_slug: str,
    *,
    report_url: Optional[str] = None,
    email_service: Optional[EmailService] = None,
) -> bool:
    """Email the report link to *user_id* if their preferences allow it.

    The link points at the public report page of *app_slug* unless an
    explicit *report_url* is given.

    Records an ``email_sent`` usage log entry on success; the caller commits.
    """
    user = await _notifiable_user(session, user_id)
    if user is None:
        return False
    service = email_service or get_email_service()
    report_url = report_url or service.report_url(app_slug)
    if not await service.send_analysis_completed(user.email, app_name, report_url):
        return False
    await log_usage(
        session,
        user_id,
        "email_sent",
        metadata={"type": "analysis_completed", "appName": app_name, "appSlug": app_slug},
    )
    return True


async def notify_analysis_failed(
    session: AsyncSession,
    user_id: uuid.UUID,
    app_name: str,
    error: Optional[str] = None,
    *,
    email_service: Optional[EmailService] = None,
) -> bool:
    """Email a failure notice to *user_id* if their preferences allow it."""
    user = await _notifiable_user(session, user_id)
    if user is None:
        return False
    service = email_service or get_email_service()
    if not await service.send_analysis_failed(user.email, app_name, error):
        return False
    await log_usage(
        session,
        user_id,
        "email_sent",
        metadata={"type": "analysis_failed", "appName": app_name, "error": error},
    )
    return True
