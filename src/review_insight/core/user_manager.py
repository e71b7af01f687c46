"""FastAPI-Users integration: UserManager, Pydantic schemas, and database adapter.

Exports:
    UserRead, UserCreate, UserUpdate: Pydantic schemas for FastAPI-Users.
    UserManager: The FastAPI-Users manager class.
    ReviewInsightUserDatabase: SQLAlchemy adapter with OAuth identity lookups.
    get_user_db: FastAPI dependency yielding ReviewInsightUserDatabase.
    get_user_manager: FastAPI dependency yielding UserManager.

Accounts created through Google or Apple sign-in have no password hash.
:meth:`UserManager.authenticate` refuses password logins for such accounts
instead of comparing against an empty hash.
"""

from __future__ import annotations

import uuid
from collections.abc import AsyncGenerator
from datetime import UTC, datetime
from typing import Any, Optional

import structlog
from fastapi import Depends, Request, Response
from fastapi.security import OAuth2PasswordRequestForm
from fastapi_users import (
    BaseUserManager,
    InvalidPasswordException,
    UUIDIDMixin,
    exceptions,
    schemas,
)
from fastapi_users.db import SQLAlchemyUserDatabase
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from review_insight.config.settings import get_settings
from review_insight.core.database import get_db
from review_insight.core.email_service import get_email_service
from review_insight.core.models.users import User
from review_insight.core.subscription import log_usage

logger = structlog.get_logger(__name__)

MIN_PASSWORD_LENGTH = 6

OAUTH_ID_COLUMNS: dict[str, Any] = {
    "google": User.google_id,
    "apple": User.apple_id,
}


# ---------------------------------------------------------------------------
# Pydantic schemas (FastAPI-Users contract)
# ---------------------------------------------------------------------------


class UserRead(schemas.BaseUser[uuid.UUID]):
    """Public user representation returned by API endpoints."""

    name: Optional[str] = None
    subscription_tier: str = "free"
    monthly_analysis_count: int = 0
    created_at: Optional[datetime] = None
    last_login_at: Optional[datetime] = None


class UserCreate(schemas.BaseUserCreate):
    """Schema for new user registration.

    ``subscription_tier`` cannot be set at registration; every account
    starts on the free plan.
    """

    name: Optional[str] = None


class UserUpdate(schemas.BaseUserUpdate):
    """Schema for self-service profile updates."""

    name: Optional[str] = None


# ---------------------------------------------------------------------------
# Custom SQLAlchemy user database adapter
# ---------------------------------------------------------------------------


class ReviewInsightUserDatabase(SQLAlchemyUserDatabase):
    """SQLAlchemy adapter that also resolves users by OAuth subject."""

    async def get_by_oauth_id(self, provider: str, subject: str) -> Optional[User]:
        """Fetch the user linked to *subject* at *provider* (``google``/``apple``).

        Raises:
            KeyError: If *provider* is not supported.
        """
        column = OAUTH_ID_COLUMNS[provider]
        result = await self.session.execute(select(User).where(column == subject))
        return result.scalars().first()


# ---------------------------------------------------------------------------
# UserManager
# ---------------------------------------------------------------------------


class UserManager(UUIDIDMixin, BaseUserManager[User, uuid.UUID]):
    """FastAPI-Users UserManager with ReviewInsight lifecycle hooks.

    Uses ``secret_key`` from application settings for both password-reset
    and verification token signing.
    """

    @property
    def reset_password_token_secret(self) -> str:
        return get_settings().secret_key

    @property
    def verification_token_secret(self) -> str:
        return get_settings().secret_key

    async def validate_password(self, password: str, user: Any) -> None:
        """Reject passwords shorter than six characters."""
        if len(password) < MIN_PASSWORD_LENGTH:
            raise InvalidPasswordException(
                reason=f"Password must be at least {MIN_PASSWORD_LENGTH} characters"
            )

    async def authenticate(self, credentials: OAuth2PasswordRequestForm) -> Optional[User]:
        """Password login; accounts without a password hash never match."""
        try:
            user = await self.get_by_email(credentials.username)
        except exceptions.UserNotExists:
            # Hash anyway so response timing does not reveal unknown emails.
            self.password_helper.hash(credentials.password)
            return None

        if not user.hashed_password:
            logger.info("auth.password_login_for_oauth_account", user_id=str(user.id))
            return None
        return await super().authenticate(credentials)

    async def oauth_login(
        self,
        provider: str,
        subject: str,
        email: str,
        *,
        name: Optional[str] = None,
        is_verified: bool = False,
        request: Optional[Request] = None,
    ) -> User:
        """Resolve an OAuth identity to a user, linking or creating as needed.

        Lookup order: the provider subject, then the email address (the
        existing account gets the provider id linked), then a new
        password-less account.  The login hook runs in every case and the
        register hook for new accounts.

        Raises:
            KeyError: If *provider* is not supported.
        """
        user_db: ReviewInsightUserDatabase = self.user_db  # type: ignore[assignment]
        column_name = OAUTH_ID_COLUMNS[provider].key

        user = await user_db.get_by_oauth_id(provider, subject)
        created = False
        if user is None:
            user = await user_db.get_by_email(email)
            if user is not None:
                update: dict[str, Any] = {column_name: subject}
                if is_verified and not user.is_verified:
                    update["is_verified"] = True
                user = await user_db.update(user, update)
                logger.info("oauth_account_linked", provider=provider, user_id=str(user.id))
            else:
                user = await user_db.create(
                    {
                        "email": email,
                        "hashed_password": None,
                        "name": name or email.split("@")[0],
                        column_name: subject,
                        "is_active": True,
                        "is_verified": is_verified,
                    }
                )
                created = True

        if created:
            await self.on_after_register(user, request)
        await self.on_after_login(user, request)
        return user

    async def on_after_register(self, user: User, request: Optional[Request] = None) -> None:
        """Record the signup and send the welcome email."""
        session: AsyncSession = self.user_db.session  # type: ignore[attr-defined]
        await log_usage(
            session,
            user.id,
            "signup",
            metadata={"method": "password" if user.hashed_password else "oauth"},
        )
        await session.commit()
        logger.info("new_user_registered", user_id=str(user.id), email=user.email)
        await get_email_service().send_welcome_email(user.email, user.name)

    async def on_after_login(
        self,
        user: User,
        request: Optional[Request] = None,
        response: Optional[Response] = None,
    ) -> None:
        """Stamp ``last_login_at`` and record the login."""
        session: AsyncSession = self.user_db.session  # type: ignore[attr-defined]
        user.last_login_at = datetime.now(tz=UTC)
        session.add(user)
        await log_usage(session, user.id, "login")
        await session.commit()

    async def on_after_forgot_password(
        self, user: User, token: str, request: Optional[Request] = None
    ) -> None:
        logger.info("password_reset_requested", user_id=str(user.id), email=user.email)


# ---------------------------------------------------------------------------
# FastAPI dependency factories
# ---------------------------------------------------------------------------


async def get_user_db(
    session: AsyncSession = Depends(get_db),
) -> AsyncGenerator[ReviewInsightUserDatabase, None]:
    """Provide a ``ReviewInsightUserDatabase`` bound to the request session."""
    yield ReviewInsightUserDatabase(session, User)


async def get_user_manager(
    user_db: ReviewInsightUserDatabase = Depends(get_user_db),
) -> AsyncGenerator[UserManager, None]:
    """Provide a ``UserManager`` instance for FastAPI-Users."""
    yield UserManager(user_db)
