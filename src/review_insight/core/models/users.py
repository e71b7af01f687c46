"""User, billing and usage ORM models.

Covers:
- User: the identity record, compatible with FastAPI-Users conventions,
  plus subscription tier, monthly quota counters, OAuth identities and
  notification preferences.
- Subscription: a Stripe-backed paid plan for a user.
- UsageLog: append-only audit trail of user actions.
- GuestAnalysis: one analysis started by an anonymous visitor, keyed by IP
  and browser fingerprint for the 24-hour guest limit.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from decimal import Decimal
from typing import Optional

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB, TIMESTAMP, UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from review_insight.core.models.base import Base


def _utcnow() -> datetime:
    return datetime.now(tz=UTC)


class User(Base):
    """A registered ReviewInsight account.

    hashed_password is NULL for accounts created through Google or Apple
    sign-in; such accounts cannot log in with a password until one is set.

    monthly_analysis_count is reset lazily: the subscription service compares
    last_reset_date with the current month on every quota check.
    """

    __tablename__ = "users"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        server_default=sa.text("gen_random_uuid()"),
        default=uuid.uuid4,
    )
    email: Mapped[str] = mapped_column(
        sa.String(320),
        unique=True,
        nullable=False,
        index=True,
    )
    hashed_password: Mapped[Optional[str]] = mapped_column(
        sa.String(1024),
        nullable=True,
    )
    name: Mapped[Optional[str]] = mapped_column(
        sa.String(200),
        nullable=True,
    )
    is_active: Mapped[bool] = mapped_column(
        sa.Boolean,
        nullable=False,
        server_default=sa.text("true"),
        default=True,
    )
    is_superuser: Mapped[bool] = mapped_column(
        sa.Boolean,
        nullable=False,
        server_default=sa.text("false"),
        default=False,
    )
    is_verified: Mapped[bool] = mapped_column(
        sa.Boolean,
        nullable=False,
        server_default=sa.text("false"),
        default=False,
    )

    # Subscription and quota
    subscription_tier: Mapped[str] = mapped_column(
        sa.String(20),
        nullable=False,
        server_default=sa.text("'free'"),
        default="free",
    )
    subscription_ends: Mapped[Optional[datetime]] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=True,
    )
    monthly_analysis_count: Mapped[int] = mapped_column(
        sa.Integer,
        nullable=False,
        server_default=sa.text("0"),
        default=0,
    )
    last_reset_date: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=False,
        server_default=sa.text("NOW()"),
        default=_utcnow,
    )

    # OAuth identities
    google_id: Mapped[Optional[str]] = mapped_column(
        sa.String(255),
        unique=True,
        nullable=True,
    )
    apple_id: Mapped[Optional[str]] = mapped_column(
        sa.String(255),
        unique=True,
        nullable=True,
    )

    # Notification preferences
    email_notifications: Mapped[bool] = mapped_column(
        sa.Boolean,
        nullable=False,
        server_default=sa.text("true"),
        default=True,
    )
    analysis_complete_emails: Mapped[bool] = mapped_column(
        sa.Boolean,
        nullable=False,
        server_default=sa.text("true"),
        default=True,
    )
    weekly_reports: Mapped[bool] = mapped_column(
        sa.Boolean,
        nullable=False,
        server_default=sa.text("false"),
        default=False,
    )
    marketing_emails: Mapped[bool] = mapped_column(
        sa.Boolean,
        nullable=False,
        server_default=sa.text("false"),
        default=False,
    )

    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=False,
        server_default=sa.text("NOW()"),
    )
    last_login_at: Mapped[Optional[datetime]] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=True,
    )

    # Relationships
    subscriptions: Mapped[list[Subscription]] = relationship(
        "Subscription",
        back_populates="user",
        cascade="all, delete-orphan",
    )
    usage_logs: Mapped[list[UsageLog]] = relationship(
        "UsageLog",
        back_populates="user",
        cascade="all, delete-orphan",
    )

    def __repr__(self) -> str:
        return (
            f"<User id={self.id} email={self.email!r} "
            f"tier={self.subscription_tier!r}>"
        )


class Subscription(Base):
    """A paid plan purchased through Stripe Checkout.

    status follows Stripe's subscription lifecycle:
        incomplete → active → (past_due →) canceled

    A row is created with status 'incomplete' and empty Stripe ids when the
    checkout session is opened; the ``checkout.session.completed`` webhook
    fills in the ids and activates it.  price is stored in whole currency
    units (e.g. 29.00 USD).
    """

    __tablename__ = "subscriptions"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        server_default=sa.text("gen_random_uuid()"),
        default=uuid.uuid4,
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        sa.ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    tier: Mapped[str] = mapped_column(sa.String(20), nullable=False)
    status: Mapped[str] = mapped_column(
        sa.String(20),
        nullable=False,
        server_default=sa.text("'incomplete'"),
        default="incomplete",
    )
    interval: Mapped[str] = mapped_column(sa.String(10), nullable=False)
    price: Mapped[Decimal] = mapped_column(sa.Numeric(10, 2), nullable=False)
    currency: Mapped[str] = mapped_column(
        sa.String(3),
        nullable=False,
        server_default=sa.text("'usd'"),
        default="usd",
    )
    current_period_start: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=False,
    )
    current_period_end: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=False,
    )
    cancel_at_period_end: Mapped[bool] = mapped_column(
        sa.Boolean,
        nullable=False,
        server_default=sa.text("false"),
        default=False,
    )
    canceled_at: Mapped[Optional[datetime]] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=True,
    )
    stripe_subscription_id: Mapped[str] = mapped_column(
        sa.String(255),
        nullable=False,
        server_default=sa.text("''"),
        default="",
        index=True,
    )
    stripe_customer_id: Mapped[str] = mapped_column(
        sa.String(255),
        nullable=False,
        server_default=sa.text("''"),
        default="",
    )
    stripe_price_id: Mapped[str] = mapped_column(
        sa.String(255),
        nullable=False,
        server_default=sa.text("''"),
        default="",
    )
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=False,
        server_default=sa.text("NOW()"),
    )
    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=False,
        server_default=sa.text("NOW()"),
        onupdate=sa.text("NOW()"),
    )

    user: Mapped[User] = relationship("User", back_populates="subscriptions")

    def __repr__(self) -> str:
        return (
            f"<Subscription id={self.id} user_id={self.user_id} "
            f"tier={self.tier!r} status={self.status!r}>"
        )


class UsageLog(Base):
    """An immutable audit record of a user action.

    action_type is one of: signup, login, analysis_started,
    analysis_completed, analysis_failed, subscription_upgraded,
    subscription_downgraded, email_sent.
    """

    __tablename__ = "usage_logs"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        server_default=sa.text("gen_random_uuid()"),
        default=uuid.uuid4,
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        sa.ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    action_type: Mapped[str] = mapped_column(sa.String(40), nullable=False)
    task_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True),
        nullable=True,
    )
    metadata_: Mapped[Optional[dict]] = mapped_column(
        "metadata",
        JSONB,
        nullable=True,
    )
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=False,
        server_default=sa.text("NOW()"),
        index=True,
    )

    user: Mapped[User] = relationship("User", back_populates="usage_logs")

    def __repr__(self) -> str:
        return f"<UsageLog id={self.id} user_id={self.user_id} action={self.action_type!r}>"


class GuestAnalysis(Base):
    """An analysis started by an anonymous visitor.

    Rows expire 24 hours after creation and are purged hourly by the
    ``cleanup_expired_guest_analyses`` beat task.
    """

    __tablename__ = "guest_analyses"
    __table_args__ = (
        sa.Index("idx_guest_analyses_ip_created", "ip_address", "created_at"),
        sa.Index("idx_guest_analyses_fp_created", "fingerprint", "created_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        server_default=sa.text("gen_random_uuid()"),
        default=uuid.uuid4,
    )
    ip_address: Mapped[str] = mapped_column(sa.String(64), nullable=False)
    fingerprint: Mapped[str] = mapped_column(sa.String(64), nullable=False)
    task_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True),
        nullable=True,
    )
    platform: Mapped[str] = mapped_column(sa.String(10), nullable=False)
    app_url: Mapped[str] = mapped_column(sa.Text, nullable=False)
    user_agent: Mapped[Optional[str]] = mapped_column(sa.Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=False,
        server_default=sa.text("NOW()"),
    )
    expires_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=False,
        index=True,
    )

    def __repr__(self) -> str:
        return f"<GuestAnalysis id={self.id} ip={self.ip_address!r}>"
