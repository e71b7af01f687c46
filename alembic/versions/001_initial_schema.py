"""Initial schema: users, billing, apps, reviews and analysis tasks.

Creates the complete ReviewInsight database schema in FK-dependency order:

1. users            identity, quota counters, OAuth ids, preferences
2. subscriptions    Stripe-backed paid plans (FK → users)
3. usage_logs       append-only audit trail (FK → users)
4. guest_analyses   anonymous analyses for the 24-hour guest limit
5. apps             one app per (platform, app_id)
6. reviews          scraped reviews, unique per (platform, review_id) (FK → apps)
7. analysis_tasks   background analyses and their progress (FK → users)
8. task_apps        apps taking part in a comparison (FK → analysis_tasks)

Revision ID: 001
Revises:
Create Date: 2026-10-17
"""

from __future__ import annotations

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects.postgresql import JSONB

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _now() -> sa.TextClause:
    return sa.text("NOW()")


def _uuid_pk() -> sa.Column:
    return sa.Column(
        "id", sa.UUID(), primary_key=True, server_default=sa.text("gen_random_uuid()")
    )


def _ts(name: str, *, nullable: bool = False, default: bool = False) -> sa.Column:
    return sa.Column(
        name,
        sa.TIMESTAMP(timezone=True),
        nullable=nullable,
        server_default=_now() if default else None,
    )


# ---------------------------------------------------------------------------
# upgrade
# ---------------------------------------------------------------------------

def upgrade() -> None:
    """Create all tables and indexes."""

    # ------------------------------------------------------------------
    # 1. users
    # ------------------------------------------------------------------
    op.create_table(
        "users",
        _uuid_pk(),
        sa.Column("email", sa.String(320), nullable=False),
        sa.Column("hashed_password", sa.String(1024), nullable=True),
        sa.Column("name", sa.String(200), nullable=True),
        sa.Column("is_active", sa.Boolean, nullable=False, server_default=sa.text("true")),
        sa.Column("is_superuser", sa.Boolean, nullable=False, server_default=sa.text("false")),
        sa.Column("is_verified", sa.Boolean, nullable=False, server_default=sa.text("false")),
        sa.Column(
            "subscription_tier", sa.String(20), nullable=False, server_default=sa.text("'free'")
        ),
        _ts("subscription_ends", nullable=True),
        sa.Column(
            "monthly_analysis_count", sa.Integer, nullable=False, server_default=sa.text("0")
        ),
        _ts("last_reset_date", default=True),
        sa.Column("google_id", sa.String(255), nullable=True),
        sa.Column("apple_id", sa.String(255), nullable=True),
        sa.Column(
            "email_notifications", sa.Boolean, nullable=False, server_default=sa.text("true")
        ),
        sa.Column(
            "analysis_complete_emails", sa.Boolean, nullable=False, server_default=sa.text("true")
        ),
        sa.Column("weekly_reports", sa.Boolean, nullable=False, server_default=sa.text("false")),
        sa.Column(
            "marketing_emails", sa.Boolean, nullable=False, server_default=sa.text("false")
        ),
        _ts("created_at", default=True),
        _ts("last_login_at", nullable=True),
        sa.UniqueConstraint("google_id", name="uq_users_google_id"),
        sa.UniqueConstraint("apple_id", name="uq_users_apple_id"),
    )
    op.create_index("ix_users_email", "users", ["email"], unique=True)

    # ------------------------------------------------------------------
    # 2. subscriptions
    # ------------------------------------------------------------------
    op.create_table(
        "subscriptions",
        _uuid_pk(),
        sa.Column(
            "user_id",
            sa.UUID(),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("tier", sa.String(20), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default=sa.text("'incomplete'")),
        sa.Column("interval", sa.String(10), nullable=False),
        sa.Column("price", sa.Numeric(10, 2), nullable=False),
        sa.Column("currency", sa.String(3), nullable=False, server_default=sa.text("'usd'")),
        _ts("current_period_start"),
        _ts("current_period_end"),
        sa.Column(
            "cancel_at_period_end", sa.Boolean, nullable=False, server_default=sa.text("false")
        ),
        _ts("canceled_at", nullable=True),
        sa.Column(
            "stripe_subscription_id", sa.String(255), nullable=False, server_default=sa.text("''")
        ),
        sa.Column(
            "stripe_customer_id", sa.String(255), nullable=False, server_default=sa.text("''")
        ),
        sa.Column("stripe_price_id", sa.String(255), nullable=False, server_default=sa.text("''")),
        _ts("created_at", default=True),
        _ts("updated_at", default=True),
    )
    op.create_index("ix_subscriptions_user_id", "subscriptions", ["user_id"])
    op.create_index(
        "ix_subscriptions_stripe_subscription_id", "subscriptions", ["stripe_subscription_id"]
    )

    # ------------------------------------------------------------------
    # 3. usage_logs
    # ------------------------------------------------------------------
    op.create_table(
        "usage_logs",
        _uuid_pk(),
        sa.Column(
            "user_id",
            sa.UUID(),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("action_type", sa.String(40), nullable=False),
        sa.Column("task_id", sa.UUID(), nullable=True),
        sa.Column("metadata", JSONB, nullable=True),
        _ts("created_at", default=True),
    )
    op.create_index("ix_usage_logs_user_id", "usage_logs", ["user_id"])
    op.create_index("ix_usage_logs_created_at", "usage_logs", ["created_at"])

    # ------------------------------------------------------------------
    # 4. guest_analyses
    # ------------------------------------------------------------------
    op.create_table(
        "guest_analyses",
        _uuid_pk(),
        sa.Column("ip_address", sa.String(64), nullable=False),
        sa.Column("fingerprint", sa.String(64), nullable=False),
        sa.Column("task_id", sa.UUID(), nullable=True),
        sa.Column("platform", sa.String(10), nullable=False),
        sa.Column("app_url", sa.Text, nullable=False),
        sa.Column("user_agent", sa.Text, nullable=True),
        _ts("created_at", default=True),
        _ts("expires_at"),
    )
    op.create_index(
        "idx_guest_analyses_ip_created", "guest_analyses", ["ip_address", "created_at"]
    )
    op.create_index(
        "idx_guest_analyses_fp_created", "guest_analyses", ["fingerprint", "created_at"]
    )
    op.create_index("ix_guest_analyses_expires_at", "guest_analyses", ["expires_at"])

    # ------------------------------------------------------------------
    # 5. apps
    # ------------------------------------------------------------------
    op.create_table(
        "apps",
        _uuid_pk(),
        sa.Column("platform", sa.String(10), nullable=False),
        sa.Column("app_id", sa.String(255), nullable=False),
        sa.Column("name", sa.String(500), nullable=False),
        sa.Column("bundle_id", sa.String(255), nullable=True),
        sa.Column("icon_url", sa.Text, nullable=True),
        sa.Column("rating", sa.Float, nullable=True),
        sa.Column("review_count", sa.Integer, nullable=True),
        sa.Column("developer", sa.String(500), nullable=True),
        sa.Column("category", sa.String(100), nullable=True),
        _ts("last_crawled_at", nullable=True),
        _ts("created_at", default=True),
        _ts("updated_at", default=True),
        sa.UniqueConstraint("platform", "app_id", name="uq_apps_platform_app_id"),
    )

    # ------------------------------------------------------------------
    # 6. reviews
    # ------------------------------------------------------------------
    op.create_table(
        "reviews",
        _uuid_pk(),
        sa.Column(
            "app_pk",
            sa.UUID(),
            sa.ForeignKey("apps.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("platform", sa.String(10), nullable=False),
        sa.Column("review_id", sa.String(255), nullable=False),
        sa.Column("author", sa.String(255), nullable=True),
        sa.Column("rating", sa.SmallInteger, nullable=False),
        sa.Column("title", sa.Text, nullable=True),
        sa.Column("content", sa.Text, nullable=False),
        _ts("review_date"),
        sa.Column("app_version", sa.String(50), nullable=True),
        sa.Column("helpful_count", sa.Integer, nullable=True),
        sa.Column("country", sa.String(5), nullable=True),
        _ts("created_at", default=True),
        sa.UniqueConstraint("platform", "review_id", name="uq_reviews_platform_review_id"),
    )
    op.create_index("idx_reviews_app_date", "reviews", ["app_pk", "review_date"])

    # ------------------------------------------------------------------
    # 7. analysis_tasks
    # ------------------------------------------------------------------
    op.create_table(
        "analysis_tasks",
        _uuid_pk(),
        sa.Column(
            "user_id",
            sa.UUID(),
            sa.ForeignKey("users.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("task_type", sa.String(20), nullable=False, server_default=sa.text("'single'")),
        sa.Column("status", sa.String(20), nullable=False, server_default=sa.text("'pending'")),
        sa.Column("progress", sa.Integer, nullable=False, server_default=sa.text("0")),
        sa.Column("platform", sa.String(10), nullable=True),
        sa.Column("app_store_id", sa.String(255), nullable=True),
        sa.Column("app_slug", sa.String(120), nullable=True),
        sa.Column("is_latest", sa.Boolean, nullable=False, server_default=sa.text("true")),
        sa.Column("options", JSONB, nullable=True),
        sa.Column("result", JSONB, nullable=True),
        sa.Column("error_msg", sa.Text, nullable=True),
        sa.Column("review_count", sa.Integer, nullable=True),
        _ts("created_at", default=True),
        _ts("started_at", nullable=True),
        _ts("completed_at", nullable=True),
        sa.CheckConstraint(
            "status IN ('pending', 'processing', 'completed', 'failed')",
            name="ck_analysis_tasks_status",
        ),
        sa.CheckConstraint(
            "progress >= 0 AND progress <= 100",
            name="ck_analysis_tasks_progress",
        ),
    )
    op.create_index("ix_analysis_tasks_app_slug", "analysis_tasks", ["app_slug"])
    op.create_index(
        "idx_analysis_tasks_app_latest",
        "analysis_tasks",
        ["platform", "app_store_id", "is_latest"],
    )
    op.create_index(
        "idx_analysis_tasks_user_created", "analysis_tasks", ["user_id", "created_at"]
    )

    # ------------------------------------------------------------------
    # 8. task_apps
    # ------------------------------------------------------------------
    op.create_table(
        "task_apps",
        _uuid_pk(),
        sa.Column(
            "task_id",
            sa.UUID(),
            sa.ForeignKey("analysis_tasks.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("platform", sa.String(10), nullable=False),
        sa.Column("app_store_id", sa.String(255), nullable=False),
        sa.Column("sort_order", sa.Integer, nullable=False, server_default=sa.text("0")),
    )
    op.create_index("ix_task_apps_task_id", "task_apps", ["task_id"])


# ---------------------------------------------------------------------------
# downgrade
# ---------------------------------------------------------------------------

def downgrade() -> None:
    """Drop all tables in reverse dependency order."""
    op.drop_table("task_apps")
    op.drop_table("analysis_tasks")
    op.drop_table("reviews")
    op.drop_table("apps")
    op.drop_table("guest_analyses")
    op.drop_table("usage_logs")
    op.drop_table("subscriptions")
    op.drop_table("users")
