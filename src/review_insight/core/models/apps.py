"""Storefront app and review ORM models.

Covers:
- App: one app on one storefront, identified by (platform, app_id) where
  app_id is the numeric App Store track id or the Google Play package name.
- Review: one scraped user review, identified by (platform, review_id).

Both natural keys carry unique constraints; writers insert with
``ON CONFLICT DO NOTHING`` / ``DO UPDATE`` so concurrent analyses of the
same app never produce duplicate rows.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Optional

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import TIMESTAMP, UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from review_insight.core.models.base import Base, TimestampMixin


class App(TimestampMixin, Base):
    """An app on the App Store (``ios``) or Google Play (``android``).

    category holds the unified category name produced by
    :func:`review_insight.core.category.normalize_category` when the row is
    created; refreshes store the raw storefront genre.

    last_crawled_at is advanced after every scrape and drives the 24-hour
    freshness check of the incremental scraper.
    """

    __tablename__ = "apps"
    __table_args__ = (
        sa.UniqueConstraint("platform", "app_id", name="uq_apps_platform_app_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        server_default=sa.text("gen_random_uuid()"),
        default=uuid.uuid4,
    )
    platform: Mapped[str] = mapped_column(sa.String(10), nullable=False)
    app_id: Mapped[str] = mapped_column(sa.String(255), nullable=False)
    name: Mapped[str] = mapped_column(sa.String(500), nullable=False)
    bundle_id: Mapped[Optional[str]] = mapped_column(sa.String(255), nullable=True)
    icon_url: Mapped[Optional[str]] = mapped_column(sa.Text, nullable=True)
    rating: Mapped[Optional[float]] = mapped_column(sa.Float, nullable=True)
    review_count: Mapped[Optional[int]] = mapped_column(sa.Integer, nullable=True)
    developer: Mapped[Optional[str]] = mapped_column(sa.String(500), nullable=True)
    category: Mapped[Optional[str]] = mapped_column(sa.String(100), nullable=True)
    last_crawled_at: Mapped[Optional[datetime]] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=True,
    )

    reviews: Mapped[list[Review]] = relationship(
        "Review",
        back_populates="app",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    def __repr__(self) -> str:
        return f"<App id={self.id} platform={self.platform!r} app_id={self.app_id!r}>"


class Review(Base):
    """A single user review scraped from a storefront.

    review_id is the storefront's own identifier; it is only unique within
    a platform.  country is the storefront region the review was fetched
    from, or NULL when scraped without a region.
    """

    __tablename__ = "reviews"
    __table_args__ = (
        sa.UniqueConstraint("platform", "review_id", name="uq_reviews_platform_review_id"),
        sa.Index("idx_reviews_app_date", "app_pk", "review_date"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        server_default=sa.text("gen_random_uuid()"),
        default=uuid.uuid4,
    )
    app_pk: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        sa.ForeignKey("apps.id", ondelete="CASCADE"),
        nullable=False,
    )
    platform: Mapped[str] = mapped_column(sa.String(10), nullable=False)
    review_id: Mapped[str] = mapped_column(sa.String(255), nullable=False)
    author: Mapped[Optional[str]] = mapped_column(sa.String(255), nullable=True)
    rating: Mapped[int] = mapped_column(sa.SmallInteger, nullable=False)
    title: Mapped[Optional[str]] = mapped_column(sa.Text, nullable=True)
    content: Mapped[str] = mapped_column(sa.Text, nullable=False)
    review_date: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=False,
    )
    app_version: Mapped[Optional[str]] = mapped_column(sa.String(50), nullable=True)
    helpful_count: Mapped[Optional[int]] = mapped_column(sa.Integer, nullable=True)
    country: Mapped[Optional[str]] = mapped_column(sa.String(5), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=False,
        server_default=sa.text("NOW()"),
    )

    app: Mapped[App] = relationship("App", back_populates="reviews")

    def __repr__(self) -> str:
        return f"<Review id={self.id} platform={self.platform!r} review_id={self.review_id!r}>"
