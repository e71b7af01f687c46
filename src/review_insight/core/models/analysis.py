"""Analysis task ORM models.

Covers:
- AnalysisTask: one background analysis (single app or comparison) whose
  row doubles as the progress channel polled by the browser.
- TaskApp: the apps taking part in a comparison task, in display order.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Optional

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB, TIMESTAMP, UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from review_insight.core.models.base import Base

TASK_STATUSES: tuple[str, ...] = ("pending", "processing", "completed", "failed")
TASK_TYPES: tuple[str, ...] = ("single", "comparison")


class AnalysisTask(Base):
    """A single-app or multi-app analysis and its live progress.

    status progression (happy path):
        pending → processing → completed
    failure path:
        pending / processing → failed   (error_msg set)

    progress is a percentage in 0..100 written by the worker at fixed
    checkpoints.  result holds the finished report as JSON once status is
    'completed'.

    Exactly one task per (platform, app_store_id) should carry
    is_latest=True; the analyze endpoint clears the flag on older rows
    before inserting a new one.  Lookups by slug always take the newest
    is_latest row, so a stale duplicate is harmless.
    """

    __tablename__ = "analysis_tasks"
    __table_args__ = (
        sa.CheckConstraint(
            "status IN ('pending', 'processing', 'completed', 'failed')",
            name="ck_analysis_tasks_status",
        ),
        sa.CheckConstraint(
            "progress >= 0 AND progress <= 100",
            name="ck_analysis_tasks_progress",
        ),
        sa.Index("idx_analysis_tasks_app_latest", "platform", "app_store_id", "is_latest"),
        sa.Index("idx_analysis_tasks_user_created", "user_id", "created_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        server_default=sa.text("gen_random_uuid()"),
        default=uuid.uuid4,
    )
    user_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True),
        sa.ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )
    task_type: Mapped[str] = mapped_column(
        sa.String(20),
        nullable=False,
        server_default=sa.text("'single'"),
        default="single",
    )
    status: Mapped[str] = mapped_column(
        sa.String(20),
        nullable=False,
        server_default=sa.text("'pending'"),
        default="pending",
    )
    progress: Mapped[int] = mapped_column(
        sa.Integer,
        nullable=False,
        server_default=sa.text("0"),
        default=0,
    )
    platform: Mapped[Optional[str]] = mapped_column(sa.String(10), nullable=True)
    app_store_id: Mapped[Optional[str]] = mapped_column(sa.String(255), nullable=True)
    app_slug: Mapped[Optional[str]] = mapped_column(
        sa.String(120),
        nullable=True,
        index=True,
    )
    is_latest: Mapped[bool] = mapped_column(
        sa.Boolean,
        nullable=False,
        server_default=sa.text("true"),
        default=True,
    )
    options: Mapped[Optional[dict]] = mapped_column(JSONB, nullable=True)
    result: Mapped[Optional[dict]] = mapped_column(JSONB, nullable=True)
    error_msg: Mapped[Optional[str]] = mapped_column(sa.Text, nullable=True)
    review_count: Mapped[Optional[int]] = mapped_column(sa.Integer, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=False,
        server_default=sa.text("NOW()"),
    )
    started_at: Mapped[Optional[datetime]] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=True,
    )
    completed_at: Mapped[Optional[datetime]] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=True,
    )

    apps: Mapped[list[TaskApp]] = relationship(
        "TaskApp",
        back_populates="task",
        cascade="all, delete-orphan",
        order_by="TaskApp.sort_order",
    )

    def __repr__(self) -> str:
        return (
            f"<AnalysisTask id={self.id} type={self.task_type!r} "
            f"status={self.status!r} progress={self.progress}>"
        )


class TaskApp(Base):
    """One app participating in a comparison task."""

    __tablename__ = "task_apps"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        server_default=sa.text("gen_random_uuid()"),
        default=uuid.uuid4,
    )
    task_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        sa.ForeignKey("analysis_tasks.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    platform: Mapped[str] = mapped_column(sa.String(10), nullable=False)
    app_store_id: Mapped[str] = mapped_column(sa.String(255), nullable=False)
    sort_order: Mapped[int] = mapped_column(
        sa.Integer,
        nullable=False,
        server_default=sa.text("0"),
        default=0,
    )

    task: Mapped[AnalysisTask] = relationship("AnalysisTask", back_populates="apps")

    def __repr__(self) -> str:
        return f"<TaskApp task_id={self.task_id} {self.platform}:{self.app_store_id}>"
