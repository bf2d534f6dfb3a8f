from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import List, Optional

import sqlalchemy as sa
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return uuid.uuid4().hex


class Base(DeclarativeBase):
    pass


class Run(Base):
    """One processed event. `event_key` is unique so each event is recorded once."""
    __tablename__ = "runs"
    id: Mapped[str] = mapped_column(sa.String(32), primary_key=True, default=new_id)
    event_key: Mapped[str] = mapped_column(sa.String(255), unique=True, nullable=False)
    kind: Mapped[str] = mapped_column(sa.String(64), nullable=False)
    branch: Mapped[str] = mapped_column(sa.Text, nullable=False)
    is_draft: Mapped[bool] = mapped_column(sa.Boolean, nullable=False, default=False)
    sha: Mapped[Optional[str]] = mapped_column(sa.String(64), nullable=True)
    pr_number: Mapped[Optional[int]] = mapped_column(sa.Integer, nullable=True)
    admitted: Mapped[bool] = mapped_column(sa.Boolean, nullable=False)
    # queued | running | passed | failed | cancelled | error
    status: Mapped[str] = mapped_column(sa.String(16), nullable=False)
    error: Mapped[Optional[str]] = mapped_column(sa.Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(sa.DateTime(timezone=True), nullable=False, default=now_utc)
    finished_at: Mapped[Optional[datetime]] = mapped_column(sa.DateTime(timezone=True), nullable=True)

    jobs: Mapped[List["JobRecord"]] = relationship(
        back_populates="run",
        cascade="all, delete-orphan",
        order_by="JobRecord.position",
        lazy="selectin",
    )


class JobRecord(Base):
    __tablename__ = "job_results"
    id: Mapped[int] = mapped_column(sa.Integer, primary_key=True, autoincrement=True)
    run_id: Mapped[str] = mapped_column(sa.String(32), sa.ForeignKey("runs.id", ondelete="CASCADE"), nullable=False)
    # declaration order within the workflow
    position: Mapped[int] = mapped_column(sa.Integer, nullable=False)
    job_name: Mapped[str] = mapped_column(sa.Text, nullable=False)
    status: Mapped[str] = mapped_column(sa.String(16), nullable=False)
    failing_step_index: Mapped[Optional[int]] = mapped_column(sa.Integer, nullable=True)
    failing_step_label: Mapped[Optional[str]] = mapped_column(sa.Text, nullable=True)
    reason: Mapped[Optional[str]] = mapped_column(sa.Text, nullable=True)
    duration_s: Mapped[float] = mapped_column(sa.Float, nullable=False, default=0.0)

    run: Mapped[Run] = relationship(back_populates="jobs")
