"""Activity log and reconciliation models."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import JSON, CheckConstraint, DateTime, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from revenue_engine.models.base import Base, TimestampMixin, utcnow


class ActivityLog(Base, TimestampMixin):
    """Who did what, when. Written for every state-changing action."""

    __tablename__ = "activity_log"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    actor: Mapped[str] = mapped_column(String(320), nullable=False)
    actor_type: Mapped[str] = mapped_column(String(20), nullable=False, default="system")
    action: Mapped[str] = mapped_column(String(60), nullable=False, index=True)
    details: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)


class ReconciliationRun(Base):
    """Summary of one orphaned-capture sweep."""

    __tablename__ = "reconciliation_run"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    finished_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    window_start: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    window_end: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    source: Mapped[str] = mapped_column(String(30), nullable=False, default="cron")
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="running")
    captures_checked: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    orphans_found: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    new_orphans: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    auto_resolved: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    error: Mapped[str | None] = mapped_column(Text, nullable=True)

    __table_args__ = (
        CheckConstraint(
            "status IN ('running', 'completed', 'failed')",
            name="reconciliation_run_status_ck",
        ),
    )


class OrphanedPayment(Base):
    """Gateway capture with no matching internal payment.

    One row per gateway payment id however many sweeps detect it.
    Resolution is a human decision recorded by an admin.
    """

    __tablename__ = "orphaned_payment"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    gateway_payment_id: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    gateway_order_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    amount: Mapped[Decimal] = mapped_column(nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="INR")
    email: Mapped[str | None] = mapped_column(String(320), nullable=True)
    contact: Mapped[str | None] = mapped_column(String(32), nullable=True)
    captured_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    first_detected_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    last_detected_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    detection_count: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    last_run_id: Mapped[UUID | None] = mapped_column(nullable=True)
    resolution_status: Mapped[str] = mapped_column(String(20), nullable=False, default="open")
    resolution: Mapped[str | None] = mapped_column(Text, nullable=True)
    resolved_by: Mapped[str | None] = mapped_column(String(320), nullable=True)
    resolved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        CheckConstraint(
            "resolution_status IN ('open', 'resolved')",
            name="orphaned_payment_status_ck",
        ),
    )
