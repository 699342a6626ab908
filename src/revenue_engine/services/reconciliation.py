"""Payment reconciliation - orphaned capture detection.

Compares payments the gateway reports as captured against internal payment
and enrollment records. A capture with no internal match is logged as an
orphan for a human to resolve (create the missing enrollment, or refund).
Nothing is remediated automatically.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Callable
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from revenue_engine.engine_config import ReconciliationPolicy
from revenue_engine.errors import (
    CaptureFeedError,
    ConfigurationError,
    NotFoundError,
    SplitValidationError,
)
from revenue_engine.models import Enrollment, OrphanedPayment, Payment, ReconciliationRun
from revenue_engine.providers.base import CapturedPayment, CaptureFeedProvider
from revenue_engine.services.audit import SYSTEM_ACTOR, ActivityLogger

logger = logging.getLogger(__name__)

MAX_LOOKBACK_DAYS = 90


@dataclass
class ReconciliationSummary:
    """Result of a reconciliation run."""

    run_id: UUID
    window_start: datetime
    window_end: datetime
    status: str = "running"
    captures_checked: int = 0
    orphans_found: int = 0
    new_orphans: int = 0
    auto_resolved: int = 0
    error: str | None = None
    orphans: list[dict[str, Any]] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.status == "completed"

    def to_dict(self) -> dict[str, Any]:
        return {
            "run_id": str(self.run_id),
            "window_start": self.window_start,
            "window_end": self.window_end,
            "status": self.status,
            "captures_checked": self.captures_checked,
            "orphans_found": self.orphans_found,
            "new_orphans": self.new_orphans,
            "auto_resolved": self.auto_resolved,
            "error": self.error,
            "orphans": self.orphans,
        }


def orphan_to_dict(orphan: OrphanedPayment) -> dict[str, Any]:
    return {
        "id": orphan.id,
        "gateway_payment_id": orphan.gateway_payment_id,
        "gateway_order_id": orphan.gateway_order_id,
        "amount": orphan.amount,
        "currency": orphan.currency,
        "email": orphan.email,
        "contact": orphan.contact,
        "captured_at": orphan.captured_at,
        "first_detected_at": orphan.first_detected_at,
        "last_detected_at": orphan.last_detected_at,
        "detection_count": orphan.detection_count,
        "resolution_status": orphan.resolution_status,
        "resolution": orphan.resolution,
        "resolved_by": orphan.resolved_by,
        "resolved_at": orphan.resolved_at,
    }


def run_to_dict(run: ReconciliationRun) -> dict[str, Any]:
    return {
        "run_id": run.id,
        "started_at": run.started_at,
        "finished_at": run.finished_at,
        "window_start": run.window_start,
        "window_end": run.window_end,
        "source": run.source,
        "status": run.status,
        "captures_checked": run.captures_checked,
        "orphans_found": run.orphans_found,
        "new_orphans": run.new_orphans,
        "auto_resolved": run.auto_resolved,
        "error": run.error,
    }


class PaymentReconciliationDetector:
    """Sweeps the capture feed for payments with no internal record."""

    def __init__(
        self,
        db: Session,
        feed: CaptureFeedProvider | None,
        policy: ReconciliationPolicy | None = None,
        *,
        clock: Callable[[], datetime] | None = None,
    ):
        self.db = db
        self.feed = feed
        self.policy = policy or ReconciliationPolicy()
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self.audit = ActivityLogger(db)

    def fetch_captures(self, window_start: datetime, window_end: datetime) -> list[CapturedPayment]:
        """Page through the feed up to policy.max_records payments."""
        if self.feed is None:
            raise ConfigurationError("No capture feed configured")
        payments: list[CapturedPayment] = []
        skip = 0
        while len(payments) < self.policy.max_records:
            page = self.feed.fetch_payments(
                window_start=window_start,
                window_end=window_end,
                count=self.policy.page_size,
                skip=skip,
            )
            payments.extend(page)
            if len(page) < self.policy.page_size:
                break
            skip += self.policy.page_size
        else:
            logger.warning(
                "capture feed truncated at %d records for window %s..%s",
                self.policy.max_records,
                window_start,
                window_end,
            )
        return payments[: self.policy.max_records]

    def _known_payment_ids(self, gateway_ids: list[str]) -> set[str]:
        if not gateway_ids:
            return set()
        known = set(
            self.db.execute(
                select(Payment.gateway_payment_id).where(Payment.gateway_payment_id.in_(gateway_ids))
            ).scalars()
        )
        known.update(
            self.db.execute(
                select(Enrollment.gateway_payment_id).where(
                    Enrollment.gateway_payment_id.in_(gateway_ids)
                )
            ).scalars()
        )
        return known

    def run(
        self,
        *,
        lookback_days: int | None = None,
        source: str = "cron",
    ) -> ReconciliationSummary:
        """Run one sweep.

        A feed failure is recorded on the run and returned in the summary
        rather than raised.
        """
        if lookback_days is None:
            lookback_days = self.policy.lookback_days
        if not 1 <= lookback_days <= MAX_LOOKBACK_DAYS:
            raise SplitValidationError(
                f"lookback_days must be between 1 and {MAX_LOOKBACK_DAYS}",
                {"lookback_days": lookback_days},
            )

        now = self.clock()
        window_start = now - timedelta(days=lookback_days)
        run = ReconciliationRun(
            started_at=now,
            window_start=window_start,
            window_end=now,
            source=source,
            status="running",
        )
        self.db.add(run)
        self.db.flush()
        summary = ReconciliationSummary(run_id=run.id, window_start=window_start, window_end=now)

        logger.info("reconciliation run %s window=%s..%s", run.id, window_start, now)

        try:
            captures = self.fetch_captures(window_start, now)
        except CaptureFeedError as e:
            logger.error("reconciliation run %s failed: %s", run.id, e)
            run.status = summary.status = "failed"
            run.error = summary.error = str(e)
            run.finished_at = self.clock()
            self.db.flush()
            self.audit.record("payment_reconciliation_failed", details={"run_id": run.id, "error": str(e)})
            return summary

        captured = {c.payment_id: c for c in captures if c.status == "captured"}
        known = self._known_payment_ids(list(captured))
        summary.captures_checked = len(captured)

        for payment_id, capture in captured.items():
            if payment_id in known:
                continue
            orphan, is_new = self._record_orphan(capture, run.id, now)
            summary.orphans_found += 1
            if is_new:
                summary.new_orphans += 1
            summary.orphans.append(orphan_to_dict(orphan))

        summary.auto_resolved = self._auto_resolve(now)

        run.status = summary.status = "completed"
        run.captures_checked = summary.captures_checked
        run.orphans_found = summary.orphans_found
        run.new_orphans = summary.new_orphans
        run.auto_resolved = summary.auto_resolved
        run.finished_at = self.clock()
        self.db.flush()

        self.audit.record(
            "payment_reconciliation_run",
            details={k: v for k, v in summary.to_dict().items() if k != "orphans"},
        )
        if summary.orphans_found:
            logger.warning(
                "reconciliation run %s found %d orphaned captures (%d new)",
                run.id,
                summary.orphans_found,
                summary.new_orphans,
            )
        return summary

    def _find_orphan(self, gateway_payment_id: str) -> OrphanedPayment | None:
        return self.db.execute(
            select(OrphanedPayment).where(OrphanedPayment.gateway_payment_id == gateway_payment_id)
        ).scalar_one_or_none()

    def _bump_orphan(self, orphan: OrphanedPayment, run_id: UUID, now: datetime) -> OrphanedPayment:
        orphan.last_detected_at = now
        orphan.detection_count += 1
        orphan.last_run_id = run_id
        self.db.flush()
        return orphan

    def _record_orphan(
        self, capture: CapturedPayment, run_id: UUID, now: datetime
    ) -> tuple[OrphanedPayment, bool]:
        """Insert or bump the orphan row for one gateway payment id.

        An overlapping run may insert the same gateway id between the
        lookup and the insert; the unique key catches it and the row is
        treated as a repeat detection.
        """
        orphan = self._find_orphan(capture.payment_id)
        if orphan is not None:
            return self._bump_orphan(orphan, run_id, now), False

        orphan = OrphanedPayment(
            gateway_payment_id=capture.payment_id,
            gateway_order_id=capture.order_id,
            amount=capture.amount,
            currency=capture.currency,
            email=capture.email,
            contact=capture.contact,
            captured_at=capture.created_at,
            first_detected_at=now,
            last_detected_at=now,
            detection_count=1,
            last_run_id=run_id,
            resolution_status="open",
        )
        try:
            with self.db.begin_nested():
                self.db.add(orphan)
                self.db.flush()
        except IntegrityError:
            existing = self._find_orphan(capture.payment_id)
            if existing is None:
                raise
            logger.info(
                "orphan %s recorded by an overlapping run; counting as repeat",
                capture.payment_id,
            )
            return self._bump_orphan(existing, run_id, now), False
        return orphan, True

    def _auto_resolve(self, now: datetime) -> int:
        """Close open orphans that have since gained an internal record."""
        open_orphans = list(
            self.db.execute(
                select(OrphanedPayment).where(OrphanedPayment.resolution_status == "open")
            ).scalars()
        )
        matched = self._known_payment_ids([o.gateway_payment_id for o in open_orphans])
        resolved = 0
        for orphan in open_orphans:
            if orphan.gateway_payment_id not in matched:
                continue
            orphan.resolution_status = "resolved"
            orphan.resolution = "Internal payment record found"
            orphan.resolved_by = SYSTEM_ACTOR
            orphan.resolved_at = now
            resolved += 1
        if resolved:
            self.db.flush()
            logger.info("auto-resolved %d orphaned captures", resolved)
        return resolved

    def list_orphans(self, days: int = 7, *, include_resolved: bool = False) -> dict[str, Any]:
        """Orphans detected within the last N days plus the latest run summary."""
        if not 1 <= days <= MAX_LOOKBACK_DAYS:
            raise SplitValidationError(
                f"days must be between 1 and {MAX_LOOKBACK_DAYS}", {"days": days}
            )
        since = self.clock() - timedelta(days=days)
        stmt = (
            select(OrphanedPayment)
            .where(OrphanedPayment.last_detected_at >= since)
            .order_by(OrphanedPayment.captured_at.desc())
        )
        if not include_resolved:
            stmt = stmt.where(OrphanedPayment.resolution_status == "open")
        orphans = list(self.db.execute(stmt).scalars())

        last_run = self.db.execute(
            select(ReconciliationRun).order_by(ReconciliationRun.started_at.desc()).limit(1)
        ).scalar_one_or_none()

        return {
            "days": days,
            "count": len(orphans),
            "total_amount": sum((o.amount for o in orphans), Decimal("0")),
            "orphans": [orphan_to_dict(o) for o in orphans],
            "last_run": run_to_dict(last_run) if last_run is not None else None,
        }

    def resolve(self, gateway_payment_id: str, *, actor: str, resolution: str) -> OrphanedPayment:
        """Record an admin's resolution of an orphan."""
        if not resolution or not resolution.strip():
            raise SplitValidationError("resolution is required")

        orphan = self.db.execute(
            select(OrphanedPayment).where(OrphanedPayment.gateway_payment_id == gateway_payment_id)
        ).scalar_one_or_none()
        if orphan is None:
            raise NotFoundError(
                f"Orphaned payment {gateway_payment_id} not found",
                {"gateway_payment_id": gateway_payment_id},
            )

        result = self.db.execute(
            update(OrphanedPayment)
            .where(
                OrphanedPayment.id == orphan.id,
                OrphanedPayment.resolution_status == "open",
            )
            .values(
                resolution_status="resolved",
                resolution=resolution.strip()[:1000],
                resolved_by=actor,
                resolved_at=self.clock(),
            )
            .execution_options(synchronize_session="fetch")
        )
        self.audit.record(
            "orphaned_payment_resolved",
            actor=actor,
            actor_type="admin",
            details={
                "gateway_payment_id": gateway_payment_id,
                "resolution": resolution,
                "already_resolved": result.rowcount == 0,
            },
        )
        self.db.refresh(orphan)
        return orphan
