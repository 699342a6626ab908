"""Enrollment-paid trigger.

Called once per verified payment, after the enrollment row is written.
The split and its installment schedule run in one savepoint: either both
land or neither does, and a failure never rolls back the enrollment.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy.orm import Session

from revenue_engine.calculators.types import LeadSource
from revenue_engine.engine_config import EngineConfig
from revenue_engine.errors import DuplicateSplitError, EngineError
from revenue_engine.services.audit import ActivityLogger
from revenue_engine.services.payout_scheduler import PayoutScheduler
from revenue_engine.services.referral_credit import ReferralCreditResult, ReferralCreditService
from revenue_engine.services.revenue_split import RevenueSplitService, SplitRequest

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EnrollmentPaidEvent:
    """What the payment verification step knows about a paid enrollment."""

    enrollment_id: UUID
    amount: Decimal
    coaching_payee_id: UUID
    lead_source: LeadSource | str = LeadSource.PLATFORM
    referring_payee_id: UUID | None = None
    payer_id: UUID | None = None
    referral_code: str | None = None
    original_amount: Decimal | None = None


@dataclass
class EnrollmentPaidOutcome:
    """Result handed back to payment verification."""

    enrollment_id: UUID
    split_status: str  # recorded/internal/duplicate/failed
    revenue_split_id: UUID | None = None
    installments_scheduled: int = 0
    error: str | None = None
    error_code: str | None = None
    referral: ReferralCreditResult | None = None

    @property
    def ok(self) -> bool:
        return self.split_status in ("recorded", "internal", "duplicate")


def on_enrollment_paid(
    db: Session,
    event: EnrollmentPaidEvent,
    *,
    config: EngineConfig | None = None,
    today: date | None = None,
) -> EnrollmentPaidOutcome:
    """Split revenue, schedule payouts and award referral credit.

    Never raises for ledger failures: they are logged, written to the
    activity log as revenue_split_failed and returned as a failed outcome
    so operators can replay the enrollment.
    """
    config = config or EngineConfig()
    audit = ActivityLogger(db)
    outcome = EnrollmentPaidOutcome(enrollment_id=event.enrollment_id, split_status="failed")

    try:
        with db.begin_nested():
            split = RevenueSplitService(db, config).calculate(
                SplitRequest(
                    enrollment_id=event.enrollment_id,
                    amount=event.amount,
                    coaching_payee_id=event.coaching_payee_id,
                    lead_source=event.lead_source,
                    referring_payee_id=event.referring_payee_id,
                ),
                today=today,
            )
            installments = []
            if not split.is_internal:
                installments = PayoutScheduler(db, config.payout).schedule(split, today=today)
        outcome.revenue_split_id = split.id
        outcome.installments_scheduled = len(installments)
        outcome.split_status = "internal" if split.is_internal else "recorded"
    except DuplicateSplitError as e:
        logger.warning("enrollment %s already has revenue split %s", e.enrollment_id, e.split_id)
        outcome.split_status = "duplicate"
        outcome.revenue_split_id = e.split_id
    except Exception as e:
        logger.exception("revenue split failed for enrollment %s", event.enrollment_id)
        outcome.error = str(e)
        outcome.error_code = e.code if isinstance(e, EngineError) else "INTERNAL_ERROR"
        audit.record(
            "revenue_split_failed",
            details={
                "enrollment_id": event.enrollment_id,
                "amount": event.amount,
                "coaching_payee_id": event.coaching_payee_id,
                "lead_source": str(getattr(event.lead_source, "value", event.lead_source)),
                "referring_payee_id": event.referring_payee_id,
                "error_code": outcome.error_code,
                "error": str(e),
            },
        )

    if event.referral_code:
        try:
            outcome.referral = ReferralCreditService(db, config.referral).award(
                enrollment_id=event.enrollment_id,
                referral_code=event.referral_code,
                original_amount=event.original_amount or event.amount,
                payer_id=event.payer_id,
            )
        except Exception as e:
            logger.exception("referral credit failed for enrollment %s", event.enrollment_id)
            outcome.referral = ReferralCreditResult(awarded=False, reason=str(e))

    return outcome
