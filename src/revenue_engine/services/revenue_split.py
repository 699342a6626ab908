"""Revenue split service.

Persists the three-way split of a paid enrollment together with the TDS
decision for each payee, and advances the payees' earnings counters.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from decimal import Decimal, InvalidOperation
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from revenue_engine.calculators.fiscal import financial_year_for
from revenue_engine.calculators.split_calculator import compute_split, decide_tds
from revenue_engine.calculators.types import (
    InstallmentType,
    LeadSource,
    SplitBreakdown,
    SplitStatus,
    TdsDecision,
)
from revenue_engine.engine_config import EngineConfig
from revenue_engine.errors import DuplicateSplitError, NotFoundError, SplitValidationError
from revenue_engine.models import Payee, RevenueSplitRecord
from revenue_engine.services.coach_groups import CoachGroupService
from revenue_engine.services.earnings import EarningsCounter

logger = logging.getLogger(__name__)

PAISE = Decimal("0.01")


@dataclass(frozen=True)
class SplitRequest:
    """Input for one revenue split calculation."""

    enrollment_id: UUID
    amount: Decimal
    coaching_payee_id: UUID
    lead_source: LeadSource | str = LeadSource.PLATFORM
    referring_payee_id: UUID | None = None


def _validated_amount(value: Decimal | int | str) -> Decimal:
    try:
        amount = Decimal(str(value))
    except InvalidOperation as e:
        raise SplitValidationError("Amount is not a number", {"amount": str(value)}) from e
    if not amount.is_finite() or amount <= 0:
        raise SplitValidationError("Amount must be positive", {"amount": str(value)})
    if amount != amount.quantize(PAISE):
        raise SplitValidationError(
            "Amount cannot be finer than one paisa", {"amount": str(value)}
        )
    return amount


def _validated_lead_source(value: LeadSource | str) -> LeadSource:
    try:
        return LeadSource(value)
    except ValueError as e:
        raise SplitValidationError(
            f"Unknown lead source: {value!r}", {"lead_source": str(value)}
        ) from e


class RevenueSplitService:
    """Computes and records revenue splits.

    One split per enrollment. The TDS decision is made once, here, from the
    payee's cumulative fiscal-year earnings before this enrollment.
    """

    def __init__(self, db: Session, config: EngineConfig | None = None):
        self.db = db
        self.config = config or EngineConfig()
        self.groups = CoachGroupService(db, self.config.split)
        self.counter = EarningsCounter(db)

    def get_for_enrollment(self, enrollment_id: UUID) -> RevenueSplitRecord | None:
        return self.db.execute(
            select(RevenueSplitRecord)
            .where(RevenueSplitRecord.enrollment_id == enrollment_id)
            .options(selectinload(RevenueSplitRecord.installments))
        ).scalar_one_or_none()

    def _load_payee(self, payee_id: UUID, role: str) -> Payee:
        payee = self.db.get(Payee, payee_id, populate_existing=True)
        if payee is None:
            raise NotFoundError(f"{role} {payee_id} not found", {"payee_id": str(payee_id)})
        return payee

    def calculate(self, request: SplitRequest, *, today: date | None = None) -> RevenueSplitRecord:
        """Split an enrollment amount and persist the record.

        Raises:
            SplitValidationError: malformed input (nothing written).
            ConfigurationError: no usable coach group.
            NotFoundError: a payee does not exist.
            DuplicateSplitError: the enrollment already has a split.
        """
        amount = _validated_amount(request.amount)
        lead_source = _validated_lead_source(request.lead_source)
        if lead_source == LeadSource.REFERRING_PAYEE and request.referring_payee_id is None:
            raise SplitValidationError(
                "referring_payee lead source requires a referring payee id",
                {"enrollment_id": str(request.enrollment_id)},
            )

        existing = self.db.execute(
            select(RevenueSplitRecord.id).where(
                RevenueSplitRecord.enrollment_id == request.enrollment_id
            )
        ).scalar_one_or_none()
        if existing is not None:
            raise DuplicateSplitError(request.enrollment_id, existing)

        today = today or date.today()
        financial_year = financial_year_for(today)

        coach = self._load_payee(request.coaching_payee_id, "Coaching payee")
        percentages = self.groups.resolve_for_payee(coach)
        breakdown = compute_split(amount, percentages)
        snapshot = {
            **percentages.to_snapshot(),
            **self.config.snapshot(),
            "financial_year": financial_year,
        }

        if breakdown.is_internal:
            record = self._build_record(
                request, lead_source, breakdown, snapshot,
                TdsDecision.not_applicable(), TdsDecision.not_applicable(),
                status=SplitStatus.COMPLETED,
            )
            self.db.add(record)
            self.db.flush()
            logger.info(
                "internal group split enrollment=%s amount=%s retained by platform",
                request.enrollment_id,
                amount,
            )
            return record

        policy = self.config.split
        coach_tds = decide_tds(
            self.counter.current(coach, financial_year),
            breakdown.coach_cost,
            rate_percent=policy.tds_rate_percent,
            threshold=policy.tds_threshold_annual,
        )

        lead_payee: Payee | None = None
        lead_tds = TdsDecision.not_applicable()
        if lead_source == LeadSource.REFERRING_PAYEE:
            lead_payee = self._load_payee(request.referring_payee_id, "Referring payee")
            if lead_payee.id == coach.id:
                lead_cumulative = coach_tds.projected
            else:
                lead_cumulative = self.counter.current(lead_payee, financial_year)
            lead_tds = decide_tds(
                lead_cumulative,
                breakdown.lead_cost,
                rate_percent=policy.tds_rate_percent,
                threshold=policy.tds_threshold_annual,
            )

        record = self._build_record(
            request, lead_source, breakdown, snapshot, coach_tds, lead_tds,
            status=SplitStatus.PENDING,
        )
        self.db.add(record)
        self.db.flush()

        if breakdown.coach_cost > 0:
            self.counter.advance(
                coach,
                enrollment_id=request.enrollment_id,
                component=InstallmentType.COACH_COST.value,
                amount=breakdown.coach_cost,
                financial_year=financial_year,
            )
        if lead_payee is not None and breakdown.lead_cost > 0:
            self.counter.advance(
                lead_payee,
                enrollment_id=request.enrollment_id,
                component=InstallmentType.LEAD_BONUS.value,
                amount=breakdown.lead_cost,
                financial_year=financial_year,
            )

        logger.info(
            "revenue split enrollment=%s total=%s lead=%s coach=%s platform=%s "
            "tds_applicable=%s tds=%s lead_tds=%s",
            request.enrollment_id,
            breakdown.total,
            breakdown.lead_cost,
            breakdown.coach_cost,
            breakdown.platform_fee,
            coach_tds.applicable,
            coach_tds.amount,
            lead_tds.amount,
        )
        return record

    def _build_record(
        self,
        request: SplitRequest,
        lead_source: LeadSource,
        breakdown: SplitBreakdown,
        snapshot: dict,
        coach_tds: TdsDecision,
        lead_tds: TdsDecision,
        *,
        status: SplitStatus,
    ) -> RevenueSplitRecord:
        referred = lead_source == LeadSource.REFERRING_PAYEE
        net_to_lead = breakdown.lead_cost - lead_tds.amount if referred else Decimal("0")
        retained = breakdown.platform_fee + coach_tds.amount + lead_tds.amount
        if not referred:
            retained += breakdown.lead_cost

        return RevenueSplitRecord(
            enrollment_id=request.enrollment_id,
            coaching_coach_id=request.coaching_payee_id,
            lead_source=lead_source.value,
            lead_source_coach_id=request.referring_payee_id if referred else None,
            is_internal=breakdown.is_internal,
            total_amount=breakdown.total,
            lead_cost_amount=breakdown.lead_cost,
            coach_cost_amount=breakdown.coach_cost,
            platform_fee_amount=breakdown.platform_fee,
            tds_applicable=coach_tds.applicable,
            tds_rate_applied=coach_tds.rate if coach_tds.applicable else None,
            tds_amount=coach_tds.amount,
            lead_tds_applicable=lead_tds.applicable,
            lead_tds_amount=lead_tds.amount,
            net_to_coach=breakdown.coach_cost - coach_tds.amount,
            net_to_lead_source=net_to_lead,
            net_retained_by_platform=retained,
            config_snapshot=snapshot,
            status=status.value,
        )
