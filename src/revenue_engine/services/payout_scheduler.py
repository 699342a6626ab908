"""Payout scheduling service.

Expands a revenue split into dated installments for the coaching payee and,
when the lead was referred by another payee, for the lead bonus.
"""

from __future__ import annotations

import logging
from datetime import date

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from revenue_engine.calculators.installments import plan_installments
from revenue_engine.calculators.types import InstallmentType, LeadSource, SplitStatus
from revenue_engine.engine_config import PayoutPolicy
from revenue_engine.errors import DuplicateScheduleError, InvalidTransitionError
from revenue_engine.models import PayoutInstallment, RevenueSplitRecord
from revenue_engine.services.state_machine import InstallmentStatus

logger = logging.getLogger(__name__)


class PayoutScheduler:
    """Creates the installment set for a split, once."""

    def __init__(self, db: Session, policy: PayoutPolicy | None = None):
        self.db = db
        self.policy = policy or PayoutPolicy()

    def _installment_count(self, split: RevenueSplitRecord) -> int:
        return int(split.config_snapshot.get("installment_count", self.policy.installment_count))

    def _payout_day(self, split: RevenueSplitRecord) -> int:
        return int(
            split.config_snapshot.get("payout_day_of_month", self.policy.payout_day_of_month)
        )

    def schedule(self, split: RevenueSplitRecord, *, today: date | None = None) -> list[PayoutInstallment]:
        """Create installments for a pending split.

        Installment count and payout day come from the split's frozen
        snapshot, so a policy change never alters an existing split's plan.

        Raises:
            InvalidTransitionError: the split is internal or not pending.
            DuplicateScheduleError: installments already exist.
        """
        if split.is_internal:
            raise InvalidTransitionError(split.status, SplitStatus.SCHEDULED.value, "internal split")

        existing = self.db.execute(
            select(func.count(PayoutInstallment.id)).where(
                PayoutInstallment.revenue_split_id == split.id
            )
        ).scalar_one()
        if existing:
            raise DuplicateScheduleError(
                f"Installments already exist for revenue split {split.id}",
                {"revenue_split_id": str(split.id), "installments": existing},
            )

        # Guarded split status change doubles as the one-schedule-per-split lock
        result = self.db.execute(
            update(RevenueSplitRecord)
            .where(
                RevenueSplitRecord.id == split.id,
                RevenueSplitRecord.status == SplitStatus.PENDING.value,
            )
            .values(status=SplitStatus.SCHEDULED.value)
        )
        if result.rowcount != 1:
            raise DuplicateScheduleError(
                f"Revenue split {split.id} is not pending",
                {"revenue_split_id": str(split.id), "status": split.status},
            )

        start = today or date.today()
        count = self._installment_count(split)
        day = self._payout_day(split)

        installments: list[PayoutInstallment] = []
        if split.coach_cost_amount > 0:
            installments += self._build(
                split,
                payee_id=split.coaching_coach_id,
                installment_type=InstallmentType.COACH_COST,
                gross=split.coach_cost_amount,
                tds=split.tds_amount,
                start=start,
                day=day,
                count=count,
            )
        if (
            split.lead_source == LeadSource.REFERRING_PAYEE.value
            and split.lead_source_coach_id is not None
            and split.lead_cost_amount > 0
        ):
            installments += self._build(
                split,
                payee_id=split.lead_source_coach_id,
                installment_type=InstallmentType.LEAD_BONUS,
                gross=split.lead_cost_amount,
                tds=split.lead_tds_amount,
                start=start,
                day=day,
                count=count,
            )

        self.db.add_all(installments)
        self.db.flush()
        self.db.refresh(split)

        logger.info(
            "scheduled %d installments for revenue split %s first_due=%s",
            len(installments),
            split.id,
            installments[0].scheduled_date if installments else None,
        )
        return installments

    def _build(
        self,
        split: RevenueSplitRecord,
        *,
        payee_id,
        installment_type: InstallmentType,
        gross,
        tds,
        start: date,
        day: int,
        count: int,
    ) -> list[PayoutInstallment]:
        lines = plan_installments(gross, tds, start=start, day_of_month=day, count=count)
        return [
            PayoutInstallment(
                revenue_split_id=split.id,
                payee_id=payee_id,
                installment_index=line.index,
                installment_type=installment_type.value,
                attempt=1,
                gross_amount=line.gross,
                tds_amount=line.tds,
                net_amount=line.net,
                scheduled_date=line.scheduled_date,
                status=InstallmentStatus.SCHEDULED.value,
            )
            for line in lines
        ]
