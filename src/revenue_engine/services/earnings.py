"""Versioned cumulative-earnings counter.

Each payee carries the fiscal-year total used for TDS threshold decisions.
The counter only moves through advance(), which:
- refuses a second update for the same (payee, enrollment, component)
- applies a compare-and-set on earnings_version
- rolls over to zero when the fiscal year changes
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from revenue_engine.errors import ConcurrentUpdateError, DuplicateEarningsUpdateError
from revenue_engine.models import EarningsAccrual, Payee

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CounterUpdate:
    """Result of one counter advance."""

    payee_id: UUID
    financial_year: str
    cumulative_before: Decimal
    cumulative_after: Decimal
    version: int


class EarningsCounter:
    """Guarded access to Payee.cumulative_earnings_fy."""

    def __init__(self, db: Session):
        self.db = db

    @staticmethod
    def current(payee: Payee, financial_year: str) -> Decimal:
        """Cumulative earnings for the given fiscal year (0 after rollover)."""
        if payee.earnings_fy != financial_year:
            return Decimal("0")
        return Decimal(payee.cumulative_earnings_fy or 0)

    def has_accrual(self, payee_id: UUID, enrollment_id: UUID, component: str) -> bool:
        return (
            self.db.execute(
                select(EarningsAccrual.id).where(
                    EarningsAccrual.payee_id == payee_id,
                    EarningsAccrual.enrollment_id == enrollment_id,
                    EarningsAccrual.component == component,
                )
            ).first()
            is not None
        )

    def advance(
        self,
        payee: Payee,
        *,
        enrollment_id: UUID,
        component: str,
        amount: Decimal,
        financial_year: str,
    ) -> CounterUpdate:
        """Add an earning to the payee's counter exactly once per enrollment.

        Raises:
            DuplicateEarningsUpdateError: this enrollment already advanced
                the counter for this component.
            ConcurrentUpdateError: the payee row changed since it was read.
        """
        if self.has_accrual(payee.id, enrollment_id, component):
            raise DuplicateEarningsUpdateError(
                f"Earnings already recorded for payee {payee.id} on enrollment {enrollment_id}",
                {"payee_id": str(payee.id), "enrollment_id": str(enrollment_id),
                 "component": component},
            )

        version = payee.earnings_version
        before = self.current(payee, financial_year)
        after = before + amount

        result = self.db.execute(
            update(Payee)
            .where(Payee.id == payee.id, Payee.earnings_version == version)
            .values(
                cumulative_earnings_fy=after,
                earnings_fy=financial_year,
                earnings_version=version + 1,
            )
        )
        if result.rowcount != 1:
            raise ConcurrentUpdateError(
                f"Earnings counter for payee {payee.id} changed concurrently",
                {"payee_id": str(payee.id), "expected_version": version},
            )

        accrual = EarningsAccrual(
            payee_id=payee.id,
            enrollment_id=enrollment_id,
            component=component,
            financial_year=financial_year,
            amount=amount,
            cumulative_before=before,
            cumulative_after=after,
            counter_version=version + 1,
        )
        try:
            with self.db.begin_nested():
                self.db.add(accrual)
                self.db.flush()
        except IntegrityError as e:
            raise DuplicateEarningsUpdateError(
                f"Earnings already recorded for payee {payee.id} on enrollment {enrollment_id}",
                {"payee_id": str(payee.id), "enrollment_id": str(enrollment_id),
                 "component": component},
            ) from e

        logger.debug(
            "earnings counter advanced payee=%s fy=%s %s -> %s (v%d)",
            payee.id,
            financial_year,
            before,
            after,
            version + 1,
        )
        return CounterUpdate(
            payee_id=payee.id,
            financial_year=financial_year,
            cumulative_before=before,
            cumulative_after=after,
            version=version + 1,
        )
