"""Referral credit ledger.

Awards account credit to the parent whose referral coupon was used on an
enrollment. A secondary ledger: failures are logged and never undo the
enrollment.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from revenue_engine.calculators.split_calculator import percent_of
from revenue_engine.engine_config import ReferralPolicy
from revenue_engine.models import Coupon, ReferralCreditTransaction, ReferralParty

logger = logging.getLogger(__name__)

PARENT_REFERRAL = "parent_referral"


@dataclass(frozen=True)
class ReferralCreditResult:
    """Outcome of one award attempt."""

    awarded: bool
    reason: str | None = None
    party_id: UUID | None = None
    amount: Decimal = Decimal("0")
    balance_after: Decimal | None = None
    expires_at: datetime | None = None


class ReferralCreditService:
    """Credits referring parents a share of the enrollments they bring in."""

    def __init__(self, db: Session, policy: ReferralPolicy | None = None):
        self.db = db
        self.policy = policy or ReferralPolicy()

    def resolve_coupon(self, code: str) -> Coupon | None:
        return self.db.execute(
            select(Coupon).where(func.upper(Coupon.code) == code.strip().upper())
        ).scalar_one_or_none()

    def award(
        self,
        *,
        enrollment_id: UUID,
        referral_code: str | None,
        original_amount: Decimal,
        payer_id: UUID | None = None,
        now: datetime | None = None,
    ) -> ReferralCreditResult:
        """Credit the referring party, or return a no-op result explaining why not."""
        if not referral_code or not referral_code.strip():
            return ReferralCreditResult(awarded=False, reason="no referral code")

        coupon = self.resolve_coupon(referral_code)
        if coupon is None or not coupon.is_active:
            return ReferralCreditResult(awarded=False, reason="coupon not found or inactive")
        if coupon.coupon_type != PARENT_REFERRAL or coupon.referral_party_id is None:
            return ReferralCreditResult(awarded=False, reason="not a parent referral coupon")
        if payer_id is not None and coupon.referral_party_id == payer_id:
            return ReferralCreditResult(
                awarded=False, reason="self referral", party_id=coupon.referral_party_id
            )

        already = self.db.execute(
            select(ReferralCreditTransaction.id).where(
                ReferralCreditTransaction.enrollment_id == enrollment_id
            )
        ).first()
        if already is not None:
            return ReferralCreditResult(
                awarded=False, reason="already credited", party_id=coupon.referral_party_id
            )

        credit = percent_of(Decimal(original_amount), self.policy.credit_percent)
        if credit <= 0:
            return ReferralCreditResult(
                awarded=False, reason="credit rounds to zero", party_id=coupon.referral_party_id
            )

        now = now or datetime.now(timezone.utc)
        expires_at = now + timedelta(days=self.policy.expiry_window_days)
        party_id = coupon.referral_party_id

        try:
            with self.db.begin_nested():
                result = self.db.execute(
                    update(ReferralParty)
                    .where(ReferralParty.id == party_id)
                    .values(
                        credit_balance=ReferralParty.credit_balance + credit,
                        credit_expires_at=expires_at,
                    )
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount != 1:
                    return ReferralCreditResult(
                        awarded=False, reason="referring party not found", party_id=party_id
                    )
                balance = self.db.execute(
                    select(ReferralParty.credit_balance).where(ReferralParty.id == party_id)
                ).scalar_one()
                self.db.add(
                    ReferralCreditTransaction(
                        party_id=party_id,
                        enrollment_id=enrollment_id,
                        coupon_code=coupon.code,
                        transaction_type="earned",
                        amount=credit,
                        balance_after=balance,
                        expires_at=expires_at,
                    )
                )
                self.db.flush()
        except SQLAlchemyError:
            logger.exception(
                "referral credit failed enrollment=%s coupon=%s", enrollment_id, coupon.code
            )
            return ReferralCreditResult(awarded=False, reason="ledger write failed", party_id=party_id)

        party = self.db.get(ReferralParty, party_id)
        if party is not None:
            self.db.refresh(party)

        logger.info(
            "referral credit %s awarded to party %s for enrollment %s balance=%s",
            credit,
            party_id,
            enrollment_id,
            balance,
        )
        return ReferralCreditResult(
            awarded=True,
            party_id=party_id,
            amount=credit,
            balance_after=Decimal(balance),
            expires_at=expires_at,
        )
