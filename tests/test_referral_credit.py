"""Tests for referral credit awards."""

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from uuid import uuid4

from sqlalchemy import select
from sqlalchemy.orm import Session

from revenue_engine.engine_config import ReferralPolicy
from revenue_engine.models import ReferralCreditTransaction
from revenue_engine.services.referral_credit import ReferralCreditService
from tests.conftest import EngineTestData

NOW = datetime(2025, 6, 15, 10, 0, tzinfo=timezone.utc)


class TestReferralCredit:
    """Parent referral credits."""

    def test_awards_ten_percent(self, db: Session, test_data: EngineTestData):
        party = test_data.create_referral_party()
        test_data.create_coupon("MEERA10", party)
        enrollment_id = uuid4()

        result = ReferralCreditService(db).award(
            enrollment_id=enrollment_id,
            referral_code="meera10",
            original_amount=Decimal("5999"),
            payer_id=uuid4(),
            now=NOW,
        )

        assert result.awarded is True
        assert result.amount == Decimal("600")
        assert result.balance_after == Decimal("600")
        assert result.expires_at == NOW + timedelta(days=180)
        assert result.party_id == party.id

        db.refresh(party)
        assert party.credit_balance == Decimal("600")
        txn = db.execute(select(ReferralCreditTransaction)).scalar_one()
        assert txn.enrollment_id == enrollment_id
        assert txn.coupon_code == "MEERA10"
        assert txn.transaction_type == "earned"

    def test_new_credit_extends_expiry(self, db: Session, test_data: EngineTestData):
        party = test_data.create_referral_party()
        test_data.create_coupon("MEERA10", party)
        service = ReferralCreditService(db)
        later = NOW + timedelta(days=30)

        service.award(
            enrollment_id=uuid4(), referral_code="MEERA10",
            original_amount=Decimal("5000"), now=NOW,
        )
        result = service.award(
            enrollment_id=uuid4(), referral_code="MEERA10",
            original_amount=Decimal("3000"), now=later,
        )

        assert result.balance_after == Decimal("800")
        assert result.expires_at == later + timedelta(days=180)

    def test_same_enrollment_credited_once(self, db: Session, test_data: EngineTestData):
        party = test_data.create_referral_party()
        test_data.create_coupon("MEERA10", party)
        service = ReferralCreditService(db)
        enrollment_id = uuid4()

        service.award(
            enrollment_id=enrollment_id, referral_code="MEERA10",
            original_amount=Decimal("5000"), now=NOW,
        )
        repeat = service.award(
            enrollment_id=enrollment_id, referral_code="MEERA10",
            original_amount=Decimal("5000"), now=NOW,
        )

        assert repeat.awarded is False
        assert repeat.reason == "already credited"
        db.refresh(party)
        assert party.credit_balance == Decimal("500")

    def test_self_referral_is_noop(self, db: Session, test_data: EngineTestData):
        party = test_data.create_referral_party()
        test_data.create_coupon("MEERA10", party)

        result = ReferralCreditService(db).award(
            enrollment_id=uuid4(), referral_code="MEERA10",
            original_amount=Decimal("5000"), payer_id=party.id, now=NOW,
        )

        assert result.awarded is False
        assert result.reason == "self referral"

    def test_non_referral_coupons_ignored(self, db: Session, test_data: EngineTestData):
        test_data.create_coupon("SUMMER20", coupon_type="generic")
        party = test_data.create_referral_party()
        test_data.create_coupon("OLDCODE", party, is_active=False)
        service = ReferralCreditService(db)

        generic = service.award(
            enrollment_id=uuid4(), referral_code="SUMMER20", original_amount=Decimal("5000")
        )
        inactive = service.award(
            enrollment_id=uuid4(), referral_code="OLDCODE", original_amount=Decimal("5000")
        )
        unknown = service.award(
            enrollment_id=uuid4(), referral_code="NOPE", original_amount=Decimal("5000")
        )
        empty = service.award(
            enrollment_id=uuid4(), referral_code="  ", original_amount=Decimal("5000")
        )

        assert generic.reason == "not a parent referral coupon"
        assert inactive.reason == "coupon not found or inactive"
        assert unknown.reason == "coupon not found or inactive"
        assert empty.reason == "no referral code"
        assert db.execute(select(ReferralCreditTransaction)).first() is None

    def test_credit_rounding_to_zero(self, db: Session, test_data: EngineTestData):
        party = test_data.create_referral_party()
        test_data.create_coupon("MEERA10", party)

        result = ReferralCreditService(db, ReferralPolicy(credit_percent=Decimal("1"))).award(
            enrollment_id=uuid4(), referral_code="MEERA10", original_amount=Decimal("40"),
        )

        assert result.awarded is False
        assert result.reason == "credit rounds to zero"
