"""Tests for revenue split calculation, the earnings counter and scheduling."""

from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from revenue_engine.calculators.types import LeadSource
from revenue_engine.engine_config import EngineConfig, PayoutPolicy, SplitPolicy
from revenue_engine.errors import (
    ConcurrentUpdateError,
    ConfigurationError,
    DuplicateEarningsUpdateError,
    DuplicateScheduleError,
    DuplicateSplitError,
    InvalidTransitionError,
    NotFoundError,
    SplitValidationError,
)
from revenue_engine.models import ActivityLog, EarningsAccrual, Payee, PayoutInstallment
from revenue_engine.services.coach_groups import CoachGroupService
from revenue_engine.services.earnings import EarningsCounter
from revenue_engine.services.payout_scheduler import PayoutScheduler
from revenue_engine.services.revenue_split import RevenueSplitService, SplitRequest
from tests.conftest import SPLIT_DATE, EngineTestData


def _request(enrollment, coach, amount, **kwargs) -> SplitRequest:
    return SplitRequest(
        enrollment_id=enrollment.id,
        amount=Decimal(amount),
        coaching_payee_id=coach.id,
        **kwargs,
    )


class TestRevenueSplit:
    """Split persistence and TDS decision."""

    def test_reference_enrollment(self, db: Session, test_data: EngineTestData):
        """59,990 at 20/50/30 with no prior earnings."""
        coach = test_data.create_payee()
        enrollment = test_data.create_enrollment(coach, 59990)

        split = RevenueSplitService(db).calculate(
            _request(enrollment, coach, 59990), today=SPLIT_DATE
        )

        assert split.lead_cost_amount == Decimal("11998")
        assert split.coach_cost_amount == Decimal("29995")
        assert split.platform_fee_amount == Decimal("17997")
        assert split.tds_applicable is False
        assert split.tds_amount == Decimal("0")
        assert split.net_to_coach == Decimal("29995")
        # Platform-sourced lead: the lead cost stays with the platform
        assert split.net_to_lead_source == Decimal("0")
        assert split.net_retained_by_platform == Decimal("29995")
        assert split.status == "pending"
        assert split.config_snapshot["group"] == "rising"
        assert split.config_snapshot["financial_year"] == "2025-26"

    def test_amount_with_paise(self, db: Session, test_data: EngineTestData):
        """A post-coupon amount in rupees and paise splits without loss."""
        test_data.create_group("seed", lead=15, coach=60, platform=25)
        coach = test_data.create_payee(group="seed")
        enrollment = test_data.create_enrollment(coach, Decimal("5099.15"))

        split = RevenueSplitService(db).calculate(
            _request(enrollment, coach, "5099.15"), today=SPLIT_DATE
        )
        db.flush()
        db.refresh(split)

        # 15% = 764.87 -> 765, 60% = 3,059.49 -> 3,059
        assert split.lead_cost_amount == Decimal("765")
        assert split.coach_cost_amount == Decimal("3059")
        assert split.platform_fee_amount == Decimal("1275.15")
        assert (
            split.lead_cost_amount + split.coach_cost_amount + split.platform_fee_amount
            == Decimal("5099.15")
        )
        assert split.total_amount == Decimal("5099.15")
        assert split.net_retained_by_platform == Decimal("2040.15")

    def test_threshold_crossing_updates_counter(self, db: Session, test_data: EngineTestData):
        """29,000 earned + 2,000 coach cost: TDS applies, counter becomes 31,000."""
        coach = test_data.create_payee(cumulative=29000)
        enrollment = test_data.create_enrollment(coach, 4000)

        split = RevenueSplitService(db).calculate(
            _request(enrollment, coach, 4000), today=SPLIT_DATE
        )

        assert split.coach_cost_amount == Decimal("2000")
        assert split.tds_applicable is True
        assert split.tds_rate_applied == Decimal("10")
        assert split.tds_amount == Decimal("200")
        assert split.net_to_coach == Decimal("1800")

        db.refresh(coach)
        assert coach.cumulative_earnings_fy == Decimal("31000")
        assert coach.earnings_version == 1

    def test_next_split_sees_updated_counter(self, db: Session, test_data: EngineTestData):
        coach = test_data.create_payee()
        first = test_data.create_enrollment(coach, 59990)
        second = test_data.create_enrollment(coach, 2000)
        service = RevenueSplitService(db)

        service.calculate(_request(first, coach, 59990), today=SPLIT_DATE)
        split = service.calculate(_request(second, coach, 2000), today=SPLIT_DATE)

        # 29,995 + 1,000 crosses 30,000
        assert split.tds_applicable is True
        assert split.tds_amount == Decimal("100")

    def test_fiscal_year_rollover_resets_counter(self, db: Session, test_data: EngineTestData):
        coach = test_data.create_payee(cumulative=50000, earnings_fy="2024-25")
        enrollment = test_data.create_enrollment(coach, 4000)

        split = RevenueSplitService(db).calculate(
            _request(enrollment, coach, 4000), today=SPLIT_DATE
        )

        assert split.tds_applicable is False
        db.refresh(coach)
        assert coach.earnings_fy == "2025-26"
        assert coach.cumulative_earnings_fy == Decimal("2000")

    def test_duplicate_split_rejected(self, db: Session, test_data: EngineTestData):
        coach = test_data.create_payee()
        enrollment = test_data.create_enrollment(coach, 10000)
        service = RevenueSplitService(db)
        first = service.calculate(_request(enrollment, coach, 10000), today=SPLIT_DATE)

        with pytest.raises(DuplicateSplitError) as exc_info:
            service.calculate(_request(enrollment, coach, 10000), today=SPLIT_DATE)

        assert exc_info.value.split_id == first.id
        db.refresh(coach)
        assert coach.cumulative_earnings_fy == Decimal("5000")

    def test_internal_group(self, db: Session, test_data: EngineTestData):
        test_data.create_group("staff", lead=0, coach=0, platform=100, is_internal=True)
        coach = test_data.create_payee(group="staff")
        enrollment = test_data.create_enrollment(coach, 59990)

        split = RevenueSplitService(db).calculate(
            _request(enrollment, coach, 59990), today=SPLIT_DATE
        )

        assert split.is_internal is True
        assert split.status == "completed"
        assert split.platform_fee_amount == Decimal("59990")
        assert split.net_retained_by_platform == Decimal("59990")
        db.refresh(coach)
        assert coach.cumulative_earnings_fy == Decimal("0")

    def test_referring_payee_gets_lead_bonus(self, db: Session, test_data: EngineTestData):
        coach = test_data.create_payee("Asha Rao")
        referrer = test_data.create_payee("Ravi Menon", cumulative=29500)
        enrollment = test_data.create_enrollment(
            coach, 10000, lead_source=LeadSource.REFERRING_PAYEE, referring=referrer
        )

        split = RevenueSplitService(db).calculate(
            _request(
                enrollment, coach, 10000,
                lead_source=LeadSource.REFERRING_PAYEE,
                referring_payee_id=referrer.id,
            ),
            today=SPLIT_DATE,
        )

        assert split.lead_cost_amount == Decimal("2000")
        assert split.lead_tds_applicable is True
        assert split.lead_tds_amount == Decimal("200")
        assert split.net_to_lead_source == Decimal("1800")
        assert split.net_retained_by_platform == Decimal("3000") + Decimal("200")
        db.refresh(referrer)
        assert referrer.cumulative_earnings_fy == Decimal("31500")

    def test_same_payee_as_coach_and_referrer(self, db: Session, test_data: EngineTestData):
        """Lead TDS uses the counter after this enrollment's coach cost."""
        coach = test_data.create_payee(cumulative=25000)
        enrollment = test_data.create_enrollment(
            coach, 10000, lead_source=LeadSource.REFERRING_PAYEE, referring=coach
        )

        split = RevenueSplitService(db).calculate(
            _request(
                enrollment, coach, 10000,
                lead_source=LeadSource.REFERRING_PAYEE,
                referring_payee_id=coach.id,
            ),
            today=SPLIT_DATE,
        )

        # 25,000 + 5,000 = 30,000: coach cost not taxed; 30,000 + 2,000: lead bonus taxed
        assert split.tds_applicable is False
        assert split.lead_tds_applicable is True
        db.refresh(coach)
        assert coach.cumulative_earnings_fy == Decimal("32000")
        assert coach.earnings_version == 2

    @pytest.mark.parametrize("amount", ["0", "-10", "100.005", "abc"])
    def test_invalid_amount(self, db: Session, test_data: EngineTestData, amount):
        coach = test_data.create_payee()
        with pytest.raises(SplitValidationError):
            RevenueSplitService(db).calculate(
                SplitRequest(enrollment_id=uuid4(), amount=amount, coaching_payee_id=coach.id)
            )

    def test_unknown_lead_source(self, db: Session, test_data: EngineTestData):
        coach = test_data.create_payee()
        with pytest.raises(SplitValidationError):
            RevenueSplitService(db).calculate(
                SplitRequest(
                    enrollment_id=uuid4(),
                    amount=Decimal("1000"),
                    coaching_payee_id=coach.id,
                    lead_source="instagram",
                )
            )

    def test_referring_source_requires_payee(self, db: Session, test_data: EngineTestData):
        coach = test_data.create_payee()
        with pytest.raises(SplitValidationError):
            RevenueSplitService(db).calculate(
                SplitRequest(
                    enrollment_id=uuid4(),
                    amount=Decimal("1000"),
                    coaching_payee_id=coach.id,
                    lead_source=LeadSource.REFERRING_PAYEE,
                )
            )

    def test_unknown_coach(self, db: Session, test_data: EngineTestData):
        with pytest.raises(NotFoundError):
            RevenueSplitService(db).calculate(
                SplitRequest(enrollment_id=uuid4(), amount=Decimal("1000"), coaching_payee_id=uuid4())
            )


class TestEarningsCounter:
    """Versioned, idempotent counter updates."""

    def test_second_advance_for_enrollment_rejected(self, db: Session, test_data: EngineTestData):
        coach = test_data.create_payee()
        enrollment = test_data.create_enrollment(coach, 1000)
        counter = EarningsCounter(db)

        counter.advance(
            coach, enrollment_id=enrollment.id, component="coach_cost",
            amount=Decimal("500"), financial_year="2025-26",
        )
        with pytest.raises(DuplicateEarningsUpdateError):
            counter.advance(
                coach, enrollment_id=enrollment.id, component="coach_cost",
                amount=Decimal("500"), financial_year="2025-26",
            )

        db.refresh(coach)
        assert coach.cumulative_earnings_fy == Decimal("500")
        accruals = db.execute(select(func.count(EarningsAccrual.id))).scalar_one()
        assert accruals == 1

    def test_stale_version_rejected(self, db: Session, test_data: EngineTestData):
        coach = test_data.create_payee()
        enrollment = test_data.create_enrollment(coach, 1000)
        # Another writer bumps the version behind this session's back
        db.execute(
            update(Payee)
            .where(Payee.id == coach.id)
            .values(earnings_version=5)
            .execution_options(synchronize_session=False)
        )

        with pytest.raises(ConcurrentUpdateError):
            EarningsCounter(db).advance(
                coach, enrollment_id=enrollment.id, component="coach_cost",
                amount=Decimal("500"), financial_year="2025-26",
            )

    def test_current_is_zero_for_other_year(self, test_data: EngineTestData):
        coach = test_data.create_payee(cumulative=12000, earnings_fy="2024-25")
        assert EarningsCounter.current(coach, "2025-26") == Decimal("0")
        assert EarningsCounter.current(coach, "2024-25") == Decimal("12000")


class TestPayoutScheduler:
    """Installment creation."""

    def test_reference_schedule(self, db: Session, test_data: EngineTestData):
        coach = test_data.create_payee()
        split, installments = test_data.split_and_schedule(coach, 59990)

        assert [i.gross_amount for i in installments] == [
            Decimal("9998"),
            Decimal("9998"),
            Decimal("9999"),
        ]
        assert [i.scheduled_date for i in installments] == [
            date(2025, 7, 7),
            date(2025, 8, 7),
            date(2025, 9, 7),
        ]
        assert all(i.status == "scheduled" for i in installments)
        assert all(i.installment_type == "coach_cost" for i in installments)
        assert split.status == "scheduled"

    def test_lead_bonus_installments(self, db: Session, test_data: EngineTestData):
        coach = test_data.create_payee("Asha Rao")
        referrer = test_data.create_payee("Ravi Menon")
        _, installments = test_data.split_and_schedule(coach, 10000, referring=referrer)

        bonus = [i for i in installments if i.installment_type == "lead_bonus"]
        assert len(installments) == 6
        assert {i.payee_id for i in bonus} == {referrer.id}
        assert sum(i.gross_amount for i in bonus) == Decimal("2000")

    def test_tds_spread_across_installments(self, db: Session, test_data: EngineTestData):
        coach = test_data.create_payee(cumulative=29000)
        split, installments = test_data.split_and_schedule(coach, 4000)

        assert sum(i.tds_amount for i in installments) == split.tds_amount
        assert sum(i.net_amount for i in installments) == split.net_to_coach

    def test_second_schedule_rejected(self, db: Session, test_data: EngineTestData):
        coach = test_data.create_payee()
        split, _ = test_data.split_and_schedule(coach, 10000)

        with pytest.raises(DuplicateScheduleError):
            PayoutScheduler(db).schedule(split, today=SPLIT_DATE)

        count = db.execute(select(func.count(PayoutInstallment.id))).scalar_one()
        assert count == 3

    def test_internal_split_not_schedulable(self, db: Session, test_data: EngineTestData):
        test_data.create_group("staff", lead=0, coach=0, platform=100, is_internal=True)
        coach = test_data.create_payee(group="staff")
        enrollment = test_data.create_enrollment(coach, 5000)
        split = RevenueSplitService(db).calculate(
            _request(enrollment, coach, 5000), today=SPLIT_DATE
        )

        with pytest.raises(InvalidTransitionError):
            PayoutScheduler(db).schedule(split, today=SPLIT_DATE)

    def test_policy_change_does_not_alter_frozen_plan(self, db: Session, test_data: EngineTestData):
        coach = test_data.create_payee()
        enrollment = test_data.create_enrollment(coach, 10000)
        split = RevenueSplitService(db).calculate(
            _request(enrollment, coach, 10000), today=SPLIT_DATE
        )

        installments = PayoutScheduler(
            db, PayoutPolicy(installment_count=6, payout_day_of_month=15)
        ).schedule(split, today=SPLIT_DATE)

        assert len(installments) == 3
        assert installments[0].scheduled_date == date(2025, 7, 7)

    def test_custom_installment_count(self, db: Session, test_data: EngineTestData):
        config = EngineConfig(payout=PayoutPolicy(installment_count=1, payout_day_of_month=1))
        coach = test_data.create_payee()
        _, installments = test_data.split_and_schedule(coach, 10000, config=config)

        assert len(installments) == 1
        assert installments[0].gross_amount == Decimal("5000")
        assert installments[0].scheduled_date == date(2025, 7, 1)

    @pytest.mark.parametrize(
        "kwargs",
        [{"payout_day_of_month": 29}, {"payout_mode": "SWIFT"}, {"currency": "inr"}, {"currency": "RUPEE"}],
    )
    def test_invalid_payout_policy(self, kwargs):
        with pytest.raises(ValueError):
            PayoutPolicy(**kwargs)


class TestCoachGroups:
    """Coach group configuration."""

    def test_falls_back_to_default_group(self, db: Session, test_data: EngineTestData):
        payee = test_data.create_payee(group=None)
        percentages = CoachGroupService(db).resolve_for_payee(payee)
        assert percentages.name == "rising"

    def test_inactive_group_falls_back(self, db: Session, test_data: EngineTestData):
        test_data.create_group("legacy", lead=10, coach=60, platform=30, is_active=False)
        payee = test_data.create_payee(group="legacy")
        assert CoachGroupService(db).resolve_for_payee(payee).name == "rising"

    def test_missing_default_group(self, db: Session, test_data: EngineTestData):
        payee = test_data.create_payee(group=None)
        with pytest.raises(ConfigurationError):
            CoachGroupService(db, SplitPolicy(default_group="expert")).resolve_for_payee(payee)

    def test_update_rejects_bad_sum(self, db: Session, test_data: EngineTestData):
        with pytest.raises(SplitValidationError):
            CoachGroupService(db).update_group(
                "rising", actor="admin@example.com", lead_cost_percent=25
            )

    def test_update_is_audited(self, db: Session, test_data: EngineTestData):
        group = CoachGroupService(db).update_group(
            "rising",
            actor="admin@example.com",
            lead_cost_percent=25,
            platform_fee_percent=25,
        )

        assert group.lead_cost_percent == Decimal("25")
        entry = db.execute(
            select(ActivityLog).where(ActivityLog.action == "coach_group_updated")
        ).scalar_one()
        assert entry.actor == "admin@example.com"
        assert Decimal(entry.details["before"]["lead_cost_percent"]) == Decimal("20")

    def test_edit_does_not_touch_existing_split(self, db: Session, test_data: EngineTestData):
        coach = test_data.create_payee()
        split, _ = test_data.split_and_schedule(coach, 10000)

        CoachGroupService(db).update_group(
            "rising", actor="admin@example.com", lead_cost_percent=10, coach_cost_percent=60
        )
        db.refresh(split)

        assert split.coach_cost_amount == Decimal("5000")
        assert Decimal(split.config_snapshot["coach_cost_percent"]) == Decimal("50")

    def test_unknown_group(self, db: Session, test_data: EngineTestData):
        with pytest.raises(NotFoundError):
            CoachGroupService(db).update_group("expert", actor="admin@example.com")

    def test_rejected_update_is_audited(self, db: Session, test_data: EngineTestData):
        with pytest.raises(SplitValidationError):
            CoachGroupService(db).update_group(
                "rising", actor="admin@example.com", lead_cost_percent=25
            )
        db.rollback()

        rejected = db.execute(
            select(ActivityLog).where(ActivityLog.action == "coach_group_update_rejected")
        ).scalar_one()
        assert rejected.actor == "admin@example.com"
        assert rejected.details["outcome"] == "rejected"
        assert rejected.details["group"] == "rising"
        assert rejected.details["requested"] == {"lead_cost_percent": 25}
        group = CoachGroupService(db).get_by_name("rising")
        assert group.lead_cost_percent == Decimal("20")
