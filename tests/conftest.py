"""Pytest fixtures for revenue engine tests."""

from __future__ import annotations

from collections.abc import Generator
from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import Engine
from sqlalchemy.orm import Session, sessionmaker

from revenue_engine.calculators.types import LeadSource
from revenue_engine.config import Settings
from revenue_engine.database import build_engine
from revenue_engine.engine_config import EngineConfig
from revenue_engine.models import (
    Base,
    CoachGroup,
    Coupon,
    Enrollment,
    Payee,
    Payment,
    PayoutInstallment,
    ReferralParty,
    RevenueSplitRecord,
)
from revenue_engine.services.payout_scheduler import PayoutScheduler
from revenue_engine.services.revenue_split import RevenueSplitService, SplitRequest

# In-memory SQLite; savepoints are enabled by build_engine
TEST_DATABASE_URL = "sqlite:///:memory:"

# FY 2025-26; installments fall due on 7 Jul, 7 Aug and 7 Sep 2025
SPLIT_DATE = date(2025, 6, 15)
FIRST_DUE = date(2025, 7, 7)


def make_settings(**overrides) -> Settings:
    """Settings for tests, independent of the process environment."""
    values = {
        "database_url": TEST_DATABASE_URL,
        "engine_version": "1.0.0",
        "host": "127.0.0.1",
        "port": 8000,
        "debug": False,
        "log_level": "WARNING",
        "cron_secret": "cron-secret",
        "internal_api_key": "internal-key",
        "payout_rail": "stub",
        "razorpay_key_id": "",
        "razorpay_key_secret": "",
        "razorpay_account_number": "",
        "razorpay_base_url": "https://api.razorpay.test/v1",
    }
    values.update(overrides)
    return Settings(**values)


@pytest.fixture
def engine() -> Generator[Engine, None, None]:
    """Create a fresh test database engine."""
    engine = build_engine(TEST_DATABASE_URL)
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def db(engine: Engine) -> Generator[Session, None, None]:
    """Database session for each test."""
    factory = sessionmaker(engine, class_=Session, expire_on_commit=False, autoflush=False)
    with factory() as session:
        yield session
        session.rollback()


@pytest.fixture
def config() -> EngineConfig:
    return EngineConfig()


@pytest.fixture
def test_data(db: Session) -> EngineTestData:
    """Test data builder with the default coach group already created."""
    data = EngineTestData(db)
    data.create_group("rising", lead=20, coach=50, platform=30)
    db.commit()
    return data


class EngineTestData:
    """Test data generator for revenue engine tests."""

    def __init__(self, db: Session):
        self.db = db
        self.groups: dict[str, CoachGroup] = {}

    def create_group(
        self,
        name: str,
        *,
        lead: int = 20,
        coach: int = 50,
        platform: int = 30,
        is_internal: bool = False,
        is_active: bool = True,
    ) -> CoachGroup:
        """Create a coach group."""
        group = CoachGroup(
            name=name,
            display_name=name.title(),
            lead_cost_percent=Decimal(lead),
            coach_cost_percent=Decimal(coach),
            platform_fee_percent=Decimal(platform),
            is_internal=is_internal,
            is_active=is_active,
        )
        self.db.add(group)
        self.db.flush()
        self.groups[name] = group
        return group

    def create_payee(
        self,
        name: str = "Asha Rao",
        *,
        group: str | None = "rising",
        pan: str | None = "ABCDE1234F",
        bank: bool = True,
        payout_enabled: bool = True,
        cumulative: int = 0,
        earnings_fy: str | None = None,
        email: str | None = None,
    ) -> Payee:
        """Create a payee, ready for payouts unless told otherwise."""
        payee = Payee(
            name=name,
            email=email or f"{name.split()[0].lower()}@example.com",
            group_id=self.groups[group].id if group else None,
            pan_number=pan,
            bank_account_number="50100012341234" if bank else None,
            bank_ifsc="HDFC0001234" if bank else None,
            bank_name="HDFC Bank" if bank else None,
            bank_account_holder=name if bank else None,
            payout_enabled=payout_enabled,
            cumulative_earnings_fy=Decimal(cumulative),
            earnings_fy=earnings_fy or ("2025-26" if cumulative else None),
            earnings_version=0,
        )
        self.db.add(payee)
        self.db.flush()
        return payee

    def create_enrollment(
        self,
        coach: Payee,
        amount: int,
        *,
        lead_source: LeadSource = LeadSource.PLATFORM,
        referring: Payee | None = None,
        gateway_payment_id: str | None = None,
        referral_code: str | None = None,
    ) -> Enrollment:
        """Create a paid enrollment."""
        enrollment = Enrollment(
            payer_id=uuid4(),
            child_name="Test Child",
            coach_id=coach.id,
            amount=Decimal(amount),
            original_amount=Decimal(amount),
            lead_source=lead_source.value,
            lead_source_coach_id=referring.id if referring else None,
            referral_code=referral_code,
            gateway_payment_id=gateway_payment_id,
            status="active",
        )
        self.db.add(enrollment)
        self.db.flush()
        return enrollment

    def create_payment(self, gateway_payment_id: str, amount: int) -> Payment:
        """Create an internal payment record."""
        payment = Payment(
            gateway_payment_id=gateway_payment_id,
            amount=Decimal(amount),
            currency="INR",
            status="captured",
        )
        self.db.add(payment)
        self.db.flush()
        return payment

    def create_referral_party(self, name: str = "Meera Parent") -> ReferralParty:
        party = ReferralParty(name=name, credit_balance=Decimal("0"))
        self.db.add(party)
        self.db.flush()
        return party

    def create_coupon(
        self,
        code: str,
        party: ReferralParty | None = None,
        *,
        coupon_type: str = "parent_referral",
        is_active: bool = True,
    ) -> Coupon:
        coupon = Coupon(
            code=code,
            coupon_type=coupon_type,
            referral_party_id=party.id if party else None,
            is_active=is_active,
        )
        self.db.add(coupon)
        self.db.flush()
        return coupon

    def split_and_schedule(
        self,
        coach: Payee,
        amount: int,
        *,
        referring: Payee | None = None,
        config: EngineConfig | None = None,
        today: date = SPLIT_DATE,
    ) -> tuple[RevenueSplitRecord, list[PayoutInstallment]]:
        """Create an enrollment, split it and schedule its installments, then commit."""
        config = config or EngineConfig()
        lead_source = LeadSource.REFERRING_PAYEE if referring else LeadSource.PLATFORM
        enrollment = self.create_enrollment(
            coach, amount, lead_source=lead_source, referring=referring
        )
        split = RevenueSplitService(self.db, config).calculate(
            SplitRequest(
                enrollment_id=enrollment.id,
                amount=Decimal(amount),
                coaching_payee_id=coach.id,
                lead_source=lead_source,
                referring_payee_id=referring.id if referring else None,
            ),
            today=today,
        )
        installments = PayoutScheduler(self.db, config.payout).schedule(split, today=today)
        self.db.commit()
        return split, installments
