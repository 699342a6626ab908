"""Tests for the payout disbursement processor.

Tests verify:
1. Due installments are paid once and only once
2. Rail failures mark installments failed without touching other payees
3. Overlapping runs cannot both finalize an installment
4. Retries create new attempts instead of reviving failed rows
"""

from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import select
from sqlalchemy.orm import Session

from revenue_engine.engine_config import EngineConfig, PayoutPolicy
from revenue_engine.errors import (
    ConfigurationError,
    InvalidTransitionError,
    NotFoundError,
    SplitValidationError,
)
from revenue_engine.models import ActivityLog, PayoutInstallment, TdsLedgerEntry
from revenue_engine.providers.stub import StubPayoutRail
from revenue_engine.services.disbursement import (
    PayoutDisbursementProcessor,
    mask_bank_account,
    payout_reference,
)
from revenue_engine.services.notifications import LoggingNotificationSender
from revenue_engine.services.state_machine import InstallmentStatus
from tests.conftest import FIRST_DUE, EngineTestData


def _no_sleep(seconds: float) -> None:
    pass


@pytest.fixture
def rail() -> StubPayoutRail:
    return StubPayoutRail()


def _processor(db: Session, rail, **kwargs) -> PayoutDisbursementProcessor:
    kwargs.setdefault("sleep", _no_sleep)
    return PayoutDisbursementProcessor(db, rail, **kwargs)


def _actions(db: Session) -> list[str]:
    return list(db.execute(select(ActivityLog.action).order_by(ActivityLog.created_at)).scalars())


class TestHelpers:
    def test_mask_bank_account(self):
        assert mask_bank_account("50100012341234") == "****1234"
        assert mask_bank_account(None) is None

    def test_payout_reference(self):
        payee_id = uuid4()
        now = datetime(2025, 7, 7, 10, 0, tzinfo=timezone.utc)
        reference = payout_reference(payee_id, now)
        assert reference == f"PAYOUT-{str(payee_id)[:8]}-{int(now.timestamp() * 1000)}"


class TestPayoutRun:
    """Live runs."""

    def test_pays_due_installment(self, db: Session, test_data: EngineTestData, rail):
        coach = test_data.create_payee()
        _, installments = test_data.split_and_schedule(coach, 59990)
        notifier = LoggingNotificationSender()

        summary = _processor(db, rail, notifier=notifier).run(today=FIRST_DUE)

        assert summary.mode == "live"
        assert summary.succeeded == 1
        assert summary.installments_paid == 1
        assert summary.total_net_amount == Decimal("9998")
        assert summary.success is True

        first = installments[0]
        db.refresh(first)
        assert first.status == "paid"
        assert first.external_reference.startswith("STUBUTR")
        assert first.paid_at is not None

        # Later installments are not due yet
        db.refresh(installments[1])
        assert installments[1].status == "scheduled"

        [payout] = rail.payouts.values()
        assert payout["amount"] == 999800
        assert payout["mode"] == "IMPS"
        assert payout["currency"] == "INR"

        db.refresh(coach)
        assert coach.rail_contact_id is not None
        assert coach.rail_fund_account_id is not None

        assert notifier.sent[0][0] == coach.email
        assert notifier.sent[0][1] == "payout_processed"
        assert "payout_processed" in _actions(db)
        assert "payout_run_completed" in _actions(db)

    def test_currency_from_policy(self, db: Session, test_data: EngineTestData, rail):
        coach = test_data.create_payee()
        test_data.split_and_schedule(coach, 59990)
        config = EngineConfig(payout=PayoutPolicy(currency="USD"))

        summary = _processor(db, rail, config=config).run(today=FIRST_DUE)

        assert summary.succeeded == 1
        [payout] = rail.payouts.values()
        assert payout["currency"] == "USD"

    def test_second_run_pays_nothing(self, db: Session, test_data: EngineTestData, rail):
        coach = test_data.create_payee()
        test_data.split_and_schedule(coach, 59990)
        processor = _processor(db, rail)

        processor.run(today=FIRST_DUE)
        summary = processor.run(today=FIRST_DUE)

        assert summary.payees_processed == 0
        assert rail.payout_count == 1

    def test_installments_for_one_payee_paid_together(
        self, db: Session, test_data: EngineTestData, rail
    ):
        coach = test_data.create_payee()
        test_data.split_and_schedule(coach, 59990)
        test_data.split_and_schedule(coach, 10000)

        summary = _processor(db, rail).run(today=FIRST_DUE)

        assert summary.payees_processed == 1
        assert summary.installments_paid == 2
        assert rail.payout_count == 1
        [payout] = rail.payouts.values()
        # The second split crosses the TDS threshold: 1,666 gross less 166 TDS
        assert payout["amount"] == (9998 + 1500) * 100

    def test_tds_ledger_written_on_payment(self, db: Session, test_data: EngineTestData, rail):
        coach = test_data.create_payee(cumulative=29000)
        _, installments = test_data.split_and_schedule(coach, 4000)

        summary = _processor(db, rail).run(today=FIRST_DUE)

        assert summary.results[0].tds_entries == 1
        entry = db.execute(select(TdsLedgerEntry)).scalar_one()
        assert entry.installment_id == installments[0].id
        assert entry.tds_amount == Decimal("66")
        assert entry.gross_amount == Decimal("666")
        assert entry.tds_rate == Decimal("10")
        assert entry.quarter == "Q2"
        assert entry.financial_year == "2025-26"
        assert entry.section == "194J"
        assert entry.deposited is False
        [payout] = rail.payouts.values()
        assert payout["amount"] == 60000

    def test_rail_failure_marks_installments_failed(
        self, db: Session, test_data: EngineTestData, rail
    ):
        coach = test_data.create_payee()
        _, installments = test_data.split_and_schedule(coach, 59990)
        rail.fail_next_payout("Rail unavailable")

        summary = _processor(db, rail).run(today=FIRST_DUE)

        assert summary.failed == 1
        assert summary.installments_failed == 1
        assert summary.success is False
        assert summary.errors[0]["code"] == "RAIL_ERROR"

        db.refresh(installments[0])
        assert installments[0].status == "failed"
        assert installments[0].failure_reason == "Rail unavailable"
        assert installments[0].failed_at is not None
        assert "payout_failed" in _actions(db)

    def test_failure_isolated_to_one_payee(self, db: Session, test_data: EngineTestData, rail):
        first = test_data.create_payee("Asha Rao")
        second = test_data.create_payee("Ravi Menon")
        test_data.split_and_schedule(first, 10000)
        test_data.split_and_schedule(second, 10000)
        processor = _processor(db, rail)
        # Whichever payee is processed first fails
        rail.fail_next_payout("Bank timeout")

        summary = processor.run(today=FIRST_DUE)

        assert summary.payees_processed == 2
        assert summary.failed == 1
        assert summary.succeeded == 1

    def test_registration_failure(self, db: Session, test_data: EngineTestData, rail):
        coach = test_data.create_payee()
        _, installments = test_data.split_and_schedule(coach, 10000)
        rail.fail_registrations(contacts=True)

        summary = _processor(db, rail).run(today=FIRST_DUE)

        assert summary.failed == 1
        db.refresh(installments[0])
        assert installments[0].status == "failed"
        assert rail.payout_count == 0

    @pytest.mark.parametrize(
        "payee_kwargs,code",
        [
            ({"pan": None}, "MISSING_PAN"),
            ({"bank": False}, "MISSING_BANK_DETAILS"),
            ({"payout_enabled": False}, "PAYOUT_DISABLED"),
        ],
    )
    def test_payee_not_ready_is_skipped(
        self, db: Session, test_data: EngineTestData, rail, payee_kwargs, code
    ):
        coach = test_data.create_payee(**payee_kwargs)
        _, installments = test_data.split_and_schedule(coach, 10000)

        summary = _processor(db, rail).run(today=FIRST_DUE)

        assert summary.skipped == 1
        assert summary.results[0].error_code == code
        assert rail.calls == []
        db.refresh(installments[0])
        assert installments[0].status == "scheduled"
        assert installments[0].claimed_by is None

    def test_zero_net_installment_released(self, db: Session, test_data: EngineTestData, rail):
        coach = test_data.create_payee()
        # Coach cost of 1 rupee spreads as 0 / 0 / 1
        _, installments = test_data.split_and_schedule(coach, 2)

        summary = _processor(db, rail).run(today=FIRST_DUE)

        assert summary.results[0].error_code == "ZERO_AMOUNT"
        assert rail.payout_count == 0
        db.refresh(installments[0])
        assert installments[0].status == "scheduled"
        assert installments[0].claimed_by is None

    def test_batch_cursor(self, db: Session, test_data: EngineTestData, rail):
        first = test_data.create_payee("Asha Rao")
        second = test_data.create_payee("Ravi Menon")
        test_data.split_and_schedule(first, 10000)
        test_data.split_and_schedule(second, 10000)
        processor = _processor(db, rail)

        page_one = processor.run(today=FIRST_DUE, batch_size=1)
        assert page_one.payees_processed == 1
        assert page_one.has_more is True

        page_two = processor.run(today=FIRST_DUE, batch_size=1, cursor=page_one.next_cursor)
        assert page_two.payees_processed == 1
        assert page_two.has_more is False
        paid = {page_one.results[0].payee_id, page_two.results[0].payee_id}
        assert paid == {first.id, second.id}

    def test_rate_limit_between_payees(self, db: Session, test_data: EngineTestData, rail):
        for name in ("Asha Rao", "Ravi Menon", "Kiran Das"):
            test_data.split_and_schedule(test_data.create_payee(name), 10000)
        pauses: list[float] = []

        _processor(db, rail, sleep=pauses.append).run(today=FIRST_DUE)

        assert pauses == [0.1, 0.1]

    def test_live_run_requires_rail(self, db: Session, test_data: EngineTestData):
        with pytest.raises(ConfigurationError):
            _processor(db, None).run(today=FIRST_DUE)


class TestPreview:
    """Preview mode and the pending payouts view."""

    def test_preview_does_not_claim_or_pay(self, db: Session, test_data: EngineTestData):
        coach = test_data.create_payee()
        _, installments = test_data.split_and_schedule(coach, 59990)

        summary = _processor(db, None).run(today=FIRST_DUE, preview=True)

        assert summary.mode == "preview"
        assert summary.results[0].status == "preview"
        assert summary.total_net_amount == Decimal("9998")
        db.refresh(installments[0])
        assert installments[0].status == "scheduled"
        assert installments[0].claimed_by is None

    def test_preview_flags_missing_pan(self, db: Session, test_data: EngineTestData):
        coach = test_data.create_payee(pan=None)
        test_data.split_and_schedule(coach, 10000)

        summary = _processor(db, None).run(today=FIRST_DUE, preview=True)

        assert summary.results[0].status == "skipped"
        assert summary.results[0].error_code == "MISSING_PAN"

    def test_pending_preview(self, db: Session, test_data: EngineTestData):
        coach = test_data.create_payee()
        test_data.split_and_schedule(coach, 59990)

        pending = _processor(db, None).pending_preview(today=FIRST_DUE)

        [payee] = pending["payees"]
        assert payee["bank_account"] == "****1234"
        assert payee["installments"] == 3
        assert payee["due_installments"] == 1
        assert payee["due_net_amount"] == Decimal("9998")
        assert payee["net_amount"] == Decimal("29995")
        assert payee["ready"] is True
        assert pending["totals"]["ready"] == 1

    def test_pending_preview_due_only(self, db: Session, test_data: EngineTestData):
        coach = test_data.create_payee()
        test_data.split_and_schedule(coach, 59990)

        pending = _processor(db, None).pending_preview(today=FIRST_DUE, due_only=True)

        assert pending["payees"][0]["installments"] == 1


class TestOverlappingRuns:
    """Claims and guarded finalization."""

    def test_claimed_installments_invisible_to_other_runs(
        self, db: Session, test_data: EngineTestData, rail
    ):
        coach = test_data.create_payee()
        _, installments = test_data.split_and_schedule(coach, 59990)
        ids = [installments[0].id]
        run_a = _processor(db, rail)
        run_b = _processor(db, rail)

        claimed = run_a.claim("run_a", ids)
        assert [i.id for i in claimed] == ids

        summary = run_b.run(today=FIRST_DUE)
        assert summary.payees_processed == 0
        assert run_b.claim("run_b", ids) == []

        assert run_b.finalize("run_b", ids, InstallmentStatus.PAID, reference="X") == 0
        assert run_a.finalize("run_a", ids, InstallmentStatus.PAID, reference="UTR1") == 1
        # Already paid: nothing left to transition
        assert run_a.finalize("run_a", ids, InstallmentStatus.FAILED) == 0

    def test_expired_claim_taken_over(self, db: Session, test_data: EngineTestData, rail):
        coach = test_data.create_payee()
        _, installments = test_data.split_and_schedule(coach, 59990)
        ids = [installments[0].id]
        two_hours_ago = datetime.now(timezone.utc) - timedelta(hours=2)
        crashed = _processor(db, rail, clock=lambda: two_hours_ago)
        crashed.claim("run_crashed", ids)

        summary = _processor(db, rail).run(today=FIRST_DUE)

        assert summary.succeeded == 1
        assert crashed.finalize("run_crashed", ids, InstallmentStatus.FAILED) == 0
        db.refresh(installments[0])
        assert installments[0].status == "paid"

    def test_finalize_rejects_invalid_target(self, db: Session, rail):
        with pytest.raises(InvalidTransitionError):
            _processor(db, rail).finalize("run_a", [uuid4()], InstallmentStatus.SCHEDULED)


class TestRetry:
    """Admin retry of failed installments."""

    def _failed_installment(self, db, test_data, rail) -> PayoutInstallment:
        coach = test_data.create_payee()
        _, installments = test_data.split_and_schedule(coach, 59990)
        rail.fail_next_payout()
        _processor(db, rail).run(today=FIRST_DUE)
        db.refresh(installments[0])
        assert installments[0].status == "failed"
        return installments[0]

    def test_retry_creates_new_attempt(self, db: Session, test_data: EngineTestData, rail):
        failed = self._failed_installment(db, test_data, rail)
        processor = _processor(db, rail)

        [retry] = processor.retry_failed(
            [failed.id], actor="admin@example.com", reason="bank back up", today=date(2025, 7, 10)
        )
        db.commit()

        assert retry.id != failed.id
        assert retry.retry_of_id == failed.id
        assert retry.attempt == 2
        assert retry.status == "scheduled"
        assert retry.scheduled_date == date(2025, 7, 10)
        assert retry.net_amount == failed.net_amount
        db.refresh(failed)
        assert failed.status == "failed"
        assert "payout_retry_queued" in _actions(db)

        summary = processor.run(today=date(2025, 7, 10))
        assert summary.succeeded == 1
        db.refresh(retry)
        assert retry.status == "paid"

    def test_retry_only_once(self, db: Session, test_data: EngineTestData, rail):
        failed = self._failed_installment(db, test_data, rail)
        processor = _processor(db, rail)
        processor.retry_failed([failed.id], actor="admin@example.com")

        with pytest.raises(InvalidTransitionError):
            processor.retry_failed([failed.id], actor="admin@example.com")

    def test_retry_rejects_scheduled(self, db: Session, test_data: EngineTestData, rail):
        coach = test_data.create_payee()
        _, installments = test_data.split_and_schedule(coach, 10000)

        with pytest.raises(InvalidTransitionError):
            _processor(db, rail).retry_failed([installments[0].id], actor="admin@example.com")

    def test_retry_unknown_id(self, db: Session, rail):
        with pytest.raises(NotFoundError):
            _processor(db, rail).retry_failed([uuid4()], actor="admin@example.com")

    def test_retry_requires_ids(self, db: Session, rail):
        with pytest.raises(SplitValidationError):
            _processor(db, rail).retry_failed([], actor="admin@example.com")
        with pytest.raises(SplitValidationError):
            _processor(db, rail).retry_failed(
                [uuid4() for _ in range(101)], actor="admin@example.com"
            )

    def test_rejected_retry_is_audited(self, db: Session, test_data: EngineTestData, rail):
        coach = test_data.create_payee()
        _, installments = test_data.split_and_schedule(coach, 10000)

        with pytest.raises(InvalidTransitionError):
            _processor(db, rail).retry_failed(
                [installments[0].id], actor="admin@example.com", reason="try again"
            )
        db.rollback()

        rejected = db.execute(
            select(ActivityLog).where(ActivityLog.action == "payout_retry_rejected")
        ).scalar_one()
        assert rejected.actor == "admin@example.com"
        assert rejected.details["outcome"] == "rejected"
        assert rejected.details["error_code"] == "INVALID_TRANSITION"
        assert rejected.details["installment_ids"] == [str(installments[0].id)]
        assert rejected.details["reason"] == "try again"
        assert db.execute(
            select(PayoutInstallment).where(PayoutInstallment.retry_of_id.is_not(None))
        ).first() is None

    def test_second_retry_rejection_audited(self, db: Session, test_data: EngineTestData, rail):
        failed = self._failed_installment(db, test_data, rail)
        processor = _processor(db, rail)
        processor.retry_failed([failed.id], actor="admin@example.com")
        db.commit()

        with pytest.raises(InvalidTransitionError):
            processor.retry_failed([failed.id], actor="admin@example.com")
        db.rollback()

        actions = _actions(db)
        assert "payout_retry_queued" in actions
        assert "payout_retry_rejected" in actions
        retries = db.execute(
            select(PayoutInstallment).where(PayoutInstallment.retry_of_id == failed.id)
        ).scalars().all()
        assert len(retries) == 1
