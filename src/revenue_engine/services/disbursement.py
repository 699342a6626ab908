"""Payout disbursement processor.

Timer-driven batch job that pays due installments through the payout rail.

Safety under overlapping runs comes from guarded updates only:
1. A run claims installments (claimed_by = run id) with an UPDATE that
   matches only scheduled rows that are unclaimed or whose claim expired.
2. The claim is committed before any rail call.
3. scheduled → paid / failed is an UPDATE matching status = 'scheduled'
   AND claimed_by = run id, so a second run can never finalize the same row.
4. Each payout carries a unique reference that the rail also uses as its
   idempotency key.
"""

from __future__ import annotations

import logging
import time
import uuid
from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Callable
from uuid import UUID

from sqlalchemy import or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload

from revenue_engine.engine_config import EngineConfig
from revenue_engine.errors import (
    ConfigurationError,
    DuplicateScheduleError,
    EngineError,
    InvalidTransitionError,
    NotFoundError,
    RailError,
    SplitValidationError,
)
from revenue_engine.models import Payee, PayoutInstallment
from revenue_engine.providers.base import PayoutRailProvider
from revenue_engine.services.audit import SYSTEM_ACTOR, ActivityLogger
from revenue_engine.services.notifications import NotificationSender, notify_quietly
from revenue_engine.services.state_machine import InstallmentStateMachine, InstallmentStatus
from revenue_engine.services.tds_ledger import TdsLedgerService

logger = logging.getLogger(__name__)

ZERO = Decimal("0")
MAX_RETRY_IDS = 100


def mask_bank_account(account_number: str | None) -> str | None:
    """Show only the last 4 digits of a bank account number."""
    if not account_number:
        return None
    return f"****{account_number[-4:]}"


def payout_reference(payee_id: UUID, now: datetime) -> str:
    """Unique rail reference for one payee submission."""
    return f"PAYOUT-{str(payee_id)[:8]}-{int(now.timestamp() * 1000)}"


def missing_prerequisites(payee: Payee) -> tuple[str, str] | None:
    """Return (code, reason) when a payee cannot be paid yet."""
    if not payee.payout_enabled:
        return "PAYOUT_DISABLED", "Payouts not enabled for payee"
    if not payee.has_bank_details:
        return "MISSING_BANK_DETAILS", "Bank account number and IFSC required"
    if not payee.pan_number:
        return "MISSING_PAN", "PAN required for payouts"
    return None


@dataclass
class PayeeOutcome:
    """Result for one payee within a run."""

    payee_id: UUID
    payee_name: str
    status: str  # paid/failed/skipped/preview
    installment_ids: list[UUID] = field(default_factory=list)
    gross_amount: Decimal = ZERO
    tds_amount: Decimal = ZERO
    net_amount: Decimal = ZERO
    reference: str | None = None
    payout_id: str | None = None
    tds_entries: int = 0
    error_code: str | None = None
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "payee_id": str(self.payee_id),
            "payee_name": self.payee_name,
            "status": self.status,
            "installment_ids": [str(i) for i in self.installment_ids],
            "installments": len(self.installment_ids),
            "gross_amount": self.gross_amount,
            "tds_amount": self.tds_amount,
            "net_amount": self.net_amount,
            "reference": self.reference,
            "payout_id": self.payout_id,
            "tds_entries": self.tds_entries,
            "error_code": self.error_code,
            "error": self.error,
        }


@dataclass
class PayoutRunSummary:
    """Structured result of one processor run."""

    run_id: str
    mode: str  # live/preview
    run_date: date
    payees_processed: int = 0
    succeeded: int = 0
    skipped: int = 0
    failed: int = 0
    installments_paid: int = 0
    installments_failed: int = 0
    total_net_amount: Decimal = ZERO
    results: list[PayeeOutcome] = field(default_factory=list)
    errors: list[dict[str, Any]] = field(default_factory=list)
    next_cursor: str | None = None

    @property
    def has_more(self) -> bool:
        return self.next_cursor is not None

    @property
    def success(self) -> bool:
        """Whether the run finished without failed or skipped payees."""
        return self.failed == 0 and not self.errors

    def to_dict(self) -> dict[str, Any]:
        return {
            "run_id": self.run_id,
            "mode": self.mode,
            "run_date": self.run_date,
            "payees_processed": self.payees_processed,
            "succeeded": self.succeeded,
            "skipped": self.skipped,
            "failed": self.failed,
            "installments_paid": self.installments_paid,
            "installments_failed": self.installments_failed,
            "total_net_amount": self.total_net_amount,
            "results": [r.to_dict() for r in self.results],
            "errors": self.errors,
            "next_cursor": self.next_cursor,
            "has_more": self.has_more,
        }


class PayoutDisbursementProcessor:
    """Pays due installments, one payee at a time.

    The processor owns its transaction boundaries: claims and outcomes are
    committed as they happen so overlapping runs see them.
    """

    def __init__(
        self,
        db: Session,
        rail: PayoutRailProvider | None,
        config: EngineConfig | None = None,
        *,
        notifier: NotificationSender | None = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], datetime] | None = None,
    ):
        self.db = db
        self.rail = rail
        self.config = config or EngineConfig()
        self.policy = self.config.payout
        self.notifier = notifier
        self.sleep = sleep
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self.audit = ActivityLogger(db)
        self.tds = TdsLedgerService(db, self.config.split)

    # -- queries -------------------------------------------------------------

    def due_installments(
        self,
        today: date,
        installment_ids: list[UUID] | None = None,
    ) -> list[PayoutInstallment]:
        """Scheduled installments due on or before today and not held by a live claim."""
        cutoff = self.clock() - timedelta(minutes=self.policy.claim_ttl_minutes)
        stmt = (
            select(PayoutInstallment)
            .where(
                PayoutInstallment.status == InstallmentStatus.SCHEDULED.value,
                PayoutInstallment.scheduled_date <= today,
                or_(
                    PayoutInstallment.claimed_by.is_(None),
                    PayoutInstallment.claimed_at < cutoff,
                ),
            )
            .options(selectinload(PayoutInstallment.payee))
            .order_by(PayoutInstallment.scheduled_date, PayoutInstallment.installment_index)
        )
        if installment_ids:
            stmt = stmt.where(PayoutInstallment.id.in_(installment_ids))
        return list(self.db.execute(stmt).scalars())

    @staticmethod
    def _group_by_payee(
        installments: list[PayoutInstallment],
    ) -> OrderedDict[str, list[PayoutInstallment]]:
        groups: dict[str, list[PayoutInstallment]] = {}
        for installment in installments:
            groups.setdefault(str(installment.payee_id), []).append(installment)
        return OrderedDict(sorted(groups.items()))

    # -- run -----------------------------------------------------------------

    def run(
        self,
        *,
        today: date | None = None,
        preview: bool = False,
        batch_size: int | None = None,
        cursor: str | None = None,
        installment_ids: list[UUID] | None = None,
    ) -> PayoutRunSummary:
        """Process due installments for up to batch_size payees.

        Args:
            today: Run date (defaults to the current date)
            preview: Compute per-payee totals without claiming or paying
            batch_size: Payees per run (defaults to policy)
            cursor: next_cursor from a previous run; payees after it only
            installment_ids: Restrict the run to these installments

        Returns:
            PayoutRunSummary with counts and per-payee outcomes
        """
        if self.rail is None and not preview:
            raise ConfigurationError("No payout rail configured")
        today = today or self.clock().date()
        batch_size = batch_size or self.policy.batch_size
        summary = PayoutRunSummary(
            run_id=f"run_{uuid.uuid4().hex[:16]}",
            mode="preview" if preview else "live",
            run_date=today,
        )

        groups = self._group_by_payee(self.due_installments(today, installment_ids))
        payee_keys = [key for key in groups if cursor is None or key > cursor]
        page = payee_keys[:batch_size]
        if len(payee_keys) > batch_size:
            summary.next_cursor = page[-1]

        logger.info(
            "payout run %s mode=%s date=%s payees=%d of %d",
            summary.run_id,
            summary.mode,
            today,
            len(page),
            len(payee_keys),
        )

        for position, key in enumerate(page):
            installments = groups[key]
            payee = installments[0].payee
            if preview:
                outcome = self._preview_payee(payee, installments)
            else:
                if position > 0 and self.policy.rate_limit_delay_seconds:
                    self.sleep(self.policy.rate_limit_delay_seconds)
                outcome = self._process_payee(summary.run_id, payee, installments, today)
            self._tally(summary, outcome)

        if not preview:
            self.audit.record(
                "payout_run_completed",
                details={k: v for k, v in summary.to_dict().items() if k != "results"},
            )
            self.db.commit()

        logger.info(
            "payout run %s finished succeeded=%d skipped=%d failed=%d net=%s",
            summary.run_id,
            summary.succeeded,
            summary.skipped,
            summary.failed,
            summary.total_net_amount,
        )
        return summary

    @staticmethod
    def _tally(summary: PayoutRunSummary, outcome: PayeeOutcome) -> None:
        summary.results.append(outcome)
        summary.payees_processed += 1
        if outcome.status == "paid":
            summary.succeeded += 1
            summary.installments_paid += len(outcome.installment_ids)
            summary.total_net_amount += outcome.net_amount
        elif outcome.status == "failed":
            summary.failed += 1
            summary.installments_failed += len(outcome.installment_ids)
        elif outcome.status == "skipped":
            summary.skipped += 1
        else:
            summary.total_net_amount += outcome.net_amount

        if outcome.error_code:
            summary.errors.append({
                "code": outcome.error_code,
                "payee_id": str(outcome.payee_id),
                "payee_name": outcome.payee_name,
                "reason": outcome.error,
            })

    @staticmethod
    def _totals(outcome: PayeeOutcome, installments: list[PayoutInstallment]) -> None:
        outcome.installment_ids = [i.id for i in installments]
        outcome.gross_amount = sum((i.gross_amount for i in installments), ZERO)
        outcome.tds_amount = sum((i.tds_amount for i in installments), ZERO)
        outcome.net_amount = sum((i.net_amount for i in installments), ZERO)

    def _preview_payee(self, payee: Payee, installments: list[PayoutInstallment]) -> PayeeOutcome:
        outcome = PayeeOutcome(payee_id=payee.id, payee_name=payee.name, status="preview")
        self._totals(outcome, installments)
        problem = missing_prerequisites(payee)
        if problem:
            outcome.status = "skipped"
            outcome.error_code, outcome.error = problem
        return outcome

    # -- per payee -------------------------------------------------------------

    def claim(self, run_id: str, installment_ids: list[UUID]) -> list[PayoutInstallment]:
        """Take installments for a run. Returns only the rows this run now holds."""
        now = self.clock()
        cutoff = now - timedelta(minutes=self.policy.claim_ttl_minutes)
        self.db.execute(
            update(PayoutInstallment)
            .where(
                PayoutInstallment.id.in_(installment_ids),
                PayoutInstallment.status == InstallmentStatus.SCHEDULED.value,
                or_(
                    PayoutInstallment.claimed_by.is_(None),
                    PayoutInstallment.claimed_at < cutoff,
                ),
            )
            .values(claimed_by=run_id, claimed_at=now)
            .execution_options(synchronize_session=False)
        )
        self.db.commit()
        return list(
            self.db.execute(
                select(PayoutInstallment)
                .where(
                    PayoutInstallment.id.in_(installment_ids),
                    PayoutInstallment.status == InstallmentStatus.SCHEDULED.value,
                    PayoutInstallment.claimed_by == run_id,
                )
                .options(selectinload(PayoutInstallment.revenue_split))
                .order_by(PayoutInstallment.scheduled_date)
                .execution_options(populate_existing=True)
            ).scalars()
        )

    def release(self, run_id: str, installment_ids: list[UUID]) -> None:
        """Drop a claim without changing status."""
        self.db.execute(
            update(PayoutInstallment)
            .where(
                PayoutInstallment.id.in_(installment_ids),
                PayoutInstallment.status == InstallmentStatus.SCHEDULED.value,
                PayoutInstallment.claimed_by == run_id,
            )
            .values(claimed_by=None, claimed_at=None)
            .execution_options(synchronize_session=False)
        )
        self.db.commit()

    def finalize(
        self,
        run_id: str,
        installment_ids: list[UUID],
        to_status: InstallmentStatus,
        *,
        reference: str | None = None,
        failure_reason: str | None = None,
    ) -> int:
        """Guarded scheduled → paid/failed for rows claimed by run_id.

        Returns:
            Number of rows transitioned. Rows already terminal or held by
            another run are left alone.
        """
        InstallmentStateMachine.validate_transition(InstallmentStatus.SCHEDULED, to_status)
        now = self.clock()
        values: dict[str, Any] = {"status": to_status.value}
        if to_status == InstallmentStatus.PAID:
            values.update(external_reference=reference, paid_at=now, failure_reason=None)
        else:
            values.update(failure_reason=(failure_reason or "")[:500], failed_at=now)

        result = self.db.execute(
            update(PayoutInstallment)
            .where(
                PayoutInstallment.id.in_(installment_ids),
                PayoutInstallment.status == InstallmentStatus.SCHEDULED.value,
                PayoutInstallment.claimed_by == run_id,
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    def _ensure_destination(self, payee: Payee) -> str:
        """Make sure the payee has a rail contact and fund account."""
        if not payee.rail_contact_id:
            contact = self.rail.create_contact(
                name=payee.bank_account_holder or payee.name,
                email=payee.email,
                reference_id=f"payee_{str(payee.id)[:8]}",
            )
            payee.rail_contact_id = contact.contact_id
            self.db.commit()
            logger.info("registered rail contact payee=%s contact=%s", payee.id, contact.contact_id)

        if not payee.rail_fund_account_id:
            fund_account = self.rail.create_fund_account(
                contact_id=payee.rail_contact_id,
                account_holder=payee.bank_account_holder or payee.name,
                ifsc=payee.bank_ifsc,
                account_number=payee.bank_account_number,
            )
            payee.rail_fund_account_id = fund_account.fund_account_id
            self.db.commit()
            logger.info(
                "registered fund account payee=%s fund_account=%s",
                payee.id,
                fund_account.fund_account_id,
            )
        return payee.rail_fund_account_id

    def _process_payee(
        self,
        run_id: str,
        payee: Payee,
        installments: list[PayoutInstallment],
        today: date,
    ) -> PayeeOutcome:
        outcome = PayeeOutcome(payee_id=payee.id, payee_name=payee.name, status="skipped")

        problem = missing_prerequisites(payee)
        if problem:
            self._totals(outcome, installments)
            outcome.error_code, outcome.error = problem
            logger.warning("skipping payee %s: %s", payee.id, outcome.error)
            return outcome

        claimed = self.claim(run_id, [i.id for i in installments])
        if not claimed:
            outcome.error_code = "ALREADY_CLAIMED"
            outcome.error = "Installments taken by another run"
            logger.info("payee %s installments already claimed by another run", payee.id)
            return outcome
        self._totals(outcome, claimed)

        if outcome.net_amount <= 0:
            self.release(run_id, outcome.installment_ids)
            outcome.error_code = "ZERO_AMOUNT"
            outcome.error = "Nothing to pay after TDS"
            return outcome

        reference = payout_reference(payee.id, self.clock())
        outcome.reference = reference
        try:
            fund_account_id = self._ensure_destination(payee)
            result = self.rail.create_payout(
                fund_account_id=fund_account_id,
                amount_minor_units=int(outcome.net_amount * 100),
                reference_id=reference,
                mode=self.policy.payout_mode,
                currency=self.policy.currency,
                narration="Coaching payout",
                notes={
                    "payee_id": str(payee.id),
                    "installments": str(len(claimed)),
                    "run_id": run_id,
                },
            )
        except RailError as e:
            return self._fail(run_id, payee, outcome, str(e))
        except Exception as e:
            # Outcome at the rail is unknown; failed rows need an explicit retry
            logger.exception("unexpected error paying payee %s", payee.id)
            return self._fail(run_id, payee, outcome, f"Unexpected error: {e}")

        outcome.payout_id = result.payout_id
        settlement_reference = result.settlement_reference
        transitioned = self.finalize(
            run_id,
            outcome.installment_ids,
            InstallmentStatus.PAID,
            reference=settlement_reference,
        )
        if transitioned != len(claimed):
            logger.error(
                "payee %s: paid %d of %d claimed installments (run %s)",
                payee.id,
                transitioned,
                len(claimed),
                run_id,
            )
        outcome.status = "paid"
        outcome.reference = settlement_reference
        outcome.tds_entries = self.tds.record_for_installments(payee, claimed, paid_on=today)

        self.audit.record(
            "payout_processed",
            details={
                "run_id": run_id,
                "payee_id": payee.id,
                "installment_ids": outcome.installment_ids,
                "net_amount": outcome.net_amount,
                "tds_amount": outcome.tds_amount,
                "reference": settlement_reference,
                "payout_id": result.payout_id,
                "rail": self.rail.provider_name,
            },
        )
        self.db.commit()

        notify_quietly(
            self.notifier,
            payee.email,
            "payout_processed",
            {
                "name": payee.name,
                "amount": str(outcome.net_amount),
                "tds": str(outcome.tds_amount),
                "reference": settlement_reference,
            },
        )
        logger.info(
            "paid payee %s net=%s installments=%d reference=%s",
            payee.id,
            outcome.net_amount,
            len(claimed),
            settlement_reference,
        )
        return outcome

    def _fail(self, run_id: str, payee: Payee, outcome: PayeeOutcome, message: str) -> PayeeOutcome:
        self.db.rollback()
        self.finalize(
            run_id,
            outcome.installment_ids,
            InstallmentStatus.FAILED,
            failure_reason=message,
        )
        outcome.status = "failed"
        outcome.error_code = "RAIL_ERROR"
        outcome.error = message
        self.audit.record(
            "payout_failed",
            details={
                "run_id": run_id,
                "payee_id": payee.id,
                "installment_ids": outcome.installment_ids,
                "net_amount": outcome.net_amount,
                "reference": outcome.reference,
                "error": message,
            },
        )
        self.db.commit()
        logger.warning("payout failed payee=%s: %s", payee.id, message)
        return outcome

    # -- admin actions -----------------------------------------------------------

    def pending_preview(self, *, today: date | None = None, due_only: bool = False) -> dict[str, Any]:
        """Scheduled installments grouped by payee with masked bank details."""
        today = today or self.clock().date()
        stmt = (
            select(PayoutInstallment)
            .where(PayoutInstallment.status == InstallmentStatus.SCHEDULED.value)
            .options(selectinload(PayoutInstallment.payee))
            .order_by(PayoutInstallment.scheduled_date)
        )
        if due_only:
            stmt = stmt.where(PayoutInstallment.scheduled_date <= today)

        payees = []
        for rows in self._group_by_payee(list(self.db.execute(stmt).scalars())).values():
            payee = rows[0].payee
            problem = missing_prerequisites(payee)
            due = [r for r in rows if r.scheduled_date <= today]
            payees.append({
                "payee_id": payee.id,
                "name": payee.name,
                "email": payee.email,
                "bank_account": mask_bank_account(payee.bank_account_number),
                "bank_ifsc": payee.bank_ifsc,
                "bank_name": payee.bank_name,
                "has_pan": bool(payee.pan_number),
                "payout_enabled": payee.payout_enabled,
                "ready": problem is None,
                "blocker": problem[1] if problem else None,
                "installments": len(rows),
                "due_installments": len(due),
                "gross_amount": sum((r.gross_amount for r in rows), ZERO),
                "tds_amount": sum((r.tds_amount for r in rows), ZERO),
                "net_amount": sum((r.net_amount for r in rows), ZERO),
                "due_net_amount": sum((r.net_amount for r in due), ZERO),
                "next_date": rows[0].scheduled_date,
            })

        return {
            "as_of": today,
            "payees": payees,
            "totals": {
                "payees": len(payees),
                "ready": sum(1 for p in payees if p["ready"]),
                "installments": sum(p["installments"] for p in payees),
                "net_amount": sum((p["net_amount"] for p in payees), ZERO),
                "due_net_amount": sum((p["due_net_amount"] for p in payees), ZERO),
            },
        }

    def retry_failed(
        self,
        installment_ids: list[UUID],
        *,
        actor: str,
        reason: str | None = None,
        today: date | None = None,
    ) -> list[PayoutInstallment]:
        """Queue a new attempt for each failed installment.

        The failed rows stay failed. Each new row is scheduled for today with
        attempt + 1 and retry_of_id pointing at the failed row; a failed row
        can be retried once.

        Raises:
            SplitValidationError: empty or oversized request.
            NotFoundError: an id does not exist.
            InvalidTransitionError: an installment is not failed or was
                already retried.

        A rejected request rolls back and leaves a payout_retry_rejected
        entry.
        """
        try:
            with self.db.begin_nested():
                return self._retry_failed(installment_ids, actor=actor, reason=reason, today=today)
        except EngineError as e:
            self.audit.record_rejected(
                "payout_retry_rejected",
                e,
                actor=actor or SYSTEM_ACTOR,
                actor_type="admin",
                details={
                    "installment_ids": list(installment_ids or [])[:MAX_RETRY_IDS],
                    "reason": reason,
                },
            )
            raise

    def _retry_failed(
        self,
        installment_ids: list[UUID],
        *,
        actor: str,
        reason: str | None,
        today: date | None,
    ) -> list[PayoutInstallment]:
        if not installment_ids:
            raise SplitValidationError("installment_ids is required")
        if len(installment_ids) > MAX_RETRY_IDS:
            raise SplitValidationError(f"At most {MAX_RETRY_IDS} installments per retry")

        ids = list(dict.fromkeys(installment_ids))
        rows = {
            row.id: row
            for row in self.db.execute(
                select(PayoutInstallment).where(PayoutInstallment.id.in_(ids))
            ).scalars()
        }
        missing = [str(i) for i in ids if i not in rows]
        if missing:
            raise NotFoundError("Installments not found", {"installment_ids": missing})

        for row in rows.values():
            if not InstallmentStateMachine.can_retry(row.status):
                raise InvalidTransitionError(
                    row.status, InstallmentStatus.SCHEDULED.value,
                    f"installment {row.id} is not failed",
                )
        already = self.db.execute(
            select(PayoutInstallment.retry_of_id).where(PayoutInstallment.retry_of_id.in_(ids))
        ).scalars().all()
        if already:
            raise InvalidTransitionError(
                InstallmentStatus.FAILED.value, InstallmentStatus.SCHEDULED.value,
                f"already retried: {', '.join(str(i) for i in already)}",
            )

        run_date = today or self.clock().date()
        created = [
            PayoutInstallment(
                revenue_split_id=row.revenue_split_id,
                payee_id=row.payee_id,
                installment_index=row.installment_index,
                installment_type=row.installment_type,
                attempt=row.attempt + 1,
                retry_of_id=row.id,
                gross_amount=row.gross_amount,
                tds_amount=row.tds_amount,
                net_amount=row.net_amount,
                scheduled_date=run_date,
                status=InstallmentStatus.SCHEDULED.value,
            )
            for row in (rows[i] for i in ids)
        ]
        try:
            with self.db.begin_nested():
                self.db.add_all(created)
                self.db.flush()
        except IntegrityError as e:
            raise DuplicateScheduleError(
                "Installment retried concurrently", {"installment_ids": [str(i) for i in ids]}
            ) from e

        self.audit.record(
            "payout_retry_queued",
            actor=actor or SYSTEM_ACTOR,
            actor_type="admin",
            details={
                "failed_installment_ids": ids,
                "new_installment_ids": [c.id for c in created],
                "net_amount": sum((c.net_amount for c in created), ZERO),
                "reason": reason,
            },
        )
        logger.info("queued %d payout retries by %s", len(created), actor)
        return created
