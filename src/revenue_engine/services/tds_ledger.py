"""TDS compliance ledger.

Entries are written by the disbursement processor for every paid
installment that withheld tax. Admins read quarterly aggregates and mark
entries as deposited once the challan is paid.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from datetime import date
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Iterable
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from revenue_engine.calculators.fiscal import (
    QUARTERS,
    financial_year_for,
    is_valid_financial_year,
    quarter_due_date,
    quarter_for,
)
from revenue_engine.engine_config import SplitPolicy
from revenue_engine.errors import EngineError, SplitValidationError
from revenue_engine.models import Payee, PayoutInstallment, TdsLedgerEntry
from revenue_engine.services.audit import ActivityLogger

logger = logging.getLogger(__name__)

MAX_ENTRY_IDS = 100
MAX_CHALLAN_LENGTH = 50
ZERO = Decimal("0")


def mask_pan(pan: str | None) -> str | None:
    """Show only the first 2 and last 3 characters of a PAN."""
    if not pan:
        return None
    if len(pan) < 5:
        return "****"
    return f"{pan[:2]}****{pan[-3:]}"


def _quarter_status(deducted: Decimal, pending: Decimal) -> str:
    if deducted == 0:
        return "n/a"
    if pending == 0:
        return "complete"
    return "pending"


def _parse_deposit_date(value: date | str | None) -> date:
    if value is None:
        return date.today()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(value)
    except ValueError as e:
        raise SplitValidationError(
            "Invalid deposit date format (use YYYY-MM-DD)", {"deposit_date": value}
        ) from e


class TdsLedgerService:
    """Writes, aggregates and settles TDS ledger entries."""

    def __init__(self, db: Session, policy: SplitPolicy | None = None):
        self.db = db
        self.policy = policy or SplitPolicy()
        self.audit = ActivityLogger(db)

    # -- writes from the disbursement path ---------------------------------

    def record_for_installments(
        self,
        payee: Payee,
        installments: Iterable[PayoutInstallment],
        *,
        paid_on: date,
    ) -> int:
        """Create one entry per installment with TDS withheld.

        Runs in its own savepoint. A failure is logged and reported as 0
        entries; the payout it belongs to stays paid.
        """
        rows = [i for i in installments if i.tds_amount and i.tds_amount > 0]
        if not rows:
            return 0

        financial_year = financial_year_for(paid_on)
        quarter = quarter_for(paid_on)
        try:
            with self.db.begin_nested():
                for installment in rows:
                    snapshot = installment.revenue_split.config_snapshot or {}
                    rate = Decimal(
                        str(snapshot.get("tds_rate_percent", self.policy.tds_rate_percent))
                    )
                    self.db.add(
                        TdsLedgerEntry(
                            payee_id=payee.id,
                            payee_name=payee.name,
                            payee_pan=payee.pan_number,
                            installment_id=installment.id,
                            financial_year=financial_year,
                            quarter=quarter,
                            section=snapshot.get("tds_section", self.policy.tds_section),
                            gross_amount=installment.gross_amount,
                            tds_rate=rate,
                            tds_amount=installment.tds_amount,
                        )
                    )
                self.db.flush()
        except SQLAlchemyError:
            logger.exception(
                "TDS ledger write failed payee=%s installments=%s",
                payee.id,
                [str(i.id) for i in rows],
            )
            self.audit.record(
                "tds_entry_failed",
                details={
                    "payee_id": payee.id,
                    "installment_ids": [i.id for i in rows],
                    "tds_amount": sum((i.tds_amount for i in rows), ZERO),
                },
            )
            return 0
        return len(rows)

    # -- admin reads --------------------------------------------------------

    def summary(
        self,
        fiscal_year: str | None = None,
        payee_id: UUID | None = None,
        *,
        today: date | None = None,
    ) -> dict[str, Any]:
        """Quarterly and per-payee aggregates for a financial year."""
        fiscal_year = fiscal_year or financial_year_for(today or date.today())
        if not is_valid_financial_year(fiscal_year):
            raise SplitValidationError(
                "Invalid financial year format (use YYYY-YY)", {"fiscal_year": fiscal_year}
            )

        stmt = select(TdsLedgerEntry).where(TdsLedgerEntry.financial_year == fiscal_year)
        if payee_id is not None:
            stmt = stmt.where(TdsLedgerEntry.payee_id == payee_id)
        entries = list(self.db.execute(stmt.order_by(TdsLedgerEntry.created_at)).scalars())

        quarters = []
        for quarter in QUARTERS:
            in_quarter = [e for e in entries if e.quarter == quarter]
            deducted = sum((e.tds_amount for e in in_quarter), ZERO)
            deposited = sum((e.tds_amount for e in in_quarter if e.deposited), ZERO)
            pending = deducted - deposited
            quarters.append({
                "quarter": quarter,
                "entries": len(in_quarter),
                "deducted": deducted,
                "deposited": deposited,
                "pending": pending,
                "due_date": quarter_due_date(quarter, fiscal_year),
                "status": _quarter_status(deducted, pending),
            })

        by_payee: dict[UUID, list[TdsLedgerEntry]] = defaultdict(list)
        for entry in entries:
            by_payee[entry.payee_id].append(entry)

        payees = []
        for pid, rows in by_payee.items():
            payee = self.db.get(Payee, pid)
            pan = payee.pan_number if payee is not None else rows[-1].payee_pan
            gross = sum((e.gross_amount for e in rows), ZERO)
            tds = sum((e.tds_amount for e in rows), ZERO)
            rate = (tds * 100 / gross).quantize(Decimal("0.01"), ROUND_HALF_UP) if gross else ZERO
            payees.append({
                "payee_id": pid,
                "name": payee.name if payee is not None else rows[-1].payee_name,
                "pan_masked": mask_pan(pan),
                "pan_status": "available" if pan else "missing",
                "entries": len(rows),
                "total_gross": gross,
                "total_tds": tds,
                "tds_deposited": sum((e.tds_amount for e in rows if e.deposited), ZERO),
                "effective_rate": rate,
            })
        payees.sort(key=lambda p: p["total_tds"], reverse=True)

        total_deducted = sum((q["deducted"] for q in quarters), ZERO)
        total_deposited = sum((q["deposited"] for q in quarters), ZERO)
        return {
            "fiscal_year": fiscal_year,
            "section": self.policy.tds_section,
            "quarters": quarters,
            "payees": payees,
            "alerts": self._missing_pan_alerts(fiscal_year, payee_id),
            "totals": {
                "entries": len(entries),
                "payees": len(payees),
                "deducted": total_deducted,
                "deposited": total_deposited,
                "pending": total_deducted - total_deposited,
            },
        }

    def _missing_pan_alerts(self, fiscal_year: str, payee_id: UUID | None) -> list[dict[str, Any]]:
        stmt = select(Payee).where(
            Payee.earnings_fy == fiscal_year,
            Payee.cumulative_earnings_fy > 0,
            (Payee.pan_number.is_(None)) | (Payee.pan_number == ""),
        )
        if payee_id is not None:
            stmt = stmt.where(Payee.id == payee_id)
        return [
            {
                "type": "missing_pan",
                "payee_id": payee.id,
                "name": payee.name,
                "cumulative_earnings": payee.cumulative_earnings_fy,
                "message": f"{payee.name} has earnings this year but no PAN on file",
            }
            for payee in self.db.execute(stmt.order_by(Payee.name)).scalars()
        ]

    # -- admin writes -------------------------------------------------------

    def mark_deposited(
        self,
        quarter: str,
        fiscal_year: str,
        *,
        actor: str,
        challan_number: str | None = None,
        deposit_date: date | str | None = None,
        entry_ids: list[UUID] | None = None,
    ) -> dict[str, Any]:
        """Mark undeposited entries of a quarter as deposited.

        Already-deposited entries are never touched, so repeating the call
        reports entries_updated == 0 instead of failing.

        Every call is audited. A rejected call rolls back and leaves a
        tds_mark_deposited_rejected entry.
        """
        try:
            with self.db.begin_nested():
                return self._mark_deposited(
                    quarter,
                    fiscal_year,
                    actor=actor,
                    challan_number=challan_number,
                    deposit_date=deposit_date,
                    entry_ids=entry_ids,
                )
        except EngineError as e:
            self.audit.record_rejected(
                "tds_mark_deposited_rejected",
                e,
                actor=actor,
                actor_type="admin",
                details={
                    "quarter": quarter,
                    "fiscal_year": fiscal_year,
                    "challan_number": challan_number,
                    "deposit_date": deposit_date,
                    "entry_count": None if entry_ids is None else len(entry_ids),
                },
            )
            raise

    def _mark_deposited(
        self,
        quarter: str,
        fiscal_year: str,
        *,
        actor: str,
        challan_number: str | None,
        deposit_date: date | str | None,
        entry_ids: list[UUID] | None,
    ) -> dict[str, Any]:
        if quarter not in QUARTERS:
            raise SplitValidationError("Invalid quarter (use Q1-Q4)", {"quarter": quarter})
        if not is_valid_financial_year(fiscal_year):
            raise SplitValidationError(
                "Invalid financial year format (use YYYY-YY)", {"fiscal_year": fiscal_year}
            )
        if challan_number is not None and len(challan_number) > MAX_CHALLAN_LENGTH:
            raise SplitValidationError(
                f"Challan number must be at most {MAX_CHALLAN_LENGTH} characters"
            )
        if entry_ids is not None and len(entry_ids) > MAX_ENTRY_IDS:
            raise SplitValidationError(f"At most {MAX_ENTRY_IDS} entry ids per request")
        deposited_on = _parse_deposit_date(deposit_date)

        stmt = select(TdsLedgerEntry.id, TdsLedgerEntry.tds_amount).where(
            TdsLedgerEntry.quarter == quarter,
            TdsLedgerEntry.financial_year == fiscal_year,
            TdsLedgerEntry.deposited.is_(False),
        )
        if entry_ids:
            stmt = stmt.where(TdsLedgerEntry.id.in_(entry_ids))
        matching = self.db.execute(stmt).all()

        updated = 0
        total = ZERO
        if matching:
            result = self.db.execute(
                update(TdsLedgerEntry)
                .where(
                    TdsLedgerEntry.id.in_([row.id for row in matching]),
                    TdsLedgerEntry.deposited.is_(False),
                )
                .values(
                    deposited=True,
                    challan_number=challan_number,
                    deposit_date=deposited_on,
                )
                .execution_options(synchronize_session="fetch")
            )
            updated = result.rowcount
            total = sum((row.tds_amount for row in matching), ZERO)
            if updated != len(matching):
                logger.warning(
                    "mark_deposited raced another update quarter=%s fy=%s matched=%d updated=%d",
                    quarter,
                    fiscal_year,
                    len(matching),
                    updated,
                )

        self.audit.record(
            "tds_marked_deposited",
            actor=actor,
            actor_type="admin",
            details={
                "quarter": quarter,
                "fiscal_year": fiscal_year,
                "challan_number": challan_number,
                "deposit_date": deposited_on,
                "entries_updated": updated,
                "total_amount": total,
                "entry_ids": entry_ids,
            },
        )
        logger.info(
            "TDS marked deposited quarter=%s fy=%s entries=%d amount=%s by=%s",
            quarter,
            fiscal_year,
            updated,
            total,
            actor,
        )
        return {
            "quarter": quarter,
            "fiscal_year": fiscal_year,
            "entries_updated": updated,
            "total_amount": total,
            "challan_number": challan_number,
            "deposit_date": deposited_on,
        }
