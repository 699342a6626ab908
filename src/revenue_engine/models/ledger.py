"""Enrollment, payment and payout ledger models.

Covers the money trail for a paid enrollment:
- Enrollments and internal payment records
- Revenue split records (immutable except status)
- Payout installments (scheduled -> paid | failed, exactly once)
- Earnings accruals (idempotency guard for the cumulative counter)
- TDS ledger entries
"""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Any
from uuid import UUID, uuid4

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from revenue_engine.models.base import AuditMixin, Base, TimestampMixin

if TYPE_CHECKING:
    from revenue_engine.models.payee import Payee


class Enrollment(Base, AuditMixin):
    """A purchased program instance.

    Amount is fixed at payment verification. Status only moves forward.
    """

    __tablename__ = "enrollment"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    payer_id: Mapped[UUID] = mapped_column(nullable=False)
    child_id: Mapped[UUID | None] = mapped_column(nullable=True)
    child_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    coach_id: Mapped[UUID] = mapped_column(ForeignKey("payee.id"), nullable=False)
    amount: Mapped[Decimal] = mapped_column(nullable=False)
    original_amount: Mapped[Decimal | None] = mapped_column(nullable=True)
    lead_source: Mapped[str] = mapped_column(String(20), nullable=False, default="platform")
    lead_source_coach_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("payee.id"), nullable=True
    )
    referral_code: Mapped[str | None] = mapped_column(String(50), nullable=True)
    gateway_payment_id: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")

    __table_args__ = (
        CheckConstraint(
            "lead_source IN ('platform', 'referring_payee')",
            name="enrollment_lead_source_ck",
        ),
        CheckConstraint(
            "status IN ('pending', 'active', 'completed', 'cancelled')",
            name="enrollment_status_ck",
        ),
        CheckConstraint("amount > 0", name="enrollment_amount_positive_ck"),
    )

    revenue_split: Mapped["RevenueSplitRecord | None"] = relationship(
        back_populates="enrollment", uselist=False
    )


class Payment(Base, TimestampMixin):
    """Internal record of a gateway capture."""

    __tablename__ = "payment"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    gateway_payment_id: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    gateway_order_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    payer_id: Mapped[UUID | None] = mapped_column(nullable=True)
    enrollment_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("enrollment.id"), nullable=True
    )
    amount: Mapped[Decimal] = mapped_column(nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="INR")
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="captured")
    source: Mapped[str] = mapped_column(String(30), nullable=False, default="checkout")


class RevenueSplitRecord(Base, AuditMixin):
    """Immutable three-way split of one enrollment.

    lead_cost_amount + coach_cost_amount + platform_fee_amount == total_amount.
    config_snapshot freezes the percentages and TDS policy used; historical
    rows are never re-derived from live configuration. Only status changes.
    """

    __tablename__ = "revenue_split"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    enrollment_id: Mapped[UUID] = mapped_column(
        ForeignKey("enrollment.id"), nullable=False, unique=True
    )
    coaching_coach_id: Mapped[UUID] = mapped_column(ForeignKey("payee.id"), nullable=False)
    lead_source: Mapped[str] = mapped_column(String(20), nullable=False)
    lead_source_coach_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("payee.id"), nullable=True
    )
    is_internal: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    total_amount: Mapped[Decimal] = mapped_column(nullable=False)
    lead_cost_amount: Mapped[Decimal] = mapped_column(nullable=False)
    coach_cost_amount: Mapped[Decimal] = mapped_column(nullable=False)
    platform_fee_amount: Mapped[Decimal] = mapped_column(nullable=False)

    tds_applicable: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    tds_rate_applied: Mapped[Decimal | None] = mapped_column(nullable=True)
    tds_amount: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    lead_tds_applicable: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    lead_tds_amount: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))

    net_to_coach: Mapped[Decimal] = mapped_column(nullable=False)
    net_to_lead_source: Mapped[Decimal] = mapped_column(nullable=False)
    net_retained_by_platform: Mapped[Decimal] = mapped_column(nullable=False)

    config_snapshot: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'scheduled', 'completed')",
            name="revenue_split_status_ck",
        ),
        CheckConstraint(
            "lead_cost_amount + coach_cost_amount + platform_fee_amount = total_amount",
            name="revenue_split_sum_ck",
        ),
    )

    enrollment: Mapped[Enrollment] = relationship(back_populates="revenue_split")
    installments: Mapped[list["PayoutInstallment"]] = relationship(
        back_populates="revenue_split", order_by="PayoutInstallment.installment_index"
    )


class PayoutInstallment(Base, AuditMixin):
    """One dated disbursement obligation derived from a revenue split.

    status: scheduled -> paid | failed, each transition a guarded update.
    claimed_by/claimed_at mark an installment as taken by a processor run
    while it is still scheduled.
    """

    __tablename__ = "payout_installment"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    revenue_split_id: Mapped[UUID] = mapped_column(
        ForeignKey("revenue_split.id"), nullable=False
    )
    payee_id: Mapped[UUID] = mapped_column(ForeignKey("payee.id"), nullable=False)
    installment_index: Mapped[int] = mapped_column(Integer, nullable=False)
    installment_type: Mapped[str] = mapped_column(String(20), nullable=False)
    attempt: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    retry_of_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("payout_installment.id"), nullable=True, unique=True
    )

    gross_amount: Mapped[Decimal] = mapped_column(nullable=False)
    tds_amount: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    net_amount: Mapped[Decimal] = mapped_column(nullable=False)
    scheduled_date: Mapped[date] = mapped_column(Date, nullable=False)

    status: Mapped[str] = mapped_column(String(20), nullable=False, default="scheduled")
    external_reference: Mapped[str | None] = mapped_column(String(100), nullable=True)
    failure_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    paid_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    failed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    claimed_by: Mapped[str | None] = mapped_column(String(64), nullable=True)
    claimed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        CheckConstraint(
            "status IN ('scheduled', 'paid', 'failed')",
            name="payout_installment_status_ck",
        ),
        CheckConstraint(
            "installment_type IN ('coach_cost', 'lead_bonus')",
            name="payout_installment_type_ck",
        ),
        CheckConstraint("net_amount = gross_amount - tds_amount", name="payout_installment_net_ck"),
        UniqueConstraint(
            "revenue_split_id", "payee_id", "installment_index", "installment_type", "attempt",
            name="payout_installment_uq",
        ),
        Index("payout_installment_due", "status", "scheduled_date"),
    )

    revenue_split: Mapped[RevenueSplitRecord] = relationship(back_populates="installments")
    payee: Mapped["Payee"] = relationship(back_populates="installments")


class EarningsAccrual(Base, TimestampMixin):
    """Record of one advance of a payee's cumulative earnings counter.

    The unique key (payee, enrollment, component) rejects a second update
    for the same enrollment.
    """

    __tablename__ = "earnings_accrual"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    payee_id: Mapped[UUID] = mapped_column(ForeignKey("payee.id"), nullable=False)
    enrollment_id: Mapped[UUID] = mapped_column(ForeignKey("enrollment.id"), nullable=False)
    component: Mapped[str] = mapped_column(String(20), nullable=False)
    financial_year: Mapped[str] = mapped_column(String(7), nullable=False)
    amount: Mapped[Decimal] = mapped_column(nullable=False)
    cumulative_before: Mapped[Decimal] = mapped_column(nullable=False)
    cumulative_after: Mapped[Decimal] = mapped_column(nullable=False)
    counter_version: Mapped[int] = mapped_column(Integer, nullable=False)

    __table_args__ = (
        UniqueConstraint(
            "payee_id", "enrollment_id", "component", name="earnings_accrual_uq"
        ),
    )


class TdsLedgerEntry(Base, TimestampMixin):
    """Tax withheld on one paid installment."""

    __tablename__ = "tds_ledger_entry"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    payee_id: Mapped[UUID] = mapped_column(ForeignKey("payee.id"), nullable=False)
    payee_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    payee_pan: Mapped[str | None] = mapped_column(String(10), nullable=True)
    installment_id: Mapped[UUID] = mapped_column(
        ForeignKey("payout_installment.id"), nullable=False, unique=True
    )
    financial_year: Mapped[str] = mapped_column(String(7), nullable=False)
    quarter: Mapped[str] = mapped_column(String(2), nullable=False)
    section: Mapped[str] = mapped_column(String(10), nullable=False, default="194J")
    gross_amount: Mapped[Decimal] = mapped_column(nullable=False)
    tds_rate: Mapped[Decimal] = mapped_column(nullable=False)
    tds_amount: Mapped[Decimal] = mapped_column(nullable=False)
    deposited: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    challan_number: Mapped[str | None] = mapped_column(String(50), nullable=True)
    deposit_date: Mapped[date | None] = mapped_column(Date, nullable=True)

    __table_args__ = (
        CheckConstraint("quarter IN ('Q1', 'Q2', 'Q3', 'Q4')", name="tds_ledger_quarter_ck"),
        CheckConstraint("tds_amount > 0", name="tds_ledger_amount_positive_ck"),
        Index("tds_ledger_by_period", "financial_year", "quarter", "deposited"),
    )
