"""Payee and coach group models.

A payee is any party entitled to a share of enrollment revenue: the coach
delivering the program, or a coach who referred the lead. The coach group
carries the percentages used to split revenue for its members.
"""

from __future__ import annotations

from decimal import Decimal
from typing import TYPE_CHECKING
from uuid import UUID, uuid4

from sqlalchemy import Boolean, CheckConstraint, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from revenue_engine.models.base import AuditMixin, Base

if TYPE_CHECKING:
    from revenue_engine.models.ledger import PayoutInstallment


class CoachGroup(Base, AuditMixin):
    """Coach cohort with its revenue split percentages.

    lead + coach + platform must equal 100 (enforced by CoachGroupService on
    write). Internal groups route the whole amount to the platform regardless
    of the percentages.
    """

    __tablename__ = "coach_group"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    name: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)
    display_name: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    lead_cost_percent: Mapped[Decimal] = mapped_column(nullable=False)
    coach_cost_percent: Mapped[Decimal] = mapped_column(nullable=False)
    platform_fee_percent: Mapped[Decimal] = mapped_column(nullable=False)
    is_internal: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    __table_args__ = (
        CheckConstraint(
            "lead_cost_percent >= 0 AND coach_cost_percent >= 0 AND platform_fee_percent >= 0",
            name="coach_group_percent_positive_ck",
        ),
    )

    members: Mapped[list["Payee"]] = relationship(back_populates="group")


class Payee(Base, AuditMixin):
    """Coach receiving coaching fees and lead bonuses.

    Bank details and PAN are needed before any disbursement. The rail
    contact/fund account ids are stored once the rail has accepted them.
    """

    __tablename__ = "payee"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    email: Mapped[str | None] = mapped_column(String(320), nullable=True)
    group_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("coach_group.id", ondelete="SET NULL"), nullable=True
    )
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    # Banking / tax profile
    pan_number: Mapped[str | None] = mapped_column(String(10), nullable=True)
    bank_account_number: Mapped[str | None] = mapped_column(String(34), nullable=True)
    bank_ifsc: Mapped[str | None] = mapped_column(String(11), nullable=True)
    bank_name: Mapped[str | None] = mapped_column(String(100), nullable=True)
    bank_account_holder: Mapped[str | None] = mapped_column(String(200), nullable=True)
    payout_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    # Payment rail registrations
    rail_contact_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    rail_fund_account_id: Mapped[str | None] = mapped_column(String(64), nullable=True)

    # Versioned cumulative earnings counter for the fiscal year in earnings_fy
    cumulative_earnings_fy: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    earnings_fy: Mapped[str | None] = mapped_column(String(7), nullable=True)
    earnings_version: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    group: Mapped[CoachGroup | None] = relationship(back_populates="members")
    installments: Mapped[list["PayoutInstallment"]] = relationship(back_populates="payee")

    @property
    def has_bank_details(self) -> bool:
        """Whether account number and IFSC are both present."""
        return bool(self.bank_account_number and self.bank_ifsc)
