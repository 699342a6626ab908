"""Referral credit models."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from uuid import UUID, uuid4

from sqlalchemy import Boolean, CheckConstraint, DateTime, ForeignKey, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from revenue_engine.models.base import AuditMixin, Base, TimestampMixin


class ReferralParty(Base, AuditMixin):
    """A parent who can earn account credit by referring new families.

    credit_balance and credit_expires_at are denormalized from the
    transaction log and move together with each new transaction.
    """

    __tablename__ = "referral_party"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    email: Mapped[str | None] = mapped_column(String(320), nullable=True)
    credit_balance: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    credit_expires_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    transactions: Mapped[list["ReferralCreditTransaction"]] = relationship(
        back_populates="party", order_by="ReferralCreditTransaction.created_at"
    )


class Coupon(Base, TimestampMixin):
    """Checkout coupon. Referral coupons point at the party that owns them."""

    __tablename__ = "coupon"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    code: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)
    coupon_type: Mapped[str] = mapped_column(String(30), nullable=False, default="generic")
    referral_party_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("referral_party.id"), nullable=True
    )
    referring_coach_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("payee.id"), nullable=True
    )
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    __table_args__ = (
        CheckConstraint(
            "coupon_type IN ('parent_referral', 'coach_referral', 'generic')",
            name="coupon_type_ck",
        ),
    )


class ReferralCreditTransaction(Base, TimestampMixin):
    """Earn event appended for every credit awarded."""

    __tablename__ = "referral_credit_transaction"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    party_id: Mapped[UUID] = mapped_column(ForeignKey("referral_party.id"), nullable=False)
    enrollment_id: Mapped[UUID] = mapped_column(
        ForeignKey("enrollment.id"), nullable=False, unique=True
    )
    coupon_code: Mapped[str] = mapped_column(String(50), nullable=False)
    transaction_type: Mapped[str] = mapped_column(String(20), nullable=False, default="earned")
    amount: Mapped[Decimal] = mapped_column(nullable=False)
    balance_after: Mapped[Decimal] = mapped_column(nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        CheckConstraint("amount > 0", name="referral_credit_amount_positive_ck"),
    )

    party: Mapped[ReferralParty] = relationship(back_populates="transactions")
