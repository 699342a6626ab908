"""ORM models for the revenue engine."""

from revenue_engine.models.audit import ActivityLog, OrphanedPayment, ReconciliationRun
from revenue_engine.models.base import AuditMixin, Base, TimestampMixin
from revenue_engine.models.ledger import (
    EarningsAccrual,
    Enrollment,
    Payment,
    PayoutInstallment,
    RevenueSplitRecord,
    TdsLedgerEntry,
)
from revenue_engine.models.payee import CoachGroup, Payee
from revenue_engine.models.referral import Coupon, ReferralCreditTransaction, ReferralParty

__all__ = [
    "ActivityLog",
    "AuditMixin",
    "Base",
    "CoachGroup",
    "Coupon",
    "EarningsAccrual",
    "Enrollment",
    "OrphanedPayment",
    "Payee",
    "Payment",
    "PayoutInstallment",
    "ReconciliationRun",
    "ReferralCreditTransaction",
    "ReferralParty",
    "RevenueSplitRecord",
    "TdsLedgerEntry",
    "TimestampMixin",
]
