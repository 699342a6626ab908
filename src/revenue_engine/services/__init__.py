"""Business logic services."""

from revenue_engine.services.audit import ActivityLogger
from revenue_engine.services.coach_groups import CoachGroupService
from revenue_engine.services.disbursement import (
    PayeeOutcome,
    PayoutDisbursementProcessor,
    PayoutRunSummary,
    mask_bank_account,
)
from revenue_engine.services.earnings import EarningsCounter
from revenue_engine.services.enrollment_hook import (
    EnrollmentPaidEvent,
    EnrollmentPaidOutcome,
    on_enrollment_paid,
)
from revenue_engine.services.notifications import LoggingNotificationSender, NotificationSender
from revenue_engine.services.payout_scheduler import PayoutScheduler
from revenue_engine.services.reconciliation import (
    PaymentReconciliationDetector,
    ReconciliationSummary,
)
from revenue_engine.services.referral_credit import ReferralCreditResult, ReferralCreditService
from revenue_engine.services.revenue_split import RevenueSplitService, SplitRequest
from revenue_engine.services.state_machine import InstallmentStateMachine, InstallmentStatus
from revenue_engine.services.tds_ledger import TdsLedgerService, mask_pan

__all__ = [
    "ActivityLogger",
    "CoachGroupService",
    "EarningsCounter",
    "EnrollmentPaidEvent",
    "EnrollmentPaidOutcome",
    "InstallmentStateMachine",
    "InstallmentStatus",
    "LoggingNotificationSender",
    "NotificationSender",
    "PayeeOutcome",
    "PaymentReconciliationDetector",
    "PayoutDisbursementProcessor",
    "PayoutRunSummary",
    "PayoutScheduler",
    "ReconciliationSummary",
    "ReferralCreditResult",
    "ReferralCreditService",
    "RevenueSplitService",
    "SplitRequest",
    "TdsLedgerService",
    "mask_bank_account",
    "mask_pan",
    "on_enrollment_paid",
]
