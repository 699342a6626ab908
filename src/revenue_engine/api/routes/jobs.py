"""Batch job triggers for the external scheduler.

Every route here requires the cron secret or internal API key; the check
runs before any other dependency.
"""

from fastapi import APIRouter, Depends

from revenue_engine.api.dependencies import (
    CaptureFeed,
    DbSession,
    EngineSettings,
    PayoutRail,
    verify_cron_caller,
)
from revenue_engine.api.schemas import (
    ErrorResponse,
    PayoutRunResponse,
    ProcessPayoutsRequest,
    ReconciliationJobRequest,
    ReconciliationJobResponse,
)
from revenue_engine.services.disbursement import PayoutDisbursementProcessor
from revenue_engine.services.notifications import LoggingNotificationSender
from revenue_engine.services.reconciliation import PaymentReconciliationDetector

router = APIRouter(
    prefix="/jobs",
    tags=["jobs"],
    dependencies=[Depends(verify_cron_caller)],
    responses={401: {"model": ErrorResponse}},
)


@router.post("/process-payouts", response_model=PayoutRunResponse)
def process_payouts(
    db: DbSession,
    engine: EngineSettings,
    rail: PayoutRail,
    payload: ProcessPayoutsRequest | None = None,
) -> PayoutRunResponse:
    """Pay due installments (or preview what would be paid)."""
    payload = payload or ProcessPayoutsRequest()
    processor = PayoutDisbursementProcessor(db, rail, engine, notifier=LoggingNotificationSender())
    summary = processor.run(
        today=payload.run_date,
        preview=payload.preview,
        batch_size=payload.batch_size,
        cursor=payload.cursor,
        installment_ids=payload.installment_ids,
    )
    return PayoutRunResponse.model_validate(summary.to_dict())


@router.post("/payment-reconciliation", response_model=ReconciliationJobResponse)
def run_payment_reconciliation(
    db: DbSession,
    engine: EngineSettings,
    feed: CaptureFeed,
    payload: ReconciliationJobRequest | None = None,
) -> ReconciliationJobResponse:
    """Sweep gateway captures for payments with no internal record."""
    payload = payload or ReconciliationJobRequest()
    detector = PaymentReconciliationDetector(db, feed, engine.reconciliation)
    summary = detector.run(lookback_days=payload.lookback_days)
    db.commit()
    return ReconciliationJobResponse.model_validate(summary.to_dict())
