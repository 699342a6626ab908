"""Payout admin endpoints."""

from typing import Annotated

from fastapi import APIRouter, Query

from revenue_engine.api.dependencies import AdminEmail, DbSession, EngineSettings
from revenue_engine.api.schemas import (
    ErrorResponse,
    InstallmentResponse,
    PendingPayoutsResponse,
    RetryRequest,
    RetryResponse,
)
from revenue_engine.services.disbursement import PayoutDisbursementProcessor

router = APIRouter(prefix="/admin/payouts", tags=["payouts"])


@router.get(
    "/pending",
    response_model=PendingPayoutsResponse,
    responses={401: {"model": ErrorResponse}},
)
def list_pending_payouts(
    db: DbSession,
    admin: AdminEmail,
    engine: EngineSettings,
    due_only: Annotated[bool, Query(alias="dueOnly")] = False,
) -> PendingPayoutsResponse:
    """Scheduled installments grouped by payee, bank accounts masked."""
    processor = PayoutDisbursementProcessor(db, None, engine)
    return PendingPayoutsResponse.model_validate(processor.pending_preview(due_only=due_only))


@router.post(
    "/retry",
    response_model=RetryResponse,
    responses={
        400: {"model": ErrorResponse},
        401: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
        409: {"model": ErrorResponse},
    },
)
def retry_failed_payouts(
    db: DbSession,
    admin: AdminEmail,
    engine: EngineSettings,
    payload: RetryRequest,
) -> RetryResponse:
    """Queue a fresh attempt for failed installments, dated today."""
    processor = PayoutDisbursementProcessor(db, None, engine)
    created = processor.retry_failed(payload.installment_ids, actor=admin, reason=payload.reason)
    db.commit()
    return RetryResponse(
        queued=len(created),
        installments=[InstallmentResponse.model_validate(i) for i in created],
    )
