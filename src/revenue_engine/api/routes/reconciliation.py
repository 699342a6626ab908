"""Orphaned payment endpoints."""

from typing import Annotated

from fastapi import APIRouter, Path, Query

from revenue_engine.api.dependencies import AdminEmail, DbSession, EngineSettings
from revenue_engine.api.schemas import (
    ErrorResponse,
    OrphanListResponse,
    OrphanResponse,
    ResolveOrphanRequest,
)
from revenue_engine.services.reconciliation import PaymentReconciliationDetector, orphan_to_dict

router = APIRouter(prefix="/admin/orphaned-payments", tags=["reconciliation"])


@router.get(
    "",
    response_model=OrphanListResponse,
    responses={401: {"model": ErrorResponse}},
)
def list_orphaned_payments(
    db: DbSession,
    admin: AdminEmail,
    engine: EngineSettings,
    days: Annotated[int, Query(ge=1, le=90)] = 7,
    include_resolved: Annotated[bool, Query(alias="includeResolved")] = False,
) -> OrphanListResponse:
    """Open orphan candidates detected in the last N days and the last run summary."""
    detector = PaymentReconciliationDetector(db, None, engine.reconciliation)
    return OrphanListResponse.model_validate(
        detector.list_orphans(days, include_resolved=include_resolved)
    )


@router.post(
    "/{gateway_payment_id}/resolve",
    response_model=OrphanResponse,
    responses={401: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
)
def resolve_orphaned_payment(
    db: DbSession,
    admin: AdminEmail,
    engine: EngineSettings,
    gateway_payment_id: Annotated[str, Path(max_length=64)],
    payload: ResolveOrphanRequest,
) -> OrphanResponse:
    """Record how an orphaned capture was handled."""
    detector = PaymentReconciliationDetector(db, None, engine.reconciliation)
    orphan = detector.resolve(gateway_payment_id, actor=admin, resolution=payload.resolution)
    db.commit()
    return OrphanResponse.model_validate(orphan_to_dict(orphan))
