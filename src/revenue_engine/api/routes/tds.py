"""TDS compliance admin endpoints."""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Query

from revenue_engine.api.dependencies import AdminEmail, DbSession, EngineSettings
from revenue_engine.api.schemas import (
    ErrorResponse,
    MarkDepositedRequest,
    MarkDepositedResponse,
    TdsSummaryResponse,
)
from revenue_engine.services.tds_ledger import TdsLedgerService

router = APIRouter(prefix="/admin", tags=["tds"])


@router.get(
    "/tds-summary",
    response_model=TdsSummaryResponse,
    responses={400: {"model": ErrorResponse}, 401: {"model": ErrorResponse}},
)
def get_tds_summary(
    db: DbSession,
    admin: AdminEmail,
    engine: EngineSettings,
    fiscal_year: Annotated[str | None, Query(alias="fiscalYear")] = None,
    payee_id: Annotated[UUID | None, Query(alias="payeeId")] = None,
) -> TdsSummaryResponse:
    """Quarterly and per-payee TDS aggregates with masked PANs."""
    summary = TdsLedgerService(db, engine.split).summary(fiscal_year, payee_id)
    return TdsSummaryResponse.model_validate(summary)


@router.post(
    "/tds/mark-deposited",
    response_model=MarkDepositedResponse,
    responses={400: {"model": ErrorResponse}, 401: {"model": ErrorResponse}},
)
def mark_tds_deposited(
    db: DbSession,
    admin: AdminEmail,
    engine: EngineSettings,
    payload: MarkDepositedRequest,
) -> MarkDepositedResponse:
    """Mark a quarter's undeposited entries as deposited. Safe to repeat."""
    result = TdsLedgerService(db, engine.split).mark_deposited(
        payload.quarter,
        payload.fiscal_year,
        actor=admin,
        challan_number=payload.challan_number,
        deposit_date=payload.deposit_date,
        entry_ids=payload.entry_ids,
    )
    db.commit()

    updated = result["entries_updated"]
    message = (
        f"Marked {updated} entries as deposited"
        if updated
        else "No undeposited entries matched"
    )
    return MarkDepositedResponse(**result, message=message)
