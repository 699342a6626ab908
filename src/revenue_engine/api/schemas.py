"""Pydantic schemas for API request/response models.

Request bodies accept both snake_case and camelCase field names.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class RequestModel(BaseModel):
    """Base for request bodies."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ErrorResponse(BaseModel):
    """Error response schema."""

    detail: str
    code: str
    details: dict[str, Any] | None = None


# ============================================================================
# TDS compliance
# ============================================================================


class QuarterSummary(BaseModel):
    quarter: str
    entries: int
    deducted: Decimal
    deposited: Decimal
    pending: Decimal
    due_date: date
    status: str


class PayeeTdsSummary(BaseModel):
    payee_id: UUID
    name: str | None
    pan_masked: str | None
    pan_status: str
    entries: int
    total_gross: Decimal
    total_tds: Decimal
    tds_deposited: Decimal
    effective_rate: Decimal


class TdsAlert(BaseModel):
    type: str
    payee_id: UUID
    name: str
    cumulative_earnings: Decimal
    message: str


class TdsTotals(BaseModel):
    entries: int
    payees: int
    deducted: Decimal
    deposited: Decimal
    pending: Decimal


class TdsSummaryResponse(BaseModel):
    """Quarterly and per-payee TDS aggregates for one financial year."""

    fiscal_year: str
    section: str
    quarters: list[QuarterSummary]
    payees: list[PayeeTdsSummary]
    alerts: list[TdsAlert]
    totals: TdsTotals


class MarkDepositedRequest(RequestModel):
    """Mark a quarter's TDS entries as deposited."""

    quarter: str = Field(pattern=r"^Q[1-4]$")
    fiscal_year: str = Field(pattern=r"^\d{4}-\d{2}$")
    challan_number: str | None = Field(default=None, max_length=50)
    deposit_date: date | None = None
    entry_ids: list[UUID] | None = Field(default=None, max_length=100)


class MarkDepositedResponse(BaseModel):
    success: bool = True
    quarter: str
    fiscal_year: str
    entries_updated: int
    total_amount: Decimal
    challan_number: str | None
    deposit_date: date
    message: str


# ============================================================================
# Payouts
# ============================================================================


class PendingPayee(BaseModel):
    payee_id: UUID
    name: str
    email: str | None
    bank_account: str | None
    bank_ifsc: str | None
    bank_name: str | None
    has_pan: bool
    payout_enabled: bool
    ready: bool
    blocker: str | None
    installments: int
    due_installments: int
    gross_amount: Decimal
    tds_amount: Decimal
    net_amount: Decimal
    due_net_amount: Decimal
    next_date: date


class PendingTotals(BaseModel):
    payees: int
    ready: int
    installments: int
    net_amount: Decimal
    due_net_amount: Decimal


class PendingPayoutsResponse(BaseModel):
    as_of: date
    payees: list[PendingPayee]
    totals: PendingTotals


class RetryRequest(RequestModel):
    """Queue new attempts for failed installments."""

    installment_ids: list[UUID] = Field(min_length=1, max_length=100)
    reason: str | None = Field(default=None, max_length=500)


class InstallmentResponse(BaseModel):
    """Payout installment."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    revenue_split_id: UUID
    payee_id: UUID
    installment_index: int
    installment_type: str
    attempt: int
    retry_of_id: UUID | None = None
    gross_amount: Decimal
    tds_amount: Decimal
    net_amount: Decimal
    scheduled_date: date
    status: str
    external_reference: str | None = None
    failure_reason: str | None = None
    paid_at: datetime | None = None
    failed_at: datetime | None = None


class RetryResponse(BaseModel):
    queued: int
    installments: list[InstallmentResponse]


class ProcessPayoutsRequest(RequestModel):
    """Options for a processor run."""

    preview: bool = False
    batch_size: int | None = Field(default=None, ge=1, le=100)
    cursor: str | None = None
    installment_ids: list[UUID] | None = Field(default=None, max_length=500)
    run_date: date | None = None


class PayeeOutcomeResponse(BaseModel):
    payee_id: UUID
    payee_name: str
    status: str
    installment_ids: list[UUID]
    installments: int
    gross_amount: Decimal
    tds_amount: Decimal
    net_amount: Decimal
    reference: str | None
    payout_id: str | None
    tds_entries: int
    error_code: str | None
    error: str | None


class PayoutRunResponse(BaseModel):
    """Structured summary of a processor run."""

    run_id: str
    mode: str
    run_date: date
    payees_processed: int
    succeeded: int
    skipped: int
    failed: int
    installments_paid: int
    installments_failed: int
    total_net_amount: Decimal
    results: list[PayeeOutcomeResponse]
    errors: list[dict[str, Any]]
    next_cursor: str | None
    has_more: bool


# ============================================================================
# Reconciliation
# ============================================================================


class OrphanResponse(BaseModel):
    id: UUID
    gateway_payment_id: str
    gateway_order_id: str | None
    amount: Decimal
    currency: str
    email: str | None
    contact: str | None
    captured_at: datetime
    first_detected_at: datetime
    last_detected_at: datetime
    detection_count: int
    resolution_status: str
    resolution: str | None
    resolved_by: str | None
    resolved_at: datetime | None


class ReconciliationRunResponse(BaseModel):
    run_id: UUID
    started_at: datetime
    finished_at: datetime | None
    window_start: datetime
    window_end: datetime
    source: str
    status: str
    captures_checked: int
    orphans_found: int
    new_orphans: int
    auto_resolved: int
    error: str | None


class OrphanListResponse(BaseModel):
    days: int
    count: int
    total_amount: Decimal
    orphans: list[OrphanResponse]
    last_run: ReconciliationRunResponse | None


class ResolveOrphanRequest(RequestModel):
    resolution: str = Field(min_length=1, max_length=1000)


class ReconciliationJobRequest(RequestModel):
    lookback_days: int | None = Field(default=None, ge=1, le=90)


class ReconciliationJobResponse(BaseModel):
    run_id: UUID
    window_start: datetime
    window_end: datetime
    status: str
    captures_checked: int
    orphans_found: int
    new_orphans: int
    auto_resolved: int
    error: str | None
    orphans: list[OrphanResponse]


# ============================================================================
# Coach groups
# ============================================================================


class CoachGroupResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    name: str
    display_name: str
    description: str | None = None
    lead_cost_percent: Decimal
    coach_cost_percent: Decimal
    platform_fee_percent: Decimal
    is_internal: bool
    is_active: bool


class CoachGroupUpdate(RequestModel):
    lead_cost_percent: Decimal | None = Field(default=None, ge=0, le=100)
    coach_cost_percent: Decimal | None = Field(default=None, ge=0, le=100)
    platform_fee_percent: Decimal | None = Field(default=None, ge=0, le=100)
    is_internal: bool | None = None
    is_active: bool | None = None
    display_name: str | None = Field(default=None, max_length=100)


# ============================================================================
# Revenue splits
# ============================================================================


class RevenueSplitResponse(BaseModel):
    """Revenue split ledger row with its installments."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    enrollment_id: UUID
    coaching_coach_id: UUID
    lead_source: str
    lead_source_coach_id: UUID | None = None
    is_internal: bool
    total_amount: Decimal
    lead_cost_amount: Decimal
    coach_cost_amount: Decimal
    platform_fee_amount: Decimal
    tds_applicable: bool
    tds_rate_applied: Decimal | None = None
    tds_amount: Decimal
    lead_tds_applicable: bool
    lead_tds_amount: Decimal
    net_to_coach: Decimal
    net_to_lead_source: Decimal
    net_retained_by_platform: Decimal
    config_snapshot: dict[str, Any]
    status: str
    created_at: datetime
    installments: list[InstallmentResponse] = []
