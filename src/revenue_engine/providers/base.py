"""Base protocols and types for payment rail and capture feed providers.

All payout adapters implement PayoutRailProvider; all gateway capture
adapters implement CaptureFeedProvider. Every response coming back from a
provider is treated as untrusted until the helpers below have validated it.
"""

from __future__ import annotations

import datetime
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Protocol

from revenue_engine.errors import CaptureFeedError, RailError


@dataclass(frozen=True)
class RailContact:
    """A payee registered with the rail."""

    contact_id: str


@dataclass(frozen=True)
class FundAccount:
    """A payee's bank destination registered with the rail."""

    fund_account_id: str
    contact_id: str


@dataclass(frozen=True)
class PayoutResult:
    """Result of a disbursement request accepted by the rail."""

    payout_id: str
    status: str  # queued/pending/processing/processed
    reference_id: str
    utr: str | None = None
    raw_payload: dict[str, Any] = field(default_factory=dict)

    @property
    def settlement_reference(self) -> str:
        """Bank UTR when the rail has one, otherwise the rail payout id."""
        return self.utr or self.payout_id


@dataclass(frozen=True)
class CapturedPayment:
    """A payment event reported by the gateway."""

    payment_id: str
    status: str  # created/authorized/captured/refunded/failed
    amount: Decimal  # rupees
    currency: str
    created_at: datetime.datetime
    order_id: str | None = None
    email: str | None = None
    contact: str | None = None
    raw_payload: dict[str, Any] = field(default_factory=dict)


class PayoutRailProvider(Protocol):
    """Protocol for payout rail adapters.

    The disbursement processor uses these adapters without knowing
    vendor-specific details.
    """

    provider_name: str

    def create_contact(self, *, name: str, email: str | None, reference_id: str) -> RailContact:
        """Register a payee with the rail."""
        ...

    def create_fund_account(
        self,
        *,
        contact_id: str,
        account_holder: str,
        ifsc: str,
        account_number: str,
    ) -> FundAccount:
        """Register a payee's bank account with the rail."""
        ...

    def create_payout(
        self,
        *,
        fund_account_id: str,
        amount_minor_units: int,
        reference_id: str,
        mode: str,
        currency: str = "INR",
        narration: str = "",
        notes: dict[str, Any] | None = None,
    ) -> PayoutResult:
        """Submit a disbursement.

        Args:
            fund_account_id: Destination returned by create_fund_account()
            amount_minor_units: Amount in paise
            reference_id: Unique reference, also sent as idempotency key so a
                transport-level retry cannot create a second transfer
            mode: IMPS/NEFT/RTGS/UPI
            currency: ISO code of the amount
            narration: Text shown on the payee's statement
            notes: Free-form metadata stored by the rail

        Returns:
            PayoutResult for the accepted request.

        Raises:
            RailError: rejected, unreachable, or unusable response.
        """
        ...


class CaptureFeedProvider(Protocol):
    """Protocol for gateway capture feeds used by reconciliation."""

    provider_name: str

    def fetch_payments(
        self,
        *,
        window_start: datetime.datetime,
        window_end: datetime.datetime,
        count: int,
        skip: int,
    ) -> list[CapturedPayment]:
        """Fetch one page of payments created inside the window.

        Raises:
            CaptureFeedError: the feed could not be read.
        """
        ...


def require_id(payload: Any, kind: str) -> str:
    """Return payload["id"] after checking the payload can be trusted."""
    if not isinstance(payload, dict):
        raise RailError(f"Malformed {kind} response: expected an object")
    value = payload.get("id")
    if not isinstance(value, str) or not value.strip():
        raise RailError(f"Malformed {kind} response: missing id", details={"payload": payload})
    return value


def parse_payout(payload: Any, reference_id: str) -> PayoutResult:
    """Validate a payout response and convert it to a PayoutResult."""
    payout_id = require_id(payload, "payout")
    status = payload.get("status")
    if status in ("rejected", "failed", "cancelled", "reversed"):
        reason = payload.get("failure_reason") or (payload.get("status_details") or {}).get(
            "description"
        )
        raise RailError(
            f"Payout {payout_id} {status}" + (f": {reason}" if reason else ""),
            details={"payout_id": payout_id, "status": status},
        )
    utr = payload.get("utr")
    return PayoutResult(
        payout_id=payout_id,
        status=str(status or "queued"),
        reference_id=str(payload.get("reference_id") or reference_id),
        utr=utr if isinstance(utr, str) and utr else None,
        raw_payload=payload,
    )


def parse_captured_payment(item: Any) -> CapturedPayment:
    """Validate one gateway payment item (amount in paise)."""
    if not isinstance(item, dict):
        raise CaptureFeedError("Malformed payment item: expected an object")
    payment_id = item.get("id")
    amount = item.get("amount")
    created_at = item.get("created_at")
    if not isinstance(payment_id, str) or not payment_id:
        raise CaptureFeedError("Malformed payment item: missing id", {"item": item})
    if not isinstance(amount, int) or isinstance(amount, bool):
        raise CaptureFeedError(f"Malformed payment {payment_id}: amount", {"item": item})
    if not isinstance(created_at, int):
        raise CaptureFeedError(f"Malformed payment {payment_id}: created_at", {"item": item})

    return CapturedPayment(
        payment_id=payment_id,
        status=str(item.get("status") or ""),
        amount=Decimal(amount) / 100,
        currency=str(item.get("currency") or "INR"),
        created_at=datetime.datetime.fromtimestamp(created_at, tz=datetime.timezone.utc),
        order_id=item.get("order_id") or None,
        email=item.get("email") or None,
        contact=item.get("contact") or None,
        raw_payload=item,
    )
