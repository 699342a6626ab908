"""In-memory rail and capture feed for local development and testing.

Replace with RazorpayXPayoutRail / RazorpayCaptureFeed for production.
"""

from __future__ import annotations

import datetime
import uuid
from decimal import Decimal
from typing import Any

from revenue_engine.errors import CaptureFeedError, RailError
from revenue_engine.providers.base import CapturedPayment, FundAccount, PayoutResult, RailContact


class StubPayoutRail:
    """Stub payout rail.

    Payouts are idempotent on reference_id like the real rail: a repeated
    reference returns the original payout instead of creating a second one.
    """

    provider_name = "stub"

    def __init__(self, auto_process: bool = True):
        """Initialize stub rail.

        Args:
            auto_process: If True, payouts report as processed with a UTR.
                          If False, payouts stay queued without a UTR.
        """
        self.auto_process = auto_process
        self.contacts: dict[str, dict[str, Any]] = {}
        self.fund_accounts: dict[str, dict[str, Any]] = {}
        self.payouts: dict[str, dict[str, Any]] = {}
        self.calls: list[str] = []
        # Failure injection
        self._fail_contacts = False
        self._fail_fund_accounts = False
        self._payout_failures: list[RailError] = []

    def create_contact(self, *, name: str, email: str | None, reference_id: str) -> RailContact:
        """Register contact (stub implementation)."""
        self.calls.append("create_contact")
        if self._fail_contacts:
            raise RailError("Failed to create contact", status_code=400)
        contact_id = f"cont_{uuid.uuid4().hex[:14]}"
        self.contacts[contact_id] = {"name": name, "email": email, "reference_id": reference_id}
        return RailContact(contact_id=contact_id)

    def create_fund_account(
        self,
        *,
        contact_id: str,
        account_holder: str,
        ifsc: str,
        account_number: str,
    ) -> FundAccount:
        """Register bank account (stub implementation)."""
        self.calls.append("create_fund_account")
        if self._fail_fund_accounts:
            raise RailError("Failed to create fund account", status_code=400)
        if contact_id not in self.contacts:
            raise RailError(f"Contact {contact_id} not found", status_code=400)
        fund_account_id = f"fa_{uuid.uuid4().hex[:14]}"
        self.fund_accounts[fund_account_id] = {
            "contact_id": contact_id,
            "name": account_holder,
            "ifsc": ifsc,
            "account_number": account_number,
        }
        return FundAccount(fund_account_id=fund_account_id, contact_id=contact_id)

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
        """Submit payout (stub implementation)."""
        self.calls.append("create_payout")

        existing = self.payouts.get(reference_id)
        if existing:
            return existing["result"]

        if self._payout_failures:
            raise self._payout_failures.pop(0)
        if fund_account_id not in self.fund_accounts:
            raise RailError(f"Fund account {fund_account_id} not found", status_code=400)
        if amount_minor_units < 100:
            raise RailError("Amount must be at least 100 paise", status_code=400)

        payout_id = f"pout_{uuid.uuid4().hex[:14]}"
        result = PayoutResult(
            payout_id=payout_id,
            status="processed" if self.auto_process else "queued",
            reference_id=reference_id,
            utr=f"STUBUTR{uuid.uuid4().hex[:10].upper()}" if self.auto_process else None,
        )
        self.payouts[reference_id] = {
            "fund_account_id": fund_account_id,
            "amount": amount_minor_units,
            "currency": currency,
            "mode": mode,
            "narration": narration,
            "notes": notes or {},
            "result": result,
        }
        return result

    def fail_next_payout(self, message: str = "Rail unavailable", status_code: int = 503) -> None:
        """Make the next new payout request raise (for testing)."""
        self._payout_failures.append(
            RailError(message, status_code=status_code, retryable=status_code >= 500)
        )

    def fail_registrations(self, contacts: bool = True, fund_accounts: bool = False) -> None:
        """Make contact / fund account creation fail (for testing)."""
        self._fail_contacts = contacts
        self._fail_fund_accounts = fund_accounts

    @property
    def payout_count(self) -> int:
        """Number of distinct transfers created."""
        return len(self.payouts)


class StubCaptureFeed:
    """Stub gateway capture feed backed by a list."""

    provider_name = "stub"

    def __init__(self, payments: list[CapturedPayment] | None = None):
        self.payments: list[CapturedPayment] = list(payments or [])
        self.fail_with: str | None = None

    def add_capture(
        self,
        payment_id: str,
        amount: int,
        *,
        created_at: datetime.datetime | None = None,
        status: str = "captured",
        order_id: str | None = None,
    ) -> CapturedPayment:
        """Append a payment event (amount in rupees)."""
        payment = CapturedPayment(
            payment_id=payment_id,
            status=status,
            amount=Decimal(amount),
            currency="INR",
            created_at=created_at or datetime.datetime.now(datetime.timezone.utc),
            order_id=order_id,
        )
        self.payments.append(payment)
        return payment

    def fetch_payments(
        self,
        *,
        window_start: datetime.datetime,
        window_end: datetime.datetime,
        count: int,
        skip: int,
    ) -> list[CapturedPayment]:
        """Return one page of payments created inside the window."""
        if self.fail_with:
            raise CaptureFeedError(self.fail_with)
        in_window = [
            p for p in self.payments if window_start <= p.created_at <= window_end
        ]
        return in_window[skip : skip + count]
