"""RazorpayX payout rail and Razorpay capture feed over httpx.

Both adapters authenticate with HTTP Basic auth (key id / key secret) and
validate every response before any id from it is stored.
"""

from __future__ import annotations

import datetime
import logging
from typing import Any

import httpx

from revenue_engine.errors import CaptureFeedError, RailError
from revenue_engine.providers.base import (
    CapturedPayment,
    FundAccount,
    PayoutResult,
    RailContact,
    parse_captured_payment,
    parse_payout,
    require_id,
)

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.razorpay.com/v1"
DEFAULT_TIMEOUT = 30.0


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text[:200] or f"HTTP {response.status_code}"
    if isinstance(body, dict):
        error = body.get("error")
        if isinstance(error, dict) and error.get("description"):
            return str(error["description"])
    return f"HTTP {response.status_code}"


class RazorpayXPayoutRail:
    """Payout rail backed by the RazorpayX contacts/fund_accounts/payouts API."""

    provider_name = "razorpayx"

    def __init__(
        self,
        key_id: str,
        key_secret: str,
        account_number: str,
        *,
        base_url: str = DEFAULT_BASE_URL,
        timeout: float = DEFAULT_TIMEOUT,
        transport: httpx.BaseTransport | None = None,
    ):
        if not key_id or not key_secret:
            raise ValueError("RazorpayX credentials are required")
        if not account_number:
            raise ValueError("RazorpayX account number is required")
        self.account_number = account_number
        self._client = httpx.Client(
            base_url=base_url.rstrip("/"),
            auth=(key_id, key_secret),
            timeout=timeout,
            transport=transport,
        )

    def close(self) -> None:
        self._client.close()

    def _post(
        self,
        path: str,
        payload: dict[str, Any],
        idempotency_key: str | None = None,
    ) -> Any:
        headers = {"X-Payout-Idempotency": idempotency_key} if idempotency_key else None
        try:
            response = self._client.post(path, json=payload, headers=headers)
        except httpx.HTTPError as e:
            raise RailError(f"RazorpayX request to {path} failed: {e}", retryable=True) from e

        if response.status_code >= 400:
            raise RailError(
                _error_message(response),
                status_code=response.status_code,
                retryable=response.status_code >= 500 or response.status_code == 429,
            )
        try:
            return response.json()
        except ValueError as e:
            raise RailError(f"RazorpayX returned non-JSON body for {path}") from e

    def create_contact(self, *, name: str, email: str | None, reference_id: str) -> RailContact:
        payload: dict[str, Any] = {
            "name": name,
            "type": "vendor",
            "reference_id": reference_id,
        }
        if email:
            payload["email"] = email
        body = self._post("/contacts", payload)
        return RailContact(contact_id=require_id(body, "contact"))

    def create_fund_account(
        self,
        *,
        contact_id: str,
        account_holder: str,
        ifsc: str,
        account_number: str,
    ) -> FundAccount:
        body = self._post(
            "/fund_accounts",
            {
                "contact_id": contact_id,
                "account_type": "bank_account",
                "bank_account": {
                    "name": account_holder,
                    "ifsc": ifsc,
                    "account_number": account_number,
                },
            },
        )
        return FundAccount(fund_account_id=require_id(body, "fund account"), contact_id=contact_id)

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
        payload: dict[str, Any] = {
            "account_number": self.account_number,
            "fund_account_id": fund_account_id,
            "amount": amount_minor_units,
            "currency": currency,
            "mode": mode,
            "purpose": "payout",
            "queue_if_low_balance": True,
            "reference_id": reference_id,
            "narration": narration[:30],
            "notes": notes or {},
        }
        body = self._post("/payouts", payload, idempotency_key=reference_id)
        result = parse_payout(body, reference_id)
        logger.info(
            "razorpayx payout accepted payout_id=%s status=%s reference=%s",
            result.payout_id,
            result.status,
            reference_id,
        )
        return result


class RazorpayCaptureFeed:
    """Reads payment events from the Razorpay payments API."""

    provider_name = "razorpay"

    def __init__(
        self,
        key_id: str,
        key_secret: str,
        *,
        base_url: str = DEFAULT_BASE_URL,
        timeout: float = DEFAULT_TIMEOUT,
        transport: httpx.BaseTransport | None = None,
    ):
        if not key_id or not key_secret:
            raise ValueError("Razorpay credentials are required")
        self._client = httpx.Client(
            base_url=base_url.rstrip("/"),
            auth=(key_id, key_secret),
            timeout=timeout,
            transport=transport,
        )

    def close(self) -> None:
        self._client.close()

    def fetch_payments(
        self,
        *,
        window_start: datetime.datetime,
        window_end: datetime.datetime,
        count: int,
        skip: int,
    ) -> list[CapturedPayment]:
        params = {
            "from": int(window_start.timestamp()),
            "to": int(window_end.timestamp()),
            "count": count,
            "skip": skip,
        }
        try:
            response = self._client.get("/payments", params=params)
        except httpx.HTTPError as e:
            raise CaptureFeedError(f"Razorpay payments request failed: {e}") from e

        if response.status_code >= 400:
            raise CaptureFeedError(
                f"Razorpay API error: {response.status_code} {_error_message(response)}",
                {"status_code": response.status_code},
            )
        try:
            body = response.json()
        except ValueError as e:
            raise CaptureFeedError("Razorpay returned non-JSON payments body") from e

        items = body.get("items") if isinstance(body, dict) else None
        if not isinstance(items, list):
            raise CaptureFeedError("Malformed payments response: missing items")
        return [parse_captured_payment(item) for item in items]
