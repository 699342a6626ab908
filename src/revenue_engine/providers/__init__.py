"""Payment rail and gateway capture feed adapters."""

from __future__ import annotations

from revenue_engine.config import Settings
from revenue_engine.errors import ConfigurationError
from revenue_engine.providers.base import (
    CapturedPayment,
    CaptureFeedProvider,
    FundAccount,
    PayoutRailProvider,
    PayoutResult,
    RailContact,
)
from revenue_engine.providers.razorpayx import RazorpayCaptureFeed, RazorpayXPayoutRail
from revenue_engine.providers.stub import StubCaptureFeed, StubPayoutRail


def build_payout_rail(settings: Settings) -> PayoutRailProvider:
    """Create the payout rail named by PAYOUT_RAIL."""
    if settings.payout_rail == "stub":
        return StubPayoutRail()
    if settings.payout_rail == "razorpayx":
        if not (settings.razorpay_key_id and settings.razorpay_key_secret):
            raise ConfigurationError("Razorpay credentials not configured")
        if not settings.razorpay_account_number:
            raise ConfigurationError("RAZORPAY_ACCOUNT_NUMBER not configured")
        return RazorpayXPayoutRail(
            settings.razorpay_key_id,
            settings.razorpay_key_secret,
            settings.razorpay_account_number,
            base_url=settings.razorpay_base_url,
        )
    raise ConfigurationError(f"Unknown payout rail: {settings.payout_rail}")


def build_capture_feed(settings: Settings) -> CaptureFeedProvider:
    """Razorpay feed when credentials are present, otherwise an empty stub."""
    if settings.razorpay_key_id and settings.razorpay_key_secret:
        return RazorpayCaptureFeed(
            settings.razorpay_key_id,
            settings.razorpay_key_secret,
            base_url=settings.razorpay_base_url,
        )
    if settings.payout_rail == "razorpayx":
        raise ConfigurationError("Razorpay credentials not configured")
    return StubCaptureFeed()


__all__ = [
    "CapturedPayment",
    "CaptureFeedProvider",
    "FundAccount",
    "PayoutRailProvider",
    "PayoutResult",
    "RailContact",
    "RazorpayCaptureFeed",
    "RazorpayXPayoutRail",
    "StubCaptureFeed",
    "StubPayoutRail",
    "build_capture_feed",
    "build_payout_rail",
]
