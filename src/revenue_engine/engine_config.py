"""Engine policy configuration.

Explicit configuration for everything that decides how money is split,
scheduled and moved. No environment lookups here.

Pattern:
    engine = EngineConfig(
        split=SplitPolicy(tds_rate_percent=Decimal("10")),
        payout=PayoutPolicy(payout_day_of_month=7),
    )

Rules:
    1. Immutable after creation (frozen dataclasses).
    2. Validated on construction; an invalid policy never reaches a calculation.
    3. The values used for a split are frozen onto the ledger row
       (see SplitPolicy.snapshot), so editing a policy never rewrites history.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any


@dataclass(frozen=True)
class SplitPolicy:
    """
    Revenue split and TDS withholding policy.

    Attributes:
        tds_rate_percent: Rate withheld once a payee crosses the threshold.
            Default 10 (section 194J professional fees).
        tds_threshold_annual: Cumulative fiscal-year earnings above which
            TDS applies. Default 30,000.
        tds_section: Income-tax section recorded on ledger entries.
        default_group: Coach group used when a payee has none assigned.
    """

    tds_rate_percent: Decimal = Decimal("10")
    tds_threshold_annual: Decimal = Decimal("30000")
    tds_section: str = "194J"
    default_group: str = "rising"

    def __post_init__(self) -> None:
        """Validate configuration."""
        if not Decimal("0") <= self.tds_rate_percent <= Decimal("30"):
            raise ValueError("tds_rate_percent must be between 0 and 30")
        if self.tds_threshold_annual < 0:
            raise ValueError("tds_threshold_annual cannot be negative")
        if not self.default_group:
            raise ValueError("default_group is required")


@dataclass(frozen=True)
class PayoutPolicy:
    """
    Installment scheduling and disbursement policy.

    Attributes:
        installment_count: Number of monthly installments per split. Default 3.
        payout_day_of_month: Day of month installments fall due (1-28).
        batch_size: Maximum payees handled by one processor run.
        rate_limit_delay_seconds: Pause between payee submissions.
        claim_ttl_minutes: Age after which an unfinished claim may be taken
            over by another run.
        payout_mode: Transfer mode sent to the rail (IMPS, NEFT, RTGS, UPI).
        currency: ISO currency code for rail requests.
    """

    installment_count: int = 3
    payout_day_of_month: int = 7
    batch_size: int = 20
    rate_limit_delay_seconds: float = 0.1
    claim_ttl_minutes: int = 60
    payout_mode: str = "IMPS"
    currency: str = "INR"

    def __post_init__(self) -> None:
        """Validate configuration."""
        if self.installment_count < 1:
            raise ValueError("installment_count must be at least 1")
        if not 1 <= self.payout_day_of_month <= 28:
            raise ValueError("payout_day_of_month must be between 1 and 28")
        if self.batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        if self.rate_limit_delay_seconds < 0:
            raise ValueError("rate_limit_delay_seconds cannot be negative")
        if self.claim_ttl_minutes < 1:
            raise ValueError("claim_ttl_minutes must be at least 1")
        valid_modes = {"IMPS", "NEFT", "RTGS", "UPI"}
        if self.payout_mode not in valid_modes:
            raise ValueError(f"payout_mode must be one of {valid_modes}")
        if len(self.currency) != 3 or not self.currency.isalpha() or not self.currency.isupper():
            raise ValueError("currency must be a three-letter ISO code")


@dataclass(frozen=True)
class ReferralPolicy:
    """
    Referral credit policy.

    Attributes:
        credit_percent: Share of the original amount credited to the referrer.
        expiry_window_days: Credit lifetime, reset on every new credit.
    """

    credit_percent: Decimal = Decimal("10")
    expiry_window_days: int = 180

    def __post_init__(self) -> None:
        """Validate configuration."""
        if not Decimal("0") <= self.credit_percent <= Decimal("100"):
            raise ValueError("credit_percent must be between 0 and 100")
        if self.expiry_window_days < 1:
            raise ValueError("expiry_window_days must be at least 1")


@dataclass(frozen=True)
class ReconciliationPolicy:
    """
    Orphaned-capture sweep policy.

    Attributes:
        lookback_days: Default window swept by a run.
        page_size: Captures requested per feed page.
        max_records: Hard cap on captures pulled in one run.
    """

    lookback_days: int = 7
    page_size: int = 100
    max_records: int = 1000

    def __post_init__(self) -> None:
        """Validate configuration."""
        if self.lookback_days < 1:
            raise ValueError("lookback_days must be at least 1")
        if not 1 <= self.page_size <= 100:
            raise ValueError("page_size must be between 1 and 100")
        if self.max_records < self.page_size:
            raise ValueError("max_records must be at least page_size")


@dataclass(frozen=True)
class EngineConfig:
    """Complete engine configuration."""

    split: SplitPolicy = field(default_factory=SplitPolicy)
    payout: PayoutPolicy = field(default_factory=PayoutPolicy)
    referral: ReferralPolicy = field(default_factory=ReferralPolicy)
    reconciliation: ReconciliationPolicy = field(default_factory=ReconciliationPolicy)

    def snapshot(self) -> dict[str, Any]:
        """Policy values frozen onto each revenue split record."""
        return {
            "tds_rate_percent": str(self.split.tds_rate_percent),
            "tds_threshold_annual": str(self.split.tds_threshold_annual),
            "tds_section": self.split.tds_section,
            "installment_count": self.payout.installment_count,
            "payout_day_of_month": self.payout.payout_day_of_month,
        }
