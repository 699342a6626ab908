"""Revenue split and TDS arithmetic.

Pure functions with no database access. Totals may carry paise; each
payee share is rounded half-up to the whole rupee and the remainder,
paise included, lands on the platform fee so the three parts always sum
back to the total.
"""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal

from revenue_engine.calculators.types import GroupPercentages, SplitBreakdown, TdsDecision

HUNDRED = Decimal("100")
RUPEE = Decimal("1")


def round_rupees(value: Decimal) -> Decimal:
    """Round to the nearest whole rupee, halves away from zero."""
    return value.quantize(RUPEE, rounding=ROUND_HALF_UP)


def percent_of(amount: Decimal, percent: Decimal) -> Decimal:
    """Rounded percentage of an amount."""
    return round_rupees(amount * percent / HUNDRED)


def compute_split(amount: Decimal, group: GroupPercentages) -> SplitBreakdown:
    """Split an enrollment amount three ways.

    Internal groups are a separate branch: the whole amount is platform
    revenue and nothing is owed to any payee.
    """
    if amount <= 0:
        raise ValueError("Amount must be positive")

    if group.is_internal:
        return SplitBreakdown(
            total=amount,
            lead_cost=Decimal("0"),
            coach_cost=Decimal("0"),
            platform_fee=amount,
            is_internal=True,
        )

    lead_cost = percent_of(amount, group.lead_cost_percent)
    coach_cost = percent_of(amount, group.coach_cost_percent)
    platform_fee = amount - lead_cost - coach_cost

    return SplitBreakdown(
        total=amount,
        lead_cost=lead_cost,
        coach_cost=coach_cost,
        platform_fee=platform_fee,
    )


def decide_tds(
    cumulative: Decimal,
    earning: Decimal,
    *,
    rate_percent: Decimal,
    threshold: Decimal,
) -> TdsDecision:
    """Decide withholding on a new earning.

    Applicable when cumulative fiscal-year earnings including this earning
    exceed the threshold. The decision is made once, at split time.
    """
    projected = cumulative + earning
    if earning <= 0 or projected <= threshold:
        return TdsDecision(
            applicable=False,
            amount=Decimal("0"),
            rate=Decimal("0"),
            cumulative_before=cumulative,
            projected=projected,
        )

    return TdsDecision(
        applicable=True,
        amount=percent_of(earning, rate_percent),
        rate=rate_percent,
        cumulative_before=cumulative,
        projected=projected,
    )
