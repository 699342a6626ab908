"""Installment planning for multi-month disbursement."""

from __future__ import annotations

from datetime import date
from decimal import ROUND_FLOOR, Decimal

from revenue_engine.calculators.types import InstallmentLine


def spread_evenly(total: Decimal, count: int) -> list[Decimal]:
    """Split total into count whole-rupee parts.

    The first count-1 parts are floor(total / count); the last part takes
    the remainder, so the parts always sum to total.
    """
    if count < 1:
        raise ValueError("count must be at least 1")
    if total < 0:
        raise ValueError("total cannot be negative")

    share = (total / count).to_integral_value(rounding=ROUND_FLOOR)
    parts = [share] * (count - 1)
    parts.append(total - share * (count - 1))
    return parts


def add_months(day: date, months: int, day_of_month: int) -> date:
    """Date with the given day-of-month, months after day's month."""
    month_index = day.month - 1 + months
    year = day.year + month_index // 12
    month = month_index % 12 + 1
    return date(year, month, day_of_month)


def payout_dates(start: date, day_of_month: int, count: int) -> list[date]:
    """Due dates one, two, ... count calendar months after start."""
    return [add_months(start, i, day_of_month) for i in range(1, count + 1)]


def cap_at_gross(gross_parts: list[Decimal], tds_parts: list[Decimal]) -> list[Decimal]:
    """Keep every line's TDS within its gross.

    TDS above a line's gross is moved to the earliest lines with room left.
    The total is unchanged, so this only needs sum(tds) <= sum(gross).
    """
    capped = list(tds_parts)
    excess = Decimal("0")
    for i, (g, t) in enumerate(zip(gross_parts, capped)):
        if t > g:
            excess += t - g
            capped[i] = g
    for i, g in enumerate(gross_parts):
        if excess <= 0:
            break
        moved = min(g - capped[i], excess)
        capped[i] += moved
        excess -= moved
    return capped


def plan_installments(
    gross: Decimal,
    tds: Decimal,
    *,
    start: date,
    day_of_month: int,
    count: int,
) -> list[InstallmentLine]:
    """Plan installments for one payee's share of a split.

    Gross and TDS are each spread evenly so each sums exactly to the
    amount on the parent record; TDS is then capped per line so no
    installment nets below zero.
    """
    if tds > gross:
        raise ValueError("TDS cannot exceed gross amount")

    gross_parts = spread_evenly(gross, count)
    tds_parts = cap_at_gross(gross_parts, spread_evenly(tds, count))
    dates = payout_dates(start, day_of_month, count)

    return [
        InstallmentLine(index=i + 1, gross=g, tds=t, scheduled_date=d)
        for i, (g, t, d) in enumerate(zip(gross_parts, tds_parts, dates))
    ]
