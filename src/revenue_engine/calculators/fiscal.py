"""Indian fiscal calendar helpers.

The financial year runs April to March and is labelled "YYYY-YY"
(e.g. 2025-26). Quarters: Q1 Apr-Jun, Q2 Jul-Sep, Q3 Oct-Dec, Q4 Jan-Mar.
"""

from __future__ import annotations

import re
from datetime import date

FY_PATTERN = re.compile(r"^(\d{4})-(\d{2})$")
QUARTERS = ("Q1", "Q2", "Q3", "Q4")


def financial_year_for(day: date) -> str:
    """Return the financial-year label containing the given day."""
    start = day.year if day.month >= 4 else day.year - 1
    return f"{start}-{str(start + 1)[-2:]}"


def quarter_for(day: date) -> str:
    """Return the TDS quarter containing the given day."""
    if 4 <= day.month <= 6:
        return "Q1"
    if 7 <= day.month <= 9:
        return "Q2"
    if 10 <= day.month <= 12:
        return "Q3"
    return "Q4"


def is_valid_financial_year(label: str) -> bool:
    """Check the label is "YYYY-YY" with consecutive years."""
    match = FY_PATTERN.match(label or "")
    if not match:
        return False
    start = int(match.group(1))
    return str(start + 1)[-2:] == match.group(2)


def financial_year_start(label: str) -> int:
    """Calendar year in which the financial year starts."""
    if not is_valid_financial_year(label):
        raise ValueError(f"Invalid financial year: {label!r} (use YYYY-YY)")
    return int(label[:4])


def quarter_due_date(quarter: str, label: str) -> date:
    """Deposit due date for TDS deducted in a quarter."""
    start = financial_year_start(label)
    due = {
        "Q1": date(start, 7, 7),
        "Q2": date(start, 10, 7),
        "Q3": date(start + 1, 1, 7),
        "Q4": date(start + 1, 4, 30),
    }
    if quarter not in due:
        raise ValueError(f"Invalid quarter: {quarter!r}")
    return due[quarter]
