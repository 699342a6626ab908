"""Revenue split and scheduling calculators."""

from revenue_engine.calculators.installments import plan_installments, spread_evenly
from revenue_engine.calculators.split_calculator import compute_split, decide_tds, round_rupees
from revenue_engine.calculators.types import (
    GroupPercentages,
    InstallmentLine,
    InstallmentType,
    LeadSource,
    SplitBreakdown,
    SplitStatus,
    TdsDecision,
)

__all__ = [
    "GroupPercentages",
    "InstallmentLine",
    "InstallmentType",
    "LeadSource",
    "SplitBreakdown",
    "SplitStatus",
    "TdsDecision",
    "compute_split",
    "decide_tds",
    "plan_installments",
    "round_rupees",
    "spread_evenly",
]
