"""Type definitions for the split and scheduling calculators."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Any


class LeadSource(str, Enum):
    """How an enrollment originated."""

    PLATFORM = "platform"
    REFERRING_PAYEE = "referring_payee"


class InstallmentType(str, Enum):
    """What an installment pays for."""

    COACH_COST = "coach_cost"
    LEAD_BONUS = "lead_bonus"


class SplitStatus(str, Enum):
    """Revenue split record status values."""

    PENDING = "pending"
    SCHEDULED = "scheduled"
    COMPLETED = "completed"


@dataclass(frozen=True)
class GroupPercentages:
    """Split percentages of a coach group, as read at calculation time."""

    name: str
    lead_cost_percent: Decimal
    coach_cost_percent: Decimal
    platform_fee_percent: Decimal
    is_internal: bool = False

    def to_snapshot(self) -> dict[str, Any]:
        """Serializable copy frozen onto the ledger row."""
        return {
            "group": self.name,
            "lead_cost_percent": str(self.lead_cost_percent),
            "coach_cost_percent": str(self.coach_cost_percent),
            "platform_fee_percent": str(self.platform_fee_percent),
            "is_internal": self.is_internal,
        }


@dataclass(frozen=True)
class SplitBreakdown:
    """Three-way split of an amount. The parts always sum to total."""

    total: Decimal
    lead_cost: Decimal
    coach_cost: Decimal
    platform_fee: Decimal
    is_internal: bool = False

    def __post_init__(self) -> None:
        if self.lead_cost + self.coach_cost + self.platform_fee != self.total:
            raise ValueError(
                f"Split does not reconcile: {self.lead_cost} + {self.coach_cost} + "
                f"{self.platform_fee} != {self.total}"
            )


@dataclass(frozen=True)
class TdsDecision:
    """Withholding decision for one payee on one earning."""

    applicable: bool
    amount: Decimal
    rate: Decimal
    cumulative_before: Decimal
    projected: Decimal

    @classmethod
    def not_applicable(cls, cumulative: Decimal = Decimal("0")) -> TdsDecision:
        return cls(
            applicable=False,
            amount=Decimal("0"),
            rate=Decimal("0"),
            cumulative_before=cumulative,
            projected=cumulative,
        )


@dataclass(frozen=True)
class InstallmentLine:
    """One planned installment before persistence."""

    index: int
    gross: Decimal
    tds: Decimal
    scheduled_date: date

    @property
    def net(self) -> Decimal:
        return self.gross - self.tds
