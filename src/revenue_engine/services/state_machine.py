"""Payout installment state machine with transition validation."""

from __future__ import annotations

from enum import Enum

from revenue_engine.errors import InvalidTransitionError


class InstallmentStatus(str, Enum):
    """Payout installment status values."""

    SCHEDULED = "scheduled"
    PAID = "paid"
    FAILED = "failed"


class InstallmentStateMachine:
    """State machine for payout installment transitions.

    Allowed transitions:
    - scheduled → paid
    - scheduled → failed

    paid and failed are terminal. A failed installment is never moved back
    to scheduled; an admin retry creates a new installment row instead.
    """

    VALID_TRANSITIONS: dict[str, list[str]] = {
        InstallmentStatus.SCHEDULED: [InstallmentStatus.PAID, InstallmentStatus.FAILED],
        InstallmentStatus.PAID: [],  # Terminal state
        InstallmentStatus.FAILED: [],  # Terminal state
    }

    TERMINAL = {InstallmentStatus.PAID, InstallmentStatus.FAILED}

    @classmethod
    def can_transition(cls, from_status: str, to_status: str) -> bool:
        """Check if a transition is valid."""
        allowed = cls.VALID_TRANSITIONS.get(from_status, [])
        return to_status in allowed

    @classmethod
    def validate_transition(cls, from_status: str, to_status: str) -> None:
        """Validate a transition, raising InvalidTransitionError if invalid."""
        if not cls.can_transition(from_status, to_status):
            reason = "installment is terminal" if cls.is_terminal(from_status) else None
            raise InvalidTransitionError(from_status, to_status, reason)

    @classmethod
    def is_terminal(cls, status: str) -> bool:
        return status in cls.TERMINAL

    @classmethod
    def can_retry(cls, status: str) -> bool:
        """Only failed installments may be re-attempted."""
        return status == InstallmentStatus.FAILED

    @classmethod
    def get_next_statuses(cls, current_status: str) -> list[str]:
        """Get list of valid next statuses from current status."""
        return cls.VALID_TRANSITIONS.get(current_status, [])
