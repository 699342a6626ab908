"""Coach group configuration service."""

from __future__ import annotations

import logging
from decimal import Decimal, InvalidOperation

from sqlalchemy import select
from sqlalchemy.orm import Session

from revenue_engine.calculators.types import GroupPercentages
from revenue_engine.engine_config import SplitPolicy
from revenue_engine.errors import (
    ConfigurationError,
    EngineError,
    NotFoundError,
    SplitValidationError,
)
from revenue_engine.models import CoachGroup, Payee
from revenue_engine.services.audit import ActivityLogger

logger = logging.getLogger(__name__)

HUNDRED = Decimal("100")


def _as_percent(name: str, value: Decimal | int | str) -> Decimal:
    try:
        percent = Decimal(str(value))
    except InvalidOperation as e:
        raise SplitValidationError(f"{name} is not a number", {"field": name}) from e
    if percent < 0 or percent > HUNDRED:
        raise SplitValidationError(f"{name} must be between 0 and 100", {"field": name})
    return percent


def validate_percentages(lead: Decimal, coach: Decimal, platform: Decimal) -> None:
    """Reject percentages that do not add up to exactly 100."""
    total = lead + coach + platform
    if total != HUNDRED:
        raise SplitValidationError(
            f"Percentages must sum to 100 (got {total})",
            {"lead_cost_percent": str(lead), "coach_cost_percent": str(coach),
             "platform_fee_percent": str(platform)},
        )


def to_percentages(group: CoachGroup) -> GroupPercentages:
    return GroupPercentages(
        name=group.name,
        lead_cost_percent=Decimal(group.lead_cost_percent),
        coach_cost_percent=Decimal(group.coach_cost_percent),
        platform_fee_percent=Decimal(group.platform_fee_percent),
        is_internal=group.is_internal,
    )


class CoachGroupService:
    """Reads and edits the split percentages of coach groups.

    Edits only affect future splits: every split freezes the percentages it
    used onto its own record.
    """

    def __init__(self, db: Session, policy: SplitPolicy | None = None):
        self.db = db
        self.policy = policy or SplitPolicy()
        self.audit = ActivityLogger(db)

    def get_by_name(self, name: str) -> CoachGroup | None:
        return self.db.execute(
            select(CoachGroup).where(CoachGroup.name == name)
        ).scalar_one_or_none()

    def list_groups(self, include_inactive: bool = False) -> list[CoachGroup]:
        stmt = select(CoachGroup).order_by(CoachGroup.name)
        if not include_inactive:
            stmt = stmt.where(CoachGroup.is_active.is_(True))
        return list(self.db.execute(stmt).scalars())

    def resolve_for_payee(self, payee: Payee) -> GroupPercentages:
        """Percentages that apply to a payee right now.

        Payees without an active group fall back to the default group.

        Raises:
            ConfigurationError: neither the payee's group nor the default
                group is available.
        """
        group = payee.group if payee.group is not None and payee.group.is_active else None
        if group is None:
            group = self.get_by_name(self.policy.default_group)
            if group is None or not group.is_active:
                raise ConfigurationError(
                    f"Payee {payee.id} has no coach group and default group "
                    f"'{self.policy.default_group}' is not configured",
                    {"payee_id": str(payee.id)},
                )
            logger.info(
                "payee %s has no active coach group, using default group %s",
                payee.id,
                group.name,
            )
        return to_percentages(group)

    def create_group(
        self,
        name: str,
        *,
        display_name: str | None = None,
        lead_cost_percent: Decimal | int | str,
        coach_cost_percent: Decimal | int | str,
        platform_fee_percent: Decimal | int | str,
        is_internal: bool = False,
        description: str | None = None,
    ) -> CoachGroup:
        lead = _as_percent("lead_cost_percent", lead_cost_percent)
        coach = _as_percent("coach_cost_percent", coach_cost_percent)
        platform = _as_percent("platform_fee_percent", platform_fee_percent)
        validate_percentages(lead, coach, platform)

        group = CoachGroup(
            name=name,
            display_name=display_name or name.title(),
            description=description,
            lead_cost_percent=lead,
            coach_cost_percent=coach,
            platform_fee_percent=platform,
            is_internal=is_internal,
        )
        self.db.add(group)
        self.db.flush()
        return group

    def update_group(
        self,
        name: str,
        *,
        actor: str,
        lead_cost_percent: Decimal | int | str | None = None,
        coach_cost_percent: Decimal | int | str | None = None,
        platform_fee_percent: Decimal | int | str | None = None,
        is_internal: bool | None = None,
        is_active: bool | None = None,
        display_name: str | None = None,
    ) -> CoachGroup:
        """Edit a group. Percentages are validated against each other after
        merging with the current values.

        A rejected edit rolls back and leaves a coach_group_update_rejected
        entry.
        """
        changes = {
            "lead_cost_percent": lead_cost_percent,
            "coach_cost_percent": coach_cost_percent,
            "platform_fee_percent": platform_fee_percent,
            "is_internal": is_internal,
            "is_active": is_active,
            "display_name": display_name,
        }
        try:
            with self.db.begin_nested():
                return self._update_group(name, actor=actor, **changes)
        except EngineError as e:
            self.audit.record_rejected(
                "coach_group_update_rejected",
                e,
                actor=actor,
                actor_type="admin",
                details={
                    "group": name,
                    "requested": {k: v for k, v in changes.items() if v is not None},
                },
            )
            raise

    def _update_group(
        self,
        name: str,
        *,
        actor: str,
        lead_cost_percent: Decimal | int | str | None,
        coach_cost_percent: Decimal | int | str | None,
        platform_fee_percent: Decimal | int | str | None,
        is_internal: bool | None,
        is_active: bool | None,
        display_name: str | None,
    ) -> CoachGroup:
        group = self.get_by_name(name)
        if group is None:
            raise NotFoundError(f"Coach group '{name}' not found", {"name": name})

        lead = _as_percent(
            "lead_cost_percent",
            group.lead_cost_percent if lead_cost_percent is None else lead_cost_percent,
        )
        coach = _as_percent(
            "coach_cost_percent",
            group.coach_cost_percent if coach_cost_percent is None else coach_cost_percent,
        )
        platform = _as_percent(
            "platform_fee_percent",
            group.platform_fee_percent if platform_fee_percent is None else platform_fee_percent,
        )
        validate_percentages(lead, coach, platform)

        before = to_percentages(group).to_snapshot()
        group.lead_cost_percent = lead
        group.coach_cost_percent = coach
        group.platform_fee_percent = platform
        if is_internal is not None:
            group.is_internal = is_internal
        if is_active is not None:
            group.is_active = is_active
        if display_name:
            group.display_name = display_name
        self.db.flush()

        self.audit.record(
            "coach_group_updated",
            actor=actor,
            actor_type="admin",
            details={
                "group": name,
                "before": before,
                "after": to_percentages(group).to_snapshot(),
                "is_active": group.is_active,
            },
        )
        return group
