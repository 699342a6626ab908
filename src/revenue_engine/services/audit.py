"""Activity log writer.

Audit entries are a secondary ledger: a failed write is logged and never
undoes the action being audited.
"""

from __future__ import annotations

import logging
from datetime import date, datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from revenue_engine.models import ActivityLog

logger = logging.getLogger(__name__)

SYSTEM_ACTOR = "system"


def to_json_safe(value: Any) -> Any:
    """Convert Decimals, UUIDs and dates so a value can be stored as JSON."""
    if isinstance(value, dict):
        return {str(k): to_json_safe(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [to_json_safe(v) for v in value]
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, UUID):
        return str(value)
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    return value


class ActivityLogger:
    """Writes who-did-what entries inside their own savepoint."""

    def __init__(self, db: Session):
        self.db = db

    def record(
        self,
        action: str,
        *,
        actor: str = SYSTEM_ACTOR,
        actor_type: str = "system",
        details: dict[str, Any] | None = None,
    ) -> bool:
        """Append an activity log entry.

        Returns:
            True if the entry was written, False if the write failed.
        """
        entry = ActivityLog(
            actor=actor,
            actor_type=actor_type,
            action=action,
            details=to_json_safe(details or {}),
        )
        try:
            with self.db.begin_nested():
                self.db.add(entry)
                self.db.flush()
        except SQLAlchemyError:
            logger.exception("activity log write failed action=%s actor=%s", action, actor)
            return False
        return True

    def record_rejected(
        self,
        action: str,
        error: Exception,
        *,
        actor: str = SYSTEM_ACTOR,
        actor_type: str = "system",
        details: dict[str, Any] | None = None,
    ) -> bool:
        """Append an entry for a refused action and commit it at once.

        The caller rolls back its own work first (normally by running it in
        a savepoint) so the commit carries the entry and nothing else. The
        entry then survives the request-level rollback that follows the
        re-raised error.
        """
        entry_details = {
            **(details or {}),
            "outcome": "rejected",
            "error_code": getattr(error, "code", type(error).__name__),
            "error": getattr(error, "message", str(error)),
        }
        written = self.record(action, actor=actor, actor_type=actor_type, details=entry_details)
        try:
            self.db.commit()
        except SQLAlchemyError:
            logger.exception("activity log commit failed action=%s actor=%s", action, actor)
            self.db.rollback()
            return False
        return written
