"""API routes."""

from revenue_engine.api.routes.coach_groups import router as coach_groups_router
from revenue_engine.api.routes.health import router as health_router
from revenue_engine.api.routes.jobs import router as jobs_router
from revenue_engine.api.routes.payouts import router as payouts_router
from revenue_engine.api.routes.reconciliation import router as reconciliation_router
from revenue_engine.api.routes.revenue_splits import router as revenue_splits_router
from revenue_engine.api.routes.tds import router as tds_router

__all__ = [
    "coach_groups_router",
    "health_router",
    "jobs_router",
    "payouts_router",
    "reconciliation_router",
    "revenue_splits_router",
    "tds_router",
]
