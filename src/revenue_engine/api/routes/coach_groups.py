"""Coach group configuration endpoints."""

from typing import Annotated

from fastapi import APIRouter, Query

from revenue_engine.api.dependencies import AdminEmail, DbSession, EngineSettings
from revenue_engine.api.schemas import CoachGroupResponse, CoachGroupUpdate, ErrorResponse
from revenue_engine.services.coach_groups import CoachGroupService

router = APIRouter(prefix="/admin/coach-groups", tags=["coach-groups"])


@router.get("", response_model=list[CoachGroupResponse])
def list_coach_groups(
    db: DbSession,
    admin: AdminEmail,
    engine: EngineSettings,
    include_inactive: Annotated[bool, Query(alias="includeInactive")] = False,
) -> list[CoachGroupResponse]:
    groups = CoachGroupService(db, engine.split).list_groups(include_inactive)
    return [CoachGroupResponse.model_validate(g) for g in groups]


@router.put(
    "/{name}",
    response_model=CoachGroupResponse,
    responses={400: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
)
def update_coach_group(
    db: DbSession,
    admin: AdminEmail,
    engine: EngineSettings,
    name: str,
    payload: CoachGroupUpdate,
) -> CoachGroupResponse:
    """Edit split percentages. Existing splits keep their frozen snapshot."""
    group = CoachGroupService(db, engine.split).update_group(
        name,
        actor=admin,
        lead_cost_percent=payload.lead_cost_percent,
        coach_cost_percent=payload.coach_cost_percent,
        platform_fee_percent=payload.platform_fee_percent,
        is_internal=payload.is_internal,
        is_active=payload.is_active,
        display_name=payload.display_name,
    )
    db.commit()
    return CoachGroupResponse.model_validate(group)
