"""Revenue split ledger read endpoints."""

from uuid import UUID

from fastapi import APIRouter

from revenue_engine.api.dependencies import AdminEmail, DbSession, EngineSettings
from revenue_engine.api.schemas import ErrorResponse, RevenueSplitResponse
from revenue_engine.errors import NotFoundError
from revenue_engine.services.revenue_split import RevenueSplitService

router = APIRouter(prefix="/revenue-splits", tags=["revenue-splits"])


@router.get(
    "/{enrollment_id}",
    response_model=RevenueSplitResponse,
    responses={404: {"model": ErrorResponse}},
)
def get_revenue_split(
    db: DbSession,
    admin: AdminEmail,
    engine: EngineSettings,
    enrollment_id: UUID,
) -> RevenueSplitResponse:
    """The split recorded for an enrollment, as frozen at calculation time."""
    split = RevenueSplitService(db, engine).get_for_enrollment(enrollment_id)
    if split is None:
        raise NotFoundError(
            f"No revenue split for enrollment {enrollment_id}",
            {"enrollment_id": str(enrollment_id)},
        )
    return RevenueSplitResponse.model_validate(split)
