"""Usage recording API endpoints."""
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from metering.api.deps import current_user_id, get_current_user, get_db
from metering.schemas.error import ErrorResponse
from metering.schemas.usage import UsageRecordRequest, UsageRecordResult
from metering.services.usage_service import UsageRecorder

router = APIRouter(prefix="/usage", tags=["Usage"])


@router.post(
    "",
    response_model=UsageRecordResult,
    responses={400: {"model": ErrorResponse}, 503: {"model": ErrorResponse}},
)
async def record_usage(
    body: UsageRecordRequest,
    db: AsyncSession = Depends(get_db),
    current_user: dict = Depends(get_current_user),
) -> UsageRecordResult:
    """
    Record one use of a feature by the caller.

    Call only after the billable action succeeded. A 503 means the use was
    not recorded.
    """
    return await UsageRecorder(db).record_usage(current_user_id(current_user), body.feature)
