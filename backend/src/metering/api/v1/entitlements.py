"""Entitlement check API endpoints."""
from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from metering.api.deps import current_user_id, get_current_user, get_db
from metering.api.errors import metering_error_response
from metering.exceptions import InternalPersistenceError
from metering.schemas.entitlement import EntitlementCheckRequest, EntitlementDecision, EntitlementSummary
from metering.schemas.error import EntitlementErrorResponse
from metering.services.entitlement_service import EntitlementEvaluator

router = APIRouter(prefix="/entitlements", tags=["Entitlements"])


@router.post(
    "/check",
    response_model=EntitlementDecision,
    responses={503: {"model": EntitlementErrorResponse}},
)
async def check_entitlement(
    body: EntitlementCheckRequest,
    request: Request,
    db: AsyncSession = Depends(get_db),
    current_user: dict = Depends(get_current_user),
):
    """
    Check whether the caller may use a feature once more.

    Unknown features are denied with a limit of 0. When the store is
    unavailable the check fails closed: 503 with ``can_use: false``.
    """
    try:
        return await EntitlementEvaluator(db).evaluate(current_user_id(current_user), body.feature)
    except InternalPersistenceError as e:
        await db.rollback()
        return metering_error_response(request, e, can_use=False)


@router.get(
    "",
    response_model=EntitlementSummary,
    responses={503: {"model": EntitlementErrorResponse}},
)
async def list_entitlements(
    request: Request,
    db: AsyncSession = Depends(get_db),
    current_user: dict = Depends(get_current_user),
):
    """Remaining quota for every feature, for display."""
    try:
        items = await EntitlementEvaluator(db).evaluate_all(current_user_id(current_user))
    except InternalPersistenceError as e:
        await db.rollback()
        return metering_error_response(request, e, can_use=False)
    return EntitlementSummary(items=items)
