"""Entitlement override API endpoints (admin only)."""
from uuid import UUID

from fastapi import APIRouter, Depends, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from metering.api.deps import get_current_user, get_db, get_request_id
from metering.auth.rbac import Role, require_roles
from metering.exceptions import ValidationError
from metering.features import Feature
from metering.schemas.error import ErrorCode
from metering.schemas.override import Override, OverrideSet
from metering.services.entitlement_service import EntitlementEvaluator

router = APIRouter(prefix="/admin/overrides", tags=["Overrides"])


@router.put("", response_model=Override)
@require_roles(Role.ADMIN)
async def set_override(
    body: OverrideSet,
    db: AsyncSession = Depends(get_db),
    current_user: dict = Depends(get_current_user),
    request_id: str | None = Depends(get_request_id),
) -> Override:
    """Replace a user's plan limit for one feature."""
    override = await EntitlementEvaluator(db).set_override(
        actor_id=current_user["sub"],
        user_id=body.user_id,
        feature=Feature(body.feature),
        limit_value=body.limit_value,
        reason=body.reason,
        request_id=request_id,
    )
    await db.commit()
    return Override.model_validate(override)


@router.delete("/{user_id}/{feature}", status_code=status.HTTP_204_NO_CONTENT)
@require_roles(Role.ADMIN)
async def clear_override(
    user_id: UUID,
    feature: str,
    db: AsyncSession = Depends(get_db),
    current_user: dict = Depends(get_current_user),
    request_id: str | None = Depends(get_request_id),
) -> Response:
    """Remove an override so the plan limit applies again."""
    parsed = Feature.parse(feature)
    if parsed is None:
        raise ValidationError(
            f"Unknown feature '{feature}'",
            details={"field": "feature", "value": feature},
            code=ErrorCode.UNKNOWN_FEATURE,
        )

    await EntitlementEvaluator(db).clear_override(
        actor_id=current_user["sub"], user_id=user_id, feature=parsed, request_id=request_id
    )
    await db.commit()
    return Response(status_code=status.HTTP_204_NO_CONTENT)
