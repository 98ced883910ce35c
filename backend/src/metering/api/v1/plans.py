"""Plan API endpoints."""
from uuid import UUID

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from metering.api.deps import get_current_user, get_db, get_request_id
from metering.auth.rbac import Role, require_roles
from metering.schemas.plan import Plan, PlanCreate, PlanList, PlanUpdate
from metering.services.plan_service import PlanRegistry

router = APIRouter(prefix="/plans", tags=["Plans"])


@router.get("", response_model=PlanList)
async def list_plans(db: AsyncSession = Depends(get_db)) -> PlanList:
    """List plans available for subscription, cheapest first."""
    plans = await PlanRegistry(db).get_active_plans()
    return PlanList(items=[Plan.model_validate(p) for p in plans], total=len(plans))


@router.get("/all", response_model=PlanList)
@require_roles(Role.ADMIN)
async def list_all_plans(
    db: AsyncSession = Depends(get_db),
    current_user: dict = Depends(get_current_user),
) -> PlanList:
    """List every plan, including deactivated ones."""
    plans = await PlanRegistry(db).list_plans(include_inactive=True)
    return PlanList(items=[Plan.model_validate(p) for p in plans], total=len(plans))


@router.get("/{plan_id}", response_model=Plan)
async def get_plan(plan_id: UUID, db: AsyncSession = Depends(get_db)) -> Plan:
    """Get plan by ID."""
    return Plan.model_validate(await PlanRegistry(db).get_plan(plan_id))


@router.post("", response_model=Plan, status_code=status.HTTP_201_CREATED)
@require_roles(Role.ADMIN)
async def create_plan(
    plan_data: PlanCreate,
    db: AsyncSession = Depends(get_db),
    current_user: dict = Depends(get_current_user),
    request_id: str | None = Depends(get_request_id),
) -> Plan:
    """
    Create a plan.

    - **features**: monthly limit per feature (`generations`, `diagnostics`,
      `funnel_analysis`); `-1` means unlimited, omitted features are unavailable
    - **stripe_price_id**: required for the plan to be purchasable
    """
    registry = PlanRegistry(db)
    plan = await registry.create_plan(plan_data, actor_id=current_user["sub"], request_id=request_id)
    await registry.commit()
    return Plan.model_validate(plan)


@router.patch("/{plan_id}", response_model=Plan)
@require_roles(Role.ADMIN)
async def update_plan(
    plan_id: UUID,
    update_data: PlanUpdate,
    db: AsyncSession = Depends(get_db),
    current_user: dict = Depends(get_current_user),
    request_id: str | None = Depends(get_request_id),
) -> Plan:
    """Update plan fields. Recorded usage is not affected."""
    registry = PlanRegistry(db)
    plan = await registry.update_plan(plan_id, update_data, actor_id=current_user["sub"], request_id=request_id)
    await registry.commit()
    return Plan.model_validate(plan)
