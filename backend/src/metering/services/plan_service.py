"""Plan registry: plan definitions and their feature limits."""
from typing import Optional
from uuid import UUID

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from metering.cache import RedisCache, cache, cache_key
from metering.config import settings
from metering.exceptions import ConflictError, NotFoundError, ValidationError
from metering.models.plan import Plan
from metering.schemas.error import ErrorCode
from metering.schemas.plan import PlanCreate, PlanUpdate
from metering.utils.audit import log_audit

logger = structlog.get_logger(__name__)

DEFAULT_LIMITS_KEY = cache_key("plan", "default", "features")

# Columns that cannot be cleared through an update
REQUIRED_FIELDS = ("name", "price_monthly", "features", "active")


class PlanRegistry:
    """
    Service layer for plan reads and administrative plan changes.

    Admin changes are flushed, not committed; finish them with ``commit()``
    so cached limits are dropped after the change lands.
    """

    def __init__(self, db: AsyncSession, plan_cache: RedisCache = cache):
        """Initialize plan registry with database session."""
        self.db = db
        self.cache = plan_cache

    async def get_active_plans(self) -> list[Plan]:
        """
        List plans offered to new subscribers, cheapest first.

        Returns:
            Active plans
        """
        result = await self.db.execute(
            select(Plan).where(Plan.active.is_(True)).order_by(Plan.price_monthly, Plan.name)
        )
        return list(result.scalars().all())

    async def list_plans(self, include_inactive: bool = False) -> list[Plan]:
        """List plans, optionally including deactivated ones."""
        if not include_inactive:
            return await self.get_active_plans()
        result = await self.db.execute(select(Plan).order_by(Plan.price_monthly, Plan.name))
        return list(result.scalars().all())

    async def find_plan(self, plan_id: UUID) -> Optional[Plan]:
        """Get plan by ID, or None."""
        result = await self.db.execute(select(Plan).where(Plan.id == plan_id))
        return result.scalar_one_or_none()

    async def get_plan(self, plan_id: UUID) -> Plan:
        """
        Get plan by ID.

        Args:
            plan_id: Plan UUID

        Returns:
            Plan

        Raises:
            NotFoundError: If the plan does not exist
        """
        plan = await self.find_plan(plan_id)
        if plan is None:
            raise NotFoundError(
                f"Plan {plan_id} not found", details={"plan_id": str(plan_id)}, code=ErrorCode.PLAN_NOT_FOUND
            )
        return plan

    async def get_plan_by_price_id(self, price_id: str) -> Optional[Plan]:
        """Resolve a processor price id to a local plan."""
        result = await self.db.execute(select(Plan).where(Plan.stripe_price_id == price_id))
        return result.scalar_one_or_none()

    async def get_plan_limits(self, plan_id: UUID) -> dict[str, int]:
        """
        Feature map of a plan, served from cache when possible.

        A plan that no longer exists yields an empty map, so every feature
        resolves to 0.
        """
        key = cache_key("plan", str(plan_id), "features")
        cached = await self.cache.get(key)
        if cached is not None:
            return cached

        plan = await self.find_plan(plan_id)
        if plan is None:
            logger.warning("plan_missing_for_subscription", plan_id=str(plan_id))
            return {}

        limits = dict(plan.features or {})
        await self.cache.set(key, limits)
        return limits

    async def get_default_limits(self) -> dict[str, int]:
        """
        Feature map applied to users without an entitled subscription.

        Uses the plan named ``settings.default_plan_name`` when it exists,
        otherwise ``settings.free_plan_limits``.
        """
        cached = await self.cache.get(DEFAULT_LIMITS_KEY)
        if cached is not None:
            return cached

        result = await self.db.execute(select(Plan).where(Plan.name == settings.default_plan_name))
        plan = result.scalar_one_or_none()
        limits = dict(plan.features or {}) if plan is not None else dict(settings.free_plan_limits)

        await self.cache.set(DEFAULT_LIMITS_KEY, limits)
        return limits

    async def create_plan(self, plan_data: PlanCreate, actor_id: str, request_id: Optional[str] = None) -> Plan:
        """
        Create a new plan.

        Args:
            plan_data: Validated plan fields
            actor_id: Admin performing the change
            request_id: Request correlation ID

        Returns:
            Created plan

        Raises:
            ConflictError: If the name or price id is already taken
        """
        await self._ensure_unique(plan_data.name, plan_data.stripe_price_id)

        plan = Plan(
            name=plan_data.name,
            price_monthly=plan_data.price_monthly,
            currency=plan_data.currency.upper(),
            stripe_price_id=plan_data.stripe_price_id,
            features=plan_data.features,
            active=plan_data.active,
        )
        self.db.add(plan)
        await self.db.flush()
        await self.db.refresh(plan)

        await log_audit(
            self.db,
            actor_id=actor_id,
            action="plan_created",
            entity_type="plan",
            entity_id=plan.id,
            details={"name": plan.name, "features": plan.features, "price_monthly": plan.price_monthly},
            request_id=request_id,
        )
        return plan

    async def update_plan(
        self, plan_id: UUID, update_data: PlanUpdate, actor_id: str, request_id: Optional[str] = None
    ) -> Plan:
        """
        Update plan fields.

        Recorded usage is untouched; new limits apply from the first check
        after ``commit``.

        Raises:
            ValidationError: If a required field is explicitly set to null
            NotFoundError: If plan not found
            ConflictError: If the new name or price id is already taken
        """
        changes = update_data.model_dump(exclude_unset=True)
        cleared = [field for field in REQUIRED_FIELDS if field in changes and changes[field] is None]
        if cleared:
            raise ValidationError(
                "Required plan fields cannot be null",
                details={"fields": cleared},
                code=ErrorCode.MISSING_REQUIRED_FIELD,
            )

        plan = await self.get_plan(plan_id)

        if "name" in changes or "stripe_price_id" in changes:
            await self._ensure_unique(changes.get("name"), changes.get("stripe_price_id"), exclude_id=plan.id)

        diff = {}
        for field, value in changes.items():
            old = getattr(plan, field)
            if old != value:
                diff[field] = {"old": old, "new": value}
                setattr(plan, field, value)

        if not diff:
            return plan

        await self.db.flush()
        await self.db.refresh(plan)

        action = "plan_updated"
        if set(diff) == {"active"}:
            action = "plan_activated" if plan.active else "plan_deactivated"

        await log_audit(
            self.db,
            actor_id=actor_id,
            action=action,
            entity_type="plan",
            entity_id=plan.id,
            details={"changes": diff},
            request_id=request_id,
        )
        return plan

    async def set_plan_active(
        self, plan_id: UUID, active: bool, actor_id: str, request_id: Optional[str] = None
    ) -> Plan:
        """Activate or deactivate a plan for new subscribers."""
        return await self.update_plan(plan_id, PlanUpdate(active=active), actor_id, request_id)

    async def _ensure_unique(self, name: Optional[str], price_id: Optional[str], exclude_id: Optional[UUID] = None):
        conditions = []
        if name is not None:
            conditions.append(Plan.name == name)
        if price_id is not None:
            conditions.append(Plan.stripe_price_id == price_id)

        for condition in conditions:
            query = select(Plan.id).where(condition)
            if exclude_id is not None:
                query = query.where(Plan.id != exclude_id)
            if (await self.db.execute(query)).first() is not None:
                raise ConflictError(
                    "A plan with this name or price already exists", code=ErrorCode.DUPLICATE_RESOURCE
                )

    async def commit(self) -> None:
        """
        Commit pending plan changes, then drop cached plan reads.

        The cache is cleared only once the new rows are visible to other
        sessions.
        """
        await self.db.commit()
        await self.cache.invalidate_pattern("plan:*")
