"""Entitlement evaluation and administrative limit overrides."""
from datetime import datetime
from typing import Optional, Union
from uuid import UUID

import structlog
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from metering.exceptions import InternalPersistenceError, NotFoundError
from metering.features import Feature, allows, current_period_start
from metering.metrics import entitlement_checks_total
from metering.models.entitlement_override import EntitlementOverride
from metering.schemas.entitlement import EntitlementDecision
from metering.services.plan_service import PlanRegistry
from metering.services.subscription_service import SubscriptionLedger
from metering.services.usage_service import UsageCounterStore
from metering.utils.audit import log_audit

logger = structlog.get_logger(__name__)


class EntitlementEvaluator:
    """
    Decides whether a user may use a feature.

    Evaluation is read-only. The limit comes from the user's override if
    one exists, otherwise from the plan of their active/trialing
    subscription, otherwise from the default plan. A feature missing from
    the map has limit 0.
    """

    def __init__(self, db: AsyncSession, plans: Optional[PlanRegistry] = None):
        self.db = db
        self.plans = plans or PlanRegistry(db)
        self.ledger = SubscriptionLedger(db)
        self.counters = UsageCounterStore(db)

    async def evaluate(
        self,
        user_id: UUID,
        feature: Union[str, Feature],
        now: Optional[datetime] = None,
    ) -> EntitlementDecision:
        """
        Evaluate one feature for one user.

        Args:
            user_id: Local user id
            feature: Feature name; unknown names are denied with limit 0
            now: Clock override, used to select the period

        Returns:
            Decision with current usage and limit (-1 for unlimited)

        Raises:
            InternalPersistenceError: The store could not be read
        """
        parsed = Feature.parse(feature)
        if parsed is None:
            entitlement_checks_total.labels(feature="unknown", decision="denied").inc()
            logger.info("entitlement_unknown_feature", user_id=str(user_id), feature=str(feature))
            return EntitlementDecision(feature=str(feature), can_use=False, current_usage=0, limit_value=0)

        try:
            limit = await self._resolve_limit(user_id, parsed)
            usage = await self.counters.get_count(user_id, parsed, current_period_start(now))
        except SQLAlchemyError as e:
            entitlement_checks_total.labels(feature=parsed.value, decision="error").inc()
            logger.error("entitlement_check_failed", user_id=str(user_id), feature=parsed.value, error=str(e))
            raise InternalPersistenceError(
                "Entitlement could not be evaluated",
                details={"feature": parsed.value},
            ) from e

        can_use = allows(limit, usage)
        entitlement_checks_total.labels(
            feature=parsed.value, decision="allowed" if can_use else "denied"
        ).inc()
        return EntitlementDecision(feature=parsed.value, can_use=can_use, current_usage=usage, limit_value=limit)

    async def evaluate_all(self, user_id: UUID, now: Optional[datetime] = None) -> list[EntitlementDecision]:
        """Decisions for every known feature, in enum order."""
        return [await self.evaluate(user_id, feature, now) for feature in Feature]

    async def _resolve_limit(self, user_id: UUID, feature: Feature) -> int:
        override = await self.get_override(user_id, feature)
        if override is not None:
            return override.limit_value

        subscription = await self.ledger.get_active_subscription(user_id)
        if subscription is not None:
            limits = await self.plans.get_plan_limits(subscription.plan_id)
        else:
            limits = await self.plans.get_default_limits()
        return int(limits.get(feature.value, 0))

    async def get_override(self, user_id: UUID, feature: Feature) -> Optional[EntitlementOverride]:
        """Override for one user and feature, if any."""
        result = await self.db.execute(
            select(EntitlementOverride).where(
                EntitlementOverride.user_id == user_id,
                EntitlementOverride.feature == feature.value,
            )
        )
        return result.scalar_one_or_none()

    async def set_override(
        self,
        actor_id: str,
        user_id: UUID,
        feature: Feature,
        limit_value: int,
        reason: Optional[str] = None,
        request_id: Optional[str] = None,
    ) -> EntitlementOverride:
        """
        Create or replace a user's limit for one feature.

        Args:
            actor_id: Admin performing the change
            user_id: Affected user
            feature: Feature to override
            limit_value: New limit, -1 for unlimited
            reason: Free-text justification
            request_id: Request correlation ID

        Returns:
            The stored override
        """
        override = await self.get_override(user_id, feature)
        previous = override.limit_value if override is not None else None

        if override is None:
            override = EntitlementOverride(
                user_id=user_id,
                feature=feature.value,
                limit_value=limit_value,
                reason=reason,
                created_by=actor_id,
            )
            self.db.add(override)
        else:
            override.limit_value = limit_value
            override.reason = reason
            override.created_by = actor_id

        await self.db.flush()
        await self.db.refresh(override)

        await log_audit(
            self.db,
            actor_id=actor_id,
            action="entitlement_override_set",
            target_user_id=user_id,
            entity_type="entitlement_override",
            entity_id=override.id,
            details={
                "feature": feature.value,
                "previous_limit": previous,
                "new_limit": limit_value,
                "reason": reason,
            },
            request_id=request_id,
        )
        return override

    async def clear_override(
        self,
        actor_id: str,
        user_id: UUID,
        feature: Feature,
        request_id: Optional[str] = None,
    ) -> None:
        """
        Remove a user's override so the plan limit applies again.

        Raises:
            NotFoundError: If no override exists
        """
        override = await self.get_override(user_id, feature)
        if override is None:
            raise NotFoundError(
                f"No override for feature '{feature.value}'",
                details={"user_id": str(user_id), "feature": feature.value},
            )

        override_id, previous = override.id, override.limit_value
        await self.db.delete(override)
        await self.db.flush()

        await log_audit(
            self.db,
            actor_id=actor_id,
            action="entitlement_override_cleared",
            target_user_id=user_id,
            entity_type="entitlement_override",
            entity_id=override_id,
            details={"feature": feature.value, "previous_limit": previous},
            request_id=request_id,
        )
