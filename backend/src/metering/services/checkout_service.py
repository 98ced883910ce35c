"""Hosted checkout and customer portal sessions."""
from typing import Optional
from uuid import UUID

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from metering.adapters.stripe_adapter import StripeAdapter
from metering.config import settings
from metering.exceptions import NotFoundError, ValidationError
from metering.models.customer import BillingCustomer
from metering.schemas.error import ErrorCode
from metering.services.plan_service import PlanRegistry

logger = structlog.get_logger(__name__)


class CheckoutService:
    """Thin pass-through to the processor's hosted pages."""

    def __init__(self, db: AsyncSession, stripe_adapter: StripeAdapter):
        self.db = db
        self.stripe = stripe_adapter
        self.plans = PlanRegistry(db)

    async def get_customer(self, user_id: UUID) -> Optional[BillingCustomer]:
        """Processor customer of a user, if one was created."""
        result = await self.db.execute(select(BillingCustomer).where(BillingCustomer.user_id == user_id))
        return result.scalar_one_or_none()

    async def ensure_customer(self, user_id: UUID, email: Optional[str]) -> BillingCustomer:
        """
        Get or create the processor customer for a user.

        Args:
            user_id: Local user id
            email: Email to attach to a new customer

        Returns:
            Billing customer mapping

        Raises:
            UpstreamUnavailableError: If Stripe is unreachable
        """
        customer = await self.get_customer(user_id)
        if customer is not None:
            return customer

        external_id = await self.stripe.create_customer(email=email, user_id=str(user_id))
        customer = BillingCustomer(user_id=user_id, external_customer_id=external_id, email=email)
        self.db.add(customer)
        await self.db.flush()
        return customer

    async def create_checkout_session(self, user_id: UUID, email: Optional[str], plan_id: UUID) -> str:
        """
        Start a subscription checkout for a plan.

        Returns:
            Hosted checkout URL

        Raises:
            NotFoundError: Unknown or inactive plan
            ValidationError: Plan has no processor price
            UpstreamUnavailableError: If Stripe is unreachable
        """
        plan = await self.plans.get_plan(plan_id)
        if not plan.active:
            raise NotFoundError(
                f"Plan {plan_id} is not available", details={"plan_id": str(plan_id)}, code=ErrorCode.PLAN_NOT_FOUND
            )
        if not plan.stripe_price_id:
            raise ValidationError(
                f"Plan '{plan.name}' cannot be purchased",
                details={"plan_id": str(plan_id)},
                code=ErrorCode.PLAN_NOT_PURCHASABLE,
            )

        customer = await self.ensure_customer(user_id, email)
        url = await self.stripe.create_checkout_session(
            customer_id=customer.external_customer_id,
            price_id=plan.stripe_price_id,
            user_id=str(user_id),
            plan_id=str(plan.id),
            success_url=settings.checkout_success_url,
            cancel_url=settings.checkout_cancel_url,
        )
        logger.info("checkout_session_created", user_id=str(user_id), plan_id=str(plan.id))
        return url

    async def create_portal_session(self, user_id: UUID) -> str:
        """
        Open the customer portal for an existing customer.

        Raises:
            NotFoundError: User has never started a checkout
            UpstreamUnavailableError: If Stripe is unreachable
        """
        customer = await self.get_customer(user_id)
        if customer is None:
            raise NotFoundError(
                "No billing customer for this user",
                details={"user_id": str(user_id)},
                code=ErrorCode.CUSTOMER_NOT_FOUND,
            )

        url = await self.stripe.create_portal_session(customer.external_customer_id, settings.portal_return_url)
        logger.info("portal_session_created", user_id=str(user_id))
        return url
