"""Stripe payment gateway adapter.

The stripe SDK is synchronous; calls are pushed to a worker thread so they
never block the event loop. Every SDK failure surfaces as a domain error.
"""
import asyncio
import json
from typing import Any

import stripe
import structlog

from metering.config import settings
from metering.exceptions import UpstreamAuthenticityError, UpstreamUnavailableError, ValidationError

logger = structlog.get_logger(__name__)


def _to_dict(obj: Any) -> dict[str, Any]:
    """Plain dict copy of a StripeObject (nested objects included)."""
    return json.loads(str(obj))


class StripeAdapter:
    """Adapter for Stripe billing integration."""

    def __init__(
        self,
        api_key: str | None = None,
        webhook_secret: str | None = None,
        webhook_tolerance: int | None = None,
    ):
        """Initialize Stripe adapter with API key and webhook secret."""
        self.api_key = api_key or settings.stripe_secret_key
        self.webhook_secret = webhook_secret or settings.stripe_webhook_secret
        self.webhook_tolerance = webhook_tolerance or settings.stripe_webhook_tolerance_seconds
        stripe.api_key = self.api_key

    async def _call(self, operation: str, func, *args, **kwargs):
        try:
            return await asyncio.to_thread(func, *args, **kwargs)
        except stripe.StripeError as e:
            logger.error("stripe_call_failed", operation=operation, error=str(e), http_status=e.http_status)
            raise UpstreamUnavailableError(
                "Payment processor request failed",
                details={"operation": operation, "stripe_error": e.__class__.__name__},
            ) from e

    async def create_customer(self, email: str | None, user_id: str) -> str:
        """
        Create a Stripe customer for a local user.

        Args:
            email: Customer email
            user_id: Local user id, stored in customer metadata

        Returns:
            Stripe customer ID
        """
        customer = await self._call(
            "create_customer",
            stripe.Customer.create,
            email=email,
            metadata={"user_id": user_id},
        )
        logger.info("stripe_customer_created", user_id=user_id, customer_id=customer.id)
        return customer.id

    async def create_checkout_session(
        self,
        customer_id: str,
        price_id: str,
        user_id: str,
        plan_id: str,
        success_url: str,
        cancel_url: str,
    ) -> str:
        """
        Create a subscription-mode hosted checkout session.

        Args:
            customer_id: Stripe customer ID
            price_id: Stripe price ID of the plan
            user_id: Local user id, copied to session and subscription metadata
            plan_id: Local plan id
            success_url: Redirect after payment
            cancel_url: Redirect on abandonment

        Returns:
            Hosted checkout URL
        """
        metadata = {"user_id": user_id, "plan_id": plan_id}
        session = await self._call(
            "create_checkout_session",
            stripe.checkout.Session.create,
            customer=customer_id,
            mode="subscription",
            line_items=[{"price": price_id, "quantity": 1}],
            client_reference_id=user_id,
            metadata=metadata,
            subscription_data={"metadata": metadata},
            success_url=success_url,
            cancel_url=cancel_url,
        )
        return session.url

    async def create_portal_session(self, customer_id: str, return_url: str) -> str:
        """
        Create a customer portal session.

        Args:
            customer_id: Stripe customer ID
            return_url: Redirect when the customer leaves the portal

        Returns:
            Portal URL
        """
        session = await self._call(
            "create_portal_session",
            stripe.billing_portal.Session.create,
            customer=customer_id,
            return_url=return_url,
        )
        return session.url

    async def retrieve_subscription(self, subscription_id: str) -> dict[str, Any]:
        """
        Fetch the current subscription snapshot.

        Args:
            subscription_id: Stripe subscription ID

        Returns:
            Subscription object as a plain dict
        """
        subscription = await self._call("retrieve_subscription", stripe.Subscription.retrieve, subscription_id)
        return _to_dict(subscription)

    async def ping(self) -> bool:
        """Cheap authenticated call used by the readiness probe."""
        await self._call("ping", stripe.Balance.retrieve)
        return True

    def construct_webhook_event(self, payload: bytes, sig_header: str | None) -> dict[str, Any]:
        """
        Verify a webhook signature and parse the event.

        Args:
            payload: Raw request body
            sig_header: Value of the ``Stripe-Signature`` header

        Returns:
            Event as a plain dict

        Raises:
            UpstreamAuthenticityError: Missing header, bad signature, stale timestamp or malformed payload
            ValidationError: Verified payload lacks id, type or created
        """
        if not sig_header:
            raise UpstreamAuthenticityError("Missing Stripe-Signature header")

        try:
            stripe.Webhook.construct_event(payload, sig_header, self.webhook_secret, tolerance=self.webhook_tolerance)
        except stripe.SignatureVerificationError as e:
            raise UpstreamAuthenticityError("Invalid webhook signature") from e
        except ValueError as e:
            raise UpstreamAuthenticityError("Malformed webhook payload") from e

        event = json.loads(payload)
        for field in ("id", "type", "created"):
            if field not in event:
                raise ValidationError(f"Webhook event is missing '{field}'")
        return event
