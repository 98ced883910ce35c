"""Shared test helpers: fakes for Stripe and the plan cache, webhook signing and auth headers."""
import hashlib
import hmac
import json
import time
from fnmatch import fnmatch
from typing import Any
from uuid import UUID, uuid4

from metering.adapters.stripe_adapter import StripeAdapter
from metering.auth.jwt import jwt_auth
from metering.cache import RedisCache

TEST_WEBHOOK_SECRET = "whsec_test_secret"


class InMemoryCache(RedisCache):
    """Plan cache backed by a dict instead of Redis."""

    def __init__(self):
        super().__init__(enabled=True)
        self.store: dict[str, Any] = {}

    async def get(self, key: str) -> Any:
        return self.store.get(key)

    async def set(self, key: str, value: Any, ttl: int | None = None) -> bool:
        self.store[key] = json.loads(json.dumps(value))
        return True

    async def invalidate_pattern(self, pattern: str) -> int:
        keys = [key for key in self.store if fnmatch(key, pattern)]
        for key in keys:
            del self.store[key]
        return len(keys)


class FakeStripeAdapter(StripeAdapter):
    """
    Stripe adapter with network calls replaced by in-memory state.

    Signature verification is the real one, keyed with ``TEST_WEBHOOK_SECRET``.
    """

    def __init__(self):
        super().__init__(api_key="sk_test_fake", webhook_secret=TEST_WEBHOOK_SECRET, webhook_tolerance=300)
        self.subscriptions: dict[str, dict[str, Any]] = {}
        self.customers: list[str] = []

    async def create_customer(self, email: str | None, user_id: str) -> str:
        customer_id = f"cus_{uuid4().hex[:14]}"
        self.customers.append(customer_id)
        return customer_id

    async def create_portal_session(self, customer_id: str, return_url: str) -> str:
        return f"https://billing.stripe.test/p/session/{customer_id}"

    async def retrieve_subscription(self, subscription_id: str) -> dict[str, Any]:
        return self.subscriptions[subscription_id]

    async def ping(self) -> bool:
        return True


def sign_payload(payload: bytes, secret: str = TEST_WEBHOOK_SECRET, timestamp: int | None = None) -> str:
    """Build a ``Stripe-Signature`` header for ``payload``."""
    timestamp = timestamp or int(time.time())
    signed = f"{timestamp}.{payload.decode('utf-8')}".encode("utf-8")
    signature = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={signature}"


def event_body(event: dict[str, Any]) -> bytes:
    """Serialize an event the way the processor sends it."""
    return json.dumps(event).encode("utf-8")


def auth_headers(user_id: UUID, role: str = "USER", email: str | None = None) -> dict[str, str]:
    """Bearer header for a user."""
    token = jwt_auth.create_access_token(user_id, email=email or f"{user_id.hex[:8]}@example.com", role=role)
    return {"Authorization": f"Bearer {token}"}
