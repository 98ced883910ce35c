"""JWT verification for access tokens issued by the hosted auth provider.

Tokens are HS256-signed with the project's shared secret. The user id is
``sub`` and the application role is carried in the ``user_role`` claim.
"""
from datetime import datetime, timedelta
from typing import Dict, Optional
from uuid import UUID

import jwt

from metering.config import settings


class JWTAuth:
    """JWT authentication handler with shared-secret signing."""

    def __init__(
        self,
        secret: Optional[str] = None,
        algorithm: Optional[str] = None,
        audience: Optional[str] = None,
    ):
        self.secret = secret or settings.jwt_secret_key
        self.algorithm = algorithm or settings.jwt_algorithm
        self.audience = audience or settings.jwt_audience
        self.access_token_expire_minutes = 60

    def create_access_token(
        self,
        user_id: UUID,
        email: Optional[str] = None,
        role: str = "USER",
        additional_claims: Optional[Dict] = None,
    ) -> str:
        """
        Create an access token shaped like the auth provider's.

        Used by local tooling and tests; production tokens come from the provider.

        Args:
            user_id: User UUID
            email: User email
            role: Application role (USER or ADMIN)
            additional_claims: Additional JWT claims

        Returns:
            Encoded JWT token
        """
        now = datetime.utcnow()
        claims = {
            "sub": str(user_id),
            "email": email,
            "user_role": role,
            "aud": self.audience,
            "iat": now,
            "exp": now + timedelta(minutes=self.access_token_expire_minutes),
        }
        if additional_claims:
            claims.update(additional_claims)

        return jwt.encode(claims, self.secret, algorithm=self.algorithm)

    def verify_access_token(self, token: str) -> Dict:
        """
        Verify and decode an access token.

        Args:
            token: JWT token string

        Returns:
            Decoded claims with ``role`` normalized from ``user_role``

        Raises:
            jwt.ExpiredSignatureError: If token is expired
            jwt.InvalidTokenError: If token is invalid or has no subject
        """
        payload = jwt.decode(
            token,
            self.secret,
            algorithms=[self.algorithm],
            audience=self.audience,
            options={"require": ["sub", "exp"]},
        )

        try:
            UUID(payload["sub"])
        except ValueError:
            raise jwt.InvalidTokenError("Subject is not a user id") from None

        payload["role"] = payload.get("user_role") or "USER"
        return payload


# Global JWT auth instance
jwt_auth = JWTAuth()
