"""FastAPI dependencies for database sessions, authentication and clients.

Long-lived resources (database, Stripe adapter, event dispatcher) are created
by the application lifespan and stored on ``app.state``.
"""
from typing import AsyncGenerator, Optional
from uuid import UUID

import jwt
import structlog
from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from metering.adapters.stripe_adapter import StripeAdapter
from metering.auth.jwt import jwt_auth
from metering.workers.dispatcher import EventDispatcher

logger = structlog.get_logger(__name__)

# HTTP Bearer token security scheme
security = HTTPBearer(auto_error=False)


async def get_db(request: Request) -> AsyncGenerator[AsyncSession, None]:
    """
    Database session dependency.

    Yields:
        AsyncSession: Database session for the request lifecycle
    """
    async with request.app.state.database.session() as session:
        yield session


def get_stripe_adapter(request: Request) -> StripeAdapter:
    """Stripe adapter owned by the application."""
    return request.app.state.stripe_adapter


def get_dispatcher(request: Request) -> EventDispatcher:
    """Billing event dispatcher owned by the application."""
    return request.app.state.dispatcher


def get_request_id(request: Request) -> Optional[str]:
    """Correlation id bound by the logging middleware."""
    return getattr(request.state, "request_id", None)


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> dict:
    """
    Get current authenticated user from JWT token.

    Args:
        credentials: HTTP Bearer token from request header

    Returns:
        dict: Decoded claims (sub, email, role)

    Raises:
        HTTPException: If token is invalid, expired, or missing
    """
    if not credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required",
            headers={"WWW-Authenticate": "Bearer"},
        )

    token = credentials.credentials

    try:
        payload = jwt_auth.verify_access_token(token)
    except jwt.ExpiredSignatureError:
        logger.warning("token_expired")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token has expired",
            headers={"WWW-Authenticate": "Bearer"},
        )
    except jwt.InvalidTokenError as e:
        logger.warning("invalid_token", error=str(e))
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid authentication token",
            headers={"WWW-Authenticate": "Bearer"},
        )

    return payload


def current_user_id(current_user: dict) -> UUID:
    """User id of the authenticated caller."""
    return UUID(current_user["sub"])
