"""
Authentication dependencies: Supabase JWT verification.
"""

import logging
from typing import Any, Dict, Optional
from uuid import UUID

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from onboarding.config import get_settings
from onboarding.contracts.member import Actor
from onboarding.core.jwt import verify_access_token
from onboarding.dependencies.db import get_db
from onboarding.models.profiles import Profile
from onboarding.services.crud import CRUDBase
from onboarding.services.roles import active_roles

logger = logging.getLogger(__name__)

# Make HTTPBearer optional when auth is disabled
security = HTTPBearer(auto_error=False)


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> Dict[str, Any]:
    """
    Verify the bearer JWT and return basic user info.

    Returns dict with ``id`` (credential/profile UUID) and ``email``.

    If AUTH_DISABLED=true in .env, returns a mock user bound to
    ``AUTH_DISABLED_USER_ID``.
    """
    settings = get_settings()

    if settings.auth_disabled:
        logger.warning("Auth disabled - using mock user %s", settings.auth_disabled_user_id)
        return {"id": settings.auth_disabled_user_id, "email": ""}

    if not credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing authorization header",
            headers={"WWW-Authenticate": "Bearer"},
        )

    try:
        payload = verify_access_token(credentials.credentials)
    except ValueError as e:
        logger.error("Token verification failed: %s", e)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )

    return {"id": payload["sub"], "email": payload.get("email", "")}


async def get_current_actor(
    user: Dict[str, Any] = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> Actor:
    """
    Resolve the token subject to an active profile with its role grants.

    Raises 403 if no active profile exists for the account.
    """
    try:
        user_id = UUID(str(user["id"]))
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token subject",
            headers={"WWW-Authenticate": "Bearer"},
        )

    profile = await CRUDBase(Profile, db).get(user_id)
    if profile is None or not profile.is_active:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="No active profile found for this account",
        )

    return Actor(
        user_id=profile.id,
        email=profile.email,
        office_id=profile.office_id,
        roles=await active_roles(db, profile.id),
    )


async def require_admin(actor: Actor = Depends(get_current_actor)) -> Actor:
    """Platform admins and office managers."""
    if not actor.is_admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Administrator role required",
        )
    return actor


async def require_platform_admin(actor: Actor = Depends(get_current_actor)) -> Actor:
    if not actor.is_platform_admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Platform admin role required",
        )
    return actor
