"""
Supabase access-token verification.

Supabase signs access tokens with the project's JWT secret (HS256), so
verification is local; no key fetch is needed.
"""

import logging
from typing import Any, Dict

from jose import JWTError, jwt

from onboarding.config import get_settings

logger = logging.getLogger(__name__)


def verify_access_token(token: str) -> Dict[str, Any]:
    """
    Verify a Supabase HS256 JWT and return the decoded payload.

    Validates signature, audience, and expiration.

    Returns:
        Decoded JWT payload dict with ``sub``, ``email``, etc.

    Raises:
        ValueError: If the token is invalid or verification fails.
    """
    settings = get_settings()
    if not settings.supabase_jwt_secret:
        raise ValueError("Supabase JWT secret must be configured")

    try:
        payload = jwt.decode(
            token,
            settings.supabase_jwt_secret,
            algorithms=["HS256"],
            audience=settings.supabase_jwt_audience,
        )
    except JWTError as e:
        raise ValueError(f"Token verification failed: {e}")

    if not payload.get("sub"):
        raise ValueError("Token is missing the 'sub' claim")
    return payload
