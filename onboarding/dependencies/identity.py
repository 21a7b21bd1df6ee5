"""
Identity store dependency.
"""

from fastapi import HTTPException, status

from onboarding.core.identity import IdentityStore, SupabaseIdentityStore
from onboarding.core.supabase_client import supabase_client


def get_identity_store() -> IdentityStore:
    client = supabase_client()
    if client is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Identity store is not configured",
        )
    return SupabaseIdentityStore(client)
