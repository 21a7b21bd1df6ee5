"""
Supabase client
"""

import logging
import threading
from typing import Optional

from supabase import Client, create_client

from onboarding.config import get_settings

logger = logging.getLogger(__name__)


class SupabaseClient:
    """Process-wide service-role Supabase client"""

    _instance: Optional[Client] = None
    _lock = threading.Lock()

    @classmethod
    def get_client(cls) -> Optional[Client]:
        """Create the client on first use; None when Supabase is not configured."""
        if cls._instance is None:
            with cls._lock:
                if cls._instance is None:
                    settings = get_settings()
                    if not settings.supabase_url or not settings.supabase_service_key:
                        logger.error("Supabase URL or service key not configured")
                        return None
                    try:
                        cls._instance = create_client(
                            settings.supabase_url, settings.supabase_service_key
                        )
                    except Exception as e:
                        logger.error("Failed to create Supabase client: %s", e)
                        return None

        return cls._instance


def supabase_client() -> Optional[Client]:
    """Get the Supabase client"""
    return SupabaseClient.get_client()
