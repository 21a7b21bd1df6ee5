"""
This module contains the database session.
"""
import logging
from typing import Any, Dict

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from onboarding.config import get_settings

logger = logging.getLogger(__name__)


def _engine_options(url: str) -> Dict[str, Any]:
    """Pool and timeout options; only the asyncpg driver takes them."""
    if not url.startswith("postgresql"):
        return {}
    return {
        "pool_size": 10,
        "max_overflow": 20,
        "pool_pre_ping": True,
        "pool_recycle": 1800,
        "connect_args": {
            "command_timeout": 60,
            "server_settings": {
                "statement_timeout": "60000",  # 60 seconds
                "idle_in_transaction_session_timeout": "60000",
            },
        },
    }


try:
    settings = get_settings()
except Exception as e:
    logger.error("Failed to load settings", exc_info=e)
    settings = None

engine = None
async_session = None

if settings:
    try:
        engine = create_async_engine(settings.database_url, **_engine_options(settings.database_url))
        async_session = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    except Exception as e:
        logger.error("Failed to create database engine", exc_info=e)
