"""
Email normalisation and the reserved sentinel addresses.
"""

import time
from typing import Optional
from uuid import UUID

from email_validator import EmailNotValidError, validate_email

ARCHIVED_DOMAIN = "archived.invalid"
DELETED_DOMAIN = "deleted.local"


def normalize_email(email: Optional[str]) -> str:
    return (email or "").strip().lower()


def is_valid_email(email: str) -> bool:
    """Syntax check only; the domain is not resolved."""
    try:
        validate_email(email, check_deliverability=False)
    except EmailNotValidError:
        return False
    return True


def archived_email(user_id: UUID) -> str:
    """Sentinel written over an archived profile's email; unique per archival."""
    return f"archived+{user_id}-{int(time.time() * 1000)}@{ARCHIVED_DOMAIN}"


def deleted_email(user_id: UUID) -> str:
    """Sentinel written over a soft-deleted credential's email."""
    return f"{user_id}@{DELETED_DOMAIN}"


def is_sentinel_email(email: Optional[str]) -> bool:
    if not email:
        return False
    domain = email.rsplit("@", 1)[-1].lower()
    return domain in (ARCHIVED_DOMAIN, DELETED_DOMAIN)
