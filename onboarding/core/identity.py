"""
Identity store adapter.

The identity store owns credentials (email + password, ban state). Profiles
share their id with the credential. ``IdentityStore`` is the seam the
services depend on; ``SupabaseIdentityStore`` talks to the Supabase Auth
admin API through the service-role client.
"""

import logging
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, List, Optional
from uuid import UUID

from onboarding.contracts.base import BaseContract
from onboarding.core.errors import DependencyFailed
from onboarding.services.utils.emails import normalize_email
from onboarding.services.utils.threading import run_in_thread

logger = logging.getLogger(__name__)

# Ten years; the identity store has no permanent ban
LONG_BAN_DURATION = "87600h"
NO_BAN = "none"


class IdentityUser(BaseContract):
    id: UUID
    email: Optional[str] = None
    banned_until: Optional[datetime] = None
    user_metadata: Dict[str, Any] = {}


class IdentityStoreError(DependencyFailed):
    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__("identity_store_error", message, details=details)


class IdentityConflictError(IdentityStoreError):
    """The identity store already holds a credential for the email."""


class IdentityStore(ABC):
    """
    Credential operations used by provisioning, repair and member admin.
    """

    @abstractmethod
    async def list_users(self) -> List[IdentityUser]:
        """Every credential in the store."""
        pass

    @abstractmethod
    async def find_by_email(self, email: str) -> Optional[IdentityUser]:
        """Case-insensitive lookup by email."""
        pass

    @abstractmethod
    async def get(self, user_id: UUID) -> Optional[IdentityUser]:
        pass

    @abstractmethod
    async def create(self, email: str, password: str, metadata: Dict[str, Any]) -> IdentityUser:
        """Create a confirmed credential. Raises IdentityConflictError if the email is taken."""
        pass

    @abstractmethod
    async def update(
        self,
        user_id: UUID,
        *,
        email: Optional[str] = None,
        password: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
        ban_duration: Optional[str] = None,
        email_confirm: Optional[bool] = None,
    ) -> IdentityUser:
        pass

    @abstractmethod
    async def delete(self, user_id: UUID) -> None:
        pass

    async def unban(self, user_id: UUID) -> IdentityUser:
        return await self.update(user_id, ban_duration=NO_BAN)


def _is_conflict(error: Exception) -> bool:
    code = str(getattr(error, "code", "") or "").lower()
    message = str(error).lower()
    return code == "email_exists" or "already been registered" in message or "already registered" in message


def _to_identity_user(user: Any) -> Optional[IdentityUser]:
    if user is None:
        return None
    return IdentityUser(
        id=user.id,
        email=getattr(user, "email", None),
        banned_until=getattr(user, "banned_until", None),
        user_metadata=getattr(user, "user_metadata", None) or {},
    )


class SupabaseIdentityStore(IdentityStore):
    """Supabase Auth admin API. The SDK is synchronous, so calls run in a thread."""

    PAGE_SIZE = 1000

    def __init__(self, client):
        self.admin = client.auth.admin

    async def _call(self, operation: str, fn, *args, **kwargs):
        try:
            return await run_in_thread(fn, *args, **kwargs)
        except Exception as e:
            logger.error("Identity store %s failed: %s", operation, e)
            if _is_conflict(e):
                raise IdentityConflictError(str(e), details={"operation": operation}) from e
            raise IdentityStoreError(
                f"Identity store {operation} failed", details={"operation": operation, "error": str(e)}
            ) from e

    async def _pages(self):
        page = 1
        while True:
            users = await self._call("list_users", self.admin.list_users, page=page, per_page=self.PAGE_SIZE)
            yield users or []
            if not users or len(users) < self.PAGE_SIZE:
                return
            page += 1

    async def list_users(self) -> List[IdentityUser]:
        return [_to_identity_user(user) async for users in self._pages() for user in users]

    async def find_by_email(self, email: str) -> Optional[IdentityUser]:
        wanted = normalize_email(email)
        async for users in self._pages():
            for user in users:
                if normalize_email(getattr(user, "email", None)) == wanted:
                    return _to_identity_user(user)
        return None

    async def get(self, user_id: UUID) -> Optional[IdentityUser]:
        try:
            response = await run_in_thread(self.admin.get_user_by_id, str(user_id))
        except Exception as e:
            # The admin API reports an unknown id as an error
            if "not found" in str(e).lower():
                return None
            logger.error("Identity store get failed: %s", e)
            raise IdentityStoreError("Identity store get failed", details={"error": str(e)}) from e
        return _to_identity_user(getattr(response, "user", None))

    async def create(self, email: str, password: str, metadata: Dict[str, Any]) -> IdentityUser:
        response = await self._call(
            "create_user",
            self.admin.create_user,
            {
                "email": normalize_email(email),
                "password": password,
                "email_confirm": True,
                "user_metadata": metadata,
            },
        )
        user = _to_identity_user(getattr(response, "user", None))
        if user is None:
            raise IdentityStoreError("Identity store returned no user on create")
        return user

    async def update(
        self,
        user_id: UUID,
        *,
        email: Optional[str] = None,
        password: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
        ban_duration: Optional[str] = None,
        email_confirm: Optional[bool] = None,
    ) -> IdentityUser:
        attributes: Dict[str, Any] = {}
        if email is not None:
            attributes["email"] = email
        if password is not None:
            attributes["password"] = password
        if metadata is not None:
            attributes["user_metadata"] = metadata
        if ban_duration is not None:
            attributes["ban_duration"] = ban_duration
        if email_confirm is not None:
            attributes["email_confirm"] = email_confirm

        response = await self._call("update_user", self.admin.update_user_by_id, str(user_id), attributes)
        user = _to_identity_user(getattr(response, "user", None))
        if user is None:
            raise IdentityStoreError("Identity store returned no user on update")
        return user

    async def delete(self, user_id: UUID) -> None:
        await self._call("delete_user", self.admin.delete_user, str(user_id))

